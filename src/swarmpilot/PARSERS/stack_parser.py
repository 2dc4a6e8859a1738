# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""
Parser for compose-format stack files.
"""
import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import dotenv_values

from ..errors import ValidationError, validate_input
from ..MODELS.stack import StackConfig
from ..UTILS.interpolation import EnvironmentInterpolator


class StackParser:
    """
    Parser for stack files (compose file format, version 3).
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables for interpolation; defaults to the process
            environment plus a ``.env`` file next to the stack file.
        """
        self.context = context

    def parse(self, stack_path: str, name: Optional[str] = None) -> StackConfig:
        """
        Parses a stack file from a path.

        :param stack_path: Path to the stack file.
        :param name: Stack name; defaults to the file's ``name`` key, then
            to the name of the directory holding the file.
        :return: Parsed stack configuration.
        """
        try:
            with open(stack_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ValidationError(f"Cannot read stack file {stack_path}: {e.strerror or e}") from e
        base_dir = os.path.dirname(os.path.abspath(stack_path))
        default_name = os.path.basename(base_dir)
        return self.parse_from_string(content, name=name, base_dir=base_dir, default_name=default_name)

    def parse_from_string(self,
                          content: str,
                          name: Optional[str] = None,
                          base_dir: str = ".",
                          default_name: Optional[str] = None) -> StackConfig:
        """
        Parses a stack file from a string.

        :param content: YAML content of the stack file.
        :param name: Stack name, overriding any ``name`` key in the document.
        :param base_dir: Directory that relative ``env_file`` paths resolve against.
        :param default_name: Name used when neither ``name`` nor the document gives one.
        :raises ValidationError: If the document is not valid YAML or not a valid stack.
        """
        context = self.context if self.context is not None else self._default_context(base_dir)
        content = EnvironmentInterpolator(context).interpolate(content)

        try:
            data = yaml.safe_load(content)
        except (yaml.YAMLError, ValueError) as e:
            raise ValidationError(f"Invalid stack file: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid stack file: top level must be a mapping")

        services = data.get('services')
        if services is not None and not isinstance(services, dict):
            raise ValidationError("Invalid stack file: services must be a mapping")

        config = {
            "name": name or data.get('name') or default_name,
            "version": str(data.get('version') or "3.8"),
            "services": {
                key: self._parse_service(key, spec or {}, base_dir)
                for key, spec in (services or {}).items()
            },
            "networks": self._parse_section(data.get('networks')),
            "volumes": self._parse_section(data.get('volumes')),
        }
        return validate_input(StackConfig, config)

    @staticmethod
    def _default_context(base_dir: str) -> Dict[str, str]:
        context = {}
        env_path = os.path.join(base_dir, '.env')
        if os.path.isfile(env_path):
            context.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
        context.update(os.environ)
        return context

    def _parse_service(self, name: str, spec: Dict[str, Any], base_dir: str) -> Dict[str, Any]:
        """
        Parses a single service definition from a stack file.

        :param name: The name of the service.
        :param spec: The service mapping.
        :param base_dir: Directory for relative ``env_file`` paths.
        :return: Member data accepted by StackService.
        """
        spec = self._mapping(spec, f"service {name}")

        environment = []
        for env_file in self._sequence(spec.get('env_file'), f"service {name} env_file"):
            env_file = str(env_file)
            path = env_file if os.path.isabs(env_file) else os.path.join(base_dir, env_file)
            if not os.path.isfile(path):
                raise ValidationError(f"Service {name}: env_file {env_file} not found")
            environment.extend(f"{k}={'' if v is None else v}" for k, v in dotenv_values(path).items())

        # explicit values come after file values and override them
        env_spec = spec.get('environment')
        if isinstance(env_spec, dict):
            environment.extend(f"{k}={'' if v is None else v}" for k, v in env_spec.items())
        else:
            environment.extend(str(e) for e in self._sequence(env_spec, f"service {name} environment"))

        deploy = self._mapping(spec.get('deploy'), f"service {name} deploy")
        resources = deploy.pop('resources', None) or {}

        member = {
            "image": spec.get('image', ''),
            "ports": spec.get('ports') or [],
            "environment": environment,
            "networks": spec.get('networks') or [],
            "volumes": [
                self._volume_ref(v, base_dir)
                for v in self._sequence(spec.get('volumes'), f"service {name} volumes")
            ],
            "labels": self._labels(spec.get('labels')),
            "deploy": deploy or None,
            "resources": resources,
        }
        if 'replicas' in spec and deploy.get('replicas') is None:
            member["replicas"] = spec['replicas']
        return member

    def _parse_section(self, section: Any) -> Optional[Dict[str, Dict[str, Any]]]:
        """
        Parses the top-level ``networks`` or ``volumes`` mapping.
        """
        if not section:
            return None
        parsed = {}
        for key, spec in self._mapping(section, "networks and volumes").items():
            spec = self._mapping(spec, f"{key}")
            external = spec.get('external')
            if isinstance(external, dict):
                # legacy form: external: {name: ...}
                spec['external'] = True
                spec.setdefault('name', external.get('name'))
            if 'labels' in spec:
                spec['labels'] = self._labels(spec['labels'])
            parsed[key] = spec
        return parsed

    @staticmethod
    def _mapping(value: Any, what: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValidationError(f"Invalid stack file: {what} must be a mapping")
        return dict(value)

    @staticmethod
    def _sequence(value: Any, what: str) -> List[Any]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if not isinstance(value, list):
            raise ValidationError(f"Invalid stack file: {what} must be a list")
        return value

    @staticmethod
    def _volume_ref(volume: Any, base_dir: str) -> str:
        if isinstance(volume, dict):
            ref = f"{volume.get('source', '')}:{volume.get('target', '')}"
            ref = f"{ref}:ro" if volume.get('read_only') else ref
        else:
            ref = str(volume)
        source, sep, rest = ref.partition(':')
        if sep and source.startswith(('.', '~')):
            # relative bind sources resolve against the stack file's directory
            source = os.path.abspath(os.path.join(base_dir, os.path.expanduser(source)))
            ref = f"{source}:{rest}"
        return ref

    @classmethod
    def _labels(cls, labels: Any) -> Dict[str, str]:
        if not labels:
            return {}
        if isinstance(labels, dict):
            return {str(k): '' if v is None else str(v) for k, v in labels.items()}
        result = {}
        for label in cls._sequence(labels, "labels"):
            key, _, value = str(label).partition('=')
            result[key] = value
        return result
