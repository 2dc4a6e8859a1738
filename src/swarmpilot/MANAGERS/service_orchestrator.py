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
Lifecycle of individual services on the orchestration engine.
"""
import copy
from typing import Any, Dict, List, Optional, Union

from ..CLIENT.cluster_client import ClusterClient
from ..errors import ValidationError, validate_input
from ..MODELS.replica import BulkLogOptions, BulkLogResult, LogOptions, LogResult, ReplicaSet
from ..MODELS.service_spec import ServicePatch, ServiceSpec, UpdateConfig
from ..UTILS.logging import get_logger
from .log_aggregator import ReplicaLogAggregator
from .network_registrar import NetworkRegistrar
from .resource_policy import ResourcePolicyEnforcer

logger = get_logger(__name__, prefix="Service")


def _migrate_networks(spec: Dict[str, Any], attachments: Optional[List[Dict[str, Any]]] = None) -> None:
    """
    Moves network attachments into ``TaskTemplate.Networks`` in place.

    The engine refuses any update to a service whose networks are still
    declared at the top level of its spec ("networks must be migrated to
    TaskSpec before being changed").
    """
    task_template = spec.setdefault("TaskTemplate", {})
    legacy = spec.pop("Networks", None)
    if attachments is None:
        attachments = task_template.get("Networks") or legacy or []
    task_template["Networks"] = [dict(a) for a in attachments]


class ServiceOrchestrator:
    """
    Creates, updates, scales and removes single services.

    Every spec sent to the engine passes through the resource policy first.
    """
    def __init__(self,
                 client: ClusterClient,
                 registrar: Optional[NetworkRegistrar] = None,
                 aggregator: Optional[ReplicaLogAggregator] = None):
        """
        Initializes the orchestrator.

        :param client: Cluster client for engine calls.
        :param registrar: Network registrar; one is built on the client if omitted.
        :param aggregator: Replica/log aggregator; one is built on the client if omitted.
        """
        self.client = client
        self.registrar = registrar or NetworkRegistrar(client)
        self.aggregator = aggregator or ReplicaLogAggregator(client)

    async def create(self, spec: Union[ServiceSpec, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Creates a service.

        :param spec: Desired state; ``name`` and ``image`` are required.
        :return: The engine's create response (``ID`` and ``Warnings``).
        :raises ValidationError: If the spec is incomplete.
        """
        spec = validate_input(ServiceSpec, spec)
        attachments = await self.registrar.resolve_attachments(
            spec.networks, spec.network_options, spec.network_attachments
        )

        engine_spec: Dict[str, Any] = {
            "Name": spec.name,
            "Labels": dict(spec.labels),
            "TaskTemplate": {
                "ContainerSpec": {"Image": spec.image, "Env": list(spec.environment)},
                "Networks": attachments,
                "ForceUpdate": 0,
            },
            "Mode": {"Replicated": {"Replicas": spec.replicas}},
        }
        if spec.mounts:
            engine_spec["TaskTemplate"]["ContainerSpec"]["Mounts"] = [m.to_engine() for m in spec.mounts]
        if spec.placement_constraints:
            engine_spec["TaskTemplate"]["Placement"] = {"Constraints": list(spec.placement_constraints)}
        if spec.ports:
            engine_spec["EndpointSpec"] = {"Ports": [p.to_engine() for p in spec.ports]}
        if spec.update_config is not None:
            engine_spec["UpdateConfig"] = spec.update_config.to_engine()

        engine_spec = ResourcePolicyEnforcer.apply(engine_spec)
        created = await self.client.create_service(engine_spec)
        logger.info(f"Created service {spec.name} ({spec.image}, {spec.replicas} replicas)")
        return created

    async def get_service(self, service_id: str) -> Dict[str, Any]:
        return await self.client.get_service(service_id)

    async def list_services(self) -> List[Dict[str, Any]]:
        return await self.client.list_services()

    async def get_tasks(self, service_id: str) -> List[Dict[str, Any]]:
        service = await self.client.get_service(service_id)
        return await self.client.list_tasks(filters={"service": [service.get("ID", service_id)]})

    async def update(self, service_id: str, patch: Union[ServicePatch, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Applies a partial update over the current engine spec.

        Only fields set on the patch change. Resources are re-asserted, the
        forced-update counter is bumped so tasks are replaced, and networks
        are always written into the task template.

        :raises NotFoundError: If the service does not exist.
        :raises ConflictError: If the service changed since it was read.
        """
        patch = validate_input(ServicePatch, patch)
        current = await self.client.get_service(service_id)
        version = current["Version"]["Index"]
        spec = copy.deepcopy(current.get("Spec") or {})
        task_template = spec.setdefault("TaskTemplate", {})
        container = task_template.setdefault("ContainerSpec", {})

        if patch.image is not None:
            container["Image"] = patch.image
        if patch.environment is not None:
            container["Env"] = list(patch.environment)
        if patch.labels is not None:
            spec["Labels"] = dict(patch.labels)
        if patch.replicas is not None:
            self._set_replicas(spec, patch.replicas)
        if patch.ports is not None:
            spec["EndpointSpec"] = {"Ports": [p.to_engine() for p in patch.ports]}
        if patch.update_config is not None:
            spec["UpdateConfig"] = patch.update_config.to_engine()
        if patch.mounts is not None:
            container["Mounts"] = [m.to_engine() for m in patch.mounts]
        if patch.placement_constraints is not None:
            self._set_placement(task_template, patch.placement_constraints)

        attachments = None
        if patch.touches_networks():
            attachments = await self.registrar.resolve_attachments(
                patch.networks or [], patch.network_options, patch.network_attachments
            )
        _migrate_networks(spec, attachments)

        spec = ResourcePolicyEnforcer.apply(spec)
        spec["TaskTemplate"]["ForceUpdate"] = int(spec["TaskTemplate"].get("ForceUpdate") or 0) + 1

        result = await self.client.update_service(current.get("ID", service_id), version, spec)
        logger.info(f"Updated service {spec.get('Name', service_id)}")
        return result

    async def update_environment(self, service_id: str, environment: List[str]) -> Dict[str, Any]:
        """
        Replaces the environment of a service.
        """
        if not isinstance(environment, list):
            raise ValidationError("Environment variables must be a list")
        return await self.update(service_id, {"environment": environment})

    async def rolling_update(self,
                             service_id: str,
                             image: str,
                             update_config: Union[UpdateConfig, Dict[str, Any], None] = None) -> Dict[str, Any]:
        """
        Rolls a new image out across the service's tasks.
        """
        if not image or not str(image).strip():
            raise ValidationError("Image is required for rolling update")
        patch = {"image": image}
        if update_config is not None:
            patch["update_config"] = validate_input(UpdateConfig, update_config)
        return await self.update(service_id, patch)

    @staticmethod
    def _set_placement(task_template: Dict[str, Any], constraints: List[str]) -> None:
        placement = dict(task_template.get("Placement") or {})
        if constraints:
            placement["Constraints"] = list(constraints)
        else:
            placement.pop("Constraints", None)
        if placement:
            task_template["Placement"] = placement
        else:
            task_template.pop("Placement", None)

    @staticmethod
    def _set_replicas(spec: Dict[str, Any], replicas: int) -> None:
        mode = spec.get("Mode") or {}
        if "Global" in mode:
            raise ValidationError(f"Service {spec.get('Name', '')} runs in global mode and cannot be scaled")
        spec["Mode"] = {"Replicated": {"Replicas": replicas}}

    async def scale(self, service_id: str, replicas: int) -> Dict[str, Any]:
        """
        Sets the replica count of a service.

        Only the mode changes; tasks are not force-replaced.

        :raises ValidationError: If the count is not a non-negative integer.
        :raises ConflictError: If the version token is stale.
        """
        if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 0:
            raise ValidationError("Replicas must be a non-negative integer")
        current = await self.client.get_service(service_id)
        version = current["Version"]["Index"]
        spec = copy.deepcopy(current.get("Spec") or {})
        self._set_replicas(spec, replicas)
        _migrate_networks(spec)
        spec = ResourcePolicyEnforcer.apply(spec)

        result = await self.client.update_service(current.get("ID", service_id), version, spec)
        logger.info(f"Scaled service {spec.get('Name', service_id)} to {replicas} replicas")
        return result

    async def remove(self, service_id: str) -> None:
        """
        Removes a service. Irreversible.

        :raises NotFoundError: If the service does not exist.
        """
        await self.client.remove_service(service_id)
        logger.info(f"Removed service {service_id}")

    async def get_replicas(self, service_id: str) -> ReplicaSet:
        return await self.aggregator.get_replicas(service_id)

    async def get_logs(self, service_id: str, options: Union[LogOptions, Dict[str, Any], None] = None) -> LogResult:
        return await self.aggregator.get_logs(service_id, validate_input(LogOptions, options))

    async def get_bulk_logs(self,
                            service_id: str,
                            options: Union[BulkLogOptions, Dict[str, Any], None] = None) -> BulkLogResult:
        return await self.aggregator.bulk_logs(service_id, validate_input(BulkLogOptions, options))
