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
Asynchronous client for the Swarm manager's remote API.

Wraps the docker SDK's low-level APIClient. The SDK is synchronous, so every
call runs in a worker thread via asyncio.to_thread and is a suspension point
for the calling coroutine. SDK and transport errors are translated into the
swarmpilot error taxonomy here and nowhere else.
"""
import asyncio
import functools
from typing import Any, Callable, Dict, List, Optional

import docker
import requests
from docker.errors import APIError, DockerException, NotFound
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import ConflictError, EngineError, NotFoundError
from ..UTILS.logging import get_logger

logger = get_logger(__name__, prefix="Engine")

# Message the engine returns when an update carries a stale version index.
_OUT_OF_SEQUENCE = "update out of sequence"


def _explain(error: Exception) -> str:
    explanation = getattr(error, "explanation", None)
    if explanation:
        return explanation.decode() if isinstance(explanation, bytes) else str(explanation)
    return str(error)


class ClusterClient:
    """
    Thin async call surface over the orchestration engine.

    Service specs passed in and returned are engine-native dictionaries
    (``Name``, ``Labels``, ``TaskTemplate``, ``Mode``, ``EndpointSpec``...).
    """

    def __init__(self,
                 base_url: Optional[str] = None,
                 timeout: int = 60,
                 api: Optional[docker.APIClient] = None):
        """
        Initializes the client. The SDK connection is opened lazily.

        :param base_url: Engine address, e.g. ``unix:///var/run/docker.sock``;
            when omitted the SDK's DOCKER_HOST/TLS environment is used.
        :param timeout: Per-request timeout in seconds.
        :param api: A preconfigured APIClient, mainly for tests.
        """
        self.base_url = base_url
        self.timeout = timeout
        self._api = api

    @property
    def api(self) -> docker.APIClient:
        if self._api is None:
            try:
                if self.base_url:
                    self._api = docker.APIClient(base_url=self.base_url, timeout=self.timeout)
                else:
                    self._api = docker.from_env(timeout=self.timeout).api
            except DockerException as e:
                raise EngineError(f"Cannot connect to engine: {_explain(e)}") from e
        return self._api

    async def connect(self, attempts: int = 3, backoff: float = 0.5) -> Dict[str, Any]:
        """
        Verifies that the engine answers, retrying the probe a bounded number
        of times. Returns the engine version information.

        :raises EngineError: If the engine is still unreachable after all attempts.
        """
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=backoff, max=10),
            retry=retry_if_exception_type((DockerException, requests.exceptions.RequestException)),
            reraise=True,
        )

        def _probe() -> Dict[str, Any]:
            for attempt in retrying:
                with attempt:
                    self.api.ping()
                    return self.api.version()
            return {}

        try:
            info = await asyncio.to_thread(_probe)
        except (DockerException, requests.exceptions.RequestException) as e:
            raise EngineError(f"Engine unreachable after {attempts} attempts: {_explain(e)}") from e
        logger.info(f"Connected to engine API {info.get('ApiVersion', '?')}")
        return info

    async def _call(self, action: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(functools.partial(fn, *args, **kwargs))
        except NotFound as e:
            raise NotFoundError(f"Failed to {action}: {_explain(e)}") from e
        except APIError as e:
            message = _explain(e)
            if e.status_code == 409 or _OUT_OF_SEQUENCE in message:
                raise ConflictError(f"Failed to {action}: {message}") from e
            raise EngineError(f"Failed to {action}: {message}") from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise EngineError(f"Failed to {action}: {_explain(e)}") from e

    # Services

    async def create_service(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(
            "create service",
            self.api.create_service,
            spec["TaskTemplate"],
            name=spec.get("Name"),
            labels=spec.get("Labels"),
            mode=spec.get("Mode"),
            update_config=spec.get("UpdateConfig"),
            endpoint_spec=spec.get("EndpointSpec"),
            rollback_config=spec.get("RollbackConfig"),
        )

    async def update_service(self, service_id: str, version: int, spec: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replaces the service spec; ``version`` must be the current version index.
        Networks are expected inside ``spec["TaskTemplate"]``.
        """
        result = await self._call(
            "update service",
            self.api.update_service,
            service_id,
            version,
            task_template=spec.get("TaskTemplate"),
            name=spec.get("Name"),
            labels=spec.get("Labels"),
            mode=spec.get("Mode"),
            update_config=spec.get("UpdateConfig"),
            endpoint_spec=spec.get("EndpointSpec"),
            rollback_config=spec.get("RollbackConfig"),
        )
        return result or {}

    async def remove_service(self, service_id: str) -> None:
        await self._call("remove service", self.api.remove_service, service_id)

    async def list_services(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self._call("list services", self.api.services, filters=filters)

    async def get_service(self, service_id: str) -> Dict[str, Any]:
        return await self._call("inspect service", self.api.inspect_service, service_id)

    async def list_tasks(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self._call("list tasks", self.api.tasks, filters=filters)

    # Logs

    async def get_container_logs(self, container_id: str, options: Dict[str, Any]) -> bytes:
        return await self._call(
            "fetch container logs",
            self.api.logs,
            container_id,
            stdout=True,
            stderr=True,
            stream=False,
            timestamps=options.get("timestamps", False),
            tail=options.get("tail", "all"),
            since=options.get("since"),
        )

    async def get_service_logs(self, service_id: str, options: Dict[str, Any]) -> List[bytes]:
        """
        Fetches aggregated service logs. The SDK returns a lazy stream, which
        is drained inside the worker thread.
        """
        def _drain(*args, **kw) -> List[bytes]:
            result = self.api.service_logs(*args, **kw)
            if isinstance(result, (bytes, str)):
                return [result]
            return list(result)

        kwargs = {
            "stdout": True,
            "stderr": True,
            "follow": False,
            "timestamps": options.get("timestamps", False),
            "tail": options.get("tail", "all"),
        }
        if options.get("since") is not None:
            kwargs["since"] = options["since"]
        return await self._call("fetch service logs", _drain, service_id, **kwargs)

    # Networks

    async def create_network(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(
            "create network",
            self.api.create_network,
            spec["Name"],
            driver=spec.get("Driver"),
            options=spec.get("Options") or None,
            labels=spec.get("Labels") or None,
            internal=spec.get("Internal", False),
            enable_ipv6=spec.get("EnableIPv6", False),
            attachable=spec.get("Attachable"),
            ingress=spec.get("Ingress"),
        )

    async def list_networks(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self._call("list networks", self.api.networks, filters=filters)

    async def get_network(self, network_id: str) -> Dict[str, Any]:
        return await self._call("inspect network", self.api.inspect_network, network_id)

    async def remove_network(self, network_id: str) -> None:
        await self._call("remove network", self.api.remove_network, network_id)
