"""
Shared fixtures: an in-memory stand-in for the cluster client.
"""
import asyncio
import copy
import itertools
from typing import Any, Dict, List, Optional

import pytest

from swarmpilot.errors import ConflictError, EngineError, NotFoundError
from swarmpilot.MANAGERS.service_orchestrator import ServiceOrchestrator
from swarmpilot.MANAGERS.stack_orchestrator import StackOrchestrator


class FakeClusterClient:
    """
    Minimal engine: services with version tokens, running tasks, networks and
    canned logs. Failures are injected per name or container id.
    """

    def __init__(self):
        self.services: Dict[str, Dict[str, Any]] = {}
        self.tasks: Dict[str, List[Dict[str, Any]]] = {}
        self.networks: Dict[str, Dict[str, Any]] = {}
        self.container_logs: Dict[str, bytes] = {}
        self.calls: List[tuple] = []
        self.updates: List[Dict[str, Any]] = []
        self.log_requests: List[Dict[str, Any]] = []
        self.fail_create = set()
        self.fail_remove = set()
        self.fail_logs = set()
        self.fail_network = set()
        self.log_delay = 0.01
        self.in_flight = 0
        self.max_in_flight = 0
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    # helpers

    def _timestamp(self) -> str:
        # distinct, increasing creation times with nanosecond precision
        tick = next(self._clock)
        hours, rest = divmod(tick, 3600)
        return f"2024-05-01T{hours:02d}:{rest // 60:02d}:{rest % 60:02d}.123456789Z"

    def _resolve(self, service_id: str) -> Dict[str, Any]:
        if service_id in self.services:
            return self.services[service_id]
        for service in self.services.values():
            if service["Spec"].get("Name") == service_id:
                return service
        raise NotFoundError(f"service {service_id} not found")

    def add_task(self, service_id: str, state: str = "running", created_at: Optional[str] = None,
                 task_id: Optional[str] = None, container_id: Optional[str] = "auto") -> Dict[str, Any]:
        service = self._resolve(service_id)
        number = next(self._ids)
        task_id = task_id or f"task{number:04d}"
        if container_id == "auto":
            container_id = f"ctr-{task_id}"
        task = {
            "ID": task_id,
            "ServiceID": service["ID"],
            "NodeID": f"node{number % 3}",
            "Slot": len(self.tasks[service["ID"]]) + 1,
            "CreatedAt": created_at or self._timestamp(),
            "UpdatedAt": created_at or self._timestamp(),
            "DesiredState": "running" if state == "running" else "shutdown",
            "Status": {"State": state, "ContainerStatus": {"ContainerID": container_id or ""}},
        }
        self.tasks[service["ID"]].append(task)
        return task

    def _sync_tasks(self, service: Dict[str, Any]) -> None:
        replicated = (service["Spec"].get("Mode") or {}).get("Replicated")
        if replicated is None:
            return
        running = [t for t in self.tasks[service["ID"]] if t["Status"]["State"] == "running"]
        for _ in range(replicated.get("Replicas", 0) - len(running)):
            self.add_task(service["ID"])
        for task in running[replicated.get("Replicas", 0):]:
            task["Status"]["State"] = "shutdown"
            task["DesiredState"] = "shutdown"

    def service_by_name(self, name: str) -> Dict[str, Any]:
        return self._resolve(name)

    # cluster client surface

    async def connect(self, attempts: int = 3, backoff: float = 0.5) -> Dict[str, Any]:
        return {"ApiVersion": "1.45"}

    async def create_service(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        self.calls.append(("create_service", spec["Name"]))
        if spec["Name"] in self.fail_create:
            raise EngineError(f"Failed to create service: rejected {spec['Name']}")
        if any(s["Spec"]["Name"] == spec["Name"] for s in self.services.values()):
            raise ConflictError(f"Failed to create service: name {spec['Name']} in use")
        service_id = f"svc{next(self._ids):04d}"
        self.services[service_id] = {
            "ID": service_id,
            "Version": {"Index": 1},
            "Spec": copy.deepcopy(spec),
        }
        self.tasks[service_id] = []
        self._sync_tasks(self.services[service_id])
        return {"ID": service_id, "Warnings": None}

    async def update_service(self, service_id: str, version: int, spec: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        service = self._resolve(service_id)
        self.calls.append(("update_service", service["Spec"]["Name"]))
        if version != service["Version"]["Index"]:
            raise ConflictError("Failed to update service: update out of sequence")
        if "Networks" in spec:
            raise EngineError("Failed to update service: networks must be migrated to TaskSpec before being changed")
        service["Spec"] = copy.deepcopy(spec)
        service["Version"]["Index"] += 1
        self.updates.append(copy.deepcopy(spec))
        self._sync_tasks(service)
        return {"Warnings": None}

    async def remove_service(self, service_id: str) -> None:
        await asyncio.sleep(0)
        service = self._resolve(service_id)
        self.calls.append(("remove_service", service["Spec"]["Name"]))
        if service["Spec"]["Name"] in self.fail_remove:
            raise EngineError(f"Failed to remove service: {service['Spec']['Name']} is busy")
        del self.services[service["ID"]]
        self.tasks.pop(service["ID"], None)

    async def list_services(self, filters=None) -> List[Dict[str, Any]]:
        return [copy.deepcopy(s) for s in self.services.values()]

    async def get_service(self, service_id: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        return copy.deepcopy(self._resolve(service_id))

    async def list_tasks(self, filters=None) -> List[Dict[str, Any]]:
        wanted = (filters or {}).get("service") or []
        tasks = []
        for service_id, service_tasks in self.tasks.items():
            if not wanted or service_id in wanted:
                tasks.extend(copy.deepcopy(service_tasks))
        return tasks

    async def get_container_logs(self, container_id: str, options: Dict[str, Any]) -> bytes:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.log_requests.append({"container": container_id, **options})
            await asyncio.sleep(self.log_delay)
            if container_id in self.fail_logs:
                raise EngineError(f"Failed to fetch container logs: {container_id} is gone")
            return self.container_logs.get(container_id, f"hello from {container_id}\n".encode())
        finally:
            self.in_flight -= 1

    async def get_service_logs(self, service_id: str, options: Dict[str, Any]) -> List[bytes]:
        service = self._resolve(service_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.log_requests.append({"service": service["ID"], **options})
            await asyncio.sleep(self.log_delay)
            if service["Spec"]["Name"] in self.fail_logs:
                raise EngineError(f"Failed to fetch service logs: {service['Spec']['Name']}")
            # the SDK hands back chunks with stream headers already stripped
            return [f"{service['Spec']['Name']} line {i}\n".encode() for i in range(2)]
        finally:
            self.in_flight -= 1

    async def create_network(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        self.calls.append(("create_network", spec["Name"]))
        if spec["Name"] in self.fail_network:
            raise EngineError(f"Failed to create network: {spec['Name']}")
        network_id = f"net{next(self._ids):04d}{'0' * 20}"
        self.networks[network_id] = {
            "Id": network_id,
            "Name": spec["Name"],
            "Driver": spec.get("Driver"),
            "Scope": "swarm",
            "Attachable": spec.get("Attachable"),
            "Internal": spec.get("Internal", False),
            "Labels": spec.get("Labels") or {},
        }
        return {"Id": network_id, "Warning": ""}

    async def list_networks(self, filters=None) -> List[Dict[str, Any]]:
        filters = filters or {}
        networks = list(self.networks.values())
        if "name" in filters:
            # the engine matches names by substring
            networks = [n for n in networks if any(f in n["Name"] for f in filters["name"])]
        if "id" in filters:
            networks = [n for n in networks if any(n["Id"].startswith(f) for f in filters["id"])]
        return copy.deepcopy(networks)

    async def get_network(self, network_id: str) -> Dict[str, Any]:
        if network_id not in self.networks:
            raise NotFoundError(f"network {network_id} not found")
        return copy.deepcopy(self.networks[network_id])

    async def remove_network(self, network_id: str) -> None:
        if network_id not in self.networks:
            raise NotFoundError(f"network {network_id} not found")
        del self.networks[network_id]


@pytest.fixture
def engine():
    return FakeClusterClient()


@pytest.fixture
def services(engine):
    return ServiceOrchestrator(engine)


@pytest.fixture
def stacks(services):
    return StackOrchestrator(services)
