"""
Replica enumeration and log aggregation for services.
"""
from typing import Any, Dict, List, Optional, Tuple

from ..CLIENT.cluster_client import ClusterClient
from ..errors import NotFoundError, OrchestrationError, ValidationError
from ..MODELS.replica import (
    BulkLogMetadata,
    BulkLogOptions,
    BulkLogResult,
    LogOptions,
    LogResult,
    Replica,
    ReplicaLogResult,
    ReplicaSet,
)
from ..UTILS.batching import run_in_batches
from ..UTILS.log_stream import decode_log_stream
from ..UTILS.logging import get_logger
from ..UTILS.timestamps import parse_engine_timestamp

logger = get_logger(__name__, prefix="Logs")

MAX_TAIL_LINES = 1000
ADVISORY_REPLICA_THRESHOLD = 10
DEFAULT_BULK_CONCURRENCY = 5
MAX_BULK_CONCURRENCY = 10
DEFAULT_BULK_TAIL = 100


def clamp_tail(tail: Optional[int], default: int = MAX_TAIL_LINES) -> int:
    """
    Effective number of log lines to request, never above MAX_TAIL_LINES.
    """
    if tail is None:
        return min(default, MAX_TAIL_LINES)
    return max(1, min(tail, MAX_TAIL_LINES))


def clamp_concurrency(max_concurrent: Optional[int]) -> int:
    if max_concurrent is None:
        return DEFAULT_BULK_CONCURRENCY
    return max(1, min(max_concurrent, MAX_BULK_CONCURRENCY))


class ReplicaLogAggregator:
    """
    Enumerates the tasks of a service and fetches their logs.

    Replica indices are display ordinals: running tasks sorted by creation
    time, recomputed on every call. Scaling between two calls can remap an
    index to a different task; the task id is the stable handle.
    """
    def __init__(self, client: ClusterClient):
        self.client = client

    async def _service_and_tasks(self, service_id: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        service = await self.client.get_service(service_id)
        engine_id = service.get("ID", service_id)
        tasks = await self.client.list_tasks(filters={"service": [engine_id]})
        return service, [t for t in tasks if t.get("ServiceID", engine_id) == engine_id]

    @staticmethod
    def index_running(tasks: List[Dict[str, Any]]) -> List[Replica]:
        """
        Assigns replica indices 0..n-1 to running tasks by ascending creation
        time, ties broken by task id.
        """
        running = [t for t in tasks if (t.get("Status") or {}).get("State") == "running"]
        running.sort(key=lambda t: (parse_engine_timestamp(t.get("CreatedAt")), t.get("ID", "")))
        replicas = []
        for index, task in enumerate(running):
            status = task.get("Status") or {}
            container = status.get("ContainerStatus") or {}
            replicas.append(Replica(
                index=index,
                task_id=task.get("ID", ""),
                node_id=task.get("NodeID"),
                state=status.get("State"),
                desired_state=task.get("DesiredState"),
                container_id=container.get("ContainerID") or None,
                slot=task.get("Slot"),
                created_at=task.get("CreatedAt"),
                updated_at=task.get("UpdatedAt"),
            ))
        return replicas

    @staticmethod
    def desired_replicas(service: Dict[str, Any], tasks: List[Dict[str, Any]]) -> int:
        mode = (service.get("Spec") or {}).get("Mode") or {}
        replicated = mode.get("Replicated")
        if replicated is not None:
            return int(replicated.get("Replicas", 0) or 0)
        return sum(1 for t in tasks if t.get("DesiredState") == "running")

    @staticmethod
    def _service_name(service: Dict[str, Any], fallback: str) -> str:
        return (service.get("Spec") or {}).get("Name") or fallback

    async def get_replicas(self, service_id: str) -> ReplicaSet:
        """
        Lists the running replicas of a service with their indices.
        """
        service, tasks = await self._service_and_tasks(service_id)
        replicas = self.index_running(tasks)
        return ReplicaSet(
            service_id=service.get("ID", service_id),
            service_name=self._service_name(service, service_id),
            total_desired=self.desired_replicas(service, tasks),
            running_count=len(replicas),
            replicas=replicas,
        )

    @staticmethod
    def _select(replicas: List[Replica], options: LogOptions) -> Replica:
        if options.task_id:
            for replica in replicas:
                if replica.task_id == options.task_id:
                    return replica
            matches = [r for r in replicas if r.task_id.startswith(options.task_id)]
            if len(matches) > 1:
                raise ValidationError(
                    f"Task prefix {options.task_id} is ambiguous: matches {len(matches)} running tasks"
                )
            if matches:
                return matches[0]
            raise NotFoundError(f"Task {options.task_id} is not a running task of this service")
        for replica in replicas:
            if replica.index == options.replica_index:
                return replica
        raise NotFoundError(
            f"Replica index {options.replica_index} not found "
            f"({len(replicas)} running replicas)"
        )

    async def _replica_logs(self, replica: Replica, tail: int, since: Optional[int], timestamps: bool) -> str:
        if not replica.container_id:
            raise NotFoundError(f"Task {replica.task_id} has no container yet")
        options = {"tail": tail, "timestamps": timestamps}
        if since is not None:
            options["since"] = since
        payload = await self.client.get_container_logs(replica.container_id, options)
        return decode_log_stream(payload)

    async def get_logs(self, service_id: str, options: Optional[LogOptions] = None) -> LogResult:
        """
        Fetches logs of one task (by task id or replica index) or of the whole
        service. The tail is clamped to MAX_TAIL_LINES; a service with many
        running replicas and no explicit tail gets an advisory note.

        :raises NotFoundError: If the service, task or replica index does not resolve.
        :raises ValidationError: If a task id prefix matches more than one running task.
        """
        options = options or LogOptions()
        service, tasks = await self._service_and_tasks(service_id)
        replicas = self.index_running(tasks)
        engine_id = service.get("ID", service_id)
        tail = clamp_tail(options.tail)

        note = None
        if options.tail is None and len(replicas) > ADVISORY_REPLICA_THRESHOLD:
            note = (
                f"Service has {len(replicas)} running replicas; pass a tail value "
                f"or request a single replica to page through logs"
            )

        task_id = None
        replica_index = None
        if options.targets_single_task():
            replica = self._select(replicas, options)
            task_id, replica_index = replica.task_id, replica.index
            logs = await self._replica_logs(replica, tail, options.since, options.timestamps)
        else:
            request = {"tail": tail, "timestamps": options.timestamps}
            if options.since is not None:
                request["since"] = options.since
            logs = decode_log_stream(await self.client.get_service_logs(engine_id, request))

        return LogResult(
            service_id=engine_id,
            service_name=self._service_name(service, service_id),
            logs=logs,
            total_replicas=self.desired_replicas(service, tasks),
            running_replicas=len(replicas),
            task_id=task_id,
            replica_index=replica_index,
            tail_lines=tail,
            note=note,
        )

    async def bulk_logs(self, service_id: str, options: Optional[BulkLogOptions] = None) -> BulkLogResult:
        """
        Fetches per-replica logs for a set of replica indices, at most
        ``max_concurrent`` at a time. Each replica succeeds or fails on its
        own; failures are reported in the results, never raised.
        """
        options = options or BulkLogOptions()
        max_concurrent = clamp_concurrency(options.max_concurrent)
        tail = clamp_tail(options.tail, default=DEFAULT_BULK_TAIL)

        service, tasks = await self._service_and_tasks(service_id)
        replicas = self.index_running(tasks)
        by_index = {replica.index: replica for replica in replicas}

        if options.replica_indexes is None:
            indexes = list(range(min(max_concurrent, len(replicas))))
        else:
            indexes = list(options.replica_indexes)

        async def fetch(index: int) -> ReplicaLogResult:
            replica = by_index.get(index)
            if replica is None:
                return ReplicaLogResult(
                    replica_index=index,
                    status="error",
                    error=f"Replica index {index} not found ({len(replicas)} running replicas)",
                )
            try:
                logs = await self._replica_logs(replica, tail, options.since, options.timestamps)
            except OrchestrationError as e:
                logger.error(f"Logs for replica {index} ({replica.task_id}) failed: {e}")
                return ReplicaLogResult(
                    replica_index=index,
                    status="error",
                    task_id=replica.task_id,
                    node_id=replica.node_id,
                    error=e.message,
                )
            return ReplicaLogResult(
                replica_index=index,
                status="success",
                task_id=replica.task_id,
                node_id=replica.node_id,
                logs=logs,
            )

        results = await run_in_batches(indexes, max_concurrent, fetch)

        note = None
        if len(replicas) > len(indexes):
            note = (
                f"Showing {len(indexes)} of {len(replicas)} running replicas; "
                f"request further replica indexes for the rest"
            )

        return BulkLogResult(
            service_id=service.get("ID", service_id),
            service_name=self._service_name(service, service_id),
            total_replicas=len(replicas),
            requested_replicas=len(indexes),
            results=results,
            metadata=BulkLogMetadata(max_concurrent=max_concurrent, tail_lines=tail, note=note),
        )
