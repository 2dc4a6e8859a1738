"""
Models for replica enumeration and log retrieval.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..UTILS.timestamps import to_unix_seconds


class LogOptions(BaseModel):
    """
    Options for a single logs request. ``task_id`` wins over ``replica_index``.
    """
    tail: Optional[int] = Field(default=None, ge=1)
    since: Optional[int] = None  # Unix seconds
    timestamps: bool = False
    replica_index: Optional[int] = Field(default=None, ge=0)
    task_id: Optional[str] = None

    @field_validator("since", mode="before")
    @classmethod
    def _since(cls, value: Union[str, int, float, datetime, None]):
        return to_unix_seconds(value)

    def targets_single_task(self) -> bool:
        return bool(self.task_id) or self.replica_index is not None


class BulkLogOptions(BaseModel):
    """
    Options for a bulk per-replica logs request.
    """
    replica_indexes: Optional[List[int]] = None
    tail: Optional[int] = Field(default=None, ge=1)
    since: Optional[int] = None
    timestamps: bool = False
    max_concurrent: Optional[int] = None

    @field_validator("since", mode="before")
    @classmethod
    def _since(cls, value):
        return to_unix_seconds(value)

    @field_validator("replica_indexes")
    @classmethod
    def _indexes(cls, value):
        if value is not None and any(i < 0 for i in value):
            raise ValueError("replica indexes must be non-negative")
        return value


class Replica(BaseModel):
    """
    One running task of a service, with its display ordinal.

    ``index`` is recomputed on every query; ``task_id`` is the stable handle.
    """
    index: int
    task_id: str
    node_id: Optional[str] = None
    state: Optional[str] = None
    desired_state: Optional[str] = None
    container_id: Optional[str] = None
    slot: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ReplicaSet(BaseModel):
    service_id: str
    service_name: str
    total_desired: int
    running_count: int
    replicas: List[Replica] = []


class LogResult(BaseModel):
    """
    Logs of a whole service or of one of its tasks.
    """
    service_id: str
    service_name: str
    logs: str
    total_replicas: int
    running_replicas: int
    task_id: Optional[str] = None
    replica_index: Optional[int] = None
    tail_lines: int
    note: Optional[str] = None


class ReplicaLogResult(BaseModel):
    replica_index: int
    status: Literal["success", "error"]
    task_id: Optional[str] = None
    node_id: Optional[str] = None
    logs: Optional[str] = None
    error: Optional[str] = None


class BulkLogMetadata(BaseModel):
    max_concurrent: int
    tail_lines: int
    note: Optional[str] = None


class BulkLogResult(BaseModel):
    service_id: str
    service_name: str
    total_replicas: int
    requested_replicas: int
    results: List[ReplicaLogResult] = []
    metadata: BulkLogMetadata

    @property
    def failed(self) -> List[ReplicaLogResult]:
        return [r for r in self.results if r.status == "error"]


class ServiceLogEntry(BaseModel):
    """
    One member's slot in a stack-wide logs result.
    """
    status: Literal["success", "error"]
    service_name: str
    configured_replicas: Optional[int] = None
    logs: Optional[LogResult] = None
    error: Optional[str] = None


class StackLogsResult(BaseModel):
    stack_name: str
    services: Dict[str, ServiceLogEntry] = {}
