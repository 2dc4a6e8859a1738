"""
The fixed per-container resource allocation.
"""
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict

NANO_CPUS_PER_CPU = 1_000_000_000
MIB = 1024 * 1024
GIB = 1024 * MIB


class ResourceAllocation(BaseModel):
    """
    CPU and memory limits and reservations applied to every container.
    """
    model_config = ConfigDict(frozen=True)

    limit_cpus: float
    limit_memory_bytes: int
    reserved_cpus: float
    reserved_memory_bytes: int

    def to_engine(self) -> Dict[str, Any]:
        """
        Engine form, as written into ``TaskTemplate.Resources``.
        """
        return {
            "Limits": {
                "NanoCPUs": int(self.limit_cpus * NANO_CPUS_PER_CPU),
                "MemoryBytes": self.limit_memory_bytes,
            },
            "Reservations": {
                "NanoCPUs": int(self.reserved_cpus * NANO_CPUS_PER_CPU),
                "MemoryBytes": self.reserved_memory_bytes,
            },
        }

    def to_compose(self) -> Dict[str, Dict[str, str]]:
        """
        Compose form, as stored on stack members.
        """
        return {
            "limits": {
                "cpus": f"{self.limit_cpus:.1f}",
                "memory": _compose_memory(self.limit_memory_bytes),
            },
            "reservations": {
                "cpus": f"{self.reserved_cpus:.2f}",
                "memory": _compose_memory(self.reserved_memory_bytes),
            },
        }


def _compose_memory(size: int) -> str:
    if size % GIB == 0:
        return f"{size // GIB}G"
    return f"{size // MIB}M"


RESOURCE_ALLOCATION = ResourceAllocation(
    limit_cpus=1.0,
    limit_memory_bytes=2 * GIB,
    reserved_cpus=0.25,
    reserved_memory_bytes=512 * MIB,
)
