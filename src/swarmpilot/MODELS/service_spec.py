"""
Models describing the desired state of a single service.
"""
import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..UTILS.timestamps import parse_duration_ns

_PORT_STRING = re.compile(
    r'^(?:(?P<published>\d+):)?(?P<target>\d+)(?:/(?P<protocol>tcp|udp|sctp))?$'
)


class PortConfig(BaseModel):
    """
    A published port of a service.
    """
    target: int = Field(gt=0, le=65535)
    published: Optional[int] = Field(default=None, gt=0, le=65535)
    protocol: Literal["tcp", "udp", "sctp"] = "tcp"
    publish_mode: Literal["ingress", "host"] = "ingress"

    @classmethod
    def parse(cls, value: Union[str, int, Dict[str, Any], "PortConfig"]) -> "PortConfig":
        """
        Accepts ``"8080:80"``, ``"80"``, ``"53:53/udp"``, a bare container port,
        or a mapping with ``target``/``published``/``protocol`` keys.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid port: {value!r}")
        if isinstance(value, int):
            return cls(target=value)
        if isinstance(value, str):
            match = _PORT_STRING.match(value.strip())
            if not match:
                raise ValueError(f"Invalid port: {value!r}")
            published = match.group("published")
            return cls(
                target=int(match.group("target")),
                published=int(published) if published else None,
                protocol=match.group("protocol") or "tcp",
            )
        if isinstance(value, dict):
            data = dict(value)
            if "publishMode" in data and "publish_mode" not in data:
                data["publish_mode"] = data.pop("publishMode")
            if "mode" in data and "publish_mode" not in data:
                data["publish_mode"] = data.pop("mode")
            return cls(**data)
        raise ValueError(f"Invalid port: {value!r}")

    def to_engine(self) -> Dict[str, Any]:
        port = {
            "Protocol": self.protocol,
            "TargetPort": self.target,
            "PublishMode": self.publish_mode,
        }
        if self.published is not None:
            port["PublishedPort"] = self.published
        return port


class MountConfig(BaseModel):
    """
    A volume or bind mount of a service's containers.
    """
    type: Literal["volume", "bind"] = "volume"
    source: Optional[str] = None
    target: str = Field(min_length=1)
    read_only: bool = False

    @field_validator("target")
    @classmethod
    def _absolute_target(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"mount target must be an absolute path: {value!r}")
        return value

    @classmethod
    def parse(cls, value: Union[str, Dict[str, Any], "MountConfig"]) -> "MountConfig":
        """
        Accepts compose short syntax (``"data:/var/lib/data"``,
        ``"/srv/conf:/etc/app:ro"``, ``"/tmp/cache"``) or a mapping.

        Sources that look like paths are bind mounts; anything else names a volume.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(**value)
        if not isinstance(value, str):
            raise ValueError(f"Invalid mount: {value!r}")
        parts = value.split(":")
        if len(parts) == 1:
            return cls(target=parts[0])
        if len(parts) > 3 or not parts[0]:
            raise ValueError(f"Invalid mount: {value!r}")
        modes = parts[2].split(",") if len(parts) == 3 else []
        source = parts[0]
        return cls(
            type="bind" if source.startswith(("/", ".", "~")) else "volume",
            source=source,
            target=parts[1],
            read_only="ro" in modes,
        )

    def to_engine(self) -> Dict[str, Any]:
        mount = {"Type": self.type, "Target": self.target, "ReadOnly": self.read_only}
        if self.source:
            mount["Source"] = self.source
        return mount


class NetworkAttachment(BaseModel):
    """
    A pass-through attachment to an existing network, as the engine stores it.
    """
    target: str = Field(min_length=1)
    aliases: List[str] = []

    def to_engine(self) -> Dict[str, Any]:
        attachment = {"Target": self.target}
        if self.aliases:
            attachment["Aliases"] = list(self.aliases)
        return attachment


class NetworkOptions(BaseModel):
    """
    Creation options for a network that is materialized on demand.
    """
    driver: str = "overlay"
    attachable: bool = True
    internal: bool = False
    enable_ipv6: bool = False
    labels: Dict[str, str] = {}
    options: Dict[str, str] = {}
    aliases: List[str] = []


class UpdateConfig(BaseModel):
    """
    Rolling update behaviour of a service.
    """
    parallelism: int = Field(default=1, ge=0)
    delay: Optional[int] = None  # nanoseconds
    failure_action: Literal["pause", "continue", "rollback"] = "pause"
    order: Literal["stop-first", "start-first"] = "stop-first"

    @field_validator("delay", mode="before")
    @classmethod
    def _parse_delay(cls, value):
        return parse_duration_ns(value)

    def to_engine(self) -> Dict[str, Any]:
        config = {
            "Parallelism": self.parallelism,
            "FailureAction": self.failure_action,
            "Order": self.order,
        }
        if self.delay is not None:
            config["Delay"] = self.delay
        return config


def coerce_ports(value: Any) -> List[PortConfig]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError("ports must be a list")
    return [PortConfig.parse(p) for p in value]


def coerce_mounts(value: Any) -> List[MountConfig]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError("mounts must be a list")
    return [MountConfig.parse(m) for m in value]


def coerce_environment(value: Any) -> List[str]:
    """
    Environment as an ordered ``KEY=VALUE`` list; mappings are flattened.
    """
    if value is None:
        return []
    if isinstance(value, dict):
        return [f"{k}={'' if v is None else v}" for k, v in value.items()]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ValueError("environment must be a list of KEY=VALUE strings or a mapping")


class ServiceSpec(BaseModel):
    """
    Desired state of one deployable service.

    ``networks`` are names or ids resolved through the network registrar and
    created when absent; ``network_attachments`` are passed to the engine as-is.
    """
    name: str = Field(min_length=1)
    image: str = Field(min_length=1)
    replicas: int = Field(default=1, ge=0, strict=True)
    ports: List[PortConfig] = []
    environment: List[str] = []
    labels: Dict[str, str] = {}
    networks: List[str] = []
    network_attachments: List[NetworkAttachment] = []
    network_options: Dict[str, NetworkOptions] = {}
    update_config: Optional[UpdateConfig] = None
    placement_constraints: List[str] = []
    mounts: List[MountConfig] = []

    @field_validator("name", "image")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("ports", mode="before")
    @classmethod
    def _ports(cls, value):
        return coerce_ports(value)

    @field_validator("environment", mode="before")
    @classmethod
    def _environment(cls, value):
        return coerce_environment(value)

    @field_validator("mounts", mode="before")
    @classmethod
    def _mounts(cls, value):
        return coerce_mounts(value)


class ServicePatch(BaseModel):
    """
    A partial update; only fields that are set are applied.
    """
    image: Optional[str] = Field(default=None, min_length=1)
    replicas: Optional[int] = Field(default=None, ge=0, strict=True)
    ports: Optional[List[PortConfig]] = None
    environment: Optional[List[str]] = None
    labels: Optional[Dict[str, str]] = None
    networks: Optional[List[str]] = None
    network_attachments: Optional[List[NetworkAttachment]] = None
    network_options: Dict[str, NetworkOptions] = {}
    update_config: Optional[UpdateConfig] = None
    placement_constraints: Optional[List[str]] = None
    mounts: Optional[List[MountConfig]] = None

    @field_validator("ports", mode="before")
    @classmethod
    def _ports(cls, value):
        return None if value is None else coerce_ports(value)

    @field_validator("environment", mode="before")
    @classmethod
    def _environment(cls, value):
        return None if value is None else coerce_environment(value)

    @field_validator("mounts", mode="before")
    @classmethod
    def _mounts(cls, value):
        return None if value is None else coerce_mounts(value)

    def touches_networks(self) -> bool:
        return self.networks is not None or self.network_attachments is not None
