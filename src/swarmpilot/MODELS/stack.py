"""
Models for multi-service stacks.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .service_spec import PortConfig, UpdateConfig, coerce_environment, coerce_ports


class StackStatus(str, Enum):
    """
    Lifecycle state of a stack.
    """
    DEPLOYING = "deploying"
    RUNNING = "running"
    UPDATING = "updating"
    ERROR = "error"
    STOPPED = "stopped"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StackDeploy(BaseModel):
    """
    The ``deploy`` section of a stack member.
    """
    replicas: Optional[int] = Field(default=None, ge=0, strict=True)
    update_config: Optional[UpdateConfig] = None
    placement_constraints: List[str] = []

    @model_validator(mode="before")
    @classmethod
    def _flatten_placement(cls, data):
        if isinstance(data, dict) and isinstance(data.get("placement"), dict):
            data = dict(data)
            placement = data.pop("placement")
            data.setdefault("placement_constraints", placement.get("constraints") or [])
        return data


class StackService(BaseModel):
    """
    One member service of a stack.

    ``resources`` is accepted from input but always overwritten by the
    resource policy before a stack is stored.
    """
    name: Optional[str] = None
    image: str = Field(min_length=1)
    replicas: int = Field(default=1, ge=0, strict=True)
    ports: List[PortConfig] = []
    environment: List[str] = []
    networks: List[str] = []
    volumes: List[str] = []
    labels: Dict[str, str] = {}
    deploy: Optional[StackDeploy] = None
    resources: Dict[str, Any] = {}

    @model_validator(mode="before")
    @classmethod
    def _replicas_from_deploy(cls, data):
        # deploy.replicas wins when present, as in compose files
        if isinstance(data, dict):
            deploy = data.get("deploy")
            if isinstance(deploy, dict) and deploy.get("replicas") is not None:
                data = dict(data)
                data["replicas"] = deploy["replicas"]
        return data

    @field_validator("image")
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

    @field_validator("networks", mode="before")
    @classmethod
    def _networks(cls, value):
        if isinstance(value, dict):
            return list(value.keys())
        return value or []

    def with_replicas(self, replicas: int) -> "StackService":
        """
        Returns a copy with the replica count set, keeping ``deploy`` in sync.
        """
        update: Dict[str, Any] = {"replicas": replicas}
        if self.deploy is not None:
            update["deploy"] = self.deploy.model_copy(update={"replicas": replicas})
        return self.model_copy(update=update)


class StackNetwork(BaseModel):
    """
    A network declared at stack level.
    """
    name: Optional[str] = None
    driver: str = "overlay"
    external: bool = False
    attachable: bool = True
    labels: Dict[str, str] = {}


class StackVolume(BaseModel):
    """
    A volume declared at stack level.
    """
    name: Optional[str] = None
    driver: str = "local"
    external: bool = False


def _name_members(members: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # Fill each member's name from its key when the definition omits it.
    if not isinstance(members, dict):
        return members
    named = {}
    for key, member in members.items():
        if member is None:
            member = {}
        if isinstance(member, dict):
            member = {**member, "name": member.get("name") or key}
        named[key] = member
    return named


class StackConfig(BaseModel):
    """
    Caller-supplied description of a stack to deploy.
    """
    name: str = Field(min_length=1)
    services: Dict[str, StackService] = Field(min_length=1)
    networks: Optional[Dict[str, StackNetwork]] = None
    volumes: Optional[Dict[str, StackVolume]] = None
    env: Optional[Dict[str, str]] = None
    version: str = "3.8"

    @model_validator(mode="before")
    @classmethod
    def _fill_names(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            for section in ("services", "networks", "volumes"):
                data[section] = _name_members(data.get(section))
        return data

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class StackPatch(BaseModel):
    """
    Partial update of a deployed stack.
    """
    services: Optional[Dict[str, StackService]] = None
    networks: Optional[Dict[str, StackNetwork]] = None
    volumes: Optional[Dict[str, StackVolume]] = None
    env: Optional[Dict[str, str]] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_names(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            for section in ("services", "networks", "volumes"):
                if data.get(section) is not None:
                    data[section] = _name_members(data[section])
        return data


class Stack(BaseModel):
    """
    A deployed stack, as held in the stack registry.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    version: str = "3.8"
    services: Dict[str, StackService] = {}
    networks: Optional[Dict[str, StackNetwork]] = None
    volumes: Optional[Dict[str, StackVolume]] = None
    env: Optional[Dict[str, str]] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    status: StackStatus = StackStatus.DEPLOYING

    def qualified_name(self, service_name: str) -> str:
        """
        The engine-side name of a member service: ``{stack}_{service}``.
        """
        return qualified_service_name(self.name, service_name)

    def env_list(self) -> List[str]:
        return coerce_environment(self.env)

    def update_services(self, services: Dict[str, StackService]) -> None:
        self.services = services
        self.updated_at = _now()

    def update_status(self, status: StackStatus) -> None:
        self.status = status
        self.updated_at = _now()


def qualified_service_name(stack_name: str, service_name: str) -> str:
    return f"{stack_name}_{service_name}"
