"""
Enforcement of the fixed per-container resource allocation.
"""
import copy
from typing import Any, Dict

from ..MODELS.resources import RESOURCE_ALLOCATION, ResourceAllocation
from ..MODELS.stack import StackService


class ResourcePolicyEnforcer:
    """
    Rewrites any resource specification into the platform allocation.

    Every method is pure, total and idempotent: it returns a new object whose
    resource block equals the allocation and leaves all other fields alone.
    Caller-supplied resources are discarded, never merged.
    """
    allocation: ResourceAllocation = RESOURCE_ALLOCATION

    @classmethod
    def apply(cls, spec: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalizes an engine service spec.

        :param spec: Engine spec with (or without) a ``TaskTemplate`` section.
        :return: A deep copy with ``TaskTemplate.Resources`` set to the allocation.
        """
        normalized = copy.deepcopy(spec) if spec else {}
        task_template = normalized.get("TaskTemplate")
        if not isinstance(task_template, dict):
            task_template = {}
            normalized["TaskTemplate"] = task_template
        task_template["Resources"] = cls.allocation.to_engine()
        return normalized

    @classmethod
    def apply_to_member(cls, member: StackService) -> StackService:
        """
        Normalizes one stack member.
        """
        return member.model_copy(update={"resources": cls.allocation.to_compose()}, deep=True)

    @classmethod
    def apply_to_members(cls, members: Dict[str, StackService]) -> Dict[str, StackService]:
        """
        Normalizes every member of a stack service map.
        """
        return {name: cls.apply_to_member(member) for name, member in (members or {}).items()}
