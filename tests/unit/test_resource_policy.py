"""
Unit tests for the resource policy enforcer.
"""
from swarmpilot.MANAGERS.resource_policy import ResourcePolicyEnforcer
from swarmpilot.MODELS.resources import GIB, MIB, RESOURCE_ALLOCATION
from swarmpilot.MODELS.stack import StackService


ENGINE_RESOURCES = {
    "Limits": {"NanoCPUs": 1_000_000_000, "MemoryBytes": 2 * GIB},
    "Reservations": {"NanoCPUs": 250_000_000, "MemoryBytes": 512 * MIB},
}


class TestEngineSpecs:
    """Tests for ResourcePolicyEnforcer.apply."""

    def test_allocation_constants(self):
        assert RESOURCE_ALLOCATION.to_engine() == ENGINE_RESOURCES
        assert RESOURCE_ALLOCATION.to_compose() == {
            "limits": {"cpus": "1.0", "memory": "2G"},
            "reservations": {"cpus": "0.25", "memory": "512M"},
        }

    def test_overrides_caller_resources(self):
        spec = {
            "Name": "web",
            "TaskTemplate": {
                "ContainerSpec": {"Image": "nginx"},
                "Resources": {"Limits": {"NanoCPUs": 16_000_000_000, "MemoryBytes": 64 * GIB}},
            },
        }
        result = ResourcePolicyEnforcer.apply(spec)
        assert result["TaskTemplate"]["Resources"] == ENGINE_RESOURCES
        assert result["TaskTemplate"]["ContainerSpec"] == {"Image": "nginx"}

    def test_does_not_mutate_input(self):
        spec = {"Name": "web", "TaskTemplate": {"ContainerSpec": {"Image": "nginx"}}}
        ResourcePolicyEnforcer.apply(spec)
        assert "Resources" not in spec["TaskTemplate"]

    def test_total_on_empty_specs(self):
        assert ResourcePolicyEnforcer.apply({})["TaskTemplate"]["Resources"] == ENGINE_RESOURCES
        assert ResourcePolicyEnforcer.apply(None)["TaskTemplate"]["Resources"] == ENGINE_RESOURCES
        weird = ResourcePolicyEnforcer.apply({"TaskTemplate": "garbage"})
        assert weird["TaskTemplate"] == {"Resources": ENGINE_RESOURCES}

    def test_idempotent(self):
        once = ResourcePolicyEnforcer.apply({"Name": "web"})
        assert ResourcePolicyEnforcer.apply(once) == once


class TestStackMembers:
    """Tests for member-level enforcement."""

    def test_member_resources_replaced(self):
        member = StackService(image="nginx", resources={"limits": {"cpus": "8", "memory": "32G"}})
        enforced = ResourcePolicyEnforcer.apply_to_member(member)
        assert enforced.resources == RESOURCE_ALLOCATION.to_compose()
        assert member.resources == {"limits": {"cpus": "8", "memory": "32G"}}
        assert enforced.image == "nginx"

    def test_members_map(self):
        members = {"web": StackService(image="nginx"), "db": StackService(image="postgres:13")}
        enforced = ResourcePolicyEnforcer.apply_to_members(members)
        assert set(enforced) == {"web", "db"}
        assert all(m.resources == RESOURCE_ALLOCATION.to_compose() for m in enforced.values())
        assert ResourcePolicyEnforcer.apply_to_members(None) == {}
