"""
Unit tests for stack volume preparation.
"""
from swarmpilot.MANAGERS.volume_manager import VolumeManager
from swarmpilot.MODELS.stack import StackVolume


def test_stack_volumes_are_namespaced():
    prepared = VolumeManager().prepare_volumes("shop", {
        "data": StackVolume(name="data"),
        "certs": StackVolume(name="corp-certs", external=True),
    })
    assert prepared == {"data": "shop_data", "certs": "corp-certs"}


def test_no_volumes():
    assert VolumeManager().prepare_volumes("shop", None) == {}
