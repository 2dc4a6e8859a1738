"""
Volume preparation for stacks.
"""
from typing import Dict, Optional

from ..MODELS.stack import StackVolume, qualified_service_name
from ..UTILS.logging import get_logger

logger = get_logger(__name__, prefix="Stack")


class VolumeManager:
    """
    Works out which engine volumes a stack mounts.

    The engine creates named volumes itself on first mount, so preparation
    makes no engine call.
    """
    def prepare_volumes(self, stack_name: str, volumes: Optional[Dict[str, StackVolume]]) -> Dict[str, str]:
        """
        Prepares the volumes of a stack.

        :param stack_name: Name of the owning stack.
        :param volumes: Stack-level volume declarations keyed by name.
        :return: Mapping of declared volume name to engine volume name.
        """
        prepared = {}
        for key, volume in (volumes or {}).items():
            declared = volume.name or key
            if volume.external:
                prepared[key] = declared
            else:
                # stack-owned volumes are namespaced like services
                prepared[key] = qualified_service_name(stack_name, declared)
            logger.info(f"Volume {key} -> {prepared[key]} ({volume.driver})")
        return prepared
