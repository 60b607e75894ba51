import logging
from typing import Optional
from virt_lifecycle.libvirt.registry import HypervisorRegistry
from virt_lifecycle.core.config import CONFIG_FILE

logger = logging.getLogger(__name__)
_registry: Optional[HypervisorRegistry] = None

def get_registry() -> HypervisorRegistry:
    global _registry
    if _registry is None:
        logger.info("Initializing HypervisorRegistry from %s", CONFIG_FILE)
        _registry = HypervisorRegistry()
        _registry.load_from_yaml(CONFIG_FILE)
    return _registry


def set_registry(registry: Optional[HypervisorRegistry]) -> None:
    """Replace the process-wide registry (tests and embedding applications)."""
    global _registry
    _registry = registry
