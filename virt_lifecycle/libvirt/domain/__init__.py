from ..state import ACTIVE_STATES, DomainState, map_domain_state
from .handle import LibvirtDomain
from .lifecycle import (
    CreateResult,
    DeleteResult,
    DomainLifecycle,
    PowerResult,
    UpdateResult,
    VmEntry,
)

__all__ = [
    "ACTIVE_STATES",
    "CreateResult",
    "DeleteResult",
    "DomainLifecycle",
    "DomainState",
    "LibvirtDomain",
    "PowerResult",
    "UpdateResult",
    "VmEntry",
    "map_domain_state",
]
