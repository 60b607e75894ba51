from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Optional

import libvirt


class DomainState(str, Enum):
    DEFINED_STOPPED = "Defined-Stopped"
    RUNNING = "Running"
    PAUSED = "Paused"
    CRASHED = "Crashed"
    IN_SHUTDOWN = "In-Shutdown"
    DESTROYED = "Destroyed"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_label(cls, label: str) -> "DomainState":
        lowered = label.strip().lower()
        for state in cls:
            if state.value.lower() == lowered or state.name.lower() == lowered:
                return state
        raise ValueError(f"Unknown domain state '{label}'")


ACTIVE_STATES: FrozenSet[DomainState] = frozenset(
    {DomainState.RUNNING, DomainState.PAUSED, DomainState.IN_SHUTDOWN}
)

# NOSTATE is transitional: it maps to In-Shutdown so waiters keep polling.
_DOMAIN_STATE_LABELS = {
    getattr(libvirt, "VIR_DOMAIN_NOSTATE", None): DomainState.IN_SHUTDOWN,
    getattr(libvirt, "VIR_DOMAIN_RUNNING", None): DomainState.RUNNING,
    getattr(libvirt, "VIR_DOMAIN_BLOCKED", None): DomainState.RUNNING,
    getattr(libvirt, "VIR_DOMAIN_PAUSED", None): DomainState.PAUSED,
    getattr(libvirt, "VIR_DOMAIN_SHUTDOWN", None): DomainState.IN_SHUTDOWN,
    getattr(libvirt, "VIR_DOMAIN_SHUTOFF", None): DomainState.DEFINED_STOPPED,
    getattr(libvirt, "VIR_DOMAIN_CRASHED", None): DomainState.CRASHED,
    getattr(libvirt, "VIR_DOMAIN_PMSUSPENDED", None): DomainState.PAUSED,
}


def map_domain_state(code: Optional[int]) -> DomainState:
    if code is None:
        return DomainState.IN_SHUTDOWN
    return _DOMAIN_STATE_LABELS.get(code, DomainState.IN_SHUTDOWN)


__all__ = ["ACTIVE_STATES", "DomainState", "map_domain_state"]
