"""Shared exception definitions for domain lifecycle operations."""

from __future__ import annotations

from typing import Iterable, Optional


class LifecycleError(RuntimeError):
    """Base error for lifecycle failures; carries the failing step and domain name."""

    def __init__(self, message: str, *, step: Optional[str] = None, name: Optional[str] = None):
        super().__init__(message)
        self.step = step
        self.name = name


class HypervisorConnectionError(LifecycleError, ConnectionError):
    def __init__(self, uri: Optional[str], reason: object = None):
        target = uri or "<default>"
        message = f"Unable to connect to hypervisor '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, step="connect")
        self.uri = uri


class DomainNotFoundError(LifecycleError):
    def __init__(self, name: str):
        super().__init__(f"Domain '{name}' not found", step="lookup", name=name)


class DomainBusyError(LifecycleError):
    def __init__(self, name: str, state: object):
        super().__init__(
            f"Domain '{name}' is {state}; it must be stopped before it can be undefined",
            step="undefine",
            name=name,
        )
        self.state = state


class AlreadyActiveError(LifecycleError):
    def __init__(self, name: str):
        super().__init__(f"Domain '{name}' is already active", step="create", name=name)


class DescriptorParseError(LifecycleError):
    def __init__(self, reason: object, *, name: Optional[str] = None):
        super().__init__(f"Invalid domain descriptor: {reason}", step="parse", name=name)


class DescriptorMismatchError(LifecycleError):
    def __init__(self, name: str, declared: Optional[str]):
        super().__init__(
            f"Descriptor declares domain '{declared}' but '{name}' was requested",
            step="define",
            name=name,
        )
        self.declared = declared


class DomainOperationError(LifecycleError):
    def __init__(self, step: str, name: Optional[str], reason: object):
        super().__init__(f"Failed to {step} domain '{name}': {reason}", step=step, name=name)


def _join_states(states: Iterable[object]) -> str:
    return ", ".join(sorted(str(state) for state in states))


class WaitTimeoutError(LifecycleError, TimeoutError):
    def __init__(self, name: str, targets: Iterable[object], waited: float, last_state: object = None):
        super().__init__(
            f"Timed out after {waited:.1f}s waiting for domain '{name}' to reach "
            f"{_join_states(targets)} (last state: {last_state})",
            step="wait",
            name=name,
        )
        self.waited = waited
        self.last_state = last_state


class NonConvergentStateError(LifecycleError):
    def __init__(self, name: str, state: object, targets: Iterable[object]):
        super().__init__(
            f"Domain '{name}' entered {state} while waiting for {_join_states(targets)}",
            step="wait",
            name=name,
        )
        self.state = state


class WaitCancelledError(LifecycleError):
    def __init__(self, name: str):
        super().__init__(f"Wait for domain '{name}' was cancelled", step="wait", name=name)
