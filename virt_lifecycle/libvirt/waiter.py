"""Bounded polling of a domain's state with exponential backoff.

The waiter has three exits: the domain reaches a target state, it reaches a
state from which the target cannot be reached without intervention, or the
wall-clock budget runs out. Checking for the non-convergent states is what
keeps a crashed guest from holding a caller for the full timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Iterable, Iterator, Optional, Union

from ..core.config import WaitSettings
from .errors import NonConvergentStateError, WaitCancelledError, WaitTimeoutError
from .state import DomainState

if TYPE_CHECKING:
    from .domain.handle import LibvirtDomain

logger = logging.getLogger(__name__)

Duration = Union[float, int, timedelta]


@dataclass(frozen=True)
class ExponentialBackoff:
    initial_interval: float = 0.1
    max_interval: float = 2.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        # A zero delay would turn the wait loop into a busy poll.
        if self.initial_interval <= 0:
            raise ValueError(f"initial_interval must be positive, got {self.initial_interval}")
        if self.factor < 1:
            raise ValueError(f"factor must be at least 1, got {self.factor}")
        if self.max_interval < self.initial_interval:
            raise ValueError(
                f"max_interval ({self.max_interval}) must not be below initial_interval ({self.initial_interval})"
            )

    @classmethod
    def from_settings(cls, settings: WaitSettings) -> "ExponentialBackoff":
        return cls(
            initial_interval=settings.initial_interval,
            max_interval=settings.max_interval,
            factor=settings.factor,
        )

    def delays(self) -> Iterator[float]:
        delay = self.initial_interval
        while True:
            yield min(delay, self.max_interval)
            delay = min(delay * self.factor, self.max_interval)


def to_seconds(value: Duration) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def wait_for_state(
    domain: "LibvirtDomain",
    targets: Iterable[DomainState],
    non_convergent: Iterable[DomainState],
    max_duration: Duration,
    *,
    backoff: Optional[ExponentialBackoff] = None,
    cancel_event: Optional[threading.Event] = None,
) -> DomainState:
    """Poll ``domain`` until it reaches one of ``targets`` and return that state.

    Raises NonConvergentStateError as soon as a state in ``non_convergent`` is
    seen, WaitTimeoutError once ``max_duration`` has elapsed, and
    WaitCancelledError when ``cancel_event`` is set.
    """
    target_states = frozenset(targets)
    failure_states = frozenset(non_convergent) - target_states
    budget = max(to_seconds(max_duration), 0.0)
    backoff = backoff or ExponentialBackoff()
    cancel = cancel_event or threading.Event()
    delays = backoff.delays()

    start = time.monotonic()
    deadline = start + budget
    attempt = 0

    while True:
        if cancel.is_set():
            raise WaitCancelledError(domain.name)

        attempt += 1
        state = domain.current_state()
        if state in target_states:
            logger.info(
                "Domain %s reached %s after %d poll(s) (%.2fs)",
                domain.name,
                state,
                attempt,
                time.monotonic() - start,
            )
            return state
        if state in failure_states:
            logger.warning("Domain %s entered %s while waiting; giving up", domain.name, state)
            raise NonConvergentStateError(domain.name, state, target_states)

        now = time.monotonic()
        remaining = deadline - now
        if remaining <= 0:
            logger.warning(
                "Timed out waiting for %s after %.2fs (last state %s)",
                domain.name,
                now - start,
                state,
            )
            raise WaitTimeoutError(domain.name, target_states, now - start, state)

        delay = min(next(delays), remaining)
        logger.debug("Domain %s is %s; polling again in %.2fs", domain.name, state, delay)
        if cancel.wait(delay):
            raise WaitCancelledError(domain.name)


__all__ = ["Duration", "ExponentialBackoff", "to_seconds", "wait_for_state"]
