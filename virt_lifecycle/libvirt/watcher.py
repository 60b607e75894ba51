"""Polling watcher that reports a domain's state once per tick."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi.concurrency import run_in_threadpool

from .connection import ConnectionFactory, open_connection
from .domain.handle import LibvirtDomain
from .state import DomainState

logger = logging.getLogger(__name__)

EventSink = Callable[[Dict[str, Any]], None]

_watch_tasks: dict[tuple[str, str], asyncio.Task[None]] = {}


@dataclass(frozen=True)
class DomainStateEvent:
    name: str
    state: DomainState
    hypervisor: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": "domain_state",
            "hypervisor": self.hypervisor,
            "name": self.name,
            "state": str(self.state),
            "timestamp": self.timestamp,
        }


class DomainStateWatcher:
    """Reads one domain's state over a short-lived connection on every tick."""

    def __init__(
        self,
        uri: Optional[str],
        name: str,
        *,
        hypervisor: Optional[str] = None,
        connection_factory: ConnectionFactory = open_connection,
    ) -> None:
        self.uri = uri
        self.name = name
        self.hypervisor = hypervisor
        self._connection_factory = connection_factory

    def poll_once(self) -> Optional[DomainStateEvent]:
        """Return the current state event, or None when the poll failed."""
        try:
            with self._connection_factory(self.uri) as connection:
                domain = LibvirtDomain.lookup(connection.conn, self.name)
                state = domain.current_state()
        except Exception as exc:
            logger.error("Watcher failed for domain %s on %s: %s", self.name, self.uri, exc)
            return None
        return DomainStateEvent(self.name, state, hypervisor=self.hypervisor)

    async def run(self, interval: float, sink: EventSink) -> None:
        """Poll forever, handing each event to ``sink``; only cancellation stops it."""
        logger.info("Watching domain %s on %s every %.0fs", self.name, self.uri, interval)
        while True:
            event = await run_in_threadpool(self.poll_once)
            if event is not None:
                try:
                    sink(event.as_dict())
                except Exception as exc:  # pragma: no cover - sink errors must not stop the loop
                    logger.warning("Event sink rejected event for %s: %s", self.name, exc)
            await asyncio.sleep(interval)


def schedule_watcher(watcher: DomainStateWatcher, interval: float, sink: EventSink) -> None:
    """Start a background task for ``watcher`` unless one is already running."""

    key = (watcher.hypervisor or watcher.uri or "", watcher.name)
    existing = _watch_tasks.get(key)
    if existing and not existing.done():
        logger.debug("Watcher already active for %s on %s", watcher.name, key[0])
        return

    loop = asyncio.get_running_loop()
    task = loop.create_task(watcher.run(interval, sink))
    _watch_tasks[key] = task

    def _cleanup(_task: asyncio.Task) -> None:
        _watch_tasks.pop(key, None)

    task.add_done_callback(_cleanup)


def active_watchers() -> list[tuple[str, str]]:
    return [key for key, task in _watch_tasks.items() if not task.done()]


def shutdown_watchers() -> None:
    """Cancel any scheduled watchers (used on app shutdown)."""

    tasks = list(_watch_tasks.values())
    _watch_tasks.clear()
    for task in tasks:
        task.cancel()


__all__ = [
    "DomainStateEvent",
    "DomainStateWatcher",
    "active_watchers",
    "schedule_watcher",
    "shutdown_watchers",
]
