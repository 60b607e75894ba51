from __future__ import annotations

import asyncio
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple


EventEnvelope = Dict[str, Any]


class EventStream:
    """Fan-out of domain state events to websocket subscribers, with a replay buffer.

    Subscriber queues belong to the event loop that registered them; events
    published from any other thread are handed over with call_soon_threadsafe.
    """

    def __init__(self, history: int = 200, queue_size: int = 100) -> None:
        self._subscribers: Dict[asyncio.Queue[EventEnvelope], asyncio.AbstractEventLoop] = {}
        self._buffer: Deque[EventEnvelope] = deque(maxlen=history)
        self._queue_size = queue_size
        self._lock = threading.Lock()

    def publish(self, event: Mapping[str, Any]) -> None:
        entry = dict(event)
        with self._lock:
            self._buffer.append(entry)
            subscribers: Tuple[Tuple[asyncio.Queue[EventEnvelope], asyncio.AbstractEventLoop], ...] = tuple(
                self._subscribers.items()
            )

        current = _running_loop()
        for queue, loop in subscribers:
            if loop is current:
                _offer(queue, entry)
            elif not loop.is_closed():
                loop.call_soon_threadsafe(_offer, queue, entry)

    def register(self) -> tuple[asyncio.Queue[EventEnvelope], List[EventEnvelope]]:
        queue: asyncio.Queue[EventEnvelope] = asyncio.Queue(self._queue_size)
        loop = asyncio.get_running_loop()
        with self._lock:
            self._subscribers[queue] = loop
            history = list(self._buffer)
        return queue, history

    def unregister(self, queue: asyncio.Queue[EventEnvelope]) -> None:
        with self._lock:
            self._subscribers.pop(queue, None)

    def history(self) -> List[EventEnvelope]:
        with self._lock:
            return list(self._buffer)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _offer(queue: asyncio.Queue[EventEnvelope], entry: EventEnvelope) -> None:
    try:
        queue.put_nowait(entry)
    except asyncio.QueueFull:
        # Slow subscriber; it continues with the next event.
        pass


event_stream = EventStream()
