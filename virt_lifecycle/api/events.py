from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core.event_stream import event_stream
from ..libvirt.watcher import active_watchers


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])


@router.get("/watchers")
def list_watchers():
    return {
        "watchers": [
            {"hypervisor": hypervisor, "domain": domain}
            for hypervisor, domain in active_watchers()
        ]
    }


@router.get("/recent")
def recent_events():
    return {"events": event_stream.history()}


@router.websocket("/stream")
async def stream_domain_events(websocket: WebSocket) -> None:
    await websocket.accept()
    queue, history = event_stream.register()

    try:
        for item in history:
            await websocket.send_json(item)

        while True:
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=60)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "keepalive"})
                continue

            await websocket.send_json(payload)
    except WebSocketDisconnect:
        logger.debug("Domain event stream disconnected")
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # pragma: no cover
        logger.exception("Domain event stream failed: %s", exc)
    finally:
        event_stream.unregister(queue)
