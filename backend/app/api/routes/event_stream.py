"""Event Stream Route — WebSocket endpoint of the event transport.

Invariants:
    - One ClientConnection per socket, registered on accept, unregistered on any exit
    - Inbound frames are control frames only (auth, subscribe, unsubscribe, ping)
    - Outbound frames are {"type", "data", "timestamp"} written by the hub's writer task

Design Decisions:
    - Auth is in-band (first control frame) rather than a query-string token: the
      client sends it on every OPEN, matching its reconnect handshake
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.api.deps import get_event_hub, resolve_token
from app.services.event_hub import EventHub

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["events"])


@router.websocket("/events")
async def event_stream(websocket: WebSocket, hub: EventHub = Depends(get_event_hub)):
    await websocket.accept()
    conn = hub.register(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await hub.handle_control(conn, raw, resolve_token)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.unregister(conn)
