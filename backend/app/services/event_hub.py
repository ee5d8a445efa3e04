"""Event Hub - server-side fan-out of change notifications to WebSocket clients.

Invariants:
    - publish() iterates an immutable snapshot of connections: a client joining or
      leaving mid-publish never corrupts the fan-out
    - Per-connection delivery order equals publish order (one FIFO queue, one writer)
    - publish() never awaits a socket: a slow client cannot stall the allocation path
    - A connection whose queue is full is dropped, not blocked on
    - A connection with no subscribe filter receives every event type

Design Decisions:
    - Bounded asyncio.Queue + writer task per connection over direct send: the
      publisher only does put_nowait (ADR: producer never suspends on a consumer)
    - Control frames (auth, subscribe, unsubscribe, ping) handled here, not in the
      route: the route stays a receive loop
"""

import asyncio
import itertools
import logging
from typing import Any, Callable, Protocol

from app.core.domain_types import EventType
from app.core.errors import MalformedEventError
from app.core.event_messages import build_event, encode_event, parse_control

logger = logging.getLogger(__name__)

TokenResolver = Callable[[str], str | None]

_CLOSE_SENTINEL = None


class OutboundSocket(Protocol):
    """The slice of starlette's WebSocket the hub uses."""
    async def send_text(self, data: str) -> None: ...
    async def close(self, code: int = 1000) -> None: ...


class ClientConnection:
    """One connected client: outbound queue, writer task, filters, bound identity."""

    def __init__(self, connection_id: str, websocket: OutboundSocket, queue_size: int):
        self.id = connection_id
        self.websocket = websocket
        self.queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=queue_size)
        self.user_id: str | None = None
        self.event_types: frozenset[str] | None = None
        self.closed = False
        self._writer: asyncio.Task | None = None

    def wants(self, event_type: str) -> bool:
        return self.event_types is None or event_type in self.event_types

    def offer(self, payload: str) -> bool:
        """Enqueue without waiting. False when the client has fallen behind."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        self.closed = True
        if self._writer is None:
            return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass

    async def _drain(self) -> None:
        while True:
            payload = await self.queue.get()
            if payload is _CLOSE_SENTINEL:
                return
            try:
                await self.websocket.send_text(payload)
            except Exception as e:
                # starlette raises WebSocketDisconnect, RuntimeError or OSError here
                logger.info(
                    f"Event delivery stopped: {e}",
                    extra={"connection_id": self.id},
                )
                self.closed = True
                return


class EventHub:
    """Registry of live connections plus the publish side of the event transport."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = max(1, queue_size)
        self._connections: dict[str, ClientConnection] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._connections)

    def connections(self) -> tuple[ClientConnection, ...]:
        return tuple(self._connections.values())

    def register(self, websocket: OutboundSocket) -> ClientConnection:
        conn = ClientConnection(f"conn-{next(self._ids)}", websocket, self.queue_size)
        self._connections = {**self._connections, conn.id: conn}
        conn.start()
        logger.info("Event client connected", extra={"connection_id": conn.id})
        return conn

    async def unregister(self, conn: ClientConnection) -> None:
        if conn.id in self._connections:
            self._connections = {
                k: v for k, v in self._connections.items() if k != conn.id
            }
        await conn.stop()
        logger.info(
            "Event client disconnected",
            extra={"connection_id": conn.id, "user_id": conn.user_id},
        )

    async def publish(self, event_type: EventType | str, data: dict[str, Any]) -> int:
        """Queue one event for every interested connection. Returns deliveries queued."""
        message = build_event(event_type, data)
        payload = encode_event(message)
        delivered = 0
        lagging: list[ClientConnection] = []
        for conn in self.connections():
            if not conn.wants(message.type):
                continue
            if conn.offer(payload):
                delivered += 1
            elif not conn.closed:
                lagging.append(conn)
        for conn in lagging:
            await self._drop_slow_consumer(conn)
        return delivered

    async def send_to(
        self, conn: ClientConnection, event_type: EventType | str, data: dict[str, Any],
    ) -> bool:
        """Queue a direct reply to one connection."""
        return conn.offer(encode_event(build_event(event_type, data)))

    async def handle_control(
        self, conn: ClientConnection, raw: str, resolve_user: TokenResolver,
    ) -> None:
        """Apply one client control frame. Malformed frames are logged and ignored."""
        try:
            frame = parse_control(raw)
        except MalformedEventError as e:
            logger.warning(e.message, extra={"connection_id": conn.id})
            return

        kind = frame["type"]
        if kind == "auth":
            token = frame.get("token")
            conn.user_id = resolve_user(token) if isinstance(token, str) else None
            await self.send_to(conn, EventType.SYSTEM, {
                "event": "auth", "authenticated": conn.user_id is not None,
            })
        elif kind == "subscribe":
            requested = _event_types(frame)
            current = conn.event_types or frozenset()
            conn.event_types = current | requested
        elif kind == "unsubscribe":
            requested = _event_types(frame)
            current = conn.event_types
            if current is None:
                current = frozenset(t.value for t in EventType)
            conn.event_types = current - requested
        elif kind == "ping":
            await self.send_to(conn, EventType.SYSTEM, {"event": "pong"})
        else:
            logger.warning(
                f"Unknown control frame type: {kind}",
                extra={"connection_id": conn.id},
            )

    async def close(self) -> None:
        """Shutdown: stop every writer and close every socket."""
        for conn in self.connections():
            await self.unregister(conn)
            try:
                await conn.websocket.close()
            except Exception as e:
                logger.debug(f"Socket close failed: {e}")

    async def _drop_slow_consumer(self, conn: ClientConnection) -> None:
        logger.warning(
            "Dropping slow event consumer",
            extra={"connection_id": conn.id, "user_id": conn.user_id},
        )
        await self.unregister(conn)
        try:
            await conn.websocket.close(code=1013)
        except Exception as e:
            logger.debug(f"Socket close failed: {e}")


def _event_types(frame: dict) -> frozenset[str]:
    values = frame.get("eventTypes") or []
    if not isinstance(values, list):
        return frozenset()
    return frozenset(v for v in values if isinstance(v, str))
