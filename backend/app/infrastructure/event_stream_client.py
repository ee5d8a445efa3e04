"""Event Stream Client - reconnecting consumer of the event transport.

Invariants:
    - State moves only through ConnectionStateMachine: CLOSED -> CONNECTING -> OPEN,
      OPEN -> RECONNECT_WAIT -> CONNECTING on error or remote close
    - On entering OPEN the auth handshake {"type": "auth", "token"} is sent first,
      when a token is configured
    - RECONNECT_WAIT lasts the fixed delay, cut short by notify_visible()
    - A malformed frame or a failing handler never ends the receive loop
    - send() while not OPEN logs a warning and returns False; nothing is queued
    - close() is the only way to reach CLOSED; no reconnect happens after it

Design Decisions:
    - Connector injected (defaults to websockets.connect): tests drive drops and
      reconnects with an in-memory socket
    - Fixed delay over exponential backoff: one client per viewer, the server side
      is not at risk of a reconnect storm
"""

import asyncio
import inspect
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import WebSocketException

from app.config import get_settings
from app.core.cache_sync import ClientCacheSync
from app.core.connection_state import ConnectionStateMachine
from app.core.domain_types import ConnectionState
from app.core.errors import MalformedEventError
from app.core.event_messages import parse_event
from app.core.subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (OSError, WebSocketException)


class ClientSocket(Protocol):
    async def send(self, message: str) -> None: ...
    async def close(self) -> None: ...
    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[ClientSocket]]


class EventStreamClient:
    """Client side of the event transport: subscriptions, dispatch, reconnect loop."""

    def __init__(
        self,
        url: str,
        registry: SubscriptionRegistry | None = None,
        cache_sync: ClientCacheSync | None = None,
        token: str | None = None,
        reconnect_delay: float = 5.0,
        connector: Connector | None = None,
    ):
        self.url = url
        self.registry = registry or SubscriptionRegistry()
        self.cache_sync = cache_sync
        self.token = token
        self.reconnect_delay = reconnect_delay
        self._connector = connector or websockets.connect
        self.state = ConnectionStateMachine()
        self._socket: ClientSocket | None = None
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()
        self._reached = {s: asyncio.Event() for s in ConnectionState}
        self._reached[ConnectionState.CLOSED].set()
        self.state.add_listener(self._on_state_change)

    @classmethod
    def from_settings(
        cls,
        token: str | None = None,
        cache_sync: ClientCacheSync | None = None,
        connector: Connector | None = None,
    ) -> "EventStreamClient":
        settings = get_settings()
        return cls(
            settings.event_transport_url,
            cache_sync=cache_sync,
            token=token,
            reconnect_delay=settings.event_reconnect_delay_seconds,
            connector=connector,
        )

    # ─── Public surface ──────────────────────────────────────────

    def subscribe(self, event_type: str, handler: Callable[[dict], Any]) -> Callable[[], None]:
        return self.registry.subscribe(event_type, handler)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> None:
        """Connect, receive, and reconnect until cancelled by close()."""
        while True:
            self.state.transition(ConnectionState.CONNECTING)
            try:
                socket = await self._connector(self.url)
            except TRANSPORT_ERRORS as e:
                logger.warning(f"Event transport connect failed: {e}")
                await self._wait_reconnect()
                continue

            self._socket = socket
            self.state.transition(ConnectionState.OPEN)
            try:
                await self._handshake(socket)
                async for raw in socket:
                    await self.dispatch(raw)
                logger.info("Event transport closed by remote")
            except TRANSPORT_ERRORS as e:
                logger.warning(f"Event transport dropped: {e}")
            finally:
                self._socket = None
            await self._wait_reconnect()

    def notify_visible(self) -> bool:
        """Foreground regained: skip the rest of the reconnect delay."""
        if self.state.state != ConnectionState.RECONNECT_WAIT:
            return False
        logger.info("Visibility regained, reconnecting now")
        self._wake.set()
        return True

    async def send(self, message: dict) -> bool:
        socket = self._socket
        if not self.state.is_open or socket is None:
            logger.warning(
                "Event transport not open, message not sent",
                extra={"event_type": message.get("type")},
            )
            return False
        try:
            await socket.send(json.dumps(message))
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Event transport send failed: {e}")
            return False
        return True

    async def dispatch(self, raw: str | bytes) -> int:
        """Run registered handlers and built-in effects. Returns handlers invoked."""
        try:
            message = parse_event(raw)
        except MalformedEventError as e:
            logger.warning(e.message)
            return 0

        invoked = 0
        for handler in self.registry.handlers_for(message.type):
            invoked += 1
            try:
                result = handler(message.data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Event handler failed: {e}",
                    extra={"event_type": message.type}, exc_info=True,
                )

        if self.cache_sync is not None:
            try:
                self.cache_sync.apply(message)
            except Exception as e:
                logger.error(
                    f"Cache sync failed: {e}",
                    extra={"event_type": message.type}, exc_info=True,
                )
        return invoked

    async def wait_for_state(
        self, target: ConnectionState, timeout: float | None = None,
    ) -> None:
        if self.state.state == target:
            return
        await asyncio.wait_for(self._reached[target].wait(), timeout)

    async def close(self) -> None:
        """Explicit shutdown: stop the loop, close the socket, state -> CLOSED."""
        task, self._task = self._task, None
        socket, self._socket = self._socket, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if socket is not None:
            try:
                await socket.close()
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Socket close failed: {e}")
        self.state.shutdown()

    # ─── Internals ───────────────────────────────────────────────

    async def _handshake(self, socket: ClientSocket) -> None:
        if self.token:
            await socket.send(json.dumps({"type": "auth", "token": self.token}))

    async def _wait_reconnect(self) -> None:
        self.state.transition(ConnectionState.RECONNECT_WAIT)
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), self.reconnect_delay)
        except asyncio.TimeoutError:
            pass

    def _on_state_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        logger.info(f"Event transport {previous.value} -> {current.value}")
        for state, event in self._reached.items():
            if state == current:
                event.set()
            else:
                event.clear()
