"""Connection State Machine - lifecycle of one event stream client connection.

Invariants:
    - Initial state CLOSED
    - CLOSED -> CONNECTING -> OPEN
    - CONNECTING | OPEN -> RECONNECT_WAIT on error or remote close
    - RECONNECT_WAIT -> CONNECTING after the fixed delay (or on visibility regain)
    - Any state -> CLOSED only through explicit shutdown
    - Illegal transitions raise InvalidStateError; listeners see every legal one

Design Decisions:
    - Separate pure machine from the socket loop: transitions are testable without
      a network and the loop cannot silently skip a state
    - Listeners are plain callables (old, new); the client uses them to wake waiters
"""

from typing import Callable

from app.core.domain_types import ConnectionState
from app.core.errors import InvalidStateError

StateListener = Callable[[ConnectionState, ConnectionState], None]

_ALLOWED: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.CLOSED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.OPEN, ConnectionState.RECONNECT_WAIT,
    }),
    ConnectionState.OPEN: frozenset({ConnectionState.RECONNECT_WAIT}),
    ConnectionState.RECONNECT_WAIT: frozenset({ConnectionState.CONNECTING}),
}


class ConnectionStateMachine:
    def __init__(self) -> None:
        self._state = ConnectionState.CLOSED
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def can_transition(self, target: ConnectionState) -> bool:
        return target in _ALLOWED[self._state]

    def transition(self, target: ConnectionState) -> None:
        if not self.can_transition(target):
            raise InvalidStateError(
                f"Connection cannot move from {self._state.value} to {target.value}",
            )
        self._set(target)

    def shutdown(self) -> None:
        """Explicit close - the only way back to CLOSED."""
        if self._state != ConnectionState.CLOSED:
            self._set(ConnectionState.CLOSED)

    def _set(self, target: ConnectionState) -> None:
        previous, self._state = self._state, target
        for listener in list(self._listeners):
            listener(previous, target)
