"""Subscription Registry - event type -> handler list for one client context.

Invariants:
    - subscribe() returns an unsubscribe callable that removes exactly that registration
    - The same handler may be registered more than once; each registration is distinct
    - Dispatch reads an immutable snapshot: handlers added or removed while a
      dispatch is running never corrupt the iteration (takes effect next dispatch)

Design Decisions:
    - Copy-on-write tuples under a lock: readers never lock, writers swap a whole tuple
    - Registration tokens instead of handler identity: unsubscribing one of two
      identical registrations leaves the other in place
"""

import itertools
import threading
from typing import Any, Callable

Handler = Callable[[dict[str, Any]], Any]


class SubscriptionRegistry:
    """Typed publish/subscribe table: explicit handler list per event type."""

    def __init__(self) -> None:
        self._handlers: dict[str, tuple[tuple[int, Handler], ...]] = {}
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        key = str(getattr(event_type, "value", event_type))
        token = next(self._tokens)
        with self._lock:
            self._handlers[key] = self._handlers.get(key, ()) + ((token, handler),)

        def unsubscribe() -> None:
            self._remove(key, token)

        return unsubscribe

    def handlers_for(self, event_type: str) -> tuple[Handler, ...]:
        """Snapshot of handlers for event_type, in registration order."""
        key = str(getattr(event_type, "value", event_type))
        return tuple(h for _, h in self._handlers.get(key, ()))

    def event_types(self) -> list[str]:
        return [k for k, v in self._handlers.items() if v]

    def clear(self) -> None:
        with self._lock:
            self._handlers = {}

    def __len__(self) -> int:
        return sum(len(v) for v in self._handlers.values())

    def _remove(self, key: str, token: int) -> None:
        with self._lock:
            current = self._handlers.get(key, ())
            remaining = tuple(entry for entry in current if entry[0] != token)
            if remaining:
                self._handlers[key] = remaining
            else:
                self._handlers.pop(key, None)
