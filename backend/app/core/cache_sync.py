"""Client Cache Sync - applies event transport messages to a client's cached views.

Invariants:
    - property_update: drops ("property", id) and every ("properties", ...) view
    - investment_update: drops every ("investments", ...) view; notifies the viewer
      when data.userId is the local viewer
    - price_update: patches tokenPrice/price of a cached ("property", id) in place,
      never creates an entry that was not cached
    - notification: forwarded to the notification center unchanged
    - system: logged, no cache effect
    - Every effect is an overwrite or a drop: applying the same message twice leaves
      the same cache as applying it once

Design Decisions:
    - Tuple query keys with prefix invalidation: ("properties",) also covers
      ("properties", {"status": ...}) page views
    - Notification center is a bounded deque: the UI drains it, the sync never blocks
"""

import logging
from collections import deque
from typing import Any, Callable

from app.core.domain_types import EventType
from app.core.event_messages import EventMessage

logger = logging.getLogger(__name__)

QueryKey = tuple


def property_key(property_id: str) -> QueryKey:
    return ("property", property_id)


PROPERTIES_KEY: QueryKey = ("properties",)
INVESTMENTS_KEY: QueryKey = ("investments",)

PRICE_FIELDS = ("tokenPrice", "price")


class ViewCache:
    """Local cached views keyed by query key."""

    def __init__(self, on_invalidate: Callable[[QueryKey], None] | None = None):
        self._entries: dict[QueryKey, dict[str, Any]] = {}
        self._on_invalidate = on_invalidate

    def get(self, key: QueryKey) -> dict[str, Any] | None:
        return self._entries.get(key)

    def set(self, key: QueryKey, value: dict[str, Any]) -> None:
        self._entries[key] = dict(value)

    def invalidate(self, prefix: QueryKey) -> int:
        """Drop every entry whose key starts with prefix. Returns count dropped."""
        doomed = [k for k in self._entries if k[:len(prefix)] == prefix]
        for key in doomed:
            del self._entries[key]
            if self._on_invalidate:
                self._on_invalidate(key)
        return len(doomed)

    def patch(self, key: QueryKey, fields: dict[str, Any]) -> bool:
        """Overwrite fields on an existing entry. False when the key is not cached."""
        current = self._entries.get(key)
        if current is None:
            return False
        self._entries[key] = {**current, **fields}
        return True

    def snapshot(self) -> dict[QueryKey, dict[str, Any]]:
        return {k: dict(v) for k, v in self._entries.items()}

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class NotificationCenter:
    """User-facing notification inbox."""

    def __init__(self, max_items: int = 100):
        self._items: deque[dict[str, Any]] = deque(maxlen=max_items)

    def add(self, notification: dict[str, Any]) -> None:
        self._items.append(dict(notification))

    def drain(self) -> list[dict[str, Any]]:
        items = list(self._items)
        self._items.clear()
        return items

    @property
    def items(self) -> list[dict[str, Any]]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class ClientCacheSync:
    """Built-in per-type side effects for inbound event messages."""

    def __init__(
        self,
        cache: ViewCache,
        notifications: NotificationCenter,
        viewer_id: str | None = None,
    ):
        self.cache = cache
        self.notifications = notifications
        self.viewer_id = viewer_id
        self._effects: dict[EventType, Callable[[dict[str, Any]], None]] = {
            EventType.PROPERTY_UPDATE: self._on_property_update,
            EventType.INVESTMENT_UPDATE: self._on_investment_update,
            EventType.PRICE_UPDATE: self._on_price_update,
            EventType.NOTIFICATION: self._on_notification,
            EventType.SYSTEM: self._on_system,
        }

    def apply(self, message: EventMessage) -> bool:
        """Run the built-in effect for message.type. False for custom types."""
        kind = message.event_type
        if kind is None:
            return False
        self._effects[kind](message.data)
        return True

    def _on_property_update(self, data: dict[str, Any]) -> None:
        property_id = data.get("propertyId")
        if property_id:
            self.cache.invalidate(property_key(property_id))
        self.cache.invalidate(PROPERTIES_KEY)

    def _on_investment_update(self, data: dict[str, Any]) -> None:
        self.cache.invalidate(INVESTMENTS_KEY)
        if self.viewer_id is not None and data.get("userId") == self.viewer_id:
            self.notifications.add({
                "type": "INVESTMENT",
                "title": "Investment Update",
                "description": (
                    data.get("description")
                    or "Your investment status has been updated"
                ),
                "priority": "medium",
                "investmentId": data.get("investmentId"),
            })

    def _on_price_update(self, data: dict[str, Any]) -> None:
        property_id = data.get("propertyId")
        if not property_id:
            return
        fields = {f: data[f] for f in PRICE_FIELDS if f in data}
        if fields:
            self.cache.patch(property_key(property_id), fields)

    def _on_notification(self, data: dict[str, Any]) -> None:
        self.notifications.add(data)

    def _on_system(self, data: dict[str, Any]) -> None:
        logger.info("System message: %s", data)
