"""Property Administration - listing CRUD outside the allocation path.

Invariants:
    - Only admins create or update listings
    - available_tokens starts equal to total_tokens and is never writable here
      (it moves only through the allocation pipeline)
    - Every update publishes property_update; a price change also publishes price_update

Design Decisions:
    - Separate from AllocationPipeline: administrative edits never contend on
      available_tokens, so they stay out of the CAS code path
"""

import logging

from app.core.domain_types import EventType, PropertyStatus, generate_id
from app.core.errors import (
    ErrorContext, PermissionDeniedError, PropertyChainError,
    ResourceNotFoundError, ValidationFailedError,
)
from app.core.investment_queries import pagination_meta
from app.core.ledger_records import PropertyRecord, UserRecord
from app.core.repository_protocols import (
    EventPublisher, PropertyRepository, UserDirectory,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "title", "price", "token_price", "minimum_investment", "status",
})
PRICE_FIELDS = frozenset({"price", "token_price"})


class PropertyAdmin:
    def __init__(
        self,
        users: UserDirectory,
        properties: PropertyRepository,
        publisher: EventPublisher,
    ):
        self.users = users
        self.properties = properties
        self.publisher = publisher

    async def get_property(self, property_id: str) -> PropertyRecord:
        prop = await self.properties.get(property_id)
        if prop is None:
            raise ResourceNotFoundError("Property", property_id)
        return prop

    async def list_properties(
        self, status: PropertyStatus | None = None, page: int = 1, page_size: int = 20,
    ) -> dict:
        records, total = await self.properties.list(
            status=status, limit=page_size, offset=(page - 1) * page_size,
        )
        return {
            "properties": [p.to_dict() for p in records],
            "pagination": pagination_meta(page, page_size, total),
        }

    async def create_property(
        self,
        actor_id: str,
        title: str,
        total_tokens: int,
        token_price: float,
        minimum_investment: float,
        price: float | None = None,
        status: PropertyStatus = PropertyStatus.DRAFT,
    ) -> PropertyRecord:
        await self._require_admin(actor_id)
        if total_tokens < 1:
            raise ValidationFailedError("totalTokens must be positive", "totalTokens")
        record = PropertyRecord(
            id=generate_id("prop"),
            title=title,
            total_tokens=total_tokens,
            available_tokens=total_tokens,
            token_price=token_price,
            minimum_investment=minimum_investment,
            status=PropertyStatus(status),
            price=price if price is not None else token_price * total_tokens,
            owner_id=actor_id,
        )
        saved = await self.properties.put(record)
        logger.info("Property created", extra={"property_id": saved.id})
        return saved

    async def update_property(
        self, actor_id: str, property_id: str, **fields: object,
    ) -> PropertyRecord:
        await self._require_admin(actor_id)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationFailedError(
                f"Fields not updatable: {', '.join(sorted(unknown))}",
            )
        changes = {k: v for k, v in fields.items() if v is not None}
        current = await self.get_property(property_id)
        if not changes:
            return current

        updated = await self.properties.update_fields(property_id, **changes)
        if updated is None:
            raise ResourceNotFoundError("Property", property_id)
        logger.info(
            f"Property updated: {sorted(changes)}",
            extra={"property_id": property_id},
        )

        await self._publish(EventType.PROPERTY_UPDATE, {
            "propertyId": updated.id,
            "availableTokens": updated.available_tokens,
            "totalTokens": updated.total_tokens,
            "fundingProgress": updated.funding_progress,
            "status": PropertyStatus(updated.status).value,
        })
        if PRICE_FIELDS & set(changes):
            await self._publish(EventType.PRICE_UPDATE, {
                "propertyId": updated.id,
                "tokenPrice": updated.token_price,
                "price": updated.price,
            })
        return updated

    async def _require_admin(self, actor_id: str) -> UserRecord:
        user = await self.users.get(actor_id)
        if user is None or not user.is_admin:
            raise PermissionDeniedError(
                "Administrator role required", ErrorContext(user_id=actor_id),
            )
        return user

    async def _publish(self, event_type: EventType, data: dict) -> None:
        try:
            await self.publisher.publish(event_type, data)
        except PropertyChainError as e:
            logger.warning(
                f"Event publish failed: {e.message}",
                extra={"event_type": event_type.value, "error_code": e.code},
            )
