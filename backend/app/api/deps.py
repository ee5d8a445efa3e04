"""Request Dependencies — identity, admission control, and service wiring for routes.

Invariants:
    - Every investments/properties route resolves a caller id or fails with 401
    - Rate-limit key is "<operation>-<user id>": each operation has its own budget
    - Rate limiter and event hub are process singletons (lru_cache), shared by all requests
    - Services get a fresh set of SQL repositories bound to the request's DB session

Design Decisions:
    - Bearer token -> user id through settings.api_tokens: the identity service is
      an external collaborator, this is its narrowest stand-in
    - Singletons via cached getters over module globals: tests swap them with
      app.dependency_overrides like any other dependency
"""

import logging
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.errors import AuthenticationRequiredError, ErrorContext, RateLimitedError
from app.core.rate_limiter import FixedWindowRateLimiter, RateLimitDecision
from app.infrastructure.database import get_db
from app.services.allocation_pipeline import AllocationPipeline
from app.services.event_hub import EventHub
from app.services.property_admin import PropertyAdmin
from app.services.sql_repositories import (
    SqlInvestmentRepository,
    SqlPropertyRepository,
    SqlTransactionRepository,
    SqlUserDirectory,
)

logger = logging.getLogger(__name__)


@lru_cache
def get_rate_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter()


@lru_cache
def get_event_hub() -> EventHub:
    return EventHub(queue_size=get_settings().event_queue_size)


def resolve_token(token: str | None) -> str | None:
    """Map a bearer token to a user id, None when unknown."""
    if not token:
        return None
    return get_settings().api_tokens.get(token)


async def get_current_user_id(authorization: str | None = Header(None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        raise AuthenticationRequiredError()
    user_id = resolve_token(token.strip())
    if user_id is None:
        raise AuthenticationRequiredError("Unknown or expired credential")
    return user_id


def rate_limit(operation: str):
    """Dependency factory: count one request against operation's window."""

    async def check_rate_limit(
        user_id: str = Depends(get_current_user_id),
        limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitDecision:
        settings = get_settings()
        decision = limiter.check(
            f"{operation}-{user_id}",
            settings.rate_limit_requests,
            settings.rate_limit_window_ms,
        )
        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded for {operation}",
                extra={"user_id": user_id},
            )
            raise RateLimitedError(
                decision.retry_after_ms(limiter.now()),
                ErrorContext(user_id=user_id),
            )
        return decision

    return check_rate_limit


def get_pipeline(
    db: AsyncSession = Depends(get_db),
    hub: EventHub = Depends(get_event_hub),
) -> AllocationPipeline:
    settings = get_settings()
    return AllocationPipeline(
        users=SqlUserDirectory(db),
        properties=SqlPropertyRepository(db),
        investments=SqlInvestmentRepository(db),
        transactions=SqlTransactionRepository(db),
        publisher=hub,
        fee_rate=settings.platform_fee_rate,
        max_attempts=settings.reservation_max_attempts,
    )


def get_property_admin(
    db: AsyncSession = Depends(get_db),
    hub: EventHub = Depends(get_event_hub),
) -> PropertyAdmin:
    return PropertyAdmin(
        users=SqlUserDirectory(db),
        properties=SqlPropertyRepository(db),
        publisher=hub,
    )
