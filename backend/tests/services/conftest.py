"""Service test fixtures — async DB + FastAPI test client.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - get_db dependency overridden to use test DB session
    - db_manager patched for the readiness probe, which bypasses get_db
    - Rate limiter and event hub replaced per test: no budget or connection leaks
      between tests

Design Decisions:
    - SQLite in-memory: fast, no external dependency, sufficient for route tests
      (ADR: PostgreSQL-specific features not exercised here)
    - Identity through settings.api_tokens: routes run the real bearer-token
      dependency, tests only pick which token to send
"""

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_event_hub, get_rate_limiter
from app.config import get_settings
from app.core.domain_types import KycStatus, PropertyStatus, UserRole
from app.core.rate_limiter import FixedWindowRateLimiter
from app.db.base import Base
from app.infrastructure.database import get_db, DatabaseSessionManager
from app.models.property import Property
from app.models.user import User
from app.services.event_hub import EventHub
import app.infrastructure.database as db_module
from app.main import app


TOKENS = {
    "token-a": "usr_a",
    "token-b": "usr_b",
    "token-pending": "usr_pending",
    "token-admin": "usr_admin",
}


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def seed_users(test_db):
    """Insert the users behind TOKENS."""
    test_db.add_all([
        User(id="usr_a", kyc_status=KycStatus.APPROVED.value, role=UserRole.INVESTOR.value),
        User(id="usr_b", kyc_status=KycStatus.APPROVED.value, role=UserRole.INVESTOR.value),
        User(id="usr_pending", kyc_status=KycStatus.PENDING.value, role=UserRole.INVESTOR.value),
        User(id="usr_admin", kyc_status=KycStatus.APPROVED.value, role=UserRole.ADMIN.value),
    ])
    await test_db.commit()


@pytest.fixture
async def seed_property(test_db, seed_users):
    """One ACTIVE property: 1000 tokens at $1, $10 minimum."""
    prop = Property(
        id="prop_1", title="Harbor Lofts", price=1000.0, token_price=1.0,
        total_tokens=1000, available_tokens=1000, minimum_investment=10.0,
        status=PropertyStatus.ACTIVE.value, owner_id="usr_admin",
    )
    test_db.add(prop)
    await test_db.commit()
    return prop


@pytest.fixture
def rate_limiter():
    return FixedWindowRateLimiter()


@pytest.fixture
def event_hub():
    return EventHub(queue_size=16)


@pytest.fixture
async def client(test_engine, test_session_factory, rate_limiter, event_hub, monkeypatch):
    """FastAPI test client with DB, identity and singletons overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_event_hub] = lambda: event_hub
    monkeypatch.setattr(get_settings(), "api_tokens", dict(TOKENS))

    # Patch db_manager for the readiness probe, which uses it directly
    original_manager = db_module.db_manager
    fake_manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    fake_manager.engine = test_engine
    fake_manager._session_factory = test_session_factory
    db_module.db_manager = fake_manager

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager
