"""Database Session Manager — direct session use outside the repositories."""

import pytest
from sqlalchemy import text

from app.core.errors import UnavailableError
from app.infrastructure.database import DatabaseSessionManager


@pytest.fixture
async def manager():
    manager = DatabaseSessionManager("sqlite+aiosqlite:///:memory:")
    yield manager
    await manager.dispose()


async def test_health_check_on_live_database(manager):
    assert await manager.health_check() is True


async def test_unguarded_sql_error_becomes_unavailable(manager):
    with pytest.raises(UnavailableError) as exc:
        async with manager.session() as db:
            await db.execute(text("SELECT * FROM no_such_table"))
    assert exc.value.operation == "session"


async def test_domain_errors_pass_through_untouched(manager):
    with pytest.raises(ValueError):
        async with manager.session():
            raise ValueError("not a database error")
