"""SQL Repositories - SQLAlchemy implementations of core/repository_protocols.py.

Invariants:
    - compare_and_set_available is a single conditional UPDATE
      (WHERE id = :id AND available_tokens = :expected); success iff rowcount == 1
    - release_tokens is a single guarded increment
      (WHERE available_tokens + :n <= total_tokens); never exceeds supply
    - Every mutation commits before returning: a concurrent request sees the new value
    - Driver failures surface as UnavailableError; unique-key collisions as ConflictError

Design Decisions:
    - Reads use populate_existing: the session identity map would otherwise hand back
      a stale snapshot after a lost CAS race
    - ORM rows converted to frozen records at this boundary, so core never sees a
      live SQLAlchemy instance
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.domain_types import (
    InvestmentStatus, PaymentMethod, PropertyStatus,
    TransactionStatus, TransactionType,
)
from app.core.errors import ConflictError, UnavailableError
from app.core.ledger_records import (
    InvestmentRecord, PropertyRecord, TransactionRecord, UserRecord,
)
from app.models.investment import Investment
from app.models.property import Property
from app.models.transaction import Transaction
from app.models.user import User

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _enum_value(value: object) -> object:
    return getattr(value, "value", value)


@asynccontextmanager
async def _guard(session: AsyncSession, operation: str) -> AsyncGenerator[None, None]:
    """Roll back and translate driver errors for one repository call."""
    try:
        yield
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Integrity error during {operation}: {e.orig}")
        raise ConflictError(f"{operation} violated a uniqueness or range constraint")
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error during {operation}: {e}")
        raise UnavailableError("record store error", operation)


# ─── Row → record ────────────────────────────────────────────────

def to_user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id, kyc_status=row.kyc_status, role=row.role,
        email=row.email, name=row.name,
    )


def to_property_record(row: Property) -> PropertyRecord:
    return PropertyRecord(
        id=row.id,
        title=row.title,
        total_tokens=row.total_tokens,
        available_tokens=row.available_tokens,
        token_price=row.token_price,
        minimum_investment=row.minimum_investment,
        status=PropertyStatus(row.status),
        price=row.price,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def to_investment_record(row: Investment) -> InvestmentRecord:
    return InvestmentRecord(
        id=row.id,
        user_id=row.user_id,
        property_id=row.property_id,
        amount=row.amount,
        tokens=row.tokens,
        status=InvestmentStatus(row.status),
        payment_method=PaymentMethod(row.payment_method),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def to_transaction_record(row: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        user_id=row.user_id,
        related_id=row.related_id,
        amount=row.amount,
        fee=row.fee,
        net_amount=row.net_amount,
        status=TransactionStatus(row.status),
        type=TransactionType(row.type),
        payment_method=PaymentMethod(row.payment_method) if row.payment_method else None,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ─── Repositories ────────────────────────────────────────────────

class SqlUserDirectory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> UserRecord | None:
        async with _guard(self.session, "get_user"):
            row = await self.session.get(User, user_id)
        return to_user_record(row) if row else None


class SqlPropertyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, property_id: str) -> PropertyRecord | None:
        async with _guard(self.session, "get_property"):
            result = await self.session.execute(
                select(Property)
                .where(Property.id == property_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
        return to_property_record(row) if row else None

    async def list(
        self, status: PropertyStatus | None = None,
        limit: int = 20, offset: int = 0,
    ) -> tuple[list[PropertyRecord], int]:
        query = select(Property)
        count_query = select(func.count()).select_from(Property)
        if status is not None:
            query = query.where(Property.status == _enum_value(status))
            count_query = count_query.where(Property.status == _enum_value(status))
        async with _guard(self.session, "list_properties"):
            total = (await self.session.execute(count_query)).scalar_one()
            result = await self.session.execute(
                query.order_by(Property.created_at.desc())
                .offset(offset).limit(limit)
                .execution_options(populate_existing=True)
            )
            rows = result.scalars().all()
        return [to_property_record(r) for r in rows], total

    async def put(self, record: PropertyRecord) -> PropertyRecord:
        row = Property(
            id=record.id,
            owner_id=record.owner_id,
            title=record.title,
            price=record.price,
            token_price=record.token_price,
            total_tokens=record.total_tokens,
            available_tokens=record.available_tokens,
            minimum_investment=record.minimum_investment,
            status=_enum_value(record.status),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        async with _guard(self.session, "put_property"):
            self.session.add(row)
            await self.session.commit()
        return to_property_record(row)

    async def update_fields(
        self, property_id: str, **fields: object,
    ) -> PropertyRecord | None:
        values = {k: _enum_value(v) for k, v in fields.items()}
        values["updated_at"] = _now()
        async with _guard(self.session, "update_property"):
            result = await self.session.execute(
                update(Property)
                .where(Property.id == property_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        if result.rowcount != 1:
            return None
        return await self.get(property_id)

    async def compare_and_set_available(
        self, property_id: str, expected: int, new: int,
    ) -> bool:
        async with _guard(self.session, "reserve_tokens"):
            result = await self.session.execute(
                update(Property)
                .where(
                    Property.id == property_id,
                    Property.available_tokens == expected,
                )
                .values(available_tokens=new, updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        return result.rowcount == 1

    async def release_tokens(self, property_id: str, tokens: int) -> bool:
        async with _guard(self.session, "release_tokens"):
            result = await self.session.execute(
                update(Property)
                .where(
                    Property.id == property_id,
                    Property.available_tokens + tokens <= Property.total_tokens,
                )
                .values(
                    available_tokens=Property.available_tokens + tokens,
                    updated_at=_now(),
                )
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        return result.rowcount == 1


class SqlInvestmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, investment_id: str) -> InvestmentRecord | None:
        async with _guard(self.session, "get_investment"):
            result = await self.session.execute(
                select(Investment)
                .where(Investment.id == investment_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
        return to_investment_record(row) if row else None

    async def list(
        self,
        user_id: str | None = None,
        property_id: str | None = None,
        status: InvestmentStatus | None = None,
    ) -> list[InvestmentRecord]:
        query = select(Investment)
        if user_id is not None:
            query = query.where(Investment.user_id == user_id)
        if property_id is not None:
            query = query.where(Investment.property_id == property_id)
        if status is not None:
            query = query.where(Investment.status == _enum_value(status))
        async with _guard(self.session, "list_investments"):
            result = await self.session.execute(
                query.order_by(Investment.created_at.desc())
                .execution_options(populate_existing=True)
            )
            rows = result.scalars().all()
        return [to_investment_record(r) for r in rows]

    async def put(self, record: InvestmentRecord) -> InvestmentRecord:
        row = Investment(
            id=record.id,
            user_id=record.user_id,
            property_id=record.property_id,
            amount=record.amount,
            tokens=record.tokens,
            status=_enum_value(record.status),
            payment_method=_enum_value(record.payment_method),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        async with _guard(self.session, "put_investment"):
            self.session.add(row)
            await self.session.commit()
        return to_investment_record(row)

    async def delete(self, investment_id: str) -> bool:
        async with _guard(self.session, "delete_investment"):
            row = await self.session.get(Investment, investment_id)
            if row is None:
                return False
            await self.session.delete(row)
            await self.session.commit()
        return True

    async def update_status(
        self, investment_id: str,
        expected: InvestmentStatus, new: InvestmentStatus,
    ) -> InvestmentRecord | None:
        async with _guard(self.session, "update_investment_status"):
            result = await self.session.execute(
                update(Investment)
                .where(
                    Investment.id == investment_id,
                    Investment.status == _enum_value(expected),
                )
                .values(status=_enum_value(new), updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        if result.rowcount != 1:
            return None
        return await self.get(investment_id)


class SqlTransactionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_related(self, related_id: str) -> TransactionRecord | None:
        async with _guard(self.session, "get_transaction"):
            result = await self.session.execute(
                select(Transaction)
                .where(Transaction.related_id == related_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
        return to_transaction_record(row) if row else None

    async def put(self, record: TransactionRecord) -> TransactionRecord:
        row = Transaction(
            id=record.id,
            user_id=record.user_id,
            type=_enum_value(record.type),
            amount=record.amount,
            fee=record.fee,
            net_amount=record.net_amount,
            related_id=record.related_id,
            status=_enum_value(record.status),
            payment_method=(
                _enum_value(record.payment_method) if record.payment_method else None
            ),
            description=record.description,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        async with _guard(self.session, "put_transaction"):
            self.session.add(row)
            await self.session.commit()
        return to_transaction_record(row)

    async def delete(self, transaction_id: str) -> bool:
        async with _guard(self.session, "delete_transaction"):
            row = await self.session.get(Transaction, transaction_id)
            if row is None:
                return False
            await self.session.delete(row)
            await self.session.commit()
        return True

    async def update_status(
        self, transaction_id: str, status: TransactionStatus,
    ) -> TransactionRecord | None:
        async with _guard(self.session, "update_transaction_status"):
            result = await self.session.execute(
                update(Transaction)
                .where(Transaction.id == transaction_id)
                .values(status=_enum_value(status), updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        if result.rowcount != 1:
            return None
        async with _guard(self.session, "get_transaction"):
            result = await self.session.execute(
                select(Transaction)
                .where(Transaction.id == transaction_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one()
        return to_transaction_record(row)
