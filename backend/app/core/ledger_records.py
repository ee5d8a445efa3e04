"""Ledger Records - plain dataclasses exchanged between core, services and stores.

Invariants:
    - 0 <= available_tokens <= total_tokens for every PropertyRecord
    - net_amount == amount - fee for every TransactionRecord
    - Records are immutable snapshots: changes produce a new record (dataclasses.replace)

Design Decisions:
    - Frozen dataclasses over ORM instances: core and the fake stores never touch
      SQLAlchemy, the SQL repositories convert at the boundary
    - to_dict() emits camelCase keys: the REST and event payloads share one shape
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.core.domain_types import (
    InvestmentStatus, PaymentMethod, PropertyStatus, UserRole,
    TransactionStatus, TransactionType,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UserRecord:
    id: str
    kyc_status: str
    role: str
    email: str = ""
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class PropertyRecord:
    id: str
    title: str
    total_tokens: int
    available_tokens: int
    token_price: float
    minimum_investment: float
    status: PropertyStatus
    price: float = 0.0
    owner_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def sold_tokens(self) -> int:
        return self.total_tokens - self.available_tokens

    @property
    def funding_progress(self) -> int:
        """Percentage of tokens reserved, 0-100."""
        if self.total_tokens <= 0:
            return 0
        return round(self.sold_tokens * 100 / self.total_tokens)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "ownerId": self.owner_id,
            "price": self.price,
            "tokenPrice": self.token_price,
            "totalTokens": self.total_tokens,
            "availableTokens": self.available_tokens,
            "minimumInvestment": self.minimum_investment,
            "status": PropertyStatus(self.status).value,
            "fundingProgress": self.funding_progress,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class InvestmentRecord:
    id: str
    user_id: str
    property_id: str
    amount: float
    tokens: int
    status: InvestmentStatus
    payment_method: PaymentMethod
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "propertyId": self.property_id,
            "amount": self.amount,
            "tokens": self.tokens,
            "status": InvestmentStatus(self.status).value,
            "paymentMethod": PaymentMethod(self.payment_method).value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    user_id: str
    related_id: str
    amount: float
    fee: float
    net_amount: float
    status: TransactionStatus
    type: TransactionType = TransactionType.INVESTMENT
    payment_method: PaymentMethod | None = None
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": TransactionType(self.type).value,
            "amount": self.amount,
            "fee": self.fee,
            "netAmount": self.net_amount,
            "relatedId": self.related_id,
            "status": TransactionStatus(self.status).value,
            "paymentMethod": (
                PaymentMethod(self.payment_method).value
                if self.payment_method else None
            ),
            "description": self.description,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
