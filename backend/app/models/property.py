"""Property ORM - tokenized listing and its shared token supply.

Invariants:
    - total_tokens is fixed after creation
    - 0 <= available_tokens <= total_tokens (CHECK constraint)
    - available_tokens is written only by conditional UPDATEs (compare-and-swap)

Design Decisions:
    - CHECK constraint as the last line of defence: even a buggy writer cannot
      persist an oversold property
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (
        CheckConstraint(
            "available_tokens >= 0 AND available_tokens <= total_tokens",
            name="ck_properties_available_tokens_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    token_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    available_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    minimum_investment: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="DRAFT",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
