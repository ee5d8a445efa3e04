"""User ORM - identity collaborator's view of a user: role and KYC gate.

Invariants:
    - id is the opaque identifier handed over by the identity subsystem
    - kyc_status must be APPROVED before any investment is accepted
"""

from datetime import datetime, timezone

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="INVESTOR",
    )
    kyc_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PENDING",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
