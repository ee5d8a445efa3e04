"""Domain Types - rich types that replace bare primitives across the codebase.

Invariants:
    - UserId, PropertyId, InvestmentId, TransactionId wrap prefixed string ids
    - Every valid status is an Enum member - no raw string matching in logic
    - Enum values are the wire/DB representation (serialize without custom encoders)

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: JSON-serializable as-is (REST envelopes and event payloads)
    - Ids are opaque prefixed strings ("inv_...") rather than UUIDs: the identity
      collaborator hands us opaque user ids, so every id follows the same shape
"""

from enum import Enum
from typing import NewType
from uuid import uuid4


# ─── Identity Types ──────────────────────────────────────────────

UserId = NewType("UserId", str)
PropertyId = NewType("PropertyId", str)
InvestmentId = NewType("InvestmentId", str)
TransactionId = NewType("TransactionId", str)


def generate_id(prefix: str) -> str:
    """Random prefixed id, e.g. generate_id("inv") -> "inv_3f9c...". """
    return f"{prefix}_{uuid4().hex[:20]}"


# ─── Constants ───────────────────────────────────────────────────

DEFAULT_FEE_RATE = 0.02
DEFAULT_RESERVATION_ATTEMPTS = 3


# ─── Enums ───────────────────────────────────────────────────────

class PropertyStatus(str, Enum):
    """Listing lifecycle - only ACTIVE properties accept investments."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    FUNDED = "FUNDED"
    SOLD = "SOLD"
    INACTIVE = "INACTIVE"


class InvestmentStatus(str, Enum):
    """Investment lifecycle - transitions enforced by core/investment_status.py."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class TransactionStatus(str, Enum):
    """Ledger entry status - derived from InvestmentStatus, never set directly."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionType(str, Enum):
    INVESTMENT = "INVESTMENT"
    WITHDRAWAL = "WITHDRAWAL"
    DIVIDEND = "DIVIDEND"
    FEE = "FEE"
    REFUND = "REFUND"


class PaymentMethod(str, Enum):
    """Opaque settlement rail - no settlement logic lives in this service."""
    CRYPTO = "CRYPTO"
    WIRE = "WIRE"
    ACH = "ACH"
    CREDIT_CARD = "CREDIT_CARD"


class KycStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class UserRole(str, Enum):
    INVESTOR = "INVESTOR"
    OWNER = "OWNER"
    ADMIN = "ADMIN"


class EventType(str, Enum):
    """Event transport message types (wire `type` field)."""
    PROPERTY_UPDATE = "property_update"
    INVESTMENT_UPDATE = "investment_update"
    NOTIFICATION = "notification"
    PRICE_UPDATE = "price_update"
    SYSTEM = "system"


class ConnectionState(str, Enum):
    """Per-connection lifecycle of the event stream client."""
    CLOSED = "CLOSED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    RECONNECT_WAIT = "RECONNECT_WAIT"
