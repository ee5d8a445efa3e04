"""Boundary Protocols - contracts between core and shell.

Invariants:
    - Core NEVER imports from shell - dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - compare_and_set_available is the ONLY way to take tokens from a property;
      it succeeds iff the stored value still equals `expected`
    - release_tokens is an atomic increment bounded by total_tokens
    - Store failures surface as UnavailableError, never as driver exceptions

Design Decisions:
    - Protocol over ABC: structural subtyping, the SQL stores and the test fakes
      share no base class
    - Async in Protocol: implementations do IO; the pipeline awaits them around
      pure checks from core/enforce_allocation.py
    - update_status is conditional on the prior status: a concurrent admin cannot
      apply the same transition twice (and release tokens twice)
"""

from typing import Protocol

from app.core.domain_types import (
    EventType, InvestmentStatus, PropertyStatus, TransactionStatus,
)
from app.core.ledger_records import (
    InvestmentRecord, PropertyRecord, TransactionRecord, UserRecord,
)


class UserDirectory(Protocol):
    """Read-only view of the identity collaborator's user records."""
    async def get(self, user_id: str) -> UserRecord | None: ...


class PropertyRepository(Protocol):
    async def get(self, property_id: str) -> PropertyRecord | None: ...
    async def list(
        self, status: PropertyStatus | None = None,
        limit: int = 20, offset: int = 0,
    ) -> tuple[list[PropertyRecord], int]: ...
    async def put(self, record: PropertyRecord) -> PropertyRecord: ...
    async def update_fields(
        self, property_id: str, **fields: object,
    ) -> PropertyRecord | None: ...
    async def compare_and_set_available(
        self, property_id: str, expected: int, new: int,
    ) -> bool: ...
    async def release_tokens(self, property_id: str, tokens: int) -> bool: ...


class InvestmentRepository(Protocol):
    async def get(self, investment_id: str) -> InvestmentRecord | None: ...
    async def list(
        self,
        user_id: str | None = None,
        property_id: str | None = None,
        status: InvestmentStatus | None = None,
    ) -> list[InvestmentRecord]: ...
    async def put(self, record: InvestmentRecord) -> InvestmentRecord: ...
    async def delete(self, investment_id: str) -> bool: ...
    async def update_status(
        self, investment_id: str,
        expected: InvestmentStatus, new: InvestmentStatus,
    ) -> InvestmentRecord | None: ...


class TransactionRepository(Protocol):
    async def get_by_related(self, related_id: str) -> TransactionRecord | None: ...
    async def put(self, record: TransactionRecord) -> TransactionRecord: ...
    async def delete(self, transaction_id: str) -> bool: ...
    async def update_status(
        self, transaction_id: str, status: TransactionStatus,
    ) -> TransactionRecord | None: ...


class EventPublisher(Protocol):
    """Fan-out of change notifications to connected clients."""
    async def publish(self, event_type: EventType, data: dict) -> int: ...
