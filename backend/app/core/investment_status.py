"""Investment Status Machine - legal transitions and the Investment -> Transaction mapping.

Invariants:
    - PENDING -> PROCESSING -> {CONFIRMED | FAILED}
    - PENDING | PROCESSING -> CANCELLED
    - CONFIRMED -> REFUNDED
    - Nothing else moves; FAILED, CANCELLED and REFUNDED are terminal
    - Transaction status is a pure function of investment status

Design Decisions:
    - Transition table as a dict of frozensets: the whole machine is visible in one place
    - Re-applying the current status is a no-op, not a transition (idempotent admin retries)
"""

from app.core.domain_types import InvestmentStatus, TransactionStatus
from app.core.errors import InvalidStateError, ErrorContext


_TRANSITIONS: dict[InvestmentStatus, frozenset[InvestmentStatus]] = {
    InvestmentStatus.PENDING: frozenset({
        InvestmentStatus.PROCESSING, InvestmentStatus.CANCELLED,
    }),
    InvestmentStatus.PROCESSING: frozenset({
        InvestmentStatus.CONFIRMED,
        InvestmentStatus.FAILED,
        InvestmentStatus.CANCELLED,
    }),
    InvestmentStatus.CONFIRMED: frozenset({InvestmentStatus.REFUNDED}),
    InvestmentStatus.FAILED: frozenset(),
    InvestmentStatus.CANCELLED: frozenset(),
    InvestmentStatus.REFUNDED: frozenset(),
}

# Investments holding tokens: counted against the property's supply
HOLDING_STATUSES = frozenset({
    InvestmentStatus.PENDING,
    InvestmentStatus.PROCESSING,
    InvestmentStatus.CONFIRMED,
})

_TRANSACTION_STATUS = {
    InvestmentStatus.CONFIRMED: TransactionStatus.COMPLETED,
    InvestmentStatus.FAILED: TransactionStatus.FAILED,
    InvestmentStatus.CANCELLED: TransactionStatus.CANCELLED,
}


def allowed_transitions(current: InvestmentStatus) -> frozenset[InvestmentStatus]:
    return _TRANSITIONS[InvestmentStatus(current)]


def is_valid_transition(current: InvestmentStatus, target: InvestmentStatus) -> bool:
    return InvestmentStatus(target) in allowed_transitions(current)


def check_transition(
    current: InvestmentStatus,
    target: InvestmentStatus,
    context: ErrorContext | None = None,
) -> InvalidStateError | None:
    """Return an InvalidStateError for an illegal move, None when allowed."""
    current, target = InvestmentStatus(current), InvestmentStatus(target)
    if current == target or is_valid_transition(current, target):
        return None
    return InvalidStateError(
        f"Investment cannot move from {current.value} to {target.value}",
        context,
    )


def releases_tokens(current: InvestmentStatus, target: InvestmentStatus) -> bool:
    """True when the move takes tokens out of circulation back to the property."""
    return (
        InvestmentStatus(current) in HOLDING_STATUSES
        and InvestmentStatus(target) not in HOLDING_STATUSES
    )


def transaction_status_for(status: InvestmentStatus) -> TransactionStatus:
    """CONFIRMED->completed, FAILED->failed, CANCELLED->cancelled, anything else->pending."""
    return _TRANSACTION_STATUS.get(InvestmentStatus(status), TransactionStatus.PENDING)
