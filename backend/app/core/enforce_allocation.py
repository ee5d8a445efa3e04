"""Allocation Rule Enforcement - validates an investment request before any token moves.

Invariants:
    - All functions are PURE: no IO, no async, no DB, no side effects
    - Return an error instance on violation, None on success
    - validate_investment_request chains the checks in fixed order - first error wins:
      KYC -> property exists -> property ACTIVE -> minimum -> token count

Design Decisions:
    - Return errors (not raise): the pipeline decides when to raise, and the checks
      stay trivially testable one by one (ADR: functional core)
    - Token override may buy fewer tokens than the amount covers, never more
      (closes the "tokens without payment" gap of an unchecked override)
"""

import math

from app.core.domain_types import KycStatus, PaymentMethod, PropertyStatus
from app.core.errors import (
    ErrorContext,
    InvalidStateError,
    PermissionDeniedError,
    PropertyChainError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from app.core.ledger_records import PropertyRecord, UserRecord


def check_kyc(user: UserRecord | None, context: ErrorContext | None = None) -> PropertyChainError | None:
    """Rule 1: only KYC-approved users invest."""
    if user is None or user.kyc_status != KycStatus.APPROVED:
        return PermissionDeniedError("KYC verification required", context)
    return None


def check_property_available(
    prop: PropertyRecord | None,
    property_id: str,
    context: ErrorContext | None = None,
) -> PropertyChainError | None:
    """Rule 2: property exists and is open for investment."""
    if prop is None:
        return ResourceNotFoundError("Property", property_id, context)
    if prop.status != PropertyStatus.ACTIVE:
        return InvalidStateError(
            "Property is not available for investment", context,
        )
    return None


def check_minimum_investment(
    prop: PropertyRecord, amount: float, context: ErrorContext | None = None,
) -> PropertyChainError | None:
    """Rule 3: amount covers the property's minimum ticket."""
    if amount < prop.minimum_investment:
        return ValidationFailedError(
            f"Minimum investment is ${prop.minimum_investment:,.2f}",
            "amount", context,
        )
    return None


def compute_tokens(amount: float, token_price: float) -> int:
    """Whole tokens the amount buys at token_price."""
    if token_price <= 0:
        return 0
    return math.floor(amount / token_price)


def check_token_count(
    prop: PropertyRecord,
    amount: float,
    tokens: int,
    tokens_override: int | None,
    context: ErrorContext | None = None,
) -> PropertyChainError | None:
    """Rule 4: at least one token, and an override never exceeds what the amount pays for."""
    if tokens < 1:
        return ValidationFailedError(
            f"Amount buys no tokens at ${prop.token_price:,.2f} per token",
            "amount", context,
        )
    if tokens_override is not None:
        affordable = compute_tokens(amount, prop.token_price)
        if tokens_override > affordable:
            return ValidationFailedError(
                f"Requested {tokens_override} tokens but amount covers only {affordable}",
                "tokens", context,
            )
    return None


def resolve_tokens(prop: PropertyRecord, amount: float, tokens_override: int | None) -> int:
    if tokens_override is not None:
        return tokens_override
    return compute_tokens(amount, prop.token_price)


def check_payment_method(
    payment_method: object, context: ErrorContext | None = None,
) -> PropertyChainError | None:
    """Payment method must be one of the PaymentMethod values."""
    try:
        PaymentMethod(payment_method)
    except ValueError:
        return ValidationFailedError(
            f"Unsupported payment method: {payment_method}", "paymentMethod", context,
        )
    return None


def compute_fee(amount: float, fee_rate: float) -> tuple[float, float]:
    """Return (fee, net_amount) rounded to cents."""
    fee = round(amount * fee_rate, 2)
    return fee, round(amount - fee, 2)


def validate_investment_request(
    user: UserRecord | None,
    prop: PropertyRecord | None,
    property_id: str,
    amount: float,
    tokens_override: int | None = None,
    context: ErrorContext | None = None,
) -> PropertyChainError | None:
    """Chain all allocation checks. Returns first error or None."""
    error = check_kyc(user, context) or check_property_available(
        prop, property_id, context,
    )
    if error:
        return error
    tokens = resolve_tokens(prop, amount, tokens_override)
    return (
        check_minimum_investment(prop, amount, context)
        or check_token_count(prop, amount, tokens, tokens_override, context)
    )
