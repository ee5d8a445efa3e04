"""Allocation Rule Enforcement — tests for ordered, pure validation checks.

Tests cover:
    - Each rule in isolation
    - First-error-wins ordering of validate_investment_request
    - Token computation (floor) and override bounds
    - Fee arithmetic
"""

from app.core.domain_types import KycStatus, PaymentMethod, PropertyStatus, UserRole
from app.core.enforce_allocation import (
    check_kyc,
    check_minimum_investment,
    check_payment_method,
    check_property_available,
    compute_fee,
    compute_tokens,
    resolve_tokens,
    validate_investment_request,
)
from app.core.errors import (
    InvalidStateError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from app.core.ledger_records import PropertyRecord, UserRecord


def _user(kyc=KycStatus.APPROVED):
    return UserRecord(id="usr_1", kyc_status=kyc, role=UserRole.INVESTOR)


def _property(**overrides):
    fields = dict(
        id="prop_1", title="Harbor Lofts", total_tokens=1000,
        available_tokens=1000, token_price=10.0, minimum_investment=100.0,
        status=PropertyStatus.ACTIVE,
    )
    fields.update(overrides)
    return PropertyRecord(**fields)


def test_kyc_pending_is_denied():
    assert isinstance(check_kyc(_user(KycStatus.PENDING)), PermissionDeniedError)


def test_unknown_user_is_denied():
    assert isinstance(check_kyc(None), PermissionDeniedError)


def test_kyc_approved_passes():
    assert check_kyc(_user()) is None


def test_missing_property_is_not_found():
    error = check_property_available(None, "prop_x")
    assert isinstance(error, ResourceNotFoundError)
    assert "prop_x" in error.message


def test_inactive_property_is_invalid_state():
    error = check_property_available(_property(status=PropertyStatus.FUNDED), "prop_1")
    assert isinstance(error, InvalidStateError)


def test_below_minimum_is_validation_failed():
    error = check_minimum_investment(_property(), 99.99)
    assert isinstance(error, ValidationFailedError)
    assert error.field == "amount"


def test_compute_tokens_floors():
    assert compute_tokens(1005, 10.0) == 100
    assert compute_tokens(9.99, 10.0) == 0


def test_override_wins_over_computed():
    assert resolve_tokens(_property(), 1000, 40) == 40
    assert resolve_tokens(_property(), 1000, None) == 100


def test_override_above_affordable_is_rejected():
    error = validate_investment_request(_user(), _property(), "prop_1", 1000, 101)
    assert isinstance(error, ValidationFailedError)
    assert error.field == "tokens"


def test_amount_buying_zero_tokens_is_rejected():
    prop = _property(minimum_investment=0, token_price=500.0)
    error = validate_investment_request(_user(), prop, "prop_1", 100, None)
    assert isinstance(error, ValidationFailedError)


def test_kyc_checked_before_property():
    error = validate_investment_request(
        _user(KycStatus.REJECTED), None, "prop_missing", 10,
    )
    assert isinstance(error, PermissionDeniedError)


def test_existence_checked_before_minimum():
    error = validate_investment_request(_user(), None, "prop_missing", 1)
    assert isinstance(error, ResourceNotFoundError)


def test_status_checked_before_minimum():
    prop = _property(status=PropertyStatus.DRAFT)
    error = validate_investment_request(_user(), prop, "prop_1", 1)
    assert isinstance(error, InvalidStateError)


def test_valid_request_passes():
    assert validate_investment_request(_user(), _property(), "prop_1", 1000) is None


def test_fee_is_two_percent():
    assert compute_fee(1000, 0.02) == (20.0, 980.0)


def test_fee_rounds_to_cents():
    fee, net = compute_fee(333.33, 0.02)
    assert fee == 6.67
    assert net == 326.66


def test_payment_method_accepts_enum_and_wire_value():
    assert check_payment_method(PaymentMethod.WIRE) is None
    assert check_payment_method("CRYPTO") is None


def test_unknown_payment_method_is_validation_failed():
    error = check_payment_method("PAYPAL")
    assert error.code == "VALIDATION_FAILED"
    assert error.field == "paymentMethod"
