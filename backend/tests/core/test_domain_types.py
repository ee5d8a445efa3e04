"""Domain Types & Errors — tests for ids, enums and the error envelope."""

import json

from app.core.domain_types import EventType, InvestmentStatus, generate_id
from app.core.errors import (
    ConflictError, ErrorContext, InvalidStateError, RateLimitedError,
    ResourceNotFoundError, UnavailableError, ValidationFailedError,
)


def test_generate_id_is_prefixed_and_unique():
    ids = {generate_id("inv") for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("inv_") for i in ids)


def test_enums_serialize_as_plain_strings():
    payload = json.dumps({"s": InvestmentStatus.CONFIRMED, "t": EventType.PRICE_UPDATE})
    assert payload == '{"s": "CONFIRMED", "t": "price_update"}'


def test_http_status_per_error_kind():
    assert ValidationFailedError("x").http_status == 400
    assert ResourceNotFoundError("Property", "p").http_status == 404
    assert InvalidStateError("x").http_status == 409
    assert ConflictError("x").http_status == 409
    assert RateLimitedError(1000).http_status == 429
    assert UnavailableError("down", "commit").http_status == 503


def test_only_conflict_and_unavailable_are_retryable():
    assert ConflictError("x").retryable
    assert UnavailableError("down", "commit").retryable
    assert not InvalidStateError("x").retryable
    assert not ValidationFailedError("x").retryable


def test_envelope_shape():
    error = ConflictError("Only 3 tokens available", ErrorContext(property_id="prop_1"))
    body = error.to_response()["error"]
    assert body["code"] == "CONFLICT"
    assert body["retryable"] is True
    assert body["context"]["property_id"] == "prop_1"
    assert "debug_info" not in body["context"]


def test_rate_limited_carries_retry_after():
    body = RateLimitedError(2500).to_response()["error"]
    assert body["context"]["retry_after_ms"] == 2500
