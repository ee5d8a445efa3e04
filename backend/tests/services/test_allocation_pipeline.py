"""Allocation Pipeline — tests against in-memory repository fakes.

Invariants:
    - Validation errors surface in KYC -> existence -> status -> minimum order
    - Concurrent requests whose demand exceeds supply never both succeed
    - available + held == total after any sequence of creates and status updates
    - A failed ledger write leaves no reserved tokens and no investment behind
    - Batch update maps investment status onto the correlated transaction
"""

import asyncio
from dataclasses import replace

import pytest

from app.core.domain_types import (
    InvestmentStatus, KycStatus, PaymentMethod, PropertyStatus,
    TransactionStatus, UserRole,
)
from app.core.errors import (
    ConflictError, InvalidStateError, PermissionDeniedError,
    ResourceNotFoundError, UnavailableError, ValidationFailedError,
)
from app.services.allocation_pipeline import AllocationPipeline
from tests.services.fake_stores import (
    FakeInvestments, FakeProperties, FakeTransactions, FakeUsers,
    RecordingPublisher, held_tokens, make_property, make_user,
)


@pytest.fixture
def stores():
    return {
        "users": FakeUsers(
            make_user("usr_a"),
            make_user("usr_b"),
            make_user("usr_pending", kyc=KycStatus.PENDING),
            make_user("usr_admin", role=UserRole.ADMIN),
        ),
        "properties": FakeProperties(
            make_property("prop_1", total=1000),
            make_property("prop_draft", status=PropertyStatus.DRAFT),
            make_property("prop_min", minimum_investment=500.0),
        ),
        "investments": FakeInvestments(),
        "transactions": FakeTransactions(),
        "publisher": RecordingPublisher(),
    }


@pytest.fixture
def pipeline(stores):
    return AllocationPipeline(**stores)


async def _create(pipeline, user_id="usr_a", property_id="prop_1", amount=100.0, **kw):
    return await pipeline.create_investment(
        user_id, property_id, amount, PaymentMethod.CRYPTO, **kw,
    )


def _conserved(stores, property_id="prop_1") -> bool:
    prop = stores["properties"].rows[property_id]
    return prop.available_tokens + held_tokens(stores["investments"], property_id) == prop.total_tokens


# ─── createInvestment ────────────────────────────────────────────

async def test_create_reserves_tokens_and_records_ledger(pipeline, stores):
    result = await _create(pipeline, amount=1000.0)

    assert result.investment.tokens == 1000
    assert result.investment.status == InvestmentStatus.PENDING
    assert result.transaction.related_id == result.investment.id
    assert result.transaction.status == TransactionStatus.PENDING
    assert stores["properties"].rows["prop_1"].available_tokens == 0


async def test_fee_is_two_percent_of_amount(pipeline):
    result = await _create(pipeline, amount=1000.0)
    assert result.transaction.fee == 20.0
    assert result.transaction.net_amount == 980.0


async def test_custom_fee_rate(stores):
    pipeline = AllocationPipeline(**stores, fee_rate=0.05)
    result = await _create(pipeline, amount=200.0)
    assert result.transaction.fee == 10.0


async def test_token_override_buys_fewer_tokens(pipeline, stores):
    result = await _create(pipeline, amount=100.0, tokens=40)
    assert result.investment.tokens == 40
    assert stores["properties"].rows["prop_1"].available_tokens == 960


async def test_publishes_investment_then_property_update(pipeline, stores):
    result = await _create(pipeline, amount=250.0)
    kinds = [t for t, _ in stores["publisher"].events]
    assert kinds == ["investment_update", "property_update"]
    [prop_event] = stores["publisher"].of_type("property_update")
    assert prop_event["availableTokens"] == 750
    assert prop_event["fundingProgress"] == 25
    [inv_event] = stores["publisher"].of_type("investment_update")
    assert inv_event["investmentId"] == result.investment.id
    assert inv_event["userId"] == "usr_a"


async def test_kyc_pending_is_denied(pipeline):
    with pytest.raises(PermissionDeniedError):
        await _create(pipeline, user_id="usr_pending")


async def test_kyc_checked_before_property_existence(pipeline):
    with pytest.raises(PermissionDeniedError):
        await _create(pipeline, user_id="usr_pending", property_id="prop_missing")


async def test_missing_property_is_not_found(pipeline):
    with pytest.raises(ResourceNotFoundError):
        await _create(pipeline, property_id="prop_missing")


async def test_inactive_property_is_invalid_state(pipeline):
    with pytest.raises(InvalidStateError):
        await _create(pipeline, property_id="prop_draft")


async def test_below_minimum_is_validation_failed(pipeline, stores):
    with pytest.raises(ValidationFailedError):
        await _create(pipeline, property_id="prop_min", amount=499.0)
    assert stores["properties"].cas_calls == 0


async def test_unknown_payment_method_rejected_before_reservation(pipeline, stores):
    with pytest.raises(ValidationFailedError) as exc:
        await pipeline.create_investment("usr_a", "prop_1", 100.0, "PAYPAL")
    assert exc.value.field == "paymentMethod"
    assert stores["properties"].cas_calls == 0
    assert stores["properties"].rows["prop_1"].available_tokens == 1000


async def test_more_than_available_is_conflict(pipeline, stores):
    stores["properties"].rows["prop_1"] = make_property("prop_1", total=1000, available=50)
    with pytest.raises(ConflictError) as exc:
        await _create(pipeline, amount=100.0)
    assert exc.value.retryable
    assert stores["properties"].rows["prop_1"].available_tokens == 50


async def test_validation_failure_publishes_nothing(pipeline, stores):
    with pytest.raises(InvalidStateError):
        await _create(pipeline, property_id="prop_draft")
    assert stores["publisher"].events == []


# ─── Concurrency ─────────────────────────────────────────────────

async def test_700_and_500_against_1000_exactly_one_succeeds(pipeline, stores):
    results = await asyncio.gather(
        _create(pipeline, user_id="usr_a", amount=700.0),
        _create(pipeline, user_id="usr_b", amount=500.0),
        return_exceptions=True,
    )
    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]

    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ConflictError)
    available = stores["properties"].rows["prop_1"].available_tokens
    assert available == 1000 - successes[0].investment.tokens
    assert _conserved(stores)


async def test_many_concurrent_requests_never_oversell(pipeline, stores):
    results = await asyncio.gather(
        *(_create(pipeline, user_id="usr_a", amount=150.0) for _ in range(12)),
        return_exceptions=True,
    )
    sold = sum(r.investment.tokens for r in results if not isinstance(r, Exception))
    errors = [r for r in results if isinstance(r, Exception)]

    assert sold <= 1000
    assert all(isinstance(e, ConflictError) for e in errors)
    assert stores["properties"].rows["prop_1"].available_tokens == 1000 - sold
    assert _conserved(stores)


async def test_retry_budget_exhaustion_is_conflict(stores):
    class AlwaysLosingProperties(FakeProperties):
        async def compare_and_set_available(self, property_id, expected, new):
            self.cas_calls += 1
            return False

    stores["properties"] = AlwaysLosingProperties(make_property("prop_1"))
    pipeline = AllocationPipeline(**stores, max_attempts=3)
    with pytest.raises(ConflictError):
        await _create(pipeline)
    assert stores["properties"].cas_calls == 3


# ─── Rollback ────────────────────────────────────────────────────

async def test_transaction_write_failure_rolls_back_everything(pipeline, stores):
    stores["transactions"].fail_on.add("put")
    with pytest.raises(UnavailableError):
        await _create(pipeline, amount=300.0)

    assert stores["properties"].rows["prop_1"].available_tokens == 1000
    assert stores["investments"].rows == {}
    assert stores["publisher"].events == []


async def test_investment_write_failure_releases_tokens(pipeline, stores):
    stores["investments"].fail_on.add("put")
    with pytest.raises(UnavailableError):
        await _create(pipeline, amount=300.0)
    assert stores["properties"].rows["prop_1"].available_tokens == 1000


async def test_failed_compensation_still_raises_original_error(pipeline, stores):
    stores["investments"].fail_on.add("put")
    stores["properties"].fail_on.add("release_tokens")
    with pytest.raises(UnavailableError) as exc:
        await _create(pipeline, amount=300.0)
    assert exc.value.operation == "put_investment"


# ─── batchUpdateInvestments ──────────────────────────────────────

async def _advance(pipeline, ids, *statuses):
    result = None
    for status in statuses:
        result = await pipeline.batch_update_investments("usr_admin", ids, status)
    return result


async def test_confirm_marks_transaction_completed(pipeline, stores):
    created = await _create(pipeline)
    result = await _advance(
        pipeline, [created.investment.id],
        InvestmentStatus.PROCESSING, InvestmentStatus.CONFIRMED,
    )
    assert result.updated[0].status == InvestmentStatus.CONFIRMED
    txn = stores["transactions"].rows[created.transaction.id]
    assert txn.status == TransactionStatus.COMPLETED


@pytest.mark.parametrize("path,expected", [
    ((InvestmentStatus.PROCESSING, InvestmentStatus.FAILED), TransactionStatus.FAILED),
    ((InvestmentStatus.CANCELLED,), TransactionStatus.CANCELLED),
    ((InvestmentStatus.PROCESSING,), TransactionStatus.PENDING),
])
async def test_transaction_mirrors_investment_status(pipeline, stores, path, expected):
    created = await _create(pipeline)
    await _advance(pipeline, [created.investment.id], *path)
    assert stores["transactions"].rows[created.transaction.id].status == expected


async def test_missing_ids_are_skipped_not_fatal(pipeline):
    created = await _create(pipeline)
    result = await pipeline.batch_update_investments(
        "usr_admin", ["inv_missing", created.investment.id], InvestmentStatus.PROCESSING,
    )
    assert [r.id for r in result.updated] == [created.investment.id]
    assert result.skipped_count == 1
    assert result.skipped[0].code == "RESOURCE_NOT_FOUND"


async def test_illegal_transition_is_skipped(pipeline, stores):
    created = await _create(pipeline)
    result = await pipeline.batch_update_investments(
        "usr_admin", [created.investment.id], InvestmentStatus.CONFIRMED,
    )
    assert result.updated == []
    assert result.skipped[0].code == "INVALID_STATE"
    assert stores["investments"].rows[created.investment.id].status == InvestmentStatus.PENDING


async def test_non_admin_cannot_batch_update(pipeline):
    created = await _create(pipeline)
    with pytest.raises(PermissionDeniedError):
        await pipeline.batch_update_investments(
            "usr_a", [created.investment.id], InvestmentStatus.PROCESSING,
        )


async def test_cancel_releases_tokens_and_publishes(pipeline, stores):
    created = await _create(pipeline, amount=400.0)
    stores["publisher"].events.clear()

    await _advance(pipeline, [created.investment.id], InvestmentStatus.CANCELLED)

    assert stores["properties"].rows["prop_1"].available_tokens == 1000
    [prop_event] = stores["publisher"].of_type("property_update")
    assert prop_event["availableTokens"] == 1000
    assert _conserved(stores)


async def test_reapplying_same_status_is_a_noop(pipeline, stores):
    created = await _create(pipeline)
    await _advance(pipeline, [created.investment.id], InvestmentStatus.PROCESSING)
    stores["publisher"].events.clear()

    result = await _advance(pipeline, [created.investment.id], InvestmentStatus.PROCESSING)

    assert result.updated[0].status == InvestmentStatus.PROCESSING
    assert stores["publisher"].events == []


async def test_duplicate_ids_processed_once(pipeline, stores):
    created = await _create(pipeline, amount=100.0)
    result = await pipeline.batch_update_investments(
        "usr_admin", [created.investment.id, created.investment.id],
        InvestmentStatus.CANCELLED,
    )
    assert len(result.updated) == 1
    assert stores["properties"].rows["prop_1"].available_tokens == 1000


async def test_conservation_across_mixed_operations(pipeline, stores):
    a = await _create(pipeline, user_id="usr_a", amount=300.0)
    b = await _create(pipeline, user_id="usr_b", amount=200.0)
    c = await _create(pipeline, user_id="usr_a", amount=100.0)
    await _advance(pipeline, [a.investment.id, b.investment.id], InvestmentStatus.PROCESSING)
    await _advance(pipeline, [a.investment.id], InvestmentStatus.CONFIRMED)
    await _advance(pipeline, [b.investment.id], InvestmentStatus.FAILED)
    await _advance(pipeline, [c.investment.id], InvestmentStatus.CANCELLED)
    await _advance(pipeline, [a.investment.id], InvestmentStatus.REFUNDED)

    assert _conserved(stores)
    assert stores["properties"].rows["prop_1"].available_tokens == 1000


async def test_failed_transaction_mirror_reverts_status_move(pipeline, stores):
    created = await _create(pipeline, amount=400.0)
    stores["publisher"].events.clear()
    stores["transactions"].fail_on.add("update_status")

    result = await _advance(pipeline, [created.investment.id], InvestmentStatus.CANCELLED)

    assert result.updated == []
    assert [s.code for s in result.skipped] == ["UNAVAILABLE"]
    assert stores["investments"].rows[created.investment.id].status == InvestmentStatus.PENDING
    assert stores["transactions"].rows[created.transaction.id].status == TransactionStatus.PENDING
    assert stores["properties"].rows["prop_1"].available_tokens == 600
    assert _conserved(stores)
    assert stores["publisher"].events == []


async def test_failed_token_release_reverts_investment_and_transaction(pipeline, stores):
    created = await _create(pipeline, amount=400.0)
    stores["properties"].fail_on.add("release_tokens")

    result = await _advance(pipeline, [created.investment.id], InvestmentStatus.CANCELLED)

    assert [s.code for s in result.skipped] == ["UNAVAILABLE"]
    assert stores["investments"].rows[created.investment.id].status == InvestmentStatus.PENDING
    assert stores["transactions"].rows[created.transaction.id].status == TransactionStatus.PENDING
    assert _conserved(stores)


async def test_rejected_token_release_is_skipped_and_reverted(pipeline, stores):
    created = await _create(pipeline, amount=400.0)
    props = stores["properties"]
    props.rows["prop_1"] = replace(props.rows["prop_1"], available_tokens=1000)

    result = await _advance(pipeline, [created.investment.id], InvestmentStatus.CANCELLED)

    assert [s.code for s in result.skipped] == ["CONFLICT"]
    assert stores["investments"].rows[created.investment.id].status == InvestmentStatus.PENDING
    assert stores["transactions"].rows[created.transaction.id].status == TransactionStatus.PENDING
    assert props.rows["prop_1"].available_tokens == 1000


async def test_property_refresh_failure_keeps_committed_updates(pipeline, stores):
    created = await _create(pipeline, amount=400.0)
    stores["publisher"].events.clear()
    stores["properties"].fail_on.add("get")

    result = await _advance(pipeline, [created.investment.id], InvestmentStatus.CANCELLED)

    assert [r.status for r in result.updated] == [InvestmentStatus.CANCELLED]
    assert stores["properties"].rows["prop_1"].available_tokens == 1000
    assert stores["publisher"].of_type("investment_update")
    assert stores["publisher"].of_type("property_update") == []


# ─── listInvestments ─────────────────────────────────────────────

async def test_non_admin_sees_only_own_investments(pipeline):
    await _create(pipeline, user_id="usr_a")
    await _create(pipeline, user_id="usr_b")
    listing = await pipeline.list_investments("usr_a", user_id="usr_b")
    assert {i["userId"] for i in listing["investments"]} == {"usr_a"}


async def test_admin_sees_all_and_filters(pipeline):
    await _create(pipeline, user_id="usr_a")
    await _create(pipeline, user_id="usr_b")
    everything = await pipeline.list_investments("usr_admin")
    only_b = await pipeline.list_investments("usr_admin", user_id="usr_b")
    assert everything["pagination"]["total"] == 2
    assert only_b["pagination"]["total"] == 1


async def test_listing_enriches_items_and_summarizes(pipeline):
    await _create(pipeline, amount=100.0)
    await _create(pipeline, amount=50.0)
    listing = await pipeline.list_investments("usr_a", page_size=1)

    assert len(listing["investments"]) == 1
    assert listing["investments"][0]["property"]["title"] == "Harbor Lofts"
    assert listing["summary"]["totalInvested"] == 150.0
    assert listing["summary"]["totalTokens"] == 150
    assert listing["pagination"]["hasNext"]


async def test_unknown_viewer_is_denied(pipeline):
    with pytest.raises(PermissionDeniedError):
        await pipeline.list_investments("usr_ghost")
