"""Allocation Pipeline - validates, reserves tokens, records the ledger, publishes changes.

Invariants:
    - Validation order: payment method -> KYC -> property exists -> ACTIVE -> minimum
      -> tokens; first error wins
    - Tokens leave a property ONLY through compare_and_set_available; two requests
      whose combined demand exceeds supply can never both succeed
    - CAS retry budget is bounded (max_attempts); exhaustion returns ConflictError
      immediately, never waits
    - Investment + Transaction are written as one unit: any write failure deletes what
      was written and releases the reserved tokens BEFORE the error propagates
    - Events are published only after the unit commits
    - Batch status updates process each id independently; one failure never aborts others
    - Moving an investment out of PENDING/PROCESSING/CONFIRMED returns its tokens,
      keeping available + held == total
    - A status move whose transaction mirror or token release fails is reverted
      (investment and transaction restored) before the id is reported as skipped

Design Decisions:
    - Impureim sandwich: stores are awaited around pure checks from core/
      (ADR: functional core, imperative shell)
    - Compensation over a cross-store transaction: the record store contract is a
      keyed collection, so rollback is an explicit inverse operation
    - Publish failures are logged, not raised: the ledger is already committed and
      clients recover through refetch on reconnect
"""

import logging
from dataclasses import dataclass, field, replace

from app.core.domain_types import (
    DEFAULT_FEE_RATE,
    DEFAULT_RESERVATION_ATTEMPTS,
    EventType,
    InvestmentStatus,
    PaymentMethod,
    PropertyStatus,
    TransactionStatus,
    TransactionType,
    generate_id,
)
from app.core.enforce_allocation import (
    check_kyc,
    check_property_available,
    compute_fee,
    check_payment_method,
    resolve_tokens,
    validate_investment_request,
)
from app.core.errors import (
    ConflictError,
    ErrorContext,
    PermissionDeniedError,
    PropertyChainError,
    ResourceNotFoundError,
)
from app.core.investment_queries import paginate, summarize_investments
from app.core.investment_status import (
    check_transition,
    releases_tokens,
    transaction_status_for,
)
from app.core.ledger_records import (
    InvestmentRecord,
    PropertyRecord,
    TransactionRecord,
    UserRecord,
)
from app.core.repository_protocols import (
    EventPublisher,
    InvestmentRepository,
    PropertyRepository,
    TransactionRepository,
    UserDirectory,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationResult:
    investment: InvestmentRecord
    transaction: TransactionRecord
    property: PropertyRecord


@dataclass(frozen=True)
class SkippedUpdate:
    investment_id: str
    code: str
    reason: str

    def to_dict(self) -> dict:
        return {"id": self.investment_id, "code": self.code, "reason": self.reason}


@dataclass
class BatchUpdateResult:
    updated: list[InvestmentRecord] = field(default_factory=list)
    skipped: list[SkippedUpdate] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


class AllocationPipeline:
    """Orchestrates investment creation and status changes over the record store."""

    def __init__(
        self,
        users: UserDirectory,
        properties: PropertyRepository,
        investments: InvestmentRepository,
        transactions: TransactionRepository,
        publisher: EventPublisher,
        fee_rate: float = DEFAULT_FEE_RATE,
        max_attempts: int = DEFAULT_RESERVATION_ATTEMPTS,
    ):
        self.users = users
        self.properties = properties
        self.investments = investments
        self.transactions = transactions
        self.publisher = publisher
        self.fee_rate = fee_rate
        self.max_attempts = max(1, max_attempts)

    # ─── createInvestment ────────────────────────────────────────

    async def create_investment(
        self,
        user_id: str,
        property_id: str,
        amount: float,
        payment_method: PaymentMethod,
        tokens: int | None = None,
    ) -> AllocationResult:
        """Reserve tokens and record Investment + Transaction, or raise."""
        ctx = ErrorContext(user_id=user_id, property_id=property_id)
        error = check_payment_method(payment_method, ctx)
        if error:
            raise error
        method = PaymentMethod(payment_method)

        user = await self.users.get(user_id)
        error = check_kyc(user, ctx)
        if error:
            raise error
        prop = await self.properties.get(property_id)
        error = validate_investment_request(
            user, prop, property_id, amount, tokens, ctx,
        )
        if error:
            logger.info(
                f"Investment rejected: {error.message}",
                extra={"user_id": user_id, "property_id": property_id,
                       "error_code": error.code},
            )
            raise error

        requested = resolve_tokens(prop, amount, tokens)
        reserved = await self._reserve_tokens(prop, requested, ctx)
        try:
            investment, transaction = await self._record_ledger(
                user_id, reserved, amount, requested, method,
            )
        except Exception:
            await self._compensate(property_id, requested)
            raise

        logger.info(
            "Investment created",
            extra={"user_id": user_id, "property_id": property_id,
                   "investment_id": investment.id, "tokens": requested},
        )
        await self._publish_investment(investment)
        await self._publish_property(reserved)
        return AllocationResult(investment, transaction, reserved)

    async def _reserve_tokens(
        self, prop: PropertyRecord, tokens: int, ctx: ErrorContext,
    ) -> PropertyRecord:
        """Bounded compare-and-swap loop on available_tokens."""
        current = prop
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                current = await self.properties.get(prop.id)
                error = check_property_available(current, prop.id, ctx)
                if error:
                    raise error
            if tokens > current.available_tokens:
                raise ConflictError(
                    f"Only {current.available_tokens} tokens available", ctx,
                )
            remaining = current.available_tokens - tokens
            swapped = await self.properties.compare_and_set_available(
                current.id, current.available_tokens, remaining,
            )
            if swapped:
                return replace(current, available_tokens=remaining)
            logger.warning(
                "Token reservation contention",
                extra={"property_id": prop.id, "attempt": attempt},
            )
        raise ConflictError("Token reservation contention, retry request", ctx)

    async def _record_ledger(
        self,
        user_id: str,
        prop: PropertyRecord,
        amount: float,
        tokens: int,
        payment_method: PaymentMethod,
    ) -> tuple[InvestmentRecord, TransactionRecord]:
        investment = InvestmentRecord(
            id=generate_id("inv"),
            user_id=user_id,
            property_id=prop.id,
            amount=amount,
            tokens=tokens,
            status=InvestmentStatus.PENDING,
            payment_method=payment_method,
        )
        fee, net_amount = compute_fee(amount, self.fee_rate)
        transaction = TransactionRecord(
            id=generate_id("txn"),
            user_id=user_id,
            related_id=investment.id,
            amount=amount,
            fee=fee,
            net_amount=net_amount,
            status=TransactionStatus.PENDING,
            type=TransactionType.INVESTMENT,
            payment_method=payment_method,
            description=f"Investment in {prop.title}",
        )
        saved = await self.investments.put(investment)
        try:
            recorded = await self.transactions.put(transaction)
        except Exception:
            await self._discard_investment(saved.id)
            raise
        return saved, recorded

    async def _discard_investment(self, investment_id: str) -> None:
        try:
            await self.investments.delete(investment_id)
        except Exception as e:
            logger.error(
                f"Failed to discard investment during rollback: {e}",
                extra={"investment_id": investment_id}, exc_info=True,
            )

    async def _compensate(self, property_id: str, tokens: int) -> None:
        """Return reserved tokens after a failed ledger write."""
        logger.warning(
            "Rolling back token reservation",
            extra={"property_id": property_id, "tokens": tokens},
        )
        try:
            released = await self.properties.release_tokens(property_id, tokens)
        except Exception as e:
            logger.critical(
                f"Token rollback failed, supply is short by {tokens}: {e}",
                extra={"property_id": property_id}, exc_info=True,
            )
            return
        if not released:
            logger.error(
                "Token rollback rejected by store",
                extra={"property_id": property_id, "tokens": tokens},
            )

    # ─── batchUpdateInvestments ──────────────────────────────────

    async def batch_update_investments(
        self,
        actor_id: str,
        investment_ids: list[str],
        status: InvestmentStatus | None,
    ) -> BatchUpdateResult:
        """Admin-only. Apply status to each id; skips are reported, never raised."""
        await self.require_admin(actor_id)
        result = BatchUpdateResult()
        touched: set[str] = set()

        for investment_id in dict.fromkeys(investment_ids):
            try:
                updated, changed, released = await self._apply_status(
                    investment_id, status,
                )
            except PropertyChainError as e:
                logger.info(
                    f"Batch update skipped: {e.message}",
                    extra={"investment_id": investment_id, "error_code": e.code},
                )
                result.skipped.append(SkippedUpdate(investment_id, e.code, e.message))
                continue
            result.updated.append(updated)
            if changed:
                await self._publish_investment(updated)
            if released:
                touched.add(updated.property_id)

        for property_id in touched:
            try:
                prop = await self.properties.get(property_id)
            except PropertyChainError as e:
                logger.warning(
                    f"Property refresh after batch update failed: {e.message}",
                    extra={"property_id": property_id, "error_code": e.code},
                )
                continue
            if prop:
                await self._publish_property(prop)
        return result

    async def _apply_status(
        self, investment_id: str, target: InvestmentStatus | None,
    ) -> tuple[InvestmentRecord, bool, bool]:
        """Returns (record, status_changed, tokens_released)."""
        ctx = ErrorContext(investment_id=investment_id)
        investment = await self.investments.get(investment_id)
        if investment is None:
            raise ResourceNotFoundError("Investment", investment_id, ctx)
        if target is None or InvestmentStatus(target) == investment.status:
            return investment, False, False

        target = InvestmentStatus(target)
        prior = investment.status
        error = check_transition(prior, target, ctx)
        if error:
            raise error
        updated = await self.investments.update_status(investment_id, prior, target)
        if updated is None:
            raise ConflictError("Investment status changed concurrently", ctx)

        transaction = await self._find_transaction(investment_id)
        mirrored = False
        released = releases_tokens(prior, target)
        try:
            if transaction is not None:
                await self.transactions.update_status(
                    transaction.id, transaction_status_for(target),
                )
                mirrored = True
            if released and not await self.properties.release_tokens(
                investment.property_id, investment.tokens,
            ):
                raise ConflictError(
                    f"Token release of {investment.tokens} rejected by store", ctx,
                )
        except PropertyChainError:
            await self._revert_status(
                investment, target, transaction if mirrored else None,
            )
            raise
        return updated, True, released

    async def _find_transaction(self, investment_id: str) -> TransactionRecord | None:
        transaction = await self.transactions.get_by_related(investment_id)
        if transaction is None:
            logger.error(
                "Investment has no correlated transaction",
                extra={"investment_id": investment_id},
            )
        return transaction

    async def _revert_status(
        self,
        investment: InvestmentRecord,
        applied: InvestmentStatus,
        transaction: TransactionRecord | None,
    ) -> None:
        """Undo a status move whose follow-up writes failed."""
        logger.warning(
            f"Reverting status move {investment.status.value} -> {applied.value}",
            extra={"investment_id": investment.id},
        )
        try:
            if transaction is not None:
                await self.transactions.update_status(transaction.id, transaction.status)
            restored = await self.investments.update_status(
                investment.id, applied, investment.status,
            )
        except PropertyChainError as e:
            logger.critical(
                f"Status revert failed, investment and ledger disagree: {e.message}",
                extra={"investment_id": investment.id, "error_code": e.code},
            )
            return
        if restored is None:
            logger.error(
                "Status revert lost a race with another update",
                extra={"investment_id": investment.id},
            )

    # ─── listInvestments ─────────────────────────────────────────

    async def list_investments(
        self,
        viewer_id: str,
        user_id: str | None = None,
        property_id: str | None = None,
        status: InvestmentStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict:
        """Non-admins only ever see their own investments."""
        viewer = await self._get_user(viewer_id)
        if not viewer.is_admin:
            user_id = viewer_id
        records = await self.investments.list(
            user_id=user_id, property_id=property_id, status=status,
        )
        page_items, meta = paginate(records, page, page_size)

        properties: dict[str, PropertyRecord | None] = {}
        items = []
        for inv in page_items:
            if inv.property_id not in properties:
                properties[inv.property_id] = await self.properties.get(inv.property_id)
            prop = properties[inv.property_id]
            items.append({
                **inv.to_dict(),
                "property": {
                    "id": prop.id,
                    "title": prop.title,
                    "tokenPrice": prop.token_price,
                } if prop else None,
            })
        return {
            "investments": items,
            "summary": summarize_investments(records),
            "pagination": meta,
        }

    # ─── Shared ──────────────────────────────────────────────────

    async def require_admin(self, user_id: str) -> UserRecord:
        user = await self._get_user(user_id)
        if not user.is_admin:
            raise PermissionDeniedError(
                "Administrator role required", ErrorContext(user_id=user_id),
            )
        return user

    async def _get_user(self, user_id: str) -> UserRecord:
        user = await self.users.get(user_id)
        if user is None:
            raise PermissionDeniedError(
                "Unknown user", ErrorContext(user_id=user_id),
            )
        return user

    async def _publish_investment(self, investment: InvestmentRecord) -> None:
        await self._publish(EventType.INVESTMENT_UPDATE, {
            "investmentId": investment.id,
            "userId": investment.user_id,
            "propertyId": investment.property_id,
            "status": InvestmentStatus(investment.status).value,
            "tokens": investment.tokens,
            "amount": investment.amount,
            "description": (
                f"Investment {investment.id} is "
                f"{InvestmentStatus(investment.status).value.lower()}"
            ),
        })

    async def _publish_property(self, prop: PropertyRecord) -> None:
        await self._publish(EventType.PROPERTY_UPDATE, {
            "propertyId": prop.id,
            "availableTokens": prop.available_tokens,
            "totalTokens": prop.total_tokens,
            "fundingProgress": prop.funding_progress,
            "status": PropertyStatus(prop.status).value,
        })

    async def _publish(self, event_type: EventType, data: dict) -> None:
        try:
            await self.publisher.publish(event_type, data)
        except PropertyChainError as e:
            logger.warning(
                f"Event publish failed: {e.message}",
                extra={"event_type": event_type.value, "error_code": e.code},
            )
