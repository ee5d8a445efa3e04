"""Investments Routes — create, list and batch-update investments.

Invariants:
    - Every route is authenticated and rate limited per (operation, user)
    - POST returns 201 with the investment and its correlated transaction
    - PUT is admin-only; per-id failures are reported in `errors`, never as a non-2xx
    - GET scopes non-admin callers to their own investments

Design Decisions:
    - Routes are thin: parse, delegate to AllocationPipeline, shape the response
      (ADR: business rules live in core/ and services/)
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_user_id, get_pipeline, rate_limit
from app.core.domain_types import InvestmentStatus
from app.schemas.investment import BatchUpdateRequest, InvestmentCreate
from app.services.allocation_pipeline import AllocationPipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/investments", tags=["investments"])


@router.get("")
async def list_investments(
    user_id: str | None = Query(None, alias="userId"),
    property_id: str | None = Query(None, alias="propertyId"),
    status_filter: InvestmentStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    caller_id: str = Depends(get_current_user_id),
    _limit=Depends(rate_limit("investments-get")),
    pipeline: AllocationPipeline = Depends(get_pipeline),
):
    return await pipeline.list_investments(
        viewer_id=caller_id,
        user_id=user_id,
        property_id=property_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_investment(
    body: InvestmentCreate,
    caller_id: str = Depends(get_current_user_id),
    _limit=Depends(rate_limit("investments-post")),
    pipeline: AllocationPipeline = Depends(get_pipeline),
):
    result = await pipeline.create_investment(
        user_id=caller_id,
        property_id=body.property_id,
        amount=body.amount,
        payment_method=body.payment_method,
        tokens=body.tokens,
    )
    return {
        "investment": result.investment.to_dict(),
        "transaction": result.transaction.to_dict(),
    }


@router.put("")
async def batch_update_investments(
    body: BatchUpdateRequest,
    caller_id: str = Depends(get_current_user_id),
    _limit=Depends(rate_limit("investments-put")),
    pipeline: AllocationPipeline = Depends(get_pipeline),
):
    result = await pipeline.batch_update_investments(
        actor_id=caller_id,
        investment_ids=body.investment_ids,
        status=body.updates.status,
    )
    return {
        "investments": [inv.to_dict() for inv in result.updated],
        "updated": len(result.updated),
        "skipped": result.skipped_count,
        "errors": [s.to_dict() for s in result.skipped],
    }
