"""Properties Routes — listing reads for everyone, create/update for admins.

Invariants:
    - totalTokens/availableTokens are never writable here (PropertyUpdate forbids them)
    - Writes share one rate-limit budget per admin
"""

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_user_id, get_property_admin, rate_limit
from app.core.domain_types import PropertyStatus
from app.schemas.property import PropertyCreate, PropertyUpdate
from app.services.property_admin import PropertyAdmin

router = APIRouter(prefix="/api/v1/properties", tags=["properties"])


@router.get("")
async def list_properties(
    status_filter: PropertyStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    _caller: str = Depends(get_current_user_id),
    admin: PropertyAdmin = Depends(get_property_admin),
):
    return await admin.list_properties(status_filter, page, page_size)


@router.get("/{property_id}")
async def get_property(
    property_id: str,
    _caller: str = Depends(get_current_user_id),
    admin: PropertyAdmin = Depends(get_property_admin),
):
    prop = await admin.get_property(property_id)
    return prop.to_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_property(
    body: PropertyCreate,
    caller_id: str = Depends(get_current_user_id),
    _limit=Depends(rate_limit("properties-write")),
    admin: PropertyAdmin = Depends(get_property_admin),
):
    prop = await admin.create_property(
        actor_id=caller_id,
        title=body.title,
        total_tokens=body.total_tokens,
        token_price=body.token_price,
        minimum_investment=body.minimum_investment,
        price=body.price,
        status=body.status,
    )
    return prop.to_dict()


@router.patch("/{property_id}")
async def update_property(
    property_id: str,
    body: PropertyUpdate,
    caller_id: str = Depends(get_current_user_id),
    _limit=Depends(rate_limit("properties-write")),
    admin: PropertyAdmin = Depends(get_property_admin),
):
    prop = await admin.update_property(
        caller_id, property_id, **body.model_dump(exclude_unset=True),
    )
    return prop.to_dict()
