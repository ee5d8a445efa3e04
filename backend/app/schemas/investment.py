"""Investment Schemas - request bodies for the investments routes.

Invariants:
    - amount > 0 and finite; tokens, when given, is a positive integer
    - investmentIds is non-empty and bounded (batch size cap)
    - Wire names are camelCase; Python attributes are snake_case

Design Decisions:
    - Aliases over camelCase attributes: services receive idiomatic names,
      clients keep the existing JSON contract
"""

from pydantic import BaseModel, ConfigDict, Field

from app.core.domain_types import InvestmentStatus, PaymentMethod

MAX_BATCH_SIZE = 500


class InvestmentCreate(BaseModel):
    """Body of POST /investments."""
    model_config = ConfigDict(populate_by_name=True)

    property_id: str = Field(alias="propertyId", min_length=1, max_length=64)
    amount: float = Field(gt=0, allow_inf_nan=False)
    payment_method: PaymentMethod = Field(alias="paymentMethod")
    tokens: int | None = Field(None, gt=0)


class StatusUpdate(BaseModel):
    status: InvestmentStatus | None = None


class BatchUpdateRequest(BaseModel):
    """Body of PUT /investments."""
    model_config = ConfigDict(populate_by_name=True)

    investment_ids: list[str] = Field(
        alias="investmentIds", min_length=1, max_length=MAX_BATCH_SIZE,
    )
    updates: StatusUpdate
