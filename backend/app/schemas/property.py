"""Property Schemas - request bodies for the property administration routes.

Invariants:
    - totalTokens is set once at creation; PropertyUpdate has no token fields
    - Prices are positive, minimumInvestment is non-negative
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.domain_types import PropertyStatus


class PropertyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    total_tokens: int = Field(alias="totalTokens", gt=0)
    token_price: float = Field(alias="tokenPrice", gt=0, allow_inf_nan=False)
    minimum_investment: float = Field(
        0.0, alias="minimumInvestment", ge=0, allow_inf_nan=False,
    )
    price: float | None = Field(None, gt=0, allow_inf_nan=False)
    status: PropertyStatus = PropertyStatus.DRAFT

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title cannot be empty or whitespace")
        return v


class PropertyUpdate(BaseModel):
    """PATCH body. Omitted fields are left unchanged."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    title: str | None = Field(None, min_length=1, max_length=200)
    price: float | None = Field(None, gt=0, allow_inf_nan=False)
    token_price: float | None = Field(
        None, alias="tokenPrice", gt=0, allow_inf_nan=False,
    )
    minimum_investment: float | None = Field(
        None, alias="minimumInvestment", ge=0, allow_inf_nan=False,
    )
    status: PropertyStatus | None = None
