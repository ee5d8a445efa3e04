"""Investment Queries - pagination and portfolio summary over ledger records.

Invariants:
    - page is 1-based; an out-of-range page yields an empty slice, not an error
    - summary is computed over the whole filtered set, not the current page
"""

import math
from typing import Sequence, TypeVar

from app.core.domain_types import InvestmentStatus
from app.core.ledger_records import InvestmentRecord

T = TypeVar("T")


def paginate(items: Sequence[T], page: int = 1, page_size: int = 20) -> tuple[list[T], dict]:
    start = (page - 1) * page_size
    return (
        list(items[start:start + page_size]),
        pagination_meta(page, page_size, len(items)),
    )


def pagination_meta(page: int, page_size: int, total: int) -> dict:
    total_pages = math.ceil(total / page_size) if page_size else 0
    return {
        "page": page,
        "pageSize": page_size,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def summarize_investments(investments: Sequence[InvestmentRecord]) -> dict:
    return {
        "totalInvested": round(sum(i.amount for i in investments), 2),
        "totalTokens": sum(i.tokens for i in investments),
        "activeInvestments": sum(
            1 for i in investments if i.status == InvestmentStatus.CONFIRMED
        ),
    }
