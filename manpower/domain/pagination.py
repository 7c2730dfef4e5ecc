"""
Page/limit helpers shared by the list endpoints
"""
import math
from dataclasses import dataclass, asdict
from typing import Optional

from manpower.core.config import settings


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int
    pages: int

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_page(page: Optional[int], limit: Optional[int], default_limit: Optional[int] = None) -> tuple[int, int]:
    """Clamp page to >= 1 and limit to 1..MAX_PAGE_SIZE"""
    page = max(page or 1, 1)
    limit = limit or default_limit or settings.DEFAULT_PAGE_SIZE
    limit = min(max(limit, 1), settings.MAX_PAGE_SIZE)
    return page, limit


def build_pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


def offset_for(page: int, limit: int) -> int:
    return (page - 1) * limit
