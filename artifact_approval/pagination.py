"""Page/limit handling shared by list queries."""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Query

from .config import get_settings
from .errors import ValidationError


@dataclass
class PageResult:
    """One page of rows plus the totals needed to render pagination."""

    data: List[Any] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self, serialize: Optional[Callable[[Any], Any]] = None) -> Dict[str, Any]:
        serialize = serialize or (lambda row: row.to_dict())
        return {
            "data": [serialize(row) for row in self.data],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
        }


def resolve_page(page: int = 1, limit: Optional[int] = None) -> Tuple[int, int]:
    """Apply the configured default page size and reject out-of-range values."""
    settings = get_settings()
    if limit is None:
        limit = settings.default_page_size
    if page < 1:
        raise ValidationError("page must be >= 1", details={"page": page})
    if limit < 1 or limit > settings.max_page_size:
        raise ValidationError(
            f"limit must be between 1 and {settings.max_page_size}",
            details={"limit": limit},
        )
    return page, limit


def paginate(query: Query, page: int = 1, limit: Optional[int] = None) -> PageResult:
    """Run ``query`` for one page. The query must already be ordered."""
    page, limit = resolve_page(page, limit)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return PageResult(data=rows, total=total, page=page, limit=limit)
