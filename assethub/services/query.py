"""
Filtered, sorted, paginated listings shared by assets, users and allocations.
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import case, func, inspect, or_
from sqlalchemy.orm import Query

from ..errors import ValidationError


MAX_LIMIT = 1000


@dataclass
class PageParams:
    page: int = 1
    limit: int = 10
    sort_by: Optional[str] = None
    sort_order: str = "desc"

    def validate(self) -> "PageParams":
        if self.page < 1:
            raise ValidationError("Page must be a positive integer")
        if self.limit < 1 or self.limit > MAX_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {MAX_LIMIT}")
        if self.sort_order not in ("asc", "desc"):
            raise ValidationError("Sort order must be asc or desc")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page:
    items: List[Any]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> Dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
        }


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_clause(columns: Sequence, term: str):
    """Case-insensitive substring match across ``columns``."""
    like = f"%{_escape_like(term)}%"
    return or_(*[col.ilike(like, escape="\\") for col in columns])


def count_when(condition):
    """SUM of 1 per row matching ``condition``; 0 on an empty table."""
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def paginate(
    query: Query,
    params: PageParams,
    sortable: Dict[str, Any],
    default_sort: str,
) -> Page:
    """
    Apply sorting and pagination to ``query``.

    Args:
        query: Filtered ORM query
        params: Page, limit and sort request
        sortable: Whitelist of sort field name -> column
        default_sort: Field used when ``params.sort_by`` is empty

    Returns:
        Page with the requested slice and the total match count
    """
    params.validate()
    sort_by = params.sort_by or default_sort
    column = sortable.get(sort_by)
    if column is None:
        raise ValidationError(
            f"Cannot sort by '{sort_by}'",
            errors=[{"field": "sort_by", "message": f"Allowed values: {', '.join(sorted(sortable))}"}],
        )

    total = query.order_by(None).count()
    ordering = column.asc() if params.sort_order == "asc" else column.desc()
    # Primary key breaks ties so equal sort values page deterministically
    entity = query.column_descriptions[0]["entity"]
    tiebreak = [col.asc() for col in inspect(entity).primary_key]
    items = query.order_by(ordering, *tiebreak).offset(params.offset).limit(params.limit).all()
    return Page(items=items, page=params.page, limit=params.limit, total=total)
