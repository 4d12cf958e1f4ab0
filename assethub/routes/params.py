from typing import Literal, Optional

from fastapi import Query

from ..services.query import MAX_LIMIT, PageParams


def page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    sort_by: Optional[str] = Query(None),
    sort_order: Literal["asc", "desc"] = Query("desc"),
) -> PageParams:
    return PageParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
