from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator

from ..services.lifecycle import as_utc
from ..services.query import Page


# Naive datetimes coming back from SQLite are UTC
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def success_response(message: str, data: Any = None, page: Optional[Page] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    if page is not None:
        body["pagination"] = page.pagination()
    return body


def error_response(message: str, errors: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body
