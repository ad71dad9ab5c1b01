"""Shared response envelope and pagination helpers"""
from fastapi import Query
from pydantic import BaseModel
from typing import Any, Dict, Literal, Optional
import math


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PaginationParams:
    """Query parameters for paginated list endpoints"""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        sort_by: str = Query("created_at"),
        sort_order: Literal["asc", "desc"] = Query("desc"),
    ):
        self.page = page
        self.limit = limit
        self.sort_by = sort_by
        self.sort_order = sort_order

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def order_by(self, model, default: str = "created_at"):
        """Order clause for model, falling back to default on unknown columns"""
        column = getattr(model, self.sort_by, None)
        if column is None or not hasattr(column, "desc"):
            column = getattr(model, default)
        return column.desc() if self.sort_order == "desc" else column.asc()

    def pagination(self, total: int) -> Pagination:
        return Pagination(
            page=self.page,
            limit=self.limit,
            total=total,
            pages=math.ceil(total / self.limit) if total else 0,
        )


def success_response(data: Optional[Any] = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Standard success envelope"""
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
