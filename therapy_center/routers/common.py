# therapy_center/routers/common.py

from math import ceil
from typing import Optional, Sequence, Type

from fastapi import Query
from pydantic import BaseModel

from therapy_center.config import get_settings
from therapy_center.schemas import ApiResponse, Page


class Pagination(BaseModel):
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def pagination(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> Pagination:
    settings = get_settings()
    limit = min(limit or settings.default_page_size, settings.max_page_size)
    return Pagination(page=page, limit=limit)


def ok(schema: Type[BaseModel], row) -> ApiResponse:
    return ApiResponse(success=True, data=schema.model_validate(row))


def ok_page(schema: Type[BaseModel], rows: Sequence, total: int, paging: Pagination) -> ApiResponse:
    return ApiResponse(success=True, data=Page(
        items=[schema.model_validate(r) for r in rows],
        page=paging.page,
        limit=paging.limit,
        total=total,
        total_pages=ceil(total / paging.limit) if total else 0,
    ))
