from __future__ import annotations

import math

from pydantic import BaseModel


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class MessageResponse(BaseModel):
    message: str


def page_meta(total: int, page: int, limit: int) -> PageMeta:
    return PageMeta(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit) if limit else 0)


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit
