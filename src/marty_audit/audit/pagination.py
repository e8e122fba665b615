"""Page arithmetic shared by search, trails and the CLI."""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int
    offset: int
    total_pages: int
    has_more: bool


def calculate_pagination(page: int, limit: int, total: int) -> Pagination:
    """offset = (page-1)*limit, total_pages = ceil(total/limit), has_more = page < total_pages."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    if total < 0:
        raise ValueError(f"total must be >= 0, got {total}")

    total_pages = math.ceil(total / limit)
    return Pagination(
        page=page,
        limit=limit,
        total=total,
        offset=(page - 1) * limit,
        total_pages=total_pages,
        has_more=page < total_pages,
    )


def offset_for_page(page: int, limit: int) -> int:
    return calculate_pagination(page, limit, 0).offset


def page_for_offset(offset: int, limit: int) -> int:
    return offset // limit + 1
