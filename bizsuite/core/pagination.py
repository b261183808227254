from __future__ import annotations

import math
from typing import Any


def normalize_pagination(page: int | None, limit: int | None, *, default_limit: int, max_limit: int) -> tuple[int, int]:
    resolved_page = page if page and page > 0 else 1
    resolved_limit = limit if limit and limit > 0 else default_limit
    return resolved_page, min(resolved_limit, max_limit)


def build_page_meta(total: int, page: int, limit: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_previous_page": page > 1,
    }
