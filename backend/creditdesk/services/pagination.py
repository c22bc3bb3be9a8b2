# Overview: Zero-based page slicing shared by list endpoints.

from __future__ import annotations

from typing import Callable


def paginate(query, *, page: int, size: int, serialize: Callable) -> dict:
    """
    Slice an ordered query into a page.

    `page` is zero-based; callers clamp `size` beforehand (validation.page_params).
    """
    total = query.order_by(None).count()
    rows = query.offset(page * size).limit(size).all()
    total_pages = (total + size - 1) // size if total > 0 else 0
    return {
        "items": [serialize(row) for row in rows],
        "page": page,
        "size": size,
        "total": total,
        "total_pages": total_pages,
        "has_next": page + 1 < total_pages,
    }
