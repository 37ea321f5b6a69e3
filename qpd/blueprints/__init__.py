"""
Quality Process Designer
Blueprint registry and the list-envelope helper shared by record listings.
"""

from flask import request

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500


def page_window() -> tuple[int, int]:
    """Return (limit, offset) from the query string.

    Non-numeric values fall back to the defaults; limit is clamped to
    1..MAX_PAGE_SIZE and offset to >= 0.
    """
    limit = request.args.get("limit", DEFAULT_PAGE_SIZE, type=int)
    offset = request.args.get("offset", 0, type=int)
    return max(1, min(limit, MAX_PAGE_SIZE)), max(offset, 0)


def paginated(query, serialize) -> dict:
    """Run ``query`` for the requested window.

    Returns:
        {"items": serialize(rows), "total": int, "limit": int, "offset": int}
    """
    limit, offset = page_window()
    total = query.count()
    rows = query.limit(limit).offset(offset).all()
    return {"items": serialize(rows), "total": total, "limit": limit, "offset": offset}
