from __future__ import annotations

MAX_PAGE_SIZE = 100


def _bounded(value, default: int, lo: int, hi: int | None = None) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = default
    parsed = max(lo, parsed)
    if hi is not None:
        parsed = min(hi, parsed)
    return parsed


def paginate(query, page=1, limit=20, *, serialize=None) -> dict:
    page = _bounded(page, 1, 1)
    limit = _bounded(limit, 20, 1, MAX_PAGE_SIZE)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    total_pages = (total + limit - 1) // limit if total else 0
    return {
        "docs": [serialize(r) if serialize else r.to_dict() for r in rows],
        "total": int(total),
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
