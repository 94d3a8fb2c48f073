"""Standardized API response helpers.

All list endpoints return a consistent envelope:
    {"items": [...], "total": <int>}

Single-item endpoints return the object directly (no wrapper).
"""

from typing import Optional


def list_response(
    items: list,
    total: Optional[int] = None,
    **extra,
) -> dict:
    """Wrap a list in the standard envelope.

    Args:
        items: The list of serialized items.
        total: Total count (defaults to len(items) when the full list is returned).
        **extra: Additional top-level keys (e.g. a grand total for stock listings).

    Returns:
        {"items": items, "total": total, **extra}
    """
    body = {
        "items": items,
        "total": total if total is not None else len(items),
    }
    body.update(extra)
    return body
