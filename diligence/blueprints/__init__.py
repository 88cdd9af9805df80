"""
Deal Diligence Tracker
Blueprint registry and shared request helpers.
"""

from flask import request

from diligence.services.user_service import get_user_by_id


def pagination_args(default_limit=200, max_limit=1000):
    """Read limit/offset pagination from the query string.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return max(limit, 0), offset


def actor_user_id() -> int | None:
    """Acting user from the ``X-User-Id`` header; unknown ids resolve to None."""
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw:
        return None
    try:
        user_id = int(raw)
    except ValueError:
        return None
    return user_id if get_user_by_id(user_id) else None
