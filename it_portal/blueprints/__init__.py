"""
IT Governance Portal
Blueprint registry.
"""

from flask import request


def paginate_list(items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an already materialised list.

    Query params:
        limit  : max items (default 200, capped at max_limit; negative falls
                 back to the default)
        offset : starting position (default 0)

    Returns:
        (page_items, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    if limit < 0:
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total
