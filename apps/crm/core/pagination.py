"""
Pagination utilities.
"""

from typing import Any, Dict, List, Tuple

from fastapi import Query
from sqlalchemy.orm import Query as SQLQuery


class PaginationParams:
    """Dependency for pagination parameters."""

    def __init__(
        self,
        limit: int = Query(50, ge=1, le=200, description="Items per page"),
        offset: int = Query(0, ge=0, description="Number of items to skip")
    ):
        self.limit = limit
        self.offset = offset


def paginate_with_total(query: SQLQuery, pagination: PaginationParams) -> Tuple[List, int]:
    """
    Apply pagination and return total count.

    Args:
        query: SQLAlchemy query object
        pagination: Pagination parameters

    Returns:
        Tuple of (items, total_count)
    """
    total = query.count()
    items = query.offset(pagination.offset).limit(pagination.limit).all()

    return items, total


def page_meta(total: int, returned: int, pagination: PaginationParams) -> Dict[str, Any]:
    """Response metadata for a paginated listing."""
    return {
        "total": total,
        "limit": pagination.limit,
        "offset": pagination.offset,
        "has_more": (pagination.offset + returned) < total,
    }
