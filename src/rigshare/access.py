"""Visibility rules and pagination bounds shared by the build engine."""

from __future__ import annotations

import math
from typing import Optional

from .errors import Forbidden, InvalidArgument, Unauthenticated
from .schemas import Principal
from .store import SQLITE_MAX_INTEGER, BuildRow

MAX_PAGE_LIMIT = 50
PUBLIC_SORT_FIELDS = ("createdAt", "name", "totalPrice")
SORT_ORDERS = ("asc", "desc")


def require_principal(principal: Optional[Principal]) -> Principal:
    if principal is None:
        raise Unauthenticated()
    return principal


def validate_pagination(page: int, limit: int) -> int:
    """Returns the row offset for a valid (page, limit) pair."""
    if page < 1 or limit < 1 or limit > MAX_PAGE_LIMIT:
        raise InvalidArgument(
            "invalid pagination parameters",
            detail={"page": page, "limit": limit, "maxLimit": MAX_PAGE_LIMIT},
        )
    offset = (page - 1) * limit
    if offset > SQLITE_MAX_INTEGER:
        raise InvalidArgument("page is out of range", detail={"page": page, "limit": limit})
    return offset


def validate_sort(sort_field: str, sort_order: str) -> None:
    if sort_field not in PUBLIC_SORT_FIELDS:
        raise InvalidArgument(
            f"invalid sort field: {sort_field}",
            detail={"allowed": list(PUBLIC_SORT_FIELDS)},
        )
    if sort_order not in SORT_ORDERS:
        raise InvalidArgument(
            f"invalid sort order: {sort_order}",
            detail={"allowed": list(SORT_ORDERS)},
        )


def page_meta(total: int, page: int, limit: int) -> dict:
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def is_owner(build: BuildRow, principal: Optional[Principal]) -> bool:
    return principal is not None and principal.id == build.owner_id


def ensure_readable(build: BuildRow, principal: Optional[Principal]) -> None:
    if not build.is_public and not is_owner(build, principal):
        raise Forbidden("access to a private build is denied")


def ensure_owner(build: BuildRow, principal: Principal, action: str) -> None:
    # public visibility never grants write access
    if not is_owner(build, principal):
        raise Forbidden(f"you can only {action} your own builds")
