"""Pagination and sort helpers for list endpoints."""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from fastapi import Query
from sqlalchemy import func
from sqlmodel import Session, select

from ..errors import InvalidArgument


@dataclass
class PageParams:
    page: int
    limit: int
    sort: Optional[str]

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params(default_limit: int = 10, default_sort: Optional[str] = None):
    """Dependency factory for `page`, `limit` and `sort` query parameters."""
    def _dep(
        page: int = Query(1, ge=1),
        limit: int = Query(default_limit, ge=1, le=100),
        sort: Optional[str] = Query(default_sort),
    ) -> PageParams:
        return PageParams(page=page, limit=limit, sort=sort or default_sort)
    return _dep


def resolve_sort(sort: Optional[str], allowed: Dict[str, object]) -> list:
    """Translate `"field,-other"` into ORDER BY clauses.

    Keys must appear in `allowed` (a map of public name to column); a `-`
    prefix sorts descending. Unknown keys raise `InvalidArgument`.
    """
    clauses = []
    if not sort:
        return clauses
    for part in sort.split(","):
        part = part.strip()
        if not part:
            continue
        desc = part.startswith("-")
        key = part[1:] if desc else part
        column = allowed.get(key)
        if column is None:
            raise InvalidArgument(f"Invalid sort field '{key}'. Allowed: {', '.join(sorted(allowed))}")
        clauses.append(column.desc() if desc else column.asc())
    return clauses


def pagination_block(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total,
        "items_per_page": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def paginate(session: Session, stmt, params: PageParams, order_by: Optional[list] = None) -> Tuple[List, dict]:
    """Run `stmt` for one page; return `(items, pagination_block)`."""
    total = session.exec(select(func.count()).select_from(stmt.order_by(None).subquery())).one()
    if order_by:
        stmt = stmt.order_by(*order_by)
    items = session.exec(stmt.offset(params.offset).limit(params.limit)).all()
    return list(items), pagination_block(params.page, params.limit, total)
