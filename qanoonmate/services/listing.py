"""
Search, filter and pagination helpers shared by every list endpoint.

Each management list (lawyer applications, consultations, clients, FAQs,
payments, chat sessions) follows the same flow:
- build a select with its filters
- sort
- count and slice into a page
- return the page together with PaginationMeta
"""
import math
from typing import Any, Iterable, List, Sequence, Tuple, Union

from fastapi import Query
from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..schemas.common import PaginationMeta, PaginationParams

MAX_VISIBLE_PAGES = 5
ELLIPSIS = "..."


def pagination_params(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> PaginationParams:
    return PaginationParams(page=page, limit=limit)


def page_window(current_page: int, total_pages: int) -> List[Union[int, str]]:
    """
    Page numbers to show in a pagination control.

    Returns an empty list when there is at most one page, all pages when they
    fit into MAX_VISIBLE_PAGES, otherwise a window around the current page
    with "..." gaps, e.g. [1, "...", 4, 5, 6, "...", 10].
    """
    if total_pages <= 1:
        return []
    if total_pages <= MAX_VISIBLE_PAGES:
        return list(range(1, total_pages + 1))
    if current_page <= 3:
        return [1, 2, 3, 4, ELLIPSIS, total_pages]
    if current_page >= total_pages - 2:
        return [1, ELLIPSIS] + list(range(total_pages - 3, total_pages + 1))
    return [1, ELLIPSIS, current_page - 1, current_page, current_page + 1, ELLIPSIS, total_pages]


def build_meta(total_count: int, params: PaginationParams) -> PaginationMeta:
    total_pages = math.ceil(total_count / params.limit) if total_count else 0
    return PaginationMeta(
        current_page=params.page,
        limit=params.limit,
        total_count=total_count,
        total_pages=total_pages,
        has_next=params.page < total_pages,
        has_prev=params.page > 1 and total_pages > 0,
        pages=page_window(params.page, total_pages),
    )


async def paginate_query(
    db: AsyncSession,
    stmt: Select,
    params: PaginationParams,
) -> Tuple[List[Any], PaginationMeta]:
    """
    Count and slice a select statement.

    Args:
        db: DB session
        stmt: select of a single ORM entity, already filtered and ordered
        params: page and limit

    Returns:
        (rows of the requested page, pagination meta)
    """
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    result = await db.execute(stmt.offset(params.offset).limit(params.limit))
    return list(result.scalars().all()), build_meta(total, params)


def paginate_items(items: Sequence[Any], params: PaginationParams) -> Tuple[List[Any], PaginationMeta]:
    """Same as paginate_query for an in-memory list."""
    return list(items[params.offset:params.offset + params.limit]), build_meta(len(items), params)


def ilike_any(term: str, *columns) -> Any:
    """Case-insensitive substring match of term against any of the columns."""
    pattern = f"%{term.strip()}%"
    return or_(*[column.ilike(pattern) for column in columns])


def split_csv(value: Union[str, None]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def contains_any(values: Iterable[str], wanted: Iterable[str]) -> bool:
    """Whether any wanted value is present (case-insensitive)."""
    have = {v.lower() for v in values or []}
    return any(w.lower() in have for w in wanted)
