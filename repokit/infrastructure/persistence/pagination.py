"""Turn a filtered, ordered SELECT into a PageResult.

One code path serves both "give me one page" and "give me everything":
the unbounded PageRequest simply skips offset/limit.  The count runs over
the unpaged statement with its ordering stripped; eager-load options are
applied to the row fetch only.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.base import ExecutableOption

from repokit.domain.models.pagination import PageRequest, PageResult


async def count_rows(session: AsyncSession, statement: Select[Any]) -> int:
    stmt = select(func.count()).select_from(statement.order_by(None).subquery())
    return (await session.scalar(stmt)) or 0


async def paginate(
    session: AsyncSession,
    statement: Select[Any],
    page: PageRequest,
    options: Iterable[ExecutableOption] = (),
) -> PageResult[Any]:
    total_count = await count_rows(session, statement)

    if not page.is_unbounded:
        statement = statement.offset(page.offset).limit(page.size)
    options = tuple(options)
    if options:
        statement = statement.options(*options)

    result = await session.scalars(statement)
    items = list(result.unique().all())
    return PageResult.build(items, page, total_count)
