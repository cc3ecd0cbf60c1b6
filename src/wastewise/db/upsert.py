"""Dialect-aware INSERT ... ON CONFLICT DO NOTHING."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.db.base import Base


async def insert_or_ignore(
    db: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    conflict_columns: list[str],
) -> int:
    """Insert a row unless one already exists for ``conflict_columns``.

    Returns the number of rows inserted (0 or 1). Unlike flush-and-catch
    IntegrityError, this never aborts the surrounding transaction.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        msg = f"insert_or_ignore not supported on dialect {dialect}"
        raise NotImplementedError(msg)

    result = await db.execute(stmt.on_conflict_do_nothing(index_elements=conflict_columns))
    return result.rowcount or 0
