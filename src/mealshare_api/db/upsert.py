"""Dialect-aware ``INSERT ... ON CONFLICT DO NOTHING`` for lazily created rows."""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Insert

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_if_absent(
    session: AsyncSession,
    model: Any,
    values: dict[str, Any],
    *,
    index_elements: Sequence[Any],
) -> Insert:
    """Build an insert that leaves an existing row matching ``index_elements`` untouched."""

    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERT_BY_DIALECT[dialect]
    except KeyError as exc:
        raise NotImplementedError(f"Conflict-tolerant inserts are not supported on {dialect}") from exc
    return insert(model).values(**values).on_conflict_do_nothing(index_elements=list(index_elements))


__all__ = ["insert_if_absent"]
