"""
Dialect-aware conditional writes.

Set-merge mutations (group membership, role assignment) and the default-role
upsert must not race between an existence check and the write, so they are
expressed as single INSERT ... ON CONFLICT statements. SQLite and PostgreSQL
share the same ON CONFLICT syntax through their dialect-specific insert().
"""
from typing import Any, Iterable, Mapping, Sequence
from sqlalchemy import Table, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def _dialect_insert(db: AsyncSession, target: Any):
    bind = db.get_bind()
    dialect = bind.dialect.name if bind is not None else ""
    if dialect == "postgresql":
        return pg_insert(target)
    if dialect == "sqlite":
        return sqlite_insert(target)
    raise NotImplementedError(f"Conditional writes are not supported on dialect {dialect!r}")


async def insert_ignore(
    db: AsyncSession,
    table: Table,
    rows: Sequence[Mapping[str, Any]],
    index_elements: Iterable[str],
) -> None:
    """Insert rows, silently skipping those that collide on index_elements."""
    if not rows:
        return
    stmt = (
        _dialect_insert(db, table)
        .values(list(rows))
        .on_conflict_do_nothing(index_elements=list(index_elements))
    )
    await db.execute(stmt)


async def insert_or_update(
    db: AsyncSession,
    model: Any,
    values: Mapping[str, Any],
    index_elements: Iterable[str],
    update_columns: Iterable[str],
) -> None:
    """
    Insert a row, or update update_columns on the existing row that collides
    on index_elements. One statement, so concurrent callers converge on a
    single row.
    """
    stmt = _dialect_insert(db, model).values(**values)
    set_: dict[str, Any] = {column: stmt.excluded[column] for column in update_columns}
    if hasattr(model, "updated_at"):
        # onupdate defaults do not fire for ON CONFLICT DO UPDATE
        set_["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_=set_,
    )
    await db.execute(stmt)
