"""
INSERT ... ON CONFLICT DO NOTHING for the dialects we run on.

Used wherever two writers may race to create the same keyed row (ledger
rows, assignments, fulfillment units): the unique constraint decides the
winner and the loser sees rowcount 0 instead of an IntegrityError that
would poison the transaction.
"""
from typing import Any, Dict, Sequence, Type

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.base import Base

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def insert_ignore(
    session: AsyncSession,
    model: Type[Base],
    values: Dict[str, Any],
    index_elements: Sequence[str],
) -> bool:
    """Insert one row unless its key already exists. Returns True if a row was written."""
    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"Unsupported database dialect: {dialect}") from None
    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=list(index_elements))
    result = await session.execute(stmt)
    return (result.rowcount or 0) > 0
