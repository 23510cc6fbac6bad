"""Unique-constraint-backed idempotent upserts."""

from collections.abc import Sequence
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite

from congregate.app.db.models import Base
from congregate.app.db.unit_of_work import UnitOfWork


async def upsert(
    tx: UnitOfWork,
    model: type[Base],
    values: dict[str, Any],
    *,
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
) -> None:
    """INSERT ... ON CONFLICT DO UPDATE on the bound transaction.

    A concurrent insert of the same key is absorbed by the database rather
    than surfacing as a unique violation; the last commit wins.

    Args:
        tx: Bound unit of work
        model: Mapped class with a unique constraint on ``conflict_columns``
        values: Column values for the insert path
        conflict_columns: Columns of the unique constraint
        update_columns: Columns overwritten on the update path

    Raises:
        ValueError: If the dialect has no ON CONFLICT support
    """
    if tx.dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif tx.dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise ValueError(f"Upsert not supported for dialect '{tx.dialect}'")

    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    await tx.session.execute(stmt)
