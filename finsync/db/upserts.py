"""
Generic UPSERT helpers for the finsync store.

Implements conflict resolution with the dialect's
insert().on_conflict_do_update so re-syncs overwrite instead of duplicating.
PostgreSQL is the production target; SQLite is supported for local runs and tests.
"""

from collections.abc import Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(session: Session, table):
    """Return an INSERT construct supporting on_conflict_do_update for the session's dialect."""
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect](table)
    except KeyError:
        raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}") from None


def exec_upsert(
    session: Session,
    table,
    rows: Sequence[dict],
    conflict_cols: Sequence[str],
    update_cols: Sequence[str],
) -> int:
    """Execute a bulk upsert and return the number of rows written."""
    if not rows:
        return 0

    stmt = dialect_insert(session, table).values(list(rows))
    update_values = {c: getattr(stmt.excluded, c) for c in update_cols}
    stmt = stmt.on_conflict_do_update(index_elements=list(conflict_cols), set_=update_values)

    session.execute(stmt)
    return len(rows)
