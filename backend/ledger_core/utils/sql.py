# backend/ledger_core/utils/sql.py
"""
SQL utility functions.

- upsert_insert: dialect-specific INSERT supporting ON CONFLICT DO UPDATE
- escape_like_pattern: Escape special characters in LIKE patterns

Usage:
    from ledger_core.utils.sql import upsert_insert

    stmt = upsert_insert(db, AssetPrice).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["symbol", "currency", "date"],
        set_={"price": stmt.excluded.price},
    )
    db.execute(stmt)
"""

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session


def upsert_insert(db: Session, model):
    """
    Return an INSERT construct for the session's dialect that supports
    on_conflict_do_update.

    PostgreSQL is the production database; SQLite is used by the test suite.
    Both dialects expose the same on_conflict_do_update/excluded API.

    Raises:
        NotImplementedError: For dialects without ON CONFLICT support
    """
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)

    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")


def escape_like_pattern(value: str) -> str:
    """
    Escape special characters in a SQL LIKE pattern.

    Example:
        >>> escape_like_pattern("test%value")
        'test\\\\%value'
    """
    return (
        value
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
