"""
Dialect-aware INSERT ... ON CONFLICT DO NOTHING.

Postgres and SQLite both support ON CONFLICT; their insert constructs live in
separate dialect modules, so pick the one matching the connection.
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection


def insert_ignore(
    conn: Connection,
    table: type,
    row: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """
    Insert a row unless one with the same conflict key already exists.

    Args:
        conn: Active database connection (within transaction)
        table: SQLAlchemy ORM table class (e.g., Wallet)
        row: Column values
        conflict_columns: Columns of the unique constraint to test

    Returns:
        bool: True if the row was inserted, False if it already existed

    Example:
        >>> with engine.begin() as conn:
        ...     insert_ignore(conn, Wallet, {"owner_id": "u1", ...}, ["owner_id"])
    """
    if conn.dialect.name == "postgresql":
        stmt: Any = postgresql.insert(table).values(row)
    elif conn.dialect.name == "sqlite":
        stmt = sqlite.insert(table).values(row)
    else:
        raise NotImplementedError(f"insert_ignore not supported on {conn.dialect.name}")

    stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    result = conn.execute(stmt)
    return bool(result.rowcount)
