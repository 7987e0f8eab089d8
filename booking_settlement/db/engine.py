"""
SQLAlchemy engine construction with production connection pooling.

Components never import a global engine; they receive one. ``get_engine``
builds the process-wide instance from DATABASE_URL on first use and is what
the FastAPI dependency and the poller hand out.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    Pool sizing only applies to server databases. In-memory SQLite shares a
    single connection so every caller sees the same database.

    Args:
        database_url: SQLAlchemy URL
        echo: Log emitted SQL

    Returns:
        Engine: configured SQLAlchemy engine
    """
    url = make_url(database_url)
    kwargs: dict[str, Any] = {"future": True, "echo": echo}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(
            pool_size=10,  # Number of connections to maintain in the pool
            max_overflow=20,  # Additional connections when pool is exhausted
            pool_pre_ping=True,  # Detect stale connections before use
            pool_recycle=3600,  # Recycle connections after 1 hour
        )

    return create_engine(url, **kwargs)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Return the engine for DATABASE_URL, creating it on first call."""
    from booking_settlement.config import DATABASE_URL

    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set.")
    return build_engine(DATABASE_URL)


def check_engine_health(engine: Engine) -> bool:
    """
    Check if the database is reachable.

    Used by the /ready endpoint before allowing traffic to the service.

    Returns:
        bool: True if a trivial query succeeds, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
