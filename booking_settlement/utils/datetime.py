"""UTC datetime utilities."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    Use this instead of datetime.now() or datetime.utcnow() so every stored
    timestamp is timezone-aware and in UTC.
    """
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Return the current calendar date in UTC."""
    return utc_now().date()


def as_utc(value: datetime) -> datetime:
    """
    Treat naive datetimes as UTC.

    SQLite returns naive values for timezone-aware columns, Postgres does not.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
