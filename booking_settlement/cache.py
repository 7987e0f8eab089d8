"""
In-memory TTL cache.

Used for exchange rates fetched from the rate API. Entries past their TTL are
not served by ``get`` but stay readable through ``get_stale`` so a last known
value can be used when the upstream is down.

For deployments with multiple instances, consider migrating to Redis.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Generic, Hashable, Optional, TypeVar

from booking_settlement.utils.datetime import utc_now

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    In-memory cache with time-to-live (TTL) expiration.

    Attributes:
        ttl: Time-to-live for cached values (default: 1 hour)
        _cache: Internal storage mapping key to (value, expires_at) tuples

    Example:
        >>> cache: TTLCache[Decimal] = TTLCache(ttl_seconds=3600)
        >>> cache.set(("USD", "RWF"), Decimal("1300"))
        >>> cache.get(("USD", "RWF"))
        Decimal('1300')
    """

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._cache: dict[Hashable, tuple[V, datetime]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        """
        Get cached value if not expired.

        Returns:
            Cached value if found and fresh, None otherwise
        """
        if key in self._cache:
            value, expires_at = self._cache[key]
            if utc_now() < expires_at:
                return value
        return None

    def get_stale(self, key: Hashable) -> Optional[V]:
        """Return the last value stored for key, expired or not."""
        entry = self._cache.get(key)
        return entry[0] if entry else None

    def set(self, key: Hashable, value: V) -> None:
        self._cache[key] = (value, utc_now() + self.ttl)

