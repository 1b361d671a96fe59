"""
Per-provider price cache.

Holds the last successfully fetched quote for each key together with its
expiration instant. The cache never makes network calls or records usage.
When given a store it is written through on every change and reloaded at
startup; store failures are logged and never reach the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Generic, List, Optional, TypeVar

from .clock import Clock
from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PriceCacheEntry(Generic[T]):
    """Cached quote with its write and expiration instants."""
    data: T
    cached_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        """An entry is valid iff now < expires_at."""
        return now < self.expires_at


class EndOfDayTTL:
    """Expire at 23:59:59.999 of the calendar day the entry was cached."""

    def __init__(self, clock: Clock):
        self._clock = clock

    def expires_at(self, cached_at: datetime) -> datetime:
        return self._clock.end_of_day(cached_at)


class FixedTTL:
    """Expire a fixed duration after the entry was cached."""

    def __init__(self, ttl: timedelta):
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl

    def expires_at(self, cached_at: datetime) -> datetime:
        return cached_at + self.ttl


class PriceCache(Generic[T]):
    """Cache keyed by symbol or coin id, optionally backed by a store."""

    def __init__(self, clock: Clock, ttl_policy, store=None):
        """Initialize the cache.

        Args:
            clock: Time source for write and validity checks
            ttl_policy: Object with expires_at(cached_at) -> datetime
            store: Optional PriceCacheStore for persistence across runs
        """
        self._clock = clock
        self._ttl_policy = ttl_policy
        self._store = store
        self._entries: Dict[str, PriceCacheEntry[T]] = {}

    def load(self) -> None:
        """Replace the in-memory entries with the persisted ones."""
        if self._store is None:
            return
        try:
            self._entries = self._store.load_entries()
        except PersistenceError as e:
            logger.warning("Failed to load price cache, starting empty: %s", e)
            self._entries = {}

    def get(self, key: str) -> Optional[PriceCacheEntry[T]]:
        """Return the entry for key if it is still valid."""
        entry = self._entries.get(key)
        if entry is None or not self.is_valid(entry):
            return None
        return entry

    def get_stale(self, key: str) -> Optional[PriceCacheEntry[T]]:
        """Return the entry for key whether or not it has expired."""
        return self._entries.get(key)

    def put(self, key: str, data: T) -> PriceCacheEntry[T]:
        """Write or overwrite the entry for key, stamped now."""
        cached_at = self._clock.now()
        entry = PriceCacheEntry(
            data=data,
            cached_at=cached_at,
            expires_at=self._ttl_policy.expires_at(cached_at),
        )
        self._entries[key] = entry
        self._persist()
        return entry

    def is_valid(self, entry: PriceCacheEntry[T]) -> bool:
        return entry.is_valid(self._clock.now())

    def clear(self, key: Optional[str] = None) -> None:
        """Remove one entry, or every entry when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
        self._persist()

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save_entries(self._entries, self._clock.now())
        except PersistenceError as e:
            logger.warning("Failed to save price cache: %s", e)

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
