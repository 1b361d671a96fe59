"""
Repository pattern for data access.

Persists the usage ledger and the per-provider price caches as serialized
blobs in a SQLite key-value table, each overwritten wholesale on every save.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .db import get_connection
from .models import ApiCallRecord, Provider
from price_guard.core.cache import PriceCacheEntry
from price_guard.core.exceptions import PersistenceError

STORAGE_KEY = "api_usage_tracker"
PRICE_CACHE_KEYS = {
    Provider.ALPHAVANTAGE: "alphavantage_price_cache",
    Provider.COINGECKO: "coingecko_price_cache",
}


def initialize_schema(db_path: str = "price_guard.db") -> None:
    """Create the kv_store table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def read_value(key: str, db_path: str = "price_guard.db") -> Optional[str]:
    """Read a raw value from the key-value store.

    Args:
        key: Entry name
        db_path: Path to SQLite database file

    Returns:
        Stored text, or None if the entry does not exist
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row[0] if row else None
    finally:
        conn.close()


def write_value(key: str, value: str, db_path: str = "price_guard.db") -> None:
    """Insert or replace a raw value in the key-value store.

    Args:
        key: Entry name
        value: Text to store
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO kv_store (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """, (key, value))
        conn.commit()
    finally:
        conn.close()


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO-8601 timestamp.

    Raises:
        ValueError: If the value is not ISO-8601 or carries no UTC offset
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp has no UTC offset: {value}")
    return parsed


def record_to_dict(record: ApiCallRecord) -> Dict[str, Any]:
    """Convert a call record to its serialized form."""
    return {
        "timestamp": record.timestamp.isoformat(),
        "provider": record.provider.value,
        "endpoint": record.endpoint,
        "key": record.key,
        "success": record.success,
        "from_cache": record.from_cache,
        "cost": record.cost,
    }


def record_from_dict(data: Dict[str, Any]) -> ApiCallRecord:
    """Rehydrate a call record from its serialized form.

    Raises:
        KeyError: If a required field is missing
        ValueError: If a field has an invalid value
    """
    return ApiCallRecord(
        timestamp=parse_timestamp(data["timestamp"]),
        provider=Provider(data["provider"]),
        endpoint=data["endpoint"],
        key=data.get("key"),
        success=bool(data["success"]),
        from_cache=bool(data["from_cache"]),
        cost=int(data["cost"]),
    )


class UsageStore:
    """Durable store for the usage ledger.

    Wraps every storage failure in PersistenceError so the ledger has a
    single error type to recover from.
    """

    def __init__(self, db_path: str = "price_guard.db", key: str = STORAGE_KEY):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            key: Name of the key-value entry holding the ledger
        """
        self.db_path = db_path
        self.key = key

    def load_records(self) -> List[ApiCallRecord]:
        """Load every persisted call record.

        Returns:
            Records in stored (append) order; empty if nothing was saved yet

        Raises:
            PersistenceError: If the store cannot be read or is malformed
        """
        try:
            initialize_schema(self.db_path)
            raw = read_value(self.key, self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read usage store: {e}") from e

        if raw is None:
            return []

        try:
            data = json.loads(raw)
            return [record_from_dict(item) for item in data.get("apiCalls", [])]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Malformed usage store entry: {e}") from e

    def save_records(self, records: Sequence[ApiCallRecord], saved_at: datetime) -> None:
        """Overwrite the persisted ledger with the given records.

        Args:
            records: Full record list to persist
            saved_at: Instant stamped as lastSaved

        Raises:
            PersistenceError: If the store cannot be written
        """
        payload = json.dumps({
            "apiCalls": [record_to_dict(record) for record in records],
            "lastSaved": saved_at.isoformat(),
        })
        try:
            initialize_schema(self.db_path)
            write_value(self.key, payload, self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write usage store: {e}") from e

    def last_saved(self) -> Optional[datetime]:
        """Instant of the last successful save, if any.

        Raises:
            PersistenceError: If the store cannot be read or is malformed
        """
        try:
            initialize_schema(self.db_path)
            raw = read_value(self.key, self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read usage store: {e}") from e
        if raw is None:
            return None
        try:
            saved = json.loads(raw).get("lastSaved")
            return parse_timestamp(saved) if saved else None
        except (ValueError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Malformed usage store entry: {e}") from e


class PriceCacheStore:
    """Durable store for one provider's price cache.

    Entries are kept under their own key next to the usage ledger, with the
    cached payload converted by the given encode and decode functions.
    """

    def __init__(
        self,
        key: str,
        encode: Callable[[Any], Dict[str, Any]],
        decode: Callable[[Dict[str, Any]], Any],
        db_path: str = "price_guard.db",
    ):
        """Initialize the store.

        Args:
            key: Name of the key-value entry holding the cache
            encode: Converts a cached payload to a JSON-ready dict
            decode: Rebuilds a cached payload from its dict form
            db_path: Path to SQLite database file
        """
        self.key = key
        self.encode = encode
        self.decode = decode
        self.db_path = db_path

    def load_entries(self) -> Dict[str, PriceCacheEntry]:
        """Load every persisted cache entry, expired ones included.

        Raises:
            PersistenceError: If the store cannot be read or is malformed
        """
        try:
            initialize_schema(self.db_path)
            raw = read_value(self.key, self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read price cache: {e}") from e

        if raw is None:
            return {}

        try:
            entries = json.loads(raw)["entries"]
            return {
                key: PriceCacheEntry(
                    data=self.decode(item["data"]),
                    cached_at=parse_timestamp(item["cached_at"]),
                    expires_at=parse_timestamp(item["expires_at"]),
                )
                for key, item in entries.items()
            }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Malformed price cache entry: {e}") from e

    def save_entries(self, entries: Mapping[str, PriceCacheEntry], saved_at: datetime) -> None:
        """Overwrite the persisted cache with the given entries.

        Raises:
            PersistenceError: If the store cannot be written
        """
        payload = json.dumps({
            "entries": {
                key: {
                    "data": self.encode(entry.data),
                    "cached_at": entry.cached_at.isoformat(),
                    "expires_at": entry.expires_at.isoformat(),
                }
                for key, entry in entries.items()
            },
            "lastSaved": saved_at.isoformat(),
        })
        try:
            initialize_schema(self.db_path)
            write_value(self.key, payload, self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write price cache: {e}") from e
