"""
Usage ledger for external price calls.

Keeps the ordered, append-only list of call records for the trailing
retention window and persists it after every append.
"""

import logging
import threading
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from .clock import Clock
from .exceptions import PersistenceError
from price_guard.storage.models import ApiCallRecord, Provider
from price_guard.storage.repository import UsageStore

logger = logging.getLogger(__name__)


class UsageLedger:
    """Process-wide record of every price lookup.

    Constructed once per process and shared by both price clients and the
    advisor. Persistence is fail-open: a failed load yields an empty
    ledger and a failed save is logged and ignored.
    """

    def __init__(self, store: UsageStore, clock: Clock, retention_days: int = 7):
        """Initialize an empty, not yet loaded ledger.

        Args:
            store: Durable store for the record list
            clock: Time source for stamping and day boundaries
            retention_days: Records older than this many days are pruned
        """
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        self.store = store
        self.clock = clock
        self.retention_days = retention_days
        self._records: List[ApiCallRecord] = []
        self._lock = threading.Lock()
        self._initialized = False

    def initialize(self) -> None:
        """Load persisted records and prune them to the retention window."""
        with self._lock:
            try:
                self._records = self.store.load_records()
            except PersistenceError as e:
                logger.warning("Failed to load usage ledger, starting empty: %s", e)
                self._records = []
            self._initialized = True
        self.prune_older_than(self.retention_days)

    @property
    def records(self) -> Tuple[ApiCallRecord, ...]:
        """Snapshot of all retained records in append order."""
        with self._lock:
            return tuple(self._records)

    def record(
        self,
        provider: Provider,
        endpoint: str,
        success: bool,
        from_cache: bool,
        cost: int,
        key: Optional[str] = None,
    ) -> None:
        """Stamp, append and persist one call record."""
        entry = ApiCallRecord(
            timestamp=self.clock.now(),
            provider=provider,
            endpoint=endpoint,
            key=key,
            success=success,
            from_cache=from_cache,
            cost=cost,
        )
        with self._lock:
            self._records.append(entry)
            self._persist()
        logger.debug(
            "Recorded %s call: endpoint=%s key=%s cost=%d from_cache=%s success=%s",
            provider.value, endpoint, key, cost, from_cache, success,
        )

    def flush(self) -> None:
        """Persist the current record list."""
        with self._lock:
            self._persist()

    def _persist(self) -> None:
        # Caller holds self._lock
        try:
            self.store.save_records(self._records, self.clock.now())
        except PersistenceError as e:
            logger.warning("Failed to save usage ledger: %s", e)

    def calls_on(self, day: date) -> List[ApiCallRecord]:
        """Records whose timestamp falls on the given calendar date."""
        return [r for r in self.records if self.clock.date_of(r.timestamp) == day]

    def todays_calls(self) -> List[ApiCallRecord]:
        return self.calls_on(self.clock.today())

    def provider_calls_today(self, provider: Provider) -> List[ApiCallRecord]:
        return [r for r in self.todays_calls() if r.provider == provider]

    def calls_since(self, instant: datetime) -> List[ApiCallRecord]:
        """Records strictly newer than instant."""
        return [r for r in self.records if r.timestamp > instant]

    def prune_older_than(self, days: int) -> int:
        """Drop records older than the given number of days.

        Returns:
            Number of records removed
        """
        cutoff = self.clock.now() - timedelta(days=days)
        with self._lock:
            kept = [r for r in self._records if r.timestamp > cutoff]
            removed = len(self._records) - len(kept)
            self._records = kept
            self._persist()
        if removed:
            logger.info("Pruned %d usage records older than %d days", removed, days)
        return removed

    def reset_todays_usage(self) -> int:
        """Drop every record made today.

        Returns:
            Number of records removed
        """
        today = self.clock.today()
        with self._lock:
            kept = [r for r in self._records if self.clock.date_of(r.timestamp) != today]
            removed = len(self._records) - len(kept)
            self._records = kept
            self._persist()
        logger.info("Reset today's usage (%d records removed)", removed)
        return removed

    def __len__(self) -> int:
        return len(self.records)
