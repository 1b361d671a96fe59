"""
Unit tests for the usage ledger.

Tests append-and-persist, retention pruning, day filtering and
fail-open persistence.
"""

import json
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from price_guard.core.exceptions import PersistenceError
from price_guard.core.ledger import UsageLedger
from price_guard.storage.models import ApiCallRecord, Provider
from price_guard.storage.repository import STORAGE_KEY, UsageStore, initialize_schema, write_value
from conftest import EASTERN


def _record_stock(ledger, key="SPY", success=True, from_cache=False):
    ledger.record(
        Provider.ALPHAVANTAGE, "GLOBAL_QUOTE",
        success=success, from_cache=from_cache,
        cost=0 if from_cache else 1, key=key,
    )


class TestLedgerRecording:
    """Test appending records."""

    def test_record_appends_and_stamps(self, ledger, clock):
        _record_stock(ledger)

        assert len(ledger) == 1
        record = ledger.records[0]
        assert record.timestamp == clock.now()
        assert record.provider == Provider.ALPHAVANTAGE
        assert record.key == "SPY"
        assert record.cost == 1

    def test_records_keep_append_order(self, ledger, clock):
        for symbol in ["SPY", "VTI", "QQQ"]:
            _record_stock(ledger, key=symbol)
            clock.advance(1)

        assert [r.key for r in ledger.records] == ["SPY", "VTI", "QQQ"]

    def test_each_append_is_persisted(self, ledger, db_path):
        """A fresh store sees every record written so far."""
        _record_stock(ledger)
        assert len(UsageStore(db_path).load_records()) == 1

        _record_stock(ledger, key="VTI")
        assert len(UsageStore(db_path).load_records()) == 2

    def test_records_snapshot_is_immutable(self, ledger):
        _record_stock(ledger)
        snapshot = ledger.records
        _record_stock(ledger)

        assert isinstance(snapshot, tuple)
        assert len(snapshot) == 1

    def test_invalid_retention_rejected(self, clock, db_path):
        with pytest.raises(ValueError, match="retention_days must be >= 1"):
            UsageLedger(UsageStore(db_path), clock, retention_days=0)


class TestLedgerReload:
    """Test loading persisted records on startup."""

    def test_reload_restores_records(self, ledger, db_path, clock):
        _record_stock(ledger)
        _record_stock(ledger, key="VTI")

        reloaded = UsageLedger(UsageStore(db_path), clock)
        reloaded.initialize()

        assert [r.key for r in reloaded.records] == ["SPY", "VTI"]

    def test_initialize_prunes_old_records(self, db_path, clock):
        """Records older than seven days are dropped at load."""
        store = UsageStore(db_path)
        old = ApiCallRecord(
            timestamp=clock.now() - timedelta(days=8),
            provider=Provider.ALPHAVANTAGE, endpoint="GLOBAL_QUOTE",
            success=True, from_cache=False, cost=1, key="SPY",
        )
        recent = ApiCallRecord(
            timestamp=clock.now() - timedelta(days=6),
            provider=Provider.ALPHAVANTAGE, endpoint="GLOBAL_QUOTE",
            success=True, from_cache=False, cost=1, key="VTI",
        )
        store.save_records([old, recent], clock.now())

        ledger = UsageLedger(store, clock)
        ledger.initialize()

        assert [r.key for r in ledger.records] == ["VTI"]
        assert [r.key for r in store.load_records()] == ["VTI"]

    def test_failed_load_starts_empty(self, clock):
        store = MagicMock()
        store.load_records.side_effect = PersistenceError("Malformed usage store entry")

        ledger = UsageLedger(store, clock)
        ledger.initialize()

        assert len(ledger) == 0

    def test_naive_timestamps_start_empty(self, db_path, clock):
        """A stored ledger without UTC offsets is treated as malformed."""
        initialize_schema(db_path)
        write_value(STORAGE_KEY, json.dumps({"apiCalls": [{
            "timestamp": "2024-03-15T09:00:00",
            "provider": "alphavantage",
            "endpoint": "GLOBAL_QUOTE",
            "key": "SPY",
            "success": True,
            "from_cache": False,
            "cost": 1,
        }]}), db_path)

        ledger = UsageLedger(UsageStore(db_path), clock)
        ledger.initialize()

        assert len(ledger) == 0

    def test_failed_save_keeps_record_in_memory(self, clock):
        """Save failures are logged and the in-memory ledger stays usable."""
        store = MagicMock()
        store.load_records.return_value = []
        store.save_records.side_effect = PersistenceError("Failed to write usage store")

        ledger = UsageLedger(store, clock)
        ledger.initialize()
        _record_stock(ledger)

        assert len(ledger) == 1


class TestLedgerQueries:
    """Test day-based filtering and maintenance."""

    def test_todays_calls_excludes_yesterday(self, ledger, clock):
        clock.current = EASTERN.localize(datetime(2024, 3, 14, 23, 59))
        _record_stock(ledger, key="OLD")
        clock.current = EASTERN.localize(datetime(2024, 3, 15, 0, 1))
        _record_stock(ledger, key="NEW")

        assert [r.key for r in ledger.todays_calls()] == ["NEW"]
        assert [r.key for r in ledger.calls_on(date(2024, 3, 14))] == ["OLD"]

    def test_provider_calls_today(self, ledger):
        _record_stock(ledger)
        ledger.record(Provider.COINGECKO, "coingecko_simple_price", True, False, 1, key="bitcoin")

        coingecko = ledger.provider_calls_today(Provider.COINGECKO)
        assert [r.key for r in coingecko] == ["bitcoin"]

    def test_calls_since_is_strict(self, ledger, clock):
        start = clock.now()
        _record_stock(ledger, key="AT_START")
        clock.advance(30)
        _record_stock(ledger, key="LATER")

        assert [r.key for r in ledger.calls_since(start)] == ["LATER"]

    def test_prune_older_than(self, ledger, clock):
        _record_stock(ledger, key="OLD")
        clock.advance(days=3)
        _record_stock(ledger, key="NEW")

        removed = ledger.prune_older_than(2)

        assert removed == 1
        assert [r.key for r in ledger.records] == ["NEW"]

    def test_reset_todays_usage(self, ledger, clock, db_path):
        _record_stock(ledger, key="YESTERDAY")
        clock.advance(days=1)
        _record_stock(ledger, key="TODAY1")
        _record_stock(ledger, key="TODAY2")

        removed = ledger.reset_todays_usage()

        assert removed == 2
        assert [r.key for r in ledger.records] == ["YESTERDAY"]
        assert len(UsageStore(db_path).load_records()) == 1

    def test_flush_writes_current_records(self, clock):
        """Flush retries a save that failed on append."""
        store = MagicMock()
        store.load_records.return_value = []
        store.save_records.side_effect = [None, PersistenceError("Failed to write usage store"), None]

        ledger = UsageLedger(store, clock)
        ledger.initialize()
        _record_stock(ledger)
        ledger.flush()

        saved_records, saved_at = store.save_records.call_args.args
        assert [r.key for r in saved_records] == ["SPY"]
        assert saved_at == clock.now()
        assert store.save_records.call_count == 3
