"""
Usage statistics and cost advice.

Derives quota status, rate-limit buckets, live-data indicators, cost
estimates and history from the usage ledger.

Thresholds:
1. Daily usage - critical above 90% of the daily limit, warning above 75%
2. Per-minute usage - critical at the minute limit, warning one call below it

Every query is read-only and never raises: when data cannot be derived
the worst-case figures are returned instead.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .ledger import UsageLedger
from price_guard.storage.models import ApiCallRecord, Provider

logger = logging.getLogger(__name__)

DAILY_CRITICAL_PCT = 90.0
DAILY_WARNING_PCT = 75.0


class RateLimitLevel(Enum):
    """Rate-limit buckets in order of severity."""
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"


class OperationKind(Enum):
    """Refresh operations the interface can ask to price."""
    TEST = "test"
    SINGLE = "single"
    ALL = "all"


@dataclass(frozen=True)
class CostAnalysis:
    """Quota cost of each refresh operation."""
    test_connection: int
    single_refresh: int
    all_refresh: int
    next_scheduled_update: Optional[datetime]


@dataclass(frozen=True)
class UsageStats:
    """Today's usage against the daily limit."""
    today: List[ApiCallRecord]
    total_calls_today: int
    remaining_calls_today: int
    daily_limit: int
    reset_time: datetime
    cost_analysis: CostAnalysis


@dataclass(frozen=True)
class DailyStatus:
    status: RateLimitLevel
    percentage: float


@dataclass(frozen=True)
class MinuteStatus:
    status: RateLimitLevel
    calls_in_last_minute: int


@dataclass(frozen=True)
class RateLimitStatus:
    daily: DailyStatus
    minute: MinuteStatus


@dataclass(frozen=True)
class LiveIndicator:
    """Marks a key as freshly fetched today."""
    is_live: bool
    last_update: datetime
    provider: Provider


@dataclass(frozen=True)
class CostEstimate:
    cost: int
    affordable: bool
    description: str


@dataclass(frozen=True)
class HistoryPoint:
    """Quota units consumed on one calendar day."""
    date: date
    calls: int
    label: str = field(default="")


def classify_daily(percentage: float) -> RateLimitLevel:
    """Bucket a daily usage percentage."""
    if percentage > DAILY_CRITICAL_PCT:
        return RateLimitLevel.CRITICAL
    if percentage > DAILY_WARNING_PCT:
        return RateLimitLevel.WARNING
    return RateLimitLevel.SAFE


def classify_minute(calls: int, minute_limit: int) -> RateLimitLevel:
    """Bucket the number of calls made in the trailing minute."""
    if calls >= minute_limit:
        return RateLimitLevel.CRITICAL
    if calls >= minute_limit - 1:
        return RateLimitLevel.WARNING
    return RateLimitLevel.SAFE


def _billable_cost(records: Sequence[ApiCallRecord]) -> int:
    return sum(r.cost for r in records if not r.from_cache)


class UsageAdvisor:
    """Read-only view of the ledger for the interface layer."""

    def __init__(
        self,
        ledger: UsageLedger,
        daily_limit: int = 500,
        minute_limit: int = 5,
        calls_per_quote: int = 1,
        stock_symbols: Sequence[str] = (),
        next_update_at: Optional[time] = time(9, 30),
        limited_provider: Provider = Provider.ALPHAVANTAGE,
    ):
        """Initialize the advisor.

        Args:
            ledger: Usage ledger to read from
            daily_limit: Daily quota of the limiting provider
            minute_limit: Per-minute quota of the limiting provider
            calls_per_quote: Quota units consumed by one live quote
            stock_symbols: Configured stock symbols (drives the 'all' estimate)
            next_update_at: Wall-clock time of the placeholder daily update
            limited_provider: Provider whose per-minute usage is watched
        """
        self.ledger = ledger
        self.clock = ledger.clock
        self.daily_limit = daily_limit
        self.minute_limit = minute_limit
        self.calls_per_quote = calls_per_quote
        self.stock_symbols = list(dict.fromkeys(stock_symbols))
        self.next_update_at = next_update_at
        self.limited_provider = limited_provider

    def todays_stats(self) -> UsageStats:
        """Today's totals, remaining quota and reset time."""
        now = self.clock.now()
        try:
            today = self.ledger.calls_on(self.clock.date_of(now))
            total = _billable_cost(today)
            cost_analysis = self.cost_analysis()
        except Exception:
            logger.exception("Failed to compute today's usage stats")
            today = []
            total = self.daily_limit
            cost_analysis = CostAnalysis(0, 0, 0, None)

        return UsageStats(
            today=today,
            total_calls_today=total,
            remaining_calls_today=max(0, self.daily_limit - total),
            daily_limit=self.daily_limit,
            reset_time=self.clock.start_of_next_day(now),
            cost_analysis=cost_analysis,
        )

    def cost_analysis(self) -> CostAnalysis:
        return CostAnalysis(
            test_connection=self.calls_per_quote,
            single_refresh=self.calls_per_quote,
            all_refresh=self.calls_per_quote * len(self.stock_symbols),
            next_scheduled_update=self.next_scheduled_update(),
        )

    def next_scheduled_update(self) -> Optional[datetime]:
        """Static placeholder: tomorrow at the configured update time.

        Nothing is scheduled at this instant.
        """
        if self.next_update_at is None:
            return None
        tomorrow = self.clock.today() + timedelta(days=1)
        return self.clock.at(tomorrow, self.next_update_at)

    def rate_limit_status(self) -> RateLimitStatus:
        """Daily percentage and trailing-minute call count, bucketed."""
        try:
            stats = self.todays_stats()
            if self.daily_limit > 0:
                percentage = stats.total_calls_today / self.daily_limit * 100
            else:
                percentage = 100.0
            daily = DailyStatus(status=classify_daily(percentage), percentage=percentage)
        except Exception:
            logger.exception("Failed to compute daily rate-limit status")
            daily = DailyStatus(status=RateLimitLevel.CRITICAL, percentage=100.0)

        try:
            one_minute_ago = self.clock.now() - timedelta(seconds=60)
            recent = [
                r for r in self.ledger.calls_since(one_minute_ago)
                if r.provider == self.limited_provider
            ]
            calls = _billable_cost(recent)
            minute = MinuteStatus(
                status=classify_minute(calls, self.minute_limit),
                calls_in_last_minute=calls,
            )
        except Exception:
            logger.exception("Failed to compute per-minute rate-limit status")
            minute = MinuteStatus(status=RateLimitLevel.CRITICAL, calls_in_last_minute=self.minute_limit)

        return RateLimitStatus(daily=daily, minute=minute)

    def live_data_indicators(self) -> Dict[str, LiveIndicator]:
        """Most recent successful live fetch today, per key."""
        indicators: Dict[str, LiveIndicator] = {}
        try:
            for call in self.ledger.todays_calls():
                if not call.success or call.from_cache or not call.key:
                    continue
                existing = indicators.get(call.key)
                if existing is None or call.timestamp > existing.last_update:
                    indicators[call.key] = LiveIndicator(
                        is_live=True,
                        last_update=call.timestamp,
                        provider=call.provider,
                    )
        except Exception:
            logger.exception("Failed to compute live data indicators")
            return {}
        return indicators

    def estimate_operation_cost(self, kind) -> CostEstimate:
        """Quota cost of an operation and whether today's quota covers it.

        Args:
            kind: OperationKind or its string value ('test', 'single', 'all')
        """
        try:
            operation = OperationKind(kind)
        except ValueError:
            return CostEstimate(cost=0, affordable=False, description="Unknown operation")

        stats = self.todays_stats()
        analysis = stats.cost_analysis

        if operation == OperationKind.TEST:
            cost = analysis.test_connection
            description = f"Test API connection ({cost} call{'s' if cost != 1 else ''})"
        elif operation == OperationKind.SINGLE:
            cost = analysis.single_refresh
            description = f"Refresh 1 stock ({cost} call{'s' if cost != 1 else ''})"
        else:
            cost = analysis.all_refresh
            description = f"Refresh all stocks ({cost} calls)"

        return CostEstimate(
            cost=cost,
            affordable=cost <= stats.remaining_calls_today,
            description=description,
        )

    def usage_history(self, days: int = 7) -> List[HistoryPoint]:
        """Billable units per calendar day, oldest first, including today."""
        today = self.clock.today()
        history = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            try:
                calls = _billable_cost(self.ledger.calls_on(day))
            except Exception:
                logger.exception("Failed to compute usage for %s", day)
                calls = 0
            history.append(HistoryPoint(date=day, calls=calls, label=day.strftime("%m/%d")))
        return history
