"""
Calendar and time helpers.

All day-boundary logic goes through a Clock so that "today" is always an
explicit calendar date in a single, known time zone.
"""

import time
from datetime import date, datetime, time as dt_time, timedelta
from typing import Optional

import pytz


class Clock:
    """Source of the current instant, expressed in a fixed time zone.

    When no zone name is given the local device zone is used, which matches
    how a single-user desktop dashboard reads the calendar.
    """

    def __init__(self, timezone: Optional[str] = None):
        """Initialize the clock.

        Args:
            timezone: Optional IANA zone name (e.g. "US/Eastern")

        Raises:
            pytz.UnknownTimeZoneError: If the zone name is not known
        """
        self.timezone = timezone
        self._tz = pytz.timezone(timezone) if timezone else None

    def now(self) -> datetime:
        """Current instant as an aware datetime in the clock's zone."""
        if self._tz is None:
            return datetime.now().astimezone()
        return datetime.now(self._tz)

    def monotonic(self) -> float:
        """Monotonic seconds, used for spacing outbound calls."""
        return time.monotonic()

    def localize(self, moment: datetime) -> datetime:
        """Express an instant in the clock's zone.

        Naive datetimes are assumed to already be in the clock's zone.
        """
        if moment.tzinfo is None:
            if self._tz is None:
                return moment.astimezone()
            return self._tz.localize(moment)
        if self._tz is None:
            return moment.astimezone()
        return moment.astimezone(self._tz)

    def date_of(self, moment: datetime) -> date:
        """Calendar date of an instant in the clock's zone."""
        return self.localize(moment).date()

    def today(self) -> date:
        """Current calendar date."""
        return self.now().date()

    def at(self, day: date, at_time: dt_time) -> datetime:
        """Aware datetime for a wall-clock time on a given calendar day."""
        return self.localize(datetime.combine(day, at_time))

    def end_of_day(self, moment: datetime) -> datetime:
        """Last millisecond (23:59:59.999) of the day containing moment."""
        return self.at(self.date_of(moment), dt_time(23, 59, 59, 999000))

    def start_of_next_day(self, moment: datetime) -> datetime:
        """Midnight at the start of the calendar day after moment."""
        return self.at(self.date_of(moment) + timedelta(days=1), dt_time(0, 0))
