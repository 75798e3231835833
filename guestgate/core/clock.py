"""Timezone-aware time source for admission rules.

All business boundaries (calendar days, the nightly cutoff, visit expiry)
are computed in one canonical zone, while instants are passed around and
stored as UTC.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from guestgate.core.config import get_settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Clock:
    def __init__(self, tz_name: str | None = None, now_fn: Callable[[], datetime] | None = None):
        self.tz = ZoneInfo(tz_name or get_settings().TIMEZONE)
        self._now_fn = now_fn or _utcnow

    def now(self) -> datetime:
        current = self._now_fn()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(timezone.utc)

    def local(self, instant: datetime) -> datetime:
        return as_utc(instant).astimezone(self.tz)

    def window_start(self, now: datetime, days: int) -> datetime:
        return now - timedelta(days=days)

    def day_bounds(self, now: datetime) -> tuple[datetime, datetime]:
        """UTC [start, end) of the local calendar day containing ``now``."""
        local_day = self.local(now).date()
        start = datetime.combine(local_day, time.min, tzinfo=self.tz)
        end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=self.tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def cutoff_boundary(self, now: datetime, hour: int, minute: int) -> datetime | None:
        if hour >= 24:
            return None
        local_day = self.local(now).date()
        boundary = datetime.combine(local_day, time(hour=hour, minute=minute), tzinfo=self.tz)
        return boundary.astimezone(timezone.utc)

    def visit_expiration(self, checked_in_at: datetime) -> datetime:
        checked_in_at = as_utc(checked_in_at)
        local_day = self.local(checked_in_at).date()
        end_of_day = datetime.combine(local_day, time.max, tzinfo=self.tz).astimezone(timezone.utc)
        return min(checked_in_at + timedelta(hours=24), end_of_day)

    @staticmethod
    def next_eligible(oldest_visit_at: datetime, window_days: int) -> datetime:
        # One extra second so the re-check sees an age strictly past the window.
        return as_utc(oldest_visit_at) + timedelta(days=window_days, seconds=1)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def fixed_clock(instant: datetime, tz_name: str | None = None) -> Clock:
    return Clock(tz_name=tz_name, now_fn=lambda: instant)
