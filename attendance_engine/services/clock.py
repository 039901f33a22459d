from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable

from attendance_engine.settings import get_settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts_utc: datetime | None) -> datetime | None:
    if ts_utc is None:
        return None

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


class OrganizationClock:
    """Wall clock pinned to the organization's fixed UTC offset.

    All lateness and early-checkout arithmetic goes through this object so the
    current instant and the offset can be swapped out in tests.
    """

    def __init__(
        self,
        utc_offset_minutes: int,
        now_fn: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.utc_offset_minutes = utc_offset_minutes
        self.tz = timezone(timedelta(minutes=utc_offset_minutes))
        self._now_fn = now_fn

    def now_utc(self) -> datetime:
        return normalize_ts(self._now_fn())

    def now_local(self) -> datetime:
        return self.now_utc().astimezone(self.tz)

    def today(self) -> date:
        return self.now_local().date()

    def local_date_of(self, ts_utc: datetime) -> date:
        return normalize_ts(ts_utc).astimezone(self.tz).date()

    def minutes_since_midnight(self, ts_utc: datetime | None = None) -> int:
        local = self.now_local() if ts_utc is None else normalize_ts(ts_utc).astimezone(self.tz)
        return local.hour * 60 + local.minute

    def local_to_utc(self, day: date, minutes_of_day: int) -> datetime:
        local_midnight = datetime(day.year, day.month, day.day, tzinfo=self.tz)
        return (local_midnight + timedelta(minutes=minutes_of_day)).astimezone(timezone.utc)


def get_clock() -> OrganizationClock:
    return OrganizationClock(get_settings().organization_utc_offset_minutes)
