from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from errors import ValidationError
from models import BudgetPeriod, utcnow


@dataclass(frozen=True)
class Window:
    slug: str
    start: datetime


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def local_day(value: datetime, tz: ZoneInfo) -> date:
    return to_local(value, tz).date()


def _local_midnight_utc(day: date, tz: ZoneInfo) -> datetime:
    return to_utc_naive(datetime.combine(day, time.min, tzinfo=tz))


def day_start(now: datetime, tz: ZoneInfo) -> datetime:
    return _local_midnight_utc(local_day(now, tz), tz)


def week_start(now: datetime, tz: ZoneInfo) -> datetime:
    return _local_midnight_utc(local_day(now, tz) - timedelta(days=7), tz)


def month_start(now: datetime, tz: ZoneInfo) -> datetime:
    return _local_midnight_utc(local_day(now, tz).replace(day=1), tz)


def resolve_window(
    period: BudgetPeriod, *, now: Optional[datetime] = None, tz: ZoneInfo
) -> Window:
    now = now or utcnow()
    if period == BudgetPeriod.daily:
        return Window("daily", day_start(now, tz))
    if period == BudgetPeriod.weekly:
        return Window("weekly", week_start(now, tz))
    return Window("monthly", month_start(now, tz))


def parse_bound(value: Optional[str], tz: ZoneInfo, *, end: bool = False) -> Optional[datetime]:
    """Parse a startDate/endDate query value into a naive UTC datetime.

    Bare dates are read in the local timezone; as an upper bound they cover
    the whole day.
    """
    if not value:
        return None
    raw = value.strip()
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            if end:
                return _local_midnight_utc(day + timedelta(days=1), tz) - timedelta(
                    microseconds=1
                )
            return _local_midnight_utc(day, tz)
        return to_utc_naive(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value}") from exc
