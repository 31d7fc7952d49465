from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class MonthPeriod:
    year: int
    month: int
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_period(today: Optional[date] = None) -> MonthPeriod:
    today = today or local_today()
    first = today.replace(day=1)
    end = first.replace(day=days_in_month(first.year, first.month))
    return MonthPeriod(first.year, first.month, first, end)


def same_month(a: date, b: date) -> bool:
    return a.year == b.year and a.month == b.month


def utc_bounds(
    period: MonthPeriod, timezone: Optional[str] = None
) -> tuple[datetime, datetime]:
    """Naive UTC ``[start, end)`` covering the period in local time."""
    tz = ZoneInfo(timezone or get_settings().timezone)
    start = datetime.combine(period.start, time.min, tzinfo=tz)
    end = datetime.combine(period.end + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start.astimezone(dt_timezone.utc).replace(tzinfo=None),
        end.astimezone(dt_timezone.utc).replace(tzinfo=None),
    )
