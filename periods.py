from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from errors import RangeError


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def parse_day(value: Union[date, datetime, str]) -> date:
    """Calendar date of an ISO date or timestamp; aware timestamps are read in UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    return parse_day(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def _coerce_date(value: Union[date, datetime, str, None], name: str) -> date:
    if value is None or value == "":
        raise RangeError(f"Missing '{name}' date")
    try:
        return parse_day(value)
    except ValueError as exc:
        raise RangeError(f"Invalid '{name}' date: {value}") from exc


def resolve_range(
    start: Union[date, datetime, str, None],
    end: Union[date, datetime, str, None],
    *,
    max_days: Optional[int] = None,
) -> Period:
    """Validate a ``[start, end]`` query window.

    The window must move forward (``start < end``) and span at most
    ``max_days`` days (``FINANCE_MAX_RANGE_DAYS`` by default).
    """
    if max_days is None:
        max_days = get_settings().max_range_days
    start_date = _coerce_date(start, "from")
    end_date = _coerce_date(end, "to")
    span = (end_date - start_date).days
    if span <= 0:
        raise RangeError("'from' must be before 'to'")
    if span > max_days:
        raise RangeError(f"Date range cannot exceed {max_days} days")
    return Period("custom", start_date, end_date)


def month_period(today: Optional[date] = None) -> Period:
    today = today or local_today()
    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    end_this = next_month - date.resolution
    return Period("this_month", first, end_this)
