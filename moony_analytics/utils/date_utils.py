"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timedelta, timezone


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def start_of_month(day: date) -> date:
    return day.replace(day=1)


def end_of_month(day: date) -> date:
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=last_day)


def subtract_months(day: date, months: int) -> date:
    """Same day-of-month `months` earlier, clamped to the end of shorter months"""
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def previous_month_range(today: date) -> tuple[date, date]:
    """First and last day of the calendar month before `today`"""
    last_month_end = start_of_month(today) - timedelta(days=1)
    return start_of_month(last_month_end), last_month_end


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
