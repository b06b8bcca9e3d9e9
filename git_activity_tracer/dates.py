"""Date range presets and parsing for report commands."""

import calendar
from datetime import date, datetime, time, timedelta

from .errors import ValidationError

DATE_SUGGESTIONS = [
    "Use YYYY-MM-DD format (e.g., 2025-01-15)",
    "Or use a preset: --last-week, --last-month",
]


def start_of_day(day: date) -> datetime:
    """Return local midnight of the given day as an aware datetime."""
    return datetime.combine(day, time.min).astimezone()


def end_of_day(day: date) -> datetime:
    """Return the last microsecond of the given day as an aware local datetime."""
    return datetime.combine(day, time.max).astimezone()


def _monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def current_week_range(today: date | None = None) -> tuple[datetime, datetime]:
    """Monday of this week through the end of today."""
    today = today or date.today()
    return start_of_day(_monday_of(today)), end_of_day(today)


def last_week_range(today: date | None = None) -> tuple[datetime, datetime]:
    """Monday through Sunday of the previous week."""
    today = today or date.today()
    monday = _monday_of(today) - timedelta(days=7)
    return start_of_day(monday), end_of_day(monday + timedelta(days=6))


def last_month_range(today: date | None = None) -> tuple[datetime, datetime]:
    """The same day last month through the end of today.

    Days that do not exist in the previous month are clamped to its last day.
    """
    today = today or date.today()
    year, month = (today.year - 1, 12) if today.month == 1 else (today.year, today.month - 1)
    day = min(today.day, calendar.monthrange(year, month)[1])
    return start_of_day(date(year, month, day)), end_of_day(today)


def _parse_date(value: str, label: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {label} date: {value}", DATE_SUGGESTIONS)


def parse_range(
    from_str: str | None = None,
    to_str: str | None = None,
    last_week: bool = False,
    last_month: bool = False,
    today: date | None = None,
) -> tuple[datetime, datetime]:
    """Resolve command-line date options into a range.

    Presets take precedence over explicit dates. With no dates at all the
    current week is used; a single missing side defaults to today.

    Args:
        from_str: Start date as YYYY-MM-DD
        to_str: End date as YYYY-MM-DD
        last_week: Use the previous Monday-Sunday week
        last_month: Use the last month up to today
        today: Reference day (defaults to the current local date)

    Returns:
        (start of first day, end of last day), both timezone-aware

    Raises:
        ValidationError: If a date cannot be parsed
    """
    if last_week:
        return last_week_range(today)
    if last_month:
        return last_month_range(today)
    if from_str is None and to_str is None:
        return current_week_range(today)

    today = today or date.today()
    from_day = _parse_date(from_str, "start") if from_str is not None else today
    to_day = _parse_date(to_str, "end") if to_str is not None else today

    if from_day > to_day:
        from_day, to_day = to_day, from_day

    return start_of_day(from_day), end_of_day(to_day)
