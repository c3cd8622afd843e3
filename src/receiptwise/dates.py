"""Clock and calendar helpers."""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def start_of_month(day: date) -> date:
    return day.replace(day=1)


def previous_month_bounds(day: date) -> tuple[date, date]:
    """Return the first and last day of the month before ``day``'s month."""
    last = start_of_month(day) - timedelta(days=1)
    return last.replace(day=1), last
