"""
Date and time helpers shared by the engine, the fine calculator and the models.

All stored timestamps are naive UTC. Every point in time that enters the
service goes through ``as_datetime`` first:

- a bare ``date`` means midnight at the start of that day
- a timezone-aware ``datetime`` is converted to UTC and made naive
- a naive ``datetime`` is taken as UTC already
"""

from datetime import UTC, date, datetime, time, timedelta

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(UTC).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)


def late_days(due_date: date | datetime, return_date: date | datetime) -> int:
    """Number of started days between the due date and the return date."""
    overdue = as_datetime(return_date) - as_datetime(due_date)
    if overdue <= timedelta(0):
        return 0
    return -(-overdue // ONE_DAY)
