# backend/ledger_core/utils/date_utils.py
"""
Date utility functions shared by the ledger and the backfill job.

Usage:
    from ledger_core.utils.date_utils import iter_days, days_inclusive

    for day in iter_days(job.start_date, job.end_date):
        ...
"""

from collections.abc import Iterator
from datetime import date, datetime, timedelta, timezone


def days_inclusive(start_date: date, end_date: date) -> int:
    """
    Number of calendar days in [start_date, end_date].

    Example:
        >>> days_inclusive(date(2024, 1, 1), date(2024, 1, 31))
        31
    """
    return (end_date - start_date).days + 1


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    """Yield every calendar day from start_date to end_date (inclusive)."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def utc_today() -> date:
    """Today's date in UTC."""
    return datetime.now(timezone.utc).date()


def to_unix_timestamp(d: date) -> int:
    """Midnight UTC of the given date as a Unix timestamp."""
    return int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp())
