"""UTC clock helpers.

All persisted timestamps are naive UTC datetimes so comparisons behave the
same on every database backend.
"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    """Current UTC calendar date (the daily usage bucket key)."""
    return utcnow().date()
