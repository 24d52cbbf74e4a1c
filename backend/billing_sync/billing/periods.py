"""Billing period arithmetic — pure functions over naive UTC datetimes."""

import calendar
from datetime import datetime, timedelta, timezone

DEFAULT_FALLBACK_DAYS = 30


def ts_to_naive(ts: int | None) -> datetime | None:
    """Convert a Stripe Unix timestamp to a naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    """Current time as naive UTC (matches the DB columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(start: datetime, months: int) -> datetime:
    """Advance by calendar months, clamping to the last day of the target month.

    2024-01-31 + 1 month -> 2024-02-29.
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def advance(start: datetime, interval: str | None, interval_count: int = 1) -> datetime:
    """Advance ``start`` by ``interval_count`` units of ``interval``.

    ``interval`` is one of Stripe's recurring intervals: day, week, month,
    year. Anything else is treated as month.
    """
    count = max(1, interval_count or 1)
    if interval == "day":
        return start + timedelta(days=count)
    if interval == "week":
        return start + timedelta(days=count * 7)
    if interval == "year":
        return add_months(start, 12 * count)
    return add_months(start, count)


def compute_period(
    anchor: int | None,
    interval: str | None,
    interval_count: int = 1,
    *,
    now: datetime | None = None,
    fallback_days: int = DEFAULT_FALLBACK_DAYS,
) -> tuple[datetime, datetime]:
    """Compute ``(period_start, period_end)`` for a subscription.

    With a valid anchor (a positive epoch-seconds value) the period starts
    at the anchor and ends ``interval_count`` intervals later. Without one,
    it is ``[now, now + fallback_days)``; pass the event timestamp as ``now``
    so that replaying the same event produces the same period.
    """
    if anchor is None or anchor <= 0:
        start = now if now is not None else utcnow()
        return start, start + timedelta(days=fallback_days)

    start = ts_to_naive(anchor)
    return start, advance(start, interval, interval_count)
