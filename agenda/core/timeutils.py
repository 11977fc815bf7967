from datetime import date, datetime, time, timedelta

import pytz

from agenda.core import config


def tenant_timezone(tenant_id: str) -> pytz.BaseTzInfo:
    return pytz.timezone(config.timezone_name_for_tenant(tenant_id))


def utcnow() -> datetime:
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def localize(value: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Attach ``tz`` to a naive wall-clock datetime, or convert an aware one."""
    if value.tzinfo is None:
        return tz.localize(value)
    return value.astimezone(tz)


def to_utc_naive(value: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Naive values are read as wall-clock time in ``tz``; storage is naive UTC."""
    return localize(value, tz).astimezone(pytz.UTC).replace(tzinfo=None)


def to_local(value: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Inverse of :func:`to_utc_naive`."""
    if value.tzinfo is None:
        value = pytz.UTC.localize(value)
    return value.astimezone(tz)


def local_combine(day: date, moment: time, tz: pytz.BaseTzInfo) -> datetime:
    return tz.localize(datetime.combine(day, moment))


def local_day_bounds(day: date, tz: pytz.BaseTzInfo) -> tuple[datetime, datetime]:
    """Return the UTC-naive ``[start, end)`` of ``day`` in ``tz``."""
    start = local_combine(day, time(0, 0), tz)
    end = local_combine(day + timedelta(days=1), time(0, 0), tz)
    return to_utc_naive(start, tz), to_utc_naive(end, tz)


def day_of_week(value: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (value.weekday() + 1) % 7


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test for ``[a_start, a_end)`` and ``[b_start, b_end)``."""
    return a_start < b_end and b_start < a_end
