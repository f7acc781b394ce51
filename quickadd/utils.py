from datetime import datetime, timedelta, timezone
import calendar
import logging

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime. Naive values are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def at_time(dt: datetime, hour: int, minute: int) -> datetime:
    """Return dt on the same calendar day at hour:minute:00.000."""
    return dt.replace(hour=hour, minute=minute, second=0, microsecond=0)


def end_of_day(dt: datetime) -> datetime:
    # Vikunja treats 23:59 as "sometime that day"
    return at_time(dt, 23, 59)


def next_weekday(from_dt: datetime, target_weekday: int, allow_today: bool = True) -> datetime:
    """Return the start of the next day that falls on target_weekday.

    target_weekday uses datetime.weekday() numbering (Monday=0 .. Sunday=6).
    When from_dt is already on that weekday the result is today if
    allow_today is True, otherwise the same weekday one week later.
    """
    delta = target_weekday - from_dt.weekday()
    if delta < 0 or (delta == 0 and not allow_today):
        delta += 7
    return start_of_day(from_dt) + timedelta(days=delta)


def days_in_month(dt: datetime) -> int:
    return calendar.monthrange(dt.year, dt.month)[1]


def nearest_day_of_month(from_dt: datetime, day: int) -> datetime:
    """Return the nearest date (today included) on the given day-of-month.

    The day is clamped to the length of the month, so 31 resolves to the
    30th in a 30-day month and to the 28th/29th in February. If the clamped
    day is already behind from_dt's start of day the search rolls over to
    the following month.
    """
    candidate = start_of_day(from_dt).replace(day=min(day, days_in_month(from_dt)))
    if not candidate < start_of_day(from_dt):
        return candidate
    # relativedelta clamps the day itself (Jan 31 + 1 month -> Feb 29)
    following = start_of_day(from_dt).replace(day=1) + relativedelta(months=1)
    return following.replace(day=min(day, days_in_month(following)))


def ceil_to_hour(dt: datetime) -> datetime:
    """Round dt up to the next full hour; exact hour boundaries are kept.

    Sub-second noise is ignored, so 12:00:00.5 still counts as 12:00.
    """
    if dt.minute == 0 and dt.second == 0:
        return dt.replace(microsecond=0)
    return dt.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


def to_iso(dt: datetime) -> str:
    """Render dt as a UTC ISO string with millisecond precision and a Z suffix.

    Example: 2024-01-10T23:59:00.000Z
    """
    dt = ensure_utc(dt)
    return dt.strftime('%Y-%m-%dT%H:%M:%S') + '.%03dZ' % (dt.microsecond // 1000)


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO timestamp as sent by Vikunja ('...Z' or '+00:00').

    Returns None for empty or unparseable values.
    """
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.strip().replace('Z', '+00:00')))
    except ValueError:
        logger.debug('unparseable timestamp %r', value)
        return None
