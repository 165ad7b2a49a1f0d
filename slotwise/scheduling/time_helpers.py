import datetime as dt
from collections.abc import Callable
from zoneinfo import ZoneInfo

from loguru import logger

from slotwise.domain.models import TimeBucket

Clock = Callable[[], dt.datetime]

_AFTERNOON_START = dt.time(12, 0)
_EVENING_START = dt.time(16, 0)


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def day_of_week(date: dt.date) -> int:
    """Return the day of week with Sunday as ``0`` and Saturday as ``6``."""
    return date.isoweekday() % 7


def time_to_minutes(time: dt.time) -> int:
    return time.hour * 60 + time.minute


def minutes_to_time(minutes: int) -> dt.time:
    return dt.time(minutes // 60, minutes % 60)


def time_bucket(time: dt.time) -> TimeBucket:
    """Map a slot time to the waitlist preference bucket it falls into."""
    if time < _AFTERNOON_START:
        return TimeBucket.MORNING
    if time < _EVENING_START:
        return TimeBucket.AFTERNOON
    return TimeBucket.EVENING


def parse_clock(value: str) -> dt.time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a minute-precision time.

    Raises:
        ValueError: If ``value`` is not a valid clock time.
    """
    return dt.time.fromisoformat(value.strip()).replace(second=0, microsecond=0)


def format_clock(time: dt.time) -> str:
    """Format ``time(9, 30)`` → ``09:30``."""
    return time.strftime("%H:%M")


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc
