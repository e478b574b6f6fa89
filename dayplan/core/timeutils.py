"""
Time and timezone normalization for plan events.

Human time tokens ("11am", "14:00", "sunset") and the ISO strings returned by
the plan parser are anchored to a calendar day and a location's timezone.
Events are persisted as UTC instants and shown in the local time of the
place they happen at.
"""

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DURATION = timedelta(minutes=60)

NAMED_TIMES = {
    "sunrise": (6, 0),
    "noon": (12, 0),
    "sunset": (19, 0),
    "midnight": (0, 0),
}

_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$", re.IGNORECASE)
_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

TzLike = Union[str, ZoneInfo, None]


class TimeParseError(ValueError):
    """Raised when a time token cannot be understood"""


def resolve_timezone(tz: TzLike) -> Optional[ZoneInfo]:
    """Return a ZoneInfo for an IANA name, or None if it is empty or unknown"""
    if tz is None or isinstance(tz, ZoneInfo):
        return tz
    name = tz.strip()
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError covers zone-group directories such as "America"
        logger.warning(f"Unknown timezone: {name}")
        return None


def add_duration(dt: datetime, duration: timedelta) -> datetime:
    """Elapsed-time addition; aware values keep their zone across offset changes"""
    if dt.tzinfo is None:
        return dt + duration
    return (dt.astimezone(timezone.utc) + duration).astimezone(dt.tzinfo)


def is_valid_timezone(name: Optional[str]) -> bool:
    return bool(name) and resolve_timezone(name) is not None


def ensure_utc(dt: datetime) -> datetime:
    """Naive values are taken to already be UTC (SQLite drops tzinfo on read)"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_iso(value: str) -> Optional[datetime]:
    if not _ISO_PREFIX.match(value):
        return None
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _anchor(hour: int, minute: int, zone: Optional[ZoneInfo], today: Optional[date]) -> datetime:
    if today is None:
        today = datetime.now(zone).date() if zone else date.today()
    return datetime(today.year, today.month, today.day, hour, minute, tzinfo=zone)


def parse_time_string(value: str, tz: TzLike = None, today: Optional[date] = None) -> datetime:
    """
    Turn a time token into a date-time on ``today``.

    ISO date-times keep only their hour and minute (after conversion into
    ``tz`` when they carry an offset). Named times and 12/24-hour clock
    tokens are matched next. The result is aware in ``tz`` when one is
    given and naive otherwise.
    """
    if not isinstance(value, str) or not value.strip():
        raise TimeParseError(f"Invalid time format: {value!r}")

    zone = resolve_timezone(tz)
    raw = value.strip()

    iso = _parse_iso(raw)
    if iso is not None:
        if iso.tzinfo is not None and zone is not None:
            iso = iso.astimezone(zone)
        return _anchor(iso.hour, iso.minute, zone, today)

    token = raw.lower()
    if token in NAMED_TIMES:
        hour, minute = NAMED_TIMES[token]
        return _anchor(hour, minute, zone, today)

    match = _TIME_PATTERN.match(token)
    if not match:
        raise TimeParseError(f"Invalid time format: {value}")

    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    period = match.group(3)

    if period == "pm" and hours < 12:
        hours += 12
    elif period == "am" and hours == 12:
        hours = 0

    if hours > 23 or minutes > 59:
        raise TimeParseError(f"Invalid time values: hours={hours}, minutes={minutes}")

    return _anchor(hours, minutes, zone, today)


def calculate_end_time(
    start: datetime,
    end_value: Optional[str] = None,
    tz: TzLike = None,
    default_duration: timedelta = DEFAULT_DURATION,
) -> datetime:
    """End of an event; never raises, falls back to ``start + default_duration``"""
    if not end_value:
        return add_duration(start, default_duration)

    zone = resolve_timezone(tz)
    if zone is None and start.tzinfo is not None and isinstance(start.tzinfo, ZoneInfo):
        zone = start.tzinfo

    try:
        end = parse_time_string(end_value, zone, today=start.date())
    except TimeParseError as e:
        logger.warning(f"Error parsing end time {end_value!r}, using default duration: {e}")
        return add_duration(start, default_duration)

    if end.tzinfo is None and start.tzinfo is not None:
        end = end.replace(tzinfo=start.tzinfo)
    elif end.tzinfo is not None and start.tzinfo is None:
        end = end.replace(tzinfo=None)

    # End before start means the event runs past midnight
    if end < start:
        end += timedelta(days=1)
    return end


def local_to_utc(dt: datetime, tz: TzLike) -> datetime:
    """Wall-clock time at a place -> UTC instant. Naive values are read in ``tz``."""
    zone = resolve_timezone(tz)
    if zone is None:
        raise TimeParseError(f"Unknown timezone: {tz}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone)
    return dt.astimezone(timezone.utc)


def utc_to_local(dt: datetime, tz: TzLike) -> datetime:
    """UTC instant -> wall-clock time at a place. Naive values are read as UTC."""
    zone = resolve_timezone(tz)
    if zone is None:
        raise TimeParseError(f"Unknown timezone: {tz}")
    return ensure_utc(dt).astimezone(zone)


def convert_to_timezone(dt: Optional[datetime], tz: TzLike, to_utc: bool = False) -> Optional[datetime]:
    """
    Convert between a location's local time and UTC.

    ``to_utc=True`` is used for persistence, the default for display. Missing
    arguments or an unknown timezone leave ``dt`` untouched.
    """
    if dt is None or not tz:
        logger.error(f"Missing required parameters: date={dt}, timezone={tz}")
        return dt

    try:
        return local_to_utc(dt, tz) if to_utc else utc_to_local(dt, tz)
    except TimeParseError as e:
        logger.error(f"Error converting timezone: {e}")
        return dt


def format_event_time(dt: datetime, tz: TzLike = None) -> str:
    """Render as ``h:mm AM``; aware values are shown in ``tz`` when it is known"""
    shown = dt
    if tz:
        zone = resolve_timezone(tz)
        if zone is None:
            logger.error(f"Error formatting time: unknown timezone {tz}")
        elif dt.tzinfo is not None:
            shown = dt.astimezone(zone)
    hour = shown.hour % 12 or 12
    suffix = "AM" if shown.hour < 12 else "PM"
    return f"{hour}:{shown.minute:02d} {suffix}"


def build_event_window(
    start_value: str,
    end_value: Optional[str],
    tz: TzLike,
    today: Optional[date] = None,
    default_duration: timedelta = DEFAULT_DURATION,
) -> Tuple[datetime, datetime]:
    """Local start and end of an event. Raises TimeParseError only for the start."""
    start = parse_time_string(start_value, tz, today=today)
    end = calculate_end_time(start, end_value, tz, default_duration=default_duration)
    return start, end
