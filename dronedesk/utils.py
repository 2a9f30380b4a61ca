from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

import pytz

from .errors import ValidationError
from .logger_service import LoggerService

logger = LoggerService(__name__)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken to be UTC already."""
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Union[str, datetime], field_name: str = "datetime") -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    if not value or not isinstance(value, str):
        raise ValidationError(details=[{"path": field_name, "message": f"{field_name} is required"}])

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Rejected malformed {field_name}: {value!r}")
        raise ValidationError(details=[{"path": field_name, "message": f"{field_name} must be an ISO-8601 datetime"}])
    return to_utc(parsed)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_utc(value).isoformat().replace("+00:00", "Z")


def local_to_utc_iso(day: Union[str, date], clock: Union[str, time], tz_name: str) -> str:
    """Turn a form's local date + time in a named zone into the UTC string sent to the API.

    Ambiguous or non-existent wall times around DST switches resolve to the
    standard-time reading, matching what a browser date picker produces.
    """
    if isinstance(day, str):
        day = date.fromisoformat(day)
    if isinstance(clock, str):
        clock = time.fromisoformat(clock)
    try:
        zone = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(details=[{"path": "timezone", "message": f"Unknown timezone {tz_name}"}])

    local = zone.localize(datetime.combine(day, clock), is_dst=False)
    return to_iso(local)


def format_duration(delta: timedelta) -> str:
    total_minutes = max(int(delta.total_seconds() // 60), 0)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"
