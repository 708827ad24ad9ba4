"""Calendar-day keys computed in the Jira user's timezone."""

import logging
import os
import re
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DATE_KEY_FORMAT = "%Y-%m-%d"
LOCALTIME_PATH = "/etc/localtime"

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# Jira sends offsets without a colon (+0000); normalize to +00:00
_BASIC_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


class InvalidDateKey(ValueError):
    """Raised when a string is not a real YYYY-MM-DD date."""

    pass


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA zone name, falling back to UTC if unknown."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return UTC


def _valid_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def local_timezone_name() -> str:
    """IANA name of the host timezone.

    Tries the TZ variable, then the zoneinfo path /etc/localtime links to,
    then gives up with "UTC".
    """
    name = os.environ.get("TZ", "").lstrip(":")
    if name and _valid_zone(name):
        return name

    if os.path.islink(LOCALTIME_PATH):
        target = os.path.realpath(LOCALTIME_PATH)
        _, marker, name = target.partition("zoneinfo/")
        if marker and _valid_zone(name):
            return name
    return "UTC"


def parse_instant(value: str) -> datetime:
    """Parse a Jira timestamp such as ``2024-01-02T09:30:00.000+0000``.

    Naive values are taken as UTC.
    """
    text = value.strip().replace("Z", "+00:00")
    text = _BASIC_OFFSET_RE.sub(r"\1:\2", text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def date_key(instant: datetime | str, tz: tzinfo) -> str:
    """Calendar day of ``instant`` in ``tz`` as YYYY-MM-DD."""
    if isinstance(instant, str):
        instant = parse_instant(instant)
    return instant.astimezone(tz).strftime(DATE_KEY_FORMAT)


def parse_date_key(key: str) -> date:
    """Parse a YYYY-MM-DD key into a plain date."""
    if not isinstance(key, str) or not _DATE_KEY_RE.match(key):
        raise InvalidDateKey(f"Invalid date key: {key!r} (expected YYYY-MM-DD)")
    try:
        return date.fromisoformat(key)
    except ValueError:
        raise InvalidDateKey(f"Invalid date key: {key!r} is not a real date") from None


def date_range(start_key: str, end_key: str) -> list[str]:
    """All date keys from start to end, inclusive, ascending.

    Keys are treated as plain calendar dates; the timezone has already
    been applied when they were computed. Empty when start > end.
    """
    current = parse_date_key(start_key)
    end = parse_date_key(end_key)
    keys = []
    while current <= end:
        keys.append(current.strftime(DATE_KEY_FORMAT))
        current += timedelta(days=1)
    return keys


def format_worklog_started(key: str, tz: tzinfo) -> str:
    """Noon of ``key`` in ``tz`` as ``YYYY-MM-DDTHH:MM:SS.mmm+HHMM``."""
    noon = datetime.combine(parse_date_key(key), time(12, 0), tzinfo=tz)
    millis = noon.microsecond // 1000
    return f"{noon.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}{noon.strftime('%z')}"
