"""Timestamp helpers for iTop's local-time date strings.

iTop reports dates such as ``2025-11-05 22:40:21`` in the server's local
timezone, with no offset. They are parsed and formatted in the configured
deployment timezone.
"""

import logging
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

ITOP_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_timezone(name: str | None) -> tzinfo:
    """Return the named timezone, or UTC when the name is empty or unknown."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.info("Invalid timezone %r configured, falling back to UTC", name)
        return UTC


def parse_itop_datetime(value: str | None, tz: tzinfo) -> datetime | None:
    """Parse an iTop date string as an aware datetime in ``tz``.

    The exact iTop format is tried first, then a looser ISO-8601 parse.
    Returns None when neither succeeds.
    """
    if not value:
        return None
    text = str(value).strip()
    try:
        return datetime.strptime(text, ITOP_DATETIME_FORMAT).replace(tzinfo=tz)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def to_epoch(value: str | None, tz: tzinfo) -> int | None:
    parsed = parse_itop_datetime(value, tz)
    return int(parsed.timestamp()) if parsed is not None else None


def format_itop_datetime(timestamp: float, tz: tzinfo) -> str:
    """Format a Unix timestamp as an iTop local date string."""
    return datetime.fromtimestamp(timestamp, tz).strftime(ITOP_DATETIME_FORMAT)
