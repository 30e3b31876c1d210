"""
Send-time eligibility for the agenda digest.

A user is due when the current wall-clock time in their timezone falls in
[preferred, preferred + window) minutes after local midnight. The window
wraps past midnight: a 23:30 preference with a 60 minute window also matches
00:00-00:29 local.
"""

from __future__ import annotations

import re
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from docketq.agenda.models import NotificationSettings, Profile
from docketq.observability.logging import get_logger

logger = get_logger(__name__)

MINUTES_PER_DAY = 24 * 60

# Postgres `time` columns serialize as HH:MM:SS; accept both.
_SEND_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2}(?:\.\d+)?)?\s*$")


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def resolve_timezone(
    profile: Profile | None,
    settings: NotificationSettings | None,
    default: str,
) -> str:
    """
    Effective zone: profile timezone, then settings timezone, then default.

    Unknown zone names are skipped with a warning rather than failing the run.
    """
    candidates = (
        ("profile", profile.timezone if profile else None),
        ("settings", settings.agenda_timezone if settings else None),
    )
    for origin, name in candidates:
        if not name:
            continue
        if is_valid_timezone(name):
            return name
        logger.warning("Ignoring invalid %s timezone %r", origin, name)
    return default


def parse_send_time(value: str | None) -> int | None:
    """
    Parse "HH:MM" (or "HH:MM:SS") into minutes since midnight.

    Returns None when the value is missing or out of range.
    """
    if not value:
        return None
    match = _SEND_TIME_RE.match(value)
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def format_send_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def local_minutes(now_utc: datetime, timezone: str) -> int:
    """Minutes since local midnight for an aware UTC instant."""
    local = now_utc.astimezone(ZoneInfo(timezone))
    return local.hour * 60 + local.minute


def is_within_send_window(current_minutes: int, preferred_minutes: int, window_minutes: int) -> bool:
    """
    True iff current is in [preferred, preferred + window), wrapping at midnight.
    """
    end = preferred_minutes + window_minutes
    if preferred_minutes <= current_minutes < end:
        return True
    if end > MINUTES_PER_DAY:
        return current_minutes < end - MINUTES_PER_DAY
    return False


def effective_send_time(settings: NotificationSettings | None, default: str) -> str:
    """The user's preferred "HH:MM", or the default when absent/invalid."""
    raw = settings.agenda_email_time if settings else None
    minutes = parse_send_time(raw)
    if minutes is None:
        if raw:
            logger.warning("Invalid agenda_email_time %r, using default %s", raw, default)
        return default
    return format_send_time(minutes)


def is_due(
    now_utc: datetime,
    timezone: str,
    send_time: str,
    window_minutes: int,
) -> bool:
    """Whether a user with this zone and send time is due at now_utc."""
    preferred = parse_send_time(send_time)
    if preferred is None:
        return False
    return is_within_send_window(local_minutes(now_utc, timezone), preferred, window_minutes)
