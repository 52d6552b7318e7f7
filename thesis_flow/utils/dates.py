"""Phase calendar time helpers.

Phase ``start``/``end`` columns hold naive wall-clock values in the phase
timezone (Asia/Seoul unless ``PHASE_TIMEZONE`` says otherwise). These helpers
convert between that storage form and aware datetimes so the host timezone
never leaks into scheduling decisions.
"""

from __future__ import annotations

from datetime import datetime, time
from zoneinfo import ZoneInfo

DEFAULT_PHASE_TIMEZONE = "Asia/Seoul"


def phase_zone(name: str | None = None) -> ZoneInfo:
    """Return the phase timezone, from app config when inside an app context."""
    if name is None:
        from flask import current_app, has_app_context

        if has_app_context():
            name = current_app.config.get("PHASE_TIMEZONE", DEFAULT_PHASE_TIMEZONE)
        else:
            name = DEFAULT_PHASE_TIMEZONE
    return ZoneInfo(name)


def localize(value: datetime, zone: ZoneInfo) -> datetime:
    """Return ``value`` as an aware datetime in ``zone``.

    Naive values are read as wall-clock time in ``zone``.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def to_storage(value: datetime, zone: ZoneInfo) -> datetime:
    """Normalise ``value`` to the naive wall-clock form stored on Phase."""
    return localize(value, zone).replace(tzinfo=None)


def now_in(zone: ZoneInfo) -> datetime:
    return datetime.now(zone)


def end_of_day(value: datetime) -> datetime:
    """Snap ``value`` to 23:59:59 of the same calendar day."""
    return datetime.combine(value.date(), time(23, 59, 59), tzinfo=value.tzinfo)


def parse_datetime(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw)
