from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a UTC-naive datetime.

    Naive input is taken as UTC already; "Z" and "+HH:MM" offsets are
    converted. Blank input gives None.
    """
    if value is None or not value.strip():
        return None
    raw = value.strip()
    if raw[-1] in "zZ":
        raw = raw[:-1] + "+00:00"

    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_iso_date(value) -> Optional[date]:
    """
    Parse a calendar date (quote validity, delivery date).

    Accepts date objects, "YYYY-MM-DD", or a full ISO-8601 datetime string,
    in which case the UTC date part is kept.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if len(raw) == 10:
        return date.fromisoformat(raw)
    parsed = parse_iso_datetime(raw)
    return parsed.date() if parsed else None


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing "Z"; naive values are UTC."""
    if moment is None:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.replace(microsecond=0).isoformat() + "Z"


def to_iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None
