from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# Timestamps are stored UTC-naive; tz-aware values are converted on the way in
# and a trailing "Z" is added on the way out.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: datetime) -> datetime:
    """Aware -> converted to UTC, tzinfo dropped. Naive is assumed to be UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse due dates and list filters sent by clients.

    Accepts "2026-03-01", "2026-03-01T10:00", "...Z" and "...+02:00".
    Blank -> None. Raises ValueError on anything else.
    """
    if value is None:
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    return as_utc_naive(datetime.fromisoformat(raw))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a stored timestamp, second precision, e.g. 2026-03-01T10:00:00Z."""
    if dt is None:
        return None
    return as_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"
