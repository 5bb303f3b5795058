from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is interpreted as midnight UTC (QuickBooks TxnDate/DueDate)
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_qbo_date(value: Optional[str]) -> Optional[datetime]:
    """Lenient variant for upstream payloads: unparseable values map to None."""
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        return None


def expires_in(seconds: Optional[int], *, now: Optional[datetime] = None) -> Optional[datetime]:
    """Absolute expiry for an OAuth 'expires_in' style relative lifetime."""
    if seconds is None:
        return None
    return (now or utcnow()) + timedelta(seconds=int(seconds))


def floor_seconds(start: datetime, end: datetime) -> int:
    """Whole elapsed seconds between two instants (floor, may be <= 0)."""
    return (end - start) // timedelta(seconds=1)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if isinstance(dt, date) and not isinstance(dt, datetime):
        return dt.isoformat()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
