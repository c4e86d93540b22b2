from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Client-side 'now' in UTC (aware)."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """ISO-8601 timestamp with milliseconds and trailing 'Z', as the backend stores them."""
    return utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


_id_lock = threading.Lock()
_last_ns = 0


def monotonic_id(prefix: str) -> str:
    """High-resolution timestamp id, e.g. AUDIT1718000000123456789. Strictly increasing."""
    global _last_ns
    with _id_lock:
        _last_ns = max(time.time_ns(), _last_ns + 1)
        return f"{prefix}{_last_ns}"


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to an aware UTC datetime.

    - None / "" -> None
    - naive values are interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def from_epoch(seconds: Optional[float]) -> Optional[datetime]:
    if seconds is None:
        return None
    return datetime.fromtimestamp(float(seconds), tz=timezone.utc)
