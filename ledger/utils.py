from __future__ import annotations

import math
import time
import uuid
from datetime import datetime, date, timezone
from typing import Any, Optional

_last_id = 0


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # UTC, millisecond precision, "Z" suffix: sorts lexicographically.
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.astimezone()
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime; None when unparsable."""
    s = str(value or "").strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_newer(a: Any, b: Any) -> bool:
    """
    True when timestamp `a` is strictly newer than `b`.
    Two missing/unparsable values are never newer; a present value beats a missing one.
    """
    da = parse_iso(a)
    db = parse_iso(b)
    if da is None and db is None:
        return False
    if da is not None and db is None:
        return True
    if da is None:
        return False
    return da > db


def parse_money(value: Any) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    return n if math.isfinite(n) else 0.0


def clamp_int(value: Any, lo: int, hi: int) -> int:
    try:
        n = math.floor(float(value))
    except (TypeError, ValueError, OverflowError):
        return lo
    return min(hi, max(lo, int(n)))


def money(value: float) -> float:
    return round(float(value), 2)


def new_id() -> int:
    """Millisecond clock id, bumped when two ids are requested in the same millisecond."""
    global _last_id
    candidate = int(time.time() * 1000)
    if candidate <= _last_id:
        candidate = _last_id + 1
    _last_id = candidate
    return candidate


def random_device_id() -> str:
    return str(uuid.uuid4())
