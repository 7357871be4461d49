"""Shared type aliases."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TypeAlias

# JSON-like dict
JsonDict: TypeAlias = dict[str, object]

# Close time for markets whose source gives none; sorts after every real date
FAR_FUTURE = datetime(9999, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_iso(s: object) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed); None if unparseable."""
    if not s or not isinstance(s, str):
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_float(value: object) -> float | None:
    """Coerce numbers and numeric strings to float; None otherwise."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
