"""
Time Utilities — one canonical time type (timezone-aware UTC datetime).

Values reach the core in several shapes: native datetimes (naive or aware),
``{"seconds": ...}`` / ``{"_seconds": ...}`` timestamp objects exported by the
document store, ISO-8601 strings from JSON clients, and epoch numbers from
browsers. ``to_utc`` is the only place these are reconciled.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: Any) -> Optional[datetime]:
    """Normalize a heterogeneous timestamp to an aware UTC datetime.

    Naive datetimes are taken to be UTC already. Epoch numbers are
    milliseconds, matching how web clients serialize dates.

    Raises:
        ValueError: if the value cannot be interpreted as a timestamp.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            raise ValueError(f"Unrecognized timestamp object: {value!r}")
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        return _from_epoch(seconds, nanos=nanos)
    if isinstance(value, bool):
        raise ValueError("Booleans are not timestamps")
    if isinstance(value, (int, float)):
        return _from_epoch(value, scale=1000)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp string: {value!r}") from exc
        return to_utc(parsed)
    raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")


def _from_epoch(value: Any, scale: int = 1, nanos: Any = 0) -> datetime:
    try:
        return datetime.fromtimestamp(value / scale + nanos / 1e9, tz=timezone.utc)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"Timestamp out of range: {value!r}") from exc
    except TypeError as exc:
        raise ValueError(f"Invalid epoch value: {value!r}") from exc


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO string for exports and audit metadata (``None`` stays ``None``)."""
    if value is None:
        return None
    return to_utc(value).isoformat()


def add_days(start: datetime, days: int) -> datetime:
    """Raises ValueError when the result falls outside the datetime range."""
    try:
        return start + timedelta(days=days)
    except OverflowError as exc:
        raise ValueError(f"Cannot add {days} day(s) to {start.isoformat()}") from exc
