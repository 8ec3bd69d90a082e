"""
Field helpers shared by the provider mappers.

Payloads arrive as enqueue-time JSON snapshots, so datetimes are ISO strings
by the time a mapper sees them. Everything here is pure.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_CALL_DESCRIPTION = "Cold call activity"


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings (with or without 'Z'), epoch millis, or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s)


def iso_date(value: Any) -> Optional[str]:
    """'2025-01-15T09:30:00Z' → '2025-01-15'."""
    dt = parse_datetime(value)
    return dt.date().isoformat() if dt else None


def iso_datetime(value: Any) -> Optional[str]:
    dt = parse_datetime(value)
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def epoch_millis(value: Any) -> Optional[int]:
    dt = parse_datetime(value)
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def minutes_seconds(duration_seconds: Any) -> str:
    """305 → '5:05'."""
    total = int(duration_seconds or 0)
    return f"{total // 60}:{total % 60:02d}"


def call_subject(payload: Dict[str, Any]) -> str:
    return f"Call: {payload.get('leadName') or 'Unknown'}"


def call_description(payload: Dict[str, Any]) -> str:
    notes = payload.get("callNotes") or {}
    return notes.get("summary") or DEFAULT_CALL_DESCRIPTION


def full_name(payload: Dict[str, Any]) -> str:
    parts = [payload.get("firstName"), payload.get("lastName")]
    return " ".join(p for p in parts if p)


def drop_none(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Remove unset fields so providers keep their own defaults."""
    return {k: v for k, v in fields.items() if v is not None}
