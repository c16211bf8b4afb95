"""
Great Pearl Coffee Finance - Date/Time Helpers

All timestamps are stored and compared in UTC. Some drivers (SQLite) hand
back naive datetimes; those are treated as UTC.
"""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, normalise aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Return [start, end) UTC bounds for a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def range_bounds(
    date_from: Optional[date],
    date_to: Optional[date],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Convert an inclusive date range to [start, end) datetimes."""
    start = day_bounds(date_from)[0] if date_from else None
    end = day_bounds(date_to)[1] if date_to else None
    return start, end


def serialize_dates(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively convert a row dict into JSON-safe values.

    Dates become ISO strings, UUIDs strings and Decimals floats.
    """
    def convert_value(value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_aware(value).isoformat()
        elif isinstance(value, date):
            return value.isoformat()
        elif isinstance(value, uuid.UUID):
            return str(value)
        elif isinstance(value, Decimal):
            return float(value)
        elif isinstance(value, Enum):
            return value.value
        elif isinstance(value, dict):
            return serialize_dates(value)
        elif isinstance(value, list):
            return [convert_value(item) for item in value]
        return value

    return {key: convert_value(value) for key, value in data.items()}
