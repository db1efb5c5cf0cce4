"""
Datetime utility functions for handling API timestamps
"""
from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def parse_api_datetime(value) -> Optional[datetime]:
    """
    Convert an API timestamp to a timezone-aware Python datetime

    Handles multiple cases:
    - None / empty string -> None
    - Already Python datetime -> return as-is (naive values are taken as UTC)
    - ISO string, including the trailing 'Z' Mongo/Express emits -> datetime
    - Epoch milliseconds (JavaScript Date.now()) -> datetime
    - Other -> None with warning

    Args:
        value: datetime, ISO string, epoch millis, or None

    Returns:
        Python datetime or None
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)

    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError as e:
            logger.warning(f"Failed to parse datetime string '{value}': {e}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    logger.warning(f"Cannot convert {type(value)} to Python datetime: {value}")
    return None


def to_api_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime the way the API sends it (ISO 8601, 'Z' suffix)"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
