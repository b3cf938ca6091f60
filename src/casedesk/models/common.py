"""Common helpers shared by the casedesk models.

- utc_now(): timezone-aware current time
- parse_utc_timestamp(): tolerant ISO 8601 parsing used for search results
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def parse_utc_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse UTC timestamp string into timezone-aware datetime object.

    Handles multiple ISO 8601 formats:
    - '2025-10-17T04:02:59+00:00' (timezone-aware with +00:00)
    - '2025-10-17T04:02:59Z' (Zulu time suffix)
    - '2025-10-17T04:02:59' (naive, assumed UTC)

    Args:
        timestamp_str: UTC timestamp string, or None/empty

    Returns:
        Timezone-aware datetime in UTC, or None when the value is empty or
        cannot be parsed (search results occasionally carry junk dates)
    """
    if not timestamp_str:
        return None

    value = timestamp_str[:-1] if timestamp_str.endswith("Z") else timestamp_str
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None

    # If naive, assume UTC
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt
