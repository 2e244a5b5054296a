"""ISO 8601 timestamp utilities for the keyword monitor.

This module provides consistent timestamp formatting for the match log,
the audit logs, and the scan checkpoint. All helpers work in UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get the current time as a timezone-aware UTC datetime.

    This is the default clock injected into the matcher and the coordinator.
    """
    return datetime.now(UTC)


def now_iso(moment: datetime | None = None) -> str:
    """Format a moment (default: now) as an ISO 8601 string.

    Returns:
        Timestamp as ISO 8601 string (YYYY-MM-DDTHH:MM:SSZ).

    Examples:
        >>> now_iso(datetime(2025, 2, 4, 14, 30, 22, tzinfo=UTC))
        '2025-02-04T14:30:22Z'
    """
    moment = moment or utc_now()
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_iso(timestamp: str) -> datetime:
    """Parse an ISO 8601 timestamp string to a datetime object.

    Handles both 'Z' suffix and '+00:00' timezone formats.

    Args:
        timestamp: ISO 8601 formatted timestamp string.

    Returns:
        Timezone-aware datetime object in UTC.

    Raises:
        ValueError: If the timestamp format is invalid.

    Examples:
        >>> parse_iso("2025-02-04T14:30:22Z").year
        2025
    """
    normalized = timestamp.replace("Z", "+00:00")

    # Naive timestamps are treated as UTC
    if "+" not in normalized and "-" not in normalized[10:]:
        normalized = normalized + "+00:00"

    return datetime.fromisoformat(normalized).astimezone(UTC)


def format_log_timestamp(moment: datetime) -> str:
    """Format a moment for the human-readable match log.

    Examples:
        >>> format_log_timestamp(datetime(2025, 2, 4, 14, 30, 22, tzinfo=UTC))
        '2025-02-04 14:30:22'
    """
    return moment.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S")


def format_filename_timestamp(moment: datetime | None = None) -> str:
    """Get a timestamp formatted for filenames (YYYYMMDDTHHMMSS).

    Used to name rotated match log files.

    Examples:
        >>> format_filename_timestamp(datetime(2025, 2, 4, 14, 30, 22, tzinfo=UTC))
        '20250204T143022'
    """
    moment = moment or utc_now()
    return moment.astimezone(UTC).strftime("%Y%m%dT%H%M%S")


def date_key(moment: datetime | None = None) -> str:
    """Get the date (YYYY-MM-DD) of a moment, default today.

    Used as the daily aggregate key and for daily audit log file naming.

    Examples:
        >>> date_key(datetime(2025, 2, 4, 23, 59, tzinfo=UTC))
        '2025-02-04'
    """
    moment = moment or utc_now()
    return moment.astimezone(UTC).strftime("%Y-%m-%d")
