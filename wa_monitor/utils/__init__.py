"""Shared utilities for the keyword monitor."""

from wa_monitor.utils.timestamps import (
    date_key,
    format_filename_timestamp,
    format_log_timestamp,
    now_iso,
    parse_iso,
    utc_now,
)
from wa_monitor.utils.uuid_utils import correlation_id

__all__ = [
    "utc_now",
    "now_iso",
    "parse_iso",
    "format_log_timestamp",
    "format_filename_timestamp",
    "date_key",
    "correlation_id",
]
