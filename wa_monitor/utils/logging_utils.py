"""Logging utilities for the keyword monitor.

Two logs are written next to the application log:

- the *match log*, an append-only text file with one line per keyword
  match plus daily summaries, rotated when it grows too large;
- the *audit log*, daily JSON files recording scan cycles, notifications
  and errors.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from wa_monitor.core.models import DailyAggregate, MatchRecord
from wa_monitor.utils.timestamps import date_key, format_filename_timestamp, format_log_timestamp

logger = logging.getLogger(__name__)

DEFAULT_ROTATION_BYTES = 10 * 1024 * 1024

MESSAGE_PREVIEW_CHARS = 200


def log_action(log_dir: str | Path, entry: dict[str, Any]) -> None:
    """Append an entry to today's audit log file.

    Creates the log file if it doesn't exist. Each log file contains
    a JSON object with a "date" field and an "entries" array.

    Args:
        log_dir: Path to the log directory (e.g., logs/actions).
        entry: Dictionary containing the log entry fields.
            Required: timestamp, correlation_id, actor, action_type, target, result
            Optional: parameters, error, details

    Examples:
        >>> log_action("logs/actions", {
        ...     "timestamp": "2025-02-04T14:30:22Z",
        ...     "correlation_id": "abc-123",
        ...     "actor": "scan_coordinator",
        ...     "action_type": "scan_completed",
        ...     "target": "all_conversations",
        ...     "result": "success"
        ... })
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    date = date_key()
    log_file = log_path / f"{date}.json"

    if log_file.exists():
        data = json.loads(log_file.read_text(encoding="utf-8"))
    else:
        data = {"date": date, "entries": []}

    data["entries"].append(entry)

    # Write to a temp file then rename so a crash never truncates the day's log
    tmp_file = log_file.with_suffix(".json.tmp")
    tmp_file.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp_file.replace(log_file)


def format_match_line(match: MatchRecord) -> str:
    """Format a match as one match log line (without trailing newline).

    Examples:
        >>> format_match_line(match)  # doctest: +SKIP
        '[2025-02-04 14:30:22] Group: Founders | Sender: Ann | Keyword: funding | Message: need funding'
    """
    text = match.text.replace("\n", " ")
    if len(text) > MESSAGE_PREVIEW_CHARS:
        text = text[:MESSAGE_PREVIEW_CHARS] + "..."
    return (
        f"[{format_log_timestamp(match.timestamp)}] Group: {match.conversation_name} | "
        f"Sender: {match.sender} | Keyword: {match.matched_keyword} | Message: {text}"
    )


def format_daily_summary(aggregate: DailyAggregate) -> str:
    lines = [f"=== DAILY SUMMARY {aggregate.date_key} ===", f"Total matches: {aggregate.total_count}"]
    for (conversation, keyword), count in sorted(aggregate.counts.items()):
        lines.append(f"- {conversation} / {keyword}: {count} matches")
    lines.append("=" * 40)
    return "\n".join(lines)


class MatchLog:
    """Append-only text log of keyword matches with size-based rotation.

    Write failures are logged and swallowed: losing a log line must never
    stop a scan.
    """

    def __init__(self, path: str | Path, rotation_bytes: int = DEFAULT_ROTATION_BYTES) -> None:
        self.path = Path(path)
        self.rotation_bytes = rotation_bytes

    def append_record(self, line: str) -> bool:
        """Append one line, rotating first if the file is oversized.

        Returns:
            True if the line was written.
        """
        self.rotate_if_oversized(self.rotation_bytes)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line.rstrip("\n") + "\n")
        except OSError:
            logger.exception("Failed to write to match log %s", self.path)
            return False
        return True

    def append_matches(self, matches: list[MatchRecord]) -> int:
        """Append one line per match. Returns the number of lines written."""
        written = sum(1 for match in matches if self.append_record(format_match_line(match)))
        if written:
            logger.info("Logged %d matches to %s", written, self.path)
        return written

    def rotate_if_oversized(self, threshold_bytes: int) -> Path | None:
        """Rename the log aside when it exceeds ``threshold_bytes``.

        Returns:
            The rotated file path, or None when no rotation happened.
        """
        try:
            size = self.path.stat().st_size
        except OSError:
            return None
        if size <= threshold_bytes:
            return None

        rotated = self.path.with_name(
            f"{self.path.stem}-{format_filename_timestamp()}{self.path.suffix}"
        )
        try:
            self.path.rename(rotated)
        except OSError:
            logger.exception("Failed to rotate match log %s", self.path)
            return None
        logger.info("Rotated match log to %s", rotated)
        return rotated

    def flush_daily_aggregate(self, aggregate: DailyAggregate) -> bool:
        """Write the daily summary block. Empty aggregates are skipped."""
        if aggregate.is_empty:
            return False
        written = self.append_record("\n" + format_daily_summary(aggregate) + "\n")
        if written:
            logger.info(
                "Daily summary written for %s: %d total matches",
                aggregate.date_key, aggregate.total_count,
            )
        return written
