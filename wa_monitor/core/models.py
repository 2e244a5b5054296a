"""Domain models for the scan pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from wa_monitor.utils.timestamps import now_iso, parse_iso


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PAUSED = "paused"


@dataclass(frozen=True)
class RawMessage:
    """One message as read from the conversation panel.

    ``observed_at`` is the extraction wall-clock time, not the time shown in
    the UI. ``time_label`` keeps the UI's time string verbatim; it is never
    parsed.
    """

    sender: str
    text: str
    observed_at: datetime
    conversation_name: str
    time_label: str = ""


@dataclass(frozen=True)
class MatchRecord:
    conversation_name: str
    sender: str
    text: str
    matched_keyword: str
    message_id: str
    timestamp: datetime


@dataclass
class ScanCheckpoint:
    """Progress marker persisted at every batch boundary."""

    last_processed_batch_start_index: int = 0
    last_successful_conversation: str | None = None
    scan_started_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.last_processed_batch_start_index == 0
            and self.last_successful_conversation is None
            and self.scan_started_at is None
        )

    def reset(self) -> None:
        self.last_processed_batch_start_index = 0
        self.last_successful_conversation = None
        self.scan_started_at = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_processed_batch_start_index": self.last_processed_batch_start_index,
            "last_successful_conversation": self.last_successful_conversation,
            "scan_started_at": now_iso(self.scan_started_at) if self.scan_started_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanCheckpoint:
        started = data.get("scan_started_at")
        index = int(data.get("last_processed_batch_start_index") or 0)
        return cls(
            last_processed_batch_start_index=max(index, 0),
            last_successful_conversation=data.get("last_successful_conversation"),
            scan_started_at=parse_iso(started) if started else None,
        )


@dataclass
class DailyAggregate:
    """Per-day match counts keyed by (conversation, keyword)."""

    date_key: str
    counts: dict[tuple[str, str], int] = field(default_factory=dict)
    total_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0

    def record(self, match: MatchRecord) -> None:
        key = (match.conversation_name, match.matched_keyword)
        self.counts[key] = self.counts.get(key, 0) + 1
        self.total_count += 1


@dataclass(frozen=True)
class StatusSnapshot:
    last_scan_time: datetime | None
    total_matches_all_time: int
    today_match_count: int
    active_conversation_count: int
    scanning: bool
    paused: bool
    current_batch_progress: str | None


@dataclass
class ScanReport:
    """Outcome of a ``trigger_scan`` call.

    ``started`` is False when the call was a no-op; ``reason`` then says why.
    ``completed`` is False when the scan stopped early at a batch boundary
    (pause or shutdown); the checkpoint then points at the next batch.
    """

    started: bool
    reason: str | None = None
    completed: bool = False
    matches: list[MatchRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
