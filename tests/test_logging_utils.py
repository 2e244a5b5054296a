"""Tests for the match log and the JSON audit log."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import NOW

from wa_monitor.core.models import DailyAggregate, MatchRecord
from wa_monitor.utils.logging_utils import (
    MatchLog,
    format_daily_summary,
    format_match_line,
    log_action,
)
from wa_monitor.utils.timestamps import date_key


def _match(text: str = "need funding", keyword: str = "funding", conversation: str = "Founders") -> MatchRecord:
    return MatchRecord(
        conversation_name=conversation,
        sender="Ann",
        text=text,
        matched_keyword=keyword,
        message_id=f"{conversation}|Ann|10:15|{text[:50]}",
        timestamp=NOW,
    )


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def match_log(tmp_path: Path) -> MatchLog:
    return MatchLog(tmp_path / "logs" / "whatsapp_matches.txt", rotation_bytes=200)


@pytest.fixture
def aggregate() -> DailyAggregate:
    aggregate = DailyAggregate(date_key="2025-02-04")
    aggregate.record(_match())
    aggregate.record(_match(text="funding again"))
    aggregate.record(_match(keyword="startup", conversation="Angels"))
    return aggregate


# ── Unit Tests: format_match_line ───────────────────────────────────


class TestFormatMatchLine:
    def test_format(self) -> None:
        assert format_match_line(_match()) == (
            "[2025-02-04 14:30:00] Group: Founders | Sender: Ann | "
            "Keyword: funding | Message: need funding"
        )

    def test_long_text_truncated(self) -> None:
        line = format_match_line(_match(text="x" * 250))
        assert line.endswith("x" * 200 + "...")

    def test_exact_limit_not_marked(self) -> None:
        line = format_match_line(_match(text="x" * 200))
        assert line.endswith("x" * 200)

    def test_newlines_flattened(self) -> None:
        line = format_match_line(_match(text="line one\nline two"))
        assert "\n" not in line
        assert line.endswith("Message: line one line two")


class TestFormatDailySummary:
    def test_summary_block(self, aggregate: DailyAggregate) -> None:
        assert format_daily_summary(aggregate).splitlines() == [
            "=== DAILY SUMMARY 2025-02-04 ===",
            "Total matches: 3",
            "- Angels / startup: 1 matches",
            "- Founders / funding: 2 matches",
            "=" * 40,
        ]


# ── Unit Tests: MatchLog ────────────────────────────────────────────


class TestMatchLog:
    def test_append_creates_file(self, match_log: MatchLog) -> None:
        assert match_log.append_record("first")
        assert match_log.path.read_text(encoding="utf-8") == "first\n"

    def test_append_matches(self, match_log: MatchLog) -> None:
        written = match_log.append_matches([_match(), _match(keyword="startup")])
        assert written == 2
        lines = match_log.path.read_text(encoding="utf-8").splitlines()
        assert "Keyword: startup" in lines[1]

    def test_rotates_oversized_log(self, match_log: MatchLog) -> None:
        match_log.path.parent.mkdir(parents=True)
        match_log.path.write_text("x" * 500, encoding="utf-8")

        match_log.append_record("fresh line")

        rotated = [p for p in match_log.path.parent.iterdir() if p != match_log.path]
        assert len(rotated) == 1
        assert rotated[0].name.startswith("whatsapp_matches-")
        assert rotated[0].suffix == ".txt"
        assert rotated[0].read_text(encoding="utf-8") == "x" * 500
        assert match_log.path.read_text(encoding="utf-8") == "fresh line\n"

    def test_no_rotation_under_threshold(self, match_log: MatchLog) -> None:
        match_log.append_record("short")
        assert match_log.rotate_if_oversized(200) is None
        assert list(match_log.path.parent.iterdir()) == [match_log.path]

    def test_rotate_missing_file(self, match_log: MatchLog) -> None:
        assert match_log.rotate_if_oversized(0) is None

    def test_write_failure_is_swallowed(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        log = MatchLog(blocker / "matches.txt")
        assert log.append_record("line") is False
        assert log.append_matches([_match()]) == 0

    def test_flush_daily_aggregate(self, match_log: MatchLog, aggregate: DailyAggregate) -> None:
        match_log.rotation_bytes = 10_000
        assert match_log.flush_daily_aggregate(aggregate)
        text = match_log.path.read_text(encoding="utf-8")
        assert "=== DAILY SUMMARY 2025-02-04 ===" in text
        assert "Total matches: 3" in text

    def test_flush_empty_aggregate_skipped(self, match_log: MatchLog) -> None:
        assert not match_log.flush_daily_aggregate(DailyAggregate(date_key="2025-02-04"))
        assert not match_log.path.exists()


# ── Unit Tests: log_action ──────────────────────────────────────────


class TestLogAction:
    def test_creates_daily_file(self, tmp_path: Path) -> None:
        log_dir = tmp_path / "actions"
        log_action(log_dir, {"action_type": "scan_cycle", "result": "success"})

        log_file = log_dir / f"{date_key()}.json"
        data = json.loads(log_file.read_text(encoding="utf-8"))
        assert data["date"] == date_key()
        assert data["entries"] == [{"action_type": "scan_cycle", "result": "success"}]

    def test_appends_entries(self, tmp_path: Path) -> None:
        log_dir = tmp_path / "actions"
        log_action(log_dir, {"n": 1})
        log_action(log_dir, {"n": 2})

        data = json.loads((log_dir / f"{date_key()}.json").read_text(encoding="utf-8"))
        assert [e["n"] for e in data["entries"]] == [1, 2]
        assert not list(log_dir.glob("*.tmp"))
