"""Tests for match notifications."""

from __future__ import annotations

import json
from pathlib import Path

from conftest import NOW

from wa_monitor.actions.notifier import (
    LoggingNotifier,
    Notification,
    Notifier,
    build_notifications,
)
from wa_monitor.core.models import MatchRecord


def _match(conversation: str, text: str, keyword: str = "funding") -> MatchRecord:
    return MatchRecord(
        conversation_name=conversation,
        sender="Ann",
        text=text,
        matched_keyword=keyword,
        message_id=f"{conversation}|{text}",
        timestamp=NOW,
    )


class FailingNotifier(Notifier):
    def __init__(self) -> None:
        self.attempts: list[str] = []

    async def notify(self, notification: Notification) -> None:
        self.attempts.append(notification.group_key)
        if notification.group_key == "Founders":
            raise RuntimeError("no display")


class TestBuildNotifications:
    def test_groups_by_conversation(self) -> None:
        notifications = build_notifications([
            _match("Founders", "funding one"),
            _match("Angels", "funding two"),
            _match("Founders", "startup three", keyword="startup"),
        ])
        assert [n.group_key for n in notifications] == ["Founders", "Angels"]
        founders = notifications[0]
        assert founders.title == "WhatsApp Match - Founders"
        assert founders.body.splitlines() == ["funding: funding one", "startup: startup three"]
        assert founders.match_count == 2
        assert founders.subtitle == "2 keyword matches"

    def test_preview_limited_with_overflow_line(self) -> None:
        matches = [_match("Founders", f"funding {i}") for i in range(5)]
        [notification] = build_notifications(matches)
        lines = notification.body.splitlines()
        assert lines == [
            "funding: funding 0",
            "funding: funding 1",
            "funding: funding 2",
            "...and 2 more matches",
        ]
        assert notification.preview_count == 3
        assert notification.match_count == 5

    def test_long_text_previewed(self) -> None:
        [notification] = build_notifications([_match("Founders", "funding " + "y" * 80)])
        assert notification.body == "funding: " + ("funding " + "y" * 80)[:50] + "..."

    def test_single_match_subtitle(self) -> None:
        [notification] = build_notifications([_match("Founders", "funding")])
        assert notification.subtitle == "1 keyword match"

    def test_no_matches(self) -> None:
        assert build_notifications([]) == []


class TestDispatch:
    async def test_failure_does_not_stop_other_notifications(self) -> None:
        notifier = FailingNotifier()
        count = await notifier.dispatch([_match("Founders", "funding"), _match("Angels", "funding")])
        assert count == 2
        assert notifier.attempts == ["Founders", "Angels"]

    async def test_logging_notifier_writes_audit_entry(self, tmp_path: Path) -> None:
        notifier = LoggingNotifier(log_dir=tmp_path)
        await notifier.dispatch([_match("Founders", "funding")])

        [log_file] = list((tmp_path / "actions").glob("*.json"))
        [entry] = json.loads(log_file.read_text(encoding="utf-8"))["entries"]
        assert entry["action_type"] == "notification_raised"
        assert entry["target"] == "Founders"
        assert entry["parameters"]["match_count"] == 1

    async def test_logging_notifier_without_log_dir(self, tmp_path: Path) -> None:
        notifier = LoggingNotifier()
        assert await notifier.dispatch([_match("Founders", "funding")]) == 1
