"""Match notifications - one notification per conversation per scan cycle.

This is an ACTION layer component. Delivery is fire-and-forget: a failed
notification is logged and never retried.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from wa_monitor.core.models import MatchRecord
from wa_monitor.utils.logging_utils import log_action
from wa_monitor.utils.timestamps import now_iso
from wa_monitor.utils.uuid_utils import correlation_id

logger = logging.getLogger(__name__)

# Matches shown in a notification body; the rest are summarised as a count
PREVIEW_LIMIT = 3

PREVIEW_TEXT_CHARS = 50


@dataclass(frozen=True)
class Notification:
    title: str
    body: str
    group_key: str
    preview_count: int
    match_count: int

    @property
    def subtitle(self) -> str:
        plural = "es" if self.match_count != 1 else ""
        return f"{self.match_count} keyword match{plural}"


def _preview(text: str) -> str:
    text = text.replace("\n", " ")
    if len(text) > PREVIEW_TEXT_CHARS:
        return text[:PREVIEW_TEXT_CHARS] + "..."
    return text


def build_notifications(
    matches: Iterable[MatchRecord], preview_limit: int = PREVIEW_LIMIT
) -> list[Notification]:
    """Group matches by conversation into one notification each.

    Conversations keep the order of their first match.
    """
    grouped: dict[str, list[MatchRecord]] = {}
    for match in matches:
        grouped.setdefault(match.conversation_name, []).append(match)

    notifications = []
    for conversation, group in grouped.items():
        shown = group[:preview_limit]
        lines = [f"{m.matched_keyword}: {_preview(m.text)}" for m in shown]
        overflow = len(group) - len(shown)
        if overflow > 0:
            lines.append(f"...and {overflow} more matches")
        notifications.append(
            Notification(
                title=f"WhatsApp Match - {conversation}",
                body="\n".join(lines),
                group_key=conversation,
                preview_count=len(shown),
                match_count=len(group),
            )
        )
    return notifications


class Notifier(ABC):
    """Delivery channel for match notifications."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Raise one notification. Must not raise on delivery failure."""

    async def dispatch(self, matches: Iterable[MatchRecord]) -> int:
        """Build and raise the notifications for a scan's matches.

        Returns:
            Number of notifications raised.
        """
        notifications = build_notifications(matches)
        for notification in notifications:
            try:
                await self.notify(notification)
            except Exception:
                logger.exception("Failed to raise notification for %s", notification.group_key)
        return len(notifications)


class LoggingNotifier(Notifier):
    """Surfaces notifications on the console log and in the audit log."""

    def __init__(self, log_dir: str | Path | None = None) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.logger = logging.getLogger(self.__class__.__name__)

    async def notify(self, notification: Notification) -> None:
        self.logger.warning(
            "%s (%s)\n%s", notification.title, notification.subtitle, notification.body
        )
        if self.log_dir is None:
            return
        try:
            log_action(
                self.log_dir / "actions",
                {
                    "timestamp": now_iso(),
                    "correlation_id": correlation_id(),
                    "actor": "notifier",
                    "action_type": "notification_raised",
                    "target": notification.group_key,
                    "result": "success",
                    "parameters": {
                        "title": notification.title,
                        "match_count": notification.match_count,
                        "preview_count": notification.preview_count,
                    },
                },
            )
        except Exception:
            self.logger.exception("Failed to write notification audit entry")
