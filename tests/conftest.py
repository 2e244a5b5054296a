"""Shared test doubles for the scan pipeline."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from wa_monitor.core.models import RawMessage
from wa_monitor.watchers.base_watcher import ConversationAccessor

NOW = datetime(2025, 2, 4, 14, 30, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeAccessor(ConversationAccessor):
    """In-memory conversations keyed by name.

    ``missing`` names fail to open, ``broken`` names raise on extract.
    """

    def __init__(
        self,
        conversations: dict[str, list[str]] | None = None,
        missing: set[str] | None = None,
        broken: set[str] | None = None,
    ) -> None:
        super().__init__()
        self.conversations = conversations or {}
        self.missing = missing or set()
        self.broken = broken or set()
        self.opened: list[str] = []
        self.cleared = 0
        self.is_connected = True

    @property
    def connected(self) -> bool:
        return self.is_connected

    async def open(self, name: str) -> bool:
        self.opened.append(name)
        return name not in self.missing

    async def extract(self, name: str) -> list[RawMessage]:
        if name in self.broken:
            raise RuntimeError("panel vanished")
        return [
            RawMessage(
                sender="Ann",
                text=text,
                observed_at=NOW,
                conversation_name=name,
                time_label=f"10:{index:02d}",
            )
            for index, text in enumerate(self.conversations.get(name, []))
        ]

    async def clear_selection(self) -> None:
        self.cleared += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()
