"""Abstract base class for conversation accessors."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from wa_monitor.core.models import RawMessage


class ConversationAccessor(ABC):
    """Base class for accessors that read conversations from a chat UI.

    The UI is single-focus: one conversation is open at a time, so callers
    must use an accessor sequentially and call ``clear_selection()`` after
    every conversation, whatever the outcome.

    Subclasses must implement:
        - open(name) -> True if the conversation is open and ready
        - extract(name) -> recent messages of the open conversation
        - clear_selection() -> reset search/selection state
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def open(self, name: str) -> bool:
        """Locate and open the named conversation. False if not found."""

    @abstractmethod
    async def extract(self, name: str) -> list[RawMessage]:
        """Return the most recent messages of the currently open conversation."""

    @abstractmethod
    async def clear_selection(self) -> None:
        """Clear search and selection state before the next conversation."""

    @property
    def connected(self) -> bool:
        """Whether the underlying UI session is still usable."""
        return True

    async def start(self) -> None:
        """Acquire the UI session. Override for accessors with a lifecycle."""

    async def close(self) -> None:
        """Release the UI session. Override for accessors with a lifecycle."""
