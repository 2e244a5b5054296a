"""Sequential processing of one batch of conversations."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence

from wa_monitor.core.matcher import KeywordMatcher
from wa_monitor.core.models import MatchRecord
from wa_monitor.watchers.base_watcher import ConversationAccessor

logger = logging.getLogger(__name__)


class BatchScanner:
    """Drives the accessor through a batch of conversations, one at a time.

    The chat UI shows a single conversation at a time, so items are never
    processed concurrently. Failures are recorded per conversation and the
    batch moves on.
    """

    def __init__(
        self,
        accessor: ConversationAccessor,
        matcher: KeywordMatcher,
        item_pacing: tuple[float, float] = (1.0, 2.0),
        batch_pacing: tuple[float, float] = (2.0, 4.0),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.accessor = accessor
        self.matcher = matcher
        self.item_pacing = item_pacing
        self.batch_pacing = batch_pacing
        self._sleep = sleep
        self._in_flight: set[str] = set()
        self.last_successful_conversation: str | None = None

    def is_in_flight(self, name: str) -> bool:
        return name in self._in_flight

    async def run_batch(self, names: Sequence[str], errors: list[str]) -> list[MatchRecord]:
        """Scan ``names`` in order and return their new matches.

        Args:
            names: Conversation names of this batch.
            errors: Per-cycle error list; one entry is appended per failed
                conversation.
        """
        batch_matches: list[MatchRecord] = []

        for position, name in enumerate(names, start=1):
            logger.info("Processing conversation %d/%d: %s", position, len(names), name)
            matches = await self.scan_conversation(name, errors)
            batch_matches.extend(matches)
            logger.info(
                "%s processed: %d matches (%d in batch so far)",
                name, len(matches), len(batch_matches),
            )
            await self._pause(self.item_pacing)

        logger.info("Batch completed: %d matches", len(batch_matches))
        await self._pause(self.batch_pacing)
        return batch_matches

    async def scan_conversation(self, name: str, errors: list[str]) -> list[MatchRecord]:
        """Open, extract and match a single conversation."""
        if name in self._in_flight:
            logger.info("Skipping %s - previous scan still running", name)
            return []

        self._in_flight.add(name)
        try:
            if not await self.accessor.open(name):
                errors.append(f"Conversation not found: {name}")
                return []

            self.last_successful_conversation = name
            try:
                messages = await self.accessor.extract(name)
            except Exception as exc:
                logger.exception("Failed to extract messages from %s", name)
                errors.append(f"Message extraction failed for {name}: {exc}")
                return []

            if not messages:
                logger.info("No messages in %s", name)
                return []
            return self.matcher.evaluate(messages)
        except Exception as exc:
            logger.exception("Error processing conversation %s", name)
            errors.append(f"Processing error for {name}: {exc}")
            return []
        finally:
            self._in_flight.discard(name)
            try:
                await self.accessor.clear_selection()
            except Exception:
                logger.warning("Failed to clear selection after %s", name, exc_info=True)

    async def _pause(self, bounds: tuple[float, float]) -> None:
        low, high = bounds
        if high <= 0:
            return
        await self._sleep(random.uniform(low, high))
