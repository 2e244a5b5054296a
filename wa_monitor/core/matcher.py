"""Keyword matching with a time-windowed deduplication cache.

Keywords match case-insensitively as whole words. A trailing plural
suffix is tolerated, so ``startup`` matches ``startups`` but neither
``mystartup`` nor ``startuptime``. Keywords listed as *bare* match as plain
substrings instead; that list is configuration for short tokens and
abbreviations that never sit on a word boundary in practice.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from wa_monitor.core.models import MatchRecord, RawMessage
from wa_monitor.utils.timestamps import now_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600

# Characters of message text that participate in the fingerprint
FINGERPRINT_TEXT_PREFIX = 50


def make_fingerprint(message: RawMessage) -> str:
    """Create the deduplication key for a message.

    The UI exposes no stable message id, so identity is heuristic: two
    messages with the same conversation, sender, text prefix and time
    component are the same event. The UI time label is used as the time
    component when present, otherwise the extraction time.
    """
    stamp = message.time_label or now_iso(message.observed_at)
    return "|".join(
        [
            message.conversation_name,
            message.sender,
            stamp,
            message.text[:FINGERPRINT_TEXT_PREFIX],
        ]
    )


def compile_keyword(keyword: str, bare: bool = False) -> re.Pattern[str]:
    """Compile a keyword into its case-insensitive search pattern."""
    escaped = re.escape(keyword)
    if bare:
        return re.compile(escaped, re.IGNORECASE)
    return re.compile(rf"(?<!\w){escaped}(?:e?s)?(?!\w)", re.IGNORECASE)


class DedupCache:
    """Maps message fingerprints to the time they were first seen.

    Entries older than the retention window are purged on demand. This
    bounds memory, not exactness: a message that resurfaces after the
    window is treated as new.
    """

    def __init__(self, retention_seconds: float = DEFAULT_RETENTION_SECONDS) -> None:
        self.retention = timedelta(seconds=retention_seconds)
        self._entries: dict[str, datetime] = {}

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, fingerprint: str, seen_at: datetime) -> None:
        self._entries.setdefault(fingerprint, seen_at)

    def first_seen(self, fingerprint: str) -> datetime | None:
        return self._entries.get(fingerprint)

    def purge(self, now: datetime) -> int:
        """Remove entries older than the retention window.

        Returns:
            Number of entries removed.
        """
        cutoff = now - self.retention
        expired = [fp for fp, seen_at in self._entries.items() if seen_at < cutoff]
        for fp in expired:
            del self._entries[fp]
        return len(expired)

    def stats_by_conversation(self) -> dict[str, int]:
        """Count cached fingerprints per conversation, for diagnostics."""
        return dict(Counter(fp.split("|", 1)[0] for fp in self._entries))


class KeywordMatcher:
    """Turns raw messages into deduplicated keyword matches."""

    def __init__(
        self,
        keywords: Iterable[str],
        bare_keywords: Iterable[str] = (),
        cache: DedupCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        bare = {kw.lower() for kw in bare_keywords}
        # First spelling wins; matching is case-insensitive
        seen: set[str] = set()
        self.keywords = []
        for kw in keywords:
            if kw.strip() and kw.lower() not in seen:
                seen.add(kw.lower())
                self.keywords.append(kw)
        self.cache = cache if cache is not None else DedupCache()
        self._clock = clock
        self._patterns = [
            (kw, compile_keyword(kw, bare=kw.lower() in bare)) for kw in self.keywords
        ]

    def matched_keywords(self, text: str) -> list[str]:
        """Return every configured keyword found in ``text``, in config order."""
        if not text:
            return []
        return [kw for kw, pattern in self._patterns if pattern.search(text)]

    def evaluate(self, messages: Iterable[RawMessage]) -> list[MatchRecord]:
        """Match messages against the keywords, suppressing already-seen ones.

        A message yields one record per matching keyword. Its fingerprint is
        checked once: if cached, all of its records are suppressed. Expired
        cache entries are purged before checking.
        """
        now = self._clock()
        purged = self.cache.purge(now)
        matches: list[MatchRecord] = []
        evaluated = 0

        for message in messages:
            evaluated += 1
            hits = self.matched_keywords(message.text)
            if not hits:
                continue

            fingerprint = make_fingerprint(message)
            if fingerprint in self.cache:
                logger.debug(
                    "Skip duplicate: %s in '%s' from %s",
                    ", ".join(hits), message.text[:50], message.conversation_name,
                )
                continue

            self.cache.add(fingerprint, now)
            for keyword in hits:
                matches.append(
                    MatchRecord(
                        conversation_name=message.conversation_name,
                        sender=message.sender,
                        text=message.text,
                        matched_keyword=keyword,
                        message_id=fingerprint,
                        timestamp=message.observed_at,
                    )
                )
                logger.debug(
                    "Match found: '%s' in '%s' from %s",
                    keyword, message.text[:50], message.conversation_name,
                )

        logger.debug(
            "Evaluated %d messages: %d matches, %d cache entries (%d purged)",
            evaluated, len(matches), len(self.cache), purged,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Dedup cache by conversation: %s", self.cache.stats_by_conversation())
        return matches
