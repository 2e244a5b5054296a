"""Tests for keyword matching and deduplication."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import NOW, FakeClock

from wa_monitor.core.matcher import (
    DedupCache,
    KeywordMatcher,
    compile_keyword,
    make_fingerprint,
)
from wa_monitor.core.models import RawMessage


def _msg(
    text: str,
    sender: str = "Ann",
    conversation: str = "Founders",
    time_label: str = "10:15, 04/02/2025",
) -> RawMessage:
    return RawMessage(
        sender=sender,
        text=text,
        observed_at=NOW,
        conversation_name=conversation,
        time_label=time_label,
    )


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def matcher(clock: FakeClock) -> KeywordMatcher:
    return KeywordMatcher(
        ["funding", "startup", "MVP"],
        bare_keywords=["MVP"],
        cache=DedupCache(retention_seconds=3600),
        clock=clock,
    )


# ── Unit Tests: compile_keyword ─────────────────────────────────────


class TestCompileKeyword:
    def test_case_insensitive(self) -> None:
        assert compile_keyword("funding").search("Looking for FUNDING now")

    def test_plural_matches(self) -> None:
        assert compile_keyword("startup").search("three startups raised")

    def test_longer_word_does_not_match(self) -> None:
        assert not compile_keyword("startup").search("startuptime is over")

    def test_prefix_does_not_match(self) -> None:
        assert not compile_keyword("startup").search("mystartup is live")

    def test_punctuation_is_a_boundary(self) -> None:
        assert compile_keyword("funding").search("need funding!")
        assert compile_keyword("funding").search("(funding)")

    def test_bare_matches_mid_word(self) -> None:
        assert compile_keyword("MVP", bare=True).search("our newMVPs are live")

    def test_keyword_is_literal(self) -> None:
        pattern = compile_keyword("c++")
        assert pattern.search("we need c++ devs")
        assert not pattern.search("we need cxx devs")


# ── Unit Tests: make_fingerprint ────────────────────────────────────


class TestMakeFingerprint:
    def test_uses_time_label(self) -> None:
        fp = make_fingerprint(_msg("hello", time_label="10:15"))
        assert fp == "Founders|Ann|10:15|hello"

    def test_falls_back_to_observed_time(self) -> None:
        fp = make_fingerprint(_msg("hello", time_label=""))
        assert fp == "Founders|Ann|2025-02-04T14:30:00Z|hello"

    def test_text_truncated_to_prefix(self) -> None:
        a = make_fingerprint(_msg("x" * 50 + " tail one"))
        b = make_fingerprint(_msg("x" * 50 + " tail two"))
        assert a == b

    def test_different_senders_differ(self) -> None:
        assert make_fingerprint(_msg("hi", sender="Ann")) != make_fingerprint(_msg("hi", sender="Bob"))


# ── Unit Tests: DedupCache ──────────────────────────────────────────


class TestDedupCache:
    def test_add_keeps_first_seen(self) -> None:
        cache = DedupCache()
        cache.add("fp", NOW)
        cache.add("fp", NOW + timedelta(minutes=5))
        assert cache.first_seen("fp") == NOW
        assert len(cache) == 1

    def test_purge_removes_expired_only(self) -> None:
        cache = DedupCache(retention_seconds=3600)
        cache.add("old", NOW - timedelta(hours=2))
        cache.add("new", NOW - timedelta(minutes=10))
        assert cache.purge(NOW) == 1
        assert "old" not in cache
        assert "new" in cache

    def test_stats_by_conversation(self) -> None:
        cache = DedupCache()
        cache.add("Founders|Ann|t|a", NOW)
        cache.add("Founders|Bob|t|b", NOW)
        cache.add("Angels|Cy|t|c", NOW)
        assert cache.stats_by_conversation() == {"Founders": 2, "Angels": 1}


# ── Unit Tests: KeywordMatcher ──────────────────────────────────────


class TestKeywordMatcher:
    def test_single_match(self, matcher: KeywordMatcher) -> None:
        matches = matcher.evaluate([_msg("We are raising funding")])
        assert len(matches) == 1
        match = matches[0]
        assert match.matched_keyword == "funding"
        assert match.conversation_name == "Founders"
        assert match.sender == "Ann"
        assert match.timestamp == NOW
        assert match.message_id == make_fingerprint(_msg("We are raising funding"))

    def test_no_match(self, matcher: KeywordMatcher) -> None:
        assert matcher.evaluate([_msg("Lunch at noon?")]) == []

    def test_empty_text_never_matches(self, matcher: KeywordMatcher) -> None:
        assert matcher.evaluate([_msg("")]) == []
        assert len(matcher.cache) == 0

    def test_empty_batch(self, matcher: KeywordMatcher) -> None:
        assert matcher.evaluate([]) == []

    def test_one_record_per_keyword(self, matcher: KeywordMatcher) -> None:
        matches = matcher.evaluate([_msg("Startup funding round")])
        assert [m.matched_keyword for m in matches] == ["funding", "startup"]
        assert matches[0].message_id == matches[1].message_id

    def test_word_boundary_cases(self, matcher: KeywordMatcher) -> None:
        matches = matcher.evaluate([
            _msg("startups everywhere", time_label="1"),
            _msg("startuptime again", time_label="2"),
            _msg("mystartup launched", time_label="3"),
        ])
        assert [m.text for m in matches] == ["startups everywhere"]

    def test_bare_keyword_matches_mid_word(self, matcher: KeywordMatcher) -> None:
        matches = matcher.evaluate([_msg("the newMVP build")])
        assert [m.matched_keyword for m in matches] == ["MVP"]

    def test_evaluate_is_idempotent(self, matcher: KeywordMatcher) -> None:
        messages = [_msg("need funding"), _msg("startup news", sender="Bob")]
        first = matcher.evaluate(messages)
        assert len(first) == 2
        assert matcher.evaluate(messages) == []

    def test_duplicate_suppressed_within_window(self, matcher: KeywordMatcher, clock: FakeClock) -> None:
        matcher.evaluate([_msg("need funding")])
        clock.advance(59 * 60)
        assert matcher.evaluate([_msg("need funding")]) == []

    def test_rematches_after_window(self, matcher: KeywordMatcher, clock: FakeClock) -> None:
        matcher.evaluate([_msg("need funding")])
        clock.advance(61 * 60)
        assert len(matcher.evaluate([_msg("need funding")])) == 1

    def test_same_text_different_time_label_is_new(self, matcher: KeywordMatcher) -> None:
        matcher.evaluate([_msg("need funding", time_label="10:15")])
        assert len(matcher.evaluate([_msg("need funding", time_label="10:16")])) == 1

    def test_blank_keywords_ignored(self, clock: FakeClock) -> None:
        matcher = KeywordMatcher(["", "  ", "funding"], clock=clock)
        assert matcher.keywords == ["funding"]

    def test_case_variants_collapse_to_one_keyword(self, clock: FakeClock) -> None:
        matcher = KeywordMatcher(["funding", "Startup", "Funding", "startup"], clock=clock)
        assert matcher.keywords == ["funding", "Startup"]

        records = matcher.evaluate([_msg("Funding for a startup")])
        assert [r.matched_keyword for r in records] == ["funding", "Startup"]

    def test_matched_keywords_in_config_order(self, matcher: KeywordMatcher) -> None:
        assert matcher.matched_keywords("MVP for our startup needs funding") == [
            "funding", "startup", "MVP",
        ]
