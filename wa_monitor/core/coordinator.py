"""Scan coordinator - owns the scan cycle state machine.

States are IDLE -> SCANNING -> IDLE. Pausing is an orthogonal flag that is
honoured at batch boundaries: a running batch always finishes. At most one
scan runs at a time; the state machine enforces that, not a lock, since
everything runs on one event loop.

Progress is checkpointed at every batch boundary. After a crash the next
scan restarts from the start of the batch that was in flight; conversations
scanned twice are harmless because the matcher's dedup cache absorbs the
repeated matches.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from wa_monitor.actions.notifier import Notifier
from wa_monitor.core.batch_scanner import BatchScanner
from wa_monitor.core.checkpoint import CheckpointStore
from wa_monitor.core.errors import SessionLostError
from wa_monitor.core.models import (
    DailyAggregate,
    MatchRecord,
    ScanCheckpoint,
    ScanReport,
    ScanState,
    StatusSnapshot,
)
from wa_monitor.utils.logging_utils import MatchLog, log_action
from wa_monitor.utils.timestamps import date_key, format_log_timestamp, now_iso, utc_now
from wa_monitor.utils.uuid_utils import correlation_id

DEFAULT_BATCH_SIZE = 3

DEFAULT_SCAN_INTERVAL_SECONDS = 30 * 60

SKIP_IN_PROGRESS = "already in progress"
SKIP_PAUSED = "paused"
SKIP_SHUTTING_DOWN = "shutting down"

# Errors listed in the session summary
SUMMARY_ERROR_COUNT = 5


class ScanCoordinator:
    """Runs scan cycles over the configured conversations."""

    def __init__(
        self,
        conversations: Sequence[str],
        scanner: BatchScanner,
        checkpoints: CheckpointStore,
        match_log: MatchLog,
        notifier: Notifier,
        batch_size: int = DEFAULT_BATCH_SIZE,
        scan_interval_seconds: float = DEFAULT_SCAN_INTERVAL_SECONDS,
        log_dir: str | Path | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.conversations = list(conversations)
        self.scanner = scanner
        self.checkpoints = checkpoints
        self.match_log = match_log
        self.notifier = notifier
        self.batch_size = batch_size
        self.scan_interval_seconds = scan_interval_seconds
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        self.checkpoint = ScanCheckpoint()
        self.daily = DailyAggregate(date_key=date_key(clock()))
        self.total_matches_all_time = 0
        self.last_scan_time: datetime | None = None
        self.scan_errors: list[str] = []
        self.current_progress: str | None = None
        self.session_started_at = clock()

        self._scanning = False
        self._paused = False
        self._closed = False
        self._shutdown = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    # ── State ───────────────────────────────────────────────────────

    @property
    def state(self) -> ScanState:
        if self._scanning:
            return ScanState.SCANNING
        if self._paused:
            return ScanState.PAUSED
        return ScanState.IDLE

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def pause(self) -> None:
        """Stop scanning at the next batch boundary; no new scans start."""
        self._paused = True
        if self._scanning:
            self.logger.info("Pause requested - stopping after the current batch")
        else:
            self.logger.info("Scanning paused")

    def resume(self) -> None:
        self._paused = False
        self.logger.info("Scanning resumed")

    def status(self) -> StatusSnapshot:
        """Snapshot of the monitor state. Never mutates it."""
        today = date_key(self._clock())
        return StatusSnapshot(
            last_scan_time=self.last_scan_time,
            total_matches_all_time=self.total_matches_all_time,
            today_match_count=self.daily.total_count if self.daily.date_key == today else 0,
            active_conversation_count=len(self.conversations),
            scanning=self._scanning,
            paused=self._paused,
            current_batch_progress=self.current_progress,
        )

    # ── Checkpoint ──────────────────────────────────────────────────

    def load_checkpoint(self) -> ScanCheckpoint:
        """Load the persisted checkpoint so the next scan can resume from it."""
        self.checkpoint = self.checkpoints.load()
        if self.checkpoint.last_processed_batch_start_index > 0:
            self.logger.info(
                "Next scan resumes from conversation index %d",
                self.checkpoint.last_processed_batch_start_index,
            )
        return self.checkpoint

    def _save_checkpoint(self) -> None:
        self.checkpoints.save(self.checkpoint)

    def _resume_index(self) -> int:
        index = self.checkpoint.last_processed_batch_start_index
        if 0 <= index < len(self.conversations):
            return index
        if index:
            self.logger.warning(
                "Checkpoint index %d is outside the %d configured conversations, starting over",
                index, len(self.conversations),
            )
        return 0

    def partition(self, start_index: int = 0) -> list[tuple[int, list[str]]]:
        """Split the conversations into (start index, names) batches from ``start_index``."""
        return [
            (index, self.conversations[index:index + self.batch_size])
            for index in range(start_index, len(self.conversations), self.batch_size)
        ]

    # ── Daily Aggregate ─────────────────────────────────────────────

    def check_daily_rollover(self) -> bool:
        """Start a new daily aggregate when the date has changed.

        The previous aggregate is flushed to the match log if non-empty.

        Returns:
            True if a rollover happened.
        """
        today = date_key(self._clock())
        if today == self.daily.date_key:
            return False
        if not self.daily.is_empty:
            self.match_log.flush_daily_aggregate(self.daily)
        self.logger.info("New day %s - daily counters reset", today)
        self.daily = DailyAggregate(date_key=today)
        return True

    def _record_matches(self, matches: list[MatchRecord]) -> None:
        self.check_daily_rollover()
        for match in matches:
            self.daily.record(match)
        self.total_matches_all_time += len(matches)

    # ── Scan Cycle ──────────────────────────────────────────────────

    async def trigger_scan(self) -> ScanReport:
        """Run one scan cycle unless one is running, scanning is paused, or shutting down.

        Returns:
            The scan report. ``started`` is False for a no-op, with ``reason``
            set to one of the ``SKIP_*`` constants.

        Raises:
            SessionLostError: The browser session disappeared mid-scan.
        """
        if self._scanning:
            self.logger.warning("Scan already in progress, skipping")
            return ScanReport(started=False, reason=SKIP_IN_PROGRESS)
        if self._paused:
            self.logger.info("Scanning is paused")
            return ScanReport(started=False, reason=SKIP_PAUSED)
        if self._shutdown.is_set():
            return ScanReport(started=False, reason=SKIP_SHUTTING_DOWN)

        self._scanning = True
        self._idle.clear()
        self.scan_errors = []
        report = ScanReport(started=True, errors=self.scan_errors)
        started = time.monotonic()

        try:
            report.completed = await self._scan_batches(report)
        except SessionLostError as exc:
            self.scan_errors.append(f"Session lost: {exc}")
            raise
        except Exception as exc:
            self.logger.exception("Error during scan cycle")
            self.scan_errors.append(f"Scan cycle error: {exc}")
        finally:
            report.duration_seconds = time.monotonic() - started
            try:
                await self._finish_cycle(report)
            finally:
                self._scanning = False
                self.current_progress = None
                self._idle.set()

        return report

    async def _scan_batches(self, report: ScanReport) -> bool:
        """Process batches from the checkpoint onwards. Returns True if all were done."""
        start_index = self._resume_index()
        batches = self.partition(start_index)
        total_batches = math.ceil(len(self.conversations) / self.batch_size)
        self.checkpoint.scan_started_at = self._clock()

        self.logger.info(
            "Starting scan cycle: %d conversations in batches of %d%s",
            len(self.conversations),
            self.batch_size,
            f" (resuming at index {start_index})" if start_index else "",
        )
        self.check_daily_rollover()

        for index, names in batches:
            if self._shutdown.is_set() or self._paused:
                self.logger.info("Scan stopped before conversation index %d", index)
                return False
            if not self.scanner.accessor.connected:
                raise SessionLostError("browser session disconnected")

            number = index // self.batch_size + 1
            self.current_progress = f"Batch {number}/{total_batches}"
            self.logger.info("[%s] Processing: %s", self.current_progress, ", ".join(names))

            self.checkpoint.last_processed_batch_start_index = index
            self._save_checkpoint()

            batch_matches = await self.scanner.run_batch(names, self.scan_errors)
            report.matches.extend(batch_matches)
            self.match_log.append_matches(batch_matches)

            self.checkpoint.last_processed_batch_start_index = index + len(names)
            self.checkpoint.last_successful_conversation = self.scanner.last_successful_conversation
            self._save_checkpoint()
            self.logger.info(
                "Progress: %d/%d conversations processed",
                index + len(names), len(self.conversations),
            )

        return True

    async def _finish_cycle(self, report: ScanReport) -> None:
        if report.completed:
            self.checkpoint.reset()
            self._save_checkpoint()
            self.last_scan_time = self._clock()

        self._record_matches(report.matches)

        if report.matches:
            self._log_scan_summary(report.matches)
            await self.notifier.dispatch(report.matches)
        else:
            self.logger.info("No matches found in this scan cycle")

        self.logger.info(
            "Scan %s in %d seconds",
            "completed" if report.completed else "stopped",
            round(report.duration_seconds),
        )
        if self.scan_errors:
            self.logger.warning(
                "Errors encountered during scan:\n%s",
                "\n".join(f"  - {err}" for err in self.scan_errors),
            )
        self._audit_scan(report)

    def _log_scan_summary(self, matches: list[MatchRecord]) -> None:
        by_conversation: dict[str, list[MatchRecord]] = {}
        for match in matches:
            by_conversation.setdefault(match.conversation_name, []).append(match)

        lines = [f"Scan summary: {len(matches)} matches"]
        for conversation, group in by_conversation.items():
            lines.append(f"  {conversation}: {len(group)} matches")
            lines.extend(f"    - '{m.matched_keyword}' in '{m.text[:40]}'" for m in group)
        self.logger.info("\n".join(lines))

    def _audit_scan(self, report: ScanReport) -> None:
        """Record the scan cycle, and its errors if any, in the audit log."""
        if self.log_dir is None:
            return
        cid = correlation_id()
        entry: dict[str, Any] = {
            "timestamp": now_iso(self._clock()),
            "correlation_id": cid,
            "actor": "scan_coordinator",
            "action_type": "scan_cycle",
            "target": f"{len(self.conversations)} conversations",
            "result": "success" if report.completed else "incomplete",
            "parameters": {
                "matches": len(report.matches),
                "errors": len(report.errors),
                "duration_seconds": round(report.duration_seconds, 1),
            },
        }
        try:
            log_action(self.log_dir / "actions", entry)
            if report.errors:
                log_action(
                    self.log_dir / "errors",
                    {
                        "timestamp": entry["timestamp"],
                        "correlation_id": cid,
                        "actor": "scan_coordinator",
                        "action_type": "error",
                        "target": "scan_cycle",
                        "error": "; ".join(report.errors),
                        "details": {"errors": list(report.errors)},
                        "result": "failure",
                    },
                )
        except Exception:
            self.logger.exception("Failed to write scan audit log")

    # ── Scheduling & Shutdown ───────────────────────────────────────

    async def run_forever(self) -> None:
        """Run the startup scan, then re-scan every interval until shutdown."""
        if not self._shutdown.is_set():
            self.logger.info("Running initial scan on startup...")
            await self.trigger_scan()

        self.logger.info("Scheduled scans every %d minutes", self.scan_interval_seconds // 60)
        while not await self.wait_for_shutdown(self.scan_interval_seconds):
            await self.trigger_scan()

    def request_shutdown(self) -> None:
        """Stop the scheduler; a running scan stops at its next batch boundary."""
        if not self._shutdown.is_set():
            self.logger.info("Shutdown requested")
        self._shutdown.set()

    async def wait_for_shutdown(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds for a shutdown request. Returns True if requested."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def shutdown(self) -> None:
        """Drain the in-flight scan, flush the daily aggregate, persist the checkpoint."""
        self.request_shutdown()
        if self._closed:
            return
        self._closed = True

        if self._scanning:
            self.logger.info("Waiting for the in-flight scan to finish...")
        await self._idle.wait()

        if not self.daily.is_empty:
            self.match_log.flush_daily_aggregate(self.daily)
            self.daily = DailyAggregate(date_key=date_key(self._clock()))
        self._save_checkpoint()

    def session_summary(self) -> str:
        minutes = round((self._clock() - self.session_started_at).total_seconds() / 60)
        last_scan = format_log_timestamp(self.last_scan_time) if self.last_scan_time else "Never completed"
        lines = [
            "Session Summary:",
            f"  Total matches found: {self.total_matches_all_time}",
            f"  Last scan: {last_scan}",
            f"  Session duration: {minutes} minutes",
        ]
        if self.scan_errors:
            lines.append(f"  Errors encountered ({len(self.scan_errors)}):")
            lines.extend(f"    - {err}" for err in self.scan_errors[-SUMMARY_ERROR_COUNT:])
        return "\n".join(lines)
