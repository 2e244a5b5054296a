"""Command line entry point for the WhatsApp keyword monitor.

Usage:
    wa-monitor                      # monitor continuously with the control console
    wa-monitor --once               # run a single scan and exit
    wa-monitor --probe "Founders"   # show what the monitor reads from one conversation
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from wa_monitor.actions.console import ControlConsole
from wa_monitor.actions.notifier import LoggingNotifier
from wa_monitor.config import MonitorConfig, load_config
from wa_monitor.core.batch_scanner import BatchScanner
from wa_monitor.core.checkpoint import CheckpointStore
from wa_monitor.core.coordinator import ScanCoordinator
from wa_monitor.core.errors import SessionLostError
from wa_monitor.core.matcher import DedupCache, KeywordMatcher
from wa_monitor.utils.logging_utils import MatchLog
from wa_monitor.watchers.base_watcher import ConversationAccessor
from wa_monitor.watchers.whatsapp_watcher import WhatsAppAccessor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RESTARTS_EXHAUSTED = 1
EXIT_CONFIG_ERROR = 2
EXIT_NOT_FOUND = 3


def build_accessor(config: MonitorConfig) -> WhatsAppAccessor:
    return WhatsAppAccessor(
        session_path=config.session_path,
        headless=config.headless,
        ui_timeout_seconds=config.ui_timeout_seconds,
        login_timeout_seconds=config.login_timeout_seconds,
        open_retry_attempts=config.open_retry_attempts,
        open_retry_base_delay=config.open_retry_base_delay,
        message_cap=config.recent_message_cap,
    )


def build_matcher(config: MonitorConfig) -> KeywordMatcher:
    return KeywordMatcher(
        config.keywords,
        bare_keywords=config.bare_keywords,
        cache=DedupCache(retention_seconds=config.dedup_retention_seconds),
    )


def build_coordinator(config: MonitorConfig, accessor: ConversationAccessor) -> ScanCoordinator:
    """Wire the scan pipeline around ``accessor``."""
    scanner = BatchScanner(
        accessor,
        build_matcher(config),
        item_pacing=config.item_pacing_seconds,
        batch_pacing=config.batch_pacing_seconds,
    )
    return ScanCoordinator(
        config.target_conversations,
        scanner,
        CheckpointStore(config.checkpoint_path),
        MatchLog(config.match_log_path, rotation_bytes=config.log_rotation_bytes),
        LoggingNotifier(log_dir=config.log_dir),
        batch_size=config.batch_size,
        scan_interval_seconds=config.scan_interval_seconds,
        log_dir=config.log_dir,
    )


class Supervisor:
    """Keeps the monitor running, restarting the browser session after fatal errors.

    Restarts are bounded: after ``max_restarts`` failed sessions the monitor shuts
    down gracefully instead.
    """

    def __init__(
        self,
        accessor: ConversationAccessor,
        coordinator: ScanCoordinator,
        max_restarts: int = 3,
        base_delay: float = 5.0,
    ) -> None:
        self.accessor = accessor
        self.coordinator = coordinator
        self.max_restarts = max_restarts
        self.base_delay = base_delay
        self.restarts = 0
        self._fatal_error: BaseException | None = None
        self._fatal = asyncio.Event()
        self.logger = logging.getLogger(self.__class__.__name__)

    def report_fatal(self, exc: BaseException) -> None:
        """Abort the current session from outside the scheduler (e.g. a console scan)."""
        self._fatal_error = exc
        self._fatal.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.coordinator.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # No loop signal support (Windows); Ctrl+C arrives as KeyboardInterrupt
                self.logger.debug("Signal handler for %s not installed", sig)

    async def run(self, interactive: bool = True) -> int:
        """Run until shutdown. Returns the process exit code."""
        self.install_signal_handlers()
        console_task = None
        if interactive:
            console = ControlConsole(
                self.coordinator,
                on_quit=self.coordinator.request_shutdown,
                on_fatal=self.report_fatal,
            )
            console_task = asyncio.create_task(console.run())

        exit_code = EXIT_OK
        try:
            while not self.coordinator.shutting_down:
                try:
                    await self.accessor.start()
                    await self._run_session()
                    break
                except Exception as exc:
                    self.logger.error(
                        "Monitor crashed: %s", exc, exc_info=not isinstance(exc, SessionLostError)
                    )
                    await self.accessor.close()
                    self.restarts += 1
                    if self.restarts >= self.max_restarts:
                        self.logger.error("Max restarts (%d) reached, shutting down", self.max_restarts)
                        exit_code = EXIT_RESTARTS_EXHAUSTED
                        break
                    delay = self.base_delay * (2 ** (self.restarts - 1))
                    self.logger.info(
                        "Attempting restart (%d/%d) in %.0fs...",
                        self.restarts, self.max_restarts, delay,
                    )
                    if await self.coordinator.wait_for_shutdown(delay):
                        break
        finally:
            await self.coordinator.shutdown()
            if console_task is not None:
                console_task.cancel()
            await self.accessor.close()
            self.logger.info("\n%s", self.coordinator.session_summary())
        return exit_code

    async def _run_session(self) -> None:
        """Run the scheduler until shutdown or a fatal error reported from elsewhere."""
        self._fatal.clear()
        self._fatal_error = None
        run_task = asyncio.create_task(self.coordinator.run_forever())
        fatal_task = asyncio.create_task(self._fatal.wait())
        try:
            await asyncio.wait({run_task, fatal_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            fatal_task.cancel()
            if not run_task.done():
                run_task.cancel()
                try:
                    await run_task
                except asyncio.CancelledError:
                    pass

        if self._fatal_error is not None:
            raise self._fatal_error
        run_task.result()


async def run_once(config: MonitorConfig) -> int:
    """Run a single scan cycle and exit."""
    accessor = build_accessor(config)
    coordinator = build_coordinator(config, accessor)
    coordinator.load_checkpoint()
    try:
        await accessor.start()
        report = await coordinator.trigger_scan()
        logger.info(
            "Check complete. Found %d matches (%d errors).", len(report.matches), len(report.errors)
        )
    finally:
        await coordinator.shutdown()
        await accessor.close()
    return EXIT_OK


async def probe(config: MonitorConfig, name: str) -> int:
    """Open one conversation and print what the monitor would read and match."""
    accessor = build_accessor(config)
    matcher = build_matcher(config)
    try:
        await accessor.start()
        if not await accessor.open(name):
            logger.error("Conversation not found: %s", name)
            return EXIT_NOT_FOUND
        messages = await accessor.extract(name)
        print(f"{len(messages)} messages read from {name}:")
        for message in messages:
            hits = matcher.matched_keywords(message.text)
            marker = f"  <-- {', '.join(hits)}" if hits else ""
            print(f"[{message.time_label or '?'}] {message.sender}: {message.text[:80]}{marker}")
        await accessor.clear_selection()
    finally:
        await accessor.close()
    return EXIT_OK


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="WhatsApp Keyword Monitor - watches WhatsApp Web groups for keywords"
    )
    parser.add_argument(
        "--config",
        default=os.getenv("WA_MONITOR_CONFIG", "config/monitor.yaml"),
        help="Path to the YAML config file (default: config/monitor.yaml)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan and exit",
    )
    mode.add_argument(
        "--probe",
        metavar="NAME",
        help="Open one conversation and print its extracted messages",
    )
    parser.add_argument(
        "--no-console",
        action="store_true",
        help="Do not read control commands from stdin",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (selector diagnostics)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the keyword monitor."""
    # Load .env from config/ directory (project convention)
    load_dotenv(Path("config") / ".env")
    args = _parse_args(argv)

    log_level = "DEBUG" if args.debug else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(EXIT_CONFIG_ERROR)

    if args.probe:
        sys.exit(asyncio.run(probe(config, args.probe)))

    if args.once:
        logger.info("Running single scan...")
        sys.exit(asyncio.run(run_once(config)))

    logger.info(
        "Starting WhatsApp keyword monitor (%d conversations, %d keywords, interval: %s min, headless: %s)",
        len(config.target_conversations),
        len(config.keywords),
        config.scan_interval_minutes,
        config.headless,
    )

    async def supervise() -> int:
        accessor = build_accessor(config)
        coordinator = build_coordinator(config, accessor)
        coordinator.load_checkpoint()
        supervisor = Supervisor(
            accessor,
            coordinator,
            max_restarts=config.restart_max_attempts,
            base_delay=config.restart_base_delay,
        )
        return await supervisor.run(interactive=not args.no_console)

    try:
        sys.exit(asyncio.run(supervise()))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
