"""Interactive control console.

Reads one command per line from stdin while the monitor runs:

    scan     trigger a scan now
    status   show counters and scan progress
    pause    stop scanning after the current batch
    resume   allow scans again
    help     list commands
    quit     stop monitoring and exit (alias: exit)
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections.abc import Callable
from typing import TextIO

from wa_monitor.core.coordinator import ScanCoordinator
from wa_monitor.core.errors import SessionLostError
from wa_monitor.core.models import ScanState
from wa_monitor.utils.timestamps import format_log_timestamp

logger = logging.getLogger(__name__)

COMMANDS: dict[str, str] = {
    "scan": "Trigger a scan now",
    "status": "Show monitor status",
    "pause": "Pause scanning after the current batch",
    "resume": "Resume scanning",
    "help": "List available commands",
    "quit": "Stop monitoring and exit",
}

ALIASES = {"exit": "quit"}


def parse_command(line: str) -> str | None:
    """Normalise a console line to a command name.

    Returns:
        The command name, ``""`` for a blank line, or None if unknown.

    Examples:
        >>> parse_command("  Scan ")
        'scan'
        >>> parse_command("exit")
        'quit'
        >>> parse_command("rescan") is None
        True
    """
    word = line.strip().lower()
    if not word:
        return ""
    word = ALIASES.get(word, word)
    return word if word in COMMANDS else None


def help_text() -> str:
    lines = ["Commands:"]
    lines.extend(f"  {name:<8} {description}" for name, description in COMMANDS.items())
    return "\n".join(lines)


class ControlConsole:
    """Dispatches console commands to the scan coordinator.

    Args:
        coordinator: The coordinator to control.
        on_quit: Called once when the user asks to quit.
        on_fatal: Called with the exception when a console-triggered scan
            loses the browser session.
        output: Where command replies are written.
    """

    def __init__(
        self,
        coordinator: ScanCoordinator,
        on_quit: Callable[[], None] | None = None,
        on_fatal: Callable[[BaseException], None] | None = None,
        output: Callable[[str], None] = print,
    ) -> None:
        self.coordinator = coordinator
        self._on_quit = on_quit
        self._on_fatal = on_fatal
        self._output = output
        self._scan_task: asyncio.Task | None = None

    def handle(self, line: str) -> bool:
        """Handle one input line. Returns False once the user has quit."""
        command = parse_command(line)
        if command == "":
            return True
        if command is None:
            self._output(f"Unknown command: {line.strip()}")
            self._output(help_text())
            return True

        if command == "quit":
            self._output("Stopping monitor...")
            if self._on_quit is not None:
                self._on_quit()
            return False

        getattr(self, f"_cmd_{command}")()
        return True

    # ── Commands ────────────────────────────────────────────────────

    def _cmd_scan(self) -> None:
        state = self.coordinator.state
        if state is ScanState.SCANNING:
            self._output("Scan already in progress")
            return
        if state is ScanState.PAUSED:
            self._output("Scanning is paused - use 'resume' first")
            return
        self._output("Starting manual scan...")
        self._scan_task = asyncio.create_task(self.coordinator.trigger_scan())
        self._scan_task.add_done_callback(self._scan_finished)

    def _cmd_status(self) -> None:
        snapshot = self.coordinator.status()
        last_scan = (
            format_log_timestamp(snapshot.last_scan_time) if snapshot.last_scan_time else "Never"
        )
        if snapshot.scanning:
            state = f"Scanning ({snapshot.current_batch_progress or 'starting'})"
        elif snapshot.paused:
            state = "Paused"
        else:
            state = "Idle"
        self._output(
            "\n".join([
                "Status:",
                f"  State: {state}",
                f"  Last scan: {last_scan}",
                f"  Total matches (all time): {snapshot.total_matches_all_time}",
                f"  Matches today: {snapshot.today_match_count}",
                f"  Monitored conversations: {snapshot.active_conversation_count}",
            ])
        )

    def _cmd_pause(self) -> None:
        if self.coordinator.paused:
            self._output("Already paused")
            return
        self.coordinator.pause()
        self._output("Scanning paused")

    def _cmd_resume(self) -> None:
        if not self.coordinator.paused:
            self._output("Scanning is not paused")
            return
        self.coordinator.resume()
        self._output("Scanning resumed")

    def _cmd_help(self) -> None:
        self._output(help_text())

    def _scan_finished(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, SessionLostError) and self._on_fatal is not None:
            self._on_fatal(exc)
        else:
            logger.error("Manual scan failed: %s", exc, exc_info=exc)

    # ── Input Loop ──────────────────────────────────────────────────

    async def run(self, stream: TextIO | None = None) -> None:
        """Read commands until quit or end of input.

        Lines are read on a daemon thread so a pending read never blocks
        interpreter exit.
        """
        stream = stream if stream is not None else sys.stdin
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[str | None] = asyncio.Queue()

        def pump() -> None:
            try:
                for line in iter(stream.readline, ""):
                    loop.call_soon_threadsafe(queue.put_nowait, line)
            except (OSError, ValueError, RuntimeError):
                # Stream closed, or the loop stopped while lines were pending
                logger.debug("Console input closed", exc_info=True)
            finally:
                try:
                    loop.call_soon_threadsafe(queue.put_nowait, None)
                except RuntimeError:
                    pass  # loop already closed

        threading.Thread(target=pump, name="console-input", daemon=True).start()
        self._output("Type 'help' for commands.")

        while True:
            line = await queue.get()
            if line is None:
                logger.debug("Console input ended")
                return
            if not self.handle(line):
                return
