"""WhatsApp Web conversation accessor built on Playwright.

Opens group conversations by name through the chat search box and reads
their most recent messages. It never sends, modifies, or deletes messages.

WhatsApp Web changes its DOM often, so every lookup goes through an ordered
list of selectors and the first one that yields something wins. The lists
are module constants and constructor arguments so they can be updated
without touching the scan pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from wa_monitor.core.errors import TransientUIError
from wa_monitor.core.models import RawMessage
from wa_monitor.core.retry import retry_with_backoff
from wa_monitor.utils.timestamps import utc_now
from wa_monitor.watchers.base_watcher import ConversationAccessor

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com"

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)

DEFAULT_MESSAGE_CAP = 50

SELECTORS = {
    "qr_code": 'canvas[aria-label*="Scan"]',
    "chat_list": 'div[aria-label="Chat list"]',
    "search_button": '[data-icon="search-refreshed-thin"], [data-icon="search"]',
    "chatlist_header": '[data-testid="chatlist-header"]',
    "search_box": 'div[contenteditable="true"][data-tab="3"], [aria-label="Search input textbox"]',
    "message_meta": "[data-pre-plain-text]",
    "message_time": '[data-testid="msg-time"]',
}

# Any of these means the chat list is loaded
CHAT_LOADED_SELECTOR = ", ".join([
    'div[aria-label="Chat list"]',
    'div[data-testid="chat-list"]',
    '[data-testid="chat-list-search-container"]',
    "#pane-side",
])

# Any of these means a conversation is open in the main panel
CHAT_OPEN_SELECTOR = ", ".join([
    '#main [data-testid="conversation-panel-wrapper"]',
    '#main [data-testid="conversation-panel"]',
    '#main [role="application"]',
    '#main div[contenteditable="true"][data-tab="10"]',
    '#main [data-testid="conversation-compose-box-input"]',
])

PANEL_SELECTORS = [
    '#main [data-testid="conversation-panel-wrapper"]',
    '#main [data-testid="conversation-panel"]',
    '#main [role="application"]',
    "#main",
]

# Message container strategies, richest first
MESSAGE_CONTAINER_SELECTORS = [
    ".message-in, .message-out",
    '[data-testid^="msg-"]',
    '[data-testid="conv-msg-box"]',
    '[role="row"]',
]

# Text strategies per container, structured fields first. The container's
# whole text is the final fallback.
TEXT_SELECTORS = [
    ".copyable-text span",
    ".selectable-text span",
    '[data-testid="msg-text"]',
    'span[dir="ltr"]',
    'span[dir="auto"]',
    ".copyable-text",
    "span",
]

SCROLL_TO_BOTTOM_SCRIPT = """
(selectors) => {
    for (const selector of selectors) {
        const panel = document.querySelector(selector);
        if (panel && panel.scrollHeight > 0) {
            panel.scrollTop = panel.scrollHeight;
            return selector;
        }
    }
    return null;
}
"""

# data-pre-plain-text looks like "[10:32, 1/2/2025] Jane Doe: "
_PRE_PLAIN_TEXT_RE = re.compile(r"^\s*\[(?P<label>[^\]]*)\]\s*(?P<sender>.*?)\s*:?\s*$")


def parse_pre_plain_text(raw: str | None) -> tuple[str, str]:
    """Split a ``data-pre-plain-text`` attribute into (sender, time label).

    Returns:
        ``("Unknown", "")`` when the attribute is missing or malformed.
    """
    if not raw:
        return "Unknown", ""
    match = _PRE_PLAIN_TEXT_RE.match(raw)
    if not match:
        return "Unknown", ""
    sender = match.group("sender").strip() or "Unknown"
    return sender, match.group("label").strip()


def _title_selector(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'span[title="{escaped}"]'


class WhatsAppAccessor(ConversationAccessor):
    """Reads WhatsApp Web group conversations through a persistent browser profile."""

    def __init__(
        self,
        session_path: str = "config/whatsapp_session",
        headless: bool = False,
        ui_timeout_seconds: float = 5.0,
        login_timeout_seconds: float = 300.0,
        open_retry_attempts: int = 2,
        open_retry_base_delay: float = 2.0,
        message_cap: int = DEFAULT_MESSAGE_CAP,
        container_selectors: Sequence[str] | None = None,
        text_selectors: Sequence[str] | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__()
        self.session_path = Path(session_path)
        self.headless = headless
        self.ui_timeout_ms = int(ui_timeout_seconds * 1000)
        self.login_timeout_ms = int(login_timeout_seconds * 1000)
        self.open_retry_attempts = open_retry_attempts
        self.open_retry_base_delay = open_retry_base_delay
        self.message_cap = message_cap
        self.container_selectors = list(container_selectors or MESSAGE_CONTAINER_SELECTORS)
        self.text_selectors = list(text_selectors or TEXT_SELECTORS)
        self._clock = clock
        self._sleep = sleep
        self._playwright = None
        self._context = None
        self._page = None
        self._disconnected = False

    # ── Session / Browser Management ────────────────────────────────

    async def _launch_browser(self) -> None:
        """Launch Playwright browser with persistent context for session."""
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self.session_path.mkdir(parents=True, exist_ok=True)

        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.session_path),
            headless=self.headless,
            user_agent=USER_AGENT,
            no_viewport=True,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
                "--no-sandbox",
                "--no-first-run",
            ],
        )
        self._context.on("close", self._on_context_closed)
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
        self._page.set_default_timeout(self.ui_timeout_ms)
        self._disconnected = False

    def _on_context_closed(self, *_: Any) -> None:
        self.logger.warning("Browser context closed")
        self._disconnected = True

    async def _close_browser(self) -> None:
        """Close browser and cleanup."""
        if self._context:
            try:
                await self._context.close()
            except Exception:
                self.logger.debug("Browser context already gone", exc_info=True)
            self._context = None
            self._page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _ensure_browser(self) -> None:
        """Ensure browser is running and page is available."""
        if self._page is None or self._context is None:
            await self._launch_browser()

    @property
    def connected(self) -> bool:
        if self._page is None or self._context is None or self._disconnected:
            return False
        return not self._page.is_closed()

    async def start(self) -> None:
        """Launch the browser, open WhatsApp Web and wait for the chat list."""
        await self._ensure_browser()
        await self._navigate_to_whatsapp()
        await self._wait_for_login()

    async def close(self) -> None:
        await self._close_browser()

    async def _navigate_to_whatsapp(self) -> None:
        """Navigate to WhatsApp Web and wait for the network to settle."""
        assert self._page is not None
        self.logger.debug("Navigating to %s...", WHATSAPP_WEB_URL)
        await self._page.goto(WHATSAPP_WEB_URL, wait_until="networkidle", timeout=60000)

    async def _check_session_state(self) -> str:
        """Check current WhatsApp Web session state.

        Returns:
            One of: "ready", "qr_code", "unknown"
        """
        assert self._page is not None
        if await self._page.query_selector(CHAT_LOADED_SELECTOR):
            return "ready"
        if await self._page.query_selector(SELECTORS["qr_code"]):
            return "qr_code"
        return "unknown"

    async def _wait_for_login(self) -> None:
        """Wait until the chat list is visible, giving the user time to scan the QR code."""
        assert self._page is not None
        await self._sleep(2)
        state = await self._check_session_state()
        if state == "ready":
            self.logger.info("Already logged in to WhatsApp")
            return

        if state == "qr_code":
            self.logger.info(
                "QR code displayed. Scan it with your phone "
                "(Settings > Linked Devices > Link a Device). Waiting up to %ds...",
                self.login_timeout_ms // 1000,
            )
        try:
            await self._page.wait_for_selector(CHAT_LOADED_SELECTOR, timeout=self.login_timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise TransientUIError("Login timeout - chat list never appeared") from exc
        self.logger.info("Logged in to WhatsApp")
        await self._sleep(3)

    # ── Opening Conversations ───────────────────────────────────────

    async def open(self, name: str) -> bool:
        """Search for a conversation by exact title and open it.

        Transient UI failures are retried with exponential backoff. A
        conversation that is still missing after the search is reported
        as False, never raised.
        """
        try:
            return await retry_with_backoff(
                lambda: self._search_and_open(name),
                attempts=self.open_retry_attempts,
                base_delay=self.open_retry_base_delay,
                retry_on=(TransientUIError,),
                sleep=self._sleep,
                description=f"open '{name}'",
            )
        except TransientUIError:
            return False

    async def _search_and_open(self, name: str) -> bool:
        try:
            return await self._run_search(name)
        except PlaywrightTimeoutError as exc:
            raise TransientUIError(f"Timed out opening '{name}': {exc}") from exc

    async def _run_search(self, name: str) -> bool:
        await self._ensure_browser()
        assert self._page is not None
        self.logger.info("Searching for conversation: %s", name)

        await self._focus_search()
        try:
            search_box = await self._page.wait_for_selector(
                SELECTORS["search_box"], state="visible", timeout=self.ui_timeout_ms
            )
        except PlaywrightTimeoutError as exc:
            raise TransientUIError("Search box not rendered") from exc
        if search_box is None:
            raise TransientUIError("Search box not rendered")

        await search_box.click(click_count=3)
        await self._page.keyboard.press("Backspace")
        await search_box.type(name, delay=random.randint(50, 100))
        await self._sleep(random.uniform(1.5, 2.5))

        candidates = await self._page.query_selector_all(_title_selector(name))
        self.logger.debug("Found %d elements titled '%s'", len(candidates), name)
        if not candidates:
            await self._debug_dump_search_state()
            self.logger.warning(
                "Conversation not found: %s (the name must match WhatsApp exactly)", name
            )
            return False

        for index, candidate in enumerate(candidates, start=1):
            if await candidate.bounding_box() is None:
                continue
            self.logger.debug("Clicking candidate %d/%d", index, len(candidates))
            await candidate.click()
            if await self._wait_for_chat_open():
                self.logger.info("Opened conversation: %s", name)
                await self._sleep(random.uniform(1.0, 3.0))
                return True

        self.logger.warning("Conversation '%s' found but did not open", name)
        return False

    async def _focus_search(self) -> None:
        """Click the search icon, falling back to the chat list header."""
        assert self._page is not None
        try:
            button = await self._page.wait_for_selector(
                SELECTORS["search_button"], state="visible", timeout=self.ui_timeout_ms
            )
        except PlaywrightTimeoutError:
            button = None
        if button is not None:
            await button.click()
            await self._sleep(random.uniform(0.1, 0.3))
            return

        self.logger.debug("Search button not found, clicking chat list header")
        header = await self._page.query_selector(SELECTORS["chatlist_header"])
        if header is not None:
            await header.click()
            await self._sleep(0.5)

    async def _wait_for_chat_open(self) -> bool:
        assert self._page is not None
        try:
            await self._page.wait_for_selector(CHAT_OPEN_SELECTOR, timeout=self.ui_timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def _debug_dump_search_state(self) -> None:
        """Log the titles visible after a search that found nothing."""
        if not self.logger.isEnabledFor(logging.DEBUG):
            return
        assert self._page is not None
        try:
            titles = await self._page.query_selector_all("span[title]")
            names = []
            for el in titles[:15]:
                title = await el.get_attribute("title")
                if title:
                    names.append(title)
            self.logger.debug("Visible titles after search: %s", names)
        except Exception:
            self.logger.debug("Could not read visible titles", exc_info=True)

    async def clear_selection(self) -> None:
        """Leave search mode and return to the chat list."""
        if self._page is None:
            return
        try:
            for _ in range(2):
                await self._page.keyboard.press("Escape")
                await self._sleep(random.uniform(0.3, 0.5))

            search_box = await self._page.query_selector(SELECTORS["search_box"])
            if search_box is not None:
                await search_box.click(click_count=3)
                await self._page.keyboard.press("Backspace")
                await self._page.keyboard.press("Escape")
                await self._sleep(random.uniform(0.2, 0.4))
        except Exception:
            self.logger.warning("Failed to clear search state", exc_info=True)

    # ── Message Extraction ──────────────────────────────────────────

    async def extract(self, name: str) -> list[RawMessage]:
        """Read up to ``message_cap`` of the newest messages in the open conversation.

        Every message is stamped with the extraction time; UI time labels are
        kept verbatim and never used for filtering.
        """
        assert self._page is not None

        scrolled = await self._page.evaluate(SCROLL_TO_BOTTOM_SCRIPT, PANEL_SELECTORS)
        if scrolled is None:
            self.logger.debug("Conversation panel not found, extracting anyway")
        await self._sleep(random.uniform(0.5, 1.0))

        containers: list[Any] = []
        for selector in self.container_selectors:
            containers = await self._page.query_selector_all(selector)
            if containers:
                self.logger.debug(
                    "'%s': %d message containers via '%s'", name, len(containers), selector
                )
                break

        if not containers:
            self.logger.info("No message containers found in %s", name)
            return []

        observed_at = self._clock()
        messages: list[RawMessage] = []
        for container in containers[-self.message_cap:]:
            try:
                text = await self._container_text(container)
                if not text:
                    continue
                sender, time_label = await self._container_meta(container)
            except Exception:
                self.logger.debug("Failed to extract message from container", exc_info=True)
                continue
            messages.append(
                RawMessage(
                    sender=sender,
                    text=text,
                    observed_at=observed_at,
                    conversation_name=name,
                    time_label=time_label,
                )
            )

        self.logger.info("Extracted %d messages from %s", len(messages), name)
        return messages

    async def _container_text(self, container: Any) -> str:
        for selector in self.text_selectors:
            element = await container.query_selector(selector)
            if element is None:
                continue
            text = ((await element.text_content()) or "").strip()
            if text:
                return text
        return ((await container.text_content()) or "").strip()

    async def _container_meta(self, container: Any) -> tuple[str, str]:
        sender, time_label = "Unknown", ""
        meta = await container.query_selector(SELECTORS["message_meta"])
        if meta is not None:
            sender, time_label = parse_pre_plain_text(
                await meta.get_attribute("data-pre-plain-text")
            )
        if not time_label:
            time_el = await container.query_selector(SELECTORS["message_time"])
            if time_el is not None:
                time_label = ((await time_el.text_content()) or "").strip()
        return sender, time_label
