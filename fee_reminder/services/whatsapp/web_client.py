"""
Playwright automation for WhatsApp Web.

- Persistent Chromium profile per user (pairing survives restarts)
- Pairing code read from the QR element's data-ref attribute
- Login/logout detection by polling the page
- Text messages sent through the click-to-chat URL
"""

import asyncio
import contextlib
from pathlib import Path
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from fee_reminder.config import settings
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.services.whatsapp.backend import BackendEvents, MessagingBackend
from fee_reminder.services.whatsapp.errors import SendFailure

logger = get_logger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]

# Page selectors; WhatsApp changes these from time to time
CHAT_LIST_SELECTOR = "#pane-side"
PAIRING_CODE_SELECTOR = "div[data-ref]"
SEND_BUTTON_SELECTOR = "button[aria-label='Send'], span[data-icon='send']"
INVALID_NUMBER_SELECTOR = "div[data-animate-modal-popup='true']"

NAVIGATION_TIMEOUT_MS = 120_000
MAX_CONSECUTIVE_PROBE_ERRORS = 3
POST_SEND_SETTLE_SECONDS = 1.5


class WhatsAppWebClient(MessagingBackend):
    """
    Drives one WhatsApp Web account in a headless browser.

    Page access (the watcher's probes and sends) is serialized by a lock so
    a send's navigation is never mistaken for a logout.
    """

    def __init__(
        self,
        credential_dir: Path,
        events: BackendEvents,
        *,
        headless: bool | None = None,
        poll_interval: float | None = None,
        send_timeout: float | None = None,
    ):
        super().__init__(credential_dir, events)
        self.headless = settings.WHATSAPP_HEADLESS if headless is None else headless
        self.poll_interval = poll_interval or settings.WHATSAPP_POLL_INTERVAL_SECONDS
        self.send_timeout_ms = int((send_timeout or settings.WHATSAPP_SEND_TIMEOUT_SECONDS) * 1000)

        self._playwright = None
        self._context = None
        self._page = None
        self._page_lock = asyncio.Lock()
        self._watch_task: asyncio.Task | None = None
        self._stopping = False
        self._paired = False
        self._last_code: str | None = None

    async def initialize(self) -> None:
        self.credential_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Launching WhatsApp Web client", credential_dir=str(self.credential_dir))

        self._playwright = await async_playwright().start()
        try:
            self._context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(self.credential_dir),
                headless=self.headless,
                user_agent=DESKTOP_USER_AGENT,
                viewport={"width": 1280, "height": 900},
                args=BROWSER_ARGS,
            )
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
            self._page.set_default_timeout(NAVIGATION_TIMEOUT_MS)
            await self._page.goto(
                WHATSAPP_WEB_URL, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS
            )
        except Exception:
            await self._shutdown_browser()
            raise

        self._watch_task = asyncio.create_task(self._watch())

    async def _watch(self) -> None:
        """Poll the page and report pairing codes, login and logout."""
        probe_errors = 0
        while not self._stopping:
            try:
                if self._page is None or self._page.is_closed():
                    await self._report_disconnected("browser page closed")
                    return

                async with self._page_lock:
                    logged_in = await self._page.locator(CHAT_LIST_SELECTOR).count() > 0
                    code = None if logged_in else await self._read_pairing_code()
                probe_errors = 0

                if logged_in and not self._paired:
                    self._paired = True
                    self._last_code = None
                    await self.events.on_ready()
                elif code and self._paired:
                    # Pairing screen came back: the phone logged this browser out
                    await self._report_disconnected("logged out from phone")
                    return
                elif code and code != self._last_code:
                    self._last_code = code
                    await self.events.on_pairing_code(code)

            except PlaywrightError as e:
                if self._stopping:
                    return
                probe_errors += 1
                logger.warning("WhatsApp page probe failed", error=str(e), consecutive=probe_errors)
                if probe_errors >= MAX_CONSECUTIVE_PROBE_ERRORS:
                    await self._report_disconnected(f"browser error: {e}")
                    return

            await asyncio.sleep(self.poll_interval)

    async def _read_pairing_code(self) -> str | None:
        elements = self._page.locator(PAIRING_CODE_SELECTOR)
        if await elements.count() == 0:
            return None
        return await elements.first.get_attribute("data-ref")

    async def _report_disconnected(self, reason: str) -> None:
        self._paired = False
        if not self._stopping:
            await self.events.on_disconnected(reason)

    async def send_message(self, address: str, body: str) -> None:
        digits = address.split("@", 1)[0]
        if not digits.isdigit():
            raise SendFailure(f"Invalid address: {address}", operation="send_message", recoverable=False)

        async with self._page_lock:
            if not self._paired or self._page is None or self._page.is_closed():
                raise SendFailure("WhatsApp client is not connected", operation="send_message")

            url = f"{WHATSAPP_WEB_URL}send?phone={digits}&text={quote(body)}"
            try:
                await self._page.goto(url, wait_until="domcontentloaded", timeout=self.send_timeout_ms)

                send_button = self._page.locator(SEND_BUTTON_SELECTOR)
                invalid_popup = self._page.locator(INVALID_NUMBER_SELECTOR)
                await send_button.or_(invalid_popup).first.wait_for(timeout=self.send_timeout_ms)

                if await invalid_popup.count() > 0:
                    raise SendFailure(
                        "Phone number is not registered on WhatsApp",
                        operation="send_message",
                        recoverable=False,
                    )

                await send_button.first.click()
                await asyncio.sleep(POST_SEND_SETTLE_SECONDS)

            except PlaywrightTimeoutError as e:
                raise SendFailure("Timed out waiting for WhatsApp to send", operation="send_message") from e
            except PlaywrightError as e:
                raise SendFailure(f"Browser error while sending: {e}", operation="send_message") from e

    async def destroy(self) -> None:
        self._stopping = True
        self._paired = False

        task = self._watch_task
        self._watch_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._shutdown_browser()
        logger.info("WhatsApp Web client stopped", credential_dir=str(self.credential_dir))

    async def _shutdown_browser(self) -> None:
        context, playwright = self._context, self._playwright
        self._context = self._page = self._playwright = None
        try:
            if context is not None:
                await context.close()
        finally:
            if playwright is not None:
                await playwright.stop()
