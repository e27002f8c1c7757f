"""
Browser session: one Playwright Chromium page for the lifetime of a run.

The session is visible by default so that an operator can complete login and
captcha steps in the same window. ``close()`` is idempotent and safe to call
from any exit path.
"""

import asyncio
import logging
from typing import Callable, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from assistant.common.config import Config
from assistant.common.errors import NavigationError
from assistant.common.types import PageCapture

logger = logging.getLogger(__name__)

STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--no-first-run",
    "--no-default-browser-check",
]

VIEWPORT = {"width": 1280, "height": 720}
EXTRA_HEADERS = {"Accept-Language": "en-US,en;q=0.9"}

SETTLE_MS = 4000
NETWORK_IDLE_TIMEOUT_MS = 5000
MIN_NAVIGATION_TIMEOUT_MS = 1000


class BrowserSession:
    """
    Playwright-backed browser session.

    Args:
        headless: Run without a visible window (defaults to Config.BROWSER_HEADLESS)
        budget: Optional callable returning seconds left in the run; navigation
            timeouts are clipped to it.

    Usage:
        async with BrowserSession() as session:
            capture = await session.navigate("https://example.com/jobs/1")
    """

    def __init__(
        self,
        headless: Optional[bool] = None,
        budget: Optional[Callable[[], float]] = None,
    ):
        self.headless = Config.BROWSER_HEADLESS if headless is None else headless
        self.budget = budget
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None
        self._last_status: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session is not open. Call open() first.")
        return self._page

    async def open(self) -> None:
        """Launch Chromium and create the run's page."""
        if self._page is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=STEALTH_ARGS,
        )
        self._page = await self._browser.new_page(viewport=VIEWPORT)
        await self._page.set_extra_http_headers(EXTRA_HEADERS)
        logger.info(f"Browser launched (headless={self.headless})")

    async def close(self) -> None:
        """Close page, browser and driver. Safe to call more than once."""
        browser, playwright = self._browser, self._playwright
        self._page = None
        self._browser = None
        self._playwright = None
        try:
            if browser is not None:
                await browser.close()
        finally:
            if playwright is not None:
                await playwright.stop()
                logger.info("Browser closed")

    async def __aenter__(self) -> "BrowserSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    def _bounded_ms(self, timeout_ms: int) -> int:
        if self.budget is not None:
            timeout_ms = min(timeout_ms, int(self.budget() * 1000))
        return max(timeout_ms, MIN_NAVIGATION_TIMEOUT_MS)

    async def navigate(
        self,
        url: str,
        wait_until: str = "domcontentloaded",
        timeout_ms: Optional[int] = None,
        settle_ms: int = SETTLE_MS,
    ) -> PageCapture:
        """
        Load a URL and capture the rendered HTML.

        Waits for ``wait_until``, then a fixed settle delay, then network idle
        (best effort) so that client-rendered pages have content.

        Raises:
            NavigationError: If the page cannot be loaded
        """
        page = self.page
        timeout = self._bounded_ms(timeout_ms or Config.NAVIGATION_TIMEOUT_MS)
        try:
            response = await page.goto(url, wait_until=wait_until, timeout=timeout)
        except (PlaywrightTimeoutError, PlaywrightError) as e:
            raise NavigationError(f"Navigation to {url} failed: {e}") from e

        self._last_status = response.status if response is not None else None
        if settle_ms:
            await page.wait_for_timeout(min(settle_ms, self._bounded_ms(settle_ms)))
        try:
            await page.wait_for_load_state("networkidle", timeout=self._bounded_ms(NETWORK_IDLE_TIMEOUT_MS))
        except PlaywrightTimeoutError:
            logger.debug(f"Network did not go idle for {url}; continuing")

        return await self.capture()

    async def capture(self) -> PageCapture:
        """Capture the current page state as a new PageCapture."""
        page = self.page
        html = await page.content()
        return PageCapture(url=page.url, html=html, status_code=self._last_status)

    async def screenshot(self, path: str) -> Optional[str]:
        """Save a full-page screenshot; returns the path or None if it failed."""
        if self._page is None:
            return None
        try:
            await asyncio.wait_for(self._page.screenshot(path=path, full_page=True), timeout=15)
        except (PlaywrightError, asyncio.TimeoutError) as e:
            logger.warning(f"Screenshot failed: {e}")
            return None
        return path
