import asyncio
import logging
import random
from contextlib import asynccontextmanager

from playwright.async_api import async_playwright

from slotwatch.config import CFG

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]


def pick_user_agent() -> str:
    return random.choice(USER_AGENTS)


class BrowserSessionManager:
    """Paylaşılan tek Chromium örneği; her kontrol kendi context + page'ini açar.

    The browser is launched on first use and kept until close(). Each check
    gets an isolated context (own cookies, own user agent) which is closed on
    every exit path.
    """

    def __init__(self, headless: bool | None = None):
        self._headless = CFG["headless"] if headless is None else headless
        self._playwright = None
        self._browser = None
        self._start_lock = asyncio.Lock()
        self._open_pages = 0

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def _ensure_browser(self):
        async with self._start_lock:
            if self.is_running:
                return self._browser
            if self._browser is not None:
                logger.warning("[SESSION] Browser disconnected, relaunching")
                await self._shutdown()
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless, args=LAUNCH_ARGS
            )
            logger.info("[SESSION] Chromium started (headless=%s)", self._headless)
            return self._browser

    @asynccontextmanager
    async def page(self, *, timeout_ms: int | None = None):
        browser = await self._ensure_browser()
        context = await browser.new_context(user_agent=pick_user_agent(), locale="en-US")
        context.set_default_timeout(timeout_ms or CFG["nav_timeout_ms"])
        self._open_pages += 1
        try:
            page = await context.new_page()
            yield page
        finally:
            self._open_pages -= 1
            try:
                await context.close()
            except Exception as e:
                logger.debug("[SESSION] Context close failed: %s", e)

    async def _shutdown(self):
        browser, pw = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.debug("[SESSION] Browser close failed: %s", e)
        if pw is not None:
            try:
                await pw.stop()
            except Exception as e:
                logger.debug("[SESSION] Playwright stop failed: %s", e)

    async def close(self):
        """Tarayıcıyı kapat (shutdown)."""
        async with self._start_lock:
            await self._shutdown()
        logger.info("[SESSION] Browser session closed")

    def get_status(self) -> dict:
        return {"active": self.is_running, "open_pages": self._open_pages, "headless": self._headless}
