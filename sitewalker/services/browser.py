"""Playwright browser driver with human-like interaction helpers."""

import asyncio
import logging
import math
import random
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from sitewalker.services.errors import BrowserLaunchError

logger = logging.getLogger(__name__)

BASE_VIEWPORT = (1920, 1080)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

# Hides the most common automation fingerprints before any page script runs.
STEALTH_SCRIPT = """
(() => {
  Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
  Object.defineProperty(navigator, 'plugins', {
    get: () => [
      { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
      { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
      { name: 'Native Client', filename: 'internal-nacl-plugin' },
    ],
  });
  Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
  window.chrome = window.chrome || {};
  window.chrome.runtime = window.chrome.runtime || { onConnect: null, onMessage: null };
  [
    '__webdriver_script_fn', '__webdriver_evaluate', '__selenium_unwrapped',
    '__webdriver_unwrapped', '__fxdriver_evaluate', '__driver_unwrapped',
    '__webdriver_script_func', '__webdriver_script_function',
  ].forEach((prop) => { delete window[prop]; });
})();
"""


class BrowserDriver:
    """One Chromium instance and context shared by every page of a run.

    The ``human_*`` helpers add randomised pauses and motion; pass
    ``human_delays=False`` to make them instantaneous.
    """

    def __init__(self, human_delays: bool = True, rng: Optional[random.Random] = None):
        self.human_delays = human_delays
        self._rng = rng or random.Random()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def initialize(self, headless: bool = True) -> None:
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=headless,
                args=[
                    # --no-sandbox is required when running as root inside a container
                    # (Docker drops the user namespace needed by Chromium's sandbox).
                    "--no-sandbox",
                    "--disable-dev-shm-usage",
                    "--disable-blink-features=AutomationControlled",
                    "--disable-background-timer-throttling",
                    "--disable-backgrounding-occluded-windows",
                    "--disable-renderer-backgrounding",
                ],
            )
            self._context = await self._browser.new_context(
                viewport={"width": BASE_VIEWPORT[0], "height": BASE_VIEWPORT[1]},
                user_agent=self._rng.choice(USER_AGENTS),
                ignore_https_errors=True,
                extra_http_headers=DEFAULT_HEADERS,
                java_script_enabled=True,
                bypass_csp=True,
            )
        except PlaywrightError as exc:
            logger.error("Browser launch failed: %s", exc)
            await self.cleanup()
            raise BrowserLaunchError(f"Could not launch browser: {exc}") from exc
        logger.info("Browser started", extra={"headless": headless})

    async def create_page(self) -> Page:
        if self._context is None:
            raise BrowserLaunchError("Browser context not initialized")
        page = await self._context.new_page()
        await page.set_viewport_size(
            {
                "width": BASE_VIEWPORT[0] + self._rng.randrange(100),
                "height": BASE_VIEWPORT[1] + self._rng.randrange(100),
            }
        )
        await page.add_init_script(STEALTH_SCRIPT)
        return page

    async def human_delay(self, min_ms: int = 200, max_ms: int = 2000) -> None:
        if not self.human_delays:
            return
        await asyncio.sleep(self._rng.uniform(min_ms, max_ms) / 1000)

    async def human_type(self, page: Page, selector: str, text: str) -> None:
        """Type *text* one character at a time, with the odd corrected typo."""
        element = page.locator(selector).first
        await element.click()
        for char in text:
            delay = self._rng.uniform(50, 200) if self.human_delays else 0
            await element.press_sequentially(char, delay=delay)
            if self._rng.random() < 0.02:
                typo = chr(ord("a") + self._rng.randrange(26))
                await element.press_sequentially(typo, delay=100 if self.human_delays else 0)
                await self.human_delay(200, 500)
                await element.press("Backspace")

    async def human_scroll(self, page: Page) -> int:
        amount = self._rng.randint(100, 600)
        await page.mouse.wheel(0, amount)
        await self.human_delay(500, 1500)
        return amount

    async def human_mouse_move(self, page: Page) -> None:
        """Move the pointer towards a random point along a slightly curved path."""
        viewport = page.viewport_size or {"width": BASE_VIEWPORT[0], "height": BASE_VIEWPORT[1]}
        x = self._rng.randrange(viewport["width"])
        y = self._rng.randrange(viewport["height"])
        steps = self._rng.randint(3, 7)
        for i in range(steps):
            progress = i / steps
            await page.mouse.move(x * progress, y * progress + math.sin(progress * math.pi) * 50)
            await self.human_delay(50, 150)

    async def human_click(self, page: Page, element) -> None:
        box = await element.bounding_box()
        if not box:
            await element.click()
            return
        x = box["x"] + box["width"] / 2 + self._rng.uniform(-5, 5)
        y = box["y"] + box["height"] / 2 + self._rng.uniform(-5, 5)
        await page.mouse.move(x, y)
        await self.human_delay(100, 300)
        await page.mouse.click(x, y)

    async def cleanup(self) -> None:
        browser, self._browser = self._browser, None
        self._context = None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as exc:
                logger.warning("Error while closing browser: %s", exc)
        pw, self._playwright = self._playwright, None
        if pw is not None:
            await pw.stop()
