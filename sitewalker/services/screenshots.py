"""Page screenshots stamped with a breadcrumb banner, and live-preview frames."""

import base64
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from playwright.async_api import Error as PlaywrightError

from sitewalker.models.crawl_result import ScreenshotInfo
from sitewalker.services import page_scripts
from sitewalker.services.normalizer import generate_breadcrumb, generate_slug

logger = logging.getLogger(__name__)

OVERLAY_RENDER_MS = 500
PREVIEW_QUALITY = 60


class ScreenshotManager:
    def __init__(self, base_dir: Union[str, Path], overlay_render_ms: int = OVERLAY_RENDER_MS):
        self.base_dir = Path(base_dir)
        self.overlay_render_ms = overlay_render_ms

    async def show_overlay(self, page, url: str) -> None:
        await page.evaluate(
            page_scripts.SHOW_OVERLAY_SCRIPT,
            {
                "id": page_scripts.OVERLAY_ID,
                "breadcrumb": generate_breadcrumb(url),
                "url": url,
                "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            },
        )
        if self.overlay_render_ms:
            await page.wait_for_timeout(self.overlay_render_ms)

    async def remove_overlay(self, page) -> None:
        await page.evaluate(page_scripts.REMOVE_OVERLAY_SCRIPT, page_scripts.OVERLAY_ID)

    async def capture_page(self, page, url: str) -> Optional[ScreenshotInfo]:
        """Full-page screenshot with the breadcrumb banner; ``None`` on failure."""
        filename = f"{generate_slug(url)}_{int(time.time() * 1000)}.png"
        self.base_dir.mkdir(parents=True, exist_ok=True)
        try:
            await self.show_overlay(page, url)
            try:
                await page.screenshot(path=str(self.base_dir / filename), full_page=True)
            finally:
                await self.remove_overlay(page)
        except PlaywrightError as exc:
            logger.warning("Screenshot capture failed for %s: %s", url, exc)
            return None
        viewport = page.viewport_size or {"width": 1920, "height": 1080}
        return ScreenshotInfo(filename=filename, full_page=True, viewport=dict(viewport))

    async def capture_preview(self, page) -> Optional[str]:
        """Viewport frame as a ``data:`` URL for progress snapshots."""
        try:
            data = await page.screenshot(type="jpeg", quality=PREVIEW_QUALITY, full_page=False)
        except PlaywrightError as exc:
            logger.debug("Preview capture failed: %s", exc)
            return None
        return "data:image/jpeg;base64," + base64.b64encode(data).decode("ascii")
