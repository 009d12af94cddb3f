"""Crawl orchestrator: admission policy, per-page work and run results."""

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Callable, Dict, List, Optional
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitewalker.config import Settings, get_settings
from sitewalker.models.crawl_config import CrawlConfig
from sitewalker.models.crawl_result import (
    Assets,
    ClickableElement,
    CrawlError,
    CrawlMetadata,
    CrawlResult,
    DiscoveredVia,
    LinkRelationship,
    NavigationPath,
    PageData,
    Position,
    SiteStructure,
    TechnicalData,
)
from sitewalker.models.progress import BrowserAction, CrawlEvent, CrawlProgress
from sitewalker.models.recording import RecordingSession
from sitewalker.services import page_scripts
from sitewalker.services.browser import BrowserDriver
from sitewalker.services.errors import BrowserLaunchError, NavigationError
from sitewalker.services.extractor import extract_page
from sitewalker.services.frontier import CrawlTask, Frontier
from sitewalker.services.login import LoginHandler
from sitewalker.services.normalizer import is_within_domain, normalize_url, should_skip
from sitewalker.services.recording import RecordingStore, utc_now
from sitewalker.services.robots import RobotsPolicy
from sitewalker.services.screenshots import ScreenshotManager
from sitewalker.services.session import LiveBrowserSession
from sitewalker.services.site_rules import SiteRulesStore

logger = logging.getLogger(__name__)

MAX_BROWSER_ACTIONS = 20


def categorize_error(exc: BaseException) -> str:
    """Map a navigation failure onto ``timeout``, ``404``, ``javascript_error`` or ``other``."""
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return "timeout"
    if isinstance(exc, NavigationError) and exc.status == 404:
        return "404"
    message = str(exc)
    if "timeout" in message.lower():
        return "timeout"
    if "404" in message:
        return "404"
    if "javascript" in message.lower():
        return "javascript_error"
    return "other"


def build_navigation_paths(pages: List[PageData]) -> List[NavigationPath]:
    return [
        NavigationPath(
            path=urlsplit(page.url).path or "/",
            depth=page.depth,
            parent=page.parent_url,
            children=[child.url for child in pages if child.parent_url == page.url],
        )
        for page in pages
    ]


def build_sitemap(root_url: str, pages: List[PageData], max_depth: int) -> dict:
    """Tree of crawled pages keyed by parent URL, rooted at *root_url*."""
    by_parent: Dict[str, List[PageData]] = {}
    for page in pages:
        if page.parent_url is not None:
            by_parent.setdefault(page.parent_url, []).append(page)

    def children_of(url: str, depth: int) -> list:
        if depth > max_depth:
            return []
        return [
            {"url": child.url, "title": child.title, "children": children_of(child.url, depth + 1)}
            for child in by_parent.get(url, [])
        ]

    return {"url": root_url, "children": children_of(root_url, 0)}


class CrawlOrchestrator:
    """Runs one crawl, scrape or record job described by a :class:`CrawlConfig`.

    Candidate URLs pass through :meth:`schedule` (normalisation, depth, file
    filters, domain scope, robots.txt) before they reach the frontier; the
    frontier's workers run :meth:`_process` for each admitted page.
    """

    def __init__(
        self,
        config: CrawlConfig,
        settings: Optional[Settings] = None,
        driver: Optional[BrowserDriver] = None,
        robots: Optional[RobotsPolicy] = None,
        rules_store: Optional[SiteRulesStore] = None,
    ):
        self.config = config
        self.settings = settings or get_settings()
        self.driver = driver or BrowserDriver(human_delays=self.settings.human_delays)
        self.robots = robots or RobotsPolicy(self.settings.robots_user_agent)
        self.rules_store = rules_store or SiteRulesStore(self.settings.rules_dir)
        self.screenshots = ScreenshotManager(self.settings.screenshots_dir)

        self.crawl_id = str(uuid.uuid4())
        self.start_url = normalize_url(str(config.start_url))
        self.metadata = CrawlMetadata(
            start_url=self.start_url,
            start_time=utc_now(),
            max_depth=config.max_depth,
            crawl_id=self.crawl_id,
        )
        self.pages: List[PageData] = []
        self.link_relationships: List[LinkRelationship] = []
        self.errors: List[CrawlError] = []
        self.assets = Assets()
        self.visited: set = set()
        self.events: List[CrawlEvent] = []
        self.browser_actions: deque = deque(maxlen=MAX_BROWSER_ACTIONS)
        self.latest_screenshot: Optional[str] = None
        self.status = "idle"
        self.session: Optional[LiveBrowserSession] = None
        self.recording: Optional[RecordingSession] = None
        self.frontier: Optional[Frontier] = None

        self._started_at = time.monotonic()
        self._current_url = self.start_url
        self._current_page = None
        self._preview_task: Optional[asyncio.Task] = None
        self._progress_callback: Optional[Callable[[CrawlProgress], None]] = None
        self._stopped = False
        self._silenced = False
        self._stop_event = asyncio.Event()

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def set_progress_callback(self, callback: Callable[[CrawlProgress], None]) -> None:
        self._progress_callback = callback

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> CrawlResult:
        if self.config.mode == "record":
            return await self._record()

        self.status = "crawling"
        self.log_event("action", self.start_url, f"Starting {self.config.mode} mode crawler")
        try:
            await self.driver.initialize(headless=self.settings.headless)
        except BrowserLaunchError as exc:
            self.status = "error"
            self.log_event("error", self.start_url, "Browser failed to start", {"error_details": str(exc)})
            self._report()
            raise
        self.log_event("action", self.start_url, "Browser initialized successfully")

        await self.robots.load(self.start_url)
        self.frontier = Frontier(
            self._process,
            concurrency=self.config.concurrency,
            rate_limit=self.config.rate_limit,
            interval=self.config.rate_limit_interval,
        )
        try:
            self.schedule(self.start_url, 0)
            await self.frontier.on_idle()
        finally:
            await self.frontier.close()
            self._cancel_preview()
            await self.driver.cleanup()

        self.metadata.end_time = utc_now()
        if not self._stopped:
            self.status = "completed"
            self.log_event(
                "action",
                self.start_url,
                f"Crawl completed: {self.metadata.successful_crawls} of {self.metadata.total_pages} pages succeeded",
            )
            self._report("")
        return self.result()

    async def _record(self) -> CrawlResult:
        self.session = LiveBrowserSession(
            self.settings,
            rules_store=self.rules_store,
            driver=self.driver,
            on_screenshot=self._on_session_screenshot,
        )
        try:
            await self.session.start_live_session(self.start_url)
        except BrowserLaunchError as exc:
            self.status = "error"
            self.log_event("error", self.start_url, "Browser failed to start", {"error_details": str(exc)})
            self._report()
            raise
        except Exception as exc:
            self.status = "error"
            self.log_event("error", self.start_url, "Recording failed to start", {"error_details": str(exc)})
            self._report()
            raise
        self.status = "recording"
        if self.config.training_mode:
            await self.session.enable_training_mode()
        self.log_event("action", self.start_url, "Recording started - all interactions will be captured")
        self._report()

        await self._stop_event.wait()
        self.metadata.end_time = utc_now()
        return self.result()

    async def stop(self) -> None:
        """Stop cooperatively: no new pages start, in-flight navigations finish on their own."""
        if self._stopped:
            return
        self.log_event("action", "system", "Crawler stop requested by user")
        self._stopped = True
        self.status = "stopped"

        if self.frontier is not None:
            self.frontier.clear()
            self.frontier.pause()
        self._cancel_preview()

        if self.session is not None:
            try:
                self.recording = await self.session.stop_live_session()
            except OSError as exc:
                self.log_event("error", "system", "Failed to save recording session", {"error_details": str(exc)})

        page, self._current_page = self._current_page, None
        if page is not None:
            try:
                await page.close()
            except PlaywrightError as exc:
                logger.debug("Closing current page failed: %s", exc)
        await self.driver.cleanup()

        self.metadata.end_time = self.metadata.end_time or utc_now()
        self.log_event("action", "system", "Crawler stopped and cleaned up")
        self._report()
        self._silenced = True
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def schedule(
        self,
        url: str,
        depth: int,
        parent_url: Optional[str] = None,
        discovery_path: tuple = (),
        discovered_via: Optional[DiscoveredVia] = None,
    ) -> bool:
        """Admit *url* to the frontier; return False when it is rejected."""
        if self._stopped:
            return False
        normalized = normalize_url(url)
        if normalized in self.visited or depth > self.config.max_depth:
            return False
        if should_skip(normalized, self.config.file_type_filters):
            logger.debug("Skipping %s: filtered file type", normalized)
            return False
        if not is_within_domain(normalized, self.start_url, self.config.domain_restrictions):
            return False
        if not self.robots.is_allowed(normalized):
            logger.info("Skipping %s due to robots.txt", normalized)
            return False

        self.visited.add(normalized)
        self._current_url = normalized
        self._report(normalized)
        self.frontier.enqueue(CrawlTask(normalized, depth, parent_url, tuple(discovery_path), discovered_via))
        return True

    # ------------------------------------------------------------------
    # Per-page work
    # ------------------------------------------------------------------

    async def _process(self, task: CrawlTask) -> None:
        if self._stopped:
            self.log_event("action", task.url, "Crawling stopped by user request")
            return

        page = None
        js_errors: List[str] = []
        console_logs: List[str] = []
        started = time.monotonic()
        attempts = 0
        try:
            page = await self.driver.create_page()
            self._current_page = page
            page.on("pageerror", lambda error: js_errors.append(str(error)))
            page.on("console", lambda message: console_logs.append(f"[{message.type}] {message.text}"))
            if self.config.custom_headers:
                await page.set_extra_http_headers(dict(self.config.custom_headers))

            while True:
                try:
                    response = await self._navigate(page, task)
                    break
                except (PlaywrightError, NavigationError) as exc:
                    if (
                        categorize_error(exc) != "timeout"
                        or attempts >= self.config.max_retries
                        or self._stopped
                    ):
                        raise
                    attempts += 1
                    self.log_event(
                        "navigation",
                        task.url,
                        f"Navigation timed out, retrying ({attempts}/{self.config.max_retries})",
                    )
                    await asyncio.sleep(self.settings.retry_backoff_ms * 2 ** (attempts - 1) / 1000)

            await self._work_page(page, task, response, started, js_errors, console_logs)
        except Exception as exc:
            # Any failure on a page is recorded against it; the run carries on
            if self._stopped:
                logger.debug("Page %s interrupted by stop: %s", task.url, exc)
                return
            self.metadata.total_pages += 1
            self.metadata.failed_crawls += 1
            error = CrawlError(
                url=task.url,
                error_type=categorize_error(exc),
                error_message=str(exc),
                timestamp=utc_now(),
                retry_attempts=attempts,
            )
            self.errors.append(error)
            self.log_event("error", task.url, f"Failed to crawl page: {error.error_type}", {"error_details": str(exc)})
        finally:
            if page is not None:
                if self._current_page is page:
                    self._current_page = None
                try:
                    await page.close()
                except PlaywrightError as exc:
                    logger.debug("Closing page %s failed: %s", task.url, exc)

    async def _navigate(self, page, task: CrawlTask):
        self.log_event("navigation", task.url, f"Navigating to page (depth: {task.depth})")
        self.log_browser_action("navigate", task.url)
        response = await page.goto(
            task.url,
            wait_until="domcontentloaded",
            timeout=self.settings.navigation_timeout_ms,
        )
        if response is None:
            raise NavigationError("No response received")
        if response.status >= 400:
            raise NavigationError(f"HTTP {response.status} for {task.url}", response.status)
        self.log_event("navigation", task.url, f"Page loaded successfully (status: {response.status})")
        return response

    async def _work_page(self, page, task: CrawlTask, response, started: float, js_errors, console_logs) -> None:
        url = task.url
        screenshot = await self.screenshots.capture_page(page, url)
        # Preview frames must not include the banner
        self._start_preview(page)
        if screenshot is not None:
            self.latest_screenshot = screenshot.filename
            self.log_event("screenshot", url, "Navigation screenshot captured", {"filename": screenshot.filename})
            self._report(url)

        clickables: List[ClickableElement] = []
        if self.config.login_credentials is not None and task.depth == 0:
            self.log_event("login", url, "Attempting to detect and handle login")
            handler = LoginHandler(
                self.driver,
                self.config.login_credentials,
                emit=self.log_event,
                record_action=self.log_browser_action,
                store=RecordingStore(self.settings.screenshots_dir, self.crawl_id),
                submit_settle_ms=self.settings.login_settle_ms,
            )
            clickables = await handler.run(page)

        try:
            await page.wait_for_load_state("networkidle", timeout=self.settings.network_idle_timeout_ms)
        except PlaywrightError:
            logger.debug("Network idle timeout for %s, continuing anyway", url)
        if self.settings.settle_delay_ms:
            await page.wait_for_timeout(self.settings.settle_delay_ms)

        scrolled = await self.driver.human_scroll(page)
        self.log_browser_action("scroll", url, scroll_amount=scrolled)
        await self.driver.human_mouse_move(page)
        self.log_browser_action("hover", url)

        html = await page.content()
        extracted = extract_page(
            html,
            url,
            mode=self.config.mode,
            follow_link_tags=self.config.follow_link_tags,
            positions=await self._link_positions(page),
        )
        extracted.content.clickable_elements = clickables

        page_data = PageData(
            url=url,
            title=extracted.title or await page.title(),
            meta_description=extracted.meta_description,
            status_code=response.status,
            depth=task.depth,
            parent_url=task.parent_url,
            discovery_path=list(task.discovery_path),
            discovered_via=task.discovered_via,
            crawl_timestamp=utc_now(),
            load_time=int((time.monotonic() - started) * 1000),
            content=extracted.content,
            technical_data=TechnicalData(
                response_headers=dict(response.headers or {}),
                page_size=extracted.page_size,
                dom_elements_count=extracted.dom_elements_count,
                javascript_errors=js_errors,
                console_logs=console_logs,
            ),
            screenshot=screenshot,
        )
        self.pages.append(page_data)
        self.metadata.total_pages += 1
        self.metadata.successful_crawls += 1
        self._merge_assets(extracted.assets)
        self.log_event(
            "action",
            url,
            f"Extracted page data in {self.config.mode} mode",
            {"dom_elements_found": extracted.dom_elements_count},
        )

        links = extracted.outbound
        self.log_event("dom_detection", url, f"Found {len(links)} links on page", {"links_discovered": len(links)})
        self._follow(task, links)

    def _follow(self, task: CrawlTask, links) -> None:
        if task.depth >= self.config.max_depth:
            return
        path = task.discovery_path + (task.url,)
        followed = 0
        for link in links:
            via = DiscoveredVia(selector=link.selector, link_text=link.label, element_type=link.element_type)
            if not self.schedule(link.url, task.depth + 1, task.url, path, via):
                continue
            followed += 1
            self.link_relationships.append(
                LinkRelationship(
                    from_url=task.url,
                    to=normalize_url(link.url),
                    label=link.label,
                    selector=link.selector,
                    element_type=link.element_type,
                    position=link.position,
                    discovery_timestamp=utc_now(),
                )
            )
            self.log_event(
                "navigation",
                task.url,
                f"Queuing page for crawling: {link.url}",
                {"element_type": link.element_type, "element_text": link.label[:50]},
            )
            if self.config.sample_mode:
                if len(links) > 1:
                    self.log_event("action", task.url, f"Sample mode enabled: processing only 1 of {len(links)} links")
                break

    async def _link_positions(self, page) -> Dict[str, Position]:
        try:
            inventory = await page.evaluate(page_scripts.LINK_INVENTORY_SCRIPT)
        except PlaywrightError as exc:
            logger.debug("Link positions unavailable: %s", exc)
            return {}
        positions = {}
        for item in inventory or []:
            point = item.get("position") or {}
            positions.setdefault(item.get("href"), Position(x=round(point.get("x", 0)), y=round(point.get("y", 0))))
        return positions

    def _merge_assets(self, assets: Assets) -> None:
        for name in ("stylesheets", "scripts", "images", "documents"):
            bucket = getattr(self.assets, name)
            for url in getattr(assets, name):
                if url not in bucket:
                    bucket.append(url)

    # ------------------------------------------------------------------
    # Live preview
    # ------------------------------------------------------------------

    def _start_preview(self, page) -> None:
        self._cancel_preview()
        self._current_page = page
        self._preview_task = asyncio.create_task(self._preview(page))

    async def _preview(self, page) -> None:
        frame = await self.screenshots.capture_preview(page)
        if frame and not self._stopped:
            self.latest_screenshot = frame
            self._report()

    def _cancel_preview(self) -> None:
        task, self._preview_task = self._preview_task, None
        if task is not None and not task.done():
            task.cancel()

    def _on_session_screenshot(self, filename: str) -> None:
        self.latest_screenshot = filename
        self._report()

    # ------------------------------------------------------------------
    # Events and progress
    # ------------------------------------------------------------------

    def log_event(self, event_type: str, url: str, message: str, details: Optional[dict] = None) -> None:
        if self._silenced:
            return
        event = CrawlEvent(
            id=str(uuid.uuid4()),
            timestamp=utc_now(),
            type=event_type,
            url=url,
            message=message,
            details=details or {},
        )
        self.events.append(event)
        logger.info("[%s] %s", event_type.upper(), message, extra={"url": url, "crawl_id": self.crawl_id})

    def log_browser_action(self, action_type: str, url: str, **fields) -> None:
        if self._silenced:
            return
        self.browser_actions.append(
            BrowserAction(id=str(uuid.uuid4()), timestamp=utc_now(), type=action_type, url=url, **fields)
        )

    def progress(self, current_url: Optional[str] = None) -> CrawlProgress:
        total = self.metadata.total_pages
        return CrawlProgress(
            current_url=self._current_url if current_url is None else current_url,
            pages_discovered=len(self.visited),
            pages_crawled=len(self.pages),
            success_rate=(self.metadata.successful_crawls / total * 100) if total else 0.0,
            elapsed_time=int((time.monotonic() - self._started_at) * 1000),
            status=self.status,
            events=list(self.events),
            browser_actions=list(self.browser_actions),
            latest_screenshot=self.latest_screenshot,
            session=self.session.session if self.session is not None else None,
        )

    def _report(self, current_url: Optional[str] = None) -> None:
        if self._silenced or self._progress_callback is None:
            return
        self._progress_callback(self.progress(current_url))

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def result(self) -> CrawlResult:
        return CrawlResult(
            crawl_metadata=self.metadata,
            site_structure=SiteStructure(
                domain=urlsplit(self.start_url).hostname or "",
                navigation_paths=build_navigation_paths(self.pages),
                link_relationships=self.link_relationships,
                sitemap=build_sitemap(self.start_url, self.pages, self.config.max_depth),
            ),
            pages=self.pages,
            assets=self.assets,
            errors=self.errors,
            recording=self.recording,
        )
