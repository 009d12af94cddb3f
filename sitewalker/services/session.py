"""Live, operator-driven browser session: records interactions, modals and training."""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Set
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError
from pydantic import BaseModel, ValidationError

from sitewalker.config import Settings
from sitewalker.models.recording import (
    ActionStep,
    CaptureDetails,
    DiscoveredLink,
    Point,
    RecordedAction,
    RecordingSession,
)
from sitewalker.models.site_rules import SiteRules, TrainedComponent
from sitewalker.services import page_scripts
from sitewalker.services.browser import BrowserDriver
from sitewalker.services.errors import SessionNotActiveError
from sitewalker.services.modal_detector import ModalDetector
from sitewalker.services.modal_scoring import ElementSnapshot, score
from sitewalker.services.normalizer import generate_slug
from sitewalker.services.recording import RecordingStore, utc_now
from sitewalker.services.site_rules import SiteRulesStore, components_for

logger = logging.getLogger(__name__)

MUTATION_POLL_INTERVAL = 0.2  # seconds
FALLBACK_POLL_INTERVAL = 2.0  # seconds
NAVIGATION_IDLE_TIMEOUT_MS = 5000

# Action types still recorded while training mode is on
TRAINING_ACTION_TYPES = {"manual_capture", "modal_training"}


class Interaction(BaseModel):
    """An input event reported by the in-page agent."""

    type: str
    x: Optional[float] = None
    y: Optional[float] = None
    tag_name: str = "element"
    selector: Optional[str] = None
    text: Optional[str] = None
    element_id: Optional[str] = None
    element_type: Optional[str] = None
    name: Optional[str] = None
    placeholder: Optional[str] = None
    href: Optional[str] = None
    key: Optional[str] = None
    scroll_x: Optional[float] = None
    scroll_y: Optional[float] = None


def describe_interaction(event: Interaction) -> str:
    if event.type == "click":
        description = f"Clicked on {event.tag_name}"
        if event.element_id:
            description += f' with id="{event.element_id}"'
        if event.text:
            description += f' containing text "{event.text}"'
        if event.href:
            description += f" (link to: {event.href})"
        return description + f" at position ({event.x or 0:g}, {event.y or 0:g})"
    if event.type == "type":
        if event.key == "Enter":
            target = event.tag_name + (f" #{event.element_id}" if event.element_id else "")
            return f'Pressed Enter key in {target} after typing "{event.text or ""}"'
        description = f'Typed "{event.text or ""}" in {event.tag_name}'
        if event.element_id:
            description += f' with id="{event.element_id}"'
        if event.name:
            description += f' name="{event.name}"'
        if event.placeholder:
            description += f' (placeholder: "{event.placeholder}")'
        return description
    if event.type == "scroll":
        return f"Scrolled to position ({event.scroll_x or 0:g}, {event.scroll_y or 0:g})"
    return f"{event.type} action performed"


def describe_navigation(url: str, last_action: Optional[RecordedAction]) -> str:
    if last_action is not None:
        if last_action.type == "click":
            return (
                f"Navigated to {url} by clicking {last_action.element_selector or 'element'} "
                f"({last_action.element_text or 'no text'})"
            )
        if last_action.type == "type" and last_action.key == "Enter":
            return f'Navigated to {url} by pressing Enter after typing "{last_action.input_text or ""}"'
    return f"Navigated to {url}"


class LiveBrowserSession:
    """One headed or headless browser window recorded into a :class:`RecordingSession`.

    Lifecycle: ``start_live_session`` → (training on/off, captures) →
    ``stop_live_session``.  Two background tasks poll the page for modals:
    one reacts to the agent's mutation flag, the other rescans on a slower
    timer.  Both are cancelled on stop.
    """

    def __init__(
        self,
        settings: Settings,
        rules_store: Optional[SiteRulesStore] = None,
        driver: Optional[BrowserDriver] = None,
        on_screenshot: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings
        self.rules_store = rules_store or SiteRulesStore(settings.rules_dir)
        self.driver = driver or BrowserDriver(human_delays=settings.human_delays)
        self.on_screenshot = on_screenshot
        self.page = None
        self.session: Optional[RecordingSession] = None
        self.store: Optional[RecordingStore] = None
        self.detector: Optional[ModalDetector] = None
        self.current_url = ""
        self.site_domain = ""
        self.rules: Optional[SiteRules] = None
        self.training_mode = False
        self.latest_screenshot: Optional[str] = None
        self._last_action: Optional[RecordedAction] = None
        self._recording = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_recording(self) -> bool:
        return self._recording

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_live_session(self, url: str) -> dict:
        if self._recording:
            raise SessionNotActiveError("A live session is already running")

        session_id = str(uuid.uuid4())
        self.session = RecordingSession(id=session_id, start_time=utc_now(), start_url=url)
        self.store = RecordingStore(self.settings.recordings_dir, session_id)

        await self.driver.initialize(headless=self.settings.headless)
        try:
            await self._open(url)
        except Exception as exc:
            logger.error("Live session failed to open %s: %s", url, exc)
            self._recording = False
            await self._cancel_tasks()
            await self.driver.cleanup()
            self.page = None
            raise

        self._spawn(self._mutation_loop())
        self._spawn(self._fallback_loop())
        logger.info("Live session started", extra={"session_id": session_id, "url": url})
        return {"session_id": session_id}

    async def _open(self, url: str) -> None:
        self.page = await self.driver.create_page()
        self.detector = ModalDetector(self.page, self.session, self.store, on_capture=self._captured)

        await self.page.expose_function(page_scripts.BRIDGE_NAME, self._on_bridge)
        await self.page.add_init_script(page_scripts.AGENT_SCRIPT)
        self.page.on("framenavigated", self._on_frame_navigated)

        self._recording = True
        self.current_url = url
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.settings.navigation_timeout_ms)
        self.current_url = self.page.url or url
        await self._load_rules()

        await self._record_action(
            RecordedAction(
                id=str(uuid.uuid4()),
                timestamp=utc_now(),
                type="navigation",
                from_url="",
                to_url=self.current_url,
                actions=[ActionStep(action_description=f"Opened {self.current_url}")],
                discovered_links=await self.discover_links(),
            )
        )
        await self._page_screenshot()

    async def stop_live_session(self) -> Optional[RecordingSession]:
        if not self._recording or self.session is None:
            return None
        self._recording = False
        await self._cancel_tasks()

        self.session.end_time = utc_now()
        try:
            self.store.save(self.session)
        finally:
            await self.driver.cleanup()
            self.page = None
        logger.info(
            "Live session stopped",
            extra={"session_id": self.session.id, "actions": len(self.session.actions)},
        )
        return self.session

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    async def enable_training_mode(self) -> None:
        await self._set_training(True)

    async def disable_training_mode(self) -> None:
        await self._set_training(False)

    def is_in_training_mode(self) -> bool:
        return self.training_mode

    async def _set_training(self, enabled: bool) -> None:
        self._require_active()
        self.training_mode = enabled
        try:
            await self.page.evaluate(page_scripts.SET_TRAINING_SCRIPT, enabled)
        except PlaywrightError as exc:
            logger.warning("Could not update training indicator: %s", exc)
        logger.info("Training mode %s", "enabled" if enabled else "disabled")

    async def train_component(self, payload: dict, snapshot: Optional[dict] = None) -> Optional[TrainedComponent]:
        """Persist the element described by *payload* as a trained component.

        A malformed payload is logged and ignored (returns ``None``); a failed
        write raises to the caller.
        """
        self._require_active()
        payload = dict(payload)
        if snapshot is not None:
            try:
                payload["modal_score"] = score(ElementSnapshot.model_validate(snapshot)).score
            except ValidationError as exc:
                logger.warning("Ignoring malformed training snapshot: %s", exc)

        component = self.rules_store.train(self.site_domain, self.current_url, payload)
        if component is None:
            return None

        await self._load_rules()
        filename, path = self.store.next_screenshot(generate_slug(self.current_url), "training")
        try:
            await self.page.screenshot(path=str(path), full_page=False)
            self.session.screenshots.append(filename)
            self._captured(filename)
        except PlaywrightError as exc:
            logger.warning("Could not capture training screenshot: %s", exc)
            filename = None

        await self._record_action(
            RecordedAction(
                id=str(uuid.uuid4()),
                timestamp=utc_now(),
                type="modal_training",
                from_url=self.current_url,
                to_url=self.current_url,
                actions=[
                    ActionStep(
                        action_description=f"Trained {component.type} '{component.name}' ({component.selector})",
                        screenshot=filename,
                    )
                ],
                element_selector=component.selector,
                element_text=component.training_data.text_preview,
            )
        )
        return component

    def get_site_parsing_rules(self) -> Optional[SiteRules]:
        if not self.site_domain:
            return None
        return self.rules_store.load(self.site_domain)

    async def delete_trained_component(self, component_id: str) -> bool:
        self._require_active()
        deleted = self.rules_store.delete(self.site_domain, component_id)
        if deleted:
            await self._load_rules()
        return deleted

    # ------------------------------------------------------------------
    # Captures
    # ------------------------------------------------------------------

    async def manual_capture(self, bounding_box: Optional[dict] = None) -> dict:
        self._require_active()
        filename, path = self.store.next_screenshot(generate_slug(self.current_url), "capture")
        if bounding_box:
            clip = {k: float(bounding_box[k]) for k in ("x", "y", "width", "height")}
            await self.page.screenshot(path=str(path), clip=clip)
            capture_type = "area"
            dimensions = clip
        else:
            await self.page.screenshot(path=str(path), full_page=False)
            capture_type = "viewport"
            dimensions = dict(self.page.viewport_size or {})
        self.session.screenshots.append(filename)
        self._captured(filename)

        await self._record_action(
            RecordedAction(
                id=str(uuid.uuid4()),
                timestamp=utc_now(),
                type="manual_capture",
                from_url=self.current_url,
                to_url=self.current_url,
                actions=[ActionStep(action_description=f"Manual {capture_type} capture", screenshot=filename)],
                capture_details=CaptureDetails(
                    timestamp=utc_now(),
                    filename=filename,
                    capture_type=capture_type,
                    dimensions=dimensions,
                    page_url=self.current_url,
                    page_title=await self.page.title(),
                ),
            )
        )
        return {"filename": filename}

    def screenshot_path(self, filename: str) -> Optional[Path]:
        if self.store is None:
            return None
        path = self.store.screenshots_dir / Path(filename).name
        return path if path.exists() else None

    async def discover_links(self) -> List[DiscoveredLink]:
        try:
            raw = await self.page.evaluate(page_scripts.LINK_INVENTORY_SCRIPT)
        except PlaywrightError as exc:
            logger.warning("Link discovery failed on %s: %s", self.current_url, exc)
            return []
        host = urlsplit(self.current_url).hostname
        links = []
        for item in raw or []:
            try:
                links.append(DiscoveredLink(is_internal=urlsplit(item["href"]).hostname == host, **item))
            except (KeyError, ValidationError) as exc:
                logger.debug("Skipping malformed link record: %s", exc)
        return links

    # ------------------------------------------------------------------
    # Bridge and events
    # ------------------------------------------------------------------

    async def _on_bridge(self, message: dict):
        kind = (message or {}).get("kind")
        data = (message or {}).get("data") or {}
        if not self._recording:
            return None
        try:
            if kind == "interaction":
                await self._record_interaction(Interaction.model_validate(data))
                return None
            if kind == "score":
                snapshot = ElementSnapshot.model_validate(data)
                return score(snapshot, self.detector.trained_selectors).score
            if kind == "train":
                component = await self.train_component(data.get("payload") or {}, data.get("snapshot"))
                if component is None:
                    return {"ok": False}
                return {"ok": True, "id": component.id, "name": component.name}
            if kind == "training_exit":
                await self.disable_training_mode()
                return None
        except ValidationError as exc:
            logger.warning("Ignoring malformed %s message from page: %s", kind, exc)
            return None
        except OSError:
            logger.exception("Could not persist trained component for %s", self.site_domain)
            raise
        logger.warning("Unknown bridge message kind: %s", kind)
        return None

    async def _record_interaction(self, event: Interaction) -> None:
        action = RecordedAction(
            id=str(uuid.uuid4()),
            timestamp=utc_now(),
            type=event.type if event.type in ("click", "type", "scroll") else "click",
            from_url=self.current_url,
            to_url=self.current_url,
            actions=[ActionStep(action_description=describe_interaction(event))],
            position=Point(x=event.x, y=event.y) if event.x is not None and event.y is not None else None,
            element_selector=event.selector,
            element_text=event.text if event.type == "click" else None,
            element_id=event.element_id,
            element_type=event.element_type,
            element_name=event.name,
            element_placeholder=event.placeholder,
            element_href=event.href,
            input_text=event.text if event.type == "type" else None,
            key=event.key,
            scroll_delta=Point(x=event.scroll_x or 0, y=event.scroll_y or 0) if event.type == "scroll" else None,
        )
        recorded = await self._record_action(action)
        if recorded and (event.type == "click" or event.key == "Enter"):
            self._last_action = action

    async def _record_action(self, action: RecordedAction) -> bool:
        if self.training_mode and action.type not in TRAINING_ACTION_TYPES:
            logger.debug("Training mode: not recording %s", action.description)
            return False
        self.session.actions.append(action)
        logger.info("Recorded action: %s", action.description)
        return True

    def _on_frame_navigated(self, frame) -> None:
        if self.page is None or frame != self.page.main_frame:
            return
        if frame.url == self.current_url or frame.url == "about:blank":
            return
        self._spawn(self._handle_navigation(frame.url))

    async def _handle_navigation(self, new_url: str) -> None:
        if not self._recording or new_url == self.current_url:
            return
        last_action = self._last_action
        try:
            await self.page.wait_for_load_state("networkidle", timeout=NAVIGATION_IDLE_TIMEOUT_MS)
        except PlaywrightError:
            logger.debug("Navigation load timeout on %s, continuing", new_url)

        previous_url, self.current_url = self.current_url, new_url
        await self._record_action(
            RecordedAction(
                id=str(uuid.uuid4()),
                timestamp=utc_now(),
                type="navigation",
                from_url=previous_url,
                to_url=new_url,
                actions=[ActionStep(action_description=describe_navigation(new_url, last_action))],
                element_selector=last_action.element_selector if last_action else None,
                element_text=last_action.element_text if last_action else None,
                element_id=last_action.element_id if last_action else None,
                element_type=last_action.element_type if last_action else None,
                element_href=last_action.element_href if last_action else None,
                discovered_links=await self.discover_links(),
            )
        )
        self._last_action = None
        self.detector.reset_page()
        await self._page_screenshot()
        await self._load_rules()

    async def _load_rules(self) -> None:
        domain = urlsplit(self.current_url).hostname or ""
        if domain != self.site_domain:
            logger.info("Site domain is now %s", domain)
            self.site_domain = domain
        self.rules = self.rules_store.load(domain) if domain else None
        selectors = [c.selector for c in components_for(self.rules, self.current_url)]
        self.detector.trained_selectors = selectors
        try:
            await self.page.evaluate(page_scripts.PUSH_RULES_SCRIPT, selectors)
            if self.training_mode:
                await self.page.evaluate(page_scripts.SET_TRAINING_SCRIPT, True)
        except PlaywrightError as exc:
            logger.warning("Could not push trained rules to %s: %s", self.current_url, exc)

    async def _page_screenshot(self) -> None:
        if self.training_mode:
            return
        try:
            filename, path = self.store.next_screenshot(generate_slug(self.current_url), "page")
            await self.page.screenshot(path=str(path), full_page=True)
        except (PlaywrightError, OSError) as exc:
            logger.warning("Could not capture page screenshot: %s", exc)
            return
        self.session.screenshots.append(filename)
        self._captured(filename)

    async def _mutation_loop(self) -> None:
        while self._recording:
            await asyncio.sleep(MUTATION_POLL_INTERVAL)
            try:
                changed = await self.page.evaluate(page_scripts.TAKE_MUTATION_FLAG_SCRIPT)
            except PlaywrightError as exc:
                logger.debug("Mutation flag unavailable: %s", exc)
                continue
            if changed:
                await self._scan()

    async def _fallback_loop(self) -> None:
        while self._recording:
            await asyncio.sleep(FALLBACK_POLL_INTERVAL)
            await self._scan()

    async def _scan(self) -> None:
        # A failed pass must not end the polling loop that ran it
        try:
            await self.detector.scan(self._last_action)
        except Exception:
            logger.exception("Modal scan failed on %s", self.current_url)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _captured(self, filename: str) -> None:
        self.latest_screenshot = filename
        if self.on_screenshot is not None:
            self.on_screenshot(filename)

    async def _cancel_tasks(self) -> None:
        tasks, self._tasks = list(self._tasks), set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _require_active(self) -> None:
        if not self._recording or self.page is None:
            raise SessionNotActiveError("No live session is running")
