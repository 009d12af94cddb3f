"""Detection and capture of modal overlays in a live page."""

import asyncio
import logging
import time
import uuid
from typing import Callable, List, Optional, Set

from playwright.async_api import Error as PlaywrightError
from pydantic import ValidationError

from sitewalker.models.recording import (
    DetectedModal,
    Dimensions,
    ModalStateChange,
    RecordedAction,
    RecordingSession,
    TriggeredBy,
)
from sitewalker.services import page_scripts
from sitewalker.services.modal_scoring import Candidate, ElementSnapshot, pick_candidate, selector_for
from sitewalker.services.normalizer import generate_slug
from sitewalker.services.recording import RecordingStore, utc_now

logger = logging.getLogger(__name__)

DEDUPE_PREFIX = 50  # characters of modal text compared for de-duplication


def content_diff(old: str, new: str) -> str:
    """Describe where *new* first diverges from *old*."""
    if not old:
        return f"New content: {new[:100]}..."
    if not new:
        return "Content removed"
    i = 0
    limit = min(len(old), len(new))
    while i < limit and old[i] == new[i]:
        i += 1
    if i == len(old) and i == len(new):
        return "No change detected"
    return f'Changed from position {i}: "{old[i:i + 50]}..." to "{new[i:i + 50]}..."'


def _triggered_by(action: Optional[RecordedAction], fallback: str) -> TriggeredBy:
    if action is None:
        return TriggeredBy(action_type="unknown", action_description=fallback)
    return TriggeredBy(
        action_type=action.type,
        action_description=action.description,
        element_selector=action.element_selector,
        element_text=action.element_text,
    )


class ModalDetector:
    """Scores the page's elements and records the modals it finds in *session*.

    ``trained_selectors`` holds the selectors of trained components for the
    current page; the owner refreshes it when the page or the rules change.
    """

    def __init__(
        self,
        page,
        session: RecordingSession,
        store: RecordingStore,
        *,
        stability_checks: int = 3,
        stability_interval: float = 0.1,
        stability_timeout: float = 2.0,
        change_interval: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        on_capture: Optional[Callable[[str], None]] = None,
    ):
        self.page = page
        self.session = session
        self.store = store
        self.trained_selectors: List[str] = []
        self.stability_checks = stability_checks
        self.stability_interval = stability_interval
        self.stability_timeout = stability_timeout
        self.change_interval = change_interval
        self._clock = clock
        self._on_capture = on_capture
        self._previous_signatures: Optional[Set[str]] = None
        self._last_change_at = float("-inf")
        self._last_content: Optional[str] = None
        self.active_modal: Optional[DetectedModal] = None
        self._lock = asyncio.Lock()

    def reset_page(self) -> None:
        """Forget per-document state after a navigation."""
        self._previous_signatures = None
        self.active_modal = None
        self._last_content = None

    async def collect(self) -> List[ElementSnapshot]:
        raw = await self.page.evaluate(page_scripts.SNAPSHOT_SCRIPT, self.trained_selectors)
        snapshots = [ElementSnapshot.model_validate(item) for item in raw or []]
        previous = self._previous_signatures
        for snapshot in snapshots:
            # The first scan of a document is the baseline; nothing on it is "new"
            snapshot.is_new = previous is not None and snapshot.signature not in previous
        self._previous_signatures = {s.signature for s in snapshots}
        return snapshots

    async def scan(self, last_action: Optional[RecordedAction] = None) -> Optional[DetectedModal]:
        """Run one detection pass; return the modal captured or updated, if any.

        Errors from the page, from malformed snapshots or from the recording
        store are logged and the pass is skipped.
        """
        async with self._lock:
            try:
                return await self._scan(last_action)
            except (PlaywrightError, ValidationError, OSError) as exc:
                logger.warning("Modal scan failed on %s: %s", self.page.url, exc)
                return None

    async def _scan(self, last_action: Optional[RecordedAction]) -> Optional[DetectedModal]:
        snapshots = await self.collect()
        candidate = pick_candidate(snapshots, self.trained_selectors)
        if candidate is None:
            if self.active_modal is not None:
                logger.info("Modal closed", extra={"selector": self.active_modal.modal_selector})
                self.active_modal = None
                self._last_content = None
            return None

        selector = self._selector(candidate)
        content = candidate.snapshot.text

        if self.active_modal is not None and self.active_modal.modal_selector == selector:
            if content != self._last_content:
                await self._capture_state_change(candidate, last_action)
            return self.active_modal

        prefix = content[:DEDUPE_PREFIX]
        if any(
            m.modal_selector == selector and (m.modal_content or "")[:DEDUPE_PREFIX] == prefix
            for m in self.session.modals
        ):
            return None

        modal_id = str(uuid.uuid4())
        capture_selector = await self._mark(candidate, modal_id)
        if capture_selector:
            stable = await self.wait_for_stability(capture_selector)
            if not stable:
                logger.info("Modal %s did not settle, capturing anyway", selector)

        filename = await self._screenshot(capture_selector, "modal")
        rect = candidate.snapshot.rect
        modal = DetectedModal(
            id=modal_id,
            timestamp=utc_now(),
            triggered_by=_triggered_by(last_action, "Modal appeared"),
            modal_selector=selector,
            modal_content=content,
            screenshot=filename,
            score=candidate.score,
            reasons=candidate.reasons,
            dimensions=Dimensions(width=rect.width, height=rect.height, top=rect.y, left=rect.x),
        )
        self.session.modals.append(modal)
        if filename:
            self.session.screenshots.append(filename)
        self.active_modal = modal
        self._last_content = content
        logger.info(
            "Modal detected",
            extra={"selector": selector, "score": candidate.score, "screenshot": filename},
        )
        return modal

    def _selector(self, candidate: Candidate) -> str:
        for rule in self.trained_selectors:
            if rule in candidate.snapshot.matched_selectors:
                return rule
        return selector_for(candidate.snapshot)

    async def _mark(self, candidate: Candidate, token: str) -> Optional[str]:
        marked = await self.page.evaluate(page_scripts.MARK_ELEMENT_SCRIPT, [candidate.snapshot.index, token])
        if not marked:
            return None
        return f'[{page_scripts.CAPTURE_ATTRIBUTE}="{token}"]'

    async def wait_for_stability(self, selector: str) -> bool:
        """Wait until the element's box and markup repeat across consecutive probes."""
        deadline = self._clock() + self.stability_timeout
        last = None
        stable = 0
        while self._clock() < deadline:
            probe = await self.page.evaluate(page_scripts.STABILITY_PROBE_SCRIPT, selector)
            if probe is None:
                return False
            if probe == last and not probe.get("busy"):
                stable += 1
                if stable >= self.stability_checks:
                    return True
            else:
                stable = 0
                last = probe
            await asyncio.sleep(self.stability_interval)
        return False

    async def _screenshot(self, selector: Optional[str], kind: str) -> Optional[str]:
        """Capture the marked element, or the viewport; ``None`` when nothing was written."""
        try:
            filename, path = self.store.next_screenshot(generate_slug(self.page.url), kind)
            element = await self.page.query_selector(selector) if selector else None
            if element is not None:
                await element.screenshot(path=str(path))
            else:
                await self.page.screenshot(path=str(path), full_page=False)
        except (PlaywrightError, OSError) as exc:
            logger.warning("Could not capture %s screenshot on %s: %s", kind, self.page.url, exc)
            return None
        if self._on_capture is not None:
            self._on_capture(filename)
        return filename

    async def _capture_state_change(self, candidate: Candidate, last_action: Optional[RecordedAction]) -> None:
        now = self._clock()
        if now - self._last_change_at < self.change_interval:
            return
        self._last_change_at = now

        modal = self.active_modal
        capture_selector = await self._mark(candidate, modal.id)
        filename = await self._screenshot(capture_selector, "modal_change")
        new_content = candidate.snapshot.text
        change = ModalStateChange(
            timestamp=utc_now(),
            triggered_by=_triggered_by(last_action, "Modal content changed"),
            change_description="Content changed in modal",
            screenshot=filename,
            content_diff=content_diff(self._last_content or "", new_content),
        )
        modal.state_changes.append(change)
        if filename:
            self.session.screenshots.append(filename)
        self._last_content = new_content
        logger.info("Modal state change", extra={"selector": modal.modal_selector, "screenshot": filename})
