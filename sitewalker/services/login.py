"""Login detection: find a login entry point, then fill and submit the login form."""

import logging
import re
import uuid
from typing import Callable, Dict, List, NamedTuple, Optional

from playwright.async_api import Error as PlaywrightError
from pydantic import ValidationError

from sitewalker.models.crawl_config import LoginCredentials
from sitewalker.models.crawl_result import ClickableElement
from sitewalker.models.recording import RecordingSession
from sitewalker.services import page_scripts
from sitewalker.services.browser import BrowserDriver
from sitewalker.services.modal_detector import ModalDetector
from sitewalker.services.recording import RecordingStore, utc_now

logger = logging.getLogger(__name__)

CLICKABLE_SELECTOR = (
    'button, a, [role="button"], input[type="submit"], input[type="button"], '
    'div[onclick], span[onclick], [class*="button"], [class*="btn"], [class*="Button"], [class*="Sign"]'
)

LOGIN_PHRASES = (
    "log in",
    "login",
    "log-in",
    "sign in",
    "signin",
    "sign-in",
    "member login",
    "authenticate",
)
# Short words such as "enter" only count as whole words; as substrings they
# match class names like "text-center".
LOGIN_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"\blog\s*in\b",
        r"\blogin\b",
        r"\bsign\s*in\b",
        r"\bsignin\b",
        r"\benter\b",
        r"\bauth\b",
        r"\baccess\b",
        r"\bmember\b",
    )
)
# Sources compared against the phrases, in order of preference
LOGIN_SOURCES = ("text_content", "inner_text", "nested_text", "class_name", "element_id", "href", "aria_label", "role", "test_id")

FALLBACK_LOGIN_SELECTORS = (
    'button:has-text("Log In")',
    'button:has-text("Login")',
    'a:has-text("Log In")',
    'a:has-text("Login")',
    'button:has-text("Sign In")',
    'a:has-text("Sign In")',
    'button[class*="login"]',
    'button[class*="signin"]',
    'button[id*="login"]',
    'button[id*="signin"]',
    'a[class*="login"]',
    'a[class*="signin"]',
    'a[id*="login"]',
    'a[id*="signin"]',
    'a[href*="login"]',
    'a[href*="signin"]',
)

USERNAME_SELECTORS = (
    'input[name="username"]',
    'input[name="email"]',
    'input[type="email"]',
    "#username",
    "#email",
    'input[name="user"]',
    'input[name="login"]',
    'input[placeholder*="username" i]',
    'input[placeholder*="email" i]',
    'input[id*="username"]',
    'input[id*="email"]',
    'input[class*="username"]',
    'input[class*="email"]',
)
PASSWORD_SELECTORS = (
    'input[name="password"]',
    'input[type="password"]',
    "#password",
    'input[id*="password"]',
    'input[class*="password"]',
    'input[placeholder*="password" i]',
)
SUBMIT_SELECTORS = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Login")',
    'button:has-text("Sign in")',
    'button:has-text("Log in")',
    'button:has-text("Submit")',
    'button:has-text("Enter")',
    'button[class*="submit"]',
    'button[class*="login"]',
    'button[id*="submit"]',
    'button[id*="login"]',
)
SUCCESS_SELECTORS = (
    'button:has-text("Logout")',
    'button:has-text("Sign out")',
    'a:has-text("Logout")',
    'a:has-text("Sign out")',
    '[class*="dashboard"]',
    '[class*="profile"]',
    '[data-testid*="user-menu"]',
    '[aria-label*="user menu"]',
)
ERROR_SELECTORS = (
    ".error",
    ".alert-error",
    '[class*="error"]',
    "text=Invalid credentials",
    "text=Login failed",
    "text=Incorrect password",
    "text=User not found",
)


class LoginMatch(NamedTuple):
    matched: str
    source: str


def match_login_phrases(sources: Dict[str, str]) -> Optional[LoginMatch]:
    """Return the first login phrase or pattern found in *sources*, if any.

    *sources* maps a source name (see ``LOGIN_SOURCES``) to its text.
    """
    lowered = {name: (sources.get(name) or "").lower() for name in LOGIN_SOURCES}
    for name in LOGIN_SOURCES:
        for phrase in LOGIN_PHRASES:
            if phrase in lowered[name]:
                return LoginMatch(phrase, name)
    for name in LOGIN_SOURCES:
        for pattern in LOGIN_PATTERNS:
            if pattern.search(lowered[name]):
                return LoginMatch(pattern.pattern, name)
    return None


Emit = Callable[..., None]


class LoginHandler:
    """Best-effort login for one page.

    Progress is reported through *emit* ``(event_type, url, message, details)``
    and *record_action* ``(action_type, url, **fields)``; nothing here raises
    for an unrecognised page.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        credentials: LoginCredentials,
        emit: Emit,
        record_action: Emit,
        store: Optional[RecordingStore] = None,
        click_settle_ms: int = 3000,
        submit_settle_ms: int = 5000,
    ):
        self.driver = driver
        self.credentials = credentials
        self.emit = emit
        self.record_action = record_action
        self.store = store
        self.click_settle_ms = click_settle_ms
        self.submit_settle_ms = submit_settle_ms
        self.modal_session: Optional[RecordingSession] = None

    async def run(self, page) -> List[ClickableElement]:
        """Click a login entry point if one exists, then try the login form.

        Returns the clickable-element inventory gathered on the page.
        """
        clickables: List[ClickableElement] = []
        try:
            self.emit("login", page.url, "Starting login detection")
            clicked, clickables = await self.find_and_click_login_button(page)
            scope = None
            if clicked:
                await page.wait_for_timeout(self.click_settle_ms)
                scope = await self._login_modal_scope(page)
            await self.fill_login_form(page, scope)
        except PlaywrightError as exc:
            self.emit("error", page.url, "Login detection failed", {"error_details": str(exc)})
        return clickables

    async def collect_clickables(self, page) -> List[ClickableElement]:
        raw = await page.evaluate(page_scripts.CLICKABLES_SCRIPT, CLICKABLE_SELECTOR)
        elements = []
        for item in raw or []:
            match = match_login_phrases(item)
            try:
                elements.append(ClickableElement(has_login_text=match is not None, **item))
            except (TypeError, ValidationError) as exc:
                logger.debug("Skipping malformed clickable record: %s", exc)
        return elements

    async def find_and_click_login_button(self, page):
        """Return ``(clicked, clickable_inventory)``."""
        clickables = await self.collect_clickables(page)
        self.emit(
            "dom_detection",
            page.url,
            f"Found {len(clickables)} clickable elements",
            {"dom_elements_found": len(clickables)},
        )

        handles = None
        for item in clickables:
            if not item.has_login_text or not item.is_visible:
                continue
            if handles is None:
                handles = await page.query_selector_all(CLICKABLE_SELECTOR)
            if item.index >= len(handles):
                continue
            label = item.inner_text or item.text_content
            self.emit("dom_detection", page.url, f'Found login element: {item.tag_name} with "{label}"')
            try:
                await self._click(page, handles[item.index], label, None)
            except PlaywrightError as exc:
                logger.debug("Login element %s not clickable: %s", item.index, exc)
                continue
            return True, clickables

        self.emit(
            "dom_detection",
            page.url,
            f"Scanning for login buttons with {len(FALLBACK_LOGIN_SELECTORS)} selectors",
        )
        for selector in FALLBACK_LOGIN_SELECTORS:
            try:
                locator = page.locator(selector)
                if await locator.count() == 0 or not await locator.first.is_visible():
                    continue
                label = (await locator.first.text_content() or "").strip()
                await self._click(page, locator.first, label, selector)
                return True, clickables
            except PlaywrightError:
                continue

        self.emit("login", page.url, "No login buttons detected on page")
        return False, clickables

    async def _click(self, page, element, label: str, selector: Optional[str]) -> None:
        self.emit("login", page.url, f'Clicking login element: "{label}"', {"element_selector": selector})
        box = await element.bounding_box()
        position = None
        if box:
            position = {"x": round(box["x"] + box["width"] / 2), "y": round(box["y"] + box["height"] / 2)}
        await self.driver.human_delay(500, 1500)
        await self.driver.human_click(page, element)
        self.record_action("click", page.url, position=position, element_selector=selector, element_text=label)
        self.emit("login", page.url, "Login element clicked")

    async def _login_modal_scope(self, page) -> Optional[str]:
        """Scan once for a login modal; return a selector scoping the form search."""
        if self.store is None:
            return None
        if self.modal_session is None:
            self.modal_session = RecordingSession(id=str(uuid.uuid4()), start_time=utc_now(), start_url=page.url)
        detector = ModalDetector(page, self.modal_session, self.store)
        modal = await detector.scan()
        if modal is None:
            return None
        self.emit(
            "dom_detection",
            page.url,
            f"Login modal detected: {modal.modal_selector}",
            {"score": modal.score, "screenshot": modal.screenshot},
        )
        return f'[{page_scripts.CAPTURE_ATTRIBUTE}="{modal.id}"]'

    async def find_field(self, page, selectors, scope: Optional[str] = None) -> Optional[str]:
        """First selector (scoped to *scope* when it matches there) with a visible element."""
        candidates = [f"{scope} {s}" for s in selectors] if scope else []
        candidates += list(selectors)
        for selector in candidates:
            try:
                locator = page.locator(selector)
                if await locator.count() > 0 and await locator.first.is_visible():
                    return selector
            except PlaywrightError:
                continue
        return None

    async def fill_login_form(self, page, scope: Optional[str] = None) -> bool:
        self.emit("login", page.url, "Scanning for login form fields")
        username = await self.find_field(page, USERNAME_SELECTORS, scope)
        password = await self.find_field(page, PASSWORD_SELECTORS, scope)
        submit = await self.find_field(page, SUBMIT_SELECTORS, scope)

        missing = [
            name
            for name, selector in (("username", username), ("password", password), ("submit button", submit))
            if selector is None
        ]
        if missing:
            self.emit("login", page.url, f"Login form incomplete - missing: {', '.join(missing)}")
            return False

        self.emit("login", page.url, "Complete login form detected", {"form_fields": [username, password, submit]})
        self.record_action("type", page.url, element_selector=username, input_text=self.credentials.username)
        await self.driver.human_type(page, username, self.credentials.username)
        await self.driver.human_delay()
        self.record_action("type", page.url, element_selector=password, input_text="••••••••")
        await self.driver.human_type(page, password, self.credentials.password)
        await self.driver.human_delay()

        self.record_action("click", page.url, element_selector=submit)
        await page.locator(submit).first.click()
        self.emit("login", page.url, "Login form submitted, waiting for response")
        await page.wait_for_timeout(self.submit_settle_ms)
        await self.check_login_success(page)
        return True

    async def check_login_success(self, page) -> Optional[bool]:
        """Log whether the page now looks logged in; ``None`` when unclear."""
        for selector in SUCCESS_SELECTORS:
            try:
                if await page.locator(selector).count() > 0:
                    self.emit("login", page.url, "Login appears successful", {"element_selector": selector})
                    return True
            except PlaywrightError:
                continue
        for selector in ERROR_SELECTORS:
            try:
                locator = page.locator(selector)
                if await locator.count() > 0:
                    text = await locator.first.text_content()
                    self.emit(
                        "error",
                        page.url,
                        "Login failed - found error indicator",
                        {"element_selector": selector, "error_details": text or "Unknown error"},
                    )
                    return False
            except PlaywrightError:
                continue
        self.emit("login", page.url, "Login status unclear")
        return None
