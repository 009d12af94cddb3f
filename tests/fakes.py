"""Lightweight stand-ins for Playwright pages and the browser driver.

A :class:`FakePage` serves documents from a ``site`` mapping of URL to
``(status, html)`` (or an exception to raise, or a list of either consumed one
per navigation).  ``results`` maps an in-page script constant to the value
``evaluate`` returns for it, or to a callable receiving the script argument.
"""

from pathlib import Path

PNG_BYTES = b"\x89PNG\r\n\x1a\n"


class FakeResponse:
    def __init__(self, status=200, headers=None):
        self.status = status
        self.headers = headers if headers is not None else {"content-type": "text/html"}


class FakeElement:
    def __init__(self, box=None, text=""):
        self.box = box or {"x": 10, "y": 20, "width": 100, "height": 40}
        self.text = text
        self.clicks = 0
        self.screenshots = []

    async def bounding_box(self):
        return self.box

    async def click(self):
        self.clicks += 1

    async def screenshot(self, path=None, **kwargs):
        self.screenshots.append(path)
        if path:
            Path(path).write_bytes(PNG_BYTES)
        return PNG_BYTES


class FakeLocator:
    def __init__(self, count=1, visible=True, text=""):
        self._count = count
        self.visible = visible
        self.text = text
        self.clicks = 0

    async def count(self):
        return self._count

    @property
    def first(self):
        return self

    async def is_visible(self):
        return self.visible

    async def text_content(self):
        return self.text

    async def bounding_box(self):
        return {"x": 0, "y": 0, "width": 80, "height": 30}

    async def click(self):
        self.clicks += 1


class FakeMouse:
    def __init__(self):
        self.moves = []

    async def move(self, x, y, **kwargs):
        self.moves.append((x, y))

    async def wheel(self, dx, dy):
        self.moves.append(("wheel", dx, dy))

    async def click(self, x, y, **kwargs):
        self.moves.append(("click", x, y))


class FakeFrame:
    def __init__(self, page):
        self.page = page

    @property
    def url(self):
        return self.page.url


class FakePage:
    def __init__(self, site=None, url="about:blank"):
        self.site = site if site is not None else {}
        self._url = url
        self.html = "<html><head></head><body></body></html>"
        self.viewport_size = {"width": 1366, "height": 768}
        self.results = {}
        self.locators = {}
        self.elements = {}
        self.handlers = {}
        self.evaluated = []
        self.screenshots = []
        self.exposed = {}
        self.init_scripts = []
        self.extra_headers = None
        self.goto_calls = []
        self.mouse = FakeMouse()
        self.main_frame = FakeFrame(self)
        self.closed = False

    @property
    def url(self):
        return self._url

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, payload):
        for handler in self.handlers.get(event, []):
            handler(payload)

    async def goto(self, url, **kwargs):
        self.goto_calls.append(url)
        entry = self.site.get(url, (404, "<html><body>Not found</body></html>"))
        if isinstance(entry, list):
            entry = entry.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        if entry is None:
            return None
        status, html = entry
        self._url = url
        self.html = html
        return FakeResponse(status)

    async def evaluate(self, script, arg=None):
        self.evaluated.append((script, arg))
        result = self.results.get(script)
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return result(arg)
        return result

    async def screenshot(self, path=None, **kwargs):
        self.screenshots.append((path, kwargs))
        if path:
            Path(path).write_bytes(PNG_BYTES)
        return PNG_BYTES

    async def wait_for_load_state(self, state=None, **kwargs):
        return None

    async def wait_for_timeout(self, timeout):
        return None

    async def content(self):
        return self.html

    async def title(self):
        return ""

    async def query_selector(self, selector):
        return self.elements.get(selector)

    async def query_selector_all(self, selector):
        return self.elements.get(selector, [])

    def locator(self, selector):
        return self.locators.get(selector, FakeLocator(count=0))

    async def expose_function(self, name, fn):
        self.exposed[name] = fn

    async def add_init_script(self, script=None, **kwargs):
        self.init_scripts.append(script)

    async def set_extra_http_headers(self, headers):
        self.extra_headers = headers

    async def close(self):
        self.closed = True


class FakeDriver:
    """Implements the :class:`BrowserDriver` surface over :class:`FakePage`."""

    def __init__(self, site=None, launch_error=None, page_setup=None):
        self.site = site if site is not None else {}
        self.launch_error = launch_error
        self.page_setup = page_setup
        self.pages = []
        self.typed = []
        self.initialized = False
        self.cleanups = 0

    def is_running(self):
        return self.initialized

    async def initialize(self, headless=True):
        if self.launch_error is not None:
            raise self.launch_error
        self.initialized = True

    async def create_page(self):
        page = FakePage(self.site)
        if self.page_setup is not None:
            self.page_setup(page)
        self.pages.append(page)
        return page

    async def human_delay(self, min_ms=200, max_ms=2000):
        return None

    async def human_type(self, page, selector, text):
        self.typed.append((selector, text))

    async def human_scroll(self, page):
        return 300

    async def human_mouse_move(self, page):
        return None

    async def human_click(self, page, element):
        await element.click()

    async def cleanup(self):
        self.initialized = False
        self.cleanups += 1


def snapshot(**overrides):
    """An element snapshot shaped like a sign-in dialog, as the page reports it."""
    data = {
        "index": 0,
        "tag": "div",
        "element_id": "",
        "classes": "modal-dialog",
        "position": "fixed",
        "z_index": 1050,
        "display": "block",
        "visibility": "visible",
        "opacity": 1,
        "rect": {"x": 383, "y": 134, "width": 600, "height": 500},
        "viewport": {"width": 1366, "height": 768},
        "text": "Sign in Email Password",
        "has_form_elements": True,
        "matched_selectors": [],
    }
    data.update(overrides)
    return data
