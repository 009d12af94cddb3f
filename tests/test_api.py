"""Tests for the /crawl and /sessions routers.

The registry on ``app.state`` is replaced by a mock, so no browser starts.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from playwright.async_api import Error as PlaywrightError

from sitewalker.main import app
from sitewalker.models.crawl_config import CrawlConfig
from sitewalker.models.crawl_result import (
    CrawlMetadata,
    CrawlResult,
    LinkRelationship,
    SiteStructure,
)
from sitewalker.models.progress import CrawlProgress
from sitewalker.services.errors import BrowserLaunchError, SessionNotActiveError

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Clear the slowapi in-memory counter before every test."""
    app.state.limiter._storage.reset()
    yield


@pytest.fixture
def registry():
    original = app.state.registry
    mock = MagicMock()
    mock.stop_crawl = AsyncMock()
    mock.start_session = AsyncMock(return_value="s1")
    mock.stop_session = AsyncMock(return_value=None)
    app.state.registry = mock
    yield mock
    app.state.registry = original


@pytest.fixture
def session(registry):
    live = MagicMock()
    live.enable_training_mode = AsyncMock()
    live.disable_training_mode = AsyncMock()
    live.manual_capture = AsyncMock(return_value={"filename": "home_capture_001.png"})
    live.delete_trained_component = AsyncMock(return_value=True)
    live.is_in_training_mode.return_value = False
    live.get_site_parsing_rules.return_value = None
    registry.get_session.return_value = live
    return live


def _progress(status="crawling") -> CrawlProgress:
    return CrawlProgress(
        current_url="https://example.com/",
        pages_discovered=3,
        pages_crawled=1,
        success_rate=100.0,
        elapsed_time=1200,
        status=status,
    )


def _result() -> CrawlResult:
    return CrawlResult(
        crawl_metadata=CrawlMetadata(
            start_url="https://example.com/",
            start_time="2024-01-01T00:00:00+00:00",
            max_depth=1,
            crawl_id="c1",
        ),
        site_structure=SiteStructure(
            domain="example.com",
            navigation_paths=[],
            link_relationships=[
                LinkRelationship(
                    from_url="https://example.com/",
                    to="https://example.com/about",
                    label="About",
                    selector="a",
                    element_type="anchor",
                    discovery_timestamp="2024-01-01T00:00:01+00:00",
                )
            ],
            sitemap={},
        ),
        pages=[],
        errors=[],
    )


# ---------------------------------------------------------------------------
# Crawls
# ---------------------------------------------------------------------------

class TestCrawlRoutes:
    def test_start_crawl(self, registry):
        registry.start_crawl.return_value = "c1"
        resp = client.post("/crawl", json={"start_url": "https://example.com", "max_depth": 1, "mode": "scrape"})
        assert resp.status_code == 200
        assert resp.json() == {"crawl_id": "c1"}
        config = registry.start_crawl.call_args.args[0]
        assert isinstance(config, CrawlConfig)
        assert config.mode == "scrape"

    def test_invalid_config(self, registry):
        resp = client.post("/crawl", json={"start_url": "not a url"})
        assert resp.status_code == 422
        resp = client.post("/crawl", json={"start_url": "https://example.com", "max_depth": 50})
        assert resp.status_code == 422
        registry.start_crawl.assert_not_called()

    def test_progress(self, registry):
        registry.progress.return_value = _progress()
        resp = client.get("/crawl/c1/progress")
        assert resp.status_code == 200
        assert resp.json()["pages_discovered"] == 3

    def test_unknown_crawl(self, registry):
        registry.get_crawl.side_effect = KeyError("c9")
        assert client.get("/crawl/c9/progress").status_code == 404
        assert client.post("/crawl/c9/stop").status_code == 404
        assert client.get("/crawl/c9/result").status_code == 404

    def test_stop(self, registry):
        registry.stop_crawl.return_value = _progress("stopped")
        resp = client.post("/crawl/c1/stop")
        assert resp.status_code == 200
        assert resp.json()["status"] == "stopped"
        registry.stop_crawl.assert_awaited_once_with("c1")

    def test_result_while_running(self, registry):
        registry.get_crawl.return_value = SimpleNamespace(result=None, error=None)
        assert client.get("/crawl/c1/result").status_code == 409

    def test_result_of_failed_run(self, registry):
        registry.get_crawl.return_value = SimpleNamespace(result=None, error="chromium missing")
        resp = client.get("/crawl/c1/result")
        assert resp.status_code == 502
        assert resp.json()["detail"] == "chromium missing"

    def test_result(self, registry):
        registry.get_crawl.return_value = SimpleNamespace(result=_result(), error=None)
        resp = client.get("/crawl/c1/result")
        assert resp.status_code == 200
        relationship = resp.json()["site_structure"]["link_relationships"][0]
        assert relationship["from"] == "https://example.com/"

    def test_start_is_rate_limited(self, registry):
        registry.start_crawl.return_value = "c1"
        codes = [client.post("/crawl", json={"start_url": "https://example.com"}).status_code for _ in range(6)]
        assert codes == [200] * 5 + [429]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class TestSessionRoutes:
    def test_start_session(self, registry):
        resp = client.post("/sessions", json={"url": "https://example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"session_id": "s1"}
        registry.start_session.assert_awaited_once_with("https://example.com/")

    def test_browser_launch_failure(self, registry):
        registry.start_session.side_effect = BrowserLaunchError("chromium missing")
        resp = client.post("/sessions", json={"url": "https://example.com"})
        assert resp.status_code == 502

    def test_unreachable_start_url(self, registry):
        registry.start_session.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        resp = client.post("/sessions", json={"url": "https://example.invalid"})
        assert resp.status_code == 502

    def test_stop_session(self, registry, session):
        resp = client.delete("/sessions/s1")
        assert resp.status_code == 200
        registry.stop_session.assert_awaited_once_with("s1")

    def test_unknown_session(self, registry):
        registry.get_session.side_effect = KeyError("s9")
        assert client.delete("/sessions/s9").status_code == 404
        assert client.get("/sessions/s9/training").status_code == 404
        assert client.post("/sessions/s9/capture", json={}).status_code == 404

    def test_toggle_training(self, registry, session):
        session.is_in_training_mode.return_value = True
        resp = client.post("/sessions/s1/training", json={"enabled": True})
        assert resp.json() == {"training_mode": True}
        session.enable_training_mode.assert_awaited_once()

    def test_training_on_inactive_session(self, registry, session):
        session.disable_training_mode.side_effect = SessionNotActiveError("No live session is running")
        resp = client.post("/sessions/s1/training", json={"enabled": False})
        assert resp.status_code == 409

    def test_training_state(self, registry, session):
        assert client.get("/sessions/s1/training").json() == {"training_mode": False}

    def test_viewport_capture(self, registry, session):
        resp = client.post("/sessions/s1/capture", json={})
        assert resp.json() == {"filename": "home_capture_001.png"}
        session.manual_capture.assert_awaited_once_with(None)

    def test_area_capture(self, registry, session):
        box = {"x": 10, "y": 20, "width": 300, "height": 200}
        client.post("/sessions/s1/capture", json={"bounding_box": box})
        session.manual_capture.assert_awaited_once_with({"x": 10.0, "y": 20.0, "width": 300.0, "height": 200.0})

    def test_invalid_capture_area(self, registry, session):
        resp = client.post("/sessions/s1/capture", json={"bounding_box": {"x": 0, "y": 0, "width": 0, "height": 10}})
        assert resp.status_code == 422

    def test_rules_when_nothing_trained(self, registry, session):
        resp = client.get("/sessions/s1/rules")
        assert resp.status_code == 200
        assert resp.json() is None

    def test_delete_rule(self, registry, session):
        resp = client.delete("/sessions/s1/rules/login-box_div_fixed")
        assert resp.json() == {"deleted": "login-box_div_fixed"}

    def test_delete_unknown_rule(self, registry, session):
        session.delete_trained_component.return_value = False
        assert client.delete("/sessions/s1/rules/nope").status_code == 404


class TestHealth:
    def test_root(self):
        assert client.get("/").json() == {"message": "Hello from Sitewalker"}
