"""In-process registry of running crawls and live browser sessions."""

import asyncio
import logging
from typing import Callable, Dict, Optional

from sitewalker.config import Settings, get_settings
from sitewalker.models.crawl_config import CrawlConfig
from sitewalker.models.crawl_result import CrawlResult
from sitewalker.models.progress import CrawlProgress
from sitewalker.models.recording import RecordingSession
from sitewalker.services.crawler import CrawlOrchestrator
from sitewalker.services.session import LiveBrowserSession
from sitewalker.services.site_rules import SiteRulesStore

logger = logging.getLogger(__name__)

MAX_FINISHED_CRAWLS = 50  # finished crawls kept for result lookups


class CrawlHandle:
    """A crawl started through the registry and the latest state it reported."""

    def __init__(self, orchestrator: CrawlOrchestrator):
        self.orchestrator = orchestrator
        self.progress: Optional[CrawlProgress] = None
        self.result: Optional[CrawlResult] = None
        self.error: Optional[str] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def crawl_id(self) -> str:
        return self.orchestrator.crawl_id

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def update(self, progress: CrawlProgress) -> None:
        self.progress = progress


class SessionRegistry:
    """Owns crawls and live sessions by id for the lifetime of the process.

    Lookups raise ``KeyError`` for unknown ids; routers turn that into 404.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        orchestrator_factory: Callable[..., CrawlOrchestrator] = CrawlOrchestrator,
        session_factory: Callable[..., LiveBrowserSession] = LiveBrowserSession,
        max_finished: int = MAX_FINISHED_CRAWLS,
    ):
        self.settings = settings or get_settings()
        self.rules_store = SiteRulesStore(self.settings.rules_dir)
        self.orchestrator_factory = orchestrator_factory
        self.session_factory = session_factory
        self.max_finished = max_finished
        self.crawls: Dict[str, CrawlHandle] = {}
        self.sessions: Dict[str, LiveBrowserSession] = {}

    # Crawls

    def start_crawl(self, config: CrawlConfig) -> str:
        orchestrator = self.orchestrator_factory(config, self.settings, rules_store=self.rules_store)
        handle = CrawlHandle(orchestrator)
        orchestrator.set_progress_callback(handle.update)
        self.crawls[handle.crawl_id] = handle
        handle.task = asyncio.create_task(self._run(handle))
        self._evict_finished()
        logger.info("Crawl started", extra={"crawl_id": handle.crawl_id, "url": str(config.start_url)})
        return handle.crawl_id

    async def _run(self, handle: CrawlHandle) -> None:
        try:
            handle.result = await handle.orchestrator.start()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            handle.error = str(exc)
            logger.exception("Crawl %s failed", handle.crawl_id)

    def _evict_finished(self) -> None:
        """Drop the oldest finished crawls beyond ``max_finished``."""
        finished = [crawl_id for crawl_id, handle in self.crawls.items() if handle.done]
        for crawl_id in finished[: max(0, len(finished) - self.max_finished)]:
            del self.crawls[crawl_id]

    def get_crawl(self, crawl_id: str) -> CrawlHandle:
        return self.crawls[crawl_id]

    def progress(self, crawl_id: str) -> CrawlProgress:
        handle = self.get_crawl(crawl_id)
        return handle.progress or handle.orchestrator.progress()

    async def stop_crawl(self, crawl_id: str) -> CrawlProgress:
        handle = self.get_crawl(crawl_id)
        await handle.orchestrator.stop()
        return handle.orchestrator.progress()

    # Live sessions

    async def start_session(self, url: str) -> str:
        session = self.session_factory(self.settings, rules_store=self.rules_store)
        info = await session.start_live_session(url)
        session_id = info["session_id"]
        self.sessions[session_id] = session
        return session_id

    def get_session(self, session_id: str) -> LiveBrowserSession:
        return self.sessions[session_id]

    async def stop_session(self, session_id: str) -> Optional[RecordingSession]:
        session = self.sessions.pop(session_id)
        return await session.stop_live_session()

    async def shutdown(self) -> None:
        """Stop every crawl and session still running."""
        for handle in list(self.crawls.values()):
            if not handle.done:
                await handle.orchestrator.stop()
        for session_id in list(self.sessions):
            try:
                await self.stop_session(session_id)
            except OSError as exc:
                logger.error("Failed to save session %s on shutdown: %s", session_id, exc)
