"""Crawl frontier: a bounded worker pool over an asyncio queue with a start-rate limit."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, NamedTuple, Optional

from sitewalker.models.crawl_result import DiscoveredVia

logger = logging.getLogger(__name__)


class CrawlTask(NamedTuple):
    url: str
    depth: int
    parent_url: Optional[str] = None
    discovery_path: tuple = ()
    discovered_via: Optional[DiscoveredVia] = None


class RateLimiter:
    """Fixed-window limiter: at most *limit* acquisitions per *interval* seconds.

    A *limit* of ``None`` or ``0`` disables limiting.
    """

    def __init__(
        self,
        limit: Optional[int],
        interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.interval = interval
        self._clock = clock
        self._window_start: Optional[float] = None
        self._count = 0

    async def acquire(self) -> None:
        if not self.limit:
            return
        while True:
            now = self._clock()
            if self._window_start is None or now - self._window_start >= self.interval:
                self._window_start = now
                self._count = 0
            if self._count < self.limit:
                self._count += 1
                return
            await asyncio.sleep(self._window_start + self.interval - now)


class Frontier:
    """Queue of :class:`CrawlTask` consumed by *concurrency* worker coroutines.

    Handlers may enqueue further tasks; :meth:`on_idle` only resolves once the
    queue is empty and no handler is running.  A handler that raises is logged
    and does not stop its worker.
    """

    def __init__(
        self,
        handler: Callable[[CrawlTask], Awaitable[None]],
        concurrency: int = 3,
        rate_limit: Optional[int] = None,
        interval: float = 60.0,
        limiter: Optional[RateLimiter] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._handler = handler
        self.concurrency = concurrency
        self._limiter = limiter or RateLimiter(rate_limit, interval)
        self._queue: "asyncio.Queue[CrawlTask]" = asyncio.Queue()
        self._running = asyncio.Event()
        self._running.set()
        self._parked: List[CrawlTask] = []
        self._workers: List[asyncio.Task] = []
        self.in_flight = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize() + len(self._parked)

    @property
    def is_paused(self) -> bool:
        return not self._running.is_set()

    def enqueue(self, task: CrawlTask) -> None:
        self._ensure_workers()
        self._queue.put_nowait(task)

    async def on_idle(self) -> None:
        await self._queue.join()

    def clear(self) -> int:
        """Drop every task that has not started yet and return how many were dropped."""
        dropped = len(self._parked)
        self._parked.clear()
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.info("Frontier cleared", extra={"dropped": dropped})
        return dropped

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()
        parked, self._parked = self._parked, []
        for task in parked:
            self.enqueue(task)

    async def close(self) -> None:
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    def _ensure_workers(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(i), name=f"frontier-worker-{i}")
            for i in range(self.concurrency)
        ]

    async def _work(self, worker_id: int) -> None:
        while True:
            task = await self._queue.get()
            try:
                if self.is_paused:
                    self._parked.append(task)
                    continue
                await self._limiter.acquire()
                if self.is_paused:
                    self._parked.append(task)
                    continue
                self.in_flight += 1
                try:
                    await self._handler(task)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Frontier worker %s: task for %s failed", worker_id, task.url)
                finally:
                    self.in_flight -= 1
            finally:
                self._queue.task_done()
