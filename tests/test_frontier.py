"""Tests for sitewalker.services.frontier."""

import asyncio
from unittest.mock import patch

import pytest

from sitewalker.services.frontier import CrawlTask, Frontier, RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------

class TestRateLimiter:
    async def test_waits_for_next_window_when_exhausted(self):
        clock = FakeClock()
        limiter = RateLimiter(2, interval=60.0, clock=clock)
        waits = []

        async def fake_sleep(seconds):
            waits.append(seconds)
            clock.now += seconds

        with patch("sitewalker.services.frontier.asyncio.sleep", new=fake_sleep):
            await limiter.acquire()
            await limiter.acquire()
            await limiter.acquire()
        assert waits == [60.0]

    async def test_new_window_resets_count(self):
        clock = FakeClock()
        limiter = RateLimiter(1, interval=10.0, clock=clock)
        await limiter.acquire()
        clock.now = 10.0
        await asyncio.wait_for(limiter.acquire(), timeout=1)

    async def test_disabled_limiter_never_waits(self):
        limiter = RateLimiter(None)
        for _ in range(100):
            await limiter.acquire()


# ---------------------------------------------------------------------------
# Frontier
# ---------------------------------------------------------------------------

class TestFrontier:
    async def test_processes_every_task_and_goes_idle(self):
        seen = []

        async def handler(task):
            seen.append(task.url)

        frontier = Frontier(handler, concurrency=2)
        for i in range(5):
            frontier.enqueue(CrawlTask(f"https://example.com/{i}", 1))
        await asyncio.wait_for(frontier.on_idle(), timeout=1)
        await frontier.close()
        assert sorted(seen) == [f"https://example.com/{i}" for i in range(5)]

    async def test_never_exceeds_concurrency(self):
        running = 0
        peak = 0

        async def handler(task):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        frontier = Frontier(handler, concurrency=3)
        for i in range(10):
            frontier.enqueue(CrawlTask(f"https://example.com/{i}", 1))
        await asyncio.wait_for(frontier.on_idle(), timeout=2)
        await frontier.close()
        assert peak == 3

    async def test_idle_waits_for_tasks_enqueued_by_handlers(self):
        seen = []
        frontier = None

        async def handler(task):
            seen.append(task.depth)
            if task.depth < 3:
                await asyncio.sleep(0)
                frontier.enqueue(CrawlTask(task.url, task.depth + 1))

        frontier = Frontier(handler, concurrency=1)
        frontier.enqueue(CrawlTask("https://example.com/", 0))
        await asyncio.wait_for(frontier.on_idle(), timeout=1)
        await frontier.close()
        assert seen == [0, 1, 2, 3]

    async def test_failing_handler_does_not_stop_the_worker(self):
        seen = []

        async def handler(task):
            if task.depth == 0:
                raise RuntimeError("boom")
            seen.append(task.url)

        frontier = Frontier(handler, concurrency=1)
        frontier.enqueue(CrawlTask("https://example.com/bad", 0))
        frontier.enqueue(CrawlTask("https://example.com/good", 1))
        await asyncio.wait_for(frontier.on_idle(), timeout=1)
        await frontier.close()
        assert seen == ["https://example.com/good"]

    async def test_clear_drops_pending_tasks(self):
        release = asyncio.Event()
        seen = []

        async def handler(task):
            seen.append(task.url)
            await release.wait()

        frontier = Frontier(handler, concurrency=1)
        for i in range(4):
            frontier.enqueue(CrawlTask(f"https://example.com/{i}", 1))
        await asyncio.sleep(0.01)
        assert frontier.clear() == 3
        release.set()
        await asyncio.wait_for(frontier.on_idle(), timeout=1)
        await frontier.close()
        assert seen == ["https://example.com/0"]

    async def test_pause_parks_tasks_until_resume(self):
        seen = []

        async def handler(task):
            seen.append(task.url)

        frontier = Frontier(handler, concurrency=1)
        frontier.pause()
        frontier.enqueue(CrawlTask("https://example.com/a", 1))
        await asyncio.sleep(0.01)
        assert seen == []
        assert frontier.pending == 1
        frontier.resume()
        await asyncio.wait_for(frontier.on_idle(), timeout=1)
        await frontier.close()
        assert seen == ["https://example.com/a"]

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            Frontier(lambda task: None, concurrency=0)
