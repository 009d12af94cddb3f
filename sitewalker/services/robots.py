"""robots.txt retrieval and evaluation for a single crawl run."""

import logging
from typing import Optional
from urllib.parse import urlsplit
from urllib.robotparser import RobotFileParser

import httpx

logger = logging.getLogger(__name__)

TIMEOUT = 10  # seconds
MAX_ROBOTS_SIZE = 512 * 1024  # 512 KB


class RobotsPolicy:
    """Cached robots.txt rules for the start host of one run.

    The rules are fetched at most once.  A failed fetch, a non-2xx response or
    an unparseable body leave the policy permissive: every URL is allowed.
    """

    def __init__(self, user_agent: str = "Googlebot"):
        self.user_agent = user_agent
        self._parser: Optional[RobotFileParser] = None
        self._loaded = False

    @staticmethod
    def robots_url(start_url: str) -> str:
        parts = urlsplit(start_url)
        return f"{parts.scheme}://{parts.netloc}/robots.txt"

    async def load(self, start_url: str, client: Optional[httpx.AsyncClient] = None) -> None:
        if self._loaded:
            return
        self._loaded = True

        url = self.robots_url(start_url)
        try:
            if client is None:
                async with httpx.AsyncClient(follow_redirects=True, timeout=TIMEOUT) as own_client:
                    response = await own_client.get(url)
            else:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            logger.warning("robots.txt unavailable at %s – allowing all: %s", url, exc)
            return

        if not response.is_success:
            logger.info("robots.txt at %s returned %s – allowing all", url, response.status_code)
            return

        body = response.text[:MAX_ROBOTS_SIZE]
        parser = RobotFileParser()
        parser.set_url(url)
        try:
            parser.parse(body.splitlines())
        except ValueError as exc:
            logger.warning("Could not parse robots.txt at %s – allowing all: %s", url, exc)
            return

        self._parser = parser
        logger.info("Loaded robots.txt", extra={"url": url, "user_agent": self.user_agent})

    def is_allowed(self, url: str) -> bool:
        if self._parser is None:
            return True
        return self._parser.can_fetch(self.user_agent, url)
