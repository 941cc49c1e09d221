"""
Advisory robots.txt check run before navigation.

The result is logged and reported. It never blocks a scrape, and any
fetch or parse failure counts as allowed.
"""

import threading
import time
import urllib.robotparser
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp

from utils.logger import get_logger, log_scrape_event

from .scraping_config import RobotsSettings

logger = get_logger(__name__)

RobotsFetcher = Callable[[str], Awaitable[Optional[str]]]


class RobotsTxtChecker:
    """Cached robots.txt lookups keyed by scheme and host."""

    def __init__(
        self,
        enabled: bool = True,
        user_agent: str = "*",
        timeout: float = 5.0,
        cache_ttl_seconds: float = 3600.0,
        fetcher: Optional[RobotsFetcher] = None,
    ):
        self.enabled = enabled
        self.user_agent = user_agent
        self.timeout = timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self._fetch = fetcher or self.fetch_robots_txt
        self._lock = threading.Lock()
        self.robots_cache: Dict[str, Tuple[float, Optional[urllib.robotparser.RobotFileParser]]] = {}
        self.compliance_stats = {
            "total_checks": 0,
            "disallowed": 0,
            "fetch_failures": 0,
            "cache_hits": 0,
        }

    @classmethod
    def from_config(cls, settings: RobotsSettings) -> "RobotsTxtChecker":
        return cls(
            enabled=settings.enabled,
            user_agent=settings.user_agent,
            timeout=settings.timeout,
        )

    async def check_url_allowed(self, url: str) -> Dict[str, Any]:
        if not self.enabled:
            return {"allowed": True, "reason": "robots_txt_checking_disabled"}

        self.compliance_stats["total_checks"] += 1
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc.lower()}"

        parser = await self._get_robots_parser(origin)
        if parser is None:
            return {"allowed": True, "reason": "robots_txt_unavailable"}

        allowed = parser.can_fetch(self.user_agent, url)
        if not allowed:
            self.compliance_stats["disallowed"] += 1
            logger.warning("robots.txt suggests scraping is not allowed for %s", url)
        log_scrape_event(
            "robots",
            {"url": url, "allowed": allowed, "user_agent": self.user_agent},
            "INFO" if allowed else "WARNING",
        )
        return {
            "allowed": allowed,
            "reason": "allowed_by_robots_txt" if allowed else "disallowed_by_robots_txt",
        }

    async def fetch_robots_txt(self, origin: str) -> Optional[str]:
        robots_url = f"{origin}/robots.txt"
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.get(robots_url) as response:
                    if response.status != 200:
                        logger.debug(
                            "robots.txt not found for %s (status: %s)",
                            origin,
                            response.status,
                        )
                        return None
                    return await response.text()
        except Exception as e:  # noqa: BLE001
            logger.debug("Could not check robots.txt for %s: %s", origin, e)
            self.compliance_stats["fetch_failures"] += 1
            return None

    async def _get_robots_parser(
        self, origin: str
    ) -> Optional[urllib.robotparser.RobotFileParser]:
        with self._lock:
            cached = self.robots_cache.get(origin)
        if cached and time.monotonic() - cached[0] < self.cache_ttl_seconds:
            self.compliance_stats["cache_hits"] += 1
            return cached[1]

        content = await self._fetch(origin)
        parser = None
        if content:
            parser = urllib.robotparser.RobotFileParser()
            parser.set_url(f"{origin}/robots.txt")
            parser.parse(content.splitlines())

        with self._lock:
            self.robots_cache[origin] = (time.monotonic(), parser)
        return parser

    def clear_cache(self) -> None:
        with self._lock:
            self.robots_cache.clear()
