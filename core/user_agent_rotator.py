"""
User-agent pool for browser sessions.

Combines fake-useragent's browser data with a curated desktop list. A
session draws one agent at launch and keeps it for its whole lifetime.
"""

import random
import re
import threading
from typing import Dict, List, Optional

from fake_useragent import FakeUserAgentError, UserAgent

from utils.logger import get_logger

from .scraping_config import USER_AGENTS

logger = get_logger(__name__)

BOT_PATTERN = re.compile(r"bot|crawl|spider|slurp|headless", re.IGNORECASE)
CHROME_VERSION_PATTERN = re.compile(r"Chrome/(\d+)")


class UserAgentRotator:
    """Random desktop user agents with per-agent outcome tracking."""

    def __init__(
        self,
        use_fake_useragent: bool = True,
        pool_size: int = 30,
        min_chrome_version: int = 100,
        custom_agents: Optional[List[str]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.use_fake_useragent = use_fake_useragent
        self.pool_size = pool_size
        self.min_chrome_version = min_chrome_version
        self.custom_agents = list(custom_agents or USER_AGENTS)
        self.rng = rng or random.Random()

        self._pool: List[str] = []
        self._lock = threading.Lock()
        self.usage_stats: Dict[str, Dict[str, int]] = {}

    def _validate_user_agent(self, user_agent: str) -> bool:
        if not user_agent or BOT_PATTERN.search(user_agent):
            return False
        if "Mobile" in user_agent:
            return False
        match = CHROME_VERSION_PATTERN.search(user_agent)
        if match and int(match.group(1)) < self.min_chrome_version:
            return False
        return True

    def _load_fake_useragent_pool(self) -> List[str]:
        agents: List[str] = []
        try:
            ua = UserAgent()
            for _ in range(self.pool_size):
                candidate = ua.random
                if self._validate_user_agent(candidate) and candidate not in agents:
                    agents.append(candidate)
        except (FakeUserAgentError, ValueError, TypeError) as e:
            logger.warning("Error loading fake-useragent pool: %s", e)
        return agents

    def _ensure_pool(self) -> List[str]:
        with self._lock:
            if not self._pool:
                pool = [ua for ua in self.custom_agents if self._validate_user_agent(ua)]
                if self.use_fake_useragent:
                    pool.extend(
                        ua for ua in self._load_fake_useragent_pool() if ua not in pool
                    )
                self._pool = pool or list(USER_AGENTS)
                logger.debug("User agent pool loaded with %d agents", len(self._pool))
            return self._pool

    def get_random_user_agent(self) -> str:
        user_agent = self.rng.choice(self._ensure_pool())
        stats = self.usage_stats.setdefault(
            user_agent, {"used": 0, "successes": 0, "failures": 0}
        )
        stats["used"] += 1
        return user_agent

    def record_result(self, user_agent: Optional[str], success: bool) -> None:
        if not user_agent:
            return
        stats = self.usage_stats.setdefault(
            user_agent, {"used": 0, "successes": 0, "failures": 0}
        )
        stats["successes" if success else "failures"] += 1

    @property
    def pool(self) -> List[str]:
        return list(self._ensure_pool())
