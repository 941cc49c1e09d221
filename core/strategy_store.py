"""
Shared mutable state for concurrent scrapes.

``DomainStrategyStore`` remembers which strategy last worked for a domain
and which ones failed. ``ProxyQuarantine`` keeps failed proxy keys out of
rotation for a fixed window. Both are plain objects created by the caller
and passed to the components that need them, each guarding its own data
with a lock. Reads hand out copies.
"""

import threading
import time
from typing import Callable, Dict, FrozenSet, Optional, Set

from utils.logger import get_logger, log_strategy_event

from .types import ScrapingStrategy

logger = get_logger(__name__)

Clock = Callable[[], float]


class DomainStrategyStore:
    """Per-domain success/failure memory for strategy selection."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._successes: Dict[str, ScrapingStrategy] = {}
        self._failures: Dict[str, Set[ScrapingStrategy]] = {}

    def record_success(self, domain: str, strategy: ScrapingStrategy) -> None:
        with self._lock:
            self._successes[domain] = strategy
        log_strategy_event(domain, strategy.value, "succeeded")

    def record_failure(self, domain: str, strategy: ScrapingStrategy) -> None:
        with self._lock:
            self._failures.setdefault(domain, set()).add(strategy)
        log_strategy_event(domain, strategy.value, "failed")

    def successful_strategy(self, domain: str) -> Optional[ScrapingStrategy]:
        with self._lock:
            return self._successes.get(domain)

    def failed_strategies(self, domain: str) -> FrozenSet[ScrapingStrategy]:
        with self._lock:
            return frozenset(self._failures.get(domain, ()))

    def has_previously_failed(self, domain: str, strategy: ScrapingStrategy) -> bool:
        with self._lock:
            return strategy in self._failures.get(domain, ())

    def forget(self, domain: str) -> None:
        with self._lock:
            self._successes.pop(domain, None)
            self._failures.pop(domain, None)

    def clear(self) -> None:
        with self._lock:
            self._successes.clear()
            self._failures.clear()

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            domains = set(self._successes) | set(self._failures)
            return {
                domain: {
                    "success": self._successes.get(domain),
                    "failures": sorted(
                        s.value for s in self._failures.get(domain, ())
                    ),
                }
                for domain in sorted(domains)
            }


class ProxyQuarantine:
    """Time-bounded exclusion set keyed by ``host:port``.

    Expiry is evaluated lazily against ``clock`` on every read, so a key
    quarantined at ``T`` is excluded for ``now < T + window`` and eligible
    from ``T + window`` on.
    """

    def __init__(self, window_seconds: float = 30 * 60, clock: Clock = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._expires: Dict[str, float] = {}

    def quarantine(self, key: str) -> float:
        """Quarantine ``key`` and return the clock value at which it is released."""
        expires_at = self._clock() + self.window_seconds
        with self._lock:
            self._expires[key] = expires_at
        logger.warning(
            "Proxy %s quarantined for %.0f seconds", key, self.window_seconds
        )
        return expires_at

    def is_quarantined(self, key: str) -> bool:
        with self._lock:
            expires_at = self._expires.get(key)
            if expires_at is None:
                return False
            if self._clock() >= expires_at:
                del self._expires[key]
                logger.info("Proxy %s released from quarantine", key)
                return False
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._expires.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._expires.clear()

    def prune(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, at in self._expires.items() if now >= at]
            for key in expired:
                del self._expires[key]
        return len(expired)

    def active_keys(self) -> FrozenSet[str]:
        self.prune()
        with self._lock:
            return frozenset(self._expires)

    def __len__(self) -> int:
        return len(self.active_keys())
