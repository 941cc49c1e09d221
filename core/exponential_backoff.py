"""
Exponential backoff schedule and failure classification for scrape attempts.

The schedule is deterministic and capped: ``delay = min(delay * multiplier,
max_delay)`` after every wait, so the sequence of waits within one scrape
never decreases and never exceeds ``max_delay``.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from utils.error_handling import (
    CaptchaError,
    ExtractionError,
    NavigationError,
    ProxyError,
    ScrapeTimeoutError,
    ScraperError,
)
from utils.logger import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ErrorType(Enum):
    """Types of errors for specific retry strategies."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    CAPTCHA = "captcha"
    BLOCKED = "blocked"
    NETWORK = "network"
    HTTP_5XX = "http_5xx"
    HTTP_4XX = "http_4xx"
    PROXY_ERROR = "proxy_error"
    NAVIGATION = "navigation"
    EXTRACTION = "extraction"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


class RecoveryAction(Enum):
    """What to do before the next attempt of the same strategy."""

    NONE = "none"
    ROTATE_PROXY_AND_RESTART = "rotate_proxy_and_restart"
    RESTART_SESSION = "restart_session"
    INFLATE_BACKOFF = "inflate_backoff"


_RECOVERY = {
    ErrorType.TIMEOUT: RecoveryAction.RESTART_SESSION,
    ErrorType.NETWORK: RecoveryAction.RESTART_SESSION,
    ErrorType.PROXY_ERROR: RecoveryAction.ROTATE_PROXY_AND_RESTART,
    ErrorType.BLOCKED: RecoveryAction.ROTATE_PROXY_AND_RESTART,
    ErrorType.CAPTCHA: RecoveryAction.ROTATE_PROXY_AND_RESTART,
    ErrorType.RATE_LIMIT: RecoveryAction.INFLATE_BACKOFF,
}


def parse_error_type(error_text: str) -> ErrorType:
    """Map an error message onto an ErrorType by pattern."""
    error_type_lower = error_text.lower()
    normalized = error_type_lower.replace("_", " ")

    if "proxy" in normalized or "tunnel" in normalized:
        return ErrorType.PROXY_ERROR
    if "timeout" in normalized or "timed out" in normalized:
        return ErrorType.TIMEOUT
    if (
        "rate limit" in normalized
        or "too many requests" in normalized
        or "429" in error_type_lower
    ):
        return ErrorType.RATE_LIMIT
    if "captcha" in normalized:
        return ErrorType.CAPTCHA
    if (
        "blocked" in normalized
        or "forbidden" in normalized
        or "access denied" in normalized
        or "403" in error_type_lower
    ):
        return ErrorType.BLOCKED
    if "net::" in error_type_lower or "network" in normalized or "connection" in normalized:
        return ErrorType.NETWORK
    if any(code in error_type_lower for code in ("500", "502", "503", "504")):
        return ErrorType.HTTP_5XX
    if any(code in error_type_lower for code in ("400", "401", "404")):
        return ErrorType.HTTP_4XX
    return ErrorType.UNKNOWN


def _classify_status(status: int) -> ErrorType:
    if status == 429:
        return ErrorType.RATE_LIMIT
    if status == 403:
        return ErrorType.BLOCKED
    if status >= 500:
        return ErrorType.HTTP_5XX
    return ErrorType.HTTP_4XX


def classify_error(error: BaseException) -> ErrorType:
    """Classify an attempt failure into the ErrorType driving recovery."""
    if isinstance(error, ScraperError) and not error.retryable:
        return ErrorType.INVALID_REQUEST
    if isinstance(error, (ScrapeTimeoutError, asyncio.TimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(error, ExtractionError):
        return ErrorType.EXTRACTION
    if isinstance(error, ProxyError):
        return ErrorType.PROXY_ERROR
    if isinstance(error, CaptchaError):
        return ErrorType.CAPTCHA
    if isinstance(error, NavigationError):
        status = error.context.get("status")
        if isinstance(status, int):
            return _classify_status(status)
        parsed = parse_error_type(str(error))
        return ErrorType.NAVIGATION if parsed == ErrorType.UNKNOWN else parsed
    # Playwright raises its own TimeoutError subclass of playwright Error
    if type(error).__name__ == "TimeoutError":
        return ErrorType.TIMEOUT
    return parse_error_type(str(error))


def recovery_for(error_type: ErrorType) -> RecoveryAction:
    return _RECOVERY.get(error_type, RecoveryAction.NONE)


def is_retryable(error_type: ErrorType) -> bool:
    return error_type != ErrorType.INVALID_REQUEST


class BackoffSchedule:
    """Capped, non-decreasing exponential delay schedule (milliseconds)."""

    def __init__(
        self,
        initial_delay_ms: float = 500,
        multiplier: float = 1.5,
        max_delay_ms: float = 5000,
        sleep: Optional[Sleep] = None,
    ):
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        self.initial_delay_ms = initial_delay_ms
        self.multiplier = multiplier
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep or asyncio.sleep
        self.current_delay_ms = min(initial_delay_ms, max_delay_ms)
        self.history: List[float] = []

    def next_delay(self) -> float:
        """Consume the current delay and advance the schedule."""
        delay = self.current_delay_ms
        self.history.append(delay)
        self.current_delay_ms = min(delay * self.multiplier, self.max_delay_ms)
        return delay

    def inflate(self, factor: float = 3.0) -> float:
        """Grow the pending delay, e.g. after a rate-limit response."""
        self.current_delay_ms = min(
            self.current_delay_ms * max(factor, 1.0), self.max_delay_ms
        )
        logger.debug("Backoff inflated to %.0fms", self.current_delay_ms)
        return self.current_delay_ms

    async def wait(self) -> float:
        delay = self.next_delay()
        if delay > 0:
            logger.debug("Waiting %.0fms before retry", delay)
            await self._sleep(delay / 1000)
        return delay

    def reset(self) -> None:
        self.current_delay_ms = min(self.initial_delay_ms, self.max_delay_ms)
        self.history.clear()
