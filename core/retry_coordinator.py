"""
Attempt state machine for one strategy of one scrape call.

States run ``IDLE -> PREPARING -> NAVIGATING -> INTERACTING -> EXTRACTING``
and end in ``SUCCEEDED`` or ``FAILED``. Each transition is a method that
returns the next state; ``run()`` is the only loop. Any exception raised by
a transition goes through ``_fail``, which either schedules another attempt
(back to ``IDLE`` after recovery and backoff) or ends the machine.
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from utils.error_handling import InvalidURLError, NavigationError, ScrapeTimeoutError
from utils.logger import get_logger, log_scrape_event

from .browser_session import BrowserSession, SessionController
from .captcha_solver import CaptchaManager
from .exponential_backoff import (
    BackoffSchedule,
    RecoveryAction,
    classify_error,
    is_retryable,
    recovery_for,
)
from .extraction import ExtractionDispatcher
from .human_behavior import HumanBehaviorSimulator
from .proxy_manager import ProxyManager
from .rate_limiter import RateLimitGate
from .robots_checker import RobotsTxtChecker
from .scraping_config import HumanBehaviorSettings
from .types import RetryState, ScrapeRequest, ScrapeResult, ScrapeState, StrategyConfig
from .user_agent_rotator import UserAgentRotator

logger = get_logger(__name__)

RATE_LIMIT_BACKOFF_FACTOR = 3.0


def validate_url(url: str) -> None:
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise InvalidURLError("Invalid URL provided", {"url": url})


class RetryCoordinator:
    """Drives up to ``max_attempts`` attempts of one strategy."""

    def __init__(
        self,
        request: ScrapeRequest,
        strategy: StrategyConfig,
        session_controller: SessionController,
        dispatcher: ExtractionDispatcher,
        max_attempts: int = 2,
        backoff: Optional[BackoffSchedule] = None,
        proxy_manager: Optional[ProxyManager] = None,
        captcha_manager: Optional[CaptchaManager] = None,
        rate_gate: Optional[RateLimitGate] = None,
        robots_checker: Optional[RobotsTxtChecker] = None,
        human_settings: Optional[HumanBehaviorSettings] = None,
        user_agents: Optional[UserAgentRotator] = None,
        navigation_timeout_ms: Optional[int] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.request = request
        self.strategy = strategy
        self.session_controller = session_controller
        self.dispatcher = dispatcher
        self.proxy_manager = proxy_manager
        self.captcha_manager = captcha_manager
        self.rate_gate = rate_gate
        self.robots_checker = robots_checker
        self.human_settings = human_settings or HumanBehaviorSettings()
        self.user_agents = user_agents
        self.navigation_timeout_ms = (
            navigation_timeout_ms or request.timeout or strategy.navigation_timeout_ms
        )
        self._sleep = sleep or asyncio.sleep
        self.rng = rng or random.Random()
        self.backoff = backoff or BackoffSchedule(sleep=self._sleep)

        self.retry = RetryState(
            max_attempts=max_attempts, backoff_delay_ms=self.backoff.current_delay_ms
        )
        self.session: Optional[BrowserSession] = None
        self.payload: Optional[Dict[str, Any]] = None
        self.captcha_solved = False
        self.robots_result: Optional[Dict[str, Any]] = None
        self.proxy_used: Optional[str] = None
        self.user_agent: Optional[str] = request.user_agent
        self._human: Optional[HumanBehaviorSimulator] = None

        self._transitions = {
            ScrapeState.IDLE: self._prepare,
            ScrapeState.PREPARING: self._ensure_session,
            ScrapeState.NAVIGATING: self._navigate,
            ScrapeState.INTERACTING: self._interact,
            ScrapeState.EXTRACTING: self._extract,
        }

    @property
    def state(self) -> ScrapeState:
        return self.retry.state

    @property
    def human_behavior_enabled(self) -> bool:
        return self.strategy.human_behavior_enabled and self.human_settings.enabled

    async def run(self) -> ScrapeResult:
        started = time.monotonic()
        try:
            while self.retry.state not in (ScrapeState.SUCCEEDED, ScrapeState.FAILED):
                transition = self._transitions[self.retry.state]
                try:
                    self.retry.state = await transition()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.retry.state = await self._fail(e)
        finally:
            await self._close_session()

        success = self.retry.state == ScrapeState.SUCCEEDED
        if self.user_agents is not None:
            self.user_agents.record_result(self.user_agent, success)
        return ScrapeResult(
            success=success,
            data=self.payload if success else None,
            error=None if success else self.retry.last_error,
            metadata=self.metadata_snapshot(started),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _prepare(self) -> ScrapeState:
        self.retry.attempt += 1
        log_scrape_event(
            "attempt",
            {
                "url": self.request.url,
                "strategy": self.strategy.name.value,
                "attempt": self.retry.attempt,
                "max_attempts": self.retry.max_attempts,
            },
        )
        validate_url(self.request.url)
        if self.rate_gate is not None:
            await self.rate_gate.acquire()
        if self.robots_checker is not None and self.robots_result is None:
            self.robots_result = await self.robots_checker.check_url_allowed(
                self.request.url
            )
        return ScrapeState.PREPARING

    async def _ensure_session(self) -> ScrapeState:
        if self.session is None or self.session.closed:
            proxy = None
            if self.proxy_manager is not None:
                proxy = await self.proxy_manager.get_working_proxy()
            self.session = await self.session_controller.launch(
                self.strategy, proxy=proxy, user_agent=self.request.user_agent
            )
            self._human = None
        self.user_agent = self.session.user_agent
        self.proxy_used = self.session.proxy.key if self.session.proxy else None
        return ScrapeState.NAVIGATING

    async def _navigate(self) -> ScrapeState:
        page = self.session.page
        try:
            response = await page.goto(
                self.request.url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise ScrapeTimeoutError(
                f"Navigation timed out after {self.navigation_timeout_ms}ms",
                {"url": self.request.url, "strategy": self.strategy.name.value},
            ) from e
        except PlaywrightError as e:
            raise NavigationError(
                f"Navigation failed: {e.message}", {"url": self.request.url}
            ) from e

        status = response.status if response is not None else None
        if status is None or not 200 <= status < 300:
            raise NavigationError(
                f"HTTP {status}: Failed to load page",
                {"status": status, "url": self.request.url},
            )

        if self.strategy.wait_time_ms:
            await self._sleep(self.strategy.wait_time_ms / 1000)
        return ScrapeState.INTERACTING

    async def _interact(self) -> ScrapeState:
        page = self.session.page
        human = self._human_for(page) if self.human_behavior_enabled else None

        if human is not None:
            await human.best_effort(
                human.simulate_reading, self.human_settings.reading_time
            )

        if self.captcha_manager is not None and self.captcha_manager.active:
            try:
                if await self.captcha_manager.handle(page):
                    self.captcha_solved = True
            except Exception as e:  # noqa: BLE001
                logger.warning("Captcha handling failed on %s: %s", self.request.url, e)

        if human is not None:
            await human.best_effort(human.random_interactions)
        return ScrapeState.EXTRACTING

    async def _extract(self) -> ScrapeState:
        self.payload = await self.dispatcher.extract(
            self.session.page, self.request.extraction_spec, self.request.url
        )
        log_scrape_event(
            "attempt",
            {
                "url": self.request.url,
                "strategy": self.strategy.name.value,
                "attempt": self.retry.attempt,
                "outcome": "success",
                "elements": self.payload.get("totalElements", 0),
            },
        )
        return ScrapeState.SUCCEEDED

    async def _fail(self, error: BaseException) -> ScrapeState:
        self.retry.last_error = error
        error_type = classify_error(error)
        logger.warning(
            "Attempt %d/%d with %s strategy failed (%s): %s",
            self.retry.attempt,
            self.retry.max_attempts,
            self.strategy.name.value,
            error_type.value,
            error,
        )

        if not is_retryable(error_type) or not self.retry.attempts_remaining:
            log_scrape_event(
                "attempt",
                {
                    "url": self.request.url,
                    "strategy": self.strategy.name.value,
                    "attempt": self.retry.attempt,
                    "outcome": "failed",
                    "error_type": error_type.value,
                },
                "WARNING",
            )
            return ScrapeState.FAILED

        action = recovery_for(error_type)
        if action == RecoveryAction.ROTATE_PROXY_AND_RESTART:
            await self._rotate_and_restart()
        elif action == RecoveryAction.RESTART_SESSION:
            await self._close_session()
        elif action == RecoveryAction.INFLATE_BACKOFF:
            self.backoff.inflate(RATE_LIMIT_BACKOFF_FACTOR)

        delay = await self.backoff.wait()
        self.retry.delays_ms.append(delay)
        self.retry.backoff_delay_ms = self.backoff.current_delay_ms
        return ScrapeState.IDLE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _rotate_and_restart(self) -> None:
        if self.proxy_manager is not None and self.proxy_manager.active:
            failed = self.session.proxy if self.session is not None else None
            if failed is not None:
                self.proxy_manager.mark_failed(failed)
            await self.proxy_manager.rotate_proxy()
        await self._close_session()

    async def _close_session(self) -> None:
        session, self.session = self.session, None
        self._human = None
        if session is not None:
            await self.session_controller.close(session)

    def _human_for(self, page) -> HumanBehaviorSimulator:
        if self._human is None:
            settings = self.human_settings
            self._human = HumanBehaviorSimulator(
                page,
                rng=self.rng,
                sleep=self._sleep,
                mouse_movement=settings.mouse_movement,
                scroll_behavior=settings.scroll_behavior,
                random_delays=settings.random_delays,
                idle_delay_range=(settings.min_delay, settings.max_delay),
            )
        return self._human

    def metadata_snapshot(self, started: float) -> Dict[str, Any]:
        payload = self.payload or {}
        return {
            "processing_time_ms": int((time.monotonic() - started) * 1000),
            "elements_found": payload.get("totalElements", 0),
            "extraction_method": payload.get("extractionMethod"),
            "attempts": self.retry.attempt,
            "proxy_used": self.proxy_used,
            "user_agent": self.user_agent,
            "captcha_solved": self.captcha_solved,
            "strategy": self.strategy.name.value,
            "delays_ms": list(self.retry.delays_ms),
        }
