import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from utils.config_loader import DEFAULT_CONFIG_PATH
from utils.error_handling import (
    ErrorContext,
    ErrorReporter,
    ExtractionError,
    NavigationError,
    ScrapeTimeoutError,
    ScraperError,
)
from utils.logger import configure_from_dict, get_logger, log_strategy_event

from .browser_session import SessionController
from .captcha_solver import CaptchaManager
from .exponential_backoff import BackoffSchedule, ErrorType, classify_error
from .extraction import ExtractionDispatcher
from .proxy_manager import ProxyManager
from .rate_limiter import RateLimitGate
from .retry_coordinator import RetryCoordinator
from .robots_checker import RobotsTxtChecker
from .scraping_config import ScrapingConfig, load_scraping_config
from .site_analyzer import SiteAnalyzer
from .strategy_selector import StrategySelection, StrategySelector
from .strategy_store import DomainStrategyStore, ProxyQuarantine
from .types import (
    ScrapeMetadata,
    ScrapeRequest,
    ScrapeResponse,
    ScrapeResult,
    ScrapingStrategy,
    SiteAnalysis,
    SiteAnalysisSummary,
)
from .user_agent_rotator import UserAgentRotator

logger = get_logger(__name__)

DEGRADED_DOMAIN = "unknown"

TIMEOUT_SUGGESTIONS = [
    "The page took too long to load. Try a simpler page or more specific extraction.",
    "Some sites block automated access - try again later.",
    "For complex sites, try extracting specific elements instead of everything.",
]
NAVIGATION_SUGGESTIONS = [
    "The page could not be accessed. Check if the URL is correct.",
    "The site might be down or blocking automated requests.",
    'Try adding "https://" to the URL if missing.',
]
EXTRACTION_SUGGESTIONS = [
    "No data could be extracted with the given specification.",
    "Try using different keywords or CSS selectors.",
    "The page structure might not match your extraction criteria.",
]
DEFAULT_SUGGESTIONS = [
    "Try again with a different extraction specification.",
    "Some sites require specific approaches - the system will learn and adapt.",
    "For best results, use simple sites like news articles or blogs.",
]

_NAVIGATION_TYPES = {
    ErrorType.NAVIGATION,
    ErrorType.BLOCKED,
    ErrorType.NETWORK,
    ErrorType.HTTP_4XX,
    ErrorType.HTTP_5XX,
    ErrorType.RATE_LIMIT,
    ErrorType.PROXY_ERROR,
    ErrorType.INVALID_REQUEST,
}


def suggestions_for(error: Optional[BaseException]) -> List[str]:
    """Caller-facing hints for a terminal failure."""
    if error is None:
        return list(DEFAULT_SUGGESTIONS)
    error_type = classify_error(error)
    if error_type == ErrorType.TIMEOUT:
        return list(TIMEOUT_SUGGESTIONS)
    if isinstance(error, NavigationError) or error_type in _NAVIGATION_TYPES:
        return list(NAVIGATION_SUGGESTIONS)
    if isinstance(error, ExtractionError) or error_type == ErrorType.EXTRACTION:
        return list(EXTRACTION_SUGGESTIONS)
    return list(DEFAULT_SUGGESTIONS)


@dataclass
class _ChainProgress:
    """What the fallback drive has done so far, readable after cancellation."""

    strategies_tried: List[ScrapingStrategy] = field(default_factory=list)
    coordinators: List[RetryCoordinator] = field(default_factory=list)
    last_result: Optional[ScrapeResult] = None

    @property
    def attempts(self) -> int:
        return sum(c.retry.attempt for c in self.coordinators)

    @property
    def current(self) -> Optional[RetryCoordinator]:
        return self.coordinators[-1] if self.coordinators else None


class AdaptiveScraper:
    """
    Adaptive scraping engine.

    Analyses the target site, picks a strategy and its fallback chain, and
    runs each strategy through a RetryCoordinator until one succeeds, the
    chain is exhausted or the overall deadline fires. Every collaborator is
    injectable; the defaults are built from ``ScrapingConfig``.
    """

    def __init__(
        self,
        config: Optional[ScrapingConfig] = None,
        store: Optional[DomainStrategyStore] = None,
        quarantine: Optional[ProxyQuarantine] = None,
        analyzer: Optional[SiteAnalyzer] = None,
        selector: Optional[StrategySelector] = None,
        session_controller: Optional[SessionController] = None,
        proxy_manager: Optional[ProxyManager] = None,
        captcha_manager: Optional[CaptchaManager] = None,
        dispatcher: Optional[ExtractionDispatcher] = None,
        rate_gate: Optional[RateLimitGate] = None,
        robots_checker: Optional[RobotsTxtChecker] = None,
        user_agents: Optional[UserAgentRotator] = None,
        error_reporter: Optional[ErrorReporter] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or ScrapingConfig()
        self.store = store if store is not None else DomainStrategyStore()
        self.quarantine = (
            quarantine
            if quarantine is not None
            else ProxyQuarantine(window_seconds=self.config.proxy.quarantine_minutes * 60)
        )
        self.rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

        self.analyzer = analyzer or SiteAnalyzer()
        self.selector = selector or StrategySelector(
            self.store, default_max_attempts=self.config.retry.max_attempts
        )
        self.user_agents = user_agents or UserAgentRotator(rng=self.rng)
        self.session_controller = session_controller or SessionController(
            self.config.browser, user_agents=self.user_agents, rng=self.rng
        )
        self.proxy_manager = proxy_manager or ProxyManager.from_config(
            self.config.proxy, quarantine=self.quarantine
        )
        self.captcha_manager = captcha_manager or CaptchaManager.from_config(
            self.config.captcha
        )
        self.dispatcher = dispatcher or ExtractionDispatcher()
        self.rate_gate = rate_gate or RateLimitGate(
            requests_per_minute=self.config.rate_limit.requests_per_minute,
            concurrent=self.config.rate_limit.concurrent,
            enabled=self.config.rate_limit.enabled,
            sleep=self._sleep,
        )
        self.robots_checker = robots_checker or RobotsTxtChecker.from_config(
            self.config.robots
        )
        self.error_reporter = error_reporter or ErrorReporter()

        self.stats: Dict[str, Any] = {
            "requests": 0,
            "successes": 0,
            "failures": 0,
            "timeouts": 0,
        }

    @classmethod
    def from_config(
        cls, config_path: Optional[str] = DEFAULT_CONFIG_PATH, **overrides: Any
    ) -> "AdaptiveScraper":
        config = load_scraping_config(config_path)
        configure_from_dict(config.logging.model_dump())
        return cls(config, **overrides)

    @property
    def overall_timeout_seconds(self) -> float:
        return self.config.deadlines.overall_timeout / 1000

    async def scrape(
        self, request: Union[ScrapeRequest, Mapping[str, Any]]
    ) -> ScrapeResponse:
        started = time.monotonic()
        self.stats["requests"] += 1

        try:
            if not isinstance(request, ScrapeRequest):
                request = ScrapeRequest.model_validate(request)
        except ValidationError as e:
            self.stats["failures"] += 1
            logger.warning("Rejected scrape request: %s", e)
            return ScrapeResponse(
                success=False,
                error="URL and extraction specification are required",
                suggestions=list(NAVIGATION_SUGGESTIONS),
                metadata=ScrapeMetadata(processing_time_ms=self._elapsed_ms(started)),
            )

        analysis = self.analyzer.analyze(request.url)
        selection = self.selector.select(analysis)
        logger.info(
            "Scraping %s (category=%s, complexity=%s, strategy=%s)",
            request.url,
            analysis.category.value,
            analysis.complexity.value,
            selection.strategy.value,
        )

        progress = _ChainProgress()
        async with self.rate_gate.slot():
            try:
                result = await asyncio.wait_for(
                    self._drive_chain(request, analysis, selection, progress),
                    timeout=self.overall_timeout_seconds,
                )
            except asyncio.TimeoutError:
                self.stats["timeouts"] += 1
                error = ScrapeTimeoutError(
                    f"Scraping timed out after {self.config.deadlines.overall_timeout}ms. "
                    "Try a simpler page.",
                    {
                        "url": request.url,
                        "strategies_tried": [s.value for s in progress.strategies_tried],
                    },
                )
                logger.error("Overall deadline reached for %s", request.url)
                current = progress.current
                result = ScrapeResult(
                    success=False,
                    error=error,
                    metadata=current.metadata_snapshot(started) if current is not None else {},
                )

        return self._build_response(request, analysis, selection, progress, result, started)

    async def scrape_many(
        self, requests: Sequence[Union[ScrapeRequest, Mapping[str, Any]]]
    ) -> List[ScrapeResponse]:
        """Scrape several targets; ``scrape`` bounds how many run at once."""
        return list(await asyncio.gather(*(self.scrape(r) for r in requests)))

    async def _drive_chain(
        self,
        request: ScrapeRequest,
        analysis: SiteAnalysis,
        selection: StrategySelection,
        progress: _ChainProgress,
    ) -> ScrapeResult:
        max_attempts = self.selector.max_attempts_for(analysis)
        result: Optional[ScrapeResult] = None

        for strategy in selection.chain:
            progress.strategies_tried.append(strategy)
            coordinator = self._coordinator_for(request, strategy, max_attempts)
            progress.coordinators.append(coordinator)

            result = await coordinator.run()
            progress.last_result = result

            if result.success:
                self._record(analysis, strategy, success=True)
                return result

            self._record(analysis, strategy, success=False)
            if isinstance(result.error, ScraperError) and not result.error.retryable:
                break
            logger.info(
                "Strategy %s failed for %s, advancing fallback chain",
                strategy.value,
                analysis.domain,
            )

        return result

    def _coordinator_for(
        self, request: ScrapeRequest, strategy: ScrapingStrategy, max_attempts: int
    ) -> RetryCoordinator:
        strategy_config = self.selector.strategy_config(strategy)
        retry = self.config.retry
        navigation_timeout = min(
            request.timeout or strategy_config.navigation_timeout_ms,
            self.config.deadlines.per_strategy_timeout,
        )
        return RetryCoordinator(
            request,
            strategy_config,
            self.session_controller,
            self.dispatcher,
            max_attempts=max_attempts,
            backoff=BackoffSchedule(
                initial_delay_ms=retry.initial_delay,
                multiplier=retry.backoff_multiplier,
                max_delay_ms=retry.max_delay,
                sleep=self._sleep,
            ),
            proxy_manager=self.proxy_manager,
            captcha_manager=self.captcha_manager,
            rate_gate=self.rate_gate,
            robots_checker=self.robots_checker,
            human_settings=self.config.human_behavior,
            user_agents=self.user_agents,
            navigation_timeout_ms=navigation_timeout,
            sleep=self._sleep,
            rng=self.rng,
        )

    def _record(self, analysis: SiteAnalysis, strategy: ScrapingStrategy, success: bool) -> None:
        if analysis.domain == DEGRADED_DOMAIN:
            return
        if success:
            self.selector.record_success(analysis.domain, strategy)
        else:
            self.selector.record_failure(analysis.domain, strategy)

    def _build_response(
        self,
        request: ScrapeRequest,
        analysis: SiteAnalysis,
        selection: StrategySelection,
        progress: _ChainProgress,
        result: ScrapeResult,
        started: float,
    ) -> ScrapeResponse:
        details = result.metadata or {}
        metadata = ScrapeMetadata(
            processing_time_ms=self._elapsed_ms(started),
            elements_found=details.get("elements_found", 0),
            extraction_method=details.get("extraction_method"),
            attempts=progress.attempts,
            proxy_used=details.get("proxy_used"),
            user_agent=details.get("user_agent") or request.user_agent,
            strategy_used=progress.strategies_tried[-1] if result.success else None,
            strategies_tried=list(progress.strategies_tried),
            captcha_solved=any(c.captcha_solved for c in progress.coordinators),
            site_analysis=SiteAnalysisSummary(
                category=analysis.category,
                complexity=analysis.complexity,
                strategy=selection.strategy,
            ),
        )

        if result.success:
            self.stats["successes"] += 1
            log_strategy_event(
                analysis.domain,
                metadata.strategy_used.value,
                "completed",
                attempts=metadata.attempts,
                elements=metadata.elements_found,
            )
            return ScrapeResponse(success=True, data=result.data, metadata=metadata)

        self.stats["failures"] += 1
        error = result.error
        self.error_reporter.report_error(
            error or ScraperError("Scraping failed"),
            ErrorContext(
                url=request.url,
                extraction_spec=request.extraction_spec,
                strategy=progress.strategies_tried[-1].value if progress.strategies_tried else None,
                attempt=metadata.attempts,
                proxy=metadata.proxy_used,
            ),
        )
        logger.error("Scraping %s failed: %s", request.url, error)
        return ScrapeResponse(
            success=False,
            error=str(error) if error is not None else "An unexpected error occurred",
            suggestions=suggestions_for(error),
            metadata=metadata,
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "proxy": dict(self.proxy_manager.stats),
            "captcha": {k: dict(v) for k, v in self.captcha_manager.solve_stats.items()},
            "rate_limit": dict(self.rate_gate.stats),
            "sessions": dict(self.session_controller.metrics),
            "errors": self.error_reporter.get_error_stats(),
            "domains": self.store.snapshot(),
        }
