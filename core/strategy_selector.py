"""
Strategy selection and fallback ordering.

Combines the static site analysis with what the shared
``DomainStrategyStore`` learned from earlier scrapes of the same domain.
"""

from typing import Dict, List, NamedTuple, Optional, Tuple

from utils.logger import get_logger

from .strategy_store import DomainStrategyStore
from .types import (
    ResourceBlocking,
    ScrapingStrategy,
    SiteAnalysis,
    SiteComplexity,
    StrategyConfig,
    Viewport,
)

logger = get_logger(__name__)

STRATEGIES: Dict[ScrapingStrategy, StrategyConfig] = {
    ScrapingStrategy.FAST: StrategyConfig(
        name=ScrapingStrategy.FAST,
        resource_blocking=ResourceBlocking(images=True, css=True, fonts=True, media=True),
        stealth_enabled=False,
        human_behavior_enabled=False,
        navigation_timeout_ms=3000,
        viewport=Viewport(1024, 768),
        wait_time_ms=200,
    ),
    ScrapingStrategy.BALANCED: StrategyConfig(
        name=ScrapingStrategy.BALANCED,
        resource_blocking=ResourceBlocking(images=True, css=False, fonts=True, media=True),
        stealth_enabled=True,
        human_behavior_enabled=False,
        navigation_timeout_ms=5000,
        viewport=Viewport(1366, 768),
        wait_time_ms=500,
    ),
    ScrapingStrategy.STEALTH: StrategyConfig(
        name=ScrapingStrategy.STEALTH,
        resource_blocking=ResourceBlocking(),
        stealth_enabled=True,
        human_behavior_enabled=True,
        navigation_timeout_ms=8000,
        viewport=Viewport(1920, 1080),
        wait_time_ms=1000,
    ),
}

# Stealth always comes before fast: a failed low-stealth attempt is more
# likely detection than load time.
FALLBACK_CHAINS: Dict[ScrapingStrategy, Tuple[ScrapingStrategy, ...]] = {
    ScrapingStrategy.FAST: (
        ScrapingStrategy.FAST,
        ScrapingStrategy.BALANCED,
        ScrapingStrategy.STEALTH,
    ),
    ScrapingStrategy.BALANCED: (
        ScrapingStrategy.BALANCED,
        ScrapingStrategy.STEALTH,
        ScrapingStrategy.FAST,
    ),
    ScrapingStrategy.STEALTH: (
        ScrapingStrategy.STEALTH,
        ScrapingStrategy.BALANCED,
        ScrapingStrategy.FAST,
    ),
}

COMPLEX_SITE_MAX_ATTEMPTS = 3


class StrategySelection(NamedTuple):
    strategy: ScrapingStrategy
    chain: List[ScrapingStrategy]


def strategy_config(strategy: ScrapingStrategy) -> StrategyConfig:
    return STRATEGIES[ScrapingStrategy(strategy)]


def fallback_chain(initial: ScrapingStrategy) -> List[ScrapingStrategy]:
    return list(FALLBACK_CHAINS[ScrapingStrategy(initial)])


class StrategySelector:
    """Picks the initial strategy and the ordered chain to fall back through."""

    def __init__(
        self,
        store: Optional[DomainStrategyStore] = None,
        default_max_attempts: int = 2,
    ) -> None:
        self.store = store if store is not None else DomainStrategyStore()
        self.default_max_attempts = default_max_attempts

    def select(self, analysis: SiteAnalysis) -> StrategySelection:
        """Return ``(strategy, chain)`` for ``analysis``.

        A strategy that already succeeded for the domain wins over the
        heuristic recommendation. Strategies recorded as failed are moved
        out of the chain unless every entry has failed, in which case the
        full fixed chain is tried again.
        """
        domain = analysis.domain
        cached = self.store.successful_strategy(domain)
        initial = cached or analysis.recommended_strategy
        full_chain = fallback_chain(initial)

        failed = self.store.failed_strategies(domain)
        chain = [s for s in full_chain if s == cached or s not in failed]
        if not chain:
            logger.info(
                "Every strategy has failed before for %s, retrying full chain", domain
            )
            chain = full_chain

        logger.debug(
            "Selected %s for %s (cached=%s, chain=%s)",
            chain[0].value,
            domain,
            cached.value if cached else None,
            [s.value for s in chain],
        )
        return StrategySelection(chain[0], chain)

    def strategy_config(self, strategy: ScrapingStrategy) -> StrategyConfig:
        return strategy_config(strategy)

    def max_attempts_for(self, analysis: SiteAnalysis) -> int:
        if analysis.complexity == SiteComplexity.COMPLEX:
            return max(COMPLEX_SITE_MAX_ATTEMPTS, self.default_max_attempts)
        return self.default_max_attempts

    def record_success(self, domain: str, strategy: ScrapingStrategy) -> None:
        self.store.record_success(domain, strategy)

    def record_failure(self, domain: str, strategy: ScrapingStrategy) -> None:
        self.store.record_failure(domain, strategy)
