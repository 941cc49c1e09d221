"""
Browser session lifecycle for one scrape call.

A session is one Playwright driver, browser, context and page configured
for a strategy. Configuration covers viewport, navigation timeout, request
interception for blocked resource types, a user agent fixed for the
session's lifetime, and stealth overrides. Closing always releases every
layer and is idempotent.
"""

import logging
import random
import time
from typing import Any, Callable, Dict, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from utils.error_handling import BrowserLaunchError

from .human_behavior import HUMAN_BEHAVIOR_INIT_SCRIPT
from .scraping_config import SCREEN_RESOLUTIONS, BrowserSettings
from .types import ProxyConfig, StrategyConfig
from .user_agent_rotator import UserAgentRotator

EXTRA_HTTP_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Cache-Control": "max-age=0",
}

STEALTH_INIT_SCRIPT = """
(() => {
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });

    Object.defineProperty(navigator, 'plugins', {
        get: () => [
            { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format', length: 1 },
            { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: '', length: 1 },
            { name: 'Native Client', filename: 'internal-nacl-plugin', description: '', length: 2 },
        ],
    });

    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });

    if (window.navigator.permissions && window.navigator.permissions.query) {
        const originalQuery = window.navigator.permissions.query.bind(window.navigator.permissions);
        window.navigator.permissions.query = (parameters) =>
            parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery(parameters);
    }

    if (!window.chrome) {
        Object.defineProperty(window, 'chrome', {
            writable: true,
            enumerable: true,
            configurable: false,
            value: { runtime: { onConnect: undefined, onMessage: undefined, connect: undefined, sendMessage: undefined } },
        });
    }

    if (window.WebGLRenderingContext) {
        const originalGetParameter = WebGLRenderingContext.prototype.getParameter;
        WebGLRenderingContext.prototype.getParameter = function (parameter) {
            if (parameter === 37445) {
                return 'Intel Inc.';
            }
            if (parameter === 37446) {
                return 'Intel Iris OpenGL Engine';
            }
            return originalGetParameter.call(this, parameter);
        };
    }
})();
"""


class BrowserSession:
    """Live browser resources owned by one scrape call."""

    def __init__(
        self,
        playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        strategy: StrategyConfig,
        user_agent: str,
        proxy: Optional[ProxyConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.strategy = strategy
        self.user_agent = user_agent
        self.proxy = proxy
        self.created_at = time.monotonic()
        self.closed = False
        self.logger = logger or logging.getLogger(__name__)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._safe_close_page()
        await self._safe_close_context()
        await self._safe_close_browser()
        await self._safe_stop_playwright()
        self.logger.debug("Browser session closed (%s)", self.strategy.name.value)

    async def _safe_close_page(self) -> None:
        if self.page is None:
            return
        try:
            await self.page.close()
        except Exception:
            self.logger.debug("Failed to close Playwright page", exc_info=True)

    async def _safe_close_context(self) -> None:
        if self.context is None:
            return
        try:
            await self.context.close()
        except Exception:
            self.logger.debug("Failed to close Playwright context", exc_info=True)

    async def _safe_close_browser(self) -> None:
        if self.browser is None:
            return
        try:
            await self.browser.close()
        except Exception:
            self.logger.debug("Failed to close Playwright browser", exc_info=True)

    async def _safe_stop_playwright(self) -> None:
        if self.playwright is None:
            return
        try:
            await self.playwright.stop()
        except Exception:
            self.logger.debug("Failed to stop Playwright driver", exc_info=True)

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class SessionController:
    """Launches strategy-configured browser sessions and tears them down."""

    def __init__(
        self,
        settings: Optional[BrowserSettings] = None,
        user_agents: Optional[UserAgentRotator] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or BrowserSettings()
        self.user_agents = user_agents or UserAgentRotator()
        self._playwright_factory = playwright_factory
        self.rng = rng or random.Random()
        self.logger = logger or logging.getLogger(__name__)
        self.metrics = {"launched": 0, "closed": 0, "launch_failures": 0}

    async def launch(
        self,
        strategy: StrategyConfig,
        proxy: Optional[ProxyConfig] = None,
        user_agent: Optional[str] = None,
    ) -> BrowserSession:
        user_agent = user_agent or self.user_agents.get_random_user_agent()
        playwright = browser = context = page = None
        try:
            playwright = await self._playwright_factory().start()
            browser_type = getattr(playwright, self.settings.browser_type)
            browser = await browser_type.launch(**self._build_launch_options(proxy))
            context = await browser.new_context(
                **self._build_context_options(strategy, user_agent)
            )
            context.set_default_timeout(self.settings.timeout)
            context.set_default_navigation_timeout(strategy.navigation_timeout_ms)
            await self._apply_context_optimizations(context, strategy)
            page = await context.new_page()
        except Exception as e:
            self.metrics["launch_failures"] += 1
            partial = BrowserSession(
                playwright, browser, context, page, strategy, user_agent, proxy, self.logger
            )
            await partial.close()
            raise BrowserLaunchError(
                f"Failed to launch browser session: {e}",
                {"strategy": strategy.name.value, "proxy": proxy.key if proxy else None},
            ) from e

        self.metrics["launched"] += 1
        self.logger.debug(
            "Launched %s session (proxy=%s, viewport=%sx%s)",
            strategy.name.value,
            proxy.key if proxy else None,
            strategy.viewport.width,
            strategy.viewport.height,
        )
        return BrowserSession(
            playwright, browser, context, page, strategy, user_agent, proxy, self.logger
        )

    async def close(self, session: Optional[BrowserSession]) -> None:
        if session is None or session.closed:
            return
        await session.close()
        self.metrics["closed"] += 1

    def _build_launch_options(self, proxy: Optional[ProxyConfig]) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "headless": self.settings.headless,
            "args": list(self.settings.args),
        }
        if self.settings.slow_mo:
            options["slow_mo"] = self.settings.slow_mo
        if proxy is not None:
            options["proxy"] = proxy.to_playwright()
        return options

    def _build_context_options(
        self, strategy: StrategyConfig, user_agent: str
    ) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "viewport": strategy.viewport.as_dict(),
            "user_agent": user_agent,
            "locale": self.settings.locale,
            "extra_http_headers": dict(EXTRA_HTTP_HEADERS),
        }
        if strategy.stealth_enabled:
            width, height = self.rng.choice(SCREEN_RESOLUTIONS)
            width = max(width, strategy.viewport.width)
            height = max(height, strategy.viewport.height)
            options["screen"] = {"width": width, "height": height}
        return options

    async def _apply_context_optimizations(
        self, context: BrowserContext, strategy: StrategyConfig
    ) -> None:
        if strategy.stealth_enabled:
            await context.add_init_script(STEALTH_INIT_SCRIPT)
        if strategy.human_behavior_enabled:
            await context.add_init_script(HUMAN_BEHAVIOR_INIT_SCRIPT)

        blocked = strategy.resource_blocking.blocked_resource_types()
        if blocked:

            async def _route_handler(route, request) -> None:
                if request.resource_type in blocked:
                    await route.abort()
                    return
                await route.continue_()

            await context.route("**/*", _route_handler)
