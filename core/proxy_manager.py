"""
Egress proxy supply for browser sessions.

Providers are asked for candidates in registration order. Session-rotating
providers get asked to rotate rather than hand back the same egress. Each
candidate is probed with a small outbound request before it becomes the
current proxy. Failed proxies are quarantined in a shared
``ProxyQuarantine`` and come back on their own once the window passes.
Running without a proxy is a valid outcome, not an error.
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp

from utils.logger import get_logger, log_scrape_event

from .scraping_config import ProxySettings
from .strategy_store import ProxyQuarantine
from .types import ProxyConfig, ProxyProvider

logger = get_logger(__name__)

ProxyProbe = Callable[[ProxyConfig], Awaitable[bool]]


# ============================================================================
# Providers
# ============================================================================


class ScraperAPIProvider:
    """ScraperAPI proxy port; the API key is the proxy password."""

    name = "scraperapi"

    def __init__(
        self,
        api_key: str,
        endpoint: str = "proxy-server.scraperapi.com",
        port: int = 8001,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.port = port

    async def get_proxy(self) -> Optional[ProxyConfig]:
        if not self.api_key:
            return None
        return ProxyConfig(
            host=self.endpoint,
            port=self.port,
            username="scraperapi",
            password=self.api_key,
        )


class BrightDataProvider:
    """Bright Data super proxy; rotation picks a fresh session id."""

    name = "brightdata"

    def __init__(
        self,
        username: str,
        password: str,
        endpoint: str = "zproxy.lum-superproxy.io",
        port: int = 22225,
        rng: Optional[random.Random] = None,
    ):
        self.username = username
        self.password = password
        self.endpoint = endpoint
        self.port = port
        self._rng = rng or random.Random()

    async def get_proxy(self) -> Optional[ProxyConfig]:
        if not (self.username and self.password):
            return None
        return ProxyConfig(
            host=self.endpoint,
            port=self.port,
            username=self.username,
            password=self.password,
        )

    async def rotate_proxy(self) -> Optional[ProxyConfig]:
        if not (self.username and self.password):
            return None
        session_id = self._rng.randrange(16**8)
        return ProxyConfig(
            host=self.endpoint,
            port=self.port,
            username=f"{self.username}-session-{session_id:08x}",
            password=self.password,
        )


class SmartProxyProvider:
    """SmartProxy gateway; rotation walks the gateway port range."""

    name = "smartproxy"

    DEFAULT_ENDPOINTS = ("gate.smartproxy.com", "gate.dc.smartproxy.com")
    DEFAULT_PORTS = (10000, 10001, 10002, 10003, 10004)

    def __init__(
        self,
        username: str,
        password: str,
        endpoints: Sequence[str] = DEFAULT_ENDPOINTS,
        ports: Sequence[int] = DEFAULT_PORTS,
    ):
        self.username = username
        self.password = password
        self.endpoints = [
            (endpoint, port) for endpoint in endpoints for port in ports
        ]
        self.current_index = 0

    def _current(self) -> ProxyConfig:
        host, port = self.endpoints[self.current_index]
        return ProxyConfig(
            host=host, port=port, username=self.username, password=self.password
        )

    async def get_proxy(self) -> Optional[ProxyConfig]:
        if not (self.username and self.password) or not self.endpoints:
            return None
        return self._current()

    async def rotate_proxy(self) -> Optional[ProxyConfig]:
        if not (self.username and self.password) or not self.endpoints:
            return None
        self.current_index = (self.current_index + 1) % len(self.endpoints)
        return self._current()


def providers_from_config(settings: ProxySettings) -> List[ProxyProvider]:
    """Build providers for every entry that carries credentials."""
    providers: List[ProxyProvider] = []
    configured = settings.providers

    if configured.scraperapi and configured.scraperapi.api_key:
        providers.append(
            ScraperAPIProvider(
                configured.scraperapi.api_key,
                configured.scraperapi.endpoint,
                configured.scraperapi.port,
            )
        )
    if (
        configured.brightdata
        and configured.brightdata.username
        and configured.brightdata.password
    ):
        providers.append(
            BrightDataProvider(
                configured.brightdata.username,
                configured.brightdata.password,
                configured.brightdata.endpoint,
                configured.brightdata.port,
            )
        )
    if (
        configured.smartproxy
        and configured.smartproxy.username
        and configured.smartproxy.password
    ):
        smart = configured.smartproxy
        endpoints = [smart.endpoint] + [
            e for e in SmartProxyProvider.DEFAULT_ENDPOINTS if e != smart.endpoint
        ]
        providers.append(
            SmartProxyProvider(
                smart.username,
                smart.password,
                endpoints=endpoints,
                ports=range(smart.port, smart.port + 5),
            )
        )
    return providers


# ============================================================================
# Manager
# ============================================================================


class ProxyManager:
    """Holds at most one current proxy and rotates through providers."""

    def __init__(
        self,
        providers: Optional[Sequence[ProxyProvider]] = None,
        quarantine: Optional[ProxyQuarantine] = None,
        rotation_interval: float = 300.0,
        probe_url: str = "http://httpbin.org/ip",
        probe_timeout: float = 10.0,
        enabled: bool = True,
        probe: Optional[ProxyProbe] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.providers: List[ProxyProvider] = list(providers or [])
        self.quarantine = quarantine if quarantine is not None else ProxyQuarantine()
        self.rotation_interval = rotation_interval
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self.enabled = enabled
        self._probe = probe or self._http_probe
        self._clock = clock

        self.current_proxy: Optional[ProxyConfig] = None
        self._selected_at: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self.stats: Dict[str, Any] = {
            "rotations": 0,
            "probes": 0,
            "probe_failures": 0,
            "marked_failed": 0,
            "no_proxy_available": 0,
        }

        if self.enabled and not self.providers:
            logger.info("Proxy support enabled but no provider is configured")

    @classmethod
    def from_config(
        cls, settings: ProxySettings, quarantine: Optional[ProxyQuarantine] = None
    ) -> "ProxyManager":
        return cls(
            providers=providers_from_config(settings),
            quarantine=quarantine
            or ProxyQuarantine(window_seconds=settings.quarantine_minutes * 60),
            rotation_interval=settings.rotation_interval / 1000,
            probe_url=settings.probe_url,
            probe_timeout=settings.probe_timeout,
            enabled=settings.enabled,
        )

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.providers)

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _rotation_due(self) -> bool:
        if self._selected_at is None:
            return True
        return self._clock() - self._selected_at >= self.rotation_interval

    async def get_working_proxy(self) -> Optional[ProxyConfig]:
        """Current proxy if still fresh and not quarantined, otherwise rotate."""
        if not self.active:
            return None

        current = self.current_proxy
        if (
            current is not None
            and not self._rotation_due()
            and not self.quarantine.is_quarantined(current.key)
        ):
            return current
        return await self.rotate_proxy()

    async def rotate_proxy(self) -> Optional[ProxyConfig]:
        if not self.active:
            return None

        async with self._get_lock():
            self.stats["rotations"] += 1
            for provider in self.providers:
                candidate = await self._candidate_from(provider)
                if candidate is None:
                    continue
                if self.quarantine.is_quarantined(candidate.key):
                    logger.debug(
                        "Skipping quarantined proxy %s from %s",
                        candidate.key,
                        provider.name,
                    )
                    continue

                self.stats["probes"] += 1
                if await self._safe_probe(candidate):
                    self.current_proxy = candidate
                    self._selected_at = self._clock()
                    log_scrape_event(
                        "proxy",
                        {"provider": provider.name, "proxy": candidate.key, "action": "selected"},
                    )
                    return candidate

                self.stats["probe_failures"] += 1
                self.quarantine.quarantine(candidate.key)

            self.current_proxy = None
            self._selected_at = None
            self.stats["no_proxy_available"] += 1
            logger.warning("No working proxy available, continuing without proxy")
            return None

    def mark_failed(self, proxy: Optional[ProxyConfig] = None) -> None:
        proxy = proxy or self.current_proxy
        if proxy is None:
            return
        self.quarantine.quarantine(proxy.key)
        self.stats["marked_failed"] += 1
        if self.current_proxy is not None and self.current_proxy.key == proxy.key:
            self.current_proxy = None
            self._selected_at = None
        log_scrape_event("proxy", {"proxy": proxy.key, "action": "marked_failed"}, "WARNING")

    def clear_failed(self) -> None:
        self.quarantine.clear()

    async def _candidate_from(self, provider: ProxyProvider) -> Optional[ProxyConfig]:
        rotate = getattr(provider, "rotate_proxy", None)
        try:
            if rotate is not None:
                return await rotate()
            return await provider.get_proxy()
        except Exception as e:  # noqa: BLE001
            logger.warning("Proxy provider %s failed: %s", provider.name, e)
            return None

    async def _safe_probe(self, proxy: ProxyConfig) -> bool:
        try:
            return bool(await self._probe(proxy))
        except Exception as e:  # noqa: BLE001
            logger.debug("Proxy probe for %s raised: %s", proxy.key, e, exc_info=True)
            return False

    async def _http_probe(self, proxy: ProxyConfig) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.probe_url, proxy=proxy.to_url()) as response:
                ok = 200 <= response.status < 300
                if not ok:
                    logger.debug(
                        "Proxy %s probe answered HTTP %s", proxy.key, response.status
                    )
                return ok
