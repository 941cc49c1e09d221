"""Typed scraping configuration built from settings.json and the environment."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.config_loader import DEFAULT_CONFIG_PATH, config_loader
from utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/120.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]

SCREEN_RESOLUTIONS = [
    (1920, 1080),
    (1366, 768),
    (1536, 864),
    (1440, 900),
    (1600, 900),
    (1280, 720),
    (1920, 1200),
]

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
]


class BrowserSettings(BaseModel):
    headless: bool = True
    slow_mo: int = Field(default=0, ge=0)
    timeout: int = Field(default=15000, gt=0, description="Default page action timeout (ms)")
    browser_type: str = "chromium"
    args: List[str] = Field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))
    locale: str = "en-US"


class ScraperAPIProviderConfig(BaseModel):
    api_key: str = ""
    endpoint: str = "proxy-server.scraperapi.com"
    port: int = 8001


class BrightDataProviderConfig(BaseModel):
    username: str = ""
    password: str = ""
    endpoint: str = "zproxy.lum-superproxy.io"
    port: int = 22225


class SmartProxyProviderConfig(BaseModel):
    username: str = ""
    password: str = ""
    endpoint: str = "gate.smartproxy.com"
    port: int = 10000


class ProxyProvidersConfig(BaseModel):
    scraperapi: Optional[ScraperAPIProviderConfig] = None
    brightdata: Optional[BrightDataProviderConfig] = None
    smartproxy: Optional[SmartProxyProviderConfig] = None


class ProxySettings(BaseModel):
    enabled: bool = False
    rotation_interval: int = Field(default=300000, ge=0, description="Milliseconds")
    quarantine_minutes: float = Field(default=30, gt=0)
    probe_url: str = "http://httpbin.org/ip"
    probe_timeout: float = Field(default=10, gt=0, description="Seconds")
    providers: ProxyProvidersConfig = Field(default_factory=ProxyProvidersConfig)


class CaptchaProviderConfig(BaseModel):
    api_key: str = ""
    endpoint: Optional[str] = None


class CaptchaProvidersConfig(BaseModel):
    twocaptcha: Optional[CaptchaProviderConfig] = None
    anticaptcha: Optional[CaptchaProviderConfig] = None
    capsolver: Optional[CaptchaProviderConfig] = None


class CaptchaSettings(BaseModel):
    enabled: bool = False
    timeout: int = Field(default=30000, gt=0, description="Milliseconds")
    providers: CaptchaProvidersConfig = Field(default_factory=CaptchaProvidersConfig)


class HumanBehaviorSettings(BaseModel):
    enabled: bool = True
    mouse_movement: bool = True
    scroll_behavior: bool = True
    random_delays: bool = True
    min_delay: int = Field(default=500, ge=0)
    max_delay: int = Field(default=1500, ge=0)
    reading_time: int = Field(default=1500, ge=0)

    @model_validator(mode="after")
    def _check_delay_range(self) -> "HumanBehaviorSettings":
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must not exceed max_delay")
        return self


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=2, ge=1)
    backoff_multiplier: float = Field(default=1.5, ge=1.0)
    initial_delay: int = Field(default=500, ge=0)
    max_delay: int = Field(default=5000, ge=0)


class RateLimitSettings(BaseModel):
    enabled: bool = False
    requests_per_minute: int = Field(default=60, gt=0)
    concurrent: int = Field(default=1, ge=1)


class DeadlineSettings(BaseModel):
    overall_timeout: int = Field(default=55000, gt=0, description="Milliseconds")
    per_strategy_timeout: int = Field(default=8000, gt=0, description="Milliseconds")


class RobotsSettings(BaseModel):
    enabled: bool = False
    user_agent: str = "*"
    timeout: float = Field(default=5, gt=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_file: Optional[str] = None
    structured_file: Optional[str] = None
    console: bool = True


class ScrapingConfig(BaseModel):
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    captcha: CaptchaSettings = Field(default_factory=CaptchaSettings)
    human_behavior: HumanBehaviorSettings = Field(default_factory=HumanBehaviorSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    deadlines: DeadlineSettings = Field(default_factory=DeadlineSettings)
    robots: RobotsSettings = Field(default_factory=RobotsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScrapingConfig":
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid scraping configuration: {e}") from e

    @classmethod
    def from_env(cls, settings: Optional["ScraperSettings"] = None) -> "ScrapingConfig":
        """Defaults with every set environment override applied."""
        return (settings or ScraperSettings()).apply(cls())


class ScraperSettings(BaseSettings):
    """Environment overrides, read from the process environment and ``.env``."""

    scraping_headless: Optional[bool] = None
    scraping_slow_mo: Optional[int] = None
    scraping_timeout: Optional[int] = None

    scraping_proxy_enabled: Optional[bool] = None
    scraping_proxy_rotation_interval: Optional[int] = None
    scraperapi_key: Optional[str] = None
    brightdata_username: Optional[str] = None
    brightdata_password: Optional[str] = None
    brightdata_endpoint: Optional[str] = None
    brightdata_port: Optional[int] = None
    smartproxy_username: Optional[str] = None
    smartproxy_password: Optional[str] = None
    smartproxy_endpoint: Optional[str] = None
    smartproxy_port: Optional[int] = None

    scraping_captcha_enabled: Optional[bool] = None
    scraping_captcha_timeout: Optional[int] = None
    twocaptcha_api_key: Optional[str] = None
    anticaptcha_api_key: Optional[str] = None
    capsolver_api_key: Optional[str] = None

    scraping_human_behavior_enabled: Optional[bool] = None

    scraping_max_attempts: Optional[int] = None
    scraping_initial_delay: Optional[int] = None
    scraping_max_delay: Optional[int] = None

    scraping_rate_limit_enabled: Optional[bool] = None
    scraping_requests_per_minute: Optional[int] = None
    scraping_concurrent_requests: Optional[int] = None

    scraping_overall_timeout: Optional[int] = None
    scraping_log_level: Optional[str] = None
    scraping_log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    def apply(self, config: ScrapingConfig) -> ScrapingConfig:
        """Return a copy of ``config`` with every set environment value applied."""
        data = config.model_dump()

        def put(section: str, key: str, value) -> None:
            if value is not None:
                data[section][key] = value

        put("browser", "headless", self.scraping_headless)
        put("browser", "slow_mo", self.scraping_slow_mo)
        put("browser", "timeout", self.scraping_timeout)

        put("proxy", "enabled", self.scraping_proxy_enabled)
        put("proxy", "rotation_interval", self.scraping_proxy_rotation_interval)
        providers = data["proxy"]["providers"]
        if self.scraperapi_key:
            providers["scraperapi"] = {"api_key": self.scraperapi_key}
        if self.brightdata_username and self.brightdata_password:
            providers["brightdata"] = _drop_none(
                username=self.brightdata_username,
                password=self.brightdata_password,
                endpoint=self.brightdata_endpoint,
                port=self.brightdata_port,
            )
        if self.smartproxy_username and self.smartproxy_password:
            providers["smartproxy"] = _drop_none(
                username=self.smartproxy_username,
                password=self.smartproxy_password,
                endpoint=self.smartproxy_endpoint,
                port=self.smartproxy_port,
            )

        put("captcha", "enabled", self.scraping_captcha_enabled)
        put("captcha", "timeout", self.scraping_captcha_timeout)
        solvers = data["captcha"]["providers"]
        if self.twocaptcha_api_key:
            solvers["twocaptcha"] = {"api_key": self.twocaptcha_api_key}
        if self.anticaptcha_api_key:
            solvers["anticaptcha"] = {"api_key": self.anticaptcha_api_key}
        if self.capsolver_api_key:
            solvers["capsolver"] = {"api_key": self.capsolver_api_key}

        put("human_behavior", "enabled", self.scraping_human_behavior_enabled)

        put("retry", "max_attempts", self.scraping_max_attempts)
        put("retry", "initial_delay", self.scraping_initial_delay)
        put("retry", "max_delay", self.scraping_max_delay)

        put("rate_limit", "enabled", self.scraping_rate_limit_enabled)
        put("rate_limit", "requests_per_minute", self.scraping_requests_per_minute)
        put("rate_limit", "concurrent", self.scraping_concurrent_requests)

        put("deadlines", "overall_timeout", self.scraping_overall_timeout)
        put("logging", "level", self.scraping_log_level)
        put("logging", "log_file", self.scraping_log_file)

        return ScrapingConfig.model_validate(data)


def _drop_none(**values):
    return {key: value for key, value in values.items() if value is not None}


def load_scraping_config(
    config_path: Optional[str] = DEFAULT_CONFIG_PATH,
    settings: Optional[ScraperSettings] = None,
) -> ScrapingConfig:
    """Build the effective configuration.

    Defaults are overlaid with the JSON file (when it exists) and then with
    environment variables.
    """
    raw = {}
    if config_path and Path(config_path).exists():
        raw = config_loader.load_config(config_path)
    elif config_path:
        logger.debug("No configuration file at %s, using defaults", config_path)

    try:
        config = ScrapingConfig.from_dict(raw)
        return (settings or ScraperSettings()).apply(config)
    except ConfigurationError as e:
        e.context.setdefault("path", config_path)
        raise
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid scraping configuration: {e}", {"path": config_path}
        ) from e
