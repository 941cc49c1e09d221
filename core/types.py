"""
Core data types for the adaptive scraping engine.

Value objects shared across the analyzer, selector, session, proxy,
captcha and retry layers, plus the pydantic request/response models
exposed to callers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ============================================================================
# Enumerations
# ============================================================================


class SiteCategory(str, Enum):
    NEWS = "news"
    BLOG = "blog"
    ECOMMERCE = "ecommerce"
    SOCIAL = "social"
    SPA = "spa"
    EDUCATIONAL = "educational"
    GOVERNMENT = "government"
    CORPORATE = "corporate"
    UNKNOWN = "unknown"


class SiteComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ScrapingStrategy(str, Enum):
    """Named bundle of timeouts, resource blocking and stealth settings."""

    FAST = "fast"
    BALANCED = "balanced"
    STEALTH = "stealth"


class ExtractionKind(str, Enum):
    """Extractor families, listed in dispatch priority order."""

    PRODUCTS = "products"
    IMAGES = "images"
    LINKS = "links"
    HEADINGS = "headings"
    TEXT = "text"
    CSS_SELECTOR = "css_selector"
    GENERIC = "generic"

    @property
    def method_label(self) -> str:
        return _METHOD_LABELS[self]


_METHOD_LABELS = {
    ExtractionKind.PRODUCTS: "product-extraction",
    ExtractionKind.IMAGES: "image-extraction",
    ExtractionKind.LINKS: "link-extraction",
    ExtractionKind.HEADINGS: "heading-extraction",
    ExtractionKind.TEXT: "text-extraction",
    ExtractionKind.CSS_SELECTOR: "css-selector",
    ExtractionKind.GENERIC: "generic-extraction",
}


class ScrapeState(str, Enum):
    """States of the per-strategy attempt machine."""

    IDLE = "idle"
    PREPARING = "preparing"
    NAVIGATING = "navigating"
    INTERACTING = "interacting"
    EXTRACTING = "extracting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CaptchaType(str, Enum):
    RECAPTCHA = "recaptcha"
    HCAPTCHA = "hcaptcha"
    IMAGE = "image"


class ProxyProtocol(str, Enum):
    HTTP = "http"
    HTTPS = "https"
    SOCKS5 = "socks5"


# ============================================================================
# Site analysis and strategy configuration
# ============================================================================


@dataclass(frozen=True)
class SiteAnalysis:
    domain: str
    category: SiteCategory
    complexity: SiteComplexity
    known_issues: Tuple[str, ...]
    recommended_strategy: ScrapingStrategy


@dataclass(frozen=True)
class ResourceBlocking:
    images: bool = False
    css: bool = False
    fonts: bool = False
    media: bool = False

    def blocked_resource_types(self) -> frozenset[str]:
        """Map the flags onto Playwright ``request.resource_type`` values."""
        mapping = {
            "image": self.images,
            "stylesheet": self.css,
            "font": self.fonts,
            "media": self.media,
        }
        return frozenset(kind for kind, blocked in mapping.items() if blocked)


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int

    def as_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class StrategyConfig:
    name: ScrapingStrategy
    resource_blocking: ResourceBlocking
    stealth_enabled: bool
    human_behavior_enabled: bool
    navigation_timeout_ms: int
    viewport: Viewport
    wait_time_ms: int


# ============================================================================
# Proxy and captcha
# ============================================================================


@dataclass(frozen=True)
class ProxyConfig:
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    protocol: ProxyProtocol = ProxyProtocol.HTTP

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def server(self) -> str:
        return f"{self.protocol.value}://{self.host}:{self.port}"

    def to_url(self) -> str:
        """Proxy URL with embedded credentials, as aiohttp expects it."""
        if self.username:
            auth = self.username
            if self.password:
                auth = f"{auth}:{self.password}"
            return f"{self.protocol.value}://{auth}@{self.host}:{self.port}"
        return self.server

    def to_playwright(self) -> Dict[str, str]:
        options = {"server": self.server}
        if self.username:
            options["username"] = self.username
        if self.password:
            options["password"] = self.password
        return options


@dataclass
class CaptchaChallenge:
    type: CaptchaType
    site_key: Optional[str] = None
    page_url: Optional[str] = None
    image_data: Optional[str] = None


@runtime_checkable
class ProxyProvider(Protocol):
    name: str

    async def get_proxy(self) -> Optional[ProxyConfig]: ...


@runtime_checkable
class CaptchaProvider(Protocol):
    name: str

    async def solve(self, challenge: CaptchaChallenge, timeout: float) -> str: ...


# ============================================================================
# Attempt state and results
# ============================================================================


@dataclass
class RetryState:
    """Per-call attempt bookkeeping; only the retry coordinator mutates it."""

    max_attempts: int
    backoff_delay_ms: float
    attempt: int = 0
    last_error: Optional[BaseException] = None
    state: ScrapeState = ScrapeState.IDLE
    delays_ms: List[float] = field(default_factory=list)

    @property
    def attempts_remaining(self) -> bool:
        return self.attempt < self.max_attempts


@dataclass
class ScrapeResult:
    """Outcome of one terminal attempt sequence."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Request / response models
# ============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScrapeRequest(_CamelModel):
    url: str = Field(..., min_length=1, description="Absolute http(s) URL to scrape")
    extraction_spec: str = Field(
        ..., min_length=1, description="Free-text description of the data to extract"
    )
    user_agent: Optional[str] = Field(default=None, description="Fixed user agent")
    timeout: Optional[int] = Field(
        default=None, gt=0, description="Navigation timeout override in milliseconds"
    )


class SiteAnalysisSummary(_CamelModel):
    category: SiteCategory
    complexity: SiteComplexity
    strategy: ScrapingStrategy


class ScrapeMetadata(_CamelModel):
    processing_time_ms: int
    elements_found: int = 0
    extraction_method: Optional[str] = None
    attempts: int = 0
    proxy_used: Optional[str] = None
    user_agent: Optional[str] = None
    strategy_used: Optional[ScrapingStrategy] = None
    strategies_tried: List[ScrapingStrategy] = Field(default_factory=list)
    captcha_solved: bool = False
    site_analysis: Optional[SiteAnalysisSummary] = None


class ScrapeResponse(_CamelModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    suggestions: Optional[List[str]] = None
    metadata: Optional[ScrapeMetadata] = None
