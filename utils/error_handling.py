import json
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


# Custom Exception Classes
class ScraperError(Exception):
    """Base exception for all scraper errors"""

    code = "SCRAPING_ERROR"
    retryable = True

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class NavigationError(ScraperError):
    """Page failed to load or answered with a non-success status"""

    code = "NAVIGATION_ERROR"


class InvalidURLError(NavigationError):
    """Target URL cannot be parsed as an absolute http(s) URL"""

    code = "INVALID_URL"
    retryable = False


class ExtractionError(ScraperError):
    """Errors during data extraction"""

    code = "EXTRACTION_ERROR"


class ScrapeTimeoutError(ScraperError):
    """Navigation or overall call deadline exceeded"""

    code = "TIMEOUT_ERROR"


class ProxyError(ScraperError):
    """No working egress proxy could be obtained or the proxy failed"""

    code = "PROXY_ERROR"


class CaptchaError(ScraperError):
    """Every configured captcha provider failed to produce a token"""

    code = "CAPTCHA_ERROR"


class BrowserLaunchError(ScraperError):
    """Browser, context or page could not be created"""

    code = "BROWSER_LAUNCH_ERROR"


class ConfigurationError(ScraperError):
    """Configuration-related errors"""

    code = "CONFIGURATION_ERROR"
    retryable = False


@dataclass
class ErrorContext:
    """Captures the scrape state an error happened in"""

    url: Optional[str] = None
    extraction_spec: Optional[str] = None
    strategy: Optional[str] = None
    attempt: Optional[int] = None
    proxy: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    additional_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, indent=2)


class ErrorReporter:
    """Thread-safe error counters keyed by exception class"""

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.recent_errors: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def report_error(
        self, error: BaseException, context: Optional[ErrorContext] = None
    ) -> None:
        entry = {
            "error_type": type(error).__name__,
            "message": str(error),
            "context": context.to_dict() if context else {},
        }
        with self._lock:
            self.error_counts[entry["error_type"]] += 1
            self.recent_errors.append(entry)
            del self.recent_errors[: -self.history_size]

    def get_error_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.error_counts)

    def generate_report(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_errors": sum(self.error_counts.values()),
                "error_counts": dict(self.error_counts),
                "recent_errors": list(self.recent_errors[-10:]),
            }
