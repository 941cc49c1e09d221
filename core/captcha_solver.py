"""
CAPTCHA detection, solving and token injection.

Solving goes through an ordered chain of external services. Each one
speaks a submit-then-poll HTTP protocol:
- 2captcha (reCAPTCHA v2, hCaptcha, image)
- Anti-Captcha (reCAPTCHA v2, hCaptcha)
- CapSolver (reCAPTCHA v2)

Every provider attempt is captured as a ``SolveAttempt``. The manager
moves to the next provider on failure and raises ``CaptchaError`` only
once the whole chain is exhausted.
"""

import asyncio
import base64
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import aiohttp

from utils.error_handling import CaptchaError
from utils.logger import get_logger, log_captcha_event

from .scraping_config import CaptchaSettings
from .types import CaptchaChallenge, CaptchaProvider, CaptchaType

logger = get_logger(__name__)

RECAPTCHA_SELECTOR = ".g-recaptcha, [data-sitekey]"
HCAPTCHA_SELECTOR = ".h-captcha"
IMAGE_CAPTCHA_SELECTOR = 'img[src*="captcha" i], img[alt*="captcha" i]'

CAPTCHA_PATTERNS = {
    CaptchaType.HCAPTCHA: [
        r"hcaptcha\.com/1/api\.js",
        r'<div[^>]*class="[^"]*h-captcha',
        r"hcaptcha\.render",
    ],
    CaptchaType.RECAPTCHA: [
        r"www\.google\.com/recaptcha/api\.js",
        r"www\.recaptcha\.net/recaptcha/api\.js",
        r'<div[^>]*class="[^"]*g-recaptcha',
        r"grecaptcha\.render",
    ],
}
SITE_KEY_PATTERN = re.compile(r'data-sitekey=["\']([^"\']+)["\']', re.IGNORECASE)
IMAGE_CAPTCHA_PATTERN = re.compile(
    r'<img[^>]*src=["\']([^"\']*captcha[^"\']*)["\']', re.IGNORECASE
)
DATA_URI_PATTERN = re.compile(r"^data:image/[a-z+]+;base64,(.+)$", re.IGNORECASE)

INJECT_TOKEN_SCRIPT = """
({ kind, token }) => {
    const fields = kind === 'hcaptcha'
        ? 'textarea[name="h-captcha-response"], textarea[name="g-recaptcha-response"]'
        : '#g-recaptcha-response, textarea[name="g-recaptcha-response"]';
    document.querySelectorAll(fields).forEach((el) => {
        el.style.display = 'block';
        el.value = token;
        el.innerHTML = token;
    });
    if (kind === 'hcaptcha' && window.hcaptcha) {
        window.hcaptcha.getResponse = () => token;
    }
    if (kind === 'recaptcha' && window.grecaptcha) {
        window.grecaptcha.getResponse = () => token;
    }
    const widget = document.querySelector('[data-callback]');
    const callbackName = widget && widget.getAttribute('data-callback');
    if (callbackName && typeof window[callbackName] === 'function') {
        window[callbackName](token);
    }
    return true;
}
"""

INJECT_IMAGE_SCRIPT = """
(token) => {
    const input = document.querySelector(
        'input[name*="captcha" i], input[id*="captcha" i]'
    );
    if (!input) {
        return false;
    }
    input.value = token;
    input.dispatchEvent(new Event('input', { bubbles: true }));
    return true;
}
"""


@dataclass
class SolveAttempt:
    """Outcome of one provider in the solving chain."""

    provider: str
    token: Optional[str] = None
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return bool(self.token)


# ============================================================================
# Providers
# ============================================================================


class _SubmitPollProvider:
    """Shared submit/poll loop; subclasses implement the two HTTP calls."""

    name = "base"
    default_endpoint = ""
    default_timeout = 120.0
    polling_interval = 5.0
    supported_types: frozenset = frozenset()

    def __init__(
        self,
        api_key: str,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        polling_interval: Optional[float] = None,
        session_factory: Callable[[], Any] = aiohttp.ClientSession,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.endpoint = (endpoint or self.default_endpoint).rstrip("/")
        self.timeout = timeout or self.default_timeout
        if polling_interval is not None:
            self.polling_interval = polling_interval
        self._session_factory = session_factory
        self._sleep = sleep
        self._clock = clock

    async def solve(self, challenge: CaptchaChallenge, timeout: Optional[float] = None) -> str:
        if not self.api_key:
            raise CaptchaError(f"{self.name} API key not configured")
        if challenge.type not in self.supported_types:
            raise CaptchaError(
                f"{self.name} does not support captcha type: {challenge.type.value}"
            )

        deadline = self._clock() + (timeout or self.timeout)
        async with self._session_factory() as session:
            task_id = await self._submit(session, challenge)
            logger.debug("%s accepted captcha task %s", self.name, task_id)
            while self._clock() < deadline:
                await self._sleep(self.polling_interval)
                token = await self._poll(session, task_id)
                if token:
                    return token
        raise CaptchaError(f"{self.name} captcha solving timeout")

    async def _submit(self, session, challenge: CaptchaChallenge) -> str:
        raise NotImplementedError

    async def _poll(self, session, task_id: str) -> Optional[str]:
        """Return the token, None while pending; raise CaptchaError on failure."""
        raise NotImplementedError


class TwoCaptchaProvider(_SubmitPollProvider):
    name = "2captcha"
    default_endpoint = "https://2captcha.com"
    default_timeout = 120.0
    polling_interval = 5.0
    supported_types = frozenset(
        {CaptchaType.RECAPTCHA, CaptchaType.HCAPTCHA, CaptchaType.IMAGE}
    )

    def _submit_data(self, challenge: CaptchaChallenge) -> Dict[str, Any]:
        data: Dict[str, Any] = {"key": self.api_key, "json": 1}
        if challenge.type == CaptchaType.RECAPTCHA:
            data.update(
                method="userrecaptcha",
                googlekey=challenge.site_key,
                pageurl=challenge.page_url,
            )
        elif challenge.type == CaptchaType.HCAPTCHA:
            data.update(
                method="hcaptcha",
                sitekey=challenge.site_key,
                pageurl=challenge.page_url,
            )
        else:
            if not challenge.image_data:
                raise CaptchaError("Image captcha without image data")
            data.update(method="base64", body=challenge.image_data)
        return data

    async def _submit(self, session, challenge: CaptchaChallenge) -> str:
        async with session.post(
            f"{self.endpoint}/in.php", data=self._submit_data(challenge)
        ) as response:
            data = await response.json(content_type=None)
        if data.get("status") != 1:
            raise CaptchaError(
                f"2captcha submission failed: {data.get('error_text') or data.get('request')}"
            )
        return str(data.get("request"))

    async def _poll(self, session, task_id: str) -> Optional[str]:
        params = {"key": self.api_key, "action": "get", "id": task_id, "json": 1}
        async with session.get(f"{self.endpoint}/res.php", params=params) as response:
            data = await response.json(content_type=None)
        if data.get("status") == 1:
            return data.get("request")
        if data.get("request") == "CAPCHA_NOT_READY":
            return None
        raise CaptchaError(
            f"2captcha solving failed: {data.get('request') or data.get('error_text')}"
        )


class _TaskApiProvider(_SubmitPollProvider):
    """createTask / getTaskResult protocol shared by Anti-Captcha and CapSolver."""

    task_types: Dict[CaptchaType, str] = {}

    def _task(self, challenge: CaptchaChallenge) -> Dict[str, Any]:
        task: Dict[str, Any] = {"type": self.task_types[challenge.type]}
        if challenge.type == CaptchaType.IMAGE:
            if not challenge.image_data:
                raise CaptchaError("Image captcha without image data")
            task["body"] = challenge.image_data
        else:
            task["websiteURL"] = challenge.page_url
            task["websiteKey"] = challenge.site_key
        return task

    async def _submit(self, session, challenge: CaptchaChallenge) -> str:
        payload = {"clientKey": self.api_key, "task": self._task(challenge)}
        async with session.post(f"{self.endpoint}/createTask", json=payload) as response:
            data = await response.json(content_type=None)
        if data.get("errorId") != 0:
            raise CaptchaError(
                f"{self.name} task creation failed: {data.get('errorDescription') or data.get('errorCode')}"
            )
        return str(data.get("taskId"))

    async def _poll(self, session, task_id: str) -> Optional[str]:
        payload = {"clientKey": self.api_key, "taskId": task_id}
        async with session.post(
            f"{self.endpoint}/getTaskResult", json=payload
        ) as response:
            data = await response.json(content_type=None)
        if data.get("errorId"):
            raise CaptchaError(
                f"{self.name} solving failed: {data.get('errorDescription') or data.get('errorCode')}"
            )
        if data.get("status") == "ready":
            solution = data.get("solution") or {}
            return solution.get("gRecaptchaResponse") or solution.get("text")
        return None


class AntiCaptchaProvider(_TaskApiProvider):
    name = "anticaptcha"
    default_endpoint = "https://api.anti-captcha.com"
    default_timeout = 120.0
    polling_interval = 3.0
    supported_types = frozenset({CaptchaType.RECAPTCHA, CaptchaType.HCAPTCHA})
    task_types = {
        CaptchaType.RECAPTCHA: "NoCaptchaTaskProxyless",
        CaptchaType.HCAPTCHA: "HCaptchaTaskProxyless",
    }


class CapSolverProvider(_TaskApiProvider):
    name = "capsolver"
    default_endpoint = "https://api.capsolver.com"
    default_timeout = 300.0
    polling_interval = 3.0
    supported_types = frozenset({CaptchaType.RECAPTCHA})
    task_types = {CaptchaType.RECAPTCHA: "ReCaptchaV2TaskProxyLess"}


def providers_from_config(settings: CaptchaSettings) -> List[CaptchaProvider]:
    providers: List[CaptchaProvider] = []
    configured = settings.providers
    for provider_cls, entry in (
        (TwoCaptchaProvider, configured.twocaptcha),
        (AntiCaptchaProvider, configured.anticaptcha),
        (CapSolverProvider, configured.capsolver),
    ):
        if entry and entry.api_key:
            providers.append(provider_cls(entry.api_key, endpoint=entry.endpoint))
    return providers


# ============================================================================
# Detection helpers
# ============================================================================


def detect_from_html(html: str, page_url: Optional[str] = None) -> Optional[CaptchaChallenge]:
    """Regex-based challenge detection over raw page HTML."""
    if not html:
        return None

    site_key_match = SITE_KEY_PATTERN.search(html)
    site_key = site_key_match.group(1) if site_key_match else None

    for captcha_type, patterns in CAPTCHA_PATTERNS.items():
        if any(re.search(p, html, re.IGNORECASE) for p in patterns):
            return CaptchaChallenge(type=captcha_type, site_key=site_key, page_url=page_url)

    image_match = IMAGE_CAPTCHA_PATTERN.search(html)
    if image_match:
        data_uri = DATA_URI_PATTERN.match(image_match.group(1))
        return CaptchaChallenge(
            type=CaptchaType.IMAGE,
            page_url=page_url,
            image_data=data_uri.group(1) if data_uri else None,
        )
    return None


# ============================================================================
# Manager
# ============================================================================


class CaptchaManager:
    """Detects challenges on a page and solves them through the provider chain."""

    def __init__(
        self,
        providers: Optional[Sequence[CaptchaProvider]] = None,
        enabled: bool = True,
        page_timeout_ms: int = 30000,
    ):
        self.providers: List[CaptchaProvider] = list(providers or [])
        self.enabled = enabled
        self.page_timeout_ms = page_timeout_ms
        self.solve_stats: Dict[str, Dict[str, Any]] = {
            provider.name: {"attempts": 0, "successes": 0, "failures": 0, "avg_solve_time": 0.0}
            for provider in self.providers
        }

    @classmethod
    def from_config(cls, settings: CaptchaSettings) -> "CaptchaManager":
        return cls(
            providers=providers_from_config(settings),
            enabled=settings.enabled,
            page_timeout_ms=settings.timeout,
        )

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.providers)

    async def detect(self, page) -> Optional[CaptchaChallenge]:
        page_url = getattr(page, "url", None)

        element = await page.query_selector(HCAPTCHA_SELECTOR)
        if element is not None:
            site_key = await element.get_attribute("data-sitekey")
            return CaptchaChallenge(CaptchaType.HCAPTCHA, site_key=site_key, page_url=page_url)

        element = await page.query_selector(RECAPTCHA_SELECTOR)
        if element is not None:
            site_key = await element.get_attribute("data-sitekey")
            return CaptchaChallenge(CaptchaType.RECAPTCHA, site_key=site_key, page_url=page_url)

        element = await page.query_selector(IMAGE_CAPTCHA_SELECTOR)
        if element is not None:
            image = await element.screenshot(timeout=self.page_timeout_ms)
            return CaptchaChallenge(
                CaptchaType.IMAGE,
                page_url=page_url,
                image_data=base64.b64encode(image).decode("ascii"),
            )

        return detect_from_html(await page.content(), page_url)

    async def solve(self, challenge: CaptchaChallenge) -> str:
        attempts: List[SolveAttempt] = []
        for provider in self.providers:
            attempt = await self._attempt(provider, challenge)
            attempts.append(attempt)
            if attempt.ok:
                return attempt.token
            logger.warning("Captcha provider %s failed: %s", attempt.provider, attempt.error)

        last_error = attempts[-1].error if attempts else "no captcha provider configured"
        raise CaptchaError(
            f"All captcha providers failed: {last_error}",
            {
                "captcha_type": challenge.type.value,
                "attempts": [(a.provider, a.error) for a in attempts],
            },
        )

    async def inject(self, page, challenge: CaptchaChallenge, token: str) -> bool:
        if challenge.type == CaptchaType.IMAGE:
            return bool(await page.evaluate(INJECT_IMAGE_SCRIPT, token))
        return bool(
            await page.evaluate(
                INJECT_TOKEN_SCRIPT, {"kind": challenge.type.value, "token": token}
            )
        )

    async def handle(self, page) -> bool:
        """Detect, solve and inject; returns True when a challenge was solved."""
        if not self.active:
            return False
        challenge = await self.detect(page)
        if challenge is None:
            return False

        logger.info("Detected %s challenge on %s", challenge.type.value, challenge.page_url)
        token = await self.solve(challenge)
        injected = await self.inject(page, challenge, token)
        if not injected:
            logger.warning("Solved %s challenge but found no response field", challenge.type.value)
        return True

    async def _attempt(self, provider: CaptchaProvider, challenge: CaptchaChallenge) -> SolveAttempt:
        stats = self.solve_stats.setdefault(
            provider.name, {"attempts": 0, "successes": 0, "failures": 0, "avg_solve_time": 0.0}
        )
        stats["attempts"] += 1
        started = time.monotonic()
        try:
            token = await provider.solve(challenge, getattr(provider, "timeout", None))
        except Exception as e:  # noqa: BLE001
            elapsed = time.monotonic() - started
            stats["failures"] += 1
            log_captcha_event(provider.name, challenge.type.value, elapsed, False)
            return SolveAttempt(provider.name, error=str(e) or type(e).__name__, elapsed=elapsed)

        elapsed = time.monotonic() - started
        if not token:
            stats["failures"] += 1
            log_captcha_event(provider.name, challenge.type.value, elapsed, False)
            return SolveAttempt(provider.name, error="empty token", elapsed=elapsed)

        stats["successes"] += 1
        stats["avg_solve_time"] += (elapsed - stats["avg_solve_time"]) / stats["successes"]
        log_captcha_event(provider.name, challenge.type.value, elapsed, True)
        return SolveAttempt(provider.name, token=token, elapsed=elapsed)
