"""Shared async fakes for Playwright pages, sessions and providers."""

from pathlib import Path
import sys
from typing import Any, Dict, List, Optional

import pytest

sys.path.append(str(Path(__file__).resolve().parent.parent))


class _DummyResponse:
    def __init__(self, status: int = 200) -> None:
        self.status = status


class _DummyMouse:
    def __init__(self) -> None:
        self.moves: List[tuple] = []
        self.wheels: List[tuple] = []
        self.downs = 0
        self.ups = 0

    async def move(self, x: float, y: float) -> None:
        self.moves.append((x, y))

    async def wheel(self, dx: float, dy: float) -> None:
        self.wheels.append((dx, dy))

    async def down(self) -> None:
        self.downs += 1

    async def up(self) -> None:
        self.ups += 1


class _DummyKeyboard:
    def __init__(self) -> None:
        self.typed: List[str] = []
        self.pressed: List[str] = []

    async def type(self, text: str) -> None:
        self.typed.append(text)

    async def press(self, key: str) -> None:
        self.pressed.append(key)


class _DummyElement:
    def __init__(
        self,
        attributes: Optional[Dict[str, str]] = None,
        box: Optional[Dict[str, float]] = None,
        image: bytes = b"captcha-bytes",
    ) -> None:
        self.attributes = attributes or {}
        self.box = box or {"x": 100, "y": 200, "width": 80, "height": 30}
        self.image = image

    async def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    async def bounding_box(self) -> Dict[str, float]:
        return self.box

    async def screenshot(self, timeout: Optional[float] = None) -> bytes:
        return self.image


class _DummyPage:
    """Scripted page: ``goto_results`` entries are responses or exceptions."""

    def __init__(
        self,
        html: str = "<html><body></body></html>",
        goto_results: Optional[List[Any]] = None,
        elements: Optional[Dict[str, _DummyElement]] = None,
        url: str = "https://example.com/",
    ) -> None:
        self.html = html
        self.goto_results = list(goto_results or [])
        self.elements = elements or {}
        self.url = url
        self.viewport_size = {"width": 1366, "height": 768}
        self.mouse = _DummyMouse()
        self.keyboard = _DummyKeyboard()
        self.goto_calls: List[Dict[str, Any]] = []
        self.evaluated: List[tuple] = []
        self.init_scripts: List[str] = []
        self.clicked: List[str] = []
        self.focused: List[str] = []
        self.closed = False

    async def goto(self, url: str, **kwargs: Any):
        self.goto_calls.append({"url": url, **kwargs})
        self.url = url
        result = self.goto_results.pop(0) if self.goto_results else _DummyResponse(200)
        if isinstance(result, BaseException):
            raise result
        return result

    async def content(self) -> str:
        return self.html

    async def query_selector(self, selector: str) -> Optional[_DummyElement]:
        return self.elements.get(selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append((script, arg))
        return True

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def click(self, selector: str) -> None:
        self.clicked.append(selector)

    async def focus(self, selector: str) -> None:
        self.focused.append(selector)

    async def close(self) -> None:
        self.closed = True


class _DummyProxy:
    def __init__(self, key: str) -> None:
        self.key = key


class _DummySession:
    def __init__(self, page: _DummyPage, strategy, proxy=None, user_agent: str = "DummyAgent/1.0"):
        self.page = page
        self.strategy = strategy
        self.proxy = proxy
        self.user_agent = user_agent
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class _DummySessionController:
    """Hands out sessions over pages produced by ``page_factory``."""

    def __init__(self, page_factory=None, fail_launches: int = 0) -> None:
        self.page_factory = page_factory or (lambda: _DummyPage())
        self.fail_launches = fail_launches
        self.launches: List[Dict[str, Any]] = []
        self.sessions: List[_DummySession] = []
        self.metrics = {"launched": 0, "closed": 0, "launch_failures": 0}

    async def launch(self, strategy, proxy=None, user_agent=None) -> _DummySession:
        self.launches.append({"strategy": strategy, "proxy": proxy, "user_agent": user_agent})
        if self.fail_launches > 0:
            self.fail_launches -= 1
            self.metrics["launch_failures"] += 1
            raise RuntimeError("browser crashed during launch")
        session = _DummySession(
            self.page_factory(), strategy, proxy, user_agent or "DummyAgent/1.0"
        )
        self.sessions.append(session)
        self.metrics["launched"] += 1
        return session

    async def close(self, session) -> None:
        if session is None or session.closed:
            return
        await session.close()
        self.metrics["closed"] += 1


class _SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep_recorder() -> _SleepRecorder:
    return _SleepRecorder()


@pytest.fixture
def dummy_page_cls():
    return _DummyPage


@pytest.fixture
def dummy_response_cls():
    return _DummyResponse


@pytest.fixture
def dummy_element_cls():
    return _DummyElement


@pytest.fixture
def dummy_proxy_cls():
    return _DummyProxy


@pytest.fixture
def session_controller_cls():
    return _DummySessionController
