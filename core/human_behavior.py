"""
Human-like interaction primitives for Playwright pages.

Mouse paths follow cubic bezier curves, typing has jittered cadence with
occasional typo-and-correct, and scrolling/reading are stepped wheel
events with random pauses. Randomness and sleeping are injectable so the
sequences can be reproduced in tests.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from utils.logger import get_logger

logger = get_logger(__name__)

Box = Dict[str, float]

SCROLL_SPEEDS = {
    "slow": {"steps": 20, "delay": 100},
    "medium": {"steps": 15, "delay": 50},
    "fast": {"steps": 10, "delay": 20},
}

TYPO_PROBABILITY = 0.05
THINKING_PROBABILITY = 0.1
SCROLL_PAUSE_PROBABILITY = 0.2
READING_PAUSE_PROBABILITY = 0.3
CLICK_JITTER_PX = 10

HUMAN_BEHAVIOR_INIT_SCRIPT = """
(() => {
    const originalDateNow = Date.now;
    Date.now = function () {
        return originalDateNow() + Math.floor(Math.random() * 10);
    };

    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(screen, 'availTop', { get: () => 23 });
    Object.defineProperty(screen, 'availLeft', { get: () => 0 });

    const originalQuery = navigator.permissions && navigator.permissions.query;
    if (originalQuery && typeof originalQuery === 'function') {
        navigator.permissions.query = function (parameters) {
            const state = parameters.name === 'geolocation' ? 'denied' : 'granted';
            return Promise.resolve({ state, onchange: null });
        };
    }
})();
"""


def bezier_point(p0: float, p1: float, p2: float, p3: float, t: float) -> float:
    one_minus_t = 1 - t
    return (
        one_minus_t**3 * p0
        + 3 * one_minus_t**2 * t * p1
        + 3 * one_minus_t * t**2 * p2
        + t**3 * p3
    )


class HumanBehaviorSimulator:
    """Randomized, human-paced mouse, keyboard and scroll actions on one page."""

    def __init__(
        self,
        page,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        mouse_movement: bool = True,
        scroll_behavior: bool = True,
        random_delays: bool = True,
        idle_delay_range: tuple = (1000, 3000),
    ):
        self.page = page
        self.rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep
        self.mouse_movement = mouse_movement
        self.scroll_behavior = scroll_behavior
        self.random_delays = random_delays
        self.idle_delay_range = idle_delay_range
        self.mouse_position = (0.0, 0.0)

    # ------------------------------------------------------------------
    # Delays
    # ------------------------------------------------------------------

    def random_between(self, minimum: int, maximum: int) -> int:
        return self.rng.randint(int(minimum), int(maximum))

    async def random_delay(self, min_ms: float = 500, max_ms: float = 1500) -> int:
        delay = self.random_between(min_ms, max_ms)
        await self._sleep(delay / 1000)
        return delay

    # ------------------------------------------------------------------
    # Mouse
    # ------------------------------------------------------------------

    async def move_to(self, target_x: float, target_y: float) -> int:
        """Bezier-curved pointer path in 10-30 steps; returns the step count."""
        start_x, start_y = self.mouse_position
        dx, dy = target_x - start_x, target_y - start_y
        steps = self.random_between(10, 30)

        for i in range(1, steps + 1):
            t = i / steps
            x = bezier_point(start_x, start_x + dx * 0.3, target_x - dx * 0.3, target_x, t)
            y = bezier_point(start_y, start_y + dy * 0.3, target_y - dy * 0.3, target_y, t)
            await self.page.mouse.move(x, y)
            self.mouse_position = (x, y)
            await self.random_delay(10, 30)
        return steps

    def click_point(self, box: Box) -> tuple:
        """Jittered point around the box centre, clipped to the box."""
        cx = box["x"] + box["width"] / 2
        cy = box["y"] + box["height"] / 2
        x = cx + self.random_between(-CLICK_JITTER_PX, CLICK_JITTER_PX)
        y = cy + self.random_between(-CLICK_JITTER_PX, CLICK_JITTER_PX)
        x = min(max(x, box["x"]), box["x"] + box["width"])
        y = min(max(y, box["y"]), box["y"] + box["height"])
        return x, y

    async def click(self, target: Union[str, Box], delay_ms: Optional[int] = None) -> None:
        if isinstance(target, str):
            element = await self.page.query_selector(target)
            if element is None:
                raise LookupError(f"Element not found: {target}")
            box = await element.bounding_box()
            if not box:
                raise LookupError(f"Element has no bounding box: {target}")
        else:
            box = target

        x, y = self.click_point(box)
        await self.move_to(x, y)
        await self.random_delay(100, 300)
        await self.page.mouse.down()
        await self.random_delay(50, 150)
        await self.page.mouse.up()

        if delay_ms:
            await self.random_delay(delay_ms * 0.8, delay_ms * 1.2)

    async def move_randomly(self) -> None:
        viewport = getattr(self.page, "viewport_size", None) or {"width": 1366, "height": 768}
        x = self.random_between(100, max(100, viewport["width"] - 100))
        y = self.random_between(100, max(100, viewport["height"] - 100))
        await self.move_to(x, y)

    # ------------------------------------------------------------------
    # Keyboard
    # ------------------------------------------------------------------

    async def type(
        self,
        text: str,
        selector: Optional[str] = None,
        clear_first: bool = False,
        delay_ms: Optional[int] = None,
    ) -> None:
        keyboard = self.page.keyboard
        if selector and clear_first:
            await self.page.click(selector)
            await keyboard.press("Control+A")
            await self.random_delay(50, 100)
        elif selector:
            await self.page.focus(selector)

        for char in text:
            cadence = self.random_between(50, 150)
            if char.isascii() and char.isalpha() and self.rng.random() < TYPO_PROBABILITY:
                wrong = chr(ord(char) + (1 if self.rng.random() > 0.5 else -1))
                await keyboard.type(wrong)
                await self._sleep(cadence / 1000)
                await self.random_delay(100, 300)
                await keyboard.press("Backspace")
                await self.random_delay(50, 150)
            await keyboard.type(char)
            await self._sleep(cadence / 1000)

            if self.rng.random() < THINKING_PROBABILITY:
                await self.random_delay(200, 500)

        if delay_ms:
            await self.random_delay(delay_ms * 0.8, delay_ms * 1.2)

    # ------------------------------------------------------------------
    # Scrolling and reading
    # ------------------------------------------------------------------

    async def scroll(
        self,
        distance: Optional[int] = None,
        direction: str = "down",
        speed: str = "medium",
    ) -> None:
        profile = SCROLL_SPEEDS.get(speed, SCROLL_SPEEDS["medium"])
        if distance is None:
            distance = self.random_between(300, 800)
        step = distance / profile["steps"]
        delta = step if direction == "down" else -step

        for _ in range(profile["steps"]):
            await self.page.mouse.wheel(0, delta)
            await self.random_delay(profile["delay"] * 0.8, profile["delay"] * 1.2)
            if self.rng.random() < SCROLL_PAUSE_PROBABILITY:
                await self.random_delay(200, 500)

    async def simulate_reading(self, duration_ms: int = 2000) -> None:
        for _ in range(int(duration_ms // 500)):
            await self.random_delay(400, 600)
            await self.page.mouse.wheel(0, 100)
            if self.rng.random() < READING_PAUSE_PROBABILITY:
                await self.random_delay(800, 1500)

    async def random_interactions(self) -> int:
        """Run 1-3 randomly chosen idle behaviours; returns how many ran.

        Only behaviours whose flag is enabled are candidates.
        """
        actions = []
        if self.scroll_behavior:
            actions.append(lambda: self.scroll(self.random_between(200, 400), "down"))
        if self.random_delays:
            actions.append(lambda: self.random_delay(*self.idle_delay_range))
        if self.mouse_movement:
            actions.append(self.move_randomly)
        if self.scroll_behavior:
            actions.append(lambda: self.simulate_reading(self.random_between(1000, 3000)))
        if not actions:
            return 0

        count = self.random_between(1, 3)
        for _ in range(count):
            await self.rng.choice(actions)()
        return count

    # ------------------------------------------------------------------
    # Setup and forms
    # ------------------------------------------------------------------

    async def setup_human_behavior(self) -> None:
        await self.page.add_init_script(HUMAN_BEHAVIOR_INIT_SCRIPT)

    async def fill_form(self, form_data: Mapping[str, str]) -> int:
        """Fill fields by selector; returns how many were filled."""
        filled = 0
        for selector, value in form_data.items():
            try:
                await self.random_delay(300, 800)
                await self.click(selector)
                await self.random_delay(200, 400)
                await self.type(value, selector=selector, clear_first=True)
                filled += 1
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to fill field %s: %s", selector, e)
        return filled

    async def best_effort(
        self, action: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> bool:
        """Run one primitive, logging instead of raising on failure."""
        try:
            await action(*args, **kwargs)
            return True
        except Exception as e:  # noqa: BLE001
            logger.debug(
                "Human behavior step %s failed: %s",
                getattr(action, "__name__", action),
                e,
                exc_info=True,
            )
            return False
