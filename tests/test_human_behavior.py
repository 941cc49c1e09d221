"""Tests for the human behavior primitives against a recording page."""

import random

import pytest

from core.human_behavior import (
    HUMAN_BEHAVIOR_INIT_SCRIPT,
    SCROLL_SPEEDS,
    HumanBehaviorSimulator,
)


class _AlwaysLowRandom(random.Random):
    """Every probability check fires and every range yields its minimum."""

    def random(self):
        return 0.0

    def randint(self, a, b):
        return a


@pytest.fixture
def page(dummy_page_cls):
    return dummy_page_cls()


@pytest.fixture
def simulator(page, sleep_recorder):
    return HumanBehaviorSimulator(page, rng=random.Random(1234), sleep=sleep_recorder)


@pytest.mark.asyncio
async def test_random_delay_stays_in_range(simulator, sleep_recorder):
    for _ in range(20):
        delay = await simulator.random_delay(100, 200)
        assert 100 <= delay <= 200

    assert all(0.1 <= s <= 0.2 for s in sleep_recorder.calls)


@pytest.mark.asyncio
async def test_move_to_follows_bezier_path_to_target(simulator, page):
    steps = await simulator.move_to(400, 300)

    assert 10 <= steps <= 30
    assert len(page.mouse.moves) == steps
    assert page.mouse.moves[-1] == pytest.approx((400, 300))
    assert simulator.mouse_position == pytest.approx((400, 300))


def test_click_point_is_clipped_to_box(simulator):
    box = {"x": 10, "y": 20, "width": 6, "height": 4}

    for _ in range(50):
        x, y = simulator.click_point(box)
        assert 10 <= x <= 16
        assert 20 <= y <= 24


@pytest.mark.asyncio
async def test_click_presses_once_inside_element(dummy_page_cls, dummy_element_cls, sleep_recorder):
    page = dummy_page_cls(elements={"#buy": dummy_element_cls()})
    simulator = HumanBehaviorSimulator(page, rng=random.Random(5), sleep=sleep_recorder)

    await simulator.click("#buy")

    assert page.mouse.downs == 1 and page.mouse.ups == 1
    x, y = page.mouse.moves[-1]
    assert 100 <= x <= 180 and 200 <= y <= 230


@pytest.mark.asyncio
async def test_click_missing_element_fails_but_best_effort_swallows(simulator):
    with pytest.raises(LookupError):
        await simulator.click("#missing")

    assert await simulator.best_effort(simulator.click, "#missing") is False


@pytest.mark.asyncio
async def test_typing_with_typos_corrects_every_mistake(page, sleep_recorder):
    simulator = HumanBehaviorSimulator(page, rng=_AlwaysLowRandom(), sleep=sleep_recorder)

    await simulator.type("ab1", selector="#q")

    assert page.focused == ["#q"]
    # one typo per alphabetic char, each followed by a Backspace
    assert page.keyboard.pressed == ["Backspace", "Backspace"]
    assert page.keyboard.typed == ["`", "a", "a", "b", "1"]


@pytest.mark.asyncio
async def test_type_clear_first_selects_existing_text(page, sleep_recorder):
    simulator = HumanBehaviorSimulator(page, rng=random.Random(0), sleep=sleep_recorder)

    await simulator.type("x", selector="#q", clear_first=True)

    assert page.clicked == ["#q"]
    assert page.keyboard.pressed[0] == "Control+A"


@pytest.mark.parametrize("speed", ["slow", "medium", "fast"])
@pytest.mark.asyncio
async def test_scroll_steps_by_speed_profile(dummy_page_cls, sleep_recorder, speed):
    page = dummy_page_cls()
    simulator = HumanBehaviorSimulator(page, rng=random.Random(3), sleep=sleep_recorder)

    await simulator.scroll(600, direction="up", speed=speed)

    steps = SCROLL_SPEEDS[speed]["steps"]
    assert page.mouse.wheels == [(0, -600 / steps)] * steps


@pytest.mark.asyncio
async def test_simulate_reading_scrolls_every_half_second(simulator, page):
    await simulator.simulate_reading(1500)

    assert page.mouse.wheels == [(0, 100)] * 3


@pytest.mark.asyncio
async def test_random_interactions_runs_one_to_three_actions(simulator):
    for _ in range(5):
        assert 1 <= await simulator.random_interactions() <= 3


@pytest.mark.asyncio
async def test_random_interactions_respect_disabled_behaviours(page, sleep_recorder):
    simulator = HumanBehaviorSimulator(
        page,
        rng=random.Random(7),
        sleep=sleep_recorder,
        scroll_behavior=False,
        random_delays=False,
    )

    for _ in range(5):
        await simulator.random_interactions()

    assert page.mouse.wheels == []
    assert page.mouse.moves


@pytest.mark.asyncio
async def test_random_interactions_idle_pause_uses_configured_range(page, sleep_recorder):
    simulator = HumanBehaviorSimulator(
        page,
        rng=random.Random(7),
        sleep=sleep_recorder,
        mouse_movement=False,
        scroll_behavior=False,
        idle_delay_range=(200, 300),
    )

    count = await simulator.random_interactions()

    assert len(sleep_recorder.calls) == count
    assert all(0.2 <= s <= 0.3 for s in sleep_recorder.calls)
    assert page.mouse.moves == [] and page.mouse.wheels == []


@pytest.mark.asyncio
async def test_random_interactions_with_nothing_enabled_is_a_no_op(page, sleep_recorder):
    simulator = HumanBehaviorSimulator(
        page,
        sleep=sleep_recorder,
        mouse_movement=False,
        scroll_behavior=False,
        random_delays=False,
    )

    assert await simulator.random_interactions() == 0
    assert sleep_recorder.calls == []


@pytest.mark.asyncio
async def test_setup_installs_init_script(simulator, page):
    await simulator.setup_human_behavior()

    assert page.init_scripts == [HUMAN_BEHAVIOR_INIT_SCRIPT]


@pytest.mark.asyncio
async def test_fill_form_skips_missing_fields(dummy_page_cls, dummy_element_cls, sleep_recorder):
    page = dummy_page_cls(elements={"#email": dummy_element_cls()})
    simulator = HumanBehaviorSimulator(page, rng=random.Random(9), sleep=sleep_recorder)

    filled = await simulator.fill_form({"#email": "me@example.com", "#phone": "555"})

    assert filled == 1
    assert page.clicked == ["#email"]
