"""End-to-end tests for AdaptiveScraper over fake browser sessions."""

import asyncio

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.scraper_engine import (
    DEFAULT_SUGGESTIONS,
    EXTRACTION_SUGGESTIONS,
    NAVIGATION_SUGGESTIONS,
    TIMEOUT_SUGGESTIONS,
    AdaptiveScraper,
    suggestions_for,
)
from core.scraping_config import ScrapingConfig
from core.types import ScrapeRequest, ScrapingStrategy, SiteCategory
from core.user_agent_rotator import UserAgentRotator
from utils.error_handling import ExtractionError, NavigationError

HEADINGS_HTML = "<html><body><h1>Top story</h1><h2>Other story</h2></body></html>"


def _scraper(controller, sleep, **config) -> AdaptiveScraper:
    return AdaptiveScraper(
        config=ScrapingConfig.model_validate(config),
        session_controller=controller,
        user_agents=UserAgentRotator(use_fake_useragent=False),
        sleep=sleep,
    )


def _queue(dummy_page_cls, *goto_results):
    pages = [
        dummy_page_cls(html=HEADINGS_HTML, goto_results=[] if r is None else [r])
        for r in goto_results
    ]
    return lambda: pages.pop(0)


def _always_timing_out(dummy_page_cls):
    return lambda: dummy_page_cls(
        goto_results=[PlaywrightTimeoutError("Timeout 5000ms exceeded.")]
    )


def test_suggestions_follow_error_kind():
    assert suggestions_for(None) == DEFAULT_SUGGESTIONS
    assert suggestions_for(ExtractionError("Failed to extract data from the page")) == (
        EXTRACTION_SUGGESTIONS
    )
    assert suggestions_for(
        NavigationError("HTTP 503: Failed to load page", {"status": 503})
    ) == NAVIGATION_SUGGESTIONS
    assert suggestions_for(asyncio.TimeoutError()) == TIMEOUT_SUGGESTIONS


@pytest.mark.asyncio
async def test_successful_scrape_records_strategy(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    controller = session_controller_cls(_queue(dummy_page_cls, None))
    scraper = _scraper(controller, sleep_recorder)

    response = await scraper.scrape(
        ScrapeRequest(url="https://www.bbc.com/news/world", extraction_spec="headings")
    )

    assert response.success
    assert [h["text"] for h in response.data["headings"]] == ["Top story", "Other story"]
    metadata = response.metadata
    assert metadata.strategy_used == ScrapingStrategy.FAST
    assert metadata.strategies_tried == [ScrapingStrategy.FAST]
    assert metadata.attempts == 1
    assert metadata.elements_found == 2
    assert metadata.extraction_method == "heading-extraction"
    assert metadata.site_analysis.category == SiteCategory.NEWS
    assert scraper.store.successful_strategy("bbc.com") == ScrapingStrategy.FAST
    assert scraper.stats["successes"] == 1


@pytest.mark.asyncio
async def test_response_serializes_with_camel_case(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    controller = session_controller_cls(_queue(dummy_page_cls, None))
    scraper = _scraper(controller, sleep_recorder)

    response = await scraper.scrape(
        {"url": "https://www.bbc.com/news", "extractionSpec": "headings"}
    )
    payload = response.model_dump(by_alias=True)

    assert payload["metadata"]["strategyUsed"] == ScrapingStrategy.FAST
    assert "processingTimeMs" in payload["metadata"]
    assert payload["metadata"]["siteAnalysis"]["complexity"] == "simple"


@pytest.mark.asyncio
async def test_fallback_advances_to_next_strategy(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    timeout = PlaywrightTimeoutError("Timeout 5000ms exceeded.")
    controller = session_controller_cls(_queue(dummy_page_cls, timeout, timeout, None))
    scraper = _scraper(controller, sleep_recorder)

    response = await scraper.scrape(
        {"url": "https://example.com/page", "extractionSpec": "headings"}
    )

    assert response.success
    assert response.metadata.strategies_tried == [
        ScrapingStrategy.BALANCED,
        ScrapingStrategy.STEALTH,
    ]
    assert response.metadata.strategy_used == ScrapingStrategy.STEALTH
    assert response.metadata.attempts == 3
    assert scraper.store.successful_strategy("example.com") == ScrapingStrategy.STEALTH
    assert ScrapingStrategy.BALANCED in scraper.store.failed_strategies("example.com")
    assert all(session.closed for session in controller.sessions)


@pytest.mark.asyncio
async def test_exhausted_chain_reports_timeout(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    controller = session_controller_cls(_always_timing_out(dummy_page_cls))
    scraper = _scraper(controller, sleep_recorder)

    response = await scraper.scrape(
        {"url": "https://example.com/slow", "extractionSpec": "headings"}
    )

    assert not response.success
    assert "timed out" in response.error
    assert response.suggestions == TIMEOUT_SUGGESTIONS
    assert response.metadata.attempts == 6
    assert len(response.metadata.strategies_tried) == 3
    assert response.metadata.strategy_used is None
    assert scraper.error_reporter.get_error_stats() == {"ScrapeTimeoutError": 1}
    assert scraper.stats["failures"] == 1


@pytest.mark.asyncio
async def test_learned_strategy_is_tried_first(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    controller = session_controller_cls(lambda: dummy_page_cls(html=HEADINGS_HTML))
    scraper = _scraper(controller, sleep_recorder)
    scraper.store.record_success("example.com", ScrapingStrategy.FAST)

    response = await scraper.scrape(
        {"url": "https://example.com/again", "extractionSpec": "headings"}
    )

    assert response.metadata.strategy_used == ScrapingStrategy.FAST
    assert response.metadata.site_analysis.strategy == ScrapingStrategy.FAST


@pytest.mark.asyncio
async def test_overall_deadline_cancels_in_flight_attempt(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    class _HangingPage(dummy_page_cls):
        async def goto(self, url, **kwargs):
            self.goto_calls.append({"url": url, **kwargs})
            await asyncio.sleep(3600)

    controller = session_controller_cls(lambda: _HangingPage())
    scraper = _scraper(controller, sleep_recorder, deadlines={"overall_timeout": 50})

    response = await scraper.scrape(
        {"url": "https://example.com/hangs", "extractionSpec": "headings"}
    )

    assert not response.success
    assert response.error.startswith("Scraping timed out after 50ms")
    assert "Try a simpler page" in response.suggestions[0]
    assert response.metadata.strategies_tried == [ScrapingStrategy.BALANCED]
    assert response.metadata.attempts == 1
    assert len(controller.sessions) == 1
    assert controller.sessions[0].closed
    assert scraper.stats["timeouts"] == 1


@pytest.mark.asyncio
async def test_missing_fields_are_rejected_without_browsing(session_controller_cls, sleep_recorder):
    controller = session_controller_cls()
    scraper = _scraper(controller, sleep_recorder)

    response = await scraper.scrape({"url": "", "extractionSpec": "headings"})

    assert not response.success
    assert response.error == "URL and extraction specification are required"
    assert response.suggestions
    assert controller.launches == []


@pytest.mark.asyncio
async def test_invalid_url_stops_the_chain(session_controller_cls, sleep_recorder):
    controller = session_controller_cls()
    scraper = _scraper(controller, sleep_recorder)

    response = await scraper.scrape({"url": "not a url", "extractionSpec": "links"})

    assert not response.success
    assert response.error == "Invalid URL provided"
    assert response.suggestions == NAVIGATION_SUGGESTIONS
    assert response.metadata.attempts == 1
    assert len(response.metadata.strategies_tried) == 1
    assert controller.launches == []
    # the degraded "unknown" domain is never learned
    assert "unknown" not in scraper.store.snapshot()


@pytest.mark.asyncio
async def test_scrape_many_keeps_request_order(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    controller = session_controller_cls(lambda: dummy_page_cls(html=HEADINGS_HTML))
    scraper = _scraper(controller, sleep_recorder, rate_limit={"concurrent": 2})

    responses = await scraper.scrape_many(
        [
            {"url": "https://www.bbc.com/a", "extractionSpec": "headings"},
            {"url": "", "extractionSpec": "headings"},
            {"url": "https://medium.com/b", "extractionSpec": "headings"},
        ]
    )

    assert [r.success for r in responses] == [True, False, True]
    assert scraper.stats["requests"] == 3


@pytest.mark.asyncio
async def test_concurrent_scrapes_share_the_concurrency_limit(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    live = {"now": 0, "peak": 0}

    class _SlowPage(dummy_page_cls):
        async def goto(self, url, **kwargs):
            live["now"] += 1
            live["peak"] = max(live["peak"], live["now"])
            try:
                await asyncio.sleep(0.05)
                return await super().goto(url, **kwargs)
            finally:
                live["now"] -= 1

    controller = session_controller_cls(lambda: _SlowPage(html=HEADINGS_HTML))
    scraper = _scraper(controller, sleep_recorder, rate_limit={"concurrent": 1})

    responses = await asyncio.gather(
        scraper.scrape({"url": "https://www.bbc.com/a", "extractionSpec": "headings"}),
        scraper.scrape({"url": "https://www.bbc.com/b", "extractionSpec": "headings"}),
    )

    assert [r.success for r in responses] == [True, True]
    assert live["peak"] == 1
    assert len(controller.sessions) == 2


@pytest.mark.asyncio
async def test_get_stats_aggregates_components(
    session_controller_cls, dummy_page_cls, sleep_recorder
):
    controller = session_controller_cls(lambda: dummy_page_cls(html=HEADINGS_HTML))
    scraper = _scraper(controller, sleep_recorder)

    await scraper.scrape({"url": "https://www.bbc.com/news", "extractionSpec": "headings"})
    stats = scraper.get_stats()

    assert stats["successes"] == 1
    assert stats["sessions"]["launched"] == 1
    assert stats["domains"]["bbc.com"]["success"] == "fast"
    assert stats["errors"] == {}
