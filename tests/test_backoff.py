"""Tests for the backoff schedule and failure classification."""

import asyncio

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.exponential_backoff import (
    BackoffSchedule,
    ErrorType,
    RecoveryAction,
    classify_error,
    is_retryable,
    parse_error_type,
    recovery_for,
)
from utils.error_handling import (
    CaptchaError,
    ConfigurationError,
    ExtractionError,
    InvalidURLError,
    NavigationError,
    ProxyError,
    ScrapeTimeoutError,
)


def test_schedule_grows_by_multiplier_and_caps():
    schedule = BackoffSchedule(initial_delay_ms=500, multiplier=1.5, max_delay_ms=5000)

    delays = [schedule.next_delay() for _ in range(9)]

    assert delays[:4] == [500, 750, 1125, 1687.5]
    assert delays[-1] == 5000
    assert all(b >= a for a, b in zip(delays, delays[1:]))
    assert max(delays) <= 5000


def test_inflate_is_capped():
    schedule = BackoffSchedule(initial_delay_ms=2000, multiplier=1.5, max_delay_ms=5000)

    assert schedule.inflate(3) == 5000
    assert schedule.next_delay() == 5000


def test_reset_restores_initial_delay():
    schedule = BackoffSchedule()
    schedule.next_delay()
    schedule.next_delay()

    schedule.reset()

    assert schedule.current_delay_ms == 500
    assert schedule.history == []


@pytest.mark.asyncio
async def test_wait_sleeps_in_seconds(sleep_recorder):
    schedule = BackoffSchedule(sleep=sleep_recorder)

    await schedule.wait()
    await schedule.wait()

    assert sleep_recorder.calls == [0.5, 0.75]


def test_multiplier_below_one_rejected():
    with pytest.raises(ValueError):
        BackoffSchedule(multiplier=0.5)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("net::ERR_PROXY_CONNECTION_FAILED", ErrorType.PROXY_ERROR),
        ("Timeout 3000ms exceeded", ErrorType.TIMEOUT),
        ("HTTP 429 Too Many Requests", ErrorType.RATE_LIMIT),
        ("captcha wall", ErrorType.CAPTCHA),
        ("Access denied", ErrorType.BLOCKED),
        ("net::ERR_CONNECTION_RESET", ErrorType.NETWORK),
        ("HTTP 503 Service Unavailable", ErrorType.HTTP_5XX),
        ("HTTP 404", ErrorType.HTTP_4XX),
        ("something odd", ErrorType.UNKNOWN),
    ],
)
def test_parse_error_type(message, expected):
    assert parse_error_type(message) == expected


@pytest.mark.parametrize(
    "error, expected",
    [
        (InvalidURLError("Invalid URL provided"), ErrorType.INVALID_REQUEST),
        (ConfigurationError("bad config"), ErrorType.INVALID_REQUEST),
        (ScrapeTimeoutError("Navigation timed out"), ErrorType.TIMEOUT),
        (asyncio.TimeoutError(), ErrorType.TIMEOUT),
        (PlaywrightTimeoutError("Timeout 3000ms exceeded"), ErrorType.TIMEOUT),
        (ExtractionError("Failed to extract data from the page"), ErrorType.EXTRACTION),
        (ProxyError("no proxy"), ErrorType.PROXY_ERROR),
        (CaptchaError("all providers failed"), ErrorType.CAPTCHA),
        (NavigationError("HTTP 429", {"status": 429}), ErrorType.RATE_LIMIT),
        (NavigationError("HTTP 403", {"status": 403}), ErrorType.BLOCKED),
        (NavigationError("HTTP 502", {"status": 502}), ErrorType.HTTP_5XX),
        (NavigationError("HTTP 404", {"status": 404}), ErrorType.HTTP_4XX),
        (NavigationError("HTTP None: Failed to load page"), ErrorType.NAVIGATION),
        (RuntimeError("net::ERR_NAME_NOT_RESOLVED"), ErrorType.NETWORK),
    ],
)
def test_classify_error(error, expected):
    assert classify_error(error) == expected


def test_recovery_map():
    rotate = RecoveryAction.ROTATE_PROXY_AND_RESTART
    assert recovery_for(ErrorType.TIMEOUT) == RecoveryAction.RESTART_SESSION
    assert recovery_for(ErrorType.NETWORK) == RecoveryAction.RESTART_SESSION
    assert recovery_for(ErrorType.CAPTCHA) == rotate
    assert recovery_for(ErrorType.PROXY_ERROR) == rotate
    assert recovery_for(ErrorType.BLOCKED) == rotate
    assert recovery_for(ErrorType.RATE_LIMIT) == RecoveryAction.INFLATE_BACKOFF
    assert recovery_for(ErrorType.EXTRACTION) == RecoveryAction.NONE
    assert recovery_for(ErrorType.HTTP_5XX) == RecoveryAction.NONE


def test_only_invalid_requests_are_terminal():
    assert not is_retryable(ErrorType.INVALID_REQUEST)
    assert is_retryable(ErrorType.TIMEOUT)
    assert is_retryable(ErrorType.UNKNOWN)
