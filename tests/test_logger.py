"""Tests for logger naming and the structured formatters."""

import json
import logging

from utils.logger import (
    ROOT_LOGGER_NAME,
    ColoredFormatter,
    StructuredFormatter,
    get_logger,
    setup_logger,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("scraper.events", logging.INFO, __file__, 1, "Scrape event: %s", ("attempt",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_get_logger_nests_under_root():
    assert get_logger("core.retry_coordinator").name == f"{ROOT_LOGGER_NAME}.core.retry_coordinator"
    assert get_logger(ROOT_LOGGER_NAME).name == ROOT_LOGGER_NAME
    assert get_logger(f"{ROOT_LOGGER_NAME}.events").name == f"{ROOT_LOGGER_NAME}.events"


def test_structured_formatter_emits_event_json():
    line = StructuredFormatter().format(
        _record(event_type="attempt", event_data={"attempt": 2, "strategy": "fast"})
    )

    entry = json.loads(line)
    assert entry["message"] == "Scrape event: attempt"
    assert entry["event_type"] == "attempt"
    assert entry["event_data"] == {"attempt": 2, "strategy": "fast"}
    assert entry["level"] == "INFO"


def test_colored_formatter_defaults_event_type():
    formatter = ColoredFormatter("%(levelname_colored)s %(event_type_colored)s %(message)s")

    output = formatter.format(_record())

    assert "GENERAL" in output
    assert "Scrape event: attempt" in output


def test_setup_logger_writes_structured_file(tmp_path):
    structured = tmp_path / "logs" / "events.jsonl"
    logger = setup_logger(
        "scraper_test_sink", level="DEBUG", structured_file=str(structured), console=False
    )

    logger.info("proxy rotated", extra={"event_type": "proxy", "event_data": {"key": "a:1"}})
    for handler in logger.handlers:
        handler.flush()

    entry = json.loads(structured.read_text(encoding="utf-8").splitlines()[0])
    assert entry["event_type"] == "proxy"
    assert entry["event_data"] == {"key": "a:1"}
    assert logger.propagate is False
