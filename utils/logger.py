import json
import logging
import os
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from colorama import Fore, Style, init

init(autoreset=True)

ROOT_LOGGER_NAME = "scraper"
DEFAULT_LOG_FILE_ENV = "SCRAPING_LOG_FILE"
DEFAULT_LOG_LEVEL_ENV = "SCRAPING_LOG_LEVEL"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured scrape events"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "event_type": getattr(record, "event_type", "general"),
            "event_data": getattr(record, "event_data", {}),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output with scrape event highlighting"""

    COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.BLUE,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA + Style.BRIGHT,
    }

    EVENT_COLORS = {
        "captcha": Fore.YELLOW + Style.BRIGHT,
        "strategy": Fore.GREEN,
        "attempt": Fore.CYAN,
        "proxy": Fore.BLUE,
        "robots": Fore.CYAN,
        "delay": Fore.YELLOW,
        "general": Fore.WHITE,
    }

    def format(self, record):
        record.levelname_colored = (
            self.COLORS.get(record.levelname, Fore.WHITE)
            + record.levelname
            + Style.RESET_ALL
        )

        event_type = getattr(record, "event_type", "general")
        record.event_type_colored = (
            self.EVENT_COLORS.get(event_type, Fore.WHITE)
            + event_type.upper()
            + Style.RESET_ALL
        )

        return super().format(record)


class DefaultEventMetadataFilter(logging.Filter):
    """Ensure log records carry the event metadata the formatters expect."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 (doc inherited)
        if not hasattr(record, "event_type"):
            record.event_type = "general"
        if not hasattr(record, "event_data"):
            record.event_data = {}
        return True


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level=logging.INFO,
    log_file: Optional[str] = None,
    structured_file: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """Setup logger with optional file, JSON and colored console handlers

    Args:
        name: Logger name
        level: Logging level (int or level name)
        log_file: Plain text log file, skipped when None
        structured_file: JSON-lines log file, skipped when None
        console: Whether to enable console logging
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    logger.addFilter(DefaultEventMetadataFilter())

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(event_type)s] - %(message)s"
            )
        )
        file_handler.addFilter(DefaultEventMetadataFilter())
        logger.addHandler(file_handler)

    if structured_file:
        os.makedirs(os.path.dirname(structured_file) or ".", exist_ok=True)
        json_handler = logging.FileHandler(structured_file)
        json_handler.setFormatter(StructuredFormatter())
        logger.addHandler(json_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter(
                "%(asctime)s - %(levelname_colored)s - [%(event_type_colored)s] - %(message)s"
            )
        )
        console_handler.addFilter(DefaultEventMetadataFilter())
        logger.addHandler(console_handler)

    logger.propagate = False
    return logger


def configure_from_dict(config: Optional[Dict[str, Any]]) -> logging.Logger:
    """Configure the root scraper logger from the ``logging`` config section."""
    config = config or {}
    return setup_logger(
        ROOT_LOGGER_NAME,
        level=config.get("level", "INFO"),
        log_file=config.get("log_file") or None,
        structured_file=config.get("structured_file") or None,
        console=config.get("console", True),
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the scraper root logger.

    The root logger is configured lazily from ``SCRAPING_LOG_LEVEL`` and
    ``SCRAPING_LOG_FILE`` the first time any module asks for a logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logger(
            ROOT_LOGGER_NAME,
            level=os.getenv(DEFAULT_LOG_LEVEL_ENV, "INFO"),
            log_file=os.getenv(DEFAULT_LOG_FILE_ENV) or None,
        )
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_scrape_event(
    event_type: str, event_data: Dict[str, Any], level: str = "INFO"
) -> None:
    """Structured scrape event logging"""
    logger = get_logger("events")

    log_level = getattr(logging, level.upper(), logging.INFO)
    if not logger.isEnabledFor(log_level):
        return

    record = logger.makeRecord(
        logger.name, log_level, __file__, 0, f"Scrape event: {event_type}", (), None
    )
    record.event_type = event_type
    record.event_data = event_data

    logger.handle(record)


def log_captcha_event(
    provider: str, captcha_type: str, solve_time: float, success: bool
) -> None:
    """CAPTCHA event logging"""
    event_data = {
        "provider": provider,
        "captcha_type": captcha_type,
        "solve_time_seconds": round(solve_time, 3),
        "success": success,
    }

    log_scrape_event("captcha", event_data, "INFO" if success else "WARNING")


def log_strategy_event(domain: str, strategy: str, outcome: str, **extra: Any) -> None:
    """Strategy selection / outcome logging"""
    event_data = {"domain": domain, "strategy": strategy, "outcome": outcome, **extra}
    level = "WARNING" if outcome == "failed" else "INFO"
    log_scrape_event("strategy", event_data, level)
