"""Tests for JSON configuration loading and environment overrides."""

import json
from pathlib import Path

import pytest

from core.scraping_config import ScraperSettings, ScrapingConfig, load_scraping_config
from utils.config_loader import ConfigLoader
from utils.error_handling import ConfigurationError

REPO_SETTINGS = Path(__file__).resolve().parent.parent / "config" / "settings.json"


def _write(tmp_path, payload) -> str:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def _no_env() -> ScraperSettings:
    return ScraperSettings(_env_file=None)


def test_defaults_match_documented_values():
    config = ScrapingConfig()

    assert config.retry.max_attempts == 2
    assert config.retry.initial_delay == 500
    assert config.retry.backoff_multiplier == 1.5
    assert config.retry.max_delay == 5000
    assert config.deadlines.overall_timeout == 55000
    assert config.human_behavior.reading_time == 1500
    assert config.proxy.enabled is False


def test_shipped_settings_file_is_valid():
    config = load_scraping_config(str(REPO_SETTINGS), _no_env())

    assert config.browser.browser_type == "chromium"
    assert config.retry.max_attempts == 2


def test_file_values_overlay_defaults(tmp_path):
    path = _write(tmp_path, {"retry": {"max_attempts": 3}, "deadlines": {"overall_timeout": 20000}})

    config = load_scraping_config(path, _no_env())

    assert config.retry.max_attempts == 3
    assert config.deadlines.overall_timeout == 20000
    assert config.retry.initial_delay == 500


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = load_scraping_config(str(tmp_path / "absent.json"), _no_env())

    assert config == ScrapingConfig()


def test_environment_overrides_file(tmp_path):
    path = _write(tmp_path, {"retry": {"max_attempts": 3}})
    settings = ScraperSettings(
        _env_file=None,
        scraping_max_attempts=5,
        scraping_headless=False,
        twocaptcha_api_key="solver-key",
        smartproxy_username="user",
        smartproxy_password="pass",
    )

    config = load_scraping_config(path, settings)

    assert config.retry.max_attempts == 5
    assert config.browser.headless is False
    assert config.captcha.providers.twocaptcha.api_key == "solver-key"
    assert config.proxy.providers.smartproxy.username == "user"
    assert config.proxy.providers.smartproxy.endpoint == "gate.smartproxy.com"


def test_invalid_values_raise_configuration_error(tmp_path):
    path = _write(tmp_path, {"retry": {"max_attempts": 0}})

    with pytest.raises(ConfigurationError) as excinfo:
        load_scraping_config(path, _no_env())

    assert excinfo.value.context["path"] == path


def test_from_dict_and_from_env():
    config = ScrapingConfig.from_dict({"browser": {"headless": False}})
    assert config.browser.headless is False
    assert ScrapingConfig.from_dict(None).retry.max_attempts == 2

    with pytest.raises(ConfigurationError):
        ScrapingConfig.from_dict({"retry": {"max_attempts": 0}})

    env_config = ScrapingConfig.from_env(ScraperSettings(_env_file=None, scraping_max_attempts=4))
    assert env_config.retry.max_attempts == 4


def test_loader_substitutes_environment_placeholders(tmp_path, monkeypatch):
    monkeypatch.setenv("SCRAPERAPI_KEY", "from-env")
    monkeypatch.delenv("TWOCAPTCHA_API_KEY", raising=False)
    path = _write(
        tmp_path,
        {
            "proxy": {"providers": {"scraperapi": {"api_key": "${SCRAPERAPI_KEY}"}}},
            "captcha": {"providers": {"twocaptcha": {"api_key": "${TWOCAPTCHA_API_KEY}"}}},
        },
    )

    config = ConfigLoader().load_config(path)

    assert config["proxy"]["providers"]["scraperapi"]["api_key"] == "from-env"
    assert config["captcha"]["providers"]["twocaptcha"]["api_key"] == ""


def test_loader_rejects_bad_json_and_missing_files(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    loader = ConfigLoader()

    with pytest.raises(ConfigurationError):
        loader.load_config(str(broken))
    with pytest.raises(ConfigurationError):
        loader.load_config(str(tmp_path / "absent.json"))


def test_loader_caches_until_cleared(tmp_path):
    path = _write(tmp_path, {"retry": {"max_attempts": 3}})
    loader = ConfigLoader()

    first = loader.load_config(path)
    Path(path).write_text(json.dumps({"retry": {"max_attempts": 4}}), encoding="utf-8")

    assert loader.load_config(path) is first
    loader.clear_cache(path)
    assert loader.load_config(path)["retry"]["max_attempts"] == 4


def test_nested_lookup_and_required_keys():
    loader = ConfigLoader()
    config = {"retry": {"max_attempts": 2}}

    assert loader.get_nested_value(config, "retry.max_attempts") == 2
    assert loader.get_nested_value(config, "retry.missing", "fallback") == "fallback"
    with pytest.raises(ConfigurationError):
        loader.validate_required_keys(config, ["retry.max_attempts", "browser.headless"])


def test_structure_and_api_key_reports():
    loader = ConfigLoader()
    config = {
        "browser": {},
        "proxy": {"enabled": True, "providers": {"scraperapi": {"api_key": ""}}},
        "captcha": {"enabled": True, "providers": {"capsolver": {"api_key": "k"}}},
        "retry": [],
    }

    problems = loader.validate_config_structure(config)

    assert "Missing required configuration section 'rate_limit'" in problems
    assert "Section 'retry' must be an object in configuration" in problems
    assert loader.validate_api_keys(config) == {
        "proxy.providers.scraperapi.api_key": False,
        "captcha.providers.capsolver.api_key": True,
    }
