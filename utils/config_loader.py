"""Unified configuration loading for the scraping engine."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from utils.error_handling import ConfigurationError

DEFAULT_CONFIG_PATH = "config/settings.json"


class ConfigLoader:
    """Centralized configuration loader with caching and validation."""

    ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

    REQUIRED_SECTIONS: Dict[str, type] = {
        "browser": dict,
        "proxy": dict,
        "captcha": dict,
        "retry": dict,
        "rate_limit": dict,
    }

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._config_cache: Dict[str, Dict[str, Any]] = {}
        self._missing_env_vars: set[str] = set()

    def load_config(self, config_path: str) -> Dict[str, Any]:
        """Load and cache JSON configuration with unified error handling.

        Args:
            config_path: Path to configuration file

        Returns:
            Configuration dictionary with ``${ENV}`` placeholders substituted

        Raises:
            ConfigurationError: If file not found or JSON invalid
        """
        if config_path in self._config_cache:
            return self._config_cache[config_path]

        config_file = Path(config_path)
        if not config_file.exists():
            error_msg = f"Configuration file not found: {config_path}"
            self.logger.error(error_msg)
            raise ConfigurationError(error_msg, {"path": config_path})

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON in configuration {config_path}: {e}"
            self.logger.error(error_msg)
            raise ConfigurationError(error_msg, {"path": config_path}) from e
        except OSError as e:
            error_msg = f"Error reading configuration {config_path}: {e}"
            self.logger.error(error_msg)
            raise ConfigurationError(error_msg, {"path": config_path}) from e

        config = self._substitute_env_variables(config)

        for message in self.validate_config_structure(config):
            self.logger.warning("Configuration validation warning: %s", message)

        for key_path, present in self.validate_api_keys(config).items():
            if not present:
                self.logger.warning("Configuration missing API key for %s", key_path)

        self._config_cache[config_path] = config
        self.logger.debug("Configuration loaded successfully: %s", config_path)
        return config

    def get_nested_value(
        self, config: Dict[str, Any], key_path: str, default: Any = None
    ) -> Any:
        """Get nested configuration value using dot notation.

        Example:
            >>> loader.get_nested_value({"retry": {"max_attempts": 2}}, "retry.max_attempts")
            2
        """
        value = config
        for key in key_path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def validate_required_keys(
        self, config: Dict[str, Any], required_keys: list[str]
    ) -> None:
        missing_keys = [
            key_path
            for key_path in required_keys
            if self.get_nested_value(config, key_path) is None
        ]
        if missing_keys:
            error_msg = f"Missing required configuration keys: {missing_keys}"
            self.logger.error(error_msg)
            raise ConfigurationError(error_msg, {"missing": missing_keys})

    def clear_cache(self, config_path: Optional[str] = None) -> None:
        if config_path:
            self._config_cache.pop(config_path, None)
        else:
            self._config_cache.clear()
            self._missing_env_vars.clear()
        self.logger.debug("Configuration cache cleared: %s", config_path or "all")

    def _substitute_env_variables(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self._substitute_env_variables(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._substitute_env_variables(item) for item in value]
        if isinstance(value, str):

            def replace(match: re.Match[str]) -> str:
                env_name = match.group(1)
                env_value = os.getenv(env_name)
                if env_value is None:
                    if env_name not in self._missing_env_vars:
                        self.logger.debug(
                            "Environment variable %s is not set; substituting empty string",
                            env_name,
                        )
                        self._missing_env_vars.add(env_name)
                    return ""
                return env_value

            return self.ENV_PATTERN.sub(replace, value)
        return value

    def validate_config_structure(self, config: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        for key, expected_type in self.REQUIRED_SECTIONS.items():
            value = config.get(key)
            if value is None:
                errors.append(f"Missing required configuration section '{key}'")
            elif not isinstance(value, expected_type):
                errors.append(f"Section '{key}' must be an object in configuration")
        return errors

    def validate_api_keys(self, config: Dict[str, Any]) -> Dict[str, bool]:
        """Report, for every enabled section, whether its providers carry credentials."""
        status: Dict[str, bool] = {}

        proxy = config.get("proxy", {})
        if isinstance(proxy, dict) and proxy.get("enabled"):
            providers = proxy.get("providers", {})
            if isinstance(providers, dict):
                scraperapi = providers.get("scraperapi") or {}
                if "api_key" in scraperapi:
                    status["proxy.providers.scraperapi.api_key"] = bool(
                        scraperapi.get("api_key")
                    )
                for name in ("brightdata", "smartproxy"):
                    creds = providers.get(name) or {}
                    if "username" in creds:
                        status[f"proxy.providers.{name}.username"] = bool(
                            creds.get("username") and creds.get("password")
                        )

        captcha = config.get("captcha", {})
        if isinstance(captcha, dict) and captcha.get("enabled"):
            providers = captcha.get("providers", {})
            if isinstance(providers, dict):
                for name, provider in providers.items():
                    if isinstance(provider, dict) and "api_key" in provider:
                        status[f"captcha.providers.{name}.api_key"] = bool(
                            provider.get("api_key")
                        )

        return status


# Global instance for application-wide use
config_loader = ConfigLoader()
