"""Configuration manager for webrag CLI settings."""

import os
import json
from pathlib import Path
from typing import Dict, Any
import logging

from webrag.core.embed import PROVIDERS, DEFAULT_TIMEOUT
from webrag.core.store import DEFAULT_DATABASE_URL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "database_url": DEFAULT_DATABASE_URL,
    "embeddings_url": "",  # empty: provider default
    "embed_provider": "tei",
    "embed_model": "",
    "embed_dimensions": 0,
    "embed_timeout": DEFAULT_TIMEOUT,
    "log_level": "INFO",
    "json_logs": False,
    "backfill_batch_size": 10,
    "backfill_claim_pages": False,
}


class WebragConfigManager:
    """Manage webrag configuration settings with persistence.

    Values come from, in order of precedence: environment variables, the
    JSON file, built-in defaults.
    """

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "webrag_cli.json"
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file, then overlay the environment."""
        config = dict(DEFAULT_CONFIG)

        if self.config_file.exists():
            with open(self.config_file, "r") as f:
                config.update(json.load(f))
            logger.info(f"Configuration loaded from {self.config_file}")

        for key in config:
            env_value = os.getenv(key.upper())
            if env_value is not None:
                config[key] = _coerce(key, env_value)

        return config

    def _save_config(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self.config, f, indent=2)
        logger.info(f"Configuration saved to {self.config_file}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True) -> None:
        """Set configuration value and export it to the environment."""
        if key not in DEFAULT_CONFIG:
            raise KeyError(f"Unknown setting: {key}")
        value = _coerce(key, value)
        self.config[key] = value
        self._export(key, value)

        if persist:
            self._save_config()

        logger.info(f"Set {key} = {value}")

    def reset(self, key: str, persist: bool = True) -> None:
        """Reset configuration value to default."""
        if key not in DEFAULT_CONFIG:
            raise KeyError(f"Unknown setting: {key}")
        self.set(key, DEFAULT_CONFIG[key], persist)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self.config.copy()

    def apply_to_env(self) -> None:
        """Export every value so modules reading os.environ see the same settings."""
        for key, value in self.config.items():
            self._export(key, value)

    @staticmethod
    def _export(key: str, value: Any) -> None:
        env_key = key.upper()
        if isinstance(value, bool):
            os.environ[env_key] = str(value).lower()
        elif value in ("", 0):
            # unset optional settings
            os.environ.pop(env_key, None)
        else:
            os.environ[env_key] = str(value)

    def validate(self) -> Dict[str, Any]:
        """Validate current configuration."""
        validation = {
            "valid": True,
            "issues": [],
            "warnings": [],
        }

        if not self.get("database_url"):
            validation["issues"].append("DATABASE_URL not set")
            validation["valid"] = False

        provider = self.get("embed_provider")
        if provider not in PROVIDERS:
            validation["issues"].append(f"embed_provider must be one of {', '.join(PROVIDERS)}")
            validation["valid"] = False
        elif provider == "openai" and not os.getenv("OPENAI_API_KEY"):
            validation["warnings"].append("OPENAI_API_KEY not set")

        batch_size = self.get("backfill_batch_size")
        if not isinstance(batch_size, int) or not 1 <= batch_size <= 1000:
            validation["issues"].append("backfill_batch_size must be an integer between 1 and 1000")
            validation["valid"] = False

        timeout = self.get("embed_timeout")
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            validation["issues"].append("embed_timeout must be a positive number of seconds")
            validation["valid"] = False

        if not self.get("embed_dimensions"):
            validation["warnings"].append("embed_dimensions not set; vector width is not enforced")

        return validation


def _coerce(key: str, value: Any) -> Any:
    """Convert strings (env vars, CLI input) to the type of the default."""
    default = DEFAULT_CONFIG.get(key)
    if not isinstance(value, str) or isinstance(default, str) or default is None:
        return value
    if isinstance(default, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError:
        raise ValueError(f"Invalid value for {key}: {value!r}")
    return value


def get_config_manager() -> WebragConfigManager:
    """Get a configuration manager for the configured directory."""
    config_dir = os.getenv("WEBRAG_CONFIG_DIR", "./config")
    return WebragConfigManager(config_dir)
