"""Environment-driven configuration for pical."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any

from .config_loader import Config, load_config

logger = logging.getLogger(__name__)

# environment variable -> (config key, converter)
ENV_OVERRIDES: dict[str, tuple[str, Any]] = {
    "PICAL_DEFAULT_TIMEZONE": ("default_timezone", str),
    "PICAL_MAX_CANDIDATES": ("max_candidates_per_rule", int),
    "PICAL_TIME_BUDGET_MS": ("expansion_time_budget_ms", int),
    "PICAL_MAX_WINDOW_DAYS": ("max_window_days", int),
    "PICAL_REQUEST_TIMEOUT": ("request_timeout_seconds", float),
    "PICAL_LOG_LEVEL": ("log_level", str),
}


class ConfigManager:
    """Manages application configuration from a config file, environment variables and .env files."""

    def __init__(self, config_path: Path | None = None, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional YAML config path (see load_config for the default)
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.config_path = config_path
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        content = self.env_file_path.read_text(encoding="utf-8")
        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, val = line.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")

            if key and key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build a configuration mapping from PICAL_* environment variables.

        Values that fail conversion are logged and ignored.
        """
        cfg: dict[str, Any] = {}
        for env_name, (key, convert) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                cfg[key] = convert(raw)
            except ValueError:
                logger.warning("Invalid %s=%r; ignoring", env_name, raw)
        return cfg

    def load_full_config(self) -> Config:
        """Load the config file, then apply .env and environment overrides.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        base = load_config(self.config_path)
        overrides = self.build_config_from_env()
        if not overrides:
            return base
        merged = {**asdict(base), **overrides}
        logger.debug("Applying environment overrides: %s", ", ".join(sorted(overrides)))
        return Config.from_dict(merged)


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and dataclass-like objects."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
