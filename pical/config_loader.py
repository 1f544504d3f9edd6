"""pical.config_loader

Config loader for pical.

- Reads YAML with PyYAML (JSON is valid YAML, so JSON files work too).
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .timezone_utils import DEFAULT_SERVER_TIMEZONE, InvalidTimezoneError, resolve_zone

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config") / "pical.yaml"


@dataclass
class Config:
    """Typed configuration for pical.

    Fields:
        default_timezone: zone used for events created without one
        max_candidates_per_rule: candidate budget per expansion (0 disables)
        expansion_time_budget_ms: wall-time budget per expansion (0 disables)
        max_window_days: widest accepted query window (0 disables)
        request_timeout_seconds: per-request deadline for async expansion
        page_limit_default: default page size for list endpoints
        page_limit_max: largest accepted page size
        log_level: logging level name
    """

    default_timezone: str = DEFAULT_SERVER_TIMEZONE
    max_candidates_per_rule: int = 100_000
    expansion_time_budget_ms: int = 2_000
    max_window_days: int = 3_660
    request_timeout_seconds: float = 5.0
    page_limit_default: int = 50
    page_limit_max: int = 200
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced; garbage falls back to the default with
        a warning. The legacy key `max_occurrences_per_rule` is accepted for
        `max_candidates_per_rule`.
        """
        if data is None:
            data = {}

        def _coerce_int(key: str, default: int, minimum: int = 0) -> int:
            raw = data.get(key, default)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default
            if value < minimum:
                logger.warning("Config %s=%d below minimum; coercing to %d", key, value, minimum)
                return minimum
            return value

        if "max_candidates_per_rule" not in data and "max_occurrences_per_rule" in data:
            data = {**data, "max_candidates_per_rule": data["max_occurrences_per_rule"]}

        max_candidates = _coerce_int("max_candidates_per_rule", 100_000)
        time_budget = _coerce_int("expansion_time_budget_ms", 2_000)
        max_window_days = _coerce_int("max_window_days", 3_660)
        page_default = _coerce_int("page_limit_default", 50, minimum=1)
        page_max = _coerce_int("page_limit_max", 200, minimum=1)
        if page_default > page_max:
            logger.warning("page_limit_default %d above page_limit_max; coercing to %d", page_default, page_max)
            page_default = page_max

        raw_timeout = data.get("request_timeout_seconds", 5.0)
        try:
            timeout = float(raw_timeout)
        except (TypeError, ValueError):
            logger.warning("Config request_timeout_seconds=%r is not a number; using 5.0", raw_timeout)
            timeout = 5.0

        timezone = str(data.get("default_timezone") or DEFAULT_SERVER_TIMEZONE)
        try:
            resolve_zone(timezone)
        except InvalidTimezoneError:
            logger.warning("Config default_timezone=%r is invalid; using %s", timezone, DEFAULT_SERVER_TIMEZONE)
            timezone = DEFAULT_SERVER_TIMEZONE

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            default_timezone=timezone,
            max_candidates_per_rule=max_candidates,
            expansion_time_budget_ms=time_budget,
            max_window_days=max_window_days,
            request_timeout_seconds=timeout,
            page_limit_default=page_default,
            page_limit_max=page_max,
            log_level=log_level,
        )


def load_config(path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file and return a Config instance.

    Args:
        path: Optional path to the config file; defaults to ./config/pical.yaml

    Returns:
        Config dataclass instance with values from file (or defaults).

    Behavior:
    - If file is missing: returns Config() with defaults.
    - If file exists but top-level is not a mapping: raises ValueError.
    """
    p = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_PATH
    logger.debug("Attempting to load config from %s", p)
    if not p.exists():
        logger.info("Config file %s not found; using defaults", p)
        return Config()

    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
        raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
    cfg = Config.from_dict(raw)
    logger.info("Loaded configuration from %s", p)
    logger.debug("Configuration values: %s", cfg)
    return cfg
