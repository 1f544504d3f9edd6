"""pical - recurrence expansion core for a household calendar kiosk.

Public entry point is ``expand()``; the models, errors and service layer are
re-exported here for callers such as HTTP handlers.
"""

__version__ = "0.1.0"

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from colorlog import ColoredFormatter

from .config_manager import ConfigManager
from .event_store import InMemoryEventStore
from .exceptions import (
    EventNotFoundError,
    EventValidationError,
    InvalidWindowError,
    MalformedRuleError,
    RecurrenceError,
    RuleBudgetExceededError,
)
from .logging_config import configure_logging
from .models import Event, ExceptionKind, Occurrence, PagedResponse, RecurrenceException
from .occurrence_service import OccurrenceService
from .recurrence_engine import ExpansionLimits, ExpansionStats, RecurrenceEngine, expand


def init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Installs a colorized stderr handler when the root logger has none, then
    applies the level through configure_logging(). PICAL_DEBUG (truthy values:
    "1", "true", "yes", "on") forces DEBUG verbosity without changing code.
    """
    debug_env = os.environ.get("PICAL_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message (only the level is colorized)
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO
    configure_logging(debug_mode=level <= logging.DEBUG, root_level=level)
    logging.getLogger(__name__).debug("Logging initialized at level %s", logging.getLevelName(level))


def bootstrap(config_path: Optional[Path] = None, env_file_path: Optional[Path] = None) -> OccurrenceService:
    """Set up logging and configuration, returning a ready occurrence service.

    Behavior:
    - Initialize console logging early using PICAL_LOG_LEVEL (env) if present.
    - Load the config file, .env defaults and PICAL_* overrides.
    - Re-apply logging from the configured log_level.
    - Build an in-memory store whose events default to the configured zone.
    """
    init_logging(os.environ.get("PICAL_LOG_LEVEL"))
    logger = logging.getLogger(__name__)

    config = ConfigManager(config_path, env_file_path).load_full_config()
    logger.info("Applying configured log_level=%s", config.log_level)
    init_logging(config.log_level)

    store = InMemoryEventStore(default_timezone=config.default_timezone)
    logger.debug("Event store default timezone: %s", store.default_timezone)
    return OccurrenceService(store, config)


__all__ = [
    "Event",
    "EventNotFoundError",
    "EventValidationError",
    "ExceptionKind",
    "ExpansionLimits",
    "ExpansionStats",
    "InMemoryEventStore",
    "InvalidWindowError",
    "MalformedRuleError",
    "Occurrence",
    "OccurrenceService",
    "PagedResponse",
    "RecurrenceEngine",
    "RecurrenceError",
    "RecurrenceException",
    "RuleBudgetExceededError",
    "bootstrap",
    "expand",
    "init_logging",
]
