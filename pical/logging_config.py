"""
Central logging configuration for pical.

Keeps the recurrence engine's DEBUG chatter out of production logs while
letting PICAL_DEBUG / PICAL_LOG_LEVEL turn it back on for troubleshooting.
"""

import logging
import os
from typing import Optional

PICAL_MODULES = [
    "pical",
    "pical.recurrence_engine",
    "pical.rrule_parser",
    "pical.occurrence_service",
    "pical.event_store",
    "pical.config_loader",
    "pical.config_manager",
    "pical.api_format",
    "pical.timezone_utils",
]

NOISY_LOGGERS = {
    "asyncio": logging.WARNING,
}


def configure_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    root_level: Optional[int] = None,
) -> None:
    """
    Configure logging levels for pical modules.

    Args:
        debug_mode: Whether to enable debug logging for pical modules
        force_debug: Override debug mode setting (None to use env var detection)
        root_level: Explicit root level; defaults to DEBUG or INFO from debug mode

    Environment Variables:
        PICAL_DEBUG: Set to '1', 'true', 'yes', 'on' to force debug logging
        PICAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("PICAL_DEBUG", "").lower() in ("1", "true", "yes", "on")
    env_log_level = os.getenv("PICAL_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    if root_level is None:
        root_level = logging.DEBUG if final_debug else logging.INFO
    elif final_debug:
        root_level = min(root_level, logging.DEBUG)
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Outside debug mode, module loggers follow a root level stricter than INFO
    module_level = logging.DEBUG if final_debug else max(logging.INFO, root_level)
    logger_config = dict(NOISY_LOGGERS)
    for module in PICAL_MODULES:
        logger_config[module] = module_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for pical modules")
    else:
        root_logger.info("Production logging configuration applied")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ["pical", "pical.recurrence_engine", "asyncio"]:
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
