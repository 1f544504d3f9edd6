"""Query parsing and wire formatting helpers for the calendar API layer."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from dateutil import parser as date_parser

from .config_loader import Config
from .exceptions import (
    EventNotFoundError,
    EventValidationError,
    InvalidWindowError,
    MalformedRuleError,
    RuleBudgetExceededError,
)
from .models import Occurrence, PagedResponse
from .timezone_utils import ensure_utc, serialize_iso

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 200
MAX_PAGE_OFFSET = 1_000_000

__all__ = [
    "error_status",
    "occurrence_to_api_model",
    "occurrences_to_page",
    "parse_int_query",
    "parse_page_params",
    "parse_query_window",
    "serialize_iso",
]


def _parse_instant(name: str, raw: Optional[str]) -> datetime:
    if raw is None or not raw.strip():
        raise InvalidWindowError(f"missing {name} parameter")
    try:
        return ensure_utc(date_parser.isoparse(raw.strip()))
    except ValueError as e:
        raise InvalidWindowError(f"invalid {name} parameter {raw!r}") from e


def parse_query_window(start: Optional[str], end: Optional[str]) -> tuple[datetime, datetime]:
    """Translate ?start=&end= query values into aware UTC instants.

    Naive values are taken as UTC. Date-only values mean midnight UTC.

    Raises:
        InvalidWindowError: If a value is missing or not ISO-8601
    """
    return _parse_instant("start", start), _parse_instant("end", end)


def parse_int_query(raw: Optional[str], default: int, minimum: int, maximum: int) -> int:
    """Parse an integer query parameter, clamping it into [minimum, maximum].

    Missing or non-numeric values fall back to default.
    """
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        logger.debug("Ignoring non-integer query value %r; using %d", raw, default)
        return default
    return max(minimum, min(maximum, value))


def parse_page_params(
    raw_limit: Optional[str],
    raw_offset: Optional[str],
    config: Optional[Config] = None,
) -> tuple[int, int]:
    """Parse ?limit=&offset= query values using the configured page sizes.

    Returns:
        (limit, offset), limit clamped to [1, page_limit_max] and offset to
        [0, MAX_PAGE_OFFSET]
    """
    default = config.page_limit_default if config else DEFAULT_PAGE_LIMIT
    maximum = config.page_limit_max if config else MAX_PAGE_LIMIT
    limit = parse_int_query(raw_limit, default, 1, maximum)
    offset = parse_int_query(raw_offset, 0, 0, MAX_PAGE_OFFSET)
    return limit, offset


def occurrence_to_api_model(occurrence: Occurrence) -> dict[str, Any]:
    """Serialize an occurrence with the public field names."""
    return {
        "eventId": occurrence.event_id,
        "startTime": serialize_iso(occurrence.start_time),
        "endTime": serialize_iso(occurrence.end_time),
        "isOverride": occurrence.is_override,
    }


def occurrences_to_page(
    occurrences: list[Occurrence],
    limit: int = DEFAULT_PAGE_LIMIT,
    offset: int = 0,
    max_limit: int = MAX_PAGE_LIMIT,
) -> PagedResponse[dict[str, Any]]:
    """Slice an ordered occurrence list into a page of API models."""
    limit = max(1, min(max_limit, limit))
    offset = max(0, min(MAX_PAGE_OFFSET, offset))
    items = [occurrence_to_api_model(occ) for occ in occurrences[offset : offset + limit]]
    return PagedResponse[dict[str, Any]](
        items=items,
        limit=limit,
        offset=offset,
        count=len(items),
        total=len(occurrences),
    )


def error_status(exc: BaseException) -> int:
    """Map a domain exception onto the HTTP status an API handler should return."""
    if isinstance(exc, (MalformedRuleError, InvalidWindowError, EventValidationError)):
        return 400
    if isinstance(exc, EventNotFoundError):
        return 404
    if isinstance(exc, RuleBudgetExceededError):
        return 503
    return 500
