"""Occurrence queries: binds the event store to the recurrence engine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Any, Optional

from .api_format import occurrences_to_page
from .config_loader import Config
from .event_store import EventStore
from .exceptions import InvalidWindowError
from .models import Event, Occurrence, PagedResponse, RecurrenceException
from .recurrence_engine import RecurrenceEngine
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)

STORE_PAGE_SIZE = 200


class OccurrenceService:
    """Answers "what happens between start and end" for one or all events."""

    def __init__(self, store: EventStore, config: Optional[Config] = None):
        """Initialize the service.

        Args:
            store: Event store providing events and their exceptions
            config: Application config; defaults to Config()
        """
        self.store = store
        self.config = config or Config()
        self.engine = RecurrenceEngine(self.config)

    def _check_window(self, window_start: datetime, window_end: datetime) -> None:
        max_days = self.config.max_window_days
        if (
            max_days
            and window_start.tzinfo is not None
            and window_end.tzinfo is not None
            and window_end - window_start > timedelta(days=max_days)
        ):
            raise InvalidWindowError(f"window wider than {max_days} days")

    def _iter_events(self) -> Iterator[Event]:
        offset = 0
        while True:
            page, total = self.store.list_events(STORE_PAGE_SIZE, offset)
            yield from page
            offset += len(page)
            if not page or offset >= total:
                return

    def _with_exceptions(self) -> Iterator[tuple[Event, list[RecurrenceException]]]:
        for event in self._iter_events():
            exceptions = self.store.list_exceptions(event.event_id) if event.is_recurring else []
            yield event, exceptions

    def occurrences_for_event(self, event_id: str, window_start: datetime, window_end: datetime) -> list[Occurrence]:
        """Expand a single event.

        Raises:
            EventNotFoundError: If the event does not exist
            MalformedRuleError: If its rule is invalid (surface as 400)
            InvalidWindowError: If the window is unusable or too wide
            RuleBudgetExceededError: If the expansion budget trips
        """
        self._check_window(window_start, window_end)
        event = self.store.get_event(event_id)
        exceptions = self.store.list_exceptions(event_id) if event.is_recurring else []
        return self.engine.expand(event, exceptions, window_start, window_end)

    def list_occurrences(self, window_start: datetime, window_end: datetime) -> list[Occurrence]:
        """Expand every stored event, skipping (and logging) malformed rules."""
        self._check_window(window_start, window_end)
        occurrences = self.engine.expand_many(
            self._with_exceptions(), window_start, window_end, skip_malformed=True
        )
        logger.debug(
            "Listed %d occurrences between %s and %s",
            len(occurrences),
            window_start.isoformat(),
            window_end.isoformat(),
        )
        return occurrences

    def list_occurrences_page(
        self,
        window_start: datetime,
        window_end: datetime,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> PagedResponse[dict[str, Any]]:
        """One page of list_occurrences() in API form.

        limit defaults to page_limit_default and is capped at page_limit_max.
        """
        occurrences = self.list_occurrences(window_start, window_end)
        if limit is None:
            limit = self.config.page_limit_default
        return occurrences_to_page(occurrences, limit, offset, max_limit=self.config.page_limit_max)

    def list_upcoming(self, days: int = 7) -> list[Occurrence]:
        """Occurrences from now through the next days (now honours PICAL_TEST_TIME)."""
        start = now_utc()
        return self.list_occurrences(start, start + timedelta(days=days))

    async def occurrences_for_event_async(
        self,
        event_id: str,
        window_start: datetime,
        window_end: datetime,
        timeout: Optional[float] = None,
    ) -> list[Occurrence]:
        """Run occurrences_for_event in a worker thread under a deadline.

        Raises:
            asyncio.TimeoutError: If the deadline passes first
        """
        return await asyncio.wait_for(
            asyncio.to_thread(self.occurrences_for_event, event_id, window_start, window_end),
            timeout if timeout is not None else self.config.request_timeout_seconds,
        )

    async def list_occurrences_async(
        self,
        window_start: datetime,
        window_end: datetime,
        timeout: Optional[float] = None,
    ) -> list[Occurrence]:
        """Run list_occurrences in a worker thread under a deadline.

        Raises:
            asyncio.TimeoutError: If the deadline passes first
        """
        return await asyncio.wait_for(
            asyncio.to_thread(self.list_occurrences, window_start, window_end),
            timeout if timeout is not None else self.config.request_timeout_seconds,
        )
