"""In-memory event store for pical.

Implements the storage contract the occurrence service depends on
(get_event / list_exceptions) plus the CRUD operations the kiosk API needs.
Exceptions are keyed by (event_id, recurrence_id) and removed together with
their event.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Optional, Protocol

from .exceptions import EventNotFoundError, EventValidationError
from .models import Event, RecurrenceException
from .timezone_utils import ensure_utc, get_default_timezone, wall_to_utc

logger = logging.getLogger(__name__)


class EventStore(Protocol):
    """Read contract consumed by the occurrence service."""

    def get_event(self, event_id: str) -> Event: ...

    def list_exceptions(self, event_id: str) -> list[RecurrenceException]: ...

    def list_events(self, limit: int, offset: int) -> tuple[list[Event], int]: ...


class InMemoryEventStore:
    """Thread-safe dict-backed event store."""

    def __init__(self, default_timezone: Optional[str] = None) -> None:
        """Initialize the store.

        Args:
            default_timezone: Zone for events created without one; defaults to
                PICAL_DEFAULT_TIMEZONE or UTC
        """
        self.default_timezone = default_timezone or get_default_timezone()
        self._lock = threading.Lock()
        self._events: dict[str, Event] = {}
        self._exceptions: dict[str, dict[datetime, RecurrenceException]] = {}

    def create_event(self, event: Event) -> Event:
        """Store a new event, assigning a UUID when event_id is empty.

        An event built without a timezone takes the store's default zone, and
        its naive start/end are read as wall-clock time in that zone.

        Raises:
            EventValidationError: If person_name, title or timezone is missing,
                the id is already taken, or the event is invalid in the default zone
        """
        for field in ("person_name", "title", "timezone"):
            if not getattr(event, field).strip():
                raise EventValidationError(f"{field} is required")

        if "timezone" not in event.model_fields_set and event.timezone != self.default_timezone:
            try:
                event = Event.model_validate({**dict(event), "timezone": self.default_timezone})
            except ValueError as e:
                raise EventValidationError(f"event is invalid in zone {self.default_timezone}: {e}") from e

        if not event.event_id:
            event = event.model_copy(update={"event_id": str(uuid.uuid4())})

        with self._lock:
            if event.event_id in self._events:
                raise EventValidationError(f"event {event.event_id!r} already exists")
            self._events[event.event_id] = event
            self._exceptions[event.event_id] = {}

        logger.debug("Created event %s (%r)", event.event_id, event.title)
        return event

    def get_event(self, event_id: str) -> Event:
        with self._lock:
            try:
                return self._events[event_id]
            except KeyError:
                raise EventNotFoundError(event_id) from None

    def list_events(self, limit: int, offset: int) -> tuple[list[Event], int]:
        """Return one page of events ordered by person, title and id, plus the total."""
        with self._lock:
            ordered = sorted(self._events.values(), key=lambda e: (e.person_name, e.title, e.event_id))
        return ordered[offset : offset + limit], len(ordered)

    def delete_event(self, event_id: str) -> None:
        """Delete an event and, with it, all of its exceptions."""
        with self._lock:
            if event_id not in self._events:
                raise EventNotFoundError(event_id)
            del self._events[event_id]
            dropped = self._exceptions.pop(event_id, {})
        logger.debug("Deleted event %s and %d exceptions", event_id, len(dropped))

    def put_exception(self, exception: RecurrenceException) -> RecurrenceException:
        """Insert or replace the exception for (event_id, recurrence_id).

        Raises:
            EventNotFoundError: If the event does not exist
            EventValidationError: If the event is not recurring
        """
        with self._lock:
            event = self._events.get(exception.event_id)
            if event is None:
                raise EventNotFoundError(exception.event_id)
            if not event.is_recurring:
                raise EventValidationError(
                    "non-recurring events have no exceptions; edit or delete the event instead"
                )
            key = self._key(event, exception.recurrence_id)
            self._exceptions[event.event_id][key] = exception
        return exception

    def delete_exception(self, event_id: str, recurrence_id: datetime) -> bool:
        """Remove an exception; returns False when there was none."""
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise EventNotFoundError(event_id)
            return self._exceptions[event_id].pop(self._key(event, recurrence_id), None) is not None

    def list_exceptions(self, event_id: str) -> list[RecurrenceException]:
        with self._lock:
            if event_id not in self._events:
                raise EventNotFoundError(event_id)
            return list(self._exceptions[event_id].values())

    @staticmethod
    def _key(event: Event, recurrence_id: datetime) -> datetime:
        if recurrence_id.tzinfo is None:
            return wall_to_utc(recurrence_id, event.zone)
        return ensure_utc(recurrence_id)
