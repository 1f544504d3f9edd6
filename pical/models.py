"""Data models for household calendar events and their occurrences."""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Generic, Optional, TypeVar
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .timezone_utils import ensure_utc, resolve_zone, serialize_iso, to_local_wall, wall_to_utc

T = TypeVar("T")


class _WireModel(BaseModel):
    """Base model speaking camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class ExceptionKind(str, Enum):
    """How a recurrence exception deviates from the generated schedule."""

    CANCEL = "cancel"
    MOVE = "move"


# Integer kind codes stored by the legacy exceptions table
_LEGACY_KIND_CODES = {0: ExceptionKind.CANCEL, 1: ExceptionKind.MOVE}


class Event(_WireModel):
    """A calendar event: a single occurrence or the definition of a series.

    ``start``/``end`` are the first occurrence (the series anchor). Naive
    values are wall-clock time in ``timezone``.
    """

    event_id: str = Field(default="", description="Opaque, stable event identifier")
    person_name: str = Field(default="", description="Household member the event belongs to")
    title: str = Field(default="", description="Event title")
    notes: Optional[str] = Field(default=None, description="Free-text notes")
    timezone: str = Field(default="UTC", description="IANA zone the event is defined in")
    is_all_day: bool = Field(default=False, description="All-day event flag")
    rrule: Optional[str] = Field(default=None, description="RFC 5545 RRULE value, None if not recurring")
    start: datetime = Field(..., description="Start of the first occurrence")
    end: datetime = Field(..., description="End of the first occurrence")

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        resolve_zone(value)
        return value.strip()

    @field_validator("rrule", mode="before")
    @classmethod
    def _blank_rrule_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _check_bounds(self) -> "Event":
        if self.end_instant < self.start_instant:
            raise ValueError("event end must not be before its start")
        return self

    @property
    def zone(self) -> ZoneInfo:
        return resolve_zone(self.timezone)

    @property
    def is_recurring(self) -> bool:
        return self.rrule is not None

    @property
    def start_instant(self) -> datetime:
        """Absolute start of the first occurrence (aware, UTC)."""
        return self._instant(self.start)

    @property
    def end_instant(self) -> datetime:
        """Absolute end of the first occurrence (aware, UTC)."""
        return self._instant(self.end)

    @property
    def duration(self) -> timedelta:
        return self.end_instant - self.start_instant

    @property
    def start_wall(self) -> datetime:
        """Start as naive wall-clock time in the event zone."""
        return to_local_wall(self.start, self.zone)

    @property
    def start_date(self) -> date:
        """Civil date of the start in the event zone."""
        return self.start_wall.date()

    @property
    def day_span(self) -> int:
        """Number of civil days an all-day occurrence covers (at least one)."""
        end_date = to_local_wall(self.end, self.zone).date()
        return max(1, (end_date - self.start_date).days)

    def _instant(self, dt: datetime) -> datetime:
        if dt.tzinfo is None:
            return wall_to_utc(dt, self.zone)
        return ensure_utc(dt)

    @field_serializer("start", "end")
    def _serialize_datetime(self, dt: datetime) -> Optional[str]:
        return serialize_iso(dt)


class RecurrenceException(_WireModel):
    """A cancel or move applied to one slot of a recurring event.

    ``recurrence_id`` is the original, rule-computed start of the slot.
    Naive datetimes are wall-clock time in the event's zone.
    """

    event_id: str = Field(..., description="Event the exception belongs to")
    recurrence_id: datetime = Field(..., description="Original start of the affected slot")
    kind: ExceptionKind = Field(..., description="cancel or move")
    new_start: Optional[datetime] = Field(default=None, description="Replacement start (move only)")
    new_end: Optional[datetime] = Field(default=None, description="Replacement end (move only)")

    @field_validator("kind", mode="before")
    @classmethod
    def _accept_legacy_codes(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return _LEGACY_KIND_CODES[value]
            except KeyError:
                raise ValueError(f"unknown exception kind code {value}") from None
        return value

    @model_validator(mode="after")
    def _check_move_fields(self) -> "RecurrenceException":
        if self.kind == ExceptionKind.CANCEL:
            if self.new_start is not None or self.new_end is not None:
                raise ValueError("cancel exceptions must not carry new_start/new_end")
            return self

        if self.new_start is None or self.new_end is None:
            raise ValueError("move exceptions require new_start and new_end")
        if (self.new_start.tzinfo is None) != (self.new_end.tzinfo is None):
            raise ValueError("new_start and new_end must both be naive or both be aware")
        if self.new_end < self.new_start:
            raise ValueError("new_end must not be before new_start")
        return self

    @property
    def is_cancel(self) -> bool:
        return self.kind == ExceptionKind.CANCEL

    @field_serializer("recurrence_id", "new_start", "new_end", when_used="unless-none")
    def _serialize_datetime(self, dt: datetime) -> Optional[str]:
        return serialize_iso(dt)


class Occurrence(_WireModel):
    """One materialized instance of an event inside a query window.

    Derived on demand and never persisted; identified by
    ``(event_id, recurrence_id)``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: str = Field(..., description="Event that produced this occurrence")
    recurrence_id: datetime = Field(..., description="Original slot start (UTC)")
    start_time: datetime = Field(..., description="Effective start (UTC)")
    end_time: datetime = Field(..., description="Effective end (UTC)")
    is_override: bool = Field(default=False, description="True when produced by a move exception")
    is_all_day: bool = Field(default=False, description="All-day occurrence flag")

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.event_id, self.recurrence_id)

    @property
    def sort_key(self) -> tuple[datetime, str, datetime]:
        return (self.start_time, self.event_id, self.recurrence_id)

    @field_serializer("recurrence_id", "start_time", "end_time")
    def _serialize_datetime(self, dt: datetime) -> Optional[str]:
        return serialize_iso(dt)


class PagedResponse(BaseModel, Generic[T]):
    """Page of items returned by list endpoints."""

    items: list[T] = Field(default_factory=list)
    limit: int
    offset: int
    count: int
    total: int
