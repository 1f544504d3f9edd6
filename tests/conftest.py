"""Shared fixtures for pical tests."""

from collections.abc import Callable, Generator
from datetime import UTC, datetime
from typing import Any, Optional

import pytest

from pical.event_store import InMemoryEventStore
from pical.models import Event, ExceptionKind, RecurrenceException


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "critical_path: Core functionality tests")


def utc(*args: int) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=UTC)


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """Return a builder for Event instances with sensible defaults.

    Defaults describe a one-hour timed event on Monday 2025-01-06 10:00 UTC.
    """

    def builder(
        rrule: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        event_id: str = "evt-1",
        timezone: str = "UTC",
        is_all_day: bool = False,
        **extra: Any,
    ) -> Event:
        start = start or utc(2025, 1, 6, 10, 0)
        return Event(
            event_id=event_id,
            person_name=extra.pop("person_name", "Sam"),
            title=extra.pop("title", "Test event"),
            timezone=timezone,
            is_all_day=is_all_day,
            rrule=rrule,
            start=start,
            end=end or start.replace(hour=start.hour + 1),
            **extra,
        )

    return builder


@pytest.fixture
def cancel() -> Callable[..., RecurrenceException]:
    """Return a builder for cancel exceptions."""

    def builder(recurrence_id: datetime, event_id: str = "evt-1") -> RecurrenceException:
        return RecurrenceException(event_id=event_id, recurrence_id=recurrence_id, kind=ExceptionKind.CANCEL)

    return builder


@pytest.fixture
def move() -> Callable[..., RecurrenceException]:
    """Return a builder for move exceptions."""

    def builder(
        recurrence_id: datetime,
        new_start: datetime,
        new_end: datetime,
        event_id: str = "evt-1",
    ) -> RecurrenceException:
        return RecurrenceException(
            event_id=event_id,
            recurrence_id=recurrence_id,
            kind=ExceptionKind.MOVE,
            new_start=new_start,
            new_end=new_end,
        )

    return builder


@pytest.fixture
def store() -> InMemoryEventStore:
    """Empty in-memory event store."""
    return InMemoryEventStore()


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, Any, None]:
    """Clear PICAL_* environment variables so host settings never leak into tests."""
    for name in (
        "PICAL_TEST_TIME",
        "PICAL_DEBUG",
        "PICAL_LOG_LEVEL",
        "PICAL_DEFAULT_TIMEZONE",
        "PICAL_MAX_CANDIDATES",
        "PICAL_TIME_BUDGET_MS",
        "PICAL_MAX_WINDOW_DAYS",
        "PICAL_REQUEST_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
