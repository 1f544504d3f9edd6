"""Unit tests for pical.event_store.InMemoryEventStore."""

from datetime import UTC, datetime

import pytest

from pical.event_store import InMemoryEventStore
from pical.exceptions import EventNotFoundError, EventValidationError
from pical.models import Event

pytestmark = pytest.mark.unit


class TestEvents:
    """Event CRUD behaviour."""

    def test_create_assigns_id_when_missing(self, store, make_event):
        created = store.create_event(make_event(event_id=""))

        assert created.event_id
        assert store.get_event(created.event_id) == created

    def test_create_keeps_given_id(self, store, make_event):
        created = store.create_event(make_event(event_id="dentist"))

        assert created.event_id == "dentist"

    @pytest.mark.parametrize("field", ["person_name", "title"])
    def test_create_requires_fields(self, store, make_event, field):
        with pytest.raises(EventValidationError, match=field):
            store.create_event(make_event(**{field: "  "}))

    def test_duplicate_id_is_rejected(self, store, make_event):
        store.create_event(make_event())

        with pytest.raises(EventValidationError):
            store.create_event(make_event())

    def test_get_missing_event_raises(self, store):
        with pytest.raises(EventNotFoundError) as excinfo:
            store.get_event("nope")

        assert excinfo.value.event_id == "nope"

    def test_list_events_orders_by_person_title_and_id(self, store, make_event):
        store.create_event(make_event(event_id="3", person_name="Sam", title="Piano"))
        store.create_event(make_event(event_id="2", person_name="Ana", title="Swim"))
        store.create_event(make_event(event_id="1", person_name="Sam", title="Piano"))
        store.create_event(make_event(event_id="4", person_name="Ana", title="Chess"))

        page, total = store.list_events(limit=3, offset=0)
        rest, _ = store.list_events(limit=3, offset=3)

        assert total == 4
        assert [e.event_id for e in page] == ["4", "2", "1"]
        assert [e.event_id for e in rest] == ["3"]

    def test_delete_event_cascades_to_exceptions(self, store, make_event, cancel):
        store.create_event(make_event(rrule="FREQ=DAILY"))
        store.put_exception(cancel(datetime(2025, 1, 7, 10, tzinfo=UTC)))

        store.delete_event("evt-1")

        with pytest.raises(EventNotFoundError):
            store.list_exceptions("evt-1")
        store.create_event(make_event(rrule="FREQ=DAILY"))
        assert store.list_exceptions("evt-1") == []

    def test_delete_missing_event_raises(self, store):
        with pytest.raises(EventNotFoundError):
            store.delete_event("nope")


class TestExceptions:
    """Recurrence exception storage."""

    def test_put_and_list(self, store, make_event, cancel):
        store.create_event(make_event(rrule="FREQ=DAILY"))
        exc = cancel(datetime(2025, 1, 7, 10, tzinfo=UTC))

        store.put_exception(exc)

        assert store.list_exceptions("evt-1") == [exc]

    def test_put_replaces_exception_for_same_slot(self, store, make_event, cancel, move):
        store.create_event(make_event(rrule="FREQ=DAILY"))
        store.put_exception(cancel(datetime(2025, 1, 7, 10, tzinfo=UTC)))
        # Same slot given as naive wall-clock time in the event zone
        replacement = move(
            datetime(2025, 1, 7, 10),
            datetime(2025, 1, 7, 12, tzinfo=UTC),
            datetime(2025, 1, 7, 13, tzinfo=UTC),
        )

        store.put_exception(replacement)

        assert store.list_exceptions("evt-1") == [replacement]

    def test_put_for_unknown_event_raises(self, store, cancel):
        with pytest.raises(EventNotFoundError):
            store.put_exception(cancel(datetime(2025, 1, 7, 10, tzinfo=UTC)))

    def test_put_for_non_recurring_event_raises(self, store, make_event, cancel):
        store.create_event(make_event())

        with pytest.raises(EventValidationError):
            store.put_exception(cancel(datetime(2025, 1, 6, 10, tzinfo=UTC)))

    def test_delete_exception(self, store, make_event, cancel):
        store.create_event(make_event(rrule="FREQ=DAILY"))
        store.put_exception(cancel(datetime(2025, 1, 7, 10, tzinfo=UTC)))

        assert store.delete_exception("evt-1", datetime(2025, 1, 7, 10, tzinfo=UTC)) is True
        assert store.delete_exception("evt-1", datetime(2025, 1, 7, 10, tzinfo=UTC)) is False
        assert store.list_exceptions("evt-1") == []


class TestDefaultTimezone:
    """Events created without a zone take the store's default."""

    def test_event_without_zone_gets_store_default(self):
        store = InMemoryEventStore(default_timezone="Europe/Oslo")

        created = store.create_event(
            Event(person_name="Sam", title="Piano", start=datetime(2025, 1, 6, 17), end=datetime(2025, 1, 6, 18))
        )

        assert created.timezone == "Europe/Oslo"
        assert created.start_instant == datetime(2025, 1, 6, 16, tzinfo=UTC)

    def test_explicit_zone_is_kept(self, make_event):
        store = InMemoryEventStore(default_timezone="Europe/Oslo")

        created = store.create_event(make_event(timezone="UTC"))

        assert created.timezone == "UTC"

    def test_default_comes_from_environment(self, monkeypatch):
        monkeypatch.setenv("PICAL_DEFAULT_TIMEZONE", "Asia/Tokyo")

        assert InMemoryEventStore().default_timezone == "Asia/Tokyo"

    def test_store_exposes_paged_listing_only(self, store):
        assert not hasattr(store, "all_events")
