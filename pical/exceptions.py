"""Exception hierarchy for recurrence expansion and event storage.

Expansion errors all derive from RecurrenceError so HTTP handlers can map the
whole family in one place. Storage errors are kept separate because they come
from the event store collaborator, not from the engine.
"""


class RecurrenceError(Exception):
    """Base exception for all recurrence expansion errors."""


class MalformedRuleError(RecurrenceError):
    """Recurrence rule could not be parsed or contradicts itself.

    Raised when:
    - The RRULE string has an unknown, duplicated or garbled part
    - FREQ is missing or unknown
    - A numeric part is out of range (e.g. BYMONTH=13, INTERVAL=0)
    - Parts conflict (COUNT with UNTIL, BYMONTH=2;BYMONTHDAY=30)

    Should result in HTTP 400 Bad Request when the rule came from user input.
    """


class InvalidWindowError(RecurrenceError):
    """Query window is unusable.

    Raised when:
    - window start is after window end
    - a window bound is naive (no tzinfo)
    - query-string bounds cannot be parsed

    Should result in HTTP 400 Bad Request response.
    """


class RuleBudgetExceededError(RecurrenceError):
    """Expansion tripped the candidate or time budget.

    The result would have been incomplete, so nothing is returned. Treated as
    a server-side resource protection fault (HTTP 503).
    """

    def __init__(self, message: str, *, event_id: str | None = None, limit: int | None = None, examined: int = 0):
        super().__init__(message)
        self.event_id = event_id
        self.limit = limit
        self.examined = examined


class EventNotFoundError(LookupError):
    """No event stored under the requested id."""

    def __init__(self, event_id: str):
        super().__init__(f"event {event_id!r} not found")
        self.event_id = event_id


class EventValidationError(ValueError):
    """Event or exception rejected by the store (missing fields, bad reference)."""
