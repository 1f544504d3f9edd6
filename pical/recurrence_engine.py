"""Recurrence expansion and exception resolution for pical.

``expand()`` turns one Event plus its RecurrenceExceptions into the ordered
list of Occurrences intersecting a half-open query window. It is a pure
function of its arguments: no I/O, no shared mutable state, safe to call
concurrently from several threads.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, NamedTuple, Optional, Union

from dateutil.rrule import DAILY, HOURLY, MINUTELY, MONTHLY, SECONDLY, WEEKLY, YEARLY

from .exceptions import InvalidWindowError, MalformedRuleError, RuleBudgetExceededError
from .models import Event, Occurrence, RecurrenceException
from .rrule_parser import ParsedRule, parse_rrule
from .timezone_utils import ensure_utc, local_midnight_utc, to_local_wall, wall_to_utc

logger = logging.getLogger(__name__)

# Wall-clock to UTC mapping is not monotonic inside a spring-forward gap, so
# generation runs this far past the window end before stopping.
DST_SLACK = timedelta(hours=3)

# Extra room before the scan start when re-anchoring a series
FAST_FORWARD_MARGIN = timedelta(days=1)

# Rules without COUNT are generated in spans of this length so the time budget
# is checked between spans of a sparse series
SCAN_CHUNK = timedelta(days=366)

SlotKey = Union[datetime, date]


@dataclass
class ExpansionLimits:
    """Work limits applied to a single expansion.

    ``max_candidates`` counts rule candidates examined; ``time_budget_ms``
    bounds wall time. ``None`` or 0 disables a limit.
    """

    max_candidates: Optional[int] = 100_000
    time_budget_ms: Optional[int] = 2_000

    @classmethod
    def from_settings(cls, settings: Any) -> "ExpansionLimits":
        """Extract expansion limits from a settings object (dict or attributes)."""
        if isinstance(settings, dict):
            get = settings.get
        else:
            def get(key: str, default: Any = None) -> Any:
                return getattr(settings, key, default)

        return cls(
            max_candidates=get("max_candidates_per_rule", 100_000),
            time_budget_ms=get("expansion_time_budget_ms", 2_000),
        )


@dataclass
class ExpansionStats:
    """Instrumentation filled in by expand() when the caller supplies one."""

    candidates_examined: int = 0
    move_checks: int = 0
    fast_forwarded: bool = False
    unmatched_exceptions: int = 0


class _Slot(NamedTuple):
    key: SlotKey
    recurrence_id: datetime
    start: datetime
    end: datetime


class _Budget:
    """Counts candidates and elapsed time, raising once a limit is passed."""

    def __init__(self, event_id: str, limits: ExpansionLimits, stats: ExpansionStats):
        self.event_id = event_id
        self.max_candidates = limits.max_candidates or None
        self.time_budget_ms = limits.time_budget_ms or None
        self.stats = stats
        self.started = time.monotonic()

    def tick(self) -> None:
        self.stats.candidates_examined += 1
        examined = self.stats.candidates_examined
        if self.max_candidates is not None and examined > self.max_candidates:
            logger.warning("Event %s: candidate budget of %d exhausted", self.event_id, self.max_candidates)
            raise RuleBudgetExceededError(
                f"expansion of event {self.event_id!r} examined more than "
                f"{self.max_candidates} candidates",
                event_id=self.event_id,
                limit=self.max_candidates,
                examined=examined,
            )
        self.check_time()

    def check_time(self) -> None:
        if self.time_budget_ms is not None:
            elapsed_ms = (time.monotonic() - self.started) * 1000
            if elapsed_ms > self.time_budget_ms:
                logger.warning("Event %s: time budget of %dms exhausted", self.event_id, self.time_budget_ms)
                raise RuleBudgetExceededError(
                    f"expansion of event {self.event_id!r} exceeded time budget "
                    f"({elapsed_ms:.0f}ms > {self.time_budget_ms}ms)",
                    event_id=self.event_id,
                    limit=self.time_budget_ms,
                    examined=self.stats.candidates_examined,
                )


def _intersects(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    """Half-open intersection; zero-length occurrences match when inside the window."""
    if start >= window_end:
        return False
    if end == start:
        return start >= window_start
    return end > window_start


def _series_anchor(event: Event) -> datetime:
    """First slot of the series as naive wall-clock time in the event zone."""
    if event.is_all_day:
        return datetime.combine(event.start_date, datetime.min.time())
    return event.start_wall


def _make_slot(event: Event, wall: datetime) -> _Slot:
    zone = event.zone
    if event.is_all_day:
        day = wall.date()
        start = local_midnight_utc(day, zone)
        end = local_midnight_utc(day + timedelta(days=event.day_span), zone)
        return _Slot(day, start, start, end)
    start = wall_to_utc(wall, zone)
    return _Slot(start, start, start, start + event.duration)


def _slot_key(event: Event, recurrence_id: datetime) -> SlotKey:
    """Key an exception by the slot it targets.

    All-day slots are matched on the civil date in the event zone, timed slots
    on the exact instant. Naive values are wall-clock time in the event zone.
    """
    if event.is_all_day:
        return to_local_wall(recurrence_id, event.zone).date()
    if recurrence_id.tzinfo is None:
        return wall_to_utc(recurrence_id, event.zone)
    return ensure_utc(recurrence_id)


def _to_instant(event: Event, dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return wall_to_utc(dt, event.zone)
    return ensure_utc(dt)


def _fast_forward(rule: ParsedRule, anchor: datetime, target: datetime) -> Optional[datetime]:
    """Return a later dtstart aligned to the series' period grid, or None.

    The result is the start of the last whole period (INTERVAL x frequency
    unit, counted on wall-clock fields from the anchor's period) at or before
    target. COUNT rules are never re-anchored: their count runs from the anchor.
    """
    if rule.count is not None or target <= anchor:
        return None

    step = rule.interval
    if rule.freq == YEARLY:
        periods = (target.year - anchor.year) // step
        if periods <= 0:
            return None
        return datetime(anchor.year + periods * step, 1, 1)

    if rule.freq == MONTHLY:
        months = (target.year - anchor.year) * 12 + (target.month - anchor.month)
        periods = months // step
        if periods <= 0:
            return None
        index = anchor.year * 12 + (anchor.month - 1) + periods * step
        return datetime(index // 12, index % 12 + 1, 1)

    if rule.freq == WEEKLY:
        wkst = rule.wkst if rule.wkst is not None else 0
        week_start = anchor.date() - timedelta(days=(anchor.weekday() - wkst) % 7)
        periods = ((target.date() - week_start).days // 7) // step
        if periods <= 0:
            return None
        return datetime.combine(week_start + timedelta(weeks=periods * step), datetime.min.time())

    if rule.freq == DAILY:
        periods = (target.date() - anchor.date()).days // step
        if periods <= 0:
            return None
        return datetime.combine(anchor.date() + timedelta(days=periods * step), datetime.min.time())

    units = {
        HOURLY: (timedelta(hours=1), {"minute": 0, "second": 0}),
        MINUTELY: (timedelta(minutes=1), {"second": 0}),
        SECONDLY: (timedelta(seconds=1), {}),
    }
    unit, truncate = units[rule.freq]
    base = anchor.replace(microsecond=0, **truncate)
    periods = ((target - base) // unit) // step
    if periods <= 0:
        return None
    return base + unit * (periods * step)


def _iter_slots(
    event: Event,
    rule: ParsedRule,
    from_wall: datetime,
    stop_wall: datetime,
    budget: _Budget,
    stats: ExpansionStats,
) -> Iterator[_Slot]:
    """Yield rule slots in ascending order from near from_wall through stop_wall.

    COUNT rules run from their anchor in a single pass. Other rules are
    generated one SCAN_CHUNK at a time, each chunk re-anchored on the period
    grid, with the time budget checked after every chunk.
    """
    anchor = _series_anchor(event)
    zone = event.zone
    if not rule.has_slots(anchor):
        logger.debug("Event %s: rule %r produces no slot from %s", event.event_id, rule.source, anchor)
        return
    if rule.count is not None:
        for wall in rule.iterate(anchor, zone, stop=stop_wall):
            budget.tick()
            yield _make_slot(event, wall)
        return

    until = rule.until_wall(zone)
    if until is not None:
        stop_wall = min(stop_wall, until)

    chunk_start = from_wall
    previous_end: Optional[datetime] = None
    while True:
        chunk_end = max(chunk_start, min(chunk_start + SCAN_CHUNK, stop_wall))
        dtstart = anchor
        jump = _fast_forward(rule, anchor, chunk_start - FAST_FORWARD_MARGIN)
        if jump is not None and jump > anchor:
            dtstart = jump
            if previous_end is None:
                stats.fast_forwarded = True
                logger.debug("Fast-forwarding event %s from %s to %s", event.event_id, anchor, jump)

        for wall in rule.iterate(dtstart, zone, anchor=anchor, stop=chunk_end):
            # The re-anchored chunk overlaps the slots already yielded
            if previous_end is not None and wall <= previous_end:
                continue
            budget.tick()
            yield _make_slot(event, wall)

        budget.check_time()
        if chunk_end >= stop_wall:
            return
        previous_end = chunk_start = chunk_end


def _index_exceptions(
    event: Event, exceptions: Iterable[RecurrenceException]
) -> dict[SlotKey, RecurrenceException]:
    """Index exceptions by slot; cancel beats move, otherwise first one wins."""
    index: dict[SlotKey, RecurrenceException] = {}
    for exc in exceptions:
        if exc.event_id != event.event_id:
            logger.debug(
                "Ignoring exception for event %s passed with event %s", exc.event_id, event.event_id
            )
            continue
        key = _slot_key(event, exc.recurrence_id)
        existing = index.get(key)
        if existing is None or (exc.is_cancel and not existing.is_cancel):
            index[key] = exc
        else:
            logger.debug("Duplicate exception for event %s slot %s ignored", event.event_id, key)
    return index


def _resolve(
    event: Event,
    slot: _Slot,
    exc: Optional[RecurrenceException],
    window_start: datetime,
    window_end: datetime,
) -> Optional[Occurrence]:
    """Apply the slot's exception (if any) and filter against the window."""
    if exc is not None and exc.is_cancel:
        return None

    if exc is not None:
        start = _to_instant(event, exc.new_start)
        end = _to_instant(event, exc.new_end)
        is_override = True
    else:
        start, end, is_override = slot.start, slot.end, False

    if not _intersects(start, end, window_start, window_end):
        return None
    return Occurrence(
        event_id=event.event_id,
        recurrence_id=slot.recurrence_id,
        start_time=start,
        end_time=end,
        is_override=is_override,
        is_all_day=event.is_all_day,
    )


def _is_rule_slot(event: Event, rule: ParsedRule, key: SlotKey, budget: _Budget, stats: ExpansionStats) -> bool:
    """Check whether key is a genuine slot of the rule (used for moved-in occurrences)."""
    stats.move_checks += 1
    if event.is_all_day:
        target_wall = datetime.combine(key, datetime.min.time())
        stop_wall = target_wall + timedelta(days=1)
    else:
        target_wall = to_local_wall(key, event.zone)
        stop_wall = target_wall + 2 * DST_SLACK

    for slot in _iter_slots(event, rule, target_wall, stop_wall, budget, stats):
        if slot.key == key:
            return True
        if event.is_all_day:
            if slot.key > key:
                return False
        elif slot.start > key + DST_SLACK:
            return False
    return False


def _validate_window(window_start: datetime, window_end: datetime) -> None:
    if window_start.tzinfo is None or window_end.tzinfo is None:
        raise InvalidWindowError("window bounds must be timezone-aware")
    if window_start > window_end:
        raise InvalidWindowError(
            f"window start {window_start.isoformat()} is after window end {window_end.isoformat()}"
        )


def expand(
    event: Event,
    exceptions: Iterable[RecurrenceException],
    window_start: datetime,
    window_end: datetime,
    *,
    limits: Optional[ExpansionLimits] = None,
    stats: Optional[ExpansionStats] = None,
) -> list[Occurrence]:
    """Expand an event into the occurrences intersecting [window_start, window_end).

    Args:
        event: Event definition; ``rrule`` None means a single occurrence
        exceptions: Cancel/move exceptions for the event, any order
        window_start: Aware lower bound (inclusive)
        window_end: Aware upper bound (exclusive)
        limits: Candidate/time budget; defaults to ExpansionLimits()
        stats: Optional instrumentation object filled in during expansion

    Returns:
        Occurrences ordered by (start_time, event_id, recurrence_id), with no
        duplicate (event_id, recurrence_id) pairs

    Raises:
        InvalidWindowError: If the window is reversed or has naive bounds
        MalformedRuleError: If the event's rrule cannot be parsed
        RuleBudgetExceededError: If the candidate or time budget trips
    """
    _validate_window(window_start, window_end)
    rule = parse_rrule(event.rrule) if event.rrule is not None else None
    if window_start == window_end:
        return []

    window_start = ensure_utc(window_start)
    window_end = ensure_utc(window_end)
    limits = limits or ExpansionLimits()
    stats = stats if stats is not None else ExpansionStats()
    budget = _Budget(event.event_id, limits, stats)
    index = _index_exceptions(event, exceptions)

    if rule is None:
        if event.is_all_day:
            slot = _make_slot(event, _series_anchor(event))
        else:
            start = event.start_instant
            slot = _Slot(start, start, start, event.end_instant)
        occurrence = _resolve(event, slot, index.pop(slot.key, None), window_start, window_end)
        stats.unmatched_exceptions = len(index)
        if index:
            logger.debug("Event %s: %d exceptions match no slot", event.event_id, len(index))
        return [occurrence] if occurrence is not None else []

    results: dict[tuple[str, datetime], Occurrence] = {}
    seen: set[SlotKey] = set()

    # An occurrence starting this far before the window can still reach into it
    reach = timedelta(days=event.day_span + 1) if event.is_all_day else event.duration
    scan_from = to_local_wall(window_start - reach, event.zone)
    scan_until = window_end + DST_SLACK
    # Wall-clock bound for generation, past any slot that could start before scan_until
    stop_wall = to_local_wall(scan_until, event.zone) + DST_SLACK

    for slot in _iter_slots(event, rule, scan_from, stop_wall, budget, stats):
        if slot.start >= scan_until:
            break
        if slot.key in seen:
            continue
        seen.add(slot.key)
        occurrence = _resolve(event, slot, index.get(slot.key), window_start, window_end)
        if occurrence is not None:
            results[occurrence.key] = occurrence

    # Moves whose original slot lies outside the scanned range may land inside the window
    for key, exc in index.items():
        if key in seen:
            continue
        if exc.is_cancel or not _intersects(
            _to_instant(event, exc.new_start), _to_instant(event, exc.new_end), window_start, window_end
        ):
            continue
        if not _is_rule_slot(event, rule, key, budget, stats):
            stats.unmatched_exceptions += 1
            logger.debug("Event %s: move exception for %s matches no slot", event.event_id, key)
            continue
        if event.is_all_day:
            slot = _make_slot(event, datetime.combine(key, datetime.min.time()))
        else:
            slot = _make_slot(event, to_local_wall(key, event.zone))
        occurrence = _resolve(event, slot, exc, window_start, window_end)
        if occurrence is not None:
            results[occurrence.key] = occurrence

    ordered = sorted(results.values(), key=lambda occ: occ.sort_key)
    logger.debug(
        "Expanded event %s: %d occurrences, %d candidates examined, fast_forwarded=%s, %.1fms",
        event.event_id,
        len(ordered),
        stats.candidates_examined,
        stats.fast_forwarded,
        (time.monotonic() - budget.started) * 1000,
    )
    return ordered


class RecurrenceEngine:
    """Expansion entry point bound to configured limits."""

    def __init__(self, settings: Any = None):
        """Initialize the engine.

        Args:
            settings: Config, dict or any object with max_candidates_per_rule /
                expansion_time_budget_ms attributes; None uses defaults
        """
        self.limits = ExpansionLimits() if settings is None else ExpansionLimits.from_settings(settings)
        logger.debug(
            "RecurrenceEngine initialized: max_candidates=%s, time_budget_ms=%s",
            self.limits.max_candidates,
            self.limits.time_budget_ms,
        )

    def expand(
        self,
        event: Event,
        exceptions: Iterable[RecurrenceException],
        window_start: datetime,
        window_end: datetime,
        stats: Optional[ExpansionStats] = None,
    ) -> list[Occurrence]:
        """Expand one event; see module-level expand()."""
        return expand(event, exceptions, window_start, window_end, limits=self.limits, stats=stats)

    def expand_many(
        self,
        items: Iterable[tuple[Event, Iterable[RecurrenceException]]],
        window_start: datetime,
        window_end: datetime,
        *,
        skip_malformed: bool = False,
    ) -> list[Occurrence]:
        """Expand several events and merge them in (start_time, event_id) order.

        Args:
            items: (event, exceptions) pairs
            window_start: Aware lower bound (inclusive)
            window_end: Aware upper bound (exclusive)
            skip_malformed: Log and skip events with malformed rules instead of
                raising (bulk listing)

        Returns:
            Merged, ordered occurrence list
        """
        _validate_window(window_start, window_end)
        merged: dict[tuple[str, datetime], Occurrence] = {}
        for event, exceptions in items:
            try:
                occurrences = self.expand(event, exceptions, window_start, window_end)
            except MalformedRuleError as e:
                if not skip_malformed:
                    raise
                logger.warning("Skipping event %s with malformed rule: %s", event.event_id, e)
                continue
            for occurrence in occurrences:
                merged.setdefault(occurrence.key, occurrence)
        return sorted(merged.values(), key=lambda occ: occ.sort_key)
