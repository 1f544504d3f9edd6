"""RRULE parsing and validation for pical.

Turns an RFC 5545 RRULE value into a validated ParsedRule and builds
dateutil rrule objects over naive wall-clock time in the event's zone.
"""

from __future__ import annotations

import calendar
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import MAXYEAR, date, datetime, time, timedelta, tzinfo
from functools import lru_cache
from itertools import islice
from typing import Any, Optional

from dateutil.rrule import DAILY, FR, HOURLY, MINUTELY, MO, MONTHLY, SA, SECONDLY, SU, TH, TU, WE, WEEKLY, YEARLY, rrule, weekday

from .exceptions import MalformedRuleError
from .timezone_utils import UTC, to_local_wall

logger = logging.getLogger(__name__)

FREQUENCIES: dict[str, int] = {
    "YEARLY": YEARLY,
    "MONTHLY": MONTHLY,
    "WEEKLY": WEEKLY,
    "DAILY": DAILY,
    "HOURLY": HOURLY,
    "MINUTELY": MINUTELY,
    "SECONDLY": SECONDLY,
}

WEEKDAYS: dict[str, weekday] = {
    "MO": MO,
    "TU": TU,
    "WE": WE,
    "TH": TH,
    "FR": FR,
    "SA": SA,
    "SU": SU,
}

WEEKDAYS_BY_INDEX: tuple[weekday, ...] = (MO, TU, WE, TH, FR, SA, SU)

# Longest possible length of each month (February counts leap years)
MONTH_MAX_DAYS = {1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30, 7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}

# The Gregorian calendar repeats every 400 years
GREGORIAN_CYCLE_YEARS = 400

# Fields zeroed when moving to the next boundary of each level
_TRUNCATE_BELOW = {"byhour": {"minute": 0, "second": 0}, "byminute": {"second": 0}, "bysecond": {}}

_BYDAY_RE = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")
_UNTIL_RE = re.compile(r"^(\d{8})(?:T(\d{6})(Z?))?$")

# part name -> (field, signed, minimum magnitude, maximum magnitude)
_INT_LIST_PARTS: dict[str, tuple[str, bool, int, int]] = {
    "BYMONTH": ("bymonth", False, 1, 12),
    "BYMONTHDAY": ("bymonthday", True, 1, 31),
    "BYYEARDAY": ("byyearday", True, 1, 366),
    "BYWEEKNO": ("byweekno", True, 1, 53),
    "BYSETPOS": ("bysetpos", True, 1, 366),
    "BYHOUR": ("byhour", False, 0, 23),
    "BYMINUTE": ("byminute", False, 0, 59),
    "BYSECOND": ("bysecond", False, 0, 59),
}

KNOWN_PARTS = frozenset({"FREQ", "INTERVAL", "COUNT", "UNTIL", "WKST", "BYDAY", *_INT_LIST_PARTS})


@dataclass(frozen=True)
class ParsedRule:
    """Validated components of an RRULE value.

    ``until`` is either a civil date (inclusive through that day), a naive
    floating wall-clock time, or an aware UTC instant.
    """

    source: str
    freq: int
    interval: int = 1
    count: Optional[int] = None
    until: Optional[date | datetime] = None
    wkst: Optional[int] = None
    byweekday: tuple[weekday, ...] = ()
    bymonth: tuple[int, ...] = ()
    bymonthday: tuple[int, ...] = ()
    byyearday: tuple[int, ...] = ()
    byweekno: tuple[int, ...] = ()
    bysetpos: tuple[int, ...] = ()
    byhour: tuple[int, ...] = ()
    byminute: tuple[int, ...] = ()
    bysecond: tuple[int, ...] = ()

    @property
    def is_unbounded(self) -> bool:
        """True when neither COUNT nor UNTIL terminates the rule."""
        return self.count is None and self.until is None

    @property
    def has_ordinal_byday(self) -> bool:
        return any(wd.n for wd in self.byweekday)

    def until_wall(self, zone: tzinfo) -> Optional[datetime]:
        """UNTIL expressed as naive wall-clock time in zone."""
        if self.until is None:
            return None
        if isinstance(self.until, datetime):
            return to_local_wall(self.until, zone)
        return datetime.combine(self.until, time(23, 59, 59))

    def build(
        self,
        dtstart: datetime,
        zone: tzinfo,
        anchor: Optional[datetime] = None,
        stop: Optional[datetime] = None,
    ) -> rrule:
        """Build a dateutil rrule over naive wall-clock datetimes.

        Args:
            dtstart: Naive wall-clock start to iterate from
            zone: Event zone, used to express UTC UNTIL values as wall time
            anchor: Original series start used to pin defaults; defaults to dtstart.
                Passing a later dtstart with the original anchor re-anchors the
                series without changing which slots it produces.
            stop: Optional wall-clock bound (inclusive) applied on top of UNTIL.
                COUNT is dropped when a stop is given; use iterate() to apply it.

        Returns:
            dateutil rrule yielding naive wall-clock datetimes
        """
        kwargs: dict[str, Any] = {
            "dtstart": dtstart,
            "interval": self.interval,
            "wkst": self.wkst,
            "count": self.count,
            "until": self.until_wall(zone),
            "bysetpos": self.bysetpos,
            "byyearday": self.byyearday,
            "byweekno": self.byweekno,
            **self.pinned_parts(anchor or dtstart),
        }
        if stop is not None:
            until = kwargs["until"]
            kwargs["until"] = stop if until is None else min(until, stop)
            kwargs["count"] = None
        # dateutil reads an empty tuple as "matches nothing"; None means unset
        for key, value in list(kwargs.items()):
            if isinstance(value, tuple) and not value:
                kwargs[key] = None
        try:
            return rrule(self.freq, cache=False, **kwargs)
        except ValueError as exc:
            # e.g. a BYHOUR the INTERVAL can never reach from the anchor
            raise _fail(self.source, str(exc)) from exc

    def pinned_parts(self, anchor: datetime) -> dict[str, tuple]:
        """BYxxx parts with the defaults dateutil would otherwise read from dtstart.

        Pinning them to the anchor keeps a re-anchored dtstart on the same
        slots as the original series.
        """
        byweekday = self.byweekday
        bymonth = self.bymonth
        bymonthday = self.bymonthday
        byhour = self.byhour
        byminute = self.byminute
        bysecond = self.bysecond

        if not (self.byweekno or self.byyearday or bymonthday or byweekday):
            if self.freq == YEARLY:
                bymonth = bymonth or (anchor.month,)
                bymonthday = (anchor.day,)
            elif self.freq == MONTHLY:
                bymonthday = (anchor.day,)
            elif self.freq == WEEKLY:
                byweekday = (WEEKDAYS_BY_INDEX[anchor.weekday()],)
        if not byhour and self.freq < HOURLY:
            byhour = (anchor.hour,)
        if not byminute and self.freq < MINUTELY:
            byminute = (anchor.minute,)
        if not bysecond and self.freq < SECONDLY:
            bysecond = (anchor.second,)
        return {
            "byweekday": byweekday,
            "bymonth": bymonth,
            "bymonthday": bymonthday,
            "byhour": byhour,
            "byminute": byminute,
            "bysecond": bysecond,
        }

    def has_slots(self, anchor: datetime) -> bool:
        """Whether the series anchored at anchor produces any slot at all.

        dateutil only compares against UNTIL once a candidate passes the BYxxx
        filters, so a series with no slots would be searched up to year 9999.
        The check walks the periods the series visits over one 400-year
        Gregorian cycle, after which the calendar repeats.
        """
        return _series_has_slots(self, anchor)

    def iterate(
        self,
        dtstart: datetime,
        zone: tzinfo,
        anchor: Optional[datetime] = None,
        stop: Optional[datetime] = None,
    ) -> Iterator[datetime]:
        """Yield wall-clock slots from dtstart, ending at stop (inclusive) if given.

        The stop only ends the search once a later candidate turns up, so
        callers check has_slots() first. COUNT is applied here by counting
        from dtstart; COUNT rules must start at their anchor.
        """
        built = self.build(dtstart, zone, anchor=anchor, stop=stop)
        if stop is None or self.count is None:
            return iter(built)
        return islice(built, self.count)


def _week_one_start(year: int, wkst: int) -> date:
    jan1 = date(year, 1, 1)
    offset = (jan1.weekday() - wkst) % 7
    # Week 1 is the first week holding at least four days of the year
    if offset <= 3:
        return jan1 - timedelta(days=offset)
    return jan1 + timedelta(days=7 - offset)


def _weeks_in_year(year: int, wkst: int) -> int:
    return (_week_one_start(year + 1, wkst) - _week_one_start(year, wkst)).days // 7


def _month_length(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


class _DayFilter:
    """Date-level BYxxx parts of a rule, applied the way dateutil applies them.

    Plain and ordinal BYDAY entries are separate filters that must both pass.
    Ordinals count within the month for FREQ=MONTHLY or when BYMONTH is set,
    otherwise within the year.
    """

    def __init__(
        self,
        rule: ParsedRule,
        bymonth: tuple[int, ...],
        bymonthday: tuple[int, ...],
        byweekday: tuple[weekday, ...],
    ):
        self.months = set(bymonth)
        self.monthdays = set(bymonthday)
        self.yeardays = set(rule.byyearday)
        self.weeks = set(rule.byweekno)
        self.wkst = rule.wkst if rule.wkst is not None else 0
        self.weekdays = {wd.weekday for wd in byweekday if not wd.n}
        self.ordinals = {(wd.weekday, wd.n) for wd in byweekday if wd.n}
        self.ordinal_in_month = rule.freq == MONTHLY or bool(self.months)

    @property
    def active(self) -> bool:
        return bool(self.months or self.monthdays or self.yeardays or self.weeks or self.weekdays or self.ordinals)

    def matches(self, day: date) -> bool:
        if self.months and day.month not in self.months:
            return False
        if self.weekdays and day.weekday() not in self.weekdays:
            return False
        if self.monthdays:
            length = _month_length(day.year, day.month)
            if day.day not in self.monthdays and day.day - length - 1 not in self.monthdays:
                return False
        if self.yeardays:
            index = day.timetuple().tm_yday
            length = 366 if calendar.isleap(day.year) else 365
            if index not in self.yeardays and index - length - 1 not in self.yeardays:
                return False
        if self.ordinals and not self._ordinal_matches(day):
            return False
        if self.weeks and not self._week_matches(day):
            return False
        return True

    def _ordinal_matches(self, day: date) -> bool:
        if self.ordinal_in_month:
            first = day.replace(day=1)
            last = day.replace(day=_month_length(day.year, day.month))
        else:
            first = date(day.year, 1, 1)
            last = date(day.year, 12, 31)
        from_start = (day - first).days // 7 + 1
        from_end = -((last - day).days // 7 + 1)
        wday = day.weekday()
        return (wday, from_start) in self.ordinals or (wday, from_end) in self.ordinals

    def _week_matches(self, day: date) -> bool:
        first = _week_one_start(day.year, self.wkst)
        if day < first:
            # Days before week 1 belong to the last week of the previous year
            return -1 in self.weeks or _weeks_in_year(day.year - 1, self.wkst) in self.weeks
        total = _weeks_in_year(day.year, self.wkst)
        number = (day - first).days // 7 + 1
        if number > total:
            # ... and days after the last week to week 1 of the next year
            return 1 in self.weeks
        return number in self.weeks or number - total - 1 in self.weeks


def _calendar_cycle_days() -> Iterator[date]:
    """Every day of 2000-2027; 28 consecutive years hold every calendar layout."""
    day = date(2000, 1, 1)
    last = date(2027, 12, 31)
    while day <= last:
        yield day
        day += timedelta(days=1)


def _period_days(rule: ParsedRule, anchor: datetime, months: set[int]) -> Iterator[list[date]]:
    """Yield the dates of each period a daily-or-coarser series visits in one cycle."""
    horizon = min(anchor.year + GREGORIAN_CYCLE_YEARS, MAXYEAR)
    step = rule.interval
    if rule.freq == YEARLY:
        month_range = sorted(months) or range(1, 13)
        for year in range(anchor.year, horizon, step):
            yield [date(year, month, d) for month in month_range for d in range(1, _month_length(year, month) + 1)]
    elif rule.freq == MONTHLY:
        index = anchor.year * 12 + anchor.month - 1
        while index // 12 < horizon:
            year, month = index // 12, index % 12 + 1
            if not months or month in months:
                yield [date(year, month, d) for d in range(1, _month_length(year, month) + 1)]
            index += step
    else:
        span = 7 if rule.freq == WEEKLY else 1
        ordinal = anchor.toordinal()
        if rule.freq == WEEKLY:
            wkst = rule.wkst if rule.wkst is not None else 0
            ordinal -= (anchor.weekday() - wkst) % 7
        end = date(horizon, 1, 1).toordinal()
        while ordinal < end:
            yield [date.fromordinal(ordinal + i) for i in range(span)]
            ordinal += span * step


def _next_step(base: datetime, span: timedelta, boundary: datetime) -> datetime:
    """First instant on the base + n * span grid at or after boundary."""
    return base - ((base - boundary) // span) * span


def _sub_daily_has_slots(rule: ParsedRule, anchor: datetime, day_filter: _DayFilter, parts: dict[str, tuple]) -> bool:
    seconds = {HOURLY: 3600, MINUTELY: 60, SECONDLY: 1}[rule.freq]
    span = timedelta(seconds=seconds * rule.interval)
    truncate = {HOURLY: {"minute": 0, "second": 0}, MINUTELY: {"second": 0}, SECONDLY: {}}[rule.freq]
    base = anchor.replace(microsecond=0, **truncate)
    # Time parts at or above the frequency filter a period instead of expanding it
    levels = [
        (field, set(parts[field]), unit)
        for level, field, unit in (
            (HOURLY, "byhour", timedelta(hours=1)),
            (MINUTELY, "byminute", timedelta(minutes=1)),
            (SECONDLY, "bysecond", timedelta(seconds=1)),
        )
        if level <= rule.freq and parts[field]
    ]
    end = datetime(min(anchor.year + GREGORIAN_CYCLE_YEARS, MAXYEAR), 1, 1)
    current = base
    try:
        while current < end:
            if not day_filter.matches(current.date()):
                current = _next_step(base, span, datetime.combine(current.date() + timedelta(days=1), time()))
                continue
            for field, allowed, unit in levels:
                value = getattr(current, field[2:])
                if value not in allowed:
                    boundary = current.replace(microsecond=0, **_TRUNCATE_BELOW[field]) + unit
                    current = _next_step(base, span, boundary)
                    break
            else:
                return True
    except OverflowError:
        return False
    return False


@lru_cache(maxsize=256)
def _series_has_slots(rule: ParsedRule, anchor: datetime) -> bool:
    parts = rule.pinned_parts(anchor)
    day_filter = _DayFilter(rule, parts["bymonth"], parts["bymonthday"], parts["byweekday"])

    # Candidates each period holds per matching day
    times = 1
    for level, field in ((HOURLY, "byhour"), (MINUTELY, "byminute"), (SECONDLY, "bysecond")):
        if rule.freq < level:
            times *= len(parts[field])
    needed = min(abs(pos) for pos in rule.bysetpos) if rule.bysetpos else 1

    if rule.freq > DAILY:
        return needed <= times and _sub_daily_has_slots(rule, anchor, day_filter, parts)

    for days in _period_days(rule, anchor, day_filter.months):
        found = 0
        for day in days:
            if day_filter.matches(day):
                found += times
                if found >= needed:
                    return True
    return False


def _fail(text: str, reason: str) -> MalformedRuleError:
    return MalformedRuleError(f"Invalid RRULE {text!r}: {reason}")


def _parse_int(text: str, name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise _fail(text, f"{name} must be an integer, got {value!r}") from None


def _parse_int_list(text: str, name: str, value: str) -> tuple[int, ...]:
    _, signed, low, high = _INT_LIST_PARTS[name]
    items = []
    for raw in value.split(","):
        number = _parse_int(text, name, raw.strip())
        magnitude = abs(number) if signed else number
        if (number < 0 and not signed) or not low <= magnitude <= high:
            raise _fail(text, f"{name} value {number} out of range")
        items.append(number)
    return tuple(items)


def _parse_byday(text: str, value: str) -> tuple[weekday, ...]:
    days = []
    for raw in value.split(","):
        match = _BYDAY_RE.match(raw.strip().upper())
        if not match:
            raise _fail(text, f"bad BYDAY value {raw!r}")
        ordinal, code = match.groups()
        if ordinal is None:
            days.append(WEEKDAYS[code])
            continue
        n = int(ordinal)
        if n == 0 or abs(n) > 53:
            raise _fail(text, f"BYDAY ordinal {n} out of range")
        days.append(WEEKDAYS[code](n))
    return tuple(days)


def _parse_until(text: str, value: str) -> date | datetime:
    match = _UNTIL_RE.match(value)
    if not match:
        raise _fail(text, f"bad UNTIL value {value!r}")
    day_part, time_part, zulu = match.groups()
    try:
        if time_part is None:
            return datetime.strptime(day_part, "%Y%m%d").date()
        parsed = datetime.strptime(day_part + time_part, "%Y%m%d%H%M%S")
    except ValueError:
        raise _fail(text, f"bad UNTIL value {value!r}") from None
    if zulu:
        return parsed.replace(tzinfo=UTC)
    return parsed


def _check_consistency(text: str, rule: ParsedRule) -> None:
    if rule.count is not None and rule.until is not None:
        raise _fail(text, "COUNT and UNTIL must not both be present")
    if rule.has_ordinal_byday and rule.freq not in (MONTHLY, YEARLY):
        raise _fail(text, "ordinal BYDAY is only valid with FREQ=MONTHLY or FREQ=YEARLY")
    if rule.has_ordinal_byday and rule.byweekno:
        raise _fail(text, "ordinal BYDAY cannot be combined with BYWEEKNO")
    if rule.byweekno and rule.freq != YEARLY:
        raise _fail(text, "BYWEEKNO is only valid with FREQ=YEARLY")
    if rule.byyearday and rule.freq in (DAILY, WEEKLY, MONTHLY):
        raise _fail(text, "BYYEARDAY is not valid with FREQ=DAILY, WEEKLY or MONTHLY")
    if rule.bymonthday and rule.freq == WEEKLY:
        raise _fail(text, "BYMONTHDAY is not valid with FREQ=WEEKLY")
    if rule.bysetpos and not (
        rule.byweekday or rule.bymonth or rule.bymonthday or rule.byyearday or rule.byweekno
        or rule.byhour or rule.byminute or rule.bysecond
    ):
        raise _fail(text, "BYSETPOS requires another BYxxx part")
    if rule.bymonth and rule.bymonthday:
        for day in rule.bymonthday:
            if not any(abs(day) <= MONTH_MAX_DAYS[month] for month in rule.bymonth):
                raise _fail(text, f"BYMONTHDAY={day} never occurs in BYMONTH={','.join(map(str, rule.bymonth))}")
    day_filter = _DayFilter(rule, rule.bymonth, rule.bymonthday, rule.byweekday)
    if day_filter.active and not any(day_filter.matches(day) for day in _calendar_cycle_days()):
        # e.g. BYYEARDAY=366;BYMONTH=1, or a BYWEEKNO week that never touches BYMONTH
        raise _fail(text, "the BYxxx parts never select a date")


@lru_cache(maxsize=256)
def parse_rrule(text: str) -> ParsedRule:
    """Parse and validate an RRULE value.

    Args:
        text: RRULE value such as "FREQ=WEEKLY;BYDAY=MO;COUNT=5"; an
            optional "RRULE:" prefix is accepted

    Returns:
        ParsedRule with validated components

    Raises:
        MalformedRuleError: If the rule cannot be parsed or contradicts itself
    """
    if text is None or not text.strip():
        raise MalformedRuleError("Empty RRULE string")

    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]

    parts: dict[str, str] = {}
    for segment in body.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            raise _fail(text, f"part {segment!r} is not NAME=VALUE")
        name, value = segment.split("=", 1)
        name = name.strip().upper()
        value = value.strip()
        if name not in KNOWN_PARTS:
            raise _fail(text, f"unsupported part {name}")
        if name in parts:
            raise _fail(text, f"duplicated part {name}")
        if not value:
            raise _fail(text, f"{name} has no value")
        parts[name] = value

    freq_name = parts.pop("FREQ", "").upper()
    if not freq_name:
        raise _fail(text, "missing required FREQ")
    if freq_name not in FREQUENCIES:
        raise _fail(text, f"unknown FREQ {freq_name}")

    fields: dict[str, Any] = {"source": text, "freq": FREQUENCIES[freq_name]}
    for name, value in parts.items():
        if name == "INTERVAL":
            fields["interval"] = _parse_int(text, name, value)
            if fields["interval"] < 1:
                raise _fail(text, "INTERVAL must be at least 1")
        elif name == "COUNT":
            fields["count"] = _parse_int(text, name, value)
            if fields["count"] < 1:
                raise _fail(text, "COUNT must be at least 1")
        elif name == "UNTIL":
            fields["until"] = _parse_until(text, value.upper())
        elif name == "WKST":
            code = value.upper()
            if code not in WEEKDAYS:
                raise _fail(text, f"bad WKST value {value!r}")
            fields["wkst"] = WEEKDAYS[code].weekday
        elif name == "BYDAY":
            fields["byweekday"] = _parse_byday(text, value)
        else:
            fields[_INT_LIST_PARTS[name][0]] = _parse_int_list(text, name, value)

    rule = ParsedRule(**fields)
    _check_consistency(text, rule)
    logger.debug("Parsed RRULE %r -> freq=%s interval=%d", text, freq_name, rule.interval)
    return rule
