"""Unit tests for pical.rrule_parser."""

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import pytest
from dateutil.rrule import DAILY, FR, MO, MONTHLY, WE, WEEKLY, YEARLY

from pical.exceptions import MalformedRuleError
from pical.rrule_parser import ParsedRule, parse_rrule

pytestmark = pytest.mark.unit


class TestParseRrule:
    """Tests for accepted rule strings."""

    def test_parses_weekly_rule_with_prefix(self):
        rule = parse_rrule("RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;WKST=SU")

        assert rule.freq == WEEKLY
        assert rule.interval == 2
        assert rule.byweekday == (MO, WE)
        assert rule.wkst == 6
        assert rule.is_unbounded is True

    def test_parts_are_case_insensitive(self):
        rule = parse_rrule("freq=daily;count=3")

        assert rule.freq == DAILY
        assert rule.count == 3
        assert rule.is_unbounded is False

    def test_ignores_trailing_separator(self):
        assert parse_rrule("FREQ=DAILY;").freq == DAILY

    def test_ordinal_byday(self):
        rule = parse_rrule("FREQ=MONTHLY;BYDAY=-1FR")

        assert rule.freq == MONTHLY
        assert rule.byweekday == (FR(-1),)
        assert rule.has_ordinal_byday is True

    def test_until_date_only(self):
        rule = parse_rrule("FREQ=DAILY;UNTIL=20250131")

        assert rule.until == date(2025, 1, 31)
        assert rule.until_wall(ZoneInfo("UTC")) == datetime(2025, 1, 31, 23, 59, 59)

    def test_until_utc_is_converted_to_wall_time(self):
        rule = parse_rrule("FREQ=DAILY;UNTIL=20250131T235959Z")

        assert rule.until == datetime(2025, 1, 31, 23, 59, 59, tzinfo=UTC)
        assert rule.until_wall(ZoneInfo("America/New_York")) == datetime(2025, 1, 31, 18, 59, 59)

    def test_until_floating_stays_naive(self):
        rule = parse_rrule("FREQ=DAILY;UNTIL=20250131T090000")

        assert rule.until == datetime(2025, 1, 31, 9, 0)

    def test_leap_day_in_february_is_allowed(self):
        rule = parse_rrule("FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=29")

        assert rule.freq == YEARLY
        assert rule.bymonthday == (29,)

    def test_negative_monthday(self):
        assert parse_rrule("FREQ=MONTHLY;BYMONTHDAY=-1").bymonthday == (-1,)


class TestBuild:
    """Tests for ParsedRule.build()."""

    def test_build_respects_count(self):
        rule = parse_rrule("FREQ=DAILY;COUNT=3")

        result = list(rule.build(datetime(2025, 1, 1, 9), ZoneInfo("UTC")))

        assert result == [datetime(2025, 1, d, 9) for d in (1, 2, 3)]

    def test_build_until_date_is_inclusive(self):
        rule = parse_rrule("FREQ=DAILY;UNTIL=20250103")

        result = list(rule.build(datetime(2025, 1, 1, 9), ZoneInfo("UTC")))

        assert len(result) == 3

    def test_build_with_later_dtstart_keeps_anchor_time(self):
        rule = parse_rrule("FREQ=MONTHLY")
        anchor = datetime(2024, 1, 15, 8, 45)

        built = rule.build(datetime(2025, 6, 1), ZoneInfo("UTC"), anchor=anchor)

        assert built[0] == datetime(2025, 6, 15, 8, 45)
        assert built[1] == datetime(2025, 7, 15, 8, 45)


class TestMalformedRules:
    """Tests for rejected rule strings."""

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "   ",
            "RRULE:",
            "FREQ",
            "INTERVAL=2",
            "FREQ=FORTNIGHTLY",
            "FREQ=DAILY;FREQ=WEEKLY",
            "FREQ=DAILY;FOO=1",
            "FREQ=DAILY;INTERVAL=0",
            "FREQ=DAILY;INTERVAL=two",
            "FREQ=DAILY;COUNT=0",
            "FREQ=DAILY;COUNT=",
            "FREQ=DAILY;COUNT=3;UNTIL=20250101",
            "FREQ=DAILY;UNTIL=2025-01-01",
            "FREQ=DAILY;UNTIL=20251301",
            "FREQ=DAILY;BYDAY=XX",
            "FREQ=MONTHLY;BYDAY=0MO",
            "FREQ=WEEKLY;BYDAY=1MO",
            "FREQ=YEARLY;BYWEEKNO=1;BYDAY=1MO",
            "FREQ=MONTHLY;BYWEEKNO=1",
            "FREQ=DAILY;BYYEARDAY=10",
            "FREQ=WEEKLY;BYMONTHDAY=1",
            "FREQ=MONTHLY;BYMONTH=13",
            "FREQ=MONTHLY;BYMONTHDAY=0",
            "FREQ=MONTHLY;BYMONTHDAY=32",
            "FREQ=DAILY;BYHOUR=24",
            "FREQ=DAILY;BYMINUTE=-5",
            "FREQ=DAILY;BYSETPOS=1",
            "FREQ=DAILY;WKST=XX",
            "FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=30",
            "FREQ=YEARLY;BYMONTH=4,6;BYMONTHDAY=31",
            "FREQ=MINUTELY;BYYEARDAY=366;BYMONTH=1",
            "FREQ=YEARLY;BYYEARDAY=1;BYMONTH=2",
            "FREQ=YEARLY;BYYEARDAY=-1;BYMONTH=11",
            "FREQ=YEARLY;BYWEEKNO=20;BYMONTH=1",
            "FREQ=YEARLY;BYWEEKNO=-1;BYMONTH=6",
            "FREQ=MINUTELY;BYYEARDAY=60;BYMONTH=2;BYMONTHDAY=1",
            "FREQ=MONTHLY;BYMONTH=2;BYDAY=5MO;BYMONTHDAY=1",
            "FREQ=YEARLY;BYMONTH=1;BYDAY=6MO",
        ],
    )
    def test_rejects_malformed_rule(self, text):
        with pytest.raises(MalformedRuleError):
            parse_rrule(text)

    def test_error_message_names_the_rule(self):
        with pytest.raises(MalformedRuleError, match="FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=30"):
            parse_rrule("FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=30")

    def test_month_list_with_one_long_month_is_accepted(self):
        assert parse_rrule("FREQ=YEARLY;BYMONTH=4,5;BYMONTHDAY=31").bymonth == (4, 5)

    @pytest.mark.parametrize(
        "text",
        [
            "FREQ=YEARLY;BYYEARDAY=60;BYMONTH=2",
            "FREQ=YEARLY;BYYEARDAY=-1;BYMONTH=12",
            "FREQ=YEARLY;BYWEEKNO=1;BYMONTH=12",
            "FREQ=YEARLY;BYWEEKNO=53;BYMONTH=1",
            "FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=29;BYDAY=MO",
        ],
    )
    def test_rare_but_possible_combinations_are_accepted(self, text):
        assert isinstance(parse_rrule(text), ParsedRule)

    def test_unreachable_byhour_raises_on_build(self):
        rule = parse_rrule("FREQ=HOURLY;INTERVAL=24;BYHOUR=5")

        with pytest.raises(MalformedRuleError, match="INTERVAL=24"):
            rule.build(datetime(2025, 1, 1, 9), ZoneInfo("UTC"))


class TestIterate:
    """Tests for ParsedRule.iterate() with a stop bound."""

    def test_stop_is_inclusive(self):
        rule = parse_rrule("FREQ=DAILY")

        result = list(rule.iterate(datetime(2025, 1, 1, 9), ZoneInfo("UTC"), stop=datetime(2025, 1, 4, 9)))

        assert result == [datetime(2025, 1, d, 9) for d in (1, 2, 3, 4)]

    def test_earlier_until_wins_over_stop(self):
        rule = parse_rrule("FREQ=DAILY;UNTIL=20250102")

        result = list(rule.iterate(datetime(2025, 1, 1, 9), ZoneInfo("UTC"), stop=datetime(2025, 3, 1)))

        assert result == [datetime(2025, 1, 1, 9), datetime(2025, 1, 2, 9)]

    def test_count_still_applies_with_stop(self):
        rule = parse_rrule("FREQ=DAILY;COUNT=3")

        result = list(rule.iterate(datetime(2025, 1, 1, 9), ZoneInfo("UTC"), stop=datetime(2025, 3, 1)))

        assert result == [datetime(2025, 1, d, 9) for d in (1, 2, 3)]

    def test_stop_before_count_runs_out(self):
        rule = parse_rrule("FREQ=DAILY;COUNT=30")

        result = list(rule.iterate(datetime(2025, 1, 1, 9), ZoneInfo("UTC"), stop=datetime(2025, 1, 2, 12)))

        assert len(result) == 2


class TestHasSlots:
    """Tests for ParsedRule.has_slots()."""

    @pytest.mark.parametrize(
        ("text", "anchor"),
        [
            ("FREQ=DAILY", datetime(2025, 1, 6, 10)),
            ("FREQ=MONTHLY;BYDAY=MO,TU,WE,TH,FR;BYSETPOS=-1", datetime(2025, 1, 31, 9)),
            ("FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=29", datetime(2025, 3, 1, 9)),
            ("FREQ=YEARLY;INTERVAL=4;BYMONTH=2;BYMONTHDAY=29", datetime(2024, 2, 29, 9)),
            ("FREQ=MONTHLY;INTERVAL=12;BYMONTH=2", datetime(2025, 2, 3, 9)),
            ("FREQ=WEEKLY;INTERVAL=3;BYMONTH=7;BYDAY=SA", datetime(2025, 1, 4, 9)),
            ("FREQ=MINUTELY;INTERVAL=90;BYDAY=SU", datetime(2025, 1, 6, 10)),
        ],
    )
    def test_series_with_slots(self, text, anchor):
        assert parse_rrule(text).has_slots(anchor) is True

    @pytest.mark.parametrize(
        ("text", "anchor"),
        [
            ("FREQ=MONTHLY;INTERVAL=12;BYMONTH=2", datetime(2025, 3, 3, 9)),
            ("FREQ=YEARLY;BYMONTH=2", datetime(2025, 1, 30, 9)),
            ("FREQ=MONTHLY;BYMONTH=4,6", datetime(2025, 1, 31, 9)),
            ("FREQ=YEARLY;INTERVAL=4;BYMONTH=2;BYMONTHDAY=29", datetime(2025, 3, 1, 9)),
            ("FREQ=DAILY;INTERVAL=7;BYDAY=TU", datetime(2025, 1, 6, 9)),
            ("FREQ=WEEKLY;BYDAY=MO,TU;BYSETPOS=3", datetime(2025, 1, 6, 9)),
            ("FREQ=HOURLY;INTERVAL=7;BYHOUR=10;BYDAY=TU", datetime(2025, 1, 6, 10)),
        ],
    )
    def test_series_without_slots(self, text, anchor):
        assert parse_rrule(text).has_slots(anchor) is False
