"""Unit tests for icsfeed.ics.property_parsers."""

from datetime import datetime, timedelta

import pytest

from icsfeed.exceptions import InvalidDateTimeError, InvalidOffsetError, InvalidRRuleError
from icsfeed.ics.models import Property
from icsfeed.ics.property_parsers import (
    WeekdayRule,
    parse_cal_address,
    parse_categories,
    parse_date_value,
    parse_datetime_list,
    parse_duration,
    parse_integer,
    parse_offset,
    parse_rrule_string,
    unescape_text,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class TestParseOffset:
    """Tests for TZOFFSETFROM/TZOFFSETTO values."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("+0100", 60),
            ("-0500", -300),
            ("+0530", 330),
            ("-0000", 0),
            ("+013045", 90),
        ],
    )
    def test_parse_offset_when_valid_then_minutes(self, value: str, expected: int) -> None:
        assert parse_offset(value) == expected

    @pytest.mark.parametrize("value", ["0100", "+1", "+01:00", "", "UTC"])
    def test_parse_offset_when_malformed_then_raises(self, value: str) -> None:
        with pytest.raises(InvalidOffsetError):
            parse_offset(value)


class TestParseDateValue:
    """Tests for DATE and DATE-TIME values."""

    def test_parse_date_value_when_utc_then_flagged(self) -> None:
        parsed = parse_date_value("20250110T090000Z")

        assert parsed.value == datetime(2025, 1, 10, 9, 0, 0)
        assert parsed.is_utc is True
        assert parsed.tzid is None
        assert parsed.all_day is False

    def test_parse_date_value_when_tzid_then_kept(self) -> None:
        parsed = parse_date_value("20250110T090000", {"TZID": "Europe/Berlin"})

        assert parsed.tzid == "Europe/Berlin"
        assert parsed.is_utc is False

    def test_parse_date_value_when_utc_and_tzid_then_utc_wins(self) -> None:
        parsed = parse_date_value("20250110T090000Z", {"TZID": "Europe/Berlin"})

        assert parsed.is_utc is True
        assert parsed.tzid is None

    def test_parse_date_value_when_date_only_then_all_day(self) -> None:
        parsed = parse_date_value("20250110", {"VALUE": "DATE"})

        assert parsed.value == datetime(2025, 1, 10)
        assert parsed.all_day is True

    def test_parse_date_value_when_floating_then_no_tz(self) -> None:
        parsed = parse_date_value("20250110T090000")

        assert parsed.tzid is None
        assert parsed.is_utc is False

    def test_parse_date_value_when_leap_second_then_clamped(self) -> None:
        assert parse_date_value("20161231T235960Z").value == datetime(2016, 12, 31, 23, 59, 59)

    @pytest.mark.parametrize("value", ["2025-01-10", "20251310", "20250110T250000", "tomorrow", ""])
    def test_parse_date_value_when_invalid_then_raises(self, value: str) -> None:
        with pytest.raises(InvalidDateTimeError):
            parse_date_value(value)

    def test_parse_datetime_list_when_comma_separated_then_all_values(self) -> None:
        prop = Property(
            name="EXDATE",
            value="20250113T090000,20250120T090000",
            params={"TZID": "Europe/Berlin"},
        )

        values = parse_datetime_list(prop)

        assert [v.value.day for v in values] == [13, 20]
        assert all(v.tzid == "Europe/Berlin" for v in values)

    def test_parse_datetime_list_when_period_then_start_used(self) -> None:
        prop = Property(name="RDATE", value="20250115T100000Z/PT1H", params={"VALUE": "PERIOD"})

        values = parse_datetime_list(prop)

        assert values[0].value == datetime(2025, 1, 15, 10, 0)


class TestParseDuration:
    """Tests for DURATION values."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("PT1H", timedelta(hours=1)),
            ("PT1H30M", timedelta(hours=1, minutes=30)),
            ("P1D", timedelta(days=1)),
            ("P2W", timedelta(weeks=2)),
            ("P1DT12H", timedelta(days=1, hours=12)),
            ("PT45S", timedelta(seconds=45)),
            ("-PT15M", -timedelta(minutes=15)),
        ],
    )
    def test_parse_duration_when_valid_then_timedelta(self, value: str, expected: timedelta) -> None:
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["P", "PT", "1H", "PT1X", ""])
    def test_parse_duration_when_invalid_then_raises(self, value: str) -> None:
        with pytest.raises(InvalidDateTimeError):
            parse_duration(value)


class TestParseRRuleString:
    """Tests for RRULE parsing and validation."""

    def test_parse_rrule_when_weekly_count_then_structured(self) -> None:
        rule = parse_rrule_string("FREQ=WEEKLY;COUNT=3;BYDAY=MO,WE")

        assert rule.freq == "WEEKLY"
        assert rule.count == 3
        assert rule.interval == 1
        assert rule.byday == (WeekdayRule("MO"), WeekdayRule("WE"))

    def test_parse_rrule_when_ordinal_byday_then_kept(self) -> None:
        rule = parse_rrule_string("FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU")

        assert rule.bymonth == (10,)
        assert rule.byday == (WeekdayRule("SU", -1),)

    def test_parse_rrule_when_until_then_parsed(self) -> None:
        rule = parse_rrule_string("FREQ=DAILY;UNTIL=20250131T235959Z")

        assert rule.until is not None
        assert rule.until.is_utc is True
        assert rule.until.value == datetime(2025, 1, 31, 23, 59, 59)

    def test_parse_rrule_when_lowercase_then_accepted(self) -> None:
        rule = parse_rrule_string("freq=monthly;interval=2;bymonthday=-1")

        assert rule.freq == "MONTHLY"
        assert rule.interval == 2
        assert rule.bymonthday == (-1,)

    def test_parse_rrule_when_unknown_part_then_kept_in_extra(self) -> None:
        rule = parse_rrule_string("FREQ=DAILY;X-NAME=foo")

        assert rule.extra == {"X-NAME": "foo"}

    @pytest.mark.parametrize(
        "value",
        [
            "COUNT=3",
            "FREQ=FORTNIGHTLY",
            "FREQ=DAILY;COUNT=0",
            "FREQ=DAILY;INTERVAL=-1",
            "FREQ=DAILY;COUNT=abc",
            "FREQ=WEEKLY;BYDAY=XX",
            "FREQ=MONTHLY;BYDAY=0MO",
            "FREQ=YEARLY;BYDAY=54MO",
            "FREQ=YEARLY;BYMONTH=13",
            "FREQ=MONTHLY;BYMONTHDAY=0",
            "FREQ=MONTHLY;BYMONTHDAY=32",
            "FREQ=DAILY;BYHOUR=24",
            "FREQ=DAILY;WKST=XY",
            "FREQ=DAILY;UNTIL=notadate",
            "FREQ=DAILY;COUNT=3;UNTIL=20250110T000000Z",
        ],
    )
    def test_parse_rrule_when_invalid_then_raises(self, value: str) -> None:
        with pytest.raises(InvalidRRuleError):
            parse_rrule_string(value)


class TestTextHelpers:
    """Tests for TEXT, integer, CATEGORIES and CAL-ADDRESS helpers."""

    def test_unescape_text_when_escaped_then_restored(self) -> None:
        assert unescape_text(r"Line one\nLine two\, with comma\; and \\ slash") == (
            "Line one\nLine two, with comma; and \\ slash"
        )

    def test_unescape_text_when_plain_then_unchanged(self) -> None:
        assert unescape_text("Room 101") == "Room 101"

    def test_parse_integer_when_invalid_then_none(self) -> None:
        assert parse_integer(Property(name="SEQUENCE", value="2")) == 2
        assert parse_integer(Property(name="SEQUENCE", value="two")) is None
        assert parse_integer(None) is None

    def test_parse_categories_when_multiple_props_then_flattened(self) -> None:
        props = [
            Property(name="CATEGORIES", value="Work,Meeting"),
            Property(name="CATEGORIES", value=r"R\,D"),
        ]

        assert parse_categories(props) == ["Work", "Meeting", "R,D"]

    def test_parse_cal_address_when_mailto_then_email_and_params(self) -> None:
        prop = Property(
            name="ATTENDEE",
            value="MAILTO:jane@example.com",
            params={"CN": "Jane Doe", "PARTSTAT": "ACCEPTED", "ROLE": "REQ-PARTICIPANT"},
        )

        address = parse_cal_address(prop)

        assert address is not None
        assert address.email == "jane@example.com"
        assert address.common_name == "Jane Doe"
        assert address.partstat == "ACCEPTED"
        assert address.role == "REQ-PARTICIPANT"

    def test_parse_cal_address_when_missing_then_none(self) -> None:
        assert parse_cal_address(None) is None
