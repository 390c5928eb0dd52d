"""Tests for Time and Weekday value types."""

from datetime import date, datetime

import pytest
from pydantic import ValidationError

from core.errors import TimeFormatError
from schedule.values import ALL_DAYS, WEEKDAYS, WEEKENDS, Time, Weekday, to_24_hour


# ── Time parsing ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("text,expected", [
    ("21:30", (21, 30)),
    ("9:05", (9, 5)),
    ("9 PM", (21, 0)),
    ("9:30 am", (9, 30)),
    ("12 AM", (0, 0)),
    ("12 PM", (12, 0)),
    ("7p.m.", (19, 0)),
    ("18", (18, 0)),
])
def test_parse_accepts_supported_forms(text, expected):
    t = Time.parse(text)
    assert (t.hour, t.minute) == expected


@pytest.mark.parametrize("text", ["25:00", "10:75", "13 PM", "noonish", ""])
def test_parse_rejects_bad_input(text):
    with pytest.raises(TimeFormatError):
        Time.parse(text)


def test_of_reports_hour_range():
    with pytest.raises(TimeFormatError, match="Invalid hour: 24"):
        Time.of(24)


def test_constructor_accepts_string_for_fields():
    assert Time.model_validate("06:45") == Time(hour=6, minute=45)


def test_constructor_raises_validation_error():
    with pytest.raises(ValidationError):
        Time(hour=10, minute=60)


def test_to_24_hour():
    assert to_24_hour(12, "am") == 0
    assert to_24_hour(12, "pm") == 12
    assert to_24_hour(1, "p") == 13
    with pytest.raises(TimeFormatError):
        to_24_hour(0, "am")


# ── Time arithmetic ───────────────────────────────────────────────────────────

def test_add_minutes_wraps_midnight():
    assert Time.of(23, 50).add_minutes(20) == Time.of(0, 10)
    assert Time.of(0, 10).subtract_minutes(20) == Time.of(23, 50)


def test_from_total_minutes_bounds():
    assert Time.from_total_minutes(0) == Time.of(0, 0)
    assert Time.from_total_minutes(1439) == Time.of(23, 59)
    with pytest.raises(TimeFormatError):
        Time.from_total_minutes(1440)


def test_from_datetime_drops_seconds():
    assert Time.from_datetime(datetime(2026, 1, 1, 7, 15, 59)) == Time.of(7, 15)


def test_ordering_and_comparison():
    early, late = Time.of(6), Time.of(22, 30)
    assert early < late and late > early
    assert early.compare_to(late) == -1
    assert late.compare_to(early) == 1
    assert early.compare_to(Time.of(6)) == 0
    assert late.difference_in_minutes(early) == 990
    assert sorted([late, early]) == [early, late]


def test_with_hour_and_minute_validate():
    assert Time.of(9, 30).with_hour(21) == Time.of(21, 30)
    with pytest.raises(TimeFormatError):
        Time.of(9).with_minute(60)


def test_is_between_handles_wrap():
    night_start, night_end = Time.of(22), Time.of(6)
    assert Time.of(23).is_between(night_start, night_end)
    assert Time.of(2).is_between(night_start, night_end)
    assert not Time.of(6).is_between(night_start, night_end)
    assert Time.of(22).is_between(night_start, night_end)
    assert Time.of(9).is_between(Time.of(9), Time.of(18))
    assert not Time.of(18).is_between(Time.of(9), Time.of(18))


def test_business_hours():
    assert Time.of(9).is_business_hours()
    assert Time.of(17, 59).is_business_hours()
    assert not Time.of(18).is_business_hours()


def test_formatting():
    assert Time.of(21).format_12h() == "9 PM"
    assert Time.of(0, 5).format_12h() == "12:05 AM"
    assert Time.of(12).format_12h() == "12 PM"
    assert Time.of(7, 5).format_24h() == "07:05"
    assert str(Time.of(7, 5)) == "07:05"


def test_time_is_hashable():
    assert len({Time.of(9), Time.parse("9:00"), Time.of(10)}) == 2


# ── Weekday ───────────────────────────────────────────────────────────────────

def test_weekday_from_date_matches_calendar():
    assert Weekday.from_date(date(2026, 1, 5)) is Weekday.MONDAY
    assert Weekday.from_date(date(2026, 1, 11)) is Weekday.SUNDAY


def test_weekday_properties():
    assert Weekday.SATURDAY.is_weekend
    assert Weekday.FRIDAY.is_weekday
    assert Weekday.WEDNESDAY.day_index == 2
    assert Weekday.THURSDAY.display_name == "Thursday"
    assert Weekday.TUESDAY.abbreviation == "TUE"
    assert Weekday.from_index(7) is Weekday.MONDAY


@pytest.mark.parametrize("text,expected", [
    ("mon", Weekday.MONDAY),
    ("Tues", Weekday.TUESDAY),
    ("weds", Weekday.WEDNESDAY),
    ("thurs", Weekday.THURSDAY),
    ("FRI.", Weekday.FRIDAY),
    ("sunday", Weekday.SUNDAY),
])
def test_weekday_aliases(text, expected):
    assert Weekday.from_text(text) is expected


def test_weekday_unknown():
    with pytest.raises(ValueError, match="Unknown weekday"):
        Weekday.from_text("someday")


def test_expand_groups():
    assert Weekday.expand("weekdays") == WEEKDAYS
    assert Weekday.expand("weekend") == WEEKENDS
    assert Weekday.expand("daily") == ALL_DAYS
    assert Weekday.expand("every day") == ALL_DAYS
    assert Weekday.expand("fri") == (Weekday.FRIDAY,)
