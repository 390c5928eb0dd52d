"""Tests for RecurrenceExpression occurrence maths and relations."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from core.errors import NoMatchingOccurrence
from schedule.recurrence import RecurrenceExpression, coerce_weekdays
from schedule.values import Time, Weekday

from conftest import NOW, weekly


# ── Construction ──────────────────────────────────────────────────────────────

def test_coerce_weekdays_forms():
    assert coerce_weekdays("mon and fri") == (Weekday.MONDAY, Weekday.FRIDAY)
    assert coerce_weekdays("Mon, Wed & Fri") == (Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY)
    assert coerce_weekdays(["MONDAY", "monday", "tue"]) == (Weekday.MONDAY, Weekday.TUESDAY)
    assert coerce_weekdays("every day") == tuple(Weekday)
    assert coerce_weekdays(Weekday.SUNDAY) == (Weekday.SUNDAY,)
    assert coerce_weekdays(None) == ()


def test_coerce_weekdays_rejects_other_types():
    with pytest.raises(ValueError):
        coerce_weekdays(42)


def test_requires_a_weekday():
    with pytest.raises(ValidationError, match="At least one weekday"):
        RecurrenceExpression(weekdays=[], time_of_day="09:00")


def test_rejects_unknown_timezone():
    with pytest.raises(ValidationError, match="Unknown timezone"):
        weekly(tz="Mars/Olympus")


def test_from_data_parses_time_text():
    expr = RecurrenceExpression.from_data(weekdays="weekends", time="9:30 PM")
    assert expr.time_of_day == Time.of(21, 30)
    assert expr.weekdays == (Weekday.SATURDAY, Weekday.SUNDAY)
    assert expr.timezone == "UTC"


# ── next_occurrence ───────────────────────────────────────────────────────────

def test_next_occurrence_same_day_later():
    # NOW is Monday 12:00 UTC
    assert weekly().next_occurrence(NOW) == datetime(2026, 1, 5, 21, 0, tzinfo=ZoneInfo("UTC"))


def test_next_occurrence_is_strictly_after():
    at = datetime(2026, 1, 5, 21, 0, tzinfo=timezone.utc)
    assert weekly().next_occurrence(at) == datetime(2026, 1, 6, 21, 0, tzinfo=ZoneInfo("UTC"))


def test_next_occurrence_skips_to_next_week():
    friday_night = datetime(2026, 1, 9, 22, 0, tzinfo=timezone.utc)
    nxt = weekly(days="friday").next_occurrence(friday_night)
    assert nxt == datetime(2026, 1, 16, 21, 0, tzinfo=ZoneInfo("UTC"))


def test_next_occurrence_naive_stays_naive():
    nxt = weekly(days="weekends", time="08:00").next_occurrence(datetime(2026, 1, 5, 12, 0))
    assert nxt == datetime(2026, 1, 10, 8, 0)
    assert nxt.tzinfo is None


def test_next_occurrence_in_zone():
    expr = weekly(days="monday", time="09:00", tz="America/New_York")
    # 12:00 UTC is 07:00 in New York on Monday 5 January
    nxt = expr.next_occurrence(NOW)
    assert nxt.tzinfo == ZoneInfo("America/New_York")
    assert (nxt.hour, nxt.minute) == (9, 0)
    assert nxt.astimezone(timezone.utc) == datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("days,time", [
    ("weekdays", "21:00"),
    ("weekends", "07:30"),
    ("tue and thu", "00:00"),
    ("sunday", "23:59"),
])
def test_next_occurrence_properties(days, time):
    expr = weekly(days=days, time=time)
    start = NOW
    for _ in range(10):
        nxt = expr.next_occurrence(start)
        assert nxt > start
        assert Weekday.from_date(nxt.date()) in expr.weekdays
        assert Time.from_datetime(nxt) == expr.time_of_day
        start = nxt


# ── upcoming_occurrences ──────────────────────────────────────────────────────

def test_upcoming_occurrences_for_a_week():
    times = weekly().upcoming_occurrences(7, NOW)
    assert len(times) == 5
    assert times == sorted(set(times))
    assert all(t > NOW for t in times)
    assert times[-1] <= NOW + timedelta(days=7)


def test_upcoming_occurrences_match_repeated_next():
    expr = weekly(days="mon and fri", time="06:30")
    times = expr.upcoming_occurrences(14, NOW)
    expected, cursor = [], NOW
    while True:
        cursor = expr.next_occurrence(cursor)
        if cursor > NOW + timedelta(days=14):
            break
        expected.append(cursor)
    assert times == expected


def test_upcoming_occurrences_requires_positive_days():
    with pytest.raises(ValueError):
        weekly().upcoming_occurrences(0, NOW)


# ── Matching ──────────────────────────────────────────────────────────────────

def test_should_execute_at():
    expr = weekly()
    assert expr.should_execute_at(datetime(2026, 1, 5, 21, 0, 30, tzinfo=timezone.utc))
    assert not expr.should_execute_at(datetime(2026, 1, 5, 21, 1, tzinfo=timezone.utc))
    assert not expr.should_execute_at(datetime(2026, 1, 10, 21, 0, tzinfo=timezone.utc))


def test_is_valid():
    assert weekly().is_valid(NOW)


def test_empty_weekdays_signal_no_occurrence():
    expr = RecurrenceExpression.model_construct(weekdays=(), time_of_day=Time(hour=21), timezone="UTC")
    assert expr.describe_days() == "no days"
    with pytest.raises(NoMatchingOccurrence):
        expr.next_occurrence(NOW)


# ── Relations ─────────────────────────────────────────────────────────────────

def test_conflicts_share_a_day_within_tolerance():
    a = weekly(days="mon and wed", time="21:00")
    b = weekly(days="wednesday", time="21:04")
    assert a.shared_weekdays(b) == (Weekday.WEDNESDAY,)
    assert a.minutes_apart(b) == 4
    assert a.conflicts_with(b)
    assert not a.conflicts_with(b, tolerance_minutes=3)


def test_no_conflict_without_shared_day():
    a = weekly(days="weekdays")
    b = weekly(days="weekends")
    assert a.minutes_apart(b) is None
    assert not a.conflicts_with(b)


def test_copies_are_new_values():
    base = weekly()
    assert base.with_time("07:00").time_of_day == Time.of(7)
    assert base.with_weekdays("sat").weekdays == (Weekday.SATURDAY,)
    assert base.with_timezone("Europe/Paris").timezone == "Europe/Paris"
    assert base.time_of_day == Time.of(21)


def test_equality_ignores_day_order():
    assert weekly(days="fri and mon") == weekly(days="mon and fri")
    assert hash(weekly(days="fri and mon")) == hash(weekly(days="mon and fri"))
    assert weekly(days="mon") != weekly(days="mon", tz="Europe/Paris")


# ── describe ──────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("days,expected", [
    ("daily", "every day at 9 PM"),
    ("weekdays", "weekdays at 9 PM"),
    ("weekends", "weekends at 9 PM"),
    ("monday", "every Monday at 9 PM"),
    ("fri and mon", "Monday and Friday at 9 PM"),
    ("mon, wed, fri", "Monday, Wednesday and Friday at 9 PM"),
])
def test_describe(days, expected):
    assert weekly(days=days).describe() == expected
