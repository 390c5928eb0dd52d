"""Tests for the schedule phrase parser."""

import pytest

from core.errors import ScheduleParseError
from core.state import ActionType
from schedule.parser import (
    ScheduleParser,
    extract_action,
    extract_days,
    extract_time,
    extract_zone_ids,
    strip_command_verb,
)
from schedule.values import WEEKDAYS, WEEKENDS, Time, Weekday


@pytest.fixture
def parser():
    return ScheduleParser()


# ── Whole phrases ─────────────────────────────────────────────────────────────

def test_weekdays_at_9pm_defaults_to_arm_away(parser):
    parsed = parser.parse("weekdays at 9 PM")
    assert parsed.recurrence.weekdays == WEEKDAYS
    assert parsed.recurrence.time_of_day == Time.of(21)
    assert parsed.action_type is ActionType.ARM_SYSTEM
    assert parsed.action_parameters["mode"] == "away"


def test_disarm_weekends(parser):
    parsed = parser.parse("disarm system weekends at 10 AM")
    assert parsed.recurrence.weekdays == WEEKENDS
    assert parsed.recurrence.time_of_day == Time.of(10)
    assert parsed.action_type is ActionType.DISARM_SYSTEM


def test_arm_stay_mode(parser):
    parsed = parser.parse("arm system in stay mode weekdays at 9 PM")
    assert parsed.action_parameters == {"mode": "stay", "zone_ids": []}
    assert parsed.describe() == "Arm system in stay mode weekdays at 9 PM"


def test_home_means_stay(parser):
    assert parser.parse("arm home every day at 22:30").action_parameters["mode"] == "stay"


def test_leading_verb_and_zones(parser):
    parsed = parser.parse("Schedule a task to arm zones garage and porch on Monday and Friday at 11:15 pm")
    assert parsed.recurrence.weekdays == (Weekday.MONDAY, Weekday.FRIDAY)
    assert parsed.recurrence.time_of_day == Time.of(23, 15)
    assert parsed.action_parameters["zone_ids"] == ["garage", "porch"]


def test_timezone_is_applied(parser):
    parsed = parser.parse("disarm weekdays at 6:30 AM", timezone="Europe/Berlin")
    assert parsed.recurrence.timezone == "Europe/Berlin"


def test_default_timezone_from_parser():
    parsed = ScheduleParser(default_timezone="Asia/Tokyo").parse("arm daily at 23:00")
    assert parsed.recurrence.timezone == "Asia/Tokyo"



def test_time_comes_after_the_last_at(parser):
    assert parser.parse("arm at night on weekdays at 10").recurrence.time_of_day == Time.of(22)
    parsed = parser.parse("disarm weekends at 10 at night")
    assert parsed.recurrence.weekdays == WEEKENDS
    assert parsed.recurrence.time_of_day == Time.of(22)


def test_plural_day_names(parser):
    parsed = parser.parse("arm the system on sundays at 9pm")
    assert parsed.recurrence.weekdays == (Weekday.SUNDAY,)
    assert parsed.recurrence.time_of_day == Time.of(21)
    assert extract_days("mondays and fridays") == (Weekday.MONDAY, Weekday.FRIDAY)


def test_explicit_hour_beats_named_period(parser):
    parsed = parser.parse("disarm weekdays at 7 morning")
    assert parsed.action_type is ActionType.DISARM_SYSTEM
    assert parsed.recurrence.time_of_day == Time.of(7)

def test_ambiguous_action_fails(parser):
    with pytest.raises(ScheduleParseError, match="both arm and disarm") as exc:
        parser.parse("arm then disarm weekdays at 9 PM")
    assert exc.value.stage == "action"


def test_missing_days_fails(parser):
    with pytest.raises(ScheduleParseError, match="Could not parse days") as exc:
        parser.parse("arm at 9 PM")
    assert exc.value.stage == "days"


def test_missing_time_fails(parser):
    with pytest.raises(ScheduleParseError, match="Could not parse time"):
        parser.parse("arm on weekdays")


def test_empty_command_fails(parser):
    with pytest.raises(ScheduleParseError, match="Could not parse schedule"):
        parser.parse("   ")


# ── Stages ────────────────────────────────────────────────────────────────────

def test_strip_command_verb_keeps_arm():
    assert strip_command_verb("create an arm schedule") == "arm schedule"
    assert strip_command_verb("please set up to disarm weekends at 8") == "disarm weekends at 8"
    assert strip_command_verb("arm weekdays at 9 PM") == "arm weekdays at 9 PM"


def test_extract_days_dedupes_in_order():
    assert extract_days("fri, mon and weekdays") == (
        Weekday.FRIDAY, Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY,
    )


@pytest.mark.parametrize("text,expected", [
    ("at 9 PM", Time.of(21)),
    ("at 9:45 a.m.", Time.of(9, 45)),
    ("at 21:30", Time.of(21, 30)),
    ("at noon", Time.of(12)),
    ("at midnight", Time.of(0)),
    ("in the morning", Time.of(9)),
    ("at 7 in the evening", Time.of(19)),
    ("at 6 in the morning", Time.of(6)),
    ("at 10 at night", Time.of(22)),
    ("at 7 morning", Time.of(7)),
    ("at 8 evening", Time.of(20)),
    ("at 7", Time.of(7)),
    ("at 9", Time.of(21)),
    ("at 12", Time.of(12)),
    ("at 0", Time.of(0)),
    ("at 18", Time.of(18)),
])
def test_extract_time_forms(text, expected):
    assert extract_time(text) == expected


def test_extract_time_out_of_range():
    with pytest.raises(ScheduleParseError, match="Could not parse time"):
        extract_time("at 25")


def test_extract_action_variants():
    assert extract_action("turn on the alarm")[0] is ActionType.ARM_SYSTEM
    assert extract_action("turn off the alarm")[0] is ActionType.DISARM_SYSTEM
    assert extract_action("deactivate")[0] is ActionType.DISARM_SYSTEM
    assert extract_action("enable away")[1] == {"mode": "away"}


def test_extract_zone_ids_removes_clause():
    ids, rest = extract_zone_ids("arm zone front-door weekdays at 9 PM")
    assert ids == ["front-door"]
    assert rest == "arm weekdays at 9 PM"


def test_extract_zone_ids_ignores_day_words():
    ids, rest = extract_zone_ids("arm weekdays at 9 PM")
    assert ids == []
    assert rest == "arm weekdays at 9 PM"


# ── Batches and suggestions ───────────────────────────────────────────────────

def test_parse_many_collects_errors(parser):
    batch = parser.parse_many(["weekdays at 9 PM", "arm sometime", "disarm weekends at 8 AM"])
    assert [item.index for item in batch.results] == [0, 2]
    assert len(batch.errors) == 1
    assert batch.errors[0].index == 1
    assert batch.errors[0].suggestions
    assert not batch.all_succeeded


def test_suggestions_by_message():
    assert ScheduleParser.suggestions("Could not parse days from: 'x'")
    assert ScheduleParser.suggestions("Could not parse time from: 'x'")
    assert ScheduleParser.suggestions("Ambiguous action: command contains both arm and disarm keywords")
    assert ScheduleParser.suggestions("something else entirely") == []
