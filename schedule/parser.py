"""ScheduleParser: turn phrases like "arm stay weekdays at 9 PM" into schedules.

Parsing runs in fixed stages: strip the leading command verb, pull out the
zone list, then days, then time of day, then the action. Each stage raises
ScheduleParseError with a message that ``suggestions()`` knows how to explain.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, ValidationError

from core.errors import InvalidActionParameters, ScheduleParseError, SchedulingError
from core.state import ActionType, ArmMode
from schedule.recurrence import RecurrenceExpression
from schedule.task import validate_action_parameters
from schedule.values import Time, Weekday, to_24_hour

logger = logging.getLogger(__name__)

# ── Patterns ─────────────────────────────────────────────────────────────────

_LEADING_VERB = re.compile(
    r"^\s*(?:please\s+)?(?:schedule|set\s+up|create|add)\b(?:\s+(?:a\s+task\s+to|task\s+to|an?|to)\b)?\s*",
    re.IGNORECASE,
)
_AT_SPLIT = re.compile(r"^(.+)\s+(?:at|@)\s+(?!night\b)(.+)$", re.IGNORECASE)

_DAY_TOKEN = re.compile(
    r"\b(?:(weekdays?|weekends?|every\s*day|daily|all\s+days?)"
    r"|(monday|mon|tuesday|tues|tue|wednesday|weds|wed|thursday|thurs|thur|thu"
    r"|friday|fri|saturday|sat|sunday|sun)s?)\b",
    re.IGNORECASE,
)

_NOT_AN_ID = r"(?!(?:weekdays?|weekends?|daily|every|everyday|at|on|in|and)\b)"
_ZONES = re.compile(
    rf"\bzones?\s+{_NOT_AN_ID}([\w-]+(?:\s*(?:,|\band\b|&)\s*{_NOT_AN_ID}[\w-]+)*)",
    re.IGNORECASE,
)
_ZONE_SEP = re.compile(r"\s*(?:,|\band\b|&)\s*", re.IGNORECASE)

_MERIDIEM = r"([ap])\.?\s?m\.?(?![a-z])"
_TIME_12H_MINUTES = re.compile(rf"\b(\d{{1,2}}):(\d{{2}})\s*{_MERIDIEM}", re.IGNORECASE)
_TIME_12H_HOUR = re.compile(rf"\b(\d{{1,2}})\s*{_MERIDIEM}", re.IGNORECASE)
_TIME_QUALIFIED = re.compile(
    r"\b(\d{1,2})(?::(\d{2}))?\s+(?:(?:in\s+the\s+)?(morning|afternoon|evening)|(?:at\s+)?(night)|(tonight))\b",
    re.IGNORECASE,
)
_TIME_24H = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_TIME_NAMED = re.compile(r"\b(noon|midnight|morning|afternoon|evening|night)\b", re.IGNORECASE)
_TIME_BARE = re.compile(r"\b(\d{1,2})\b")

NAMED_TIMES: dict[str, Time] = {
    "noon": Time(hour=12, minute=0),
    "midnight": Time(hour=0, minute=0),
    "morning": Time(hour=9, minute=0),
    "afternoon": Time(hour=14, minute=0),
    "evening": Time(hour=18, minute=0),
    "night": Time(hour=21, minute=0),
}

_ARM = re.compile(r"\b(?:arm|activate|enable|turn\s+on)\b", re.IGNORECASE)
_DISARM = re.compile(r"\b(?:disarm|deactivate|disable|turn\s+off)\b", re.IGNORECASE)
_MODE = re.compile(r"\b(away|stay|home)\b", re.IGNORECASE)

_SUGGESTIONS: list[tuple[str, str]] = [
    ("could not parse schedule", 'Use format like: "weekdays at 9 PM" or "Monday and Tuesday at 8:30 AM"'),
    ("could not parse days", 'Try: "weekdays", "weekends", "Monday", "Monday and Tuesday", "everyday"'),
    ("could not parse time", 'Try: "9 PM", "9:30 AM", "21:30", "noon", "midnight"'),
    ("both arm and disarm", 'Use either "arm system" or "disarm system", not both'),
]


# ── Results ──────────────────────────────────────────────────────────────────

class ParsedSchedule(BaseModel):
    command: str
    recurrence: RecurrenceExpression
    action_type: ActionType
    action_parameters: dict[str, Any]

    def describe(self) -> str:
        if self.action_type is ActionType.ARM_SYSTEM:
            action = f"Arm system in {self.action_parameters['mode']} mode"
        else:
            action = "Disarm system"
        return f"{action} {self.recurrence.describe()}"


class ParsedItem(BaseModel):
    index: int
    command: str
    result: ParsedSchedule


class ParseFailure(BaseModel):
    index: int
    command: str
    error: str
    suggestions: list[str] = []


class BatchParseResult(BaseModel):
    results: list[ParsedItem] = []
    errors: list[ParseFailure] = []

    @property
    def all_succeeded(self) -> bool:
        return not self.errors


# ── Stages ───────────────────────────────────────────────────────────────────

def strip_command_verb(text: str) -> str:
    return _LEADING_VERB.sub("", text, count=1).strip()


def extract_zone_ids(text: str) -> tuple[list[str], str]:
    """Return the zone ids named in *text* and the text with that clause removed."""
    m = _ZONES.search(text)
    if not m:
        return [], text
    ids = [z for z in _ZONE_SEP.split(m.group(1)) if z]
    remainder = re.sub(r"\s+", " ", text[: m.start()] + " " + text[m.end():]).strip()
    return ids, remainder


def extract_days(text: str) -> tuple[Weekday, ...]:
    """Collective terms and day names (plurals too) in order of first appearance, without repeats."""
    found: list[Weekday] = []
    for m in _DAY_TOKEN.finditer(text):
        token = re.sub(r"\s+", " ", (m.group(1) or m.group(2)).lower())
        token = "everyday" if token == "every day" else token
        token = "all days" if token == "all day" else token
        for day in Weekday.expand(token):
            if day not in found:
                found.append(day)
    if not found:
        raise ScheduleParseError(f"Could not parse days from: '{text}'", command=text, stage="days")
    return tuple(found)


def _bare_hour(hour: int) -> Time:
    if hour == 0:
        return Time(hour=0, minute=0)
    if 1 <= hour <= 7:
        return Time(hour=hour, minute=0)
    if 8 <= hour <= 11:
        return Time(hour=hour + 12, minute=0)
    if hour == 12:
        return Time(hour=12, minute=0)
    if 13 <= hour <= 23:
        return Time(hour=hour, minute=0)
    raise ScheduleParseError(f"Could not parse time: hour {hour} is out of range", stage="time")


def extract_time(text: str) -> Time:
    """Find the time of day in *text*; first matching form wins."""
    try:
        if m := _TIME_12H_MINUTES.search(text):
            return Time.of(to_24_hour(int(m.group(1)), m.group(3)), int(m.group(2)))
        if m := _TIME_12H_HOUR.search(text):
            return Time.of(to_24_hour(int(m.group(1)), m.group(2)))
        if m := _TIME_QUALIFIED.search(text):
            hour, minute = int(m.group(1)), int(m.group(2) or 0)
            meridiem = "am" if (m.group(3) or "").lower() == "morning" else "pm"
            return Time.of(to_24_hour(hour, meridiem) if 1 <= hour <= 12 else hour, minute)
        if m := _TIME_24H.search(text):
            return Time.of(int(m.group(1)), int(m.group(2)))
        if m := _TIME_NAMED.search(text):
            return NAMED_TIMES[m.group(1).lower()]
        if m := _TIME_BARE.search(text):
            return _bare_hour(int(m.group(1)))
    except SchedulingError as e:
        if isinstance(e, ScheduleParseError):
            raise
        raise ScheduleParseError(f"Could not parse time: {e}", command=text, stage="time") from e
    raise ScheduleParseError(f"Could not parse time from: '{text}'", command=text, stage="time")


def extract_action(text: str) -> tuple[ActionType, dict[str, Any]]:
    wants_arm = bool(_ARM.search(text))
    wants_disarm = bool(_DISARM.search(text))
    if wants_arm and wants_disarm:
        raise ScheduleParseError(
            "Ambiguous action: command contains both arm and disarm keywords",
            command=text, stage="action",
        )
    if wants_disarm:
        return ActionType.DISARM_SYSTEM, {}
    mode = ArmMode.AWAY
    if m := _MODE.search(text):
        mode = ArmMode.AWAY if m.group(1).lower() == "away" else ArmMode.STAY
    return ActionType.ARM_SYSTEM, {"mode": mode.value}


# ── Parser ───────────────────────────────────────────────────────────────────

class ScheduleParser:
    """Parse free-text schedule commands into recurrence + action."""

    def __init__(self, default_timezone: str = "UTC"):
        self.default_timezone = default_timezone

    def parse(self, command: str, timezone: str | None = None) -> ParsedSchedule:
        if not isinstance(command, str) or not command.strip():
            raise ScheduleParseError("Could not parse schedule format: command is empty", command=command or "")

        body = strip_command_verb(command)
        zone_ids, body = extract_zone_ids(body)

        split = _AT_SPLIT.match(body)
        days_text, time_text = (split.group(1), split.group(2)) if split else (body, body)

        weekdays = extract_days(body)
        try:
            time_of_day = extract_time(time_text)
        except ScheduleParseError:
            if time_text is body:
                raise
            time_of_day = extract_time(body)

        action_type, params = extract_action(command)
        params["zone_ids"] = zone_ids

        try:
            recurrence = RecurrenceExpression(
                weekdays=weekdays,
                time_of_day=time_of_day,
                timezone=timezone or self.default_timezone,
            )
        except ValidationError as e:
            raise ScheduleParseError(
                f"Could not parse schedule format: {e.errors()[0]['msg']}", command=command, stage="structure"
            ) from e

        parsed = ParsedSchedule(
            command=command,
            recurrence=recurrence,
            action_type=action_type,
            action_parameters=params,
        )
        self.validate_parsed_schedule(parsed)
        logger.debug(
            "Parsed schedule command",
            extra={"command": command, "days_text": days_text, "action_type": action_type.value,
                   "schedule": recurrence.describe()},
        )
        return parsed

    def validate_parsed_schedule(self, parsed: ParsedSchedule) -> None:
        if not parsed.recurrence.is_valid():
            raise ScheduleParseError("Schedule expression is not valid", command=parsed.command, stage="structure")
        try:
            parsed.action_parameters = validate_action_parameters(parsed.action_type, parsed.action_parameters)
        except InvalidActionParameters as e:
            raise ScheduleParseError(str(e), command=parsed.command, stage="structure") from e

    def parse_many(self, commands: list[str]) -> BatchParseResult:
        batch = BatchParseResult()
        for index, command in enumerate(commands):
            try:
                parsed = self.parse(command)
            except ScheduleParseError as e:
                batch.errors.append(ParseFailure(
                    index=index, command=str(command), error=str(e), suggestions=self.suggestions(str(e)),
                ))
                continue
            batch.results.append(ParsedItem(index=index, command=command, result=parsed))
        return batch

    @staticmethod
    def suggestions(error_message: str) -> list[str]:
        lowered = (error_message or "").lower()
        return [hint for needle, hint in _SUGGESTIONS if needle in lowered]
