"""RecurrenceExpression: a weekday set plus a time of day in a timezone."""

from __future__ import annotations

import re
from datetime import datetime, time as dtime, timedelta, timezone as dt_timezone
from typing import Any, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, field_validator

from core.errors import NoMatchingOccurrence
from schedule.values import ALL_DAYS, WEEKDAYS, WEEKENDS, Time, Weekday

# One full week plus the reference day; any non-empty weekday set matches within it.
_SEARCH_DAYS = 8

_SPLIT = re.compile(r"\s*(?:,|\band\b|&|\s)\s*", re.IGNORECASE)
_GROUP_PHRASES = re.compile(r"\b(every\s+day|all\s+days)\b", re.IGNORECASE)


def validate_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: '{name}'") from e
    return name


def coerce_weekdays(value: Any) -> tuple[Weekday, ...]:
    """Turn "weekdays", "mon and fri", ["MON", "FRI"] or Weekday values into days.

    Duplicates are dropped, keeping the position of the first occurrence.
    """
    if value is None:
        return ()
    if isinstance(value, Weekday):
        items: Iterable[Any] = [value]
    elif isinstance(value, str):
        text = _GROUP_PHRASES.sub(lambda m: m.group(1).replace(" ", ""), value.strip())
        text = text.replace("alldays", "all")
        items = [t for t in _SPLIT.split(text) if t]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        raise ValueError("weekdays must be a day name, a collective term or a list of day names")

    seen: list[Weekday] = []
    for item in items:
        days = (item,) if isinstance(item, Weekday) else Weekday.expand(str(item))
        for day in days:
            if day not in seen:
                seen.append(day)
    return tuple(seen)


class RecurrenceExpression(BaseModel):
    """When a recurring task fires.

    Naive reference instants are read as wall-clock time in ``timezone`` and
    produce naive results; aware instants are converted into ``timezone`` and
    produce results aware in that zone.
    """

    model_config = ConfigDict(frozen=True)

    weekdays: tuple[Weekday, ...]
    time_of_day: Time
    timezone: str = "UTC"

    @field_validator("weekdays", mode="before")
    @classmethod
    def _coerce_days(cls, v: Any) -> tuple[Weekday, ...]:
        return coerce_weekdays(v)

    @field_validator("weekdays")
    @classmethod
    def _non_empty(cls, v: tuple[Weekday, ...]) -> tuple[Weekday, ...]:
        if not v:
            raise ValueError("At least one weekday is required")
        return v

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        return validate_timezone(v)

    @classmethod
    def from_data(cls, weekdays: Any, time: Any, timezone: str = "UTC") -> RecurrenceExpression:
        return cls(weekdays=weekdays, time_of_day=time, timezone=timezone)

    # ── Occurrences ──────────────────────────────────────────────────────────

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def _local(self, instant: datetime) -> datetime:
        return instant.astimezone(self.zone) if instant.tzinfo is not None else instant

    def next_occurrence(self, from_instant: datetime) -> datetime:
        """First matching instant strictly after *from_instant*."""
        if not self.weekdays:
            raise NoMatchingOccurrence("Recurrence has no weekdays to match")
        ref = self._local(from_instant)
        wanted = set(self.weekdays)
        wall = dtime(self.time_of_day.hour, self.time_of_day.minute)
        tz = self.zone if from_instant.tzinfo is not None else None
        for offset in range(_SEARCH_DAYS):
            day = ref.date() + timedelta(days=offset)
            if Weekday.from_date(day) not in wanted:
                continue
            candidate = datetime.combine(day, wall, tzinfo=tz)
            if candidate > ref:
                return candidate
        raise NoMatchingOccurrence(
            f"No occurrence of '{self.describe()}' within {_SEARCH_DAYS} days of {from_instant.isoformat()}"
        )

    def upcoming_occurrences(self, days: int, from_instant: datetime) -> list[datetime]:
        """Every occurrence in (from_instant, from_instant + days], ascending."""
        if days <= 0:
            raise ValueError(f"days must be positive, got {days}")
        end = self._local(from_instant) + timedelta(days=days)
        out: list[datetime] = []
        cursor = from_instant
        while True:
            nxt = self.next_occurrence(cursor)
            if nxt > end:
                return out
            out.append(nxt)
            cursor = nxt

    def is_valid(self, at: datetime | None = None) -> bool:
        if not self.weekdays:
            return False
        try:
            self.next_occurrence(at or datetime.now(dt_timezone.utc))
        except NoMatchingOccurrence:
            return False
        return True

    def matches_day(self, instant: datetime) -> bool:
        return Weekday.from_date(self._local(instant).date()) in self.weekdays

    def should_execute_at(self, instant: datetime) -> bool:
        local = self._local(instant)
        return self.matches_day(instant) and Time.from_datetime(local).equals(self.time_of_day)

    # ── Relations ────────────────────────────────────────────────────────────

    def shared_weekdays(self, other: RecurrenceExpression) -> tuple[Weekday, ...]:
        return tuple(d for d in self.weekdays if d in other.weekdays)

    def minutes_apart(self, other: RecurrenceExpression) -> int | None:
        """Time-of-day distance, or None when the two never share a weekday."""
        if not self.shared_weekdays(other):
            return None
        return abs(self.time_of_day.difference_in_minutes(other.time_of_day))

    def conflicts_with(self, other: RecurrenceExpression, tolerance_minutes: int = 5) -> bool:
        apart = self.minutes_apart(other)
        return apart is not None and apart <= tolerance_minutes

    # ── Copies ───────────────────────────────────────────────────────────────

    def with_weekdays(self, weekdays: Any) -> RecurrenceExpression:
        return RecurrenceExpression(weekdays=weekdays, time_of_day=self.time_of_day, timezone=self.timezone)

    def with_time(self, time_of_day: Any) -> RecurrenceExpression:
        return RecurrenceExpression(weekdays=self.weekdays, time_of_day=time_of_day, timezone=self.timezone)

    def with_timezone(self, timezone: str) -> RecurrenceExpression:
        return RecurrenceExpression(weekdays=self.weekdays, time_of_day=self.time_of_day, timezone=timezone)

    # ── Presentation ─────────────────────────────────────────────────────────

    def describe_days(self) -> str:
        days = set(self.weekdays)
        if not days:
            return "no days"
        if days == set(ALL_DAYS):
            return "every day"
        if days == set(WEEKDAYS):
            return "weekdays"
        if days == set(WEEKENDS):
            return "weekends"
        names = [d.display_name for d in sorted(days, key=lambda d: d.day_index)]
        if len(names) == 1:
            return f"every {names[0]}"
        return f"{', '.join(names[:-1])} and {names[-1]}"

    def describe(self) -> str:
        return f"{self.describe_days()} at {self.time_of_day.format_12h()}"

    def __str__(self) -> str:
        return self.describe()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RecurrenceExpression):
            return NotImplemented
        return (
            frozenset(self.weekdays) == frozenset(other.weekdays)
            and self.time_of_day == other.time_of_day
            and self.timezone == other.timezone
        )

    def __hash__(self) -> int:
        return hash((frozenset(self.weekdays), self.time_of_day, self.timezone))
