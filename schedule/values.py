"""Time-of-day and day-of-week value types."""

from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from core.errors import TimeFormatError

MINUTES_PER_DAY = 24 * 60

_RE_24H = re.compile(r"^(\d{1,2}):(\d{2})$")
_RE_12H = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([ap])\.?\s*m\.?$", re.IGNORECASE)
_RE_BARE = re.compile(r"^(\d{1,2})$")


def to_24_hour(hour: int, meridiem: str) -> int:
    """Convert a 1–12 clock hour plus "am"/"pm" (or "a"/"p") to 0–23."""
    if not 1 <= hour <= 12:
        raise TimeFormatError(f"Invalid hour: {hour}. Must be between 1 and 12 with AM/PM")
    pm = meridiem.lower().startswith("p")
    if hour == 12:
        return 12 if pm else 0
    return hour + 12 if pm else hour


# ── Time ─────────────────────────────────────────────────────────────────────

class Time(BaseModel):
    """A wall-clock time of day with minute precision.

    Immutable and hashable. Ordering and equality use minutes since midnight.
    Accepts a "HH:MM" / "9 PM" string wherever a Time field is validated.
    """

    model_config = ConfigDict(frozen=True)

    hour: int
    minute: int = 0

    @model_validator(mode="before")
    @classmethod
    def _from_text(cls, data: Any) -> Any:
        if isinstance(data, str):
            hour, minute = _parse_parts(data)
            return {"hour": hour, "minute": minute}
        return data

    @field_validator("hour")
    @classmethod
    def _check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"Invalid hour: {v}. Must be between 0 and 23")
        return v

    @field_validator("minute")
    @classmethod
    def _check_minute(cls, v: int) -> int:
        if not 0 <= v <= 59:
            raise ValueError(f"Invalid minute: {v}. Must be between 0 and 59")
        return v

    # ── Construction ─────────────────────────────────────────────────────────

    @classmethod
    def parse(cls, text: str) -> Time:
        hour, minute = _parse_parts(text)
        return cls.of(hour, minute)

    @classmethod
    def of(cls, hour: int, minute: int = 0) -> Time:
        """Build a Time, raising TimeFormatError instead of a pydantic error."""
        try:
            return cls(hour=hour, minute=minute)
        except ValidationError as e:
            raise TimeFormatError(e.errors()[0]["msg"].removeprefix("Value error, ")) from e

    @classmethod
    def from_total_minutes(cls, total: int) -> Time:
        if not 0 <= total < MINUTES_PER_DAY:
            raise TimeFormatError(
                f"Invalid total minutes: {total}. Must be between 0 and {MINUTES_PER_DAY - 1}"
            )
        return cls(hour=total // 60, minute=total % 60)

    @classmethod
    def from_datetime(cls, dt: datetime) -> Time:
        return cls(hour=dt.hour, minute=dt.minute)

    # ── Arithmetic ───────────────────────────────────────────────────────────

    @property
    def total_minutes(self) -> int:
        return self.hour * 60 + self.minute

    def add_minutes(self, minutes: int) -> Time:
        return Time.from_total_minutes((self.total_minutes + minutes) % MINUTES_PER_DAY)

    def subtract_minutes(self, minutes: int) -> Time:
        return self.add_minutes(-minutes)

    def difference_in_minutes(self, other: Time) -> int:
        """Signed minutes from *other* to self within the same day."""
        return self.total_minutes - other.total_minutes

    def with_hour(self, hour: int) -> Time:
        return Time.of(hour, self.minute)

    def with_minute(self, minute: int) -> Time:
        return Time.of(self.hour, minute)

    # ── Comparison ───────────────────────────────────────────────────────────

    def compare_to(self, other: Time) -> int:
        diff = self.difference_in_minutes(other)
        return (diff > 0) - (diff < 0)

    def is_before(self, other: Time) -> bool:
        return self.total_minutes < other.total_minutes

    def is_after(self, other: Time) -> bool:
        return self.total_minutes > other.total_minutes

    def equals(self, other: Time) -> bool:
        return self.total_minutes == other.total_minutes

    def __lt__(self, other: Time) -> bool:
        return self.is_before(other)

    def __le__(self, other: Time) -> bool:
        return self.total_minutes <= other.total_minutes

    def __gt__(self, other: Time) -> bool:
        return self.is_after(other)

    def __ge__(self, other: Time) -> bool:
        return self.total_minutes >= other.total_minutes

    def is_between(self, start: Time, end: Time) -> bool:
        """Half-open [start, end); windows that cross midnight are supported."""
        if start <= end:
            return start <= self < end
        return self >= start or self < end

    def is_business_hours(self) -> bool:
        return 9 * 60 <= self.total_minutes < 18 * 60

    # ── Formatting ───────────────────────────────────────────────────────────

    def format_24h(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    def format_12h(self) -> str:
        suffix = "AM" if self.hour < 12 else "PM"
        hour12 = self.hour % 12 or 12
        if self.minute == 0:
            return f"{hour12} {suffix}"
        return f"{hour12}:{self.minute:02d} {suffix}"

    def __str__(self) -> str:
        return self.format_24h()


def _parse_parts(text: str) -> tuple[int, int]:
    raw = text.strip()
    if m := _RE_24H.match(raw):
        return int(m.group(1)), int(m.group(2))
    if m := _RE_12H.match(raw):
        return to_24_hour(int(m.group(1)), m.group(3)), int(m.group(2) or 0)
    if m := _RE_BARE.match(raw):
        return int(m.group(1)), 0
    raise TimeFormatError(
        f"Invalid time format: '{text}'. Expected HH:MM, H:MM AM/PM, H AM/PM or HH"
    )


# ── Weekday ──────────────────────────────────────────────────────────────────

class Weekday(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def day_index(self) -> int:
        """Monday is 0, matching date.weekday()."""
        return _ORDER.index(self)

    @property
    def is_weekend(self) -> bool:
        return self in (Weekday.SATURDAY, Weekday.SUNDAY)

    @property
    def is_weekday(self) -> bool:
        return not self.is_weekend

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def abbreviation(self) -> str:
        return self.value[:3]

    @classmethod
    def from_date(cls, d: date) -> Weekday:
        return _ORDER[d.weekday()]

    @classmethod
    def from_index(cls, i: int) -> Weekday:
        return _ORDER[i % 7]

    @classmethod
    def from_text(cls, text: str) -> Weekday:
        key = text.strip().lower().rstrip(".")
        if key in _ALIASES:
            return _ALIASES[key]
        raise ValueError(f"Unknown weekday: '{text}'")

    @classmethod
    def expand(cls, text: str) -> tuple[Weekday, ...]:
        """Resolve a day name or collective term ("weekdays", "daily") to days."""
        key = text.strip().lower()
        if key in _GROUPS:
            return _GROUPS[key]
        return (cls.from_text(key),)


_ORDER: tuple[Weekday, ...] = tuple(Weekday)

WEEKDAYS: tuple[Weekday, ...] = _ORDER[:5]
WEEKENDS: tuple[Weekday, ...] = _ORDER[5:]
ALL_DAYS: tuple[Weekday, ...] = _ORDER

_ALIASES: dict[str, Weekday] = {}
for _day in _ORDER:
    _ALIASES[_day.value.lower()] = _day
    _ALIASES[_day.abbreviation.lower()] = _day
_ALIASES.update({
    "tues": Weekday.TUESDAY,
    "weds": Weekday.WEDNESDAY,
    "thur": Weekday.THURSDAY,
    "thurs": Weekday.THURSDAY,
})

_GROUPS: dict[str, tuple[Weekday, ...]] = {
    "weekday": WEEKDAYS,
    "weekdays": WEEKDAYS,
    "weekend": WEEKENDS,
    "weekends": WEEKENDS,
    "everyday": ALL_DAYS,
    "every day": ALL_DAYS,
    "daily": ALL_DAYS,
    "all": ALL_DAYS,
    "all days": ALL_DAYS,
}
