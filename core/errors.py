"""Domain exception hierarchy for the scheduling engine."""

from __future__ import annotations


class SchedulingError(ValueError):
    """Base class for recoverable scheduling errors (bad input, bad data)."""


class TimeFormatError(SchedulingError):
    pass


class NoMatchingOccurrence(SchedulingError):
    """A recurrence expression yields no instant inside the search window."""


class ScheduleParseError(SchedulingError):
    """A natural-language command could not be turned into a schedule."""

    def __init__(self, message: str, command: str = "", stage: str = "format"):
        super().__init__(message)
        self.command = command
        self.stage = stage   # format | days | time | action | structure


class InvalidActionParameters(SchedulingError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidTransition(RuntimeError):
    """Raised by the aggregate when asked for an illegal lifecycle change.

    Orchestrators check eligibility before calling into the aggregate, so
    seeing this at runtime means a caller skipped those checks.
    """

    def __init__(self, current: str, target: str, reason: str = ""):
        msg = f"Cannot move task from {current} to {target}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.current = current
        self.target = target
