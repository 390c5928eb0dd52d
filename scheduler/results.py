"""Outcome: the result type every orchestrator method returns."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An unexpected error occurred"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    CONFLICT = "conflict"
    EXECUTION = "execution"
    SYSTEM = "system"


class Outcome(BaseModel):
    success: bool
    data: Any = None
    message: str | None = None
    error: str | None = None
    kind: ErrorKind | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> Outcome:
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(
        cls,
        error: str,
        kind: ErrorKind = ErrorKind.VALIDATION,
        details: dict[str, Any] | None = None,
        data: Any = None,
    ) -> Outcome:
        return cls(success=False, error=error, kind=kind, details=details, data=data)

    @classmethod
    def not_found(cls, what: str, identifier: str) -> Outcome:
        return cls.fail(f"{what} not found: {identifier}", ErrorKind.NOT_FOUND, {"id": identifier})

    @classmethod
    def forbidden(cls, error: str = "You do not have permission to perform this action") -> Outcome:
        return cls.fail(error, ErrorKind.PERMISSION)

    @classmethod
    def unexpected(cls, exc: BaseException, operation: str, expose: bool = False, **context: Any) -> Outcome:
        """Log *exc* in full and return a generic failure."""
        logger.exception("Unexpected error during %s", operation, extra={"operation": operation, **context})
        details = {"exception": type(exc).__name__, "detail": str(exc)} if expose else None
        return cls.fail(GENERIC_ERROR, ErrorKind.SYSTEM, details)
