"""Tracer: timed spans for scheduler ticks and task executions."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generator

from core.logging_config import get_trace_id, new_trace_id


# ── Data classes ─────────────────────────────────────────────────────────────

@dataclass
class Span:
    """A single timed operation."""
    name: str
    kind: str                        # tick | execution | action
    started_at: datetime
    finished_at: datetime | None = None
    ok: bool = True
    attrs: dict = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "ok": self.ok,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_s": self.duration_seconds,
            **self.attrs,
        }


# ── Tracer ────────────────────────────────────────────────────────────────────

class Tracer:
    """Collects spans for one scheduler run.

    The trace id defaults to whatever is bound in the logging context so that
    spans and log lines of the same run share an id.
    """

    def __init__(self, trace_id: str | None = None):
        current = get_trace_id()
        self.trace_id: str = trace_id or (current if current != "-" else new_trace_id())
        self._spans: list[Span] = []

    @property
    def spans(self) -> list[Span]:
        return list(self._spans)

    @contextmanager
    def span(self, name: str, kind: str, **attrs) -> Generator[Span, None, None]:
        s = Span(name=name, kind=kind, started_at=datetime.now(timezone.utc), attrs=attrs)
        try:
            yield s
        except BaseException as e:
            s.ok = False
            s.attrs.setdefault("error", str(e) or type(e).__name__)
            raise
        finally:
            s.finished_at = datetime.now(timezone.utc)
            self._spans.append(s)

    def failed(self) -> list[Span]:
        return [s for s in self._spans if not s.ok]

    def summary(self) -> str:
        lines = [f"trace {self.trace_id}", f"  {'Kind':<10} {'Name':<36} {'Duration':>10}"]
        for s in self._spans:
            d = f"{s.duration_seconds:.3f}s" if s.duration_seconds is not None else "-"
            mark = "" if s.ok else "  !"
            lines.append(f"  {s.kind:<10} {s.name:<36} {d:>10}{mark}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {"trace_id": self.trace_id, "spans": [s.to_dict() for s in self._spans]}
