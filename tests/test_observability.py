"""Tests for logging, tracing, the event bus and settings."""

import json
import logging
import sys

import pytest

from core.config import Settings
from core.event_bus import EventBus
from core.logging_config import JsonFormatter, _trace_id_var, get_trace_id, set_trace_id, trace_scope
from core.tracer import Tracer
from scheduler.events import DomainEvent, failure_severity
from schedule.values import Time


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("panel.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ── Logging ───────────────────────────────────────────────────────────────────

def test_json_formatter_fields():
    with trace_scope("feedbeef"):
        line = JsonFormatter().format(_record(task_id="t-1", executed=2))
    payload = json.loads(line)
    assert payload["msg"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "panel.test"
    assert payload["trace_id"] == "feedbeef"
    assert payload["task_id"] == "t-1"
    assert payload["executed"] == 2
    assert payload["ts"].endswith("Z")


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("panel offline")
    except RuntimeError:
        record = logging.LogRecord("panel.test", logging.ERROR, __file__, 1, "boom", None, sys.exc_info())
    payload = json.loads(JsonFormatter().format(record))
    assert "panel offline" in payload["exc"]


def test_trace_scope_restores_previous_id():
    token = set_trace_id("outer")
    try:
        with trace_scope() as inner:
            assert get_trace_id() == inner
            assert inner != "outer"
            assert len(inner) == 8
        assert get_trace_id() == "outer"
    finally:
        _trace_id_var.reset(token)


# ── Tracer ────────────────────────────────────────────────────────────────────

def test_tracer_records_spans():
    tracer = Tracer("abc123")
    with tracer.span("tick", "tick", due=2) as span:
        span.attrs["executed"] = 2
    with pytest.raises(ValueError):
        with tracer.span("ARM_SYSTEM:t-1", "execution"):
            raise ValueError("bad mode")

    assert [s.name for s in tracer.spans] == ["tick", "ARM_SYSTEM:t-1"]
    assert [s.name for s in tracer.failed()] == ["ARM_SYSTEM:t-1"]
    assert tracer.failed()[0].attrs["error"] == "bad mode"
    assert tracer.spans[0].duration_seconds >= 0
    assert tracer.to_dict()["spans"][0]["executed"] == 2

    summary = tracer.summary()
    assert summary.startswith("trace abc123")
    assert summary.splitlines()[-1].endswith("!")


def test_tracer_adopts_bound_trace_id():
    with trace_scope("cafe0001"):
        assert Tracer().trace_id == "cafe0001"


# ── Event bus ─────────────────────────────────────────────────────────────────

async def test_event_bus_routes_by_type():
    bus = EventBus()
    created = bus.subscribe("ScheduleCreated")
    everything = bus.subscribe()
    failed = bus.subscribe("ScheduleFailed")

    await bus.publish(DomainEvent(event_type="ScheduleCreated", aggregate_id="t-1"))

    assert created.get_nowait().aggregate_id == "t-1"
    assert everything.get_nowait().event_type == "ScheduleCreated"
    assert failed.empty()
    assert bus.published_count == 1
    assert bus.subscriber_count() == 3


async def test_event_bus_unsubscribe():
    bus = EventBus()
    q = bus.subscribe("ScheduleCancelled")
    bus.unsubscribe("ScheduleCancelled", q)
    bus.unsubscribe("ScheduleCancelled", q)
    await bus.publish(DomainEvent(event_type="ScheduleCancelled", aggregate_id="t-1"))
    assert q.empty()
    assert bus.subscriber_count("ScheduleCancelled") == 0


@pytest.mark.parametrize("failures,will_retry,expected", [
    (1, True, "medium"),
    (2, True, "high"),
    (3, False, "critical"),
])
def test_failure_severity(failures, will_retry, expected):
    assert failure_severity(failures, will_retry) == expected


# ── Settings ──────────────────────────────────────────────────────────────────

def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("PANEL_ENVIRONMENT", "production")
    monkeypatch.setenv("PANEL_LOG_LEVEL", "debug")
    monkeypatch.setenv("PANEL_ADMIN_USERS", '["root", "ops"]')
    monkeypatch.setenv("PANEL_SCHEDULER__MAX_RETRIES", "5")
    monkeypatch.setenv("PANEL_VALIDATION__NIGHT_START", "23:00")
    monkeypatch.setenv("PANEL_VALIDATION__ALLOW_NIGHT_SCHEDULING", "false")

    settings = Settings(_env_file=None)

    assert settings.is_production
    assert settings.log_level == "DEBUG"
    assert settings.admin_users == ["root", "ops"]
    assert settings.scheduler.max_retries == 5
    assert settings.validation.night_start == Time(hour=23)
    assert settings.validation.allow_night_scheduling is False
    assert settings.resolved_audit_url == settings.database_url


def test_settings_reject_bad_log_level():
    with pytest.raises(ValueError):
        Settings(_env_file=None, log_level="chatty")


def test_settings_reject_out_of_range_retries():
    with pytest.raises(ValueError):
        Settings(_env_file=None, scheduler={"max_retries": 50})
