"""FastAPI service layer for the panel scheduler."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from api.models import (
    BulkCancelRequest,
    CreateScheduleRequest,
    EmergencyCancelRequest,
    ExecuteRequest,
    ParseRequest,
    ParseResponse,
    TaskResponse,
    UpdateScheduleRequest,
)
from core.config import get_settings
from core.errors import ScheduleParseError
from core.logging_config import setup_logging
from scheduler.results import ErrorKind, Outcome
from scheduler.service import PanelScheduler
from schedule.task import ScheduledTask

logger = logging.getLogger(__name__)

# ── Singletons ────────────────────────────────────────────────────────────────
# Built at import time so routes work even when ASGITransport skips the
# lifespan (e.g. in tests, which swap in their own instance).

_service = PanelScheduler(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = _service.settings
    setup_logging(settings.log_level, settings.json_logs)
    await _service.init()
    yield
    await _service.close()


app = FastAPI(
    title="Panel Scheduler API",
    description="Recurring arm/disarm schedules for a security panel.",
    version="0.1.0",
    lifespan=lifespan,
)


# ── Outcome helpers ───────────────────────────────────────────────────────────

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERMISSION: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXECUTION: 502,
    ErrorKind.SYSTEM: 500,
}


def _render(value: Any) -> Any:
    """Swap aggregates for their response model, recursively."""
    if isinstance(value, ScheduledTask):
        return TaskResponse.from_task(value)
    if isinstance(value, dict):
        return {k: _render(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_render(v) for v in value]
    return value


def _unwrap(outcome: Outcome) -> Any:
    if not outcome.success:
        raise HTTPException(
            _STATUS_BY_KIND.get(outcome.kind, 500),
            detail=jsonable_encoder({
                "error": outcome.error,
                "kind": outcome.kind.value if outcome.kind else None,
                "details": _render(outcome.details),
                "data": _render(outcome.data),
            }),
        )
    return jsonable_encoder({"message": outcome.message, **_as_dict(_render(outcome.data))})


def _as_dict(data: Any) -> dict:
    if data is None:
        return {}
    return data if isinstance(data, dict) else {"data": data}


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "ok", "engine_running": _service.engine.running}


@app.post("/schedules", status_code=201)
async def create_schedule(req: CreateScheduleRequest, x_user_id: str = Header(...)):
    """Create a schedule from a phrase or from structured fields."""
    owner = req.user_id or x_user_id
    if req.command:
        outcome = await _service.create.create_from_command(
            owner, req.command, timezone=req.timezone,
            requested_by=x_user_id, skip_validation=req.skip_validation,
        )
    else:
        outcome = await _service.create.execute(
            owner, req.recurrence(), req.action_type, req.action_parameters,
            requested_by=x_user_id, skip_validation=req.skip_validation,
        )
    return _unwrap(outcome)


@app.post("/schedules/parse", response_model=ParseResponse)
async def parse_schedule(req: ParseRequest):
    """Parse a phrase without creating anything."""
    try:
        parsed = _service.parser.parse(req.command, timezone=req.timezone)
    except ScheduleParseError as e:
        raise HTTPException(422, detail={
            "error": str(e),
            "kind": ErrorKind.VALIDATION.value,
            "details": {"stage": e.stage, "suggestions": _service.parser.suggestions(str(e))},
        })
    return ParseResponse(
        command=parsed.command,
        action_type=parsed.action_type.value,
        action_parameters=parsed.action_parameters,
        weekdays=[d.value for d in parsed.recurrence.weekdays],
        time=parsed.recurrence.time_of_day.format_24h(),
        timezone=parsed.recurrence.timezone,
        description=parsed.describe(),
    )


@app.get("/schedules")
async def list_schedules(
    x_user_id: str = Header(...),
    user_id: str | None = None,
    status: list[str] | None = Query(None),
    action_type: str | None = None,
    window: str | None = None,
    hours_ahead: int = 24,
    search: str | None = None,
    sort_by: str = "created_at",
    order: str = "desc",
    limit: int = 100,
    offset: int = 0,
):
    """List schedules visible to the requester."""
    outcome = await _service.listing.execute(
        x_user_id,
        user_id=user_id,
        status=status,
        action_type=action_type,
        window=window,
        hours_ahead=hours_ahead,
        search=search,
        sort_by=sort_by,
        order=order,
        limit=limit,
        offset=offset,
    )
    return _unwrap(outcome)


@app.post("/schedules/cancel-bulk")
async def cancel_bulk(req: BulkCancelRequest, x_user_id: str = Header(...)):
    outcome = await _service.cancel.cancel_bulk(
        x_user_id, req.criteria(), req.reason, confirmed=req.confirmed, force=req.force,
    )
    return _unwrap(outcome)


@app.post("/schedules/emergency-cancel")
async def emergency_cancel(req: EmergencyCancelRequest, x_user_id: str = Header(...)):
    """Administrator-only: cancel every matching schedule immediately."""
    criteria: dict[str, Any] = {}
    if req.user_id:
        criteria["user_id"] = req.user_id
    if req.action_type:
        criteria["action_type"] = req.action_type.value
    return _unwrap(await _service.cancel.emergency_cancel(x_user_id, req.reason, criteria))


@app.get("/schedules/{task_id}")
async def get_schedule(task_id: str, x_user_id: str = Header(...)):
    user, failure = await _service.listing.resolve_user(x_user_id)
    if failure:
        return _unwrap(failure)
    task, failure = await _service.listing.load_managed(task_id, user)
    if failure:
        return _unwrap(failure)
    return jsonable_encoder({
        "task": TaskResponse.from_task(task),
        "stats": task.execution_stats(),
        "upcoming_executions": task.get_upcoming_executions(7, _service.listing.now()),
    })


@app.patch("/schedules/{task_id}")
async def update_schedule(task_id: str, req: UpdateScheduleRequest, x_user_id: str = Header(...)):
    outcome = await _service.update.execute(
        task_id, x_user_id, req.updates(), force=req.force, skip_validation=req.skip_validation,
    )
    return _unwrap(outcome)


@app.delete("/schedules/{task_id}")
async def cancel_schedule(
    task_id: str, x_user_id: str = Header(...), reason: str | None = None, force: bool = False,
):
    """Cancel a schedule. The record is kept with status ``cancelled``."""
    return _unwrap(await _service.cancel.execute(task_id, x_user_id, reason, force=force))


@app.post("/schedules/{task_id}/execute")
async def execute_schedule(task_id: str, req: ExecuteRequest | None = None, x_user_id: str = Header(...)):
    """Run a schedule now, subject to its readiness rules."""
    req = req or ExecuteRequest()
    user, failure = await _service.executor.resolve_user(x_user_id)
    if failure:
        return _unwrap(failure)
    _, failure = await _service.executor.load_managed(task_id, user)
    if failure:
        return _unwrap(failure)
    outcome = await _service.executor.execute(task_id, dry_run=req.dry_run, ignore_overdue=req.ignore_overdue)
    return _unwrap(outcome)


@app.post("/scheduler/tick")
async def run_tick():
    """Run one scheduler tick immediately."""
    return _unwrap(await _service.engine.run_tick())


@app.post("/scheduler/catch-up")
async def run_catch_up():
    """Run overdue schedules that are still recent enough to be worth running."""
    return _unwrap(await _service.engine.catch_up())


@app.get("/scheduler/status")
async def scheduler_status():
    return jsonable_encoder(_service.engine.status())


_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


@app.get("/events/stream")
async def stream_events(event_type: str = "*"):
    """Stream domain events as Server-Sent Events.

    Each event is a JSON-encoded DomainEvent on a ``data:`` line. A comment
    line (``: heartbeat``) is sent every 30 s to keep the connection alive.
    """
    async def generator():
        q = _service.event_bus.subscribe(event_type)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(q.get(), timeout=30.0)
                    yield f"data: {json.dumps(jsonable_encoder(event))}\n\n"
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
        except asyncio.CancelledError:
            pass
        finally:
            _service.event_bus.unsubscribe(event_type, q)

    return StreamingResponse(generator(), media_type="text/event-stream", headers=_SSE_HEADERS)
