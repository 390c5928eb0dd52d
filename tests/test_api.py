"""Tests for the FastAPI service layer."""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

import api.server as server_module
from core.config import Settings
from scheduler.service import PanelScheduler

from conftest import NOW

DUE = NOW.replace(hour=21)
ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}
ROOT = {"X-User-Id": "root"}


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def service(tmp_path, clock):
    """Give each test its own stores, a frozen clock and a simulated panel."""
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/api.db",
        admin_users=["root"],
        scheduler={"auto_start": False},
    )
    svc = PanelScheduler(settings)
    await svc.init()
    for use_case in (svc.create, svc.update, svc.cancel, svc.listing, svc.executor):
        use_case.clock = clock
    previous = server_module._service
    server_module._service = svc
    yield svc
    server_module._service = previous
    await svc.close()


@pytest.fixture
async def client():
    async with AsyncClient(
        transport=ASGITransport(app=server_module.app),
        base_url="http://test",
    ) as ac:
        yield ac


async def create(client, command="arm weekdays at 9 PM", headers=ALICE) -> dict:
    resp = await client.post("/schedules", json={"command": command}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Health ────────────────────────────────────────────────────────────────────

async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "engine_running": False}


# ── Create and parse ──────────────────────────────────────────────────────────

async def test_create_from_command(client):
    body = await create(client, "arm stay weekdays at 9 PM")
    assert body["message"] == "Scheduled task created successfully"
    assert body["task"]["description"] == "Arm system in stay mode weekdays at 9 PM"
    assert body["task"]["status"] == "active"
    assert body["task"]["user_id"] == "alice"
    assert len(body["upcoming_executions"]) == 5


async def test_create_structured(client):
    resp = await client.post("/schedules", headers=ALICE, json={
        "weekdays": ["monday", "friday"],
        "time": "06:30",
        "action_type": "DISARM_SYSTEM",
    })
    assert resp.status_code == 201
    task = resp.json()["task"]
    assert task["weekdays"] == ["MONDAY", "FRIDAY"]
    assert task["time"] == "06:30"
    assert task["action_type"] == "DISARM_SYSTEM"


async def test_create_needs_command_or_fields(client):
    resp = await client.post("/schedules", headers=ALICE, json={"time": "06:30"})
    assert resp.status_code == 422


async def test_create_requires_user_header(client):
    resp = await client.post("/schedules", json={"command": "arm weekdays at 9 PM"})
    assert resp.status_code == 422


async def test_create_unparseable_command(client):
    resp = await client.post("/schedules", headers=ALICE, json={"command": "arm whenever"})
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["kind"] == "validation"
    assert detail["error"].startswith("Could not parse days")
    assert detail["details"]["suggestions"]


async def test_create_conflict_is_409(client):
    await create(client)
    resp = await client.post("/schedules", headers=ALICE, json={"command": "arm stay monday at 21:02"})
    assert resp.status_code == 409
    assert resp.json()["detail"]["kind"] == "conflict"


async def test_create_for_another_user_needs_admin(client):
    payload = {"command": "arm weekdays at 9 PM", "user_id": "alice"}
    assert (await client.post("/schedules", headers=BOB, json=payload)).status_code == 403
    resp = await client.post("/schedules", headers=ROOT, json=payload)
    assert resp.status_code == 201
    assert resp.json()["task"]["user_id"] == "alice"


async def test_parse_only(client):
    resp = await client.post("/schedules/parse", json={"command": "disarm weekends at 8 AM",
                                                        "timezone": "Europe/Paris"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["action_type"] == "DISARM_SYSTEM"
    assert body["weekdays"] == ["SATURDAY", "SUNDAY"]
    assert body["time"] == "08:00"
    assert body["timezone"] == "Europe/Paris"
    assert body["description"] == "Disarm system weekends at 8 AM"


async def test_parse_failure(client):
    resp = await client.post("/schedules/parse", json={"command": "arm then disarm daily at 9"})
    assert resp.status_code == 422
    assert resp.json()["detail"]["details"]["stage"] == "action"


# ── Read ──────────────────────────────────────────────────────────────────────

async def test_list_schedules(client):
    await create(client)
    await create(client, "disarm weekends at 8 AM")
    await create(client, "arm weekdays at 9 PM", headers=BOB)

    resp = await client.get("/schedules", headers=ALICE)
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"]["total"] == 2
    assert body["summary"]["by_action_type"] == {"ARM_SYSTEM": 1, "DISARM_SYSTEM": 1}

    filtered = await client.get("/schedules", headers=ALICE, params={"action_type": "DISARM_SYSTEM"})
    assert [t["description"] for t in filtered.json()["tasks"]] == ["Disarm system weekends at 8 AM"]

    assert (await client.get("/schedules", headers=ALICE, params={"user_id": "bob"})).status_code == 403
    assert (await client.get("/schedules", headers=ROOT)).json()["pagination"]["total"] == 3
    assert (await client.get("/schedules", headers=ALICE, params={"sort_by": "colour"})).status_code == 422


async def test_get_schedule(client):
    task_id = (await create(client))["task_id"]
    resp = await client.get(f"/schedules/{task_id}", headers=ALICE)
    assert resp.status_code == 200
    body = resp.json()
    assert body["task"]["task_id"] == task_id
    assert body["stats"]["execution_count"] == 0
    assert len(body["upcoming_executions"]) == 5

    assert (await client.get(f"/schedules/{task_id}", headers=BOB)).status_code == 403
    assert (await client.get("/schedules/missing", headers=ALICE)).status_code == 404


# ── Update and cancel ─────────────────────────────────────────────────────────

async def test_update_schedule(client):
    task_id = (await create(client))["task_id"]
    resp = await client.patch(f"/schedules/{task_id}", headers=ALICE, json={"time": "20:00"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["changes"]["recurrence"] == {"from": "weekdays at 9 PM", "to": "weekdays at 8 PM"}
    assert body["task"]["time"] == "20:00"

    bad = await client.patch(f"/schedules/{task_id}", headers=ALICE, json={"status": "pending"})
    assert bad.status_code == 422
    assert (await client.patch(f"/schedules/{task_id}", headers=BOB, json={"time": "19:00"})).status_code == 403


async def test_cancel_schedule(client):
    task_id = (await create(client))["task_id"]
    resp = await client.delete(f"/schedules/{task_id}", headers=ALICE, params={"reason": "holiday"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["task"]["status"] == "cancelled"
    assert body["reason"] == "holiday"
    assert body["impact"]["missed_executions"] > 0

    again = await client.delete(f"/schedules/{task_id}", headers=ALICE)
    assert again.status_code == 409


async def test_bulk_and_emergency_cancel(client):
    await create(client)
    await create(client, "disarm weekends at 8 AM")
    await create(client, "arm weekdays at 9 PM", headers=BOB)

    resp = await client.post("/schedules/cancel-bulk", headers=ALICE, json={"action_type": "ARM_SYSTEM"})
    assert resp.status_code == 200
    assert resp.json()["cancelled"] == 1

    denied = await client.post("/schedules/emergency-cancel", headers=ALICE, json={"reason": "fire"})
    assert denied.status_code == 403
    resp = await client.post("/schedules/emergency-cancel", headers=ROOT, json={"reason": "fire"})
    assert resp.status_code == 200
    assert resp.json()["cancelled"] == 2


# ── Execution ─────────────────────────────────────────────────────────────────

async def test_execute_now(client, clock, service):
    task_id = (await create(client))["task_id"]

    early = await client.post(f"/schedules/{task_id}/execute", headers=ALICE)
    assert early.status_code == 422
    assert early.json()["detail"]["error"] == "Task is not ready for execution"

    clock.now = DUE
    dry = await client.post(f"/schedules/{task_id}/execute", headers=ALICE, json={"dry_run": True})
    assert dry.status_code == 200
    assert dry.json()["dry_run"] is True
    assert not service.panel.armed

    assert (await client.post(f"/schedules/{task_id}/execute", headers=BOB)).status_code == 403

    resp = await client.post(f"/schedules/{task_id}/execute", headers=ALICE)
    assert resp.status_code == 200
    assert resp.json()["action_result"]["success"] is True
    assert service.panel.armed


async def test_failed_execution_is_502(client, clock, service):
    task_id = (await create(client))["task_id"]
    clock.now = DUE
    service.panel.fail_times = 1
    resp = await client.post(f"/schedules/{task_id}/execute", headers=ALICE)
    assert resp.status_code == 502
    assert resp.json()["detail"]["details"]["will_retry"] is True


async def test_tick_and_status(client, clock):
    await create(client)
    clock.now = DUE
    resp = await client.post("/scheduler/tick")
    assert resp.status_code == 200
    assert resp.json()["executed"] == 1

    status = (await client.get("/scheduler/status")).json()
    assert status["ticks"] == 1
    assert status["executed_total"] == 1
    assert status["running"] is False


async def test_catch_up_endpoint(client, clock):
    await create(client)
    clock.now = DUE + timedelta(minutes=30)
    resp = await client.post("/scheduler/catch-up")
    assert resp.status_code == 200
    assert resp.json()["executed"] == 1
    assert resp.json()["skipped_stale"] == 0
    assert (await client.get("/scheduler/status")).json()["executed_total"] == 1
