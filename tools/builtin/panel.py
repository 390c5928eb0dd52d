"""Built-in panel actions: an in-memory simulated panel and an HTTP panel client."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from core.state import ActionType
from tools.base import ActionResult, SystemAction
from tools.registry import ActionRegistry

logger = logging.getLogger(__name__)


# ── Simulated panel ──────────────────────────────────────────────────────────

class SimulatedPanel:
    """Holds armed/disarmed state in memory.

    ``fail_times`` makes the next N operations fail, which the demo REPL and
    the tests use to exercise retry handling.
    """

    def __init__(self, fail_times: int = 0):
        self.armed = False
        self.mode: str | None = None
        self.zone_ids: list[str] = []
        self.fail_times = fail_times
        self.history: list[dict[str, Any]] = []

    def state(self) -> dict[str, Any]:
        return {"armed": self.armed, "mode": self.mode, "zone_ids": list(self.zone_ids)}

    def _consume_failure(self) -> bool:
        if self.fail_times > 0:
            self.fail_times -= 1
            return True
        return False

    def _record(self, op: str, user_id: str, ok: bool) -> None:
        self.history.append({
            "op": op, "user_id": user_id, "ok": ok,
            "at": datetime.now(timezone.utc).isoformat(),
        })

    def arm(self, mode: str, user_id: str, zone_ids: list[str] | None = None) -> ActionResult:
        if self._consume_failure():
            self._record("arm", user_id, False)
            return ActionResult(success=False, error="Panel did not acknowledge arm command")
        self.armed, self.mode, self.zone_ids = True, mode, list(zone_ids or [])
        self._record("arm", user_id, True)
        return ActionResult(success=True, message=f"System armed in {mode} mode", system_state=self.state())

    def disarm(self, user_id: str, zone_ids: list[str] | None = None) -> ActionResult:
        if self._consume_failure():
            self._record("disarm", user_id, False)
            return ActionResult(success=False, error="Panel did not acknowledge disarm command")
        self.armed, self.mode, self.zone_ids = False, None, []
        self._record("disarm", user_id, True)
        return ActionResult(success=True, message="System disarmed", system_state=self.state())


class ArmSystemAction(SystemAction):
    action_type = ActionType.ARM_SYSTEM
    description = "Arm the security panel in away or stay mode."

    def __init__(self, panel: SimulatedPanel):
        self._panel = panel

    async def execute(self, user_id: str, mode: str = "away", zone_ids: list[str] | None = None, **_) -> ActionResult:
        return self._panel.arm(mode, user_id, zone_ids)

    async def current_state(self) -> dict[str, Any]:
        return self._panel.state()


class DisarmSystemAction(SystemAction):
    action_type = ActionType.DISARM_SYSTEM
    description = "Disarm the security panel."

    def __init__(self, panel: SimulatedPanel):
        self._panel = panel

    async def execute(self, user_id: str, zone_ids: list[str] | None = None, **_) -> ActionResult:
        return self._panel.disarm(user_id, zone_ids)

    async def current_state(self) -> dict[str, Any]:
        return self._panel.state()


# ── HTTP panel ───────────────────────────────────────────────────────────────

class HttpPanelAction(SystemAction):
    """Forward arm/disarm to a panel controller exposing a small REST API.

    ``POST {base_url}/system/arm``   body ``{"user_id", "mode", "zone_ids"}``
    ``POST {base_url}/system/disarm`` body ``{"user_id", "zone_ids"}``
    ``GET  {base_url}/system/state``  → ``{"armed": bool, "mode": str | null}``
    """

    def __init__(self, action_type: ActionType, base_url: str, timeout: float = 10.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.action_type = ActionType(action_type)
        self.description = f"{self.action_type.value} via {base_url}"
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    async def execute(self, user_id: str, **params) -> ActionResult:
        path = "/system/arm" if self.action_type is ActionType.ARM_SYSTEM else "/system/disarm"
        body = {"user_id": user_id, **params}
        try:
            async with self._client() as client:
                resp = await client.post(path, json=body)
        except httpx.HTTPError as e:
            logger.warning("Panel request failed", extra={"path": path, "error": str(e)})
            return ActionResult(success=False, error=f"Panel unreachable: {e}")
        if resp.is_error:
            return ActionResult(success=False, error=f"Panel returned HTTP {resp.status_code}: {resp.text[:200]}")
        data = resp.json() if resp.content else {}
        return ActionResult(
            success=True,
            message=data.get("message", f"{self.action_type.value} acknowledged"),
            system_state=data.get("state"),
        )

    async def current_state(self) -> dict[str, Any] | None:
        try:
            async with self._client() as client:
                resp = await client.get("/system/state")
        except httpx.HTTPError:
            return None
        return resp.json() if resp.is_success else None


def build_registry(panel: SimulatedPanel | None = None, base_url: str | None = None,
                   timeout: float = 10.0) -> ActionRegistry:
    """HTTP actions when a panel URL is configured, simulated ones otherwise."""
    registry = ActionRegistry()
    if base_url:
        registry.register(HttpPanelAction(ActionType.ARM_SYSTEM, base_url, timeout))
        registry.register(HttpPanelAction(ActionType.DISARM_SYSTEM, base_url, timeout))
        return registry
    panel = panel or SimulatedPanel()
    registry.register(ArmSystemAction(panel))
    registry.register(DisarmSystemAction(panel))
    return registry
