"""Panel action base class and result type."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from core.state import ActionType


class ActionResult(BaseModel):
    success: bool
    message: str = ""
    error: str | None = None
    system_state: dict[str, Any] | None = None


class SystemAction(ABC):
    """An arm or disarm operation against the security panel.

    Implementations report failures through ``ActionResult(success=False)``
    rather than raising; the execution orchestrator still guards against
    exceptions escaping.
    """

    action_type: ActionType
    description: str

    @abstractmethod
    async def execute(self, user_id: str, **params) -> ActionResult:
        """Perform the action for *user_id* with the task's action parameters."""
        ...

    async def current_state(self) -> dict[str, Any] | None:
        """Return ``{"armed": bool, "mode": str | None}`` when the panel can tell."""
        return None

    def describe(self) -> dict:
        return {"action_type": self.action_type.value, "description": self.description}
