"""Action registry: look up the panel action for an ActionType."""

from core.state import ActionType
from tools.base import SystemAction


class ActionRegistry:
    def __init__(self):
        self._actions: dict[ActionType, SystemAction] = {}

    def register(self, action: SystemAction) -> None:
        self._actions[action.action_type] = action

    def get(self, action_type: ActionType | str) -> SystemAction:
        key = ActionType(action_type)
        if key not in self._actions:
            raise KeyError(f"No action registered for {key.value}. Registered: {[a.value for a in self._actions]}")
        return self._actions[key]

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._actions

    def all_descriptions(self) -> list[dict]:
        return [a.describe() for a in self._actions.values()]
