"""Task lifecycle types and the transition table."""

from enum import Enum


class TaskStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ActionType(str, Enum):
    ARM_SYSTEM = "ARM_SYSTEM"
    DISARM_SYSTEM = "DISARM_SYSTEM"

    @property
    def opposite(self) -> "ActionType":
        if self is ActionType.ARM_SYSTEM:
            return ActionType.DISARM_SYSTEM
        return ActionType.ARM_SYSTEM


class ArmMode(str, Enum):
    AWAY = "away"
    STAY = "stay"


# Statuses that carry a next execution time and may be edited or cancelled
# without an override.
SCHEDULABLE = frozenset({TaskStatus.PENDING, TaskStatus.ACTIVE})

# Single source of truth for lifecycle moves. Keys are source states.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.ACTIVE, TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.COMPLETED,
    }),
    TaskStatus.ACTIVE: frozenset({
        TaskStatus.ACTIVE, TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.COMPLETED,
    }),
    TaskStatus.FAILED: frozenset({
        TaskStatus.ACTIVE, TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.COMPLETED,
    }),
    TaskStatus.CANCELLED: frozenset({TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]
