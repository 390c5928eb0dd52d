"""PanelScheduler: wires stores, actions and use cases into one running stack."""

from __future__ import annotations

import logging

from core.config import Settings
from core.event_bus import EventBus
from scheduler.cancel import CancelScheduledTask
from scheduler.create import CreateScheduledTask
from scheduler.engine import SchedulingEngine
from scheduler.execute import ExecuteScheduledTask
from scheduler.listing import ListScheduledTasks
from scheduler.ports import UserRole
from scheduler.update import UpdateScheduledTask
from schedule.parser import ScheduleParser
from schedule.validator import ScheduleValidator
from store.audit_store import AuditLogStore
from store.task_store import TaskStore
from store.user_directory import InMemoryUserDirectory
from tools.builtin.panel import SimulatedPanel, build_registry
from tools.registry import ActionRegistry

logger = logging.getLogger(__name__)


class PanelScheduler:
    """Everything the API and the REPL need, built from one Settings object.

    Call :meth:`init` before use and :meth:`close` on the way out.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        panel: SimulatedPanel | None = None,
        actions: ActionRegistry | None = None,
    ):
        self.settings = settings or Settings()
        s = self.settings

        self.store = TaskStore(s.database_url)
        self.audit_log = AuditLogStore(s.resolved_audit_url)
        self.event_bus = EventBus()
        self.users = InMemoryUserDirectory(default_role=UserRole.USER)
        for admin_id in s.admin_users:
            self.users.add(admin_id, UserRole.ADMIN)

        self.panel = panel
        if actions is None:
            if panel is None and not s.panel.base_url:
                self.panel = SimulatedPanel()
            actions = build_registry(self.panel, s.panel.base_url, s.panel.timeout_seconds)
        self.actions = actions

        self.parser = ScheduleParser(default_timezone=s.scheduler.default_timezone)
        self.validator = ScheduleValidator(s.validation)

        common = dict(
            audit_log=self.audit_log,
            events=self.event_bus,
            users=self.users,
            expose_errors=not s.is_production,
        )
        self.create = CreateScheduledTask(self.store, self.validator, self.parser, **common)
        self.update = UpdateScheduledTask(self.store, self.validator, **common)
        self.cancel = CancelScheduledTask(self.store, **common)
        self.listing = ListScheduledTasks(self.store, **common)
        self.executor = ExecuteScheduledTask(
            self.store,
            self.actions,
            max_retries=s.scheduler.max_retries,
            overdue_cutoff_minutes=s.scheduler.overdue_cutoff_minutes,
            **common,
        )
        self.engine = SchedulingEngine(self.executor, s.scheduler)

    async def init(self, start_engine: bool | None = None) -> None:
        await self.store.init()
        await self.audit_log.init()
        if self.settings.scheduler.auto_start if start_engine is None else start_engine:
            await self.engine.start()
        logger.info(
            "PanelScheduler ready",
            extra={"environment": self.settings.environment, "engine_running": self.engine.running,
                   "simulated_panel": self.panel is not None},
        )

    async def close(self) -> None:
        await self.engine.shutdown()
        await self.store.close()
        await self.audit_log.close()
