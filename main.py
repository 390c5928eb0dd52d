"""Entry point: type schedule phrases and watch them run against a simulated panel."""

import asyncio

from dotenv import load_dotenv

from core.config import Settings
from core.errors import ScheduleParseError
from core.logging_config import setup_logging
from scheduler.service import PanelScheduler
from tools.builtin.panel import SimulatedPanel

load_dotenv()

USER_ID = "local"

HELP = """\
  <phrase>   create a schedule, e.g. "arm stay weekdays at 9 PM"
  list       show your schedules
  tick       run every due schedule now
  panel      show the simulated panel state
  exit       quit
"""


async def handle(service: PanelScheduler, line: str) -> None:
    if line == "list":
        outcome = await service.listing.execute(USER_ID)
        for task in outcome.data["tasks"]:
            print(f"  {task.task_id[:8]}  [{task.status.value}]  {task.describe()}  next: {task.next_execution_time}")
        if not outcome.data["tasks"]:
            print("  no schedules yet")
        return
    if line == "tick":
        outcome = await service.engine.run_tick()
        print(f"  {outcome.message or outcome.error}")
        return
    if line == "panel":
        print(f"  {service.panel.state()}")
        return

    try:
        parsed = service.parser.parse(line)
    except ScheduleParseError as e:
        print(f"  could not understand that: {e}")
        for hint in service.parser.suggestions(str(e)):
            print(f"    - {hint}")
        return
    print(f"  understood: {parsed.describe()}")

    outcome = await service.create.execute(
        USER_ID, parsed.recurrence, parsed.action_type, parsed.action_parameters
    )
    if not outcome.success:
        print(f"  not created: {outcome.error}")
        return
    print(f"  created {outcome.data['task_id'][:8]}, next run {outcome.data['next_execution_time']}")
    for warning in outcome.data["warnings"]:
        print(f"  warning: {warning}")


async def main():
    settings = Settings()
    setup_logging(settings.log_level, json_format=False)
    service = PanelScheduler(settings, panel=SimulatedPanel())
    await service.init()

    print("Panel scheduler: type 'help' for commands, 'exit' to quit\n")
    try:
        while True:
            line = (await asyncio.to_thread(input, "> ")).strip()
            if line.lower() in {"exit", "quit"}:
                break
            if not line:
                continue
            if line.lower() == "help":
                print(HELP)
                continue
            await handle(service, line.lower() if line.lower() in {"list", "tick", "panel"} else line)
    finally:
        await service.close()


if __name__ == "__main__":
    asyncio.run(main())
