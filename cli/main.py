"""Panel scheduler CLI: talk to a running scheduler API server."""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import httpx
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

_STATUS_COLOR: dict[str, str] = {
    "active": "green",
    "pending": "blue",
    "completed": "dim",
    "cancelled": "yellow",
    "failed": "red",
}


# ── Internal helpers ──────────────────────────────────────────────────────────


def _color(status: str) -> str:
    return _STATUS_COLOR.get(status, "white")


def _client(url: str, user: str) -> httpx.Client:
    return httpx.Client(base_url=url.rstrip("/"), timeout=30, headers={"X-User-Id": user})


def _load_file(path: str) -> Any:
    with open(path) as f:
        return yaml.safe_load(f) if path.endswith((".yaml", ".yml")) else json.load(f)


def _die(msg: str, code: int = 1) -> None:
    err_console.print(f"[red]Error:[/] {msg}")
    sys.exit(code)


def _error_message(resp: httpx.Response) -> str:
    try:
        detail = resp.json().get("detail", resp.text)
    except (ValueError, AttributeError):
        return f"HTTP {resp.status_code}"
    if isinstance(detail, dict):
        msg = detail.get("error") or str(detail)
        suggestions = (detail.get("details") or {}).get("suggestions") or []
        return "\n".join([msg, *(f"  hint: {s}" for s in suggestions)])
    if isinstance(detail, list):
        return "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
    return str(detail)


def _check(resp: httpx.Response) -> None:
    if resp.is_error:
        _die(_error_message(resp))


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _print_tasks(tasks: list[dict]) -> None:
    table = Table(box=box.SIMPLE)
    table.add_column("Task ID", style="cyan")
    table.add_column("Owner")
    table.add_column("Schedule")
    table.add_column("Status")
    table.add_column("Next Run")
    for row in tasks:
        status = row.get("status", "?")
        table.add_row(
            row["task_id"],
            row.get("user_id", ""),
            row.get("description", ""),
            f"[{_color(status)}]{status}[/]",
            row.get("next_execution_time") or "-",
        )
    console.print(table)


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.option(
    "--url", "-u",
    default="http://localhost:8000",
    envvar="PANEL_URL",
    show_default=True,
    help="Scheduler API base URL.",
)
@click.option(
    "--user",
    default="cli",
    envvar="PANEL_USER",
    show_default=True,
    help="Requester id sent as X-User-Id.",
)
@click.option("--json", "json_output", is_flag=True, help="Output raw JSON.")
@click.pass_context
def cli(ctx: click.Context, url: str, user: str, json_output: bool) -> None:
    """Panel scheduler: recurring arm/disarm schedules."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url
    ctx.obj["user"] = user
    ctx.obj["json_output"] = json_output


# ── panel create / parse ──────────────────────────────────────────────────────


@cli.command("create")
@click.argument("phrase")
@click.option("--timezone", "-z", help="IANA timezone for the schedule.")
@click.pass_obj
def create(obj: dict, phrase: str, timezone: str | None) -> None:
    """Create a schedule from a phrase, e.g. "arm stay weekdays at 9 PM"."""
    with _client(obj["url"], obj["user"]) as c:
        resp = c.post("/schedules", json={"command": phrase, "timezone": timezone})
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    click.echo(f"Created  {data['task_id']}  {data['description']}")
    click.echo(f"Next run: {data.get('next_execution_time') or '-'}")
    for warning in data.get("warnings", []):
        console.print(f"[yellow]warning:[/] {warning}")


@cli.command("parse")
@click.argument("phrase")
@click.option("--timezone", "-z", help="IANA timezone for the schedule.")
@click.pass_obj
def parse(obj: dict, phrase: str, timezone: str | None) -> None:
    """Show how a phrase would be understood, without creating it."""
    with _client(obj["url"], obj["user"]) as c:
        resp = c.post("/schedules/parse", json={"command": phrase, "timezone": timezone})
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    console.print(f"[bold]{data['description']}[/]")
    click.echo(f"action:   {data['action_type']}  {data.get('action_parameters') or {}}")
    click.echo(f"days:     {', '.join(data['weekdays'])}")
    click.echo(f"time:     {data['time']} ({data['timezone']})")


# ── panel list / show ─────────────────────────────────────────────────────────


@cli.command("list")
@click.option("--status", "-s", multiple=True, help="Filter by status (repeatable).")
@click.option("--window", type=click.Choice(["today", "week", "month", "upcoming", "overdue"]))
@click.option("--owner", help="List another user's schedules (admins only).")
@click.option("--search", help="Free-text search over descriptions.")
@click.option("--limit", default=100, show_default=True)
@click.pass_obj
def list_schedules(
    obj: dict, status: tuple[str, ...], window: str | None, owner: str | None, search: str | None, limit: int
) -> None:
    """List schedules."""
    params: dict[str, Any] = {"limit": limit}
    if status:
        params["status"] = list(status)
    if window:
        params["window"] = window
    if owner:
        params["user_id"] = owner
    if search:
        params["search"] = search
    with _client(obj["url"], obj["user"]) as c:
        resp = c.get("/schedules", params=params)
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    tasks = data.get("tasks", [])
    if not tasks:
        click.echo("No schedules found.")
        return
    _print_tasks(tasks)
    total = data.get("pagination", {}).get("total", len(tasks))
    click.echo(f"{len(tasks)} of {total} shown")


@cli.command("show")
@click.argument("task_id")
@click.pass_obj
def show(obj: dict, task_id: str) -> None:
    """Show a schedule with its execution stats."""
    with _client(obj["url"], obj["user"]) as c:
        resp = c.get(f"/schedules/{task_id}")
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    task = data["task"]
    status = task.get("status", "?")
    console.print(f"[cyan]{task['task_id']}[/]  [{_color(status)}]{status}[/]")
    click.echo(task.get("description", ""))
    click.echo(f"Next run: {task.get('next_execution_time') or '-'}")
    stats = data.get("stats", {})
    click.echo(
        f"Runs: {stats.get('execution_count', 0)}  failures: {stats.get('failure_count', 0)}"
        f"  success rate: {stats.get('success_rate', 0)}%"
    )
    if task.get("last_error"):
        console.print(f"[red]Last error:[/] {task['last_error']}")
    upcoming = data.get("upcoming_executions", [])
    if upcoming:
        click.echo("Upcoming:")
        for instant in upcoming:
            click.echo(f"  {instant}")


# ── panel cancel / execute ────────────────────────────────────────────────────


@cli.command("cancel")
@click.argument("task_id")
@click.option("--reason", "-r", help="Why the schedule is cancelled.")
@click.option("--force", is_flag=True, help="Cancel regardless of status (admins only).")
@click.pass_obj
def cancel(obj: dict, task_id: str, reason: str | None, force: bool) -> None:
    """Cancel a schedule."""
    params: dict[str, Any] = {"force": force}
    if reason:
        params["reason"] = reason
    with _client(obj["url"], obj["user"]) as c:
        resp = c.delete(f"/schedules/{task_id}", params=params)
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    click.echo(f"Cancelled  {task_id}")
    impact = data.get("impact") or {}
    if impact.get("missed_executions"):
        click.echo(f"{impact['missed_executions']} runs in the next 30 days will not happen")


@cli.command("execute")
@click.argument("task_id")
@click.option("--dry-run", is_flag=True, help="Check readiness without touching the panel.")
@click.option("--ignore-overdue", is_flag=True, help="Run even if the task is badly overdue.")
@click.pass_obj
def execute(obj: dict, task_id: str, dry_run: bool, ignore_overdue: bool) -> None:
    """Run a due schedule now."""
    with _client(obj["url"], obj["user"]) as c:
        resp = c.post(f"/schedules/{task_id}/execute",
                      json={"dry_run": dry_run, "ignore_overdue": ignore_overdue})
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    click.echo(data.get("message") or "Executed")
    for warning in data.get("warnings", []):
        console.print(f"[yellow]warning:[/] {warning}")


# ── panel import ──────────────────────────────────────────────────────────────


@cli.command("import")
@click.argument("file", type=click.Path(exists=True))
@click.option("--timezone", "-z", help="Timezone applied to every phrase.")
@click.pass_obj
def import_schedules(obj: dict, file: str, timezone: str | None) -> None:
    """Create schedules from a YAML or JSON list of phrases.

    \b
    File format (YAML example):
      - arm stay weekdays at 9 PM
      - disarm weekdays at 6:30 AM
    """
    phrases = _load_file(file)
    if isinstance(phrases, dict):
        phrases = phrases.get("schedules", [])
    if not isinstance(phrases, list) or not phrases:
        _die("File must contain a list of schedule phrases")

    results = []
    with _client(obj["url"], obj["user"]) as c:
        for phrase in phrases:
            resp = c.post("/schedules", json={"command": str(phrase), "timezone": timezone})
            if resp.is_error:
                results.append({"command": phrase, "success": False, "error": _error_message(resp)})
            else:
                results.append({"command": phrase, "success": True, "task_id": resp.json().get("task_id")})

    failed = [r for r in results if not r["success"]]
    if obj["json_output"]:
        _echo_json(results)
    else:
        for r in results:
            mark = "[green]ok[/]  " if r["success"] else "[red]fail[/]"
            console.print(f"{mark} {r['command']}  {r.get('task_id') or r.get('error')}")
        click.echo(f"Imported {len(results) - len(failed)} of {len(results)}")
    if failed:
        sys.exit(1)


# ── panel tick / status ───────────────────────────────────────────────────────


@cli.command("tick")
@click.pass_obj
def tick(obj: dict) -> None:
    """Run one scheduler tick on the server now."""
    with _client(obj["url"], obj["user"]) as c:
        resp = c.post("/scheduler/tick")
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    click.echo(
        f"Due: {data.get('total_due', 0)}  executed: {data.get('executed', 0)}  failed: {data.get('failed', 0)}"
    )


@cli.command("catch-up")
@click.pass_obj
def catch_up(obj: dict) -> None:
    """Run recently missed schedules on the server now."""
    with _client(obj["url"], obj["user"]) as c:
        resp = c.post("/scheduler/catch-up")
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    click.echo(
        f"Overdue: {data.get('total_due', 0)}  executed: {data.get('executed', 0)}"
        f"  failed: {data.get('failed', 0)}  too old: {data.get('skipped_stale', 0)}"
    )

@cli.command("status")
@click.pass_obj
def status(obj: dict) -> None:
    """Show the scheduling engine's status."""
    with _client(obj["url"], obj["user"]) as c:
        resp = c.get("/scheduler/status")
    _check(resp)
    data = resp.json()

    if obj["json_output"]:
        _echo_json(data)
        return

    state = "[green]running[/]" if data.get("running") else "[yellow]stopped[/]"
    console.print(f"Engine: {state}  every {data.get('interval_seconds')}s")
    click.echo(
        f"Ticks: {data.get('ticks', 0)}  executed: {data.get('executed_total', 0)}"
        f"  failed: {data.get('failed_total', 0)}"
    )
    click.echo(f"Next tick: {data.get('next_tick_at') or '-'}")
