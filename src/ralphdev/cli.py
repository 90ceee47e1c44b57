"""ralph-dev CLI: task, state, saga and extractor commands.

Installed as the ``ralph-dev`` console_script. Every command accepts
``--json`` and then prints the stable response envelope on stdout; logging
always goes to stderr.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from typing import Any

import click

from ralphdev import __version__, log
from ralphdev.config import Config
from ralphdev.errors import ExitCode, FileSystemError, InvalidInputError, RalphDevError
from ralphdev.io_utils import read_text
from ralphdev.response import error_response, success_response

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

json_option = click.option("--json", "as_json", is_flag=True, help="Print the JSON response envelope")


# ── output helpers ───────────────────────────────────────────────


def _emit_json(envelope: dict[str, Any]) -> None:
    click.echo(json.dumps(envelope, indent=2, default=str))


def _fail(ctx: click.Context, err: RalphDevError, as_json: bool) -> None:
    if as_json:
        _emit_json(error_response(err))
    else:
        log.error(err.message)
        if err.suggested_action:
            log.info(err.suggested_action)
    ctx.exit(int(err.exit_code))


def _run(
    ctx: click.Context,
    as_json: bool,
    action: Callable[[], Any],
    render: Callable[[Any], None] | None = None,
    exit_code: Callable[[Any], int] | None = None,
) -> None:
    """Run *action*, print its data as an envelope or via *render*, map errors to exit codes."""
    try:
        data = action()
    except RalphDevError as err:
        _fail(ctx, err, as_json)
        return
    if as_json:
        _emit_json(success_response(data))
    elif render is not None:
        render(data)
    if exit_code is not None:
        ctx.exit(exit_code(data))


def _load_json_arg(raw: str, what: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"{what} is not valid JSON: {exc}", code="INVALID_JSON") from exc


def _read_input(path: str | None) -> str:
    if not path:
        return sys.stdin.read()
    try:
        return read_text(path)
    except OSError as exc:
        raise FileSystemError.wrap(f"read {path}", exc) from exc


def _config(ctx: click.Context) -> Config:
    return ctx.obj


# ── root group ───────────────────────────────────────────────────


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--workspace", "-w", default="", help="Workspace root (default: git top-level or cwd)")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="ralph-dev")
@click.pass_context
def main(ctx: click.Context, workspace: str, verbose: bool) -> None:
    """ralph-dev: deterministic state for an agent-driven build workflow.

    \b
    EXAMPLES:
      ralph-dev tasks init --goal "Add OAuth login"
      ralph-dev tasks create --id auth.login --module auth -d "Login form"
      ralph-dev tasks next --json
      ralph-dev tasks done auth.login --duration 4m32s
      ralph-dev saga run breakdown
      ralph-dev extract implementation --file agent-output.txt --json
    """
    log.set_verbose(verbose)
    ctx.obj = Config(workspace_dir=workspace, verbose=verbose)


# ── tasks ────────────────────────────────────────────────────────


@main.group()
def tasks() -> None:
    """Create, query and transition tasks."""


def _repo(ctx: click.Context):
    from ralphdev.tasks.repository import TaskRepository

    return TaskRepository(_config(ctx))


def _print_transition(data: dict[str, Any]) -> None:
    if data.get("alreadyInState"):
        log.warn(f"Task {data['taskId']} is already {data['status']}")
    else:
        log.success(f"Task {data['taskId']}: {data['previousStatus']} -> {data['status']}")


def _print_task(data: dict[str, Any]) -> None:
    console = log.console
    console.print(f"[bold]{data['id']}[/bold]  [dim]({data['module']})[/dim]")
    console.print(f"  {data['description']}")
    console.print(
        f"  status: [cyan]{data['status']}[/cyan]  priority: {data['priority']}  "
        f"estimate: {data['estimatedMinutes']}m"
    )
    if data["dependencies"]:
        console.print(f"  depends on: {', '.join(data['dependencies'])}")
    if data["acceptanceCriteria"]:
        console.print("[bold]Acceptance criteria:[/bold]")
        for i, criterion in enumerate(data["acceptanceCriteria"], 1):
            console.print(f"  {i}. {criterion}")
    if data["notes"]:
        console.print("[bold]Notes:[/bold]")
        for note in data["notes"]:
            console.print(f"  - {note}")


def _task_dict(task) -> dict[str, Any]:
    return {
        "id": task.id,
        "module": task.module,
        "description": task.description,
        "priority": task.priority,
        "status": task.status.value,
        "estimatedMinutes": task.estimated_minutes,
        "dependencies": list(task.dependencies),
        "acceptanceCriteria": list(task.acceptance_criteria),
        "notes": list(task.notes),
        "testRequirements": task.test_requirements,
        "filePath": task.relative_path().as_posix(),
        "createdAt": task.created_at,
        "updatedAt": task.updated_at,
        "startedAt": task.started_at,
        "completedAt": task.completed_at,
        "failedAt": task.failed_at,
    }


@tasks.command("init")
@click.option("--goal", default=None, help="Project goal stored in index metadata")
@click.option("--language-config", default=None, help="Language descriptor as a JSON object")
@json_option
@click.pass_context
def tasks_init(ctx: click.Context, goal: str | None, language_config: str | None, as_json: bool) -> None:
    """Create the tasks directory and index metadata."""

    def action() -> dict[str, Any]:
        lang = _load_json_arg(language_config, "--language-config") if language_config else None
        if lang is not None and not isinstance(lang, dict):
            raise InvalidInputError("--language-config must be a JSON object")
        index = _repo(ctx).init(project_goal=goal, language_config=lang)
        return {"path": str(_config(ctx).index_path), "metadata": index.metadata}

    _run(ctx, as_json, action, lambda d: log.success(f"Initialized task index at {d['path']}"))


@tasks.command("create")
@click.option("--id", "task_id", required=True, help="Dotted task id, e.g. auth.signup.ui")
@click.option("--module", required=True, help="Module the task belongs to")
@click.option("--description", "-d", required=True, help="One-line description")
@click.option("--priority", "-p", type=int, default=1, show_default=True, help="Lower is more urgent")
@click.option("--estimated-minutes", type=int, default=30, show_default=True)
@click.option("--depends-on", multiple=True, help="Dependency id (repeatable)")
@click.option("--criterion", "criteria", multiple=True, help="Acceptance criterion (repeatable)")
@click.option("--test-requirements", default=None, help="Test requirements as a JSON object")
@json_option
@click.pass_context
def tasks_create(
    ctx: click.Context,
    task_id: str,
    module: str,
    description: str,
    priority: int,
    estimated_minutes: int,
    depends_on: tuple[str, ...],
    criteria: tuple[str, ...],
    test_requirements: str | None,
    as_json: bool,
) -> None:
    """Create a new pending task."""
    from ralphdev.tasks.model import Task

    def action() -> dict[str, Any]:
        reqs = _load_json_arg(test_requirements, "--test-requirements") if test_requirements else None
        task = Task(
            id=task_id,
            module=module,
            description=description,
            priority=priority,
            estimated_minutes=estimated_minutes,
            dependencies=list(depends_on),
            acceptance_criteria=list(criteria),
            test_requirements=reqs,
        )
        return _task_dict(_repo(ctx).create(task))

    _run(ctx, as_json, action, lambda d: log.success(f"Created task {d['id']} ({d['filePath']})"))


@tasks.command("list")
@click.option("--status", default=None, help="Filter by status")
@click.option("--module", default=None, help="Filter by module")
@click.option("--priority", type=int, default=None, help="Filter by priority")
@click.option("--has-deps/--no-deps", "has_dependencies", default=None, help="Filter by having dependencies")
@click.option("--ready/--not-ready", "ready", default=None, help="Filter by readiness")
@click.option("--sort", default="priority", show_default=True, help="priority, status, estimatedMinutes or id")
@click.option("--offset", type=int, default=0, show_default=True)
@click.option("--limit", type=int, default=100, show_default=True)
@json_option
@click.pass_context
def tasks_list(
    ctx: click.Context,
    status: str | None,
    module: str | None,
    priority: int | None,
    has_dependencies: bool | None,
    ready: bool | None,
    sort: str,
    offset: int,
    limit: int,
    as_json: bool,
) -> None:
    """List tasks from the index."""

    def action() -> dict[str, Any]:
        page = _repo(ctx).list(
            status=status,
            module=module,
            priority=priority,
            has_dependencies=has_dependencies,
            ready=ready,
            sort=sort,
            offset=offset,
            limit=limit,
        )
        return page.to_dict()

    def render(data: dict[str, Any]) -> None:
        from rich.table import Table

        table = Table(title=f"Tasks ({len(data['tasks'])} of {data['total']})")
        for column in ("ID", "Status", "Priority", "Module", "Description"):
            table.add_column(column)
        for t in data["tasks"]:
            table.add_row(t["id"], t["status"], str(t["priority"]), t["module"], t["description"])
        log.console.print(table)

    _run(ctx, as_json, action, render)


@tasks.command("get")
@click.argument("task_id")
@json_option
@click.pass_context
def tasks_get(ctx: click.Context, task_id: str, as_json: bool) -> None:
    """Show one task."""
    _run(ctx, as_json, lambda: _task_dict(_repo(ctx).get(task_id)), _print_task)


@tasks.command("next")
@json_option
@click.pass_context
def tasks_next(ctx: click.Context, as_json: bool) -> None:
    """Show the most urgent ready task."""

    def action() -> dict[str, Any] | None:
        task = _repo(ctx).next_ready()
        return _task_dict(task) if task else None

    def render(data: dict[str, Any] | None) -> None:
        if data is None:
            log.info("No ready tasks")
        else:
            _print_task(data)

    _run(ctx, as_json, action, render)


@tasks.command("start")
@click.argument("task_id")
@json_option
@click.pass_context
def tasks_start(ctx: click.Context, task_id: str, as_json: bool) -> None:
    """Mark a task in progress."""
    _run(ctx, as_json, lambda: _repo(ctx).start(task_id).to_dict(), _print_transition)


@tasks.command("done")
@click.argument("task_id")
@click.option("--duration", "-d", default=None, help='Time taken, e.g. "4m 32s"')
@json_option
@click.pass_context
def tasks_done(ctx: click.Context, task_id: str, duration: str | None, as_json: bool) -> None:
    """Mark a task completed."""
    _run(ctx, as_json, lambda: _repo(ctx).complete(task_id, duration=duration).to_dict(), _print_transition)


@tasks.command("fail")
@click.argument("task_id")
@click.option("--reason", "-r", required=True, help="Failure reason")
@json_option
@click.pass_context
def tasks_fail(ctx: click.Context, task_id: str, reason: str, as_json: bool) -> None:
    """Mark a task failed."""
    _run(ctx, as_json, lambda: _repo(ctx).fail(task_id, reason=reason).to_dict(), _print_transition)


@tasks.command("note")
@click.argument("task_id")
@click.argument("text")
@json_option
@click.pass_context
def tasks_note(ctx: click.Context, task_id: str, text: str, as_json: bool) -> None:
    """Append a note to a task."""

    def action() -> dict[str, Any]:
        task = _repo(ctx).append_note(task_id, text)
        return {"taskId": task.id, "notes": list(task.notes)}

    _run(ctx, as_json, action, lambda d: log.success(f"Added note to {d['taskId']}"))


@tasks.command("batch")
@click.option("--file", "path", default=None, help="JSON array of operations (default: stdin)")
@click.option("--atomic", is_flag=True, help="Roll back every applied operation on the first failure")
@json_option
@click.pass_context
def tasks_batch(ctx: click.Context, path: str | None, atomic: bool, as_json: bool) -> None:
    """Apply start/done/fail operations in order."""

    def action() -> dict[str, Any]:
        ops = _load_json_arg(_read_input(path), "Batch input")
        if not isinstance(ops, list):
            raise InvalidInputError("Batch input must be a JSON array of operations")
        return _repo(ctx).batch(ops, atomic=atomic).to_dict()

    def render(data: dict[str, Any]) -> None:
        for item in data["results"]:
            if item["success"]:
                log.success(f"{item['action']} {item['taskId']}")
            else:
                log.error(f"{item['action']} {item['taskId']}: {item['error']['message']}")
        if data["rolledBack"]:
            log.warn("Batch rolled back")
        log.info(f"{data['successful']}/{data['total']} operations succeeded")

    def code(data: dict[str, Any]) -> int:
        return int(ExitCode.SUCCESS if data["allSuccessful"] else ExitCode.GENERAL_ERROR)

    _run(ctx, as_json, action, render, exit_code=code)


@tasks.command("rebuild-index")
@json_option
@click.pass_context
def tasks_rebuild_index(ctx: click.Context, as_json: bool) -> None:
    """Regenerate the index from task documents."""
    _run(ctx, as_json, lambda: {"tasks": len(_repo(ctx).rebuild_index().entries)})


@tasks.command("progress")
@json_option
@click.pass_context
def tasks_progress(ctx: click.Context, as_json: bool) -> None:
    """Show counts per status."""

    def render(data: dict[str, Any]) -> None:
        log.console.print(
            f"[bold]{data['completed']}/{data['total']}[/bold] completed "
            f"({data['percentComplete']}%), {data['in_progress']} in progress, "
            f"{data['failed']} failed"
        )

    _run(ctx, as_json, lambda: _repo(ctx).progress(), render)


# ── state ────────────────────────────────────────────────────────


@main.group()
def state() -> None:
    """Read and update the workflow state."""


def _store(ctx: click.Context):
    from ralphdev.state import StateStore

    return StateStore(_config(ctx))


def _print_state(data: dict[str, Any] | None) -> None:
    if data is None:
        log.info("No active session")
        return
    log.console.print(f"phase: [cyan]{data['phase']}[/cyan]")
    if data.get("currentTask"):
        log.console.print(f"current task: {data['currentTask']}")
    if data["errors"]:
        log.console.print(f"errors: {len(data['errors'])}")


@state.command("get")
@json_option
@click.pass_context
def state_get(ctx: click.Context, as_json: bool) -> None:
    """Show the workflow state."""

    def action() -> dict[str, Any] | None:
        current = _store(ctx).get()
        return current.to_dict() if current else None

    _run(ctx, as_json, action, _print_state)


@state.command("set")
@click.option("--phase", required=True, help="Phase to start or move to")
@click.option("--task", "current_task", default=None, help="Current task id")
@json_option
@click.pass_context
def state_set(ctx: click.Context, phase: str, current_task: str | None, as_json: bool) -> None:
    """Start a session or move it to a phase."""
    _run(ctx, as_json, lambda: _store(ctx).set(phase, current_task).to_dict(), _print_state)


@state.command("update")
@click.option("--phase", default=None, help="Phase to move to")
@click.option("--task", "current_task", default=None, help="Current task id")
@click.option("--clear-task", is_flag=True, help="Unset the current task")
@click.option("--requirements", default=None, help="Requirements payload as JSON")
@click.option("--add-error", default=None, help="Append an error message")
@json_option
@click.pass_context
def state_update(
    ctx: click.Context,
    phase: str | None,
    current_task: str | None,
    clear_task: bool,
    requirements: str | None,
    add_error: str | None,
    as_json: bool,
) -> None:
    """Partially update the workflow state."""
    from ralphdev.state import UNSET

    def action() -> dict[str, Any]:
        kwargs: dict[str, Any] = {"phase": phase, "add_error": add_error}
        if clear_task:
            kwargs["current_task"] = None
        elif current_task is not None:
            kwargs["current_task"] = current_task
        kwargs["requirements"] = (
            _load_json_arg(requirements, "--requirements") if requirements is not None else UNSET
        )
        return _store(ctx).update(**kwargs).to_dict()

    _run(ctx, as_json, action, _print_state)


@state.command("clear")
@json_option
@click.pass_context
def state_clear(ctx: click.Context, as_json: bool) -> None:
    """Delete the workflow state."""
    _run(
        ctx,
        as_json,
        lambda: {"cleared": _store(ctx).clear()},
        lambda d: log.success("State cleared") if d["cleared"] else log.info("No state to clear"),
    )


@state.command("archive")
@json_option
@click.pass_context
def state_archive(ctx: click.Context, as_json: bool) -> None:
    """Move the workflow state into the archive."""
    _run(
        ctx,
        as_json,
        lambda: {"archivedTo": str(_store(ctx).archive())},
    )


# ── saga ─────────────────────────────────────────────────────────


@main.group()
def saga() -> None:
    """Run phase sagas and check for interrupted ones."""


@saga.command("run")
@click.argument("phase")
@json_option
@click.pass_context
def saga_run(ctx: click.Context, phase: str, as_json: bool) -> None:
    """Run the side-effect saga for PHASE (breakdown, implement, deliver)."""
    from ralphdev.phase_sagas import saga_for_phase
    from ralphdev.saga import SagaExecutor

    def action() -> dict[str, Any]:
        cfg = _config(ctx)
        steps = saga_for_phase(phase, cfg)
        result = SagaExecutor(cfg, name=f"{phase}-saga").execute(steps)
        result.raise_for_failure()
        return result.to_dict()

    _run(ctx, as_json, action)


@saga.command("check")
@json_option
@click.pass_context
def saga_check(ctx: click.Context, as_json: bool) -> None:
    """Report an incomplete saga left by a previous session."""
    from ralphdev.saga import check_recovery

    def action() -> dict[str, Any]:
        incomplete = check_recovery(_config(ctx))
        return {"incomplete": incomplete is not None, "saga": incomplete}

    _run(ctx, as_json, action, lambda d: None if d["incomplete"] else log.success("No incomplete sagas found"))


# ── extract ──────────────────────────────────────────────────────


@main.group()
def extract() -> None:
    """Parse agent output into a validated result."""


def _extract_command(kind_name: str) -> Callable[..., None]:
    @click.option("--file", "path", default=None, help="Read agent output from a file (default: stdin)")
    @json_option
    @click.pass_context
    def command(ctx: click.Context, path: str | None, as_json: bool) -> None:
        from ralphdev.extractor import consistency_warnings
        from ralphdev.extractor import extract as run_extract
        from ralphdev.results import RESULT_KINDS

        def action() -> dict[str, Any]:
            result = run_extract(_read_input(path), RESULT_KINDS[kind_name])
            return {"result": result.model_dump(exclude_none=True), "warnings": consistency_warnings(result)}

        def render(data: dict[str, Any]) -> None:
            log.console.print_json(data=data["result"])
            for warning in data["warnings"]:
                log.warn(warning)

        _run(ctx, as_json, action, render)

    command.__doc__ = f"Extract a {kind_name} result."
    return command


for _kind in ("implementation", "healing", "clarification"):
    extract.command(_kind)(_extract_command(_kind))


if __name__ == "__main__":
    main()
