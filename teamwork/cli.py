"""CLI for teamwork - task claiming and mailbox coordination."""

from __future__ import annotations

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click
from pydantic import BaseModel

from teamwork import __version__, config
from teamwork.errors import TeamworkError
from teamwork.schemas import Role, TaskStatus

logger = logging.getLogger(__name__)

ROLE_CHOICES = [r.value for r in Role]
STATUS_CHOICES = [s.value for s in TaskStatus]


def _echo_json(data: Any) -> None:
    """Print a model, list of models or plain data as indented JSON."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [
            item.model_dump(mode="json", by_alias=True) if isinstance(item, BaseModel) else item
            for item in data
        ]
    click.echo(json.dumps(data, indent=2))


def _handle_errors(func: Callable[..., None]) -> Callable[..., None]:
    """Report TeamworkError on stderr and exit with its code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except TeamworkError as e:
            logger.debug(f"{type(e).__name__}: {e}")
            click.echo(f"Error: {e}", err=True)
            sys.exit(e.exit_code)

    return wrapper


def _base_dir(ctx: click.Context) -> Path:
    return ctx.obj["base_dir"]


def _task_store(ctx: click.Context):
    from teamwork.tasks import TaskStore

    return TaskStore(_base_dir(ctx))


def _mailbox(ctx: click.Context):
    from teamwork.mailbox import Mailbox

    return Mailbox(_base_dir(ctx))


def _project_store(ctx: click.Context):
    from teamwork.projects import ProjectStore

    return ProjectStore(_base_dir(ctx))


@click.group()
@click.version_option(version=__version__, prog_name="teamwork")
@click.option(
    "--base-dir",
    envvar=config.BASE_DIR_ENV,
    default=None,
    type=click.Path(file_okay=False, dir_okay=True),
    help=f"Storage root for all projects (defaults to {config.DEFAULT_BASE_DIR})",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def main(ctx: click.Context, base_dir: str | None, verbose: bool) -> None:
    """Teamwork - task coordination for orchestrator and worker sessions.

    Create a project, add tasks with dependencies, let workers claim and
    resolve them, and exchange idle notifications through inboxes.
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    ctx.ensure_object(dict)
    ctx.obj["base_dir"] = config.get_base_dir(base_dir)


# --- Projects ---


@main.command("project-create")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--goal", "-g", required=True, help="Project goal description")
@click.option(
    "--dir", "-d",
    "directory",
    required=True,
    type=click.Path(file_okay=False, dir_okay=True),
    help="Working directory the team operates on",
)
@click.pass_context
@_handle_errors
def project_create(ctx: click.Context, project: str, team: str, goal: str, directory: str) -> None:
    """Create a new project partition.

    \b
    Example:
        teamwork project-create -p myapp -t core -g "Ship auth" -d .
    """
    record = _project_store(ctx).create(project, team, goal, directory)
    _echo_json(record)


@main.command("project-get")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.pass_context
@_handle_errors
def project_get(ctx: click.Context, project: str, team: str) -> None:
    """Show project metadata."""
    _echo_json(_project_store(ctx).read(project, team))


@main.command("project-status")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option(
    "--format", "-f",
    "output_format",
    type=click.Choice(["json", "table"]),
    default="table",
    help="Output format",
)
@click.pass_context
@_handle_errors
def project_status(ctx: click.Context, project: str, team: str, output_format: str) -> None:
    """Show task progress and active workers for a project."""
    status = _project_store(ctx).status(project, team)

    if output_format == "json":
        _echo_json(status)
        return

    click.echo(f"Project: {project}/{team}")
    click.echo(f"Goal: {status.project.goal}")
    click.echo(f"Progress: {status.progress}% ({status.resolved}/{status.total} resolved)")
    click.echo(
        f"Open: {status.open} | In progress: {status.in_progress} | "
        f"Resolved: {status.resolved} | Failed: {status.failed}"
    )
    if status.by_role:
        click.echo("\nBy role:")
        for role in sorted(status.by_role):
            stats = status.by_role[role]
            click.echo(f"  {role}: {stats.resolved}/{stats.total}")
    if status.active_workers:
        click.echo("\nActive workers:")
        for worker in status.active_workers:
            click.echo(f"  {worker.owner} -> {worker.task_id} ({worker.task_title})")


@main.command("project-clean")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.pass_context
@_handle_errors
def project_clean(ctx: click.Context, project: str, team: str) -> None:
    """Delete all tasks of a project, keeping its metadata and inboxes."""
    _echo_json(_project_store(ctx).clean(project, team))


# --- Tasks ---


@main.command("task-create")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--id", "-i", "task_id", required=True, help="Task ID, unique within the team")
@click.option("--title", required=True, help="Task title")
@click.option("--description", "-d", default="", help="Task description (defaults to title)")
@click.option(
    "--role", "-r",
    type=click.Choice(ROLE_CHOICES),
    default=Role.GENERAL.value,
    help="Worker role for the task",
)
@click.option("--blocked-by", "-b", default="", help="Comma-separated IDs this task waits on")
@click.pass_context
@_handle_errors
def task_create(
    ctx: click.Context,
    project: str,
    team: str,
    task_id: str,
    title: str,
    description: str,
    role: str,
    blocked_by: str,
) -> None:
    """Create a task.

    \b
    Example:
        teamwork task-create -p myapp -t core -i 1 --title "Add login API" -r backend
        teamwork task-create -p myapp -t core -i 2 --title "Test login" -b 1
    """
    task = _task_store(ctx).create(
        project,
        team,
        task_id,
        title,
        description=description,
        role=role,
        blocked_by=blocked_by,
    )
    _echo_json(task)


@main.command("task-get")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--id", "-i", "task_id", required=True, help="Task ID")
@click.pass_context
@_handle_errors
def task_get(ctx: click.Context, project: str, team: str, task_id: str) -> None:
    """Show a single task."""
    _echo_json(_task_store(ctx).get(project, team, task_id))


@main.command("task-list")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--available", "-a", is_flag=True, help="Only open, unowned, unblocked tasks")
@click.option("--role", "-r", type=click.Choice(ROLE_CHOICES), default=None, help="Filter by role")
@click.option(
    "--status", "-s",
    type=click.Choice(STATUS_CHOICES),
    default=None,
    help="Filter by status",
)
@click.option(
    "--format", "-f",
    "output_format",
    type=click.Choice(["json", "table"]),
    default="table",
    help="Output format",
)
@click.pass_context
@_handle_errors
def task_list(
    ctx: click.Context,
    project: str,
    team: str,
    available: bool,
    role: str | None,
    status: str | None,
    output_format: str,
) -> None:
    """List tasks, ordered by ID.

    \b
    Example:
        teamwork task-list -p myapp -t core --available --role backend
    """
    tasks = _task_store(ctx).list(project, team, available=available, role=role, status=status)

    if output_format == "json":
        _echo_json(tasks)
        return

    click.echo("ID|STATUS|ROLE|TITLE|OWNER")
    for task in tasks:
        click.echo(f"{task.id}|{task.status.value}|{task.role.value}|{task.title}|{task.owner or ''}")


@main.command("task-claim")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--id", "-i", "task_id", required=True, help="Task ID")
@click.option("--owner", "-o", required=True, help="Claiming worker or session ID")
@click.pass_context
@_handle_errors
def task_claim(ctx: click.Context, project: str, team: str, task_id: str, owner: str) -> None:
    """Atomically claim a task.

    Exits with code 3 if the task is taken, blocked or not open, so
    callers can move on to another task.
    """
    _echo_json(_task_store(ctx).claim(project, team, task_id, owner))


@main.command("task-update")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--id", "-i", "task_id", required=True, help="Task ID")
@click.option("--owner", "-o", required=True, help="Current owner of the task")
@click.option("--status", "-s", type=click.Choice(STATUS_CHOICES), default=None, help="New status")
@click.option("--add-evidence", "-e", multiple=True, help="Evidence to append (repeatable)")
@click.option("--release", "-r", is_flag=True, help="Clear the owner and reopen the task")
@click.option("--worker-id", "-w", default=None, help="Notify the orchestrator when resolving")
@click.pass_context
@_handle_errors
def task_update(
    ctx: click.Context,
    project: str,
    team: str,
    task_id: str,
    owner: str,
    status: str | None,
    add_evidence: tuple[str, ...],
    release: bool,
    worker_id: str | None,
) -> None:
    """Update task status, evidence or ownership.

    \b
    Example:
        teamwork task-update -p myapp -t core -i 1 -o w1 -e "pytest: 12 passed"
        teamwork task-update -p myapp -t core -i 1 -o w1 -s resolved -w w1
        teamwork task-update -p myapp -t core -i 1 -o w1 --release
    """
    task = _task_store(ctx).update(
        project,
        team,
        task_id,
        owner,
        status=status,
        add_evidence=list(add_evidence),
        release=release,
        worker_id=worker_id,
    )
    _echo_json(task)


@main.command("task-delete")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--id", "-i", "task_id", required=True, help="Task ID")
@click.option("--force", "-f", is_flag=True, help="Delete even if other tasks depend on it")
@click.pass_context
@_handle_errors
def task_delete(ctx: click.Context, project: str, team: str, task_id: str, force: bool) -> None:
    """Delete a task that has not been started."""
    orphaned = _task_store(ctx).delete(project, team, task_id, force=force)
    _echo_json({"status": "deleted", "id": task_id, "orphaned_dependencies": orphaned})


# --- Waves ---


@main.command("wave-status")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option(
    "--format", "-f",
    "output_format",
    type=click.Choice(["json", "table"]),
    default="table",
    help="Output format",
)
@click.pass_context
@_handle_errors
def wave_status(ctx: click.Context, project: str, team: str, output_format: str) -> None:
    """Show dependency waves and their progress.

    Tasks in the same wave have no dependencies on each other and can be
    worked on in parallel once every earlier wave is resolved.

    \b
    Example:
        teamwork wave-status -p myapp -t core
        teamwork wave-status -p myapp -t core -f json
    """
    plan = _task_store(ctx).wave_status(project, team)

    if output_format == "json":
        _echo_json(plan)
        return

    current = plan.current_wave if plan.current_wave is not None else "-"
    click.echo(f"Waves: {plan.total_waves} (current: {current})")
    for wave in plan.waves:
        click.echo(f"\nWave {wave.id}: {wave.status.value}")
        for task in wave.tasks:
            click.echo(f"  {task.id}|{task.status.value}|{task.role.value}|{task.title}|{task.owner or ''}")
    click.echo(
        f"\nSummary: {plan.completed} completed | {plan.in_progress} in progress | "
        f"{plan.remaining} remaining | {plan.failed} failed"
    )
    for task_id, deps in plan.missing_dependencies.items():
        click.echo(f"Warning: task {task_id} depends on missing task(s) {', '.join(deps)}", err=True)


# --- Mailbox ---


def _parse_payload(raw: str | None) -> Any:
    """Decode a JSON payload, keeping non-JSON text as a plain string."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@main.command("mailbox-send")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--from", "sender", required=True, help="Sending participant")
@click.option("--to", "recipient", required=True, help="Recipient inbox")
@click.option("--type", "message_type", required=True, help="Message type, e.g. idle_notification")
@click.option("--payload", default=None, help="Message payload as JSON")
@click.pass_context
@_handle_errors
def mailbox_send(
    ctx: click.Context,
    project: str,
    team: str,
    sender: str,
    recipient: str,
    message_type: str,
    payload: str | None,
) -> None:
    """Send a message to an inbox."""
    message = _mailbox(ctx).send(
        project,
        team,
        sender=sender,
        to=recipient,
        message_type=message_type,
        payload=_parse_payload(payload),
    )
    _echo_json(message)


@main.command("mailbox-read")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--inbox", "-i", required=True, help="Inbox to read")
@click.option("--unread", is_flag=True, help="Only unread messages")
@click.option("--type", "message_type", default=None, help="Only messages of this type")
@click.pass_context
@_handle_errors
def mailbox_read(
    ctx: click.Context,
    project: str,
    team: str,
    inbox: str,
    unread: bool,
    message_type: str | None,
) -> None:
    """List inbox messages without marking them read."""
    messages = _mailbox(ctx).read(
        project, team, inbox, unread_only=unread, message_type=message_type
    )
    _echo_json(messages)


@main.command("mailbox-poll")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--team", "-t", required=True, help="Team name")
@click.option("--inbox", "-i", required=True, help="Inbox to poll")
@click.option(
    "--timeout",
    type=click.IntRange(min=0),
    default=config.DEFAULT_POLL_TIMEOUT_MS,
    show_default=True,
    help="Maximum wait in milliseconds",
)
@click.option("--type", "message_type", default=None, help="Only messages of this type")
@click.pass_context
@_handle_errors
def mailbox_poll(
    ctx: click.Context,
    project: str,
    team: str,
    inbox: str,
    timeout: int,
    message_type: str | None,
) -> None:
    """Wait for unread messages and mark them read.

    Prints a JSON array; an empty array means the timeout elapsed.

    \b
    Example:
        teamwork mailbox-poll -p myapp -t core -i orchestrator --type idle_notification
    """
    messages = _mailbox(ctx).poll(
        project, team, inbox, timeout_ms=timeout, message_type=message_type
    )
    _echo_json(messages)


if __name__ == "__main__":
    main()
