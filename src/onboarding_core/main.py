"""CLI entrypoint for onboarding-core."""

import logging
from pathlib import Path

import rich_click as click

from onboarding_core import __version__
from onboarding_core.engine.controllers import (
    RecoverCommand,
    TaskAppendCommand,
    TaskCliController,
    TaskCreateCommand,
    TaskInputCommand,
    TaskInspectCommand,
    TaskListCommand,
    TaskRunCommand,
)
from onboarding_core.engine.errors import DecisionBackendError
from onboarding_core.engine.models import ActorType, TaskStatus

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()


@click.group()
@click.version_option(version=__version__, prog_name="onboarding-core")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def onboarding_core(log_level: str) -> None:
    """Durable task-execution core for business onboarding."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@onboarding_core.group()
def tasks() -> None:
    """Task and event log commands."""


@tasks.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-type", required=True, help="Task type, for example business_onboarding.")
@click.option(
    "--business-id",
    default=None,
    help="Owning business. Defaults to ONBOARDING_CORE_BUSINESS_ID.",
)
def tasks_create(db_path: Path | None, task_type: str, business_id: str | None) -> None:
    """Create a task and record its `task_created` entry."""

    _emit_lines(
        TASK_CONTROLLER.create(
            TaskCreateCommand(db_path=db_path, task_type=task_type, business_id=business_id),
        ),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Only show tasks with this coarse status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks."""

    _emit_lines(
        TASK_CONTROLLER.list_tasks(TaskListCommand(db_path=db_path, status=status, limit=limit)),
    )


@tasks.command("inspect")
@click.argument("task_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--at-sequence",
    type=click.IntRange(min=0),
    default=None,
    help="Also replay the log up to this sequence number and diff against now.",
)
@click.option("--entries/--no-entries", default=False, help="Print every context entry.")
def tasks_inspect(
    task_id: str,
    db_path: Path | None,
    at_sequence: int | None,
    entries: bool,
) -> None:
    """Replay a task's log and print its derived state."""

    _emit_lines(
        TASK_CONTROLLER.inspect(
            TaskInspectCommand(
                db_path=db_path,
                task_id=task_id,
                at_sequence=at_sequence,
                show_entries=entries,
            ),
        ),
    )


@tasks.command("append")
@click.argument("task_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--operation", required=True, help="Operation tag, for example phase_started.")
@click.option("--data", "data_json", default="{}", show_default=True, help="Entry data as JSON.")
@click.option(
    "--actor-type",
    type=click.Choice([actor.value for actor in ActorType], case_sensitive=False),
    default=ActorType.SYSTEM.value,
    show_default=True,
    help="Who is recording the entry.",
)
@click.option("--actor-id", default="cli", show_default=True, help="Actor identifier.")
@click.option("--reasoning", default=None, help="Why the entry is recorded.")
@click.option("--confidence", type=float, default=None, help="Confidence in [0, 1].")
def tasks_append(  # noqa: PLR0913
    task_id: str,
    db_path: Path | None,
    operation: str,
    data_json: str,
    actor_type: str,
    actor_id: str,
    reasoning: str | None,
    confidence: float | None,
) -> None:
    """Append one context entry to a task's log."""

    try:
        lines = TASK_CONTROLLER.append(
            TaskAppendCommand(
                db_path=db_path,
                task_id=task_id,
                operation=operation,
                data_json=data_json,
                actor_type=actor_type,
                actor_id=actor_id,
                reasoning=reasoning,
                confidence=confidence,
            ),
        )
    except ValueError as error:
        raise click.ClickException(f"Invalid entry: {error}") from error
    _emit_lines(lines)


@tasks.command("run")
@click.argument("task_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--instruction", required=True, help="What the agent should do for this task.")
@click.option("--data", "data_json", default="{}", show_default=True, help="Request data as JSON.")
def tasks_run(task_id: str, db_path: Path | None, instruction: str, data_json: str) -> None:
    """Start the configured agent (`ONBOARDING_CORE_AGENT_COMMAND`) on a task."""

    try:
        lines = TASK_CONTROLLER.run(
            TaskRunCommand(
                db_path=db_path,
                task_id=task_id,
                instruction=instruction,
                data_json=data_json,
            ),
        )
    except ValueError as error:
        raise click.ClickException(f"Invalid run: {error}") from error
    except DecisionBackendError as error:
        raise click.ClickException(f"Agent run failed: {error}") from error
    _emit_lines(lines)


@tasks.command("input")
@click.argument("task_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", required=True, help="User answering the input request.")
@click.option("--values", "values_json", required=True, help="Field values as a JSON object.")
def tasks_input(task_id: str, db_path: Path | None, user_id: str, values_json: str) -> None:
    """Answer a paused task and continue the agent run."""

    try:
        lines = TASK_CONTROLLER.submit_input(
            TaskInputCommand(
                db_path=db_path,
                task_id=task_id,
                user_id=user_id,
                values_json=values_json,
            ),
        )
    except ValueError as error:
        raise click.ClickException(f"Invalid input: {error}") from error
    except DecisionBackendError as error:
        raise click.ClickException(f"Agent run failed: {error}") from error
    _emit_lines(lines)


@onboarding_core.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--loop", is_flag=True, default=False, help="Keep sweeping periodically.")
@click.option(
    "--max-sweeps",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many sweeps when --loop is set.",
)
@click.option(
    "--interval-seconds",
    type=click.FloatRange(min=0.0),
    default=None,
    help="Pause between sweeps. Defaults to ONBOARDING_CORE_RECOVERY_INTERVAL_SECONDS.",
)
def recover(
    db_path: Path | None,
    loop: bool,
    max_sweeps: int | None,
    interval_seconds: float | None,
) -> None:
    """Resume tasks left `in_progress` by a crash or restart with the configured agent."""

    try:
        lines = TASK_CONTROLLER.recover(
            RecoverCommand(
                db_path=db_path,
                loop=loop,
                max_sweeps=max_sweeps,
                interval_seconds=interval_seconds,
            ),
        )
    except (ValueError, DecisionBackendError) as error:
        raise click.ClickException(f"Recovery cannot start: {error}") from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    onboarding_core()
