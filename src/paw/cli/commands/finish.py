"""Commands that end a task: finish (keep, merge or drop) and cancel."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import click

from paw.cli.runtime import open_context, resolve_store
from paw.core.constants import ENV_TASK_NAME
from paw.core.models.enums import FinishAction
from paw.core.models.task import TaskNotFoundError
from paw.core.services.finish import RevertOutcome

if TYPE_CHECKING:
    from paw.core.services.finish import FinishResult

task_option = click.option(
    "--task",
    "task_name",
    envvar=ENV_TASK_NAME,
    default="",
    help="Task to act on; looked up by window id when omitted",
)


async def _end(
    session_name: str, window_id: str, task_name: str, action: FinishAction
) -> FinishResult:
    app = open_context(script="end-task", task=task_name, session_name=session_name)
    store = await resolve_store(app, script="end-task", window_id=window_id, task_name=task_name)
    finisher = await app.task_finisher()
    return await finisher.end_task(store, window_id, action)


async def _cancel(session_name: str, window_id: str, task_name: str) -> FinishResult:
    app = open_context(script="cancel-task", task=task_name, session_name=session_name)
    store = await resolve_store(
        app, script="cancel-task", window_id=window_id, task_name=task_name
    )
    finisher = await app.task_finisher()
    return await finisher.cancel_task(store, window_id)


@click.command(name="end-task")
@click.argument("session_name")
@click.argument("window_id")
@task_option
@click.option(
    "--action",
    type=click.Choice([action.value for action in FinishAction]),
    default=FinishAction.KEEP.value,
    show_default=True,
    help="keep the branch, merge it into main, or drop the work",
)
def end_task(session_name: str, window_id: str, task_name: str, action: str) -> None:
    """Finish the task in WINDOW_ID and close its window."""
    try:
        result = asyncio.run(_end(session_name, window_id, task_name, FinishAction(action)))
    except TaskNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    if not result.removed:
        if result.merge is not None and result.merge.conflict_files:
            click.echo("Conflicted files:", err=True)
            for path in result.merge.conflict_files:
                click.echo(f"  {path}", err=True)
        raise click.ClickException(f"Task {result.task_name} was kept: {result.message}")
    click.secho(f"{result.task_name}: {result.message}", fg="green")


@click.command(name="cancel-task")
@click.argument("session_name")
@click.argument("window_id")
@task_option
def cancel_task(session_name: str, window_id: str, task_name: str) -> None:
    """Cancel the task in WINDOW_ID, reverting it if it was already merged."""
    try:
        result = asyncio.run(_cancel(session_name, window_id, task_name))
    except TaskNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    if not result.removed:
        raise click.ClickException(f"Task {result.task_name} was kept: {result.message}")
    if result.discarded_commits:
        click.echo(f"Discarded {result.discarded_commits} unmerged commit(s).")
    clean = result.revert in (RevertOutcome.NOT_NEEDED, RevertOutcome.REVERTED)
    color = "green" if clean else "yellow"
    click.secho(f"{result.task_name}: {result.message}", fg=color)
