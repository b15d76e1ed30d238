"""Merge command: integrate a finished task branch into the main branch."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import click

from paw.cli.runtime import open_context, resolve_store
from paw.core.constants import ENV_TASK_NAME
from paw.core.models.task import TaskNotFoundError

if TYPE_CHECKING:
    from paw.core.services.merges import MergeResult


async def _merge(session_name: str, window_id: str, task_name: str) -> MergeResult:
    app = open_context(script="merge-task", task=task_name, session_name=session_name)
    store = await resolve_store(
        app, script="merge-task", window_id=window_id, task_name=task_name
    )
    return await app.merge_coordinator().merge_task(store, window_id)


@click.command(name="merge-task")
@click.argument("session_name")
@click.argument("window_id")
@click.option(
    "--task",
    "task_name",
    envvar=ENV_TASK_NAME,
    default="",
    help="Task to merge; looked up by window id when omitted",
)
def merge_task(session_name: str, window_id: str, task_name: str) -> None:
    """Squash-merge the task in WINDOW_ID into the main branch.

    Merges are serialized across tasks by the project merge lock. A failed
    merge marks the task corrupted and keeps its worktree and branch.
    """
    try:
        result = asyncio.run(_merge(session_name, window_id, task_name))
    except TaskNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    if not result.success:
        if result.conflict_files:
            click.echo("Conflicted files:", err=True)
            for path in result.conflict_files:
                click.echo(f"  {path}", err=True)
        raise click.ClickException(f"Merge failed for {result.task_name}: {result.message}")
    click.secho(f"{result.task_name}: {result.message}", fg="green")
