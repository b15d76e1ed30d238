"""Task start-up commands: dependency waiting and stdin-injection recovery."""

from __future__ import annotations

import asyncio
import sys

import click

from paw.cli.runtime import existing_store, open_context, session_option
from paw.core.agents.claude import ClaudeError
from paw.core.models.task import TaskNotFoundError
from paw.core.services.stdin_recovery import RecoveryOutcome


async def _wait(task_name: str, window_id: str, session_name: str) -> bool:
    app = open_context(script="wait-deps", task=task_name, session_name=session_name)
    store = existing_store(app, task_name)
    depends_on = store.load_options().depends_on
    return await app.dependency_waiter().wait(store, window_id, depends_on)


async def _recover(task_name: str, window_id: str, session_name: str) -> RecoveryOutcome:
    app = open_context(script="recover-stdin", task=task_name, session_name=session_name)
    store = existing_store(app, task_name)
    return await app.stdin_recovery().recover(store, window_id)


@click.command(name="wait-deps")
@click.argument("task_name")
@click.argument("window_id")
@session_option
def wait_deps(task_name: str, window_id: str, session_name: str) -> None:
    """Block until TASK_NAME's dependency is satisfied.

    Exits with status 1 when the dependency finished in a state that can
    never satisfy the condition; the task is then marked corrupted.
    """
    try:
        proceed = asyncio.run(_wait(task_name, window_id, session_name))
    except TaskNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc
    if not proceed:
        sys.exit(1)


@click.command(name="recover-stdin")
@click.argument("task_name")
@click.argument("window_id")
@session_option
def recover_stdin(task_name: str, window_id: str, session_name: str) -> None:
    """Re-send the task instruction if the agent never received it."""
    try:
        outcome = asyncio.run(_recover(task_name, window_id, session_name))
    except TaskNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc
    except ClaudeError as exc:
        raise click.ClickException(f"Failed to deliver task instruction: {exc}") from exc

    if outcome is RecoveryOutcome.RECOVERED:
        click.secho(f"Recovered task instruction for: {task_name}", fg="green")
    else:
        click.echo(f"{task_name}: {outcome}")
