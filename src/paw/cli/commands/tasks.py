"""Task maintenance commands: scan, cleanup and worktree recovery."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import click

from paw.cli.runtime import open_context, session_option
from paw.core.constants import EMOJI_DONE, EMOJI_WARNING
from paw.core.services.worktree_recovery import RECOVERY_ACTIONS, RecoveryError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from paw.core.bootstrap import AppContext
    from paw.core.models.task import Task
    from paw.core.services.tasks import StoppedTask


@dataclass(slots=True)
class ScanReport:
    incomplete: list[Task] = field(default_factory=list)
    corrupted: list[Task] = field(default_factory=list)
    merged: list[Task] = field(default_factory=list)
    orphaned_windows: list[str] = field(default_factory=list)
    stopped: list[StoppedTask] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (
            self.incomplete
            or self.corrupted
            or self.merged
            or self.orphaned_windows
            or self.stopped
        )


async def _scan(app: AppContext) -> ScanReport:
    manager = await app.task_manager()
    report = ScanReport(
        incomplete=await manager.find_incomplete_tasks(),
        corrupted=await manager.find_corrupted_tasks(),
        merged=await manager.find_merged_tasks(),
    )
    if app.session_name:
        report.orphaned_windows = await manager.find_orphaned_windows()
        report.stopped = await manager.find_stopped_tasks()
    return report


def _select(candidates: Sequence[Task], names: Sequence[str]) -> list[Task]:
    if not names:
        return list(candidates)
    wanted = set(names)
    return [task for task in candidates if task.name in wanted]


@click.group()
def tasks() -> None:
    """Inspect and repair task directories."""


@tasks.command()
@session_option
def scan(session_name: str) -> None:
    """Report incomplete, corrupted, merged and stopped tasks."""
    app = open_context(script="tasks-scan", session_name=session_name)
    report = asyncio.run(_scan(app))

    if report.empty:
        click.secho("All tasks are healthy.", fg="green")
        return

    click.echo()
    if report.incomplete:
        click.secho("Incomplete (no live window):", bold=True)
        for task in report.incomplete:
            click.echo(f"  {task.name}")
    if report.corrupted:
        click.secho("Corrupted:", bold=True)
        for task in report.corrupted:
            reason = task.corrupted_reason
            detail = reason.description if reason is not None else "unknown"
            click.echo(f"  {EMOJI_WARNING} {task.name}: {detail}")
    if report.merged:
        click.secho("Merged (ready for cleanup):", bold=True)
        for task in report.merged:
            click.echo(f"  {EMOJI_DONE} {task.name}")
    if report.orphaned_windows:
        click.secho("Windows without a task:", bold=True)
        for window_id in report.orphaned_windows:
            click.echo(f"  {window_id}")
    if report.stopped:
        click.secho("Stopped agents:", bold=True)
        for stopped in report.stopped:
            click.echo(f"  {stopped.task.name} ({stopped.window_id})")
    click.echo()


@tasks.command()
@click.argument("names", nargs=-1)
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
def cleanup(names: tuple[str, ...], force: bool) -> None:
    """Remove merged tasks: worktree, branch and agent directory.

    With NAMES, only those merged tasks are removed.
    """
    app = open_context(script="tasks-cleanup")

    async def _merged() -> list[Task]:
        manager = await app.task_manager()
        return await manager.find_merged_tasks()

    targets = _select(asyncio.run(_merged()), names)
    if not targets:
        click.secho("No merged tasks to clean up.", fg="yellow")
        return

    click.echo("Will remove:")
    for task in targets:
        click.echo(f"  {task.name}")
    if not force and not click.confirm("Continue?", default=False):
        click.echo("Cancelled.")
        return

    async def _cleanup() -> None:
        manager = await app.task_manager()
        for task in targets:
            await manager.cleanup_task(task)

    asyncio.run(_cleanup())
    click.secho(f"Removed {len(targets)} task(s).", fg="green")


@tasks.command()
@click.argument("names", nargs=-1)
def recover(names: tuple[str, ...]) -> None:
    """Repair corrupted task worktrees.

    With NAMES, only those corrupted tasks are repaired.
    """
    app = open_context(script="tasks-recover")

    async def _recover() -> list[tuple[Task, str | None]]:
        manager = await app.task_manager()
        recovery = app.worktree_recovery()
        outcomes: list[tuple[Task, str | None]] = []
        for task in _select(await manager.find_corrupted_tasks(), names):
            try:
                await recovery.recover(task)
            except RecoveryError as exc:
                outcomes.append((task, str(exc)))
            else:
                outcomes.append((task, None))
        return outcomes

    outcomes = asyncio.run(_recover())
    if not outcomes:
        click.secho("No corrupted tasks found.", fg="green")
        return

    failed = 0
    for task, error in outcomes:
        action = RECOVERY_ACTIONS.get(task.corrupted_reason) if task.corrupted_reason else None
        if error is None:
            click.secho(f"  {EMOJI_DONE} {task.name}: {action}", fg="green")
        else:
            failed += 1
            click.secho(f"  {EMOJI_WARNING} {task.name}: {error}", fg="red")
    if failed:
        sys.exit(1)
