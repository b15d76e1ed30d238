"""Repair task worktrees that drifted out of sync with git."""

from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING

from paw.core.adapters.git import GitError, read_worktree_head
from paw.core.models.enums import CorruptedReason
from paw.core.models.task import TaskStore

if TYPE_CHECKING:
    from pathlib import Path

    from paw.core.adapters.git import GitClientProtocol
    from paw.core.models.task import Task

log = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


class RecoveryError(RuntimeError):
    """Raised when a corrupted worktree cannot be repaired."""


RECOVERY_ACTIONS: dict[CorruptedReason, str] = {
    CorruptedReason.MISSING_WORKTREE: "Recreate worktree from existing branch",
    CorruptedReason.NOT_IN_GIT: "Remove directory and recreate worktree",
    CorruptedReason.INVALID_GIT: "Back up files, recreate worktree, restore files",
    CorruptedReason.MISSING_BRANCH: "Create branch from worktree HEAD",
}


def copy_tree_contents(source: Path, destination: Path, *, exclude: frozenset[str]) -> None:
    """Copy everything under *source* into *destination*, skipping *exclude* names."""
    shutil.copytree(
        source,
        destination,
        dirs_exist_ok=True,
        symlinks=True,
        ignore=lambda _dir, names: [name for name in names if name in exclude],
    )


class WorktreeRecovery:
    def __init__(self, project_dir: Path, git: GitClientProtocol) -> None:
        self.project_dir = project_dir
        self.git = git

    async def recover(self, task: Task) -> None:
        reason = task.corrupted_reason
        if reason is None:
            raise RecoveryError(f"task {task.name} has no corruption reason")

        store = TaskStore(task.agent_dir)
        worktree = task.worktree_dir or store.worktree_path
        branch = store.branch_name()
        log.info("Recovering %s (%s)", task.name, reason)
        try:
            match reason:
                case CorruptedReason.MISSING_WORKTREE:
                    await self._recreate(worktree, branch)
                case CorruptedReason.NOT_IN_GIT:
                    await self._replace(worktree, branch)
                case CorruptedReason.INVALID_GIT:
                    await self._rebuild_with_backup(worktree, branch)
                case CorruptedReason.MISSING_BRANCH:
                    await self._restore_branch(worktree, branch)
        except (GitError, OSError) as exc:
            log.warning("Recovery failed for %s (%s): %s", task.name, reason, exc)
            raise RecoveryError(f"failed to recover {task.name}: {exc}") from exc
        log.info("Recovered %s (%s)", task.name, reason)

    async def _prune(self) -> None:
        try:
            await self.git.worktree_prune(self.project_dir)
        except GitError as exc:
            log.debug("worktree prune failed: %s", exc)

    async def _recreate(self, worktree: Path, branch: str) -> None:
        await self.git.worktree_add(self.project_dir, worktree, branch, create_branch=False)

    async def _replace(self, worktree: Path, branch: str) -> None:
        shutil.rmtree(worktree)
        await self._prune()
        create_branch = not await self.git.branch_exists(self.project_dir, branch)
        await self.git.worktree_add(
            self.project_dir, worktree, branch, create_branch=create_branch
        )

    async def _rebuild_with_backup(self, worktree: Path, branch: str) -> None:
        backup = worktree.with_name(worktree.name + BACKUP_SUFFIX)
        create_branch = not await self.git.branch_exists(self.project_dir, branch)
        worktree.rename(backup)
        await self._prune()
        try:
            await self.git.worktree_add(
                self.project_dir, worktree, branch, create_branch=create_branch
            )
        except GitError:
            try:
                backup.rename(worktree)
            except OSError as exc:
                log.warning("Failed to restore backup %s: %s", backup, exc)
            raise

        copy_tree_contents(backup, worktree, exclude=frozenset({".git"}))
        shutil.rmtree(backup, ignore_errors=True)

    async def _restore_branch(self, worktree: Path, branch: str) -> None:
        head = read_worktree_head(worktree)
        if not head:
            raise RecoveryError(f"cannot resolve HEAD of worktree {worktree}")
        log.debug("Recreating branch %s at %s", branch, head)
        await self.git.branch_create(self.project_dir, branch, head)
