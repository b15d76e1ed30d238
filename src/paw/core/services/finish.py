"""Finishing and cancelling tasks.

Finishing commits the task's work, optionally merges it, archives the agent
transcript to history and removes the task. Cancelling additionally reverts
the merge commit of a task branch that already landed on the main branch,
holding the merge lock while the project checkout is on the main branch. A
revert that cannot be applied cleanly keeps the task around, marked corrupted,
for manual resolution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from paw.core.adapters.git import GitError
from paw.core.config import MergeConfig
from paw.core.constants import (
    AUTO_COMMIT_ON_TASK_END,
    DISPLAY_MESSAGE_MS,
    EMOJI_DONE,
    PANE_CAPTURE_LINES,
)
from paw.core.models.enums import FinishAction, TaskStatus
from paw.core.paths import get_merge_lock_path
from paw.core.services.merge_lock import MergeLock
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from pathlib import Path

    from paw.core.models.task import TaskStore
    from paw.core.services.history import HistoryService
    from paw.core.services.merges import MergeCoordinator, MergeResult
    from paw.core.services.status import StatusUpdater
    from paw.core.services.tasks import TaskManager
    from paw.core.tmux import TmuxController

log = logging.getLogger(__name__)


class RevertOutcome(StrEnum):
    NOT_NEEDED = "not_needed"
    REVERTED = "reverted"
    NOT_FOUND = "not_found"
    CHECKOUT_FAILED = "checkout_failed"
    CONFLICT = "conflict"
    PUSH_FAILED = "push_failed"
    LOCK_FAILED = "lock_failed"


@dataclass(frozen=True, slots=True)
class FinishResult:
    """Outcome of finishing or cancelling one task."""

    task_name: str
    removed: bool
    message: str
    merge: MergeResult | None = None
    revert: RevertOutcome = RevertOutcome.NOT_NEEDED
    history_file: Path | None = None
    discarded_commits: int = 0


class TaskFinisher:
    def __init__(
        self,
        *,
        manager: TaskManager,
        merger: MergeCoordinator,
        history: HistoryService,
        tmux: TmuxController,
        updater: StatusUpdater,
        merge_config: MergeConfig | None = None,
    ) -> None:
        self.manager = manager
        self.merger = merger
        self.history = history
        self.tmux = tmux
        self.updater = updater
        self.merge_config = merge_config or MergeConfig()

    def _work_dir(self, store: TaskStore) -> Path:
        if self.manager.use_worktree:
            return store.worktree_path
        return self.manager.project_dir

    # Finish

    async def end_task(
        self, store: TaskStore, window_id: str, action: FinishAction = FinishAction.KEEP
    ) -> FinishResult:
        """Commit, optionally merge, archive and remove the task.

        ``drop`` discards the work without committing or archiving. A failed
        merge leaves the task in place.
        """
        name = store.name
        merge: MergeResult | None = None

        if action is not FinishAction.DROP and self.manager.is_git_repo:
            await self._commit_changes(self._work_dir(store))
            if action is FinishAction.MERGE:
                if not self.manager.use_worktree:
                    log.warning("Merge requested for %s outside worktree mode; skipping", name)
                else:
                    merge = await self.merger.merge_task(store, window_id)
                    if not merge.success:
                        return FinishResult(
                            task_name=name,
                            removed=False,
                            message=f"merge failed: {merge.message}",
                            merge=merge,
                        )

        history_file = None
        if action is not FinishAction.DROP:
            history_file = await self._save_history(store, window_id, cancelled=False)

        await self._display(f"{EMOJI_DONE} Task completed: {name}")
        await self._remove(store, window_id)
        log.info("Finished task %s (%s)", name, action)
        return FinishResult(
            task_name=name,
            removed=True,
            message="dropped" if action is FinishAction.DROP else "completed",
            merge=merge,
            history_file=history_file,
        )

    async def _commit_changes(self, work_dir: Path) -> None:
        git = self.manager.git
        try:
            if not await git.has_changes(work_dir):
                log.debug("No changes to commit in %s", work_dir)
                return
            await git.add_all(work_dir)
            diffstat = await git.diff_stat(work_dir)
            await git.commit(work_dir, AUTO_COMMIT_ON_TASK_END.format(diffstat=diffstat))
        except GitError as exc:
            log.warning("Failed to commit changes in %s: %s", work_dir, exc)

    # Cancel

    async def cancel_task(self, store: TaskStore, window_id: str) -> FinishResult:
        name = store.name
        revert = RevertOutcome.NOT_NEEDED
        discarded = 0

        if self.manager.is_git_repo:
            git = self.manager.git
            project = self.manager.project_dir
            main_branch = await self.manager.main_branch()
            branch = store.branch_name()
            if await git.branch_merged(project, branch, main_branch):
                revert = await self._revert_merge(name, branch, main_branch)
                if revert is RevertOutcome.CONFLICT:
                    await self.updater.apply(
                        store,
                        window_id,
                        TaskStatus.CORRUPTED,
                        source="cancel-task",
                        detail=f"revert of {branch} on {main_branch} needs manual resolution",
                    )
                    return FinishResult(
                        task_name=name,
                        removed=False,
                        message="revert failed; resolve manually",
                        revert=revert,
                    )
            elif self.manager.use_worktree and await git.branch_exists(project, branch):
                discarded = await self._count_unmerged(branch, main_branch)

        history_file = await self._save_history(store, window_id, cancelled=True)
        await self._remove(store, window_id)

        if revert is RevertOutcome.REVERTED:
            message = "cancelled and merge reverted"
        elif revert is RevertOutcome.NOT_NEEDED:
            message = "cancelled"
        else:
            message = f"cancelled; revert needs attention ({revert})"
        log.info("Cancelled task %s: %s", name, message)
        return FinishResult(
            task_name=name,
            removed=True,
            message=message,
            revert=revert,
            history_file=history_file,
            discarded_commits=discarded,
        )

    async def _revert_merge(self, name: str, branch: str, main_branch: str) -> RevertOutcome:
        git = self.manager.git
        project = self.manager.project_dir

        if await git.on_first_parent_history(project, branch, main_branch):
            log.info("Branch %s has no commits of its own on %s", branch, main_branch)
            return RevertOutcome.NOT_NEEDED
        commit = await git.find_merge_commit(project, branch, main_branch)
        if not commit:
            log.warning("Branch %s is merged but no merge commit was found", branch)
            return RevertOutcome.NOT_FOUND

        lock = MergeLock(
            get_merge_lock_path(self.manager.paw_dir),
            name,
            max_retries=self.merge_config.lock_max_retries,
            retry_interval=self.merge_config.lock_retry_interval,
        )
        if not await lock.acquire():
            log.warning("Could not take the merge lock to revert %s", commit)
            return RevertOutcome.LOCK_FAILED
        try:
            return await self._revert_locked(commit, branch, main_branch)
        finally:
            lock.release()

    async def _revert_locked(self, commit: str, branch: str, main_branch: str) -> RevertOutcome:
        git = self.manager.git
        project = self.manager.project_dir

        if await git.has_changes(project):
            log.warning("Project %s has uncommitted changes; not reverting %s", project, commit)
            return RevertOutcome.CHECKOUT_FAILED
        try:
            original_branch = await git.current_branch(project)
            await git.checkout(project, main_branch)
        except GitError as exc:
            log.warning("Failed to checkout %s: %s", main_branch, exc)
            return RevertOutcome.CHECKOUT_FAILED

        try:
            try:
                await git.revert(project, commit)
            except GitError as exc:
                log.warning("Failed to revert merge commit %s: %s", commit, exc)
                await git.revert_abort(project)
                return RevertOutcome.CONFLICT
            log.info("Reverted merge commit %s of %s", commit, branch)

            try:
                await git.push(project, main_branch)
            except GitError as exc:
                log.warning("Reverted locally but failed to push %s: %s", main_branch, exc)
                return RevertOutcome.PUSH_FAILED
            return RevertOutcome.REVERTED
        finally:
            if original_branch not in (main_branch, "HEAD", ""):
                try:
                    await git.checkout(project, original_branch)
                except GitError as exc:
                    log.warning("Failed to restore branch %s: %s", original_branch, exc)

    async def _count_unmerged(self, branch: str, main_branch: str) -> int:
        try:
            ahead, _ = await self.manager.git.ahead_behind(
                self.manager.project_dir, branch, main_branch
            )
        except GitError as exc:
            log.debug("Failed to compare %s with %s: %s", branch, main_branch, exc)
            return 0
        if ahead:
            log.warning("Discarding %d unmerged commit(s) on %s", ahead, branch)
        return ahead

    # Shared steps

    async def _save_history(
        self, store: TaskStore, window_id: str, *, cancelled: bool
    ) -> Path | None:
        if not window_id:
            return None
        try:
            capture = await self.tmux.capture_pane(f"{window_id}.0", PANE_CAPTURE_LINES)
        except TmuxError as exc:
            log.warning("Failed to capture pane content: %s", exc)
            return None
        if not capture.strip():
            log.debug("Empty pane capture for %s; no history saved", store.name)
            return None

        save = self.history.save_cancelled if cancelled else self.history.save_completed
        try:
            return await save(store.name, store.load_content(), capture)
        except OSError as exc:
            log.warning("Failed to save history for %s: %s", store.name, exc)
            return None

    async def _remove(self, store: TaskStore, window_id: str) -> None:
        await self.manager.cleanup_task(store.snapshot())

        # Killing the window ends this process when it runs inside that window.
        if window_id:
            try:
                await self.tmux.kill_window(window_id)
            except TmuxError as exc:
                log.warning("Failed to kill window %s: %s", window_id, exc)

    async def _display(self, message: str) -> None:
        try:
            await self.tmux.display_message(message, DISPLAY_MESSAGE_MS)
        except TmuxError as exc:
            log.debug("Failed to display message %r: %s", message, exc)


__all__ = ["FinishResult", "RevertOutcome", "TaskFinisher"]
