"""Task discovery, health scanning, and cleanup over ``<pawDir>/agents``."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from paw.core.adapters.git import GitError
from paw.core.models.enums import CorruptedReason, TaskStatus
from paw.core.models.task import (
    TaskNotFoundError,
    TaskStore,
    extract_task_token,
    is_final_window,
    matches_window_token,
)
from paw.core.paths import get_agents_dir
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from paw.core.adapters.git import GitClientProtocol
    from paw.core.agents.claude import AgentClient
    from paw.core.models.task import Task
    from paw.core.tmux import TmuxController, Window

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoppedTask:
    """A task window whose agent process is no longer running."""

    task: Task
    window_id: str


class TaskManager:
    """Lists tasks and reconciles their directories with git and tmux."""

    def __init__(
        self,
        *,
        paw_dir: Path,
        project_dir: Path,
        git: GitClientProtocol,
        tmux: TmuxController | None = None,
        agent: AgentClient | None = None,
        use_worktree: bool = True,
        is_git_repo: bool = True,
        main_branch: str | None = None,
    ) -> None:
        self.paw_dir = paw_dir
        self.project_dir = project_dir
        self.git = git
        self.tmux = tmux
        self.agent = agent
        self.use_worktree = use_worktree
        self.is_git_repo = is_git_repo
        self._main_branch = main_branch

    @property
    def agents_dir(self) -> Path:
        return get_agents_dir(self.paw_dir)

    def store(self, name: str) -> TaskStore:
        return TaskStore(self.agents_dir / name, use_worktree=self.use_worktree)

    def _require_tmux(self) -> TmuxController:
        if self.tmux is None:
            raise RuntimeError("tmux client not configured")
        return self.tmux

    async def main_branch(self) -> str:
        if self._main_branch is None:
            self._main_branch = await self.git.main_branch(self.project_dir)
        return self._main_branch

    # Lookup

    def task_names(self) -> list[str]:
        try:
            entries = list(self.agents_dir.iterdir())
        except FileNotFoundError:
            return []
        return sorted(entry.name for entry in entries if entry.is_dir())

    def list_tasks(self) -> list[Task]:
        return [self.store(name).snapshot() for name in self.task_names()]

    def get_task(self, name: str) -> Task:
        store = self.store(name)
        if not store.exists():
            raise TaskNotFoundError(name)
        return store.snapshot()

    def find_task_by_window_id(self, window_id: str) -> Task:
        for name in self.task_names():
            store = self.store(name)
            if store.load_window_id() == window_id:
                return store.snapshot()
        raise TaskNotFoundError(f"window {window_id}")

    def find_task_by_token(self, token: str) -> Task | None:
        """Resolve a (possibly truncated) window token back to its task."""
        for name in self.task_names():
            if matches_window_token(token, name):
                return self.store(name).snapshot()
        return None

    async def _list_windows(self) -> list[Window]:
        tmux = self._require_tmux()
        try:
            return await tmux.list_windows()
        except TmuxError as exc:
            log.debug("Failed to list windows: %s", exc)
            return []

    # Health checks

    async def is_task_merged(self, task: Task, main_branch: str) -> bool:
        """Merged into main, or both the branch and the worktree are gone."""
        branch = TaskStore(task.agent_dir).branch_name()
        if await self.git.branch_merged(self.project_dir, branch, main_branch):
            return True
        if not self.use_worktree:
            return False
        worktree_exists = task.worktree_dir is not None and task.worktree_dir.exists()
        branch_exists = await self.git.branch_exists(self.project_dir, branch)
        return not branch_exists and not worktree_exists

    async def find_incomplete_tasks(self) -> list[Task]:
        """Tasks that should be reopened: they lost their window but not their work."""
        windows = await self._list_windows()
        active_ids = {window.id for window in windows}
        active_tokens = {
            token for window in windows if (token := extract_task_token(window.name)) is not None
        }
        main_branch = await self.main_branch() if self.is_git_repo else ""

        incomplete: list[Task] = []
        for task in self.list_tasks():
            if any(matches_window_token(token, task.name) for token in active_tokens):
                continue
            if main_branch and await self.is_task_merged(task, main_branch):
                continue

            store = TaskStore(task.agent_dir)
            if store.has_tab_lock():
                reopen = not task.window_id or task.window_id not in active_ids
            else:
                reopen = (
                    self.use_worktree
                    and task.worktree_dir is not None
                    and task.worktree_dir.exists()
                )
            if reopen:
                task.status = TaskStatus.PENDING
                incomplete.append(task)
        return incomplete

    async def check_worktree_status(self, task: Task) -> CorruptedReason | None:
        worktree = task.worktree_dir
        if worktree is None:
            return None
        branch = TaskStore(task.agent_dir).branch_name()

        if not worktree.exists():
            if await self.git.branch_exists(self.project_dir, branch):
                return CorruptedReason.MISSING_WORKTREE
            return None
        if not worktree.is_dir() or not (worktree / ".git").exists():
            return CorruptedReason.INVALID_GIT

        try:
            worktrees = await self.git.worktree_list(self.project_dir)
        except GitError as exc:
            log.warning("worktree list failed for %s: %s", task.name, exc)
            return CorruptedReason.NOT_IN_GIT
        resolved = worktree.resolve()
        if not any(_same_path(entry.path, resolved) for entry in worktrees):
            return CorruptedReason.NOT_IN_GIT

        if not await self.git.branch_exists(self.project_dir, branch):
            return CorruptedReason.MISSING_BRANCH
        return None

    async def find_corrupted_tasks(self) -> list[Task]:
        if not self.use_worktree:
            return []
        corrupted: list[Task] = []
        for task in self.list_tasks():
            reason = await self.check_worktree_status(task)
            if reason is not None:
                task.status = TaskStatus.CORRUPTED
                task.corrupted_reason = reason
                corrupted.append(task)
        return corrupted

    async def find_merged_tasks(self) -> list[Task]:
        if not self.is_git_repo:
            return []
        main_branch = await self.main_branch()
        merged: list[Task] = []
        for task in self.list_tasks():
            if await self.is_task_merged(task, main_branch):
                task.status = TaskStatus.DONE
                merged.append(task)
        return merged

    async def find_orphaned_windows(self) -> list[str]:
        """IDs of task windows with no matching agent directory."""
        orphaned: list[str] = []
        for window in await self._list_windows():
            token = extract_task_token(window.name)
            if token is None:
                continue
            if self.find_task_by_token(token) is None:
                orphaned.append(window.id)
        return orphaned

    async def find_stopped_tasks(self) -> list[StoppedTask]:
        tmux = self._require_tmux()
        if self.agent is None:
            raise RuntimeError("agent client not configured")

        stopped: list[StoppedTask] = []
        for window in await self._list_windows():
            token = extract_task_token(window.name)
            if token is None or is_final_window(window.name):
                continue
            task = self.find_task_by_token(token)
            if task is None:
                continue
            if not await self.agent.is_running(tmux, f"{window.id}.0"):
                log.debug("Task %s has a stopped agent in %s", task.name, window.id)
                stopped.append(StoppedTask(task=task, window_id=window.id))
        return stopped

    # Cleanup

    async def cleanup_task(self, task: Task) -> None:
        """Remove the worktree, the task branch, and the agent directory."""
        store = TaskStore(task.agent_dir)
        if self.use_worktree and self.is_git_repo:
            branch = store.branch_name()
            worktree = task.worktree_dir
            if worktree is not None and worktree.exists():
                try:
                    await self.git.worktree_remove(self.project_dir, worktree, force=True)
                except GitError as exc:
                    log.debug("worktree remove failed, deleting directory: %s", exc)
                    shutil.rmtree(worktree, ignore_errors=True)

            try:
                await self.git.worktree_prune(self.project_dir)
            except GitError as exc:
                log.debug("worktree prune failed: %s", exc)

            if await self.git.branch_exists(self.project_dir, branch):
                try:
                    await self.git.branch_delete(self.project_dir, branch, force=True)
                except GitError as exc:
                    log.warning("Failed to delete branch %s: %s", branch, exc)

        store.remove()
        log.info("Cleaned up task %s", task.name)


def _same_path(candidate: str, resolved: Path) -> bool:
    try:
        return Path(candidate).resolve() == resolved
    except OSError:
        return False
