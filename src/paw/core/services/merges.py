"""Squash-merge a finished task branch into the integration branch.

Everything that touches the shared project checkout runs under the merge lock.
Per-task worktrees are only committed and pushed, never checked out.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from paw.core.adapters.git import GitError
from paw.core.adapters.process import run_shell_capture
from paw.core.agents.claude import ClaudeError
from paw.core.agents.prompts import build_auto_resolve_prompt, build_conflict_resolution_prompt
from paw.core.constants import (
    AUTO_COMMIT_BEFORE_MERGE,
    DISPLAY_MESSAGE_MS,
    EMOJI_DONE,
    EMOJI_WARNING,
    MERGE_COMMIT_LOG_LIMIT,
    MERGE_COMMIT_SUBJECT_MAX,
    MERGE_STASH_PREFIX,
)
from paw.core.models.enums import TaskStatus
from paw.core.paths import get_merge_lock_path
from paw.core.services.merge_lock import MergeLock
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from paw.core.adapters.git import CommitInfo, GitClientProtocol
    from paw.core.agents.claude import AgentClient
    from paw.core.config import PawConfig
    from paw.core.models.task import TaskStore
    from paw.core.services.status import StatusUpdater
    from paw.core.tmux import TmuxController

log = logging.getLogger(__name__)

COMMIT_TYPES = ("feat", "fix", "refactor", "docs", "test", "chore", "perf", "style", "build", "ci")
DEFAULT_COMMIT_TYPE = "feat"


def infer_commit_type(task_name: str) -> tuple[str, str]:
    """Split ``fix-login-redirect`` into ``("fix", "login redirect")``.

    Names without a conventional prefix are features.
    """
    prefix, sep, rest = task_name.partition("-")
    if sep and rest and prefix.lower() in COMMIT_TYPES:
        return prefix.lower(), rest.replace("-", " ")
    return DEFAULT_COMMIT_TYPE, task_name.replace("-", " ")


def generate_merge_commit_message(task_name: str, commits: Sequence[CommitInfo]) -> str:
    commit_type, subject = infer_commit_type(task_name)
    lines = [f"{commit_type}: {subject}\n"]
    if commits:
        lines.append("\nChanges:\n")
        for commit in commits:
            text = commit.subject
            if len(text) > MERGE_COMMIT_SUBJECT_MAX:
                text = text[: MERGE_COMMIT_SUBJECT_MAX - 3] + "..."
            lines.append(f"- {text}\n")
    return "".join(lines)


def merge_stash_message(task_name: str) -> str:
    return f"{MERGE_STASH_PREFIX}{task_name}"


@dataclass(frozen=True, slots=True)
class MergeResult:
    """Outcome of one merge attempt."""

    task_name: str
    success: bool
    message: str
    main_branch: str = ""
    skipped: bool = False
    conflict_files: tuple[str, ...] = field(default_factory=tuple)


class _MergeAborted(Exception):
    def __init__(self, reason: str, conflict_files: Sequence[str] = ()) -> None:
        super().__init__(reason)
        self.reason = reason
        self.conflict_files = tuple(conflict_files)


class MergeCoordinator:
    """Integrates task branches into the main branch one task at a time."""

    def __init__(
        self,
        *,
        config: PawConfig,
        project_dir: Path,
        paw_dir: Path,
        git: GitClientProtocol,
        tmux: TmuxController,
        agent: AgentClient,
        updater: StatusUpdater,
        session_name: str = "",
    ) -> None:
        self.config = config
        self.project_dir = project_dir
        self.paw_dir = paw_dir
        self.git = git
        self.tmux = tmux
        self.agent = agent
        self.updater = updater
        self.session_name = session_name

    async def merge_task(self, store: TaskStore, window_id: str) -> MergeResult:
        name = store.name
        if not await self.git.is_git_repo(self.project_dir):
            return MergeResult(task_name=name, success=False, message="not a git repository")
        if not self.config.use_worktree:
            return MergeResult(
                task_name=name, success=False, message="merge requires worktree mode"
            )

        main_branch = self.config.general.main_branch or await self.git.main_branch(
            self.project_dir
        )
        branch = store.branch_name()

        if await self.git.branch_merged(self.project_dir, branch, main_branch):
            log.info("Task %s is already merged into %s", name, main_branch)
            return MergeResult(
                task_name=name,
                success=True,
                message=f"already merged into {main_branch}",
                main_branch=main_branch,
                skipped=True,
            )

        worktree = store.worktree_path
        hook_env = self._hook_env(name, worktree, window_id)
        await self._run_hook("pre-merge", self.config.general.pre_merge_hook, hook_env)

        await self._commit_worktree(worktree)
        await self._push_task_branch(worktree, branch)

        lock = MergeLock(
            get_merge_lock_path(self.paw_dir),
            name,
            max_retries=self.config.merge.lock_max_retries,
            retry_interval=self.config.merge.lock_retry_interval,
        )
        if not await lock.acquire():
            return await self._fail(store, window_id, main_branch, "failed to acquire merge lock")

        try:
            await self._merge_locked(store, branch, main_branch)
        except _MergeAborted as exc:
            return await self._fail(
                store, window_id, main_branch, exc.reason, conflict_files=exc.conflict_files
            )
        except GitError as exc:
            return await self._fail(store, window_id, main_branch, f"git error: {exc}")
        finally:
            lock.release()

        await self._run_hook("post-merge", self.config.general.post_merge_hook, hook_env)
        log.info("Merged task %s into %s", name, main_branch)
        await self._display(f"{EMOJI_DONE} Merged: {name} → {main_branch}")
        return MergeResult(
            task_name=name,
            success=True,
            message=f"merged into {main_branch}",
            main_branch=main_branch,
        )

    # Steps run before the lock

    def _hook_env(self, task_name: str, worktree: Path, window_id: str) -> dict[str, str]:
        env = dict(os.environ)
        env.update(
            {
                "TASK_NAME": task_name,
                "PAW_DIR": str(self.paw_dir),
                "PROJECT_DIR": str(self.project_dir),
                "WINDOW_ID": window_id,
                "SESSION_NAME": self.session_name,
                "WORKTREE_DIR": str(worktree),
            }
        )
        return env

    async def _run_hook(self, label: str, command: str | None, env: Mapping[str, str]) -> None:
        if not command:
            return
        log.debug("Running %s hook: %s", label, command)
        try:
            result = await run_shell_capture(
                command,
                cwd=self.project_dir,
                env=env,
                timeout=self.config.merge.hook_timeout,
            )
        except (TimeoutError, OSError) as exc:
            log.warning("%s hook failed: %s", label, exc or "timed out")
            return
        if result.returncode != 0:
            log.warning(
                "%s hook exited with %d: %s",
                label,
                result.returncode,
                result.stderr_text().strip() or result.stdout_text().strip(),
            )

    async def _commit_worktree(self, worktree: Path) -> None:
        try:
            if not await self.git.has_changes(worktree):
                return
            await self.git.add_all(worktree)
            diffstat = await self.git.diff_stat(worktree)
            await self.git.commit(worktree, AUTO_COMMIT_BEFORE_MERGE.format(diffstat=diffstat))
        except GitError as exc:
            log.warning("Failed to auto-commit worktree changes in %s: %s", worktree, exc)

    async def _push_task_branch(self, worktree: Path, fallback: str) -> None:
        try:
            branch = await self.git.current_branch(worktree)
        except GitError as exc:
            log.warning("Failed to determine current branch of %s: %s", worktree, exc)
            branch = ""
        if not branch or branch == "HEAD":
            log.warning("Cannot resolve worktree branch; pushing %s", fallback)
            branch = fallback
        try:
            await self.git.push(worktree, branch, set_upstream=True)
        except GitError as exc:
            log.warning("Failed to push task branch %s: %s", branch, exc)

    # Steps run under the lock

    async def _merge_locked(self, store: TaskStore, branch: str, main_branch: str) -> None:
        project = self.project_dir

        conflicts = await self.git.conflicted_files(project)
        if (
            conflicts
            or await self.git.has_ongoing_merge(project)
            or await self.git.has_ongoing_rebase(project)
        ):
            raise _MergeAborted(
                f"project has unresolved conflicts or an ongoing merge or rebase in {project}",
                conflicts,
            )

        stash_message = merge_stash_message(store.name)
        stashed = False
        if await self.git.has_changes(project):
            try:
                await self.git.stash_push(project, stash_message)
            except GitError as exc:
                raise _MergeAborted(f"failed to stash project changes: {exc}") from exc
            stashed = True

        try:
            original_branch = ""
            try:
                original_branch = await self.git.current_branch(project)
            except GitError as exc:
                log.warning("Failed to read current project branch: %s", exc)

            try:
                await self.git.fetch(project)
            except GitError as exc:
                log.warning("Fetch failed: %s", exc)

            try:
                await self.git.checkout(project, main_branch)
            except GitError as exc:
                raise _MergeAborted(f"failed to checkout {main_branch}: {exc}") from exc

            try:
                await self._squash_and_push(store, branch, main_branch)
            finally:
                if original_branch and original_branch not in (main_branch, "HEAD"):
                    try:
                        await self.git.checkout(project, original_branch)
                    except GitError as exc:
                        log.warning("Failed to restore branch %s: %s", original_branch, exc)
        finally:
            if stashed:
                try:
                    if not await self.git.stash_pop_by_message(project, stash_message):
                        log.warning("Stash %s not found; nothing restored", stash_message)
                except GitError as exc:
                    log.warning(
                        "Stashed project changes were not restored and remain in the stash"
                        " list as %s: %s",
                        stash_message,
                        exc,
                    )

    async def _squash_and_push(self, store: TaskStore, branch: str, main_branch: str) -> None:
        project = self.project_dir
        try:
            await self.git.pull(project)
        except GitError as exc:
            log.warning("Pull failed: %s", exc)

        try:
            commits = await self.git.branch_commits(
                project, branch, main_branch, MERGE_COMMIT_LOG_LIMIT
            )
        except GitError as exc:
            log.warning("Failed to list commits of %s: %s", branch, exc)
            commits = []
        message = generate_merge_commit_message(store.name, commits)

        try:
            await self.git.merge_squash(project, branch, message)
        except GitError as exc:
            log.warning("Squash merge of %s failed: %s", branch, exc)
            conflicts = await self.git.conflicted_files(project)
            if conflicts:
                await self._resolve_conflicts(store, conflicts, message)
            else:
                await self._auto_resolve(store, branch, main_branch)

        try:
            await self.git.push(project, main_branch)
        except GitError as exc:
            raise _MergeAborted(f"failed to push {main_branch}: {exc}") from exc

    async def _abort_merge(self) -> None:
        # Project changes were stashed before the merge, so a hard reset only
        # discards merge results.
        try:
            await self.git.merge_abort(self.project_dir)
            return
        except GitError as exc:
            log.warning("Merge abort failed, resetting to HEAD: %s", exc)
        try:
            await self.git.reset_hard(self.project_dir)
        except GitError as exc:
            log.error("Failed to reset %s after a failed merge: %s", self.project_dir, exc)

    async def _run_agent(self, prompt: str) -> None:
        await self.agent.run_prompt(
            prompt,
            model=self.config.merge.conflict_model,
            timeout=self.config.merge.conflict_timeout,
            cwd=self.project_dir,
            skip_permissions=True,
        )

    async def _resolve_conflicts(
        self, store: TaskStore, conflicts: list[str], message: str
    ) -> None:
        log.info("Resolving %d conflicted file(s) for %s", len(conflicts), store.name)
        prompt = build_conflict_resolution_prompt(store.name, store.load_content(), conflicts)
        try:
            await self._run_agent(prompt)
        except ClaudeError as exc:
            log.warning("Conflict resolution failed for %s: %s", store.name, exc)
            await self._abort_merge()
            raise _MergeAborted(f"conflict resolution failed: {exc}", conflicts) from exc

        remaining = await self.git.conflicted_files(self.project_dir)
        if remaining:
            log.warning("Conflicts remain after resolution: %s", ", ".join(remaining))
            await self._abort_merge()
            raise _MergeAborted("conflicts remain after resolution", remaining)

        try:
            await self.git.add_all(self.project_dir)
            await self.git.commit(self.project_dir, message)
        except GitError as exc:
            raise _MergeAborted(f"failed to commit resolved merge: {exc}", conflicts) from exc
        log.info("Conflicts resolved for %s", store.name)

    async def _auto_resolve(self, store: TaskStore, branch: str, main_branch: str) -> None:
        project = self.project_dir
        log.info("Merge of %s failed without conflicts; attempting auto-resolution", branch)
        try:
            git_status = await self.git.status(project)
        except GitError as exc:
            git_status = f"(git status failed: {exc})"

        prompt = build_auto_resolve_prompt(
            project_dir=project,
            task_name=store.name,
            task_content=store.load_content(),
            branch=branch,
            main_branch=main_branch,
            git_status=git_status,
        )
        try:
            await self._run_agent(prompt)
        except ClaudeError as exc:
            await self._abort_merge()
            raise _MergeAborted(f"auto-resolution failed: {exc}") from exc

        remaining = await self.git.conflicted_files(project)
        if remaining or await self.git.has_ongoing_merge(project):
            await self._abort_merge()
            raise _MergeAborted("merge still incomplete after auto-resolution", remaining)
        log.info("Merge of %s recovered by auto-resolution", branch)

    # Outcome reporting

    async def _display(self, message: str) -> None:
        try:
            await self.tmux.display_message(message, DISPLAY_MESSAGE_MS)
        except TmuxError as exc:
            log.warning("Failed to display message %r: %s", message, exc)

    async def _fail(
        self,
        store: TaskStore,
        window_id: str,
        main_branch: str,
        reason: str,
        *,
        conflict_files: Sequence[str] = (),
    ) -> MergeResult:
        log.error("Merge failed for %s: %s", store.name, reason)
        await self.updater.apply(
            store, window_id, TaskStatus.CORRUPTED, source="merge-task", detail=reason
        )
        await self._display(f"{EMOJI_WARNING} Merge failed: {store.name}")
        return MergeResult(
            task_name=store.name,
            success=False,
            message=reason,
            main_branch=main_branch,
            conflict_files=tuple(conflict_files),
        )


__all__ = [
    "COMMIT_TYPES",
    "MergeCoordinator",
    "MergeResult",
    "generate_merge_commit_message",
    "infer_commit_type",
    "merge_stash_message",
]
