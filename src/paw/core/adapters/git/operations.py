"""Shared git command runner, base adapter, and repository operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from paw.core.adapters.process import (
    ProcessExecutionError,
    ProcessRetryPolicy,
    run_exec_capture,
    run_exec_checked,
)
from paw.core.constants import DEFAULT_MAIN_BRANCH

if TYPE_CHECKING:
    from collections.abc import Sequence

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared types and command runner
# ---------------------------------------------------------------------------


class GitError(RuntimeError):
    """Raised when a git command fails."""


@dataclass(frozen=True)
class GitCommandResult:
    """Result of a git command invocation."""

    returncode: int
    stdout: str
    stderr: str


class GitCommandRunner:
    """Run git commands in subprocesses."""

    async def run(self, cwd: Path, args: Sequence[str], *, check: bool = True) -> GitCommandResult:
        try:
            if check:
                result = await run_exec_checked(
                    "git",
                    *args,
                    cwd=cwd,
                    retry_policy=ProcessRetryPolicy(max_attempts=2, delay_seconds=0.1),
                )
            else:
                result = await run_exec_capture("git", *args, cwd=cwd)
        except FileNotFoundError as exc:  # pragma: no cover - environment dependent
            raise GitError("git executable not found") from exc
        except ProcessExecutionError as exc:
            raise GitError(str(exc)) from exc

        return GitCommandResult(
            returncode=result.returncode,
            stdout=result.stdout_text(),
            stderr=result.stderr_text(),
        )


class GitAdapterBase:
    """Base helper for git adapters with shared execution."""

    def __init__(self, runner: GitCommandRunner | None = None) -> None:
        self._runner = runner or GitCommandRunner()

    async def _run_git(
        self,
        cwd: Path,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> tuple[str, str]:
        result = await self._runner.run(cwd, args, check=check)
        return result.stdout, result.stderr

    async def _run_git_result(self, cwd: Path, args: Sequence[str]) -> tuple[int, str, str]:
        result = await self._runner.run(cwd, args, check=False)
        return result.returncode, result.stdout, result.stderr

    async def _succeeds(self, cwd: Path, args: Sequence[str]) -> bool:
        try:
            returncode, _, _ = await self._run_git_result(cwd, args)
        except GitError:
            return False
        return returncode == 0

    async def _output_or_empty(self, cwd: Path, args: Sequence[str]) -> str:
        try:
            returncode, stdout, _ = await self._run_git_result(cwd, args)
        except GitError:
            return ""
        return stdout.strip() if returncode == 0 else ""


def _lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Repository, branch, stash, and merge operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CommitInfo:
    """One commit on a task branch."""

    hash: str
    subject: str


class GitOperationsAdapter(GitAdapterBase):
    """Repository-level operations used by the merge coordinator and task manager."""

    async def is_git_repo(self, cwd: Path) -> bool:
        return await self._succeeds(cwd, ["rev-parse", "--git-dir"])

    async def main_branch(self, cwd: Path) -> str:
        """Resolve the integration branch: origin/HEAD, then main, then master."""
        output = await self._output_or_empty(
            cwd, ["symbolic-ref", "refs/remotes/origin/HEAD", "--short"]
        )
        if output:
            return output.rsplit("/", 1)[-1]
        for candidate in ("main", "master"):
            if await self.branch_exists(cwd, candidate):
                return candidate
        return DEFAULT_MAIN_BRANCH

    async def current_branch(self, cwd: Path) -> str:
        stdout, _ = await self._run_git(cwd, ["rev-parse", "--abbrev-ref", "HEAD"])
        return stdout.strip()

    # Branches

    async def branch_exists(self, cwd: Path, branch: str) -> bool:
        return await self._succeeds(
            cwd, ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"]
        )

    async def branch_merged(self, cwd: Path, branch: str, into: str) -> bool:
        output = await self._output_or_empty(cwd, ["branch", "--merged", into])
        return any(line.lstrip("*+ ").strip() == branch for line in output.splitlines())

    async def branch_create(self, cwd: Path, branch: str, start_point: str = "") -> None:
        args = ["branch", branch]
        if start_point:
            args.append(start_point)
        await self._run_git(cwd, args)

    async def branch_delete(self, cwd: Path, branch: str, *, force: bool = False) -> None:
        await self._run_git(cwd, ["branch", "-D" if force else "-d", branch])

    async def branch_commits(
        self, cwd: Path, branch: str, base_branch: str, max_count: int = 0
    ) -> list[CommitInfo]:
        """Return commits on *branch* that are not on *base_branch*, newest first."""
        args = ["log", "--format=%H %s", f"{base_branch}..{branch}"]
        if max_count > 0:
            args.append(f"-n{max_count}")
        stdout, _ = await self._run_git(cwd, args)
        commits: list[CommitInfo] = []
        for line in _lines(stdout):
            commit_hash, _, subject = line.partition(" ")
            if subject:
                commits.append(CommitInfo(hash=commit_hash, subject=subject))
        return commits

    async def ahead_behind(self, cwd: Path, branch: str, base_branch: str) -> tuple[int, int]:
        """Count commits *branch* has over *base_branch* and the reverse."""
        stdout, _ = await self._run_git(
            cwd, ["rev-list", "--left-right", "--count", f"{branch}...{base_branch}"]
        )
        ahead, _, behind = stdout.strip().partition("\t")
        try:
            return int(ahead), int(behind or 0)
        except ValueError as exc:
            raise GitError(f"unexpected rev-list output: {stdout!r}") from exc

    async def rev_parse(self, cwd: Path, ref: str) -> str:
        stdout, _ = await self._run_git(cwd, ["rev-parse", "--verify", f"{ref}^{{commit}}"])
        return stdout.strip()

    async def find_merge_commit(self, cwd: Path, branch: str, into: str) -> str:
        """Locate the merge commit on *into* that integrated *branch*, or ``""``.

        Only a merge whose non-first parent is the branch tip counts; merges of
        other branches that merely descend from the tip are ignored.
        """
        try:
            tip = await self.rev_parse(cwd, branch)
        except GitError:
            return ""
        output = await self._output_or_empty(
            cwd, ["log", "--merges", "--ancestry-path", "--format=%H %P", f"{tip}..{into}"]
        )
        for line in _lines(output):
            commit, *parents = line.split()
            if tip in parents[1:]:
                return commit
        return ""

    async def on_first_parent_history(self, cwd: Path, branch: str, into: str) -> bool:
        """Whether the tip of *branch* lies on the first-parent line of *into*.

        Such a branch has no commits of its own left to revert.
        """
        try:
            tip = await self.rev_parse(cwd, branch)
        except GitError:
            return False
        output = await self._output_or_empty(cwd, ["rev-list", "--first-parent", into])
        return tip in _lines(output)

    async def is_merge_commit(self, cwd: Path, commit: str) -> bool:
        return await self._succeeds(cwd, ["rev-parse", "--verify", "--quiet", f"{commit}^2"])

    async def revert(self, cwd: Path, commit: str) -> None:
        """Revert *commit*, following the first parent when it is a merge."""
        args = ["revert", "--no-edit"]
        if await self.is_merge_commit(cwd, commit):
            args.extend(["-m", "1"])
        args.append(commit)
        await self._run_git(cwd, args)

    async def revert_abort(self, cwd: Path) -> None:
        await self._run_git(cwd, ["revert", "--abort"], check=False)

    # Working tree state

    async def has_changes(self, cwd: Path) -> bool:
        return bool(await self._output_or_empty(cwd, ["status", "--porcelain"]))

    async def has_staged_changes(self, cwd: Path) -> bool:
        return bool(await self._output_or_empty(cwd, ["diff", "--cached", "--name-only"]))

    async def status(self, cwd: Path) -> str:
        stdout, _ = await self._run_git(cwd, ["status", "-s"])
        return stdout.strip()

    async def diff_stat(self, cwd: Path) -> str:
        stdout, _ = await self._run_git(cwd, ["diff", "--cached", "--stat"])
        return stdout.strip()

    async def conflicted_files(self, cwd: Path) -> list[str]:
        stdout, _ = await self._run_git(cwd, ["diff", "--name-only", "--diff-filter=U"])
        return _lines(stdout)

    async def _git_dir(self, cwd: Path) -> Path | None:
        output = await self._output_or_empty(cwd, ["rev-parse", "--git-dir"])
        if not output:
            return None
        git_dir = Path(output)
        return git_dir if git_dir.is_absolute() else cwd / git_dir

    async def has_ongoing_merge(self, cwd: Path) -> bool:
        git_dir = await self._git_dir(cwd)
        return git_dir is not None and (git_dir / "MERGE_HEAD").exists()

    async def has_ongoing_rebase(self, cwd: Path) -> bool:
        git_dir = await self._git_dir(cwd)
        if git_dir is None:
            return False
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()

    # Stash

    async def stash_push(self, cwd: Path, message: str) -> None:
        args = ["stash", "push", "--include-untracked"]
        if message:
            args.extend(["-m", message])
        await self._run_git(cwd, args)

    async def stash_list(self, cwd: Path) -> list[str]:
        stdout, _ = await self._run_git(cwd, ["stash", "list", "--format=%gs"])
        return [line.strip() for line in stdout.splitlines()]

    async def stash_pop_by_message(self, cwd: Path, message: str) -> bool:
        """Pop the stash whose subject contains *message*.

        A concurrent merge may have stashed too, so the entry is located by
        message rather than popping the top of the stack. When the pop fails the
        entry stays in the stash list and :class:`GitError` is raised. Returns
        False when no matching entry exists.
        """
        for index, subject in enumerate(await self.stash_list(cwd)):
            if not subject or message not in subject:
                continue
            ref = f"stash@{{{index}}}"
            try:
                await self._run_git(cwd, ["stash", "pop", ref])
            except GitError as exc:
                raise GitError(f"failed to pop stash {ref} ({message} kept): {exc}") from exc
            return True
        return False

    # Remote

    async def fetch(self, cwd: Path, remote: str = "origin") -> None:
        await self._run_git(cwd, ["fetch", remote])

    async def pull(self, cwd: Path) -> None:
        await self._run_git(cwd, ["pull"])

    async def push(
        self, cwd: Path, branch: str, *, remote: str = "origin", set_upstream: bool = False
    ) -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend([remote, branch])
        await self._run_git(cwd, args)

    async def checkout(self, cwd: Path, target: str) -> None:
        await self._run_git(cwd, ["checkout", target])

    # Commit and merge

    async def add_all(self, cwd: Path) -> None:
        await self._run_git(cwd, ["add", "-A"])

    async def commit(self, cwd: Path, message: str) -> None:
        await self._run_git(cwd, ["commit", "-m", message])

    async def merge_squash(self, cwd: Path, branch: str, message: str) -> bool:
        """Squash-merge *branch* into the checked-out branch.

        Commits only when the squash staged something. Returns whether a commit
        was created; raises :class:`GitError` when the merge itself fails.
        """
        await self._run_git(cwd, ["merge", "--squash", branch])
        if not await self.has_staged_changes(cwd):
            log.debug("Squash merge of %s staged nothing; skipping commit", branch)
            return False
        await self.commit(cwd, message)
        return True

    async def merge_abort(self, cwd: Path) -> None:
        """Undo a failed merge, squash merges included.

        ``merge --squash`` never writes MERGE_HEAD, so ``merge --abort`` refuses
        to run after it; ``reset --merge`` clears the conflicted index and
        working tree files while keeping unrelated local changes.
        """
        if await self.has_ongoing_merge(cwd):
            await self._run_git(cwd, ["merge", "--abort"])
        else:
            await self._run_git(cwd, ["reset", "--merge"])
        remaining = await self.conflicted_files(cwd)
        if remaining:
            raise GitError(f"conflicts remain after abort: {', '.join(remaining)}")

    async def reset_hard(self, cwd: Path) -> None:
        await self._run_git(cwd, ["reset", "--hard", "HEAD"])
