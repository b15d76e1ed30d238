"""Combined git client consumed by the lifecycle services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from paw.core.adapters.git.operations import GitOperationsAdapter
from paw.core.adapters.git.worktrees import GitWorktreeAdapter

if TYPE_CHECKING:
    from pathlib import Path

    from paw.core.adapters.git.operations import CommitInfo
    from paw.core.adapters.git.worktrees import Worktree


class GitClientProtocol(Protocol):
    """Protocol boundary for the git capabilities used by merge and task services."""

    async def is_git_repo(self, cwd: Path) -> bool: ...

    async def main_branch(self, cwd: Path) -> str: ...

    async def current_branch(self, cwd: Path) -> str: ...

    async def branch_exists(self, cwd: Path, branch: str) -> bool: ...

    async def branch_merged(self, cwd: Path, branch: str, into: str) -> bool: ...

    async def branch_create(self, cwd: Path, branch: str, start_point: str = "") -> None: ...

    async def branch_delete(self, cwd: Path, branch: str, *, force: bool = False) -> None: ...

    async def branch_commits(
        self, cwd: Path, branch: str, base_branch: str, max_count: int = 0
    ) -> list[CommitInfo]: ...

    async def ahead_behind(self, cwd: Path, branch: str, base_branch: str) -> tuple[int, int]: ...

    async def rev_parse(self, cwd: Path, ref: str) -> str: ...

    async def find_merge_commit(self, cwd: Path, branch: str, into: str) -> str: ...

    async def on_first_parent_history(self, cwd: Path, branch: str, into: str) -> bool: ...

    async def revert(self, cwd: Path, commit: str) -> None: ...

    async def revert_abort(self, cwd: Path) -> None: ...

    async def has_changes(self, cwd: Path) -> bool: ...

    async def status(self, cwd: Path) -> str: ...

    async def diff_stat(self, cwd: Path) -> str: ...

    async def conflicted_files(self, cwd: Path) -> list[str]: ...

    async def has_ongoing_merge(self, cwd: Path) -> bool: ...

    async def has_ongoing_rebase(self, cwd: Path) -> bool: ...

    async def stash_push(self, cwd: Path, message: str) -> None: ...

    async def stash_pop_by_message(self, cwd: Path, message: str) -> bool: ...

    async def fetch(self, cwd: Path, remote: str = "origin") -> None: ...

    async def pull(self, cwd: Path) -> None: ...

    async def push(
        self, cwd: Path, branch: str, *, remote: str = "origin", set_upstream: bool = False
    ) -> None: ...

    async def checkout(self, cwd: Path, target: str) -> None: ...

    async def add_all(self, cwd: Path) -> None: ...

    async def commit(self, cwd: Path, message: str) -> None: ...

    async def merge_squash(self, cwd: Path, branch: str, message: str) -> bool: ...

    async def merge_abort(self, cwd: Path) -> None: ...

    async def reset_hard(self, cwd: Path) -> None: ...

    async def worktree_add(
        self,
        repo_path: Path,
        worktree_path: Path,
        branch: str,
        *,
        create_branch: bool = True,
        start_point: str = "",
    ) -> None: ...

    async def worktree_remove(
        self, repo_path: Path, worktree_path: Path, *, force: bool = False
    ) -> None: ...

    async def worktree_prune(self, repo_path: Path) -> None: ...

    async def worktree_list(self, repo_path: Path) -> list[Worktree]: ...


class GitClient(GitOperationsAdapter, GitWorktreeAdapter):
    """Git client bundling repository and worktree operations over one runner."""
