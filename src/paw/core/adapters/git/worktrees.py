"""Git worktree management for isolated task execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from paw.core.adapters.git.operations import GitAdapterBase


@dataclass(frozen=True, slots=True)
class Worktree:
    """One entry of ``git worktree list --porcelain``."""

    path: str
    head: str = ""
    branch: str = ""


def parse_worktree_list(output: str) -> list[Worktree]:
    """Parse porcelain worktree output into :class:`Worktree` records."""
    worktrees: list[Worktree] = []
    path = head = branch = ""
    for raw in [*output.splitlines(), ""]:
        line = raw.strip()
        if not line:
            if path:
                worktrees.append(Worktree(path=path, head=head, branch=branch))
            path = head = branch = ""
            continue
        if line.startswith("worktree "):
            path = line.removeprefix("worktree ")
        elif line.startswith("HEAD "):
            head = line.removeprefix("HEAD ")
        elif line.startswith("branch "):
            branch = line.removeprefix("branch ").removeprefix("refs/heads/")
    return worktrees


def read_worktree_head(worktree_dir: Path) -> str:
    """Resolve the commit a worktree's HEAD points at without invoking git.

    Works on worktrees that git no longer tracks: reads the ``gitdir:`` pointer
    from ``.git``, then ``HEAD``, following one ``ref:`` indirection relative to
    the common git directory. Returns ``""`` when nothing can be resolved.
    """
    git_file = worktree_dir / ".git"
    try:
        content = git_file.read_text(encoding="utf-8").strip()
    except OSError:
        return ""
    if not content.startswith("gitdir:"):
        return ""

    git_dir = Path(content.split(":", 1)[1].strip())
    if not git_dir.is_absolute():
        git_dir = (worktree_dir / git_dir).resolve()
    try:
        head = (git_dir / "HEAD").read_text(encoding="utf-8").strip()
    except OSError:
        return ""
    if not head.startswith("ref:"):
        return head

    ref_name = head.split(":", 1)[1].strip()
    # gitdir is <common>/worktrees/<name>; refs live in <common>
    for candidate in (git_dir / ref_name, git_dir.parent.parent / ref_name):
        try:
            return candidate.read_text(encoding="utf-8").strip()
        except OSError:
            continue
    return ""


class GitWorktreeAdapter(GitAdapterBase):
    """Adapter for task worktree operations."""

    async def worktree_add(
        self,
        repo_path: Path,
        worktree_path: Path,
        branch: str,
        *,
        create_branch: bool = True,
        start_point: str = "",
    ) -> None:
        """Add a worktree at *worktree_path*, creating *branch* when requested."""
        args = ["worktree", "add"]
        if create_branch:
            args.extend(["-b", branch, str(worktree_path)])
            if start_point:
                args.append(start_point)
        else:
            args.extend([str(worktree_path), branch])
        await self._run_git(repo_path, args)

    async def worktree_remove(
        self, repo_path: Path, worktree_path: Path, *, force: bool = False
    ) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(worktree_path))
        await self._run_git(repo_path, args)

    async def worktree_prune(self, repo_path: Path) -> None:
        await self._run_git(repo_path, ["worktree", "prune"])

    async def worktree_list(self, repo_path: Path) -> list[Worktree]:
        stdout, _ = await self._run_git(repo_path, ["worktree", "list", "--porcelain"])
        return parse_worktree_list(stdout)
