from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from _fakes import FakeGit, make_task

from paw.core.adapters.git import GitError, read_worktree_head
from paw.core.models.enums import CorruptedReason
from paw.core.services.worktree_recovery import (
    RECOVERY_ACTIONS,
    RecoveryError,
    WorktreeRecovery,
)

if TYPE_CHECKING:
    from pathlib import Path

    from paw.core.models.task import Task, TaskStore

SHA = "3f2a9c1d0b8e7f6a5d4c3b2a1f0e9d8c7b6a5f4e"


def _corrupted(store: TaskStore, reason: CorruptedReason) -> Task:
    task = store.snapshot()
    task.corrupted_reason = reason
    return task


def _linked_worktree(tmp_path: Path, worktree: Path, *, branch_ref: bool) -> None:
    common = tmp_path / "repo.git"
    git_dir = common / "worktrees" / "fix-login"
    git_dir.mkdir(parents=True)
    if branch_ref:
        (git_dir / "HEAD").write_text("ref: refs/heads/fix-login\n", encoding="utf-8")
        (common / "refs" / "heads").mkdir(parents=True)
        (common / "refs" / "heads" / "fix-login").write_text(f"{SHA}\n", encoding="utf-8")
    else:
        (git_dir / "HEAD").write_text(f"{SHA}\n", encoding="utf-8")
    worktree.mkdir(parents=True, exist_ok=True)
    (worktree / ".git").write_text(f"gitdir: {git_dir}\n", encoding="utf-8")


def test_every_reason_has_an_action() -> None:
    assert set(RECOVERY_ACTIONS) == set(CorruptedReason)


async def test_missing_worktree_is_recreated_from_branch(paw_dir: Path) -> None:
    git = FakeGit()
    git.branches.add("fix-login")
    store = make_task(paw_dir, "fix-login", status="working")

    await WorktreeRecovery(paw_dir.parent, git).recover(
        _corrupted(store, CorruptedReason.MISSING_WORKTREE)
    )

    assert git.called("worktree_add") == [(store.worktree_path, "fix-login", False)]
    assert (store.worktree_path / ".git").exists()


async def test_unregistered_worktree_is_replaced(paw_dir: Path) -> None:
    git = FakeGit()
    store = make_task(paw_dir, "fix-login", status="working")
    store.worktree_path.mkdir()
    (store.worktree_path / "stale.txt").write_text("x", encoding="utf-8")

    await WorktreeRecovery(paw_dir.parent, git).recover(
        _corrupted(store, CorruptedReason.NOT_IN_GIT)
    )

    assert git.called("worktree_prune") == [(paw_dir.parent,)]
    assert git.called("worktree_add") == [(store.worktree_path, "fix-login", True)]
    assert not (store.worktree_path / "stale.txt").exists()


async def test_broken_git_link_keeps_working_files(paw_dir: Path) -> None:
    git = FakeGit()
    git.branches.add("fix-login")
    store = make_task(paw_dir, "fix-login", status="working")
    worktree = store.worktree_path
    (worktree / "src").mkdir(parents=True)
    (worktree / "src" / "auth.py").write_text("print('wip')\n", encoding="utf-8")

    await WorktreeRecovery(paw_dir.parent, git).recover(
        _corrupted(store, CorruptedReason.INVALID_GIT)
    )

    assert git.called("worktree_add") == [(worktree, "fix-login", False)]
    assert (worktree / "src" / "auth.py").read_text(encoding="utf-8") == "print('wip')\n"
    assert (worktree / ".git").exists()
    assert not worktree.with_name(worktree.name + ".backup").exists()


async def test_failed_rebuild_restores_backup(paw_dir: Path) -> None:
    git = FakeGit()
    git.fail["worktree_add"] = GitError("branch is already checked out")
    store = make_task(paw_dir, "fix-login", status="working")
    worktree = store.worktree_path
    worktree.mkdir()
    (worktree / "notes.md").write_text("keep me", encoding="utf-8")

    with pytest.raises(RecoveryError):
        await WorktreeRecovery(paw_dir.parent, git).recover(
            _corrupted(store, CorruptedReason.INVALID_GIT)
        )

    assert (worktree / "notes.md").read_text(encoding="utf-8") == "keep me"


@pytest.mark.parametrize("branch_ref", [True, False])
async def test_missing_branch_is_recreated_at_worktree_head(
    paw_dir: Path, tmp_path: Path, branch_ref: bool
) -> None:
    git = FakeGit()
    store = make_task(paw_dir, "fix-login", status="working")
    _linked_worktree(tmp_path, store.worktree_path, branch_ref=branch_ref)

    await WorktreeRecovery(paw_dir.parent, git).recover(
        _corrupted(store, CorruptedReason.MISSING_BRANCH)
    )

    assert git.called("branch_create") == [("fix-login", SHA)]


async def test_missing_branch_without_resolvable_head_fails(paw_dir: Path) -> None:
    store = make_task(paw_dir, "fix-login", status="working")
    store.worktree_path.mkdir()

    with pytest.raises(RecoveryError):
        await WorktreeRecovery(paw_dir.parent, FakeGit()).recover(
            _corrupted(store, CorruptedReason.MISSING_BRANCH)
        )


async def test_task_without_reason_is_rejected(paw_dir: Path) -> None:
    store = make_task(paw_dir, "fix-login", status="working")

    with pytest.raises(RecoveryError):
        await WorktreeRecovery(paw_dir.parent, FakeGit()).recover(store.snapshot())


def test_read_worktree_head_rejects_plain_git_dir(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()

    assert read_worktree_head(tmp_path) == ""
