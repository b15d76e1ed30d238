"""Merge rollback and cancel reverts against real git repositories."""

from __future__ import annotations

import asyncio
import shutil
from typing import TYPE_CHECKING

import pytest
from _fakes import FakeAgent, FakeTmux, make_task

from paw.core.adapters.git import GitClient, GitError
from paw.core.config import MergeConfig, PawConfig
from paw.core.models.enums import TaskStatus
from paw.core.paths import get_history_dir, get_merge_lock_path
from paw.core.services.finish import RevertOutcome, TaskFinisher
from paw.core.services.history import HistoryService
from paw.core.services.merges import MergeCoordinator, merge_stash_message
from paw.core.services.status import StatusUpdater
from paw.core.services.tasks import TaskManager

if TYPE_CHECKING:
    from pathlib import Path

    from paw.core.models.task import TaskStore

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

WINDOW = "@7"


async def _git(repo: Path, *args: str) -> str:
    proc = await asyncio.create_subprocess_exec(
        "git", *args, cwd=repo, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
    )
    stdout, stderr = await proc.communicate()
    assert proc.returncode == 0, f"git {' '.join(args)}: {stderr.decode()}"
    return stdout.decode().strip()


async def _commit_file(repo: Path, name: str, content: str, message: str) -> None:
    (repo / name).write_text(content, encoding="utf-8")
    await _git(repo, "add", name)
    await _git(repo, "commit", "-m", message)


@pytest.fixture
async def project(paw_dir: Path) -> Path:
    """A project on ``main`` with a bare ``origin`` and ``.paw`` ignored."""
    repo = paw_dir.parent
    origin = repo.parent / "origin.git"
    origin.mkdir()
    await _git(origin, "init", "--bare", "-b", "main")

    await _git(repo, "init", "-b", "main")
    for key, value in (
        ("user.email", "dev@example.com"),
        ("user.name", "Dev"),
        ("commit.gpgsign", "false"),
        ("pull.rebase", "false"),
    ):
        await _git(repo, "config", key, value)
    (repo / ".gitignore").write_text(".paw/\n", encoding="utf-8")
    (repo / "a.txt").write_text("base\n", encoding="utf-8")
    (repo / "b.txt").write_text("b\n", encoding="utf-8")
    await _git(repo, "add", ".")
    await _git(repo, "commit", "-m", "initial")
    await _git(repo, "remote", "add", "origin", str(origin))
    await _git(repo, "push", "-u", "origin", "main")
    return repo


def _task(paw_dir: Path) -> TaskStore:
    store = make_task(paw_dir, "fix-login", status="done")
    store.save_content("Fix the login redirect loop")
    return store


def _finisher(paw_dir: Path, project: Path, tmux: FakeTmux) -> TaskFinisher:
    git = GitClient()
    history = HistoryService(get_history_dir(paw_dir))
    updater = StatusUpdater(tmux, history)
    manager = TaskManager(
        paw_dir=paw_dir, project_dir=project, git=git, tmux=tmux, main_branch="main"
    )
    config = PawConfig()
    merger = MergeCoordinator(
        config=config,
        project_dir=project,
        paw_dir=paw_dir,
        git=git,
        tmux=tmux,
        agent=FakeAgent(),
        updater=updater,
    )
    return TaskFinisher(
        manager=manager,
        merger=merger,
        history=history,
        tmux=tmux,
        updater=updater,
        merge_config=MergeConfig(lock_max_retries=1, lock_retry_interval=0.0),
    )


async def test_conflicting_squash_merge_rolls_back_and_keeps_user_changes(
    paw_dir: Path, project: Path
) -> None:
    store = _task(paw_dir)
    worktree = store.worktree_path
    await _git(project, "worktree", "add", "-b", "fix-login", str(worktree), "main")
    await _commit_file(worktree, "a.txt", "task change\n", "change a on the task branch")
    await _commit_file(project, "a.txt", "main change\n", "change a on main")
    await _git(project, "push", "origin", "main")
    (project / "b.txt").write_text("user work\n", encoding="utf-8")
    (project / "notes.txt").write_text("scratch\n", encoding="utf-8")

    config = PawConfig()
    config.general.main_branch = "main"
    config.merge.lock_max_retries = 1
    config.merge.lock_retry_interval = 0.0
    tmux = FakeTmux()
    coordinator = MergeCoordinator(
        config=config,
        project_dir=project,
        paw_dir=paw_dir,
        git=GitClient(),
        tmux=tmux,
        agent=FakeAgent(),
        updater=StatusUpdater(tmux, HistoryService(get_history_dir(paw_dir))),
    )

    result = await coordinator.merge_task(store, WINDOW)

    assert result.success is False
    assert result.conflict_files == ("a.txt",)
    assert await _git(project, "diff", "--name-only", "--diff-filter=U") == ""
    assert (project / "a.txt").read_text(encoding="utf-8") == "main change\n"
    assert (project / "b.txt").read_text(encoding="utf-8") == "user work\n"
    assert (project / "notes.txt").read_text(encoding="utf-8") == "scratch\n"
    assert merge_stash_message("fix-login") not in await _git(project, "stash", "list")
    assert await _git(project, "log", "-1", "--format=%s", "main") == "change a on main"
    assert store.load_status() is TaskStatus.CORRUPTED
    assert not get_merge_lock_path(paw_dir).exists()


async def test_failed_stash_pop_keeps_the_stash(project: Path) -> None:
    git = GitClient()
    (project / "a.txt").write_text("stashed work\n", encoding="utf-8")
    await git.stash_push(project, "paw-merge-fix-login")
    (project / "a.txt").write_text("conflicting edit\n", encoding="utf-8")

    with pytest.raises(GitError, match="paw-merge-fix-login kept"):
        await git.stash_pop_by_message(project, "paw-merge-fix-login")

    assert await git.stash_list(project) == ["On main: paw-merge-fix-login"]


async def test_cancel_of_branch_without_commits_leaves_other_merges_alone(
    paw_dir: Path, project: Path
) -> None:
    store = _task(paw_dir)
    await _git(project, "branch", "fix-login")
    await _git(project, "checkout", "-b", "other")
    await _commit_file(project, "c.txt", "other\n", "add c")
    await _git(project, "checkout", "main")
    await _git(project, "merge", "--no-ff", "other", "-m", "Merge branch other")
    tmux = FakeTmux()

    result = await _finisher(paw_dir, project, tmux).cancel_task(store, WINDOW)

    assert result.revert is RevertOutcome.NOT_NEEDED
    assert result.removed is True
    assert await _git(project, "log", "-1", "--format=%s", "main") == "Merge branch other"
    assert (project / "c.txt").exists()


async def test_cancel_reverts_own_merge_under_lock_and_restores_branch(
    paw_dir: Path, project: Path
) -> None:
    store = _task(paw_dir)
    await _git(project, "checkout", "-b", "fix-login")
    await _commit_file(project, "login.txt", "fixed\n", "fix login")
    await _git(project, "checkout", "main")
    await _git(project, "merge", "--no-ff", "fix-login", "-m", "Merge branch fix-login")
    await _git(project, "checkout", "-b", "develop")
    tmux = FakeTmux()

    result = await _finisher(paw_dir, project, tmux).cancel_task(store, WINDOW)

    assert result.revert is RevertOutcome.REVERTED
    assert await _git(project, "rev-parse", "--abbrev-ref", "HEAD") == "develop"
    assert await _git(project, "show", "main:b.txt") == "b"
    assert "login.txt" not in await _git(project, "ls-tree", "--name-only", "main")
    assert await _git(project, "rev-parse", "main") == await _git(
        project, "rev-parse", "origin/main"
    )
    assert not get_merge_lock_path(paw_dir).exists()
