from __future__ import annotations

from pathlib import Path

import pytest

from paw.core.adapters.git import (
    CommitInfo,
    GitClient,
    GitCommandResult,
    GitError,
    Worktree,
    parse_worktree_list,
)

REPO = Path("/work/proj")
TIP = "1111111111111111111111111111111111111111"


class _ScriptedRunner:
    """Answers git invocations from a table keyed by the argument tuple."""

    def __init__(self, responses: dict[tuple[str, ...], GitCommandResult | GitError]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, ...]] = []

    async def run(self, cwd: Path, args, *, check: bool = True) -> GitCommandResult:
        key = tuple(args)
        self.calls.append(key)
        response = self.responses.get(key, GitCommandResult(0, "", ""))
        if isinstance(response, GitError):
            raise response
        if check and response.returncode != 0:
            raise GitError(response.stderr)
        return response


def _ok(stdout: str = "") -> GitCommandResult:
    return GitCommandResult(returncode=0, stdout=stdout, stderr="")


def _fail(stderr: str = "fatal") -> GitCommandResult:
    return GitCommandResult(returncode=1, stdout="", stderr=stderr)


def _client(responses: dict[tuple[str, ...], GitCommandResult | GitError]) -> GitClient:
    return GitClient(_ScriptedRunner(responses))  # type: ignore[arg-type]


async def test_main_branch_prefers_origin_head() -> None:
    client = _client(
        {("symbolic-ref", "refs/remotes/origin/HEAD", "--short"): _ok("origin/develop\n")}
    )

    assert await client.main_branch(REPO) == "develop"


async def test_main_branch_falls_back_to_master() -> None:
    client = _client(
        {
            ("symbolic-ref", "refs/remotes/origin/HEAD", "--short"): _fail(),
            ("rev-parse", "--verify", "--quiet", "refs/heads/main"): _fail(),
        }
    )

    assert await client.main_branch(REPO) == "master"


async def test_branch_merged_strips_markers() -> None:
    client = _client(
        {("branch", "--merged", "main"): _ok("* main\n+ fix-login\n  add-cache-layer\n")}
    )

    assert await client.branch_merged(REPO, "fix-login", "main") is True
    assert await client.branch_merged(REPO, "add-cache", "main") is False


async def test_branch_commits_parses_log() -> None:
    client = _client(
        {
            ("log", "--format=%H %s", "main..fix-login", "-n5"): _ok(
                "a1b2 handle expired tokens\nc3d4 redirect only once\n"
            )
        }
    )

    commits = await client.branch_commits(REPO, "fix-login", "main", max_count=5)

    assert commits == [
        CommitInfo("a1b2", "handle expired tokens"),
        CommitInfo("c3d4", "redirect only once"),
    ]


async def test_stash_pop_by_message_targets_matching_entry() -> None:
    runner = _ScriptedRunner(
        {
            ("stash", "list", "--format=%gs"): _ok(
                "On main: paw-merge-other\nOn main: paw-merge-fix\n"
            )
        }
    )
    client = GitClient(runner)  # type: ignore[arg-type]

    assert await client.stash_pop_by_message(REPO, "paw-merge-fix") is True
    assert ("stash", "pop", "stash@{1}") in runner.calls
    assert await client.stash_pop_by_message(REPO, "paw-merge-none") is False


async def test_failed_stash_pop_keeps_entry() -> None:
    runner = _ScriptedRunner(
        {
            ("stash", "list", "--format=%gs"): _ok("On main: paw-merge-fix\n"),
            ("stash", "pop", "stash@{0}"): GitError("a.txt: needs merge"),
        }
    )
    client = GitClient(runner)  # type: ignore[arg-type]

    with pytest.raises(GitError, match="paw-merge-fix kept"):
        await client.stash_pop_by_message(REPO, "paw-merge-fix")

    assert not any(call[:2] == ("stash", "drop") for call in runner.calls)


async def test_squash_without_staged_changes_skips_commit() -> None:
    runner = _ScriptedRunner({})
    client = GitClient(runner)  # type: ignore[arg-type]

    assert await client.merge_squash(REPO, "fix-login", "fix: login\n") is False
    assert not any(call[0] == "commit" for call in runner.calls)


async def test_squash_with_staged_changes_commits() -> None:
    runner = _ScriptedRunner({("diff", "--cached", "--name-only"): _ok("src/auth.py\n")})
    client = GitClient(runner)  # type: ignore[arg-type]

    assert await client.merge_squash(REPO, "fix-login", "fix: login\n") is True
    assert runner.calls[0] == ("merge", "--squash", "fix-login")
    assert runner.calls[-1] == ("commit", "-m", "fix: login\n")


async def test_push_with_upstream() -> None:
    runner = _ScriptedRunner({})
    client = GitClient(runner)  # type: ignore[arg-type]

    await client.push(REPO, "fix-login", set_upstream=True)

    assert runner.calls == [("push", "-u", "origin", "fix-login")]


async def test_conflicted_files() -> None:
    client = _client(
        {("diff", "--name-only", "--diff-filter=U"): _ok("src/auth.py\n\nREADME.md\n")}
    )

    assert await client.conflicted_files(REPO) == ["src/auth.py", "README.md"]


def test_parse_worktree_list() -> None:
    output = (
        "worktree /work/proj\n"
        "HEAD 1111\n"
        "branch refs/heads/main\n"
        "\n"
        "worktree /work/proj/.paw/agents/fix-login/worktree\n"
        "HEAD 2222\n"
        "detached\n"
    )

    assert parse_worktree_list(output) == [
        Worktree(path="/work/proj", head="1111", branch="main"),
        Worktree(path="/work/proj/.paw/agents/fix-login/worktree", head="2222"),
    ]


async def test_ahead_behind_parses_counts() -> None:
    client = _client(
        {("rev-list", "--left-right", "--count", "fix-login...main"): _ok("3\t1\n")}
    )

    assert await client.ahead_behind(REPO, "fix-login", "main") == (3, 1)


async def test_ahead_behind_rejects_garbage() -> None:
    client = _client({("rev-list", "--left-right", "--count", "fix-login...main"): _ok("?\n")})

    with pytest.raises(GitError, match="unexpected rev-list output"):
        await client.ahead_behind(REPO, "fix-login", "main")


def _merge_log(stdout: str) -> dict[tuple[str, ...], GitCommandResult | GitError]:
    return {
        ("rev-parse", "--verify", "fix-login^{commit}"): _ok(f"{TIP}\n"),
        ("log", "--merges", "--ancestry-path", "--format=%H %P", f"{TIP}..main"): _ok(stdout),
    }


async def test_find_merge_commit_requires_branch_tip_as_merged_parent() -> None:
    client = _client(_merge_log(f"ccc333 bbb222 other999\naaa111 bbb000 {TIP}\n"))

    assert await client.find_merge_commit(REPO, "fix-login", "main") == "aaa111"


async def test_find_merge_commit_ignores_unrelated_merges() -> None:
    client = _client(_merge_log(f"ccc333 {TIP} other999\n"))

    assert await client.find_merge_commit(REPO, "fix-login", "main") == ""


async def test_find_merge_commit_without_branch() -> None:
    client = _client(
        {("rev-parse", "--verify", "fix-login^{commit}"): GitError("unknown revision")}
    )

    assert await client.find_merge_commit(REPO, "fix-login", "main") == ""


async def test_on_first_parent_history() -> None:
    responses = _merge_log("")
    responses[("rev-list", "--first-parent", "main")] = _ok(f"ddd444\n{TIP}\neee555\n")
    client = _client(responses)

    assert await client.on_first_parent_history(REPO, "fix-login", "main") is True
    responses[("rev-list", "--first-parent", "main")] = _ok("ddd444\neee555\n")
    assert await client.on_first_parent_history(REPO, "fix-login", "main") is False


async def test_merge_abort_after_squash_resets(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    runner = _ScriptedRunner({("rev-parse", "--git-dir"): _ok(".git\n")})
    client = GitClient(runner)  # type: ignore[arg-type]

    await client.merge_abort(tmp_path)

    assert ("reset", "--merge") in runner.calls
    assert ("merge", "--abort") not in runner.calls


async def test_merge_abort_with_merge_head(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "MERGE_HEAD").write_text("abc\n", encoding="utf-8")
    runner = _ScriptedRunner({("rev-parse", "--git-dir"): _ok(".git\n")})
    client = GitClient(runner)  # type: ignore[arg-type]

    await client.merge_abort(tmp_path)

    assert ("merge", "--abort") in runner.calls


async def test_merge_abort_reports_leftover_conflicts(tmp_path: Path) -> None:
    client = _client({("diff", "--name-only", "--diff-filter=U"): _ok("a.txt\n")})

    with pytest.raises(GitError, match="a.txt"):
        await client.merge_abort(tmp_path)


async def test_revert_uses_first_parent_for_merges() -> None:
    runner = _ScriptedRunner({("rev-parse", "--verify", "--quiet", "abc123^2"): _ok("def\n")})
    client = GitClient(runner)  # type: ignore[arg-type]

    await client.revert(REPO, "abc123")

    assert runner.calls[-1] == ("revert", "--no-edit", "-m", "1", "abc123")


async def test_revert_of_plain_commit() -> None:
    runner = _ScriptedRunner({("rev-parse", "--verify", "--quiet", "abc123^2"): _fail()})
    client = GitClient(runner)  # type: ignore[arg-type]

    await client.revert(REPO, "abc123")

    assert runner.calls[-1] == ("revert", "--no-edit", "abc123")


async def test_ongoing_rebase_detected_from_git_dir(tmp_path: Path) -> None:
    git_dir = tmp_path / ".git"
    (git_dir / "rebase-merge").mkdir(parents=True)
    client = _client({("rev-parse", "--git-dir"): _ok(".git\n")})

    assert await client.has_ongoing_rebase(tmp_path) is True
    assert await client.has_ongoing_merge(tmp_path) is False
