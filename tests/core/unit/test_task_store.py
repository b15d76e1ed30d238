from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from paw.core.constants import EMOJI_DONE, EMOJI_WAITING, EMOJI_WARNING, EMOJI_WORKING
from paw.core.models.enums import STATUS_TRANSITIONS, TaskStatus, is_valid_transition
from paw.core.models.options import DependsOn, TaskOptions
from paw.core.models.task import (
    TaskStore,
    extract_task_token,
    is_final_window,
    matches_window_token,
    to_camel_case,
    window_name_for_status,
    window_token,
)

if TYPE_CHECKING:
    from pathlib import Path

statuses = st.sampled_from(list(TaskStatus))


@given(current=statuses, target=statuses)
def test_transition_table_is_the_only_source_of_validity(
    current: TaskStatus, target: TaskStatus
) -> None:
    assert is_valid_transition(current, target) is (target in STATUS_TRANSITIONS[current])


@given(sequence=st.lists(statuses, min_size=1, max_size=8))
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_transition_status_persists_and_reports_validity(
    tmp_path: Path, sequence: list[TaskStatus]
) -> None:
    store = TaskStore(tmp_path / "agents" / f"task-{len(sequence)}")
    store.remove()
    previous = TaskStatus.PENDING
    for target in sequence:
        before, valid = store.transition_status(target)
        assert before is previous
        assert valid is is_valid_transition(previous, target)
        assert store.load_status() is target
        previous = target


def test_pending_to_done_is_invalid_but_still_written(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")

    previous, valid = store.transition_status(TaskStatus.DONE)

    assert previous is TaskStatus.PENDING
    assert valid is False
    assert store.status_path.read_text(encoding="utf-8") == "done"


def test_corrupted_can_be_forced_back_to_working(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")
    store.save_status(TaskStatus.CORRUPTED)

    _, valid = store.transition_status(TaskStatus.WORKING)

    assert valid is True


def test_transition_rejects_empty_and_unknown_status(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")

    with pytest.raises(ValueError):
        store.transition_status("")
    with pytest.raises(ValueError):
        store.transition_status("exploded")


def test_missing_status_file_means_pending(tmp_path: Path) -> None:
    assert TaskStore(tmp_path / "t").load_status() is TaskStatus.PENDING


def test_unknown_status_text_means_pending(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")
    store.agent_dir.mkdir()
    store.status_path.write_text("half-done\n", encoding="utf-8")

    assert store.load_status() is TaskStatus.PENDING


def test_leftover_signal_is_applied_on_load(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")
    store.save_status(TaskStatus.WORKING)
    store.signal_path.write_text("done\n", encoding="utf-8")

    assert store.load_status() is TaskStatus.DONE
    assert not store.signal_path.exists()


def test_invalid_signal_is_discarded(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")
    store.save_status(TaskStatus.WORKING)
    store.signal_path.write_text("corrupted", encoding="utf-8")

    assert store.load_status() is TaskStatus.WORKING
    assert not store.signal_path.exists()


def test_consume_status_signal_reads_once(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")
    store.agent_dir.mkdir()
    store.signal_path.write_text("WAITING", encoding="utf-8")

    assert store.consume_status_signal() is TaskStatus.WAITING
    assert store.consume_status_signal() is None


def test_tab_lock_is_exclusive(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")
    store.agent_dir.mkdir()

    assert store.create_tab_lock() is True
    assert store.create_tab_lock() is False
    store.remove_tab_lock()
    assert store.has_tab_lock() is False


def test_options_round_trip_and_branch_override(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "fix-login")
    assert store.branch_name() == "fix-login"

    store.save_options(
        TaskOptions(
            ultrathink=True,
            branch_name="feature/login",
            depends_on=DependsOn(task_name="setup-db", condition="success"),
        )
    )

    loaded = store.load_options()
    assert loaded.ultrathink is True
    assert loaded.depends_on is not None
    assert loaded.depends_on.task_name == "setup-db"
    assert store.branch_name() == "feature/login"


def test_invalid_options_fall_back_to_defaults(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "t")
    store.agent_dir.mkdir()
    store.options_path.write_text(json.dumps({"ultrathink": "very"}), encoding="utf-8")

    assert store.load_options() == TaskOptions()


def test_snapshot_reads_every_file(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "add-cache")
    store.save_status(TaskStatus.WAITING)
    store.save_window_id("@7")
    store.save_content("Add a cache layer")

    task = store.snapshot()

    assert task.name == "add-cache"
    assert task.status is TaskStatus.WAITING
    assert task.window_id == "@7"
    assert task.content == "Add a cache layer"
    assert task.worktree_dir == store.worktree_path
    assert TaskStore(tmp_path / "add-cache", use_worktree=False).snapshot().worktree_dir is None


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("fix-login-redirect", "fixLoginRedirect"),
        ("snake_case_name", "snakeCaseName"),
        ("-leading", "leading"),
        ("plain", "plain"),
    ],
)
def test_to_camel_case(name: str, expected: str) -> None:
    assert to_camel_case(name) == expected


def test_window_names_carry_status_glyph() -> None:
    assert window_name_for_status("fix-login", TaskStatus.WORKING) == f"{EMOJI_WORKING}fixLogin"
    assert window_name_for_status("fix-login", TaskStatus.PENDING) == f"{EMOJI_WORKING}fixLogin"
    assert window_name_for_status("fix-login", TaskStatus.WAITING) == f"{EMOJI_WAITING}fixLogin"
    assert window_name_for_status("fix-login", TaskStatus.CORRUPTED) == f"{EMOJI_WAITING}fixLogin"
    assert window_name_for_status("fix-login", TaskStatus.DONE) == f"{EMOJI_DONE}fixLogin"


def test_window_token_is_truncated() -> None:
    name = "implement-the-entire-billing-subsystem"

    assert len(window_token(name)) == 20
    assert matches_window_token(window_token(name), name)
    assert matches_window_token(name[:20], name)


def test_extract_token_and_final_windows() -> None:
    assert extract_task_token(f"{EMOJI_DONE}fixLogin") == "fixLogin"
    assert extract_task_token("zsh") is None
    assert is_final_window(f"{EMOJI_DONE}fixLogin") is True
    assert is_final_window(f"{EMOJI_WARNING}fixLogin") is True
    assert is_final_window(f"{EMOJI_WORKING}fixLogin") is False


def test_agent_directory_layout(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "fix-login")

    assert {
        path.name
        for path in (
            store.status_path,
            store.signal_path,
            store.window_id_path,
            store.tab_lock_path,
            store.session_marker_path,
            store.user_prompt_path,
            store.system_prompt_path,
            store.content_path,
            store.options_path,
            store.worktree_path,
        )
    } == {
        "status",
        ".status-signal",
        "window_id",
        ".tab-lock",
        ".session-marker",
        "user-prompt",
        "system-prompt",
        "task",
        ".options.json",
        "worktree",
    }
    assert all(path.parent == store.agent_dir for path in (store.status_path, store.tab_lock_path))


def test_session_marker_and_removal(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "fix-login")
    store.agent_dir.mkdir()
    assert store.has_session_marker() is False

    store.create_session_marker()

    assert store.has_session_marker() is True
    assert "T" in store.session_marker_path.read_text(encoding="utf-8")
    store.remove()
    assert store.exists() is False
