"""Task entity and its file-backed status store.

Every piece of per-task state lives as a small file under ``<agentDir>``; all
reads and writes go through :class:`TaskStore` so callers never touch the
layout directly.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from filelock import FileLock
from pydantic import ValidationError

from paw.core.config import atomic_write
from paw.core.constants import (
    EMOJI_DONE,
    EMOJI_WAITING,
    EMOJI_WARNING,
    EMOJI_WORKING,
    MAX_WINDOW_NAME_LEN,
    OPTIONS_FILE_NAME,
    SESSION_MARKER_FILE_NAME,
    STATUS_FILE_NAME,
    STATUS_LOCK_FILE_NAME,
    STATUS_SIGNAL_FILE_NAME,
    SYSTEM_PROMPT_FILE_NAME,
    TAB_LOCK_DIR_NAME,
    TASK_EMOJIS,
    TASK_FILE_NAME,
    USER_PROMPT_FILE_NAME,
    WINDOW_ID_FILE_NAME,
    WORKTREE_DIR_NAME,
)
from paw.core.models.enums import (
    SIGNAL_STATUSES,
    CorruptedReason,
    TaskStatus,
    is_valid_transition,
)
from paw.core.models.options import TaskOptions

log = logging.getLogger(__name__)


class TaskNotFoundError(LookupError):
    """Raised when a task name does not resolve to an agent directory."""

    def __init__(self, name: str) -> None:
        super().__init__(f"task not found: {name}")
        self.name = name


def to_camel_case(name: str) -> str:
    """Convert kebab-case or snake_case to camelCase.

    Leading separators are dropped without capitalizing the following character.
    """
    result: list[str] = []
    capitalize_next = False
    for char in name:
        if char in "-_":
            if result:
                capitalize_next = True
            continue
        result.append(char.upper() if capitalize_next else char)
        capitalize_next = False
    return "".join(result)


def window_token(name: str) -> str:
    return to_camel_case(name)[:MAX_WINDOW_NAME_LEN]


def glyph_for_status(status: TaskStatus) -> str:
    if status in (TaskStatus.WAITING, TaskStatus.CORRUPTED):
        return EMOJI_WAITING
    if status is TaskStatus.DONE:
        return EMOJI_DONE
    return EMOJI_WORKING


def window_name_for_status(name: str, status: TaskStatus) -> str:
    """Build the tmux window label for a task in *status*."""
    return glyph_for_status(status) + window_token(name)


def is_task_window(window_name: str) -> bool:
    return any(window_name.startswith(emoji) for emoji in TASK_EMOJIS)


def is_final_window(window_name: str) -> bool:
    """Whether the label already shows a finished (done or warning) task."""
    return window_name.startswith((EMOJI_DONE, EMOJI_WARNING))


def extract_task_token(window_name: str) -> str | None:
    """Strip a known glyph prefix from a window name, or return ``None``."""
    for emoji in TASK_EMOJIS:
        if window_name.startswith(emoji):
            return window_name.removeprefix(emoji)
    return None


def matches_window_token(token: str, task_name: str) -> bool:
    """Match both camelCase tokens and older plain-truncated ones."""
    return token in (window_token(task_name), task_name[:MAX_WINDOW_NAME_LEN])


@dataclass(slots=True)
class Task:
    """Snapshot of one unit of agent work."""

    name: str
    agent_dir: Path
    worktree_dir: Path | None = None
    content: str = ""
    status: TaskStatus = TaskStatus.PENDING
    window_id: str = ""
    corrupted_reason: CorruptedReason | None = None

    @property
    def window_name(self) -> str:
        return window_name_for_status(self.name, self.status)


class StatusRepository(Protocol):
    """Status persistence used by hooks, the classifier, and the merge coordinator."""

    def load_status(self) -> TaskStatus: ...

    def save_status(self, status: TaskStatus) -> None: ...

    def transition_status(self, next_status: TaskStatus) -> tuple[TaskStatus, bool]: ...

    def consume_status_signal(self) -> TaskStatus | None: ...


class TaskStore:
    """File-backed state for a single task rooted at its agent directory."""

    def __init__(self, agent_dir: Path, *, use_worktree: bool = True) -> None:
        self.agent_dir = agent_dir
        self.name = agent_dir.name
        self.use_worktree = use_worktree

    # Paths

    @property
    def status_path(self) -> Path:
        return self.agent_dir / STATUS_FILE_NAME

    @property
    def status_lock_path(self) -> Path:
        return self.agent_dir / STATUS_LOCK_FILE_NAME

    @property
    def signal_path(self) -> Path:
        return self.agent_dir / STATUS_SIGNAL_FILE_NAME

    @property
    def window_id_path(self) -> Path:
        return self.agent_dir / WINDOW_ID_FILE_NAME

    @property
    def tab_lock_path(self) -> Path:
        return self.agent_dir / TAB_LOCK_DIR_NAME

    @property
    def session_marker_path(self) -> Path:
        return self.agent_dir / SESSION_MARKER_FILE_NAME

    @property
    def user_prompt_path(self) -> Path:
        return self.agent_dir / USER_PROMPT_FILE_NAME

    @property
    def system_prompt_path(self) -> Path:
        return self.agent_dir / SYSTEM_PROMPT_FILE_NAME

    @property
    def content_path(self) -> Path:
        return self.agent_dir / TASK_FILE_NAME

    @property
    def options_path(self) -> Path:
        return self.agent_dir / OPTIONS_FILE_NAME

    @property
    def worktree_path(self) -> Path:
        return self.agent_dir / WORKTREE_DIR_NAME

    def exists(self) -> bool:
        return self.agent_dir.is_dir()

    def remove(self) -> None:
        shutil.rmtree(self.agent_dir, ignore_errors=True)

    # Status

    def save_status(self, status: TaskStatus) -> None:
        atomic_write(self.status_path, str(status))

    def load_status(self) -> TaskStatus:
        """Read the persisted status, applying a leftover signal file first.

        A signal left behind by a stop hook that never ran (killed session,
        forced agent exit) is folded into ``status`` here. A missing status
        file means the task has not started yet.
        """
        self._recover_status_signal()
        try:
            raw = self.status_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return TaskStatus.PENDING
        status = TaskStatus.parse(raw)
        if status is None:
            log.warning("Unknown status %r for task %s; treating as pending", raw, self.name)
            return TaskStatus.PENDING
        return status

    def _recover_status_signal(self) -> None:
        try:
            raw = self.signal_path.read_text(encoding="utf-8")
        except OSError:
            return
        status = TaskStatus.parse(raw)
        if status in SIGNAL_STATUSES:
            try:
                self.save_status(status)
            except OSError as exc:
                log.warning("Failed to recover status signal for %s: %s", self.name, exc)
                return
            log.info("Recovered status signal for %s: %s", self.name, status)
        else:
            log.warning("Discarding invalid status signal for %s: %r", self.name, raw.strip())
        self.signal_path.unlink(missing_ok=True)

    def transition_status(self, next_status: TaskStatus | str) -> tuple[TaskStatus, bool]:
        """Persist *next_status* and report ``(previous, valid)``.

        Invalid transitions are still written; callers decide how loudly to
        report them. Concurrent hooks for the same task serialize on the
        ``.status.lock`` file.
        """
        if not next_status:
            raise ValueError("empty status")
        target = TaskStatus(next_status)
        self.agent_dir.mkdir(parents=True, exist_ok=True)
        with FileLock(str(self.status_lock_path)):
            previous = self.load_status()
            valid = is_valid_transition(previous, target)
            self.save_status(target)
        return previous, valid

    def consume_status_signal(self) -> TaskStatus | None:
        """Read and delete the signal file; return it if it names a runtime status."""
        try:
            raw = self.signal_path.read_text(encoding="utf-8")
        except OSError:
            return None
        self.signal_path.unlink(missing_ok=True)
        status = TaskStatus.parse(raw)
        if status not in SIGNAL_STATUSES:
            log.warning("Ignoring invalid status signal for %s: %r", self.name, raw.strip())
            return None
        return status

    # Markers

    def has_session_marker(self) -> bool:
        return self.session_marker_path.exists()

    def create_session_marker(self) -> None:
        stamp = datetime.now().astimezone().isoformat(timespec="seconds")
        atomic_write(self.session_marker_path, stamp)

    def has_tab_lock(self) -> bool:
        return self.tab_lock_path.exists()

    def create_tab_lock(self) -> bool:
        """Atomically create the tab-lock; False when another process holds it."""
        try:
            self.tab_lock_path.mkdir()
        except FileExistsError:
            return False
        return True

    def remove_tab_lock(self) -> None:
        shutil.rmtree(self.tab_lock_path, ignore_errors=True)

    # Window, content, options

    def save_window_id(self, window_id: str) -> None:
        atomic_write(self.window_id_path, window_id)

    def load_window_id(self) -> str:
        try:
            return self.window_id_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""

    def save_content(self, content: str) -> None:
        atomic_write(self.content_path, content)

    def load_content(self) -> str:
        try:
            return self.content_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def load_options(self) -> TaskOptions:
        try:
            raw = self.options_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return TaskOptions()
        try:
            return TaskOptions.model_validate_json(raw)
        except ValidationError as exc:
            log.warning("Invalid task options for %s: %s", self.name, exc)
            return TaskOptions()

    def save_options(self, options: TaskOptions) -> None:
        atomic_write(self.options_path, options.model_dump_json(indent=2, exclude_none=True))

    def branch_name(self) -> str:
        """Git branch of the task: the option override, else the task name."""
        return self.load_options().branch_name or self.name

    def snapshot(self) -> Task:
        """Load the current on-disk state into a :class:`Task`."""
        worktree = self.worktree_path if self.use_worktree else None
        return Task(
            name=self.name,
            agent_dir=self.agent_dir,
            worktree_dir=worktree,
            content=self.load_content(),
            status=self.load_status(),
            window_id=self.load_window_id(),
        )
