"""Core domain enums."""

from __future__ import annotations

from enum import StrEnum


class TaskStatus(StrEnum):
    """Lifecycle states persisted in ``<agentDir>/status``."""

    PENDING = "pending"
    WORKING = "working"
    WAITING = "waiting"
    DONE = "done"
    CORRUPTED = "corrupted"

    @classmethod
    def parse(cls, value: str) -> TaskStatus | None:
        """Return the status named by *value* (case-insensitive), or ``None``."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.CORRUPTED)


STATUS_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.WORKING}),
    TaskStatus.WORKING: frozenset(
        {TaskStatus.WAITING, TaskStatus.DONE, TaskStatus.CORRUPTED, TaskStatus.WORKING}
    ),
    TaskStatus.WAITING: frozenset({TaskStatus.WORKING, TaskStatus.DONE, TaskStatus.CORRUPTED}),
    TaskStatus.DONE: frozenset({TaskStatus.WORKING}),
    TaskStatus.CORRUPTED: frozenset({TaskStatus.WORKING}),
}

# Statuses an agent may report through the signal file.
SIGNAL_STATUSES = frozenset({TaskStatus.WORKING, TaskStatus.WAITING, TaskStatus.DONE})


def is_valid_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Return whether *current* -> *target* is listed in the transition table."""
    return target in STATUS_TRANSITIONS.get(current, frozenset())


class DependsOnCondition(StrEnum):
    """Condition a dependency task must meet before a dependant starts."""

    NONE = "none"
    SUCCESS = "success"
    FAILURE = "failure"
    ALWAYS = "always"

    def is_satisfied_by(self, status: TaskStatus) -> bool:
        if self is DependsOnCondition.SUCCESS:
            return status is TaskStatus.DONE
        if self is DependsOnCondition.FAILURE:
            return status is TaskStatus.CORRUPTED
        if self is DependsOnCondition.ALWAYS:
            return status.is_terminal
        return True


class FinishAction(StrEnum):
    """What happens to a task branch when the task is finished."""

    KEEP = "keep"
    MERGE = "merge"
    DROP = "drop"


class CorruptedReason(StrEnum):
    """Why a task's worktree is considered corrupted."""

    MISSING_WORKTREE = "missing_worktree"
    NOT_IN_GIT = "not_in_git"
    INVALID_GIT = "invalid_git"
    MISSING_BRANCH = "missing_branch"

    @property
    def description(self) -> str:
        return {
            CorruptedReason.MISSING_WORKTREE: "worktree directory is missing",
            CorruptedReason.NOT_IN_GIT: "worktree is not registered with git",
            CorruptedReason.INVALID_GIT: "worktree .git link is broken",
            CorruptedReason.MISSING_BRANCH: "task branch no longer exists",
        }[self]
