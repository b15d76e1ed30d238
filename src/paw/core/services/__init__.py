"""Service layer: classification, status updates, merges, and task upkeep."""

from paw.core.services.classifier import AIClassifier, Classification, StatusClassifier
from paw.core.services.dependencies import DependencyState, DependencyWaiter
from paw.core.services.history import HistoryService
from paw.core.services.hooks import HookContext, HookHandler, stop_hook_guarded
from paw.core.services.merge_lock import MergeLock, MergeLockError
from paw.core.services.merges import MergeCoordinator, MergeResult
from paw.core.services.status import StatusChange, StatusUpdater
from paw.core.services.stdin_recovery import RecoveryOutcome, StdinRecovery
from paw.core.services.tasks import StoppedTask, TaskManager
from paw.core.services.worktree_recovery import RecoveryError, WorktreeRecovery

__all__ = [
    "AIClassifier",
    "Classification",
    "DependencyState",
    "DependencyWaiter",
    "HistoryService",
    "HookContext",
    "HookHandler",
    "MergeCoordinator",
    "MergeLock",
    "MergeLockError",
    "MergeResult",
    "RecoveryError",
    "RecoveryOutcome",
    "StatusChange",
    "StatusClassifier",
    "StatusUpdater",
    "StdinRecovery",
    "StoppedTask",
    "TaskManager",
    "WorktreeRecovery",
    "stop_hook_guarded",
]
