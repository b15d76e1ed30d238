"""Git adapter contracts."""

from paw.core.adapters.git.client import GitClient, GitClientProtocol
from paw.core.adapters.git.operations import (
    CommitInfo,
    GitAdapterBase,
    GitCommandResult,
    GitCommandRunner,
    GitError,
    GitOperationsAdapter,
)
from paw.core.adapters.git.worktrees import (
    GitWorktreeAdapter,
    Worktree,
    parse_worktree_list,
    read_worktree_head,
)

__all__ = [
    "CommitInfo",
    "GitAdapterBase",
    "GitClient",
    "GitClientProtocol",
    "GitCommandResult",
    "GitCommandRunner",
    "GitError",
    "GitOperationsAdapter",
    "GitWorktreeAdapter",
    "Worktree",
    "parse_worktree_list",
    "read_worktree_head",
]
