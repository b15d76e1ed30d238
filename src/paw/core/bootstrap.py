"""Application wiring for paw commands.

Every paw command is its own short-lived process. :func:`create_app_context`
builds the collaborators for one invocation from the project ``.paw``
directory and the tmux session name.

Usage:
    ctx = create_app_context(paw_dir, session_name="myproj")
    result = await ctx.merge_coordinator().merge_task(store, window_id)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from paw.core.adapters.git import GitClient
from paw.core.agents.claude import ClaudeClient
from paw.core.config import PawConfig
from paw.core.models.task import TaskStore
from paw.core.paths import get_agent_dir, get_history_dir
from paw.core.services.classifier import AIClassifier, StatusClassifier
from paw.core.services.dependencies import DependencyWaiter
from paw.core.services.finish import TaskFinisher
from paw.core.services.history import HistoryService
from paw.core.services.merges import MergeCoordinator
from paw.core.services.status import StatusUpdater
from paw.core.services.stdin_recovery import StdinRecovery
from paw.core.services.tasks import TaskManager
from paw.core.services.worktree_recovery import WorktreeRecovery
from paw.core.tmux import TmuxClient

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class AppContext:
    """Collaborators shared by the services of one command invocation.

    Attributes:
        config: Project configuration.
        paw_dir: The project ``.paw`` directory.
        session_name: tmux session hosting the task windows.
        tmux: tmux client bound to the session socket.
        git: git client.
        agent: Claude CLI client.
        history: Task history reader/writer.
        updater: Single write path for status changes.
    """

    config: PawConfig
    paw_dir: Path
    session_name: str = ""

    tmux: TmuxClient = field(init=False)
    git: GitClient = field(init=False)
    agent: ClaudeClient = field(init=False)
    history: HistoryService = field(init=False)
    updater: StatusUpdater = field(init=False)

    def __post_init__(self) -> None:
        self.tmux = TmuxClient(self.session_name)
        self.git = GitClient()
        self.agent = ClaudeClient()
        self.history = HistoryService(get_history_dir(self.paw_dir), agent=self.agent)
        self.updater = StatusUpdater(self.tmux, self.history)

    @property
    def project_dir(self) -> Path:
        return self.paw_dir.parent

    def task_store(self, task_name: str) -> TaskStore:
        return TaskStore(
            get_agent_dir(self.paw_dir, task_name), use_worktree=self.config.use_worktree
        )

    def classifier(self) -> StatusClassifier:
        return StatusClassifier(ai=AIClassifier(self.agent, self.config.classifier.attempts))

    async def task_manager(self) -> TaskManager:
        return TaskManager(
            paw_dir=self.paw_dir,
            project_dir=self.project_dir,
            git=self.git,
            tmux=self.tmux,
            agent=self.agent,
            use_worktree=self.config.use_worktree,
            is_git_repo=await self.git.is_git_repo(self.project_dir),
            main_branch=self.config.general.main_branch,
        )

    def merge_coordinator(self) -> MergeCoordinator:
        return MergeCoordinator(
            config=self.config,
            project_dir=self.project_dir,
            paw_dir=self.paw_dir,
            git=self.git,
            tmux=self.tmux,
            agent=self.agent,
            updater=self.updater,
            session_name=self.session_name,
        )

    async def task_finisher(self) -> TaskFinisher:
        return TaskFinisher(
            manager=await self.task_manager(),
            merger=self.merge_coordinator(),
            history=self.history,
            tmux=self.tmux,
            updater=self.updater,
            merge_config=self.config.merge,
        )

    def dependency_waiter(self) -> DependencyWaiter:
        return DependencyWaiter(
            paw_dir=self.paw_dir,
            history=self.history,
            tmux=self.tmux,
            updater=self.updater,
            poll_interval=self.config.dependencies.poll_interval,
        )

    def stdin_recovery(self) -> StdinRecovery:
        return StdinRecovery(
            self.tmux, self.agent, max_attempts=self.config.recovery.send_max_attempts
        )

    def worktree_recovery(self) -> WorktreeRecovery:
        return WorktreeRecovery(self.project_dir, self.git)


def create_app_context(
    paw_dir: Path,
    *,
    session_name: str = "",
    config: PawConfig | None = None,
) -> AppContext:
    """Load the project config (unless given) and wire an :class:`AppContext`."""
    if config is None:
        config = PawConfig.load(paw_dir)
    return AppContext(config=config, paw_dir=paw_dir, session_name=session_name)


__all__ = ["AppContext", "create_app_context"]
