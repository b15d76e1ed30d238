"""Hold a new task until the task it depends on reaches a satisfying state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from paw.core.constants import DEPENDENCY_POLL_INTERVAL, DISPLAY_MESSAGE_MS, EMOJI_WARNING
from paw.core.models.enums import DependsOnCondition, TaskStatus
from paw.core.models.task import TaskStore
from paw.core.paths import get_agent_dir
from paw.core.services.history import is_cancelled
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from paw.core.models.options import DependsOn
    from paw.core.services.history import HistoryService
    from paw.core.services.status import StatusUpdater
    from paw.core.tmux import TmuxController

log = logging.getLogger(__name__)

EMOJI_HOURGLASS = "⏳"


@dataclass(frozen=True, slots=True)
class DependencyState:
    """Resolved status of a dependency task and whether it can still change."""

    status: TaskStatus
    terminal: bool


class DependencyWaiter:
    """Polls a dependency's status until it satisfies, fails, or disappears."""

    def __init__(
        self,
        *,
        paw_dir: Path,
        history: HistoryService,
        tmux: TmuxController,
        updater: StatusUpdater,
        poll_interval: float = DEPENDENCY_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.paw_dir = paw_dir
        self.history = history
        self.tmux = tmux
        self.updater = updater
        self.poll_interval = poll_interval
        self._sleep = sleep

    def resolve(self, task_name: str) -> DependencyState | None:
        """Find the dependency's status in its live agent dir, then in history.

        Returns ``None`` when the task is unknown in both places.
        """
        agent_dir = get_agent_dir(self.paw_dir, task_name)
        if agent_dir.is_dir():
            try:
                status = TaskStore(agent_dir).load_status()
            except OSError as exc:
                log.debug("Dependency status read failed for %s: %s", task_name, exc)
                return DependencyState(TaskStatus.WORKING, terminal=False)
            return DependencyState(status, terminal=status.is_terminal)

        history_file = self.history.find_latest(task_name)
        if history_file is None:
            return None
        if is_cancelled(history_file):
            return DependencyState(TaskStatus.CORRUPTED, terminal=True)
        return DependencyState(TaskStatus.DONE, terminal=True)

    async def wait(self, store: TaskStore, window_id: str, depends_on: DependsOn | None) -> bool:
        """Block until *depends_on* is satisfied.

        Returns True when the task may proceed and False when the dependency
        ended in a state that can never satisfy the condition; the task is
        then marked corrupted.
        """
        if depends_on is None or not depends_on.task_name:
            return True
        condition = depends_on.condition
        if condition is DependsOnCondition.NONE:
            return True
        dependency = depends_on.task_name
        if dependency == store.name:
            log.warning("Task %s depends on itself; ignoring", store.name)
            return True

        first_wait = True
        while True:
            state = self.resolve(dependency)
            if state is None:
                log.warning("Dependency task not found: %s", dependency)
                return True

            if condition.is_satisfied_by(state.status):
                if not first_wait:
                    await self.updater.apply(
                        store, window_id, TaskStatus.WORKING, source="depends-on"
                    )
                log.info("Dependency %s satisfied %s for %s", dependency, condition, store.name)
                return True

            if state.terminal:
                log.warning(
                    "Dependency %s ended with %s; blocking task %s",
                    dependency,
                    state.status,
                    store.name,
                )
                await self.updater.apply(
                    store,
                    window_id,
                    TaskStatus.CORRUPTED,
                    source="depends-on",
                    detail=f"{dependency} ended {state.status}",
                )
                await self._display(
                    f"{EMOJI_WARNING} Dependency {dependency} did not satisfy {condition}"
                )
                return False

            if first_wait:
                await self.updater.apply(store, window_id, TaskStatus.WAITING, source="depends-on")
                await self._display(f"{EMOJI_HOURGLASS} Waiting for {dependency} ({condition})")
                first_wait = False

            await self._sleep(self.poll_interval)

    async def _display(self, message: str) -> None:
        try:
            await self.tmux.display_message(message, DISPLAY_MESSAGE_MS)
        except TmuxError as exc:
            log.warning("Failed to display message %r: %s", message, exc)
