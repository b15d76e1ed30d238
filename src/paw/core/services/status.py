"""Apply a resolved status to a task: window label, status file, history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from paw.core.models.task import window_name_for_status
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from paw.core.models.enums import TaskStatus
    from paw.core.models.task import TaskStore
    from paw.core.services.history import HistoryService
    from paw.core.tmux import TmuxController

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StatusChange:
    """Outcome of one applied status transition."""

    previous: TaskStatus
    current: TaskStatus
    valid: bool

    @property
    def changed(self) -> bool:
        return self.previous != self.current


class StatusUpdater:
    """Single write path for task status changes."""

    def __init__(self, tmux: TmuxController, history: HistoryService | None = None) -> None:
        self.tmux = tmux
        self.history = history

    async def rename(self, task_name: str, window_id: str, status: TaskStatus) -> bool:
        """Relabel the task window for *status*; False when tmux refused."""
        if not window_id:
            return False
        name = window_name_for_status(task_name, status)
        try:
            await self.tmux.rename_window(window_id, name)
        except TmuxError as exc:
            log.warning("Failed to rename window %s for %s: %s", window_id, task_name, exc)
            return False
        return True

    async def apply(
        self,
        store: TaskStore,
        window_id: str,
        status: TaskStatus,
        *,
        source: str,
        detail: str = "",
    ) -> StatusChange | None:
        """Rename the task window and persist *status* as a validated transition.

        Window and history failures are logged; the status file is the record
        of truth. Returns ``None`` when the status file could not be written.
        """
        await self.rename(store.name, window_id, status)

        try:
            previous, valid = store.transition_status(status)
        except (OSError, ValueError) as exc:
            log.warning("Failed to save status %s for %s: %s", status, store.name, exc)
            return None

        log.debug("Status saved for %s: %s -> %s (%s)", store.name, previous, status, source)
        if not valid:
            log.warning("Invalid status transition for %s: %s -> %s", store.name, previous, status)

        if self.history is not None:
            try:
                self.history.record_status_transition(
                    store.name, previous, status, source=source, detail=detail, valid=valid
                )
            except OSError as exc:
                log.warning("Failed to record status transition for %s: %s", store.name, exc)

        return StatusChange(previous=previous, current=status, valid=valid)
