"""Agent lifecycle hook handlers.

The coding agent runs these as short-lived commands with the task identity in
the environment. Missing context or a vanished pane is not an error: the hook
exits quietly so the agent is never blocked by paw.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from paw.core.constants import (
    ENV_PAW_DIR,
    ENV_SESSION_NAME,
    ENV_STOP_HOOK_GUARD,
    ENV_TASK_NAME,
    ENV_WINDOW_ID,
    PANE_CAPTURE_LINES,
    SUMMARY_MAX_LEN,
)
from paw.core.models.enums import TaskStatus
from paw.core.models.task import TaskStore, is_final_window
from paw.core.paths import get_agent_dir
from paw.core.services.classifier import (
    has_ask_user_question,
    has_done_marker,
    has_waiting_marker,
    tail,
)
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from paw.core.services.classifier import Classification, StatusClassifier
    from paw.core.services.status import StatusUpdater
    from paw.core.tmux import TmuxController

log = logging.getLogger(__name__)

REQUIRED_ENV = (ENV_SESSION_NAME, ENV_WINDOW_ID, ENV_TASK_NAME)


def stop_hook_guarded(env: Mapping[str, str]) -> bool:
    """Whether this process was spawned by paw's own agent invocation."""
    return bool(env.get(ENV_STOP_HOOK_GUARD))


@dataclass(frozen=True, slots=True)
class HookContext:
    """Task identity handed to hook commands through the environment."""

    session_name: str
    window_id: str
    task_name: str
    paw_dir: Path | None = None

    @property
    def pane(self) -> str:
        return f"{self.window_id}.0"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> HookContext | None:
        missing = [key for key in REQUIRED_ENV if not env.get(key)]
        if missing:
            log.debug("Hook context incomplete, missing %s", ", ".join(missing))
            return None
        paw_dir = env.get(ENV_PAW_DIR)
        return cls(
            session_name=env[ENV_SESSION_NAME],
            window_id=env[ENV_WINDOW_ID],
            task_name=env[ENV_TASK_NAME],
            paw_dir=Path(paw_dir) if paw_dir else None,
        )


def should_skip_final(window_name: str, transcript: str) -> bool:
    """A finished window keeps its label while its done marker is still valid."""
    return (
        is_final_window(window_name)
        and has_done_marker(transcript)
        and not has_waiting_marker(transcript)
        and not has_ask_user_question(transcript)
    )


class HookHandler:
    def __init__(
        self,
        context: HookContext,
        *,
        tmux: TmuxController,
        updater: StatusUpdater,
        classifier: StatusClassifier | None = None,
        capture_lines: int = PANE_CAPTURE_LINES,
        summary_max_len: int = SUMMARY_MAX_LEN,
    ) -> None:
        self.context = context
        self.tmux = tmux
        self.updater = updater
        self.classifier = classifier
        self.capture_lines = capture_lines
        self.summary_max_len = summary_max_len

    @property
    def store(self) -> TaskStore | None:
        if self.context.paw_dir is None:
            return None
        return TaskStore(get_agent_dir(self.context.paw_dir, self.context.task_name))

    async def _apply(self, status: TaskStatus, *, source: str) -> None:
        store = self.store
        if store is None:
            await self.updater.rename(self.context.task_name, self.context.window_id, status)
            return
        await self.updater.apply(store, self.context.window_id, status, source=source)

    async def _pane_exists(self) -> bool:
        if await self.tmux.has_pane(self.context.pane):
            return True
        log.debug("Pane %s not found; skipping", self.context.pane)
        return False

    async def handle_status(self, status: TaskStatus, *, source: str) -> bool:
        """Set a fixed status (prompt submitted, question asked or answered)."""
        if not await self._pane_exists():
            return False
        await self._apply(status, source=source)
        log.debug("%s set %s to %s", source, self.context.task_name, status)
        return True

    async def handle_stop(self) -> Classification | None:
        """Classify the agent's turn end and apply the resulting status."""
        if self.classifier is None:
            raise RuntimeError("stop hook requires a classifier")
        ctx = self.context
        if not await self._pane_exists():
            return None

        try:
            window_name = await self.tmux.window_name(ctx.window_id)
        except TmuxError as exc:
            log.debug("Failed to read window name for %s: %s", ctx.window_id, exc)
            window_name = ""

        try:
            transcript = await self.tmux.capture_pane(ctx.pane, self.capture_lines)
        except TmuxError as exc:
            log.warning("Failed to capture pane %s: %s", ctx.pane, exc)
            return None
        transcript = transcript.strip()
        if not transcript:
            log.warning("Empty pane capture for %s; skipping", ctx.task_name)
            return None

        if should_skip_final(window_name, transcript):
            log.debug("Window %r already final with a valid done marker", window_name)
            return None

        transcript = tail(transcript, self.summary_max_len)
        result = await self.classifier.classify(ctx.task_name, transcript, store=self.store)
        await self._apply(result.status, source="stop-hook")
        log.info(
            "Stop hook: %s -> %s (%s%s)",
            ctx.task_name,
            result.status,
            result.source,
            f", attempt {result.attempt}" if result.attempt else "",
        )
        return result
