"""Re-deliver a task instruction that never reached the agent's prompt."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from paw.core.agents.claude import ClaudeError
from paw.core.agents.prompts import build_task_instruction
from paw.core.constants import SEND_INPUT_MAX_ATTEMPTS
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from paw.core.agents.claude import AgentClient
    from paw.core.models.task import TaskStore
    from paw.core.tmux import TmuxController

log = logging.getLogger(__name__)

RECOVERY_MESSAGE_MS = 2000


class RecoveryOutcome(StrEnum):
    ALREADY_DELIVERED = "already_delivered"
    NO_USER_PROMPT = "no_user_prompt"
    AGENT_NOT_RUNNING = "agent_not_running"
    RECOVERED = "recovered"


class StdinRecovery:
    """Detects a running agent without a session marker and types the instruction.

    The session marker is written once the instruction was delivered, so running
    recovery again is a no-op.
    """

    def __init__(
        self,
        tmux: TmuxController,
        agent: AgentClient,
        *,
        max_attempts: int = SEND_INPUT_MAX_ATTEMPTS,
    ) -> None:
        self.tmux = tmux
        self.agent = agent
        self.max_attempts = max_attempts

    async def recover(self, store: TaskStore, window_id: str) -> RecoveryOutcome:
        """Raises :class:`ClaudeError` when the instruction cannot be delivered."""
        if store.has_session_marker():
            log.debug("Session marker present for %s; nothing to recover", store.name)
            return RecoveryOutcome.ALREADY_DELIVERED

        prompt_path = store.user_prompt_path
        if not prompt_path.exists():
            log.debug("No user prompt for %s; skipping recovery", store.name)
            return RecoveryOutcome.NO_USER_PROMPT

        pane = f"{window_id}.0"
        if not await self.agent.is_running(self.tmux, pane):
            log.debug("Agent not running in %s; skipping recovery", pane)
            return RecoveryOutcome.AGENT_NOT_RUNNING

        log.info("Detected failed stdin injection for %s; recovering", store.name)
        options = store.load_options()
        instruction = build_task_instruction(prompt_path, ultrathink=options.ultrathink)

        try:
            await self.agent.send_input_with_retry(
                self.tmux, pane, instruction, self.max_attempts
            )
        except ClaudeError as exc:
            log.warning("Retried send failed, trying a basic send: %s", exc)
            await self.agent.send_input(self.tmux, pane, instruction)

        try:
            store.create_session_marker()
        except OSError as exc:
            log.warning("Failed to create session marker for %s: %s", store.name, exc)

        try:
            await self.tmux.display_message(
                f"Recovered task instruction for: {store.name}", RECOVERY_MESSAGE_MS
            )
        except TmuxError as exc:
            log.debug("Failed to display recovery message: %s", exc)
        log.info("Recovered stdin injection for %s", store.name)
        return RecoveryOutcome.RECOVERED
