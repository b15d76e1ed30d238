"""Claude CLI client: one-shot prompts and input delivery to running agents."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import PurePath
from typing import TYPE_CHECKING, Protocol

from paw.core.adapters.process import ProcessExecutionError, run_exec_checked
from paw.core.constants import ENV_STOP_HOOK_GUARD
from paw.core.tmux import TmuxError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from paw.core.tmux import TmuxController

log = logging.getLogger(__name__)

SHELL_COMMANDS = frozenset({"bash", "zsh", "sh", "fish", "tcsh", "csh", "ksh", "dash"})


class ClaudeError(RuntimeError):
    """Raised when a Claude CLI invocation or input delivery fails."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class AgentClient(Protocol):
    """Coding-agent capabilities consumed by the lifecycle services."""

    async def run_prompt(
        self,
        prompt: str,
        *,
        model: str,
        timeout: float,
        thinking: bool = False,
        cwd: Path | None = None,
        skip_permissions: bool = False,
    ) -> str: ...

    async def is_running(self, tmux: TmuxController, target: str) -> bool: ...

    async def send_input(self, tmux: TmuxController, target: str, text: str) -> None: ...

    async def send_input_with_retry(
        self, tmux: TmuxController, target: str, text: str, max_attempts: int
    ) -> None: ...


def is_shell_command(command: str) -> bool:
    """Whether a pane's current command is a login or interactive shell."""
    name = PurePath(command.strip()).name.removeprefix("-")
    return name in SHELL_COMMANDS


class ClaudeClient:
    """Thin async wrapper around the ``claude`` executable and tmux key injection."""

    def __init__(
        self,
        executable: str = "claude",
        *,
        key_delay: float = 0.1,
        retry_delay: float = 0.5,
        verify_delay: float = 0.3,
    ) -> None:
        self.executable = executable
        self.key_delay = key_delay
        self.retry_delay = retry_delay
        self.verify_delay = verify_delay

    def _env(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        # Any hook fired by the child agent must not classify again.
        env[ENV_STOP_HOOK_GUARD] = "1"
        if extra:
            env.update(extra)
        return env

    async def run_prompt(
        self,
        prompt: str,
        *,
        model: str,
        timeout: float,
        thinking: bool = False,
        cwd: Path | None = None,
        skip_permissions: bool = False,
        extra_env: Mapping[str, str] | None = None,
    ) -> str:
        """Run ``claude -p`` with *prompt* on stdin and return stripped stdout."""
        args = ["-p", "--model", model]
        if thinking:
            args.append("--think")
        if skip_permissions:
            args.append("--dangerously-skip-permissions")

        label = f"{model} (thinking)" if thinking else model
        log.debug("Running claude model=%s timeout=%ss", label, timeout)
        try:
            result = await run_exec_checked(
                self.executable,
                *args,
                cwd=cwd,
                env=self._env(extra_env),
                input=prompt.encode("utf-8"),
                timeout=timeout,
            )
        except ProcessExecutionError as exc:
            raise ClaudeError(
                f"claude {label} failed: {exc}", timed_out=exc.code == "PROCESS_TIMEOUT"
            ) from exc
        except FileNotFoundError as exc:
            raise ClaudeError("claude executable not found") from exc

        return result.stdout_text().strip()

    async def is_running(self, tmux: TmuxController, target: str) -> bool:
        """Return whether an agent (rather than a bare shell) owns *target*."""
        if not await tmux.has_pane(target):
            log.debug("Pane %s does not exist", target)
            return False
        try:
            command = await tmux.pane_command(target)
        except TmuxError as exc:
            log.debug("Failed to read pane command for %s: %s", target, exc)
            return False
        if not command or is_shell_command(command):
            log.debug("Pane %s runs %r; agent not running", target, command)
            return False
        return True

    async def send_input(self, tmux: TmuxController, target: str, text: str) -> None:
        """Type *text* into the agent prompt and submit it.

        Escape then Enter submits multi-line input in the agent UI.
        """
        try:
            await tmux.send_keys_literal(target, text)
            await asyncio.sleep(self.key_delay)
            await tmux.send_keys(target, "Escape")
            await asyncio.sleep(self.key_delay / 2)
            await tmux.send_keys(target, "Enter")
        except TmuxError as exc:
            raise ClaudeError(f"failed to send input to {target}: {exc}") from exc

    async def send_input_with_retry(
        self, tmux: TmuxController, target: str, text: str, max_attempts: int
    ) -> None:
        """Send *text*, retrying until the pane content visibly changes."""
        last_error = "no attempts made"
        for attempt in range(1, max_attempts + 1):
            if not await tmux.has_pane(target):
                last_error = f"pane {target} does not exist"
                log.debug("Send attempt %d/%d: %s", attempt, max_attempts, last_error)
                await asyncio.sleep(self.retry_delay)
                continue

            try:
                before = await tmux.capture_pane(target, 10)
            except TmuxError as exc:
                last_error = f"capture before send failed: {exc}"
                log.debug("Send attempt %d/%d: %s", attempt, max_attempts, last_error)
                await asyncio.sleep(self.retry_delay)
                continue

            try:
                await self.send_input(tmux, target, text)
            except ClaudeError as exc:
                last_error = str(exc)
                log.debug("Send attempt %d/%d: %s", attempt, max_attempts, last_error)
                await asyncio.sleep(self.retry_delay)
                continue

            await asyncio.sleep(self.verify_delay)
            try:
                after = await tmux.capture_pane(target, 10)
            except TmuxError:
                log.debug("Cannot verify input on %s; assuming it was accepted", target)
                return

            if after != before:
                log.debug("Input accepted on %s (attempt %d/%d)", target, attempt, max_attempts)
                return

            last_error = "pane content unchanged after send"
            log.debug("Send attempt %d/%d: %s", attempt, max_attempts, last_error)
            await asyncio.sleep(self.retry_delay)

        raise ClaudeError(f"failed to send input after {max_attempts} attempts: {last_error}")
