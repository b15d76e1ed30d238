"""tmux client for the paw session server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from paw.core.adapters.process import ProcessExecutionError, run_exec_checked
from paw.core.constants import TMUX_COMMAND_TIMEOUT, TMUX_SOCKET_PREFIX

log = logging.getLogger(__name__)


class TmuxError(RuntimeError):
    """Raised when tmux commands fail or tmux is not installed."""


@dataclass(frozen=True, slots=True)
class Window:
    """One window in the paw session."""

    id: str
    index: int
    name: str
    active: bool


class TmuxController(Protocol):
    """Terminal-session capabilities consumed by the lifecycle services."""

    async def has_pane(self, target: str) -> bool: ...

    async def capture_pane(self, target: str, lines: int = 0) -> str: ...

    async def send_keys(self, target: str, *keys: str) -> None: ...

    async def send_keys_literal(self, target: str, text: str) -> None: ...

    async def rename_window(self, target: str, name: str) -> None: ...

    async def window_name(self, target: str) -> str: ...

    async def display_message(self, message: str, duration_ms: int = 3000) -> None: ...

    async def list_windows(self) -> list[Window]: ...

    async def pane_command(self, target: str) -> str: ...

    async def kill_window(self, target: str) -> None: ...


async def run_tmux(*args: str, socket: str | None = None) -> str:
    """Run a tmux command and return stdout."""
    full_args = ("-L", socket, *args) if socket else args
    try:
        result = await run_exec_checked("tmux", *full_args, timeout=TMUX_COMMAND_TIMEOUT)
    except FileNotFoundError:
        raise TmuxError("tmux is not installed") from None
    except ProcessExecutionError as exc:
        if exc.code == "PROCESS_OS_ERROR":
            raise TmuxError("tmux is not installed") from None
        raise TmuxError(str(exc)) from exc
    return result.stdout_text().rstrip("\n")


class TmuxClient:
    """Async wrapper around the tmux server hosting one paw session.

    Each paw session runs on its own socket (``paw-<session>``) so that
    windows of different projects never collide.
    """

    def __init__(self, session_name: str) -> None:
        self.session_name = session_name
        self.socket = f"{TMUX_SOCKET_PREFIX}{session_name}"

    async def run(self, *args: str) -> str:
        return await run_tmux(*args, socket=self.socket)

    async def has_pane(self, target: str) -> bool:
        try:
            await self.run("display-message", "-t", target, "-p", "#{pane_id}")
        except TmuxError:
            return False
        return True

    async def pane_command(self, target: str) -> str:
        output = await self.run("display-message", "-t", target, "-p", "#{pane_current_command}")
        return output.strip()

    async def window_name(self, target: str) -> str:
        output = await self.run("display-message", "-t", target, "-p", "#{window_name}")
        return output.strip()

    async def capture_pane(self, target: str, lines: int = 0) -> str:
        args = ["capture-pane", "-t", target, "-p"]
        if lines > 0:
            args.extend(["-S", f"-{lines}"])
        return await self.run(*args)

    async def send_keys(self, target: str, *keys: str) -> None:
        await self.run("send-keys", "-t", target, *keys)

    async def send_keys_literal(self, target: str, text: str) -> None:
        await self.run("send-keys", "-t", target, "-l", text)

    async def rename_window(self, target: str, name: str) -> None:
        log.debug("Renaming window %s to %s", target, name)
        await self.run("rename-window", "-t", target, name)

    async def display_message(self, message: str, duration_ms: int = 3000) -> None:
        await self.run("display-message", "-d", str(duration_ms), message)

    async def list_windows(self) -> list[Window]:
        output = await self.run(
            "list-windows",
            "-t",
            self.session_name,
            "-F",
            "#{window_id}|#{window_index}|#{window_name}|#{window_active}",
        )
        return parse_window_list(output)

    async def kill_window(self, target: str) -> None:
        await self.run("kill-window", "-t", target)


def parse_window_list(output: str) -> list[Window]:
    """Parse ``list-windows`` output in ``id|index|name|active`` format."""
    windows: list[Window] = []
    for line in output.splitlines():
        parts = line.split("|")
        if len(parts) < 4:
            continue
        try:
            index = int(parts[1])
        except ValueError:
            index = 0
        windows.append(
            Window(
                id=parts[0],
                index=index,
                name="|".join(parts[2:-1]),
                active=parts[-1] == "1",
            )
        )
    return windows
