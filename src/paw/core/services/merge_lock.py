"""Cross-process merge lock stored as ``<pawDir>/merge.lock``.

The lock file holds ``<task>\\n<pid>``. A holder that died without releasing
leaves a stale file; it is detected by PID liveness and removed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import TYPE_CHECKING, Self

from paw.core.constants import MERGE_LOCK_MAX_RETRIES, MERGE_LOCK_RETRY_INTERVAL
from paw.core.process_liveness import pid_exists

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

log = logging.getLogger(__name__)


class MergeLockError(RuntimeError):
    """Raised when the merge lock cannot be acquired within the retry budget."""


def is_stale_lock(path: Path) -> bool:
    """Whether the lock at *path* was left behind by a process that is gone.

    An unreadable file is treated as held.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return False

    lines = content.split("\n")
    if len(lines) < 2:
        log.debug("Merge lock %s has no PID line; treating as stale", path)
        return True
    try:
        pid = int(lines[1].strip())
    except ValueError:
        log.debug("Merge lock %s has an invalid PID %r; treating as stale", path, lines[1])
        return True
    if not pid_exists(pid):
        log.debug("Merge lock holder %d is not running; treating as stale", pid)
        return True
    return False


class MergeLock:
    """Exclusive-create file lock serializing merges into the main branch."""

    def __init__(
        self,
        path: Path,
        task_name: str = "",
        *,
        max_retries: int = MERGE_LOCK_MAX_RETRIES,
        retry_interval: float = MERGE_LOCK_RETRY_INTERVAL,
    ) -> None:
        self.path = path
        self.max_retries = max_retries
        self.retry_interval = retry_interval
        self.task_name = task_name
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _try_create(self, task_name: str) -> bool:
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(f"{task_name}\n{os.getpid()}")
        except OSError as exc:
            log.warning("Failed to write merge lock %s: %s", self.path, exc)
            with contextlib.suppress(FileNotFoundError):
                self.path.unlink()
            return False
        return True

    async def acquire(self, task_name: str | None = None) -> bool:
        """Try to take the lock for *task_name*; False once retries run out."""
        task_name = task_name or self.task_name
        if self._held:
            return True
        self.path.parent.mkdir(parents=True, exist_ok=True)

        for attempt in range(1, self.max_retries + 1):
            try:
                created = self._try_create(task_name)
            except FileExistsError:
                if is_stale_lock(self.path):
                    log.info("Removing stale merge lock %s", self.path)
                    with contextlib.suppress(FileNotFoundError):
                        self.path.unlink()
                    continue
                log.debug(
                    "Merge lock busy (attempt %d/%d); retrying in %.1fs",
                    attempt,
                    self.max_retries,
                    self.retry_interval,
                )
                await asyncio.sleep(self.retry_interval)
                continue

            if not created:
                await asyncio.sleep(self.retry_interval)
                continue

            self._held = True
            self.task_name = task_name
            log.debug("Acquired merge lock for %s", task_name)
            return True

        log.warning("Gave up on merge lock for %s after %d attempts", task_name, self.max_retries)
        return False

    def release(self) -> None:
        """Remove the lock file if this instance holds it. Safe to call repeatedly."""
        if not self._held:
            return
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
        self._held = False
        log.debug("Released merge lock for %s", self.task_name)

    async def __aenter__(self) -> Self:
        if not await self.acquire():
            raise MergeLockError(f"could not acquire merge lock {self.path}")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


__all__ = ["MergeLock", "MergeLockError", "is_stale_lock"]
