"""Shared subprocess adapter for tmux, git, agent, and hook processes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from pathlib import Path

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessRetryPolicy:
    """Retry behavior for subprocess execution."""

    max_attempts: int = 1
    delay_seconds: float = 0.0
    retry_on_timeout: bool = True
    retry_on_nonzero: bool = False
    retry_on_oserror: bool = True

    def normalized(self) -> ProcessRetryPolicy:
        return ProcessRetryPolicy(
            max_attempts=max(1, self.max_attempts),
            delay_seconds=max(0.0, self.delay_seconds),
            retry_on_timeout=self.retry_on_timeout,
            retry_on_nonzero=self.retry_on_nonzero,
            retry_on_oserror=self.retry_on_oserror,
        )


@dataclass(frozen=True)
class ProcessResult:
    """Captured result of a subprocess execution."""

    returncode: int
    stdout: bytes
    stderr: bytes

    def stdout_text(self) -> str:
        """Decode stdout as UTF-8 with replacement."""
        return self.stdout.decode("utf-8", errors="replace")

    def stderr_text(self) -> str:
        """Decode stderr as UTF-8 with replacement."""
        return self.stderr.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ProcessExecutionError(RuntimeError):
    """Structured process failure with machine-readable code and command context."""

    code: str
    command: tuple[str, ...]
    returncode: int | None = None
    timed_out: bool = False
    attempts: int = 1
    stdout: str | None = None
    stderr: str | None = None
    detail: str | None = None

    def __str__(self) -> str:
        parts = [f"[{self.code}] {' '.join(self.command)}"]
        if self.returncode is not None:
            parts.append(f"(rc={self.returncode})")
        if self.timed_out:
            parts.append("(timed out)")
        if self.attempts > 1:
            parts.append(f"after {self.attempts} attempts")

        message = " ".join(parts)
        detail = self.detail or self.stderr or self.stdout
        if detail:
            return f"{message}: {detail}"
        return message


def _normalize_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if env is None:
        return None
    return dict(env)


async def spawn_exec(
    executable: str,
    *args: str,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    stdin: int | None = None,
    stdout: int | None = None,
    stderr: int | None = None,
) -> asyncio.subprocess.Process:
    """Spawn a subprocess using ``create_subprocess_exec``."""
    return await asyncio.create_subprocess_exec(
        executable,
        *args,
        cwd=None if cwd is None else str(cwd),
        env=_normalize_env(env),
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
    )


async def spawn_shell(
    command: str,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    stdin: int | None = None,
    stdout: int | None = None,
    stderr: int | None = None,
) -> asyncio.subprocess.Process:
    """Spawn a subprocess using ``create_subprocess_shell``."""
    return await asyncio.create_subprocess_shell(
        command,
        cwd=None if cwd is None else str(cwd),
        env=_normalize_env(env),
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
    )


async def _communicate(
    process: asyncio.subprocess.Process,
    *,
    input: bytes | None = None,
    timeout: float | None = None,
) -> tuple[bytes, bytes]:
    try:
        if timeout is None:
            stdout, stderr = await process.communicate(input)
        else:
            stdout, stderr = await asyncio.wait_for(process.communicate(input), timeout=timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        with contextlib.suppress(ProcessLookupError):
            await process.communicate()
        raise

    return stdout or b"", stderr or b""


async def _run_with_retries(
    spawn: Callable[[], Awaitable[asyncio.subprocess.Process]],
    *,
    label: str,
    input: bytes | None,
    timeout: float | None,
    policy: ProcessRetryPolicy,
) -> ProcessResult:
    started_at = time.perf_counter()
    attempt = 1
    while True:
        retry_reason: str | None = None
        try:
            process = await spawn()
        except OSError:
            if not (policy.retry_on_oserror and attempt < policy.max_attempts):
                raise
            retry_reason = "oserror"
        else:
            try:
                stdout, stderr = await _communicate(process, input=input, timeout=timeout)
            except TimeoutError:
                if not (policy.retry_on_timeout and attempt < policy.max_attempts):
                    log.debug("Process timed out: %s (timeout=%ss)", label, timeout)
                    raise
                retry_reason = "timeout"
            else:
                result = ProcessResult(
                    returncode=process.returncode if process.returncode is not None else 1,
                    stdout=stdout,
                    stderr=stderr,
                )
                if not (
                    result.returncode != 0
                    and policy.retry_on_nonzero
                    and attempt < policy.max_attempts
                ):
                    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
                    log.debug(
                        "Process finished: %s rc=%s elapsed_ms=%.1f",
                        label,
                        result.returncode,
                        elapsed_ms,
                    )
                    return result
                retry_reason = "nonzero"

        log.debug("Retrying process %s (attempt %d, reason=%s)", label, attempt + 1, retry_reason)
        attempt += 1
        if policy.delay_seconds > 0:
            await asyncio.sleep(policy.delay_seconds)


async def run_exec_capture(
    executable: str,
    *args: str,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    input: bytes | None = None,
    timeout: float | None = None,
    retry_policy: ProcessRetryPolicy | None = None,
) -> ProcessResult:
    """Run an exec subprocess and capture stdout/stderr."""
    policy = (retry_policy or ProcessRetryPolicy()).normalized()
    return await _run_with_retries(
        lambda: spawn_exec(
            executable,
            *args,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        ),
        label=executable,
        input=input,
        timeout=timeout,
        policy=policy,
    )


async def run_shell_capture(
    command: str,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    retry_policy: ProcessRetryPolicy | None = None,
) -> ProcessResult:
    """Run a shell subprocess and capture stdout/stderr."""
    policy = (retry_policy or ProcessRetryPolicy()).normalized()
    return await _run_with_retries(
        lambda: spawn_shell(
            command,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        ),
        label="shell",
        input=None,
        timeout=timeout,
        policy=policy,
    )


def _build_nonzero_error(
    *,
    command: tuple[str, ...],
    result: ProcessResult,
    attempts: int,
) -> ProcessExecutionError:
    stderr_text = result.stderr_text().strip()
    stdout_text = result.stdout_text().strip()
    return ProcessExecutionError(
        code="PROCESS_NONZERO_EXIT",
        command=command,
        returncode=result.returncode,
        attempts=attempts,
        stdout=stdout_text or None,
        stderr=stderr_text or None,
        detail=stderr_text or stdout_text or "process exited with a non-zero status",
    )


async def run_exec_checked(
    executable: str,
    *args: str,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    input: bytes | None = None,
    timeout: float | None = None,
    retry_policy: ProcessRetryPolicy | None = None,
) -> ProcessResult:
    """Run exec subprocess and raise a structured error when execution fails."""
    policy = (retry_policy or ProcessRetryPolicy()).normalized()
    command = (executable, *args)
    try:
        result = await run_exec_capture(
            executable,
            *args,
            cwd=cwd,
            env=env,
            input=input,
            timeout=timeout,
            retry_policy=policy,
        )
    except TimeoutError as exc:
        raise ProcessExecutionError(
            code="PROCESS_TIMEOUT",
            command=command,
            timed_out=True,
            attempts=policy.max_attempts,
            detail=f"process execution exceeded timeout of {timeout}s",
        ) from exc
    except OSError as exc:
        raise ProcessExecutionError(
            code="PROCESS_OS_ERROR",
            command=command,
            attempts=policy.max_attempts,
            detail=str(exc),
        ) from exc

    if result.returncode != 0:
        raise _build_nonzero_error(command=command, result=result, attempts=policy.max_attempts)

    return result


__all__ = [
    "ProcessExecutionError",
    "ProcessResult",
    "ProcessRetryPolicy",
    "run_exec_capture",
    "run_exec_checked",
    "run_shell_capture",
    "spawn_exec",
    "spawn_shell",
]
