"""Process liveness checks used to detect stale lock holders."""

from __future__ import annotations

import os

import psutil


def _pid_exists_signal(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def pid_exists(pid: int) -> bool:
    """Return whether *pid* appears to refer to a live process."""
    if pid <= 0:
        return False
    try:
        return psutil.pid_exists(pid)
    except psutil.Error:
        return _pid_exists_signal(pid)
