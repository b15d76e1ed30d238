"""Path helpers for paw project state and user-level fallbacks."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_log_dir

from paw.core.constants import (
    AGENTS_DIR_NAME,
    CONFIG_FILE_NAME,
    ENV_PAW_DIR,
    HISTORY_DIR_NAME,
    LOG_FILE_NAME,
    MERGE_LOCK_FILE_NAME,
    PAW_DIR_NAME,
)


def get_log_dir() -> Path:
    """Get the user-level log directory used when no project is resolved."""
    override = os.environ.get("PAW_LOG_DIR")
    if override:
        return Path(override).resolve()
    return Path(user_log_dir("paw"))


def find_paw_dir(start: Path | None = None) -> Path | None:
    """Resolve the project ``.paw`` directory.

    ``PAW_DIR`` wins when set. Otherwise walk up from *start* (or the current
    directory) looking for a ``.paw`` directory.
    """
    override = os.environ.get(ENV_PAW_DIR)
    if override:
        return Path(override).resolve()

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        paw_dir = candidate / PAW_DIR_NAME
        if paw_dir.is_dir():
            return paw_dir
    return None


def get_agents_dir(paw_dir: Path) -> Path:
    return paw_dir / AGENTS_DIR_NAME


def get_agent_dir(paw_dir: Path, task_name: str) -> Path:
    return get_agents_dir(paw_dir) / task_name


def get_history_dir(paw_dir: Path) -> Path:
    return paw_dir / HISTORY_DIR_NAME


def get_project_config_path(paw_dir: Path) -> Path:
    return paw_dir / CONFIG_FILE_NAME


def get_log_path(paw_dir: Path | None) -> Path:
    """Return the log file for a project, or the user-level fallback."""
    if paw_dir is None:
        return get_log_dir() / LOG_FILE_NAME
    return paw_dir / LOG_FILE_NAME


def get_merge_lock_path(paw_dir: Path) -> Path:
    return paw_dir / MERGE_LOCK_FILE_NAME
