"""Shared setup for paw commands: project resolution, logging and wiring."""

from __future__ import annotations

import os
import tomllib
from typing import TYPE_CHECKING

import click
from pydantic import ValidationError

from paw.core.bootstrap import create_app_context
from paw.core.constants import ENV_PAW_DEBUG, ENV_SESSION_NAME
from paw.core.debug_log import setup_logging
from paw.core.models.task import TaskNotFoundError
from paw.core.paths import find_paw_dir, get_log_path

if TYPE_CHECKING:
    from pathlib import Path

    from paw.core.bootstrap import AppContext
    from paw.core.models.task import TaskStore

session_option = click.option(
    "--session",
    "session_name",
    envvar=ENV_SESSION_NAME,
    default="",
    help="tmux session hosting the task windows",
)


def debug_enabled() -> bool:
    return os.environ.get(ENV_PAW_DEBUG) == "1"


def start_logging(paw_dir: Path | None, *, script: str, task: str = "") -> None:
    setup_logging(get_log_path(paw_dir), debug=debug_enabled(), script=script, task=task)


def require_paw_dir() -> Path:
    paw_dir = find_paw_dir()
    if paw_dir is None:
        raise click.ClickException(
            "No .paw directory found. Run inside a paw project or set PAW_DIR."
        )
    return paw_dir


def open_context(*, script: str, task: str = "", session_name: str = "") -> AppContext:
    """Resolve the project, start file logging, and load the config."""
    paw_dir = require_paw_dir()
    start_logging(paw_dir, script=script, task=task)
    try:
        return create_app_context(paw_dir, session_name=session_name)
    except (OSError, tomllib.TOMLDecodeError, ValidationError) as exc:
        raise click.ClickException(f"Invalid paw configuration: {exc}") from exc


def existing_store(app: AppContext, task_name: str) -> TaskStore:
    store = app.task_store(task_name)
    if not store.exists():
        raise TaskNotFoundError(task_name)
    return store


async def resolve_store(
    app: AppContext, *, script: str, window_id: str, task_name: str = ""
) -> TaskStore:
    """Find the task by name, else by the window it runs in."""
    if task_name:
        return existing_store(app, task_name)
    manager = await app.task_manager()
    store = app.task_store(manager.find_task_by_window_id(window_id).name)
    start_logging(app.paw_dir, script=script, task=store.name)
    return store
