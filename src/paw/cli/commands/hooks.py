"""Hook commands invoked by the coding agent.

Hooks must never block the agent: missing context, a vanished pane, or any
failure while classifying ends the command quietly with status 0. Failures are
still written to the project log.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, TypeAlias

import click

from paw.cli.runtime import start_logging
from paw.core.bootstrap import create_app_context
from paw.core.constants import PAW_DIR_NAME
from paw.core.models.enums import TaskStatus
from paw.core.paths import find_paw_dir
from paw.core.services.hooks import HookContext, HookHandler, stop_hook_guarded

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

    from paw.core.bootstrap import AppContext
    from paw.core.services.classifier import StatusClassifier

log = logging.getLogger(__name__)

HookMain: TypeAlias = "Callable[[HookContext], Coroutine[Any, Any, object]]"


def _load_context(script: str) -> HookContext | None:
    env = os.environ
    if stop_hook_guarded(env):
        return None
    context = HookContext.from_env(env)
    if context is None:
        return None
    start_logging(context.paw_dir or find_paw_dir(), script=script, task=context.task_name)
    return context


def _hook_app(context: HookContext) -> AppContext:
    # Without a project the config falls back to defaults and only the window is renamed.
    paw_dir = context.paw_dir or find_paw_dir() or Path.cwd() / PAW_DIR_NAME
    return create_app_context(paw_dir, session_name=context.session_name)


def _handler(
    context: HookContext, app: AppContext, classifier: StatusClassifier | None = None
) -> HookHandler:
    settings = app.config.classifier
    return HookHandler(
        context,
        tmux=app.tmux,
        updater=app.updater,
        classifier=classifier,
        capture_lines=settings.pane_capture_lines,
        summary_max_len=settings.summary_max_len,
    )


async def _run_stop(context: HookContext) -> None:
    app = _hook_app(context)
    await _handler(context, app, app.classifier()).handle_stop()


async def _run_status(context: HookContext, *, status: TaskStatus, source: str) -> None:
    app = _hook_app(context)
    await _handler(context, app).handle_status(status, source=source)


def run_quietly(script: str, main: HookMain) -> None:
    context = _load_context(script)
    if context is None:
        return
    try:
        asyncio.run(main(context))
    except Exception:
        log.exception("%s failed for %s", script, context.task_name)


@click.command(name="stop-hook")
def stop_hook() -> None:
    """Classify the end of an agent turn and update the task window."""
    run_quietly("stop-hook", _run_stop)


@click.command(name="user-prompt-hook")
def user_prompt_hook() -> None:
    """Mark the task working when the user submits a prompt."""
    run_quietly(
        "user-prompt-hook",
        partial(_run_status, status=TaskStatus.WORKING, source="user-prompt-hook"),
    )


@click.command(name="ask-user-hook")
@click.option(
    "--phase",
    type=click.Choice(["pre", "post"]),
    required=True,
    help="pre: a question is shown to the user; post: the user answered",
)
def ask_user_hook(phase: str) -> None:
    """Track AskUserQuestion prompts: waiting while asked, working once answered."""
    status = TaskStatus.WAITING if phase == "pre" else TaskStatus.WORKING
    run_quietly(
        "ask-user-hook",
        partial(_run_status, status=status, source=f"ask-user-{phase}"),
    )
