"""File logging for short-lived hook and lifecycle processes.

Every paw command runs as its own process, so each invocation appends to the
shared ``<pawDir>/log`` file tagged with the command (script) and task name.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(paw_script)s] [%(paw_task)s] %(name)s: %(message)s"


class _ContextFilter(logging.Filter):
    """Attach script/task context to every record passing through the handler."""

    def __init__(self, script: str, task: str) -> None:
        super().__init__()
        self.script = script
        self.task = task

    def filter(self, record: logging.LogRecord) -> bool:
        record.paw_script = self.script
        record.paw_task = self.task or "-"
        return True


_handler: logging.Handler | None = None


def setup_logging(
    log_path: Path,
    *,
    debug: bool = False,
    script: str = "paw",
    task: str = "",
) -> logging.Handler | None:
    """Install the file handler on the root logger.

    This is idempotent - later calls only update the script/task context.
    Returns ``None`` when the log file cannot be opened; logging then stays
    unconfigured rather than failing the hook.
    """
    global _handler

    if _handler is not None:
        for existing in _handler.filters:
            if isinstance(existing, _ContextFilter):
                existing.script = script
                existing.task = task
        return _handler

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        return None

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(_ContextFilter(script, task))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    _handler = handler
    log.debug("Logging initialized path=%s", log_path)
    return handler


def teardown_logging() -> None:
    """Detach and close the file handler installed by :func:`setup_logging`."""
    global _handler

    if _handler is None:
        return
    logging.getLogger().removeHandler(_handler)
    _handler.close()
    _handler = None
