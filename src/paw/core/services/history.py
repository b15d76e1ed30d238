"""Task history: status transition log and completed/cancelled task records."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from paw.core.agents.claude import ClaudeError
from paw.core.config import atomic_write
from paw.core.constants import STATUS_HISTORY_DIR_NAME

if TYPE_CHECKING:
    from paw.core.agents.claude import AgentClient
    from paw.core.models.enums import TaskStatus

log = logging.getLogger(__name__)

CANCELLED_SUFFIX = ".cancelled"
TIMESTAMP_FORMAT = "%y%m%d_%H%M%S"
# "YYMMDD_HHMMSS_"
TIMESTAMP_PREFIX_LEN = 14

TASK_SECTION = "---task---"
SUMMARY_SECTION = "---summary---"
CAPTURE_SECTION = "---capture---"

SUMMARY_MODEL = "haiku"
SUMMARY_TIMEOUT = 15.0
SUMMARY_INPUT_MAX_LEN = 8000
SUMMARY_PROMPT = """\
The terminal output below comes from a finished development task. Summarize
the work in 3-5 lines: what changed, which files or features were touched, and
whether it succeeded.

Terminal output:
{capture}

Reply with the summary text only, without a heading.
"""


def is_cancelled(history_file: Path) -> bool:
    return history_file.name.endswith(CANCELLED_SUFFIX)


def extract_task_name(history_file: Path) -> str:
    """Return the task name encoded in ``YYMMDD_HHMMSS_<task>[.cancelled]``."""
    base = history_file.name.removesuffix(CANCELLED_SUFFIX)
    if len(base) > TIMESTAMP_PREFIX_LEN:
        return base[TIMESTAMP_PREFIX_LEN:]
    return base


def parse_task_content(text: str) -> str:
    """Extract the task section from a history record."""
    text = text.removeprefix(f"{TASK_SECTION}\n")
    for section in (SUMMARY_SECTION, CAPTURE_SECTION):
        index = text.find(f"\n{section}\n")
        if index != -1:
            return text[:index]
    return text


class HistoryService:
    """Reads and writes ``<pawDir>/history``."""

    def __init__(self, history_dir: Path, agent: AgentClient | None = None) -> None:
        self.history_dir = history_dir
        self._agent = agent

    @property
    def status_dir(self) -> Path:
        return self.history_dir / STATUS_HISTORY_DIR_NAME

    def status_log_path(self, task_name: str) -> Path:
        return self.status_dir / f"{task_name}.jsonl"

    def record_status_transition(
        self,
        task_name: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        *,
        source: str,
        detail: str = "",
        valid: bool,
    ) -> None:
        """Append one JSON line describing a status change."""
        record = {
            "ts": datetime.now().astimezone().isoformat(),
            "task": task_name,
            "from": str(from_status),
            "to": str(to_status),
            "source": source,
            "detail": detail,
            "valid": valid,
        }
        self.status_dir.mkdir(parents=True, exist_ok=True)
        with self.status_log_path(task_name).open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False) + "\n")

    def read_status_transitions(self, task_name: str) -> list[dict[str, object]]:
        path = self.status_log_path(task_name)
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        records: list[dict[str, object]] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                log.warning("Skipping malformed status history line in %s", path)
        return records

    async def generate_summary(self, capture: str) -> str:
        """Summarize a task transcript with a cheap model; ``""`` on failure."""
        if self._agent is None or not capture.strip():
            return ""
        prompt = SUMMARY_PROMPT.format(capture=capture[-SUMMARY_INPUT_MAX_LEN:])
        try:
            return await self._agent.run_prompt(
                prompt, model=SUMMARY_MODEL, timeout=SUMMARY_TIMEOUT
            )
        except ClaudeError as exc:
            log.warning("Failed to generate summary: %s", exc)
            return ""

    async def save_completed(self, task_name: str, content: str, capture: str) -> Path:
        return await self._save(task_name, content, capture, cancelled=False)

    async def save_cancelled(self, task_name: str, content: str, capture: str) -> Path:
        return await self._save(task_name, content, capture, cancelled=True)

    async def _save(self, task_name: str, content: str, capture: str, *, cancelled: bool) -> Path:
        if not capture:
            raise ValueError("empty pane capture")
        summary = await self.generate_summary(capture)

        body = (
            f"{TASK_SECTION}\n{content}\n"
            f"{SUMMARY_SECTION}\n{summary}\n"
            f"{CAPTURE_SECTION}\n{capture}"
        )
        filename = f"{datetime.now().strftime(TIMESTAMP_FORMAT)}_{task_name}"
        if cancelled:
            filename += CANCELLED_SUFFIX
        path = self.history_dir / filename
        atomic_write(path, body)
        log.debug(
            "Task history saved (%s): %s", "cancelled" if cancelled else "completed", path
        )
        return path

    def list_history_files(self) -> list[Path]:
        """Return history records, newest first."""
        try:
            entries = [
                entry
                for entry in self.history_dir.iterdir()
                if entry.is_file() and not entry.name.startswith(".")
            ]
        except FileNotFoundError:
            return []
        return sorted(entries, key=lambda entry: entry.name, reverse=True)

    def find_latest(self, task_name: str) -> Path | None:
        for path in self.list_history_files():
            if extract_task_name(path) == task_name:
                return path
        return None

    def load_task_content(self, history_file: Path) -> str:
        return parse_task_content(history_file.read_text(encoding="utf-8"))
