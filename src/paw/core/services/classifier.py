"""Terminal transcript classification into task statuses.

Detection is an ordered list of pure rules over the transcript text, composed
first-match. Rules only look at the last response segment: the lines from the
most recent ``⏺`` turn-boundary glyph onwards. A transcript without that
glyph holds no agent response and matches no marker rule. An AI classifier with
the same shape (but async) runs when no rule matches.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

from paw.core.agents.claude import ClaudeError
from paw.core.agents.prompts import build_classification_prompt
from paw.core.constants import (
    ASK_USER_QUESTION,
    DONE_MARKER,
    DONE_MARKER_MAX_DISTANCE,
    IDLE_PATTERN_LINES,
    SEGMENT_MARKER,
    WAITING_MARKER,
    WAITING_MARKER_MAX_DISTANCE,
)
from paw.core.models.enums import TaskStatus

if TYPE_CHECKING:
    from paw.core.agents.claude import AgentClient
    from paw.core.config import ClassifierAttempt
    from paw.core.models.task import StatusRepository

log = logging.getLogger(__name__)

Rule: TypeAlias = Callable[[str], TaskStatus | None]

UI_DECORATION_CHARS = frozenset("╭╰│─├┤┬┴┼╮╯┌┐└┘")
EMPTY_PROMPTS = frozenset({"❯", ">"})
STATUS_LINE_MARKERS = ("bypass permissions", "shift+tab to cycle")
STATUS_LINE_PREFIX = "⏵⏵"
THINKING_COMPLETE_PREFIXES = ("✻ Brewed for", "✻ Cogitated for")


def split_lines(transcript: str) -> list[str]:
    """Split *transcript* into lines with trailing blank lines removed."""
    lines = transcript.split("\n")
    end = len(lines)
    while end > 0 and not lines[end - 1].strip():
        end -= 1
    return lines[:end]


def last_segment_start(lines: Sequence[str]) -> int:
    """Index of the last line opening a response segment, or -1 when there is none."""
    for index in range(len(lines) - 1, -1, -1):
        if lines[index].strip().startswith(SEGMENT_MARKER):
            return index
    return -1


def matches_marker(line: str, marker: str) -> bool:
    """A marker counts alone on its line or at the end after a prefix (``⏺ PAW_DONE``)."""
    stripped = line.strip()
    return stripped == marker or stripped.endswith(f" {marker}")


def find_marker(lines: Sequence[str], marker: str, max_distance: int) -> int:
    """Return the first line index holding *marker* near the end of the last segment."""
    segment = last_segment_start(lines)
    if segment < 0:
        return -1
    start = max(len(lines) - max_distance, segment)
    for index in range(start, len(lines)):
        if matches_marker(lines[index], marker):
            return index
    return -1


def is_ui_decoration(line: str) -> bool:
    return bool(line) and line[0] in UI_DECORATION_CHARS


def has_user_input_after(lines: Sequence[str], index: int) -> bool:
    """Whether the user submitted input after line *index* with no reply since.

    Input is a ``> text`` line, or non-decoration text following a bare ``>``
    prompt. A new ``⏺`` segment means any such input was already answered.
    """
    saw_prompt = False
    found_input = False
    for line in lines[index + 1 :]:
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith(SEGMENT_MARKER):
            return False
        if stripped == ">":
            saw_prompt = True
            continue
        if stripped.startswith("> "):
            found_input = True
            continue
        if saw_prompt and not is_ui_decoration(stripped):
            found_input = True
            saw_prompt = False
    return found_input


def has_waiting_marker(transcript: str) -> bool:
    lines = split_lines(transcript)
    return find_marker(lines, WAITING_MARKER, WAITING_MARKER_MAX_DISTANCE) >= 0


def has_ask_user_question(transcript: str) -> bool:
    lines = split_lines(transcript)
    segment = last_segment_start(lines)
    if segment < 0:
        return False
    return any(line.strip().startswith(ASK_USER_QUESTION) for line in lines[segment:])


def has_done_marker(transcript: str) -> bool:
    """Whether a non-stale done marker closes the last segment."""
    lines = split_lines(transcript)
    index = find_marker(lines, DONE_MARKER, DONE_MARKER_MAX_DISTANCE)
    if index < 0:
        return False
    return not has_user_input_after(lines, index)


def is_idle_prompt(transcript: str) -> bool:
    """Cheap check for an agent sitting idle at its input prompt."""
    lines = split_lines(transcript)
    if len(lines) < 2:
        return False

    empty_prompt = status_line = thinking_complete = False
    for line in lines[-IDLE_PATTERN_LINES:]:
        stripped = line.strip()
        if stripped in EMPTY_PROMPTS:
            empty_prompt = True
        if stripped.startswith(STATUS_LINE_PREFIX) or any(
            marker in stripped for marker in STATUS_LINE_MARKERS
        ):
            status_line = True
        if stripped.startswith(THINKING_COMPLETE_PREFIXES):
            thinking_complete = True

    return empty_prompt and (thinking_complete or status_line)


def tail(text: str, max_len: int) -> str:
    if max_len <= 0 or len(text) <= max_len:
        return text
    return text[-max_len:]


def waiting_marker_rule(transcript: str) -> TaskStatus | None:
    return TaskStatus.WAITING if has_waiting_marker(transcript) else None


def ask_user_question_rule(transcript: str) -> TaskStatus | None:
    return TaskStatus.WAITING if has_ask_user_question(transcript) else None


def done_marker_rule(transcript: str) -> TaskStatus | None:
    return TaskStatus.DONE if has_done_marker(transcript) else None


def idle_prompt_rule(transcript: str) -> TaskStatus | None:
    return TaskStatus.DONE if is_idle_prompt(transcript) else None


# Waiting wins over done: a fresh question outranks an older completion marker.
MARKER_RULES: tuple[Rule, ...] = (waiting_marker_rule, ask_user_question_rule, done_marker_rule)
RULES: tuple[Rule, ...] = (*MARKER_RULES, idle_prompt_rule)


def parse_decision(output: str) -> TaskStatus | None:
    """Map a free-text model answer onto WORKING or DONE."""
    upper = output.strip().strip("`\"' \t\r\n").upper()
    if upper.startswith("WORKING"):
        return TaskStatus.WORKING
    if upper.startswith("DONE"):
        return TaskStatus.DONE
    if "WORKING" in upper:
        return TaskStatus.WORKING
    if "DONE" in upper:
        return TaskStatus.DONE
    return None


class ClassificationError(RuntimeError):
    """Raised when every AI classification attempt failed."""


@dataclass(frozen=True, slots=True)
class AIDecision:
    status: TaskStatus
    attempt: int
    model: str


class AIClassifier:
    """Escalating one-shot classification through the coding agent CLI.

    Each attempt uses a stronger model and a longer timeout. Failures, timeouts
    and unparseable answers move on to the next attempt.
    """

    def __init__(self, agent: AgentClient, attempts: Sequence[ClassifierAttempt]) -> None:
        self.agent = agent
        self.attempts = tuple(attempts)

    async def classify(self, task_name: str, transcript: str) -> AIDecision:
        prompt = build_classification_prompt(task_name, transcript)
        total = len(self.attempts)
        last_error = "no classification attempts configured"

        for number, attempt in enumerate(self.attempts, start=1):
            label = f"{attempt.model} (thinking)" if attempt.thinking else attempt.model
            log.debug(
                "Classification attempt %d/%d: model=%s timeout=%ss",
                number,
                total,
                label,
                attempt.timeout,
            )
            try:
                output = await self.agent.run_prompt(
                    prompt,
                    model=attempt.model,
                    thinking=attempt.thinking,
                    timeout=attempt.timeout,
                )
            except ClaudeError as exc:
                last_error = str(exc)
                log.debug("Classification attempt %d failed: %s", number, exc)
                continue

            status = parse_decision(output)
            if status is None:
                last_error = f"unrecognized classifier output: {output!r}"
                log.info("Classification attempt %d unparseable (%r); escalating", number, output)
                continue

            log.info("Classified %s as %s with %s (attempt %d)", task_name, status, label, number)
            return AIDecision(status=status, attempt=number, model=label)

        raise ClassificationError(last_error)


@dataclass(frozen=True, slots=True)
class Classification:
    """Resolved status and what decided it."""

    status: TaskStatus
    source: str
    attempt: int | None = None


class StatusClassifier:
    """Signal file, then rules, then the AI fallback, then ``working``."""

    def __init__(self, ai: AIClassifier | None = None, rules: Sequence[Rule] = RULES) -> None:
        self.ai = ai
        self.rules = tuple(rules)

    async def classify(
        self,
        task_name: str,
        transcript: str,
        *,
        store: StatusRepository | None = None,
    ) -> Classification:
        if store is not None:
            signal = store.consume_status_signal()
            if signal is not None:
                log.info("Task %s reported %s through its signal file", task_name, signal)
                return Classification(status=signal, source="signal")

        for rule in self.rules:
            status = rule(transcript)
            if status is not None:
                log.info("Task %s matched %s: %s", task_name, rule.__name__, status)
                return Classification(status=status, source=rule.__name__)

        if self.ai is None:
            return Classification(status=TaskStatus.WORKING, source="default")

        try:
            decision = await self.ai.classify(task_name, transcript)
        except ClassificationError as exc:
            log.warning("Classification failed for %s, assuming working: %s", task_name, exc)
            return Classification(status=TaskStatus.WORKING, source="default")
        return Classification(status=decision.status, source="ai", attempt=decision.attempt)


__all__ = [
    "AIClassifier",
    "AIDecision",
    "Classification",
    "ClassificationError",
    "MARKER_RULES",
    "RULES",
    "Rule",
    "StatusClassifier",
    "ask_user_question_rule",
    "done_marker_rule",
    "find_marker",
    "has_ask_user_question",
    "has_done_marker",
    "has_user_input_after",
    "has_waiting_marker",
    "idle_prompt_rule",
    "is_idle_prompt",
    "is_ui_decoration",
    "last_segment_start",
    "matches_marker",
    "parse_decision",
    "split_lines",
    "tail",
    "waiting_marker_rule",
]
