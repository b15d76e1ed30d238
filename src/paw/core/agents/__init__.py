"""Coding-agent client and prompt builders for paw."""

from __future__ import annotations

from paw.core.agents.claude import AgentClient, ClaudeClient, ClaudeError, is_shell_command
from paw.core.agents.prompts import (
    build_auto_resolve_prompt,
    build_classification_prompt,
    build_conflict_resolution_prompt,
    build_task_instruction,
)

__all__ = [
    "AgentClient",
    "ClaudeClient",
    "ClaudeError",
    "build_auto_resolve_prompt",
    "build_classification_prompt",
    "build_conflict_resolution_prompt",
    "build_task_instruction",
    "is_shell_command",
]
