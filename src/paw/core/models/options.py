"""Per-task options persisted as ``<agentDir>/.options.json``."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from paw.core.models.enums import DependsOnCondition


class DependsOn(BaseModel):
    """Dependency descriptor attached to a task at creation."""

    task_name: str = ""
    condition: DependsOnCondition = DependsOnCondition.NONE

    @field_validator("condition", mode="before")
    @classmethod
    def _empty_condition_is_none(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DependsOnCondition.NONE
        if isinstance(value, str):
            return value.strip().lower()
        return value


class TaskOptions(BaseModel):
    """Task-level overrides of project settings."""

    model: str = Field(default="opus", description="Model the task agent runs with")
    ultrathink: bool = Field(default=False, description="Prefix the instruction with ultrathink")
    depends_on: DependsOn | None = None
    pre_worktree_hook: str = ""
    branch_name: str = ""
