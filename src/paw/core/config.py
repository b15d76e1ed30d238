"""Configuration loader for paw projects."""

from __future__ import annotations

import asyncio
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Literal, TypeAlias

import tomlkit
from pydantic import BaseModel, Field, field_validator

from paw.core.constants import (
    CONFLICT_RESOLUTION_TIMEOUT,
    DEPENDENCY_POLL_INTERVAL,
    HOOK_TIMEOUT,
    MERGE_LOCK_MAX_RETRIES,
    MERGE_LOCK_RETRY_INTERVAL,
    PANE_CAPTURE_LINES,
    SEND_INPUT_MAX_ATTEMPTS,
    SUMMARY_MAX_LEN,
)
from paw.core.paths import get_project_config_path


def atomic_write(path: Path, content: str) -> None:
    """Write file atomically to avoid partial/corrupt writes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        Path(tmp_path).replace(path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


WorkModeLiteral: TypeAlias = Literal["worktree", "same"]
WORK_MODE_VALUES = frozenset({"worktree", "same"})


class GeneralConfig(BaseModel):
    """General project settings."""

    main_branch: str | None = Field(
        default=None, description="Integration branch; detected from the repository when unset"
    )
    work_mode: WorkModeLiteral = Field(
        default="worktree",
        description="Isolate each task in its own git worktree, or share the project tree",
    )
    pre_merge_hook: str | None = Field(
        default=None, description="Shell command run in the worktree before merging"
    )
    post_merge_hook: str | None = Field(
        default=None, description="Shell command run in the project after a successful merge"
    )

    @field_validator("work_mode", mode="before")
    @classmethod
    def validate_work_mode(cls, value: object) -> str:
        if value is None:
            return "worktree"
        normalized = str(value).strip().lower()
        if normalized not in WORK_MODE_VALUES:
            options = ", ".join(sorted(WORK_MODE_VALUES))
            raise ValueError(f"work_mode must be one of: {options}")
        return normalized


class MergeConfig(BaseModel):
    """Merge lock and conflict resolution settings."""

    lock_max_retries: int = Field(default=MERGE_LOCK_MAX_RETRIES, ge=1)
    lock_retry_interval: float = Field(default=MERGE_LOCK_RETRY_INTERVAL, ge=0)
    conflict_model: str = Field(default="opus", description="Model used to resolve conflicts")
    conflict_timeout: float = Field(default=CONFLICT_RESOLUTION_TIMEOUT, gt=0)
    hook_timeout: float = Field(
        default=HOOK_TIMEOUT, gt=0, description="Deadline for pre and post merge hooks"
    )


class ClassifierAttempt(BaseModel):
    """One step of the AI classification escalation chain."""

    model: str
    thinking: bool = False
    timeout: float = Field(gt=0)


def _default_attempts() -> list[ClassifierAttempt]:
    return [
        ClassifierAttempt(model="haiku", timeout=60.0),
        ClassifierAttempt(model="sonnet", timeout=120.0),
        ClassifierAttempt(model="opus", timeout=180.0),
        ClassifierAttempt(model="opus", thinking=True, timeout=240.0),
    ]


class ClassifierConfig(BaseModel):
    """Status classification settings."""

    pane_capture_lines: int = Field(default=PANE_CAPTURE_LINES, ge=1)
    summary_max_len: int = Field(default=SUMMARY_MAX_LEN, ge=1)
    attempts: list[ClassifierAttempt] = Field(default_factory=_default_attempts)


class DependencyConfig(BaseModel):
    """Dependency waiter settings."""

    poll_interval: float = Field(default=DEPENDENCY_POLL_INTERVAL, gt=0)


class RecoveryConfig(BaseModel):
    """Stdin-injection recovery settings."""

    send_max_attempts: int = Field(default=SEND_INPUT_MAX_ATTEMPTS, ge=1)


class PawConfig(BaseModel):
    """Root configuration model."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    dependencies: DependencyConfig = Field(default_factory=DependencyConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)

    @classmethod
    def load(cls, paw_dir: Path | None = None, *, config_path: Path | None = None) -> PawConfig:
        """Load configuration from TOML file or use defaults."""
        if config_path is None:
            if paw_dir is None:
                return cls()
            config_path = get_project_config_path(paw_dir)

        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls.model_validate(data)

        return cls()

    @property
    def use_worktree(self) -> bool:
        return self.general.work_mode == "worktree"

    async def save(self, path: Path) -> None:
        """Serialize current config to TOML file.

        Args:
            path: Path to write config file (created if missing)
        """
        doc = tomlkit.document()

        for section_name in ("general", "merge", "classifier", "dependencies", "recovery"):
            section: BaseModel = getattr(self, section_name)
            table = tomlkit.table()
            for key, value in section.model_dump().items():
                if value is None:
                    continue
                if key == "attempts":
                    attempts = tomlkit.aot()
                    for attempt in value:
                        attempt_table = tomlkit.table()
                        for attempt_key, attempt_value in attempt.items():
                            attempt_table[attempt_key] = attempt_value
                        attempts.append(attempt_table)
                    table[key] = attempts
                    continue
                table[key] = value
            doc[section_name] = table

        content = tomlkit.dumps(doc)
        await asyncio.to_thread(atomic_write, path, content)
