"""Pytest fixtures for paw tests."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from hypothesis import Phase, Verbosity, settings

from paw.core.debug_log import teardown_logging

_TEST_BASE_DIR = Path(tempfile.mkdtemp(prefix="paw-tests-"))
os.environ["PAW_LOG_DIR"] = str(_TEST_BASE_DIR / "logs")

if TYPE_CHECKING:
    from collections.abc import Generator


settings.register_profile(
    "ci",
    max_examples=100,
    deadline=None,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)
settings.register_profile(
    "dev",
    max_examples=20,
    deadline=500,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep hook environment variables from the developer shell out of tests."""
    for key in ("PAW_DIR", "PAW_DEBUG", "PAW_STOP_HOOK", "SESSION_NAME", "WINDOW_ID", "TASK_NAME"):
        monkeypatch.delenv(key, raising=False)
    yield
    teardown_logging()


@pytest.fixture
def paw_dir(tmp_path: Path) -> Path:
    """A project directory with an empty ``.paw`` state directory."""
    directory = tmp_path / "project" / ".paw"
    (directory / "agents").mkdir(parents=True)
    (directory / "history").mkdir()
    return directory
