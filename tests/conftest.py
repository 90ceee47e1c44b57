"""Shared fixtures for ralph-dev tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use ralphdev.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from ralphdev.config import ENV_STATE_DIR, ENV_WORKSPACE, Config
from ralphdev.io_utils import write_text
from ralphdev.tasks.model import Task
from ralphdev.tasks.repository import TaskRepository


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's shell settings out of the tests."""
    monkeypatch.delenv(ENV_WORKSPACE, raising=False)
    monkeypatch.delenv(ENV_STATE_DIR, raising=False)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo for testing."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "commit.gpgsign", "false"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config rooted at a throwaway workspace."""
    return Config(workspace_dir=str(tmp_path))


@pytest.fixture
def repo(config: Config) -> TaskRepository:
    return TaskRepository(config)


def _make_task(
    id: str,
    module: str = "",
    description: str = "",
    priority: int = 1,
    dependencies: list[str] | None = None,
    criteria: list[str] | None = None,
    estimated_minutes: int = 30,
) -> Task:
    return Task(
        id=id,
        module=module or id.split(".")[0],
        description=description or f"Task {id}",
        priority=priority,
        dependencies=dependencies or [],
        acceptance_criteria=criteria or [],
        estimated_minutes=estimated_minutes,
    )


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task
