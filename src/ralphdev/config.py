"""Configuration defaults, env vars, and workspace layout for ralph-dev."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path


STATE_DIR_NAME = ".ralph-dev"

ENV_WORKSPACE = "RALPH_DEV_WORKSPACE"
ENV_STATE_DIR = "RALPH_DEV_DIR"

# Files that must never be committed by the delivery phase.
TRANSIENT_FILES: tuple[str, ...] = (
    "state.json",
    "progress.log",
    "debug.log",
    "saga.log",
)


@dataclass
class Config:
    """Runtime configuration: where the workspace is and how its store is laid out."""

    workspace_dir: str = ""
    state_dir_name: str = ""
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.workspace_dir:
            self.workspace_dir = os.environ.get(ENV_WORKSPACE) or str(resolve_repo_root())
        if not self.state_dir_name:
            self.state_dir_name = os.environ.get(ENV_STATE_DIR) or STATE_DIR_NAME

    # ── derived paths ────────────────────────────────────────────

    @property
    def workspace(self) -> Path:
        return Path(self.workspace_dir)

    @property
    def state_dir(self) -> Path:
        return self.workspace / self.state_dir_name

    @property
    def tasks_dir(self) -> Path:
        return self.state_dir / "tasks"

    @property
    def index_path(self) -> Path:
        return self.tasks_dir / "index.json"

    @property
    def state_path(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def archive_dir(self) -> Path:
        return self.state_dir / "archive"

    @property
    def saga_log_path(self) -> Path:
        return self.state_dir / "saga.log"

    @property
    def backups_dir(self) -> Path:
        return self.state_dir / "backups"

    @property
    def gitignore_path(self) -> Path:
        return self.workspace / ".gitignore"


def resolve_repo_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
