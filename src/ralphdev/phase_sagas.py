"""Saga step lists for the phases that touch the filesystem or git."""

from __future__ import annotations

import shutil

from ralphdev import git_ops, log
from ralphdev.config import TRANSIENT_FILES, Config
from ralphdev.io_utils import atomic_write_text, read_text, write_text
from ralphdev.saga import SagaStep
from ralphdev.state import Phase
from ralphdev.tasks.index import IndexManager, TaskIndex
from ralphdev.timeutil import file_stamp

GITIGNORE_HEADER = "# ralph-dev transient files"


class BreakdownSaga:
    """Prepare a fresh tasks directory and index, backing up any previous one."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.stamp = file_stamp()
        self.backup_path = config.backups_dir / f"before-breakdown-{self.stamp}"
        self._created_tasks_dir = False
        self._previous_index: str | None = None
        self._wrote_index = False

    def steps(self) -> list[SagaStep]:
        return [
            SagaStep("backup_existing_state", "Back up existing tasks and index", self.backup_existing_state),
            SagaStep(
                "initialize_tasks_directory",
                "Create the tasks directory",
                self.initialize_tasks_directory,
                self.remove_tasks_directory,
            ),
            SagaStep("create_task_index", "Write an empty task index", self.create_task_index, self.remove_task_index),
            SagaStep("verify_gitignore", "Exclude transient files from git", self.verify_gitignore),
        ]

    def backup_existing_state(self) -> None:
        if not self.config.tasks_dir.exists():
            log.debug("No existing tasks to back up")
            return
        self.backup_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(self.config.tasks_dir, self.backup_path)
        log.info(f"Backed up tasks to {self.backup_path}")

    def initialize_tasks_directory(self) -> None:
        self._created_tasks_dir = not self.config.tasks_dir.exists()
        self.config.tasks_dir.mkdir(parents=True, exist_ok=True)

    def remove_tasks_directory(self) -> None:
        if self._created_tasks_dir and self.config.tasks_dir.exists():
            shutil.rmtree(self.config.tasks_dir)

    def create_task_index(self) -> None:
        path = self.config.index_path
        self._previous_index = read_text(path) if path.exists() else None
        IndexManager(self.config).save(TaskIndex())
        self._wrote_index = True

    def remove_task_index(self) -> None:
        if not self._wrote_index:
            return
        if self._previous_index is None:
            self.config.index_path.unlink(missing_ok=True)
        else:
            atomic_write_text(self.config.index_path, self._previous_index)

    def verify_gitignore(self) -> None:
        path = self.config.gitignore_path
        existing = read_text(path) if path.exists() else ""
        present = {line.strip() for line in existing.splitlines()}
        wanted = [f"{self.config.state_dir_name}/{name}" for name in TRANSIENT_FILES]
        missing = [entry for entry in wanted if entry not in present]
        if not missing:
            return
        block = ""
        if existing and not existing.endswith("\n"):
            block += "\n"
        if GITIGNORE_HEADER not in present:
            block += f"{GITIGNORE_HEADER}\n"
        block += "".join(f"{entry}\n" for entry in missing)
        write_text(path, existing + block)
        log.debug(f"Added {len(missing)} entries to {path}")


class ImplementSaga:
    """Stash uncommitted work and snapshot the task index before implementation."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.stamp = file_stamp()
        self.stash_name = f"ralph-dev-implement-{self.stamp}"
        self.index_backup = config.backups_dir / f"tasks-index-{self.stamp}.json"
        self._stashed = False

    def steps(self) -> list[SagaStep]:
        return [
            SagaStep("create_git_stash", "Stash uncommitted changes", self.create_git_stash, self.restore_git_stash),
            SagaStep(
                "backup_task_states",
                "Back up task index before execution",
                self.backup_task_states,
                self.restore_task_states,
            ),
        ]

    def create_git_stash(self) -> None:
        cwd = self.config.workspace
        if not git_ops.is_git_repo(cwd=cwd):
            log.debug("Not a git repository, skipping stash")
            return
        if not git_ops.has_dirty_worktree(cwd=cwd, exclude=self.config.state_dir_name):
            log.debug("Worktree clean, nothing to stash")
            return
        if not git_ops.stash_push_named(self.stash_name, cwd=cwd, exclude=self.config.state_dir_name):
            raise RuntimeError(f"Failed to stash changes as {self.stash_name}")
        self._stashed = True
        log.info(f"Stashed uncommitted changes as {self.stash_name}")

    def restore_git_stash(self) -> None:
        if not self._stashed:
            return
        cwd = self.config.workspace
        ref = git_ops.find_stash(self.stash_name, cwd=cwd)
        if ref is None:
            raise RuntimeError(f"Stash {self.stash_name} not found")
        if not git_ops.stash_pop(ref, cwd=cwd):
            raise RuntimeError(f"Failed to pop stash {ref} ({self.stash_name})")

    def backup_task_states(self) -> None:
        if not self.config.index_path.exists():
            log.debug("No task index to back up")
            return
        self.index_backup.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.config.index_path, self.index_backup)

    def restore_task_states(self) -> None:
        if self.index_backup.exists():
            shutil.copy2(self.index_backup, self.config.index_path)


class DeliverSaga:
    """Move work off the default branch and checkpoint HEAD before committing."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.stamp = file_stamp()
        self.created_branch: str | None = None
        self.previous_branch: str | None = None
        self.checkpoint: str | None = None

    def steps(self) -> list[SagaStep]:
        return [
            SagaStep(
                "create_feature_branch",
                "Create a feature branch when on the default branch",
                self.create_feature_branch,
                self.remove_feature_branch,
            ),
            SagaStep("create_git_commit", "Stage changes and record a checkpoint", self.create_git_commit, self.reset_to_checkpoint),
        ]

    def create_feature_branch(self) -> None:
        cwd = self.config.workspace
        branch = git_ops.current_branch(cwd=cwd)
        if branch != git_ops.default_branch(cwd=cwd):
            log.debug(f"Already on {branch}, no feature branch needed")
            return
        name = f"ralph-dev/feature-{self.stamp}"
        if not git_ops.create_branch(name, cwd=cwd):
            raise RuntimeError(f"Failed to create feature branch {name}")
        self.previous_branch = branch
        self.created_branch = name
        log.info(f"Created feature branch {name} from {branch}")

    def remove_feature_branch(self) -> None:
        if not self.created_branch:
            return
        cwd = self.config.workspace
        if not git_ops.checkout(self.previous_branch or "main", cwd=cwd):
            raise RuntimeError(f"Failed to check out {self.previous_branch}")
        if not git_ops.delete_branch(self.created_branch, force=True, cwd=cwd):
            raise RuntimeError(f"Failed to delete branch {self.created_branch}")

    def create_git_commit(self) -> None:
        cwd = self.config.workspace
        git_ops.add_all(cwd=cwd)
        self.checkpoint = git_ops.head_sha(cwd=cwd)

    def reset_to_checkpoint(self) -> None:
        if self.checkpoint:
            git_ops.reset_hard(self.checkpoint, cwd=self.config.workspace)


_PHASE_SAGAS = {
    Phase.BREAKDOWN: BreakdownSaga,
    Phase.IMPLEMENT: ImplementSaga,
    Phase.DELIVER: DeliverSaga,
}


def saga_for_phase(phase: str | Phase, config: Config) -> list[SagaStep]:
    """Step list for *phase*; phases without side effects get an empty list."""
    factory = _PHASE_SAGAS.get(Phase.parse(phase))
    return factory(config).steps() if factory else []
