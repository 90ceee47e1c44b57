"""Tests for ralphdev.phase_sagas: breakdown, implement and deliver steps."""

from __future__ import annotations

from pathlib import Path

import pytest

from ralphdev import git_ops
from ralphdev.config import Config
from ralphdev.io_utils import read_json, read_text, write_text
from ralphdev.phase_sagas import GITIGNORE_HEADER, BreakdownSaga, DeliverSaga, ImplementSaga, saga_for_phase
from ralphdev.saga import SagaExecutor, SagaStep
from ralphdev.tasks.repository import TaskRepository


def _explode():
    raise RuntimeError("later step failed")


def _run_then_fail(config: Config, steps: list[SagaStep]):
    steps = steps + [SagaStep("explode", "always fails", _explode)]
    return SagaExecutor(config, name="test").execute(steps)


@pytest.fixture
def repo_config(git_repo: Path) -> Config:
    return Config(workspace_dir=str(git_repo))


class TestSagaForPhase:
    def test_phases_without_side_effects(self, config):
        assert saga_for_phase("clarify", config) == []
        assert saga_for_phase("heal", config) == []
        assert saga_for_phase("complete", config) == []

    def test_step_names(self, config):
        assert [s.name for s in saga_for_phase("breakdown", config)] == [
            "backup_existing_state", "initialize_tasks_directory", "create_task_index", "verify_gitignore",
        ]
        assert [s.name for s in saga_for_phase("implement", config)] == ["create_git_stash", "backup_task_states"]
        assert [s.name for s in saga_for_phase("deliver", config)] == ["create_feature_branch", "create_git_commit"]


class TestBreakdownSaga:
    def test_fresh_workspace(self, config):
        result = SagaExecutor(config).execute(BreakdownSaga(config).steps())
        assert result.success
        assert config.tasks_dir.is_dir()
        assert read_json(config.index_path)["tasks"] == {}
        gitignore = read_text(config.gitignore_path)
        assert GITIGNORE_HEADER in gitignore
        assert ".ralph-dev/state.json" in gitignore
        assert ".ralph-dev/saga.log" in gitignore

    def test_backs_up_existing_tasks(self, config, make_task):
        TaskRepository(config).create(make_task("a.one"))
        saga = BreakdownSaga(config)
        SagaExecutor(config).execute(saga.steps())
        assert (saga.backup_path / "a" / "one.md").exists()
        assert (saga.backup_path / "index.json").exists()

    def test_gitignore_not_duplicated(self, config):
        write_text(config.gitignore_path, "node_modules/")
        BreakdownSaga(config).verify_gitignore()
        BreakdownSaga(config).verify_gitignore()
        text = read_text(config.gitignore_path)
        assert text.startswith("node_modules/\n")
        assert text.count(GITIGNORE_HEADER) == 1
        assert text.count(".ralph-dev/state.json") == 1

    def test_rollback_removes_created_directory(self, config):
        result = _run_then_fail(config, BreakdownSaga(config).steps())
        assert result.rollback_successful
        assert not config.tasks_dir.exists()

    def test_rollback_keeps_preexisting_directory(self, config, make_task):
        TaskRepository(config).create(make_task("a.one"))
        result = _run_then_fail(config, BreakdownSaga(config).steps())
        assert result.rollback_successful
        assert (config.tasks_dir / "a" / "one.md").exists()

    def test_rollback_restores_preexisting_index(self, config, make_task):
        repo = TaskRepository(config)
        repo.init(project_goal="Ship OAuth")
        repo.create(make_task("a.one"))
        before = read_text(config.index_path)
        result = _run_then_fail(config, BreakdownSaga(config).steps())
        assert result.rollback_successful
        assert read_text(config.index_path) == before
        data = read_json(config.index_path)
        assert data["metadata"]["projectGoal"] == "Ship OAuth"
        assert "a.one" in data["tasks"]


class TestImplementSaga:
    def test_stash_and_restore(self, repo_config: Config):
        ws = repo_config.workspace
        write_text(ws / "README.md", "# Work in progress")
        saga = ImplementSaga(repo_config)
        saga.create_git_stash()
        assert read_text(ws / "README.md") == "# Test"
        assert git_ops.find_stash(saga.stash_name, cwd=ws) is not None

        saga.restore_git_stash()
        assert read_text(ws / "README.md") == "# Work in progress"

    def test_clean_tree_skips_stash(self, repo_config: Config):
        saga = ImplementSaga(repo_config)
        saga.create_git_stash()
        saga.restore_git_stash()
        assert git_ops.find_stash(saga.stash_name, cwd=repo_config.workspace) is None

    def test_state_dir_never_stashed(self, repo_config: Config, make_task):
        TaskRepository(repo_config).create(make_task("a.one"))
        saga = ImplementSaga(repo_config)
        saga.create_git_stash()
        assert git_ops.find_stash(saga.stash_name, cwd=repo_config.workspace) is None
        assert repo_config.index_path.exists()

    def test_outside_git_repo(self, config):
        ImplementSaga(config).create_git_stash()

    def test_index_restored_on_rollback(self, repo_config: Config, make_task):
        repo = TaskRepository(repo_config)
        repo.create(make_task("a.one"))
        before = read_text(repo_config.index_path)

        saga = ImplementSaga(repo_config)
        saga.backup_task_states()
        repo.start("a.one")
        saga.restore_task_states()
        assert read_text(repo_config.index_path) == before

    def test_full_rollback_reapplies_stash(self, repo_config: Config):
        ws = repo_config.workspace
        write_text(ws / "README.md", "# Dirty")
        result = _run_then_fail(repo_config, ImplementSaga(repo_config).steps())
        assert result.rollback_successful
        assert read_text(ws / "README.md") == "# Dirty"


class TestDeliverSaga:
    def test_feature_branch_from_default(self, repo_config: Config):
        ws = repo_config.workspace
        base = git_ops.current_branch(cwd=ws)
        saga = DeliverSaga(repo_config)
        saga.create_feature_branch()
        assert saga.created_branch.startswith("ralph-dev/feature-")
        assert git_ops.current_branch(cwd=ws) == saga.created_branch

        saga.remove_feature_branch()
        assert git_ops.current_branch(cwd=ws) == base
        assert not git_ops.branch_exists(saga.created_branch, cwd=ws)

    def test_no_branch_when_already_on_feature(self, repo_config: Config):
        git_ops.create_branch("my-feature", cwd=repo_config.workspace)
        saga = DeliverSaga(repo_config)
        saga.create_feature_branch()
        assert saga.created_branch is None
        assert git_ops.current_branch(cwd=repo_config.workspace) == "my-feature"

    def test_commit_checkpoint_and_reset(self, repo_config: Config):
        ws = repo_config.workspace
        head = git_ops.head_sha(cwd=ws)
        write_text(ws / "README.md", "# Delivered")
        saga = DeliverSaga(repo_config)
        saga.create_git_commit()
        assert saga.checkpoint == head
        saga.reset_to_checkpoint()
        assert read_text(ws / "README.md") == "# Test"

    def test_full_rollback(self, repo_config: Config):
        ws = repo_config.workspace
        base = git_ops.current_branch(cwd=ws)
        result = _run_then_fail(repo_config, DeliverSaga(repo_config).steps())
        assert result.completed_steps == ["create_feature_branch", "create_git_commit"]
        assert result.rollback_successful
        assert git_ops.current_branch(cwd=ws) == base
