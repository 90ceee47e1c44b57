"""Tests for ralphdev.tasks.index: persistence, staleness and rebuild."""

from __future__ import annotations

import os

import pytest

from ralphdev.errors import ParseError
from ralphdev.io_utils import read_json, write_text
from ralphdev.tasks.document import write_task
from ralphdev.tasks.index import INDEX_VERSION, IndexManager, TaskIndex
from ralphdev.tasks.model import LanguageConfig, TaskStatus


def _age(path, seconds: int = 10) -> None:
    st = path.stat()
    os.utime(path, (st.st_atime - seconds, st.st_mtime - seconds))


class TestLoadSave:
    def test_missing_index_loads_empty(self, config):
        index = IndexManager(config).load()
        assert index.entries == {}
        assert index.version == INDEX_VERSION

    def test_save_writes_expected_shape(self, config, make_task):
        mgr = IndexManager(config)
        mgr.upsert(make_task("auth.login"))
        data = read_json(config.index_path)
        assert data["version"] == "1.0.0"
        assert data["updatedAt"]
        assert data["tasks"]["auth.login"]["filePath"] == "auth/login.md"
        assert data["metadata"] == {}

    def test_invalid_json_is_parse_error(self, config):
        config.tasks_dir.mkdir(parents=True)
        write_text(config.index_path, "{not json")
        with pytest.raises(ParseError):
            IndexManager(config).load()

    def test_metadata(self, config):
        mgr = IndexManager(config)
        mgr.update_metadata("Ship login", LanguageConfig(language="python", verify_commands=["pytest"]))
        index = mgr.load()
        assert index.metadata["projectGoal"] == "Ship login"
        assert index.language_config == LanguageConfig(language="python", verify_commands=["pytest"])

    def test_metadata_partial_update_keeps_other_keys(self, config):
        mgr = IndexManager(config)
        mgr.update_metadata("Goal", None)
        mgr.update_metadata(None, LanguageConfig(language="go"))
        assert mgr.load().metadata["projectGoal"] == "Goal"

    def test_remove(self, config, make_task):
        mgr = IndexManager(config)
        mgr.upsert(make_task("a.one"))
        mgr.remove("a.one")
        assert mgr.load().entries == {}


class TestStaleness:
    def test_no_docs_no_index_is_fresh(self, config):
        assert IndexManager(config).is_stale() is False

    def test_missing_index_with_docs_is_stale(self, config, make_task):
        write_task(config.tasks_dir / "a" / "one.md", make_task("a.one"))
        assert IndexManager(config).is_stale() is True

    def test_doc_missing_from_index_is_stale(self, config, make_task):
        mgr = IndexManager(config)
        t = make_task("a.one")
        write_task(config.tasks_dir / t.relative_path(), t)
        mgr.upsert(t)
        assert mgr.is_stale() is False
        write_task(config.tasks_dir / "a" / "two.md", make_task("a.two"))
        assert mgr.is_stale() is True

    def test_deleted_doc_is_stale(self, config, make_task):
        mgr = IndexManager(config)
        t = make_task("a.one")
        write_task(config.tasks_dir / t.relative_path(), t)
        mgr.upsert(t)
        (config.tasks_dir / t.relative_path()).unlink()
        assert mgr.is_stale() is True

    def test_newer_doc_is_stale(self, config, make_task):
        mgr = IndexManager(config)
        t = make_task("a.one")
        path = config.tasks_dir / t.relative_path()
        write_task(path, t)
        mgr.upsert(t)
        _age(config.index_path)
        assert mgr.is_stale() is True

    def test_fresh_rebuilds_with_edited_status(self, config, make_task):
        mgr = IndexManager(config)
        t = make_task("a.one")
        path = config.tasks_dir / t.relative_path()
        write_task(path, t)
        mgr.upsert(t)

        t.status = TaskStatus.BLOCKED
        write_task(path, t)
        _age(config.index_path)

        index = mgr.fresh()
        assert index.entries["a.one"].status == TaskStatus.BLOCKED
        assert mgr.is_stale() is False


class TestRebuild:
    def test_rebuild_matches_incremental(self, config, make_task):
        mgr = IndexManager(config)
        for tid in ("a.one", "a.two", "b.three"):
            t = make_task(tid, dependencies=["a.one"] if tid != "a.one" else [])
            t.created_at = f"2026-01-01T00:00:0{len(mgr.load().entries)}.000000Z"
            write_task(config.tasks_dir / t.relative_path(), t)
            mgr.upsert(t)
        incremental = mgr.load()

        rebuilt = mgr.rebuild()
        assert list(rebuilt.entries) == list(incremental.entries)
        assert rebuilt.entries == incremental.entries

    def test_rebuild_keeps_known_order_and_appends_new_by_created_at(self, config, make_task):
        mgr = IndexManager(config)
        for tid in ("z.last", "a.first"):
            t = make_task(tid)
            write_task(config.tasks_dir / t.relative_path(), t)
            mgr.upsert(t)

        late = make_task("m.late")
        late.created_at = "2026-03-01T00:00:00.000000Z"
        early = make_task("n.early")
        early.created_at = "2026-02-01T00:00:00.000000Z"
        for t in (late, early):
            write_task(config.tasks_dir / t.relative_path(), t)

        rebuilt = mgr.rebuild()
        assert list(rebuilt.entries) == ["z.last", "a.first", "n.early", "m.late"]

    def test_rebuild_preserves_metadata(self, config, make_task):
        mgr = IndexManager(config)
        mgr.update_metadata("Goal", None)
        t = make_task("a.one")
        write_task(config.tasks_dir / t.relative_path(), t)
        assert mgr.rebuild().metadata == {"projectGoal": "Goal"}

    def test_rebuild_drops_entries_without_documents(self, config, make_task):
        mgr = IndexManager(config)
        mgr.upsert(make_task("ghost.task"))
        assert mgr.rebuild().entries == {}

    def test_rebuild_surfaces_unreadable_document(self, config):
        (config.tasks_dir / "a").mkdir(parents=True)
        write_text(config.tasks_dir / "a" / "broken.md", "nope")
        with pytest.raises(ParseError):
            IndexManager(config).rebuild()

    def test_rebuild_rejects_duplicate_ids(self, config, make_task):
        t = make_task("a.one")
        write_task(config.tasks_dir / t.relative_path(), t)
        write_task(config.tasks_dir / "a" / "one-copy.md", t)
        with pytest.raises(ParseError) as exc:
            IndexManager(config).rebuild()
        assert exc.value.details["taskId"] == "a.one"
        assert len(exc.value.details["paths"]) == 2

    def test_to_dict_round_trip(self, config, make_task):
        index = TaskIndex(metadata={"projectGoal": "g"})
        mgr = IndexManager(config)
        mgr.save(index)
        assert mgr.load().metadata == {"projectGoal": "g"}
