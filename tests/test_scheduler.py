"""Tests for ralphdev.scheduler: dependency resolution over the index."""

from __future__ import annotations

from ralphdev.scheduler import DependencyResolver
from ralphdev.tasks.model import IndexEntry, TaskStatus


# ── Helpers ─────────────────────────────────────────────────────────


def _e(
    id: str,
    status: TaskStatus = TaskStatus.PENDING,
    priority: int = 1,
    deps: list[str] | None = None,
) -> IndexEntry:
    return IndexEntry(
        id=id,
        status=status,
        priority=priority,
        module=id.split(".")[0],
        dependencies=deps or [],
    )


# ═══════════════════════════════════════════════════════════════════
#  State queries
# ═══════════════════════════════════════════════════════════════════


class TestResolverState:
    def test_status_lookup(self):
        r = DependencyResolver([_e("a.one", TaskStatus.FAILED)])
        assert r.status("a.one") == TaskStatus.FAILED
        assert r.status("missing") is None

    def test_counts(self):
        r = DependencyResolver([
            _e("a.one", TaskStatus.COMPLETED),
            _e("a.two"),
            _e("a.three"),
        ])
        assert r.count(TaskStatus.COMPLETED) == 1
        assert r.count(TaskStatus.PENDING) == 2
        assert r.count(TaskStatus.BLOCKED) == 0


# ═══════════════════════════════════════════════════════════════════
#  Dependencies
# ═══════════════════════════════════════════════════════════════════


class TestDependencies:
    def test_completed_dep_satisfies(self):
        r = DependencyResolver([
            _e("a.one", TaskStatus.COMPLETED),
            _e("a.two", deps=["a.one"]),
        ])
        assert r.deps_satisfied("a.two")
        assert r.blocking_dependencies("a.two") == []

    def test_in_progress_dep_blocks(self):
        r = DependencyResolver([
            _e("a.one", TaskStatus.IN_PROGRESS),
            _e("a.two", deps=["a.one"]),
        ])
        assert r.blocking_dependencies("a.two") == ["a.one"]
        assert not r.is_ready("a.two")

    def test_missing_dep_blocks(self):
        r = DependencyResolver([_e("a.two", deps=["ghost.task"])])
        assert r.blocking_dependencies("a.two") == ["ghost.task"]

    def test_failed_deps_detected(self):
        r = DependencyResolver([
            _e("a.one", TaskStatus.FAILED),
            _e("a.two", deps=["a.one"]),
            _e("a.three"),
        ])
        assert r.has_failed_deps("a.two")
        assert not r.has_failed_deps("a.three")
        assert not r.has_failed_deps("missing")

    def test_unknown_task_has_no_blockers(self):
        assert DependencyResolver([]).blocking_dependencies("nope") == []


# ═══════════════════════════════════════════════════════════════════
#  Ready tasks
# ═══════════════════════════════════════════════════════════════════


class TestReady:
    def test_only_workable_statuses(self):
        r = DependencyResolver([
            _e("a.pending"),
            _e("a.running", TaskStatus.IN_PROGRESS),
            _e("a.done", TaskStatus.COMPLETED),
            _e("a.failed", TaskStatus.FAILED),
            _e("a.blocked", TaskStatus.BLOCKED),
        ])
        assert set(r.ready_ids()) == {"a.pending", "a.running"}

    def test_priority_first_then_creation_order(self):
        r = DependencyResolver([
            _e("m.c", priority=3),
            _e("m.b", priority=1),
            _e("m.a", priority=1),
            _e("m.d", priority=2),
        ])
        assert r.ready_ids() == ["m.b", "m.a", "m.d", "m.c"]

    def test_blocked_urgent_task_skipped(self):
        r = DependencyResolver([
            _e("a.base", priority=9),
            _e("a.urgent", priority=1, deps=["a.base"]),
        ])
        assert r.ready_ids() == ["a.base"]

    def test_empty(self):
        assert DependencyResolver([]).ready_ids() == []


# ═══════════════════════════════════════════════════════════════════
#  Diagnostics
# ═══════════════════════════════════════════════════════════════════


class TestDiagnostics:
    def test_deadlock_when_pending_work_cannot_start(self):
        r = DependencyResolver([
            _e("a.one", TaskStatus.FAILED),
            _e("a.two", deps=["a.one"]),
        ])
        assert r.check_deadlock()

    def test_no_deadlock_while_work_in_progress(self):
        r = DependencyResolver([
            _e("a.one", TaskStatus.IN_PROGRESS),
            _e("a.two", deps=["a.one"]),
        ])
        assert not r.check_deadlock()

    def test_no_deadlock_when_all_done(self):
        r = DependencyResolver([_e("a.one", TaskStatus.COMPLETED)])
        assert not r.check_deadlock()

    def test_explain_block(self):
        r = DependencyResolver([
            _e("auth.api"),
            _e("auth.ui", deps=["auth.api", "auth.db"]),
        ])
        assert r.explain_block("auth.ui") == "auth.api (pending) auth.db (missing)"

    def test_explain_ready_task_is_empty(self):
        r = DependencyResolver([_e("a.one")])
        assert r.explain_block("a.one") == ""
