"""Dependency resolution over the task index."""

from __future__ import annotations

from collections.abc import Iterable

from ralphdev.tasks.model import IndexEntry, TaskStatus

# Statuses a caller may pick up work from.
WORKABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


class DependencyResolver:
    """Read-only view of task readiness built from index projections.

    Usage::

        resolver = DependencyResolver(index.entries.values())
        resolver.ready_ids()            # workable tasks with every dep completed
        resolver.blocking_dependencies(tid)
        resolver.explain_block(tid)     # "auth.api (pending) auth.db (missing)"

    Entries must be given in creation order; ties in priority keep it.
    """

    def __init__(self, entries: Iterable[IndexEntry]) -> None:
        self._entries: dict[str, IndexEntry] = {}
        self._order: dict[str, int] = {}
        for pos, entry in enumerate(entries):
            self._entries[entry.id] = entry
            self._order[entry.id] = pos

    # ── state queries ────────────────────────────────────────────

    def status(self, task_id: str) -> TaskStatus | None:
        entry = self._entries.get(task_id)
        return entry.status if entry else None

    def count(self, status: TaskStatus) -> int:
        return sum(1 for e in self._entries.values() if e.status == status)

    # ── dependency checks ────────────────────────────────────────

    def blocking_dependencies(self, task_id: str) -> list[str]:
        """Dependencies of *task_id* that are missing or not completed."""
        entry = self._entries.get(task_id)
        if entry is None:
            return []
        return [dep for dep in entry.dependencies if self.status(dep) != TaskStatus.COMPLETED]

    def deps_satisfied(self, task_id: str) -> bool:
        return not self.blocking_dependencies(task_id)

    def has_failed_deps(self, task_id: str) -> bool:
        entry = self._entries.get(task_id)
        if entry is None:
            return False
        return any(self.status(dep) == TaskStatus.FAILED for dep in entry.dependencies)

    def is_ready(self, task_id: str) -> bool:
        return self.status(task_id) in WORKABLE_STATUSES and self.deps_satisfied(task_id)

    # ── ready tasks ──────────────────────────────────────────────

    def ready_ids(self) -> list[str]:
        """Ready task IDs, most urgent first, ties in creation order."""
        ready = [tid for tid in self._entries if self.is_ready(tid)]
        ready.sort(key=lambda tid: (self._entries[tid].priority, self._order[tid]))
        return ready

    # ── diagnostics ──────────────────────────────────────────────

    def check_deadlock(self) -> bool:
        """Return ``True`` if pending work exists but none of it can start."""
        return (
            self.count(TaskStatus.PENDING) > 0
            and self.count(TaskStatus.IN_PROGRESS) == 0
            and not self.ready_ids()
        )

    def explain_block(self, task_id: str) -> str:
        """Human-readable explanation of why *task_id* is blocked."""
        parts = []
        for dep in self.blocking_dependencies(task_id):
            st = self.status(dep)
            parts.append(f"{dep} ({st.value if st else 'missing'})")
        return " ".join(parts)
