"""Task repository: the only writer of task documents and the index."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ralphdev import log
from ralphdev.config import Config
from ralphdev.errors import (
    AlreadyExistsError,
    DependencyNotMetError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    RalphDevError,
)
from ralphdev.scheduler import DependencyResolver
from ralphdev.tasks.document import read_task, write_task
from ralphdev.tasks.index import IndexManager, TaskIndex
from ralphdev.tasks.model import (
    ALLOWED_TRANSITIONS,
    GATED_STATUSES,
    IDEMPOTENT_STATUSES,
    IndexEntry,
    LanguageConfig,
    Task,
    TaskStatus,
)
from ralphdev.timeutil import utc_now

SORT_KEYS = ("priority", "status", "estimatedMinutes", "id")
BATCH_ACTIONS = ("start", "done", "fail")
DEFAULT_LIMIT = 100

_STATUS_ORDER = {status: pos for pos, status in enumerate(TaskStatus)}

_STATUS_TIMESTAMP = {
    TaskStatus.IN_PROGRESS: "started_at",
    TaskStatus.COMPLETED: "completed_at",
    TaskStatus.FAILED: "failed_at",
}


@dataclass
class TransitionResult:
    task_id: str
    status: TaskStatus
    previous_status: TaskStatus
    changed: bool
    already_in_state: bool = False

    @property
    def already_completed(self) -> bool:
        return self.already_in_state and self.status == TaskStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "taskId": self.task_id,
            "status": self.status.value,
            "previousStatus": self.previous_status.value,
            "changed": self.changed,
        }
        if self.already_in_state:
            data["alreadyInState"] = True
        if self.already_completed:
            data["alreadyCompleted"] = True
        return data


@dataclass
class TaskPage:
    tasks: list[IndexEntry]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.tasks) < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [entry.to_public_dict() for entry in self.tasks],
            "total": self.total,
            "offset": self.offset,
            "limit": self.limit,
            "hasMore": self.has_more,
        }


@dataclass
class BatchResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    applied: int = 0
    noops: int = 0
    rolled_back: bool = False
    results: list[dict[str, Any]] = field(default_factory=list)

    @property
    def all_successful(self) -> bool:
        return self.failed == 0 and not self.rolled_back

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "applied": self.applied,
            "noops": self.noops,
            "allSuccessful": self.all_successful,
            "rolledBack": self.rolled_back,
            "results": list(self.results),
        }


class TaskRepository:
    """Create, read, transition and query tasks stored under the workspace.

    Every read goes through :meth:`IndexManager.fresh`, so documents edited
    outside the repository are picked up before the index is trusted.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self.index = IndexManager(config)

    # ── setup ────────────────────────────────────────────────────

    def init(
        self,
        project_goal: str | None = None,
        language_config: LanguageConfig | Mapping[str, Any] | None = None,
    ) -> TaskIndex:
        """Create the tasks directory and set index metadata."""
        if isinstance(language_config, Mapping):
            language_config = LanguageConfig.from_dict(dict(language_config))
        self.config.tasks_dir.mkdir(parents=True, exist_ok=True)
        index = self.index.update_metadata(project_goal, language_config)
        log.debug(f"Initialized task index at {self.index.path}")
        return index

    def rebuild_index(self) -> TaskIndex:
        index = self.index.rebuild()
        log.info(f"Rebuilt task index ({len(index.entries)} tasks)")
        return index

    # ── create / read ────────────────────────────────────────────

    def create(self, task: Task) -> Task:
        task.dependencies = list(dict.fromkeys(task.dependencies))
        task.validate()
        index = self.index.fresh()
        path = self.config.tasks_dir / task.relative_path()
        if task.id in index.entries or path.exists():
            raise AlreadyExistsError(
                f'Task "{task.id}" already exists',
                details={"taskId": task.id},
            )
        now = utc_now()
        task.created_at = task.created_at or now
        task.updated_at = now
        self._write(task)
        log.debug(f"Created task {task.id}")
        return task

    def get(self, task_id: str) -> Task:
        entry = self._entry(self.index.fresh(), task_id)
        return read_task(self.config.tasks_dir / entry.file_path)

    def exists(self, task_id: str) -> bool:
        return task_id in self.index.fresh().entries

    def list(
        self,
        status: str | TaskStatus | None = None,
        module: str | None = None,
        priority: int | None = None,
        has_dependencies: bool | None = None,
        ready: bool | None = None,
        sort: str = "priority",
        offset: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> TaskPage:
        if sort not in SORT_KEYS:
            raise InvalidInputError(
                f'Invalid sort key "{sort}". Valid keys: {", ".join(SORT_KEYS)}',
                details={"sort": sort},
            )
        if offset < 0 or limit < 1:
            raise InvalidInputError("offset must be >= 0 and limit must be >= 1")
        wanted = TaskStatus.parse(status) if status is not None else None

        index = self.index.fresh()
        resolver = DependencyResolver(index.entries.values())
        matches: list[IndexEntry] = []
        for entry in index.entries.values():
            if wanted is not None and entry.status != wanted:
                continue
            if module is not None and entry.module != module:
                continue
            if priority is not None and entry.priority != priority:
                continue
            if has_dependencies is not None and bool(entry.dependencies) != has_dependencies:
                continue
            if ready is not None and resolver.is_ready(entry.id) != ready:
                continue
            matches.append(entry)

        matches.sort(key=_sort_key(sort))
        return TaskPage(
            tasks=matches[offset:offset + limit],
            total=len(matches),
            offset=offset,
            limit=limit,
        )

    def next_ready(self) -> Task | None:
        """Most urgent task that can be worked on now, or ``None``."""
        index = self.index.fresh()
        ready = DependencyResolver(index.entries.values()).ready_ids()
        if not ready:
            return None
        return read_task(self.config.tasks_dir / index.entries[ready[0]].file_path)

    def progress(self) -> dict[str, Any]:
        index = self.index.fresh()
        counts = {status.value: 0 for status in TaskStatus}
        for entry in index.entries.values():
            counts[entry.status.value] += 1
        total = len(index.entries)
        done = counts[TaskStatus.COMPLETED.value]
        return {
            "total": total,
            **counts,
            "percentComplete": round(done * 100 / total, 1) if total else 0.0,
        }

    # ── transitions ──────────────────────────────────────────────

    def transition(
        self,
        task_id: str,
        new_status: str | TaskStatus,
        note: str | None = None,
    ) -> TransitionResult:
        target = TaskStatus.parse(new_status)
        index = self.index.fresh()
        entry = self._entry(index, task_id)
        task = read_task(self.config.tasks_dir / entry.file_path)
        previous = task.status

        if previous == target and target in IDEMPOTENT_STATUSES:
            if note and target == TaskStatus.FAILED:
                task.notes.append(note)
                self._write(task)
            log.debug(f"Task {task_id}: already {target.value}")
            return TransitionResult(task_id, target, previous, changed=False, already_in_state=True)

        if previous == TaskStatus.COMPLETED:
            raise InvalidStateError(
                f'Task "{task_id}" is completed and cannot move to {target.value}',
                details={"taskId": task_id, "currentStatus": previous.value},
            )
        if target not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidStateError(
                f'Cannot move task "{task_id}" from {previous.value} to {target.value}',
                details={"taskId": task_id, "currentStatus": previous.value, "requestedStatus": target.value},
            )
        if target in GATED_STATUSES:
            blocking = DependencyResolver(index.entries.values()).blocking_dependencies(task_id)
            if blocking:
                raise DependencyNotMetError(task_id, blocking)

        now = utc_now()
        task.status = target
        task.updated_at = now
        stamp = _STATUS_TIMESTAMP.get(target)
        if stamp:
            setattr(task, stamp, now)
        if note:
            task.notes.append(note)
        self._write(task)
        log.debug(f"Task {task_id}: {previous.value} -> {target.value}")
        return TransitionResult(task_id, target, previous, changed=True)

    def start(self, task_id: str) -> TransitionResult:
        return self.transition(task_id, TaskStatus.IN_PROGRESS)

    def complete(self, task_id: str, duration: str | None = None) -> TransitionResult:
        note = f"Completed in {duration}" if duration else None
        return self.transition(task_id, TaskStatus.COMPLETED, note=note)

    def fail(self, task_id: str, reason: str) -> TransitionResult:
        if not reason or not reason.strip():
            raise InvalidInputError("A failure reason is required", details={"taskId": task_id})
        return self.transition(task_id, TaskStatus.FAILED, note=f"Failed: {reason}")

    def append_note(self, task_id: str, note: str) -> Task:
        if not note or not note.strip():
            raise InvalidInputError("Note must not be empty", details={"taskId": task_id})
        task = self.get(task_id)
        task.notes.append(note)
        task.updated_at = utc_now()
        self._write(task)
        return task

    # ── batch ────────────────────────────────────────────────────

    def batch(self, operations: Iterable[Mapping[str, Any]], atomic: bool = False) -> BatchResult:
        """Apply *operations* in order.

        With ``atomic=True`` the first failure restores every task touched so
        far to its full prior record, newest first, and stops.
        """
        ops = list(operations)
        result = BatchResult(total=len(ops))
        snapshots: list[Task] = []

        for pos, op in enumerate(ops):
            action = op.get("action") if isinstance(op, Mapping) else None
            task_id = op.get("taskId") if isinstance(op, Mapping) else None
            item: dict[str, Any] = {"index": pos, "action": action, "taskId": task_id}
            try:
                action, task_id = _validate_operation(op)
                if atomic:
                    before = copy.deepcopy(self.get(task_id))
                outcome = self._apply(action, task_id, op)
            except RalphDevError as exc:
                result.failed += 1
                item.update(success=False, error=exc.to_dict())
                result.results.append(item)
                log.debug(f"Batch op {pos} ({action} {task_id}) failed: {exc.message}")
                if atomic:
                    self._restore(snapshots)
                    result.rolled_back = True
                    break
                continue

            result.successful += 1
            if atomic:
                snapshots.append(before)
            if outcome.changed:
                result.applied += 1
            else:
                result.noops += 1
            item.update(success=True, **outcome.to_dict())
            result.results.append(item)

        return result

    def _apply(self, action: str, task_id: str, op: Mapping[str, Any]) -> TransitionResult:
        if action == "start":
            return self.start(task_id)
        if action == "done":
            return self.complete(task_id, duration=op.get("duration"))
        return self.fail(task_id, reason=op["reason"])

    def _restore(self, snapshots: list[Task]) -> None:
        for task in reversed(snapshots):
            self._write(task)
            log.debug(f"Restored task {task.id} to {task.status.value}")
        if snapshots:
            log.warn(f"Atomic batch failed, restored {len(snapshots)} task(s)")

    # ── internals ────────────────────────────────────────────────

    def _entry(self, index: TaskIndex, task_id: str) -> IndexEntry:
        entry = index.entries.get(task_id)
        if entry is None:
            raise NotFoundError.task(task_id)
        return entry

    def _write(self, task: Task) -> None:
        """Write the document first, then project it into the index."""
        write_task(self.config.tasks_dir / task.relative_path(), task)
        self.index.upsert(task)


def _validate_operation(op: Any) -> tuple[str, str]:
    if not isinstance(op, Mapping):
        raise InvalidInputError("Batch operation must be an object")
    action = op.get("action")
    task_id = op.get("taskId")
    if action not in BATCH_ACTIONS:
        raise InvalidInputError(
            f'Invalid batch action "{action}". Valid actions: {", ".join(BATCH_ACTIONS)}',
            details={"action": action},
        )
    if not isinstance(task_id, str) or not task_id:
        raise InvalidInputError("Batch operation requires a taskId")
    if action == "fail" and not op.get("reason"):
        raise InvalidInputError(f'Batch "fail" for {task_id} requires a reason', details={"taskId": task_id})
    return action, task_id


def _sort_key(sort: str):
    if sort == "priority":
        return lambda e: e.priority
    if sort == "status":
        return lambda e: _STATUS_ORDER[e.status]
    if sort == "estimatedMinutes":
        return lambda e: e.estimated_minutes
    return lambda e: e.id
