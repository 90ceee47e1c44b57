"""Task index: a denormalized projection of every task document.

The index is never the source of truth. Documents are written first and the
index is reconciled from them whenever it is found stale.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ralphdev import log
from ralphdev.config import Config
from ralphdev.errors import FileSystemError, ParseError
from ralphdev.io_utils import read_json, write_json
from ralphdev.tasks.document import read_task
from ralphdev.tasks.model import IndexEntry, LanguageConfig, Task
from ralphdev.timeutil import utc_now

INDEX_VERSION = "1.0.0"


@dataclass
class TaskIndex:
    entries: dict[str, IndexEntry] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    version: str = INDEX_VERSION
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updatedAt": self.updated_at,
            "metadata": dict(self.metadata),
            "tasks": {tid: entry.to_dict() for tid, entry in self.entries.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskIndex:
        tasks = data.get("tasks") or {}
        if not isinstance(tasks, dict):
            raise ParseError("Task index 'tasks' must be a mapping")
        return cls(
            entries={tid: IndexEntry.from_dict(tid, raw) for tid, raw in tasks.items()},
            metadata=dict(data.get("metadata") or {}),
            version=str(data.get("version", INDEX_VERSION)),
            updated_at=data.get("updatedAt"),
        )

    @property
    def language_config(self) -> LanguageConfig | None:
        raw = self.metadata.get("languageConfig")
        return LanguageConfig.from_dict(raw) if isinstance(raw, dict) else None


class IndexManager:
    """Load, save and reconcile ``tasks/index.json``."""

    def __init__(self, config: Config) -> None:
        self.config = config

    @property
    def path(self) -> Path:
        return self.config.index_path

    @property
    def tasks_dir(self) -> Path:
        return self.config.tasks_dir

    # ── raw load / save ──────────────────────────────────────────

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> TaskIndex:
        """Load the index as stored, without staleness checks."""
        if not self.path.exists():
            return TaskIndex()
        try:
            data = read_json(self.path)
        except OSError as exc:
            raise FileSystemError.wrap("read task index", exc) from exc
        except json.JSONDecodeError as exc:
            raise ParseError(f"Task index is not valid JSON: {exc}", details={"path": str(self.path)}) from exc
        if not isinstance(data, dict):
            raise ParseError("Task index must be a JSON object", details={"path": str(self.path)})
        return TaskIndex.from_dict(data)

    def save(self, index: TaskIndex) -> None:
        index.updated_at = utc_now()
        try:
            write_json(self.path, index.to_dict())
        except OSError as exc:
            raise FileSystemError.wrap("write task index", exc) from exc

    # ── reconciliation ───────────────────────────────────────────

    def document_paths(self) -> list[Path]:
        """All task documents under the tasks directory, sorted by path."""
        if not self.tasks_dir.is_dir():
            return []
        return sorted(p for p in self.tasks_dir.rglob("*.md") if p.is_file())

    def is_stale(self) -> bool:
        docs = self.document_paths()
        if not self.path.exists():
            return bool(docs)
        try:
            index = self.load()
        except ParseError:
            return True
        known = {entry.file_path for entry in index.entries.values()}
        actual = {p.relative_to(self.tasks_dir).as_posix() for p in docs}
        if known != actual:
            return True
        index_mtime = self.path.stat().st_mtime
        return any(p.stat().st_mtime > index_mtime for p in docs)

    def fresh(self) -> TaskIndex:
        """Return the index, rebuilding it first when documents have drifted."""
        try:
            if self.is_stale():
                log.debug("Task index is stale, rebuilding from documents")
                return self.rebuild()
        except OSError as exc:
            raise FileSystemError.wrap("inspect task documents", exc) from exc
        return self.load()

    def rebuild(self) -> TaskIndex:
        """Regenerate the index from documents, keeping metadata and known order."""
        try:
            previous = self.load()
        except ParseError:
            log.warn("Existing task index is unreadable, rebuilding without metadata")
            previous = TaskIndex()

        tasks: dict[str, Task] = {}
        sources: dict[str, Path] = {}
        for path in self.document_paths():
            task = read_task(path)
            if task.id in tasks:
                raise ParseError(
                    f'Task id "{task.id}" is declared by both {sources[task.id]} and {path}',
                    details={"taskId": task.id, "paths": [str(sources[task.id]), str(path)]},
                )
            tasks[task.id] = task
            sources[task.id] = path

        ordered = [tid for tid in previous.entries if tid in tasks]
        new_ids = sorted(
            (tid for tid in tasks if tid not in previous.entries),
            key=lambda tid: (tasks[tid].created_at or "", tid),
        )
        index = TaskIndex(metadata=previous.metadata)
        for tid in ordered + new_ids:
            index.entries[tid] = IndexEntry.from_task(tasks[tid])
        self.save(index)
        log.debug(f"Rebuilt task index with {len(index.entries)} tasks")
        return index

    # ── mutations ────────────────────────────────────────────────

    def upsert(self, task: Task) -> None:
        index = self.load()
        index.entries[task.id] = IndexEntry.from_task(task)
        self.save(index)

    def remove(self, task_id: str) -> None:
        index = self.load()
        if index.entries.pop(task_id, None) is not None:
            self.save(index)

    def update_metadata(
        self,
        project_goal: str | None = None,
        language_config: LanguageConfig | None = None,
    ) -> TaskIndex:
        index = self.load()
        if project_goal is not None:
            index.metadata["projectGoal"] = project_goal
        if language_config is not None:
            index.metadata["languageConfig"] = language_config.to_dict()
        self.save(index)
        return index
