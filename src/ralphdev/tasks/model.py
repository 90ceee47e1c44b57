"""Task, index projection and language descriptor data models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ralphdev.errors import InvalidInputError

TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]+)*$")


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"

    @classmethod
    def parse(cls, value: str | TaskStatus) -> TaskStatus:
        """Return the status for *value* or raise ``InvalidInputError``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise InvalidInputError(
                f'Invalid status "{value}". Valid statuses: {valid}',
                details={"status": value},
            ) from None


# Status the task is moved *from* -> statuses it may move *to*.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.PENDING}),
    TaskStatus.COMPLETED: frozenset(),
}

# Re-requesting these statuses is a no-op rather than an error.
IDEMPOTENT_STATUSES = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED})

# Statuses that require every dependency to be completed first.
GATED_STATUSES = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED})


@dataclass
class Task:
    id: str
    module: str
    description: str = ""
    priority: int = 1
    status: TaskStatus = TaskStatus.PENDING
    estimated_minutes: int = 30
    dependencies: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    test_requirements: dict[str, Any] | None = None
    created_at: str | None = None
    updated_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None

    def validate(self) -> None:
        """Raise ``InvalidInputError`` when header fields are malformed."""
        if not self.id or not TASK_ID_PATTERN.match(self.id):
            raise InvalidInputError(
                f'Invalid task id "{self.id}": use dot-separated segments of letters, digits, "-" or "_"',
                details={"taskId": self.id},
            )
        if not self.module or not TASK_ID_PATTERN.match(self.module):
            raise InvalidInputError(f'Invalid module "{self.module}" for task {self.id}')
        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise InvalidInputError(f"Priority must be an integer (task {self.id})")
        if isinstance(self.estimated_minutes, bool) or not isinstance(self.estimated_minutes, int):
            raise InvalidInputError(f"estimatedMinutes must be an integer (task {self.id})")
        if self.id in self.dependencies:
            raise InvalidInputError(f"Task {self.id} cannot depend on itself")
        for dep in self.dependencies:
            if not TASK_ID_PATTERN.match(dep):
                raise InvalidInputError(f'Invalid dependency id "{dep}" (task {self.id})')

    def relative_path(self) -> Path:
        return task_relative_path(self.id, self.module)


def task_relative_path(task_id: str, module: str) -> Path:
    """Location of a task document relative to the tasks directory.

    ``auth.signup.ui`` in module ``auth`` lives at ``auth/signup.ui.md``.
    """
    prefix = f"{module}."
    name = task_id[len(prefix):] if task_id.startswith(prefix) else task_id
    return Path(module) / f"{name}.md"


@dataclass
class IndexEntry:
    """Denormalized projection of a task kept in ``index.json``."""

    id: str
    status: TaskStatus
    priority: int
    module: str
    description: str = ""
    dependencies: list[str] = field(default_factory=list)
    estimated_minutes: int = 30
    file_path: str = ""

    @classmethod
    def from_task(cls, task: Task) -> IndexEntry:
        return cls(
            id=task.id,
            status=task.status,
            priority=task.priority,
            module=task.module,
            description=task.description,
            dependencies=list(task.dependencies),
            estimated_minutes=task.estimated_minutes,
            file_path=task.relative_path().as_posix(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "priority": self.priority,
            "module": self.module,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "estimatedMinutes": self.estimated_minutes,
            "filePath": self.file_path,
        }

    def to_public_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.to_dict()}

    @classmethod
    def from_dict(cls, task_id: str, data: dict[str, Any]) -> IndexEntry:
        module = str(data.get("module", ""))
        return cls(
            id=task_id,
            status=TaskStatus.parse(data.get("status", TaskStatus.PENDING.value)),
            priority=int(data.get("priority", 1)),
            module=module,
            description=str(data.get("description", "")),
            dependencies=list(data.get("dependencies") or []),
            estimated_minutes=int(data.get("estimatedMinutes", 30)),
            file_path=str(data.get("filePath") or task_relative_path(task_id, module).as_posix()),
        )


@dataclass
class LanguageConfig:
    """Project descriptor supplied by an external detector and stored verbatim."""

    language: str
    framework: str = ""
    build_tool: str = ""
    test_framework: str = ""
    verify_commands: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"language": self.language}
        if self.framework:
            data["framework"] = self.framework
        if self.build_tool:
            data["buildTool"] = self.build_tool
        if self.test_framework:
            data["testFramework"] = self.test_framework
        data["verifyCommands"] = list(self.verify_commands)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LanguageConfig:
        return cls(
            language=str(data.get("language", "unknown")),
            framework=str(data.get("framework", "")),
            build_tool=str(data.get("buildTool", "")),
            test_framework=str(data.get("testFramework", "")),
            verify_commands=list(data.get("verifyCommands") or []),
        )
