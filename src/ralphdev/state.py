"""Workflow state: the single per-run record of phase and progress.

Only one orchestrator may run against a workspace at a time. This is a
precondition of the store, not something it enforces.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ralphdev import log
from ralphdev.config import Config
from ralphdev.errors import FileSystemError, InvalidInputError, InvalidStateError, NotFoundError, ParseError
from ralphdev.io_utils import read_json, write_json
from ralphdev.timeutil import file_stamp, utc_now

UNSET: Any = object()


class Phase(str, Enum):
    CLARIFY = "clarify"
    BREAKDOWN = "breakdown"
    IMPLEMENT = "implement"
    HEAL = "heal"
    DELIVER = "deliver"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return list(Phase).index(self)

    @classmethod
    def parse(cls, value: str | Phase) -> Phase:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise InvalidInputError(
                f'Invalid phase "{value}". Valid phases: {valid}',
                details={"phase": value},
            ) from None

    def can_move_to(self, target: Phase) -> bool:
        if target == self or target.rank > self.rank:
            return True
        return self == Phase.HEAL and target == Phase.IMPLEMENT


@dataclass
class WorkflowState:
    phase: Phase
    current_task: str | None = None
    requirements: Any = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    started_at: str | None = None
    updated_at: str | None = None

    def move_to(self, target: Phase) -> None:
        if not self.phase.can_move_to(target):
            raise InvalidStateError(
                f"Cannot move workflow from {self.phase.value} back to {target.value}",
                details={"currentPhase": self.phase.value, "requestedPhase": target.value},
            )
        self.phase = target

    def add_error(self, error: str | dict[str, Any]) -> None:
        record = {"message": error} if isinstance(error, str) else dict(error)
        record.setdefault("phase", self.phase.value)
        record.setdefault("timestamp", utc_now())
        self.errors.append(record)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"phase": self.phase.value}
        if self.current_task is not None:
            data["currentTask"] = self.current_task
        if self.requirements is not None:
            data["requirements"] = self.requirements
        data["errors"] = list(self.errors)
        data["startedAt"] = self.started_at
        data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowState:
        try:
            phase = Phase.parse(data["phase"])
        except (KeyError, InvalidInputError) as exc:
            raise ParseError(f"Workflow state has no valid phase: {exc}") from exc
        return cls(
            phase=phase,
            current_task=data.get("currentTask"),
            requirements=data.get("requirements"),
            errors=list(data.get("errors") or []),
            started_at=data.get("startedAt"),
            updated_at=data.get("updatedAt"),
        )


class StateStore:
    """Persist :class:`WorkflowState` as ``state.json``."""

    def __init__(self, config: Config) -> None:
        self.config = config

    @property
    def path(self) -> Path:
        return self.config.state_path

    def exists(self) -> bool:
        return self.path.exists()

    def get(self) -> WorkflowState | None:
        if not self.path.exists():
            return None
        try:
            data = read_json(self.path)
        except OSError as exc:
            raise FileSystemError.wrap("read workflow state", exc) from exc
        except json.JSONDecodeError as exc:
            raise ParseError(f"Workflow state is not valid JSON: {exc}", details={"path": str(self.path)}) from exc
        if not isinstance(data, dict):
            raise ParseError("Workflow state must be a JSON object", details={"path": str(self.path)})
        return WorkflowState.from_dict(data)

    def set(self, phase: str | Phase, current_task: str | None = None) -> WorkflowState:
        """Start or move the run to *phase*, keeping started_at, requirements and errors."""
        target = Phase.parse(phase)
        state = self.get()
        now = utc_now()
        if state is None:
            state = WorkflowState(phase=target, started_at=now)
            log.info(f"Workflow started in phase {target.value}")
        else:
            previous = state.phase
            state.move_to(target)
            if previous != target:
                log.info(f"Workflow phase: {previous.value} -> {target.value}")
        state.current_task = current_task
        state.updated_at = now
        self._save(state)
        return state

    def update(
        self,
        phase: str | Phase | None = None,
        current_task: str | None = UNSET,
        requirements: Any = UNSET,
        add_error: str | dict[str, Any] | None = None,
    ) -> WorkflowState:
        """Apply a partial update. Pass ``current_task=None`` to clear it."""
        state = self.get()
        if state is None:
            raise NotFoundError.state()
        if phase is not None:
            target = Phase.parse(phase)
            previous = state.phase
            state.move_to(target)
            if previous != target:
                log.info(f"Workflow phase: {previous.value} -> {target.value}")
        if current_task is not UNSET:
            state.current_task = current_task
        if requirements is not UNSET:
            state.requirements = requirements
        if add_error is not None:
            state.add_error(add_error)
        state.updated_at = utc_now()
        self._save(state)
        return state

    def clear(self) -> bool:
        """Remove the state file. Returns whether one existed."""
        if not self.path.exists():
            return False
        try:
            self.path.unlink()
        except OSError as exc:
            raise FileSystemError.wrap("remove workflow state", exc) from exc
        return True

    def archive(self) -> Path:
        """Move the state file to ``archive/state-<timestamp>.json``."""
        if not self.path.exists():
            raise NotFoundError.state()
        target = self.config.archive_dir / f"state-{file_stamp()}.json"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(self.path, target)
        except OSError as exc:
            raise FileSystemError.wrap("archive workflow state", exc) from exc
        log.success(f"Archived workflow state to {target}")
        return target

    def _save(self, state: WorkflowState) -> None:
        try:
            write_json(self.path, state.to_dict())
        except OSError as exc:
            raise FileSystemError.wrap("write workflow state", exc) from exc
