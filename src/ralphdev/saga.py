"""Saga executor: ordered steps with compensating rollback.

Every execution appends JSON-lines events to ``saga.log``. The log is an
audit trail only; recovery means detecting an unfinished saga and telling the
operator, never replaying it.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ralphdev import log
from ralphdev.config import Config
from ralphdev.errors import FileSystemError, InvalidStateError
from ralphdev.io_utils import append_json_line, open_text
from ralphdev.timeutil import utc_now

TERMINAL_EVENTS = frozenset({"completed", "rollback_completed"})


def _noop() -> None:
    return None


@dataclass
class SagaStep:
    name: str
    description: str
    execute: Callable[[], Any]
    compensate: Callable[[], Any] = _noop


@dataclass
class SagaResult:
    success: bool
    completed_steps: list[str] = field(default_factory=list)
    failed_step: str | None = None
    error: BaseException | None = None
    rollback_performed: bool = False
    rollback_successful: bool | None = None
    failed_compensations: list[str] = field(default_factory=list)

    @property
    def partial_rollback(self) -> bool:
        return self.rollback_performed and not self.rollback_successful

    def raise_for_failure(self) -> None:
        if not self.success:
            raise SagaFailedError(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "completedSteps": list(self.completed_steps),
            "rollbackPerformed": self.rollback_performed,
        }
        if self.failed_step is not None:
            data["failedStep"] = self.failed_step
        if self.error is not None:
            data["error"] = str(self.error)
        if self.rollback_performed:
            data["rollbackSuccessful"] = self.rollback_successful
            data["failedCompensations"] = list(self.failed_compensations)
        return data


class SagaFailedError(InvalidStateError):
    code = "SAGA_FAILED"

    def __init__(self, result: SagaResult) -> None:
        if result.partial_rollback:
            action = "Rollback was incomplete; inspect saga.log and restore the listed steps manually"
        else:
            action = "All completed steps were rolled back; fix the cause and re-run"
        super().__init__(
            f"Saga failed at step {result.failed_step}: {result.error}",
            details=result.to_dict(),
            suggested_action=action,
        )
        self.result = result


class SagaExecutor:
    """Run :class:`SagaStep` lists, rolling back completed steps on failure."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        log_path: Path | None = None,
        name: str = "saga",
    ) -> None:
        if log_path is None:
            log_path = (config or Config()).saga_log_path
        self.log_path = log_path
        self.name = name
        self.saga_id = ""

    def execute(self, steps: Sequence[SagaStep]) -> SagaResult:
        names = [step.name for step in steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise InvalidStateError(
                f"Duplicate saga step names: {', '.join(duplicates)}",
                details={"duplicates": duplicates},
            )

        self.saga_id = uuid.uuid4().hex
        completed: list[SagaStep] = []
        log.info(f"Starting saga {self.name} ({len(steps)} steps)")
        self._event("started", {"stepCount": len(steps), "steps": names})

        for step in steps:
            log.debug(f"Executing step {step.name}: {step.description}")
            try:
                self._event("step_started", {"step": step.name, "description": step.description})
                step.execute()
                completed.append(step)
                self._event("step_completed", {"step": step.name})
            except Exception as exc:
                log.error(f"Step {step.name} failed: {exc}")
                self._try_event("step_failed", {"step": step.name, "error": str(exc)})
                failed = self._rollback(completed)
                return SagaResult(
                    success=False,
                    completed_steps=[s.name for s in completed],
                    failed_step=step.name,
                    error=exc,
                    rollback_performed=True,
                    rollback_successful=not failed,
                    failed_compensations=failed,
                )
            log.success(f"Completed step {step.name}")

        self._event("completed", {"completedSteps": names})
        log.success(f"Saga {self.name} completed")
        return SagaResult(success=True, completed_steps=names)

    def _rollback(self, completed: list[SagaStep]) -> list[str]:
        """Compensate *completed* newest first. Returns names whose compensation failed."""
        to_undo = [s.name for s in reversed(completed)]
        self._try_event("rollback_started", {"steps": to_undo})
        if to_undo:
            log.warn(f"Rolling back {len(to_undo)} step(s)")

        failed: list[str] = []
        for step in reversed(completed):
            try:
                step.compensate()
            except Exception as exc:
                failed.append(step.name)
                log.error(f"Failed to roll back {step.name}: {exc}")
                self._try_event("compensation_failed", {"step": step.name, "error": str(exc)})
                continue
            self._try_event("compensation_completed", {"step": step.name})
            log.debug(f"Rolled back {step.name}")

        self._try_event("rollback_completed", {"success": not failed, "failedCompensations": failed})
        if failed:
            log.error(f"Rollback partially failed: {', '.join(failed)}")
            log.warn(f"Manual intervention required, see {self.log_path}")
        else:
            log.success("Rollback completed")
        return failed

    def _event(self, event: str, data: dict[str, Any]) -> None:
        record = {
            "timestamp": utc_now(),
            "saga_id": self.saga_id,
            "saga": self.name,
            "event": event,
            "data": data,
        }
        try:
            append_json_line(self.log_path, record)
        except OSError as exc:
            raise FileSystemError.wrap("append to saga log", exc) from exc

    def _try_event(self, event: str, data: dict[str, Any]) -> None:
        """Record *event* without interrupting a rollback already under way."""
        try:
            self._event(event, data)
        except FileSystemError as exc:
            log.warn(f"Could not record saga event {event}: {exc.message}")


# ── recovery detection ───────────────────────────────────────────


def read_saga_log(log_path: Path) -> list[dict[str, Any]]:
    """Parse the saga log, skipping malformed lines."""
    if not log_path.exists():
        return []
    records: list[dict[str, Any]] = []
    with open_text(log_path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                log.debug(f"Skipping malformed saga log line: {line[:80]}")
                continue
            if isinstance(record, dict):
                records.append(record)
    return records


def find_incomplete_saga(log_path: Path) -> dict[str, Any] | None:
    """Return the last ``started`` record whose saga never finished."""
    records = read_saga_log(log_path)
    finished = {r.get("saga_id") for r in records if r.get("event") in TERMINAL_EVENTS}
    for record in reversed(records):
        if record.get("event") == "started" and record.get("saga_id") not in finished:
            return record
    return None


def check_recovery(config: Config) -> dict[str, Any] | None:
    incomplete = find_incomplete_saga(config.saga_log_path)
    if incomplete is None:
        log.debug("No incomplete sagas found")
        return None
    log.warn(
        f"Incomplete saga found, manual recovery recommended "
        f"({incomplete.get('saga')} started {incomplete.get('timestamp')}, see {config.saga_log_path})"
    )
    return incomplete
