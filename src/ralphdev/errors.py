"""Error taxonomy and semantic exit codes.

Every error raised by the core carries a stable machine-readable ``code``, a
human message, a ``recoverable`` flag and, where meaningful, a suggested
remediation. The command surface maps each one to a fixed exit code so a
calling agent can branch on failure type without parsing text.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_INPUT = 2
    NOT_FOUND = 3
    DEPENDENCY_NOT_MET = 4
    PERMISSION_DENIED = 5
    ALREADY_EXISTS = 6
    INVALID_STATE = 7
    FILE_SYSTEM_ERROR = 8
    PARSE_ERROR = 9


_CODE_TO_EXIT: dict[str, ExitCode] = {
    "TASK_NOT_FOUND": ExitCode.NOT_FOUND,
    "STATE_NOT_FOUND": ExitCode.NOT_FOUND,
    "FILE_NOT_FOUND": ExitCode.NOT_FOUND,
    "INVALID_INPUT": ExitCode.INVALID_INPUT,
    "INVALID_JSON": ExitCode.PARSE_ERROR,
    "PARSE_ERROR": ExitCode.PARSE_ERROR,
    "DEPENDENCY_NOT_MET": ExitCode.DEPENDENCY_NOT_MET,
    "PERMISSION_DENIED": ExitCode.PERMISSION_DENIED,
    "ALREADY_EXISTS": ExitCode.ALREADY_EXISTS,
    "INVALID_STATE": ExitCode.INVALID_STATE,
    "SAGA_FAILED": ExitCode.INVALID_STATE,
    "FILE_SYSTEM_ERROR": ExitCode.FILE_SYSTEM_ERROR,
}


def exit_code_for(code: str) -> ExitCode:
    """Return the exit code for an error *code*, defaulting to GENERAL_ERROR."""
    return _CODE_TO_EXIT.get(code, ExitCode.GENERAL_ERROR)


class RalphDevError(Exception):
    """Base class for all errors surfaced by the core."""

    code = "GENERAL_ERROR"
    recoverable = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
        recoverable: bool | None = None,
        suggested_action: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        self.details = details
        self.suggested_action = suggested_action

    @property
    def exit_code(self) -> ExitCode:
        return exit_code_for(self.code)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.details is not None:
            data["details"] = self.details
        if self.suggested_action:
            data["suggestedAction"] = self.suggested_action
        return data


class NotFoundError(RalphDevError):
    code = "TASK_NOT_FOUND"

    @classmethod
    def task(cls, task_id: str) -> NotFoundError:
        return cls(
            f'Task "{task_id}" does not exist',
            details={"taskId": task_id},
            suggested_action='Use "ralph-dev tasks list" to see available tasks',
        )

    @classmethod
    def state(cls) -> NotFoundError:
        return cls(
            "No active ralph-dev session",
            code="STATE_NOT_FOUND",
            suggested_action='Start a session with "ralph-dev state set --phase clarify"',
        )


class InvalidInputError(RalphDevError):
    code = "INVALID_INPUT"


class InvalidStateError(RalphDevError):
    code = "INVALID_STATE"


class DependencyNotMetError(RalphDevError):
    code = "DEPENDENCY_NOT_MET"
    recoverable = True

    def __init__(self, task_id: str, blocking_ids: list[str]) -> None:
        super().__init__(
            f'Task "{task_id}" has unsatisfied dependencies',
            details={"taskId": task_id, "missingDeps": list(blocking_ids)},
            suggested_action=f"Complete dependencies first: {', '.join(blocking_ids)}",
        )
        self.task_id = task_id
        self.blocking_ids = list(blocking_ids)


class AlreadyExistsError(RalphDevError):
    code = "ALREADY_EXISTS"


class PermissionDeniedError(RalphDevError):
    code = "PERMISSION_DENIED"


class FileSystemError(RalphDevError):
    code = "FILE_SYSTEM_ERROR"

    @classmethod
    def wrap(cls, action: str, exc: OSError) -> FileSystemError:
        path = getattr(exc, "filename", None)
        details = {"error": str(exc)}
        if path:
            details["path"] = str(path)
        return cls(f"Failed to {action}: {exc.strerror or exc}", details=details)


class ParseError(RalphDevError):
    code = "PARSE_ERROR"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(
            message,
            details=details,
            suggested_action="Verify the input format is correct",
        )
