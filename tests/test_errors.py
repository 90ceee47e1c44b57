"""Tests for the error taxonomy, exit codes and response envelope."""

from __future__ import annotations

import errno

import pytest

from ralphdev.errors import (
    AlreadyExistsError,
    DependencyNotMetError,
    ExitCode,
    FileSystemError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    ParseError,
    PermissionDeniedError,
    RalphDevError,
    exit_code_for,
)
from ralphdev.response import SCHEMA_VERSION, error_response, success_response
from ralphdev.saga import SagaFailedError, SagaResult


# ── Exit codes ─────────────────────────────────────────────────────


class TestExitCodes:
    @pytest.mark.parametrize(
        "err,expected",
        [
            (RalphDevError("x"), 1),
            (InvalidInputError("x"), 2),
            (NotFoundError.task("a"), 3),
            (NotFoundError.state(), 3),
            (DependencyNotMetError("a", ["b"]), 4),
            (PermissionDeniedError("x"), 5),
            (AlreadyExistsError("x"), 6),
            (InvalidStateError("x"), 7),
            (FileSystemError("x"), 8),
            (ParseError("x"), 9),
        ],
    )
    def test_mapping(self, err, expected):
        assert err.exit_code == expected

    def test_invalid_json_is_parse_exit(self):
        assert InvalidInputError("bad", code="INVALID_JSON").exit_code == ExitCode.PARSE_ERROR

    def test_unknown_code_is_general_error(self):
        assert exit_code_for("SOMETHING_NEW") == ExitCode.GENERAL_ERROR

    def test_saga_failure_is_invalid_state(self):
        err = SagaFailedError(SagaResult(success=False, failed_step="s", error=RuntimeError("x")))
        assert isinstance(err, InvalidStateError)
        assert err.exit_code == 7


# ── Error payloads ─────────────────────────────────────────────────


class TestErrorPayload:
    def test_not_found_task(self):
        data = NotFoundError.task("auth.login").to_dict()
        assert data["code"] == "TASK_NOT_FOUND"
        assert data["details"] == {"taskId": "auth.login"}
        assert data["recoverable"] is False
        assert "tasks list" in data["suggestedAction"]

    def test_dependency_not_met_is_recoverable(self):
        err = DependencyNotMetError("a.two", ["a.one", "core.db"])
        assert err.recoverable is True
        assert err.details["missingDeps"] == ["a.one", "core.db"]
        assert "a.one, core.db" in err.suggested_action

    def test_minimal_payload(self):
        assert InvalidStateError("nope").to_dict() == {
            "code": "INVALID_STATE",
            "message": "nope",
            "recoverable": False,
        }

    def test_overrides(self):
        err = RalphDevError("m", code="CUSTOM", recoverable=True, suggested_action="retry")
        assert err.to_dict()["suggestedAction"] == "retry"
        assert err.recoverable is True
        assert RalphDevError.recoverable is False

    def test_filesystem_wrap(self):
        exc = OSError(errno.EACCES, "Permission denied", "/tmp/x")
        err = FileSystemError.wrap("write task", exc)
        assert err.message == "Failed to write task: Permission denied"
        assert err.details["path"] == "/tmp/x"

    def test_parse_error_suggestion(self):
        assert ParseError("bad").suggested_action


# ── Envelope ───────────────────────────────────────────────────────


class TestEnvelope:
    def test_success(self):
        env = success_response({"a": 1})
        assert env["schemaVersion"] == SCHEMA_VERSION == "1.0.0"
        assert env["success"] is True
        assert env["data"] == {"a": 1}
        assert env["timestamp"].endswith("Z")
        assert "metadata" not in env

    def test_success_with_metadata(self):
        assert success_response(None, {"operation": "next"})["metadata"] == {"operation": "next"}

    def test_error(self):
        env = error_response(NotFoundError.task("x"))
        assert env["success"] is False
        assert env["error"]["code"] == "TASK_NOT_FOUND"
        assert "data" not in env
