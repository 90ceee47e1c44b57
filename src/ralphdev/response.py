"""Stable structured-output envelope for the command surface."""

from __future__ import annotations

from typing import Any

from ralphdev.errors import RalphDevError
from ralphdev.timeutil import utc_now

SCHEMA_VERSION = "1.0.0"


def success_response(data: Any, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "schemaVersion": SCHEMA_VERSION,
        "success": True,
        "data": data,
        "timestamp": utc_now(),
    }
    if metadata:
        envelope["metadata"] = metadata
    return envelope


def error_response(err: RalphDevError, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "schemaVersion": SCHEMA_VERSION,
        "success": False,
        "error": err.to_dict(),
        "timestamp": utc_now(),
    }
    if metadata:
        envelope["metadata"] = metadata
    return envelope
