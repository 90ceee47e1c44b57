"""UTC timestamp helpers shared by the task, state and saga stores."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string with microseconds."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def file_stamp() -> str:
    """Return a filesystem-safe timestamp for backup and archive names."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
