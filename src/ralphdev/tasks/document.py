"""Task document codec: YAML front matter plus a Markdown body.

A document looks like::

    ---
    id: auth.signup.ui
    module: auth
    priority: 2
    status: pending
    ...
    ---

    # Build the signup form

    ## Acceptance Criteria

    1. Form validates email

    ## Notes

    - Started by agent
      continuation of the same note

Documents are parsed fully into a ``Task`` and regenerated from it on every
write.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from ralphdev.errors import FileSystemError, InvalidInputError, ParseError
from ralphdev.io_utils import atomic_write_text, read_text
from ralphdev.tasks.model import Task, TaskStatus

FRONT_MATTER_DELIMITER = "---"

_CRITERION_RE = re.compile(r"^\d+\.\s+(.*)$")

# Front matter key -> Task attribute, in the order they are written.
_HEADER_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("module", "module"),
    ("priority", "priority"),
    ("status", "status"),
    ("estimatedMinutes", "estimated_minutes"),
    ("dependencies", "dependencies"),
    ("testRequirements", "test_requirements"),
    ("createdAt", "created_at"),
    ("updatedAt", "updated_at"),
    ("startedAt", "started_at"),
    ("completedAt", "completed_at"),
    ("failedAt", "failed_at"),
)

_TIMESTAMP_KEYS = frozenset({"createdAt", "updatedAt", "startedAt", "completedAt", "failedAt"})


# ── parsing ──────────────────────────────────────────────────────


def parse_task(text: str, source: str = "<string>") -> Task:
    """Parse document *text* into a ``Task``. Raises ``ParseError``."""
    header, body = _split_front_matter(text, source)
    try:
        meta = yaml.safe_load(header) or {}
    except yaml.YAMLError as exc:
        raise ParseError(f"Invalid front matter in {source}: {exc}", details={"path": source}) from exc
    if not isinstance(meta, dict):
        raise ParseError(f"Front matter in {source} is not a mapping", details={"path": source})

    for key in ("id", "module"):
        if not meta.get(key):
            raise ParseError(f"Front matter in {source} is missing '{key}'", details={"path": source})

    description, criteria, notes = _parse_body(body)
    try:
        task = Task(
            id=str(meta["id"]),
            module=str(meta["module"]),
            description=description,
            priority=int(meta.get("priority", 1)),
            status=TaskStatus.parse(meta.get("status", TaskStatus.PENDING.value)),
            estimated_minutes=int(meta.get("estimatedMinutes", 30)),
            dependencies=[str(d) for d in meta.get("dependencies") or []],
            acceptance_criteria=criteria,
            notes=notes,
            test_requirements=meta.get("testRequirements"),
        )
    except (TypeError, ValueError, InvalidInputError) as exc:
        raise ParseError(f"Invalid header value in {source}: {exc}", details={"path": source}) from exc

    for key, attr in _HEADER_FIELDS:
        if key in _TIMESTAMP_KEYS:
            setattr(task, attr, _coerce_timestamp(meta.get(key)))
    return task


def _split_front_matter(text: str, source: str) -> tuple[str, str]:
    lines = text.splitlines()
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        raise ParseError(f"Missing front matter in {source}", details={"path": source})
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONT_MATTER_DELIMITER:
            return "\n".join(lines[1:i]), "\n".join(lines[i + 1:])
    raise ParseError(f"Unterminated front matter in {source}", details={"path": source})


def _parse_body(body: str) -> tuple[str, list[str], list[str]]:
    description_lines: list[str] = []
    criteria: list[str] = []
    notes: list[str] = []
    section = "preamble"

    for line in body.splitlines():
        if line.startswith("## "):
            heading = line[3:].strip().lower()
            if heading == "acceptance criteria":
                section = "criteria"
            elif heading == "notes":
                section = "notes"
            else:
                section = "other"
            continue
        if section == "preamble":
            if not description_lines and line.startswith("# "):
                description_lines.append(line[2:].strip())
                section = "description"
            continue
        if section == "description":
            description_lines.append(line[1:] if line.startswith("\\") else line)
        elif section == "criteria":
            m = _CRITERION_RE.match(line)
            if m:
                criteria.append(m.group(1).rstrip())
            elif line.startswith("   ") and criteria:
                criteria[-1] += "\n" + line[3:]
        elif section == "notes":
            if line.startswith("- "):
                notes.append(line[2:])
            elif line.startswith("  ") and notes:
                notes[-1] += "\n" + line[2:]

    description = "\n".join(description_lines).strip()
    return description, criteria, notes


def _coerce_timestamp(value: Any) -> str | None:
    """Hand-edited documents may hold unquoted timestamps that YAML loads as datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


# ── rendering ────────────────────────────────────────────────────


def render_task(task: Task) -> str:
    """Regenerate the full document text for *task*."""
    meta: dict[str, Any] = {}
    for key, attr in _HEADER_FIELDS:
        value = getattr(task, attr)
        if key == "status":
            value = task.status.value
        elif key == "dependencies":
            value = list(task.dependencies)
        elif key in _TIMESTAMP_KEYS or key == "testRequirements":
            if value is None:
                continue
        meta[key] = value

    header = yaml.safe_dump(meta, sort_keys=False, default_flow_style=False, allow_unicode=True)
    parts = [FRONT_MATTER_DELIMITER, header.rstrip("\n"), FRONT_MATTER_DELIMITER, ""]

    desc_lines = task.description.splitlines() or [""]
    parts.append(f"# {desc_lines[0]}")
    if len(desc_lines) > 1:
        parts.extend(_escape_description_line(line) for line in desc_lines[1:])
    parts.append("")

    if task.acceptance_criteria:
        parts.append("## Acceptance Criteria")
        parts.append("")
        for i, criterion in enumerate(task.acceptance_criteria, 1):
            first, *rest = criterion.split("\n")
            parts.append(f"{i}. {first}")
            parts.extend(f"   {line}" for line in rest)
        parts.append("")

    if task.notes:
        parts.append("## Notes")
        parts.append("")
        for note in task.notes:
            first, *rest = note.split("\n")
            parts.append(f"- {first}")
            parts.extend(f"  {line}" for line in rest)
        parts.append("")

    return "\n".join(parts)


def _escape_description_line(line: str) -> str:
    """Keep description lines from being read back as section headings."""
    if line.startswith(("## ", "\\")):
        return "\\" + line
    return line


# ── file I/O ─────────────────────────────────────────────────────


def read_task(path: Path) -> Task:
    try:
        text = read_text(path)
    except OSError as exc:
        raise FileSystemError.wrap(f"read task document {path}", exc) from exc
    except UnicodeDecodeError as exc:
        raise ParseError(f"Task document {path} is not valid UTF-8", details={"path": str(path)}) from exc
    return parse_task(text, source=str(path))


def write_task(path: Path, task: Task) -> None:
    try:
        atomic_write_text(path, render_task(task))
    except OSError as exc:
        raise FileSystemError.wrap(f"write task document {path}", exc) from exc
