"""Turn free-form agent output into a validated result model.

Strategies are tried in order and the first candidate that validates wins:

1. a ``<tool_call>`` block naming the kind's tool,
2. the first balanced JSON object carrying the kind's identifying field,
3. a legacy ``---... RESULT---`` block in ``key: value`` form.

A candidate that is found but fails validation does not stop the search.
When nothing validates, ``ParseError`` reports what each strategy saw.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ValidationError

from ralphdev import log
from ralphdev.errors import ParseError
from ralphdev.results import (
    CLARIFICATION,
    HEALING,
    IMPLEMENTATION,
    ClarificationQuestions,
    HealingResult,
    ImplementationResult,
    ResultKind,
)

TAIL_CHARS = 200
LOW_CONFIDENCE_THRESHOLD = 0.6

# Legacy fields whose bare values are comma-separated lists.
ARRAY_FIELDS = frozenset({"files_modified", "low_confidence_decisions", "dependencies"})

_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")


def extract(text: str, kind: ResultKind) -> BaseModel:
    """Return the first schema-valid *kind* result found in *text*."""
    reasons: list[str] = []
    strategies = (
        ("tool_call", _tool_call_candidates),
        ("json", _json_candidates),
        ("legacy", _legacy_candidates),
    )
    for strategy, candidates in strategies:
        found = 0
        for candidate in candidates(text, kind):
            found += 1
            try:
                result = kind.model.model_validate(candidate)
            except ValidationError as exc:
                reasons.append(f"{strategy}: candidate failed validation ({exc.error_count()} errors)")
                log.debug(f"{kind.name} {strategy} candidate rejected: {exc}")
                continue
            log.debug(f"Extracted {kind.name} result via {strategy}")
            return result
        if not found:
            reasons.append(f"{strategy}: no candidate found")

    tail = text[-TAIL_CHARS:]
    raise ParseError(
        f"Agent did not return a valid {kind.name} result. "
        f"Expected a {kind.tool_name} tool call, a JSON object with "
        f'"{kind.id_field}", or a legacy result block.\n'
        f"Last {TAIL_CHARS} chars of output:\n{tail}",
        details={"kind": kind.name, "strategies": reasons, "tail": tail},
    )


def extract_implementation(text: str) -> ImplementationResult:
    return extract(text, IMPLEMENTATION)  # type: ignore[return-value]


def extract_healing(text: str) -> HealingResult:
    return extract(text, HEALING)  # type: ignore[return-value]


def extract_clarification(text: str) -> ClarificationQuestions:
    return extract(text, CLARIFICATION)  # type: ignore[return-value]


# ── strategy 1: tool call ────────────────────────────────────────


def _tool_call_candidates(text: str, kind: ResultKind) -> Iterator[Any]:
    pattern = re.compile(
        rf"<tool_call>\s*<name>\s*{re.escape(kind.tool_name)}\s*</name>\s*<input>(.*?)</input>\s*</tool_call>",
        re.IGNORECASE | re.DOTALL,
    )
    for match in pattern.finditer(text):
        try:
            yield json.loads(match.group(1))
        except json.JSONDecodeError:
            log.debug(f"Tool call {kind.tool_name} carried invalid JSON")


# ── strategy 2: embedded JSON ────────────────────────────────────


def _json_candidates(text: str, kind: ResultKind) -> Iterator[Any]:
    decoder = json.JSONDecoder()
    pos = text.find("{")
    while pos != -1:
        try:
            obj, end = decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            pos = text.find("{", pos + 1)
            continue
        if isinstance(obj, dict) and kind.id_field in obj:
            yield obj
            pos = text.find("{", end)
        else:
            # Nested objects may still carry the field.
            pos = text.find("{", pos + 1)


# ── strategy 3: legacy key/value block ───────────────────────────


def _legacy_candidates(text: str, kind: ResultKind) -> Iterator[Any]:
    for start, end in kind.legacy_markers:
        pattern = re.compile(rf"{re.escape(start)}\s*(.*?)\s*{re.escape(end)}", re.IGNORECASE | re.DOTALL)
        for match in pattern.finditer(text):
            yield parse_key_values(match.group(1))


def parse_key_values(block: str) -> dict[str, Any]:
    """Permissive ``key: value`` parser for legacy result blocks."""
    result: dict[str, Any] = {}
    for line in block.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, raw = line.partition(":")
        if not sep:
            continue
        key = key.strip().lstrip("-").strip()
        if key:
            result[key] = _coerce_value(key, raw.strip())
    return result


def _coerce_value(key: str, value: str) -> Any:
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    if _NUMBER_RE.match(value):
        return float(value) if "." in value else int(value)
    if value.startswith("[") and value.endswith("]"):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            inner = value[1:-1]
            return [_strip_quotes(v.strip()) for v in inner.split(",") if v.strip()]
    if key in ARRAY_FIELDS:
        return [_strip_quotes(v.strip()) for v in value.split(",") if v.strip()]
    return _strip_quotes(value)


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


# ── post-validation checks ───────────────────────────────────────


def consistency_warnings(result: BaseModel) -> list[str]:
    """Non-fatal inconsistencies worth surfacing to the orchestrator."""
    warnings: list[str] = []
    status = getattr(result, "status", None)
    verified = getattr(result, "verification_passed", None)
    if status == "success" and verified is False:
        warnings.append("Status is success but verification did not pass")
    if status == "failed" and verified is True:
        warnings.append("Status is failed but verification passed")
    confidence = getattr(result, "confidence_score", None)
    if confidence is not None and confidence < LOW_CONFIDENCE_THRESHOLD:
        warnings.append(f"Low confidence score ({confidence:.2f}), review recommended")
    return warnings
