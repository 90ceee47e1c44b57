"""Schemas for results reported by the delegated agent."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _AgentResult(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class ImplementationResult(_AgentResult):
    task_id: str = Field(description="The task ID that was implemented")
    status: Literal["success", "failed"] = Field(description="Overall implementation status")
    verification_passed: bool = Field(description="Whether verification tests passed")
    notes: str = Field(description="Brief summary of implementation, decisions, or issues")

    tests_passing: str | None = Field(default=None, description='Tests passing count (e.g. "24/24")')
    coverage: float | None = Field(default=None, ge=0, le=100, description="Code coverage percentage")
    files_modified: list[str] | None = Field(default=None, description="Files created or modified")
    duration: str | None = Field(default=None, description='Time taken (e.g. "4m32s")')
    acceptance_criteria_met: str | None = Field(default=None, description='Criteria met count (e.g. "5/5")')
    confidence_score: float | None = Field(default=None, ge=0, le=1, description="Agent confidence, 0.0 to 1.0")
    low_confidence_decisions: list[str] | None = Field(default=None, description="Decisions made with low confidence")


class HealingResult(_AgentResult):
    task_id: str = Field(description="The task ID being healed")
    status: Literal["success", "failed"] = Field(description="Healing outcome")
    verification_passed: bool = Field(description="Whether tests pass after healing")
    attempts: int = Field(ge=1, le=3, description="Number of healing attempts made")
    fix_type: Literal["dependency", "code", "implementation", "config", "unknown"] = Field(
        description="Type of fix applied"
    )
    hypothesis: str = Field(description="Root cause hypothesis")
    notes: str = Field(description="Healing process summary")
    solution_applied: str | None = Field(default=None, description="What was done to fix the issue")


class ClarificationOption(_AgentResult):
    label: str
    description: str


class ClarificationQuestion(_AgentResult):
    question: str
    header: str = Field(max_length=12, description="Short label, at most 12 characters")
    multiSelect: bool
    options: list[ClarificationOption] = Field(min_length=2, max_length=4)


class ClarificationQuestions(_AgentResult):
    questions: list[ClarificationQuestion] = Field(min_length=1, max_length=4)


@dataclass(frozen=True)
class ResultKind:
    """Everything the extractor needs to know about one result schema."""

    name: str
    model: type[_AgentResult]
    tool_name: str
    id_field: str
    description: str
    legacy_markers: tuple[tuple[str, str], ...] = ()

    def tool_definition(self) -> dict[str, Any]:
        """Tool description an agent can be offered to report this result."""
        return {
            "name": self.tool_name,
            "description": self.description,
            "input_schema": self.model.model_json_schema(),
        }


IMPLEMENTATION = ResultKind(
    name="implementation",
    model=ImplementationResult,
    tool_name="report_implementation_result",
    id_field="task_id",
    description="Report the result of task implementation. Must be called when the task is complete.",
    legacy_markers=(
        ("---IMPLEMENTATION RESULT---", "---END IMPLEMENTATION RESULT---"),
        ("---IMPLEMENTATION RESULTS---", "---END IMPLEMENTATION RESULTS---"),
        ("--- IMPLEMENTATION RESULT ---", "--- END IMPLEMENTATION RESULT ---"),
    ),
)

HEALING = ResultKind(
    name="healing",
    model=HealingResult,
    tool_name="report_healing_result",
    id_field="task_id",
    description="Report the result of healing a failed task.",
    legacy_markers=(
        ("---HEALING RESULT---", "---END HEALING RESULT---"),
        ("---HEALING RESULTS---", "---END HEALING RESULTS---"),
        ("--- HEALING RESULT ---", "--- END HEALING RESULT ---"),
    ),
)

CLARIFICATION = ResultKind(
    name="clarification",
    model=ClarificationQuestions,
    tool_name="output_clarification_questions",
    id_field="questions",
    description="Output structured clarification questions for the user.",
)

RESULT_KINDS: dict[str, ResultKind] = {k.name: k for k in (IMPLEMENTATION, HEALING, CLARIFICATION)}
