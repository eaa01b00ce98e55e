"""Data models for the orchestration and verification engine.

Runtime values that live only for one session (actions, tool results,
execution context) are dataclasses. Anything that crosses a process
boundary (oracle decisions, session logs, query patterns) is a pydantic
model so it can be validated on the way in and dumped on the way out.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field, field_serializer, field_validator


class ActionKind(str, Enum):
    """What kind of collaborator an action invokes."""

    TOOL = "tool"
    AGENT = "agent"
    SYNTHESIS = "synthesis"


class DecisionStatus(str, Enum):
    """Status reported by the decision oracle."""

    CONTINUE = "continue"
    DONE = "done"
    NEED_CLARIFICATION = "need_clarification"
    ERROR = "error"


class EvidenceKind(str, Enum):
    """Kind of proof collected during a session."""

    CODE = "code"
    RUNTIME_DATA = "runtime_data"
    FILE_CONTENT = "file_content"


class Severity(str, Enum):
    """Severity of a detected issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Quality(str, Enum):
    """Overall quality grade of a finalized session."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class EngineState(Enum):
    """States of the orchestration controller."""

    DECIDING = "deciding"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


class TestType(str, Enum):
    """Kinds of solution checks run against the live application."""

    __test__ = False  # not a pytest test class

    NAVIGATION = "navigation"
    DATA_BINDING = "data_binding"
    FUNCTION_CALL = "function_call"
    STYLE_APPLICATION = "style_application"


class QueryType(str, Enum):
    """Coarse topic of a user query."""

    NAVIGATION = "navigation"
    DATA = "data"
    STYLE = "style"
    ERROR = "error"
    CODE = "code"
    GENERAL = "general"


class QueryIntent(str, Enum):
    """What the user wants to get out of a query."""

    HOW = "how"
    WHAT = "what"
    WHERE = "where"
    WHY = "why"
    GENERAL = "general"


def clamp_confidence(value: Any) -> int:
    """Coerce any confidence-like value into an int in [0, 100]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number:  # NaN
        return 0
    return int(max(0, min(100, round(number))))


def canonical_params(params: dict[str, Any] | None) -> str:
    """Stable JSON rendering of action params, used to compare actions."""
    return json.dumps(params or {}, sort_keys=True, default=str)


def json_safe(value: Any) -> Any:
    """Copy of ``value`` that only holds JSON types; unknown objects become strings."""
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return str(value)


# ============================================================================
# Session-scoped runtime values
# ============================================================================


@dataclass(frozen=True)
class Action:
    """One step taken by the engine. Never mutated once in the history."""

    step: int
    kind: ActionKind
    name: str
    params: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    result: str | None = None
    error: str | None = None

    @property
    def signature(self) -> tuple[str, str]:
        """(name, canonical params) pair used for repetition checks."""
        return self.name, canonical_params(self.params)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def completed(self, result: str | None = None, error: str | None = None) -> Action:
        """Return a copy of this action carrying its outcome."""
        return replace(self, result=result, error=error)


@dataclass(frozen=True)
class ToolSuccess:
    """A tool or agent returned data."""

    data: Any = None
    success: Literal[True] = field(default=True, init=False)


@dataclass(frozen=True)
class ToolFailure:
    """A tool or agent reported an error."""

    error: str
    success: Literal[False] = field(default=False, init=False)


ToolResult = ToolSuccess | ToolFailure


def normalize_tool_result(raw: Any) -> ToolResult:
    """Fold whatever a collaborator returned into a ToolResult.

    Collaborators may return a ToolResult, a ``{"success": ..., ...}``
    envelope, or bare data.
    """
    if isinstance(raw, (ToolSuccess, ToolFailure)):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("success"), bool):
        if not raw["success"]:
            return ToolFailure(error=str(raw.get("error") or "Unknown error"))
        if "data" in raw:
            return ToolSuccess(data=raw["data"])
        return ToolSuccess(data={k: v for k, v in raw.items() if k != "success"})
    return ToolSuccess(data=raw)


@dataclass
class ConversationTurn:
    """A prior message in the surrounding chat."""

    role: str
    text: str


@dataclass
class StepUpdate:
    """Progress notification sent to the observer."""

    type: Literal["step", "complete"]
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionContext:
    """Session-scoped identifiers and callbacks passed into ``run``."""

    channel_id: str | None = None
    project_location: str | None = None
    conversation_history: list[ConversationTurn] = field(default_factory=list)
    on_step_update: Callable[[StepUpdate], None] | None = None


# ============================================================================
# Oracle decisions
# ============================================================================


class NextAction(BaseModel):
    """The action the oracle proposes when it wants to continue."""

    kind: ActionKind = Field(ActionKind.TOOL, alias="type")
    name: str
    params: dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""

    model_config = {"populate_by_name": True}

    @field_validator("params", mode="before")
    @classmethod
    def _none_params(cls, value: Any) -> Any:
        return value or {}

    def to_action(self, step: int) -> Action:
        return Action(
            step=step,
            kind=self.kind,
            name=self.name,
            params=dict(self.params),
            reasoning=self.reasoning,
        )


class Decision(BaseModel):
    """The oracle's verdict for one cycle of the loop."""

    status: DecisionStatus
    next_action: NextAction | None = Field(None, alias="nextAction")
    final_answer: str | None = Field(None, alias="finalAnswer")
    clarification_needed: str | None = Field(None, alias="clarificationNeeded")
    what_we_know: list[str] = Field(default_factory=list, alias="whatWeKnow")
    what_we_missing: list[str] = Field(default_factory=list, alias="whatWeMissing")
    confidence: int = 0
    reasoning: str = ""
    pattern: str | None = None

    model_config = {"populate_by_name": True}

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_confidence(value)

    @field_validator("what_we_know", "what_we_missing", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


# ============================================================================
# Session log
# ============================================================================


class Evidence(BaseModel):
    """A piece of proof backing an answer."""

    kind: EvidenceKind = Field(..., alias="type")
    source: str
    content: str = ""
    verified: bool = False

    model_config = {"populate_by_name": True}


class IssueDetection(BaseModel):
    """A problem noticed while a session ran."""

    issue: str
    severity: Severity
    detected_at: datetime = Field(default_factory=datetime.now, alias="detectedAt")
    step: int | None = None

    model_config = {"populate_by_name": True}


class ExecutionStep(BaseModel):
    """An executed action plus what the engine knew at that point."""

    step: int
    kind: ActionKind = Field(..., alias="type")
    name: str
    params: dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    result: str | None = None
    error: str | None = None
    duration: float = 0.0
    confidence: int = 0
    what_we_know: list[str] = Field(default_factory=list, alias="whatWeKnow")
    what_we_missing: list[str] = Field(default_factory=list, alias="whatWeMissing")
    evidence_found: list[Evidence] = Field(default_factory=list, alias="evidenceFound")
    evidence_missing: list[str] = Field(default_factory=list, alias="evidenceMissing")

    model_config = {"populate_by_name": True}

    @field_serializer("params")
    def _json_params(self, params: dict[str, Any]) -> Any:
        return json_safe(params)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_confidence(value)

    @classmethod
    def from_action(
        cls,
        action: Action,
        decision: Decision | None = None,
        duration: float = 0.0,
        evidence_found: list[Evidence] | None = None,
    ) -> ExecutionStep:
        """Build a log entry from a completed action and the decision behind it."""
        return cls(
            step=action.step,
            kind=action.kind,
            name=action.name,
            params=dict(action.params),
            reasoning=action.reasoning,
            timestamp=action.timestamp,
            result=action.result,
            error=action.error,
            duration=duration,
            confidence=decision.confidence if decision else 0,
            what_we_know=list(decision.what_we_know) if decision else [],
            what_we_missing=list(decision.what_we_missing) if decision else [],
            evidence_found=evidence_found or [],
            evidence_missing=list(decision.what_we_missing) if decision else [],
        )


class SessionMetrics(BaseModel):
    """Aggregates maintained while steps are logged."""

    total_steps: int = Field(0, alias="totalSteps")
    total_duration: float = Field(0.0, alias="totalDuration")
    tools_used: list[str] = Field(default_factory=list, alias="toolsUsed")
    agents_used: list[str] = Field(default_factory=list, alias="agentsUsed")
    loops_detected: int = Field(0, alias="loopsDetected")
    evidence_collected: int = Field(0, alias="evidenceCollected")
    evidence_missing: int = Field(0, alias="evidenceMissing")

    model_config = {"populate_by_name": True}


class VerificationResult(BaseModel):
    """Outcome of grading an answer against collected evidence."""

    verified: bool
    confidence: int
    evidence_gaps: list[str] = Field(default_factory=list, alias="evidenceGaps")
    claims: list[str] = Field(default_factory=list)
    claims_verified: int = Field(0, alias="claimsVerified")
    claims_unverified: int = Field(0, alias="claimsUnverified")

    model_config = {"populate_by_name": True}

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_confidence(value)


class TestResult(BaseModel):
    """Outcome of checking a proposed solution in the running app."""

    __test__ = False  # not a pytest test class

    test_type: TestType = Field(..., alias="testType")
    test_code: str = Field("", alias="testCode")
    success: bool
    actual_result: Any = Field(None, alias="actualResult")
    error: str | None = None
    duration: float = 0.0

    model_config = {"populate_by_name": True}

    @field_serializer("actual_result")
    def _json_result(self, actual_result: Any) -> Any:
        return json_safe(actual_result)


class SessionLog(BaseModel):
    """Full record of one answered query."""

    session_id: str = Field(..., alias="sessionId")
    user_query: str = Field(..., alias="userQuery")
    timestamp: datetime = Field(default_factory=datetime.now)
    query_analysis: dict[str, Any] | None = Field(None, alias="queryAnalysis")
    execution_steps: list[ExecutionStep] = Field(default_factory=list, alias="executionSteps")
    final_answer: str = Field("", alias="finalAnswer")
    overall_confidence: int = Field(0, alias="overallConfidence")
    quality: Quality = Quality.LOW
    issues_detected: list[IssueDetection] = Field(default_factory=list, alias="issuesDetected")
    recommendations: list[str] = Field(default_factory=list)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    verification_result: VerificationResult | None = Field(None, alias="verificationResult")
    test_results: list[TestResult] = Field(default_factory=list, alias="testResults")
    pattern_match: str | None = Field(None, alias="patternMatch")

    model_config = {"populate_by_name": True}

    @field_serializer("query_analysis")
    def _json_analysis(self, analysis: dict[str, Any] | None) -> Any:
        return json_safe(analysis)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


# ============================================================================
# Learned patterns
# ============================================================================


class QueryPattern(BaseModel):
    """A reusable query -> strategy mapping learned from past sessions."""

    id: str
    query_type: QueryType = Field(..., alias="queryType")
    intent: QueryIntent
    keywords: set[str] = Field(default_factory=set)
    successful_steps: list[str] = Field(default_factory=list, alias="successfulSteps")
    tool_sequence: list[str] = Field(default_factory=list, alias="toolSequence")
    average_confidence: int = Field(0, alias="averageConfidence")
    usage_count: int = Field(1, alias="usageCount")
    success_count: int = Field(0, alias="successCount")
    failure_count: int = Field(0, alias="failureCount")
    last_used: datetime = Field(default_factory=datetime.now, alias="lastUsed")
    created: datetime = Field(default_factory=datetime.now)
    example_query: str = Field("", alias="exampleQuery")
    evidence_types: set[EvidenceKind] = Field(default_factory=set, alias="evidenceTypes")

    model_config = {"populate_by_name": True}

    @field_serializer("keywords")
    def _sorted_keywords(self, keywords: set[str]) -> list[str]:
        return sorted(keywords)

    @field_serializer("evidence_types")
    def _sorted_evidence(self, kinds: set[EvidenceKind]) -> list[str]:
        return sorted(kind.value for kind in kinds)

    @property
    def success_rate(self) -> float:
        return self.success_count / self.usage_count if self.usage_count else 0.0


# ============================================================================
# Results
# ============================================================================


@dataclass
class EvidenceValidation:
    """Full evidence validator output."""

    verified: bool
    confidence: int
    has_code_evidence: bool
    has_runtime_data: bool
    has_file_content: bool
    missing_evidence: list[str]
    can_answer: bool
    claims: list[str] = field(default_factory=list)
    claims_verified: list[str] = field(default_factory=list)
    claims_unverified: list[str] = field(default_factory=list)
    evidence_gaps: list[str] = field(default_factory=list)

    def to_verification_result(self) -> VerificationResult:
        return VerificationResult(
            verified=self.verified,
            confidence=self.confidence,
            evidence_gaps=list(self.evidence_gaps),
            claims=list(self.claims),
            claims_verified=len(self.claims_verified),
            claims_unverified=len(self.claims_unverified),
        )


@dataclass
class ExecutionResult:
    """What ``OrchestrationEngine.run`` hands back to the caller."""

    answer: str
    action_history: list[Action]
    confidence: int
    session_id: str
    quality: Quality
    pattern: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    verification: VerificationResult | None = None
    test_results: list[TestResult] = field(default_factory=list)
