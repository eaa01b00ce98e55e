"""Orchestration module for the adaptive investigation engine.

This module provides the decide -> act -> verify loop:
- OrchestrationEngine: explicit state machine driving one session
- DecisionOracle: picks the next action (LLM-backed or fallback policy)
- ActionDispatcher: executes tools and sub-agents behind one result boundary
- LoopGuard: refuses repeated actions
- EvidenceValidator: grades answers against collected evidence
- SessionLogger / PatternStore: per-session trace and cross-session learning
"""

from .models import (
    Action,
    ActionKind,
    ConversationTurn,
    Decision,
    DecisionStatus,
    EngineState,
    Evidence,
    EvidenceKind,
    EvidenceValidation,
    ExecutionContext,
    ExecutionResult,
    ExecutionStep,
    IssueDetection,
    NextAction,
    Quality,
    QueryPattern,
    SessionLog,
    Severity,
    StepUpdate,
    TestResult,
    TestType,
    ToolFailure,
    ToolResult,
    ToolSuccess,
    VerificationResult,
    normalize_tool_result,
)
from .errors import (
    InquestError,
    OracleError,
    MalformedDecisionError,
    SessionFinalizedError,
    UnknownCapabilityError,
)
from .loop_guard import LoopGuard
from .tools import (
    ToolDefinition,
    ToolRegistry,
    HTTPToolBackend,
    TOOL_DEFINITIONS,
    AGENT_DEFINITIONS,
)
from .dispatcher import ActionDispatcher, result_to_text
from .oracle import DecisionOracle, LLMDecisionOracle, OracleRequest, fallback_decision
from .evidence import EvidenceValidator
from .session_logger import SessionLogger, assess_quality, load_session_log
from .pattern_store import PatternStore
from .solution_tester import SolutionTester
from .engine import OrchestrationEngine

__all__ = [
    # Models
    "Action",
    "ActionKind",
    "ConversationTurn",
    "Decision",
    "DecisionStatus",
    "EngineState",
    "Evidence",
    "EvidenceKind",
    "EvidenceValidation",
    "ExecutionContext",
    "ExecutionResult",
    "ExecutionStep",
    "IssueDetection",
    "NextAction",
    "Quality",
    "QueryPattern",
    "SessionLog",
    "Severity",
    "StepUpdate",
    "TestResult",
    "TestType",
    "ToolFailure",
    "ToolResult",
    "ToolSuccess",
    "VerificationResult",
    "normalize_tool_result",
    # Errors
    "InquestError",
    "OracleError",
    "MalformedDecisionError",
    "SessionFinalizedError",
    "UnknownCapabilityError",
    # Loop
    "LoopGuard",
    "OrchestrationEngine",
    # Tools
    "ToolDefinition",
    "ToolRegistry",
    "HTTPToolBackend",
    "TOOL_DEFINITIONS",
    "AGENT_DEFINITIONS",
    "ActionDispatcher",
    "result_to_text",
    # Decisions
    "DecisionOracle",
    "LLMDecisionOracle",
    "OracleRequest",
    "fallback_decision",
    # Verification and learning
    "EvidenceValidator",
    "SolutionTester",
    "SessionLogger",
    "assess_quality",
    "load_session_log",
    "PatternStore",
]
