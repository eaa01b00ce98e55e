"""Inquest: adaptive orchestration and answer verification over a running application."""

from .orchestration import OrchestrationEngine, ExecutionContext, ExecutionResult

__all__ = [
    "OrchestrationEngine",
    "ExecutionContext",
    "ExecutionResult",
]
