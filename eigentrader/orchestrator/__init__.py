"""
Per-iteration trading flows.

- DeterministicOrchestrator: fixed data gathering + reasoning-only decision + guarded execution.
- ToolCallingAgent: model-driven tool loop bounded by the inference adapter.
"""

from eigentrader.orchestrator.deterministic import (
    DeterministicOrchestrator,
    ExecutionReport,
    GuardConfig,
    IterationResult,
    TradingContext,
    build_decision_prompt,
    format_history,
    format_tool_results,
    utc_timestamp,
)
from eigentrader.orchestrator.tool_agent import ToolCallingAgent

__all__ = [
    "DeterministicOrchestrator",
    "ExecutionReport",
    "GuardConfig",
    "IterationResult",
    "TradingContext",
    "build_decision_prompt",
    "format_history",
    "format_tool_results",
    "utc_timestamp",
    "ToolCallingAgent",
]
