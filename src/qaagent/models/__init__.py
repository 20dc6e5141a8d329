"""Agent engine data models and schemas."""

from .actions import ActionResult, AgentActionHistory, AgentActionType, AgentPlan
from .agent import (
    AgentConfig,
    AgentGoal,
    AgentStatus,
    AgentType,
    BackoffStrategy,
    RetryPolicy,
)
from .context import AgentContext
from .execution import AgentExecution, AgentResult, ApprovalDecision
from .tool_integration import ToolDefinition, ToolParameter

__all__ = [
    "ActionResult",
    "AgentActionHistory",
    "AgentActionType",
    "AgentPlan",
    "AgentConfig",
    "AgentGoal",
    "AgentStatus",
    "AgentType",
    "BackoffStrategy",
    "RetryPolicy",
    "AgentContext",
    "AgentExecution",
    "AgentResult",
    "ApprovalDecision",
    "ToolDefinition",
    "ToolParameter",
]
