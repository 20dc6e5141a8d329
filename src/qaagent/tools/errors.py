"""Tool registry error hierarchy.

Every failure raised by ``ToolRegistry.execute`` is a ``ToolError`` carrying
the action type it was raised for and a stable error code, so the engine can
record it verbatim in the action history.
"""

from enum import Enum

from ..models.actions import AgentActionType


class ToolErrorCode(str, Enum):
    """Detailed error codes for tool failures."""

    TOOL_NOT_FOUND = "TOOL_E1301"  # No tool registered for the action
    INVALID_PARAMETERS = "TOOL_E1001"  # Tool validator rejected the parameters
    EXECUTION_FAILED = "TOOL_E2101"  # Tool raised during execution
    CIRCUIT_OPEN = "TOOL_E2201"  # Circuit breaker blocking the action


class ToolError(Exception):
    """Base exception for tool registry failures."""

    code: ToolErrorCode = ToolErrorCode.EXECUTION_FAILED

    def __init__(self, action_type: AgentActionType, message: str) -> None:
        super().__init__(message)
        self.action_type = action_type
        self.message = message


class ToolNotFoundError(ToolError):
    """Raised when no tool is registered for an action type."""

    code = ToolErrorCode.TOOL_NOT_FOUND

    def __init__(self, action_type: AgentActionType) -> None:
        super().__init__(action_type, f"No tool registered for action: {action_type.value}")


class InvalidParametersError(ToolError):
    """Raised when a tool rejects its parameters."""

    code = ToolErrorCode.INVALID_PARAMETERS


class ToolExecutionFailedError(ToolError):
    """Raised when a tool fails while executing.

    The original exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        action_type: AgentActionType,
        message: str,
        code: ToolErrorCode = ToolErrorCode.EXECUTION_FAILED,
    ) -> None:
        super().__init__(action_type, message)
        self.code = code
