"""Base tool interface for the agent engine.

This module defines the Tool abstract base class that every action
implementation inherits from. A tool is bound to exactly one action type,
validates its own parameters against its definition and returns a plain
output map. Collaborator-backed tools live in ``qaagent.tools.builtin``.
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog

from ..models.actions import AgentActionType
from ..models.tool_integration import ToolDefinition, ToolParameter

logger = structlog.get_logger()


class Tool(ABC):
    """Abstract base class for all tools.

    Attributes:
        metadata: ToolDefinition with the action type, description and parameters

    Example:
        ```python
        class FetchStoryTool(Tool):
            def __init__(self, client: IssueTrackerClient):
                super().__init__(
                    ToolDefinition(
                        action_type=AgentActionType.FETCH_JIRA_STORY,
                        name="Fetch Story",
                        description="Fetch a story from the issue tracker",
                        parameters={
                            "jira_key": ToolParameter(
                                name="jira_key",
                                type="string",
                                description="Story key",
                                required=True,
                            )
                        },
                    )
                )
                self.client = client

            async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
                return {"story": await self.client.fetch_story(parameters["jira_key"])}
        ```
    """

    def __init__(self, metadata: ToolDefinition):
        """Initialize tool with metadata definition.

        Args:
            metadata: ToolDefinition containing tool configuration
        """
        self.metadata = metadata
        self.logger = logger.bind(
            action_type=metadata.action_type.value,
            tool_name=metadata.name,
        )

    @property
    def action_type(self) -> AgentActionType:
        return self.metadata.action_type

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def description(self) -> str:
        return self.metadata.description

    @property
    def parameter_schema(self) -> dict[str, str]:
        """Parameter name to ``"type (required|optional) - description"``."""
        return {name: param.describe() for name, param in self.metadata.parameters.items()}

    @abstractmethod
    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        """Execute the tool with validated parameters.

        Implementations raise on failure; the registry wraps any exception as
        ToolExecutionFailedError. Collaborators that report failure as data may
        instead return ``{"success": False, "error": "..."}``, which the engine
        records as a failed action. AI-backed tools report spend through the
        ``ai_cost``, ``prompt_tokens`` and ``completion_tokens`` keys.

        Args:
            parameters: Dictionary of validated parameter values

        Returns:
            Output map recorded verbatim in the action history
        """

    async def validate_parameters(
        self,
        parameters: dict[str, Any]
    ) -> tuple[bool, str | None]:
        """Validate parameters against the tool's parameter definitions.

        Parameters the definition does not mention are passed through.

        Returns:
            Tuple of (is_valid, error_message). If valid, error_message is None.
        """
        definitions = self.metadata.parameters

        missing = [
            name
            for name, definition in definitions.items()
            if definition.required and parameters.get(name) is None
        ]
        if missing:
            error = f"Missing required parameter(s): {', '.join(missing)}"
            self.logger.warning("parameter_validation_failed", error=error, missing=missing)
            return False, error

        for name, value in parameters.items():
            definition = definitions.get(name)
            if definition is None or value is None:
                continue

            error = _check_value(name, value, definition)
            if error is not None:
                self.logger.warning(
                    "parameter_validation_failed",
                    error=error,
                    parameter=name,
                    expected_type=definition.type,
                    actual_type=type(value).__name__,
                )
                return False, error

        return True, None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(action_type={self.action_type.value!r})"


_PYTHON_TYPES: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "number": (int, float),
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
}


def _check_value(name: str, value: Any, definition: ToolParameter) -> str | None:
    """First constraint ``value`` violates, or None."""
    expected = definition.type
    python_type = _PYTHON_TYPES.get(expected)

    if python_type is not None:
        # bool is an int subclass but never a valid number
        numeric = expected in ("number", "integer")
        if numeric and isinstance(value, bool):
            return f"Parameter '{name}' must be {expected}, got bool"
        whole_float = expected == "integer" and isinstance(value, float) and value.is_integer()
        if not whole_float and not isinstance(value, python_type):
            return f"Parameter '{name}' must be {expected}, got {type(value).__name__}"

    if definition.enum and value not in definition.enum:
        return f"Parameter '{name}' must be one of {definition.enum}, got {value!r}"

    if isinstance(value, (str, list)):
        size = len(value)
        if definition.min_length is not None and size < definition.min_length:
            return f"Parameter '{name}' is shorter than {definition.min_length}"
        if definition.max_length is not None and size > definition.max_length:
            return f"Parameter '{name}' is longer than {definition.max_length}"

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if definition.min_value is not None and value < definition.min_value:
            return f"Parameter '{name}' must be >= {definition.min_value}"
        if definition.max_value is not None and value > definition.max_value:
            return f"Parameter '{name}' must be <= {definition.max_value}"

    return None
