"""Tool registry mapping action types to executable tools.

The registry is the single entry point through which agents act: it looks up
the tool bound to an action type, runs the tool's own parameter validation,
and executes it behind a per-action circuit breaker. It never retries or
schedules anything; retry policy belongs to the strategies.
"""

import time
from collections import defaultdict
from typing import Any

import structlog

from ..models.actions import AgentActionType
from ..models.tool_integration import CircuitBreakerConfig
from ..services.circuit_breaker import CircuitOpenError, ToolCircuitBreaker
from .base import Tool
from .errors import (
    InvalidParametersError,
    ToolErrorCode,
    ToolExecutionFailedError,
    ToolNotFoundError,
)

logger = structlog.get_logger()


class ToolRegistry:
    """Registry of tools keyed by action type.

    Registering a second tool for the same action type replaces the first
    (last registration wins) and logs a warning.

    Attributes:
        _tools: Dictionary mapping action type to Tool instance
        _breakers: Circuit breaker per action type, created on first execution

    Example:
        ```python
        registry = ToolRegistry()
        registry.register(FetchStoryTool(jira_client))

        if registry.has_tool_for(AgentActionType.FETCH_JIRA_STORY):
            output = await registry.execute(
                AgentActionType.FETCH_JIRA_STORY, {"jira_key": "QA-42"}
            )
        ```
    """

    def __init__(self, circuit_config: CircuitBreakerConfig | None = None):
        """Initialize empty tool registry.

        Args:
            circuit_config: Circuit breaker settings applied to every action
        """
        self._tools: dict[AgentActionType, Tool] = {}
        self._breakers: dict[AgentActionType, ToolCircuitBreaker] = {}
        self._circuit_config = circuit_config or CircuitBreakerConfig()
        self.logger = logger.bind(component="tool_registry")

    def register(self, tool: Tool) -> None:
        """Register a tool under its action type.

        Args:
            tool: Tool instance to register

        Raises:
            ValueError: If tool or its metadata is None
        """
        if tool is None or tool.metadata is None:
            raise ValueError("Tool and tool metadata cannot be None")

        action_type = tool.action_type
        previous = self._tools.get(action_type)
        if previous is not None:
            self.logger.warning(
                "tool_replaced",
                action_type=action_type.value,
                old_tool=previous.name,
                new_tool=tool.name,
            )

        self._tools[action_type] = tool
        self.logger.info(
            "tool_registered",
            action_type=action_type.value,
            name=tool.name,
            version=tool.metadata.version,
        )

    def unregister(self, action_type: AgentActionType) -> bool:
        """Remove the tool for an action type.

        Returns:
            True if a tool was removed, False if none was registered
        """
        if action_type not in self._tools:
            return False
        del self._tools[action_type]
        self._breakers.pop(action_type, None)
        self.logger.info("tool_unregistered", action_type=action_type.value)
        return True

    def has_tool_for(self, action_type: AgentActionType) -> bool:
        return action_type in self._tools

    def get(self, action_type: AgentActionType) -> Tool | None:
        return self._tools.get(action_type)

    def lookup(self, action_type: AgentActionType) -> Tool:
        """Get the tool for an action type.

        Raises:
            ToolNotFoundError: If no tool is registered for the action type
        """
        tool = self._tools.get(action_type)
        if tool is None:
            raise ToolNotFoundError(action_type)
        return tool

    async def execute(
        self,
        action_type: AgentActionType,
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        """Validate and execute the tool bound to an action type.

        Args:
            action_type: Action to execute
            parameters: Parameters for the tool

        Returns:
            The tool's output map, unmodified

        Raises:
            ToolNotFoundError: No tool registered for the action type
            InvalidParametersError: The tool rejected the parameters
            ToolExecutionFailedError: The tool raised, or its circuit is open
        """
        tool = self.lookup(action_type)

        is_valid, error = await tool.validate_parameters(parameters)
        if not is_valid:
            raise InvalidParametersError(
                action_type, error or f"Invalid parameters for {action_type.value}"
            )

        breaker = self._get_breaker(action_type)
        start_time = time.perf_counter()
        try:
            output = await breaker.call(tool.execute, parameters)
        except CircuitOpenError as e:
            self.logger.warning("tool_circuit_open", action_type=action_type.value)
            raise ToolExecutionFailedError(
                action_type, str(e), code=ToolErrorCode.CIRCUIT_OPEN
            ) from e
        except Exception as e:
            self.logger.error(
                "tool_execution_failed",
                action_type=action_type.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ToolExecutionFailedError(
                action_type, f"{tool.name} failed: {e}"
            ) from e

        self.logger.debug(
            "tool_executed",
            action_type=action_type.value,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return output

    def get_tool_catalog(self) -> str:
        """Human-readable catalog of every registered tool, sorted by name."""
        lines = ["=== AVAILABLE TOOLS ===", ""]
        for tool in sorted(self._tools.values(), key=lambda t: t.name):
            lines.append(f"Tool: {tool.name}")
            lines.append(f"Action: {tool.action_type.value}")
            lines.append(f"Description: {tool.description}")
            schema = tool.parameter_schema
            if schema:
                lines.append("Parameters:")
                for param_name, param_desc in schema.items():
                    lines.append(f"  - {param_name}: {param_desc}")
            lines.append("")
        return "\n".join(lines)

    def get_tools_by_category(self) -> dict[str, list[Tool]]:
        """Group registered tools by action category."""
        categories: dict[str, list[Tool]] = defaultdict(list)
        for tool in self._tools.values():
            categories[tool.action_type.category].append(tool)
        return dict(categories)

    def available_action_types(self) -> list[AgentActionType]:
        return sorted(self._tools, key=lambda action: action.value)

    def get_stats(self) -> dict[str, Any]:
        """Registry statistics including circuit breaker state per action."""
        return {
            "total_tools": len(self._tools),
            "categories": {
                category: len(tools)
                for category, tools in self.get_tools_by_category().items()
            },
            "circuits": {
                action.value: breaker.get_stats()
                for action, breaker in self._breakers.items()
            },
        }

    def _get_breaker(self, action_type: AgentActionType) -> ToolCircuitBreaker:
        breaker = self._breakers.get(action_type)
        if breaker is None:
            breaker = ToolCircuitBreaker(action_type, self._circuit_config)
            self._breakers[action_type] = breaker
        return breaker

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, action_type: AgentActionType) -> bool:
        return action_type in self._tools

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={len(self._tools)})"
