"""AI-backed tools.

Every tool here forwards to ``AIClient.complete`` with a task name and
reports the attributed spend and token counts alongside the response content.
"""

from typing import Any

from ...models.actions import AgentActionType
from ...models.tool_integration import ToolDefinition, ToolParameter
from ..base import Tool
from .clients import AIClient


class AITool(Tool):
    """Tool that delegates to the AI collaborator."""

    task: str

    def __init__(self, client: AIClient, metadata: ToolDefinition):
        super().__init__(metadata)
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.complete(self.task, parameters)
        self.logger.info(
            "ai_task_completed",
            task=self.task,
            cost=response.cost,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
        )
        return {
            **response.content,
            "ai_cost": response.cost,
            "prompt_tokens": response.prompt_tokens,
            "completion_tokens": response.completion_tokens,
        }


class GenerateTestCodeTool(AITool):
    """Generate a test from a story. Content: ``test_code``, ``test_class_name``."""

    task = "generate_test_code"

    def __init__(self, client: AIClient):
        super().__init__(
            client,
            ToolDefinition(
                action_type=AgentActionType.GENERATE_TEST_CODE,
                name="Generate Test Code",
                description="Generate automated test code from a user story",
                parameters={
                    "story": ToolParameter(
                        name="story", type="object", description="Story fields", required=True
                    ),
                    "framework": ToolParameter(
                        name="framework",
                        type="string",
                        description="Target test framework",
                        default="playwright",
                    ),
                },
            ),
        )


class AnalyzeFailureTool(AITool):
    """Explain why a test fails. Content: ``root_cause``, ``failure_pattern``."""

    task = "analyze_failure"

    def __init__(self, client: AIClient):
        super().__init__(
            client,
            ToolDefinition(
                action_type=AgentActionType.ANALYZE_FAILURE,
                name="Analyze Failure",
                description="Identify the root cause of failing or flaky test runs",
                parameters={
                    "test_name": ToolParameter(
                        name="test_name", type="string", description="Test identifier", required=True
                    ),
                    "failure_samples": ToolParameter(
                        name="failure_samples", type="array", description="Recent failure outputs"
                    ),
                },
            ),
        )


class SuggestFixTool(AITool):
    """Propose a fixed test source. Content: ``fixed_code``, ``fix_description``."""

    task = "suggest_fix"

    def __init__(self, client: AIClient):
        super().__init__(
            client,
            ToolDefinition(
                action_type=AgentActionType.SUGGEST_FIX,
                name="Suggest Fix",
                description="Suggest a code change that removes the failure cause",
                parameters={
                    "test_file": ToolParameter(
                        name="test_file", type="string", description="Test source path", required=True
                    ),
                    "root_cause": ToolParameter(
                        name="root_cause", type="string", description="Diagnosed root cause"
                    ),
                    "previous_attempt": ToolParameter(
                        name="previous_attempt",
                        type="object",
                        description="Result of the last fix that did not verify",
                    ),
                },
            ),
        )


class DiscoverLocatorTool(AITool):
    """Find new locators for a broken element. Content: ``discovered_locators``."""

    task = "discover_locator"

    def __init__(self, client: AIClient):
        super().__init__(
            client,
            ToolDefinition(
                action_type=AgentActionType.DISCOVER_LOCATOR,
                name="Discover Locator",
                description="Use AI to propose locators for an element whose locator broke",
                parameters={
                    "broken_locator": ToolParameter(
                        name="broken_locator", type="string", description="Locator that no longer matches", required=True
                    ),
                    "page_name": ToolParameter(
                        name="page_name", type="string", description="Page the element lives on"
                    ),
                    "tried_locators": ToolParameter(
                        name="tried_locators", type="array", description="Locators already known not to work"
                    ),
                },
            ),
        )
