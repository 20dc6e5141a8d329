"""Built-in tool adapters over the collaborator clients."""

from dataclasses import dataclass

import structlog

from ..base import Tool
from ..registry import ToolRegistry
from .ai_tools import (
    AnalyzeFailureTool,
    DiscoverLocatorTool,
    GenerateTestCodeTool,
    SuggestFixTool,
)
from .clients import (
    AIClient,
    AIResponse,
    ElementRegistryClient,
    IssueTrackerClient,
    TestAnalyticsClient,
    TestRunnerClient,
    VersionControlClient,
    WorkspaceClient,
)
from .integration_tools import (
    AnalyzeTestStabilityTool,
    CommitChangesTool,
    CreateBranchTool,
    CreatePullRequestTool,
    ExecuteTestTool,
    FetchStoryTool,
    QueryElementRegistryTool,
    UpdateElementRegistryTool,
)
from .workspace_tools import (
    ExtractBrokenLocatorTool,
    ModifyFileTool,
    ReadFileTool,
    WriteFileTool,
)

logger = structlog.get_logger()


@dataclass
class ToolClients:
    """Collaborator clients available to the built-in tools. Any may be None."""

    issue_tracker: IssueTrackerClient | None = None
    ai: AIClient | None = None
    version_control: VersionControlClient | None = None
    workspace: WorkspaceClient | None = None
    test_runner: TestRunnerClient | None = None
    element_registry: ElementRegistryClient | None = None
    test_analytics: TestAnalyticsClient | None = None


def build_builtin_tools(clients: ToolClients) -> list[Tool]:
    """Instantiate the built-in tools whose collaborator client is available."""
    tools: list[Tool] = [ExtractBrokenLocatorTool()]

    if clients.issue_tracker is not None:
        tools.append(FetchStoryTool(clients.issue_tracker))
    if clients.ai is not None:
        tools.extend(
            [
                GenerateTestCodeTool(clients.ai),
                AnalyzeFailureTool(clients.ai),
                SuggestFixTool(clients.ai),
                DiscoverLocatorTool(clients.ai),
            ]
        )
    if clients.version_control is not None:
        tools.extend(
            [
                CreateBranchTool(clients.version_control),
                CommitChangesTool(clients.version_control),
                CreatePullRequestTool(clients.version_control),
            ]
        )
    if clients.workspace is not None:
        tools.extend(
            [
                ReadFileTool(clients.workspace),
                WriteFileTool(clients.workspace),
                ModifyFileTool(clients.workspace),
            ]
        )
    if clients.test_runner is not None:
        tools.append(ExecuteTestTool(clients.test_runner))
    if clients.test_analytics is not None:
        tools.append(AnalyzeTestStabilityTool(clients.test_analytics))
    if clients.element_registry is not None:
        tools.extend(
            [
                QueryElementRegistryTool(clients.element_registry),
                UpdateElementRegistryTool(clients.element_registry),
            ]
        )

    return tools


def register_builtin_tools(registry: ToolRegistry, clients: ToolClients) -> int:
    """Register the built-in tools for every client supplied.

    Args:
        registry: Registry to populate
        clients: Available collaborator clients

    Returns:
        Number of tools registered

    Example:
        ```python
        registry = ToolRegistry()
        register_builtin_tools(
            registry, ToolClients(issue_tracker=jira, ai=ai, version_control=github)
        )
        ```
    """
    tools = build_builtin_tools(clients)
    for tool in tools:
        registry.register(tool)

    logger.info(
        "builtin_tools_registered",
        count=len(tools),
        actions=[tool.action_type.value for tool in tools],
    )
    return len(tools)


__all__ = [
    "ToolClients",
    "build_builtin_tools",
    "register_builtin_tools",
    "AIClient",
    "AIResponse",
    "ElementRegistryClient",
    "IssueTrackerClient",
    "TestAnalyticsClient",
    "TestRunnerClient",
    "VersionControlClient",
    "WorkspaceClient",
]
