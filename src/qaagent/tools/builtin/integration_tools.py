"""Tools over the issue tracker, version control, test runner, test analytics
and element registry collaborators."""

from typing import Any

from ...models.actions import AgentActionType
from ...models.tool_integration import ToolDefinition, ToolParameter
from ..base import Tool
from .clients import (
    ElementRegistryClient,
    IssueTrackerClient,
    TestAnalyticsClient,
    TestRunnerClient,
    VersionControlClient,
)

_BRANCH = ToolParameter(
    name="branch_name", type="string", description="Branch name", required=True, min_length=1
)


class FetchStoryTool(Tool):
    def __init__(self, client: IssueTrackerClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.FETCH_JIRA_STORY,
                name="Fetch Story",
                description="Fetch a story and its acceptance criteria from the issue tracker",
                parameters={
                    "jira_key": ToolParameter(
                        name="jira_key", type="string", description="Story key, e.g. QA-123", required=True
                    ),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        story = await self.client.fetch_story(parameters["jira_key"])
        return {"story": story}


class CreateBranchTool(Tool):
    def __init__(self, client: VersionControlClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.CREATE_BRANCH,
                name="Create Branch",
                description="Create a version-control branch for agent changes",
                parameters={
                    "branch_name": _BRANCH,
                    "base_branch": ToolParameter(
                        name="base_branch", type="string", description="Branch to start from"
                    ),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        return await self.client.create_branch(
            parameters["branch_name"], parameters.get("base_branch")
        )


class CommitChangesTool(Tool):
    def __init__(self, client: VersionControlClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.COMMIT_CHANGES,
                name="Commit Changes",
                description="Commit workspace files to a branch",
                parameters={
                    "branch_name": _BRANCH,
                    "message": ToolParameter(
                        name="message", type="string", description="Commit message", required=True
                    ),
                    "file_paths": ToolParameter(
                        name="file_paths", type="array", description="Files to commit", required=True, min_length=1
                    ),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        return await self.client.commit(
            parameters["branch_name"], parameters["message"], parameters["file_paths"]
        )


class CreatePullRequestTool(Tool):
    def __init__(self, client: VersionControlClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.CREATE_PULL_REQUEST,
                name="Create Pull Request",
                description="Open a pull request for an agent branch",
                parameters={
                    "branch_name": _BRANCH,
                    "title": ToolParameter(name="title", type="string", description="PR title", required=True),
                    "body": ToolParameter(name="body", type="string", description="PR description", default=""),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        return await self.client.create_pull_request(
            parameters["branch_name"], parameters["title"], parameters.get("body") or ""
        )


class ExecuteTestTool(Tool):
    def __init__(self, client: TestRunnerClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.EXECUTE_TEST,
                name="Execute Test",
                description="Run a test file one or more times and report the pass count",
                parameters={
                    "test_file": ToolParameter(
                        name="test_file", type="string", description="Test source path", required=True
                    ),
                    "runs": ToolParameter(
                        name="runs", type="integer", description="Number of runs", default=1, min_value=1, max_value=50
                    ),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        runs = int(parameters.get("runs") or 1)
        report = await self.client.run_test(parameters["test_file"], runs)
        return {"test_passed": bool(report.get("passed")), "test_report": report}


class AnalyzeTestStabilityTool(Tool):
    def __init__(self, client: TestAnalyticsClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.ANALYZE_TEST_STABILITY,
                name="Analyze Test Stability",
                description="Report the historical pass/fail pattern of a test",
                parameters={
                    "test_name": ToolParameter(
                        name="test_name", type="string", description="Test identifier", required=True
                    ),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        report = await self.client.get_stability(parameters["test_name"])
        return {
            "is_flaky": bool(report.get("is_flaky")),
            "flakiness_score": report.get("flakiness_score", 0.0),
            "failure_samples": report.get("failure_samples", []),
        }


class QueryElementRegistryTool(Tool):
    def __init__(self, client: ElementRegistryClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.QUERY_ELEMENT_REGISTRY,
                name="Query Element Registry",
                description="Look up known alternative locators for an element",
                parameters={
                    "locator": ToolParameter(name="locator", type="string", description="Current locator", required=True),
                    "page_name": ToolParameter(name="page_name", type="string", description="Page the element lives on"),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        alternatives = await self.client.find_alternatives(
            parameters["locator"], parameters.get("page_name")
        )
        return {"alternative_locators": list(alternatives)}


class UpdateElementRegistryTool(Tool):
    def __init__(self, client: ElementRegistryClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.UPDATE_ELEMENT_REGISTRY,
                name="Update Element Registry",
                description="Record a healed locator in the element registry",
                parameters={
                    "old_locator": ToolParameter(name="old_locator", type="string", description="Broken locator", required=True),
                    "new_locator": ToolParameter(name="new_locator", type="string", description="Working locator", required=True),
                    "page_name": ToolParameter(name="page_name", type="string", description="Page the element lives on"),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        await self.client.update_locator(
            parameters["old_locator"], parameters["new_locator"], parameters.get("page_name")
        )
        return {"registry_updated": True}
