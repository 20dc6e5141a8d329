"""Action catalog, plans and action results for agent executions."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class AgentActionType(str, Enum):
    """Every action an agent can take.

    Each action type maps to at most one registered tool. Control actions
    (COMPLETE, ABORT, REQUEST_APPROVAL) are handled by the engine itself.
    """

    # Issue tracker
    FETCH_JIRA_STORY = "fetch_jira_story"
    UPDATE_JIRA_STATUS = "update_jira_status"
    ADD_JIRA_COMMENT = "add_jira_comment"

    # AI
    GENERATE_TEST_CODE = "generate_test_code"
    ANALYZE_FAILURE = "analyze_failure"
    SUGGEST_FIX = "suggest_fix"
    PLAN_NEXT_STEP = "plan_next_step"
    DISCOVER_LOCATOR = "discover_locator"

    # Test execution
    EXECUTE_TEST = "execute_test"
    VALIDATE_TEST = "validate_test"
    ANALYZE_TEST_STABILITY = "analyze_test_stability"

    # Files
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    DELETE_FILE = "delete_file"
    MODIFY_FILE = "modify_file"

    # Version control
    CREATE_BRANCH = "create_branch"
    COMMIT_CHANGES = "commit_changes"
    CREATE_PULL_REQUEST = "create_pull_request"
    MERGE_PR = "merge_pr"

    # Registries
    QUERY_ELEMENT_REGISTRY = "query_element_registry"
    QUERY_PAGE_OBJECT_REGISTRY = "query_page_object_registry"
    UPDATE_ELEMENT_REGISTRY = "update_element_registry"

    # Approval
    REQUEST_APPROVAL = "request_approval"
    WAIT_FOR_APPROVAL = "wait_for_approval"

    # Analytics
    QUERY_TEST_ANALYTICS = "query_test_analytics"
    GENERATE_REPORT = "generate_report"

    # Control
    INITIALIZE = "initialize"
    FINALIZE = "finalize"
    ABORT = "abort"
    COMPLETE = "complete"
    RETRY_ACTION = "retry_action"
    EXTRACT_BROKEN_LOCATOR = "extract_broken_locator"

    @property
    def category(self) -> str:
        """Catalog grouping derived from the action name."""
        name = self.name
        if "JIRA" in name:
            return "jira"
        if name in {"GENERATE_TEST_CODE", "ANALYZE_FAILURE", "SUGGEST_FIX",
                    "PLAN_NEXT_STEP", "DISCOVER_LOCATOR"}:
            return "ai"
        if "TEST" in name and "ANALYTICS" not in name:
            return "test"
        if name.endswith("_FILE"):
            return "file"
        if name in {"CREATE_BRANCH", "COMMIT_CHANGES", "CREATE_PULL_REQUEST", "MERGE_PR"}:
            return "git"
        if "REGISTRY" in name or name == "EXTRACT_BROKEN_LOCATOR":
            return "registry"
        if "APPROVAL" in name:
            return "approval"
        if name in {"QUERY_TEST_ANALYTICS", "GENERATE_REPORT"}:
            return "analytics"
        return "control"


class AgentPlan(BaseModel):
    """Decision produced by a strategy for a single iteration."""

    action_type: AgentActionType = Field(description="Action to take next")
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Parameters passed to the tool"
    )
    reasoning: str = Field(default="", description="Why this action was chosen")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Decision confidence")
    requires_approval: bool = Field(
        default=False, description="Gate this action behind a human approval"
    )
    delay_seconds: float = Field(
        default=0.0, ge=0.0, description="Backoff before executing (retries)"
    )


class ActionResult(BaseModel):
    """Outcome of a single tool invocation."""

    action_type: AgentActionType = Field(description="Action that was executed")
    success: bool = Field(description="Whether the action succeeded")
    output: dict[str, Any] = Field(default_factory=dict, description="Tool output map")
    error_message: str | None = Field(default=None, description="Failure reason")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock duration")
    ai_cost: float = Field(default=0.0, ge=0.0, description="Attributed AI spend in USD")
    prompt_tokens: int = Field(default=0, ge=0, description="Prompt tokens consumed")
    completion_tokens: int = Field(default=0, ge=0, description="Completion tokens consumed")


class AgentActionHistory(BaseModel):
    """One executed action, as appended to the ledger and kept in context history."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Row identifier")
    execution_id: str = Field(description="Owning execution")
    iteration: int = Field(ge=1, description="1-based iteration number")
    action_type: AgentActionType = Field(description="Action tag")
    action_input: dict[str, Any] = Field(default_factory=dict, description="Input parameters")
    action_output: dict[str, Any] = Field(default_factory=dict, description="Output payload")
    success: bool = Field(description="Whether the action succeeded")
    error_message: str | None = Field(default=None, description="Failure reason")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock duration")
    ai_cost: float = Field(default=0.0, ge=0.0, description="Attributed AI spend in USD")
    required_approval: bool = Field(
        default=False, description="Whether this row is a human approval request"
    )
    approval_request_id: str | None = Field(
        default=None, description="Linked approval request"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When the action finished"
    )

    @classmethod
    def from_result(
        cls,
        execution_id: str,
        iteration: int,
        plan: AgentPlan,
        result: ActionResult,
    ) -> "AgentActionHistory":
        """Build a history row from a plan and its result."""
        return cls(
            execution_id=execution_id,
            iteration=iteration,
            action_type=result.action_type,
            action_input=plan.parameters,
            action_output=result.output,
            success=result.success,
            error_message=result.error_message,
            duration_ms=result.duration_ms,
            ai_cost=result.ai_cost,
        )
