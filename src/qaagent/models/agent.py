"""Agent goal, run policy and lifecycle enums."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .actions import AgentActionType

if TYPE_CHECKING:
    from ..config.settings import Settings


class AgentType(str, Enum):
    """Agent behaviours known to the engine."""

    PLAYWRIGHT_TEST_GENERATOR = "playwright_test_generator"
    SELF_HEALING_TEST_FIXER = "self_healing_test_fixer"
    FLAKY_TEST_FIXER = "flaky_test_fixer"
    TEST_FAILURE_ANALYZER = "test_failure_analyzer"
    QUALITY_MONITOR = "quality_monitor"


class AgentStatus(str, Enum):
    """Lifecycle state of an agent execution."""

    RUNNING = "running"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED = "stopped"
    TIMEOUT = "timeout"
    BUDGET_EXCEEDED = "budget_exceeded"

    @property
    def is_terminal(self) -> bool:
        """Whether the execution can never run again."""
        return self not in (AgentStatus.RUNNING, AgentStatus.WAITING_FOR_APPROVAL)


class BackoffStrategy(str, Enum):
    """Backoff strategy for retries."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class AgentGoal(BaseModel):
    """Immutable description of what an execution should achieve."""

    model_config = ConfigDict(frozen=True)

    goal_id: str = Field(default_factory=lambda: str(uuid4()), description="Goal identifier")
    goal_type: str = Field(description="Goal type tag, e.g. 'generate_test'")
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Goal parameters (jira_key, test_file, ...)"
    )
    success_criteria: str | None = Field(
        default=None, description="Free-text success criterion"
    )
    triggered_by: str | None = Field(default=None, description="Initiating principal")

    def has_required_parameters(self, *names: str) -> bool:
        """Check that every named parameter is present and non-empty."""
        return all(self.parameters.get(name) not in (None, "") for name in names)

    def get_parameter(self, name: str, default: Any = None) -> Any:
        """Get a goal parameter with a default."""
        return self.parameters.get(name, default)


class RetryPolicy(BaseModel):
    """Explicit, bounded retry budget for failed actions."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(
        default=2, ge=0, le=10, description="Retries allowed per action after the first attempt"
    )
    retryable_actions: frozenset[AgentActionType] = Field(
        default=frozenset(
            {
                AgentActionType.FETCH_JIRA_STORY,
                AgentActionType.GENERATE_TEST_CODE,
                AgentActionType.CREATE_BRANCH,
                AgentActionType.COMMIT_CHANGES,
                AgentActionType.CREATE_PULL_REQUEST,
            }
        ),
        description="Actions whose failure may be retried",
    )
    backoff_strategy: BackoffStrategy = Field(
        default=BackoffStrategy.EXPONENTIAL, description="Delay growth between retries"
    )
    base_delay_seconds: float = Field(default=1.0, ge=0.0, description="Base retry delay")
    max_delay_seconds: float = Field(default=30.0, ge=0.0, description="Retry delay cap")

    def is_retryable(self, action_type: AgentActionType) -> bool:
        """Whether failures of this action may be retried at all."""
        return self.max_retries > 0 and action_type in self.retryable_actions

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt.

        Args:
            attempt: Current retry number (0-indexed)

        Returns:
            Delay in seconds
        """
        if self.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = self.base_delay_seconds * (2**attempt)
        elif self.backoff_strategy == BackoffStrategy.LINEAR:
            delay = self.base_delay_seconds * (attempt + 1)
        else:
            delay = self.base_delay_seconds

        return min(delay, self.max_delay_seconds)


class AgentConfig(BaseModel):
    """Immutable run policy for one execution."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=5, ge=1, description="Iteration ceiling")
    max_ai_cost: float = Field(default=1.0, ge=0.0, description="Spend ceiling in USD")
    approval_timeout_seconds: int = Field(
        default=3600, ge=0, description="Maximum wait at an approval gate"
    )
    actions_requiring_approval: frozenset[AgentActionType] = Field(
        default=frozenset({AgentActionType.DELETE_FILE, AgentActionType.MERGE_PR}),
        description="Actions gated behind human approval",
    )
    actions_never_requiring_approval: frozenset[AgentActionType] = Field(
        default=frozenset(
            {
                AgentActionType.FETCH_JIRA_STORY,
                AgentActionType.QUERY_ELEMENT_REGISTRY,
                AgentActionType.READ_FILE,
            }
        ),
        description="Actions that are never gated",
    )
    retry_policy: RetryPolicy = Field(
        default_factory=RetryPolicy, description="Retry budget for failed actions"
    )
    custom_config: dict[str, Any] = Field(
        default_factory=dict, description="Strategy-specific tunables"
    )

    @field_validator("custom_config")
    @classmethod
    def validate_custom_config(cls, v: dict[str, Any]) -> dict[str, Any]:
        """Custom config keys must be strings."""
        for key in v:
            if not isinstance(key, str) or not key:
                raise ValueError("custom_config keys must be non-empty strings")
        return v

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> AgentConfig:
        """Build a config from application defaults."""
        values: dict[str, Any] = {
            "max_iterations": settings.default_max_iterations,
            "max_ai_cost": settings.default_max_ai_cost,
            "approval_timeout_seconds": settings.default_approval_timeout_seconds,
        }
        values.update(overrides)
        return cls(**values)

    def requires_approval(self, action_type: AgentActionType) -> bool:
        """Whether executing this action must wait for a human decision."""
        if action_type in self.actions_never_requiring_approval:
            return False
        return action_type in self.actions_requiring_approval

    def get_custom(self, key: str, default: Any = None) -> Any:
        """Get a strategy-specific tunable."""
        return self.custom_config.get(key, default)
