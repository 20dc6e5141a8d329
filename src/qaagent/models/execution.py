"""Durable execution record, approval decisions and final results."""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from .agent import AgentConfig, AgentGoal, AgentStatus, AgentType


class AgentExecution(BaseModel):
    """Ledger record of one agent execution."""

    execution_id: str = Field(
        default_factory=lambda: str(uuid4()), description="Opaque execution identifier"
    )
    agent_type: AgentType = Field(description="Agent type tag")
    status: AgentStatus = Field(default=AgentStatus.RUNNING, description="Lifecycle state")
    goal: AgentGoal = Field(description="Goal being pursued")
    config: AgentConfig = Field(default_factory=AgentConfig, description="Run policy")
    current_iteration: int = Field(default=0, ge=0, description="Iterations completed")
    max_iterations: int = Field(default=5, ge=1, description="Iteration ceiling")
    triggered_by: str | None = Field(default=None, description="Initiator identity")
    triggered_by_name: str | None = Field(default=None, description="Initiator display name")
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="Start timestamp"
    )
    completed_at: datetime | None = Field(
        default=None, description="Set exactly when the state is terminal"
    )
    outputs: dict[str, Any] = Field(default_factory=dict, description="Final outputs")
    error_message: str | None = Field(default=None, description="Failure reason")
    total_ai_cost: float = Field(default=0.0, ge=0.0, description="Cumulative AI spend")
    total_actions: int = Field(default=0, ge=0, description="Action-history rows appended")
    approval_request_id: str | None = Field(
        default=None, description="Pending approval request while waiting"
    )
    waiting_since: datetime | None = Field(
        default=None, description="When the execution entered the approval gate"
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def validate_completion(self) -> "AgentExecution":
        """completed_at is set if and only if the state is terminal."""
        if self.status.is_terminal != (self.completed_at is not None):
            raise ValueError(
                f"completed_at must be set exactly for terminal states "
                f"(status={self.status.value})"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_terminal(
        self,
        status: AgentStatus,
        error_message: str | None = None,
        outputs: dict[str, Any] | None = None,
    ) -> None:
        """Move to a terminal state, setting the completion timestamp with it."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal state")
        if self.status.is_terminal:
            raise ValueError(
                f"Execution {self.execution_id} already terminal ({self.status.value})"
            )
        now = datetime.now(UTC)
        self.status = status
        self.completed_at = now
        self.updated_at = now
        self.error_message = error_message
        self.approval_request_id = None
        self.waiting_since = None
        if outputs is not None:
            self.outputs = outputs

    def approval_wait_seconds(self, now: datetime | None = None) -> float:
        """Seconds spent at the current approval gate (0 when not waiting)."""
        if self.status != AgentStatus.WAITING_FOR_APPROVAL or self.waiting_since is None:
            return 0.0
        return ((now or datetime.now(UTC)) - self.waiting_since).total_seconds()


class ApprovalDecision(BaseModel):
    """Decision delivered by the approval collaborator."""

    approved: bool = Field(description="Whether the reviewer approved")
    approval_request_id: str | None = Field(
        default=None, description="Request being answered; checked when given"
    )
    reviewer_id: str | None = Field(default=None, description="Reviewer identity")
    reviewer_name: str | None = Field(default=None, description="Reviewer display name")
    notes: str | None = Field(default=None, description="Reviewer notes")
    decided_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AgentResult(BaseModel):
    """Final result handed back to the caller of an execution."""

    execution_id: str
    agent_type: AgentType
    status: AgentStatus
    goal: AgentGoal
    iterations_completed: int
    outputs: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    total_ai_cost: float = 0.0
    total_duration_seconds: float = 0.0
    started_at: datetime
    completed_at: datetime | None = None
    summary: str = ""

    @property
    def is_success(self) -> bool:
        return self.status == AgentStatus.SUCCEEDED

    @classmethod
    def from_execution(cls, execution: AgentExecution) -> "AgentResult":
        """Project a terminal execution record into a result."""
        completed_at = execution.completed_at or datetime.now(UTC)
        summary = (
            f"Agent {execution.status.value} after {execution.current_iteration} iterations. "
            f"Total cost: ${execution.total_ai_cost:.4f}"
        )
        if execution.error_message:
            summary += f". Error: {execution.error_message}"

        return cls(
            execution_id=execution.execution_id,
            agent_type=execution.agent_type,
            status=execution.status,
            goal=execution.goal,
            iterations_completed=execution.current_iteration,
            outputs=execution.outputs,
            error_message=execution.error_message,
            total_ai_cost=execution.total_ai_cost,
            total_duration_seconds=(completed_at - execution.started_at).total_seconds(),
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            summary=summary,
        )
