"""Transient per-execution working state.

The context is the only place execution-local data lives. Strategies are
stateless and read/write everything through this model, which the engine
loads from and saves to the context store around each iteration.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from .actions import AgentActionHistory, AgentActionType, AgentPlan
from .agent import AgentConfig, AgentGoal, AgentStatus, AgentType
from .execution import ApprovalDecision

# Reserved keys in `state` used by the engine
PENDING_PLAN_KEY = "_pending_plan"
APPROVED_ACTIONS_KEY = "_approved_actions"
APPROVAL_DECISIONS_KEY = "_approval_decisions"
PENDING_GATE_KEY = "_pending_gate"


class AgentContext(BaseModel):
    """Working state of a single execution."""

    execution_id: str = Field(description="Owning execution")
    agent_type: AgentType = Field(description="Agent type tag")
    goal: AgentGoal = Field(description="Goal being pursued")
    config: AgentConfig = Field(default_factory=AgentConfig, description="Run policy")
    status: AgentStatus = Field(default=AgentStatus.RUNNING, description="Lifecycle state")
    current_iteration: int = Field(default=0, ge=0, description="Iterations completed")
    max_iterations: int = Field(default=5, ge=1, description="Iteration ceiling")
    action_history: list[AgentActionHistory] = Field(
        default_factory=list, description="Actions taken so far, in order"
    )
    work_products: dict[str, Any] = Field(
        default_factory=dict, description="Intermediate artifacts (generated code, ...)"
    )
    state: dict[str, Any] = Field(
        default_factory=dict, description="Strategy-private scratch data"
    )
    total_ai_cost: float = Field(default=0.0, ge=0.0, description="Cumulative AI spend")
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def add_to_history(self, entry: AgentActionHistory) -> None:
        self.action_history.append(entry)
        self.touch()

    def put_work_product(self, key: str, value: Any) -> None:
        self.work_products[key] = value
        self.touch()

    def get_work_product(self, key: str, default: Any = None) -> Any:
        return self.work_products.get(key, default)

    def put_state(self, key: str, value: Any) -> None:
        self.state[key] = value
        self.touch()

    def get_state(self, key: str, default: Any = None) -> Any:
        return self.state.get(key, default)

    def increment_iteration(self) -> int:
        self.current_iteration += 1
        self.touch()
        return self.current_iteration

    def add_ai_cost(self, cost: float) -> None:
        self.total_ai_cost += cost
        self.touch()

    def touch(self) -> None:
        self.last_updated_at = datetime.now(UTC)

    # History queries

    def has_succeeded(self, action_type: AgentActionType) -> bool:
        """Whether the action has completed successfully at least once."""
        return any(
            entry.action_type == action_type and entry.success
            for entry in self.action_history
        )

    def last_action(
        self, action_type: AgentActionType | None = None
    ) -> AgentActionHistory | None:
        """Most recent history entry, optionally of a given action type."""
        for entry in reversed(self.action_history):
            if action_type is None or entry.action_type == action_type:
                return entry
        return None

    def consecutive_failures(self, action_type: AgentActionType) -> int:
        """Failures of this action since its last success."""
        count = 0
        for entry in reversed(self.action_history):
            if entry.action_type != action_type:
                continue
            if entry.success:
                break
            count += 1
        return count

    # Engine bookkeeping

    def stash_plan(self, plan: AgentPlan) -> None:
        """Schedule a plan to run instead of the strategy's next decision."""
        self.put_state(PENDING_PLAN_KEY, plan.model_dump(mode="json"))

    def pop_pending_plan(self) -> AgentPlan | None:
        data = self.state.pop(PENDING_PLAN_KEY, None)
        return AgentPlan.model_validate(data) if data else None

    def grant_approval(self, action_type: AgentActionType) -> None:
        approved = set(self.state.get(APPROVED_ACTIONS_KEY, []))
        approved.add(action_type.value)
        self.put_state(APPROVED_ACTIONS_KEY, sorted(approved))

    def is_approved(self, action_type: AgentActionType) -> bool:
        return action_type.value in self.state.get(APPROVED_ACTIONS_KEY, [])

    def consume_approval(self, action_type: AgentActionType) -> None:
        approved = [a for a in self.state.get(APPROVED_ACTIONS_KEY, []) if a != action_type.value]
        self.put_state(APPROVED_ACTIONS_KEY, approved)

    def record_approval_decision(self, decision: ApprovalDecision) -> None:
        """Store a reviewer decision; an approval unlocks the action that was gated."""
        decisions = list(self.state.get(APPROVAL_DECISIONS_KEY, []))
        decisions.append(decision.model_dump(mode="json"))
        self.put_state(APPROVAL_DECISIONS_KEY, decisions)

        gated = self.state.pop(PENDING_GATE_KEY, None)
        if decision.approved and gated:
            self.grant_approval(AgentActionType(gated))

    def set_pending_gate(self, action_type: AgentActionType) -> None:
        """Remember which action is waiting behind the current approval request."""
        self.put_state(PENDING_GATE_KEY, action_type.value)

    def last_approval_decision(self) -> ApprovalDecision | None:
        decisions = self.state.get(APPROVAL_DECISIONS_KEY, [])
        return ApprovalDecision.model_validate(decisions[-1]) if decisions else None

    def is_last_approval_granted(self) -> bool:
        decision = self.last_approval_decision()
        return decision is not None and decision.approved
