"""
Base class for agent strategies.

A strategy is the decision logic of one agent type. It is stateless: every
input comes from the AgentContext handed to it and every piece of progress is
written back into that context, so one instance serves all executions of its
type concurrently. The iterate/suspend/terminate skeleton lives in
``AgentEngine``; strategies only decide.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from ..config.settings import Settings
from ..models.actions import ActionResult, AgentActionType, AgentPlan
from ..models.agent import AgentConfig, AgentGoal, AgentType
from ..models.context import AgentContext
from ..models.execution import ApprovalDecision


class AgentStrategy(ABC):
    """
    Abstract base class for agent strategies.

    Subclasses implement ``plan`` (the next action as a deterministic function
    of the context) and ``is_goal_achieved``. Hooks let a strategy update its
    scratch state after an action, define recovery for failures and handle
    approval rejections.
    """

    agent_type: ClassVar[AgentType]
    description: ClassVar[str] = ""
    required_parameters: ClassVar[tuple[str, ...]] = ()
    default_max_iterations: ClassVar[int] = 5

    def missing_parameters(self, goal: AgentGoal) -> list[str]:
        """Required goal parameters that are absent or empty."""
        return [name for name in self.required_parameters if not goal.has_required_parameters(name)]

    def validate_goal(self, goal: AgentGoal) -> tuple[bool, str | None]:
        """Check a goal before an execution is created for it."""
        missing = self.missing_parameters(goal)
        if missing:
            return False, f"Missing required goal parameters: {', '.join(missing)}"
        return True, None

    def default_config(self, settings: Settings) -> AgentConfig:
        """Run policy used when the caller supplies none."""
        return AgentConfig.from_settings(
            settings,
            max_iterations=max(settings.default_max_iterations, self.default_max_iterations),
        )

    @abstractmethod
    def plan(self, context: AgentContext) -> AgentPlan:
        """
        Decide the next action.

        Must depend only on the context so that a resumed or rehydrated
        execution re-enters at the same logical step.
        """

    @abstractmethod
    def is_goal_achieved(self, context: AgentContext) -> bool:
        """Whether the goal is complete."""

    def on_action_completed(
        self,
        context: AgentContext,
        plan: AgentPlan,
        result: ActionResult,
    ) -> None:
        """Update strategy scratch state after an action (success or failure)."""

    def recover(
        self,
        context: AgentContext,
        plan: AgentPlan,
        result: ActionResult,
    ) -> AgentPlan | None:
        """
        Choose a recovery plan for a failed action.

        The default retries actions listed in the config's retry policy, at
        most ``max_retries`` times in a row, with backoff. Returning None
        makes the failure terminal.
        """
        policy = context.config.retry_policy
        if not policy.is_retryable(plan.action_type):
            return None

        failures = context.consecutive_failures(plan.action_type)
        if failures > policy.max_retries:
            return None

        return plan.model_copy(
            update={
                "delay_seconds": policy.calculate_delay(failures - 1),
                "reasoning": (
                    f"Retry {failures}/{policy.max_retries} of {plan.action_type.value} "
                    f"after failure: {result.error_message}"
                ),
            }
        )

    def on_rejection(self, context: AgentContext, decision: ApprovalDecision) -> bool:
        """
        Handle a rejected approval.

        Returns:
            True to keep running (``plan`` must then take the rejection into
            account), False to fail the execution
        """
        return False

    # Plan helpers

    @staticmethod
    def act(action_type: AgentActionType, reasoning: str, **parameters: Any) -> AgentPlan:
        return AgentPlan(action_type=action_type, parameters=parameters, reasoning=reasoning)

    @staticmethod
    def complete(reasoning: str = "Goal achieved") -> AgentPlan:
        return AgentPlan(action_type=AgentActionType.COMPLETE, reasoning=reasoning)

    @staticmethod
    def abort(reasoning: str) -> AgentPlan:
        return AgentPlan(action_type=AgentActionType.ABORT, reasoning=reasoning)

    @staticmethod
    def slug(value: str) -> str:
        """Branch-safe slug of an arbitrary string."""
        return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-") or "change"

    def publish_plan(
        self,
        context: AgentContext,
        branch_name: str,
        file_paths: list[str],
        commit_message: str,
        pr_title: str,
        pr_body: str,
    ) -> AgentPlan | None:
        """Shared tail of every strategy: branch, commit, pull request.

        Returns:
            The next publishing step, or None once the pull request exists
        """
        if not context.has_succeeded(AgentActionType.CREATE_BRANCH):
            return self.act(
                AgentActionType.CREATE_BRANCH,
                "Create branch for agent changes",
                branch_name=branch_name,
            )
        if not context.has_succeeded(AgentActionType.COMMIT_CHANGES):
            return self.act(
                AgentActionType.COMMIT_CHANGES,
                "Commit changes to branch",
                branch_name=branch_name,
                message=commit_message,
                file_paths=file_paths,
            )
        if not context.has_succeeded(AgentActionType.CREATE_PULL_REQUEST):
            return self.act(
                AgentActionType.CREATE_PULL_REQUEST,
                "Open pull request for review",
                branch_name=branch_name,
                title=pr_title,
                body=pr_body,
            )
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(agent_type={self.agent_type.value!r})"
