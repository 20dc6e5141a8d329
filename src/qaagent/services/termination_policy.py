"""Termination and budget policy for agent executions."""

from datetime import datetime

from pydantic import BaseModel

from ..models.actions import ActionResult
from ..models.agent import AgentStatus
from ..models.context import AgentContext
from ..models.execution import AgentExecution


class TerminationDecision(BaseModel):
    """Terminal state chosen by the policy and the message recorded with it."""

    status: AgentStatus
    message: str | None = None


class TerminationPolicy:
    """Decides whether an execution must stop after an iteration or while waiting.

    Checks run in a fixed order so that exactly one terminal state is chosen:
    unrecovered failure, goal achieved, iteration budget, spend budget, stop.
    """

    def evaluate_iteration(
        self,
        context: AgentContext,
        goal_achieved: bool,
        stop_requested: bool,
        failed_result: ActionResult | None = None,
    ) -> TerminationDecision | None:
        """Evaluate after an iteration.

        Args:
            context: Context after the iteration was applied
            goal_achieved: Whether the strategy reports its goal complete
            stop_requested: Whether an external stop was requested
            failed_result: Result of a failed action with no recovery plan

        Returns:
            The terminal decision, or None to keep running
        """
        if failed_result is not None:
            return TerminationDecision(
                status=AgentStatus.FAILED,
                message=(
                    f"Action {failed_result.action_type.value} failed: "
                    f"{failed_result.error_message or 'unknown error'}"
                ),
            )

        if goal_achieved:
            return TerminationDecision(status=AgentStatus.SUCCEEDED)

        if context.current_iteration >= context.max_iterations:
            return TerminationDecision(
                status=AgentStatus.BUDGET_EXCEEDED,
                message=f"Maximum iterations reached ({context.max_iterations})",
            )

        if context.total_ai_cost >= context.config.max_ai_cost:
            return TerminationDecision(
                status=AgentStatus.BUDGET_EXCEEDED,
                message=(
                    f"AI cost budget exhausted: ${context.total_ai_cost:.4f} "
                    f"of ${context.config.max_ai_cost:.4f}"
                ),
            )

        if stop_requested:
            return TerminationDecision(status=AgentStatus.STOPPED, message="Stopped by request")

        return None

    def evaluate_waiting(
        self,
        execution: AgentExecution,
        now: datetime | None = None,
    ) -> TerminationDecision | None:
        """Evaluate an execution parked at an approval gate."""
        if execution.status != AgentStatus.WAITING_FOR_APPROVAL:
            return None

        waited = execution.approval_wait_seconds(now)
        timeout = execution.config.approval_timeout_seconds
        if waited > timeout:
            return TerminationDecision(
                status=AgentStatus.TIMEOUT,
                message=f"Approval not received within {timeout} seconds",
            )
        return None
