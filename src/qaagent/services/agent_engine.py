"""
Agent engine.

Runs the iterate/suspend/terminate loop shared by every strategy:

1. stop checkpoint
2. load context
3. decide (stashed recovery plan, else ``strategy.plan``)
4. approval gate: create the request, record it and suspend
5. execute the tool, record the row, fold the result into the context
6. termination policy: loop again or finalize

A suspended execution holds no task; it lives only in its persisted context
and ledger record until the orchestrator resumes it.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import Any

import structlog

from ..models.actions import ActionResult, AgentActionHistory, AgentActionType, AgentPlan
from ..models.agent import AgentStatus
from ..models.context import AgentContext
from ..models.execution import AgentExecution, AgentResult
from ..strategies.base import AgentStrategy
from ..tools.errors import ToolError
from ..tools.registry import ToolRegistry
from .approval import ApprovalGateway
from .context_store import ContextNotFoundError, RedisContextStore
from .execution_ledger import ExecutionLedger
from .termination_policy import TerminationDecision, TerminationPolicy

logger = structlog.get_logger()

# Output keys that describe the invocation rather than the work product
BOOKKEEPING_KEYS = frozenset(
    {"success", "error", "ai_cost", "prompt_tokens", "completion_tokens"}
)

SUSPEND = TerminationDecision(status=AgentStatus.WAITING_FOR_APPROVAL)


class AgentEngine:
    """Drives one execution at a time through its strategy's loop."""

    def __init__(
        self,
        ledger: ExecutionLedger,
        context_store: RedisContextStore,
        tool_registry: ToolRegistry,
        approval_gateway: ApprovalGateway,
        policy: TerminationPolicy | None = None,
    ) -> None:
        self.ledger = ledger
        self.context_store = context_store
        self.tool_registry = tool_registry
        self.approval_gateway = approval_gateway
        self.policy = policy or TerminationPolicy()

    async def run(
        self,
        strategy: AgentStrategy,
        execution_id: str,
        stop_event: asyncio.Event,
    ) -> AgentResult | None:
        """
        Run an execution until it terminates or suspends.

        Args:
            strategy: Strategy for the execution's agent type
            execution_id: Execution owned by the calling task
            stop_event: Cooperative stop signal for this execution

        Returns:
            The final result, or None when the execution suspended at an
            approval gate
        """
        log = logger.bind(execution_id=execution_id, agent_type=strategy.agent_type.value)
        context: AgentContext | None = None

        try:
            execution = await self.ledger.get(execution_id)
            if execution.waiting_since is not None or execution.approval_request_id:
                execution.waiting_since = None
                execution.approval_request_id = None
                await self.ledger.update(execution)

            log.info("agent_run_started", iteration=execution.current_iteration)

            while True:
                if stop_event.is_set():
                    context = await self.context_store.get(execution_id)
                    return await self.finalize(
                        execution, AgentStatus.STOPPED, "Stopped by request", context
                    )

                context = await self.context_store.load(execution_id)
                decision = await self._run_iteration(
                    strategy, execution, context, stop_event, log
                )
                if decision is None:
                    continue
                if decision is SUSPEND:
                    return None
                return await self.finalize(execution, decision.status, decision.message, context)

        except asyncio.CancelledError:
            log.info("agent_run_cancelled")
            raise

        except ContextNotFoundError as e:
            log.error("agent_context_missing", error=str(e))
            return await self.finalize_by_id(execution_id, AgentStatus.FAILED, str(e))

        except Exception as e:
            log.exception("agent_run_failed", error=str(e))
            # The in-memory context already reflects every appended row
            return await self.finalize_by_id(
                execution_id, AgentStatus.FAILED, f"Unexpected error: {e}", context
            )

    async def _run_iteration(
        self,
        strategy: AgentStrategy,
        execution: AgentExecution,
        context: AgentContext,
        stop_event: asyncio.Event,
        log: Any,
    ) -> TerminationDecision | None:
        """One pass of the loop. Returns None to continue, SUSPEND, or a terminal decision."""
        plan = context.pop_pending_plan() or strategy.plan(context)

        log.info(
            "agent_iteration_start",
            iteration=context.current_iteration + 1,
            action=plan.action_type.value,
            reasoning=plan.reasoning,
        )

        if plan.action_type == AgentActionType.COMPLETE:
            return TerminationDecision(status=AgentStatus.SUCCEEDED)

        if plan.action_type == AgentActionType.ABORT:
            return TerminationDecision(
                status=AgentStatus.FAILED,
                message=plan.reasoning or "Aborted by strategy",
            )

        if self._needs_approval(context, plan):
            return await self._request_approval(strategy, execution, context, plan, stop_event, log)

        if plan.delay_seconds > 0:
            log.debug("agent_backoff", delay_seconds=plan.delay_seconds)
            if await self._wait_for_stop(stop_event, plan.delay_seconds):
                return TerminationDecision(status=AgentStatus.STOPPED, message="Stopped by request")

        result = await self._execute(plan, log)

        record = AgentActionHistory.from_result(
            execution.execution_id, context.current_iteration + 1, plan, result
        )
        await self.ledger.append_action(record)
        # The in-memory context must match the ledger rows from here on
        context.increment_iteration()
        execution.total_actions += 1

        context.add_to_history(record)
        context.add_ai_cost(result.ai_cost)
        if result.success:
            for key, value in result.output.items():
                if key not in BOOKKEEPING_KEYS:
                    context.put_work_product(key, value)
            if context.is_approved(plan.action_type):
                context.consume_approval(plan.action_type)

        strategy.on_action_completed(context, plan, result)

        failed_result = None
        if not result.success:
            recovery = strategy.recover(context, plan, result)
            if recovery is not None:
                context.stash_plan(recovery)
                log.info(
                    "agent_recovery_planned",
                    action=recovery.action_type.value,
                    delay_seconds=recovery.delay_seconds,
                )
            else:
                failed_result = result

        decision = self.policy.evaluate_iteration(
            context,
            goal_achieved=strategy.is_goal_achieved(context),
            stop_requested=stop_event.is_set(),
            failed_result=failed_result,
        )

        await self._sync_execution(execution, context)
        if decision is None:
            await self.context_store.save(context)
        return decision

    @staticmethod
    def _needs_approval(context: AgentContext, plan: AgentPlan) -> bool:
        if plan.action_type == AgentActionType.REQUEST_APPROVAL:
            return True
        gated = plan.requires_approval or context.config.requires_approval(plan.action_type)
        return gated and not context.is_approved(plan.action_type)

    async def _request_approval(
        self,
        strategy: AgentStrategy,
        execution: AgentExecution,
        context: AgentContext,
        plan: AgentPlan,
        stop_event: asyncio.Event,
        log: Any,
    ) -> TerminationDecision:
        """Create an approval request, record it as an iteration and suspend."""
        gated_action = None
        if plan.action_type != AgentActionType.REQUEST_APPROVAL:
            gated_action = plan.action_type

        iteration = context.current_iteration + 1
        approval_request_id = await self.approval_gateway.create_approval_request(
            content={
                "action": plan.action_type.value,
                "reasoning": plan.reasoning,
                "parameters": plan.parameters,
            },
            metadata={
                "execution_id": execution.execution_id,
                "agent_type": execution.agent_type.value,
                "iteration": iteration,
                "gated_action": gated_action.value if gated_action else None,
            },
        )

        action_input = dict(plan.parameters)
        if gated_action is not None:
            action_input["gated_action"] = gated_action.value

        record = AgentActionHistory(
            execution_id=execution.execution_id,
            iteration=iteration,
            action_type=AgentActionType.REQUEST_APPROVAL,
            action_input=action_input,
            action_output={"approval_request_id": approval_request_id},
            success=True,
            required_approval=True,
            approval_request_id=approval_request_id,
        )
        await self.ledger.append_action(record)
        context.increment_iteration()
        execution.total_actions += 1
        context.add_to_history(record)

        if gated_action is not None:
            context.set_pending_gate(gated_action)

        decision = self.policy.evaluate_iteration(
            context,
            goal_achieved=strategy.is_goal_achieved(context),
            stop_requested=stop_event.is_set(),
        )
        if decision is not None:
            await self._sync_execution(execution, context)
            return decision

        context.status = AgentStatus.WAITING_FOR_APPROVAL
        await self.context_store.save(context)

        execution.status = AgentStatus.WAITING_FOR_APPROVAL
        execution.waiting_since = datetime.now(UTC)
        execution.approval_request_id = approval_request_id
        await self._sync_execution(execution, context)

        log.info(
            "execution_waiting_for_approval",
            iteration=iteration,
            approval_request_id=approval_request_id,
            gated_action=gated_action.value if gated_action else None,
        )
        return SUSPEND

    async def _execute(self, plan: AgentPlan, log: Any) -> ActionResult:
        """Invoke the tool for a plan; tool errors become failed results."""
        start = time.perf_counter()
        try:
            output = await self.tool_registry.execute(plan.action_type, plan.parameters)
        except ToolError as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            log.warning(
                "tool_execution_failed",
                action=plan.action_type.value,
                error_code=e.code.value,
                error=str(e),
            )
            return ActionResult(
                action_type=plan.action_type,
                success=False,
                error_message=str(e),
                duration_ms=duration_ms,
            )

        duration_ms = int((time.perf_counter() - start) * 1000)
        success = output.get("success", True) is not False
        error_message = None
        if not success:
            error_message = str(output.get("error") or "Tool reported failure")
            log.warning("tool_reported_failure", action=plan.action_type.value, error=error_message)

        return ActionResult(
            action_type=plan.action_type,
            success=success,
            output=output,
            error_message=error_message,
            duration_ms=duration_ms,
            ai_cost=float(output.get("ai_cost") or 0.0),
            prompt_tokens=int(output.get("prompt_tokens") or 0),
            completion_tokens=int(output.get("completion_tokens") or 0),
        )

    async def _sync_execution(self, execution: AgentExecution, context: AgentContext) -> None:
        execution.current_iteration = context.current_iteration
        execution.total_ai_cost = context.total_ai_cost
        execution.updated_at = datetime.now(UTC)
        await self.ledger.update(execution)

    @staticmethod
    async def _wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if a stop arrived meanwhile."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout)
            return True
        except TimeoutError:
            return False

    async def finalize(
        self,
        execution: AgentExecution,
        status: AgentStatus,
        message: str | None = None,
        context: AgentContext | None = None,
    ) -> AgentResult:
        """
        Record a terminal state.

        The ledger gets the terminal fields (outputs are the context's work
        products when a context is available), the context is cleared best
        effort, and the final result is returned.
        """
        outputs = None
        if context is not None:
            execution.current_iteration = context.current_iteration
            execution.total_ai_cost = context.total_ai_cost
            outputs = dict(context.work_products)

        execution.mark_terminal(status, error_message=message, outputs=outputs)
        await self.ledger.update(execution)
        await self.context_store.clear(execution.execution_id)

        result = AgentResult.from_execution(execution)
        logger.info(
            "execution_finished",
            execution_id=execution.execution_id,
            agent_type=execution.agent_type.value,
            status=status.value,
            iterations=execution.current_iteration,
            total_ai_cost=execution.total_ai_cost,
            error=message,
        )
        return result

    async def finalize_by_id(
        self,
        execution_id: str,
        status: AgentStatus,
        message: str | None = None,
        context: AgentContext | None = None,
    ) -> AgentResult | None:
        """Finalize from the ledger's current record; no-op if missing or already terminal.

        The stored context is used for outputs and counters unless ``context``
        is given.
        """
        execution = await self.ledger.get_or_none(execution_id)
        if execution is None or execution.is_terminal:
            logger.warning(
                "finalize_skipped",
                execution_id=execution_id,
                status=status.value,
                found=execution is not None,
            )
            return None

        if context is None:
            try:
                context = await self.context_store.get(execution_id)
            except Exception as e:
                logger.warning(
                    "context_unavailable_on_finalize", execution_id=execution_id, error=str(e)
                )
        return await self.finalize(execution, status, message, context)
