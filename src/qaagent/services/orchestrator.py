"""
Agent orchestrator.

Top-level entry point of the engine. Creates executions, launches each one as
its own asyncio task, tracks the tasks in flight, stops them on request and
resumes executions parked at an approval gate when the approval collaborator
reports a decision. Approval timeouts are enforced whenever a waiting
execution is observed: by the background sweeper, by ``get_execution`` and by
``resume``.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime

import structlog

from ..config.settings import Settings, get_settings
from ..models.actions import AgentActionHistory, AgentActionType
from ..models.agent import AgentConfig, AgentGoal, AgentStatus, AgentType
from ..models.context import AgentContext
from ..models.execution import AgentExecution, AgentResult, ApprovalDecision
from ..strategies.base import AgentStrategy
from ..tools.registry import ToolRegistry
from .agent_engine import AgentEngine
from .approval import ApprovalGateway
from .context_store import RedisContextStore
from .execution_ledger import ExecutionLedger
from .termination_policy import TerminationDecision, TerminationPolicy

logger = structlog.get_logger()

ResultListener = Callable[[AgentResult], Awaitable[None] | None]


class OrchestratorError(Exception):
    """Base exception for orchestrator failures."""


class UnknownAgentTypeError(OrchestratorError):
    """Raised when no strategy is registered for an agent type."""

    def __init__(self, agent_type: AgentType | str) -> None:
        value = agent_type.value if isinstance(agent_type, AgentType) else agent_type
        super().__init__(f"No strategy registered for agent type: {value}")
        self.agent_type = agent_type


class InvalidGoalError(OrchestratorError):
    """Raised when a goal lacks parameters its strategy requires."""


class ExecutionStateError(OrchestratorError):
    """Raised when an execution is not in a state that allows the operation."""


class ApprovalExpiredError(OrchestratorError):
    """Raised when a decision arrives after the approval window closed.

    The execution has already been moved to TIMEOUT when this is raised.
    """

    def __init__(self, execution_id: str, message: str) -> None:
        super().__init__(f"Approval expired for execution {execution_id}: {message}")
        self.execution_id = execution_id


class AgentOrchestrator:
    """
    Creates, runs, stops and resumes agent executions.

    Every execution is owned by at most one task at a time. Tasks are keyed by
    execution id; a suspended execution has no task and is claimed back from
    the ledger with a compare-and-set before a new task is launched for it.
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        context_store: RedisContextStore,
        tool_registry: ToolRegistry,
        approval_gateway: ApprovalGateway,
        strategies: Iterable[AgentStrategy],
        settings: Settings | None = None,
        policy: TerminationPolicy | None = None,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            ledger: Durable execution ledger
            context_store: Working-state store
            tool_registry: Tools available to every strategy
            approval_gateway: Collaborator that creates approval requests
            strategies: One strategy per supported agent type
            settings: Application settings (defaults from the environment)
            policy: Termination policy shared by the engine and the sweeper
        """
        self.ledger = ledger
        self.context_store = context_store
        self.tool_registry = tool_registry
        self.settings = settings or get_settings()
        self.policy = policy or TerminationPolicy()
        self.engine = AgentEngine(
            ledger=ledger,
            context_store=context_store,
            tool_registry=tool_registry,
            approval_gateway=approval_gateway,
            policy=self.policy,
        )

        self._strategies: dict[AgentType, AgentStrategy] = {}
        for strategy in strategies:
            if strategy.agent_type in self._strategies:
                logger.warning("strategy_replaced", agent_type=strategy.agent_type.value)
            self._strategies[strategy.agent_type] = strategy

        self._tasks: dict[str, asyncio.Task[AgentResult | None]] = {}
        self._stop_events: dict[str, asyncio.Event] = {}
        self._listeners: list[ResultListener] = []
        self._resume_lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None

        logger.info(
            "orchestrator_initialized",
            agent_types=[t.value for t in self._strategies],
            tool_count=len(tool_registry),
        )

    # Lifecycle

    async def create_and_start(
        self,
        agent_type: AgentType,
        goal: AgentGoal,
        config: AgentConfig | None = None,
        triggered_by: str | None = None,
        triggered_by_name: str | None = None,
    ) -> AgentExecution:
        """
        Create an execution and launch it without waiting for it to finish.

        Raises:
            UnknownAgentTypeError: If no strategy handles the agent type
            InvalidGoalError: If the goal lacks required parameters
        """
        strategy = self._strategy_for(agent_type)
        valid, error = strategy.validate_goal(goal)
        if not valid:
            raise InvalidGoalError(error)

        config = config or strategy.default_config(self.settings)
        execution = AgentExecution(
            agent_type=agent_type,
            goal=goal,
            config=config,
            max_iterations=config.max_iterations,
            triggered_by=triggered_by,
            triggered_by_name=triggered_by_name,
        )
        context = AgentContext(
            execution_id=execution.execution_id,
            agent_type=agent_type,
            goal=goal,
            config=config,
            max_iterations=config.max_iterations,
            started_at=execution.started_at,
        )

        await self.ledger.create(execution)
        try:
            await self.context_store.save(context)
        except Exception as e:
            await self.engine.finalize_by_id(
                execution.execution_id, AgentStatus.FAILED, f"Could not store context: {e}"
            )
            raise

        self._launch(strategy, execution.execution_id)
        logger.info(
            "execution_started",
            execution_id=execution.execution_id,
            agent_type=agent_type.value,
            goal_type=goal.goal_type,
            max_iterations=config.max_iterations,
            max_ai_cost=config.max_ai_cost,
            triggered_by=triggered_by,
        )
        return execution

    async def stop(self, execution_id: str) -> bool:
        """
        Stop an execution.

        A running task is signalled and stops at its next checkpoint. An
        execution suspended at an approval gate is moved to STOPPED directly.

        Returns:
            True if a running or waiting execution was found
        """
        task = self._tasks.get(execution_id)
        if task is not None and not task.done():
            self._stop_events[execution_id].set()
            logger.info("execution_stop_requested", execution_id=execution_id)
            return True

        execution = await self.ledger.get_or_none(execution_id)
        if execution is None or execution.status != AgentStatus.WAITING_FOR_APPROVAL:
            return False

        stopped = await self._finalize_waiting(
            execution_id, TerminationDecision(status=AgentStatus.STOPPED, message="Stopped by request")
        )
        if stopped:
            logger.info("waiting_execution_stopped", execution_id=execution_id)
        return stopped

    async def resume(self, execution_id: str, decision: ApprovalDecision) -> AgentExecution:
        """
        Deliver an approval decision to a suspended execution.

        On approval (or a rejection the strategy chooses to handle) the loop
        is relaunched at the next iteration; otherwise the execution fails.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
            ExecutionStateError: If the execution is not waiting for approval,
                already has a task, or the decision answers another request
            ApprovalExpiredError: If the approval window has closed
        """
        result: AgentResult | None = None

        async with self._resume_lock:
            task = self._tasks.get(execution_id)
            if task is not None and not task.done():
                raise ExecutionStateError(f"Execution {execution_id} is already running")

            execution = await self.ledger.get(execution_id)
            if execution.status != AgentStatus.WAITING_FOR_APPROVAL:
                raise ExecutionStateError(
                    f"Execution {execution_id} is not waiting for approval "
                    f"(status={execution.status.value})"
                )

            expired = self.policy.evaluate_waiting(execution)
            if expired is not None:
                await self._finalize_waiting(execution_id, expired)
                raise ApprovalExpiredError(execution_id, expired.message or "timed out")

            if (
                decision.approval_request_id is not None
                and decision.approval_request_id != execution.approval_request_id
            ):
                raise ExecutionStateError(
                    f"Decision for approval request {decision.approval_request_id} does not "
                    f"match pending request {execution.approval_request_id}"
                )

            if not await self.ledger.transition(
                execution_id, AgentStatus.WAITING_FOR_APPROVAL, AgentStatus.RUNNING
            ):
                raise ExecutionStateError(f"Execution {execution_id} was claimed concurrently")

            strategy = self._strategy_for(execution.agent_type)
            logger.info(
                "approval_decision_received",
                execution_id=execution_id,
                approved=decision.approved,
                reviewer_id=decision.reviewer_id,
                approval_request_id=execution.approval_request_id,
            )

            context = await self.context_store.get(execution_id)
            if context is None:
                result = await self.engine.finalize_by_id(
                    execution_id,
                    AgentStatus.FAILED,
                    f"Context not found for execution: {execution_id}",
                )
            else:
                context.record_approval_decision(decision)
                context.status = AgentStatus.RUNNING

                if decision.approved or strategy.on_rejection(context, decision):
                    await self.context_store.save(context)
                    self._launch(strategy, execution_id)
                else:
                    execution = await self.ledger.get(execution_id)
                    result = await self.engine.finalize(
                        execution, AgentStatus.FAILED, self._rejection_message(decision), context
                    )

        if result is not None:
            await self._publish(result)
        return await self.ledger.get(execution_id)

    # Queries

    async def get_running_executions(self) -> list[AgentExecution]:
        """Every non-terminal execution (running or waiting for approval)."""
        return await self.ledger.list_running()

    def get_available_agent_types(self) -> list[AgentType]:
        return sorted(self._strategies, key=lambda t: t.value)

    def get_strategy(self, agent_type: AgentType) -> AgentStrategy | None:
        return self._strategies.get(agent_type)

    async def get_execution(self, execution_id: str) -> AgentExecution:
        """
        Get an execution, enforcing its approval timeout if it is waiting.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        execution = await self.ledger.get(execution_id)
        if execution.status == AgentStatus.WAITING_FOR_APPROVAL and not self.is_in_flight(
            execution_id
        ):
            expired = self.policy.evaluate_waiting(execution)
            if expired is not None:
                await self._finalize_waiting(execution_id, expired)
                execution = await self.ledger.get(execution_id)
        return execution

    async def list_actions(self, execution_id: str) -> list[AgentActionHistory]:
        return await self.ledger.list_actions(execution_id)

    async def list_by_type(
        self, agent_type: AgentType, limit: int | None = None
    ) -> list[AgentExecution]:
        return await self.ledger.list_by_type(agent_type, limit)

    def is_in_flight(self, execution_id: str) -> bool:
        """Whether a task of this process currently owns the execution."""
        task = self._tasks.get(execution_id)
        return task is not None and not task.done()

    async def wait_for(
        self, execution_id: str, timeout: float | None = None
    ) -> AgentResult | None:
        """
        Wait for the execution's current task to finish.

        Returns:
            The final result if the execution is terminal, None if it is
            suspended (or still running elsewhere)

        Raises:
            TimeoutError: If the task does not finish within ``timeout``
        """
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)

        execution = await self.get_execution(execution_id)
        return AgentResult.from_execution(execution) if execution.is_terminal else None

    def add_result_listener(self, listener: ResultListener) -> None:
        """Register a callback (sync or async) invoked with every final result."""
        self._listeners.append(listener)

    # Maintenance

    async def sweep_approval_timeouts(self) -> int:
        """
        Move every waiting execution past its approval timeout to TIMEOUT.

        Returns:
            Number of executions timed out
        """
        now = datetime.now(UTC)
        expired_count = 0

        waiting = await self.ledger.list_by_status(AgentStatus.WAITING_FOR_APPROVAL)
        for execution in waiting:
            if self.is_in_flight(execution.execution_id):
                continue
            decision = self.policy.evaluate_waiting(execution, now)
            if decision is not None and await self._finalize_waiting(
                execution.execution_id, decision
            ):
                expired_count += 1

        if expired_count:
            logger.info("approval_timeouts_swept", expired=expired_count, waiting=len(waiting))
        return expired_count

    async def recover_interrupted_executions(self) -> list[str]:
        """
        Take over RUNNING executions left behind by a previous process.

        Executions whose context survived are relaunched from their last saved
        iteration; the rest are failed.

        Returns:
            Ids of the relaunched executions
        """
        relaunched: list[str] = []

        for execution in await self.ledger.list_by_status(AgentStatus.RUNNING):
            execution_id = execution.execution_id
            if self.is_in_flight(execution_id):
                continue

            strategy = self._strategies.get(execution.agent_type)
            context = await self.context_store.get(execution_id)

            if strategy is None or context is None:
                reason = (
                    f"No strategy registered for agent type: {execution.agent_type.value}"
                    if strategy is None
                    else "Execution interrupted by restart and its context was lost"
                )
                result = await self.engine.finalize_by_id(execution_id, AgentStatus.FAILED, reason)
                if result is not None:
                    await self._publish(result)
                continue

            if context.status == AgentStatus.WAITING_FOR_APPROVAL:
                # Interrupted between saving the context and recording the wait
                await self._restore_waiting(execution, context)
                continue

            self._launch(strategy, execution_id)
            relaunched.append(execution_id)

        logger.info("interrupted_executions_recovered", relaunched=len(relaunched))
        return relaunched

    async def start(self) -> None:
        """Start the background approval-timeout sweeper."""
        if self._sweeper is not None:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(
            "approval_sweeper_started",
            interval_seconds=self.settings.approval_sweep_interval_seconds,
        )

    async def shutdown(self) -> None:
        """
        Stop the sweeper and cancel in-flight tasks.

        Cancelled executions keep their RUNNING record and saved context so
        ``recover_interrupted_executions`` can pick them up on the next start.
        """
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("orchestrator_shutdown", cancelled=len(tasks))

    # Internals

    def _strategy_for(self, agent_type: AgentType) -> AgentStrategy:
        strategy = self._strategies.get(agent_type)
        if strategy is None:
            raise UnknownAgentTypeError(agent_type)
        return strategy

    def _launch(self, strategy: AgentStrategy, execution_id: str) -> None:
        stop_event = asyncio.Event()
        task = asyncio.create_task(
            self._drive(strategy, execution_id, stop_event),
            name=f"agent-{execution_id}",
        )
        self._tasks[execution_id] = task
        self._stop_events[execution_id] = stop_event
        task.add_done_callback(lambda t: self._forget(execution_id, t))

    def _forget(self, execution_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(execution_id) is task:
            del self._tasks[execution_id]
            self._stop_events.pop(execution_id, None)

    async def _drive(
        self,
        strategy: AgentStrategy,
        execution_id: str,
        stop_event: asyncio.Event,
    ) -> AgentResult | None:
        result = await self.engine.run(strategy, execution_id, stop_event)
        if result is not None:
            await self._publish(result)
        elif stop_event.is_set():
            # Stop arrived while the execution was being parked at its gate
            await self._finalize_waiting(
                execution_id,
                TerminationDecision(status=AgentStatus.STOPPED, message="Stopped by request"),
            )
            logger.info("waiting_execution_stopped", execution_id=execution_id)
        return result

    async def _publish(self, result: AgentResult) -> None:
        for listener in self._listeners:
            try:
                outcome = listener(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(
                    "result_listener_failed",
                    execution_id=result.execution_id,
                    error=str(e),
                )

    async def _finalize_waiting(self, execution_id: str, decision: TerminationDecision) -> bool:
        """Claim a waiting execution and finalize it with ``decision``.

        Returns:
            False if another caller claimed the execution first
        """
        claimed = await self.ledger.transition(
            execution_id, AgentStatus.WAITING_FOR_APPROVAL, AgentStatus.RUNNING
        )
        if not claimed:
            return False

        result = await self.engine.finalize_by_id(execution_id, decision.status, decision.message)
        if result is not None:
            await self._publish(result)
        return True

    async def _restore_waiting(self, execution: AgentExecution, context: AgentContext) -> None:
        last_request = context.last_action(AgentActionType.REQUEST_APPROVAL)
        execution.status = AgentStatus.WAITING_FOR_APPROVAL
        execution.current_iteration = context.current_iteration
        execution.total_ai_cost = context.total_ai_cost
        execution.waiting_since = last_request.timestamp if last_request else datetime.now(UTC)
        execution.approval_request_id = last_request.approval_request_id if last_request else None
        await self.ledger.update(execution)
        logger.info("waiting_execution_restored", execution_id=execution.execution_id)

    @staticmethod
    def _rejection_message(decision: ApprovalDecision) -> str:
        reviewer = decision.reviewer_name or decision.reviewer_id or "reviewer"
        message = f"Approval rejected by {reviewer}"
        if decision.notes:
            message += f": {decision.notes}"
        return message

    async def _sweep_loop(self) -> None:
        interval = self.settings.approval_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_approval_timeouts()
            except Exception as e:
                logger.error("approval_sweep_failed", error=str(e))
