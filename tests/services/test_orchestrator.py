"""End-to-end tests for the orchestrator and the engine loop.

Executions run on real asyncio tasks against the SQLite ledger and the
fakeredis context store; only the tools and the approval collaborator are
scripted.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from qaagent.models.actions import AgentActionType, AgentPlan
from qaagent.models.agent import AgentConfig, AgentGoal, AgentStatus, AgentType, RetryPolicy
from qaagent.models.context import AgentContext
from qaagent.models.execution import AgentExecution, ApprovalDecision
from qaagent.models.tool_integration import ToolDefinition
from qaagent.services.execution_ledger import ExecutionNotFoundError
from qaagent.services.orchestrator import (
    AgentOrchestrator,
    ApprovalExpiredError,
    ExecutionStateError,
    InvalidGoalError,
    UnknownAgentTypeError,
)
from qaagent.strategies import default_strategies
from qaagent.strategies.base import AgentStrategy
from qaagent.tools.base import Tool
from qaagent.tools.builtin import register_builtin_tools
from qaagent.tools.builtin.clients import AIResponse
from qaagent.tools.registry import ToolRegistry

from conftest import RepeatStrategy, ScriptedTool
from fakes import FakeAI, FakeIssueTracker, FakeVersionControl, InMemoryWorkspace, make_clients

WAIT = 5.0


def repeat_goal(finish_after: int | None = None) -> AgentGoal:
    parameters = {} if finish_after is None else {"finish_after": finish_after}
    return AgentGoal(goal_type="monitor", parameters=parameters)


def write_goal() -> AgentGoal:
    return AgentGoal(goal_type="analyze", parameters={"path": "tests/login.spec.ts"})


class BlockingTool(Tool):
    """Report tool that parks until released."""

    def __init__(self):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.GENERATE_REPORT,
                name="Blocking report",
                description="Blocks until released",
            )
        )
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        self.started.set()
        await self.release.wait()
        return {"report": "late"}


class CleanupStrategy(AgentStrategy):
    """Deletes one file; DELETE_FILE is gated by the default config."""

    agent_type = AgentType.QUALITY_MONITOR

    def plan(self, context: AgentContext) -> AgentPlan:
        if context.has_succeeded(AgentActionType.DELETE_FILE):
            return self.complete()
        return self.act(AgentActionType.DELETE_FILE, "Remove stale test", path="tests/old.spec.ts")

    def is_goal_achieved(self, context: AgentContext) -> bool:
        return context.has_succeeded(AgentActionType.DELETE_FILE)


class EchoTool(Tool):
    """Report tool whose output carries the caller's marker."""

    def __init__(self):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.GENERATE_REPORT,
                name="Echo report",
                description="Echoes the marker and sequence it was given",
            )
        )

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        marker = parameters["marker"]
        return {"report": f"{marker}-{parameters['sequence']}", f"marker_{marker}": True}


class MarkerStrategy(AgentStrategy):
    """Two marked reports, an approval gate, then done."""

    agent_type = AgentType.QUALITY_MONITOR

    def plan(self, context: AgentContext) -> AgentPlan:
        reports = sum(
            1
            for entry in context.action_history
            if entry.action_type == AgentActionType.GENERATE_REPORT and entry.success
        )
        if reports < 2:
            return self.act(
                AgentActionType.GENERATE_REPORT,
                "Produce a marked report",
                marker=context.goal.get_parameter("marker"),
                sequence=reports + 1,
            )
        if not context.has_succeeded(AgentActionType.REQUEST_APPROVAL):
            return self.act(AgentActionType.REQUEST_APPROVAL, "Review the reports")
        return self.complete()

    def is_goal_achieved(self, context: AgentContext) -> bool:
        return False


class FailingHookStrategy(RepeatStrategy):
    """Repeats reports; the completion hook blows up on the second one."""

    def on_action_completed(self, context, plan, result) -> None:
        if context.current_iteration == 2:
            raise RuntimeError("hook bug")


@pytest.fixture
async def build_orchestrator(ledger, context_store, approval_gateway, settings):
    """Factory for orchestrators with their own registry and strategies."""
    built = []

    def build(registry: ToolRegistry, strategies: list[AgentStrategy]) -> AgentOrchestrator:
        orchestrator = AgentOrchestrator(
            ledger, context_store, registry, approval_gateway, strategies, settings
        )
        built.append(orchestrator)
        return orchestrator

    yield build

    for orchestrator in built:
        await orchestrator.shutdown()


async def wait_until(predicate, timeout: float = WAIT) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def suspend(orchestrator, config: AgentConfig | None = None) -> AgentExecution:
    execution = await orchestrator.create_and_start(
        AgentType.TEST_FAILURE_ANALYZER, write_goal(), config or AgentConfig(max_iterations=10)
    )
    assert await orchestrator.wait_for(execution.execution_id, WAIT) is None
    return await orchestrator.get_execution(execution.execution_id)


async def age_wait(ledger, execution_id: str, by: timedelta) -> None:
    execution = await ledger.get(execution_id)
    execution.waiting_since = datetime.now(UTC) - by
    await ledger.update(execution)


class TestCreate:
    async def test_unknown_agent_type(self, orchestrator):
        with pytest.raises(UnknownAgentTypeError):
            await orchestrator.create_and_start(
                AgentType.PLAYWRIGHT_TEST_GENERATOR, AgentGoal(goal_type="generate")
            )

    async def test_invalid_goal_creates_nothing(self, orchestrator, ledger):
        with pytest.raises(InvalidGoalError, match="path"):
            await orchestrator.create_and_start(
                AgentType.TEST_FAILURE_ANALYZER, AgentGoal(goal_type="analyze")
            )
        assert await ledger.list_recent(limit=10) == []

    async def test_returns_running_record(self, orchestrator, settings):
        execution = await orchestrator.create_and_start(
            AgentType.QUALITY_MONITOR, repeat_goal(1), triggered_by="user-1"
        )

        assert execution.status == AgentStatus.RUNNING
        assert execution.completed_at is None
        assert execution.max_iterations == settings.default_max_iterations
        assert execution.triggered_by == "user-1"
        assert orchestrator.get_available_agent_types() == [
            AgentType.QUALITY_MONITOR,
            AgentType.TEST_FAILURE_ANALYZER,
        ]

        await orchestrator.wait_for(execution.execution_id, WAIT)


class TestRunLoop:
    async def test_completes_and_clears_context(self, orchestrator, context_store):
        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal(2))

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.SUCCEEDED
        assert result.iterations_completed == 2
        assert result.outputs == {"report": "ok"}
        assert result.completed_at is not None
        assert not await context_store.exists(execution.execution_id)

        actions = await orchestrator.list_actions(execution.execution_id)
        assert [a.iteration for a in actions] == [1, 2]
        assert [a.action_input["sequence"] for a in actions] == [1, 2]

    async def test_iteration_budget(self, orchestrator):
        execution = await orchestrator.create_and_start(
            AgentType.QUALITY_MONITOR, repeat_goal(), AgentConfig(max_iterations=3)
        )

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.BUDGET_EXCEEDED
        assert result.iterations_completed == 3
        assert len(await orchestrator.list_actions(execution.execution_id)) == 3

    async def test_cost_budget(self, orchestrator, report_tool):
        report_tool.default = {"report": "ok", "ai_cost": 0.5}
        execution = await orchestrator.create_and_start(
            AgentType.QUALITY_MONITOR,
            repeat_goal(),
            AgentConfig(max_iterations=10, max_ai_cost=1.0),
        )

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.BUDGET_EXCEEDED
        assert result.iterations_completed == 2
        assert result.total_ai_cost == pytest.approx(1.0)
        assert "ai_cost" not in result.outputs

    async def test_tool_reported_failure_fails_execution(self, orchestrator, report_tool):
        report_tool.default = {"success": False, "error": "disk full"}
        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal(1))

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.FAILED
        assert result.error_message == "Action generate_report failed: disk full"
        [row] = await orchestrator.list_actions(execution.execution_id)
        assert row.success is False
        assert row.error_message == "disk full"

    async def test_retry_then_success(self, orchestrator, report_tool):
        report_tool.outputs = [RuntimeError("flaky backend")]
        config = AgentConfig(
            max_iterations=5,
            retry_policy=RetryPolicy(
                retryable_actions=frozenset({AgentActionType.GENERATE_REPORT}),
                base_delay_seconds=0,
            ),
        )
        execution = await orchestrator.create_and_start(
            AgentType.QUALITY_MONITOR, repeat_goal(1), config
        )

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.SUCCEEDED
        actions = await orchestrator.list_actions(execution.execution_id)
        assert [a.success for a in actions] == [False, True]
        assert "flaky backend" in actions[0].error_message

    async def test_retry_budget_exhausted(self, orchestrator, report_tool):
        report_tool.outputs = [RuntimeError("down")] * 3
        config = AgentConfig(
            max_iterations=10,
            retry_policy=RetryPolicy(
                max_retries=2,
                retryable_actions=frozenset({AgentActionType.GENERATE_REPORT}),
                base_delay_seconds=0,
            ),
        )
        execution = await orchestrator.create_and_start(
            AgentType.QUALITY_MONITOR, repeat_goal(1), config
        )

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.FAILED
        assert result.error_message.startswith("Action generate_report failed")
        assert len(report_tool.calls) == 3

    async def test_missing_tool_fails(self, orchestrator, tool_registry):
        tool_registry.unregister(AgentActionType.GENERATE_REPORT)
        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal(1))

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.FAILED
        assert "No tool registered" in result.error_message

    async def test_concurrent_executions_are_isolated(self, build_orchestrator, context_store):
        registry = ToolRegistry()
        registry.register(EchoTool())
        orchestrator = build_orchestrator(registry, [MarkerStrategy()])
        markers = ["alpha", "beta", "gamma", "delta", "epsilon"]

        executions = {
            marker: await orchestrator.create_and_start(
                AgentType.QUALITY_MONITOR,
                AgentGoal(goal_type="monitor", parameters={"marker": marker}),
            )
            for marker in markers
        }
        suspended = await asyncio.gather(
            *(orchestrator.wait_for(e.execution_id, WAIT) for e in executions.values())
        )
        assert suspended == [None] * len(markers)

        for marker, execution in executions.items():
            expected = {"report": f"{marker}-2", f"marker_{marker}": True}
            context = await context_store.get(execution.execution_id)
            assert context.work_products == expected
            reports = [
                entry
                for entry in context.action_history
                if entry.action_type == AgentActionType.GENERATE_REPORT
            ]
            assert [entry.action_input["marker"] for entry in reports] == [marker, marker]

        for execution in executions.values():
            await orchestrator.resume(execution.execution_id, ApprovalDecision(approved=True))
        results = await asyncio.gather(
            *(orchestrator.wait_for(e.execution_id, WAIT) for e in executions.values())
        )

        for marker, result in zip(markers, results):
            assert result.status == AgentStatus.SUCCEEDED
            assert result.outputs == {"report": f"{marker}-2", f"marker_{marker}": True}
            actions = await orchestrator.list_actions(result.execution_id)
            assert {a.execution_id for a in actions} == {result.execution_id}
            assert [a.action_input.get("marker") for a in actions] == [marker, marker, None]
        assert await orchestrator.get_running_executions() == []

    async def test_strategy_hook_error_keeps_counters_in_step(self, build_orchestrator, report_tool):
        registry = ToolRegistry()
        registry.register(report_tool)
        orchestrator = build_orchestrator(registry, [FailingHookStrategy()])
        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal())

        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.FAILED
        assert result.error_message == "Unexpected error: hook bug"
        actions = await orchestrator.list_actions(execution.execution_id)
        assert len(actions) == 2
        assert result.iterations_completed == len(actions)
        assert result.outputs == {"report": "ok"}
        stored = await orchestrator.get_execution(execution.execution_id)
        assert stored.total_actions == 2
        assert stored.current_iteration == 2


class TestStop:
    async def test_stop_running_execution(self, orchestrator, tool_registry):
        blocking = BlockingTool()
        tool_registry.register(blocking)
        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal())
        await asyncio.wait_for(blocking.started.wait(), WAIT)

        assert await orchestrator.stop(execution.execution_id) is True
        blocking.release.set()
        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.STOPPED
        assert result.iterations_completed == 1
        assert result.completed_at is not None
        assert await orchestrator.stop(execution.execution_id) is False

    async def test_stop_interrupts_backoff(self, orchestrator, report_tool):
        report_tool.outputs = [RuntimeError("rate limited")]
        config = AgentConfig(
            max_iterations=5,
            retry_policy=RetryPolicy(
                retryable_actions=frozenset({AgentActionType.GENERATE_REPORT}),
                base_delay_seconds=30,
            ),
        )
        execution = await orchestrator.create_and_start(
            AgentType.QUALITY_MONITOR, repeat_goal(1), config
        )
        await wait_until(lambda: len(report_tool.calls) == 1)

        assert await orchestrator.stop(execution.execution_id) is True
        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.STOPPED
        assert len(report_tool.calls) == 1

    async def test_stop_while_parking_at_gate(self, orchestrator, context_store, monkeypatch):
        saving = asyncio.Event()
        release = asyncio.Event()
        original_save = context_store.save

        async def held_save(context: AgentContext) -> None:
            if context.status == AgentStatus.WAITING_FOR_APPROVAL:
                saving.set()
                await release.wait()
            await original_save(context)

        monkeypatch.setattr(context_store, "save", held_save)
        execution = await orchestrator.create_and_start(
            AgentType.TEST_FAILURE_ANALYZER, write_goal(), AgentConfig(max_iterations=10)
        )
        await asyncio.wait_for(saving.wait(), WAIT)

        assert await orchestrator.stop(execution.execution_id) is True
        release.set()
        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.STOPPED
        assert result.error_message == "Stopped by request"
        assert result.iterations_completed == 2
        assert not await context_store.exists(execution.execution_id)
        assert await orchestrator.stop(execution.execution_id) is False

    async def test_stop_unknown_execution(self, orchestrator):
        assert await orchestrator.stop("missing") is False

    async def test_stop_waiting_execution(self, orchestrator, context_store):
        execution = await suspend(orchestrator)

        assert await orchestrator.stop(execution.execution_id) is True

        stopped = await orchestrator.get_execution(execution.execution_id)
        assert stopped.status == AgentStatus.STOPPED
        assert stopped.approval_request_id is None
        assert not await context_store.exists(execution.execution_id)


class TestApproval:
    async def test_suspends_at_gate(self, orchestrator, approval_gateway, tool_registry):
        execution = await suspend(orchestrator)

        assert execution.status == AgentStatus.WAITING_FOR_APPROVAL
        assert execution.approval_request_id == "approval-1"
        assert execution.waiting_since is not None
        assert execution.completed_at is None
        assert execution.current_iteration == 2
        assert not orchestrator.is_in_flight(execution.execution_id)

        approval_gateway.create_approval_request.assert_awaited_once()
        metadata = approval_gateway.create_approval_request.await_args.kwargs["metadata"]
        assert metadata["execution_id"] == execution.execution_id
        assert metadata["iteration"] == 2

        read_row, approval_row = await orchestrator.list_actions(execution.execution_id)
        assert read_row.action_type == AgentActionType.READ_FILE
        assert approval_row.action_type == AgentActionType.REQUEST_APPROVAL
        assert approval_row.required_approval is True
        assert approval_row.approval_request_id == "approval-1"

    async def test_resume_continues_at_next_iteration(self, orchestrator, tool_registry):
        execution = await suspend(orchestrator)

        await orchestrator.resume(
            execution.execution_id,
            ApprovalDecision(approved=True, approval_request_id="approval-1", reviewer_id="rev-1"),
        )
        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert result.status == AgentStatus.SUCCEEDED
        assert result.iterations_completed == 3
        assert result.outputs["file_content"] == "original"
        actions = await orchestrator.list_actions(execution.execution_id)
        assert [a.iteration for a in actions] == [1, 2, 3]
        assert actions[2].action_type == AgentActionType.WRITE_FILE
        assert len(tool_registry.lookup(AgentActionType.READ_FILE).calls) == 1

    async def test_rejection_fails_execution(self, orchestrator):
        results = []
        orchestrator.add_result_listener(results.append)
        execution = await suspend(orchestrator)

        updated = await orchestrator.resume(
            execution.execution_id,
            ApprovalDecision(approved=False, reviewer_name="Ada", notes="Not needed"),
        )

        assert updated.status == AgentStatus.FAILED
        assert updated.error_message == "Approval rejected by Ada: Not needed"
        assert [r.execution_id for r in results] == [execution.execution_id]
        assert len(await orchestrator.list_actions(execution.execution_id)) == 2

    async def test_resume_requires_waiting_state(self, orchestrator):
        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal(1))
        await orchestrator.wait_for(execution.execution_id, WAIT)

        with pytest.raises(ExecutionStateError):
            await orchestrator.resume(execution.execution_id, ApprovalDecision(approved=True))
        with pytest.raises(ExecutionNotFoundError):
            await orchestrator.resume("missing", ApprovalDecision(approved=True))

    async def test_resume_checks_request_id(self, orchestrator):
        execution = await suspend(orchestrator)

        with pytest.raises(ExecutionStateError, match="does not match"):
            await orchestrator.resume(
                execution.execution_id,
                ApprovalDecision(approved=True, approval_request_id="approval-99"),
            )
        assert (await orchestrator.get_execution(execution.execution_id)).status == (
            AgentStatus.WAITING_FOR_APPROVAL
        )

    async def test_concurrent_resumes_claim_once(self, orchestrator):
        execution = await suspend(orchestrator)
        decision = ApprovalDecision(approved=True)

        outcomes = await asyncio.gather(
            orchestrator.resume(execution.execution_id, decision),
            orchestrator.resume(execution.execution_id, decision),
            return_exceptions=True,
        )

        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], ExecutionStateError)
        result = await orchestrator.wait_for(execution.execution_id, WAIT)
        assert result.status == AgentStatus.SUCCEEDED
        assert len(await orchestrator.list_actions(execution.execution_id)) == 3

    async def test_config_gated_action(
        self, ledger, context_store, approval_gateway, settings
    ):
        delete_tool = ScriptedTool(AgentActionType.DELETE_FILE, default={"deleted": True})
        registry = ToolRegistry()
        registry.register(delete_tool)
        orchestrator = AgentOrchestrator(
            ledger, context_store, registry, approval_gateway, [CleanupStrategy()], settings
        )
        try:
            execution = await orchestrator.create_and_start(
                AgentType.QUALITY_MONITOR, AgentGoal(goal_type="cleanup")
            )
            assert await orchestrator.wait_for(execution.execution_id, WAIT) is None
            assert delete_tool.calls == []

            await orchestrator.resume(execution.execution_id, ApprovalDecision(approved=True))
            result = await orchestrator.wait_for(execution.execution_id, WAIT)

            assert result.status == AgentStatus.SUCCEEDED
            gate, delete = await orchestrator.list_actions(execution.execution_id)
            assert gate.action_type == AgentActionType.REQUEST_APPROVAL
            assert gate.action_input["gated_action"] == "delete_file"
            assert delete.action_type == AgentActionType.DELETE_FILE
            assert delete_tool.calls == [{"path": "tests/old.spec.ts"}]
        finally:
            await orchestrator.shutdown()


class TestApprovalTimeout:
    async def test_timeout_observed_on_read(self, orchestrator, ledger):
        execution = await suspend(orchestrator, AgentConfig(approval_timeout_seconds=60))
        await age_wait(ledger, execution.execution_id, timedelta(hours=2))

        observed = await orchestrator.get_execution(execution.execution_id)

        assert observed.status == AgentStatus.TIMEOUT
        assert observed.error_message == "Approval not received within 60 seconds"
        assert observed.completed_at is not None
        with pytest.raises(ExecutionStateError):
            await orchestrator.resume(execution.execution_id, ApprovalDecision(approved=True))

    async def test_late_decision_is_rejected(self, orchestrator, ledger):
        execution = await suspend(orchestrator, AgentConfig(approval_timeout_seconds=60))
        await age_wait(ledger, execution.execution_id, timedelta(minutes=5))

        with pytest.raises(ApprovalExpiredError):
            await orchestrator.resume(execution.execution_id, ApprovalDecision(approved=True))

        assert (await ledger.get(execution.execution_id)).status == AgentStatus.TIMEOUT

    async def test_sweeper_times_out_expired_only(self, orchestrator, ledger):
        config = AgentConfig(max_iterations=10, approval_timeout_seconds=60)
        stale = await suspend(orchestrator, config)
        fresh = await suspend(orchestrator, config)
        await age_wait(ledger, stale.execution_id, timedelta(minutes=2))

        assert await orchestrator.sweep_approval_timeouts() == 1
        assert (await ledger.get(stale.execution_id)).status == AgentStatus.TIMEOUT
        assert (await ledger.get(fresh.execution_id)).status == AgentStatus.WAITING_FOR_APPROVAL


class TestRecovery:
    async def _orphan(self, ledger, context_store, with_context: bool) -> AgentExecution:
        goal = repeat_goal(1)
        config = AgentConfig(max_iterations=5)
        execution = AgentExecution(
            agent_type=AgentType.QUALITY_MONITOR, goal=goal, config=config, max_iterations=5
        )
        await ledger.create(execution)
        if with_context:
            await context_store.save(
                AgentContext(
                    execution_id=execution.execution_id,
                    agent_type=AgentType.QUALITY_MONITOR,
                    goal=goal,
                    config=config,
                    max_iterations=5,
                )
            )
        return execution

    async def test_relaunches_when_context_survived(self, orchestrator, ledger, context_store):
        execution = await self._orphan(ledger, context_store, with_context=True)

        relaunched = await orchestrator.recover_interrupted_executions()
        result = await orchestrator.wait_for(execution.execution_id, WAIT)

        assert relaunched == [execution.execution_id]
        assert result.status == AgentStatus.SUCCEEDED

    async def test_fails_when_context_lost(self, orchestrator, ledger, context_store):
        execution = await self._orphan(ledger, context_store, with_context=False)

        assert await orchestrator.recover_interrupted_executions() == []

        failed = await ledger.get(execution.execution_id)
        assert failed.status == AgentStatus.FAILED
        assert "context was lost" in failed.error_message

    async def test_cancelled_run_is_recovered(self, orchestrator, tool_registry, ledger):
        blocking = BlockingTool()
        tool_registry.register(blocking)
        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal(1))
        await asyncio.wait_for(blocking.started.wait(), WAIT)

        await orchestrator.shutdown()
        assert (await ledger.get(execution.execution_id)).status == AgentStatus.RUNNING

        blocking.release.set()
        assert await orchestrator.recover_interrupted_executions() == [execution.execution_id]
        result = await orchestrator.wait_for(execution.execution_id, WAIT)
        assert result.status == AgentStatus.SUCCEEDED


class TestListeners:
    async def test_sync_async_and_failing_listeners(self, orchestrator):
        seen = []

        async def record(result):
            seen.append(("async", result.status))

        def broken(result):
            raise RuntimeError("listener bug")

        orchestrator.add_result_listener(broken)
        orchestrator.add_result_listener(lambda result: seen.append(("sync", result.status)))
        orchestrator.add_result_listener(record)

        execution = await orchestrator.create_and_start(AgentType.QUALITY_MONITOR, repeat_goal(1))
        await orchestrator.wait_for(execution.execution_id, WAIT)

        assert seen == [("sync", AgentStatus.SUCCEEDED), ("async", AgentStatus.SUCCEEDED)]


class TestPlaywrightGeneratorFlow:
    async def test_generate_approve_publish(self, ledger, context_store, approval_gateway, settings):
        workspace = InMemoryWorkspace()
        version_control = FakeVersionControl()
        registry = ToolRegistry()
        register_builtin_tools(
            registry,
            make_clients(
                workspace=workspace,
                version_control=version_control,
                issue_tracker=FakeIssueTracker({"QA-7": {"summary": "User can log in"}}),
                ai=FakeAI(
                    {
                        "generate_test_code": [
                            AIResponse(
                                content={"test_code": "test('login')", "test_class_name": "LoginTest"},
                                cost=0.05,
                                prompt_tokens=300,
                                completion_tokens=200,
                            )
                        ]
                    }
                ),
            ),
        )
        orchestrator = AgentOrchestrator(
            ledger, context_store, registry, approval_gateway, default_strategies(), settings
        )
        try:
            execution = await orchestrator.create_and_start(
                AgentType.PLAYWRIGHT_TEST_GENERATOR,
                AgentGoal(goal_type="generate_test", parameters={"jira_key": "QA-7"}),
            )
            assert await orchestrator.wait_for(execution.execution_id, WAIT) is None

            waiting = await orchestrator.get_execution(execution.execution_id)
            assert waiting.current_iteration == 4
            assert workspace.files == {"tests/generated/LoginTest.spec.ts": "test('login')"}
            assert version_control.branches == []

            await orchestrator.resume(
                execution.execution_id,
                ApprovalDecision(approved=True, approval_request_id=waiting.approval_request_id),
            )
            result = await orchestrator.wait_for(execution.execution_id, WAIT)

            assert result.status == AgentStatus.SUCCEEDED
            assert result.iterations_completed == 7
            assert result.total_ai_cost == pytest.approx(0.05)
            assert result.outputs["pr_url"] == "https://git.example.com/qa/pull/1"
            assert version_control.branches == ["feature/agent-qa-7-test"]
            assert version_control.commits[0]["file_paths"] == ["tests/generated/LoginTest.spec.ts"]

            actions = await orchestrator.list_actions(execution.execution_id)
            assert [a.action_type for a in actions] == [
                AgentActionType.FETCH_JIRA_STORY,
                AgentActionType.GENERATE_TEST_CODE,
                AgentActionType.WRITE_FILE,
                AgentActionType.REQUEST_APPROVAL,
                AgentActionType.CREATE_BRANCH,
                AgentActionType.COMMIT_CHANGES,
                AgentActionType.CREATE_PULL_REQUEST,
            ]
            assert actions[1].ai_cost == pytest.approx(0.05)
            assert [e.execution_id for e in await orchestrator.list_by_type(
                AgentType.PLAYWRIGHT_TEST_GENERATOR
            )] == [execution.execution_id]
        finally:
            await orchestrator.shutdown()
