"""Shared fixtures for the agent engine test-suite.

The ledger runs on a file-backed SQLite database (aiosqlite) per test and the
context store on fakeredis, so the whole engine can be exercised end to end
without external services.
"""

from __future__ import annotations

import itertools
from typing import Any
from unittest.mock import AsyncMock, patch

import fakeredis.aioredis
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from qaagent.config.settings import Settings
from qaagent.database import models  # noqa: F401 - register ledger tables
from qaagent.database.connection import Base
from qaagent.models.actions import AgentActionType, AgentPlan
from qaagent.models.agent import AgentType
from qaagent.models.context import AgentContext
from qaagent.models.tool_integration import ToolDefinition, ToolParameter
from qaagent.services.approval import ApprovalGateway
from qaagent.services.context_store import ContextStoreConfig, RedisContextStore
from qaagent.services.execution_ledger import ExecutionLedger
from qaagent.services.orchestrator import AgentOrchestrator
from qaagent.strategies.base import AgentStrategy
from qaagent.tools.base import Tool
from qaagent.tools.registry import ToolRegistry


class ScriptedTool(Tool):
    """Tool that replays scripted outputs.

    Each call pops the next item of ``outputs`` (falling back to ``default``);
    exception instances are raised instead of returned.
    """

    def __init__(
        self,
        action_type: AgentActionType,
        outputs: list[Any] | None = None,
        default: dict[str, Any] | None = None,
        parameters: dict[str, ToolParameter] | None = None,
    ):
        super().__init__(
            ToolDefinition(
                action_type=action_type,
                name=f"Scripted {action_type.value}",
                description=f"Scripted tool for {action_type.value}",
                parameters=parameters or {},
            )
        )
        self.outputs = list(outputs or [])
        self.default = default if default is not None else {}
        self.calls: list[dict[str, Any]] = []

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(dict(parameters))
        item = self.outputs.pop(0) if self.outputs else self.default
        if isinstance(item, Exception):
            raise item
        return dict(item)


class RepeatStrategy(AgentStrategy):
    """Runs GENERATE_REPORT until ``finish_after`` successes (or forever)."""

    agent_type = AgentType.QUALITY_MONITOR
    description = "Repeat a report action"

    def plan(self, context: AgentContext) -> AgentPlan:
        finish_after = context.goal.get_parameter("finish_after")
        successes = sum(1 for entry in context.action_history if entry.success)
        if finish_after is not None and successes >= finish_after:
            return self.complete()
        return self.act(
            AgentActionType.GENERATE_REPORT,
            "Produce the next report",
            sequence=context.current_iteration + 1,
        )

    def is_goal_achieved(self, context: AgentContext) -> bool:
        return False


class ReviewedWriteStrategy(AgentStrategy):
    """Reads a file, asks for approval, then writes it."""

    agent_type = AgentType.TEST_FAILURE_ANALYZER
    description = "Read, approve, write"
    required_parameters = ("path",)

    def plan(self, context: AgentContext) -> AgentPlan:
        path = context.goal.get_parameter("path")
        if not context.has_succeeded(AgentActionType.READ_FILE):
            return self.act(AgentActionType.READ_FILE, "Read the file", path=path)
        if not context.has_succeeded(AgentActionType.REQUEST_APPROVAL):
            return self.act(AgentActionType.REQUEST_APPROVAL, "Review the change", path=path)
        if not context.is_last_approval_granted():
            return self.abort("Change rejected")
        if not context.has_succeeded(AgentActionType.WRITE_FILE):
            return self.act(AgentActionType.WRITE_FILE, "Write the file", path=path, content="updated")
        return self.complete()

    def is_goal_achieved(self, context: AgentContext) -> bool:
        return context.has_succeeded(AgentActionType.WRITE_FILE)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",
        approval_sweep_interval_seconds=1,
    )


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory over a fresh file-backed SQLite ledger."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def ledger(session_factory) -> ExecutionLedger:
    return ExecutionLedger(session_factory)


@pytest.fixture
async def fake_redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
async def context_store(fake_redis):
    """Connected context store backed by fakeredis."""
    config = ContextStoreConfig(redis_url="redis://localhost:6379/15", ttl_seconds=300)

    with patch("redis.asyncio.from_url", return_value=fake_redis):
        store = RedisContextStore(config)
        await store.connect()

        yield store

        await store.disconnect()


@pytest.fixture
def approval_gateway() -> AsyncMock:
    """Approval collaborator handing out sequential request ids."""
    counter = itertools.count(1)
    gateway = AsyncMock(spec=ApprovalGateway)
    gateway.create_approval_request.side_effect = (
        lambda content, metadata: f"approval-{next(counter)}"
    )
    return gateway


@pytest.fixture
def report_tool() -> ScriptedTool:
    return ScriptedTool(AgentActionType.GENERATE_REPORT, default={"report": "ok"})


@pytest.fixture
def tool_registry(report_tool) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(report_tool)
    registry.register(
        ScriptedTool(AgentActionType.READ_FILE, default={"file_content": "original"})
    )
    registry.register(ScriptedTool(AgentActionType.WRITE_FILE, default={"bytes_written": 7}))
    return registry


@pytest.fixture
async def orchestrator(ledger, context_store, tool_registry, approval_gateway, settings):
    orchestrator = AgentOrchestrator(
        ledger=ledger,
        context_store=context_store,
        tool_registry=tool_registry,
        approval_gateway=approval_gateway,
        strategies=[RepeatStrategy(), ReviewedWriteStrategy()],
        settings=settings,
    )

    yield orchestrator

    await orchestrator.shutdown()
