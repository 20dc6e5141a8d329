"""
Execution ledger service.

Durable audit trail of agent executions: one record per execution plus an
append-only, iteration-ordered action history. Each call runs in its own
transaction. The ledger is decoupled from the context store: the ledger is
history, the context is working state.
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database.connection import get_session_factory, session_scope
from ..database.repositories import (
    NON_TERMINAL_STATUSES,
    AgentActionHistoryRepository,
    AgentExecutionRepository,
)
from ..models.actions import AgentActionHistory
from ..models.agent import AgentStatus, AgentType
from ..models.execution import AgentExecution

logger = structlog.get_logger()


class LedgerError(Exception):
    """Base exception for ledger failures."""


class ExecutionNotFoundError(LedgerError):
    """Raised when an execution id is unknown to the ledger."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id


class ExecutionLedger:
    """
    Ledger of executions and action history.

    Updates use full-replace semantics. Concurrent updates to one execution
    are serialized by its single owning task; ``transition`` is the only
    conditional write and is used to claim suspended executions.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        """
        Initialize ledger.

        Args:
            session_factory: Session factory; defaults to the global one from init_db()
        """
        self._session_factory = session_factory

    def _scope(self):
        return session_scope(self._session_factory or get_session_factory())

    async def create(self, execution: AgentExecution) -> AgentExecution:
        async with self._scope() as session:
            await AgentExecutionRepository.create(session, execution)

        logger.info(
            "execution_created",
            execution_id=execution.execution_id,
            agent_type=execution.agent_type.value,
            max_iterations=execution.max_iterations,
        )
        return execution

    async def get(self, execution_id: str) -> AgentExecution:
        """
        Get an execution.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        execution = await self.get_or_none(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def get_or_none(self, execution_id: str) -> AgentExecution | None:
        async with self._scope() as session:
            row = await AgentExecutionRepository.get_by_id(session, execution_id)
            return AgentExecutionRepository.to_model(row) if row else None

    async def update(self, execution: AgentExecution) -> AgentExecution:
        """
        Replace an execution record.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        async with self._scope() as session:
            found = await AgentExecutionRepository.replace(session, execution)
        if not found:
            raise ExecutionNotFoundError(execution.execution_id)

        logger.debug(
            "execution_updated",
            execution_id=execution.execution_id,
            status=execution.status.value,
            iteration=execution.current_iteration,
        )
        return execution

    async def transition(
        self,
        execution_id: str,
        expected: AgentStatus,
        new_status: AgentStatus,
    ) -> bool:
        """Atomically move an execution from ``expected`` to ``new_status``.

        Returns:
            False if the execution was not in ``expected`` (someone else won)
        """
        async with self._scope() as session:
            changed = await AgentExecutionRepository.compare_and_set_status(
                session, execution_id, expected, new_status
            )

        logger.debug(
            "execution_transition",
            execution_id=execution_id,
            expected=expected.value,
            new_status=new_status.value,
            changed=changed,
        )
        return changed

    async def append_action(self, record: AgentActionHistory) -> AgentActionHistory:
        """Append an immutable action row and bump the execution's action count."""
        async with self._scope() as session:
            await AgentActionHistoryRepository.create(session, record)
            await AgentExecutionRepository.increment_actions(session, record.execution_id)

        logger.debug(
            "action_recorded",
            execution_id=record.execution_id,
            iteration=record.iteration,
            action_type=record.action_type.value,
            success=record.success,
        )
        return record

    async def list_actions(self, execution_id: str) -> list[AgentActionHistory]:
        """Action history ordered by iteration."""
        async with self._scope() as session:
            rows = await AgentActionHistoryRepository.get_by_execution(session, execution_id)
            return [AgentActionHistoryRepository.to_model(row) for row in rows]

    async def list_by_type(
        self, agent_type: AgentType, limit: int | None = None
    ) -> list[AgentExecution]:
        """Executions of one agent type, newest first."""
        async with self._scope() as session:
            rows = await AgentExecutionRepository.get_by_type(session, agent_type, limit)
            return [AgentExecutionRepository.to_model(row) for row in rows]

    async def list_running(self) -> list[AgentExecution]:
        """All non-terminal executions (running or waiting for approval)."""
        return await self.list_by_status(*NON_TERMINAL_STATUSES)

    async def list_by_status(self, *statuses: AgentStatus) -> list[AgentExecution]:
        async with self._scope() as session:
            rows = await AgentExecutionRepository.get_by_statuses(session, tuple(statuses))
            return [AgentExecutionRepository.to_model(row) for row in rows]

    async def list_recent(self, limit: int = 50) -> list[AgentExecution]:
        async with self._scope() as session:
            rows = await AgentExecutionRepository.get_recent(session, limit)
            return [AgentExecutionRepository.to_model(row) for row in rows]
