"""
Database Repositories

Repository pattern for agent executions and action history.
"""

from datetime import UTC, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.actions import AgentActionHistory
from ..models.agent import AgentConfig, AgentGoal, AgentStatus, AgentType
from ..models.execution import AgentExecution
from .models import AgentActionHistoryDB, AgentExecutionDB

logger = structlog.get_logger()

NON_TERMINAL_STATUSES = (AgentStatus.RUNNING, AgentStatus.WAITING_FOR_APPROVAL)


def _aware(value: datetime | None) -> datetime | None:
    """Backends without timezone support hand back naive UTC datetimes."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class AgentExecutionRepository:
    """Repository for agent execution records."""

    @staticmethod
    def to_model(row: AgentExecutionDB) -> AgentExecution:
        """Convert a database row into an AgentExecution."""
        return AgentExecution(
            execution_id=row.id,
            agent_type=row.agent_type,
            status=row.status,
            goal=AgentGoal.model_validate(row.goal),
            config=AgentConfig.model_validate(row.config),
            current_iteration=row.current_iteration,
            max_iterations=row.max_iterations,
            triggered_by=row.triggered_by,
            triggered_by_name=row.triggered_by_name,
            started_at=_aware(row.started_at),
            completed_at=_aware(row.completed_at),
            outputs=row.outputs or {},
            error_message=row.error_message,
            total_ai_cost=row.total_ai_cost,
            total_actions=row.total_actions,
            approval_request_id=row.approval_request_id,
            waiting_since=_aware(row.waiting_since),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    @staticmethod
    def _values(execution: AgentExecution) -> dict:
        return {
            "agent_type": execution.agent_type,
            "status": execution.status,
            "goal": execution.goal.model_dump(mode="json"),
            "config": execution.config.model_dump(mode="json"),
            "current_iteration": execution.current_iteration,
            "max_iterations": execution.max_iterations,
            "triggered_by": execution.triggered_by,
            "triggered_by_name": execution.triggered_by_name,
            "started_at": execution.started_at,
            "completed_at": execution.completed_at,
            "outputs": execution.outputs,
            "error_message": execution.error_message,
            "total_ai_cost": execution.total_ai_cost,
            "total_actions": execution.total_actions,
            "approval_request_id": execution.approval_request_id,
            "waiting_since": execution.waiting_since,
        }

    @staticmethod
    async def create(session: AsyncSession, execution: AgentExecution) -> AgentExecutionDB:
        """Insert a new execution record."""
        row = AgentExecutionDB(
            id=execution.execution_id,
            created_at=execution.created_at,
            updated_at=execution.updated_at,
            **AgentExecutionRepository._values(execution),
        )
        session.add(row)
        await session.flush()
        return row

    @staticmethod
    async def get_by_id(session: AsyncSession, execution_id: str) -> AgentExecutionDB | None:
        """Get execution by ID."""
        result = await session.execute(
            select(AgentExecutionDB).where(AgentExecutionDB.id == execution_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def replace(session: AsyncSession, execution: AgentExecution) -> bool:
        """Overwrite every mutable field of an execution."""
        values = AgentExecutionRepository._values(execution)
        values["updated_at"] = datetime.now(UTC)
        result = await session.execute(
            update(AgentExecutionDB)
            .where(AgentExecutionDB.id == execution.execution_id)
            .values(**values)
        )
        return result.rowcount > 0

    @staticmethod
    async def compare_and_set_status(
        session: AsyncSession,
        execution_id: str,
        expected: AgentStatus,
        new_status: AgentStatus,
    ) -> bool:
        """Change status only if it still equals ``expected``."""
        result = await session.execute(
            update(AgentExecutionDB)
            .where(
                AgentExecutionDB.id == execution_id,
                AgentExecutionDB.status == expected,
            )
            .values(status=new_status, updated_at=datetime.now(UTC))
        )
        return result.rowcount > 0

    @staticmethod
    async def increment_actions(session: AsyncSession, execution_id: str) -> None:
        await session.execute(
            update(AgentExecutionDB)
            .where(AgentExecutionDB.id == execution_id)
            .values(total_actions=AgentExecutionDB.total_actions + 1)
        )

    @staticmethod
    async def get_by_type(
        session: AsyncSession, agent_type: AgentType, limit: int | None = None
    ) -> list[AgentExecutionDB]:
        """Executions of one agent type, newest first."""
        query = (
            select(AgentExecutionDB)
            .where(AgentExecutionDB.agent_type == agent_type)
            .order_by(AgentExecutionDB.created_at.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_by_statuses(
        session: AsyncSession, statuses: tuple[AgentStatus, ...]
    ) -> list[AgentExecutionDB]:
        """Executions in any of the given statuses, oldest first."""
        result = await session.execute(
            select(AgentExecutionDB)
            .where(AgentExecutionDB.status.in_(statuses))
            .order_by(AgentExecutionDB.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_recent(session: AsyncSession, limit: int = 50) -> list[AgentExecutionDB]:
        """Most recently created executions."""
        result = await session.execute(
            select(AgentExecutionDB).order_by(AgentExecutionDB.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())


class AgentActionHistoryRepository:
    """Repository for append-only action history rows."""

    @staticmethod
    def to_model(row: AgentActionHistoryDB) -> AgentActionHistory:
        return AgentActionHistory(
            id=row.id,
            execution_id=row.execution_id,
            iteration=row.iteration,
            action_type=row.action_type,
            action_input=row.action_input or {},
            action_output=row.action_output or {},
            success=row.success,
            error_message=row.error_message,
            duration_ms=row.duration_ms,
            ai_cost=row.ai_cost,
            required_approval=row.required_approval,
            approval_request_id=row.approval_request_id,
            timestamp=_aware(row.timestamp),
        )

    @staticmethod
    async def create(session: AsyncSession, record: AgentActionHistory) -> AgentActionHistoryDB:
        """Insert an action history row."""
        row = AgentActionHistoryDB(
            id=record.id,
            execution_id=record.execution_id,
            iteration=record.iteration,
            action_type=record.action_type,
            action_input=record.action_input,
            action_output=record.action_output,
            success=record.success,
            error_message=record.error_message,
            duration_ms=record.duration_ms,
            ai_cost=record.ai_cost,
            required_approval=record.required_approval,
            approval_request_id=record.approval_request_id,
            timestamp=record.timestamp,
        )
        session.add(row)
        await session.flush()
        return row

    @staticmethod
    async def get_by_execution(
        session: AsyncSession, execution_id: str
    ) -> list[AgentActionHistoryDB]:
        """Action rows for an execution ordered by iteration."""
        result = await session.execute(
            select(AgentActionHistoryDB)
            .where(AgentActionHistoryDB.execution_id == execution_id)
            .order_by(AgentActionHistoryDB.iteration.asc())
        )
        return list(result.scalars().all())
