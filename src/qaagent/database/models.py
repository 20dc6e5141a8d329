"""
Database Models

SQLAlchemy ORM models for agent executions and their action history.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum

from ..models.actions import AgentActionType
from ..models.agent import AgentStatus, AgentType
from .connection import Base


def _values(enum_cls):
    return [member.value for member in enum_cls]


class AgentExecutionDB(Base):
    """Agent execution database model."""

    __tablename__ = "agent_executions"

    id = Column(String(255), primary_key=True, index=True)
    agent_type = Column(
        SQLEnum(AgentType, name="agenttype", native_enum=False, length=50, values_callable=_values),
        nullable=False,
        index=True,
    )
    status = Column(
        SQLEnum(AgentStatus, name="agentexecutionstatus", native_enum=False, length=50, values_callable=_values),
        nullable=False,
        default=AgentStatus.RUNNING,
        index=True,
    )

    # Goal and run policy stored as JSON
    goal = Column(JSON, nullable=False)
    config = Column(JSON, nullable=False)

    current_iteration = Column(Integer, nullable=False, default=0)
    max_iterations = Column(Integer, nullable=False)

    triggered_by = Column(String(255), nullable=True)
    triggered_by_name = Column(String(255), nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    outputs = Column(JSON, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
    total_ai_cost = Column(Float, nullable=False, default=0.0)
    total_actions = Column(Integer, nullable=False, default=0)

    # Approval gate
    approval_request_id = Column(String(255), nullable=True)
    waiting_since = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_agent_exec_type_created", "agent_type", "created_at"),
        Index("idx_agent_exec_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<AgentExecutionDB(id={self.id}, type={self.agent_type}, status={self.status})>"


class AgentActionHistoryDB(Base):
    """Append-only action history row."""

    __tablename__ = "agent_action_history"

    id = Column(String(255), primary_key=True)
    execution_id = Column(
        String(255),
        ForeignKey("agent_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    iteration = Column(Integer, nullable=False)
    action_type = Column(
        SQLEnum(AgentActionType, name="agentactiontype", native_enum=False, length=50, values_callable=_values),
        nullable=False,
    )
    action_input = Column(JSON, nullable=False, default=dict)
    action_output = Column(JSON, nullable=False, default=dict)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False, default=0)
    ai_cost = Column(Float, nullable=False, default=0.0)
    required_approval = Column(Boolean, nullable=False, default=False)
    approval_request_id = Column(String(255), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    __table_args__ = (
        UniqueConstraint("execution_id", "iteration", name="uq_agent_action_iteration"),
        Index("idx_agent_action_exec_iteration", "execution_id", "iteration"),
    )

    def __repr__(self) -> str:
        return (
            f"<AgentActionHistoryDB(execution_id={self.execution_id}, "
            f"iteration={self.iteration}, action={self.action_type})>"
        )
