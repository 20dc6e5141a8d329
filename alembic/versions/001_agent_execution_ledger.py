"""agent_execution_ledger

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:12:31.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Enum columns are stored as VARCHAR (native_enum=False)
    op.create_table(
        'agent_executions',
        sa.Column('id', sa.String(255), primary_key=True, index=True),
        sa.Column('agent_type', sa.String(50), nullable=False, index=True),
        sa.Column('status', sa.String(50), nullable=False),

        # Goal and run policy
        sa.Column('goal', sa.JSON, nullable=False),
        sa.Column('config', sa.JSON, nullable=False),

        # Progress
        sa.Column('current_iteration', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_iterations', sa.Integer, nullable=False),

        # Initiator
        sa.Column('triggered_by', sa.String(255), nullable=True),
        sa.Column('triggered_by_name', sa.String(255), nullable=True),

        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),

        # Results
        sa.Column('outputs', sa.JSON, nullable=False, server_default='{}'),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('total_ai_cost', sa.Float, nullable=False, server_default='0'),
        sa.Column('total_actions', sa.Integer, nullable=False, server_default='0'),

        # Approval gate
        sa.Column('approval_request_id', sa.String(255), nullable=True),
        sa.Column('waiting_since', sa.DateTime(timezone=True), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_agent_exec_type_created', 'agent_executions', ['agent_type', 'created_at'])
    op.create_index('idx_agent_exec_status', 'agent_executions', ['status'])

    op.create_table(
        'agent_action_history',
        sa.Column(
            'id', sa.String(255), primary_key=True,
        ),
        sa.Column(
            'execution_id',
            sa.String(255),
            sa.ForeignKey('agent_executions.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('iteration', sa.Integer, nullable=False),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('action_input', sa.JSON, nullable=False, server_default='{}'),
        sa.Column('action_output', sa.JSON, nullable=False, server_default='{}'),
        sa.Column('success', sa.Boolean, nullable=False),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('duration_ms', sa.Integer, nullable=False, server_default='0'),
        sa.Column('ai_cost', sa.Float, nullable=False, server_default='0'),
        sa.Column('required_approval', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('approval_request_id', sa.String(255), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('execution_id', 'iteration', name='uq_agent_action_iteration'),
    )
    op.create_index(
        'idx_agent_action_exec_iteration', 'agent_action_history', ['execution_id', 'iteration']
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_agent_action_exec_iteration', table_name='agent_action_history')
    op.drop_table('agent_action_history')
    op.drop_index('idx_agent_exec_status', table_name='agent_executions')
    op.drop_index('idx_agent_exec_type_created', table_name='agent_executions')
    op.drop_table('agent_executions')
