"""Create filing workflow tables

Revision ID: 0001_filing_workflows
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_filing_workflows'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('filing_workflows',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('client_id', sa.String(64), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('filing_due_date', sa.Date(), nullable=False),
        sa.Column('quarter_group', sa.String(20), nullable=True),
        sa.Column('accounts_due_date', sa.Date(), nullable=True),
        sa.Column('ct_filing_due_date', sa.Date(), nullable=True),
        sa.Column('ct_payment_due_date', sa.Date(), nullable=True),
        sa.Column('current_stage', sa.String(50), nullable=False),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('assigned_user_id', sa.String(64), nullable=True),
        sa.Column('created_by_rollover_from_id', sa.String(36), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'kind', 'period_end', name='uq_filing_workflow_period')
    )
    op.create_index('ix_filing_workflows_client_id', 'filing_workflows', ['client_id'])
    op.create_index('ix_filing_workflows_assigned_user_id', 'filing_workflows', ['assigned_user_id'])
    op.create_index('ix_filing_workflows_client_kind', 'filing_workflows', ['client_id', 'kind'])

    op.create_table('workflow_milestones',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('workflow_id', sa.String(36), nullable=False),
        sa.Column('stage', sa.String(50), nullable=False),
        sa.Column('milestone', sa.String(50), nullable=False),
        sa.Column('reached_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actor_user_id', sa.String(64), nullable=True),
        sa.Column('actor_name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workflow_id'], ['filing_workflows.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('workflow_id', 'stage', name='uq_workflow_milestone_stage')
    )

    op.create_table('workflow_history',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('workflow_id', sa.String(36), nullable=False),
        sa.Column('from_stage', sa.String(50), nullable=True),
        sa.Column('to_stage', sa.String(50), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('days_in_previous_stage', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.String(64), nullable=False),
        sa.Column('actor_name', sa.String(255), nullable=False),
        sa.Column('actor_role', sa.String(20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workflow_id'], ['filing_workflows.id'], ondelete='CASCADE')
    )
    op.create_index('ix_workflow_history_workflow_id', 'workflow_history', ['workflow_id'])

    op.create_table('notification_queue',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('workflow_id', sa.String(36), nullable=False),
        sa.Column('recipient_id', sa.String(64), nullable=True),
        sa.Column('notification_type', sa.String(100), nullable=False),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='pending'),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_method', sa.String(50), nullable=False, server_default='email'),
        sa.Column('delivery_metadata', sa.Text(), nullable=True),  # JSON field
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notification_queue_workflow_id', 'notification_queue', ['workflow_id'])

    op.create_table('activity_logs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('event_description', sa.Text(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('user_name', sa.String(255), nullable=True),
        sa.Column('user_role', sa.String(20), nullable=True),
        sa.Column('client_id', sa.String(64), nullable=True),
        sa.Column('workflow_id', sa.String(36), nullable=True),
        sa.Column('event_data', sa.Text(), nullable=True),  # JSON field
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_activity_logs_event_type', 'activity_logs', ['event_type'])
    op.create_index('ix_activity_logs_user_id', 'activity_logs', ['user_id'])
    op.create_index('ix_activity_logs_client_id', 'activity_logs', ['client_id'])
    op.create_index('ix_activity_logs_workflow_id', 'activity_logs', ['workflow_id'])


def downgrade() -> None:
    op.drop_table('activity_logs')
    op.drop_table('notification_queue')
    op.drop_table('workflow_history')
    op.drop_table('workflow_milestones')
    op.drop_table('filing_workflows')
