"""Create pipeline analytics tables

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-17 09:00:00.000000

Run history and quality checks (written by the run executor), optimization
candidates, and the hash-chained lifecycle event log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'pipeline_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('run_id', sa.String(64), nullable=False),
        sa.Column('pipeline_config_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('branch', sa.String(255), nullable=True),
        sa.Column('commit_sha', sa.String(64), nullable=True),
        sa.Column('triggered_by', sa.String(255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_pipeline_runs_run_id', 'pipeline_runs', ['run_id'], unique=True)
    op.create_index('ix_pipeline_runs_pipeline_config_id', 'pipeline_runs', ['pipeline_config_id'])
    op.create_index('ix_pipeline_runs_started_at', 'pipeline_runs', ['started_at'])

    op.create_table(
        'quality_checks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('check_id', sa.String(64), nullable=False),
        sa.Column('run_id', sa.String(64), sa.ForeignKey('pipeline_runs.run_id'), nullable=False),
        sa.Column('tool', sa.String(100), nullable=False),
        sa.Column('gate_passed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('issue_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('issues', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_quality_checks_check_id', 'quality_checks', ['check_id'], unique=True)
    op.create_index('ix_quality_checks_run_id', 'quality_checks', ['run_id'])

    op.create_table(
        'pipeline_optimizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('optimization_id', sa.String(64), nullable=False),
        sa.Column('pipeline_config_id', sa.String(64), nullable=False),
        sa.Column('optimization_type', sa.String(40), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('current_metrics', postgresql.JSONB(), nullable=True),
        sa.Column('projected_metrics', postgresql.JSONB(), nullable=True),
        sa.Column('implementation_steps', postgresql.JSONB(), nullable=True),
        sa.Column('code_changes', postgresql.JSONB(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "(status = 'applied') = (applied_at IS NOT NULL)",
            name='ck_pipeline_optimizations_applied_at',
        ),
    )
    op.create_index('ix_pipeline_optimizations_optimization_id', 'pipeline_optimizations', ['optimization_id'], unique=True)
    op.create_index('ix_pipeline_optimizations_pipeline_config_id', 'pipeline_optimizations', ['pipeline_config_id'])
    op.create_index('ix_pipeline_optimizations_status', 'pipeline_optimizations', ['status'])

    op.create_table(
        'lifecycle_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('optimization_id', sa.String(64), nullable=False),
        sa.Column('pipeline_config_id', sa.String(64), nullable=False),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('previous_hash', sa.String(64), nullable=True),
        sa.Column('current_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_lifecycle_events_event_id', 'lifecycle_events', ['event_id'], unique=True)
    op.create_index('ix_lifecycle_events_event_type', 'lifecycle_events', ['event_type'])
    op.create_index('ix_lifecycle_events_optimization_id', 'lifecycle_events', ['optimization_id'])
    op.create_index('ix_lifecycle_events_pipeline_config_id', 'lifecycle_events', ['pipeline_config_id'])
    op.create_index('ix_lifecycle_events_created_at', 'lifecycle_events', ['created_at'])


def downgrade() -> None:
    op.drop_table('lifecycle_events')
    op.drop_table('pipeline_optimizations')
    op.drop_table('quality_checks')
    op.drop_table('pipeline_runs')
