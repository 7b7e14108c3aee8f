"""create analytics events and metrics tables

Revision ID: 3c9e1a7d5b20
Revises:
Create Date: 2026-10-12 09:14:52.118406

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c9e1a7d5b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _metrics_key_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('period', sa.String(length=16), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('company_id', sa.String(length=64), nullable=True),
        sa.Column('scope_key', sa.String(length=64), nullable=False),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # analytics_events table
    op.create_table(
        'analytics_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source_service', sa.String(length=32), nullable=False),
        sa.Column('event_type', sa.String(length=128), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('company_id', sa.String(length=64), nullable=True),
        sa.Column('resource_id', sa.String(length=64), nullable=True),
        sa.Column('resource_type', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_analytics_events_id'), 'analytics_events', ['id'], unique=False)
    op.create_index(op.f('ix_analytics_events_source_service'), 'analytics_events', ['source_service'], unique=False)
    op.create_index(op.f('ix_analytics_events_event_type'), 'analytics_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_analytics_events_user_id'), 'analytics_events', ['user_id'], unique=False)
    op.create_index(op.f('ix_analytics_events_company_id'), 'analytics_events', ['company_id'], unique=False)
    op.create_index(op.f('ix_analytics_events_resource_id'), 'analytics_events', ['resource_id'], unique=False)
    op.create_index(op.f('ix_analytics_events_timestamp'), 'analytics_events', ['timestamp'], unique=False)
    op.create_index(op.f('ix_analytics_events_processed'), 'analytics_events', ['processed'], unique=False)
    op.create_index(
        'ix_analytics_events_source_type_ts',
        'analytics_events',
        ['source_service', 'event_type', 'timestamp'],
        unique=False,
    )
    op.create_index('ix_analytics_events_company_ts', 'analytics_events', ['company_id', 'timestamp'], unique=False)
    op.create_index('ix_analytics_events_resource', 'analytics_events', ['resource_id', 'resource_type'], unique=False)

    # feedback_metrics table
    op.create_table(
        'feedback_metrics',
        *_metrics_key_columns(),
        sa.Column('counts', sa.JSON(), nullable=False),
        sa.Column('by_priority', sa.JSON(), nullable=False),
        sa.Column('by_category', sa.JSON(), nullable=False),
        sa.Column('response_times', sa.JSON(), nullable=False),
        sa.Column('resolution_times', sa.JSON(), nullable=False),
        sa.Column('satisfaction', sa.JSON(), nullable=False),
        sa.Column('escalations', sa.JSON(), nullable=False),
        sa.Column('comments', sa.JSON(), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('period', 'period_start', 'scope_key', name='uq_feedback_metrics_key'),
    )
    op.create_index(op.f('ix_feedback_metrics_id'), 'feedback_metrics', ['id'], unique=False)
    op.create_index(
        'ix_feedback_metrics_scope_period',
        'feedback_metrics',
        ['scope_key', 'period', 'period_start'],
        unique=False,
    )

    # user_metrics table
    op.create_table(
        'user_metrics',
        *_metrics_key_columns(),
        sa.Column('counts', sa.JSON(), nullable=False),
        sa.Column('by_role', sa.JSON(), nullable=False),
        sa.Column('activity', sa.JSON(), nullable=False),
        sa.Column('engagement', sa.JSON(), nullable=False),
        sa.Column('performance', sa.JSON(), nullable=False),
        sa.Column('notifications', sa.JSON(), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('period', 'period_start', 'scope_key', name='uq_user_metrics_key'),
    )
    op.create_index(op.f('ix_user_metrics_id'), 'user_metrics', ['id'], unique=False)
    op.create_index(
        'ix_user_metrics_scope_period',
        'user_metrics',
        ['scope_key', 'period', 'period_start'],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index('ix_user_metrics_scope_period', table_name='user_metrics')
    op.drop_index(op.f('ix_user_metrics_id'), table_name='user_metrics')
    op.drop_table('user_metrics')

    op.drop_index('ix_feedback_metrics_scope_period', table_name='feedback_metrics')
    op.drop_index(op.f('ix_feedback_metrics_id'), table_name='feedback_metrics')
    op.drop_table('feedback_metrics')

    op.drop_index('ix_analytics_events_resource', table_name='analytics_events')
    op.drop_index('ix_analytics_events_company_ts', table_name='analytics_events')
    op.drop_index('ix_analytics_events_source_type_ts', table_name='analytics_events')
    for column in (
        'processed',
        'timestamp',
        'resource_id',
        'company_id',
        'user_id',
        'event_type',
        'source_service',
        'id',
    ):
        op.drop_index(op.f(f'ix_analytics_events_{column}'), table_name='analytics_events')
    op.drop_table('analytics_events')
