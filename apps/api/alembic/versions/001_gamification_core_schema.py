"""gamification core schema

Revision ID: 001_gamification_core
Revises:
Create Date: 2026-01-12 09:41:17.204113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001_gamification_core'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """
    Create the gamification tables.

    user_profile.active_goal_id and goal.user_id reference each other, so the
    profile -> goal foreign key is added after both tables exist (Postgres only;
    SQLite cannot add constraints to an existing table).
    """
    op.create_table(
        'user_profile',
        sa.Column('user_id', sa.Uuid(), primary_key=True),
        sa.Column('username', sa.Text(), nullable=True),
        sa.Column('coin_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_streak_length', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('longest_streak_length', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active_goal_id', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('coin_balance >= 0', name='ck_user_profile_coin_balance_non_negative'),
        sa.CheckConstraint('current_streak_length >= 0', name='ck_user_profile_streak_non_negative'),
    )

    op.create_table(
        'goal',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profile.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('goal_type', sa.Text(), nullable=False),
        sa.Column('target_value', sa.Float(), nullable=False),
        sa.Column('target_unit', sa.Text(), nullable=False),
        sa.Column('apps_to_block', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('target_value > 0', name='ck_goal_target_value_positive'),
    )
    op.create_index('ix_goal_user_id', 'goal', ['user_id'])

    if op.get_bind().dialect.name != 'sqlite':
        op.create_foreign_key(
            'fk_user_profile_active_goal', 'user_profile', 'goal',
            ['active_goal_id'], ['id'], ondelete='SET NULL',
        )

    op.create_table(
        'daily_progress',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profile.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('goal_id', sa.Uuid(), sa.ForeignKey('goal.id', ondelete='SET NULL'), nullable=True),
        sa.Column('progress_data', JSONType, nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('effective_target_value', sa.Float(), nullable=True),
        sa.Column('effective_target_unit', sa.Text(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'date', name='uq_daily_progress_user_date'),
    )
    op.create_index('ix_daily_progress_date', 'daily_progress', ['date'])

    op.create_table(
        'user_owned_reward',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profile.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('reward_type', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('acquired_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'reward_type', name='uq_user_owned_reward_user_type'),
        sa.CheckConstraint('quantity >= 0', name='ck_user_owned_reward_quantity_non_negative'),
    )

    op.create_table(
        'coin_transaction',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profile.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('coin_change', sa.Integer(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('related_goal_id', sa.Uuid(), sa.ForeignKey('goal.id', ondelete='SET NULL'), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_coin_transaction_user_idempotency_key'),
    )
    op.create_index('ix_coin_transaction_user_created', 'coin_transaction', ['user_id', 'created_at'])

    op.create_table(
        'streak_saver_applied',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profile.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('date_saved', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'date_saved', name='uq_streak_saver_applied_user_date'),
    )

    op.create_table(
        'settlement_failure',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('settlement_date', sa.Date(), nullable=False),
        sa.Column('stage', sa.Text(), nullable=False),
        sa.Column('error', sa.Text(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_settlement_failure_user_date', 'settlement_failure', ['user_id', 'settlement_date'])


def downgrade() -> None:
    op.drop_index('ix_settlement_failure_user_date', table_name='settlement_failure')
    op.drop_table('settlement_failure')
    op.drop_table('streak_saver_applied')
    op.drop_index('ix_coin_transaction_user_created', table_name='coin_transaction')
    op.drop_table('coin_transaction')
    op.drop_table('user_owned_reward')
    op.drop_index('ix_daily_progress_date', table_name='daily_progress')
    op.drop_table('daily_progress')
    if op.get_bind().dialect.name != 'sqlite':
        op.drop_constraint('fk_user_profile_active_goal', 'user_profile', type_='foreignkey')
    op.drop_index('ix_goal_user_id', table_name='goal')
    op.drop_table('goal')
    op.drop_table('user_profile')
