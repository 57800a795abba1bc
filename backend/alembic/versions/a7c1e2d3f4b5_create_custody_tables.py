"""create custody tables

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = 'a7c1e2d3f4b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('balance', sa.Numeric(precision=18, scale=6), nullable=False, server_default='0'),
        sa.Column('locked_balance', sa.Numeric(precision=18, scale=6), nullable=False, server_default='0'),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('balance >= 0', name='ck_profile_balance_non_negative'),
        sa.CheckConstraint('locked_balance >= 0', name='ck_profile_locked_non_negative'),
    )
    op.create_table(
        'deposits',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column('sender_address', sa.String(length=42), nullable=False),
        sa.Column('tx_hash', sa.String(length=66), nullable=True, unique=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_deposits_user_id', 'deposits', ['user_id'])
    op.create_index('ix_deposits_match', 'deposits', ['status', 'sender_address', 'created_at'])
    op.create_table(
        'withdrawals',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column('wallet_address', sa.String(length=42), nullable=False),
        sa.Column('tx_hash', sa.String(length=66), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('error', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_withdrawals_user_id', 'withdrawals', ['user_id'])
    op.create_index('ix_withdrawals_status_created', 'withdrawals', ['status', 'created_at'])
    op.create_table(
        'strategy_positions',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('market_name', sa.String(length=200), nullable=False),
        sa.Column('side', sa.String(length=3), nullable=False),
        sa.Column('entry_price', sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column('current_price', sa.Numeric(precision=18, scale=6), nullable=True),
        sa.Column('exit_price', sa.Numeric(precision=18, scale=6), nullable=True),
        sa.Column('amount', sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column('profit_loss', sa.Numeric(precision=18, scale=6), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_strategy_positions_user_id', 'strategy_positions', ['user_id'])


def downgrade() -> None:
    op.drop_table('strategy_positions')
    op.drop_table('withdrawals')
    op.drop_table('deposits')
    op.drop_table('profiles')
