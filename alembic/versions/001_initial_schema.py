"""Initial schema: deposits, withdrawals and sync cursors.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Deposits table (one row per inbound transfer, keyed by tx hash)
    op.create_table(
        'deposits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_identity', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('currency', sa.String(20), nullable=False),
        sa.Column('tx_hash', sa.String(100), nullable=False),
        sa.Column('from_address', sa.String(50), nullable=True),
        sa.Column('to_address', sa.String(50), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash')
    )
    op.create_index('ix_deposits_user_identity', 'deposits', ['user_identity'])
    op.create_index('ix_deposits_status', 'deposits', ['status'])

    # Withdrawals table
    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_identity', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('fee', sa.Numeric(36, 18), nullable=False),
        sa.Column('net_amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('currency', sa.String(20), nullable=False),
        sa.Column('to_address', sa.String(50), nullable=False),
        sa.Column('tx_hash', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_withdrawals_user_identity', 'withdrawals', ['user_identity'])
    op.create_index('ix_withdrawals_status', 'withdrawals', ['status'])

    # Sync cursor per monitored token
    op.create_table(
        'sync_state',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('token', sa.String(20), nullable=False),
        sa.Column('last_block_number', sa.BigInteger(), nullable=False),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token')
    )


def downgrade() -> None:
    op.drop_table('sync_state')
    op.drop_index('ix_withdrawals_status', 'withdrawals')
    op.drop_index('ix_withdrawals_user_identity', 'withdrawals')
    op.drop_table('withdrawals')
    op.drop_index('ix_deposits_status', 'deposits')
    op.drop_index('ix_deposits_user_identity', 'deposits')
    op.drop_table('deposits')
