"""initial schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '0a1b2c3d4e5f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(precision=38, scale=18)
SOL_MINT = 'So11111111111111111111111111111111111111112'

trade_type = sa.Enum('buy', 'sell', 'swap', name='tradetype')
trade_status = sa.Enum('pending', 'completed', 'failed', name='tradestatus')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, unique=True),
        sa.Column('public_key', sa.String(length=64), nullable=False),
        sa.Column('encrypted_private_key', sa.String(), nullable=False),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('locked_balance', MONEY, nullable=False, server_default='0'),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_wallets_public_key', 'wallets', ['public_key'], unique=True)

    coins = op.create_table(
        'meme_coins',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('symbol', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('decimals', sa.Integer(), nullable=False, server_default='9'),
        sa.Column('current_price', MONEY, server_default='0'),
        sa.Column('market_cap', MONEY, server_default='0'),
        sa.Column('volume_24h', MONEY, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'price_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('coin_id', sa.String(length=64), sa.ForeignKey('meme_coins.id'), nullable=False),
        sa.Column('price', MONEY, nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_price_history_coin_id', 'price_history', ['coin_id'])
    op.create_index('ix_price_history_timestamp', 'price_history', ['timestamp'])

    op.create_table(
        'portfolios',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('coin_id', sa.String(length=64), sa.ForeignKey('meme_coins.id'), nullable=False),
        sa.Column('amount', MONEY, nullable=False, server_default='0'),
        sa.Column('locked_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('average_buy_price', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'coin_id', name='uq_portfolio_user_coin'),
    )

    op.create_table(
        'trades',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('coin_id', sa.String(length=64), sa.ForeignKey('meme_coins.id'), nullable=False),
        sa.Column('from_coin_id', sa.String(length=64), nullable=False),
        sa.Column('to_coin_id', sa.String(length=64), nullable=False),
        sa.Column('type', trade_type, nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('input_amount', MONEY, nullable=False),
        sa.Column('price', MONEY, nullable=False),
        sa.Column('fee', MONEY, nullable=False, server_default='0'),
        sa.Column('input_price', MONEY, nullable=True),
        sa.Column('cost_basis', MONEY, nullable=True),
        sa.Column('slippage_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', trade_status, nullable=False, server_default='pending'),
        sa.Column('chain_status', sa.String(length=20), nullable=True),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('transaction_hash', sa.String(length=100), nullable=True),
        sa.Column('error', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_trades_user_id', 'trades', ['user_id'])
    op.create_index('ix_trades_status', 'trades', ['status'])
    op.create_index('ix_trades_completed_at', 'trades', ['completed_at'])
    op.create_index('ix_trades_transaction_hash', 'trades', ['transaction_hash'], unique=True)

    op.create_table(
        'deposits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('transaction_hash', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_deposits_transaction_hash', 'deposits', ['transaction_hash'], unique=True)

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('to_address', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending'),
        sa.Column('transaction_hash', sa.String(length=100), nullable=True, unique=True),
        sa.Column('error', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.bulk_insert(coins, [
        {'id': SOL_MINT, 'symbol': 'SOL', 'name': 'Solana', 'decimals': 9},
    ])


def downgrade() -> None:
    op.drop_table('withdrawals')
    op.drop_table('deposits')
    op.drop_table('trades')
    op.drop_table('portfolios')
    op.drop_table('price_history')
    op.drop_table('meme_coins')
    op.drop_table('wallets')
    op.drop_table('users')
    trade_status.drop(op.get_bind(), checkfirst=True)
    trade_type.drop(op.get_bind(), checkfirst=True)
