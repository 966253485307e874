"""Initial schema

This migration creates the complete database schema for Modelfolio.

Tables:
    - stock_symbols: Shared symbol registry with ingested prices
    - portfolios: Model portfolios (cash, minimum investment, version counter)
    - holdings: Positions inside a portfolio, never deleted
    - portfolio_transactions: Append-only buy/sell records
    - price_logs: Daily portfolio value snapshots
    - calculation_log_entries: Valuation step trace (retention-purged)

Revision ID: 001
Revises: None
Create Date: 2026-03-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Shared by three tables, so created once up front
EXCHANGE = postgresql.ENUM('NSE', 'BSE', name='exchange', create_type=False)


def upgrade() -> None:
    EXCHANGE.create(op.get_bind(), checkfirst=True)

    # ==========================================================================
    # STOCK SYMBOLS
    # ==========================================================================
    op.create_table(
        'stock_symbols',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('ticker', sa.String(), nullable=False, index=True),
        sa.Column('exchange', EXCHANGE, nullable=False, server_default='NSE'),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('current_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('previous_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('today_closing_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('closing_price_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('ticker', 'exchange', name='uq_symbol_ticker_exchange'),
    )

    # ==========================================================================
    # PORTFOLIOS
    # ==========================================================================
    op.create_table(
        'portfolios',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(), nullable=False, unique=True),
        sa.Column('cash_balance', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('min_investment', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # HOLDINGS
    # ==========================================================================
    op.create_table(
        'holdings',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id', ondelete='CASCADE'), nullable=False),
        sa.Column('symbol', sa.String(), nullable=False),
        sa.Column('exchange', EXCHANGE, nullable=False),
        sa.Column('sector', sa.String(), nullable=True),
        sa.Column('buy_price', sa.Numeric(18, 4), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column(
            'status',
            sa.Enum('HOLD', 'FRESH_BUY', 'PARTIAL_SELL', 'ADDON_BUY', 'SELL', name='holdingstatus'),
            nullable=False,
        ),
        sa.Column('minimum_investment_value_stock', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('realized_pnl', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('last_sale_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('final_sale_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('current_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('investment_value_at_buy', sa.Numeric(18, 2), nullable=True),
        sa.Column('investment_value_at_market', sa.Numeric(18, 2), nullable=True),
        sa.Column('unrealized_pnl', sa.Numeric(18, 2), nullable=True),
        sa.Column('unrealized_pnl_percent', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_holdings_portfolio_symbol', 'holdings', ['portfolio_id', 'symbol'])

    # ==========================================================================
    # TRANSACTIONS
    # ==========================================================================
    op.create_table(
        'portfolio_transactions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column(
            'portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id', ondelete='CASCADE'),
            nullable=False, index=True,
        ),
        sa.Column('symbol', sa.String(), nullable=False),
        sa.Column('exchange', EXCHANGE, nullable=False),
        sa.Column('transaction_type', sa.Enum('BUY', 'SELL', name='transactiontype'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(18, 4), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('cash_before', sa.Numeric(18, 2), nullable=False),
        sa.Column('cash_after', sa.Numeric(18, 2), nullable=False),
        sa.Column('realized_pnl', sa.Numeric(18, 2), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # PRICE LOGS
    # ==========================================================================
    op.create_table(
        'price_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column(
            'portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id', ondelete='CASCADE'),
            nullable=False, index=True,
        ),
        sa.Column('log_date', sa.Date(), nullable=False, index=True),
        sa.Column('portfolio_value', sa.Numeric(18, 2), nullable=False),
        sa.Column('cash_remaining', sa.Numeric(18, 2), nullable=False),
        sa.Column('update_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('portfolio_id', 'log_date', name='uq_price_log_portfolio_date'),
    )

    # ==========================================================================
    # CALCULATION LOG
    # ==========================================================================
    op.create_table(
        'calculation_log_entries',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('run_id', sa.String(), nullable=False, index=True),
        sa.Column('portfolio_id', sa.Integer(), nullable=True),
        sa.Column('portfolio_name', sa.String(), nullable=True),
        sa.Column('step', sa.String(), nullable=False, index=True),
        sa.Column('level', sa.String(), nullable=False, server_default='INFO'),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, index=True),
    )
    op.create_index('ix_calc_log_portfolio_created', 'calculation_log_entries', ['portfolio_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_calc_log_portfolio_created', table_name='calculation_log_entries')
    op.drop_table('calculation_log_entries')
    op.drop_table('price_logs')
    op.drop_table('portfolio_transactions')
    op.drop_index('ix_holdings_portfolio_symbol', table_name='holdings')
    op.drop_table('holdings')
    op.drop_table('portfolios')
    op.drop_table('stock_symbols')

    # Drop enums (PostgreSQL only)
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('DROP TYPE IF EXISTS transactiontype')
        op.execute('DROP TYPE IF EXISTS holdingstatus')
        op.execute('DROP TYPE IF EXISTS exchange')
