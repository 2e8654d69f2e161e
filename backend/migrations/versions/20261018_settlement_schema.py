"""Voucher settlement schema

Revision ID: 20261018_settlement
Revises:
Create Date: 2026-10-18

This migration creates:
1. Agents, commission groups and commission group rates
2. Retailers (balance + credit facility) and terminals
3. Voucher types and voucher inventory
4. Sales and the retailer ledger
5. Bill payment audit records
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_settlement'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. AGENTS / COMMISSION GROUPS
    # ==========================================================================
    op.create_table('agents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('commission_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('commission_groups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table('voucher_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('supplier_commission_pct', sa.Numeric(precision=6, scale=3), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table('commission_group_rates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('commission_group_id', sa.Integer(), nullable=False),
        sa.Column('voucher_type_id', sa.Integer(), nullable=False),
        sa.Column('retailer_pct', sa.Numeric(precision=6, scale=4), nullable=False),
        sa.Column('agent_pct', sa.Numeric(precision=6, scale=4), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['commission_group_id'], ['commission_groups.id'], ),
        sa.ForeignKeyConstraint(['voucher_type_id'], ['voucher_types.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('commission_group_id', 'voucher_type_id', name='uq_commission_rate_group_type'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('commission_group_rates', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_commission_group_rates_commission_group_id'), ['commission_group_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commission_group_rates_voucher_type_id'), ['voucher_type_id'], unique=False)

    # ==========================================================================
    # 2. RETAILERS / TERMINALS
    # ==========================================================================
    op.create_table('retailers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('commission_group_id', sa.Integer(), nullable=True),
        sa.Column('agent_id', sa.Integer(), nullable=True),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_limit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_used_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('commission_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('balance_cents >= 0', name='ck_retailers_balance_non_negative'),
        sa.CheckConstraint(
            'credit_used_cents >= 0 AND credit_used_cents <= credit_limit_cents',
            name='ck_retailers_credit_within_limit',
        ),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ),
        sa.ForeignKeyConstraint(['commission_group_id'], ['commission_groups.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('retailers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_retailers_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_retailers_commission_group_id'), ['commission_group_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_retailers_agent_id'), ['agent_id'], unique=False)

    op.create_table('terminals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('last_active_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('terminals', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_terminals_retailer_id'), ['retailer_id'], unique=False)

    # ==========================================================================
    # 3. VOUCHER INVENTORY
    # ==========================================================================
    op.create_table('voucher_inventory',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('voucher_type_id', sa.Integer(), nullable=False),
        sa.Column('denomination_cents', sa.Integer(), nullable=False),
        sa.Column('pin', sa.String(length=128), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='available'),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['voucher_type_id'], ['voucher_types.id'], ),
        sa.CheckConstraint("status IN ('available', 'sold', 'disabled')", name='ck_voucher_inventory_status'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pin', name='uq_voucher_inventory_pin'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('voucher_inventory', schema=None) as batch_op:
        batch_op.create_index('ix_voucher_inventory_alloc', ['voucher_type_id', 'denomination_cents', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_voucher_inventory_status'), ['status'], unique=False)

    # ==========================================================================
    # 4. SALES / LEDGER
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('voucher_inventory_id', sa.Integer(), nullable=False),
        sa.Column('terminal_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('sale_amount_cents', sa.Integer(), nullable=False),
        sa.Column('supplier_commission_cents', sa.Integer(), nullable=False),
        sa.Column('retailer_commission_cents', sa.Integer(), nullable=False),
        sa.Column('agent_commission_cents', sa.Integer(), nullable=False),
        sa.Column('profit_cents', sa.Integer(), nullable=False),
        sa.Column('ref_number', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint(
            'profit_cents = supplier_commission_cents - retailer_commission_cents - agent_commission_cents',
            name='ck_sales_profit_identity',
        ),
        sa.ForeignKeyConstraint(['voucher_inventory_id'], ['voucher_inventory.id'], ),
        sa.ForeignKeyConstraint(['terminal_id'], ['terminals.id'], ),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('voucher_inventory_id', name='uq_sales_voucher_inventory'),
        sa.UniqueConstraint('ref_number', name='uq_sales_ref_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_terminal_created', ['terminal_id', 'created_at'], unique=False)
        batch_op.create_index('ix_sales_retailer_created', ['retailer_id', 'created_at'], unique=False)

    op.create_table('ledger_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        sa.Column('credit_used_after_cents', sa.Integer(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('ledger_transactions', schema=None) as batch_op:
        batch_op.create_index('ix_ledger_transactions_retailer_created', ['retailer_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_transactions_sale_id'), ['sale_id'], unique=False)

    # ==========================================================================
    # 5. BILL PAYMENTS
    # ==========================================================================
    op.create_table('bill_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('product', sa.String(length=64), nullable=True),
        sa.Column('voucher_type_id', sa.Integer(), nullable=False),
        sa.Column('account_reference', sa.String(length=64), nullable=False),
        sa.Column('vendor_reference', sa.String(length=128), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('terminal_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('token', sa.String(length=128), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('error_code', sa.String(length=32), nullable=True),
        sa.Column('error_message', sa.String(length=255), nullable=True),
        sa.Column('vendor_payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['voucher_type_id'], ['voucher_types.id'], ),
        sa.ForeignKeyConstraint(['terminal_id'], ['terminals.id'], ),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('bill_payments', schema=None) as batch_op:
        batch_op.create_index('ix_bill_payments_terminal_created', ['terminal_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_bill_payments_status'), ['status'], unique=False)


def downgrade():
    op.drop_table('bill_payments')
    op.drop_table('ledger_transactions')
    op.drop_table('sales')
    op.drop_table('voucher_inventory')
    op.drop_table('terminals')
    op.drop_table('retailers')
    op.drop_table('commission_group_rates')
    op.drop_table('voucher_types')
    op.drop_table('commission_groups')
    op.drop_table('agents')
