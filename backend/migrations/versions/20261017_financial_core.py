"""Financial core: scopes, chart of accounts, ledger, sales, invoice counters, balances, payments

Revision ID: 20261017_financial_core
Revises:
Create Date: 2026-10-17

This migration adds:
1. Branches, warehouses and users (scopes and attribution)
2. Accounts and ledger entries (per-scope double-entry books)
3. Invoice sequences (atomic per-prefix counters)
4. Sales and sale lines
5. Customer payments and payment applications
6. Customer balances (running balance per customer and scope)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_financial_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SCOPES AND USERS
    # ==========================================================================
    for table in ('branches', 'warehouses'):
        op.create_table(table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('code', sa.String(length=32), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id', name=f'pk_{table}'),
            sa.UniqueConstraint('name', name=f'uq_{table}_name'),
            sqlite_autoincrement=True
        )
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.create_index(f'ix_{table}_code', ['code'], unique=True)

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], name='fk_users_branch_id_branches'),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], name='fk_users_warehouse_id_warehouses'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_username', ['username'], unique=True)
        batch_op.create_index('ix_users_branch_id', ['branch_id'], unique=False)
        batch_op.create_index('ix_users_warehouse_id', ['warehouse_id'], unique=False)

    # ==========================================================================
    # 2. CHART OF ACCOUNTS
    # ==========================================================================
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope_type', sa.String(length=16), nullable=False),
        sa.Column('scope_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_accounts'),
        sa.UniqueConstraint('scope_type', 'scope_id', 'name', name='uq_accounts_scope_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('accounts', schema=None) as batch_op:
        batch_op.create_index('ix_accounts_scope', ['scope_type', 'scope_id'], unique=False)

    # ==========================================================================
    # 3. INVOICE SEQUENCES
    # ==========================================================================
    op.create_table('invoice_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(length=64), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_invoice_sequences'),
        sa.UniqueConstraint('prefix', name='uq_invoice_sequences_prefix'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 4. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope_type', sa.String(length=16), nullable=False),
        sa.Column('scope_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('customer_key', sa.String(length=128), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        sa.Column('tendered_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('payment_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('credit_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('running_balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_sales_created_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_sales'),
        sa.UniqueConstraint('invoice_number', name='uq_sales_invoice_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_customer_key', ['customer_key'], unique=False)
        batch_op.create_index('ix_sales_customer_scope_created',
                              ['customer_key', 'scope_type', 'scope_id', 'created_at'], unique=False)
        batch_op.create_index('ix_sales_scope_status', ['scope_type', 'scope_id', 'payment_status'], unique=False)

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('item_ref', sa.String(length=128), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('unit_cost_cents', sa.BigInteger(), nullable=True),
        sa.Column('line_total_cents', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], name='fk_sale_lines_sale_id_sales'),
        sa.PrimaryKeyConstraint('id', name='pk_sale_lines'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index('ix_sale_lines_sale_id', ['sale_id'], unique=False)

    # ==========================================================================
    # 5. CUSTOMER PAYMENTS
    # ==========================================================================
    op.create_table('customer_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope_type', sa.String(length=16), nullable=False),
        sa.Column('scope_id', sa.Integer(), nullable=False),
        sa.Column('customer_key', sa.String(length=128), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('applied_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('remainder_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('remainder_kept_as_credit', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('running_balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_customer_payments_created_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_customer_payments'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_payments', schema=None) as batch_op:
        batch_op.create_index('ix_customer_payments_customer_scope',
                              ['customer_key', 'scope_type', 'scope_id', 'created_at'], unique=False)

    op.create_table('payment_applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('credit_after_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['customer_payments.id'],
                                name='fk_payment_applications_payment_id_customer_payments'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], name='fk_payment_applications_sale_id_sales'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_applications'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_applications', schema=None) as batch_op:
        batch_op.create_index('ix_payment_applications_payment_id', ['payment_id'], unique=False)
        batch_op.create_index('ix_payment_applications_sale_id', ['sale_id'], unique=False)

    # ==========================================================================
    # 6. CUSTOMER BALANCES
    # ==========================================================================
    op.create_table('customer_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_key', sa.String(length=128), nullable=False),
        sa.Column('scope_type', sa.String(length=16), nullable=False),
        sa.Column('scope_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_sale_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['last_sale_id'], ['sales.id'], name='fk_customer_balances_last_sale_id_sales'),
        sa.PrimaryKeyConstraint('id', name='pk_customer_balances'),
        sa.UniqueConstraint('customer_key', 'scope_type', 'scope_id', name='uq_customer_balances_key_scope'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_balances', schema=None) as batch_op:
        batch_op.create_index('ix_customer_balances_customer_key', ['customer_key'], unique=False)

    # ==========================================================================
    # 7. LEDGER ENTRIES
    # ==========================================================================
    op.create_table('ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_sale_id', sa.Integer(), nullable=True),
        sa.Column('reference_payment_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_ledger_entries_account_id_accounts'),
        sa.ForeignKeyConstraint(['reference_sale_id'], ['sales.id'], name='fk_ledger_entries_reference_sale_id_sales'),
        sa.ForeignKeyConstraint(['reference_payment_id'], ['customer_payments.id'],
                                name='fk_ledger_entries_reference_payment_id_customer_payments'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_ledger_entries_created_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_ledger_entries'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('ledger_entries', schema=None) as batch_op:
        batch_op.create_index('ix_ledger_entries_account_id', ['account_id'], unique=False)
        batch_op.create_index('ix_ledger_entries_account_created', ['account_id', 'created_at'], unique=False)
        batch_op.create_index('ix_ledger_entries_reference_type', ['reference_type'], unique=False)
        batch_op.create_index('ix_ledger_entries_reference_sale_id', ['reference_sale_id'], unique=False)
        batch_op.create_index('ix_ledger_entries_reference_payment_id', ['reference_payment_id'], unique=False)


def downgrade():
    op.drop_table('ledger_entries')
    op.drop_table('customer_balances')
    op.drop_table('payment_applications')
    op.drop_table('customer_payments')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('invoice_sequences')
    op.drop_table('accounts')
    op.drop_table('users')
    op.drop_table('warehouses')
    op.drop_table('branches')
