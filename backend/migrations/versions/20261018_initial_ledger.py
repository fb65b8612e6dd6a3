"""Initial schema: catalog, inventory movement ledger, sessions, carts, invoices

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. users (role + bcrypt PIN hash)
2. categories, products (unit pc/kg, prices in cents)
3. register_sessions (one OPEN per cashier/terminal/day, partial unique index)
4. carts, cart_lines (one HOLD name per terminal, partial unique index)
5. invoices, invoice_lines, payments (append-only)
6. inventory_movements (append-only; stock = SUM(qty))
7. discount_rules
8. master_ledger_events, document_sequences
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    ]


def upgrade():
    # ==========================================================================
    # 1. USERS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('pin_hash', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'], unique=False)

    # ==========================================================================
    # 2. CATALOG
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_categories_name'),
        sqlite_autoincrement=True
    )

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('barcode', sa.String(length=32), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=4), nullable=False, server_default='pc'),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_barcode', 'products', ['barcode'], unique=False)
    op.create_index('ix_products_active', 'products', ['is_active'], unique=False)
    op.create_index('ix_products_category_id', 'products', ['category_id'], unique=False)

    # ==========================================================================
    # 3. REGISTER SESSIONS
    # ==========================================================================
    op.create_table('register_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('terminal', sa.String(length=32), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('close_reason', sa.String(length=255), nullable=True),
        sa.Column('opening_float_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_cash_cents', sa.Integer(), nullable=True),
        sa.Column('expected_cash_cents', sa.Integer(), nullable=True),
        sa.Column('variance_cents', sa.Integer(), nullable=True),
        sa.Column('gross_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['cashier_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['closed_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(
        'uq_register_sessions_open', 'register_sessions',
        ['cashier_id', 'terminal', 'business_date'], unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )
    op.create_index('ix_register_sessions_cashier_date', 'register_sessions', ['cashier_id', 'business_date'], unique=False)
    op.create_index('ix_register_sessions_cashier_id', 'register_sessions', ['cashier_id'], unique=False)
    op.create_index('ix_register_sessions_status', 'register_sessions', ['status'], unique=False)
    op.create_index('ix_register_sessions_invoice_id', 'register_sessions', ['invoice_id'], unique=False)

    # ==========================================================================
    # 4. CARTS
    # ==========================================================================
    op.create_table('carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('terminal', sa.String(length=32), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=True),
        sa.Column('register_session_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('hold_name', sa.String(length=64), nullable=True),
        sa.Column('held_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['cashier_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['register_session_id'], ['register_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(
        'uq_carts_terminal_hold_name', 'carts', ['terminal', 'hold_name'], unique=True,
        sqlite_where=sa.text("status = 'HOLD'"),
        postgresql_where=sa.text("status = 'HOLD'"),
    )
    op.create_index('ix_carts_terminal_status', 'carts', ['terminal', 'status'], unique=False)
    op.create_index('ix_carts_cashier_id', 'carts', ['cashier_id'], unique=False)
    op.create_index('ix_carts_register_session_id', 'carts', ['register_session_id'], unique=False)
    op.create_index('ix_carts_status', 'carts', ['status'], unique=False)
    op.create_index('ix_carts_invoice_id', 'carts', ['invoice_id'], unique=False)

    op.create_table('cart_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cart_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('qty', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('auto_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('manual_discount_cents', sa.Integer(), nullable=True),
        sa.Column('line_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_reason', sa.String(length=255), nullable=True),
        sa.Column('applied_rules', sa.JSON(), nullable=True),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cart_lines_cart', 'cart_lines', ['cart_id'], unique=False)
    op.create_index('ix_cart_lines_product_id', 'cart_lines', ['product_id'], unique=False)

    # ==========================================================================
    # 5. INVOICES, INVOICE LINES, PAYMENTS
    # ==========================================================================
    op.create_table('invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_no', sa.String(length=64), nullable=False),
        sa.Column('register_session_id', sa.Integer(), nullable=True),
        sa.Column('cart_id', sa.Integer(), nullable=True),
        sa.Column('cashier_id', sa.Integer(), nullable=True),
        sa.Column('terminal', sa.String(length=32), nullable=True),
        sa.Column('gross_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_cents', sa.Integer(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['register_session_id'], ['register_sessions.id'], ),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ),
        sa.ForeignKeyConstraint(['cashier_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_no', name='uq_invoices_receipt_no'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_created', 'invoices', ['created_at'], unique=False)
    op.create_index('ix_invoices_register_session_id', 'invoices', ['register_session_id'], unique=False)
    op.create_index('ix_invoices_cart_id', 'invoices', ['cart_id'], unique=False)
    op.create_index('ix_invoices_cashier_id', 'invoices', ['cashier_id'], unique=False)

    op.create_table('invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('cart_line_id', sa.Integer(), nullable=True),
        sa.Column('qty', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['cart_line_id'], ['cart_lines.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_lines_invoice', 'invoice_lines', ['invoice_id'], unique=False)
    op.create_index('ix_invoice_lines_product_id', 'invoice_lines', ['product_id'], unique=False)

    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("method IN ('cash', 'card', 'wallet')", name='ck_payments_method'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'], unique=False)

    # ==========================================================================
    # 6. INVENTORY MOVEMENTS (append-only)
    # ==========================================================================
    op.create_table('inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('qty', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=128), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('terminal', sa.String(length=32), nullable=True),
        sa.Column('cashier', sa.String(length=64), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('invoice_line_id', sa.Integer(), nullable=True),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("type IN ('RECEIVE', 'ADJUST', 'WASTE', 'SALE')", name='ck_inventory_movements_type'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['invoice_line_id'], ['invoice_lines.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_movements_product_created', 'inventory_movements', ['product_id', 'created_at'], unique=False)
    op.create_index('ix_inventory_movements_reference', 'inventory_movements', ['reference_type', 'reference_id'], unique=False)
    op.create_index('ix_inventory_movements_product_id', 'inventory_movements', ['product_id'], unique=False)
    op.create_index('ix_inventory_movements_type', 'inventory_movements', ['type'], unique=False)
    op.create_index('ix_inventory_movements_reason', 'inventory_movements', ['reason'], unique=False)
    op.create_index('ix_inventory_movements_invoice_line_id', 'inventory_movements', ['invoice_line_id'], unique=False)
    op.create_index('ix_inventory_movements_created_by_user_id', 'inventory_movements', ['created_by_user_id'], unique=False)
    op.create_index('ix_inventory_movements_created_at', 'inventory_movements', ['created_at'], unique=False)

    # ==========================================================================
    # 7. DISCOUNT RULES
    # ==========================================================================
    op.create_table('discount_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('applies_to', sa.String(length=16), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('max_qty_or_weight', sa.Numeric(precision=14, scale=3), nullable=True),
        sa.Column('active_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('active_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('reason_required', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('exclusive', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.CheckConstraint("applies_to IN ('PRODUCT', 'CATEGORY')", name='ck_discount_rules_applies_to'),
        sa.CheckConstraint("kind IN ('PERCENT', 'AMOUNT')", name='ck_discount_rules_kind'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_discount_rules_target', 'discount_rules', ['applies_to', 'target_id'], unique=False)
    op.create_index('ix_discount_rules_active_window', 'discount_rules', ['active', 'active_from', 'active_to'], unique=False)

    # ==========================================================================
    # 8. AUDIT LEDGER AND SEQUENCES
    # ==========================================================================
    op.create_table('master_ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('approver_user_id', sa.Integer(), nullable=True),
        sa.Column('register_session_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        *_timestamps(),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['approver_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['register_session_id'], ['register_sessions.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_master_ledger_occurred', 'master_ledger_events', ['occurred_at'], unique=False)
    op.create_index('ix_master_ledger_events_occurred_at', 'master_ledger_events', ['occurred_at'], unique=False)
    op.create_index('ix_master_ledger_events_event_type', 'master_ledger_events', ['event_type'], unique=False)
    op.create_index('ix_master_ledger_events_event_category', 'master_ledger_events', ['event_category'], unique=False)
    op.create_index('ix_master_ledger_events_entity_type', 'master_ledger_events', ['entity_type'], unique=False)
    op.create_index('ix_master_ledger_events_entity_id', 'master_ledger_events', ['entity_id'], unique=False)
    op.create_index('ix_master_ledger_events_actor_user_id', 'master_ledger_events', ['actor_user_id'], unique=False)
    op.create_index('ix_master_ledger_events_register_session_id', 'master_ledger_events', ['register_session_id'], unique=False)
    op.create_index('ix_master_ledger_events_invoice_id', 'master_ledger_events', ['invoice_id'], unique=False)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_doc_sequences_type'),
        sqlite_autoincrement=True
    )


def downgrade():
    op.drop_table('document_sequences')
    op.drop_table('master_ledger_events')
    op.drop_table('discount_rules')
    op.drop_table('inventory_movements')
    op.drop_table('payments')
    op.drop_table('invoice_lines')
    op.drop_table('invoices')
    op.drop_table('cart_lines')
    op.drop_table('carts')
    op.drop_table('register_sessions')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('users')
