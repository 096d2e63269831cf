"""Initial stock ledger schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Sites and stalls
2. Stock items (master and stall records, self-referencing master link)
3. Stock movements (append-only, no FK to stock_items so entries outlive records)
4. Sale transactions and their lines
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SITES AND STALLS
    # ==========================================================================
    op.create_table('sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('stalls',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('stall_type', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'name', name='uq_stalls_site_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stalls', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stalls_site_id'), ['site_id'], unique=False)

    # ==========================================================================
    # 2. STOCK ITEMS
    # ==========================================================================
    op.create_table('stock_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('stall_id', sa.Integer(), nullable=True),
        sa.Column('original_master_item_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_stock_items_quantity_nonnegative'),
        sa.CheckConstraint('low_stock_threshold >= 0', name='ck_stock_items_threshold_nonnegative'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['stall_id'], ['stalls.id'], ),
        sa.ForeignKeyConstraint(['original_master_item_id'], ['stock_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_items_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_items_stall_id'), ['stall_id'], unique=False)
        batch_op.create_index('ix_stock_items_site_stall', ['site_id', 'stall_id'], unique=False)
        batch_op.create_index('ix_stock_items_master_stall', ['original_master_item_id', 'stall_id'], unique=False)
        batch_op.create_index('ix_stock_items_site_name', ['site_id', 'name'], unique=False)

    # ==========================================================================
    # 3. STOCK MOVEMENTS
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stock_item_id', sa.Integer(), nullable=False),
        sa.Column('item_name', sa.String(length=255), nullable=True),
        sa.Column('linked_stock_item_id', sa.Integer(), nullable=True),
        sa.Column('master_stock_item_id', sa.Integer(), nullable=True),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('stall_id', sa.Integer(), nullable=True),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('quantity_change', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('user_name', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('correlation_id', sa.String(length=64), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index('ix_movements_item_occurred', ['stock_item_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_movements_site_stall_occurred', ['site_id', 'stall_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_movements_master_context', ['master_stock_item_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_movement_type'), ['movement_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_correlation_id'), ['correlation_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_sale_id'), ['sale_id'], unique=False)

    # ==========================================================================
    # 4. SALES
    # ==========================================================================
    op.create_table('sale_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('stall_id', sa.Integer(), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('transaction_date', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('staff_id', sa.String(length=128), nullable=False),
        sa.Column('staff_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('deleted_by', sa.String(length=128), nullable=True),
        sa.Column('deleted_by_name', sa.String(length=255), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deletion_justification', sa.Text(), nullable=True),
        sa.Column('correlation_id', sa.String(length=64), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['stall_id'], ['stalls.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_transactions_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_transactions_stall_id'), ['stall_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_transactions_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_transactions_correlation_id'), ['correlation_id'], unique=False)
        batch_op.create_index('ix_sales_site_stall_date', ['site_id', 'stall_id', 'transaction_date'], unique=False)
        batch_op.create_index('ix_sales_status_date', ['status', 'transaction_date'], unique=False)

    op.create_table('sale_transaction_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('stock_item_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'position', name='uq_sale_lines_sale_position'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_transaction_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_transaction_lines_sale_id'), ['sale_id'], unique=False)


def downgrade():
    op.drop_table('sale_transaction_lines')
    op.drop_table('sale_transactions')
    op.drop_table('stock_movements')
    op.drop_table('stock_items')
    op.drop_table('stalls')
    op.drop_table('sites')
