"""0001 stock engine schema: products, warehouses, batches, movements

Revision ID: 0001_stock_engine_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

from migrations.migration_helpers import index_exists, sqlite_cleanup_temp_tables, table_exists


# revision identifiers, used by Alembic.
revision = '0001_stock_engine_schema'
down_revision = None
branch_labels = None
depends_on = None

BATCH_STATUSES = ('active', 'depleted', 'expired', 'damaged')
BATCH_SOURCES = ('purchase', 'manual', 'transfer_in')
MOVEMENT_TYPES = ('receipt', 'decrease', 'expired', 'damaged', 'transfer_out', 'transfer_in')


def _enum(values, name):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=16)


def upgrade():
    sqlite_cleanup_temp_tables()

    if not table_exists('product'):
        op.create_table(
            'product',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('sku', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=160), nullable=False),
            sa.Column('shelf_life_days', sa.Integer(), nullable=True),
            sa.Column('min_stock_level', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint('shelf_life_days IS NULL OR shelf_life_days > 0', name='check_product_shelf_life_positive'),
            sa.CheckConstraint('min_stock_level >= 0', name='check_product_min_stock_non_negative'),
        )
        op.create_index('ix_product_sku', 'product', ['sku'], unique=True)

    if not table_exists('warehouse'):
        op.create_table(
            'warehouse',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('code', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('location', sa.String(length=255), nullable=True),
            sa.Column('capacity', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('current_utilization', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint('capacity >= 0', name='check_warehouse_capacity_non_negative'),
        )
        op.create_index('ix_warehouse_code', 'warehouse', ['code'], unique=True)

    if not table_exists('stock_batch'):
        op.create_table(
            'stock_batch',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id'), nullable=False),
            sa.Column('warehouse_id', sa.Integer(), sa.ForeignKey('warehouse.id'), nullable=False),
            sa.Column('batch_number', sa.String(length=64), nullable=False, unique=True),
            sa.Column('quantity_remaining', sa.Integer(), nullable=False),
            sa.Column('original_quantity', sa.Integer(), nullable=False),
            sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False),
            sa.Column('received_date', sa.DateTime(timezone=True), nullable=False),
            sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('status', _enum(BATCH_STATUSES, 'batch_status'), nullable=False),
            sa.Column('source_type', _enum(BATCH_SOURCES, 'batch_source'), nullable=False),
            sa.Column('source_batch_id', sa.Integer(), sa.ForeignKey('stock_batch.id'), nullable=True),
            sa.Column('reason', sa.String(length=255), nullable=True),
            sa.Column('reference_id', sa.String(length=128), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.CheckConstraint('quantity_remaining >= 0', name='check_batch_remaining_non_negative'),
            sa.CheckConstraint('original_quantity > 0', name='check_batch_original_positive'),
            sa.CheckConstraint(
                'quantity_remaining <= original_quantity',
                name='check_batch_remaining_not_exceeds_original',
            ),
            sa.CheckConstraint('unit_cost >= 0', name='check_batch_unit_cost_non_negative'),
        )
        op.create_index('ix_stock_batch_product_id', 'stock_batch', ['product_id'])
        op.create_index('ix_stock_batch_warehouse_id', 'stock_batch', ['warehouse_id'])
        op.create_index('ix_stock_batch_status', 'stock_batch', ['status'])
        op.create_index('ix_stock_batch_expiry_date', 'stock_batch', ['expiry_date'])

    if not index_exists('stock_batch', 'ix_stock_batch_fifo'):
        op.create_index(
            'ix_stock_batch_fifo',
            'stock_batch',
            ['product_id', 'warehouse_id', 'status', 'received_date', 'batch_number'],
        )

    if not table_exists('stock_movement'):
        op.create_table(
            'stock_movement',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id'), nullable=False),
            sa.Column('warehouse_id', sa.Integer(), sa.ForeignKey('warehouse.id'), nullable=False),
            sa.Column('batch_id', sa.Integer(), sa.ForeignKey('stock_batch.id'), nullable=True),
            sa.Column('movement_type', _enum(MOVEMENT_TYPES, 'movement_type'), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('unit_cost', sa.Numeric(12, 2), nullable=True),
            sa.Column('reason', sa.String(length=255), nullable=True),
            sa.Column('reference_id', sa.String(length=128), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index('ix_stock_movement_product_id', 'stock_movement', ['product_id'])
        op.create_index('ix_stock_movement_warehouse_id', 'stock_movement', ['warehouse_id'])
        op.create_index('ix_stock_movement_batch_id', 'stock_movement', ['batch_id'])
        op.create_index('ix_stock_movement_movement_type', 'stock_movement', ['movement_type'])
        op.create_index('ix_stock_movement_reference_id', 'stock_movement', ['reference_id'])
        op.create_index('ix_stock_movement_created_at', 'stock_movement', ['created_at'])


def downgrade():
    for table in ('stock_movement', 'stock_batch', 'warehouse', 'product'):
        if table_exists(table):
            op.drop_table(table)
