"""catalog stock tables and orders

Revision ID: 0001_init
Revises:
Create Date: 2026-02-24

"""
from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('tenant_id', sa.Integer, nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('product_id', sa.Integer, sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('option1_label', sa.String(50), nullable=False),
        sa.Column('option1_value', sa.String(100), nullable=False),
        sa.Column('option2_label', sa.String(50), nullable=False),
        sa.Column('option2_value', sa.String(100), nullable=True),
        sa.Column('price_cents', sa.Integer, nullable=False),
        sa.Column('stock', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_number', sa.String(32), nullable=False),
        sa.Column('tenant_id', sa.Integer, nullable=False, index=True),
        sa.Column('buyer_name', sa.String(200), nullable=True),
        sa.Column('buyer_phone', sa.String(50), nullable=True),
        sa.Column('buyer_note', sa.String(1000), nullable=True),
        sa.Column('delivery_address', sa.String(300), nullable=True),
        sa.Column('delivery_city', sa.String(100), nullable=True),
        sa.Column('delivery_province', sa.String(100), nullable=True),
        sa.Column('delivery_postal_code', sa.String(20), nullable=True),
        sa.Column('total_cents', sa.Integer, nullable=False),
        sa.Column('item_count', sa.Integer, nullable=False),
        sa.Column('chat_message', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('variant_id', sa.Integer, nullable=False, index=True),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('option1_label', sa.String(50), nullable=False),
        sa.Column('option1_value', sa.String(100), nullable=False),
        sa.Column('option2_label', sa.String(50), nullable=False),
        sa.Column('option2_value', sa.String(100), nullable=True),
        sa.Column('price_cents', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
    )
    # No CHECK (stock >= 0): the oversell policy is allowed to take stock negative


def downgrade():
    op.drop_table('order_items')
    op.drop_index('ix_orders_order_number', table_name='orders')
    op.drop_table('orders')
    op.drop_table('product_variants')
    op.drop_table('products')
