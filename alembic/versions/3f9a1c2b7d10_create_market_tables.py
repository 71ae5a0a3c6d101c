"""create_market_tables

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'PENDING',
    'PAID',
    'SHIPPED',
    'COMPLETED',
    'CANCELLED',
    'REFUND_REQUESTED',
    'REFUNDED',
    'FAILED',
)
PAYMENT_STATUSES = ('READY', 'CONFIRMED', 'FAILED')


def upgrade() -> None:
    """Upgrade schema - Create market catalog, order and payment tables."""
    order_status = sa.Enum(*ORDER_STATUSES, name='market_order_status_enum')
    payment_status = sa.Enum(*PAYMENT_STATUSES, name='market_payment_status_enum')

    # Create seller profiles table
    op.create_table(
        'market_seller_profiles',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('shop_name', sa.String(100), nullable=False),
        sa.Column('shipping_fee_krw', sa.Integer(), server_default='3000', nullable=False),
        sa.Column('free_shipping_threshold_krw', sa.Integer(), server_default='50000', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('shipping_fee_krw >= 0', name='non_negative_shipping_fee'),
        sa.CheckConstraint('free_shipping_threshold_krw >= 0', name='non_negative_free_threshold'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_seller_profiles_user_id', 'market_seller_profiles', ['user_id'], unique=True)

    # Create products table
    op.create_table(
        'market_products',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('seller_id', sa.String(255), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_krw', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('is_deleted', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('price_krw >= 0', name='non_negative_price'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_products_seller_id', 'market_products', ['seller_id'])

    # Create product variants table
    op.create_table(
        'market_product_variants',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('size_label', sa.String(50), nullable=True),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('stock', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('stock >= 0', name='non_negative_stock'),
        sa.ForeignKeyConstraint(['product_id'], ['market_products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_product_variants_product_id', 'market_product_variants', ['product_id'])

    # Create addresses table
    op.create_table(
        'market_addresses',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(50), nullable=False),
        sa.Column('zip_code', sa.String(20), nullable=False),
        sa.Column('addr1', sa.String(255), nullable=False),
        sa.Column('addr2', sa.String(255), nullable=True),
        sa.Column('memo', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_addresses_user_id', 'market_addresses', ['user_id'])

    # Create cart items table
    op.create_table(
        'market_cart_items',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('variant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity > 0', name='positive_cart_quantity'),
        sa.ForeignKeyConstraint(['variant_id'], ['market_product_variants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'variant_id', name='unique_cart_user_variant')
    )
    op.create_index('ix_market_cart_items_user_id', 'market_cart_items', ['user_id'])

    # Create orders table
    op.create_table(
        'market_orders',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(32), nullable=False),
        sa.Column('buyer_id', sa.String(255), nullable=False),
        sa.Column('seller_id', sa.String(255), nullable=False),
        sa.Column('status', order_status, server_default='PENDING', nullable=False),
        sa.Column('items_subtotal_krw', sa.Integer(), nullable=False),
        sa.Column('shipping_fee_krw', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_pay_krw', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ship_to_name', sa.String(100), nullable=True),
        sa.Column('ship_to_phone', sa.String(50), nullable=True),
        sa.Column('ship_to_zip', sa.String(20), nullable=True),
        sa.Column('ship_to_addr1', sa.String(255), nullable=True),
        sa.Column('ship_to_addr2', sa.String(255), nullable=True),
        sa.Column('ship_to_memo', sa.String(255), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('items_subtotal_krw >= 0', name='non_negative_subtotal'),
        sa.CheckConstraint('shipping_fee_krw >= 0', name='non_negative_order_fee'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_orders_order_number', 'market_orders', ['order_number'], unique=True)
    op.create_index('ix_market_orders_buyer_id', 'market_orders', ['buyer_id'])
    op.create_index('ix_market_orders_seller_id', 'market_orders', ['seller_id'])
    op.create_index('ix_market_orders_buyer_status', 'market_orders', ['buyer_id', 'status'])
    op.create_index('ix_market_orders_seller_status', 'market_orders', ['seller_id', 'status'])

    # Create order items table
    op.create_table(
        'market_order_items',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', UUID(as_uuid=True), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_krw', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity > 0', name='positive_order_quantity'),
        sa.ForeignKeyConstraint(['order_id'], ['market_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['market_products.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['market_product_variants.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_order_items_order_id', 'market_order_items', ['order_id'])

    # Create payments table
    op.create_table(
        'market_payments',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('payment_key', sa.String(200), nullable=True),
        sa.Column('status', payment_status, server_default='READY', nullable=False),
        sa.Column('amount_krw', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(50), server_default='PENDING', nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_response', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['market_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
        sa.UniqueConstraint('payment_key')
    )

    # Create order audit logs table
    op.create_table(
        'market_order_audit_logs',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('admin_id', sa.String(255), nullable=False),
        sa.Column('from_status', order_status, nullable=False),
        sa.Column('to_status', order_status, nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['market_orders.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_order_audit_logs_order', 'market_order_audit_logs', ['order_id', 'created_at'])


def downgrade() -> None:
    """Downgrade schema - Drop market tables."""
    op.drop_index('ix_market_order_audit_logs_order', table_name='market_order_audit_logs')
    op.drop_table('market_order_audit_logs')
    op.drop_table('market_payments')
    op.drop_index('ix_market_order_items_order_id', table_name='market_order_items')
    op.drop_table('market_order_items')
    op.drop_index('ix_market_orders_seller_status', table_name='market_orders')
    op.drop_index('ix_market_orders_buyer_status', table_name='market_orders')
    op.drop_index('ix_market_orders_seller_id', table_name='market_orders')
    op.drop_index('ix_market_orders_buyer_id', table_name='market_orders')
    op.drop_index('ix_market_orders_order_number', table_name='market_orders')
    op.drop_table('market_orders')
    op.drop_index('ix_market_cart_items_user_id', table_name='market_cart_items')
    op.drop_table('market_cart_items')
    op.drop_index('ix_market_addresses_user_id', table_name='market_addresses')
    op.drop_table('market_addresses')
    op.drop_index('ix_market_product_variants_product_id', table_name='market_product_variants')
    op.drop_table('market_product_variants')
    op.drop_index('ix_market_products_seller_id', table_name='market_products')
    op.drop_table('market_products')
    op.drop_index('ix_market_seller_profiles_user_id', table_name='market_seller_profiles')
    op.drop_table('market_seller_profiles')

    sa.Enum(name='market_payment_status_enum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='market_order_status_enum').drop(op.get_bind(), checkfirst=True)
