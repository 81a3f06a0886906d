"""create_shop_credentials_and_orders

Revision ID: a41c7e2d9b03
Revises:
Create Date: 2026-10-19

Connected shop credentials and the orders synced from each shop.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a41c7e2d9b03'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create shop_credentials and shopify_orders."""
    op.create_table(
        'shop_credentials',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('shop_name', sa.String(), nullable=False, index=True),
        sa.Column('account_id', sa.String(), nullable=False, index=True),
        sa.Column('access_token', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('shop_name', 'account_id', name='uq_shop_credentials_shop_account'),
    )

    op.create_table(
        'shopify_orders',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),

        # Ownership
        sa.Column('shop_name', sa.String(), nullable=False, index=True),
        sa.Column('account_id', sa.String(), nullable=False, index=True),

        # Shopify IDs
        sa.Column('shopify_order_id', sa.BigInteger(), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('order_number', sa.Integer(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),

        # Timestamps
        sa.Column('created_at', sa.DateTime(), index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),

        # Amounts
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('total_price', sa.Numeric(15, 3)),
        sa.Column('subtotal_price', sa.Numeric(15, 3)),
        sa.Column('total_discounts', sa.Numeric(15, 3)),
        sa.Column('total_tax', sa.Numeric(15, 3)),

        # Status and flags
        sa.Column('financial_status', sa.String(), index=True, nullable=True),
        sa.Column('fulfillment_status', sa.String(), index=True, nullable=True),
        sa.Column('test', sa.Boolean()),
        sa.Column('confirmed', sa.Boolean()),
        sa.Column('taxes_included', sa.Boolean()),

        # Free text
        sa.Column('tags', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.String(), nullable=True),
        sa.Column('gateway', sa.String(), nullable=True),
        sa.Column('browser_ip', sa.String(), nullable=True),
        sa.Column('contact_email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),

        # Customer snapshot
        sa.Column('customer_id', sa.BigInteger(), index=True, nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('customer_first_name', sa.String(), nullable=True),
        sa.Column('customer_last_name', sa.String(), nullable=True),
        sa.Column('customer_phone', sa.String(), nullable=True),

        # Sync metadata
        sa.Column('synced_at', sa.DateTime()),

        sa.UniqueConstraint('shop_name', 'shopify_order_id', name='uq_shopify_orders_shop_order'),
    )

    op.create_index(
        'ix_shopify_orders_shop_account_updated',
        'shopify_orders',
        ['shop_name', 'account_id', 'updated_at'],
    )


def downgrade() -> None:
    """Drop shopify_orders and shop_credentials."""
    op.drop_index('ix_shopify_orders_shop_account_updated', table_name='shopify_orders')
    op.drop_table('shopify_orders')
    op.drop_table('shop_credentials')
