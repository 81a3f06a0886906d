"""
Shopify Data Models

Stores connected shop credentials and the orders pulled from each shop's
Admin API.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, BigInteger, Numeric, UniqueConstraint, Index
from datetime import datetime

from app.models.base import Base


class ShopCredential(Base):
    """
    Access token for one connected shop under an account

    Written when a shop is connected, read once per sync run.
    """
    __tablename__ = "shop_credentials"
    __table_args__ = (
        UniqueConstraint("shop_name", "account_id", name="uq_shop_credentials_shop_account"),
    )

    id = Column(Integer, primary_key=True, index=True)

    shop_name = Column(String, nullable=False, index=True)  # e.g. "acme.myshopify.com"
    account_id = Column(String, nullable=False, index=True)
    access_token = Column(String, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ShopifyOrder(Base):
    """
    Shopify orders, one row per (shop, remote order id)

    Synced from Shopify Admin API: GET /admin/api/2024-01/orders.json
    """
    __tablename__ = "shopify_orders"
    __table_args__ = (
        UniqueConstraint("shop_name", "shopify_order_id", name="uq_shopify_orders_shop_order"),
        Index("ix_shopify_orders_shop_account_updated", "shop_name", "account_id", "updated_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Ownership (never rewritten once synced)
    shop_name = Column(String, nullable=False, index=True)
    account_id = Column(String, nullable=False, index=True)

    # Shopify IDs
    shopify_order_id = Column(BigInteger, nullable=False, index=True)
    name = Column(String, nullable=True)  # "#1001"
    order_number = Column(Integer, nullable=True)

    email = Column(String, nullable=True)

    # Timestamps (naive UTC)
    created_at = Column(DateTime, index=True)
    updated_at = Column(DateTime, index=True, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    # Amounts (shop currency; three decimals for KWD, BHD, JOD)
    currency = Column(String, nullable=True)
    total_price = Column(Numeric(15, 3), default=0)
    subtotal_price = Column(Numeric(15, 3), default=0)
    total_discounts = Column(Numeric(15, 3), default=0)
    total_tax = Column(Numeric(15, 3), default=0)

    # Status
    financial_status = Column(String, index=True, nullable=True)  # paid, pending, refunded
    fulfillment_status = Column(String, index=True, nullable=True)  # fulfilled, partial, null

    # Flags
    test = Column(Boolean, default=False)
    confirmed = Column(Boolean, default=False)
    taxes_included = Column(Boolean, default=False)

    # Free text
    tags = Column(Text, nullable=True)  # Shopify's comma separated string
    cancel_reason = Column(String, nullable=True)
    gateway = Column(String, nullable=True)
    browser_ip = Column(String, nullable=True)
    contact_email = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    # Customer snapshot at sync time
    customer_id = Column(BigInteger, index=True, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_first_name = Column(String, nullable=True)
    customer_last_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)

    # Sync metadata
    synced_at = Column(DateTime, default=datetime.utcnow)


# Columns an upsert may overwrite on an existing (shop, order) row
MUTABLE_ORDER_COLUMNS = (
    "updated_at",
    "cancelled_at",
    "closed_at",
    "processed_at",
    "total_price",
    "subtotal_price",
    "total_discounts",
    "total_tax",
    "financial_status",
    "fulfillment_status",
    "tags",
    "gateway",
    "synced_at",
)
