"""Database models for the ShopSync order sync service"""

from app.models.shopify import (
    ShopCredential,
    ShopifyOrder,
    MUTABLE_ORDER_COLUMNS
)
