"""Order source connectors for the ShopSync order sync service"""

from app.connectors.base import (
    BaseOrderSource,
    CustomerSnapshot,
    OrderPage,
    OrderRecord,
    PageOptions,
    OrderSourceError,
    ShopifyAPIError,
    ShopifyThrottledError
)
from app.connectors.shopify import ShopifyConnector

__all__ = [
    "BaseOrderSource",
    "CustomerSnapshot",
    "OrderPage",
    "OrderRecord",
    "PageOptions",
    "OrderSourceError",
    "ShopifyAPIError",
    "ShopifyThrottledError",
    "ShopifyConnector"
]
