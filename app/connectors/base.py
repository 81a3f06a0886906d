"""
Base Connector Class

Order sources inherit from this base class.
Defines the page-at-a-time contract the sync engine drives, the normalized
order shape every source converts into, and the errors a source may raise.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import pytz
from dateutil import parser as date_parser

from app.utils.logger import log


class OrderSourceError(Exception):
    """Base error raised by an order source"""


class ShopifyAPIError(OrderSourceError):
    """Non-throttling failure talking to the remote API (HTTP or transport)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ShopifyThrottledError(ShopifyAPIError):
    """The remote API rejected the request because the rate limit was exceeded"""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


@dataclass
class PageOptions:
    """Query for one page of orders"""
    limit: int = 250
    cursor: Optional[str] = None
    updated_at_min: Optional[datetime] = None
    status: str = "any"  # include cancelled and closed orders
    order: str = "updated_at asc"


@dataclass
class OrderPage:
    """One raw page as returned by the remote API"""
    orders: List[Dict[str, Any]]
    next_cursor: Optional[str] = None


@dataclass
class CustomerSnapshot:
    """Customer details copied onto the order at sync time"""
    id: Optional[int] = None
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: str = ""


@dataclass
class OrderRecord:
    """Normalized order, ready for the order store"""
    order_id: int
    updated_at: datetime
    name: str = ""
    order_number: Optional[int] = None
    email: str = ""
    created_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    currency: str = ""
    total_price: Decimal = Decimal("0")
    subtotal_price: Decimal = Decimal("0")
    total_discounts: Decimal = Decimal("0")
    total_tax: Decimal = Decimal("0")
    financial_status: str = ""
    fulfillment_status: str = ""
    test: bool = False
    confirmed: bool = False
    taxes_included: bool = False
    tags: str = ""
    cancel_reason: str = ""
    gateway: str = ""
    browser_ip: str = ""
    contact_email: str = ""
    phone: str = ""
    customer: CustomerSnapshot = field(default_factory=CustomerSnapshot)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dict for API responses."""
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "order_id": self.order_id,
            "name": self.name,
            "order_number": self.order_number,
            "email": self.email,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "cancelled_at": _iso(self.cancelled_at),
            "closed_at": _iso(self.closed_at),
            "processed_at": _iso(self.processed_at),
            "currency": self.currency,
            "total_price": str(self.total_price),
            "subtotal_price": str(self.subtotal_price),
            "total_discounts": str(self.total_discounts),
            "total_tax": str(self.total_tax),
            "financial_status": self.financial_status,
            "fulfillment_status": self.fulfillment_status,
            "test": self.test,
            "confirmed": self.confirmed,
            "taxes_included": self.taxes_included,
            "tags": self.tags,
            "cancel_reason": self.cancel_reason,
            "gateway": self.gateway,
            "browser_ip": self.browser_ip,
            "contact_email": self.contact_email,
            "phone": self.phone,
            "customer": {
                "id": self.customer.id,
                "email": self.customer.email,
                "first_name": self.customer.first_name,
                "last_name": self.customer.last_name,
                "phone": self.customer.phone,
            },
        }


class BaseOrderSource(ABC):
    """
    Base class for remote order sources

    One instance talks to one shop with one access token.
    """

    def __init__(self, shop_name: str, source_name: str):
        """
        Initialize source

        Args:
            shop_name: Shop this source pulls from
            source_name: Name of the platform (e.g., 'shopify')
        """
        self.shop_name = shop_name
        self.source_name = source_name

    @abstractmethod
    async def list_orders_page(self, options: PageOptions) -> OrderPage:
        """
        Fetch one page of raw orders

        Raises:
            ShopifyThrottledError: the request was rate limited
            ShopifyAPIError: any other remote failure
        """

    @abstractmethod
    def normalize_order(self, raw: Dict[str, Any]) -> OrderRecord:
        """Convert one raw remote order into an OrderRecord"""

    async def close(self) -> None:
        """Release network resources held by the source"""

    def _normalize_date(self, date_value: Any) -> Optional[datetime]:
        """
        Normalize a remote timestamp to naive UTC

        Args:
            date_value: ISO string, datetime, or None

        Returns:
            Naive UTC datetime or None
        """
        if not date_value:
            return None

        if isinstance(date_value, datetime):
            parsed = date_value
        else:
            try:
                parsed = date_parser.parse(str(date_value))
            except (ValueError, OverflowError):
                log.warning(f"Could not parse date from {self.shop_name}: {date_value}")
                return None

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(pytz.UTC).replace(tzinfo=None)
        return parsed

    def _parse_decimal(self, value: Any) -> Decimal:
        """Parse a money amount exactly; missing or malformed amounts become zero"""
        if value is None or value == "":
            return Decimal("0")
        try:
            return Decimal(str(value))
        except InvalidOperation:
            log.warning(f"Could not parse amount from {self.shop_name}: {value!r}")
            return Decimal("0")
