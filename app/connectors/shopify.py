"""
Shopify Connector

Pulls orders from one shop through the Shopify Admin REST API, a page at a
time, and normalizes them for the order store.
"""
import re
import httpx
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse, parse_qs

import pytz

from app.connectors.base import (
    BaseOrderSource,
    CustomerSnapshot,
    OrderPage,
    OrderRecord,
    PageOptions,
    ShopifyAPIError,
    ShopifyThrottledError,
)
from app.utils.logger import log

# Shopify's throttle wording, e.g. "Exceeded 2 calls per second for api client"
THROTTLE_MESSAGE = re.compile(r"exceeded \d+ calls? per", re.IGNORECASE)


class ShopifyConnector(BaseOrderSource):
    """
    Connector for one shop's Shopify Admin API

    Pagination is cursor based: the next page is announced in the Link
    header as a page_info token.
    """

    def __init__(
        self,
        shop_name: str,
        access_token: str,
        api_version: str = "2024-01",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize Shopify connector

        Args:
            shop_name: Shopify store domain (e.g., "your-store.myshopify.com")
            access_token: Shopify Admin API access token
            api_version: API version to use
            timeout: Per-request timeout in seconds
            client: Shared httpx client (one is created when omitted)
        """
        super().__init__(shop_name, source_name="shopify")

        self.store_url = shop_name.replace('https://', '').replace('http://', '').rstrip('/')
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = f"https://{self.store_url}/admin/api/{api_version}"
        self.timeout = timeout

        self._client = client
        self._owns_client = client is None

    async def list_orders_page(self, options: PageOptions) -> OrderPage:
        """
        Fetch one page of orders

        Args:
            options: Page size, cursor and filters

        Returns:
            OrderPage with raw order dicts and the next cursor (None on the last page)
        """
        url = f"{self.base_url}/orders.json"

        try:
            response = await self._get_client().get(
                url,
                params=self._build_params(options),
                headers=self._get_headers(),
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise ShopifyAPIError(f"request to {self.store_url} failed: {e}") from e

        if response.status_code in (429, 430) or self._is_throttle_message(response):
            raise ShopifyThrottledError(
                f"rate limit exceeded for {self.store_url}",
                retry_after=self._parse_retry_after(response.headers.get("Retry-After"))
            )

        if response.status_code != 200:
            raise ShopifyAPIError(
                f"error fetching orders from {self.store_url}: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code
            )

        data = response.json()
        orders = data.get("orders", [])
        next_cursor = self._get_next_page_cursor(response.headers.get("Link"))

        log.debug(f"Fetched {len(orders)} orders from {self.store_url} (more pages: {next_cursor is not None})")

        return OrderPage(orders=orders, next_cursor=next_cursor)

    def normalize_order(self, raw: Dict[str, Any]) -> OrderRecord:
        """Convert a Shopify order payload into an OrderRecord"""
        customer = raw.get("customer") or {}
        created_at = self._normalize_date(raw.get("created_at"))
        # Watermarks are built from updated_at, so it is never left empty
        updated_at = self._normalize_date(raw.get("updated_at")) or created_at
        if updated_at is None:
            log.warning(
                f"Order {raw.get('id')} from {self.store_url} has no updated_at or created_at, "
                f"stamping it with the sync time"
            )
            updated_at = datetime.utcnow()

        return OrderRecord(
            order_id=int(raw["id"]),
            name=raw.get("name") or "",
            order_number=raw.get("order_number"),
            email=raw.get("email") or "",
            created_at=created_at,
            updated_at=updated_at,
            cancelled_at=self._normalize_date(raw.get("cancelled_at")),
            closed_at=self._normalize_date(raw.get("closed_at")),
            processed_at=self._normalize_date(raw.get("processed_at")),
            currency=raw.get("currency") or "",
            total_price=self._parse_decimal(raw.get("total_price")),
            subtotal_price=self._parse_decimal(raw.get("subtotal_price")),
            total_discounts=self._parse_decimal(raw.get("total_discounts")),
            total_tax=self._parse_decimal(raw.get("total_tax")),
            financial_status=raw.get("financial_status") or "",
            fulfillment_status=raw.get("fulfillment_status") or "",
            test=bool(raw.get("test")),
            confirmed=bool(raw.get("confirmed")),
            taxes_included=bool(raw.get("taxes_included")),
            tags=raw.get("tags") or "",
            cancel_reason=raw.get("cancel_reason") or "",
            gateway=raw.get("gateway") or "",
            browser_ip=raw.get("browser_ip") or "",
            contact_email=raw.get("contact_email") or "",
            phone=raw.get("phone") or "",
            customer=CustomerSnapshot(
                id=customer.get("id"),
                email=customer.get("email") or "",
                first_name=customer.get("first_name") or "",
                last_name=customer.get("last_name") or "",
                phone=customer.get("phone") or "",
            ),
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _build_params(self, options: PageOptions) -> Dict[str, Any]:
        """
        Query parameters for one page

        Shopify rejects filters alongside page_info, so a cursor request
        carries only the page size and the cursor.
        """
        if options.cursor:
            return {"limit": options.limit, "page_info": options.cursor}

        params: Dict[str, Any] = {
            "limit": options.limit,
            "status": options.status,
            "order": options.order,
        }
        if options.updated_at_min is not None:
            updated_at_min = options.updated_at_min
            if updated_at_min.tzinfo is None:
                updated_at_min = pytz.UTC.localize(updated_at_min)
            params["updated_at_min"] = updated_at_min.isoformat()
        return params

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Shopify API requests"""
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json"
        }

    @staticmethod
    def _is_throttle_message(response: httpx.Response) -> bool:
        """Shopify sometimes reports throttling as 'Exceeded 2 calls per second' in the body"""
        if response.status_code == 200:
            return False
        return bool(THROTTLE_MESSAGE.search(response.text))

    @staticmethod
    def _parse_retry_after(value: Optional[str]) -> Optional[float]:
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def _get_next_page_cursor(self, link_header: Optional[str]) -> Optional[str]:
        """
        Parse the next page cursor from the Link header

        Args:
            link_header: e.g. '<https://shop/admin/api/2024-01/orders.json?limit=250&page_info=abc>; rel="next"'

        Returns:
            page_info token or None
        """
        if not link_header:
            return None

        for link in link_header.split(","):
            parts = link.split(";")
            if len(parts) == 2 and 'rel="next"' in parts[1]:
                url = parts[0].strip().strip("<>")
                page_info = parse_qs(urlparse(url).query).get("page_info")
                return page_info[0] if page_info else None

        return None
