"""
Shopify Order Source

Reads paid orders from the Shopify Admin REST API for one shop.
Read-only: nothing is stored, orders are handed straight to the aggregators.
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from shop_analytics.utils.helpers import parse_price, utcnow
from shop_analytics.utils.logger import log


def validate_orders(orders: Any) -> List[dict]:
    """Drop malformed orders: missing id or a total_price that isn't a valid amount"""
    if not isinstance(orders, list):
        return []
    return [
        order for order in orders
        if isinstance(order, dict)
        and order.get("id")
        and parse_price(order.get("total_price")) is not None
    ]


class ShopifyOrderSource:
    """
    Paid-order reader for the Shopify Admin API

    Follows cursor pagination (Link: rel="next") up to `max_pages` pages per
    window. Any failed request is logged and yields an empty list, so callers
    fall back to zero-filled metrics instead of erroring.
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: str = "2024-01",
        page_limit: int = 250,
        max_pages: int = 40,
        timeout: float = 60.0,
        requests_per_second: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            shop: Shopify store domain (e.g., "your-store.myshopify.com")
            access_token: Admin API access token for the shop
            api_version: API version to use
            page_limit: Orders per page (Shopify caps this at 250)
            max_pages: Pagination cap per request window
            timeout: Per-request timeout in seconds
            requests_per_second: Client-side throttle, 0 disables it
            transport: Optional httpx transport (tests)
        """
        self.shop = shop.replace('https://', '').replace('http://', '').rstrip('/')
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = f"https://{self.shop}/admin/api/{api_version}"
        self.page_limit = page_limit
        self.max_pages = max_pages
        self.timeout = timeout
        self.transport = transport

        # Rate limiting
        self.requests_per_second = requests_per_second
        self.last_request_time = 0.0

    async def fetch_orders(self, days: int, now: Optional[datetime] = None) -> List[dict]:
        """
        Paid orders created in the last `days` days

        Args:
            days: Lookback window
            now: Window end (defaults to current UTC time)

        Returns:
            Valid orders, oldest pages first as Shopify returns them
        """
        since = ((now or utcnow()) - timedelta(days=days)).strftime("%Y-%m-%d")
        return await self._fetch_paginated(
            "orders.json",
            {
                "status": "paid",
                "created_at_min": since,
                "limit": self.page_limit
            },
            context=f"days={days}"
        )

    async def fetch_customer_orders(self, customer_id: str) -> List[dict]:
        """Paid orders for a single customer"""
        return await self._fetch_paginated(
            f"customers/{customer_id}/orders.json",
            {
                "status": "paid",
                "limit": self.page_limit
            },
            context=f"customer_id={customer_id}"
        )

    async def _fetch_paginated(self, path: str, params: Dict[str, Any], context: str) -> List[dict]:
        url: Optional[str] = f"{self.base_url}/{path}"
        orders: List[dict] = []
        pages = 0

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                while url:
                    if pages >= self.max_pages:
                        log.warning(
                            f"Stopped paginating {path} for {self.shop} after {pages} pages "
                            f"({len(orders)} orders, {context}); remaining orders excluded"
                        )
                        break

                    await self._rate_limit()
                    response = await client.get(
                        url,
                        params=params if params else None,
                        headers=self._get_headers()
                    )

                    if response.status_code != 200:
                        log.error(
                            f"Failed to fetch {path} for {self.shop}: "
                            f"{response.status_code} {response.reason_phrase} ({context})"
                        )
                        return []

                    data = response.json()
                    if not isinstance(data, dict):
                        log.error(
                            f"Unexpected {type(data).__name__} body from {path} for {self.shop} ({context})"
                        )
                        return []

                    orders.extend(validate_orders(data.get("orders", [])))
                    pages += 1

                    # Get next page from Link header
                    url = self._get_next_page_url(response.headers.get("Link"))
                    params = None  # Params are in the URL for subsequent pages

        except (httpx.HTTPError, ValueError) as e:
            log.error(f"Error fetching {path} for {self.shop} ({context}): {e}")
            return []

        log.info(f"Fetched {len(orders)} orders from {path} for {self.shop} in {pages} page(s) ({context})")
        return orders

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Shopify API requests"""
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json"
        }

    def _get_next_page_url(self, link_header: Optional[str]) -> Optional[str]:
        """
        Parse next page URL from Link header

        Shopify uses cursor-based pagination with Link headers:
        <url>; rel="previous", <url>; rel="next"
        """
        if not link_header:
            return None

        for link in link_header.split(","):
            parts = link.split(";")
            if len(parts) == 2 and 'rel="next"' in parts[1]:
                return parts[0].strip().strip("<>")

        return None

    async def _rate_limit(self):
        """Throttle to `requests_per_second` (Shopify REST allows 2/sec)"""
        if not self.requests_per_second:
            return

        elapsed = time.monotonic() - self.last_request_time
        min_interval = 1.0 / self.requests_per_second

        if elapsed < min_interval:
            await asyncio.sleep(min_interval - elapsed)

        self.last_request_time = time.monotonic()
