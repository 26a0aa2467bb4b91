"""
Tests for the Shopify order source, driven through httpx.MockTransport.
"""
import httpx
import pytest

from shop_analytics.connectors.shopify import ShopifyOrderSource, validate_orders
from conftest import NOW, make_order

SHOP = "test-store.myshopify.com"
BASE = f"https://{SHOP}/admin/api/2024-01"


def _source(handler, **kwargs) -> ShopifyOrderSource:
    kwargs.setdefault("requests_per_second", 0)
    return ShopifyOrderSource(SHOP, "shpat_test", transport=httpx.MockTransport(handler), **kwargs)


def _page(orders, next_url=None):
    headers = {"Link": f'<{next_url}>; rel="next"'} if next_url else {}
    return httpx.Response(200, json={"orders": orders}, headers=headers)


def test_validate_orders_drops_malformed_records():
    orders = [
        make_order(1, 10),
        {"total_price": "5.00"},
        make_order(2, "abc"),
        make_order(3, "-1"),
        "not an order",
        make_order(4, "0.00"),
    ]
    assert [o["id"] for o in validate_orders(orders)] == [1, 4]
    assert validate_orders(None) == []


@pytest.mark.asyncio
async def test_fetch_orders_sends_token_and_filters():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _page([make_order(1, 10)])

    orders = await _source(handler, page_limit=50).fetch_orders(30, now=NOW)

    assert [o["id"] for o in orders] == [1]
    request = seen[0]
    assert request.url.path == "/admin/api/2024-01/orders.json"
    assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
    assert request.url.params["status"] == "paid"
    assert request.url.params["created_at_min"] == "2026-09-19"
    assert request.url.params["limit"] == "50"


@pytest.mark.asyncio
async def test_follows_link_header_pagination():
    page_two = f"{BASE}/orders.json?page_info=abc&limit=250"
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if request.url.params.get("page_info") == "abc":
            return _page([make_order(3, 30)])
        return _page([make_order(1, 10), make_order(2, 20)], next_url=page_two)

    orders = await _source(handler).fetch_orders(30, now=NOW)

    assert [o["id"] for o in orders] == [1, 2, 3]
    assert len(calls) == 2
    # Cursor pages carry only what the Link header gave us
    assert "status=paid" not in calls[1]


@pytest.mark.asyncio
async def test_pagination_stops_at_max_pages():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        n = len(calls)
        return _page([make_order(n, 10)], next_url=f"{BASE}/orders.json?page_info=p{n}")

    orders = await _source(handler, max_pages=3).fetch_orders(30, now=NOW)

    assert len(calls) == 3
    assert [o["id"] for o in orders] == [1, 2, 3]


@pytest.mark.asyncio
async def test_malformed_orders_are_filtered():
    def handler(request):
        return _page([make_order(1, 10), {"id": 2}, make_order(3, "NaN")])

    orders = await _source(handler).fetch_orders(7, now=NOW)
    assert [o["id"] for o in orders] == [1]


@pytest.mark.asyncio
async def test_non_200_yields_empty_list():
    def handler(request):
        return httpx.Response(401, json={"errors": "Invalid API key"})

    assert await _source(handler).fetch_orders(30, now=NOW) == []


@pytest.mark.asyncio
async def test_failure_mid_pagination_discards_partial_pages():
    def handler(request):
        if request.url.params.get("page_info"):
            return httpx.Response(500)
        return _page([make_order(1, 10)], next_url=f"{BASE}/orders.json?page_info=x")

    assert await _source(handler).fetch_orders(30, now=NOW) == []


@pytest.mark.asyncio
async def test_network_error_yields_empty_list():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert await _source(handler).fetch_orders(30, now=NOW) == []


@pytest.mark.asyncio
async def test_invalid_json_yields_empty_list():
    def handler(request):
        return httpx.Response(200, content=b"<html>maintenance</html>")

    assert await _source(handler).fetch_orders(30, now=NOW) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [["not", "an", "object"], None, "orders"])
async def test_non_object_json_yields_empty_list(body):
    def handler(request):
        return httpx.Response(200, json=body)

    assert await _source(handler).fetch_orders(30, now=NOW) == []


@pytest.mark.asyncio
async def test_null_orders_field_yields_empty_list():
    def handler(request):
        return httpx.Response(200, json={"orders": None})

    assert await _source(handler).fetch_orders(30, now=NOW) == []


@pytest.mark.asyncio
async def test_customer_orders_path():
    seen = []

    def handler(request):
        seen.append(request)
        return _page([make_order(9, 99, customer_id=42)])

    orders = await _source(handler).fetch_customer_orders("42")

    assert [o["id"] for o in orders] == [9]
    assert seen[0].url.path == "/admin/api/2024-01/customers/42/orders.json"
    assert seen[0].url.params["status"] == "paid"


def test_shop_domain_is_normalized():
    source = ShopifyOrderSource("https://test-store.myshopify.com/", "t")
    assert source.base_url == BASE


def test_next_page_url_parsing():
    source = ShopifyOrderSource(SHOP, "t")
    header = f'<{BASE}/orders.json?page_info=prev>; rel="previous", <{BASE}/orders.json?page_info=next>; rel="next"'

    assert source._get_next_page_url(header) == f"{BASE}/orders.json?page_info=next"
    assert source._get_next_page_url(f'<{BASE}/orders.json?page_info=prev>; rel="previous"') is None
    assert source._get_next_page_url(None) is None
