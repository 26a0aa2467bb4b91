"""
Shared fixtures: in-memory SQLite, a controllable clock and a canned order source.
"""
import os

# Must be set before shop_analytics reads its settings
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402

from shop_analytics.models.base import Base, SessionLocal, engine, init_db  # noqa: E402

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class FakeOrderSource:
    """Serves a fixed order list and records what was asked for"""

    def __init__(self, orders: Optional[List[dict]] = None, customer_orders: Optional[List[dict]] = None):
        self.orders = orders or []
        self.customer_orders = customer_orders or []
        self.order_calls: List[int] = []
        self.customer_calls: List[str] = []

    async def fetch_orders(self, days, now=None):
        self.order_calls.append(days)
        return list(self.orders)

    async def fetch_customer_orders(self, customer_id):
        self.customer_calls.append(customer_id)
        return list(self.customer_orders)


def make_order(
    order_id,
    price,
    days_ago: float = 1,
    customer_id=None,
    line_items=None,
    now: datetime = NOW,
    **extra
) -> dict:
    order = {
        "id": order_id,
        "total_price": price if isinstance(price, str) else f"{price:.2f}",
        "created_at": (now - timedelta(days=days_ago)).isoformat(),
        "customer": {"id": customer_id, "first_name": "Test", "last_name": f"C{customer_id}",
                     "email": f"c{customer_id}@example.com"} if customer_id else None,
        "line_items": line_items or [],
    }
    order.update(extra)
    return order


@pytest.fixture(autouse=True)
def db_tables():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def session_factory():
    return SessionLocal
