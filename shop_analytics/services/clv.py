"""
CLV Estimator

Heuristic RFM-style customer lifetime value:

    CLV = AOV x purchase frequency x expected lifespan (24 months) x retention

where purchase frequency is orders per month active (at least one month) and
retention decays linearly to zero 100 days after the last order. Segments
come from a fixed rule list, first match wins.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from shop_analytics.schemas.analytics import (
    CLVResult,
    CLVSummary,
    CustomerCLV,
    SegmentBreakdown,
    SegmentCount,
    SegmentDetail,
)
from shop_analytics.services.revenue import order_created_at, order_price
from shop_analytics.utils.helpers import round_half_up, safe_divide

EXPECTED_LIFESPAN_MONTHS = 24
DAYS_PER_MONTH = 30

NEW_CUSTOMER = "New Customer"
AT_RISK = "At Risk"
NEEDS_ATTENTION = "Needs Attention"
VIP = "VIP"
LOYAL = "Loyal"
PROMISING = "Promising"

# Display order for summaries
SEGMENTS = [VIP, LOYAL, PROMISING, NEW_CUSTOMER, NEEDS_ATTENTION, AT_RISK]


@dataclass
class CustomerMetrics:
    total_spent: float
    order_count: int
    avg_order_value: float
    days_since_first_order: int
    days_since_last_order: int
    first_order_date: Optional[datetime] = None
    last_order_date: Optional[datetime] = None


@dataclass
class CustomerOrders:
    customer: dict
    orders: List[dict]


def group_orders_by_customer(orders: List[dict]) -> Dict[str, CustomerOrders]:
    """Orders keyed by customer id; orders without a customer are dropped"""
    customers: Dict[str, CustomerOrders] = {}
    for order in orders:
        customer = order.get("customer") or {}
        customer_id = customer.get("id")
        if not customer_id:
            continue
        customer_id = str(customer_id)
        if customer_id not in customers:
            customers[customer_id] = CustomerOrders(customer=customer, orders=[])
        customers[customer_id].orders.append(order)
    return customers


def _days_between(later: datetime, earlier: datetime) -> int:
    return round_half_up((later - earlier).total_seconds() / 86400)


def calculate_customer_metrics(orders: List[dict], now: datetime) -> CustomerMetrics:
    if not orders:
        return CustomerMetrics(
            total_spent=0.0,
            order_count=0,
            avg_order_value=0.0,
            days_since_first_order=0,
            days_since_last_order=0
        )

    total_spent = sum(price for price in (order_price(o) for o in orders) if price is not None)

    first_order_date = None
    last_order_date = None
    for order in orders:
        created_at = order_created_at(order)
        if created_at is None:
            continue
        # Strict comparisons keep the earliest-listed order on ties
        if first_order_date is None or created_at < first_order_date:
            first_order_date = created_at
        if last_order_date is None or created_at > last_order_date:
            last_order_date = created_at

    return CustomerMetrics(
        total_spent=total_spent,
        order_count=len(orders),
        avg_order_value=total_spent / len(orders),
        days_since_first_order=_days_between(now, first_order_date) if first_order_date else 0,
        days_since_last_order=_days_between(now, last_order_date) if last_order_date else 0,
        first_order_date=first_order_date,
        last_order_date=last_order_date,
    )


def predict_clv(metrics: CustomerMetrics) -> int:
    months_active = max(metrics.days_since_first_order / DAYS_PER_MONTH, 1)
    purchase_frequency = metrics.order_count / months_active

    recency_score = max(0, 100 - metrics.days_since_last_order)
    retention_factor = recency_score / 100

    predicted = (
        metrics.avg_order_value
        * purchase_frequency
        * EXPECTED_LIFESPAN_MONTHS
        * retention_factor
    )
    return round_half_up(predicted)


def assign_segment(order_count: int, days_since_last_order: int, total_spent: float) -> str:
    if order_count == 1:
        return NEW_CUSTOMER
    if days_since_last_order > 180:
        return AT_RISK
    if days_since_last_order > 90:
        return NEEDS_ATTENTION
    if total_spent > 1000 and order_count > 5:
        return VIP
    if order_count > 3:
        return LOYAL
    return PROMISING


def summarize_segments(customers: List[CustomerCLV]) -> List[SegmentCount]:
    """Count per segment; every segment is listed, largest first"""
    counts = {name: 0 for name in SEGMENTS}
    for customer in customers:
        counts[customer.segment] = counts.get(customer.segment, 0) + 1

    # sorted() is stable, so equal counts keep display order
    return [
        SegmentCount(name=name, count=count)
        for name, count in sorted(counts.items(), key=lambda item: item[1], reverse=True)
    ]


def _customer_name(customer: dict) -> Optional[str]:
    parts = [customer.get("first_name"), customer.get("last_name")]
    name = " ".join(p.strip() for p in parts if p and p.strip())
    return name or None


def score_customer(customer_id: str, data: CustomerOrders, now: datetime) -> CustomerCLV:
    metrics = calculate_customer_metrics(data.orders, now)
    return CustomerCLV(
        customer_id=customer_id,
        customer_name=_customer_name(data.customer),
        email=data.customer.get("email"),
        total_spent=metrics.total_spent,
        order_count=metrics.order_count,
        avg_order_value=metrics.avg_order_value,
        days_since_first_order=metrics.days_since_first_order,
        days_since_last_order=metrics.days_since_last_order,
        last_order_date=metrics.last_order_date,
        predicted_clv=predict_clv(metrics),
        segment=assign_segment(
            metrics.order_count, metrics.days_since_last_order, metrics.total_spent
        ),
    )


def build_clv_result(
    orders: List[dict],
    now: datetime,
    customer_id: Optional[str] = None,
) -> CLVResult:
    """Score every customer in `orders` (or just `customer_id`), highest CLV first"""
    grouped = group_orders_by_customer(orders)
    if customer_id is not None:
        grouped = {cid: data for cid, data in grouped.items() if cid == str(customer_id)}

    customers = [score_customer(cid, data, now) for cid, data in grouped.items()]
    customers.sort(key=lambda c: c.predicted_clv, reverse=True)

    return CLVResult(
        customers=customers,
        summary=CLVSummary(
            average_clv=safe_divide(sum(c.predicted_clv for c in customers), len(customers)),
            top_segments=summarize_segments(customers),
        ),
    )


def build_segment_breakdown(result: CLVResult, top_n: int = 5) -> SegmentBreakdown:
    """Per-segment totals and best customers from an all-customer CLV result"""
    members: Dict[str, List[CustomerCLV]] = {name: [] for name in SEGMENTS}
    for customer in result.customers:
        members.setdefault(customer.segment, []).append(customer)

    segments = [
        SegmentDetail(
            name=name,
            count=len(group),
            total_spent=sum(c.total_spent for c in group),
            average_clv=safe_divide(sum(c.predicted_clv for c in group), len(group)),
            # result.customers is already sorted by CLV
            top_customers=group[:top_n],
        )
        for name, group in members.items()
    ]

    return SegmentBreakdown(
        total_customers=len(result.customers),
        segments=sorted(segments, key=lambda s: s.count, reverse=True),
    )
