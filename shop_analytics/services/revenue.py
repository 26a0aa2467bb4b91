"""
Revenue Aggregator

Pure functions over raw Shopify order dicts: period filtering, totals, AOV,
daily series, period-over-period trends and top products. Nothing here
touches the network or the database; `now` and the shop timezone are passed in.
"""
from collections import defaultdict
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional

from shop_analytics.schemas.analytics import (
    DailyRevenue,
    PeriodComparison,
    RevenueOverview,
    TopProduct,
)
from shop_analytics.utils.helpers import (
    parse_price,
    parse_timestamp,
    round_half_up,
    safe_divide,
)

EMPTY_SERIES_DAYS = 30
TOP_PRODUCTS_LIMIT = 5


def order_price(order: dict) -> Optional[float]:
    return parse_price(order.get("total_price"))


def order_created_at(order: dict) -> Optional[datetime]:
    return parse_timestamp(order.get("created_at"))


def filter_orders_for_period(
    orders: Iterable[dict],
    days: int,
    periods_ago: int,
    now: datetime,
) -> List[dict]:
    """
    Orders created in [period_end - days, period_end), where
    period_end = now - days * periods_ago.

    periods_ago=0 is the current window, 1 the one immediately before it.
    """
    period_end = now - timedelta(days=days * periods_ago)
    period_start = period_end - timedelta(days=days)

    selected = []
    for order in orders:
        created_at = order_created_at(order)
        if created_at is None:
            continue
        if period_start <= created_at < period_end:
            selected.append(order)
    return selected


def calculate_total_revenue(orders: Iterable[dict]) -> float:
    """Sum of parsable total prices; anything else contributes 0"""
    total = 0.0
    for order in orders:
        price = order_price(order)
        if price is not None:
            total += price
    return total


def calculate_aov(orders: List[dict]) -> float:
    """Average order value, 0 for no orders"""
    return safe_divide(calculate_total_revenue(orders), len(orders))


def zero_filled_days(today: date, count: int = EMPTY_SERIES_DAYS) -> List[DailyRevenue]:
    """`count` consecutive zero-revenue days ending at `today`"""
    return [
        DailyRevenue(date=(today - timedelta(days=offset)).isoformat(), revenue=0.0)
        for offset in range(count - 1, -1, -1)
    ]


def group_revenue_by_day(
    orders: Iterable[dict],
    tz: tzinfo,
    today: date,
    fill_empty: bool = True,
) -> List[DailyRevenue]:
    """
    Revenue per calendar day in the shop's timezone, ascending by date.

    Orders with a missing/invalid created_at or an unparsable price are
    skipped. An empty result is replaced with 30 zero days ending `today`
    when `fill_empty` is set, so charts never get an empty series.
    """
    by_day: Dict[str, float] = defaultdict(float)

    for order in orders:
        created_at = order_created_at(order)
        if created_at is None:
            continue
        price = order_price(order)
        if price is None:
            continue
        by_day[created_at.astimezone(tz).date().isoformat()] += price

    if not by_day:
        return zero_filled_days(today) if fill_empty else []

    return [
        DailyRevenue(date=day, revenue=revenue)
        for day, revenue in sorted(by_day.items())
    ]


def calculate_trend(current: float, previous: float) -> int:
    """Percentage change, rounded; 100 when growing from zero, 0 when flat at zero"""
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up(((current - previous) / previous) * 100)


def compare_periods(current_orders: List[dict], previous_orders: List[dict]) -> PeriodComparison:
    return PeriodComparison(
        revenue_trend=calculate_trend(
            calculate_total_revenue(current_orders),
            calculate_total_revenue(previous_orders)
        ),
        order_trend=calculate_trend(len(current_orders), len(previous_orders)),
        aov_trend=calculate_trend(calculate_aov(current_orders), calculate_aov(previous_orders)),
    )


def get_top_products(orders: Iterable[dict], limit: int = TOP_PRODUCTS_LIMIT) -> List[TopProduct]:
    """Line items aggregated by product id, highest revenue first"""
    products: Dict[str, TopProduct] = {}

    for order in orders:
        for item in order.get("line_items") or []:
            product_id = item.get("product_id")
            if not product_id:
                continue
            product_id = str(product_id)

            if product_id not in products:
                products[product_id] = TopProduct(id=product_id, title=item.get("title"))

            try:
                quantity = int(item.get("quantity") or 0)
            except (TypeError, ValueError):
                quantity = 0
            price = parse_price(item.get("price")) or 0.0

            product = products[product_id]
            product.units += quantity
            product.revenue += price * quantity

    return sorted(products.values(), key=lambda p: p.revenue, reverse=True)[:limit]


def calculate_conversion_rate(order_count: int, sessions: Optional[int] = None) -> Optional[float]:
    """
    Orders per storefront session, in percent.

    No traffic source is connected yet, so callers pass sessions=None and
    get None back rather than a made-up number.
    """
    if not sessions:
        return None
    return order_count / sessions * 100


def build_revenue_overview(
    orders: List[dict],
    days: int,
    now: datetime,
    tz: tzinfo,
    sessions: Optional[int] = None,
) -> RevenueOverview:
    """
    Assemble the revenue dashboard payload.

    `orders` must cover at least the last 2 * days so the previous window
    can be compared.
    """
    current = filter_orders_for_period(orders, days, 0, now)
    previous = filter_orders_for_period(orders, days, 1, now)
    today = now.astimezone(tz).date()
    previous_end = now - timedelta(days=days)

    return RevenueOverview(
        days=days,
        period_start=previous_end,
        period_end=now,
        total_revenue=calculate_total_revenue(current),
        average_order_value=calculate_aov(current),
        order_count=len(current),
        conversion_rate=calculate_conversion_rate(len(current), sessions),
        top_products=get_top_products(current),
        revenue_by_day=group_revenue_by_day(current, tz, today),
        previous_period_revenue_by_day=group_revenue_by_day(
            previous, tz, previous_end.astimezone(tz).date(), fill_empty=False
        ),
        period_comparison=compare_periods(current, previous),
    )
