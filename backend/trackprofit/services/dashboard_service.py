"""
Dashboard Service — the profit aggregation pipeline.

1. Fetch orders, shipments and ad insights for the window concurrently.
2. Any provider that fails is zeroed and named in ``warnings`` ("ads:auth_expired").
3. Ensure a COGS record for every order.
4. Reduce everything to DashboardStats, per-day series and product leaders.
"""

import asyncio
import logging
from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from trackprofit.clients.courier_client import STATUS_DELIVERED, STATUS_PENDING, STATUS_RETURNED
from trackprofit.errors import ServiceError
from trackprofit.models import OrderCOGS, Provider
from trackprofit.schemas import (
    AdInsight, DailyStat, DashboardResult, DashboardStats, Order, ProductStat,
    Shipment, ShipmentStatusCounts, Window,
)
from trackprofit.services.cogs_service import CogsService
from trackprofit.services.credential_store import CredentialStore, StoredCredential
from trackprofit.utils import safe_ratio

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIXED_CURRENCY_WARNING = "orders:mixed_currency"


def _warning_for(provider: str, error: ServiceError) -> str:
    return f"{provider}:{error.kind.value}"


async def _degrade(provider: str, call: Awaitable[T], empty: T) -> Tuple[T, Optional[str]]:
    """Await ``call``; on a service/provider failure return ``empty`` and a warning tag."""
    try:
        return await call, None
    except ServiceError as e:
        logger.warning(f"Dashboard: {provider} degraded to empty ({e.kind.value}: {e.message})")
        return empty, _warning_for(provider, e)


def shop_currency(orders: list[Order]) -> Optional[str]:
    counts = Counter(o.currency for o in orders if o.currency)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def ad_conversion_rate(insight: AdInsight, base_currency: Optional[str], exchange_rate: float) -> float:
    """Shop-currency per ad-currency; 1 when both currencies are known and equal."""
    if insight.currency and base_currency and insight.currency.upper() == base_currency.upper():
        return 1.0
    return exchange_rate


def effective_roas(ad_revenue: float, order_revenue: float, cogs_costs: float, ad_costs: float) -> float:
    """ROAS after removing the share of COGS attributed to ad-driven revenue."""
    if not ad_costs or not order_revenue:
        return 0.0
    return round((ad_revenue - ad_revenue / order_revenue * cogs_costs) / ad_costs, 2)


def count_statuses(shipments: list[Shipment]) -> ShipmentStatusCounts:
    counts = ShipmentStatusCounts()
    for shipment in shipments:
        if shipment.status_id in STATUS_PENDING:
            counts.pending += 1
        elif shipment.status_id in STATUS_DELIVERED:
            counts.delivered += 1
        elif shipment.status_id in STATUS_RETURNED:
            counts.returned += 1
    return counts


def compute_stats(
    orders: list[Order],
    cogs: list[OrderCOGS],
    shipments: list[Shipment],
    insight: AdInsight,
    rate: float,
) -> DashboardStats:
    order_revenue = sum(o.total_price for o in orders)
    cogs_costs = sum(c.total_cost for c in cogs)
    fees = sum(s.shipping_fee for s in shipments) + sum(s.cancel_fee for s in shipments)
    ad_costs = insight.spend * rate
    ad_revenue = insight.purchase_value * rate
    total_profit = order_revenue - fees - cogs_costs - ad_costs

    return DashboardStats(
        order_revenue=round(order_revenue, 2),
        shipping_and_cancel_fees=round(fees, 2),
        cogs_costs=round(cogs_costs, 2),
        ad_costs=round(ad_costs, 2),
        total_profit=round(total_profit, 2),
        total_orders=len(orders),
        total_shipments=len(shipments),
        ad_revenue=round(ad_revenue, 2),
        ad_purchases=insight.purchases,
        ad_impressions=insight.impressions,
        roas=safe_ratio(ad_revenue, ad_costs),
        effective_roas=effective_roas(ad_revenue, order_revenue, cogs_costs, ad_costs),
        mer=safe_ratio(order_revenue, ad_costs),
    )


def daily_series(
    window: Window,
    orders: list[Order],
    cogs: list[OrderCOGS],
    shipments: list[Shipment],
    insight: AdInsight,
    rate: float,
) -> list[DailyStat]:
    days: dict[date, DailyStat] = {}
    day = window.since
    while day <= window.until:
        days[day] = DailyStat(day=day)
        day += timedelta(days=1)

    for order in orders:
        stat = days.get(order.created_at.date())
        if stat:
            stat.order_revenue += order.total_price
            stat.order_count += 1
    for record in cogs:
        stat = days.get(record.created_at.date())
        if stat:
            stat.cogs += record.total_cost
    for shipment in shipments:
        stat = days.get(shipment.created_at.date()) if shipment.created_at else None
        if stat:
            stat.shipping_and_cancel_fees += shipment.shipping_fee + shipment.cancel_fee
            stat.shipment_count += 1
    for row in insight.daily:
        stat = days.get(row.day)
        if stat:
            stat.ad_costs += row.spend * rate

    for stat in days.values():
        stat.total_profit = round(
            stat.order_revenue - stat.shipping_and_cancel_fees - stat.cogs - stat.ad_costs, 2
        )
        stat.order_revenue = round(stat.order_revenue, 2)
        stat.cogs = round(stat.cogs, 2)
        stat.shipping_and_cancel_fees = round(stat.shipping_and_cancel_fees, 2)
        stat.ad_costs = round(stat.ad_costs, 2)
    return list(days.values())


def product_leaders(cogs: list[OrderCOGS]) -> Tuple[Optional[ProductStat], Optional[ProductStat]]:
    """(top selling by quantity, most profitable) across the recorded line items."""
    products: dict[str, ProductStat] = defaultdict(ProductStat)
    for record in cogs:
        for item in record.items:
            key = item.product_id or item.title
            stat = products[key]
            stat.product_id = item.product_id
            stat.title = stat.title or item.title
            stat.quantity += item.quantity
            stat.revenue += item.total_revenue
            stat.cost += item.total_cost
            stat.profit += item.profit
    if not products:
        return None, None
    for stat in products.values():
        stat.revenue = round(stat.revenue, 2)
        stat.cost = round(stat.cost, 2)
        stat.profit = round(stat.profit, 2)
    top_selling = max(products.values(), key=lambda p: p.quantity)
    most_profitable = max(products.values(), key=lambda p: p.profit)
    return top_selling, most_profitable


class DashboardService:
    def __init__(
        self,
        cogs: CogsService,
        credentials: CredentialStore,
        orders,
        ads_factory: Callable[[str], object],
        shipping_factory: Callable[[StoredCredential], object],
    ):
        self.cogs = cogs
        self.credentials = credentials
        self.orders = orders
        self.ads_factory = ads_factory
        self.shipping_factory = shipping_factory

    async def _load_shipments(self, shop: str, window: Window) -> list[Shipment]:
        cred = await self.credentials.get(shop, Provider.COURIER)
        if cred is None:
            return []
        return await self.shipping_factory(cred).list_shipments(shop, window)

    async def _load_ads(self, shop: str, window: Window, account_id: Optional[str]) -> AdInsight:
        if not account_id:
            return AdInsight()
        cred = await self.credentials.require(shop, Provider.ADS)
        return await self.ads_factory(cred.token).account_insights(account_id, window)

    async def build_dashboard(
        self,
        shop: str,
        window: Window,
        ads_account_id: Optional[str] = None,
        exchange_rate: float = 1.0,
    ) -> DashboardResult:
        (orders, orders_warning), (shipments, courier_warning), (insight, ads_warning) = await asyncio.gather(
            _degrade("orders", self.orders.list_all_orders(window), []),
            _degrade("courier", self._load_shipments(shop, window), []),
            _degrade("ads", self._load_ads(shop, window, ads_account_id), AdInsight()),
        )
        warnings = [w for w in (orders_warning, courier_warning, ads_warning) if w]

        currencies = {o.currency for o in orders if o.currency}
        if len(currencies) > 1:
            logger.warning(f"Dashboard: {shop} has orders in several currencies {sorted(currencies)}")
            warnings.append(MIXED_CURRENCY_WARNING)

        cogs = await self.cogs.ensure_for_orders(shop, orders)
        rate = ad_conversion_rate(insight, shop_currency(orders), exchange_rate)

        top_selling, most_profitable = product_leaders(cogs)
        result = DashboardResult(
            window=window,
            stats=compute_stats(orders, cogs, shipments, insight, rate),
            shipment_status=count_statuses(shipments),
            daily_stats=daily_series(window, orders, cogs, shipments, insight, rate),
            top_selling_product=top_selling,
            most_profitable_product=most_profitable,
            warnings=warnings,
        )
        logger.info(
            f"Dashboard for {shop} ({window.since} → {window.until}): "
            f"{len(orders)} orders, {len(shipments)} shipments, warnings={warnings}"
        )
        return result
