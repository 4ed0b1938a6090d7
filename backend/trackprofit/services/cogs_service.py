"""
COGS Engine — per-order cost of goods, persisted once per (shop, order).

The first observation of an order fixes its recorded cost: later changes to
the live inventory cost never rewrite an existing OrderCOGS row. Writers race
through ``INSERT … ON CONFLICT DO NOTHING RETURNING id``; the loser reads the
winner's row back.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackprofit.database import dialect_insert
from trackprofit.errors import ErrorKind, ServiceError
from trackprofit.models import OrderCOGS, OrderCOGSItem
from trackprofit.schemas import Order, Window
from trackprofit.utils import to_naive_utc

logger = logging.getLogger(__name__)

LOOKUP_CHUNK = 500


@dataclass
class CogsBreakdown:
    total_revenue: float
    total_cost: float
    profit: float
    items: list[dict] = field(default_factory=list)


def compute_cogs(order: Order) -> CogsBreakdown:
    """Pure cost computation for one order. A missing unit cost counts as zero."""
    items = []
    for position, line in enumerate(order.line_items):
        unit_cost = line.unit_cost if line.unit_cost is not None else 0.0
        total_cost = unit_cost * line.quantity
        total_revenue = line.price * line.quantity
        items.append({
            "position": position,
            "product_id": line.product_id,
            "variant_id": line.variant_id,
            "title": line.title,
            "quantity": line.quantity,
            "unit_cost": unit_cost,
            "price": line.price,
            "total_cost": total_cost,
            "total_revenue": total_revenue,
            "profit": total_revenue - total_cost,
        })
    total_cost = sum(i["total_cost"] for i in items)
    return CogsBreakdown(
        total_revenue=order.total_price,
        total_cost=total_cost,
        profit=order.total_price - total_cost,
        items=items,
    )


def cogs_to_dict(record: OrderCOGS) -> dict:
    return {
        "id": str(record.id),
        "orderId": record.order_id,
        "orderName": record.order_name,
        "totalRevenue": record.total_revenue,
        "totalCost": record.total_cost,
        "profit": record.profit,
        "currency": record.currency,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "items": [
            {
                "productId": item.product_id,
                "variantId": item.variant_id,
                "title": item.title,
                "quantity": item.quantity,
                "unitCost": item.unit_cost,
                "price": item.price,
                "totalCost": item.total_cost,
                "totalRevenue": item.total_revenue,
                "profit": item.profit,
            }
            for item in record.items
        ],
    }


def summarize(records: Iterable[OrderCOGS]) -> dict:
    records = list(records)
    count = len(records)
    revenue = sum(r.total_revenue for r in records)
    cost = sum(r.total_cost for r in records)
    profit = sum(r.profit for r in records)
    return {
        "totalOrders": count,
        "totalRevenue": round(revenue, 2),
        "totalCost": round(cost, 2),
        "totalProfit": round(profit, 2),
        "averageProfit": round(profit / count, 2) if count else 0.0,
        "averageOrderValue": round(revenue / count, 2) if count else 0.0,
        "profitMargin": round(profit / revenue * 100, 2) if revenue else 0.0,
    }


class CogsService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Reads ─────────────────────────────────────────────────────────
    async def get(self, shop: str, order_id: str) -> Optional[OrderCOGS]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(OrderCOGS).where(OrderCOGS.shop == shop, OrderCOGS.order_id == str(order_id))
            )
            return result.scalar_one_or_none()

    async def _existing(self, shop: str, order_ids: list[str]) -> dict[str, OrderCOGS]:
        found: dict[str, OrderCOGS] = {}
        async with self._session_factory() as db:
            for start in range(0, len(order_ids), LOOKUP_CHUNK):
                chunk = order_ids[start:start + LOOKUP_CHUNK]
                result = await db.execute(
                    select(OrderCOGS).where(OrderCOGS.shop == shop, OrderCOGS.order_id.in_(chunk))
                )
                for record in result.scalars():
                    found[record.order_id] = record
        return found

    async def aggregate(self, shop: str, window: Window) -> dict:
        """Recorded COGS rows placed inside ``window`` plus their summary."""
        start = datetime.combine(window.since, time.min)
        end = datetime.combine(window.until + timedelta(days=1), time.min)
        async with self._session_factory() as db:
            result = await db.execute(
                select(OrderCOGS)
                .where(OrderCOGS.shop == shop, OrderCOGS.created_at >= start, OrderCOGS.created_at < end)
                .order_by(OrderCOGS.created_at.desc())
            )
            records = list(result.scalars())
        return {"orders": [cogs_to_dict(r) for r in records], "summary": summarize(records)}

    # ── Writes ────────────────────────────────────────────────────────
    async def _insert(self, shop: str, order: Order, breakdown: CogsBreakdown) -> bool:
        """Write header + items in one transaction. False when another writer got there first."""
        async with self._session_factory() as db:
            try:
                stmt = (
                    dialect_insert(db, OrderCOGS)
                    .values(
                        id=uuid.uuid4(),
                        shop=shop,
                        order_id=order.id,
                        order_name=order.name,
                        total_revenue=breakdown.total_revenue,
                        total_cost=breakdown.total_cost,
                        profit=breakdown.profit,
                        currency=order.currency,
                        created_at=to_naive_utc(order.created_at),
                    )
                    .on_conflict_do_nothing(index_elements=["shop", "order_id"])
                    .returning(OrderCOGS.id)
                )
                record_id = (await db.execute(stmt)).scalar_one_or_none()
                if record_id is None:
                    await db.rollback()
                    return False
                db.add_all(OrderCOGSItem(order_cogs_id=record_id, **item) for item in breakdown.items)
                await db.commit()
                return True
            except Exception:
                await db.rollback()
                raise

    async def ensure_for_order(self, shop: str, order: Order, existing: Optional[OrderCOGS] = None) -> OrderCOGS:
        """Return the recorded COGS for ``order``, creating it on first sight."""
        record = existing or await self.get(shop, order.id)
        if record is not None:
            return record

        breakdown = compute_cogs(order)
        # A begun write runs to completion even if the request is cancelled
        created = await asyncio.shield(self._insert(shop, order, breakdown))
        if created:
            logger.info(f"COGS recorded for {shop} order {order.name or order.id}: cost {breakdown.total_cost:.2f}")
        else:
            logger.info(f"COGS for {shop} order {order.id} was recorded concurrently, reading it back")

        record = await self.get(shop, order.id)
        if record is None:
            raise ServiceError(ErrorKind.INTERNAL, f"COGS record for order {order.id} vanished after insert")
        return record

    async def ensure_for_orders(self, shop: str, orders: list[Order]) -> list[OrderCOGS]:
        """One OrderCOGS per order; failing orders are logged and skipped."""
        if not orders:
            return []
        existing = await self._existing(shop, [o.id for o in orders])
        records = []
        for order in orders:
            try:
                records.append(await self.ensure_for_order(shop, order, existing.get(order.id)))
            except (SQLAlchemyError, ServiceError) as e:
                logger.error(f"COGS failed for {shop} order {order.id}: {e}")
        return records
