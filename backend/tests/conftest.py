"""
Shared fixtures: an isolated SQLite database per test, fake providers and
helpers for building orders and authenticated API clients.
"""

import os

os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./trackprofit_test.db"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["ENCRYPTION_KEY"] = ""

from datetime import datetime, timezone
from typing import Optional

import pytest

from trackprofit.errors import ErrorKind, ProviderError
from trackprofit.database import build_engine, build_session_factory, init_db
from trackprofit.schemas import AdInsight, Order, OrderLineItem, Shipment

SHOP = "test-shop.myshopify.com"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await engine.dispose()


# ── Builders ─────────────────────────────────────────────────────────
def make_order(
    order_id: str,
    total: float,
    items: tuple = (),
    created_at: Optional[datetime] = None,
    currency: Optional[str] = "DZD",
) -> Order:
    """``items`` are (unit_cost, quantity, price) tuples; unit_cost may be None."""
    return Order(
        id=order_id,
        name=f"#{order_id}",
        created_at=created_at or datetime.now(timezone.utc),
        total_price=total,
        currency=currency,
        line_items=[
            OrderLineItem(
                product_id=f"p{index}",
                variant_id=f"v{index}",
                title=f"Product {index}",
                quantity=quantity,
                price=price,
                unit_cost=unit_cost,
            )
            for index, (unit_cost, quantity, price) in enumerate(items)
        ],
    )


def make_shipment(tracking: str, status_id: int, shipping_fee: float = 0.0, cancel_fee: float = 0.0) -> Shipment:
    return Shipment(
        tracking=tracking,
        status_id=status_id,
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
        shipping_fee=shipping_fee,
        cancel_fee=cancel_fee,
    )


# ── Fake providers ───────────────────────────────────────────────────
class FakeOrders:
    def __init__(self, orders=None, error=None):
        self.orders = orders or []
        self.error = error

    async def list_all_orders(self, window):
        if self.error:
            raise self.error
        return list(self.orders)

    async def get_order(self, order_id):
        for order in self.orders:
            if order.id == order_id:
                return order
        raise ProviderError("orders", ErrorKind.NOT_FOUND, f"Order {order_id} not found")


class FakeAds:
    def __init__(self, insight: Optional[AdInsight] = None, error=None):
        self.insight = insight or AdInsight()
        self.error = error
        self.calls = []

    async def account_insights(self, account_id, window):
        self.calls.append((account_id, window))
        if self.error:
            raise self.error
        return self.insight


class FakeShipping:
    def __init__(self, shipments=None, error=None):
        self.shipments = shipments or []
        self.error = error

    async def list_shipments(self, shop, window):
        if self.error:
            raise self.error
        return list(self.shipments)
