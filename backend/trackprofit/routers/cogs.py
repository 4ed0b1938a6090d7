"""
COGS Router — record one order's cost and summarise recorded costs for a window.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from trackprofit.auth import ShopContext, require_shop
from trackprofit.clients.orders_client import OrdersClient
from trackprofit.deps import get_cogs_service, get_orders_client
from trackprofit.services.cogs_service import CogsService, cogs_to_dict
from trackprofit.services.date_window import resolve

router = APIRouter()


# ── Schemas ──────────────────────────────────────────────────────────
class CogsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)


@router.post("")
async def ensure_order_cogs(
    body: CogsRequest,
    ctx: ShopContext = Depends(require_shop),
    orders: OrdersClient = Depends(get_orders_client),
    cogs: CogsService = Depends(get_cogs_service),
):
    order = await orders.get_order(body.order_id)
    record = await cogs.ensure_for_order(ctx.shop, order)
    return {"success": True, "cogs": cogs_to_dict(record)}


@router.get("")
async def cogs_summary(
    window: str = Query("last_30_days"),
    since: Optional[str] = Query(None),
    until: Optional[str] = Query(None),
    ctx: ShopContext = Depends(require_shop),
    cogs: CogsService = Depends(get_cogs_service),
):
    resolved = resolve(window, since, until)
    data = await cogs.aggregate(ctx.shop, resolved)
    return {"success": True, "window": resolved.as_strings(), **data}
