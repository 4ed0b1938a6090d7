"""
Products Router — merchant-entered unit costs.

New costs only affect orders seen afterwards; recorded COGS stay as they were.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from trackprofit.clients.orders_client import OrdersClient
from trackprofit.deps import get_orders_client

router = APIRouter()


class CostUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    variant_id: str = Field(alias="variantId", min_length=1)
    cost: float = Field(ge=0)


@router.post("/cost")
async def update_cost(body: CostUpdate, orders: OrdersClient = Depends(get_orders_client)):
    stored = await orders.update_variant_unit_cost(body.variant_id, body.cost)
    return {"success": True, "variantId": body.variant_id, "cost": stored}
