"""
Dashboard Router — the profit-and-loss view for a window.
"""

import logging
import math
from typing import Optional
from fastapi import APIRouter, Depends, Query

from trackprofit.auth import ShopContext, require_shop
from trackprofit.deps import get_dashboard_service
from trackprofit.errors import invalid_input
from trackprofit.services.dashboard_service import DashboardService
from trackprofit.services.date_window import resolve

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def get_dashboard(
    window: str = Query("last_30_days"),
    since: Optional[str] = Query(None),
    until: Optional[str] = Query(None),
    ads_account: Optional[str] = Query(None, alias="adsAccount"),
    rate: float = Query(1.0),
    ctx: ShopContext = Depends(require_shop),
    service: DashboardService = Depends(get_dashboard_service),
):
    if not math.isfinite(rate) or rate <= 0:
        raise invalid_input("rate must be a positive number", reason="invalid_rate")
    resolved = resolve(window, since, until)
    result = await service.build_dashboard(ctx.shop, resolved, ads_account_id=ads_account, exchange_rate=rate)
    return {"success": True, **result.model_dump(mode="json", by_alias=True)}
