#!/usr/bin/env python3
"""
Record COGS for every order of a shop over a window (default: the full allowed history).
Uses the storefront access token stored in the sessions table.
Run from backend/: python -m scripts.backfill_cogs my-shop.myshopify.com [preset]
"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def main(shop: str, preset: str):
    from sqlalchemy import select
    from trackprofit.clients.orders_client import OrdersClient
    from trackprofit.database import async_session, init_db
    from trackprofit.models import ShopSession
    from trackprofit.services.cogs_service import CogsService
    from trackprofit.services.date_window import resolve

    await init_db()
    async with async_session() as db:
        result = await db.execute(select(ShopSession).where(ShopSession.shop == shop).limit(1))
        session = result.scalar_one_or_none()
    if session is None:
        print(f"Error: no session stored for {shop}. Install the app on the shop first.")
        sys.exit(1)

    window = resolve(preset)
    orders = await OrdersClient(shop, session.access_token).list_all_orders(window)
    records = await CogsService(async_session).ensure_for_orders(shop, orders)
    total_cost = sum(r.total_cost for r in records)
    print(f"{shop}: {len(records)}/{len(orders)} orders have COGS ({window.since} → {window.until}), total cost {total_cost:.2f}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m scripts.backfill_cogs <shop> [preset]")
        sys.exit(1)
    asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else "lifetime"))
