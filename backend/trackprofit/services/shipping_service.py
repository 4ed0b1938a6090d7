"""
Shipping Service — courier parcels created from this backend.

The courier's read endpoint is keyed by tracking number, so every parcel we
create is recorded in ``tracked_shipments``. Listing a window reads those
tracking numbers back and asks the courier for their live state.
"""

import logging
from datetime import datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackprofit.clients.courier_client import CourierClient
from trackprofit.database import dialect_insert
from trackprofit.models import TrackedShipment
from trackprofit.schemas import Shipment, ShipmentRequest, Window
from trackprofit.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class ShippingService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], courier: CourierClient):
        self._session_factory = session_factory
        self.courier = courier

    async def record(self, shop: str, shipment: Shipment) -> None:
        """Remember a tracking number for ``shop`` (no-op when already known)."""
        async with self._session_factory() as db:
            stmt = dialect_insert(db, TrackedShipment).values(
                shop=shop,
                tracking=shipment.tracking,
                external_id=shipment.external_id,
                order_id=shipment.order_id,
                created_at=to_naive_utc(shipment.created_at) if shipment.created_at else utcnow(),
            ).on_conflict_do_nothing(index_elements=["tracking"])
            await db.execute(stmt)
            await db.commit()

    async def trackings(self, shop: str, window: Window) -> list[str]:
        start = datetime.combine(window.since, time.min)
        end = datetime.combine(window.until + timedelta(days=1), time.min)
        async with self._session_factory() as db:
            result = await db.execute(
                select(TrackedShipment.tracking).where(
                    TrackedShipment.shop == shop,
                    TrackedShipment.created_at >= start,
                    TrackedShipment.created_at < end,
                )
            )
            return list(result.scalars())

    async def create_shipment(self, shop: str, payload: ShipmentRequest) -> Shipment:
        shipment = await self.courier.create_shipment(payload)
        await self.record(shop, shipment)
        logger.info(f"Shipment {shipment.tracking} created for {shop}")
        return shipment

    async def list_shipments(self, shop: str, window: Window) -> list[Shipment]:
        trackings = await self.trackings(shop, window)
        if not trackings:
            return []
        return await self.courier.list_shipments(window, trackings)
