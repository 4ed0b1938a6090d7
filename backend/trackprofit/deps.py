"""
FastAPI dependency providers for clients and services.

Routers never construct provider clients directly; tests override these
providers (``app.dependency_overrides``) with fakes or MockTransport-backed clients.
"""

from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackprofit.auth import ShopContext, require_shop
from trackprofit.clients.ads_client import AdsClient
from trackprofit.clients.courier_client import CourierClient
from trackprofit.clients.orders_client import OrdersClient
from trackprofit.database import get_session_factory
from trackprofit.services.cogs_service import CogsService
from trackprofit.services.credential_store import CredentialStore, StoredCredential
from trackprofit.services.dashboard_service import DashboardService
from trackprofit.services.shipping_service import ShippingService

AdsFactory = Callable[[Optional[str]], AdsClient]
CourierFactory = Callable[[str, str], CourierClient]


def get_credential_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CredentialStore:
    return CredentialStore(session_factory)


def get_cogs_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CogsService:
    return CogsService(session_factory)


def get_orders_client(ctx: ShopContext = Depends(require_shop)) -> OrdersClient:
    return OrdersClient(ctx.shop, ctx.access_token)


def get_ads_factory() -> AdsFactory:
    def _build(token: Optional[str] = None) -> AdsClient:
        return AdsClient(access_token=token)
    return _build


def get_courier_factory() -> CourierFactory:
    def _build(token: str, key: str) -> CourierClient:
        return CourierClient(token, key)
    return _build


def get_shipping_factory(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    courier_factory: CourierFactory = Depends(get_courier_factory),
) -> Callable[[StoredCredential], ShippingService]:
    def _build(cred: StoredCredential) -> ShippingService:
        return ShippingService(session_factory, courier_factory(cred.token, cred.api_key or ""))
    return _build


def get_dashboard_service(
    cogs: CogsService = Depends(get_cogs_service),
    store: CredentialStore = Depends(get_credential_store),
    orders: OrdersClient = Depends(get_orders_client),
    ads_factory: AdsFactory = Depends(get_ads_factory),
    shipping_factory: Callable[[StoredCredential], ShippingService] = Depends(get_shipping_factory),
) -> DashboardService:
    return DashboardService(cogs, store, orders, ads_factory, shipping_factory)
