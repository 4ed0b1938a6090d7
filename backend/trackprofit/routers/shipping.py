"""
Shipping Router — courier credentials, parcel creation and province tariffs.
"""

import logging
from typing import Callable, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from trackprofit.auth import ShopContext, require_shop
from trackprofit.deps import CourierFactory, get_courier_factory, get_credential_store, get_shipping_factory
from trackprofit.errors import ErrorKind, ServiceError
from trackprofit.models import Provider
from trackprofit.schemas import ShipmentRequest
from trackprofit.services.credential_store import CredentialStore, StoredCredential
from trackprofit.services.date_window import resolve
from trackprofit.services.shipping_service import ShippingService

logger = logging.getLogger(__name__)
router = APIRouter()


class CourierCredentials(BaseModel):
    token: str = Field(min_length=1)
    key: str = Field(min_length=1)


@router.post("/credentials")
async def save_credentials(
    body: CourierCredentials,
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    courier_factory: CourierFactory = Depends(get_courier_factory),
):
    token, key = body.token.strip(), body.key.strip()
    courier = courier_factory(token, key)
    if not await courier.validate_credentials(token, key):
        raise ServiceError(ErrorKind.INVALID_INPUT, "The courier rejected these credentials", reason="invalid_credentials")
    await store.upsert(ctx.shop, Provider.COURIER, token, api_key=key)
    return {"success": True}


@router.post("/shipment")
async def create_shipment(
    body: ShipmentRequest,
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    shipping_factory: Callable[[StoredCredential], ShippingService] = Depends(get_shipping_factory),
):
    cred = await store.require(ctx.shop, Provider.COURIER)
    shipment = await shipping_factory(cred).create_shipment(ctx.shop, body)
    return {"success": True, "shipment": shipment.model_dump(mode="json", by_alias=True)}


@router.get("/shipments")
async def list_shipments(
    window: str = Query("last_30_days"),
    since: Optional[str] = Query(None),
    until: Optional[str] = Query(None),
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    shipping_factory: Callable[[StoredCredential], ShippingService] = Depends(get_shipping_factory),
):
    resolved = resolve(window, since, until)
    cred = await store.require(ctx.shop, Provider.COURIER)
    shipments = await shipping_factory(cred).list_shipments(ctx.shop, resolved)
    return {"success": True, "shipments": [s.model_dump(mode="json", by_alias=True) for s in shipments]}


@router.get("/wilayas")
async def list_wilayas(
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    courier_factory: CourierFactory = Depends(get_courier_factory),
):
    cred = await store.require(ctx.shop, Provider.COURIER)
    wilayas = await courier_factory(cred.token, cred.api_key or "").list_wilayas()
    return {"success": True, "wilayas": [w.model_dump(mode="json", by_alias=True) for w in wilayas]}
