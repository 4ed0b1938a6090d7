"""
Ads Router — connect the social-ads account, pick an ad account, list and create campaigns.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from trackprofit.auth import ShopContext, require_shop
from trackprofit.deps import AdsFactory, get_ads_factory, get_credential_store
from trackprofit.models import Provider
from trackprofit.schemas import CampaignSpec
from trackprofit.services.credential_store import CredentialStore
from trackprofit.services.date_window import resolve
from trackprofit.services.token_service import connect_ads, get_ad_accounts

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Schemas ──────────────────────────────────────────────────────────
class ConnectRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    access_token: Optional[str] = None
    expires_in: Optional[int] = Field(default=None, gt=0)


class CampaignCreate(CampaignSpec):
    account_id: str = Field(min_length=1)


# ── Endpoints ────────────────────────────────────────────────────────
@router.post("/connect")
async def connect(
    body: ConnectRequest,
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    ads_factory: AdsFactory = Depends(get_ads_factory),
):
    result = await connect_ads(
        store,
        ads_factory(None),
        ctx.shop,
        code=body.code,
        redirect_uri=body.redirect_uri,
        access_token=body.access_token,
        expires_in=body.expires_in,
    )
    return {"success": True, **result}


@router.get("/accounts")
async def list_accounts(
    refresh: bool = Query(False),
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    ads_factory: AdsFactory = Depends(get_ads_factory),
):
    accounts = await get_ad_accounts(store, ads_factory(None), ctx.shop, refresh=refresh)
    return {"success": True, "accounts": accounts}


@router.get("/campaigns")
async def list_campaigns(
    account: str = Query(..., min_length=1),
    window: str = Query("last_30_days"),
    since: Optional[str] = Query(None),
    until: Optional[str] = Query(None),
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    ads_factory: AdsFactory = Depends(get_ads_factory),
):
    resolved = resolve(window, since, until)
    cred = await store.require(ctx.shop, Provider.ADS)
    campaigns, totals = await ads_factory(cred.token).campaigns_with_insights(account, resolved)
    return {
        "success": True,
        "window": resolved.as_strings(),
        "campaigns": [c.model_dump(mode="json", by_alias=True) for c in campaigns],
        "totals": totals.model_dump(mode="json", by_alias=True, exclude={"daily"}),
    }


@router.post("/campaign")
async def create_campaign(
    body: CampaignCreate,
    ctx: ShopContext = Depends(require_shop),
    store: CredentialStore = Depends(get_credential_store),
    ads_factory: AdsFactory = Depends(get_ads_factory),
):
    cred = await store.require(ctx.shop, Provider.ADS)
    spec = CampaignSpec(**body.model_dump(exclude={"account_id"}))
    created = await ads_factory(cred.token).create_campaign(body.account_id, spec)
    logger.info(f"Campaign {created.campaign_id} created for {ctx.shop}")
    return {"success": True, **created.model_dump(mode="json", by_alias=True)}
