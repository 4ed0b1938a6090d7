"""
Token Service — the explicit ads connect / reconnect flow.

Exchanges an OAuth code (or a short-lived token from the client-side SDK) for a
long-lived token, stores it, and caches the reachable ad accounts on the
credential so the account picker does not hit the provider on every render.
"""

import logging
from datetime import timedelta
from typing import Optional

from trackprofit.clients.ads_client import AdsClient
from trackprofit.errors import ErrorKind, ProviderError, invalid_input
from trackprofit.models import Provider
from trackprofit.schemas import AdAccount, TokenGrant
from trackprofit.services.credential_store import CredentialStore
from trackprofit.utils import utcnow

logger = logging.getLogger(__name__)


async def _grant_from_token(ads: AdsClient, access_token: str, expires_in: Optional[int]) -> TokenGrant:
    """Upgrade a client-side token to a long-lived one; keep it as-is when no app secret is configured."""
    try:
        return await ads.exchange_for_long_lived(access_token)
    except ProviderError as e:
        if e.kind is not ErrorKind.CONFLICT:
            raise
        logger.warning("Ads app secret not configured, storing the client-side token without exchange")
        expires_at = utcnow() + timedelta(seconds=expires_in) if expires_in else None
        return TokenGrant(access_token=access_token, expires_at=expires_at)


async def refresh_account_cache(store: CredentialStore, ads: AdsClient, shop: str, token: str) -> list[AdAccount]:
    accounts = await ads.list_ad_accounts(token)
    await store.update_metadata(
        shop, Provider.ADS, [a.model_dump(mode="json", by_alias=True) for a in accounts]
    )
    logger.info(f"Cached {len(accounts)} ad accounts for {shop}")
    return accounts


async def connect_ads(
    store: CredentialStore,
    ads: AdsClient,
    shop: str,
    code: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    access_token: Optional[str] = None,
    expires_in: Optional[int] = None,
) -> dict:
    """Store a long-lived ads token for ``shop`` and cache its ad accounts."""
    if code:
        if not redirect_uri:
            raise invalid_input("redirectUri is required with an OAuth code", reason="missing_redirect_uri")
        grant = await ads.exchange_short_lived_token(code, redirect_uri)
    elif access_token:
        grant = await _grant_from_token(ads, access_token, expires_in)
    else:
        raise invalid_input("Provide either an OAuth code or an access token", reason="missing_token")

    await store.upsert(
        shop, Provider.ADS, grant.access_token,
        expires_at=grant.expires_at, refresh_token=grant.refresh_token,
    )
    logger.info(f"Ads connected for {shop}, token expires at {grant.expires_at}")

    accounts: list[AdAccount] = []
    try:
        accounts = await refresh_account_cache(store, ads, shop, grant.access_token)
    except ProviderError as e:
        # The token is stored; the picker can be refreshed later
        logger.warning(f"Ad account fetch failed after connect for {shop}: {e}")

    return {
        "expiresAt": grant.expires_at.isoformat() if grant.expires_at else None,
        "accounts": [a.model_dump(mode="json", by_alias=True) for a in accounts],
    }


async def get_ad_accounts(store: CredentialStore, ads: AdsClient, shop: str, refresh: bool = False) -> list[dict]:
    """Cached ad accounts, or a fresh list when ``refresh`` is set or the cache is empty."""
    cred = await store.require(shop, Provider.ADS)
    if not refresh and isinstance(cred.metadata, list) and cred.metadata:
        return cred.metadata
    accounts = await refresh_account_cache(store, ads, shop, cred.token)
    return [a.model_dump(mode="json", by_alias=True) for a in accounts]
