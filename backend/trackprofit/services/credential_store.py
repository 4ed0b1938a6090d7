"""
Credential Store — one provider secret per (shop, provider).

Tokens are encrypted by the ``EncryptedText`` column type; this module only
sees plaintext. The store never refreshes tokens itself: a credential within
EXPIRY_BUFFER of its expiry is reported as ``auth_expired`` and the merchant
reconnects through ``POST /api/ads/connect``.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackprofit.database import dialect_insert
from trackprofit.errors import ErrorKind, ServiceError
from trackprofit.models import Credential, Provider
from trackprofit.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

EXPIRY_BUFFER = timedelta(seconds=60)


@dataclass
class StoredCredential:
    shop: str
    provider: str
    token: str
    api_key: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: Any = None
    updated_at: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= utcnow() + EXPIRY_BUFFER


def _decode_metadata(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Credential metadata is not valid JSON, ignoring")
        return None


def _to_stored(row: Credential) -> StoredCredential:
    return StoredCredential(
        shop=row.shop,
        provider=row.provider,
        token=row.access_token,
        api_key=row.api_key,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        metadata=_decode_metadata(row.metadata_json),
        updated_at=row.updated_at,
    )


def _provider_value(provider) -> str:
    return provider.value if isinstance(provider, Provider) else str(provider)


class CredentialStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, shop: str, provider) -> Optional[StoredCredential]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Credential).where(
                    Credential.shop == shop,
                    Credential.provider == _provider_value(provider),
                )
            )
            row = result.scalar_one_or_none()
            return _to_stored(row) if row else None

    async def require(self, shop: str, provider) -> StoredCredential:
        """Return a usable credential or raise ``conflict`` (missing) / ``auth_expired`` (stale)."""
        name = _provider_value(provider)
        cred = await self.get(shop, name)
        if cred is None:
            raise ServiceError(
                ErrorKind.CONFLICT,
                f"No {name} credentials configured for this shop",
                reason=f"{name}_not_connected",
            )
        if cred.is_expired:
            raise ServiceError(
                ErrorKind.AUTH_EXPIRED,
                f"The {name} token has expired; reconnect the account",
                reason="auth_expired",
            )
        return cred

    async def upsert(
        self,
        shop: str,
        provider,
        token: str,
        expires_at: Optional[datetime] = None,
        metadata: Any = None,
        api_key: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> StoredCredential:
        """Insert or replace the (shop, provider) credential in one statement."""
        name = _provider_value(provider)
        now = utcnow()
        values = {
            "shop": shop,
            "provider": name,
            "access_token": token,
            "api_key": api_key,
            "refresh_token": refresh_token,
            "expires_at": to_naive_utc(expires_at) if expires_at else None,
            "metadata_json": json.dumps(metadata) if metadata is not None else None,
            "updated_at": now,
        }
        async with self._session_factory() as db:
            stmt = dialect_insert(db, Credential).values(created_at=now, **values)
            update_cols = {k: stmt.excluded[k] for k in values if k not in ("shop", "provider")}
            if metadata is None:
                # Keep the cached metadata when the caller did not supply new metadata
                update_cols.pop("metadata_json")
            if refresh_token is None:
                update_cols.pop("refresh_token")
            stmt = stmt.on_conflict_do_update(index_elements=["shop", "provider"], set_=update_cols)
            await db.execute(stmt)
            await db.commit()
        logger.info(f"Stored {name} credential for {shop}")
        return await self.get(shop, name)

    async def update_metadata(self, shop: str, provider, metadata: Any) -> None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Credential).where(
                    Credential.shop == shop,
                    Credential.provider == _provider_value(provider),
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return
            row.metadata_json = json.dumps(metadata)
            row.updated_at = utcnow()
            await db.commit()
