"""
Authentication — resolves the merchant's session to a shop.

The session cookie (or an ``Authorization: Bearer`` header for API clients)
carries an HS256 token signed with SESSION_SECRET whose ``sid`` claim points
at a row of the storefront ``sessions`` table. That row gives the shop domain
and the storefront access token used by the orders client.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackprofit.config import get_settings
from trackprofit.database import get_session_factory
from trackprofit.models import ShopSession
from trackprofit.utils import utcnow

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_TTL = timedelta(days=7)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class ShopContext:
    shop: str
    access_token: str
    session_id: str


def create_session_token(session_id: str, shop: str, expires_in: timedelta = SESSION_TTL) -> str:
    """Sign a session token for ``session_id``. Issued by the install/login handshake."""
    expire = datetime.now(timezone.utc) + expires_in
    payload = {"sid": session_id, "shop": shop, "exp": expire}
    return jwt.encode(payload, get_settings().session_secret, algorithm=ALGORITHM)


def decode_session_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, get_settings().session_secret, algorithms=[ALGORITHM])
    except JWTError:
        return None


async def require_shop(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ShopContext:
    settings = get_settings()
    token = request.cookies.get(settings.session_cookie_name)
    if not token and credentials:
        token = credentials.credentials
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = decode_session_token(token)
    if not payload or not payload.get("sid"):
        raise HTTPException(status_code=401, detail="Invalid or expired session. Please reopen the app.")

    async with session_factory() as db:
        session = await db.get(ShopSession, payload["sid"])

    if session is None or (payload.get("shop") and payload["shop"] != session.shop):
        raise HTTPException(status_code=401, detail="Session not found")
    if session.expires is not None and session.expires <= utcnow():
        raise HTTPException(status_code=401, detail="Session expired. Please reopen the app.")

    return ShopContext(shop=session.shop, access_token=session.access_token, session_id=session.id)
