"""
Courier REST client (parcels, parcel status, province tariffs).

Credentials are two opaque strings sent as the ``token`` and ``key`` headers.
Every endpoint is a POST with a JSON body; errors come back as
``{"fault": {"faultstring": ...}}``.
"""

import logging
import random
import string
import time
from datetime import datetime
from typing import Any, Optional

import httpx

from trackprofit.clients.base import ProviderClient
from trackprofit.config import get_settings
from trackprofit.errors import ErrorKind, ProviderError
from trackprofit.schemas import Shipment, ShipmentRequest, Wilaya, Window
from trackprofit.utils import parse_datetime, to_float, utcnow

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase

# Status ids reported by the courier
STATUS_PENDING = {1, 2, 3, 4, 7}
STATUS_DELIVERED = {5}
STATUS_RETURNED = {6}
READ_BATCH_SIZE = 50


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_tracking() -> str:
    """``ZR`` + base36 millisecond timestamp + three random base36 characters."""
    suffix = "".join(random.choices(_BASE36, k=3))
    return f"ZR{_base36(int(time.time() * 1000))}{suffix}"


def generate_external_id() -> str:
    return f"TP{int(time.time() * 1000)}{random.randint(100, 999)}"


def _parse_created(raw: dict) -> Optional[datetime]:
    created = parse_datetime(raw.get("Date_Creation"))
    if created is None and raw.get("Date_Creation"):
        try:
            created = datetime.strptime(str(raw["Date_Creation"]), "%Y-%m-%d %H:%M:%S")
        except ValueError:
            created = None
    if created is None and raw.get("DateA"):
        try:
            created = datetime.strptime(str(raw["DateA"])[:8], "%Y%m%d")
        except ValueError:
            created = None
    return created


def parse_shipment(raw: Any) -> Optional[Shipment]:
    """Build a Shipment from a ``/lire`` row, or None when tracking/status are missing."""
    if not isinstance(raw, dict) or not raw.get("Tracking"):
        return None
    try:
        status_id = int(raw.get("IDSituation"))
    except (TypeError, ValueError):
        return None
    wilaya = raw.get("IDWilaya")
    return Shipment(
        tracking=str(raw["Tracking"]),
        status_id=status_id,
        status=raw.get("Situation") or "",
        created_at=_parse_created(raw),
        total=to_float(raw.get("Total")),
        shipping_fee=to_float(raw.get("Tarif_Livrée")),
        cancel_fee=to_float(raw.get("Tarif_Annuler")),
        external_id=raw.get("id_Externe") or None,
        wilaya_id=int(wilaya) if str(wilaya or "").isdigit() else None,
    )


def parse_wilaya(raw: Any) -> Optional[Wilaya]:
    if not isinstance(raw, dict) or raw.get("IDWilaya") is None:
        return None
    try:
        wilaya_id = int(raw["IDWilaya"])
    except (TypeError, ValueError):
        return None
    return Wilaya(
        id=wilaya_id,
        name=raw.get("Wilaya") or "",
        delivery_fee=to_float(raw.get("Domicile")),
        stop_desk_fee=to_float(raw.get("Stopdesk")),
        cancel_fee=to_float(raw.get("Annuler")),
    )


class CourierClient(ProviderClient):
    provider = "courier"

    def __init__(self, token: str, key: str, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or get_settings().courier_base_url, **kwargs)
        self.token = token.strip()
        self.key = key.strip()

    def _headers(self) -> dict:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "token": self.token,
            "key": self.key,
        }

    def _error_message(self, payload: Any) -> Optional[str]:
        if isinstance(payload, dict) and isinstance(payload.get("fault"), dict):
            return payload["fault"].get("faultstring")
        return super()._error_message(payload)

    def _classify(self, response: httpx.Response, payload: Any) -> Optional[ProviderError]:
        error = super()._classify(response, payload)
        if error is not None:
            return error
        if isinstance(payload, dict) and isinstance(payload.get("fault"), dict):
            return self._error(ErrorKind.INVALID_INPUT, self._error_message(payload) or "Courier rejected the request")
        return None

    async def _tarification(self) -> list:
        payload = await self._request("POST", "/tarification", json={})
        if not isinstance(payload, list):
            raise self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, "Tariff response is not a list")
        return payload

    # ── Credentials & reference data ──────────────────────────────────
    async def validate_credentials(self, token: Optional[str] = None, key: Optional[str] = None) -> bool:
        """True when the courier accepts the token/key pair."""
        client = self if token is None and key is None else CourierClient(
            token or self.token, key or self.key,
            base_url=self.base_url, timeout=self.timeout,
            transport=self._transport, retry=self.retry, sleep=self._sleep,
        )
        try:
            await client._tarification()
        except ProviderError as e:
            if e.kind in (ErrorKind.AUTH_EXPIRED, ErrorKind.INVALID_INPUT):
                logger.info(f"courier: credentials rejected ({e.message})")
                return False
            raise
        return True

    async def list_wilayas(self) -> list[Wilaya]:
        wilayas = []
        for row in await self._tarification():
            wilaya = parse_wilaya(row)
            if wilaya is None:
                logger.warning("courier: skipping malformed tariff row")
                continue
            wilayas.append(wilaya)
        return wilayas

    # ── Parcels ───────────────────────────────────────────────────────
    async def create_shipment(self, payload: ShipmentRequest) -> Shipment:
        """Hand a parcel to the courier. Returns the new shipment in its initial state."""
        tracking = generate_tracking()
        external_id = payload.external_id or generate_external_id()
        parcel = {
            "Tracking": tracking,
            "TypeLivraison": str(payload.delivery_type),
            "TypeColis": str(payload.package_type),
            "Confrimee": "1",
            "Client": payload.customer_name,
            "MobileA": payload.phone,
            "MobileB": payload.phone_b,
            "Adresse": payload.address,
            "IDWilaya": str(payload.wilaya_id),
            "Commune": payload.commune,
            "Total": str(payload.total),
            "Note": payload.note,
            "TProduit": payload.products,
            "id_Externe": external_id,
            "Source": "",
        }
        await self._request("POST", "/add_colis", json={"Colis": [parcel]})
        logger.info(f"courier: created parcel {tracking}")
        return Shipment(
            tracking=tracking,
            status_id=1,
            status="En Préparation",
            created_at=utcnow(),
            total=payload.total,
            external_id=external_id,
            wilaya_id=payload.wilaya_id,
            order_id=payload.order_id,
        )

    async def read_shipments(self, trackings: list[str]) -> list[Shipment]:
        """Live state of the given parcels, batched."""
        shipments: list[Shipment] = []
        for start in range(0, len(trackings), READ_BATCH_SIZE):
            batch = trackings[start:start + READ_BATCH_SIZE]
            payload = await self._request("POST", "/lire", json={"Colis": [{"Tracking": t} for t in batch]})
            if isinstance(payload, dict):
                rows = payload.get("Colis")
            else:
                rows = payload
            if not isinstance(rows, list):
                logger.warning("courier: /lire response has no parcel list, treating as empty")
                continue
            for row in rows:
                shipment = parse_shipment(row)
                if shipment is None:
                    logger.warning("courier: skipping malformed parcel row")
                    continue
                shipments.append(shipment)
        return shipments

    async def list_shipments(self, window: Window, trackings: list[str]) -> list[Shipment]:
        """Parcels among ``trackings`` created inside ``window``."""
        if not trackings:
            return []
        shipments = await self.read_shipments(trackings)
        return [s for s in shipments if s.created_at is None or window.contains(s.created_at)]
