"""
TrackProfit — Database Models
Per-shop credentials, the per-order COGS cache and the shipment tracking ledger.
Every row is partitioned by ``shop``.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    String, Text, Float, Integer, Boolean, DateTime, Uuid,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from trackprofit.crypto import EncryptedText
from trackprofit.database import Base
from trackprofit.utils import utcnow


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class Provider(str, enum.Enum):
    ADS = "ads"
    COURIER = "courier"


# ══════════════════════════════════════════════════════════════════════
#  SESSIONS (written by the storefront OAuth collaborator)
# ══════════════════════════════════════════════════════════════════════

class ShopSession(Base):
    """Storefront install session. Read-only from this service's point of view."""
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_online: Mapped[bool] = mapped_column(Boolean, default=False)
    scope: Mapped[str] = mapped_column(Text, nullable=True)
    expires: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)


# ══════════════════════════════════════════════════════════════════════
#  CREDENTIALS
# ══════════════════════════════════════════════════════════════════════

class Credential(Base):
    """Provider secret for one shop. At most one row per (shop, provider)."""
    __tablename__ = "credentials"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    access_token: Mapped[str] = mapped_column(EncryptedText, nullable=False)
    api_key: Mapped[str] = mapped_column(EncryptedText, nullable=True)
    refresh_token: Mapped[str] = mapped_column(EncryptedText, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    # Provider-side metadata as JSON text (ads: cached ad-account list)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("shop", "provider", name="uq_credentials_shop_provider"),
    )


# ══════════════════════════════════════════════════════════════════════
#  COGS
# ══════════════════════════════════════════════════════════════════════

class OrderCOGS(Base):
    """Recorded cost of goods for one order. Immutable once written."""
    __tablename__ = "order_cogs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    order_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    total_revenue: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    profit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(8), nullable=True)
    # When the order was placed (window filtering uses this)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    items: Mapped[list["OrderCOGSItem"]] = relationship(
        back_populates="order_cogs",
        cascade="all, delete-orphan",
        order_by="OrderCOGSItem.position",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("shop", "order_id", name="uq_order_cogs_shop_order"),
        Index("ix_order_cogs_shop_created", "shop", "created_at"),
    )


class OrderCOGSItem(Base):
    """One line item of an OrderCOGS record."""
    __tablename__ = "order_cogs_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_cogs_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("order_cogs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(64), nullable=True)
    variant_id: Mapped[str] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_revenue: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    profit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    order_cogs: Mapped["OrderCOGS"] = relationship(back_populates="items")


# ══════════════════════════════════════════════════════════════════════
#  SHIPMENTS
# ══════════════════════════════════════════════════════════════════════

class TrackedShipment(Base):
    """Tracking numbers created through this service, so the courier can be queried per shop."""
    __tablename__ = "tracked_shipments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    tracking: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    external_id: Mapped[str] = mapped_column(String(128), nullable=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_tracked_shipments_shop_created", "shop", "created_at"),
    )
