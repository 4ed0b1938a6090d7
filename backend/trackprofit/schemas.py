"""
Validated records exchanged between provider clients, services and routers.

Provider payloads are parsed into these models at the client boundary, so the
aggregator only ever sees typed values. Output models serialise to camelCase.
"""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Window ───────────────────────────────────────────────────────────
class Window(BaseModel):
    """Inclusive [since, until] pair of local calendar dates."""
    since: date
    until: date

    def contains(self, moment: date | datetime | None) -> bool:
        if moment is None:
            return False
        day = moment.date() if isinstance(moment, datetime) else moment
        return self.since <= day <= self.until

    def as_strings(self) -> dict:
        return {"since": self.since.isoformat(), "until": self.until.isoformat()}


# ── Orders ───────────────────────────────────────────────────────────
class OrderLineItem(BaseModel):
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    title: str = ""
    quantity: int = 0
    price: float = 0.0
    # None when the merchant has not entered a cost
    unit_cost: Optional[float] = None


class Order(BaseModel):
    id: str
    name: str = ""
    created_at: datetime
    total_price: float = 0.0
    currency: Optional[str] = None
    line_items: list[OrderLineItem] = Field(default_factory=list)


class OrdersPage(BaseModel):
    nodes: list[Order] = Field(default_factory=list)
    next_cursor: Optional[str] = None


# ── Shipments ────────────────────────────────────────────────────────
class Shipment(CamelModel):
    tracking: str
    status_id: int
    status: str = ""
    created_at: Optional[datetime] = None
    total: float = 0.0
    shipping_fee: float = 0.0
    cancel_fee: float = 0.0
    external_id: Optional[str] = None
    wilaya_id: Optional[int] = None
    order_id: Optional[str] = None


class Wilaya(CamelModel):
    id: int
    name: str
    delivery_fee: float = 0.0
    stop_desk_fee: float = 0.0
    cancel_fee: float = 0.0


class ShipmentRequest(CamelModel):
    """Parcel to hand over to the courier."""
    customer_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    phone_b: str = ""
    address: str = ""
    wilaya_id: int = Field(ge=1)
    commune: str = ""
    total: float = Field(ge=0)
    note: str = ""
    products: str = ""
    # 0 = home delivery, 1 = stop desk
    delivery_type: int = 0
    # 0 = normal parcel, 1 = exchange
    package_type: int = 0
    order_id: Optional[str] = None
    external_id: Optional[str] = None


# ── Ads ──────────────────────────────────────────────────────────────
class DailyInsight(CamelModel):
    day: date = Field(alias="date")
    spend: float = 0.0
    impressions: int = 0
    purchase_value: float = 0.0


class AdInsight(CamelModel):
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    purchases: int = 0
    purchase_value: float = 0.0
    currency: Optional[str] = None
    daily: list[DailyInsight] = Field(default_factory=list)


class AdAccount(CamelModel):
    id: str
    account_id: str
    name: str = ""
    status: str = "UNKNOWN"
    status_code: Optional[int] = None
    currency: Optional[str] = None


class CampaignInsight(CamelModel):
    id: str
    name: str = ""
    status: str = ""
    objective: Optional[str] = None
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    purchases: int = 0
    purchase_value: float = 0.0
    roas: float = 0.0


class CampaignSpec(CamelModel):
    name: str = Field(min_length=1)
    objective: str = "OUTCOME_SALES"
    status: str = "PAUSED"
    budget_type: str = "daily"
    # Minor currency units, as the ads API expects
    budget: Optional[int] = Field(default=None, gt=0)
    optimization_goal: Optional[str] = None
    billing_event: str = "IMPRESSIONS"
    targeting: Optional[dict] = None


class CreatedCampaign(CamelModel):
    campaign_id: str
    ad_set_id: Optional[str] = None


class TokenGrant(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None


# ── Dashboard ────────────────────────────────────────────────────────
class DashboardStats(CamelModel):
    order_revenue: float = 0.0
    shipping_and_cancel_fees: float = 0.0
    cogs_costs: float = 0.0
    ad_costs: float = 0.0
    total_profit: float = 0.0
    total_orders: int = 0
    total_shipments: int = 0
    ad_revenue: float = 0.0
    ad_purchases: int = 0
    ad_impressions: int = 0
    roas: float = 0.0
    effective_roas: float = Field(default=0.0, alias="effectiveROAS")
    mer: float = 0.0


class ShipmentStatusCounts(CamelModel):
    pending: int = 0
    delivered: int = 0
    returned: int = 0


class DailyStat(CamelModel):
    day: date = Field(alias="date")
    order_revenue: float = 0.0
    cogs: float = 0.0
    shipping_and_cancel_fees: float = 0.0
    ad_costs: float = 0.0
    total_profit: float = 0.0
    order_count: int = 0
    shipment_count: int = 0


class ProductStat(CamelModel):
    product_id: Optional[str] = None
    title: str = ""
    quantity: int = 0
    revenue: float = 0.0
    cost: float = 0.0
    profit: float = 0.0


class DashboardResult(CamelModel):
    window: Window
    stats: DashboardStats = Field(default_factory=DashboardStats)
    shipment_status: ShipmentStatusCounts = Field(default_factory=ShipmentStatusCounts)
    daily_stats: list[DailyStat] = Field(default_factory=list)
    top_selling_product: Optional[ProductStat] = None
    most_profitable_product: Optional[ProductStat] = None
    warnings: list[str] = Field(default_factory=list)
