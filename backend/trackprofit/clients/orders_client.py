"""
Storefront Admin GraphQL client: orders, single order lookup and variant cost updates.
"""

import logging
from typing import Any, Optional

import httpx

from trackprofit.clients.base import ProviderClient
from trackprofit.config import get_settings
from trackprofit.errors import ErrorKind, ProviderError
from trackprofit.schemas import Order, OrderLineItem, OrdersPage, Window
from trackprofit.utils import gid_tail, parse_datetime, to_float

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50
PAGE_PAUSE_SECONDS = 0.25

_ORDER_FIELDS = """
fragment OrderFields on Order {
  id
  name
  createdAt
  totalPriceSet { shopMoney { amount currencyCode } }
  lineItems(first: 50) {
    edges {
      node {
        title
        quantity
        originalUnitPriceSet { shopMoney { amount } }
        product { id title }
        variant {
          id
          price
          inventoryItem { id unitCost { amount } }
        }
      }
    }
  }
}
"""

ORDERS_QUERY = """
query Orders($first: Int!, $after: String, $query: String) {
  orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT, reverse: true) {
    pageInfo { hasNextPage endCursor }
    edges { node { ...OrderFields } }
  }
}
""" + _ORDER_FIELDS

ORDER_QUERY = """
query Order($id: ID!) {
  order(id: $id) { ...OrderFields }
}
""" + _ORDER_FIELDS

VARIANT_INVENTORY_QUERY = """
query VariantInventoryItem($id: ID!) {
  productVariant(id: $id) { id inventoryItem { id } }
}
"""

INVENTORY_COST_MUTATION = """
mutation InventoryItemUpdate($id: ID!, $input: InventoryItemInput!) {
  inventoryItemUpdate(id: $id, input: $input) {
    inventoryItem { id unitCost { amount } }
    userErrors { field message }
  }
}
"""


def _gid(kind: str, value: str) -> str:
    value = str(value)
    if value.startswith("gid://"):
        return value
    return f"gid://shopify/{kind}/{value}"


def _money(obj: Any) -> Optional[float]:
    """Read ``{shopMoney: {amount}}`` or ``{amount}`` money objects."""
    if not isinstance(obj, dict):
        return None
    if "shopMoney" in obj:
        obj = obj.get("shopMoney") or {}
    if obj.get("amount") is None:
        return None
    return to_float(obj.get("amount"))


def _currency(obj: Any) -> Optional[str]:
    if isinstance(obj, dict):
        return (obj.get("shopMoney") or {}).get("currencyCode")
    return None


def parse_order(node: Any) -> Optional[Order]:
    """Build an Order from a GraphQL node, or None when required fields are missing."""
    if not isinstance(node, dict) or not node.get("id"):
        return None
    created_at = parse_datetime(node.get("createdAt"))
    if created_at is None:
        return None

    items = []
    for edge in (node.get("lineItems") or {}).get("edges") or []:
        item = (edge or {}).get("node")
        if not isinstance(item, dict):
            continue
        variant = item.get("variant") or {}
        product = item.get("product") or {}
        inventory = variant.get("inventoryItem") or {}
        price = _money(item.get("originalUnitPriceSet"))
        if price is None:
            price = to_float(variant.get("price"))
        items.append(OrderLineItem(
            product_id=gid_tail(product.get("id")) or None,
            variant_id=gid_tail(variant.get("id")) or None,
            title=item.get("title") or product.get("title") or "",
            quantity=int(item.get("quantity") or 0),
            price=price,
            unit_cost=_money(inventory.get("unitCost")),
        ))

    return Order(
        id=gid_tail(node["id"]),
        name=node.get("name") or "",
        created_at=created_at,
        total_price=_money(node.get("totalPriceSet")) or 0.0,
        currency=_currency(node.get("totalPriceSet")),
        line_items=items,
    )


def build_search_query(window: Window) -> str:
    return (
        f"created_at:>={window.since.isoformat()}T00:00:00 "
        f"created_at:<={window.until.isoformat()}T23:59:59"
    )


class OrdersClient(ProviderClient):
    provider = "orders"

    def __init__(self, shop: str, access_token: str, api_version: Optional[str] = None, **kwargs):
        version = api_version or get_settings().shopify_api_version
        super().__init__(f"https://{shop}/admin/api/{version}", **kwargs)
        self.shop = shop
        self.access_token = access_token

    def _headers(self) -> dict:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }

    def _error_message(self, payload: Any) -> Optional[str]:
        if isinstance(payload, dict) and isinstance(payload.get("errors"), str):
            return payload["errors"]
        return super()._error_message(payload)

    def _classify(self, response: httpx.Response, payload: Any) -> Optional[ProviderError]:
        error = super()._classify(response, payload)
        if error is not None:
            return error
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if not errors:
            return None
        if isinstance(errors, str):
            return self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, errors)
        first = errors[0] if isinstance(errors, list) and errors else {}
        code = ((first.get("extensions") or {}).get("code") or "").upper()
        message = first.get("message") or "GraphQL error"
        if code == "THROTTLED":
            return self._error(ErrorKind.RATE_LIMITED, message)
        if code == "ACCESS_DENIED":
            return self._error(ErrorKind.AUTH_EXPIRED, message)
        return self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, message)

    async def _graphql(self, query: str, variables: dict) -> dict:
        payload = await self._request("POST", "/graphql.json", json={"query": query, "variables": variables})
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, "GraphQL response has no data")
        return data

    # ── Orders ────────────────────────────────────────────────────────
    async def list_orders(self, window: Window, cursor: Optional[str] = None, page_size: int = MAX_PAGE_SIZE) -> OrdersPage:
        """One page of orders created inside ``window``, newest first."""
        page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        data = await self._graphql(ORDERS_QUERY, {
            "first": page_size,
            "after": cursor,
            "query": build_search_query(window),
        })
        orders = data.get("orders")
        if not isinstance(orders, dict):
            logger.warning(f"orders: response for {self.shop} has no orders connection, treating as empty")
            return OrdersPage()

        nodes = []
        for edge in orders.get("edges") or []:
            order = parse_order((edge or {}).get("node"))
            if order is None:
                logger.warning(f"orders: skipping malformed order node for {self.shop}")
                continue
            nodes.append(order)

        page_info = orders.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
        return OrdersPage(nodes=nodes, next_cursor=next_cursor)

    async def list_all_orders(self, window: Window) -> list[Order]:
        """Every order in ``window``, paginating with a short pause between pages."""
        orders: list[Order] = []
        cursor = None
        while True:
            page = await self.list_orders(window, cursor=cursor)
            orders.extend(page.nodes)
            if not page.next_cursor:
                break
            cursor = page.next_cursor
            await self._sleep(PAGE_PAUSE_SECONDS)
        logger.info(f"orders: fetched {len(orders)} orders for {self.shop} ({window.since} → {window.until})")
        return orders

    async def get_order(self, order_id: str) -> Order:
        data = await self._graphql(ORDER_QUERY, {"id": _gid("Order", order_id)})
        node = data.get("order")
        if node is None:
            raise self._error(ErrorKind.NOT_FOUND, f"Order {order_id} not found")
        order = parse_order(node)
        if order is None:
            raise self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, f"Order {order_id} is malformed")
        return order

    # ── Costs ─────────────────────────────────────────────────────────
    async def update_variant_unit_cost(self, variant_id: str, cost: float) -> float:
        """Set the inventory unit cost behind a variant. Returns the stored cost."""
        if cost is None or cost < 0:
            raise self._error(ErrorKind.INVALID_INPUT, "Cost must be a non-negative number")

        data = await self._graphql(VARIANT_INVENTORY_QUERY, {"id": _gid("ProductVariant", variant_id)})
        variant = data.get("productVariant")
        if variant is None:
            raise self._error(ErrorKind.NOT_FOUND, f"Variant {variant_id} not found")
        inventory_item_id = (variant.get("inventoryItem") or {}).get("id")
        if not inventory_item_id:
            raise self._error(ErrorKind.INVALID_INPUT, f"Variant {variant_id} has no inventory item")

        data = await self._graphql(INVENTORY_COST_MUTATION, {
            "id": inventory_item_id,
            "input": {"cost": cost},
        })
        result = data.get("inventoryItemUpdate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            message = "; ".join(e.get("message", "") for e in user_errors if isinstance(e, dict))
            raise self._error(ErrorKind.INVALID_INPUT, message or "Cost update rejected")

        stored = _money((result.get("inventoryItem") or {}).get("unitCost"))
        logger.info(f"orders: unit cost of variant {variant_id} set to {cost} for {self.shop}")
        return stored if stored is not None else float(cost)
