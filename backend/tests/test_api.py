"""
End-to-end tests for the HTTP layer with provider clients swapped for fakes
or MockTransport-backed clients.
"""

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from conftest import SHOP, FakeOrders, make_order
from trackprofit.auth import create_session_token
from trackprofit.clients.ads_client import AdsClient
from trackprofit.clients.base import RetryPolicy
from trackprofit.clients.courier_client import CourierClient
from trackprofit.clients.orders_client import OrdersClient
from trackprofit.database import get_session_factory
from trackprofit.deps import get_ads_factory, get_courier_factory, get_orders_client
from trackprofit.main import app
from trackprofit.models import ShopSession
from trackprofit.utils import utcnow

SESSION_ID = "offline_test-shop.myshopify.com"


def courier_handler(request):
    path = request.url.path
    if path.endswith("/tarification"):
        if request.headers["token"] == "bad":
            return httpx.Response(401, json={"fault": {"faultstring": "Invalid credentials"}})
        return httpx.Response(200, json=[{"IDWilaya": "16", "Wilaya": "Alger", "Domicile": "400", "Stopdesk": "250"}])
    if path.endswith("/add_colis"):
        return httpx.Response(200, json={"Colis": [{"MessageRetour": "Good"}]})
    if path.endswith("/lire"):
        parcels = json.loads(request.content)["Colis"]
        return httpx.Response(200, json={"Colis": [
            {
                "Tracking": p["Tracking"],
                "IDSituation": "5",
                "Situation": "Livrée",
                "Date_Creation": utcnow().strftime("%Y-%m-%d %H:%M:%S"),
                "Tarif_Livrée": "400",
                "Tarif_Annuler": "0",
            }
            for p in parcels
        ]})
    return httpx.Response(404, json={"fault": {"faultstring": "unknown endpoint"}})


def ads_handler(request):
    path = request.url.path
    if path.endswith("/oauth/access_token"):
        return httpx.Response(200, json={"access_token": "long-lived", "token_type": "bearer", "expires_in": 5184000})
    if path.endswith("/me/adaccounts"):
        return httpx.Response(200, json={"data": [
            {"id": "act_42", "account_id": "42", "name": "Main", "account_status": 1, "currency": "DZD"},
        ]})
    return httpx.Response(200, json={"data": []})


@pytest.fixture
async def api(session_factory):
    async with session_factory() as db:
        db.add(ShopSession(id=SESSION_ID, shop=SHOP, state="", access_token="shpat_test"))
        await db.commit()

    orders = FakeOrders([make_order("1001", 500.0, items=[(100.0, 2, 250.0)])])
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_orders_client] = lambda: orders
    app.dependency_overrides[get_courier_factory] = lambda: (
        lambda token, key: CourierClient(token, key, transport=httpx.MockTransport(courier_handler))
    )
    app.dependency_overrides[get_ads_factory] = lambda: (
        lambda token=None: AdsClient(
            access_token=token, app_id="app-id", app_secret="app-secret",
            transport=httpx.MockTransport(ads_handler),
        )
    )

    token = create_session_token(SESSION_ID, SHOP)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as client:
        yield client
    app.dependency_overrides.clear()


# ── Authentication ───────────────────────────────────────────────────

@pytest.mark.anyio
async def test_requests_without_session_are_rejected(session_factory):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/dashboard")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 401
    assert response.json()["reason"] == "unauthenticated"


@pytest.mark.anyio
async def test_unknown_session_is_rejected(api):
    token = create_session_token("missing-session", SHOP)
    response = await api.get("/api/dashboard", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


@pytest.mark.anyio
async def test_session_cookie_is_accepted(api):
    token = create_session_token(SESSION_ID, SHOP)
    response = await api.get(
        "/api/cogs",
        headers={"Authorization": "", "Cookie": f"trackprofit_session={token}"},
    )
    assert response.status_code == 200


# ── Dashboard ────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_dashboard(api):
    response = await api.get("/api/dashboard", params={"window": "last_7_days"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["stats"]["orderRevenue"] == 500.0
    assert body["stats"]["cogsCosts"] == 200.0
    assert body["stats"]["totalProfit"] == 300.0
    assert body["stats"]["effectiveROAS"] == 0.0
    assert body["warnings"] == []
    assert len(body["dailyStats"]) == 7
    assert body["topSellingProduct"]["quantity"] == 2


@pytest.mark.anyio
async def test_dashboard_with_unconnected_ads_account_warns(api):
    response = await api.get("/api/dashboard", params={"adsAccount": "act_42"})
    assert response.status_code == 200
    assert response.json()["warnings"] == ["ads:conflict"]


@pytest.mark.anyio
@pytest.mark.parametrize("params, reason", [
    ({"window": "custom", "since": "2024-02-01", "until": "2024-01-01"}, "inverted_window"),
    ({"window": "custom", "since": "2019-01-01", "until": "2020-01-01"}, "window_out_of_range"),
    ({"window": "fortnight"}, "unknown_preset"),
    ({"rate": "0"}, "invalid_rate"),
    ({"rate": "-1"}, "invalid_rate"),
    ({"rate": "nan"}, "invalid_rate"),
    ({"rate": "inf"}, "invalid_rate"),
])
async def test_dashboard_rejects_bad_windows(api, params, reason):
    response = await api.get("/api/dashboard", params=params)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["reason"] == reason


# ── COGS ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_record_order_cogs_and_summarise(api):
    response = await api.post("/api/cogs", json={"orderId": "1001"})
    assert response.status_code == 200
    cogs = response.json()["cogs"]
    assert cogs["totalCost"] == 200.0
    assert cogs["profit"] == 300.0
    assert cogs["items"][0]["quantity"] == 2

    again = await api.post("/api/cogs", json={"orderId": "1001"})
    assert again.json()["cogs"]["id"] == cogs["id"]

    summary = (await api.get("/api/cogs", params={"window": "last_7_days"})).json()
    assert summary["summary"]["totalOrders"] == 1
    assert summary["summary"]["profitMargin"] == 60.0


@pytest.mark.anyio
async def test_record_cogs_for_unknown_order(api):
    response = await api.post("/api/cogs", json={"orderId": "nope"})
    assert response.status_code == 404
    assert response.json()["reason"] == "not_found"


@pytest.mark.anyio
async def test_record_cogs_requires_order_id(api):
    response = await api.post("/api/cogs", json={})
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_input"


# ── Products ─────────────────────────────────────────────────────────

@pytest.mark.anyio
@pytest.mark.parametrize("upstream_hint, header, body", [
    ("7", "7", 7.0),
    ("0.5", "1", 0.5),
])
async def test_rate_limited_cost_update_sets_retry_after(api, upstream_hint, header, body):
    client = OrdersClient(
        SHOP, "shpat_test",
        transport=httpx.MockTransport(
            lambda r: httpx.Response(429, headers={"Retry-After": upstream_hint}, json={})
        ),
        retry=RetryPolicy(max_attempts=1),
    )
    app.dependency_overrides[get_orders_client] = lambda: client
    response = await api.post("/api/products/cost", json={"variantId": "70", "cost": 12.5})
    assert response.status_code == 429
    assert response.headers["Retry-After"] == header
    assert response.json()["retryAfter"] == body


@pytest.mark.anyio
async def test_negative_cost_is_rejected(api):
    response = await api.post("/api/products/cost", json={"variantId": "70", "cost": -1})
    assert response.status_code == 400


# ── Shipping ─────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_wilayas_require_courier_credentials(api):
    response = await api.get("/api/shipping/wilayas")
    assert response.status_code == 409
    assert response.json()["reason"] == "courier_not_connected"


@pytest.mark.anyio
async def test_invalid_courier_credentials_are_not_stored(api):
    response = await api.post("/api/shipping/credentials", json={"token": "bad", "key": "k"})
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_credentials"

    response = await api.get("/api/shipping/wilayas")
    assert response.status_code == 409


@pytest.mark.anyio
async def test_shipment_lifecycle(api):
    assert (await api.post("/api/shipping/credentials", json={"token": "tok", "key": "key"})).status_code == 200

    wilayas = (await api.get("/api/shipping/wilayas")).json()["wilayas"]
    assert wilayas[0]["name"] == "Alger"
    assert wilayas[0]["deliveryFee"] == 400.0

    created = await api.post("/api/shipping/shipment", json={
        "customerName": "Amina", "phone": "0550000000", "wilayaId": 16, "total": 3500, "orderId": "1001",
    })
    assert created.status_code == 200
    tracking = created.json()["shipment"]["tracking"]

    listed = (await api.get("/api/shipping/shipments", params={"window": "last_7_days"})).json()["shipments"]
    assert [s["tracking"] for s in listed] == [tracking]

    dashboard = (await api.get("/api/dashboard", params={"window": "last_7_days"})).json()
    assert dashboard["shipmentStatus"]["delivered"] == 1
    assert dashboard["stats"]["shippingAndCancelFees"] == 400.0


@pytest.mark.anyio
async def test_invalid_shipment_payload(api):
    await api.post("/api/shipping/credentials", json={"token": "tok", "key": "key"})
    response = await api.post("/api/shipping/shipment", json={"customerName": "Amina"})
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_input"


# ── Ads ──────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_connect_ads_and_list_accounts(api):
    response = await api.post("/api/ads/connect", json={"accessToken": "short-lived", "expiresIn": 3600})
    assert response.status_code == 200
    body = response.json()
    assert body["expiresAt"] is not None
    assert [a["id"] for a in body["accounts"]] == ["act_42"]

    accounts = (await api.get("/api/ads/accounts")).json()["accounts"]
    assert accounts[0]["accountId"] == "42"


@pytest.mark.anyio
async def test_connect_ads_needs_code_or_token(api):
    response = await api.post("/api/ads/connect", json={})
    assert response.status_code == 400
    assert response.json()["reason"] == "missing_token"


@pytest.mark.anyio
async def test_campaigns_need_ads_connection(api):
    response = await api.get("/api/ads/campaigns", params={"account": "act_42"})
    assert response.status_code == 409
    assert response.json()["reason"] == "ads_not_connected"
