"""
Tests for the ads Graph API client: insights parsing, error codes, campaign
creation and the OAuth token exchange.
"""

import json
from datetime import date
from urllib.parse import parse_qs

import httpx
import pytest

from trackprofit.clients.ads_client import AdsClient, account_path
from trackprofit.errors import ErrorKind, ProviderError
from trackprofit.schemas import CampaignSpec, Window

WINDOW = Window(since=date(2024, 1, 1), until=date(2024, 1, 2))


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_client(handler, access_token="ads-token", **kwargs):
    sleep = RecordingSleep()
    client = AdsClient(
        access_token=access_token, app_id="app-id", app_secret="app-secret",
        transport=httpx.MockTransport(handler), sleep=sleep, **kwargs,
    )
    return client, sleep


def insight_row(day, spend, value, purchases="2"):
    return {
        "spend": spend,
        "impressions": "1000",
        "clicks": "30",
        "actions": [{"action_type": "link_click", "value": "30"}, {"action_type": "purchase", "value": purchases}],
        "action_values": [{"action_type": "purchase", "value": value}],
        "account_currency": "USD",
        "date_start": day,
    }


def test_account_path_adds_prefix_once():
    assert account_path("123") == "act_123"
    assert account_path("act_123") == "act_123"


@pytest.mark.anyio
async def test_account_insights_sums_daily_rows():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json={"data": [
            insight_row("2024-01-01", "10.50", "40.00"),
            insight_row("2024-01-02", "4.50", "20.00", purchases="1"),
        ]})

    client, _ = make_client(handler)
    insight = await client.account_insights("123", WINDOW)

    assert insight.spend == pytest.approx(15.0)
    assert insight.purchase_value == pytest.approx(60.0)
    assert insight.purchases == 3
    assert insight.impressions == 2000
    assert insight.currency == "USD"
    assert [d.day for d in insight.daily] == [date(2024, 1, 1), date(2024, 1, 2)]

    url = seen[0]
    assert url.path == "/v18.0/act_123/insights"
    assert json.loads(url.params["time_range"]) == {"since": "2024-01-01", "until": "2024-01-02"}
    assert url.params["level"] == "account"
    assert url.params["time_increment"] == "1"
    assert url.params["access_token"] == "ads-token"


@pytest.mark.anyio
async def test_paging_follows_after_cursor():
    def handler(request):
        if "after" not in request.url.params:
            return httpx.Response(200, json={
                "data": [{"id": "act_1", "account_id": "1", "name": "One", "account_status": 1, "currency": "USD"}],
                "paging": {"cursors": {"after": "abc"}, "next": "https://graph.facebook.com/next"},
            })
        assert request.url.params["after"] == "abc"
        return httpx.Response(200, json={
            "data": [{"id": "act_2", "account_id": "2", "name": "Two", "account_status": 2}],
            "paging": {"cursors": {"after": "def"}},
        })

    client, _ = make_client(handler)
    accounts = await client.list_ad_accounts()
    assert [(a.id, a.status) for a in accounts] == [("act_1", "ACTIVE"), ("act_2", "DISABLED")]


@pytest.mark.anyio
async def test_expired_token_code_is_auth_expired():
    client, _ = make_client(lambda request: httpx.Response(400, json={
        "error": {"message": "Error validating access token", "type": "OAuthException", "code": 190},
    }))
    with pytest.raises(ProviderError) as exc:
        await client.account_insights("123", WINDOW)
    assert exc.value.kind is ErrorKind.AUTH_EXPIRED
    assert exc.value.warning == "ads:auth_expired"


@pytest.mark.anyio
async def test_throttle_code_is_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(400, json={"error": {"message": "User request limit reached", "code": 17}})
        return httpx.Response(200, json={"data": []})

    client, sleep = make_client(handler)
    insight = await client.account_insights("123", WINDOW)
    assert insight.spend == 0.0
    assert len(calls) == 2
    assert len(sleep.delays) == 1


@pytest.mark.anyio
async def test_missing_token_is_not_connected():
    client, _ = make_client(lambda request: pytest.fail("no request expected"), access_token=None)
    with pytest.raises(ProviderError) as exc:
        await client.account_insights("123", WINDOW)
    assert exc.value.kind is ErrorKind.AUTH_EXPIRED
    assert exc.value.reason == "ads_not_connected"


@pytest.mark.anyio
async def test_campaigns_with_insights_merges_rows():
    def handler(request):
        if request.url.path.endswith("/campaigns"):
            return httpx.Response(200, json={"data": [
                {"id": "c1", "name": "Winter", "status": "ACTIVE", "objective": "OUTCOME_SALES"},
                {"id": "c2", "name": "Idle", "status": "PAUSED"},
            ]})
        return httpx.Response(200, json={"data": [{**insight_row("2024-01-01", "10", "35"), "campaign_id": "c1"}]})

    client, _ = make_client(handler)
    campaigns, totals = await client.campaigns_with_insights("123", WINDOW)

    assert [c.id for c in campaigns] == ["c1", "c2"]
    assert campaigns[0].roas == 3.5
    assert campaigns[1].spend == 0.0
    assert campaigns[1].roas == 0.0
    assert totals.spend == 10.0


@pytest.mark.anyio
async def test_create_campaign_with_daily_budget():
    posted = []

    def handler(request):
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        posted.append((request.url.path, form))
        if request.url.path.endswith("/campaigns"):
            return httpx.Response(200, json={"id": "cmp_1"})
        return httpx.Response(200, json={"id": "set_1"})

    client, _ = make_client(handler)
    created = await client.create_campaign("123", CampaignSpec(name="Spring", budget=5000))

    assert (created.campaign_id, created.ad_set_id) == ("cmp_1", "set_1")
    campaign_path, campaign_form = posted[0]
    assert campaign_path == "/v18.0/act_123/campaigns"
    assert campaign_form["status"] == "PAUSED"
    assert campaign_form["special_ad_categories"] == "[]"
    ad_set_path, ad_set_form = posted[1]
    assert ad_set_path == "/v18.0/act_123/adsets"
    assert ad_set_form["daily_budget"] == "5000"
    assert ad_set_form["campaign_id"] == "cmp_1"
    assert ad_set_form["optimization_goal"] == "OFFSITE_CONVERSIONS"


@pytest.mark.anyio
async def test_create_campaign_without_budget_skips_ad_set():
    posted = []

    def handler(request):
        posted.append(request.url.path)
        return httpx.Response(200, json={"id": "cmp_2"})

    client, _ = make_client(handler)
    created = await client.create_campaign("act_9", CampaignSpec(name="Awareness", objective="OUTCOME_AWARENESS"))
    assert created.ad_set_id is None
    assert posted == ["/v18.0/act_9/campaigns"]


@pytest.mark.anyio
async def test_create_campaign_rejects_unknown_budget_type():
    client, _ = make_client(lambda request: pytest.fail("no request expected"))
    with pytest.raises(ProviderError) as exc:
        await client.create_campaign("1", CampaignSpec(name="x", budget=100, budget_type="weekly"))
    assert exc.value.kind is ErrorKind.INVALID_INPUT


@pytest.mark.anyio
async def test_code_exchange_makes_two_hops():
    seen = []

    def handler(request):
        params = dict(request.url.params)
        seen.append(params)
        if "code" in params:
            return httpx.Response(200, json={"access_token": "short", "token_type": "bearer", "expires_in": 3600})
        return httpx.Response(200, json={"access_token": "long", "token_type": "bearer", "expires_in": 5184000})

    client, _ = make_client(handler, access_token=None)
    grant = await client.exchange_short_lived_token("the-code", "https://app.test/callback")

    assert grant.access_token == "long"
    assert grant.expires_at is not None
    assert seen[0]["code"] == "the-code"
    assert seen[0]["redirect_uri"] == "https://app.test/callback"
    assert seen[1]["grant_type"] == "fb_exchange_token"
    assert seen[1]["fb_exchange_token"] == "short"


@pytest.mark.anyio
async def test_exchange_requires_app_credentials():
    client = AdsClient(app_id="", app_secret="", transport=httpx.MockTransport(lambda r: pytest.fail("no request")))
    with pytest.raises(ProviderError) as exc:
        await client.exchange_for_long_lived("short")
    assert exc.value.kind is ErrorKind.CONFLICT
    assert exc.value.reason == "ads_app_not_configured"


@pytest.mark.anyio
async def test_grant_keeps_refresh_token():
    client, _ = make_client(lambda request: httpx.Response(200, json={
        "access_token": "long", "refresh_token": "refresh-me", "expires_in": 3600,
    }))
    grant = await client.exchange_for_long_lived("short")
    assert grant.refresh_token == "refresh-me"
