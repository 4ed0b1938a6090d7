"""
Social-ads Graph API client.

Covers the ad-account picker, account and campaign insights, thin campaign
creation and the OAuth code -> long-lived token exchange. Insights requests
pass ``time_range`` as a JSON object in the query string.
"""

import asyncio
import json
import logging
from datetime import date, timedelta
from typing import Any, Optional

import httpx

from trackprofit.clients.base import ProviderClient
from trackprofit.config import get_settings
from trackprofit.errors import ErrorKind, ProviderError
from trackprofit.schemas import (
    AdAccount, AdInsight, CampaignInsight, CampaignSpec, CreatedCampaign,
    DailyInsight, TokenGrant, Window,
)
from trackprofit.utils import safe_ratio, to_float, utcnow

logger = logging.getLogger(__name__)

# Graph error codes that mean "slow down"
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613, 80000, 80004}
AUTH_ERROR_CODES = {102, 190}

ACCOUNT_STATUS = {
    1: "ACTIVE",
    2: "DISABLED",
    3: "UNSETTLED",
    7: "PENDING_RISK_REVIEW",
    9: "IN_GRACE_PERIOD",
    100: "PENDING_CLOSURE",
    101: "CLOSED",
    201: "ANY_ACTIVE",
    202: "ANY_CLOSED",
}

INSIGHT_FIELDS = "spend,impressions,clicks,actions,action_values,account_currency,date_start"
PURCHASE_ACTION = "purchase"
SALES_OBJECTIVES = {"OUTCOME_SALES", "CONVERSIONS", "OUTCOME_LEADS"}
DEFAULT_TARGETING = {"geo_locations": {"countries": ["DZ"]}}
LIFETIME_BUDGET_DAYS = 30


def account_path(account_id: str) -> str:
    account_id = str(account_id)
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


def _action_value(entries: Any, action_type: str = PURCHASE_ACTION) -> float:
    if not isinstance(entries, list):
        return 0.0
    for entry in entries:
        if isinstance(entry, dict) and entry.get("action_type") == action_type:
            return to_float(entry.get("value"))
    return 0.0


def _row_metrics(row: dict) -> dict:
    return {
        "spend": to_float(row.get("spend")),
        "impressions": int(to_float(row.get("impressions"))),
        "clicks": int(to_float(row.get("clicks"))),
        "purchases": int(_action_value(row.get("actions"))),
        "purchase_value": _action_value(row.get("action_values")),
    }


def parse_account(raw: Any) -> Optional[AdAccount]:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    status_code = raw.get("account_status")
    try:
        status_code = int(status_code) if status_code is not None else None
    except (TypeError, ValueError):
        status_code = None
    return AdAccount(
        id=str(raw["id"]),
        account_id=str(raw.get("account_id") or str(raw["id"]).removeprefix("act_")),
        name=raw.get("name") or "",
        status=ACCOUNT_STATUS.get(status_code, "UNKNOWN"),
        status_code=status_code,
        currency=raw.get("currency"),
    )


class AdsClient(ProviderClient):
    provider = "ads"

    def __init__(
        self,
        access_token: Optional[str] = None,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        api_version: Optional[str] = None,
        **kwargs,
    ):
        settings = get_settings()
        version = api_version or settings.ads_api_version
        super().__init__(f"{settings.ads_graph_url}/{version}", **kwargs)
        self.access_token = access_token
        self.app_id = app_id if app_id is not None else settings.ads_app_id
        self.app_secret = app_secret if app_secret is not None else settings.ads_app_secret

    def _error_message(self, payload: Any) -> Optional[str]:
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            return payload["error"].get("message")
        return super()._error_message(payload)

    def _classify(self, response: httpx.Response, payload: Any) -> Optional[ProviderError]:
        body_error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(body_error, dict):
            code = body_error.get("code")
            message = body_error.get("message") or "Graph API error"
            if code in RATE_LIMIT_ERROR_CODES:
                retry_after = response.headers.get("Retry-After")
                return self._error(
                    ErrorKind.RATE_LIMITED, message,
                    retry_after=to_float(retry_after) or None,
                    status_code=response.status_code,
                )
            if code in AUTH_ERROR_CODES:
                return self._error(ErrorKind.AUTH_EXPIRED, message, status_code=response.status_code)
            if code == 100:
                return self._error(ErrorKind.INVALID_INPUT, message, status_code=response.status_code)
        return super()._classify(response, payload)

    def _token(self, token: Optional[str] = None) -> str:
        token = token or self.access_token
        if not token:
            raise self._error(ErrorKind.AUTH_EXPIRED, "No ads access token", reason="ads_not_connected")
        return token

    async def _get(self, path: str, params: dict, token: Optional[str] = None) -> dict:
        payload = await self._request("GET", path, params={**params, "access_token": self._token(token)})
        if not isinstance(payload, dict):
            raise self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, f"GET {path} returned {type(payload).__name__}")
        return payload

    async def _get_all(self, path: str, params: dict, token: Optional[str] = None) -> list[dict]:
        """Follow ``paging.cursors.after`` until the edge is exhausted."""
        rows: list[dict] = []
        after = None
        while True:
            page_params = dict(params)
            if after:
                page_params["after"] = after
            payload = await self._get(path, page_params, token)
            data = payload.get("data")
            if not isinstance(data, list):
                logger.warning(f"ads: {path} response has no data list, treating as empty")
                return rows
            rows.extend(r for r in data if isinstance(r, dict))
            paging = payload.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not after:
                return rows

    # ── Accounts ──────────────────────────────────────────────────────
    async def list_ad_accounts(self, token: Optional[str] = None) -> list[AdAccount]:
        rows = await self._get_all(
            "/me/adaccounts",
            {"fields": "name,account_id,account_status,currency", "limit": 100},
            token,
        )
        accounts = []
        for row in rows:
            account = parse_account(row)
            if account is None:
                logger.warning("ads: skipping ad account without id")
                continue
            accounts.append(account)
        return accounts

    # ── Insights ──────────────────────────────────────────────────────
    def _insight_params(self, window: Window, level: str, fields: str) -> dict:
        return {
            "level": level,
            "fields": fields,
            "time_range": json.dumps(window.as_strings()),
            "limit": 500,
        }

    async def account_insights(self, account_id: str, window: Window) -> AdInsight:
        """Account totals for ``window`` plus one row per day."""
        params = self._insight_params(window, "account", INSIGHT_FIELDS)
        params["time_increment"] = 1
        rows = await self._get_all(f"/{account_path(account_id)}/insights", params)

        insight = AdInsight()
        for row in rows:
            metrics = _row_metrics(row)
            insight.spend += metrics["spend"]
            insight.impressions += metrics["impressions"]
            insight.clicks += metrics["clicks"]
            insight.purchases += metrics["purchases"]
            insight.purchase_value += metrics["purchase_value"]
            insight.currency = insight.currency or row.get("account_currency")
            try:
                day = date.fromisoformat(row.get("date_start") or "")
            except ValueError:
                continue
            insight.daily.append(DailyInsight(
                day=day,
                spend=metrics["spend"],
                impressions=metrics["impressions"],
                purchase_value=metrics["purchase_value"],
            ))
        return insight

    async def campaigns_with_insights(self, account_id: str, window: Window) -> tuple[list[CampaignInsight], AdInsight]:
        """Campaign list merged with campaign-level insights; second item holds the totals."""
        path = account_path(account_id)
        campaign_rows, insight_rows = await asyncio.gather(
            self._get_all(f"/{path}/campaigns", {"fields": "id,name,status,objective", "limit": 200}),
            self._get_all(
                f"/{path}/insights",
                self._insight_params(window, "campaign", "campaign_id," + INSIGHT_FIELDS),
            ),
        )
        metrics_by_campaign = {str(r.get("campaign_id")): r for r in insight_rows if r.get("campaign_id")}

        totals = AdInsight()
        campaigns = []
        for row in campaign_rows:
            if not row.get("id"):
                continue
            insight_row = metrics_by_campaign.get(str(row["id"]), {})
            metrics = _row_metrics(insight_row)
            campaigns.append(CampaignInsight(
                id=str(row["id"]),
                name=row.get("name") or "",
                status=row.get("status") or "",
                objective=row.get("objective"),
                roas=safe_ratio(metrics["purchase_value"], metrics["spend"]),
                **metrics,
            ))
            totals.spend += metrics["spend"]
            totals.impressions += metrics["impressions"]
            totals.clicks += metrics["clicks"]
            totals.purchases += metrics["purchases"]
            totals.purchase_value += metrics["purchase_value"]
            totals.currency = totals.currency or insight_row.get("account_currency")
        return campaigns, totals

    # ── Campaigns ─────────────────────────────────────────────────────
    async def create_campaign(self, account_id: str, spec: CampaignSpec) -> CreatedCampaign:
        """Create a campaign (paused by default) and, when a budget is given, its ad set."""
        budget_type = spec.budget_type.lower()
        if budget_type not in ("daily", "lifetime"):
            raise self._error(ErrorKind.INVALID_INPUT, f"Unknown budget type '{spec.budget_type}'")
        status = spec.status.upper()
        if status not in ("ACTIVE", "PAUSED"):
            raise self._error(ErrorKind.INVALID_INPUT, f"Unknown campaign status '{spec.status}'")

        path = account_path(account_id)
        created = await self._request("POST", f"/{path}/campaigns", data={
            "name": spec.name,
            "objective": spec.objective,
            "status": status,
            "special_ad_categories": "[]",
            "access_token": self._token(),
        })
        campaign_id = created.get("id") if isinstance(created, dict) else None
        if not campaign_id:
            raise self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, "Campaign creation returned no id")
        logger.info(f"ads: created campaign {campaign_id} on {path}")

        if not spec.budget:
            return CreatedCampaign(campaign_id=str(campaign_id))

        goal = spec.optimization_goal or (
            "OFFSITE_CONVERSIONS" if spec.objective.upper() in SALES_OBJECTIVES else "LINK_CLICKS"
        )
        ad_set = {
            "name": f"{spec.name} - Ad Set",
            "campaign_id": campaign_id,
            "optimization_goal": goal,
            "billing_event": spec.billing_event,
            "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
            "targeting": json.dumps(spec.targeting or DEFAULT_TARGETING),
            "status": status,
            "access_token": self._token(),
        }
        if budget_type == "daily":
            ad_set["daily_budget"] = spec.budget
        else:
            ad_set["lifetime_budget"] = spec.budget
            ad_set["end_time"] = (utcnow() + timedelta(days=LIFETIME_BUDGET_DAYS)).strftime("%Y-%m-%dT%H:%M:%S+0000")

        created_set = await self._request("POST", f"/{path}/adsets", data=ad_set)
        ad_set_id = created_set.get("id") if isinstance(created_set, dict) else None
        return CreatedCampaign(campaign_id=str(campaign_id), ad_set_id=str(ad_set_id) if ad_set_id else None)

    # ── OAuth ─────────────────────────────────────────────────────────
    def _require_app(self) -> None:
        if not self.app_id or not self.app_secret:
            raise ProviderError(
                self.provider, ErrorKind.CONFLICT,
                "Ads app credentials are not configured", reason="ads_app_not_configured",
            )

    def _grant(self, payload: Any) -> TokenGrant:
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, "Token response has no access_token")
        expires_in = payload.get("expires_in")
        expires_at = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        return TokenGrant(
            access_token=payload["access_token"],
            token_type=payload.get("token_type") or "bearer",
            expires_at=expires_at,
            refresh_token=payload.get("refresh_token"),
        )

    async def exchange_for_long_lived(self, short_lived_token: str) -> TokenGrant:
        self._require_app()
        payload = await self._request("GET", "/oauth/access_token", params={
            "grant_type": "fb_exchange_token",
            "client_id": self.app_id,
            "client_secret": self.app_secret,
            "fb_exchange_token": short_lived_token,
        })
        return self._grant(payload)

    async def exchange_short_lived_token(self, code: str, redirect_uri: str) -> TokenGrant:
        """OAuth code -> short-lived token -> long-lived token."""
        self._require_app()
        payload = await self._request("GET", "/oauth/access_token", params={
            "client_id": self.app_id,
            "redirect_uri": redirect_uri,
            "client_secret": self.app_secret,
            "code": code,
        })
        short_lived = self._grant(payload)
        return await self.exchange_for_long_lived(short_lived.access_token)
