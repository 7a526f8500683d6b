"""
Yandex Direct API v5 Client
JSON services (campaigns, keywords, bids, ads, bid modifiers) plus the TSV Reports service.
Every failure is raised as DirectAPIError so callers see a single upstream error type.
"""

import asyncio
import csv
import io
import logging
from datetime import date
from typing import Any, Optional
import httpx

from adsteward.errors import UpstreamError
from adsteward.schemas import ProposalPlan

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://api-sandbox.direct.yandex.com/json/v5"

MICROS = 1_000_000

STATS_FIELDS = ["Date", "CampaignId", "CampaignName", "Impressions", "Clicks", "Cost", "Conversions", "Revenue"]
SEARCH_QUERY_FIELDS = ["Date", "CampaignId", "Query", "Impressions", "Clicks", "Cost", "Conversions"]


class DirectAPIError(UpstreamError):
    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[int] = None):
        self.error_code = error_code
        super().__init__("yandex_direct", message, status_code=status_code)


def _to_micros(amount: float) -> int:
    return int(round(amount * MICROS))


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _float_or_zero(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class DirectClient:
    """
    Wrapper around the Yandex Direct API.
    One instance per OAuth token / client login; holds a shared httpx.AsyncClient.
    """

    def __init__(
        self,
        token: str,
        client_login: Optional[str] = None,
        base_url: str = "https://api.direct.yandex.com/json/v5",
        sandbox: bool = False,
        http: Optional[httpx.AsyncClient] = None,
        report_max_wait: float = 120.0,
    ):
        self.token = token
        self.client_login = client_login
        self.base_url = (SANDBOX_URL if sandbox else base_url).rstrip("/")
        self.report_max_wait = report_max_wait
        self._http = http or httpx.AsyncClient(timeout=60.0)

    @property
    def headers(self) -> dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.token}",
            "Accept-Language": "en",
        }
        if self.client_login:
            h["Client-Login"] = self.client_login
        return h

    async def aclose(self):
        await self._http.aclose()

    async def call(self, service: str, method: str, params: dict) -> dict:
        """Call a JSON service method and return its `result` object."""
        logger.info(f"Direct call: {service}.{method}")
        try:
            response = await self._http.post(
                f"{self.base_url}/{service}",
                json={"method": method, "params": params},
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Direct call failed: {service}.{method} - {e}")
            raise DirectAPIError(f"{service}.{method} transport error: {e}")

        try:
            body = response.json()
        except ValueError:
            raise DirectAPIError(
                f"{service}.{method} returned non-JSON response",
                status_code=response.status_code,
            )

        if "error" in body:
            err = body["error"]
            raise DirectAPIError(
                f"{service}.{method}: {err.get('error_string')} ({err.get('error_detail')})",
                status_code=response.status_code,
                error_code=_int_or_zero(err.get("error_code")) or None,
            )
        if response.status_code >= 400:
            raise DirectAPIError(f"{service}.{method} HTTP {response.status_code}", status_code=response.status_code)
        return body.get("result") or {}

    @staticmethod
    def _check_item_results(result: dict, key: str) -> list[dict]:
        """Mutations report per-item Errors inside *Results arrays."""
        items = result.get(key) or []
        for item in items:
            errors = item.get("Errors") or []
            if errors:
                first = errors[0]
                raise DirectAPIError(
                    f"{key}: {first.get('Message')} ({first.get('Details')})",
                    error_code=_int_or_zero(first.get("Code")) or None,
                )
        return items

    # ── Reports ───────────────────────────────────────────────────────

    async def _report(self, name: str, report_type: str, fields: list[str], date_from: date, date_to: date,
                      filters: Optional[list[dict]] = None) -> list[dict]:
        """
        Request a TSV report. Yandex answers 201/202 while the report is built offline;
        poll with the server-provided retryIn until 200 or report_max_wait elapses.
        """
        criteria = {"DateFrom": date_from.isoformat(), "DateTo": date_to.isoformat()}
        if filters:
            criteria["Filter"] = filters
        body = {
            "params": {
                "SelectionCriteria": criteria,
                "FieldNames": fields,
                "ReportName": f"{name} {date_from.isoformat()} {date_to.isoformat()}",
                "ReportType": report_type,
                "DateRangeType": "CUSTOM_DATE",
                "Format": "TSV",
                "IncludeVAT": "YES",
                "IncludeDiscount": "NO",
            }
        }
        headers = dict(self.headers)
        headers.update({
            "processingMode": "auto",
            "returnMoneyInMicros": "false",
            "skipReportHeader": "true",
            "skipReportSummary": "true",
        })

        waited = 0.0
        while True:
            try:
                response = await self._http.post(f"{self.base_url}/reports", json=body, headers=headers)
            except httpx.HTTPError as e:
                raise DirectAPIError(f"reports transport error: {e}")

            if response.status_code == 200:
                return self._parse_tsv(response.text)
            if response.status_code in (201, 202):
                retry_in = float(response.headers.get("retryIn", 5))
                if waited + retry_in > self.report_max_wait:
                    raise DirectAPIError(f"Report '{name}' not ready after {waited:.0f}s", status_code=response.status_code)
                logger.info(f"Report '{name}' queued, retrying in {retry_in:.0f}s")
                await asyncio.sleep(retry_in)
                waited += retry_in
                continue
            raise DirectAPIError(f"reports HTTP {response.status_code}: {response.text[:300]}", status_code=response.status_code)

    @staticmethod
    def _parse_tsv(text: str) -> list[dict]:
        if not text.strip():
            return []
        reader = csv.DictReader(io.StringIO(text), delimiter="\t")
        return [row for row in reader]

    async def get_stats(self, date_from: date, date_to: date) -> list[dict]:
        """Per-campaign per-day performance rows."""
        rows = await self._report("campaign stats", "CAMPAIGN_PERFORMANCE_REPORT", STATS_FIELDS, date_from, date_to)
        stats = []
        for row in rows:
            stats.append({
                "date": row.get("Date"),
                "campaign_id": str(row.get("CampaignId")),
                "campaign_name": row.get("CampaignName") or "",
                "impressions": _int_or_zero(row.get("Impressions")),
                "clicks": _int_or_zero(row.get("Clicks")),
                "cost": _float_or_zero(row.get("Cost")),
                "conversions": _int_or_zero(row.get("Conversions")),
                "revenue": _float_or_zero(row.get("Revenue")),
            })
        logger.info(f"get_stats({date_from}..{date_to}): {len(stats)} rows")
        return stats

    async def get_search_queries(self, campaign_id: str, date_from: date, date_to: date) -> list[dict]:
        rows = await self._report(
            f"search queries {campaign_id}", "SEARCH_QUERY_PERFORMANCE_REPORT", SEARCH_QUERY_FIELDS,
            date_from, date_to,
            filters=[{"Field": "CampaignId", "Operator": "EQUALS", "Values": [str(campaign_id)]}],
        )
        return [
            {
                "date": row.get("Date"),
                "campaign_id": str(row.get("CampaignId")),
                "query": row.get("Query") or "",
                "impressions": _int_or_zero(row.get("Impressions")),
                "clicks": _int_or_zero(row.get("Clicks")),
                "cost": _float_or_zero(row.get("Cost")),
                "conversions": _int_or_zero(row.get("Conversions")),
            }
            for row in rows
        ]

    # ── Read services ─────────────────────────────────────────────────

    async def get_campaigns(self, states: Optional[list[str]] = None) -> list[dict]:
        """All campaigns of the client login; pass states to filter (ON, SUSPENDED, ...)."""
        criteria = {"States": states} if states else {}
        result = await self.call("campaigns", "get", {
            "SelectionCriteria": criteria,
            "FieldNames": ["Id", "Name", "Status", "State", "Type", "DailyBudget", "StartDate"],
        })
        campaigns = result.get("Campaigns") or []
        logger.info(f"get_campaigns: {len(campaigns)} campaigns")
        return campaigns

    async def get_keywords(self, campaign_id: str) -> list[dict]:
        result = await self.call("keywords", "get", {
            "SelectionCriteria": {"CampaignIds": [int(campaign_id)]},
            "FieldNames": ["Id", "Keyword", "Bid", "State", "Status", "AdGroupId"],
        })
        return result.get("Keywords") or []

    async def get_bid_modifiers(self, campaign_id: str) -> list[dict]:
        result = await self.call("bidmodifiers", "get", {
            "SelectionCriteria": {"CampaignIds": [int(campaign_id)], "Levels": ["CAMPAIGN"]},
            "FieldNames": ["Id", "CampaignId", "Type", "Level"],
            "MobileAdjustmentFieldNames": ["BidModifier"],
            "DesktopAdjustmentFieldNames": ["BidModifier"],
            "DemographicsAdjustmentFieldNames": ["Gender", "Age", "BidModifier"],
            "RegionalAdjustmentFieldNames": ["RegionId", "BidModifier"],
        })
        return result.get("BidModifiers") or []

    # ── Mutations (one per pending-action type) ───────────────────────

    async def update_bid(self, campaign_id: str, bid: float, keyword_id: Optional[int] = None,
                         ad_group_id: Optional[int] = None) -> dict:
        item: dict = {"SearchBid": _to_micros(bid)}
        if keyword_id:
            item["KeywordId"] = keyword_id
        elif ad_group_id:
            item["AdGroupId"] = ad_group_id
        else:
            item["CampaignId"] = int(campaign_id)
        result = await self.call("keywordbids", "set", {"KeywordBids": [item]})
        return {"results": self._check_item_results(result, "SetResults")}

    async def add_negative_keywords(self, campaign_id: str, keywords: list[str]) -> dict:
        """Campaign-level negatives are replaced wholesale, so merge with the current list."""
        result = await self.call("campaigns", "get", {
            "SelectionCriteria": {"Ids": [int(campaign_id)]},
            "FieldNames": ["Id", "NegativeKeywords"],
        })
        campaigns = result.get("Campaigns") or []
        current = []
        if campaigns:
            current = ((campaigns[0].get("NegativeKeywords") or {}).get("Items")) or []
        merged = list(dict.fromkeys([*current, *keywords]))
        update = await self.call("campaigns", "update", {
            "Campaigns": [{"Id": int(campaign_id), "NegativeKeywords": {"Items": merged}}],
        })
        self._check_item_results(update, "UpdateResults")
        return {"negative_keywords": merged, "added": len(merged) - len(current)}

    async def suspend_campaign(self, campaign_id: str) -> dict:
        result = await self.call("campaigns", "suspend", {"SelectionCriteria": {"Ids": [int(campaign_id)]}})
        return {"results": self._check_item_results(result, "SuspendResults")}

    async def resume_campaign(self, campaign_id: str) -> dict:
        result = await self.call("campaigns", "resume", {"SelectionCriteria": {"Ids": [int(campaign_id)]}})
        return {"results": self._check_item_results(result, "ResumeResults")}

    async def update_budget(self, campaign_id: str, daily_budget: float) -> dict:
        result = await self.call("campaigns", "update", {
            "Campaigns": [{
                "Id": int(campaign_id),
                "DailyBudget": {"Amount": _to_micros(daily_budget), "Mode": "STANDARD"},
            }],
        })
        return {"results": self._check_item_results(result, "UpdateResults")}

    async def update_ad(self, campaign_id: str, ad_id: int, title: Optional[str] = None,
                        title2: Optional[str] = None, text: Optional[str] = None,
                        href: Optional[str] = None) -> dict:
        text_ad = {k: v for k, v in (("Title", title), ("Title2", title2), ("Text", text), ("Href", href)) if v}
        result = await self.call("ads", "update", {"Ads": [{"Id": ad_id, "TextAd": text_ad}]})
        return {"results": self._check_item_results(result, "UpdateResults")}

    async def update_schedule(self, campaign_id: str, schedule: list[str],
                              consider_working_weekends: bool = True) -> dict:
        result = await self.call("campaigns", "update", {
            "Campaigns": [{
                "Id": int(campaign_id),
                "TimeTargeting": {
                    "Schedule": {"Items": schedule},
                    "ConsiderWorkingWeekends": "YES" if consider_working_weekends else "NO",
                },
            }],
        })
        return {"results": self._check_item_results(result, "UpdateResults")}

    async def update_bid_modifiers(self, campaign_id: str, modifiers: list[dict]) -> dict:
        items = []
        for m in modifiers:
            item: dict = {"CampaignId": int(campaign_id)}
            kind = m["kind"]
            if kind == "mobile":
                item["MobileAdjustment"] = {"BidModifier": m["bid_modifier"]}
            elif kind == "desktop":
                item["DesktopAdjustment"] = {"BidModifier": m["bid_modifier"]}
            elif kind == "demographics":
                adj = {"BidModifier": m["bid_modifier"]}
                if m.get("age"):
                    adj["Age"] = m["age"]
                if m.get("gender"):
                    adj["Gender"] = m["gender"]
                item["DemographicsAdjustments"] = [adj]
            elif kind == "regional":
                item["RegionalAdjustments"] = [{"RegionId": m.get("region_id"), "BidModifier": m["bid_modifier"]}]
            items.append(item)
        result = await self.call("bidmodifiers", "add", {"BidModifiers": items})
        return {"results": self._check_item_results(result, "AddResults")}

    # ── Campaign creation ─────────────────────────────────────────────

    async def create_campaign(self, plan: ProposalPlan, strategy_type: str) -> dict:
        """
        Create campaign, one ad group, its keywords and ads from a validated plan.
        Returns {"campaign_id", "ad_group_id", "name"}.
        """
        campaign: dict = {
            "Name": plan.campaign_name,
            "StartDate": (plan.start_date or date.today()).isoformat(),
            "DailyBudget": {"Amount": _to_micros(plan.daily_budget), "Mode": "STANDARD"},
            "TextCampaign": {
                "BiddingStrategy": {
                    "Search": {"BiddingStrategyType": strategy_type},
                    "Network": {"BiddingStrategyType": "SERVING_OFF"},
                },
            },
        }
        if plan.negative_keywords:
            campaign["NegativeKeywords"] = {"Items": plan.negative_keywords}

        result = await self.call("campaigns", "add", {"Campaigns": [campaign]})
        campaign_id = self._check_item_results(result, "AddResults")[0]["Id"]
        logger.info(f"Created Direct campaign {campaign_id} '{plan.campaign_name}'")

        group = await self.call("adgroups", "add", {
            "AdGroups": [{
                "Name": f"{plan.campaign_name} — main",
                "CampaignId": campaign_id,
                "RegionIds": plan.regions or [225],
            }],
        })
        ad_group_id = self._check_item_results(group, "AddResults")[0]["Id"]

        await self.call("keywords", "add", {
            "Keywords": [{"Keyword": k, "AdGroupId": ad_group_id} for k in plan.keywords],
        })
        if plan.ads:
            ads = []
            for ad in plan.ads:
                text_ad = {"Title": ad.title, "Text": ad.text, "Href": ad.href, "Mobile": "NO"}
                if ad.title2:
                    text_ad["Title2"] = ad.title2
                ads.append({"AdGroupId": ad_group_id, "TextAd": text_ad})
            self._check_item_results(await self.call("ads", "add", {"Ads": ads}), "AddResults")

        return {"campaign_id": str(campaign_id), "ad_group_id": str(ad_group_id), "name": plan.campaign_name}
