"""
Tests for the Yandex Direct adapter against a mocked HTTP transport.
"""

import json
from datetime import date

import httpx
import pytest

from adsteward.direct_client import DirectAPIError, DirectClient


def _client(handler) -> DirectClient:
    return DirectClient(
        token="t0ken",
        client_login="agency-client",
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.anyio
async def test_get_campaigns_sends_auth_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["login"] = request.headers["Client-Login"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": {"Campaigns": [{"Id": 1, "Name": "Brand", "State": "ON"}]}})

    client = _client(handler)
    campaigns = await client.get_campaigns()

    assert campaigns == [{"Id": 1, "Name": "Brand", "State": "ON"}]
    assert seen["auth"] == "Bearer t0ken"
    assert seen["login"] == "agency-client"
    assert seen["body"]["method"] == "get"


@pytest.mark.anyio
async def test_api_error_is_raised_as_upstream_error():
    def handler(request):
        return httpx.Response(200, json={"error": {"error_code": 53, "error_string": "Authorization error", "error_detail": "Invalid token"}})

    with pytest.raises(DirectAPIError) as exc:
        await _client(handler).get_campaigns()

    assert exc.value.service == "yandex_direct"
    assert exc.value.error_code == 53


@pytest.mark.anyio
async def test_item_errors_fail_the_mutation():
    def handler(request):
        return httpx.Response(200, json={"result": {"UpdateResults": [
            {"Errors": [{"Code": 5005, "Message": "Field set incorrectly", "Details": "Budget below minimum"}]}
        ]}})

    with pytest.raises(DirectAPIError, match="Budget below minimum"):
        await _client(handler).update_budget("101", 100.0)


@pytest.mark.anyio
async def test_negative_keywords_are_merged_with_existing():
    calls = []

    def handler(request):
        body = json.loads(request.content)
        calls.append(body)
        if body["method"] == "get":
            return httpx.Response(200, json={"result": {"Campaigns": [
                {"Id": 101, "NegativeKeywords": {"Items": ["free"]}}
            ]}})
        return httpx.Response(200, json={"result": {"UpdateResults": [{"Id": 101}]}})

    result = await _client(handler).add_negative_keywords("101", ["free", "torrent"])

    assert result == {"negative_keywords": ["free", "torrent"], "added": 1}
    assert calls[1]["params"]["Campaigns"][0]["NegativeKeywords"]["Items"] == ["free", "torrent"]


@pytest.mark.anyio
async def test_stats_report_parses_tsv():
    tsv = (
        "Date\tCampaignId\tCampaignName\tImpressions\tClicks\tCost\tConversions\tRevenue\n"
        "2026-10-17\t101\tSummer Sale\t1000\t40\t2000.5\t4\t8000\n"
    )

    def handler(request):
        assert request.url.path.endswith("/reports")
        return httpx.Response(200, text=tsv)

    rows = await _client(handler).get_stats(date(2026, 10, 17), date(2026, 10, 17))

    assert rows == [{
        "date": "2026-10-17", "campaign_id": "101", "campaign_name": "Summer Sale",
        "impressions": 1000, "clicks": 40, "cost": 2000.5, "conversions": 4, "revenue": 8000.0,
    }]
