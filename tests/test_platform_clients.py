import json
from datetime import date

import httpx
import pytest

from adsync.connectors.google.client import GoogleAdsClient
from adsync.connectors.meta.client import MetaClient
from adsync.core.errors import (
    PlatformAuthError,
    PlatformError,
    PlatformRateLimitError,
    PlatformTransientError,
    ValidationError,
)
from adsync.core.tenants import TenantConfig, TenantRegistry
from adsync.models.metric_models import Platform

START, END = date(2025, 11, 1), date(2025, 11, 30)


def _meta(handler) -> MetaClient:
    return MetaClient("meta-token", "123456", transport=httpx.MockTransport(handler))


def _google(handler) -> GoogleAdsClient:
    return GoogleAdsClient(
        "111-222-3333",
        "google-token",
        developer_token="dev-token",
        login_customer_id="999-000-1111",
        transport=httpx.MockTransport(handler),
    )


# ── Meta ──


async def test_meta_campaign_insights_are_paginated():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        if "after" not in request.url.params:
            return httpx.Response(
                200,
                json={
                    "data": [{"campaign_id": "c1"}],
                    "paging": {"next": str(request.url.copy_merge_params({"after": "abc"}))},
                },
            )
        return httpx.Response(200, json={"data": [{"campaign_id": "c2"}], "paging": {}})

    client = _meta(handler)
    rows = await client.get_campaign_data(START, END)
    await client.close()

    assert [r["campaign_id"] for r in rows] == ["c1", "c2"]
    assert len(seen) == 2
    first = seen[0]
    assert first.path.endswith("/act_123456/insights")
    assert first.params["level"] == "campaign"
    assert json.loads(first.params["time_range"]) == {"since": "2025-11-01", "until": "2025-11-30"}
    assert first.params["access_token"] == "meta-token"
    second = seen[1]
    assert second.params["after"] == "abc"
    assert second.params["access_token"] == "meta-token"
    assert second.params["level"] == "campaign"


async def test_meta_empty_range_returns_empty_list():
    client = _meta(lambda request: httpx.Response(200, json={"data": []}))
    assert await client.get_campaign_data(START, END) == []


@pytest.mark.parametrize(
    "status, code, expected",
    [
        (400, 190, PlatformAuthError),
        (401, 0, PlatformAuthError),
        (400, 17, PlatformRateLimitError),
        (400, 80004, PlatformRateLimitError),
        (429, 0, PlatformRateLimitError),
        (500, 1, PlatformTransientError),
        (503, 0, PlatformTransientError),
    ],
)
async def test_meta_errors_are_classified(status, code, expected):
    def handler(request):
        return httpx.Response(status, json={"error": {"message": "boom", "code": code}})

    with pytest.raises(expected) as info:
        await _meta(handler).get_campaign_data(START, END)
    assert info.value.platform == "meta"
    assert info.value.status_code == status


async def test_meta_other_client_errors_are_plain_platform_errors():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Invalid field", "code": 100}})

    with pytest.raises(PlatformError) as info:
        await _meta(handler).get_campaign_data(START, END)
    assert type(info.value) is PlatformError
    assert info.value.error_code == 100


async def test_meta_page_limit_logs_a_warning(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": [{"campaign_id": "c1"}],
                "paging": {"next": str(request.url.copy_merge_params({"after": "more"}))},
            },
        )

    client = _meta(handler)
    rows = await client._paginated_get("https://graph.test/v21.0/act_1/insights", {}, max_pages=3)

    assert len(rows) == 3
    assert any("Stopped after 3 pages" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize("body", ["<html>proxy error</html>", "[1, 2]"])
async def test_meta_malformed_success_body_is_transient(body):
    def handler(request):
        return httpx.Response(200, text=body)

    with pytest.raises(PlatformTransientError) as info:
        await _meta(handler).get_campaign_data(START, END)
    assert info.value.platform == "meta"
    assert info.value.status_code == 200


async def test_meta_network_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PlatformTransientError):
        await _meta(handler).get_campaign_data(START, END)


# ── Google ──


async def test_google_search_stream_rows_are_joined():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        query = json.loads(request.content)["query"]
        if "conversion_action_name" in query:
            return httpx.Response(
                200,
                json=[
                    {
                        "results": [
                            {
                                "campaign": {"id": "42"},
                                "segments": {"conversionActionName": "Rezerwacja"},
                                "metrics": {"conversions": 2.0, "conversionsValue": 800.0},
                            },
                            {
                                "campaign": {"id": "77"},
                                "segments": {"conversionActionName": "Telefon"},
                                "metrics": {"conversions": 1.0},
                            },
                        ]
                    }
                ],
            )
        return httpx.Response(
            200,
            json=[
                {
                    "results": [
                        {
                            "campaign": {"id": "42", "name": "Search PL"},
                            "metrics": {"costMicros": "5000000", "impressions": "100", "clicks": "7"},
                        }
                    ]
                }
            ],
        )

    client = _google(handler)
    rows = await client.get_campaign_data(START, END)
    await client.close()

    assert rows == [
        {
            "campaign_id": "42",
            "campaign_name": "Search PL",
            "cost_micros": "5000000",
            "impressions": "100",
            "clicks": "7",
            "conversions": [
                {"conversion_name": "Rezerwacja", "conversions": 2.0, "conversion_value": 800.0}
            ],
        }
    ]
    first = requests[0]
    assert first.url.path.endswith("/customers/1112223333/googleAds:searchStream")
    assert first.headers["authorization"] == "Bearer google-token"
    assert first.headers["developer-token"] == "dev-token"
    assert first.headers["login-customer-id"] == "9990001111"
    assert "BETWEEN '2025-11-01' AND '2025-11-30'" in json.loads(first.content)["query"]


async def test_google_empty_stream_returns_empty_list():
    client = _google(lambda request: httpx.Response(200, json=[]))
    assert await client.get_campaign_data(START, END) == []


@pytest.mark.parametrize("body", ["<html>proxy error</html>", '{"results": []}'])
async def test_google_malformed_success_body_is_transient(body):
    def handler(request):
        return httpx.Response(200, text=body)

    with pytest.raises(PlatformTransientError) as info:
        await _google(handler).get_campaign_data(START, END)
    assert info.value.platform == "google"


@pytest.mark.parametrize(
    "status, expected",
    [
        (401, PlatformAuthError),
        (403, PlatformAuthError),
        (429, PlatformRateLimitError),
        (500, PlatformTransientError),
        (400, PlatformError),
    ],
)
async def test_google_errors_are_classified(status, expected):
    def handler(request):
        return httpx.Response(status, json=[{"error": {"code": status, "message": "nope"}}])

    with pytest.raises(expected) as info:
        await _google(handler).get_campaign_data(START, END)
    assert info.value.platform == "google"
    assert str(info.value) == "nope"


# ── Tenant registry ──


def test_registry_parses_credentials_and_builds_clients():
    registry = TenantRegistry.from_json(
        json.dumps(
            [
                {
                    "tenant_id": "belmonte",
                    "meta_access_token": "t",
                    "meta_ad_account_id": "act_1",
                    "meta_custom_conversions": {"555": "booking_step_3"},
                },
                {"tenant_id": "havet", "google_customer_id": "1", "google_access_token": "g"},
            ]
        )
    )
    assert registry.tenant_ids() == ["belmonte", "havet"]
    assert registry.pairs() == [("belmonte", Platform.META), ("havet", Platform.GOOGLE)]
    assert isinstance(registry.client_for("belmonte", Platform.META), MetaClient)
    assert registry.client_for("belmonte", Platform.META).ad_account_id == "act_1"
    assert isinstance(registry.client_for("havet", "google"), GoogleAdsClient)
    assert registry.custom_conversions("belmonte", Platform.META) == {"555": "booking_step_3"}


def test_registry_rejects_unknown_tenant_and_platform():
    registry = TenantRegistry([TenantConfig(tenant_id="havet", google_customer_id="1", google_access_token="g")])
    with pytest.raises(ValidationError):
        registry.get("nobody")
    with pytest.raises(ValidationError):
        registry.client_for("havet", Platform.META)


def test_registry_rejects_malformed_json():
    with pytest.raises(ValidationError):
        TenantRegistry.from_json("{not json")
    assert TenantRegistry.from_json("").tenant_ids() == []
