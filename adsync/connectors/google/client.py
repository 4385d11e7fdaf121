"""ADSYNC — Google Ads API Client.

Talks to the Google Ads REST interface (``googleAds:searchStream``). Two
GAQL queries per fetch: campaign metrics, and conversions segmented by
conversion action name. They are joined into one raw row per campaign.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from adsync.config import settings
from adsync.connectors.base import PlatformClient
from adsync.core.errors import (
    PlatformAuthError,
    PlatformError,
    PlatformRateLimitError,
    PlatformTransientError,
)
from adsync.core.logging import get_logger
from adsync.models.metric_models import Platform

logger = get_logger("google.client")

GOOGLE_ADS_BASE = f"{settings.google_ads_base_url}/{settings.google_ads_api_version}"

CAMPAIGN_QUERY = """
    SELECT campaign.id, campaign.name,
           metrics.cost_micros, metrics.impressions, metrics.clicks
    FROM campaign
    WHERE segments.date BETWEEN '{start}' AND '{end}'
"""

CONVERSION_QUERY = """
    SELECT campaign.id, segments.conversion_action_name,
           metrics.conversions, metrics.conversions_value
    FROM campaign
    WHERE segments.date BETWEEN '{start}' AND '{end}'
      AND metrics.conversions > 0
"""


def _error_body(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    # searchStream wraps errors in a one-element array
    if isinstance(body, list):
        body = body[0] if body else {}
    return body.get("error", {}) if isinstance(body, dict) else {}


def classify_google_error(resp: httpx.Response) -> PlatformError:
    """Map a failed REST response onto the engine error taxonomy."""
    error = _error_body(resp)
    message = error.get("message") or f"HTTP {resp.status_code}"
    status = resp.status_code
    args = (message, Platform.GOOGLE.value, status, error.get("code") or 0)

    if status in (401, 403):
        return PlatformAuthError(*args)
    if status == 429 or error.get("status") == "RESOURCE_EXHAUSTED":
        retry_after = resp.headers.get("retry-after")
        return PlatformRateLimitError(
            *args, retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
        )
    if status >= 500:
        return PlatformTransientError(*args)
    return PlatformError(*args)


class GoogleAdsClient(PlatformClient):
    """Async HTTP client for the Google Ads REST API."""

    platform = Platform.GOOGLE

    def __init__(
        self,
        customer_id: str,
        access_token: str,
        developer_token: Optional[str] = None,
        login_customer_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.customer_id = customer_id.replace("-", "")
        self.access_token = access_token
        self.developer_token = developer_token or settings.google_ads_developer_token
        self.login_customer_id = (
            login_customer_id or settings.google_ads_login_customer_id
        ).replace("-", "")
        self._transport = transport
        self._timeout = timeout or settings.http_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "developer-token": self.developer_token,
        }
        if self.login_customer_id:
            headers["login-customer-id"] = self.login_customer_id
        return headers

    async def _search_stream(self, query: str) -> List[Dict[str, Any]]:
        """Run one GAQL query and flatten the streamed batches."""
        url = f"{GOOGLE_ADS_BASE}/customers/{self.customer_id}/googleAds:searchStream"
        client = await self._get_client()
        try:
            resp = await client.post(url, json={"query": query}, headers=self._headers())
        except httpx.TimeoutException as e:
            raise PlatformTransientError(
                f"Google Ads request timed out: {e}", Platform.GOOGLE.value
            ) from e
        except httpx.RequestError as e:
            raise PlatformTransientError(
                f"Google Ads connection failed: {e}", Platform.GOOGLE.value
            ) from e

        if resp.status_code >= 400:
            err = classify_google_error(resp)
            logger.warning(
                f"Google Ads API error {resp.status_code} ({err.code}): {err}",
                extra={"platform": Platform.GOOGLE.value, "status_code": resp.status_code},
            )
            raise err

        try:
            batches = resp.json() or []
        except ValueError as e:
            raise PlatformTransientError(
                f"Google Ads returned a non-JSON body (HTTP {resp.status_code})",
                Platform.GOOGLE.value,
                resp.status_code,
            ) from e
        if not isinstance(batches, list):
            raise PlatformTransientError(
                f"Google Ads returned an unexpected body type: {type(batches).__name__}",
                Platform.GOOGLE.value,
                resp.status_code,
            )

        rows: List[Dict[str, Any]] = []
        for batch in batches:
            rows.extend(batch.get("results", []))
        return rows

    async def get_campaign_data(self, start: date, end: date) -> List[Dict[str, Any]]:
        bounds = {"start": start.isoformat(), "end": end.isoformat()}
        metric_rows = await self._search_stream(CAMPAIGN_QUERY.format(**bounds))
        conversion_rows = await self._search_stream(CONVERSION_QUERY.format(**bounds))

        campaigns: Dict[str, Dict[str, Any]] = {}
        for row in metric_rows:
            campaign = row.get("campaign", {})
            metrics = row.get("metrics", {})
            campaign_id = str(campaign.get("id", ""))
            campaigns[campaign_id] = {
                "campaign_id": campaign_id,
                "campaign_name": campaign.get("name", ""),
                "cost_micros": metrics.get("costMicros", 0),
                "impressions": metrics.get("impressions", 0),
                "clicks": metrics.get("clicks", 0),
                "conversions": [],
            }

        for row in conversion_rows:
            campaign_id = str(row.get("campaign", {}).get("id", ""))
            target = campaigns.get(campaign_id)
            if target is None:
                continue
            metrics = row.get("metrics", {})
            target["conversions"].append(
                {
                    "conversion_name": row.get("segments", {}).get("conversionActionName", ""),
                    "conversions": metrics.get("conversions", 0),
                    "conversion_value": metrics.get("conversionsValue", 0),
                }
            )

        logger.info(
            f"Fetched {len(campaigns)} Google Ads campaigns "
            f"({len(conversion_rows)} conversion rows) for {start}..{end}"
        )
        return list(campaigns.values())
