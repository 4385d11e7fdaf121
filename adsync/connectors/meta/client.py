"""ADSYNC — Meta API Client.

Handles authentication, error classification, and pagination against the
Graph API insights endpoint.
"""

import json
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

logger = get_logger("meta.client")

META_BASE = f"{settings.meta_base_url}/{settings.meta_api_version}"

# Graph API error codes
AUTH_ERROR_CODES = {102, 190}
THROTTLE_ERROR_CODES = {4, 17, 32, 613}
ADS_THROTTLE_RANGE = range(80000, 80015)

CAMPAIGN_INSIGHT_FIELDS = (
    "campaign_id,campaign_name,spend,impressions,clicks,actions,action_values"
)


def _retry_after(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


def classify_meta_error(resp: httpx.Response) -> PlatformError:
    """Map a failed Graph API response onto the engine error taxonomy."""
    body: Any = {}
    if resp.headers.get("content-type", "").startswith(("application/json", "text/javascript")):
        try:
            body = resp.json()
        except ValueError:
            body = {}
    error = body.get("error", {}) if isinstance(body, dict) else {}
    message = error.get("message") or f"HTTP {resp.status_code}"
    error_code = error.get("code") or 0
    status = resp.status_code
    args = (message, Platform.META.value, status, error_code)

    if status == 401 or error_code in AUTH_ERROR_CODES:
        return PlatformAuthError(*args)
    if status == 429 or error_code in THROTTLE_ERROR_CODES or error_code in ADS_THROTTLE_RANGE:
        return PlatformRateLimitError(*args, retry_after=_retry_after(resp))
    if status >= 500:
        return PlatformTransientError(*args)
    return PlatformError(*args)


class MetaClient(PlatformClient):
    """Async HTTP client for Meta Marketing API."""

    platform = Platform.META

    def __init__(
        self,
        access_token: str,
        ad_account_id: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.access_token = access_token
        if ad_account_id and not ad_account_id.startswith("act_"):
            ad_account_id = f"act_{ad_account_id}"
        self.ad_account_id = ad_account_id
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

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make one request; failures come back classified, never retried.

        Without ``params`` the URL is sent unchanged; ``paging.next`` links
        already carry the token and the cursor.
        """
        if params is not None:
            params = {**params, "access_token": self.access_token}

        client = await self._get_client()
        try:
            resp = await client.request(method, url, params=params)
        except httpx.TimeoutException as e:
            raise PlatformTransientError(
                f"Meta request timed out: {e}", Platform.META.value
            ) from e
        except httpx.RequestError as e:
            raise PlatformTransientError(
                f"Meta connection failed: {e}", Platform.META.value
            ) from e

        if resp.status_code >= 400:
            err = classify_meta_error(resp)
            logger.warning(
                f"Meta API error {resp.status_code} ({err.code}): {err}",
                extra={"platform": Platform.META.value, "status_code": resp.status_code},
            )
            raise err
        try:
            body = resp.json()
        except ValueError as e:
            raise PlatformTransientError(
                f"Meta returned a non-JSON body (HTTP {resp.status_code})",
                Platform.META.value,
                resp.status_code,
            ) from e
        if not isinstance(body, dict):
            raise PlatformTransientError(
                f"Meta returned an unexpected body type: {type(body).__name__}",
                Platform.META.value,
                resp.status_code,
            )
        return body

    # ── Pagination ──

    async def _paginated_get(
        self,
        url: str,
        params: Dict[str, Any] | None = None,
        max_pages: int = 50,
    ) -> List[Dict[str, Any]]:
        """Fetch all pages of a paginated endpoint."""
        all_data: List[Dict[str, Any]] = []
        current_url = url

        next_url = None
        for page in range(max_pages):
            if page == 0:
                result = await self._request("GET", current_url, dict(params or {}))
            else:
                result = await self._request("GET", current_url)
            all_data.extend(result.get("data", []))

            next_url = (result.get("paging") or {}).get("next")
            if not next_url:
                break
            current_url = next_url

        if next_url:
            logger.warning(
                f"Stopped after {max_pages} pages of {url}; remaining pages were not fetched",
                extra={"platform": Platform.META.value},
            )

        logger.info(f"Fetched {len(all_data)} records from {url}")
        return all_data

    # ── Campaign Insights ──

    async def get_campaign_data(self, start: date, end: date) -> List[Dict[str, Any]]:
        """Campaign-level insights aggregated over the whole range."""
        url = f"{META_BASE}/{self.ad_account_id}/insights"
        params = {
            "fields": CAMPAIGN_INSIGHT_FIELDS,
            "time_range": json.dumps(
                {"since": start.isoformat(), "until": end.isoformat()}
            ),
            "level": "campaign",
            "limit": 500,
        }
        return await self._paginated_get(url, params)
