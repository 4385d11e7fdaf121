import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from adsync.analyzer.orchestrator import FetchOrchestrator
from adsync.connectors.base import PlatformClient
from adsync.core.retry import RetryPolicy
from adsync.core.tenants import TenantConfig, TenantRegistry
from adsync.models import storage_models  # noqa: F401
from adsync.models.metric_models import Platform
from adsync.storage.cache_store import TieredCacheStore
from adsync.storage.summary_store import SummaryStore

NOW = datetime(2025, 11, 15, 12, 0, tzinfo=timezone.utc)
TENANT = "belmonte"

META_ROWS: List[Dict[str, Any]] = [
    {
        "campaign_id": "c1",
        "campaign_name": "Brand",
        "spend": "100.50",
        "impressions": "10000",
        "clicks": "250",
        "actions": [
            {"action_type": "omni_purchase", "value": "3"},
            {"action_type": "offsite_conversion.fb_pixel_purchase", "value": "3"},
            {"action_type": "purchase", "value": "3"},
            {"action_type": "click_to_call_call_confirm", "value": "2"},
            {"action_type": "omni_search", "value": "40"},
            {"action_type": "omni_view_content", "value": "25"},
            {"action_type": "omni_initiated_checkout", "value": "12"},
            {"action_type": "offsite_conversion.custom.555", "value": "7"},
        ],
        "action_values": [
            {"action_type": "omni_purchase", "value": "900.00"},
            {"action_type": "offsite_conversion.fb_pixel_purchase", "value": "900.00"},
        ],
    },
    {
        "campaign_id": "c2",
        "campaign_name": "Remarketing",
        "spend": "49.50",
        "impressions": "5000",
        "clicks": "50",
        "actions": [{"action_type": "lead", "value": "4"}],
    },
]

GOOGLE_ROWS: List[Dict[str, Any]] = [
    {
        "campaign_id": "g1",
        "campaign_name": "Search PL",
        "cost_micros": "125500000",
        "impressions": "8000",
        "clicks": "400",
        "conversions": [
            {"conversion_name": "Rezerwacja (purchase)", "conversions": 2.5, "conversion_value": 1234.567},
            {"conversion_name": "Krok 1 w BE", "conversions": 30, "conversion_value": 0},
            {"conversion_name": "Krok 2 - rezerwacja", "conversions": 10, "conversion_value": 0},
            {"conversion_name": "Telefon", "conversions": 5, "conversion_value": 0},
        ],
    }
]


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeClient(PlatformClient):
    """Records calls; can be gated or made to fail."""

    def __init__(self, platform: Platform, rows: List[Dict[str, Any]]):
        self.platform = platform
        self.rows = rows
        self.calls: List[tuple[date, date]] = []
        self.gate: Optional[asyncio.Event] = None
        self.failure: Optional[Callable[[], Optional[Exception]]] = None
        self.closed = 0

    async def get_campaign_data(self, start: date, end: date) -> List[Dict[str, Any]]:
        self.calls.append((start, end))
        if self.gate is not None:
            await self.gate.wait()
        if self.failure is not None:
            exc = self.failure()
            if exc is not None:
                raise exc
        return [dict(row) if isinstance(row, dict) else row for row in self.rows]

    async def close(self) -> None:
        self.closed += 1


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def meta_client() -> FakeClient:
    return FakeClient(Platform.META, META_ROWS)


@pytest.fixture
def google_client() -> FakeClient:
    return FakeClient(Platform.GOOGLE, GOOGLE_ROWS)


@pytest.fixture
def tenants(meta_client, google_client) -> TenantRegistry:
    tenant = TenantConfig(
        tenant_id=TENANT,
        meta_access_token="meta-token",
        meta_ad_account_id="123456",
        google_customer_id="111-222-3333",
        google_access_token="google-token",
        meta_custom_conversions={"555": "booking_step_3"},
    )
    return TenantRegistry(
        [tenant],
        client_factories={
            Platform.META: lambda t: meta_client,
            Platform.GOOGLE: lambda t: google_client,
        },
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def retry(sleeps) -> RetryPolicy:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RetryPolicy(
        rate_limit_attempts=3,
        transient_attempts=2,
        base_delay=2.0,
        max_delay=30.0,
        sleep=fake_sleep,
    )


@pytest.fixture
def make_orchestrator(engine, tenants, retry, clock):
    def build(**overrides) -> FetchOrchestrator:
        options = dict(
            tenants=tenants,
            cache=TieredCacheStore(timedelta(hours=3)),
            summaries=SummaryStore(),
            retry=retry,
            session_factory=lambda: Session(engine),
            clock=clock,
            fetch_timeout=5.0,
            stale_while_revalidate=True,
            retention_months=12,
            purge_enabled=False,
        )
        options.update(overrides)
        return FetchOrchestrator(**options)

    return build


@pytest.fixture
def orchestrator(make_orchestrator) -> FetchOrchestrator:
    return make_orchestrator()
