"""ADSYNC — Canonical Metric Models.

Pydantic schemas shared by the normalizer, aggregator, stores and the
reporting surface. Derived ratios are computed fields: they are serialized
for readers but excluded whenever a record is persisted.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from adsync.core.metric_registry import DERIVED_FIELDS
from adsync.core.periods import Granularity, SummaryType


class Platform(str, Enum):
    META = "meta"
    GOOGLE = "google"


class DataSource(str, Enum):
    """Where a response was served from."""

    TIERED_CACHE = "tiered_cache"
    SUMMARY_STORE = "summary_store"
    LIVE_API = "live_api"


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    return round(float(numerator) / float(denominator) * scale, 4) if denominator else 0.0


class CanonicalMetricRecord(BaseModel):
    """Per-campaign or aggregated metrics in canonical funnel form."""

    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None

    spend: Decimal = Decimal("0")
    impressions: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)

    click_to_call: int = Field(default=0, ge=0)
    email_contacts: int = Field(default=0, ge=0)
    booking_step_1: int = Field(default=0, ge=0)
    booking_step_2: int = Field(default=0, ge=0)
    booking_step_3: int = Field(default=0, ge=0)
    reservations: int = Field(default=0, ge=0)
    reservation_value: Decimal = Decimal("0")

    @field_validator("spend", "reservation_value")
    @classmethod
    def _non_negative_money(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("monetary counters cannot be negative")
        return v

    @computed_field
    @property
    def conversions(self) -> int:
        return (
            self.click_to_call
            + self.email_contacts
            + self.booking_step_1
            + self.booking_step_2
            + self.booking_step_3
            + self.reservations
        )

    @computed_field
    @property
    def ctr(self) -> float:
        return _ratio(self.clicks, self.impressions, 100)

    @computed_field
    @property
    def cpc(self) -> float:
        return _ratio(self.spend, self.clicks)

    @computed_field
    @property
    def cpa(self) -> float:
        return _ratio(self.spend, self.conversions)

    @computed_field
    @property
    def roas(self) -> float:
        return _ratio(self.reservation_value, self.spend)

    @computed_field
    @property
    def cost_per_reservation(self) -> float:
        return _ratio(self.spend, self.reservations)

    def to_storage(self) -> dict:
        """JSON-safe dict without derived ratios."""
        return self.model_dump(mode="json", exclude=set(DERIVED_FIELDS))


class CachedPeriodSnapshot(BaseModel):
    """Cached payload for one tenant/platform/granularity/current period."""

    tenant_id: str
    platform: Platform
    granularity: Granularity
    period_id: str
    campaigns: List[CanonicalMetricRecord] = []
    totals: CanonicalMetricRecord = CanonicalMetricRecord()
    last_refreshed: datetime


class SummaryRecord(BaseModel):
    """Durable record for one tenant/platform/closed-or-open period."""

    tenant_id: str
    summary_type: SummaryType
    summary_date: date
    platform: Platform
    totals: CanonicalMetricRecord = CanonicalMetricRecord()
    campaign_data: List[CanonicalMetricRecord] = []
    data_source: str = ""
    last_updated: datetime


class AggregatedResult(BaseModel):
    """What the reporting layer receives from fetch_metrics."""

    tenant_id: str
    platform: Platform
    date_range_start: date
    date_range_end: date
    granularity: Optional[Granularity] = None
    period_id: Optional[str] = None
    totals: CanonicalMetricRecord
    campaigns: List[CanonicalMetricRecord] = []
    from_cache: bool = False
    cache_age_seconds: Optional[float] = None
    data_source: DataSource
    provenance: Optional[str] = None
    """The SummaryRecord data_source tag when served from the durable store."""
    stale: bool = False
    degraded_reason: Optional[str] = None
    last_refreshed: Optional[datetime] = None
