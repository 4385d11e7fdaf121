"""ADSYNC — Persisted Tables.

Two logical stores and nothing else:

* the tiered cache, one table per (platform × granularity), holding the
  snapshot of the *current* period per tenant;
* ``campaign_summaries``, the durable system of record per
  (tenant, summary_type, summary_date, platform).

Payloads are stored as JSON text of counters only; ratios are derived on read.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, UniqueConstraint


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────
# TIERED CACHE — Current month / week snapshots
# ─────────────────────────────────────────────


class PeriodCacheBase(SQLModel):
    """Columns shared by every cache table.

    Unique constraint on (tenant_id, period_id) per table: at most one
    snapshot per tenant/platform/granularity/period.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    period_id: str = Field(index=True, description="YYYY-MM or YYYY-Www")
    campaigns_json: str = Field(default="[]")
    totals_json: str = Field(default="{}")
    last_refreshed: datetime = Field(
        default_factory=_utcnow, sa_type=DateTime(timezone=True)
    )


class MetaMonthCache(PeriodCacheBase, table=True):
    __tablename__ = "meta_current_month_cache"
    __table_args__ = (
        UniqueConstraint("tenant_id", "period_id", name="uq_meta_month_cache"),
    )


class MetaWeekCache(PeriodCacheBase, table=True):
    __tablename__ = "meta_current_week_cache"
    __table_args__ = (
        UniqueConstraint("tenant_id", "period_id", name="uq_meta_week_cache"),
    )


class GoogleMonthCache(PeriodCacheBase, table=True):
    __tablename__ = "google_ads_current_month_cache"
    __table_args__ = (
        UniqueConstraint("tenant_id", "period_id", name="uq_google_month_cache"),
    )


class GoogleWeekCache(PeriodCacheBase, table=True):
    __tablename__ = "google_ads_current_week_cache"
    __table_args__ = (
        UniqueConstraint("tenant_id", "period_id", name="uq_google_week_cache"),
    )


# ─────────────────────────────────────────────
# DURABLE SUMMARY STORE
# ─────────────────────────────────────────────


class CampaignSummary(SQLModel, table=True):
    """Durable period summary.

    Unique constraint on (tenant_id, summary_type, summary_date, platform)
    is the upsert conflict key.
    """

    __tablename__ = "campaign_summaries"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "summary_type",
            "summary_date",
            "platform",
            name="uq_campaign_summary",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    summary_type: str = Field(index=True, description="monthly | weekly")
    summary_date: date = Field(
        index=True, description="First day of month / Monday of week"
    )
    platform: str = Field(index=True, description="meta | google")
    totals_json: str = Field(default="{}")
    campaign_data_json: str = Field(default="[]")
    data_source: str = Field(default="", description="Provenance tag")
    last_updated: datetime = Field(
        default_factory=_utcnow, sa_type=DateTime(timezone=True)
    )
