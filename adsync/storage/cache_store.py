"""ADSYNC — Tiered Cache Store.

One table per (platform × granularity), one snapshot per tenant and
current period. ``put`` replaces the whole snapshot; nothing is merged.
Stale snapshots stay readable: staleness only tells the orchestrator to
revalidate.

Methods take the caller's Session and never commit, so a snapshot and its
summary can be written in a single transaction.
"""

import json
from datetime import datetime, timedelta
from typing import Dict, Optional, Type

from sqlmodel import Session, select

from adsync.config import settings
from adsync.core.logging import get_logger
from adsync.core.periods import Granularity, resolve_period
from adsync.database import as_utc
from adsync.models.metric_models import (
    CachedPeriodSnapshot,
    CanonicalMetricRecord,
    Platform,
)
from adsync.models.storage_models import (
    GoogleMonthCache,
    GoogleWeekCache,
    MetaMonthCache,
    MetaWeekCache,
    PeriodCacheBase,
)

logger = get_logger("storage.cache")

CACHE_TABLES: Dict[tuple[Platform, Granularity], Type[PeriodCacheBase]] = {
    (Platform.META, Granularity.MONTH): MetaMonthCache,
    (Platform.META, Granularity.WEEK): MetaWeekCache,
    (Platform.GOOGLE, Granularity.MONTH): GoogleMonthCache,
    (Platform.GOOGLE, Granularity.WEEK): GoogleWeekCache,
}


class TieredCacheStore:
    """Current-period snapshots keyed by (tenant, platform, granularity, period_id)."""

    def __init__(self, freshness_window: Optional[timedelta] = None):
        self.freshness_window = (
            timedelta(hours=settings.cache_freshness_hours)
            if freshness_window is None
            else freshness_window
        )

    @staticmethod
    def _table(platform: Platform, granularity: Granularity) -> Type[PeriodCacheBase]:
        return CACHE_TABLES[(Platform(platform), Granularity(granularity))]

    def _row(
        self,
        session: Session,
        tenant_id: str,
        platform: Platform,
        granularity: Granularity,
        period_id: str,
    ) -> Optional[PeriodCacheBase]:
        table = self._table(platform, granularity)
        return session.exec(
            select(table).where(
                table.tenant_id == tenant_id,
                table.period_id == period_id,
            )
        ).first()

    def get(
        self,
        session: Session,
        tenant_id: str,
        platform: Platform,
        granularity: Granularity,
        period_id: str,
    ) -> Optional[CachedPeriodSnapshot]:
        """Return the snapshot, or None on a miss."""
        row = self._row(session, tenant_id, platform, granularity, period_id)
        if row is None:
            return None
        return CachedPeriodSnapshot(
            tenant_id=row.tenant_id,
            platform=Platform(platform),
            granularity=Granularity(granularity),
            period_id=row.period_id,
            campaigns=[
                CanonicalMetricRecord.model_validate(c)
                for c in json.loads(row.campaigns_json)
            ],
            totals=CanonicalMetricRecord.model_validate(json.loads(row.totals_json)),
            last_refreshed=as_utc(row.last_refreshed),
        )

    def put(self, session: Session, snapshot: CachedPeriodSnapshot) -> None:
        """Fully replace the snapshot for its key."""
        row = self._row(
            session,
            snapshot.tenant_id,
            snapshot.platform,
            snapshot.granularity,
            snapshot.period_id,
        )
        if row is None:
            row = self._table(snapshot.platform, snapshot.granularity)(
                tenant_id=snapshot.tenant_id,
                period_id=snapshot.period_id,
            )
        row.campaigns_json = json.dumps([c.to_storage() for c in snapshot.campaigns])
        row.totals_json = json.dumps(snapshot.totals.to_storage())
        row.last_refreshed = snapshot.last_refreshed
        session.add(row)
        session.flush()

    def age_seconds(self, snapshot: CachedPeriodSnapshot, now: datetime) -> float:
        return max((now - snapshot.last_refreshed).total_seconds(), 0.0)

    def is_fresh(self, snapshot: CachedPeriodSnapshot, now: datetime) -> bool:
        return now - snapshot.last_refreshed < self.freshness_window

    def purge_superseded(self, session: Session, now: datetime) -> int:
        """Delete snapshots whose period is no longer current."""
        removed = 0
        for (platform, granularity), table in CACHE_TABLES.items():
            current_id = resolve_period(now.date(), granularity)
            rows = session.exec(select(table).where(table.period_id != current_id)).all()
            for row in rows:
                session.delete(row)
            removed += len(rows)
        session.flush()
        if removed:
            logger.info(f"Purged {removed} superseded cache snapshots")
        return removed
