"""ADSYNC — Durable Summary Store.

System of record for every period the engine has fetched. One row per
(tenant, summary_type, summary_date, platform); ``upsert`` replaces the
whole row, and totals are recomputed from ``campaign_data`` on every write.
"""

import json
from datetime import date
from typing import List, Optional

from sqlmodel import Session, select

from adsync.analyzer.kpi_engine import aggregate, totals_match
from adsync.core.logging import get_logger
from adsync.core.periods import SummaryType, validate_summary_key
from adsync.database import as_utc
from adsync.models.metric_models import CanonicalMetricRecord, Platform, SummaryRecord
from adsync.models.storage_models import CampaignSummary

logger = get_logger("storage.summary")


def _to_record(row: CampaignSummary) -> SummaryRecord:
    return SummaryRecord(
        tenant_id=row.tenant_id,
        summary_type=SummaryType(row.summary_type),
        summary_date=row.summary_date,
        platform=Platform(row.platform),
        totals=CanonicalMetricRecord.model_validate(json.loads(row.totals_json)),
        campaign_data=[
            CanonicalMetricRecord.model_validate(c)
            for c in json.loads(row.campaign_data_json)
        ],
        data_source=row.data_source,
        last_updated=as_utc(row.last_updated),
    )


class SummaryStore:
    """Point lookups by period key plus range scans by summary_date."""

    def _row(
        self,
        session: Session,
        tenant_id: str,
        summary_type: SummaryType,
        summary_date: date,
        platform: Platform,
    ) -> Optional[CampaignSummary]:
        return session.exec(
            select(CampaignSummary).where(
                CampaignSummary.tenant_id == tenant_id,
                CampaignSummary.summary_type == SummaryType(summary_type).value,
                CampaignSummary.summary_date == summary_date,
                CampaignSummary.platform == Platform(platform).value,
            )
        ).first()

    def get(
        self,
        session: Session,
        tenant_id: str,
        summary_type: SummaryType,
        summary_date: date,
        platform: Platform,
    ) -> Optional[SummaryRecord]:
        row = self._row(session, tenant_id, summary_type, summary_date, platform)
        return _to_record(row) if row is not None else None

    def upsert(self, session: Session, record: SummaryRecord) -> SummaryRecord:
        """Insert or fully replace the row for the record's key.

        Raises ValidationError (before touching the session) for a weekly
        key that is not a Monday or a monthly key that is not the 1st.
        """
        validate_summary_key(record.summary_type, record.summary_date)

        totals = aggregate(record.campaign_data)
        if not totals_match(record.totals, totals) and record.totals != CanonicalMetricRecord():
            logger.warning(
                f"Supplied totals for {record.tenant_id}/{record.platform.value}/"
                f"{record.summary_date} disagree with campaign_data; recomputed",
                extra={"tenant_id": record.tenant_id, "platform": record.platform.value},
            )
        stored = record.model_copy(update={"totals": totals})

        row = self._row(
            session,
            stored.tenant_id,
            stored.summary_type,
            stored.summary_date,
            stored.platform,
        )
        if row is None:
            row = CampaignSummary(
                tenant_id=stored.tenant_id,
                summary_type=stored.summary_type.value,
                summary_date=stored.summary_date,
                platform=stored.platform.value,
            )
        row.totals_json = json.dumps(totals.to_storage())
        row.campaign_data_json = json.dumps([c.to_storage() for c in stored.campaign_data])
        row.data_source = stored.data_source
        row.last_updated = stored.last_updated
        session.add(row)
        session.flush()
        return stored

    def scan(
        self,
        session: Session,
        tenant_id: str,
        platform: Platform,
        summary_type: SummaryType,
        start: date,
        end: date,
    ) -> List[SummaryRecord]:
        """All records of one type with start <= summary_date <= end."""
        rows = session.exec(
            select(CampaignSummary)
            .where(
                CampaignSummary.tenant_id == tenant_id,
                CampaignSummary.platform == Platform(platform).value,
                CampaignSummary.summary_type == SummaryType(summary_type).value,
                CampaignSummary.summary_date >= start,
                CampaignSummary.summary_date <= end,
            )
            .order_by(CampaignSummary.summary_date)
        ).all()
        return [_to_record(r) for r in rows]

    def purge_before(self, session: Session, cutoff: date) -> int:
        """Delete every summary older than ``cutoff``."""
        rows = session.exec(
            select(CampaignSummary).where(CampaignSummary.summary_date < cutoff)
        ).all()
        for row in rows:
            session.delete(row)
        session.flush()
        if rows:
            logger.info(f"Purged {len(rows)} summaries older than {cutoff.isoformat()}")
        return len(rows)
