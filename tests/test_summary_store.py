from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from adsync.core.errors import ValidationError
from adsync.core.periods import SummaryType
from adsync.models.metric_models import CanonicalMetricRecord, Platform, SummaryRecord
from adsync.models.storage_models import CampaignSummary
from adsync.storage.summary_store import SummaryStore
from conftest import NOW, TENANT


def _record(summary_date=date(2025, 10, 1), summary_type=SummaryType.MONTHLY, **kw):
    campaigns = kw.pop(
        "campaign_data",
        [
            CanonicalMetricRecord(campaign_id="c1", spend=Decimal("10.00"), clicks=4, reservations=1),
            CanonicalMetricRecord(campaign_id="c2", spend=Decimal("5.00"), clicks=1),
        ],
    )
    return SummaryRecord(
        tenant_id=TENANT,
        summary_type=summary_type,
        summary_date=summary_date,
        platform=kw.pop("platform", Platform.META),
        campaign_data=campaigns,
        data_source=kw.pop("data_source", "meta_api"),
        last_updated=kw.pop("last_updated", NOW),
        **kw,
    )


def _rows(session):
    return session.exec(select(CampaignSummary)).all()


def test_upsert_is_idempotent_and_replaces_fields(session):
    store = SummaryStore()
    store.upsert(session, _record())
    store.upsert(
        session,
        _record(
            campaign_data=[CanonicalMetricRecord(campaign_id="c3", clicks=9)],
            data_source="meta_api_recollection",
            last_updated=NOW + timedelta(hours=1),
        ),
    )
    session.commit()

    assert len(_rows(session)) == 1
    stored = store.get(session, TENANT, SummaryType.MONTHLY, date(2025, 10, 1), Platform.META)
    assert [c.campaign_id for c in stored.campaign_data] == ["c3"]
    assert stored.totals.clicks == 9
    assert stored.totals.spend == Decimal("0")
    assert stored.data_source == "meta_api_recollection"
    assert stored.last_updated == NOW + timedelta(hours=1)


def test_weekly_tuesday_key_is_rejected_and_not_persisted(session):
    store = SummaryStore()
    with pytest.raises(ValidationError):
        store.upsert(session, _record(date(2025, 11, 11), SummaryType.WEEKLY))
    session.commit()
    assert _rows(session) == []


def test_weekly_monday_key_is_accepted(session):
    store = SummaryStore()
    store.upsert(session, _record(date(2025, 11, 10), SummaryType.WEEKLY))
    session.commit()
    assert store.get(session, TENANT, SummaryType.WEEKLY, date(2025, 11, 10), Platform.META)


def test_totals_are_recomputed_from_campaign_data(session):
    store = SummaryStore()
    stored = store.upsert(session, _record(totals=CanonicalMetricRecord(clicks=999)))
    session.commit()

    assert stored.totals.clicks == 5
    assert stored.totals.spend == Decimal("15.00")
    reread = store.get(session, TENANT, SummaryType.MONTHLY, date(2025, 10, 1), Platform.META)
    assert reread.totals.clicks == 5
    assert reread.totals.reservations == 1


def test_keys_differ_by_platform(session):
    store = SummaryStore()
    store.upsert(session, _record())
    store.upsert(session, _record(platform=Platform.GOOGLE, data_source="google_api"))
    session.commit()
    assert len(_rows(session)) == 2
    assert store.get(session, "other-tenant", SummaryType.MONTHLY, date(2025, 10, 1), Platform.META) is None


def test_scan_by_summary_date(session):
    store = SummaryStore()
    for month in (7, 8, 9, 10):
        store.upsert(session, _record(date(2025, month, 1)))
    session.commit()

    found = store.scan(
        session, TENANT, Platform.META, SummaryType.MONTHLY, date(2025, 8, 1), date(2025, 9, 30)
    )
    assert [r.summary_date for r in found] == [date(2025, 8, 1), date(2025, 9, 1)]


def test_purge_before_cutoff(session):
    store = SummaryStore()
    store.upsert(session, _record(date(2024, 9, 1)))
    store.upsert(session, _record(date(2025, 10, 1)))
    session.commit()

    assert store.purge_before(session, date(2024, 11, 1)) == 1
    session.commit()
    assert [r.summary_date for r in _rows(session)] == [date(2025, 10, 1)]
