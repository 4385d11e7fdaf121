"""ADSYNC — Aggregator.

Sums campaign-level canonical records into account-level totals. Totals
are always derived from the campaign rows, never taken from a platform's
account-level figure, so a stored summary can never disagree with its own
breakdown. Ratios (CTR, CPC, CPA, ROAS, cost per reservation) are computed
on read by CanonicalMetricRecord.
"""

from decimal import Decimal
from typing import Dict, Iterable, List

from adsync.core.metric_registry import COUNTER_FIELDS, MONETARY_FIELDS
from adsync.models.metric_models import CanonicalMetricRecord


def _zero_totals() -> Dict[str, object]:
    return {f: (Decimal("0") if f in MONETARY_FIELDS else 0) for f in COUNTER_FIELDS}


def aggregate(records: Iterable[CanonicalMetricRecord]) -> CanonicalMetricRecord:
    """Field-wise sum of every counter. Identifiers are dropped."""
    sums = _zero_totals()
    for record in records:
        for field in COUNTER_FIELDS:
            sums[field] += getattr(record, field)
    return CanonicalMetricRecord(**sums)


def merge_campaigns(records: Iterable[CanonicalMetricRecord]) -> List[CanonicalMetricRecord]:
    """Combine rows of the same campaign (e.g. across several periods).

    Rows without a campaign id are kept as they are.
    """
    merged: Dict[str, CanonicalMetricRecord] = {}
    passthrough: List[CanonicalMetricRecord] = []
    for record in records:
        if not record.campaign_id:
            passthrough.append(record)
            continue
        existing = merged.get(record.campaign_id)
        if existing is None:
            merged[record.campaign_id] = record
            continue
        combined = aggregate([existing, record])
        merged[record.campaign_id] = combined.model_copy(
            update={
                "campaign_id": record.campaign_id,
                "campaign_name": existing.campaign_name or record.campaign_name,
            }
        )
    return list(merged.values()) + passthrough


def totals_match(left: CanonicalMetricRecord, right: CanonicalMetricRecord) -> bool:
    """True when every counter agrees."""
    return all(getattr(left, f) == getattr(right, f) for f in COUNTER_FIELDS)
