"""ADSYNC — Funnel Normalizer.

Single entry point turning raw platform campaign rows into canonical
records, whichever platform they came from.
"""

from typing import Any, Dict, List, Mapping, Optional

from adsync.connectors.google.transformer import normalize_google_campaign
from adsync.connectors.meta.transformer import normalize_meta_campaign
from adsync.core.logging import get_logger
from adsync.models.metric_models import CanonicalMetricRecord, Platform

logger = get_logger("analyzer.funnel")

_NORMALIZERS = {
    Platform.META: normalize_meta_campaign,
    Platform.GOOGLE: normalize_google_campaign,
}


def normalize(
    raw_campaign: Dict[str, Any],
    platform: Platform,
    custom_conversions: Optional[Mapping[str, str]] = None,
) -> CanonicalMetricRecord:
    """Map one raw campaign payload into a CanonicalMetricRecord."""
    return _NORMALIZERS[Platform(platform)](raw_campaign, custom_conversions)


def normalize_campaigns(
    rows: List[Dict[str, Any]],
    platform: Platform,
    custom_conversions: Optional[Mapping[str, str]] = None,
) -> List[CanonicalMetricRecord]:
    records = [normalize(row, platform, custom_conversions) for row in rows]
    logger.info(f"Normalized {len(records)} {Platform(platform).value} campaign rows")
    return records
