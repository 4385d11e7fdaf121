"""ADSYNC — Google Ads Raw → Canonical Transformer.

Google reports conversions per named conversion action, and the names are
chosen by each advertiser (often in Polish). Standard names are matched by
substring; a tenant can pin exact action names to funnel fields, and those
outrank the substring patterns for the same field.
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from adsync.core.errors import ValidationError
from adsync.core.funnel_rules import (
    CUSTOM,
    GENERIC,
    STANDARD,
    ActionRule,
    MatchKind,
    check_funnel_order,
    resolve_funnel,
    round_count,
    round_money,
    to_decimal,
)
from adsync.core.metric_registry import FUNNEL_FIELDS
from adsync.core.logging import get_logger
from adsync.models.metric_models import CanonicalMetricRecord

logger = get_logger("google.transformer")

MICROS = Decimal("1000000")

# Booking-engine step names also contain reservation words ("krok rezerwacyjny")
BOOKING_STEP_MARKERS = ("krok", "step", "booking engine", "booking_step")

_PATTERNS: Dict[str, tuple[str, ...]] = {
    "click_to_call": ("phone", "telefon", "call", "dzwonienie"),
    "email_contacts": ("email", "e-mail", "mail", "contact", "kontakt", "formularz"),
    "booking_step_1": (
        "step 1", "step1", "krok 1", "1 krok", "pierwszy krok", "pierwszy_krok", "booking_step_1",
    ),
    "booking_step_2": (
        "step 2", "step2", "krok 2", "2 krok", "drugi krok", "drugi_krok", "booking_step_2",
    ),
    "booking_step_3": (
        "step 3", "step3", "krok 3", "3 krok", "trzeci krok", "trzeci_krok", "booking_step_3",
    ),
}

_RESERVATION_PATTERNS = ("rezerwacja", "reservation", "zakup", "purchase", "complete")

GOOGLE_CONVERSION_RULES: List[ActionRule] = [
    ActionRule(pattern, field, STANDARD, MatchKind.CONTAINS)
    for field, patterns in _PATTERNS.items()
    for pattern in patterns
] + [
    ActionRule(pattern, "reservations", STANDARD, MatchKind.CONTAINS, exclude=BOOKING_STEP_MARKERS)
    for pattern in _RESERVATION_PATTERNS
] + [
    # Event-style names imported from GA4 / the pixel
    ActionRule("search", "booking_step_1", GENERIC),
    ActionRule("view_content", "booking_step_2", GENERIC),
    ActionRule("view_item", "booking_step_2", GENERIC),
    ActionRule("initiate_checkout", "booking_step_3", GENERIC),
    ActionRule("begin_checkout", "booking_step_3", GENERIC),
]

GOOGLE_VALUE_RULES: List[ActionRule] = [
    ActionRule(r.pattern, "reservation_value", r.precedence, r.match, r.exclude)
    for r in GOOGLE_CONVERSION_RULES
    if r.target_field == "reservations"
]


def build_rules(
    custom_conversions: Optional[Mapping[str, str]] = None,
) -> tuple[List[ActionRule], List[ActionRule]]:
    custom_counts: List[ActionRule] = []
    custom_values: List[ActionRule] = []
    for name, field in (custom_conversions or {}).items():
        if field not in FUNNEL_FIELDS:
            raise ValidationError(
                f"Custom conversion {name!r} maps to unknown funnel field {field!r}"
            )
        custom_counts.append(ActionRule(name, field, CUSTOM))
        if field == "reservations":
            custom_values.append(ActionRule(name, "reservation_value", CUSTOM))
    return custom_counts + GOOGLE_CONVERSION_RULES, custom_values + GOOGLE_VALUE_RULES


def _spend(row: Dict[str, Any]) -> Decimal:
    if row.get("cost_micros") is not None:
        return round_money(to_decimal(row["cost_micros"]) / MICROS)
    return round_money(to_decimal(row.get("spend")))


def normalize_google_campaign(
    row: Dict[str, Any],
    custom_conversions: Optional[Mapping[str, str]] = None,
) -> CanonicalMetricRecord:
    """Transform one Google Ads campaign row into canonical form."""
    campaign_id = row.get("campaign_id")
    campaign_name = row.get("campaign_name")
    context = f"google campaign {campaign_name or campaign_id or 'unknown'}"
    count_rules, value_rules = build_rules(custom_conversions)

    conversions = row.get("conversions")
    if not isinstance(conversions, list):
        conversions = []
    conversions = [c for c in conversions if isinstance(c, dict)]
    names = [c.get("conversion_name") or c.get("name") for c in conversions]

    funnel = resolve_funnel(
        zip(names, (c.get("conversions") for c in conversions)), count_rules, context
    )
    values = resolve_funnel(
        zip(names, (c.get("conversion_value") for c in conversions)), value_rules, context
    )

    record = CanonicalMetricRecord(
        campaign_id=str(campaign_id) if campaign_id else None,
        campaign_name=str(campaign_name) if campaign_name else None,
        spend=_spend(row),
        impressions=round_count(to_decimal(row.get("impressions"))),
        clicks=round_count(to_decimal(row.get("clicks"))),
        reservation_value=round_money(values.get("reservation_value", Decimal("0"))),
        **{f: round_count(funnel.get(f, Decimal("0"))) for f in FUNNEL_FIELDS},
    )

    for warning in check_funnel_order(record.model_dump()):
        logger.warning(f"Funnel inversion for {context}: {warning}")
    return record
