"""ADSYNC — Meta Raw → Canonical Transformer.

Converts one campaign-level Meta insight row into a CanonicalMetricRecord.

Meta reports the same event under several action types at once
(``omni_*`` unified, ``offsite_conversion.fb_pixel_*`` pixel-based, and
the bare standard name), so the action table ranks them and only the
highest tier present counts. Tenant custom conversions
(``offsite_conversion.custom.<id>``) outrank all of them for their field.
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from adsync.core.errors import ValidationError
from adsync.core.funnel_rules import (
    CUSTOM,
    GENERIC,
    STANDARD,
    UNIFIED,
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

logger = get_logger("meta.transformer")

CUSTOM_CONVERSION_PREFIX = "offsite_conversion.custom."

# Ordered action table: (pattern, field, precedence, match)
META_ACTION_RULES: List[ActionRule] = [
    # Phone
    ActionRule("click_to_call_call_confirm", "click_to_call", STANDARD),
    ActionRule("click_to_call", "click_to_call", GENERIC, MatchKind.PREFIX),
    # Email / lead
    ActionRule("lead", "email_contacts", STANDARD),
    ActionRule("onsite_conversion.lead_grouped", "email_contacts", STANDARD),
    ActionRule("offsite_conversion.fb_pixel_lead", "email_contacts", GENERIC),
    # Booking step 1: search
    ActionRule("omni_search", "booking_step_1", UNIFIED),
    ActionRule("offsite_conversion.fb_pixel_search", "booking_step_1", STANDARD),
    ActionRule("search", "booking_step_1", GENERIC),
    # Booking step 2: view content
    ActionRule("omni_view_content", "booking_step_2", UNIFIED),
    ActionRule("offsite_conversion.fb_pixel_view_content", "booking_step_2", STANDARD),
    ActionRule("view_content", "booking_step_2", GENERIC),
    # Booking step 3: initiate checkout
    ActionRule("omni_initiated_checkout", "booking_step_3", UNIFIED),
    ActionRule("offsite_conversion.fb_pixel_initiate_checkout", "booking_step_3", STANDARD),
    ActionRule("initiate_checkout", "booking_step_3", GENERIC),
    # Reservations: purchase
    ActionRule("omni_purchase", "reservations", UNIFIED),
    ActionRule("offsite_conversion.fb_pixel_purchase", "reservations", STANDARD),
    ActionRule("purchase", "reservations", GENERIC),
]

# action_values: the monetary twin of the purchase family
META_VALUE_RULES: List[ActionRule] = [
    ActionRule(r.pattern, "reservation_value", r.precedence, r.match)
    for r in META_ACTION_RULES
    if r.target_field == "reservations"
]


def custom_action_type(key: str) -> str:
    """Accept a bare custom conversion id or the full action type."""
    key = key.strip().lower()
    return f"{CUSTOM_CONVERSION_PREFIX}{key}" if key.isdigit() else key


def build_rules(
    custom_conversions: Optional[Mapping[str, str]] = None,
) -> tuple[List[ActionRule], List[ActionRule]]:
    """Action and value tables for one tenant, custom conversions first."""
    custom_actions: List[ActionRule] = []
    custom_values: List[ActionRule] = []
    for key, field in (custom_conversions or {}).items():
        if field not in FUNNEL_FIELDS:
            raise ValidationError(
                f"Custom conversion {key!r} maps to unknown funnel field {field!r}"
            )
        action_type = custom_action_type(key)
        custom_actions.append(ActionRule(action_type, field, CUSTOM))
        if field == "reservations":
            custom_values.append(ActionRule(action_type, "reservation_value", CUSTOM))
    return custom_actions + META_ACTION_RULES, custom_values + META_VALUE_RULES


def _entries(items: Any) -> List[tuple[Any, Any]]:
    if not isinstance(items, list):
        return []
    return [
        (item.get("action_type"), item.get("value"))
        for item in items
        if isinstance(item, dict)
    ]


def _campaign_identity(row: Dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    campaign_id = row.get("campaign_id") or row.get("id")
    campaign_name = row.get("campaign_name") or row.get("name")
    return (
        str(campaign_id) if campaign_id else None,
        str(campaign_name) if campaign_name else None,
    )


def normalize_meta_campaign(
    row: Dict[str, Any],
    custom_conversions: Optional[Mapping[str, str]] = None,
) -> CanonicalMetricRecord:
    """Transform one Meta campaign insight row into canonical form."""
    campaign_id, campaign_name = _campaign_identity(row)
    action_rules, value_rules = build_rules(custom_conversions)
    context = f"meta campaign {campaign_name or campaign_id or 'unknown'}"

    funnel = resolve_funnel(_entries(row.get("actions")), action_rules, context)
    values = resolve_funnel(_entries(row.get("action_values")), value_rules, context)

    record = CanonicalMetricRecord(
        campaign_id=campaign_id,
        campaign_name=campaign_name,
        spend=round_money(to_decimal(row.get("spend"))),
        impressions=round_count(to_decimal(row.get("impressions"))),
        clicks=round_count(to_decimal(row.get("clicks"))),
        reservation_value=round_money(values.get("reservation_value", Decimal("0"))),
        **{f: round_count(funnel.get(f, Decimal("0"))) for f in FUNNEL_FIELDS},
    )

    for warning in check_funnel_order(record.model_dump()):
        logger.warning(f"Funnel inversion for {context}: {warning}")
    return record
