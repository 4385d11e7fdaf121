from decimal import Decimal

import pytest

from adsync.analyzer.funnel_engine import normalize, normalize_campaigns
from adsync.connectors.google.transformer import normalize_google_campaign
from adsync.connectors.meta.transformer import custom_action_type, normalize_meta_campaign
from adsync.core.errors import ValidationError
from adsync.core.funnel_rules import (
    CUSTOM,
    GENERIC,
    STANDARD,
    ActionRule,
    MatchKind,
    check_funnel_order,
    resolve_funnel,
    to_decimal,
)
from adsync.models.metric_models import Platform
from conftest import GOOGLE_ROWS, META_ROWS


# ── Rule evaluation ──


def test_top_tier_present_wins():
    rules = [
        ActionRule("custom_checkout", "booking_step_3", CUSTOM),
        ActionRule("initiate_checkout", "booking_step_3", GENERIC),
    ]
    resolved = resolve_funnel(
        [("custom_checkout", "7"), ("initiate_checkout", "12")], rules
    )
    assert resolved["booking_step_3"] == Decimal("7")


def test_presence_not_value_decides_suppression():
    rules = [
        ActionRule("custom_checkout", "booking_step_3", CUSTOM),
        ActionRule("initiate_checkout", "booking_step_3", GENERIC),
    ]
    resolved = resolve_funnel([("custom_checkout", "0"), ("initiate_checkout", "12")], rules)
    assert resolved["booking_step_3"] == Decimal("0")


def test_same_tier_keys_are_summed():
    rules = [
        ActionRule("phone", "click_to_call", STANDARD, MatchKind.CONTAINS),
    ]
    resolved = resolve_funnel([("Phone call", 2), ("phone click", 3)], rules)
    assert resolved["click_to_call"] == Decimal("5")


def test_exclude_markers_block_a_match():
    rule = ActionRule("rezerwacja", "reservations", STANDARD, MatchKind.CONTAINS, exclude=("krok",))
    assert rule.matches("rezerwacja")
    assert not rule.matches("krok 2 - rezerwacja")


@pytest.mark.parametrize("raw", [None, "", "abc", "-5", "NaN", "Infinity", -3])
def test_invalid_values_count_as_zero(raw):
    assert to_decimal(raw) == Decimal("0")


def test_funnel_inversions_are_reported():
    warnings = check_funnel_order(
        {"booking_step_1": 5, "booking_step_2": 9, "booking_step_3": 0, "reservations": 1}
    )
    assert warnings == ["booking_step_2 (9) > booking_step_1 (5)"]


# ── Meta ──


def test_meta_custom_conversion_suppresses_standard_checkout():
    record = normalize_meta_campaign(META_ROWS[0], {"555": "booking_step_3"})
    # omni_initiated_checkout reports 12, the custom event 7
    assert record.booking_step_3 == 7


def test_meta_without_custom_conversion_uses_unified_event():
    record = normalize_meta_campaign(META_ROWS[0])
    assert record.booking_step_3 == 12


def test_meta_unified_purchase_is_not_double_counted():
    record = normalize_meta_campaign(META_ROWS[0], {"555": "booking_step_3"})
    assert record.reservations == 3
    assert record.reservation_value == Decimal("900.00")
    assert record.click_to_call == 2
    assert record.booking_step_1 == 40
    assert record.booking_step_2 == 25
    assert record.spend == Decimal("100.50")
    assert record.campaign_id == "c1"


def test_meta_pixel_event_used_when_no_unified_event():
    row = {
        "campaign_id": "c9",
        "actions": [
            {"action_type": "offsite_conversion.fb_pixel_purchase", "value": "2"},
            {"action_type": "purchase", "value": "5"},
        ],
    }
    assert normalize_meta_campaign(row).reservations == 2


def test_meta_unknown_and_negative_actions_are_ignored():
    row = {
        "campaign_id": "c9",
        "spend": "-10",
        "actions": [
            {"action_type": "link_click", "value": "100"},
            {"action_type": "lead", "value": "-3"},
            {"action_type": "omni_search", "value": "not-a-number"},
        ],
    }
    record = normalize_meta_campaign(row)
    assert record.spend == Decimal("0.00")
    assert record.email_contacts == 0
    assert record.booking_step_1 == 0
    assert record.conversions == 0


def test_meta_custom_conversion_to_unknown_field_is_rejected():
    with pytest.raises(ValidationError):
        normalize_meta_campaign(META_ROWS[0], {"555": "signups"})


def test_custom_action_type_expands_bare_ids():
    assert custom_action_type("555") == "offsite_conversion.custom.555"
    assert custom_action_type("offsite_conversion.custom.9") == "offsite_conversion.custom.9"


# ── Google ──


def test_google_conversion_names_map_to_funnel():
    record = normalize_google_campaign(GOOGLE_ROWS[0])
    assert record.spend == Decimal("125.50")
    assert record.reservations == 3  # 2.5 rounded half-up
    assert record.reservation_value == Decimal("1234.57")
    assert record.booking_step_1 == 30
    assert record.booking_step_2 == 10
    assert record.click_to_call == 5


def test_google_booking_step_names_are_not_reservations():
    row = {
        "campaign_id": "g2",
        "conversions": [{"conversion_name": "Rezerwacja - krok w BE", "conversions": 4}],
    }
    assert normalize_google_campaign(row).reservations == 0


def test_google_tenant_conversion_name_outranks_patterns():
    row = {
        "campaign_id": "g3",
        "conversions": [
            {"conversion_name": "Step 3 w BE", "conversions": 9},
            {"conversion_name": "BE checkout (GA4)", "conversions": 6},
        ],
    }
    record = normalize_google_campaign(row, {"BE checkout (GA4)": "booking_step_3"})
    assert record.booking_step_3 == 6


# ── Dispatch ──


def test_normalize_dispatches_by_platform():
    assert normalize(META_ROWS[1], Platform.META).email_contacts == 4
    assert normalize(GOOGLE_ROWS[0], "google").campaign_id == "g1"


def test_normalize_campaigns_handles_empty_payload():
    assert normalize_campaigns([], Platform.META) == []
