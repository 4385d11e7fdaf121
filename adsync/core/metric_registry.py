"""ADSYNC — Unified Metric Registry.

Defines the canonical set of metrics and their classifications.
Both platform transformers normalize into these names, and the aggregator
sums exactly the counters registered here, so a new funnel step only has
to be added in one place.
"""

from enum import Enum
from typing import Dict


class MetricType(str, Enum):
    """How a metric is categorised."""

    VOLUME = "volume"  # Raw counts: impressions, clicks
    COST = "cost"  # Monetary: spend
    FUNNEL = "funnel"  # Conversion funnel counters
    REVENUE = "revenue"  # Income: reservation_value
    DERIVED = "derived"  # Ratios computed on read, never stored


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self, name: str, metric_type: MetricType, unit: str = "", description: str = ""
    ):
        self.name = name
        self.metric_type = metric_type
        self.unit = unit
        self.description = description

    @property
    def is_counter(self) -> bool:
        """Counters are summed by the aggregator; derived metrics are not."""
        return self.metric_type != MetricType.DERIVED

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value})>"


# ─────────────────────────────────────────────
# CANONICAL COUNTERS — Stored per campaign and per period
# ─────────────────────────────────────────────

CANONICAL_METRICS: Dict[str, MetricDefinition] = {
    # Cost
    "spend": MetricDefinition(
        "spend", MetricType.COST, "currency", "Total amount spent"
    ),
    # Volume
    "impressions": MetricDefinition(
        "impressions", MetricType.VOLUME, "count", "Number of times ad was shown"
    ),
    "clicks": MetricDefinition("clicks", MetricType.VOLUME, "count", "Total clicks"),
    # Funnel
    "click_to_call": MetricDefinition(
        "click_to_call", MetricType.FUNNEL, "count", "Phone call clicks"
    ),
    "email_contacts": MetricDefinition(
        "email_contacts", MetricType.FUNNEL, "count", "Email / lead form contacts"
    ),
    "booking_step_1": MetricDefinition(
        "booking_step_1", MetricType.FUNNEL, "count", "Booking engine search"
    ),
    "booking_step_2": MetricDefinition(
        "booking_step_2", MetricType.FUNNEL, "count", "Booking engine view details"
    ),
    "booking_step_3": MetricDefinition(
        "booking_step_3", MetricType.FUNNEL, "count", "Booking engine begin checkout"
    ),
    "reservations": MetricDefinition(
        "reservations", MetricType.FUNNEL, "count", "Completed reservations"
    ),
    # Revenue
    "reservation_value": MetricDefinition(
        "reservation_value",
        MetricType.REVENUE,
        "currency",
        "Total reservation conversion value",
    ),
}


# ─────────────────────────────────────────────
# DERIVED METRICS — Computed on read, 0 on a zero divisor
# ─────────────────────────────────────────────

DERIVED_METRICS: Dict[str, MetricDefinition] = {
    "conversions": MetricDefinition(
        "conversions", MetricType.DERIVED, "count", "Sum of all funnel counters"
    ),
    "ctr": MetricDefinition("ctr", MetricType.DERIVED, "%", "Click-through rate"),
    "cpc": MetricDefinition("cpc", MetricType.DERIVED, "currency", "Cost per click"),
    "cpa": MetricDefinition(
        "cpa", MetricType.DERIVED, "currency", "Cost per conversion"
    ),
    "roas": MetricDefinition("roas", MetricType.DERIVED, "ratio", "Return on ad spend"),
    "cost_per_reservation": MetricDefinition(
        "cost_per_reservation",
        MetricType.DERIVED,
        "currency",
        "Spend / reservations",
    ),
}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

ALL_METRICS = {**CANONICAL_METRICS, **DERIVED_METRICS}


def metrics_by_type(metric_type: MetricType) -> list[MetricDefinition]:
    """Return all metrics of a given type."""
    return [m for m in ALL_METRICS.values() if m.metric_type == metric_type]


FUNNEL_FIELDS: tuple[str, ...] = tuple(
    m.name for m in metrics_by_type(MetricType.FUNNEL)
)
COUNTER_FIELDS: tuple[str, ...] = tuple(
    name for name, m in CANONICAL_METRICS.items() if m.is_counter
)
MONETARY_FIELDS: tuple[str, ...] = tuple(
    m.name for m in CANONICAL_METRICS.values() if m.unit == "currency"
)
DERIVED_FIELDS: frozenset[str] = frozenset(DERIVED_METRICS)
