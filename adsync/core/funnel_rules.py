"""ADSYNC — Funnel Rule Tables.

Platforms report conversions as heterogeneous ``(key, value)`` entries
(Meta ``action_type`` strings, Google conversion action names). Each
platform declares an ordered table of ``ActionRule`` objects; this module
evaluates a table deterministically:

1. collect every entry key matched per target field, remembering the best
   precedence of any rule of that field that matched the key;
2. per field, keep only the highest precedence tier *present* and sum the
   values of the keys in that tier.

So a tenant's custom conversion suppresses the standard event for the same
field as soon as the custom key appears, even with a value of 0, and
never affects other tenants or other fields.
"""

from collections import defaultdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from adsync.core.logging import get_logger

logger = get_logger("core.funnel_rules")

# Precedence tiers shared by the platform tables
CUSTOM = 100
UNIFIED = 20
STANDARD = 10
GENERIC = 5


class MatchKind(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"
    CONTAINS = "contains"


class ActionRule:
    """Maps entry keys matching ``pattern`` onto ``target_field``."""

    def __init__(
        self,
        pattern: str,
        target_field: str,
        precedence: int,
        match: MatchKind = MatchKind.EXACT,
        exclude: Sequence[str] = (),
    ):
        self.pattern = pattern.lower()
        self.target_field = target_field
        self.precedence = precedence
        self.match = match
        self.exclude = tuple(e.lower() for e in exclude)

    def matches(self, key: str) -> bool:
        if any(e in key for e in self.exclude):
            return False
        if self.match == MatchKind.EXACT:
            return key == self.pattern
        if self.match == MatchKind.PREFIX:
            return key.startswith(self.pattern)
        return self.pattern in key

    def __repr__(self) -> str:
        return f"<ActionRule {self.match.value}:{self.pattern} → {self.target_field} @{self.precedence}>"


def to_decimal(value: Any) -> Decimal:
    """Parse a platform value. Negative, non-numeric and non-finite → 0."""
    if value is None or value == "":
        return Decimal("0")
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not parsed.is_finite() or parsed < 0:
        return Decimal("0")
    return parsed


def round_count(value: Decimal) -> int:
    """Half-up rounding for attribution-model fractional conversions."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def resolve_funnel(
    entries: Iterable[Tuple[Any, Any]],
    rules: Sequence[ActionRule],
    context: str = "",
) -> Dict[str, Decimal]:
    """Evaluate ``rules`` over ``(key, value)`` entries. See module docstring."""
    values_by_key: Dict[str, Decimal] = defaultdict(Decimal)
    for key, raw_value in entries:
        normalized_key = str(key or "").strip().lower()
        if normalized_key:
            values_by_key[normalized_key] += to_decimal(raw_value)

    # Pass 1: field → {key: best precedence}
    matched: Dict[str, Dict[str, int]] = defaultdict(dict)
    for key in values_by_key:
        for rule in rules:
            if not rule.matches(key):
                continue
            by_key = matched[rule.target_field]
            if rule.precedence > by_key.get(key, -1):
                by_key[key] = rule.precedence

    # Pass 2: only the top tier present counts
    resolved: Dict[str, Decimal] = {}
    for field, by_key in matched.items():
        top = max(by_key.values())
        winners = [k for k, p in by_key.items() if p == top]
        suppressed = [k for k, p in by_key.items() if p < top]
        if suppressed:
            logger.debug(
                f"{context or 'funnel'}: {field} uses {winners}, suppressed {suppressed}"
            )
        resolved[field] = sum((values_by_key[k] for k in winners), Decimal("0"))
    return resolved


def check_funnel_order(metrics: Mapping[str, Any]) -> List[str]:
    """Describe funnel inversions (a later step exceeding an earlier one).

    Inversions can be legitimate under attribution windows, so they are
    reported, never corrected.
    """
    steps = [
        ("booking_step_1", "booking_step_2"),
        ("booking_step_2", "booking_step_3"),
        ("booking_step_3", "reservations"),
    ]
    warnings: List[str] = []
    for earlier, later in steps:
        before = metrics.get(earlier, 0) or 0
        after = metrics.get(later, 0) or 0
        if before > 0 and after > before:
            warnings.append(f"{later} ({after}) > {earlier} ({before})")
    return warnings
