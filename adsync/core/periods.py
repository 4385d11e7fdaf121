"""ADSYNC — Period Resolver.

Canonical period identifiers and current/historical classification.

Months are identified as ``YYYY-MM``; weeks follow ISO-8601 (Monday start,
week 1 contains the first Thursday of the year) and are identified as
``YYYY-Www`` using the ISO year, which differs from the calendar year
around New Year.
"""

import calendar
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, model_validator

from adsync.core.errors import ValidationError


class Granularity(str, Enum):
    MONTH = "month"
    WEEK = "week"


class SummaryType(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"


class PeriodKind(str, Enum):
    CURRENT = "current"
    HISTORICAL = "historical"


SUMMARY_TYPE_FOR = {
    Granularity.MONTH: SummaryType.MONTHLY,
    Granularity.WEEK: SummaryType.WEEKLY,
}


class DateRange(BaseModel):
    """Inclusive date range."""

    model_config = {"frozen": True}

    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError(f"end {self.end} is before start {self.start}")
        return self

    @classmethod
    def parse(
        cls, start: Union[str, date], end: Union[str, date]
    ) -> "DateRange":
        """Build a range from ISO strings or dates, raising ValidationError."""
        try:
            return cls(start=start, end=end)
        except ValueError as e:
            raise ValidationError(f"Malformed date range {start!r}..{end!r}: {e}") from e

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


class Period(BaseModel):
    """One calendar month or ISO week."""

    model_config = {"frozen": True}

    granularity: Granularity
    period_id: str
    start: date
    end: date

    @property
    def summary_type(self) -> SummaryType:
        return SUMMARY_TYPE_FOR[self.granularity]

    @property
    def summary_date(self) -> date:
        """Storage key date: first day of month, Monday of week."""
        return self.start

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start, end=self.end)


class PeriodClassification(BaseModel):
    kind: PeriodKind
    period: Optional[Period] = None
    """Set when the range is exactly one month or ISO week."""


# ─────────────────────────────────────────────
# RESOLUTION
# ─────────────────────────────────────────────


def resolve_period(d: date, granularity: Granularity) -> str:
    """Canonical period_id for the month or ISO week containing ``d``."""
    if granularity == Granularity.MONTH:
        return f"{d.year:04d}-{d.month:02d}"
    iso = d.isocalendar()
    return f"{iso[0]:04d}-W{iso[1]:02d}"


def period_containing(d: date, granularity: Granularity) -> Period:
    """Return the full month or ISO week that contains ``d``."""
    if granularity == Granularity.MONTH:
        start = d.replace(day=1)
        end = d.replace(day=calendar.monthrange(d.year, d.month)[1])
    else:
        start = d - timedelta(days=d.weekday())
        end = start + timedelta(days=6)
    return Period(
        granularity=granularity,
        period_id=resolve_period(d, granularity),
        start=start,
        end=end,
    )


def previous_period(d: date, granularity: Granularity) -> Period:
    """The period immediately before the one containing ``d``."""
    current = period_containing(d, granularity)
    return period_containing(current.start - timedelta(days=1), granularity)


def exact_period(date_range: DateRange) -> Optional[Period]:
    """The single month or week the range covers exactly, if any."""
    month = period_containing(date_range.start, Granularity.MONTH)
    if month.date_range == date_range:
        return month
    week = period_containing(date_range.start, Granularity.WEEK)
    if week.date_range == date_range:
        return week
    return None


def classify(date_range: DateRange, now: datetime) -> PeriodClassification:
    """Current only when the range is exactly the month or week containing now.

    A partial overlap with the current period is historical.
    """
    today = now.date()
    period = exact_period(date_range)
    if period is not None:
        current = period_containing(today, period.granularity)
        if current == period:
            return PeriodClassification(kind=PeriodKind.CURRENT, period=period)
    return PeriodClassification(kind=PeriodKind.HISTORICAL, period=period)


def split_range(date_range: DateRange) -> Optional[List[Period]]:
    """Split a range into consecutive whole months or whole ISO weeks.

    Returns None when the range is not aligned to either granularity.
    """
    last_day = calendar.monthrange(date_range.end.year, date_range.end.month)[1]
    if date_range.start.day == 1 and date_range.end.day == last_day:
        granularity = Granularity.MONTH
    elif date_range.start.weekday() == 0 and date_range.end.weekday() == 6:
        granularity = Granularity.WEEK
    else:
        return None

    periods: List[Period] = []
    cursor = date_range.start
    while cursor <= date_range.end:
        period = period_containing(cursor, granularity)
        periods.append(period)
        cursor = period.end + timedelta(days=1)
    return periods


def validate_summary_key(summary_type: SummaryType, summary_date: date) -> None:
    """Reject storage keys that are not the first day of their period."""
    if summary_type == SummaryType.WEEKLY and summary_date.weekday() != 0:
        raise ValidationError(
            f"Weekly summary_date must be a Monday, got {summary_date.isoformat()} "
            f"({calendar.day_name[summary_date.weekday()]})"
        )
    if summary_type == SummaryType.MONTHLY and summary_date.day != 1:
        raise ValidationError(
            f"Monthly summary_date must be the first of the month, got {summary_date.isoformat()}"
        )


def months_before(d: date, months: int) -> date:
    """First day of the month ``months`` months before the month of ``d``."""
    index = d.year * 12 + (d.month - 1) - months
    return date(index // 12, index % 12 + 1, 1)
