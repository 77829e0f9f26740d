"""Recurrence rules: fiscal periods, visible period sets, and next-occurrence dates.

Everything here is pure. Occurrences are never stored; they are derived from the
pattern and an anchor date whenever a caller needs them.

Fiscal years run April through March. Period indexing is always relative to that
fixed twelve-slot array, so a quarterly task shows April, July, October and
January whatever month its own start date falls in.
"""

import re
from datetime import date

from dateutil.relativedelta import relativedelta

from taskledger.core.config import constants
from taskledger.core.errors import InvalidArgumentError
from taskledger.domain.completion import PERIOD_KEY_PATTERN
from taskledger.domain.period import FiscalPeriod
from taskledger.domain.recurring_task import RecurrencePattern


MONTHS_PER_OCCURRENCE: dict[RecurrencePattern, int] = {
    RecurrencePattern.MONTHLY: 1,
    RecurrencePattern.QUARTERLY: 3,
    RecurrencePattern.HALF_YEARLY: 6,
    RecurrencePattern.YEARLY: 12,
}

_PATTERN_DESCRIPTIONS: dict[RecurrencePattern, str] = {
    RecurrencePattern.MONTHLY: "Every month",
    RecurrencePattern.QUARTERLY: "Every 3 months",
    RecurrencePattern.HALF_YEARLY: "Every 6 months",
    RecurrencePattern.YEARLY: "Every year",
}

_MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def coerce_pattern(pattern: RecurrencePattern | str) -> RecurrencePattern:
    """Return the pattern as an enum member, failing fast on anything unrecognized."""
    try:
        return RecurrencePattern(pattern)
    except ValueError as e:
        msg = f"Invalid recurrence pattern: {pattern}. Use monthly, quarterly, half-yearly or yearly"
        raise InvalidArgumentError(msg, field="recurrence_pattern") from e


def months_in_pattern(pattern: RecurrencePattern | str) -> int:
    """Number of calendar months between two consecutive occurrences."""
    return MONTHS_PER_OCCURRENCE[coerce_pattern(pattern)]


def describe_pattern(pattern: RecurrencePattern | str) -> str:
    """Human-readable description of a pattern (e.g., "Every 3 months")."""
    return _PATTERN_DESCRIPTIONS[coerce_pattern(pattern)]


def _require_date(value: date | None, field: str) -> date:
    if value is None:
        msg = f"{field} is required"
        raise InvalidArgumentError(msg, field=field)
    return value


def period_key_for(day: date) -> str:
    """Period key ("YYYY-MM") of the month containing ``day``."""
    return f"{day.year}-{day.month:02d}"


def parse_period_key(key: str) -> date:
    """Validate a period key and return the first day of its month.

    Raises:
        InvalidArgumentError: If the key is not of the form YYYY-MM
    """
    if not isinstance(key, str) or not re.match(PERIOD_KEY_PATTERN, key):
        msg = f"Invalid period key: {key!r}. Expected YYYY-MM"
        raise InvalidArgumentError(msg, field="period_key")
    year, month = key.split("-")
    return date(int(year), int(month), 1)


def fiscal_year_of(day: date) -> int:
    """Reference year of the fiscal year containing ``day`` (April 2025 - March 2026 is 2025)."""
    if day.month >= constants.FISCAL_YEAR_START_MONTH:
        return day.year
    return day.year - 1


def generate_fiscal_year_periods(reference_year: int) -> list[FiscalPeriod]:
    """Build the twelve periods from April of ``reference_year`` to March of the next year."""
    periods = []
    for index in range(constants.PERIODS_PER_FISCAL_YEAR):
        month_offset = constants.FISCAL_YEAR_START_MONTH - 1 + index
        year = reference_year + month_offset // 12
        month = month_offset % 12 + 1
        periods.append(
            FiscalPeriod(
                key=f"{year}-{month:02d}",
                label=f"{_MONTH_ABBREVIATIONS[month - 1]} {year}",
                date=date(year, month, 1),
            )
        )
    return periods


def visible_periods(pattern: RecurrencePattern | str, all_periods: list[FiscalPeriod]) -> list[FiscalPeriod]:
    """Subsequence of the fiscal-year periods in which the pattern has an occurrence.

    Monthly keeps all twelve, quarterly every third starting at April, half-yearly
    April and October, yearly only April.
    """
    return list(all_periods[:: months_in_pattern(pattern)])


def visible_period_keys(pattern: RecurrencePattern | str, reference_year: int) -> list[str]:
    """Keys of the visible periods for one fiscal year."""
    return [p.key for p in visible_periods(pattern, generate_fiscal_year_periods(reference_year))]


def is_visible_period_key(pattern: RecurrencePattern | str, key: str) -> bool:
    """Whether a period key falls on one of the pattern's visible slots."""
    return key in visible_period_keys(pattern, fiscal_year_of(parse_period_key(key)))


def next_occurrence_after(pattern: RecurrencePattern | str, anchor_date: date | None) -> date:
    """Advance ``anchor_date`` by one occurrence using calendar-month arithmetic.

    Month ends clamp: 31 Jan + 1 month is 28 Feb (29 in leap years), never 3 March.
    """
    anchor = _require_date(anchor_date, "anchor_date")
    return anchor + relativedelta(months=months_in_pattern(pattern))


def bounded_next_occurrence(
    pattern: RecurrencePattern | str,
    anchor_date: date | None,
    due_date: date | None = None,
) -> date | None:
    """Next occurrence after ``anchor_date``, or None when it would fall past ``due_date``."""
    candidate = next_occurrence_after(pattern, anchor_date)
    if due_date is not None and candidate > due_date:
        return None
    return candidate


def _nth_occurrence(start: date, step: int, n: int) -> date:
    # Offsets from the original anchor so month-end clamping never drifts (Jan 31 -> Mar 31, not Mar 28)
    return start + relativedelta(months=step * n)


def first_occurrence_on_or_after(pattern: RecurrencePattern | str, anchor_date: date | None, today: date) -> date:
    """First date in the series anchored at ``anchor_date`` that is not before ``today``."""
    anchor = _require_date(anchor_date, "anchor_date")
    step = months_in_pattern(pattern)
    if anchor >= today:
        return anchor

    months_behind = (today.year - anchor.year) * 12 + (today.month - anchor.month)
    n = max(0, months_behind // step - 1)
    candidate = _nth_occurrence(anchor, step, n)
    while candidate < today:
        n += 1
        candidate = _nth_occurrence(anchor, step, n)
    return candidate


def occurrences_between(start_date: date, end_date: date, pattern: RecurrencePattern | str) -> list[date]:
    """Every occurrence from ``start_date`` up to and including ``end_date``."""
    step = months_in_pattern(pattern)
    occurrences = []
    n = 0
    candidate = start_date
    while candidate <= end_date:
        occurrences.append(candidate)
        n += 1
        candidate = _nth_occurrence(start_date, step, n)
    return occurrences


def next_occurrences(start_date: date, pattern: RecurrencePattern | str, count: int) -> list[date]:
    """The first ``count`` occurrences of a series beginning at ``start_date``."""
    if count < 0:
        msg = "count must not be negative"
        raise InvalidArgumentError(msg, field="count")
    step = months_in_pattern(pattern)
    return [_nth_occurrence(start_date, step, n) for n in range(count)]


def is_occurrence_date(day: date, start_date: date, pattern: RecurrencePattern | str) -> bool:
    """Whether ``day`` is one of the occurrences of the series starting at ``start_date``."""
    if day < start_date:
        return False
    step = months_in_pattern(pattern)
    months_apart = (day.year - start_date.year) * 12 + (day.month - start_date.month)
    if months_apart % step:
        return False
    return _nth_occurrence(start_date, step, months_apart // step) == day


def elapsed_occurrences(start_date: date, today: date, pattern: RecurrencePattern | str) -> int:
    """How many occurrences of the series have fallen on or before ``today``."""
    if today < start_date:
        return 0
    return len(occurrences_between(start_date, today, pattern))
