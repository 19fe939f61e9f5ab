"""Calendar-quarter bucketing for transaction dates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta


@dataclass(frozen=True, order=True)
class QuarterKey:
    """A calendar quarter with its inclusive start and end dates.

    Ordering follows ``(year, quarter)`` so a sorted list of keys is
    chronological regardless of how the labels would sort as strings.
    """

    year: int
    quarter: int
    start: date
    end: date

    @property
    def label(self) -> str:
        return f"{self.year}-Q{self.quarter}"

    def __str__(self) -> str:
        return self.label


def _last_day_of_month(year: int, month: int) -> date:
    # Day zero of the following month.
    if month == 12:
        return date(year + 1, 1, 1) - timedelta(days=1)
    return date(year, month + 1, 1) - timedelta(days=1)


def quarter_for(value: date) -> QuarterKey:
    """Return the calendar quarter containing ``value``."""

    quarter = (value.month - 1) // 3 + 1
    start_month = (quarter - 1) * 3 + 1
    end_month = start_month + 2
    return QuarterKey(
        year=value.year,
        quarter=quarter,
        start=date(value.year, start_month, 1),
        end=_last_day_of_month(value.year, end_month),
    )


__all__ = ["QuarterKey", "quarter_for"]
