"""Tax period keys and date ranges.

A period is a calendar month of a tax year, or the whole year (stored with
month 0 so both kinds share one unique key).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Tuple

from taxledger.core.exceptions import InvalidPeriodError

ANNUAL = 0


def calculate_period_range(year: int, month: Optional[int] = None) -> Tuple[date, date]:
    """Calculate start_date and end_date for a monthly or annual period.

    Args:
        year: Tax year
        month: 1-12 for a monthly period; None or 0 for the whole year

    Returns:
        Tuple of (start_date, end_date) inclusive

    Raises:
        InvalidPeriodError: If the month is outside 1-12
    """
    if not month:
        return (date(year, 1, 1), date(year, 12, 31))
    if month < 1 or month > 12:
        raise InvalidPeriodError(year, month)
    start = date(year, month, 1)
    if month == 12:
        end = date(year, 12, 31)
    else:
        end = date(year, month + 1, 1) - timedelta(days=1)
    return (start, end)


@dataclass(frozen=True, order=True)
class TaxPeriod:
    year: int
    month: int = ANNUAL

    def __post_init__(self) -> None:
        if self.month < 0 or self.month > 12:
            raise InvalidPeriodError(self.year, self.month)

    @classmethod
    def monthly(cls, year: int, month: int) -> TaxPeriod:
        if not month:
            raise InvalidPeriodError(year, month)
        return cls(year, month)

    @classmethod
    def annual(cls, year: int) -> TaxPeriod:
        return cls(year, ANNUAL)

    @classmethod
    def for_date(cls, value: date) -> TaxPeriod:
        return cls(value.year, value.month)

    @property
    def is_annual(self) -> bool:
        return self.month == ANNUAL

    @property
    def start(self) -> date:
        return calculate_period_range(self.year, self.month)[0]

    @property
    def end(self) -> date:
        return calculate_period_range(self.year, self.month)[1]

    @property
    def label(self) -> str:
        return f"{self.year}" if self.is_annual else f"{self.year}-{self.month:02d}"

    def year_period(self) -> TaxPeriod:
        return TaxPeriod.annual(self.year)

    def __str__(self) -> str:
        return self.label


def affected_periods(dates: Iterable[date]) -> list[TaxPeriod]:
    """Monthly periods for ``dates`` plus the annual roll-up of each year touched.

    Deduplicated and ordered with every year's months before its annual period.
    """
    months = {TaxPeriod.for_date(d) for d in dates if d is not None}
    years = {p.year for p in months}
    return sorted(months) + [TaxPeriod.annual(y) for y in sorted(years)]
