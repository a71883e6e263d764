"""Tax-year keyed rates, thresholds, bracket tables and deadlines.

Pure configuration for the Nigeria Tax Act 2025 regime (effective 2026).
No database access and no business logic beyond lookup and validation.
Every value is a ``Decimal``; rates are fractions (0.075 == 7.5%).
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from taxledger.core.config import settings
from taxledger.core.exceptions import (
    DerivedValueError,
    MalformedBracketTableError,
    MissingRateError,
    UnsupportedTaxYearError,
)
from taxledger.models.tax_models import IncomeTaxTier, PayeeTier, WHTPaymentType

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Any) -> Decimal:
    """Quantize a monetary value to kobo (2 dp, half-up)."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise DerivedValueError("amount", value, "not a number") from exc
    if not amount.is_finite():
        raise DerivedValueError("amount", value, "not a finite number")
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TaxBracket:
    """Half-open income range ``[min, max)`` taxed at ``rate``. ``max=None`` is unbounded."""

    min: Decimal
    max: Decimal | None
    rate: Decimal
    label: str | None = None

    def portion(self, income: Decimal) -> Decimal:
        """Share of ``income`` that falls inside this bracket."""
        if income <= self.min:
            return ZERO
        upper = income if self.max is None else min(income, self.max)
        return upper - self.min


@dataclass(frozen=True)
class WHTRate:
    resident: Decimal
    non_resident: Decimal


@dataclass(frozen=True)
class FilingDeadlines:
    """Deadline rules; monthly returns fall due on ``monthly_day`` of the following month."""

    monthly_day: int = 21
    cit_month: int = 6
    cit_day: int = 30
    pit_month: int = 3
    pit_day: int = 31

    def monthly(self, year: int, month: int) -> dt.date:
        if month == 12:
            return dt.date(year + 1, 1, self.monthly_day)
        return dt.date(year, month + 1, self.monthly_day)

    def corporate(self, tax_year: int) -> dt.date:
        return dt.date(tax_year + 1, self.cit_month, self.cit_day)

    def personal(self, tax_year: int) -> dt.date:
        return dt.date(tax_year + 1, self.pit_month, self.pit_day)


@dataclass(frozen=True)
class TaxYearRules:
    tax_year: int
    vat_rate: Decimal
    vat_registration_threshold: Decimal
    wht_exemption_threshold: Decimal
    cit_small_company_threshold: Decimal
    cit_rates: Mapping[IncomeTaxTier, Decimal]
    development_levy_rate: Decimal
    pit_brackets: tuple[TaxBracket, ...]
    wht_rates: Mapping[WHTPaymentType, Mapping[PayeeTier, WHTRate]]
    wht_service_types: frozenset[WHTPaymentType]
    pension_rate: Decimal
    nhf_rate: Decimal
    nhf_income_cap: Decimal
    nhis_rate: Decimal
    rent_relief_rate: Decimal
    rent_relief_cap: Decimal
    cra_abolished: bool
    deadlines: FilingDeadlines = field(default_factory=FilingDeadlines)

    def cit_rate(self, tier: IncomeTaxTier) -> Decimal:
        try:
            return self.cit_rates[tier]
        except KeyError:
            raise MissingRateError("CIT rate", self.tax_year, key=str(tier.value)) from None

    def wht_rate(
        self,
        payment_type: WHTPaymentType,
        payee_tier: PayeeTier = PayeeTier.COMPANY,
        non_resident: bool = False,
    ) -> Decimal:
        try:
            rate = self.wht_rates[payment_type][payee_tier]
        except KeyError:
            raise MissingRateError(
                "WHT rate", self.tax_year, key=f"{payment_type.value}/{payee_tier.value}"
            ) from None
        return rate.non_resident if non_resident else rate.resident


def _d(value: str) -> Decimal:
    return Decimal(value)


def _same_for_both_tiers(resident: str, non_resident: str) -> dict[PayeeTier, WHTRate]:
    rate = WHTRate(_d(resident), _d(non_resident))
    return {PayeeTier.COMPANY: rate, PayeeTier.INDIVIDUAL: rate}


# Withholding Tax Regulations 2024 (resident / non-resident)
WHT_RATES_2026: dict[WHTPaymentType, dict[PayeeTier, WHTRate]] = {
    WHTPaymentType.PROFESSIONAL_SERVICES: _same_for_both_tiers("0.05", "0.10"),
    WHTPaymentType.TECHNICAL_SERVICES: _same_for_both_tiers("0.05", "0.10"),
    WHTPaymentType.MANAGEMENT_SERVICES: _same_for_both_tiers("0.05", "0.10"),
    WHTPaymentType.OTHER_SERVICES: _same_for_both_tiers("0.02", "0.10"),
    WHTPaymentType.COMMISSION: _same_for_both_tiers("0.05", "0.10"),
    WHTPaymentType.CONSTRUCTION: _same_for_both_tiers("0.02", "0.05"),
    WHTPaymentType.DIVIDENDS: _same_for_both_tiers("0.10", "0.10"),
    WHTPaymentType.INTEREST: _same_for_both_tiers("0.10", "0.10"),
    WHTPaymentType.ROYALTIES: _same_for_both_tiers("0.10", "0.10"),
    WHTPaymentType.RENT: _same_for_both_tiers("0.10", "0.10"),
    WHTPaymentType.DIRECTORS_FEES: {
        PayeeTier.COMPANY: WHTRate(_d("0.15"), _d("0.20")),
        PayeeTier.INDIVIDUAL: WHTRate(_d("0.15"), _d("0.20")),
    },
}

# Payment types a small supplier is exempt from having withheld
WHT_SERVICE_TYPES = frozenset({
    WHTPaymentType.PROFESSIONAL_SERVICES,
    WHTPaymentType.TECHNICAL_SERVICES,
    WHTPaymentType.MANAGEMENT_SERVICES,
    WHTPaymentType.OTHER_SERVICES,
    WHTPaymentType.COMMISSION,
    WHTPaymentType.CONSTRUCTION,
})

PIT_BRACKETS_2026: tuple[TaxBracket, ...] = (
    TaxBracket(_d("0"), _d("800000"), _d("0.00"), "First ₦800,000"),
    TaxBracket(_d("800000"), _d("3000000"), _d("0.15"), "Next ₦2,200,000"),
    TaxBracket(_d("3000000"), _d("12000000"), _d("0.18"), "Next ₦9,000,000"),
    TaxBracket(_d("12000000"), _d("25000000"), _d("0.21"), "Next ₦13,000,000"),
    TaxBracket(_d("25000000"), _d("50000000"), _d("0.23"), "Next ₦25,000,000"),
    TaxBracket(_d("50000000"), None, _d("0.25"), "Above ₦50,000,000"),
)

# Development levy phases down from 4% (2026) to 2% (2030 onward)
DEVELOPMENT_LEVY_SCHEDULE: dict[int, Decimal] = {
    2026: _d("0.04"),
    2027: _d("0.035"),
    2028: _d("0.03"),
    2029: _d("0.025"),
}
DEVELOPMENT_LEVY_FLOOR = _d("0.02")


def _rules_for(tax_year: int) -> TaxYearRules:
    return TaxYearRules(
        tax_year=tax_year,
        vat_rate=_d("0.075"),
        vat_registration_threshold=_d("25000000"),
        wht_exemption_threshold=_d("25000000"),
        cit_small_company_threshold=_d("50000000"),
        cit_rates={IncomeTaxTier.SMALL: _d("0.00"), IncomeTaxTier.STANDARD: _d("0.30")},
        development_levy_rate=DEVELOPMENT_LEVY_SCHEDULE.get(tax_year, DEVELOPMENT_LEVY_FLOOR),
        pit_brackets=PIT_BRACKETS_2026,
        wht_rates=WHT_RATES_2026,
        wht_service_types=WHT_SERVICE_TYPES,
        pension_rate=_d("0.08"),
        nhf_rate=_d("0.025"),
        nhf_income_cap=_d("2500000"),
        nhis_rate=_d("0.05"),
        rent_relief_rate=_d("0.20"),
        rent_relief_cap=_d("500000"),
        cra_abolished=True,
    )


def validate_brackets(brackets: tuple[TaxBracket, ...] | list[TaxBracket], tax_year: int | None = None) -> None:
    """Check that ``brackets`` tile ``[0, ∞)`` in order with no gaps or overlaps.

    Raises:
        MalformedBracketTableError: On the first violation found.
    """
    if not brackets:
        raise MalformedBracketTableError("table is empty", tax_year)
    if brackets[0].min != 0:
        raise MalformedBracketTableError(f"first bracket starts at {brackets[0].min}, not 0", tax_year)

    for index, bracket in enumerate(brackets):
        if bracket.rate < 0 or bracket.rate > 1:
            raise MalformedBracketTableError(f"bracket {index} has rate {bracket.rate} outside [0, 1]", tax_year)
        is_last = index == len(brackets) - 1
        if bracket.max is None:
            if not is_last:
                raise MalformedBracketTableError(f"unbounded bracket {index} is not the last bracket", tax_year)
            continue
        if bracket.max <= bracket.min:
            raise MalformedBracketTableError(
                f"bracket {index} is empty or inverted ({bracket.min} to {bracket.max})", tax_year
            )
        if is_last:
            raise MalformedBracketTableError("top bracket must be unbounded", tax_year)
        following = brackets[index + 1]
        if following.min != bracket.max:
            problem = "gap" if following.min > bracket.max else "overlap"
            raise MalformedBracketTableError(
                f"{problem} between {bracket.max} and {following.min}", tax_year
            )


def _build_table() -> dict[int, TaxYearRules]:
    table = {
        year: _rules_for(year)
        for year in range(settings.MIN_SUPPORTED_TAX_YEAR, settings.MAX_SUPPORTED_TAX_YEAR + 1)
    }
    for year, rules in table.items():
        validate_brackets(rules.pit_brackets, year)
    logger.debug(f"Loaded tax rules for {len(table)} tax years")
    return table


RULES_BY_YEAR: dict[int, TaxYearRules] = _build_table()


def get_rules(tax_year: int) -> TaxYearRules:
    """Return the rules for ``tax_year``.

    Never clamps: a year outside the supported window (or one with no
    configured rules) is a configuration error.
    """
    if not isinstance(tax_year, int) or isinstance(tax_year, bool):
        raise UnsupportedTaxYearError(tax_year, settings.MIN_SUPPORTED_TAX_YEAR, settings.MAX_SUPPORTED_TAX_YEAR)
    if tax_year < settings.MIN_SUPPORTED_TAX_YEAR or tax_year > settings.MAX_SUPPORTED_TAX_YEAR:
        raise UnsupportedTaxYearError(tax_year, settings.MIN_SUPPORTED_TAX_YEAR, settings.MAX_SUPPORTED_TAX_YEAR)
    rules = RULES_BY_YEAR.get(tax_year)
    if rules is None:
        raise UnsupportedTaxYearError(tax_year, settings.MIN_SUPPORTED_TAX_YEAR, settings.MAX_SUPPORTED_TAX_YEAR)
    return rules


def parse_payment_type(value: str | WHTPaymentType, tax_year: int) -> WHTPaymentType:
    """Normalize a stored payment type string; unknown types are configuration errors."""
    if isinstance(value, WHTPaymentType):
        return value
    normalized = (value or "").strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return WHTPaymentType(normalized)
    except ValueError:
        raise MissingRateError("WHT payment type", tax_year, key=str(value)) from None


def taxable_base(amount: Any, is_tax_inclusive: bool, vat_rate: Decimal) -> Decimal:
    """Tax-exclusive base of a transaction amount, rounded to kobo."""
    value = round_money(amount)
    if is_tax_inclusive:
        return round_money(value / (Decimal("1") + vat_rate))
    return value
