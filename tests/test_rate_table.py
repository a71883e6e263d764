"""Tests for the tax-year rate and threshold table."""
import datetime as dt
from decimal import Decimal

import pytest

from taxledger.core.exceptions import (
    ConfigurationError,
    DerivedValueError,
    MalformedBracketTableError,
    MissingRateError,
    UnsupportedTaxYearError,
)
from taxledger.models.tax_models import IncomeTaxTier, PayeeTier, WHTPaymentType
from taxledger.services.tax_rules import (
    PIT_BRACKETS_2026,
    TaxBracket,
    get_rules,
    parse_payment_type,
    round_money,
    taxable_base,
    validate_brackets,
)


def test_rules_for_2026():
    rules = get_rules(2026)
    assert rules.vat_rate == Decimal("0.075")
    assert rules.vat_registration_threshold == Decimal("25000000")
    assert rules.wht_exemption_threshold == Decimal("25000000")
    assert rules.cit_small_company_threshold == Decimal("50000000")
    assert rules.cit_rate(IncomeTaxTier.SMALL) == Decimal("0")
    assert rules.cit_rate(IncomeTaxTier.STANDARD) == Decimal("0.30")
    assert rules.cra_abolished is True


@pytest.mark.parametrize("year", [2025, 1999, 2101])
def test_unsupported_year_is_configuration_error(year):
    with pytest.raises(UnsupportedTaxYearError) as exc_info:
        get_rules(year)
    err = exc_info.value
    assert isinstance(err, ConfigurationError)
    assert err.code == "CFG301"
    assert err.kind == "configuration"
    assert err.retryable is False


@pytest.mark.parametrize(
    "year,rate",
    [(2026, "0.04"), (2027, "0.035"), (2028, "0.03"), (2029, "0.025"), (2030, "0.02"), (2045, "0.02")],
)
def test_development_levy_schedule(year, rate):
    assert get_rules(year).development_levy_rate == Decimal(rate)


def test_wht_rates():
    rules = get_rules(2026)
    assert rules.wht_rate(WHTPaymentType.PROFESSIONAL_SERVICES) == Decimal("0.05")
    assert rules.wht_rate(WHTPaymentType.PROFESSIONAL_SERVICES, non_resident=True) == Decimal("0.10")
    assert rules.wht_rate(WHTPaymentType.OTHER_SERVICES) == Decimal("0.02")
    assert rules.wht_rate(WHTPaymentType.CONSTRUCTION, non_resident=True) == Decimal("0.05")
    assert rules.wht_rate(WHTPaymentType.RENT) == Decimal("0.10")
    assert rules.wht_rate(WHTPaymentType.DIRECTORS_FEES, PayeeTier.INDIVIDUAL) == Decimal("0.15")
    assert rules.wht_rate(WHTPaymentType.DIRECTORS_FEES, PayeeTier.INDIVIDUAL, True) == Decimal("0.20")


def test_service_types_exclude_passive_income():
    rules = get_rules(2026)
    assert WHTPaymentType.CONSTRUCTION in rules.wht_service_types
    assert WHTPaymentType.DIVIDENDS not in rules.wht_service_types
    assert WHTPaymentType.RENT not in rules.wht_service_types


def test_parse_payment_type_normalizes_labels():
    assert parse_payment_type("Professional Services", 2026) is WHTPaymentType.PROFESSIONAL_SERVICES
    assert parse_payment_type("directors-fees", 2026) is WHTPaymentType.DIRECTORS_FEES
    with pytest.raises(MissingRateError):
        parse_payment_type("lottery_winnings", 2026)


def test_deadlines():
    deadlines = get_rules(2026).deadlines
    assert deadlines.monthly(2026, 3) == dt.date(2026, 4, 21)
    assert deadlines.monthly(2026, 12) == dt.date(2027, 1, 21)
    assert deadlines.corporate(2026) == dt.date(2027, 6, 30)
    assert deadlines.personal(2026) == dt.date(2027, 3, 31)


def test_shipped_pit_table_is_valid():
    validate_brackets(PIT_BRACKETS_2026)
    assert PIT_BRACKETS_2026[-1].max is None


def _b(lo, hi, rate="0.1"):
    return TaxBracket(Decimal(lo), None if hi is None else Decimal(hi), Decimal(rate))


@pytest.mark.parametrize(
    "brackets,fragment",
    [
        ([], "empty"),
        ([_b("100", None)], "not 0"),
        ([_b("0", "100"), _b("150", None)], "gap"),
        ([_b("0", "100"), _b("90", None)], "overlap"),
        ([_b("0", None), _b("100", None)], "not the last"),
        ([_b("0", "100"), _b("100", "200")], "unbounded"),
        ([_b("0", "100", "1.5"), _b("100", None)], "outside"),
    ],
)
def test_malformed_brackets_rejected(brackets, fragment):
    with pytest.raises(MalformedBracketTableError) as exc_info:
        validate_brackets(brackets, 2026)
    assert fragment in exc_info.value.message
    assert exc_info.value.code == "CFG303"


def test_round_money_half_up():
    assert round_money(Decimal("2.345")) == Decimal("2.35")
    assert round_money(Decimal("2.344")) == Decimal("2.34")
    assert round_money("24.99975") == Decimal("25.00")
    assert round_money(10) == Decimal("10.00")


@pytest.mark.parametrize("value", ["NaN", "abc", float("inf")])
def test_round_money_rejects_non_numbers(value):
    with pytest.raises(DerivedValueError):
        round_money(value)


def test_taxable_base_backs_out_inclusive_vat():
    rate = Decimal("0.075")
    assert taxable_base(Decimal("107500"), True, rate) == Decimal("100000.00")
    assert taxable_base(Decimal("100000"), False, rate) == Decimal("100000.00")
