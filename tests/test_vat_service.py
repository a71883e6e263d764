"""Tests for VAT computation and period summaries."""
import datetime as dt
import logging
from decimal import Decimal

import pytest

from taxledger.core.exceptions import (
    ComplianceAssertionError,
    DerivedValueError,
    EntityNotFoundError,
    VATChargeNotAllowedError,
)
from taxledger.models.schemas import TransactionSnapshot
from taxledger.models.tax_models import (
    TransactionKind,
    TransactionStatus,
    VATEligibility,
    VATStatus,
    VATSummary,
)
from taxledger.services.period_utils import TaxPeriod
from taxledger.services.vat_service import VATService, compute_transaction_tax, resolve_vat_exemption

MARCH = TaxPeriod.monthly(2026, 3)


def _snapshot(amount, *, exempt=None, inclusive=False, date=dt.date(2026, 3, 10)):
    return TransactionSnapshot(
        id=1,
        entity_id=1,
        kind=TransactionKind.SALE,
        amount=Decimal(amount),
        transaction_date=date,
        status=TransactionStatus.SETTLED,
        is_vat_exempt=exempt,
        is_tax_inclusive=inclusive,
    )


def test_eligible_sale_taxed_at_standard_rate():
    assert compute_transaction_tax(_snapshot("1000000"), VATEligibility.ELIGIBLE) == Decimal("75000.00")


def test_output_tax_rounds_half_up():
    # 333.33 x 7.5% = 24.99975
    assert compute_transaction_tax(_snapshot("333.33"), VATEligibility.ELIGIBLE) == Decimal("25.00")


def test_tax_inclusive_sale():
    assert compute_transaction_tax(_snapshot("107500", inclusive=True), VATEligibility.ELIGIBLE) == Decimal("7500.00")


def test_exempt_transaction_carries_no_tax():
    assert compute_transaction_tax(_snapshot("1000000", exempt=True), VATEligibility.ELIGIBLE) == Decimal("0.00")


@pytest.mark.parametrize("amount", ["0.01", "1000", "24999999.99"])
def test_ineligible_entity_derived_tax_is_zero(amount):
    assert compute_transaction_tax(_snapshot(amount), VATEligibility.INELIGIBLE) == Decimal("0.00")
    assert compute_transaction_tax(_snapshot(amount, exempt=False), VATEligibility.INELIGIBLE) == Decimal("0.00")


def test_ineligible_entity_explicit_charge_is_rejected():
    with pytest.raises(VATChargeNotAllowedError) as exc_info:
        compute_transaction_tax(_snapshot("1000000", exempt=False), VATEligibility.INELIGIBLE, explicit=True)
    err = exc_info.value
    assert isinstance(err, ComplianceAssertionError)
    assert err.code == "CMP500"
    assert "25,000,000.00" in err.message
    assert "VAT registration number" in err.message


def test_negative_base_is_fatal_for_single_transaction():
    with pytest.raises(DerivedValueError):
        compute_transaction_tax(_snapshot("-10"), VATEligibility.ELIGIBLE)


def test_resolve_vat_exemption():
    assert resolve_vat_exemption(None, VATEligibility.ELIGIBLE, tax_year=2026) is False
    assert resolve_vat_exemption(None, VATEligibility.INELIGIBLE, tax_year=2026) is True
    assert resolve_vat_exemption(True, VATEligibility.ELIGIBLE, tax_year=2026) is True
    assert resolve_vat_exemption(True, VATEligibility.INELIGIBLE, tax_year=2026) is True
    assert resolve_vat_exemption(False, VATEligibility.ELIGIBLE, tax_year=2026) is False
    with pytest.raises(VATChargeNotAllowedError):
        resolve_vat_exemption(False, VATEligibility.INELIGIBLE, tax_year=2026)


def test_apply_transaction_tax_auto_exempts_small_entity(db_session, entity_factory, txn_factory):
    entity = entity_factory()
    txn = txn_factory(entity, amount=Decimal("500000"))

    VATService(db_session).apply_transaction_tax(txn)

    assert txn.is_vat_exempt is True
    assert txn.vat_amount == Decimal("0.00")


def test_apply_transaction_tax_rejects_explicit_charge(db_session, entity_factory, txn_factory):
    entity = entity_factory()
    txn = txn_factory(entity, amount=Decimal("500000"), is_vat_exempt=False, vat_explicit=True)

    with pytest.raises(VATChargeNotAllowedError) as exc_info:
        VATService(db_session).apply_transaction_tax(txn)
    assert "₦500,000.00" in exc_info.value.message


def test_stamped_default_is_rederived_not_asserted(db_session, entity_factory, txn_factory):
    entity = entity_factory()
    sale = txn_factory(entity, amount=Decimal("100000"))
    service = VATService(db_session)
    service.apply_transaction_tax(sale)
    db_session.commit()
    assert sale.is_vat_exempt is True
    assert sale.vat_explicit is False

    # Turnover crosses the threshold later in the year
    txn_factory(entity, amount=Decimal("30000000"), transaction_date=dt.date(2026, 6, 1), is_vat_exempt=True)
    restamped = VATService(db_session).restamp_transaction(sale.id)

    assert restamped.is_vat_exempt is False
    assert restamped.vat_amount == Decimal("7500.00")


def test_explicit_exemption_survives_restamp(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    sale = txn_factory(entity, amount=Decimal("100000"), is_vat_exempt=True, vat_explicit=True)

    restamped = VATService(db_session).restamp_transaction(sale.id)

    assert restamped.is_vat_exempt is True
    assert restamped.vat_explicit is True
    assert restamped.vat_amount == Decimal("0.00")


def test_scenario_eligible_entity_output_vat(db_session, entity_factory, txn_factory):
    entity = entity_factory()
    txn_factory(entity, amount=Decimal("29000000"), transaction_date=dt.date(2026, 1, 20), is_vat_exempt=True)
    sale = txn_factory(entity, amount=Decimal("1000000"), transaction_date=dt.date(2026, 3, 5))

    service = VATService(db_session)
    service.apply_transaction_tax(sale)
    db_session.commit()
    assert sale.vat_amount == Decimal("75000.00")

    summary = VATService(db_session).recompute_period_summary(entity.id, MARCH)

    assert summary.output_vat == Decimal("75000.00")
    assert summary.input_vat == Decimal("0.00")
    assert summary.net_vat == Decimal("75000.00")
    assert summary.status == VATStatus.PAYABLE.value
    assert summary.annual_turnover == Decimal("30000000.00")
    assert summary.is_vat_exempt is False
    assert summary.remittance_deadline == dt.date(2026, 4, 21)


def test_scenario_small_entity_input_vat_suppressed(db_session, entity_factory, txn_factory):
    entity = entity_factory()
    txn_factory(entity, amount=Decimal("10000000"), transaction_date=dt.date(2026, 1, 20), is_vat_exempt=True)
    txn_factory(
        entity,
        kind=TransactionKind.PURCHASE,
        amount=Decimal("66666.67"),
        vat_amount=Decimal("5000"),
        transaction_date=dt.date(2026, 3, 8),
    )

    summary = VATService(db_session).recompute_period_summary(entity.id, MARCH)

    assert summary.is_vat_exempt is True
    assert summary.output_vat == Decimal("0.00")
    assert summary.input_vat == Decimal("5000.00")
    assert summary.effective_input_vat == Decimal("0.00")
    assert summary.net_vat == Decimal("0.00")
    assert summary.status == VATStatus.ZERO.value


def test_registration_does_not_unlock_input_vat_below_threshold(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    txn_factory(entity, amount=Decimal("10000000"), transaction_date=dt.date(2026, 1, 20), is_vat_exempt=True)
    txn_factory(
        entity,
        kind=TransactionKind.PURCHASE,
        amount=Decimal("66666.67"),
        vat_amount=Decimal("5000"),
        transaction_date=dt.date(2026, 3, 8),
    )

    summary = VATService(db_session).recompute_period_summary(entity.id, MARCH)

    assert summary.is_vat_exempt is True
    assert summary.input_vat == Decimal("5000.00")
    assert summary.effective_input_vat == Decimal("0.00")
    assert summary.net_vat == Decimal("0.00")
    assert summary.status == VATStatus.ZERO.value


def test_registered_small_entity_with_output_vat_claims_input(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    txn_factory(entity, amount=Decimal("100000"), vat_amount=Decimal("7500"), is_vat_exempt=False)
    txn_factory(entity, kind=TransactionKind.PURCHASE, amount=Decimal("40000"), vat_amount=Decimal("3000"))

    summary = VATService(db_session).recompute_period_summary(entity.id, MARCH)

    assert summary.is_vat_exempt is True
    assert summary.effective_input_vat == Decimal("3000.00")
    assert summary.net_vat == Decimal("4500.00")


def test_output_vat_equals_sum_of_transaction_taxes(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    service = VATService(db_session)
    expected = Decimal("0.00")
    for amount in ("1000.10", "333.33", "12500.55", "98765.43"):
        sale = txn_factory(entity, amount=Decimal(amount))
        service.apply_transaction_tax(sale)
        expected += sale.vat_amount
    # Not settled: excluded
    pending = txn_factory(entity, amount=Decimal("5000"), status=TransactionStatus.PENDING)
    service.apply_transaction_tax(pending)
    db_session.commit()

    summary = VATService(db_session).recompute_period_summary(entity.id, MARCH)
    assert summary.output_vat == expected
    assert summary.transaction_count == 4


def test_refundable_when_input_exceeds_output(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    txn_factory(entity, amount=Decimal("100000"), vat_amount=Decimal("7500"), is_vat_exempt=False)
    txn_factory(entity, kind=TransactionKind.PURCHASE, amount=Decimal("400000"), vat_amount=Decimal("30000"))
    txn_factory(
        entity,
        kind=TransactionKind.PURCHASE,
        amount=Decimal("100000"),
        vat_amount=Decimal("7500"),
        is_tax_deductible=False,
    )

    summary = VATService(db_session).recompute_period_summary(entity.id, MARCH)
    assert summary.effective_input_vat == Decimal("30000.00")
    assert summary.net_vat == Decimal("-22500.00")
    assert summary.status == VATStatus.REFUNDABLE.value


def test_negative_rows_skipped_with_warning(db_session, entity_factory, txn_factory, caplog):
    entity = entity_factory(vat_registration_number="VAT-0001")
    txn_factory(entity, amount=Decimal("100000"), vat_amount=Decimal("7500"), is_vat_exempt=False)
    bad = txn_factory(entity, kind=TransactionKind.PURCHASE, amount=Decimal("1000"), vat_amount=Decimal("-75"))

    with caplog.at_level(logging.WARNING, logger="taxledger.services.vat_service"):
        summary = VATService(db_session).recompute_period_summary(entity.id, MARCH)

    assert summary.skipped_rows == 1
    assert summary.input_vat == Decimal("0.00")
    assert summary.output_vat == Decimal("7500.00")
    assert any(f"Skipping transaction {bad.id}" in r.getMessage() for r in caplog.records)


def _columns(summary: VATSummary) -> dict:
    data = summary.dict()
    data.pop("computed_at")
    return data


def test_recompute_is_idempotent(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    txn_factory(entity, amount=Decimal("100000"), vat_amount=Decimal("7500"), is_vat_exempt=False)
    txn_factory(entity, kind=TransactionKind.PURCHASE, amount=Decimal("20000"), vat_amount=Decimal("1500"))

    service = VATService(db_session)
    first = _columns(service.recompute_period_summary(entity.id, MARCH))
    second = _columns(service.recompute_period_summary(entity.id, MARCH))

    assert first == second
    assert db_session.query(VATSummary).filter_by(entity_id=entity.id).count() == 1


def test_annual_summary_rolls_up_the_year(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    txn_factory(entity, amount=Decimal("100000"), vat_amount=Decimal("7500"), is_vat_exempt=False)
    txn_factory(
        entity,
        amount=Decimal("200000"),
        vat_amount=Decimal("15000"),
        is_vat_exempt=False,
        transaction_date=dt.date(2026, 11, 30),
    )

    summary = VATService(db_session).recompute_period_summary(entity.id, TaxPeriod.annual(2026))
    assert summary.month == 0
    assert summary.output_vat == Decimal("22500.00")
    assert summary.remittance_deadline is None


def test_get_period_summary_computes_on_first_access(db_session, entity_factory):
    entity = entity_factory()
    service = VATService(db_session)

    first = service.get_period_summary(entity.id, MARCH)
    again = service.get_period_summary(entity.id, MARCH)

    assert first.id == again.id
    assert first.status == VATStatus.ZERO.value


def test_get_summaries_for_year_fills_every_month(db_session, entity_factory):
    entity = entity_factory()
    summaries = VATService(db_session).get_summaries_for_year(entity.id, 2026)
    assert [s.month for s in summaries] == list(range(1, 13))


def test_unknown_entity(db_session):
    with pytest.raises(EntityNotFoundError):
        VATService(db_session).recompute_period_summary(404, MARCH)
