"""Tests for remittance recording and outstanding balances."""
import datetime as dt
from decimal import Decimal

import pytest

from taxledger.core.exceptions import (
    ComplianceAssertionError,
    EntityNotFoundError,
    InvalidRemittanceError,
    UnsupportedTaxYearError,
)
from taxledger.models.tax_models import (
    PayeeTier,
    RemittanceStatus,
    RemittedTax,
    TaxRemittance,
    TransactionKind,
)
from taxledger.services.period_utils import TaxPeriod
from taxledger.services.recompute_service import RecomputationCoordinator
from taxledger.services.remittance_service import (
    RemittanceService,
    remittance_deadline,
    remittance_position,
)
from taxledger.services.stores import SQLSummaryStore

MARCH = TaxPeriod.monthly(2026, 3)


@pytest.mark.parametrize(
    "due,remitted,outstanding,status",
    [
        ("0", "0", "0.00", RemittanceStatus.NIL),
        ("-22500", "0", "0.00", RemittanceStatus.NIL),
        ("50000", "0", "50000.00", RemittanceStatus.PENDING),
        ("50000", "20000", "30000.00", RemittanceStatus.PARTIAL),
        ("50000", "50000", "0.00", RemittanceStatus.REMITTED),
        ("50000", "60000", "0.00", RemittanceStatus.REMITTED),
    ],
)
def test_remittance_position(due, remitted, outstanding, status):
    assert remittance_position(Decimal(due), Decimal(remitted)) == (Decimal(outstanding), status)


def test_deadlines_by_tax():
    assert remittance_deadline(RemittedTax.VAT, MARCH) == dt.date(2026, 4, 21)
    assert remittance_deadline(RemittedTax.WHT, TaxPeriod.monthly(2026, 12)) == dt.date(2027, 1, 21)
    assert remittance_deadline(RemittedTax.CIT, TaxPeriod.annual(2026)) == dt.date(2027, 6, 30)
    assert remittance_deadline(RemittedTax.PIT, TaxPeriod.annual(2026)) == dt.date(2027, 3, 31)


def _settle_purchase(db_session, txn_factory, entity):
    txn = txn_factory(
        entity,
        kind=TransactionKind.PURCHASE,
        amount=Decimal("1000000"),
        vat_amount=Decimal("75000"),
        wht_payment_type="professional_services",
        payee_name="Okafor Consulting",
        payee_tin="20000000-0002",
        payee_tier=PayeeTier.COMPANY,
    )
    RecomputationCoordinator(db_session, defer_summaries=False).on_transaction_settled(txn)
    db_session.commit()
    return txn


def test_wht_remittance_updates_month_and_year(db_session, entity_factory, txn_factory):
    entity = entity_factory()
    _settle_purchase(db_session, txn_factory, entity)
    service = RemittanceService(db_session)

    remittance = service.record_remittance(
        entity.id,
        RemittedTax.WHT,
        2026,
        3,
        amount=Decimal("20000"),
        reference=" RRR-0001 ",
        remitted_on=dt.date(2026, 4, 15),
    )
    db_session.commit()

    assert remittance.reference == "RRR-0001"
    assert remittance.deadline == dt.date(2026, 4, 21)
    assert remittance.is_late is False

    store = SQLSummaryStore(db_session)
    march = store.get_wht_summary(entity.id, MARCH)
    assert march.total_remitted == Decimal("20000.00")
    assert march.outstanding == Decimal("30000.00")
    assert march.status == RemittanceStatus.PARTIAL.value
    year = store.get_wht_summary(entity.id, TaxPeriod.annual(2026))
    assert year.total_remitted == Decimal("20000.00")

    service.record_remittance(
        entity.id, "wht", 2026, 3, amount="30000", reference="RRR-0002", remitted_on=dt.date(2026, 5, 2)
    )
    db_session.commit()
    march = store.get_wht_summary(entity.id, MARCH)
    assert march.outstanding == Decimal("0.00")
    assert march.status == RemittanceStatus.REMITTED.value
    assert service.total_remitted(entity.id, "wht", MARCH) == Decimal("50000.00")


def test_late_remittance_is_flagged(db_session, entity_factory):
    entity = entity_factory()
    remittance = RemittanceService(db_session).record_remittance(
        entity.id, "vat", 2026, 3, amount=Decimal("100"), reference="LATE-1", remitted_on=dt.date(2026, 4, 22)
    )
    assert remittance.is_late is True


def test_vat_remittance_against_payable_month(db_session, entity_factory, txn_factory):
    entity = entity_factory(vat_registration_number="VAT-0001")
    txn_factory(entity, amount=Decimal("100000"), vat_amount=Decimal("7500"), is_vat_exempt=False)

    RemittanceService(db_session).record_remittance(
        entity.id, "vat", 2026, 3, amount=Decimal("7500"), reference="VAT-26-03", remitted_on=dt.date(2026, 4, 20)
    )
    db_session.commit()

    summary = SQLSummaryStore(db_session).get_vat_summary(entity.id, MARCH)
    assert summary.net_vat == Decimal("7500.00")
    assert summary.remitted_vat == Decimal("7500.00")
    assert summary.outstanding_vat == Decimal("0.00")
    assert summary.remittance_status == RemittanceStatus.REMITTED.value


def test_delete_remittance_restores_outstanding(db_session, entity_factory, txn_factory):
    entity = entity_factory()
    _settle_purchase(db_session, txn_factory, entity)
    service = RemittanceService(db_session)
    remittance = service.record_remittance(
        entity.id, "wht", 2026, 3, amount=Decimal("50000"), reference="RRR-9", remitted_on=dt.date(2026, 4, 1)
    )
    db_session.commit()

    assert service.delete_remittance(remittance.id) is True
    db_session.commit()

    march = SQLSummaryStore(db_session).get_wht_summary(entity.id, MARCH)
    assert march.outstanding == Decimal("50000.00")
    assert march.status == RemittanceStatus.PENDING.value
    assert service.delete_remittance(remittance.id) is False


@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"amount": Decimal("0")}, "greater than zero"),
        ({"amount": Decimal("-5")}, "greater than zero"),
        ({"amount": "lots"}, "not a number"),
        ({"reference": "   "}, "reference is required"),
        ({"remitted_on": None}, "payment date is required"),
        ({"month": 0}, "between 1 and 12"),
        ({"tax": "stamp_duty"}, "unknown tax"),
        ({"tax": "cit"}, "whole tax year"),
    ],
)
def test_invalid_remittances_are_rejected(db_session, entity_factory, overrides, reason):
    entity = entity_factory()
    data = {
        "tax": "vat",
        "month": 3,
        "amount": Decimal("1000"),
        "reference": "REF-1",
        "remitted_on": dt.date(2026, 4, 1),
    }
    data.update(overrides)
    tax = data.pop("tax")
    month = data.pop("month")

    with pytest.raises(InvalidRemittanceError) as exc_info:
        RemittanceService(db_session).record_remittance(entity.id, tax, 2026, month, **data)
    err = exc_info.value
    assert isinstance(err, ComplianceAssertionError)
    assert err.code == "CMP502"
    assert reason in err.message
    assert db_session.query(TaxRemittance).count() == 0


def test_duplicate_reference_is_rejected(db_session, entity_factory):
    entity = entity_factory()
    service = RemittanceService(db_session)
    service.record_remittance(
        entity.id, "vat", 2026, 3, amount=Decimal("1000"), reference="REF-1", remitted_on=dt.date(2026, 4, 1)
    )
    with pytest.raises(InvalidRemittanceError):
        service.record_remittance(
            entity.id, "vat", 2026, 4, amount=Decimal("1000"), reference="REF-1", remitted_on=dt.date(2026, 5, 1)
        )
    # Same reference under another tax is a different receipt
    service.record_remittance(
        entity.id, "wht", 2026, 3, amount=Decimal("1000"), reference="REF-1", remitted_on=dt.date(2026, 4, 1)
    )
    assert db_session.query(TaxRemittance).count() == 2


def test_unknown_entity_and_unsupported_year(db_session, entity_factory):
    service = RemittanceService(db_session)
    with pytest.raises(EntityNotFoundError):
        service.record_remittance(404, "vat", 2026, 3, amount=1, reference="X", remitted_on=dt.date(2026, 4, 1))

    entity = entity_factory()
    with pytest.raises(UnsupportedTaxYearError):
        service.record_remittance(entity.id, "vat", 2025, 3, amount=1, reference="X", remitted_on=dt.date(2025, 4, 1))
