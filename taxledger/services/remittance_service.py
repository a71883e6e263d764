"""
Remittances paid to the tax authority.

Handles:
- Recording a VAT or WHT remittance against a month, or a CIT/PIT
  remittance against a tax year
- Outstanding amount and remittance status for any liability
- Refreshing the VAT/WHT summaries a remittance affects

Single Responsibility: what has been paid, and what is still owed
"""
from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from taxledger import metrics
from taxledger.core.exceptions import EntityNotFoundError, InvalidRemittanceError
from taxledger.models.tax_models import RemittanceStatus, RemittedTax, TaxRemittance
from taxledger.services.period_utils import TaxPeriod
from taxledger.services.stores import (
    LedgerStore,
    RemittanceStore,
    SQLLedgerStore,
    SQLRemittanceStore,
    SQLSummaryStore,
    SQLTransactionStore,
    SummaryStore,
    TransactionStore,
)
from taxledger.services.tax_rules import get_rules, round_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def remittance_position(due: Any, remitted: Any) -> tuple[Decimal, RemittanceStatus]:
    """
    Outstanding amount and status of a liability.

    A negative ``due`` (a VAT refund position) counts as nothing due.
    Overpayment leaves nothing outstanding; it is not carried forward.
    """
    owed = max(ZERO, round_money(due))
    paid = max(ZERO, round_money(remitted))
    outstanding = round_money(max(ZERO, owed - paid))

    if owed == 0 and paid == 0:
        return outstanding, RemittanceStatus.NIL
    if outstanding == 0:
        return outstanding, RemittanceStatus.REMITTED
    if paid > 0:
        return outstanding, RemittanceStatus.PARTIAL
    return outstanding, RemittanceStatus.PENDING


def remittance_deadline(tax: RemittedTax, period: TaxPeriod) -> dt.date:
    rules = get_rules(period.year)
    if tax is RemittedTax.CIT:
        return rules.deadlines.corporate(period.year)
    if tax is RemittedTax.PIT:
        return rules.deadlines.personal(period.year)
    return rules.deadlines.monthly(period.year, period.month)


def _parse_tax(tax: Any) -> RemittedTax:
    try:
        return RemittedTax(tax)
    except ValueError:
        raise InvalidRemittanceError(str(tax), "unknown tax", {"allowed": [t.value for t in RemittedTax]})


def _positive_amount(tax: RemittedTax, amount: Any) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidRemittanceError(tax.value, "amount is not a number", {"amount": str(amount)})
    if not value.is_finite() or value <= 0:
        raise InvalidRemittanceError(tax.value, "amount must be greater than zero", {"amount": str(amount)})
    return round_money(value)


class RemittanceService:
    """
    Records remittances and reports outstanding balances.

    Recording or deleting a VAT/WHT remittance rebuilds that month's summary
    and the annual roll-up in the same unit of work. CIT and PIT have no
    stored summary; the income tax service reads their remittances when it
    computes the year's liability.
    """

    def __init__(
        self,
        db: Session | None = None,
        *,
        transactions: TransactionStore | None = None,
        remittances: RemittanceStore | None = None,
        summaries: SummaryStore | None = None,
        ledger: LedgerStore | None = None,
    ):
        if db is None and (transactions is None or remittances is None):
            raise ValueError("RemittanceService needs a session or both the transaction and remittance stores")
        self.transactions = transactions or SQLTransactionStore(db)
        self.remittances = remittances or SQLRemittanceStore(db)
        self.summaries = summaries or (SQLSummaryStore(db) if db is not None else None)
        self.ledger = ledger or (SQLLedgerStore(db) if db is not None else None)

    def record_remittance(
        self,
        entity_id: int,
        tax: RemittedTax | str,
        year: int,
        month: int = 0,
        *,
        amount: Any,
        reference: str,
        remitted_on: dt.date,
    ) -> TaxRemittance:
        """
        Record one payment to the tax authority.

        Args:
            entity_id: Paying entity
            tax: VAT or WHT (monthly), CIT or PIT (annual, month 0)
            year: Tax year paid for
            month: Month paid for; must be 0 for CIT and PIT
            amount: Amount paid, greater than zero
            reference: Receipt or payment reference, unique per entity and tax
            remitted_on: Date of payment; later than the deadline marks it late

        Returns:
            The stored TaxRemittance

        Raises:
            EntityNotFoundError: Unknown entity
            UnsupportedTaxYearError: Year outside the supported window
            InvalidRemittanceError: Bad tax, period, amount, reference or date
        """
        if self.transactions.get_entity(entity_id) is None:
            raise EntityNotFoundError(entity_id)
        kind = _parse_tax(tax)
        get_rules(year)

        if kind.is_monthly and not 1 <= month <= 12:
            raise InvalidRemittanceError(kind.value, "a month between 1 and 12 is required", {"month": month})
        if not kind.is_monthly and month != 0:
            raise InvalidRemittanceError(kind.value, "it is remitted for the whole tax year", {"month": month})
        period = TaxPeriod(year, month)

        paid = _positive_amount(kind, amount)
        ref = (reference or "").strip()
        if not ref:
            raise InvalidRemittanceError(kind.value, "a payment reference is required")
        if not isinstance(remitted_on, dt.date):
            raise InvalidRemittanceError(kind.value, "a payment date is required")
        if self.remittances.find_by_reference(entity_id, kind, ref) is not None:
            raise InvalidRemittanceError(kind.value, f"reference '{ref}' is already recorded", {"reference": ref})

        deadline = remittance_deadline(kind, period)
        is_late = remitted_on > deadline
        remittance = self.remittances.add_remittance({
            "entity_id": entity_id,
            "tax": kind.value,
            "year": year,
            "month": month,
            "amount": paid,
            "reference": ref,
            "remitted_on": remitted_on,
            "deadline": deadline,
            "is_late": is_late,
        })

        metrics.remittance_recorded(kind.value, late=is_late)
        logger.info(
            f"{kind.value.upper()} remittance {ref} for entity {entity_id}/{period}: "
            f"{paid} on {remitted_on} (deadline {deadline}{', late' if is_late else ''})"
        )
        self._refresh_summaries(entity_id, kind, period)
        return remittance

    def delete_remittance(self, remittance_id: int) -> bool:
        """Remove a remittance recorded in error. False if it does not exist."""
        remittance = self.remittances.get_remittance(remittance_id)
        if remittance is None:
            return False
        entity_id = remittance.entity_id
        kind = RemittedTax(remittance.tax)
        period = TaxPeriod(remittance.year, remittance.month)
        self.remittances.delete_remittance(remittance)
        logger.info(f"Deleted {kind.value.upper()} remittance {remittance_id} for entity {entity_id}/{period}")
        self._refresh_summaries(entity_id, kind, period)
        return True

    def total_remitted(self, entity_id: int, tax: RemittedTax | str, period: TaxPeriod) -> Decimal:
        kind = _parse_tax(tax)
        get_rules(period.year)
        rows = self.remittances.list_remittances(entity_id, kind, period)
        return round_money(sum((Decimal(r.amount) for r in rows), ZERO))

    def _refresh_summaries(self, entity_id: int, tax: RemittedTax, period: TaxPeriod) -> None:
        if not tax.is_monthly or self.summaries is None or self.ledger is None:
            return
        from taxledger.services.recompute_service import RecomputationCoordinator

        coordinator = RecomputationCoordinator(
            transactions=self.transactions,
            summaries=self.summaries,
            ledger=self.ledger,
            remittances=self.remittances,
            defer_summaries=False,
        )
        for target in (period, period.year_period()):
            coordinator.rebuild_period(entity_id, target)
