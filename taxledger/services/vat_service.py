"""
VAT (consumption tax) computation and period summaries.

Handles:
- Per-transaction output VAT under the eligibility guard
- Exemption defaults for new and edited transactions
- Full rebuild of per-period VAT summaries, including what is still owed

Single Responsibility: VAT amounts and VAT summaries
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from sqlalchemy.orm import Session

from taxledger import metrics
from taxledger.core.exceptions import DerivedValueError, EntityNotFoundError, VATChargeNotAllowedError
from taxledger.models.models import TaxableEntity, TaxTransaction
from taxledger.models.schemas import TransactionSnapshot
from taxledger.models.tax_models import (
    RemittedTax,
    TransactionKind,
    TransactionStatus,
    VATEligibility,
    VATStatus,
    VATSummary,
)
from taxledger.services.classification_service import EntityClassifier, EntityTaxProfile
from taxledger.services.period_utils import TaxPeriod
from taxledger.services.remittance_service import remittance_position
from taxledger.services.stores import (
    RemittanceStore,
    SQLRemittanceStore,
    SQLSummaryStore,
    SQLTransactionStore,
    SummaryStore,
    TransactionStore,
)
from taxledger.services.tax_rules import get_rules, round_money, taxable_base

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

Transaction = Union[TaxTransaction, TransactionSnapshot]
Eligibility = Union[VATEligibility, EntityTaxProfile]


def _split_eligibility(eligibility: Eligibility) -> tuple[VATEligibility, Decimal | None]:
    if isinstance(eligibility, EntityTaxProfile):
        return eligibility.vat_eligibility, eligibility.annual_turnover
    return VATEligibility(eligibility), None


def resolve_vat_exemption(
    requested: bool | None,
    eligibility: Eligibility,
    *,
    tax_year: int,
) -> bool:
    """
    Effective exemption flag for a new or edited transaction.

    Args:
        requested: The caller's flag. ``None`` means "derive a default"; a bool
            is an explicit assertion.
        eligibility: The entity's VAT eligibility (or its full tax profile,
            which improves the error message)
        tax_year: Year the transaction falls in

    Returns:
        True if the transaction must carry no VAT

    Raises:
        VATChargeNotAllowedError: An ineligible entity explicitly asked to charge VAT
    """
    tier, turnover = _split_eligibility(eligibility)
    if requested is None:
        return tier is VATEligibility.INELIGIBLE
    if requested:
        return True
    if tier is VATEligibility.INELIGIBLE:
        rules = get_rules(tax_year)
        metrics.compliance_rejection("CMP500")
        raise VATChargeNotAllowedError(turnover, rules.vat_registration_threshold, tax_year)
    return False


def compute_transaction_tax(
    transaction: Transaction,
    eligibility: Eligibility,
    *,
    explicit: bool = False,
) -> Decimal:
    """
    VAT due on a single transaction.

    Exempt transactions carry no tax. A non-exempt transaction of an eligible
    entity is taxed at the year's standard rate on its tax-exclusive base.
    For an ineligible entity, an ``explicit`` assertion is rejected while a
    derived default is silently corrected to exempt.

    Raises:
        VATChargeNotAllowedError: Ineligible entity, explicit non-exempt assertion
        DerivedValueError: Base amount is negative or not a number
        UnsupportedTaxYearError: Transaction dated outside the supported window
    """
    if transaction.is_vat_exempt is True:
        return ZERO

    tax_year = transaction.transaction_date.year
    rules = get_rules(tax_year)
    base = taxable_base(transaction.amount, transaction.is_tax_inclusive, rules.vat_rate)
    if base < 0:
        raise DerivedValueError("taxable base", base)

    tier, turnover = _split_eligibility(eligibility)
    if tier is VATEligibility.INELIGIBLE:
        if explicit:
            metrics.compliance_rejection("CMP500")
            raise VATChargeNotAllowedError(turnover, rules.vat_registration_threshold, tax_year)
        logger.info(
            f"Transaction {transaction.id} auto-exempted from VAT: entity is below the registration threshold"
        )
        return ZERO

    return round_money(base * rules.vat_rate)


def _row_tax(txn: TaxTransaction) -> Decimal | None:
    """Stored VAT on a row, or None if it is unusable."""
    raw = txn.vat_amount if txn.vat_amount is not None else ZERO
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not value.is_finite() or value < 0:
        return None
    return value


class VATService:
    """
    Main VAT service.

    Manages:
    - Stamping VAT on transactions as they are written
    - Period summary rebuilds (monthly and month 0 annual roll-up)
    - Read-through access to stored summaries
    """

    def __init__(
        self,
        db: Session | None = None,
        *,
        transactions: TransactionStore | None = None,
        summaries: SummaryStore | None = None,
        classifier: EntityClassifier | None = None,
        remittances: RemittanceStore | None = None,
    ):
        if db is None and (transactions is None or summaries is None):
            raise ValueError("VATService needs a session or both stores")
        self.transactions = transactions or SQLTransactionStore(db)
        self.summaries = summaries or SQLSummaryStore(db)
        self.classifier = classifier or EntityClassifier(self.transactions)
        # Without a remittance store every period reads as unpaid
        self.remittances = remittances or (SQLRemittanceStore(db) if db is not None else None)

    def _entity(self, entity_id: int) -> TaxableEntity:
        entity = self.transactions.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    def apply_transaction_tax(self, txn: TaxTransaction, *, explicit: bool | None = None) -> TaxTransaction:
        """
        Resolve the exemption flag and stamp output VAT on a sale.

        ``explicit`` defaults to the row's ``vat_explicit``. An explicit flag
        is validated against the entity's eligibility and kept; otherwise
        the flag is re-derived, so a stamped default never hardens into an
        assertion. Purchases keep the input VAT recorded from the
        supplier's invoice.
        """
        if txn.kind != TransactionKind.SALE:
            return txn
        entity = self._entity(txn.entity_id)
        tax_year = txn.transaction_date.year
        profile = self.classifier.profile(entity, tax_year)

        if explicit is None:
            explicit = bool(txn.vat_explicit)
        requested = txn.is_vat_exempt if explicit else None
        txn.vat_explicit = requested is not None
        txn.is_vat_exempt = resolve_vat_exemption(requested, profile, tax_year=tax_year)
        txn.vat_amount = compute_transaction_tax(txn, profile)
        return txn

    def restamp_transaction(self, transaction_id: int) -> TaxTransaction | None:
        """Re-stamp a stored sale after an edit and save it. None if the row is gone."""
        txn = self.transactions.get_transaction(transaction_id)
        if txn is None or txn.kind != TransactionKind.SALE:
            return txn
        before = txn.vat_amount
        self.apply_transaction_tax(txn)
        self.transactions.save(txn)
        if before != txn.vat_amount:
            logger.info(f"Re-stamped VAT on transaction {txn.id}: {before} -> {txn.vat_amount}")
        return txn

    def recompute_period_summary(self, entity_id: int, period: TaxPeriod) -> VATSummary:
        """
        Rebuild the VAT summary for one entity and period from scratch.

        Output VAT comes from settled sales that are not exempt; input VAT from
        settled, tax-deductible purchases carrying VAT. Rows whose stored VAT
        is negative or not a number are logged and skipped. When the entity's
        turnover is below the registration threshold and it has no output
        VAT, its input VAT is not claimable; holding a VAT registration number
        does not change that. Remittances recorded for the period are set
        against a positive net VAT.

        Returns:
            The upserted VATSummary row
        """
        entity = self._entity(entity_id)
        rules = get_rules(period.year)
        profile = self.classifier.profile(entity, period.year)

        rows = self.transactions.list_transactions(
            entity_id,
            period_start=period.start,
            period_end=period.end,
            statuses=(TransactionStatus.SETTLED,),
        )

        output_vat = ZERO
        input_vat = ZERO
        counted = 0
        skipped = 0
        for txn in rows:
            is_sale = txn.kind == TransactionKind.SALE
            if is_sale and txn.is_vat_exempt is True:
                continue
            if not is_sale and not txn.is_tax_deductible:
                continue

            value = _row_tax(txn)
            if value is None:
                skipped += 1
                logger.warning(
                    f"Skipping transaction {txn.id} in VAT summary {entity_id}/{period}: "
                    f"invalid VAT amount {txn.vat_amount!r}"
                )
                continue

            if is_sale:
                output_vat += value
                counted += 1
            elif value > 0:
                input_vat += value
                counted += 1

        output_vat = round_money(output_vat)
        input_vat = round_money(input_vat)

        is_exempt = profile.annual_turnover < rules.vat_registration_threshold
        effective_input = ZERO if is_exempt and output_vat == 0 else input_vat
        net_vat = round_money(output_vat - effective_input)

        if net_vat > 0:
            status = VATStatus.PAYABLE
        elif net_vat < 0:
            status = VATStatus.REFUNDABLE
        else:
            status = VATStatus.ZERO

        remitted = ZERO
        if self.remittances is not None:
            rows_paid = self.remittances.list_remittances(entity_id, RemittedTax.VAT, period)
            remitted = round_money(sum((Decimal(r.amount) for r in rows_paid), ZERO))
        outstanding, remittance_status = remittance_position(net_vat, remitted)

        values: dict[str, Any] = {
            "output_vat": output_vat,
            "input_vat": input_vat,
            "effective_input_vat": effective_input,
            "net_vat": net_vat,
            "status": status.value,
            "annual_turnover": profile.annual_turnover,
            "is_vat_exempt": is_exempt,
            "transaction_count": counted,
            "skipped_rows": skipped,
            "remitted_vat": remitted,
            "outstanding_vat": outstanding,
            "remittance_status": remittance_status.value,
            "remittance_deadline": None if period.is_annual else rules.deadlines.monthly(period.year, period.month),
        }
        summary = self.summaries.upsert_vat_summary(entity_id, period, values)

        metrics.vat_summary_computed(annual=period.is_annual)
        metrics.vat_rows_skipped(skipped)
        logger.info(
            f"VAT summary {entity_id}/{period}: output={output_vat} input={input_vat} "
            f"effective_input={effective_input} net={net_vat} ({status.value})"
        )
        return summary

    def get_period_summary(self, entity_id: int, period: TaxPeriod) -> VATSummary:
        """Stored summary for the period, computed on first access."""
        summary = self.summaries.get_vat_summary(entity_id, period)
        if summary is None:
            summary = self.recompute_period_summary(entity_id, period)
        return summary

    def get_summaries_for_year(self, entity_id: int, year: int) -> list[VATSummary]:
        """Twelve monthly summaries for ``year``, computing any that are missing."""
        get_rules(year)
        return [self.get_period_summary(entity_id, TaxPeriod.monthly(year, month)) for month in range(1, 13)]
