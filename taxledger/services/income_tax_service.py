"""
Income tax computation (PIT and CIT) and final liability.

Pure computation helpers take explicit tax years and never touch the
database. ``IncomeTaxService`` combines them with the entity's current
classification and withholding credits, then reports what is left to remit.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from taxledger import metrics
from taxledger.core.exceptions import DerivedValueError, EntityNotFoundError
from taxledger.models.schemas import LiabilityBreakdown, StatutoryDeductions
from taxledger.models.tax_models import EntityKind, IncomeTaxTier, RemittedTax, TurnoverBasis
from taxledger.services.classification_service import EntityClassifier
from taxledger.services.period_utils import TaxPeriod
from taxledger.services.remittance_service import remittance_position
from taxledger.services.stores import (
    LedgerStore,
    RemittanceStore,
    SQLRemittanceStore,
    SQLTransactionStore,
    TransactionStore,
)
from taxledger.services.tax_rules import get_rules, round_money
from taxledger.services.turnover_service import TurnoverCalculator
from taxledger.services.wht_service import WHTLedgerService, apply_credit, credit_identity

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# Legacy consolidated relief allowance, only for years where it still applies
LEGACY_CRA_FLOOR = Decimal("200000")
LEGACY_CRA_GROSS_SHARE = Decimal("0.01")
LEGACY_CRA_PERCENT = Decimal("0.20")


def _non_negative(field: str, value: Any) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise DerivedValueError(field, value, "not a number") from exc
    if not amount.is_finite() or amount < 0:
        raise DerivedValueError(field, value)
    return amount


def statutory_deductions(
    gross: Any,
    tax_year: int,
    *,
    rent_paid: Any = 0,
    pension: Optional[Any] = None,
    nhf: Optional[Any] = None,
    nhis: Optional[Any] = None,
) -> StatutoryDeductions:
    """
    Allowed deductions for a year of gross income.

    Pension (8%), National Housing Fund (2.5% of income up to the cap) and
    NHIS (5%) are computed from ``gross`` unless an actual contribution is
    passed in. Rent relief is 20% of rent paid, capped at ₦500,000.
    """
    gross_amount = _non_negative("gross income", gross)
    rules = get_rules(tax_year)

    pension_amount = (
        round_money(gross_amount * rules.pension_rate) if pension is None else round_money(_non_negative("pension", pension))
    )
    nhf_amount = (
        round_money(min(gross_amount, rules.nhf_income_cap) * rules.nhf_rate)
        if nhf is None
        else round_money(_non_negative("nhf", nhf))
    )
    nhis_amount = round_money(gross_amount * rules.nhis_rate) if nhis is None else round_money(_non_negative("nhis", nhis))

    rent = _non_negative("rent paid", rent_paid)
    rent_relief = round_money(min(rent * rules.rent_relief_rate, rules.rent_relief_cap))

    cra = ZERO
    if not rules.cra_abolished:
        cra = round_money(max(LEGACY_CRA_FLOOR, gross_amount * LEGACY_CRA_GROSS_SHARE) + gross_amount * LEGACY_CRA_PERCENT)

    return StatutoryDeductions(
        pension=pension_amount,
        nhf=nhf_amount,
        nhis=nhis_amount,
        rent_relief=rent_relief,
        cra=cra,
    )


def taxable_income(gross: Any, deductions: Union[StatutoryDeductions, Any]) -> Decimal:
    total = deductions.total if isinstance(deductions, StatutoryDeductions) else deductions
    return round_money(max(ZERO, _non_negative("gross income", gross) - _non_negative("deductions", total)))


def personal_income_tax(taxable: Any, tax_year: int) -> Decimal:
    """
    Graduated personal income tax.

    Walks the bracket table in order, taxing the slice of income inside each
    bracket at its marginal rate and stopping at the first bracket whose
    floor the income does not exceed.
    """
    income = _non_negative("taxable income", taxable)
    rules = get_rules(tax_year)

    tax = ZERO
    for bracket in rules.pit_brackets:
        if income <= bracket.min:
            break
        tax += bracket.portion(income) * bracket.rate
    return round_money(tax)


def corporate_income_tax(taxable: Any, tier: IncomeTaxTier, tax_year: int) -> Decimal:
    rules = get_rules(tax_year)
    profit = max(ZERO, _non_negative("taxable profit", taxable))
    return round_money(profit * rules.cit_rate(IncomeTaxTier(tier)))


def development_levy(assessable: Any, tier: IncomeTaxTier, tax_year: int) -> Decimal:
    """Levy on assessable profit; small companies pay none."""
    rules = get_rules(tax_year)
    profit = _non_negative("assessable profit", assessable)
    if IncomeTaxTier(tier) is IncomeTaxTier.SMALL:
        return ZERO
    return round_money(profit * rules.development_levy_rate)


class IncomeTaxService:
    """Final income tax liability for an entity and tax year."""

    def __init__(
        self,
        db: Session | None = None,
        *,
        transactions: TransactionStore | None = None,
        ledger: LedgerStore | None = None,
        classifier: EntityClassifier | None = None,
        remittances: RemittanceStore | None = None,
    ):
        if db is None and (transactions is None or ledger is None):
            raise ValueError("IncomeTaxService needs a session or both stores")
        self.transactions = transactions or SQLTransactionStore(db)
        self.classifier = classifier or EntityClassifier(self.transactions)
        self.wht = WHTLedgerService(db, transactions=self.transactions, ledger=ledger, classifier=self.classifier)
        self.turnover = TurnoverCalculator(self.transactions)
        self.remittances = remittances or (SQLRemittanceStore(db) if db is not None else None)

    def derive_gross_income(self, entity_id: int, tax_year: int) -> Decimal:
        """
        Gross income from the entity's own books for the year.

        Cash-basis turnover (settled sales) less settled, tax-deductible
        purchases, never below zero. Pending sales are not income yet.
        """
        revenue = self.turnover.annual_turnover(entity_id, tax_year, TurnoverBasis.CASH)
        expenses = self.turnover.deductible_expenses(entity_id, tax_year)
        gross = round_money(max(ZERO, revenue - expenses))
        logger.debug(f"Derived gross income for entity {entity_id} ({tax_year}): {revenue} - {expenses} = {gross}")
        return gross

    def _remitted(self, entity_id: int, tax: RemittedTax, tax_year: int) -> Decimal:
        if self.remittances is None:
            return ZERO
        rows = self.remittances.list_remittances(entity_id, tax, TaxPeriod.annual(tax_year))
        return round_money(sum((Decimal(r.amount) for r in rows), ZERO))

    def compute_income_tax_liability(
        self,
        entity_id: int,
        tax_year: int,
        gross_income: Any = None,
        deductions: Union[StatutoryDeductions, Any, None] = None,
        entity_kind: EntityKind | None = None,
    ) -> LiabilityBreakdown:
        """
        Compute the income tax an entity owes for a year, net of WHT credits.

        The income tax tier is re-derived from current turnover. Sole
        proprietors pay graduated PIT; incorporated entities pay flat CIT by
        tier plus the development levy, which is reported separately and is
        not offset by credits. Credits are the withholding suffered against
        the entity's TIN for the year. CIT or PIT remittances recorded for the
        year are set against the total payable.

        Args:
            entity_id: Taxable entity
            tax_year: Assessment year
            gross_income: Gross income (PIT) or assessable profit (CIT); None
                derives it from settled transactions (see ``derive_gross_income``)
            deductions: A ``StatutoryDeductions`` or a total amount; None for none
            entity_kind: Override the entity's stored kind

        Returns:
            LiabilityBreakdown with every figure rounded to kobo
        """
        entity = self.transactions.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        rules = get_rules(tax_year)
        kind = EntityKind(entity_kind or entity.kind)
        profile = self.classifier.profile(entity, tax_year)

        if gross_income is None:
            gross = self.derive_gross_income(entity_id, tax_year)
            source = "derived"
        else:
            gross = round_money(_non_negative("gross income", gross_income))
            source = "supplied"
        if deductions is None:
            applied = StatutoryDeductions()
        elif isinstance(deductions, StatutoryDeductions):
            applied = deductions
        else:
            applied = StatutoryDeductions(other=round_money(_non_negative("deductions", deductions)))
        taxable = taxable_income(gross, applied)

        if kind is EntityKind.SOLE_PROPRIETOR:
            method = "pit"
            income_tax = personal_income_tax(taxable, tax_year)
            levy = ZERO
            deadline = rules.deadlines.personal(tax_year)
        else:
            method = "cit"
            income_tax = corporate_income_tax(taxable, profile.income_tax_tier, tax_year)
            levy = development_levy(taxable, profile.income_tax_tier, tax_year)
            deadline = rules.deadlines.corporate(tax_year)

        credits = ZERO
        if entity.tin and entity.tin.strip():
            credits = self.wht.total_credits(credit_identity(entity.tin), tax_year)
        application = apply_credit(income_tax, credits)

        remitted = self._remitted(entity_id, RemittedTax(method), tax_year)
        outstanding, remittance_status = remittance_position(application.net_liability + levy, remitted)

        metrics.income_tax_computed(method)
        logger.info(
            f"Income tax for entity {entity_id} ({tax_year}, {method}, tier={profile.income_tax_tier.value}): "
            f"gross={gross} ({source}) tax={income_tax} levy={levy} credits={credits} "
            f"net={application.net_liability} remitted={remitted} outstanding={outstanding}"
        )
        return LiabilityBreakdown(
            entity_id=entity_id,
            tax_year=tax_year,
            entity_kind=kind,
            method=method,
            tier=profile.income_tax_tier,
            annual_turnover=profile.annual_turnover,
            gross_income=gross,
            gross_income_source=source,
            deductions=applied,
            taxable_income=taxable,
            income_tax=income_tax,
            development_levy=levy,
            wht_credits_available=credits,
            credit_consumed=application.credit_consumed,
            credit_remaining=application.credit_remaining,
            net_liability=application.net_liability,
            remitted=remitted,
            outstanding=outstanding,
            remittance_status=remittance_status,
            filing_deadline=deadline,
        )
