"""Annual turnover and expense derivation.

Turnover is revenue: only sales contribute, measured on their tax-exclusive
base. It is always derived from the transaction set, never stored. Expenses
are the same sum over settled, tax-deductible purchases.
"""
import logging
from decimal import Decimal

from taxledger.core.exceptions import DerivedValueError
from taxledger.models.tax_models import TransactionKind, TransactionStatus, TurnoverBasis
from taxledger.services.period_utils import calculate_period_range
from taxledger.services.stores import TransactionStore
from taxledger.services.tax_rules import get_rules, round_money, taxable_base

logger = logging.getLogger(__name__)

_STATUSES_BY_BASIS = {
    TurnoverBasis.ACCRUAL: (TransactionStatus.SETTLED, TransactionStatus.PENDING),
    TurnoverBasis.CASH: (TransactionStatus.SETTLED,),
}


class TurnoverCalculator:
    def __init__(self, transactions: TransactionStore):
        self.transactions = transactions

    def annual_turnover(
        self,
        entity_id: int,
        tax_year: int,
        basis: TurnoverBasis = TurnoverBasis.ACCRUAL,
    ) -> Decimal:
        """
        Sum the tax-exclusive base of the entity's sales dated in ``tax_year``.

        Args:
            entity_id: Taxable entity
            tax_year: Explicit tax year; validated before any query
            basis: ACCRUAL counts settled and pending sales, CASH only settled

        Returns:
            Turnover rounded to kobo; ``Decimal("0.00")`` when there are no sales

        Raises:
            UnsupportedTaxYearError: If the year is outside the supported window
        """
        rules = get_rules(tax_year)
        start, end = calculate_period_range(tax_year)
        sales = self.transactions.list_transactions(
            entity_id,
            period_start=start,
            period_end=end,
            statuses=_STATUSES_BY_BASIS[TurnoverBasis(basis)],
            kind=TransactionKind.SALE,
        )

        total = Decimal("0.00")
        for txn in sales:
            try:
                base = taxable_base(txn.amount, txn.is_tax_inclusive, rules.vat_rate)
            except DerivedValueError:
                logger.warning(f"Skipping sale {txn.id} with unreadable amount {txn.amount!r} in turnover")
                continue
            if base < 0:
                logger.warning(f"Skipping sale {txn.id} with negative amount {base} in turnover")
                continue
            total += base

        return round_money(total)

    def deductible_expenses(self, entity_id: int, tax_year: int) -> Decimal:
        """Tax-exclusive base of the settled, tax-deductible purchases dated in ``tax_year``."""
        rules = get_rules(tax_year)
        start, end = calculate_period_range(tax_year)
        purchases = self.transactions.list_transactions(
            entity_id,
            period_start=start,
            period_end=end,
            statuses=_STATUSES_BY_BASIS[TurnoverBasis.CASH],
            kind=TransactionKind.PURCHASE,
        )

        total = Decimal("0.00")
        for txn in purchases:
            if not txn.is_tax_deductible:
                continue
            try:
                base = taxable_base(txn.amount, txn.is_tax_inclusive, rules.vat_rate)
            except DerivedValueError:
                logger.warning(f"Skipping purchase {txn.id} with unreadable amount {txn.amount!r} in expenses")
                continue
            if base < 0:
                logger.warning(f"Skipping purchase {txn.id} with negative amount {base} in expenses")
                continue
            total += base

        return round_money(total)
