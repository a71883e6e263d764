"""
Withholding tax (WHT) computation and the withholding credit ledger.

Handles:
- Rate lookup by payment type, payee tier and residency
- Withholding amounts under the small-supplier exemption
- One immutable ledger entry per withholding-bearing transaction
- Credit totals per payee and per tax year
- Applying accumulated credits against a final income tax liability

On a purchase the entity withholds from its supplier, so the supplier is the
credit beneficiary. On a sale the customer withheld from the entity, so the
entity itself is the beneficiary.
"""
from __future__ import annotations

import hashlib
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from sqlalchemy.orm import Session

from taxledger import metrics
from taxledger.core.exceptions import (
    DerivedValueError,
    EntityNotFoundError,
    InvalidWithholdingSelectionError,
    MissingPayeeIdentityError,
)
from taxledger.models.models import TaxableEntity, TaxTransaction
from taxledger.models.schemas import CreditApplication, TransactionSnapshot
from taxledger.models.tax_models import (
    EntityKind,
    PayeeTier,
    RemittedTax,
    TransactionKind,
    WHTCreditEntry,
    WHTPaymentType,
    WHTSummary,
)
from taxledger.services.classification_service import EntityClassifier
from taxledger.services.period_utils import TaxPeriod
from taxledger.services.remittance_service import remittance_position
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
from taxledger.services.tax_rules import get_rules, parse_payment_type, round_money, taxable_base

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
PAYEE_KEY_LENGTH = 24

Transaction = Union[TaxTransaction, TransactionSnapshot]


def _amount(field: str, value: Any) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise DerivedValueError(field, value, "not a number") from exc
    if not amount.is_finite():
        raise DerivedValueError(field, value, "not a finite number")
    return amount


def withholding_rate(
    payment_type: Union[str, WHTPaymentType],
    tax_year: int,
    *,
    payee_tier: PayeeTier = PayeeTier.COMPANY,
    non_resident: bool = False,
) -> Decimal:
    """Statutory rate for a payment type. Unknown types are configuration errors."""
    rules = get_rules(tax_year)
    return rules.wht_rate(parse_payment_type(payment_type, tax_year), PayeeTier(payee_tier), non_resident)


def compute_withholding(
    base: Any,
    payment_type: Union[str, WHTPaymentType],
    tax_year: int,
    *,
    explicit: bool = False,
    supplier_exempt: bool = False,
    payee_tier: PayeeTier = PayeeTier.COMPANY,
    non_resident: bool = False,
) -> Decimal:
    """
    Amount to withhold on a payment.

    Args:
        base: Tax-exclusive payment amount
        payment_type: Kind of payment (selects the rate)
        tax_year: Year the payment falls in
        explicit: The payment type was chosen by the user. No exemptions are
            applied and the result must be positive.
        supplier_exempt: The beneficiary is a small supplier. Only consulted
            for derived withholding on qualifying service payments.
        payee_tier: Company or individual rate column
        non_resident: Use the non-resident rate

    Returns:
        Withholding rounded to kobo

    Raises:
        InvalidWithholdingSelectionError: Explicit selection that yields nothing
        ConfigurationError: Unknown payment type or unsupported year
    """
    amount = _amount("withholding base", base)
    rules = get_rules(tax_year)
    kind = parse_payment_type(payment_type, tax_year)

    if amount <= 0:
        if explicit:
            metrics.compliance_rejection("CMP501")
            raise InvalidWithholdingSelectionError(kind.value, amount, "the payment amount must be greater than zero")
        return ZERO

    if not explicit and supplier_exempt and kind in rules.wht_service_types:
        return ZERO

    rate = rules.wht_rate(kind, PayeeTier(payee_tier), non_resident)
    withheld = round_money(amount * rate)
    if explicit and withheld <= 0:
        metrics.compliance_rejection("CMP501")
        raise InvalidWithholdingSelectionError(kind.value, amount, "the amount is too small to withhold")
    return withheld


def credit_identity(payee_tin: str | None) -> str:
    """
    Stable ledger key for a credit beneficiary.

    SHA-256 of the whitespace-stripped, upper-cased TIN, first 24 hex
    characters. This is a derived grouping key, not a security feature.

    Raises:
        MissingPayeeIdentityError: TIN is missing or blank
    """
    normalized = "".join((payee_tin or "").split()).upper()
    if not normalized:
        raise MissingPayeeIdentityError()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:PAYEE_KEY_LENGTH]


def apply_credit(liability: Any, available: Any) -> CreditApplication:
    """Offset a liability with withholding credits; the net never goes below zero."""
    owed = round_money(_amount("liability", liability))
    credit = round_money(_amount("available credit", available))
    if owed < 0:
        raise DerivedValueError("liability", owed, "must not be negative")
    if credit < 0:
        raise DerivedValueError("available credit", credit, "must not be negative")
    consumed = min(owed, credit)
    return CreditApplication(
        net_liability=round_money(owed - consumed),
        credit_consumed=consumed,
        credit_remaining=round_money(credit - consumed),
    )


class WHTLedgerService:
    """
    Withholding credit ledger.

    Entries are derived from settled transactions and are never edited: a
    sync removes whatever the transaction produced before and writes a fresh
    entry, so repeated syncs leave exactly one entry (or none).
    """

    def __init__(
        self,
        db: Session | None = None,
        *,
        transactions: TransactionStore | None = None,
        ledger: LedgerStore | None = None,
        summaries: SummaryStore | None = None,
        classifier: EntityClassifier | None = None,
        remittances: RemittanceStore | None = None,
    ):
        if db is None and (transactions is None or ledger is None):
            raise ValueError("WHTLedgerService needs a session or both the transaction and ledger stores")
        self.transactions = transactions or SQLTransactionStore(db)
        self.ledger = ledger or SQLLedgerStore(db)
        self.summaries = summaries or (SQLSummaryStore(db) if db is not None else None)
        self.classifier = classifier or EntityClassifier(self.transactions)
        self.remittances = remittances or (SQLRemittanceStore(db) if db is not None else None)

    def _entity(self, entity_id: int) -> TaxableEntity:
        entity = self.transactions.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    def remove_transaction(self, transaction_id: int) -> int:
        removed = self.ledger.delete_entries_for_transaction(transaction_id)
        metrics.wht_entries_removed(len(removed))
        return len(removed)

    def sync_transaction(self, txn: Transaction) -> WHTCreditEntry | None:
        """
        Bring the ledger in line with one transaction.

        Deletes any existing entry for the transaction, then creates a new
        one if the transaction is settled, names a payment type, and yields a
        positive withholding.

        The small-supplier exemption is judged on whoever suffers the
        withholding: the entity on a sale, the supplier on a purchase. A
        supplier that is not a taxable entity here has no known turnover and
        is always withheld from.

        Returns:
            The new entry, or None if the transaction carries no withholding

        Raises:
            MissingPayeeIdentityError: Beneficiary TIN (or payee tier) missing
            InvalidWithholdingSelectionError: Explicit type that yields nothing
        """
        self.remove_transaction(txn.id)

        if not txn.is_settled or not txn.has_withholding:
            return None
        amount = _amount("amount", txn.amount)
        if amount <= 0:
            return None

        entity = self._entity(txn.entity_id)
        tax_year = txn.transaction_date.year
        rules = get_rules(tax_year)
        payment_type = parse_payment_type(txn.wht_payment_type, tax_year)
        base = taxable_base(amount, txn.is_tax_inclusive, rules.vat_rate)

        if txn.kind == TransactionKind.PURCHASE:
            if not (txn.payee_tin and txn.payee_tin.strip()):
                metrics.identity_error()
                raise MissingPayeeIdentityError(txn.id, "payee_tin")
            if txn.payee_tier is None:
                metrics.identity_error()
                raise MissingPayeeIdentityError(txn.id, "payee_tier")
            payee_tin = txn.payee_tin.strip()
            payee_name = txn.payee_name
            payee_tier = PayeeTier(txn.payee_tier)
            beneficiary = self.transactions.get_entity_by_tin(payee_tin)
            # Only a supplier we hold turnover for can be a small supplier.
            supplier_exempt = (
                beneficiary is not None and self.classifier.profile(beneficiary, tax_year).is_small_supplier
            )
        else:
            if not (entity.tin and entity.tin.strip()):
                metrics.identity_error()
                raise MissingPayeeIdentityError(txn.id, "entity_tin")
            payee_tin = entity.tin.strip()
            payee_name = entity.name
            payee_tier = PayeeTier.INDIVIDUAL if entity.kind == EntityKind.SOLE_PROPRIETOR else PayeeTier.COMPANY
            beneficiary = entity
            supplier_exempt = self.classifier.profile(entity, tax_year).is_small_supplier

        withheld = compute_withholding(
            base,
            payment_type,
            tax_year,
            explicit=txn.wht_explicit,
            supplier_exempt=supplier_exempt,
            payee_tier=payee_tier,
            non_resident=txn.wht_non_resident,
        )
        if withheld <= 0:
            logger.info(f"Transaction {txn.id}: {payment_type.value} withholding exempt for small supplier")
            return None

        entry = self.ledger.upsert_entry({
            "payee_key": credit_identity(payee_tin),
            "payee_name": payee_name,
            "payee_tin": payee_tin,
            "beneficiary_entity_id": beneficiary.id if beneficiary is not None else None,
            "source_entity_id": entity.id,
            "transaction_id": txn.id,
            "transaction_kind": TransactionKind(txn.kind).value,
            "payment_type": payment_type.value,
            "rate": rules.wht_rate(payment_type, payee_tier, txn.wht_non_resident),
            "base_amount": base,
            "wht_amount": withheld,
            "tax_year": tax_year,
            "month": txn.transaction_date.month,
        })
        metrics.wht_entry_created()
        logger.info(
            f"WHT credit recorded for transaction {txn.id}: {withheld} "
            f"({payment_type.value}) for payee {entry.payee_key}"
        )
        return entry

    def total_credits(self, payee_key: str, tax_year: int) -> Decimal:
        get_rules(tax_year)
        total = sum((Decimal(e.wht_amount) for e in self.ledger.list_entries(payee_key, tax_year)), ZERO)
        return round_money(total)

    def recompute_period_summary(self, entity_id: int, period: TaxPeriod) -> WHTSummary:
        """Rebuild the WHT summary for one entity and period from its ledger entries."""
        if self.summaries is None:
            raise ValueError("WHTLedgerService was created without a summary store")
        self._entity(entity_id)
        rules = get_rules(period.year)

        deducted = ZERO
        deducted_count = 0
        suffered = ZERO
        suffered_count = 0
        for entry in self.ledger.list_entries_for_entity(entity_id, period):
            if entry.transaction_kind == TransactionKind.PURCHASE.value:
                deducted += Decimal(entry.wht_amount)
                deducted_count += 1
            else:
                suffered += Decimal(entry.wht_amount)
                suffered_count += 1

        deducted = round_money(deducted)
        remitted = ZERO
        if self.remittances is not None:
            paid = self.remittances.list_remittances(entity_id, RemittedTax.WHT, period)
            remitted = round_money(sum((Decimal(r.amount) for r in paid), ZERO))
        outstanding, status = remittance_position(deducted, remitted)
        values = {
            "total_deducted": deducted,
            "deducted_count": deducted_count,
            "total_suffered": round_money(suffered),
            "suffered_count": suffered_count,
            "total_remitted": remitted,
            "outstanding": outstanding,
            "status": status.value,
            "remittance_deadline": None if period.is_annual else rules.deadlines.monthly(period.year, period.month),
        }
        summary = self.summaries.upsert_wht_summary(entity_id, period, values)
        logger.info(
            f"WHT summary {entity_id}/{period}: deducted={deducted} ({deducted_count}) "
            f"suffered={values['total_suffered']} ({suffered_count}) remitted={remitted} ({status.value})"
        )
        return summary
