"""
Tax classification enums and tax records.

Models for:
- Per-period VAT summaries (monthly, plus month 0 for the annual roll-up)
- Per-period WHT summaries
- The withholding credit ledger
- Remittances paid to the tax authority

Summaries and ledger entries are derived from ``tax_transaction`` (and, for
the outstanding amounts, ``tax_remittance``) and can be rebuilt at any time.
Remittances are the only source data in this module.
"""
from enum import Enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from taxledger.db.base_class import Base


class TransactionKind(str, Enum):
    SALE = "sale"          # invoice-like: output VAT, may suffer WHT from the customer
    PURCHASE = "purchase"  # expense-like: input VAT, may require withholding on the payee


class TransactionStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class EntityKind(str, Enum):
    """Taxable entity variants.

    Both share turnover and classification logic; they differ only in which
    income tax method applies (flat CIT vs graduated PIT).
    """
    INCORPORATED = "incorporated"
    SOLE_PROPRIETOR = "sole_proprietor"


class PayeeTier(str, Enum):
    """WHT rate column. Sole proprietor payees are rated as individuals."""
    COMPANY = "company"
    INDIVIDUAL = "individual"


class WHTPaymentType(str, Enum):
    PROFESSIONAL_SERVICES = "professional_services"
    TECHNICAL_SERVICES = "technical_services"
    MANAGEMENT_SERVICES = "management_services"
    OTHER_SERVICES = "other_services"
    COMMISSION = "commission"
    CONSTRUCTION = "construction"
    DIVIDENDS = "dividends"
    INTEREST = "interest"
    ROYALTIES = "royalties"
    RENT = "rent"
    DIRECTORS_FEES = "directors_fees"


class TaxConcern(str, Enum):
    CONSUMPTION_TAX_ELIGIBILITY = "consumption_tax_eligibility"
    WITHHOLDING_EXEMPTION = "withholding_exemption"
    INCOME_TAX_TIER = "income_tax_tier"


class VATEligibility(str, Enum):
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"


class WHTExemption(str, Enum):
    EXEMPT = "exempt"    # small supplier: service payments are not withheld
    LIABLE = "liable"


class IncomeTaxTier(str, Enum):
    SMALL = "small"        # 0% CIT, no development levy
    STANDARD = "standard"


class TurnoverBasis(str, Enum):
    ACCRUAL = "accrual"  # settled + pending
    CASH = "cash"        # settled only


class VATStatus(str, Enum):
    PAYABLE = "payable"
    REFUNDABLE = "refundable"
    ZERO = "zero"


class RemittanceStatus(str, Enum):
    NIL = "nil"            # nothing due
    PENDING = "pending"    # due, nothing remitted yet
    PARTIAL = "partial"
    REMITTED = "remitted"  # remitted in full (or over)


class RemittedTax(str, Enum):
    """Which liability a remittance pays down.

    VAT and WHT are remitted per month; CIT and PIT against the tax year.
    """
    VAT = "vat"
    WHT = "wht"
    CIT = "cit"
    PIT = "pit"

    @property
    def is_monthly(self) -> bool:
        return self in (RemittedTax.VAT, RemittedTax.WHT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VATSummary(Base):
    """
    VAT position for one entity and period.

    Stores:
    - Output VAT (settled, non-exempt sales)
    - Input VAT as recorded and as effectively claimable
    - Net VAT and payable/refundable status
    - The accrual turnover and exemption flag the summary was computed under
    """
    __tablename__ = "vat_summary"
    __table_args__ = (
        UniqueConstraint("entity_id", "year", "month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_id = Column(Integer, ForeignKey("taxable_entity.id"), nullable=False, index=True)

    # Tax period; month 0 is the annual roll-up
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False, default=0)

    output_vat = Column(Numeric(15, 2), default=0, nullable=False)
    input_vat = Column(Numeric(15, 2), default=0, nullable=False)
    effective_input_vat = Column(Numeric(15, 2), default=0, nullable=False)
    net_vat = Column(Numeric(15, 2), default=0, nullable=False)
    status = Column(String(20), default=VATStatus.ZERO.value, nullable=False)

    annual_turnover = Column(Numeric(15, 2), default=0, nullable=False)
    is_vat_exempt = Column(Boolean, default=False, nullable=False)

    transaction_count = Column(Integer, default=0, nullable=False)
    skipped_rows = Column(Integer, default=0, nullable=False)

    # Remittance position against a positive net_vat
    remitted_vat = Column(Numeric(15, 2), default=0, nullable=False)
    outstanding_vat = Column(Numeric(15, 2), default=0, nullable=False)
    remittance_status = Column(String(20), default=RemittanceStatus.NIL.value, nullable=False)
    remittance_deadline = Column(Date, nullable=True)
    computed_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def period_label(self) -> str:
        return f"{self.year}" if not self.month else f"{self.year}-{self.month:02d}"


class WHTSummary(Base):
    """Withholding position for one entity and period.

    ``total_deducted`` is what the entity withheld from payees (to remit);
    ``total_suffered`` is what customers withheld from the entity (credits).
    """
    __tablename__ = "wht_summary"
    __table_args__ = (
        UniqueConstraint("entity_id", "year", "month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_id = Column(Integer, ForeignKey("taxable_entity.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False, default=0)

    total_deducted = Column(Numeric(15, 2), default=0, nullable=False)
    deducted_count = Column(Integer, default=0, nullable=False)
    total_suffered = Column(Numeric(15, 2), default=0, nullable=False)
    suffered_count = Column(Integer, default=0, nullable=False)

    total_remitted = Column(Numeric(15, 2), default=0, nullable=False)
    outstanding = Column(Numeric(15, 2), default=0, nullable=False)
    status = Column(String(20), default=RemittanceStatus.NIL.value, nullable=False)
    remittance_deadline = Column(Date, nullable=True)
    computed_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WHTCreditEntry(Base):
    """
    One withholding credit, created from exactly one settled transaction.

    Entries are never edited in place. A change to the source transaction
    deletes the entry and creates a fresh one, so the unique constraint on
    ``transaction_id`` doubles as the idempotency key.
    """
    __tablename__ = "wht_credit_entry"
    __table_args__ = (
        UniqueConstraint("transaction_id"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Beneficiary (who may claim the credit)
    payee_key = Column(String(24), nullable=False, index=True)
    payee_name = Column(String(200), nullable=True)
    payee_tin = Column(String(20), nullable=True)
    beneficiary_entity_id = Column(Integer, ForeignKey("taxable_entity.id"), nullable=True)

    # Source
    source_entity_id = Column(Integer, ForeignKey("taxable_entity.id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("tax_transaction.id", ondelete="CASCADE"), nullable=False)
    transaction_kind = Column(String(20), nullable=False)

    payment_type = Column(String(40), nullable=False)
    rate = Column(Numeric(6, 4), nullable=False)
    base_amount = Column(Numeric(15, 2), nullable=False)
    wht_amount = Column(Numeric(15, 2), nullable=False)

    tax_year = Column(Integer, nullable=False, index=True)
    month = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class TaxRemittance(Base):
    """
    A payment made to the tax authority against one liability.

    Unlike the summaries this IS source data: it records what the entity
    paid, and summaries read it back to report what is still outstanding.
    Several remittances may land in one period (part payments); the receipt
    reference is unique per entity and tax.
    """
    __tablename__ = "tax_remittance"
    __table_args__ = (
        UniqueConstraint("entity_id", "tax", "reference"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_id = Column(Integer, ForeignKey("taxable_entity.id"), nullable=False, index=True)
    tax = Column(String(10), nullable=False)

    # Period paid for; month 0 for annual CIT and PIT
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False, default=0)

    amount = Column(Numeric(15, 2), nullable=False)
    reference = Column(String(100), nullable=False)
    remitted_on = Column(Date, nullable=False)
    deadline = Column(Date, nullable=False)
    is_late = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    @property
    def period_label(self) -> str:
        return f"{self.year}" if not self.month else f"{self.year}-{self.month:02d}"
