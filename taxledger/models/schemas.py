"""Value objects returned across the service boundary."""
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from taxledger.models.tax_models import (
    EntityKind,
    IncomeTaxTier,
    PayeeTier,
    RemittanceStatus,
    TransactionKind,
    TransactionStatus,
)


class TransactionSnapshot(BaseModel):
    """Immutable copy of a transaction's tax-relevant fields.

    The coordinator compares an old and a new snapshot, so it never depends on
    the ORM row still existing (or still holding its pre-edit values).
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    entity_id: int
    kind: TransactionKind
    amount: Decimal
    transaction_date: dt.date
    status: TransactionStatus
    is_tax_inclusive: bool = False
    is_vat_exempt: bool | None = None
    vat_explicit: bool = False
    vat_amount: Decimal | None = None
    is_tax_deductible: bool = True
    wht_payment_type: str | None = None
    wht_explicit: bool = False
    wht_non_resident: bool = False
    payee_name: str | None = None
    payee_tin: str | None = None
    payee_tier: PayeeTier | None = None

    @property
    def is_settled(self) -> bool:
        return self.status == TransactionStatus.SETTLED

    @property
    def has_withholding(self) -> bool:
        return bool(self.wht_payment_type and self.wht_payment_type.strip())


class StatutoryDeductions(BaseModel):
    pension: Decimal = Decimal("0.00")
    nhf: Decimal = Decimal("0.00")
    nhis: Decimal = Decimal("0.00")
    rent_relief: Decimal = Decimal("0.00")
    cra: Decimal = Decimal("0.00")  # consolidated relief allowance, abolished from 2026
    other: Decimal = Decimal("0.00")  # lump sum supplied by the caller

    @computed_field  # type: ignore[misc]
    @property
    def total(self) -> Decimal:
        return self.pension + self.nhf + self.nhis + self.rent_relief + self.cra + self.other


class CreditApplication(BaseModel):
    model_config = ConfigDict(frozen=True)

    net_liability: Decimal
    credit_consumed: Decimal
    credit_remaining: Decimal


class LiabilityBreakdown(BaseModel):
    """Final income tax position for one entity and tax year."""

    entity_id: int
    tax_year: int
    entity_kind: EntityKind
    method: Literal["pit", "cit"]
    tier: IncomeTaxTier
    annual_turnover: Decimal

    gross_income: Decimal
    gross_income_source: Literal["supplied", "derived"] = "supplied"
    deductions: StatutoryDeductions
    taxable_income: Decimal

    income_tax: Decimal
    development_levy: Decimal = Decimal("0.00")

    wht_credits_available: Decimal = Decimal("0.00")
    credit_consumed: Decimal = Decimal("0.00")
    credit_remaining: Decimal = Decimal("0.00")
    net_liability: Decimal

    # Remittances already paid against total_payable
    remitted: Decimal = Decimal("0.00")
    outstanding: Decimal = Decimal("0.00")
    remittance_status: RemittanceStatus = RemittanceStatus.NIL

    filing_deadline: dt.date

    @computed_field  # type: ignore[misc]
    @property
    def total_payable(self) -> Decimal:
        return self.net_liability + self.development_levy


class RecomputeResult(BaseModel):
    entity_id: int
    periods: list[str] = Field(default_factory=list)
    ledger_entry_id: int | None = None
    wht_amount: Decimal | None = None
    identity_error: dict[str, Any] | None = None
    deferred: bool = False  # summary rebuilds queued to run after commit

    @property
    def ok(self) -> bool:
        return self.identity_error is None
