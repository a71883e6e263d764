"""
Collaborator interfaces consumed by the tax engines, plus SQLAlchemy adapters.

The engines only talk to the protocols below:
- TransactionStore: reads source transactions and entities, saves restamped tax
- SummaryStore: upserts and reads derived period summaries
- LedgerStore: writes and reads withholding credit entries
- RemittanceStore: records and reads payments made to the tax authority

None of the adapters commit. The caller owns the unit of work
(see ``taxledger.db.session.session_scope``).
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Iterable, Protocol, Sequence

from sqlalchemy import and_
from sqlalchemy.orm import Session

from taxledger.models.models import TaxableEntity, TaxTransaction
from taxledger.models.tax_models import (
    RemittedTax,
    TaxRemittance,
    TransactionKind,
    TransactionStatus,
    VATSummary,
    WHTCreditEntry,
    WHTSummary,
)
from taxledger.services.period_utils import TaxPeriod

logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    def list_transactions(
        self,
        entity_id: int,
        *,
        period_start: dt.date,
        period_end: dt.date,
        statuses: Iterable[TransactionStatus] | None = None,
        kind: TransactionKind | None = None,
    ) -> Sequence[TaxTransaction]: ...

    def get_transaction(self, transaction_id: int) -> TaxTransaction | None: ...

    def get_entity(self, entity_id: int) -> TaxableEntity | None: ...

    def get_entity_by_tin(self, tin: str) -> TaxableEntity | None: ...

    def save(self, txn: TaxTransaction) -> TaxTransaction: ...


class SummaryStore(Protocol):
    def upsert_vat_summary(self, entity_id: int, period: TaxPeriod, values: dict[str, Any]) -> VATSummary: ...

    def get_vat_summary(self, entity_id: int, period: TaxPeriod) -> VATSummary | None: ...

    def upsert_wht_summary(self, entity_id: int, period: TaxPeriod, values: dict[str, Any]) -> WHTSummary: ...

    def get_wht_summary(self, entity_id: int, period: TaxPeriod) -> WHTSummary | None: ...


class LedgerStore(Protocol):
    def upsert_entry(self, values: dict[str, Any]) -> WHTCreditEntry: ...

    def delete_entries_for_transaction(self, transaction_id: int) -> list[WHTCreditEntry]: ...

    def list_entries(self, payee_key: str, tax_year: int) -> Sequence[WHTCreditEntry]: ...

    def list_entries_for_entity(self, entity_id: int, period: TaxPeriod) -> Sequence[WHTCreditEntry]: ...


class RemittanceStore(Protocol):
    def add_remittance(self, values: dict[str, Any]) -> TaxRemittance: ...

    def get_remittance(self, remittance_id: int) -> TaxRemittance | None: ...

    def delete_remittance(self, remittance: TaxRemittance) -> None: ...

    def find_by_reference(self, entity_id: int, tax: RemittedTax, reference: str) -> TaxRemittance | None: ...

    def list_remittances(self, entity_id: int, tax: RemittedTax, period: TaxPeriod) -> Sequence[TaxRemittance]: ...


class SQLTransactionStore:
    def __init__(self, db: Session):
        self.db = db

    def list_transactions(
        self,
        entity_id: int,
        *,
        period_start: dt.date,
        period_end: dt.date,
        statuses: Iterable[TransactionStatus] | None = None,
        kind: TransactionKind | None = None,
    ) -> list[TaxTransaction]:
        query = self.db.query(TaxTransaction).filter(
            and_(
                TaxTransaction.entity_id == entity_id,
                TaxTransaction.transaction_date >= period_start,
                TaxTransaction.transaction_date <= period_end,
            )
        )
        if statuses is not None:
            query = query.filter(TaxTransaction.status.in_(list(statuses)))
        if kind is not None:
            query = query.filter(TaxTransaction.kind == kind)
        return query.order_by(TaxTransaction.transaction_date, TaxTransaction.id).all()

    def get_transaction(self, transaction_id: int) -> TaxTransaction | None:
        return self.db.get(TaxTransaction, transaction_id)

    def get_entity(self, entity_id: int) -> TaxableEntity | None:
        return self.db.get(TaxableEntity, entity_id)

    def get_entity_by_tin(self, tin: str) -> TaxableEntity | None:
        return self.db.query(TaxableEntity).filter(TaxableEntity.tin == tin.strip()).first()

    def save(self, txn: TaxTransaction) -> TaxTransaction:
        self.db.add(txn)
        self.db.flush()
        return txn


class SQLSummaryStore:
    """Row-per-(entity, year, month) upserts.

    The existing row is read ``FOR UPDATE`` so concurrent rebuilds of one
    period serialize at the write (SQLite ignores the lock hint).
    """

    def __init__(self, db: Session):
        self.db = db

    def _locked(self, model: type, entity_id: int, period: TaxPeriod):
        return (
            self.db.query(model)
            .filter(
                and_(
                    model.entity_id == entity_id,
                    model.year == period.year,
                    model.month == period.month,
                )
            )
            .with_for_update()
            .first()
        )

    def _upsert(self, model: type, entity_id: int, period: TaxPeriod, values: dict[str, Any]):
        row = self._locked(model, entity_id, period)
        if row is None:
            row = model(entity_id=entity_id, year=period.year, month=period.month)
            self.db.add(row)
        for key, value in values.items():
            setattr(row, key, value)
        row.computed_at = dt.datetime.now(dt.timezone.utc)
        self.db.flush()
        return row

    def upsert_vat_summary(self, entity_id: int, period: TaxPeriod, values: dict[str, Any]) -> VATSummary:
        return self._upsert(VATSummary, entity_id, period, values)

    def get_vat_summary(self, entity_id: int, period: TaxPeriod) -> VATSummary | None:
        return (
            self.db.query(VATSummary)
            .filter_by(entity_id=entity_id, year=period.year, month=period.month)
            .first()
        )

    def upsert_wht_summary(self, entity_id: int, period: TaxPeriod, values: dict[str, Any]) -> WHTSummary:
        return self._upsert(WHTSummary, entity_id, period, values)

    def get_wht_summary(self, entity_id: int, period: TaxPeriod) -> WHTSummary | None:
        return (
            self.db.query(WHTSummary)
            .filter_by(entity_id=entity_id, year=period.year, month=period.month)
            .first()
        )


class SQLLedgerStore:
    def __init__(self, db: Session):
        self.db = db

    def upsert_entry(self, values: dict[str, Any]) -> WHTCreditEntry:
        # Entries are immutable: replace rather than update.
        self.delete_entries_for_transaction(values["transaction_id"])
        entry = WHTCreditEntry(**values)
        self.db.add(entry)
        self.db.flush()
        return entry

    def delete_entries_for_transaction(self, transaction_id: int) -> list[WHTCreditEntry]:
        entries = self.db.query(WHTCreditEntry).filter(WHTCreditEntry.transaction_id == transaction_id).all()
        for entry in entries:
            self.db.delete(entry)
        if entries:
            self.db.flush()
            logger.debug(f"Removed {len(entries)} ledger entries for transaction {transaction_id}")
        return entries

    def list_entries(self, payee_key: str, tax_year: int) -> list[WHTCreditEntry]:
        return (
            self.db.query(WHTCreditEntry)
            .filter(and_(WHTCreditEntry.payee_key == payee_key, WHTCreditEntry.tax_year == tax_year))
            .order_by(WHTCreditEntry.id)
            .all()
        )

    def list_entries_for_entity(self, entity_id: int, period: TaxPeriod) -> list[WHTCreditEntry]:
        query = self.db.query(WHTCreditEntry).filter(
            and_(WHTCreditEntry.source_entity_id == entity_id, WHTCreditEntry.tax_year == period.year)
        )
        if not period.is_annual:
            query = query.filter(WHTCreditEntry.month == period.month)
        return query.order_by(WHTCreditEntry.id).all()


class SQLRemittanceStore:
    def __init__(self, db: Session):
        self.db = db

    def add_remittance(self, values: dict[str, Any]) -> TaxRemittance:
        remittance = TaxRemittance(**values)
        self.db.add(remittance)
        self.db.flush()
        return remittance

    def get_remittance(self, remittance_id: int) -> TaxRemittance | None:
        return self.db.get(TaxRemittance, remittance_id)

    def delete_remittance(self, remittance: TaxRemittance) -> None:
        self.db.delete(remittance)
        self.db.flush()

    def find_by_reference(self, entity_id: int, tax: RemittedTax, reference: str) -> TaxRemittance | None:
        return (
            self.db.query(TaxRemittance)
            .filter_by(entity_id=entity_id, tax=RemittedTax(tax).value, reference=reference)
            .first()
        )

    def list_remittances(self, entity_id: int, tax: RemittedTax, period: TaxPeriod) -> list[TaxRemittance]:
        """Remittances for the period; an annual period covers every month of the year."""
        query = self.db.query(TaxRemittance).filter(
            and_(
                TaxRemittance.entity_id == entity_id,
                TaxRemittance.tax == RemittedTax(tax).value,
                TaxRemittance.year == period.year,
            )
        )
        if not period.is_annual:
            query = query.filter(TaxRemittance.month == period.month)
        return query.order_by(TaxRemittance.remitted_on, TaxRemittance.id).all()
