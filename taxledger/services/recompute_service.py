"""
Recomputation of derived tax records after a transaction changes.

Every hook rebuilds the affected periods from scratch (never a delta), so a
hook can be repeated or retried and always lands on the same summaries.

Affected periods are the monthly periods of the old and new transaction
dates plus the annual roll-up of each year touched. For a date move across
months (or years) both sides are rebuilt.

A sale's stored VAT is re-stamped before anything is rebuilt, so an edited
amount or exemption flag reaches the summaries. Deferred rebuilds are only
handed to the worker once the caller's session commits; until then the
worker could not see the change.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Union

from sqlalchemy import event
from sqlalchemy.orm import Session

from taxledger import metrics
from taxledger.core.config import settings
from taxledger.core.exceptions import IdentityError
from taxledger.models.models import TaxTransaction
from taxledger.models.schemas import RecomputeResult, TransactionSnapshot
from taxledger.models.tax_models import TransactionKind, TransactionStatus
from taxledger.services.classification_service import EntityClassifier
from taxledger.services.period_utils import TaxPeriod, affected_periods, calculate_period_range
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
from taxledger.services.tax_rules import get_rules
from taxledger.services.vat_service import VATService
from taxledger.services.wht_service import WHTLedgerService

logger = logging.getLogger(__name__)

TransactionLike = Union[TaxTransaction, TransactionSnapshot]


def snapshot(txn: Optional[TransactionLike]) -> Optional[TransactionSnapshot]:
    if txn is None or isinstance(txn, TransactionSnapshot):
        return txn
    return TransactionSnapshot.model_validate(txn)


class RecomputationCoordinator:
    """
    Entry points called by whatever mutates transactions.

    Hooks:
    - on_transaction_settled / on_transaction_unsettled: status changes
    - on_transaction_fields_changed: edits, including date moves
    - on_transaction_deleted: call after the row is deleted (and flushed),
      passing a snapshot taken before the delete

    The caller owns the database transaction; a failure part-way leaves the
    previous summaries in place once the caller rolls back.

    With ``defer_summaries`` the summary rebuilds are queued on the
    coordinator. Given a session, they are sent to the worker when that
    session commits and dropped when it rolls back. Store-only callers send
    them with ``dispatch_deferred`` after their own commit.
    """

    def __init__(
        self,
        db: Session | None = None,
        *,
        transactions: TransactionStore | None = None,
        summaries: SummaryStore | None = None,
        ledger: LedgerStore | None = None,
        remittances: RemittanceStore | None = None,
        defer_summaries: bool | None = None,
    ):
        if db is None and (transactions is None or summaries is None or ledger is None):
            raise ValueError("RecomputationCoordinator needs a session or all three stores")
        self.db = db
        self.transactions = transactions or SQLTransactionStore(db)
        self.summaries = summaries or SQLSummaryStore(db)
        self.ledger = ledger or SQLLedgerStore(db)
        self.remittances = remittances or (SQLRemittanceStore(db) if db is not None else None)
        self.defer_summaries = settings.RECOMPUTE_ASYNC if defer_summaries is None else defer_summaries
        self._pending: list[tuple[int, int, int]] = []
        self._listening = False

    def _services(self) -> tuple[VATService, WHTLedgerService]:
        # Fresh classifier per call: turnover must reflect this mutation.
        classifier = EntityClassifier(self.transactions)
        vat = VATService(
            transactions=self.transactions,
            summaries=self.summaries,
            classifier=classifier,
            remittances=self.remittances,
        )
        wht = WHTLedgerService(
            transactions=self.transactions,
            ledger=self.ledger,
            summaries=self.summaries,
            classifier=classifier,
            remittances=self.remittances,
        )
        return vat, wht

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------
    def on_transaction_settled(self, txn: TransactionLike) -> RecomputeResult:
        return self._recompute(None, snapshot(txn), hook="settled")

    def on_transaction_unsettled(self, txn: TransactionLike) -> RecomputeResult:
        current = snapshot(txn)
        return self._recompute(current, current, hook="unsettled")

    def on_transaction_fields_changed(self, old: TransactionLike, new: TransactionLike) -> RecomputeResult:
        return self._recompute(snapshot(old), snapshot(new), hook="fields_changed")

    def on_transaction_deleted(self, txn: TransactionLike) -> RecomputeResult:
        return self._recompute(snapshot(txn), None, hook="deleted")

    # ------------------------------------------------------------------
    # Rebuilds
    # ------------------------------------------------------------------
    def rebuild_period(self, entity_id: int, period: TaxPeriod) -> RecomputeResult:
        """Rebuild the VAT and WHT summaries of one period. The ledger is left as is."""
        with metrics.recompute_timer("rebuild_period"):
            vat, wht = self._services()
            self._rebuild_summaries(vat, wht, entity_id, [period])
        return RecomputeResult(entity_id=entity_id, periods=[period.label], deferred=self.defer_summaries)

    def rebuild_year(self, entity_id: int, year: int, *, resync_ledger: bool = True) -> RecomputeResult:
        """
        Rebuild a whole tax year for an entity.

        With ``resync_ledger`` every transaction dated in the year is synced
        against the ledger first. Transactions that fail identity checks are
        skipped; the first such error is reported in the result.
        """
        get_rules(year)
        periods = [TaxPeriod.monthly(year, m) for m in range(1, 13)] + [TaxPeriod.annual(year)]
        identity_error = None

        with metrics.recompute_timer("rebuild_year"):
            vat, wht = self._services()
            if resync_ledger:
                start, end = calculate_period_range(year)
                for txn in self.transactions.list_transactions(entity_id, period_start=start, period_end=end):
                    try:
                        wht.sync_transaction(txn)
                    except IdentityError as exc:
                        logger.warning(f"Ledger resync skipped transaction {txn.id}: {exc.message}")
                        if identity_error is None:
                            identity_error = exc.to_dict()["error"]
            self._rebuild_summaries(vat, wht, entity_id, periods)

        return RecomputeResult(
            entity_id=entity_id,
            periods=[p.label for p in periods],
            identity_error=identity_error,
            deferred=self.defer_summaries,
        )

    # ------------------------------------------------------------------
    # Deferred dispatch
    # ------------------------------------------------------------------
    @property
    def pending(self) -> list[tuple[int, int, int]]:
        """Queued (entity_id, year, month) rebuilds not yet sent to the worker."""
        return list(self._pending)

    def dispatch_deferred(self) -> int:
        """Send every queued rebuild to the worker. Returns how many were sent."""
        if not self._pending:
            return 0
        from taxledger.workers.tasks.tax_tasks import recompute_period

        queued, self._pending = self._pending, []
        for entity_id, year, month in queued:
            recompute_period.delay(entity_id, year, month)
        logger.info(f"Dispatched {len(queued)} deferred summary rebuilds")
        return len(queued)

    def _after_commit(self, session: Session) -> None:
        self.dispatch_deferred()

    def _after_rollback(self, session: Session) -> None:
        if self._pending:
            logger.info(f"Dropped {len(self._pending)} deferred summary rebuilds on rollback")
            self._pending = []

    def _defer(self, entity_id: int, periods: list[TaxPeriod]) -> None:
        for period in periods:
            key = (entity_id, period.year, period.month)
            if key not in self._pending:
                self._pending.append(key)
        if self.db is not None and not self._listening:
            event.listen(self.db, "after_commit", self._after_commit)
            event.listen(self.db, "after_rollback", self._after_rollback)
            self._listening = True
        logger.info(f"Deferred {len(periods)} summary rebuilds for entity {entity_id} until commit")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _rebuild_summaries(
        self,
        vat: VATService,
        wht: WHTLedgerService,
        entity_id: int,
        periods: Iterable[TaxPeriod],
    ) -> None:
        periods = list(periods)
        if self.defer_summaries:
            self._defer(entity_id, periods)
            return
        for period in periods:
            vat.recompute_period_summary(entity_id, period)
            wht.recompute_period_summary(entity_id, period)

    def _recompute(
        self,
        old: Optional[TransactionSnapshot],
        new: Optional[TransactionSnapshot],
        *,
        hook: str,
    ) -> RecomputeResult:
        subject = new or old
        if subject is None:
            raise ValueError("A recompute needs at least one transaction snapshot")

        entry = None
        identity_error = None
        with metrics.recompute_timer(hook):
            vat, wht = self._services()

            if new is not None and new.kind == TransactionKind.SALE:
                vat.restamp_transaction(new.id)
            if old is not None:
                wht.remove_transaction(old.id)
            if new is not None and new.status == TransactionStatus.SETTLED:
                try:
                    entry = wht.sync_transaction(new)
                except IdentityError as exc:
                    identity_error = exc.to_dict()["error"]
                    logger.warning(
                        f"No withholding credit for transaction {new.id}: {exc.message}"
                    )

            dates = [t.transaction_date for t in (old, new) if t is not None]
            periods = affected_periods(dates)
            entity_ids = sorted({t.entity_id for t in (old, new) if t is not None})
            for entity_id in entity_ids:
                self._rebuild_summaries(vat, wht, entity_id, periods)

        logger.info(
            f"Recomputed after {hook} of transaction {subject.id}: "
            f"periods={[p.label for p in periods]} ledger_entry={entry.id if entry else None}"
        )
        return RecomputeResult(
            entity_id=subject.entity_id,
            periods=[p.label for p in periods],
            ledger_entry_id=entry.id if entry is not None else None,
            wht_amount=entry.wht_amount if entry is not None else None,
            identity_error=identity_error,
            deferred=self.defer_summaries,
        )
