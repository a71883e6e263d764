"""
Tax recomputation tasks.

Celery tasks that rebuild derived tax records outside the request that
changed a transaction. Each task is a full rebuild, so retries are safe.
"""
from __future__ import annotations

import logging

from celery import Task
from sqlalchemy.exc import SQLAlchemyError

from taxledger.db.session import session_scope
from taxledger.services.period_utils import TaxPeriod
from taxledger.services.recompute_service import RecomputationCoordinator
from taxledger.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="tax.recompute_period",
    autoretry_for=(SQLAlchemyError,),
    retry_backoff=30,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def recompute_period(self: Task, entity_id: int, year: int, month: int = 0) -> dict:
    """Rebuild the VAT and WHT summaries of one period (month 0 = annual)."""
    period = TaxPeriod(year, month)
    with session_scope() as db:
        result = RecomputationCoordinator(db, defer_summaries=False).rebuild_period(entity_id, period)
    logger.info("[tax.recompute_period] entity=%s period=%s", entity_id, period.label)
    return result.model_dump(mode="json")


@celery_app.task(
    bind=True,
    name="tax.rebuild_year",
    autoretry_for=(SQLAlchemyError,),
    retry_backoff=60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def rebuild_year(self: Task, entity_id: int, year: int, resync_ledger: bool = True) -> dict:
    """Resync the withholding ledger and rebuild every summary of a tax year."""
    with session_scope() as db:
        result = RecomputationCoordinator(db, defer_summaries=False).rebuild_year(
            entity_id, year, resync_ledger=resync_ledger
        )
    if result.identity_error:
        logger.warning(
            "[tax.rebuild_year] entity=%s year=%s completed with identity error: %s",
            entity_id, year, result.identity_error.get("message"),
        )
    else:
        logger.info("[tax.rebuild_year] entity=%s year=%s periods=%s", entity_id, year, len(result.periods))
    return result.model_dump(mode="json")
