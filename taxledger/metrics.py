"""Metrics facade.

Service code should ONLY call the semantic helpers here so we can change
backend freely.

Metrics:
- tax_vat_summaries_computed_total     VAT period summaries rebuilt
- tax_vat_rows_skipped_total           Rows excluded from a VAT summary as invalid
- tax_wht_ledger_entries_total         Withholding credit entries written / removed
- tax_identity_errors_total            Tax effects refused for missing identity
- tax_compliance_rejections_total      Explicit assertions rejected by classification
- tax_income_tax_computations_total    Final income tax liabilities computed
- tax_remittances_recorded_total       Remittances recorded, by tax and timeliness
- tax_recompute_duration_seconds       Coordinator rebuild latency
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Histogram

logger = logging.getLogger("metrics")

_VAT_SUMMARIES = Counter(
    "tax_vat_summaries_computed_total", "VAT period summaries rebuilt", ["period_type"]
)
_VAT_ROWS_SKIPPED = Counter("tax_vat_rows_skipped_total", "Rows excluded from a VAT summary as invalid")
_WHT_LEDGER = Counter("tax_wht_ledger_entries_total", "Withholding credit ledger writes", ["action"])
_IDENTITY_ERRORS = Counter("tax_identity_errors_total", "Tax effects refused for missing identity")
_COMPLIANCE_REJECTIONS = Counter(
    "tax_compliance_rejections_total", "Explicit tax assertions rejected by classification", ["code"]
)
_INCOME_TAX = Counter(
    "tax_income_tax_computations_total", "Final income tax liabilities computed", ["method"]
)
_REMITTANCES = Counter(
    "tax_remittances_recorded_total", "Remittances recorded", ["tax", "timing"]
)
_RECOMPUTE_LATENCY = Histogram(
    "tax_recompute_duration_seconds",
    "Latency of coordinator rebuilds",
    ["hook"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


def vat_summary_computed(annual: bool = False) -> None:
    _VAT_SUMMARIES.labels(period_type="year" if annual else "month").inc()


def vat_rows_skipped(count: int) -> None:
    if count > 0:
        _VAT_ROWS_SKIPPED.inc(count)


def wht_entry_created() -> None:
    _WHT_LEDGER.labels(action="created").inc()


def wht_entries_removed(count: int) -> None:
    if count > 0:
        _WHT_LEDGER.labels(action="removed").inc(count)


def identity_error() -> None:
    _IDENTITY_ERRORS.inc()


def compliance_rejection(code: str) -> None:
    _COMPLIANCE_REJECTIONS.labels(code=code).inc()


def income_tax_computed(method: str) -> None:
    _INCOME_TAX.labels(method=method).inc()


def remittance_recorded(tax: str, late: bool = False) -> None:
    _REMITTANCES.labels(tax=tax, timing="late" if late else "on_time").inc()


@contextmanager
def recompute_timer(hook: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        _RECOMPUTE_LATENCY.labels(hook=hook).observe(elapsed)
        logger.debug("observe tax_recompute_duration_seconds{hook=%s}=%.4f", hook, elapsed)
