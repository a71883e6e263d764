from prometheus_client import REGISTRY, generate_latest

from taxledger import metrics


def test_metric_helpers_register_with_prometheus():
    metrics.vat_summary_computed(annual=False)
    metrics.vat_rows_skipped(2)
    metrics.wht_entry_created()
    metrics.wht_entries_removed(1)
    metrics.identity_error()
    metrics.compliance_rejection("CMP500")
    metrics.income_tax_computed("pit")
    metrics.remittance_recorded("vat", late=True)
    with metrics.recompute_timer("settled"):
        pass

    text = generate_latest(REGISTRY).decode()
    assert 'tax_vat_summaries_computed_total{period_type="month"}' in text
    assert "tax_vat_rows_skipped_total" in text
    assert 'tax_wht_ledger_entries_total{action="created"}' in text
    assert 'tax_wht_ledger_entries_total{action="removed"}' in text
    assert "tax_identity_errors_total" in text
    assert 'tax_compliance_rejections_total{code="CMP500"}' in text
    assert 'tax_income_tax_computations_total{method="pit"}' in text
    assert 'tax_remittances_recorded_total{tax="vat",timing="late"}' in text
    assert 'tax_recompute_duration_seconds_bucket{hook="settled",le="0.005"}' in text


def test_zero_counts_are_ignored():
    before = REGISTRY.get_sample_value("tax_vat_rows_skipped_total") or 0.0
    metrics.vat_rows_skipped(0)
    assert (REGISTRY.get_sample_value("tax_vat_rows_skipped_total") or 0.0) == before
