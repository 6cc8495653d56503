"""
Tests for mapping coverage, sample validation and column profiling.
"""

import pandas as pd
import pytest

from pintae.domain.fields import PINT_AE_UC1_FIELDS, UC1_FIELDS_BY_ID, FieldMapping
from pintae.domain.models import Dataset, Direction
from pintae.registry.dr_registry import get_dr_entry, get_mandatory_fields
from pintae.services.coverage import (
    ValidationStatus,
    analyze_columns,
    analyze_coverage,
    analyze_registry_coverage,
    compute_column_population,
    compute_dataset_populations,
    compute_registry_coverage,
    get_column_population_pct,
    get_coverage_stats,
    get_registry_coverage_stats,
    suggest_mappings,
    validate_mapped_data,
)


def mapping(field_id: str, *samples: str, column: str | None = None) -> FieldMapping:
    return FieldMapping(column or field_id.upper(), UC1_FIELDS_BY_ID[field_id], sample_values=samples)


class TestLegacyCoverage:
    """Coverage over the 32 legacy fields."""

    def test_all_mandatory_mapped(self):
        """Mapping every mandatory field makes the set ready."""
        mappings = [mapping(f.id) for f in PINT_AE_UC1_FIELDS if f.is_mandatory]
        analysis = analyze_coverage(mappings)
        stats = get_coverage_stats(analysis)
        assert analysis.mandatory_coverage == 100.0
        assert stats.is_ready_for_validation
        assert stats.mandatory_total == 25
        assert stats.overall_total == 32

    def test_duplicates_count_towards_total(self):
        """total_coverage counts mappings, not distinct targets."""
        analysis = analyze_coverage([mapping("currency"), mapping("currency", column="CCY")])
        assert len(analysis.mapped_mandatory) == 1
        assert analysis.total_coverage == pytest.approx(2 / 32 * 100)

    def test_nothing_mapped(self):
        """An empty mapping set is not ready."""
        stats = get_coverage_stats(analyze_coverage([]))
        assert stats.mandatory_mapped == 0
        assert not stats.is_ready_for_validation


class TestRegistryCoverage:
    """Coverage over the 50-DR registry."""

    def test_all_mandatory_mapped(self):
        """Every mandatory DR mapped is ready for activation."""
        result = compute_registry_coverage(f.dr_id for f in get_mandatory_fields())
        assert result.mandatory_coverage_pct == 100.0
        assert result.overall_coverage_pct == pytest.approx(38 / 50 * 100)
        assert result.is_ready_for_activation

    def test_unknown_ids_ignored(self):
        """Ids outside the registry do not count."""
        result = compute_registry_coverage(["IBT-006", "IBT-007", "IBT-001"])
        stats = get_registry_coverage_stats(result)
        assert stats.overall_mapped == 1
        assert stats.conditional_total == 12
        assert not stats.is_ready_for_activation
        assert stats.registry_version == "2025-Q2"

    def test_keyed_on_dr_id(self):
        """Registry mode reads each target's DR id."""
        target = get_dr_entry("IBT-048").to_registry_field()
        result = analyze_registry_coverage([FieldMapping("CustTRN", target)])
        assert [f.dr_id for f in result.mapped_conditional] == ["IBT-048"]


class TestValidateMappedData:
    """Structural checks on sample values."""

    def test_clean_column_passes(self):
        """A column with no issue gets one pass row."""
        results = validate_mapped_data([mapping("currency", "AED", "USD")])
        assert [(r.status, r.message) for r in results] == [(ValidationStatus.PASS, "Validation passed")]

    def test_several_issues_for_one_column(self):
        """Empty mandatory values and format errors are separate rows."""
        results = validate_mapped_data([mapping("seller_trn", "100000000000001", "", "123")])
        assert [r.status for r in results] == [ValidationStatus.WARNING, ValidationStatus.ERROR]
        assert results[0].sample_issues[0].row == 2
        assert results[1].sample_issues[0].row == 3
        assert results[1].sample_issues[0].value == "123"

    def test_numbers_and_dates(self):
        """Numbers may carry separators; unusual dates are warnings."""
        results = validate_mapped_data([
            mapping("total_excl_vat", "1,000.00", "abc"),
            mapping("payment_due_date", "2025-01-15", "Jan 15"),
        ])
        assert [(r.column, r.status) for r in results] == [
            ("TOTAL_EXCL_VAT", ValidationStatus.ERROR),
            ("PAYMENT_DUE_DATE", ValidationStatus.WARNING),
        ]

    def test_allowed_values(self):
        """Values outside the allowed list are errors."""
        results = validate_mapped_data([mapping("invoice_type", "380", "999")])
        assert results[0].status is ValidationStatus.ERROR
        assert results[0].sample_issues[0].issue == "Not in allowed values"

    def test_no_pass_row_for_column_with_earlier_issue(self):
        """A column that already has a row gets no pass row."""
        results = validate_mapped_data([
            mapping("seller_trn", "bad", column="TRN"),
            mapping("buyer_trn", "100000000000003", column="TRN"),
        ])
        assert [r.status for r in results] == [ValidationStatus.ERROR]


class TestAnalyzeColumns:
    """Uploaded file structure."""

    def test_ap_headers_require_supplier_id(self):
        """An AP header file without supplier_id is missing it; AR is not."""
        columns = ["invoice_id", "buyer_id", "invoice_number", "issue_date", "seller_trn", "currency"]
        ap = analyze_columns(columns, Dataset.HEADERS, Direction.AP)
        ar = analyze_columns(columns, Dataset.HEADERS, Direction.AR)
        assert "supplier_id" in ap.required_missing
        assert "supplier_id" not in ar.required_missing
        assert "buyer_id" not in ar.required_missing

    def test_rows_give_pk_and_null_warnings(self):
        """Unique keys are inferred and sparse required columns are flagged."""
        rows = [
            {"buyer_id": "B1", "buyer_name": "Acme", "buyer_country": "AE"},
            {"buyer_id": "B2", "buyer_name": "", "buyer_country": "AE"},
        ]
        analysis = analyze_columns(rows, "buyers")
        assert analysis.row_count == 2
        assert analysis.inferred_pk == "buyer_id"
        assert [(w.column, w.null_rate) for w in analysis.null_warnings] == [("buyer_name", 0.5)]
        assert analysis.detected_direction is Direction.AR

    def test_dataframe_input(self):
        """A DataFrame is analysed like row dicts."""
        frame = pd.DataFrame({"line_id": ["L1", "L1"], "invoice_id": ["INV1", "INV1"]})
        analysis = analyze_columns(frame, Dataset.LINES)
        assert analysis.inferred_pk is None
        assert "quantity" in analysis.required_missing


class TestPopulation:
    """Column population rates."""

    def test_population(self):
        """Blank and missing values are unpopulated."""
        rows = [{"a": "x", "b": ""}, {"a": " ", "b": "y"}]
        result = compute_column_population(rows, ["a", "b", "c"])
        assert [(p.column, p.populated_count, p.population_pct) for p in result] == [
            ("a", 1, 50.0), ("b", 1, 50.0), ("c", 0, 0.0),
        ]

    def test_empty_rows_are_fully_populated(self):
        """No rows reports 100%."""
        assert compute_column_population([], ["a"])[0].population_pct == 100.0

    def test_dataset_populations(self):
        """Only non-empty datasets are profiled."""
        populations = compute_dataset_populations(headers=[{"currency": "AED"}], lines=[])
        assert [p.dataset for p in populations] == [Dataset.HEADERS]
        assert get_column_population_pct(populations, "headers", "currency") == 100.0
        assert get_column_population_pct(populations, Dataset.HEADERS, "missing") is None
        assert get_column_population_pct(populations, Dataset.LINES, "quantity") is None


class TestSuggestMappings:
    """Exact-name mapping suggestions."""

    def test_synonyms_and_case(self):
        """Columns match ids, names and synonyms ignoring case and separators."""
        columns = ["Invoice No", "inv_date", "Customer_Name", "qty", "unknown", "invoice_number"]
        suggestions = suggest_mappings(columns)
        assert [(s.erp_column, s.target_field.id) for s in suggestions] == [
            ("Invoice No", "invoice_number"),
            ("inv_date", "issue_date"),
            ("Customer_Name", "buyer_name"),
            ("qty", "line_quantity"),
        ]
        assert all(s.is_confirmed and s.confidence == 0.95 for s in suggestions)

    def test_alias_columns(self):
        """Template column names match their legacy field ids."""
        suggestions = suggest_mappings(["seller_electronic_address"])
        assert suggestions[0].target_field.id == "seller_endpoint"

    def test_sample_values(self):
        """Sample values come from the first rows."""
        rows = [{"currency": f"C{i}"} for i in range(8)]
        suggestions = suggest_mappings(["currency"], sample_rows=rows)
        assert suggestions[0].sample_values == ("C0", "C1", "C2", "C3", "C4")
