"""
Tests for the DR registry, rule traceability and the controls registry.
"""

import threading

import pytest

from pintae.domain.fields import DataType, FieldCategory
from pintae.domain.models import Dataset, Direction
from pintae.registry import controls
from pintae.registry.controls import (
    ControlType,
    get_controls_for_dr,
    get_controls_for_rule,
    get_controls_registry,
    get_drs_with_controls,
)
from pintae.registry.dr_registry import (
    get_conditional_fields,
    get_dr_entry,
    get_dr_registry,
    get_mandatory_columns_for_dataset,
    get_mandatory_fields,
    get_registry_fields,
)
from pintae.registry.traceability import (
    build_rule_traceability,
    get_dr_rule_traceability,
    get_drs_with_rules,
    get_drs_without_rules,
    get_rule_traceability,
    get_rules_for_dr,
)


class TestDRRegistry:
    """The 50 customer-facing data requirements."""

    def test_counts(self):
        """50 DRs: 38 mandatory and 12 conditional."""
        assert len(get_dr_registry()) == 50
        assert len(get_mandatory_fields()) == 38
        assert len(get_conditional_fields()) == 12

    def test_ids_are_unique(self):
        """No DR appears twice."""
        ids = [entry.dr_id for entry in get_dr_registry()]
        assert len(ids) == len(set(ids))

    def test_rule_only_terms_are_absent(self):
        """IBT-006 and IBT-007 are not customer DRs."""
        assert get_dr_entry("IBT-006") is None
        assert get_dr_entry("IBT-007") is None

    def test_asp_fields_are_not_ingestible(self):
        """ASP-owned DRs carry no template column."""
        entry = get_dr_entry("IBT-024")
        assert entry.asp_derived
        assert not entry.in_template
        assert not entry.ingestible

    def test_entry_properties(self):
        """Code list references and ingestibility follow the entry data."""
        currency = get_dr_entry("IBT-005")
        assert currency.is_mandatory
        assert currency.ingestible
        assert currency.code_list_reference == "ISO 4217"
        assert get_dr_entry("IBT-031").code_list_reference is None

    def test_registry_fields(self):
        """DRs convert to mapping-layer fields named after their first column."""
        fields = {f.ibt_reference: f for f in get_registry_fields()}
        assert fields["IBT-002"].id == "issue_date"
        assert fields["IBT-002"].data_type == DataType.DATE
        assert fields["IBT-044"].category == FieldCategory.BUYER
        assert fields["IBT-023"].id == "ibt-023"


class TestMandatoryColumns:
    """Required columns per dataset and direction."""

    def test_ar_headers_need_buyer_id(self):
        """AR header files identify the buyer."""
        columns = get_mandatory_columns_for_dataset(Dataset.HEADERS, Direction.AR)
        assert columns[:2] == ["invoice_id", "buyer_id"]
        assert "supplier_id" not in columns
        assert "seller_trn" in columns

    def test_ap_headers_need_supplier_id(self):
        """AP header files identify the supplier instead."""
        columns = get_mandatory_columns_for_dataset("headers", Direction.AP)
        assert "supplier_id" in columns
        assert "buyer_id" not in columns

    def test_ap_party_columns_use_supplier_prefix(self):
        """AP party files use supplier_* names."""
        columns = get_mandatory_columns_for_dataset(Dataset.BUYERS, Direction.AP)
        assert columns[0] == "supplier_id"
        assert all(not column.startswith("buyer_") for column in columns)

    def test_lines(self):
        """Line files need their join keys and mandatory line columns."""
        columns = get_mandatory_columns_for_dataset(Dataset.LINES)
        assert columns[:2] == ["line_id", "invoice_id"]
        assert {"quantity", "unit_price", "vat_amount"} <= set(columns)
        assert "item_name" not in columns


class TestRuleTraceability:
    """Rule to DR links."""

    def test_one_entry_per_pack_rule(self):
        """Every pack rule is traced."""
        entries = get_rule_traceability()
        assert len(entries) == 34
        assert entries[0].rule_id == "UAE-UC1-CHK-001"
        assert entries[0].applies_when == "UC1 Standard Tax Invoice"

    def test_rules_for_dr(self):
        """VAT total is affected by precision, sum and reconciliation rules."""
        ids = [entry.rule_id for entry in get_rules_for_dr("IBT-110")]
        assert ids == ["UAE-UC1-CHK-023", "UAE-UC1-CHK-025", "UAE-UC1-CHK-029"]

    def test_rule_only_terms_are_traced(self):
        """Rules may reference terms outside the registry."""
        assert {"IBT-006", "IBT-007"} <= get_drs_with_rules()

    def test_drs_without_rules_keeps_input_order(self):
        """Uncovered DRs come back in input order."""
        assert get_drs_without_rules(["IBT-154", "IBT-001", "IBT-030"]) == ["IBT-154", "IBT-030"]

    def test_dr_rule_trace(self):
        """A DR is linked to rules by reference term or checked column."""
        trace = get_dr_rule_traceability("IBT-031")
        assert trace.linked_check_ids == ("UAE-UC1-CHK-013",)
        assert trace.business_term == "Seller TRN"
        assert get_dr_rule_traceability("IBT-006") is None

    def test_build_from_custom_rules(self):
        """Traceability can be built for any rule list."""
        assert build_rule_traceability([]) == ()

    def test_concurrent_first_read_builds_once(self, monkeypatch):
        """Concurrent first readers all see the same tuple."""
        from pintae.registry import traceability
        monkeypatch.setattr(traceability, "_trace", None)
        results = []
        threads = [threading.Thread(target=lambda: results.append(get_rule_traceability())) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert all(result is results[0] for result in results)


class TestControlsRegistry:
    """Controls and their derived DR coverage."""

    @pytest.fixture(autouse=True)
    def fresh_registry(self):
        controls._reset_registry_cache()
        yield
        controls._reset_registry_cache()

    def test_fourteen_controls(self):
        """CTRL-001 to CTRL-014, preventive first."""
        registry = get_controls_registry()
        assert [c.control_id for c in registry] == [f"CTRL-{n:03d}" for n in range(1, 15)]
        assert registry[0].control_type is ControlType.PREVENTIVE
        assert registry[-1].control_type is ControlType.DETECTIVE

    def test_registry_is_cached(self):
        """Repeated reads return the same object."""
        assert get_controls_registry() is get_controls_registry()

    def test_dr_coverage_is_derived_from_rules(self):
        """Totals reconciliation covers the DRs its rules affect."""
        control = get_controls_for_rule("UAE-UC1-CHK-021")[0]
        assert control.control_id == "CTRL-009"
        assert control.covered_dr_ids == ("IBT-106", "IBT-109", "IBT-110", "IBT-112", "IBT-117", "IBT-131")

    def test_rule_in_several_controls(self):
        """Transaction type presence is covered by two controls."""
        ids = [c.control_id for c in get_controls_for_rule("UAE-UC1-CHK-004")]
        assert ids == ["CTRL-001", "CTRL-008"]

    def test_controls_for_dr(self):
        """Controls are found through their derived DRs."""
        assert [c.control_id for c in get_controls_for_dr("IBT-039")] == ["CTRL-006"]
        assert get_controls_for_dr("IBT-154") == []

    def test_drs_with_controls(self):
        """Every rule-covered DR is also control-covered."""
        assert get_drs_with_controls() == get_drs_with_rules()
