"""
Tests for the scenario lens.
"""

from decimal import Decimal

import pytest

from pintae.registry.dr_registry import get_dr_registry
from pintae.services.scenarios import (
    ApplicabilityStatus,
    BusinessScenario,
    ConfidenceBand,
    DocumentType,
    ScenarioDimension,
    ScenarioFilters,
    VatTreatment,
    build_scenario_invoices,
    build_scenario_lens,
    classify_invoice,
    compute_distribution,
    compute_scenario_coverage,
    confidence_to_band,
    filter_invoices_by_scenario,
    get_scenario_applicability_for_dr,
)

from conftest import make_buyer, make_context, make_header, make_line


@pytest.fixture
def mixed_context():
    """A local standard invoice and a zero-rated credit note to a Saudi buyer."""
    return make_context(
        buyers=[make_buyer(), make_buyer(buyer_id="B002", buyer_country="SA")],
        headers=[
            make_header(),
            make_header(invoice_id="INV002", invoice_number="CN-1", buyer_id="B002", invoice_type="381",
                        tax_category_code="Z", tax_category_rate=Decimal("0")),
        ],
        lines=[
            make_line(),
            make_line(line_id="L002", invoice_id="INV002", vat_rate=Decimal("0"), tax_category_code="Z"),
        ],
    )


class TestClassifyInvoice:
    """Signals to classification."""

    def test_standard_invoice(self):
        """Tax category signals make a standard-rated invoice."""
        result = classify_invoice(
            {"invoice_type": "380", "seller_country": "AE", "tax_category_code": "S", "tax_category_rate": 5},
            buyer={"buyer_country": "AE"},
        )
        assert result.document_type is DocumentType.STANDARD_INVOICE
        assert result.vat_treatments == (VatTreatment.STANDARD_RATED,)
        assert result.business_scenarios == (BusinessScenario.NONE,)
        assert result.confidence == 20
        assert result.reasons == ("Defaulted to standard invoice type.",)

    def test_credit_note_with_reverse_charge(self):
        """Explicit indicators give a reverse-charge credit note."""
        result = classify_invoice(
            {"invoice_type": "381", "reverse_charge": True, "seller_country": "AE"},
            [{"tax_category_code": "RCM"}],
            {"buyer_country": "AE"},
        )
        assert result.document_type is DocumentType.CREDIT_NOTE
        assert result.vat_treatments == (VatTreatment.REVERSE_CHARGE,)
        assert result.confidence == 55

    def test_export_from_buyer_country(self):
        """A foreign buyer of a UAE seller is an export."""
        result = classify_invoice(
            {"invoice_type": "380", "seller_country": "AE"},
            [{"tax_category_code": "Z"}],
            {"buyer_country": "SA"},
        )
        assert result.vat_treatments == (VatTreatment.EXPORT, VatTreatment.ZERO_RATED)
        assert "Export signal from country context (AE -> SA)." in result.reasons

    def test_country_aliases(self):
        """UAE and ARE are the same country as AE."""
        result = classify_invoice({"seller_country": "UAE"}, buyer={"buyer_country": "ARE"})
        assert VatTreatment.EXPORT not in result.vat_treatments

    def test_no_tax_signals(self):
        """Without tax signals no VAT treatment is inferred."""
        result = classify_invoice({"invoice_type": "380", "seller_country": "AE"}, buyer={"buyer_country": "AE"})
        assert result.vat_treatments == ()
        assert result.business_scenarios == (BusinessScenario.NONE,)
        assert result.confidence is None
        assert result.confidence_band is None

    def test_self_billing_wins(self):
        """Self-billing takes precedence and keeps the credit flavour."""
        result = classify_invoice({"invoice_type": "381", "business_process": "self-billing"})
        assert result.document_type is DocumentType.SELF_BILLING_CREDIT_NOTE
        assert result.reasons[0] == "Self-billing indicator detected."

    def test_out_of_scope_flag(self):
        """An out-of-scope flag overrides the credit note type."""
        result = classify_invoice({"invoice_type": "381", "out_of_scope": "yes"})
        assert result.document_type is DocumentType.OUT_OF_SCOPE
        assert result.vat_treatments == (VatTreatment.OUT_OF_SCOPE,)

    def test_boolean_text_is_read_in_key_order(self):
        """Unrecognised text falls through to the next key; a real boolean decides."""
        assert VatTreatment.REVERSE_CHARGE in classify_invoice(
            {"reverse_charge": "no", "is_reverse_charge": "true"}
        ).vat_treatments
        assert VatTreatment.REVERSE_CHARGE not in classify_invoice(
            {"reverse_charge": False, "is_reverse_charge": True}
        ).vat_treatments

    def test_business_scenario_from_extra_column(self):
        """Indicator columns outside the template are read."""
        context = make_context(headers=[make_header(extra={"is_ecommerce": "Y"})])
        classification = build_scenario_invoices(context)[0].classification
        assert classification.business_scenarios == (BusinessScenario.E_COMMERCE,)
        assert "E-commerce indicator detected." in classification.reasons
        assert classification.confidence == 30


class TestConfidenceBand:

    @pytest.mark.parametrize("score, band", [
        (100, ConfidenceBand.HIGH),
        (75, ConfidenceBand.HIGH),
        (60, ConfidenceBand.MEDIUM),
        (45, ConfidenceBand.MEDIUM),
        (20, ConfidenceBand.LOW),
        (None, None),
    ])
    def test_bands(self, score, band):
        assert confidence_to_band(score) is band


class TestSelectors:
    """Filtering and summaries over classified invoices."""

    def test_build_from_context(self, mixed_context):
        """Each header is classified with its own lines and buyer."""
        invoices = build_scenario_invoices(mixed_context)
        assert [i.invoice_id for i in invoices] == ["INV001", "INV002"]
        assert invoices[1].buyer_country == "SA"
        assert invoices[1].line_count == 1
        assert invoices[1].classification.document_type is DocumentType.CREDIT_NOTE
        assert invoices[1].classification.confidence_band is ConfidenceBand.MEDIUM

    def test_filter_by_document_type(self, mixed_context):
        invoices = build_scenario_invoices(mixed_context)
        filtered = filter_invoices_by_scenario(invoices, ScenarioFilters(document_type=DocumentType.CREDIT_NOTE))
        assert [i.invoice_id for i in filtered] == ["INV002"]

    def test_filter_by_treatment_and_band(self, mixed_context):
        """Every set dimension must match."""
        invoices = build_scenario_invoices(mixed_context)
        export = ScenarioFilters(vat_treatment=VatTreatment.EXPORT, confidence=ConfidenceBand.LOW)
        assert filter_invoices_by_scenario(invoices, export) == []
        assert len(filter_invoices_by_scenario(invoices, ScenarioFilters())) == 2

    def test_coverage(self, mixed_context):
        """Distinct values are counted per dimension."""
        coverage = compute_scenario_coverage(build_scenario_invoices(mixed_context))
        assert coverage.document_types_present == 2
        assert coverage.vat_treatments_present == 3
        assert coverage.business_scenarios_present == 1
        assert coverage.invoices_in_selection == 2

    def test_distribution(self, mixed_context):
        """Multi-valued dimensions count each value."""
        rows = compute_distribution(build_scenario_invoices(mixed_context), ScenarioDimension.VAT_TREATMENTS)
        assert [(r.key, r.count, r.percentage) for r in rows] == [
            ("Standard-rated", 1, 50.0),
            ("Export", 1, 50.0),
            ("Zero-rated", 1, 50.0),
        ]

    def test_distribution_unknowns(self):
        """Invoices without signals land in Unknown buckets."""
        context = make_context(
            headers=[make_header(tax_category_code=None, tax_category_rate=None)],
            lines=[make_line(vat_rate=None, tax_category_code=None)],
        )
        invoices = build_scenario_invoices(context)
        vat = compute_distribution(invoices, ScenarioDimension.VAT_TREATMENTS)
        confidence = compute_distribution(invoices, ScenarioDimension.CONFIDENCE)
        assert [(r.key, r.percentage) for r in vat] == [("Unknown", 100.0)]
        assert [r.key for r in confidence] == ["Unknown"]

    def test_empty_distribution(self):
        assert compute_distribution([], ScenarioDimension.DOCUMENT_TYPE) == []


class TestApplicability:
    """DR applicability under a selected scenario."""

    def test_unmapped_dr(self):
        result = get_scenario_applicability_for_dr("IBT-099")
        assert result.status is ApplicabilityStatus.ALWAYS
        assert result.notes == "No scenario condition mapped for this DR."

    def test_unconditional_dr(self):
        result = get_scenario_applicability_for_dr("IBT-001", ScenarioFilters(document_type=DocumentType.CREDIT_NOTE))
        assert result.status is ApplicabilityStatus.ALWAYS
        assert result.notes == "Invoice number is required in all scenarios."

    def test_conditional_dr(self):
        """A conditioned DR applies when the selection is inside its conditions."""
        assert get_scenario_applicability_for_dr("IBT-115").status is ApplicabilityStatus.CONDITIONAL
        ecommerce = ScenarioFilters(business_scenario=BusinessScenario.E_COMMERCE)
        assert get_scenario_applicability_for_dr("IBT-115", ecommerce).status is ApplicabilityStatus.CONDITIONAL
        plain = ScenarioFilters(business_scenario=BusinessScenario.NONE)
        assert get_scenario_applicability_for_dr("IBT-115", plain).status is ApplicabilityStatus.NOT_APPLICABLE

    def test_unconditioned_dimension_always_matches(self):
        """A VAT treatment filter does not affect a DR conditioned on document type."""
        filters = ScenarioFilters(vat_treatment=VatTreatment.EXEMPT)
        assert get_scenario_applicability_for_dr("IBT-003", filters).status is ApplicabilityStatus.CONDITIONAL
        filters = ScenarioFilters(document_type=DocumentType.OUT_OF_SCOPE)
        assert get_scenario_applicability_for_dr("IBT-003", filters).status is ApplicabilityStatus.NOT_APPLICABLE


class TestScenarioLens:

    def test_lens_over_context(self, mixed_context):
        """The lens filters, summarises and covers every registry DR."""
        lens = build_scenario_lens(mixed_context, ScenarioFilters(document_type=DocumentType.CREDIT_NOTE))
        assert [i.invoice_id for i in lens.invoices] == ["INV002"]
        assert lens.coverage.invoices_in_selection == 1
        assert set(lens.distributions) == set(ScenarioDimension)
        assert len(lens.applicability) == len(get_dr_registry())

        by_dr = {a.dr_id: a.status for a in lens.applicability}
        assert by_dr["IBT-003"] is ApplicabilityStatus.CONDITIONAL
        assert by_dr["IBT-009"] is ApplicabilityStatus.ALWAYS
