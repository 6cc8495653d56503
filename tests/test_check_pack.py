"""
Tests for the UAE PINT-AE UC1 check pack.
"""

import dataclasses
from decimal import Decimal

from pintae.domain.check_pack import (
    CHECK_PACK_BY_ID,
    UAE_UC1_CHECK_PACK,
    enabled_rules,
    run_pint_ae_checks,
)
from pintae.domain.models import Direction

from conftest import make_buyer, make_context, make_header, make_line


def failing_ids(exceptions) -> set[str]:
    return {e.check_id for e in exceptions}


class TestPackContents:
    """Shape of the shipped pack."""

    def test_rule_ids_are_sequential(self):
        """The pack holds UAE-UC1-CHK-001 to 034 in order."""
        assert [r.check_id for r in UAE_UC1_CHECK_PACK] == [f"UAE-UC1-CHK-{n:03d}" for n in range(1, 35)]

    def test_every_rule_names_its_terms(self):
        """Each rule affects at least one data requirement."""
        assert all(r.pint_reference_terms for r in UAE_UC1_CHECK_PACK)
        assert all(r.owner_team for r in UAE_UC1_CHECK_PACK)

    def test_disabled_rules_are_skipped(self):
        """enabled_rules drops rules switched off."""
        pack = [dataclasses.replace(r, enabled=r.check_id != "UAE-UC1-CHK-001") for r in UAE_UC1_CHECK_PACK]
        assert "UAE-UC1-CHK-001" not in {r.check_id for r in enabled_rules(pack)}
        context = make_context(headers=[make_header(invoice_number="")])
        assert "UAE-UC1-CHK-001" not in failing_ids(run_pint_ae_checks(pack, context))


class TestPackOnSamples:
    """The pack against the reference samples."""

    def test_ar_positive_sample_is_clean(self, ar_positive):
        """The AR positive sample raises nothing."""
        assert run_pint_ae_checks(UAE_UC1_CHECK_PACK, ar_positive, Direction.AR) == []

    def test_ap_positive_sample_is_clean(self, ap_positive):
        """The AP positive sample raises nothing."""
        assert run_pint_ae_checks(UAE_UC1_CHECK_PACK, ap_positive, Direction.AP) == []

    def test_clean_invoice_is_clean(self, clean_context):
        """The fixture invoice raises nothing."""
        assert run_pint_ae_checks(UAE_UC1_CHECK_PACK, clean_context) == []

    def test_negative_sample_failures(self, ar_negative):
        """The seeded defects map to their pack rules."""
        exceptions = run_pint_ae_checks(UAE_UC1_CHECK_PACK, ar_negative, Direction.AR)
        assert failing_ids(exceptions) == {
            "UAE-UC1-CHK-009",
            "UAE-UC1-CHK-016",
            "UAE-UC1-CHK-018",
            "UAE-UC1-CHK-019",
            "UAE-UC1-CHK-025",
            "UAE-UC1-CHK-028",
            "UAE-UC1-CHK-029",
        }

    def test_exceptions_grouped_in_pack_order(self, ar_negative):
        """Exceptions come out grouped by rule in pack order."""
        ids = [e.check_id for e in run_pint_ae_checks(UAE_UC1_CHECK_PACK, ar_negative)]
        assert ids == sorted(ids)


class TestIndividualRules:
    """Selected rules in isolation."""

    def run(self, check_id: str, context):
        return run_pint_ae_checks([CHECK_PACK_BY_ID[check_id]], context)

    def test_fx_rate_required_for_foreign_currency(self):
        """Non-AED invoices need a positive FX rate."""
        missing = make_context(headers=[make_header(currency="USD", fx_rate=None, tax_currency="AED")])
        present = make_context(headers=[make_header(currency="USD", fx_rate=Decimal("3.6725"), tax_currency="AED")])
        assert len(self.run("UAE-UC1-CHK-008", missing)) == 1
        assert self.run("UAE-UC1-CHK-008", present) == []

    def test_tax_currency_must_be_aed(self):
        """A foreign invoice without an AED tax currency is flagged."""
        context = make_context(headers=[make_header(currency="USD", fx_rate=Decimal("3.6725"))])
        assert self.run("UAE-UC1-CHK-007", context)[0].expected_value == "AED"

    def test_payment_due_before_issue_date(self):
        """The due date cannot precede the issue date."""
        context = make_context(headers=[make_header(payment_due_date="2025-01-01")])
        assert len(self.run("UAE-UC1-CHK-009", context)) == 1

    def test_spec_id_only_checked_when_present(self):
        """An empty specification identifier is left to the ASP."""
        assert self.run("UAE-UC1-CHK-010", make_context()) == []
        context = make_context(headers=[make_header(spec_id="urn:other")])
        assert len(self.run("UAE-UC1-CHK-010", context)) == 1

    def test_buyer_rules_report_the_buyer(self):
        """Buyer rules read the buyer record."""
        context = make_context(buyers=[make_buyer(buyer_electronic_address="")])
        exception = self.run("UAE-UC1-CHK-019", context)[0]
        assert exception.message == 'Buyer B001: Missing buyer field "buyer_electronic_address"'
        assert exception.owner_team == "Buyer-side"

    def test_line_vat_expected_value(self):
        """The expected value shows the recalculated VAT."""
        context = make_context(lines=[make_line(vat_amount=Decimal("60.00"))])
        exception = self.run("UAE-UC1-CHK-028", context)[0]
        assert exception.expected_value == "1000.00 x (5/100) = 50.00"
        assert exception.pint_reference_terms == ("BTUAE-08", "IBT-152", "IBT-131")

    def test_precision(self):
        """Amounts beyond two decimals are flagged."""
        context = make_context(headers=[make_header(
            total_excl_vat=Decimal("1000.005"), total_incl_vat=Decimal("1050.005"),
        )])
        assert [e.check_id for e in run_pint_ae_checks(UAE_UC1_CHECK_PACK, context)
                if e.rule_type == "Format"] == ["UAE-UC1-CHK-022", "UAE-UC1-CHK-024"]
