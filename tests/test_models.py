"""
Tests for the record types and the indexed DataContext.
"""

from decimal import Decimal

from pintae.domain.models import (
    EMPTY_CONTEXT,
    CheckResult,
    ComplianceException,
    Dataset,
    Direction,
    OrganizationProfile,
    Severity,
    build_data_context,
)

from conftest import make_buyer, make_header, make_line


class TestRecords:
    """Field access on records."""

    def test_get_reads_modelled_field(self):
        """get() returns a modelled attribute."""
        header = make_header(currency="USD")
        assert header.get("currency") == "USD"

    def test_get_falls_back_to_extra(self):
        """Unmodelled columns are reachable through get()."""
        header = make_header(extra={"po_number": "PO-77"})
        assert header.get("po_number") == "PO-77"
        assert header.get("unknown", "x") == "x"

    def test_as_dict_prefers_modelled_fields(self):
        """A modelled field wins over an extra column of the same name."""
        line = make_line(extra={"quantity": "999", "cost_center": "CC1"})
        values = line.as_dict()
        assert values["quantity"] == Decimal("10")
        assert values["cost_center"] == "CC1"
        assert "extra" not in values

    def test_label_falls_back_to_invoice_id(self):
        """An invoice without a number is labelled by its id."""
        assert make_header(invoice_number="").label == "INV001"


class TestDataContext:
    """Indexing and lookups."""

    def test_lookups_return_none_for_unknown_keys(self, clean_context):
        """Dangling keys resolve to None or an empty tuple."""
        assert clean_context.find_buyer("nope") is None
        assert clean_context.find_buyer(None) is None
        assert clean_context.find_header("") is None
        assert clean_context.lines_for("nope") == ()

    def test_first_duplicate_keeps_index_slot(self):
        """On duplicate keys the first record is indexed and both are kept in order."""
        first = make_header(invoice_number="A")
        second = make_header(invoice_number="B")
        context = build_data_context([], [first, second], [])
        assert context.find_header("INV001").invoice_number == "A"
        assert len(context.headers) == 2

    def test_lines_grouped_by_invoice_in_row_order(self):
        """lines_for returns an invoice's lines in source order."""
        lines = [
            make_line(line_id="L1", invoice_id="INV001"),
            make_line(line_id="L2", invoice_id="INV002"),
            make_line(line_id="L3", invoice_id="INV001"),
        ]
        context = build_data_context([make_buyer()], [make_header()], lines)
        assert [line.line_id for line in context.lines_for("INV001")] == ["L1", "L3"]

    def test_counts(self, clean_context):
        """counts() reports rows per dataset."""
        assert clean_context.counts() == {"buyers": 1, "headers": 1, "lines": 1}
        assert EMPTY_CONTEXT.counts() == {"buyers": 0, "headers": 0, "lines": 0}

    def test_records_by_dataset(self, clean_context):
        """records() selects the sequence for a dataset."""
        assert clean_context.records(Dataset.BUYERS) == clean_context.buyers
        assert clean_context.records(Dataset.LINES) == clean_context.lines


class TestExceptionsAndResults:
    """Exception values and check result counts."""

    def _exception(self, row: int, direction: Direction = Direction.AR) -> ComplianceException:
        return ComplianceException(
            check_id="x",
            check_name="X",
            severity=Severity.HIGH,
            message="m",
            direction=direction,
            dataset=Dataset.HEADERS,
            row_number=row,
        )

    def test_sla_hours_follow_severity(self):
        """Each severity maps to a resolution target."""
        assert self._exception(1).sla_target_hours == 24

    def test_failed_counts_distinct_records(self):
        """Two exceptions on one record count as one failure."""
        result = CheckResult("x", "X", Severity.HIGH, (self._exception(1), self._exception(1), self._exception(2)), 5)
        assert result.failed == 2
        assert result.passed == 3

    def test_failed_keeps_directions_apart(self):
        """The same row number in AR and AP is two failures."""
        result = CheckResult(
            "x", "X", Severity.HIGH,
            (self._exception(1, Direction.AR), self._exception(1, Direction.AP)), 6,
        )
        assert result.failed == 2

    def test_allowed_trns_are_trimmed(self):
        """Blank TRNs are dropped from the profile."""
        profile = OrganizationProfile((" 100000000000001 ", "", "  "))
        assert profile.allowed_trns == frozenset({"100000000000001"})
