"""
Tests for CSV ingestion and the bundled samples.
"""

from decimal import Decimal

import pytest

from pintae.domain.models import Dataset, Direction
from pintae.services.ingestion import (
    IngestionError,
    build_context_from_csv,
    parse_csv,
    parse_headers,
    parse_lines,
    parse_parties,
    sample_csv_texts,
    load_sample_dataset,
)


HEADERS_CSV = """invoice_id,invoice_number,issue_date,seller_trn,buyer_id,currency,total_excl_vat,po_number
 INV001 , UAE-2025-0001 ,2025-01-15,100000000000001,B001,AED,"1,000.00",PO-77
INV002,,2025-01-16,100000000000001,B001,AED,abc,
"""


class TestParseCsv:
    """Raw CSV to row dicts."""

    def test_empty_text(self):
        """Blank input has no rows."""
        assert parse_csv("") == []
        assert parse_csv("   \n ") == []

    def test_values_and_columns_are_trimmed(self):
        """Column names and cells are stripped."""
        rows = parse_csv(" a , b \n 1 , x \n")
        assert rows == [{"a": "1", "b": "x"}]

    def test_na_strings_are_kept(self):
        """NA-like strings stay values."""
        assert parse_csv("a,b\nNA,null\n") == [{"a": "NA", "b": "null"}]

    def test_malformed_csv_raises(self):
        """Rows with too many fields are rejected."""
        with pytest.raises(IngestionError):
            parse_csv("a,b\n1,2\n3,4,5,6\n")


class TestParseRecords:
    """Row dicts to typed records."""

    def test_headers(self):
        """Header values are typed, trimmed and blank-to-None."""
        first, second = parse_headers(parse_csv(HEADERS_CSV))
        assert first.invoice_id == "INV001"
        assert first.invoice_number == "UAE-2025-0001"
        assert first.total_excl_vat == Decimal("1000.00")
        assert first.extra == {"po_number": "PO-77"}
        assert first.source_row_number == 2
        assert second.invoice_number == ""
        assert second.total_excl_vat is None
        assert second.label == "INV002"

    def test_ap_headers_mirror_supplier_id(self):
        """AP headers keep supplier_id and use it as the counterparty key."""
        rows = [{"invoice_id": "INV001", "supplier_id": "S001"}]
        header = parse_headers(rows, Direction.AP)[0]
        assert header.supplier_id == "S001"
        assert header.buyer_id == "S001"
        assert header.direction is Direction.AP

    def test_ap_parties_read_supplier_columns(self):
        """supplier_* columns fill the party fields."""
        rows = [{"supplier_id": "S001", "supplier_name": "Acme", "supplier_trn": "100000000000003"}]
        party = parse_parties(rows, Direction.AP)[0]
        assert (party.buyer_id, party.buyer_name, party.buyer_trn) == ("S001", "Acme", "100000000000003")

    def test_header_aliases(self):
        """Alternative column names are accepted."""
        header = parse_headers([{"invoice_id": "INV001", "invoice_type_code": "381", "due_date": "2025-02-01"}])[0]
        assert header.invoice_type == "381"
        assert header.payment_due_date == "2025-02-01"

    def test_lines(self):
        """Line numbers must be whole; amounts become Decimal."""
        rows = [
            {"line_id": "L1", "invoice_id": "INV001", "line_number": "1", "quantity": "2.5"},
            {"line_id": "L2", "invoice_id": "INV001", "line_number": "1.5", "line_net_amount": "10"},
        ]
        first, second = parse_lines(rows)
        assert first.line_number == 1
        assert first.quantity == Decimal("2.5")
        assert second.line_number is None
        assert second.line_total_excl_vat == Decimal("10")


class TestSamples:
    """Bundled sample datasets."""

    def test_sample_file_names(self):
        """AP samples use the suppliers file for parties."""
        texts = sample_csv_texts(Direction.AP, "positive")
        assert set(texts) == set(Dataset)
        assert texts[Dataset.BUYERS].startswith("supplier_id")

    def test_unknown_scenario(self):
        """Only positive and negative samples exist."""
        with pytest.raises(ValueError):
            sample_csv_texts(Direction.AR, "mixed")

    def test_negative_sample_contents(self, ar_negative):
        """The negative sample loads all three datasets."""
        assert ar_negative.counts() == {"buyers": 3, "headers": 3, "lines": 3}
        assert ar_negative.find_buyer("B002").buyer_trn == "INVALIDTRN"
        assert ar_negative.find_header("INV002").payment_due_date is None

    def test_ap_sample_links_suppliers(self):
        """AP headers resolve their supplier through the party index."""
        context = load_sample_dataset(Direction.AP, "negative")
        header = context.find_header("INV001")
        assert context.find_buyer(header.supplier_id).buyer_name == "Acme Corporation LLC"

    def test_build_context_from_csv(self):
        """Missing files give empty datasets."""
        context = build_context_from_csv(headers_text=HEADERS_CSV)
        assert context.counts() == {"buyers": 0, "headers": 2, "lines": 0}
