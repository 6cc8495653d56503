"""
Domain models for PINT-AE invoice compliance.

These models represent the records a caller loads for a run (buyers,
invoice headers, invoice lines), the indexed view the rule engine works on,
and the exception records the engine produces.

Design Decisions:
- Frozen dataclasses for immutable, typed records; a run never mutates input
- Decimal for all monetary values to avoid floating-point errors
- Entities reference each other by key (buyer_id, invoice_id); lookups go
  through DataContext and return None for dangling keys instead of failing
- Unmodelled CSV columns are kept in `extra` so custom checks can reach them
- ComplianceException is a value object named to avoid shadowing the
  builtin Exception
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any


class Direction(str, Enum):
    """Transaction direction: invoices we issue (AR) or receive (AP)."""
    AR = "AR"
    AP = "AP"


DEFAULT_DIRECTION = Direction.AR


class Severity(str, Enum):
    """Exception severity, ordered from most to least urgent."""
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Dataset(str, Enum):
    """The three record sets that make up a dataset."""
    BUYERS = "buyers"
    HEADERS = "headers"
    LINES = "lines"


# Resolution targets per severity, used for exception triage
SLA_HOURS_BY_SEVERITY: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 24,
    Severity.MEDIUM: 72,
    Severity.LOW: 168,
}


class _Record:
    """Field access shared by all record types."""

    extra: Mapping[str, str]

    def get(self, name: str, default: Any = None) -> Any:
        """Return a modelled field or an extra column by name."""
        if name != "extra" and name in self.__dataclass_fields__:  # type: ignore[attr-defined]
            return getattr(self, name)
        return self.extra.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        """Flatten the record; modelled fields win over extra columns."""
        values: dict[str, Any] = dict(self.extra)
        for f in fields(self):  # type: ignore[arg-type]
            if f.name != "extra":
                values[f.name] = getattr(self, f.name)
        return values


@dataclass(frozen=True)
class Buyer(_Record):
    """
    Counterparty identity record.

    In AP datasets the same shape carries supplier data; the ingestion
    layer maps supplier_* columns onto these fields.
    """
    buyer_id: str
    buyer_name: str = ""
    buyer_trn: str | None = None
    buyer_address: str | None = None
    buyer_country: str | None = None
    buyer_city: str | None = None
    buyer_postcode: str | None = None
    buyer_subdivision: str | None = None
    buyer_electronic_address: str | None = None
    source_row_number: int | None = None
    extra: Mapping[str, str] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class InvoiceHeader(_Record):
    """
    One invoice, keyed by invoice_id.

    buyer_id is a weak reference into the parties file. For AP invoices
    supplier_id holds the raw supplier key and is mirrored into buyer_id.
    """
    invoice_id: str
    invoice_number: str = ""
    issue_date: str = ""
    seller_trn: str = ""
    buyer_id: str = ""
    currency: str = ""
    direction: Direction = DEFAULT_DIRECTION
    supplier_id: str | None = None
    buyer_trn: str | None = None
    invoice_type: str | None = None
    total_excl_vat: Decimal | None = None
    vat_total: Decimal | None = None
    total_incl_vat: Decimal | None = None
    seller_name: str | None = None
    seller_address: str | None = None
    seller_city: str | None = None
    seller_country: str | None = None
    seller_subdivision: str | None = None
    seller_electronic_address: str | None = None
    seller_legal_reg_id: str | None = None
    seller_legal_reg_id_type: str | None = None
    transaction_type_code: str | None = None
    payment_due_date: str | None = None
    payment_means_code: str | None = None
    fx_rate: Decimal | None = None
    amount_due: Decimal | None = None
    tax_category_code: str | None = None
    tax_category_rate: Decimal | None = None
    note: str | None = None
    supply_date: str | None = None
    tax_currency: str | None = None
    document_level_allowance_total: Decimal | None = None
    document_level_charge_total: Decimal | None = None
    rounding_amount: Decimal | None = None
    spec_id: str | None = None
    business_process: str | None = None
    source_row_number: int | None = None
    extra: Mapping[str, str] = field(default_factory=dict, compare=False, repr=False)

    @property
    def label(self) -> str:
        """Human-facing reference: invoice number, else invoice id."""
        return self.invoice_number or self.invoice_id


@dataclass(frozen=True)
class InvoiceLine(_Record):
    """
    A single invoice line.

    line_number orders lines within an invoice and is not globally unique.
    """
    line_id: str
    invoice_id: str
    line_number: int | None = None
    description: str | None = None
    item_name: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    line_discount: Decimal | None = None
    line_total_excl_vat: Decimal | None = None
    vat_rate: Decimal | None = None
    vat_amount: Decimal | None = None
    unit_of_measure: str | None = None
    tax_category_code: str | None = None
    line_allowance_amount: Decimal | None = None
    line_charge_amount: Decimal | None = None
    source_row_number: int | None = None
    extra: Mapping[str, str] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class DataContext:
    """
    Read-only indexed view over one loaded dataset.

    Records are stored once in source order; the maps index them by key.
    Every lookup returns None (or an empty tuple) for unknown keys so that
    dangling references surface as exceptions rather than faults.
    """
    buyers: tuple[Buyer, ...]
    headers: tuple[InvoiceHeader, ...]
    lines: tuple[InvoiceLine, ...]
    buyer_map: Mapping[str, Buyer]
    header_map: Mapping[str, InvoiceHeader]
    lines_by_invoice: Mapping[str, tuple[InvoiceLine, ...]]

    def find_buyer(self, buyer_id: str | None) -> Buyer | None:
        if not buyer_id:
            return None
        return self.buyer_map.get(buyer_id)

    def find_header(self, invoice_id: str | None) -> InvoiceHeader | None:
        if not invoice_id:
            return None
        return self.header_map.get(invoice_id)

    def lines_for(self, invoice_id: str | None) -> tuple[InvoiceLine, ...]:
        if not invoice_id:
            return ()
        return self.lines_by_invoice.get(invoice_id, ())

    def records(self, dataset: Dataset) -> tuple[Any, ...]:
        """Return the record sequence for a dataset."""
        if dataset == Dataset.BUYERS:
            return self.buyers
        if dataset == Dataset.LINES:
            return self.lines
        return self.headers

    def counts(self) -> dict[str, int]:
        """Row counts per dataset."""
        return {
            Dataset.BUYERS.value: len(self.buyers),
            Dataset.HEADERS.value: len(self.headers),
            Dataset.LINES.value: len(self.lines),
        }


def build_data_context(
    buyers: Iterable[Buyer] = (),
    headers: Iterable[InvoiceHeader] = (),
    lines: Iterable[InvoiceLine] = (),
) -> DataContext:
    """
    Build the indexed context for a run.

    On duplicate keys the first record keeps the index slot; the duplicate
    stays in the ordered sequence so duplicate checks still see it.

    Args:
        buyers: Party records (buyers for AR, suppliers for AP)
        headers: Invoice headers
        lines: Invoice lines, in source row order

    Returns:
        DataContext with buyer_map, header_map and lines_by_invoice
    """
    buyer_seq = tuple(buyers)
    header_seq = tuple(headers)
    line_seq = tuple(lines)

    buyer_map: dict[str, Buyer] = {}
    for buyer in buyer_seq:
        buyer_map.setdefault(buyer.buyer_id, buyer)

    header_map: dict[str, InvoiceHeader] = {}
    for header in header_seq:
        header_map.setdefault(header.invoice_id, header)

    grouped: dict[str, list[InvoiceLine]] = {}
    for line in line_seq:
        grouped.setdefault(line.invoice_id, []).append(line)

    return DataContext(
        buyers=buyer_seq,
        headers=header_seq,
        lines=line_seq,
        buyer_map=MappingProxyType(buyer_map),
        header_map=MappingProxyType(header_map),
        lines_by_invoice=MappingProxyType({k: tuple(v) for k, v in grouped.items()}),
    )


EMPTY_CONTEXT = build_data_context()


@dataclass(frozen=True)
class OrganizationProfile:
    """The caller's own legal entities, identified by TRN."""
    our_entity_trns: tuple[str, ...] = ()
    entity_ids: tuple[str, ...] = ()

    @property
    def allowed_trns(self) -> frozenset[str]:
        """Trimmed, non-empty TRNs."""
        return frozenset(t.strip() for t in self.our_entity_trns if t and t.strip())


@dataclass(frozen=True)
class ComplianceException:
    """
    A single rule violation.

    Pure value: two exceptions with the same content are the same
    exception. row_number is the 1-based position of the offending record
    within its dataset.
    """
    check_id: str
    check_name: str
    severity: Severity
    message: str
    field_name: str | None = None
    invoice_id: str | None = None
    invoice_number: str | None = None
    seller_trn: str | None = None
    buyer_id: str | None = None
    line_id: str | None = None
    line_number: int | None = None
    observed_value: str | None = None
    expected_value: str | None = None
    direction: Direction | None = None
    dataset: Dataset | None = None
    row_number: int | None = None
    rule_id: str | None = None
    rule_type: str | None = None
    pint_reference_terms: tuple[str, ...] = ()
    suggested_fix: str | None = None
    owner_team: str | None = None

    @property
    def sla_target_hours(self) -> int:
        return SLA_HOURS_BY_SEVERITY[self.severity]


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one rule over one dataset."""
    check_id: str
    check_name: str
    severity: Severity
    exceptions: tuple[ComplianceException, ...] = ()
    records_checked: int = 0

    @property
    def failed(self) -> int:
        """Number of distinct records with at least one exception."""
        return len({(e.direction, e.dataset, e.row_number) for e in self.exceptions})

    @property
    def passed(self) -> int:
        return max(self.records_checked - self.failed, 0)
