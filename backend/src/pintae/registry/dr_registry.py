"""
PINT-AE Data Requirement (DR) registry.

The 50 customer-facing DRs of the 2025-Q2 UAE specification, each tied to
the dataset and template columns that carry it.

Design Decisions:
- The registry is static data built once behind an lru_cache; callers
  receive an immutable tuple
- Mandatory means cardinality 1..n AND a "Mandatory" flag for the default
  use case; everything else is conditional
- DRs owned by the ASP (access point) have no template column and are
  never ingestible
- IBT-006 and IBT-007 are referenced by rules but are not customer DRs,
  so they are intentionally absent
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

from pintae.domain.conformance import (
    COUNTRY_PATTERN,
    CURRENCY_PATTERN,
    DATE_PATTERN,
    TRANSACTION_TYPE_PATTERN,
    TRN_PATTERN,
)
from pintae.domain.fields import DataType, FieldCategory, RegistryField
from pintae.domain.models import DEFAULT_DIRECTION, Dataset, Direction

logger = logging.getLogger(__name__)

MANDATORY = "Mandatory"
CONDITIONAL = "Conditional"

CLIENT_ERP = "Client ERP"
ASP = "ASP"
DERIVED = "Derived (ASP calculation from client data)"


@dataclass(frozen=True)
class DRField:
    """One regulatory Data Requirement and where the templates carry it."""
    dr_id: str
    business_term: str
    category: str
    mandatory_flag: str
    cardinality: str
    data_type: str
    format_pattern: str
    dataset: Dataset | None
    columns: tuple[str, ...]
    data_responsibility: str = CLIENT_ERP
    vat_law_status: str = "Existing"
    ubl_path: str = ""
    validation_pattern: str | None = None

    @property
    def is_mandatory(self) -> bool:
        return self.cardinality.startswith("1") and "mandatory" in self.mandatory_flag.lower()

    @property
    def asp_derived(self) -> bool:
        return self.dr_id in _ASP_DERIVED_IDS or ASP in self.data_responsibility

    @property
    def in_template(self) -> bool:
        return bool(self.columns)

    @property
    def ingestible(self) -> bool:
        """True when every template column is one the parser reads."""
        if self.dataset is None or not self.columns:
            return False
        known = PARSER_KNOWN_COLUMNS[self.dataset]
        return all(column in known for column in self.columns)

    @property
    def code_list_reference(self) -> str | None:
        fp = self.format_pattern.lower()
        for needle, reference in _CODE_LIST_HINTS:
            if needle in fp:
                return reference
        return None

    def to_registry_field(self) -> RegistryField:
        """Expose the DR in the shape the mapping layer works with."""
        return RegistryField(
            id=self.columns[0] if self.columns else self.dr_id.lower(),
            name=self.business_term,
            ibt_reference=self.dr_id,
            is_mandatory=self.is_mandatory,
            data_type=_DATA_TYPES.get(self.data_type, DataType.STRING),
            description=self.format_pattern,
            category=_CATEGORIES.get(self.category, FieldCategory.HEADER),
            format=self.validation_pattern,
        )


_ASP_DERIVED_IDS = frozenset({
    "IBT-023", "IBT-024", "IBT-031-1", "IBT-034-1", "IBT-048-1", "IBT-049-1", "IBT-149",
})

# (lowercase needle in format_pattern, code list reference); first hit wins
_CODE_LIST_HINTS: tuple[tuple[str, str], ...] = (
    ("iso 4217", "ISO 4217"),
    ("iso 3166", "ISO 3166-1"),
    ("iso 8601", "ISO 8601"),
    ("untdid 1001", "UN/CEFACT 1001"),
    ("untdid 4461", "UNTDID 4461"),
    ("unece", "UN/ECE Rec 20"),
    ("cef eas", "CEF EAS"),
    ("s, z, e, o", "PINT-AE Tax Category"),
    ("tl, eid, pas, cd", "BTUAE-15 ID Types"),
    ("ae-az", "UAE Emirates"),
)

_DATA_TYPES: dict[str, DataType] = {
    "Amount": DataType.NUMBER,
    "Quantity": DataType.NUMBER,
    "Percentage": DataType.NUMBER,
    "Unit Price Amount": DataType.NUMBER,
    "Date": DataType.DATE,
}

_CATEGORIES: dict[str, FieldCategory] = {
    "Invoice": FieldCategory.HEADER,
    "Seller": FieldCategory.SELLER,
    "Buyer": FieldCategory.BUYER,
    "Line": FieldCategory.LINE,
    "Totals": FieldCategory.TOTALS,
    "Tax": FieldCategory.TAX,
}


# =============================================================================
# Parser columns
# =============================================================================

# Columns the ingestion layer reads; anything else is template-only
PARSER_KNOWN_COLUMNS: dict[Dataset, frozenset[str]] = {
    Dataset.BUYERS: frozenset({
        "buyer_id", "buyer_name", "buyer_trn", "buyer_address", "buyer_country",
        "buyer_city", "buyer_postcode", "buyer_subdivision", "buyer_electronic_address",
    }),
    Dataset.HEADERS: frozenset({
        "invoice_id", "invoice_number", "issue_date", "seller_trn", "buyer_id",
        "currency", "invoice_type", "total_excl_vat", "vat_total", "total_incl_vat",
        "seller_name", "seller_address", "seller_city", "seller_country",
        "seller_subdivision", "seller_electronic_address", "seller_legal_reg_id",
        "seller_legal_reg_id_type", "transaction_type_code", "payment_due_date",
        "payment_means_code", "fx_rate", "amount_due", "tax_category_code",
        "tax_category_rate", "note", "supply_date", "tax_currency",
        "document_level_allowance_total", "document_level_charge_total",
        "rounding_amount", "spec_id", "business_process", "supplier_id",
    }),
    Dataset.LINES: frozenset({
        "line_id", "invoice_id", "line_number", "description", "quantity",
        "unit_price", "line_discount", "line_total_excl_vat", "vat_rate", "vat_amount",
        "unit_of_measure", "tax_category_code", "item_name",
        "line_allowance_amount", "line_charge_amount",
    }),
}

JOIN_KEYS: dict[Dataset, tuple[str, ...]] = {
    Dataset.BUYERS: ("buyer_id",),
    Dataset.HEADERS: ("invoice_id", "buyer_id"),
    Dataset.LINES: ("line_id", "invoice_id"),
}


# =============================================================================
# Registry definition
# =============================================================================

def _dr(
    dr_id: str,
    term: str,
    category: str,
    mandatory: bool,
    data_type: str,
    format_pattern: str,
    dataset: Dataset | None,
    columns: tuple[str, ...],
    ubl: str,
    responsibility: str = CLIENT_ERP,
    status: str = "Existing",
    pattern: str | None = None,
) -> DRField:
    return DRField(
        dr_id=dr_id,
        business_term=term,
        category=category,
        mandatory_flag=MANDATORY if mandatory else CONDITIONAL,
        cardinality="1..1" if mandatory else "0..1",
        data_type=data_type,
        format_pattern=format_pattern,
        dataset=dataset,
        columns=columns,
        data_responsibility=responsibility,
        vat_law_status=status,
        ubl_path=ubl,
        validation_pattern=pattern,
    )


_B, _H, _L = Dataset.BUYERS, Dataset.HEADERS, Dataset.LINES

_DR_DEFINITIONS: tuple[DRField, ...] = (
    # Invoice
    _dr("IBT-001", "Invoice number", "Invoice", True, "Identifier", "Free text, unique per seller",
        _H, ("invoice_number",), "cbc:ID"),
    _dr("IBT-002", "Invoice issue date", "Invoice", True, "Date", "YYYY-MM-DD (ISO 8601)",
        _H, ("issue_date",), "cbc:IssueDate", pattern=DATE_PATTERN),
    _dr("IBT-003", "Invoice type code", "Invoice", True, "Code", "UNTDID 1001 subset (380, 381, 383, 384, 386, 389)",
        _H, ("invoice_type",), "cbc:InvoiceTypeCode"),
    _dr("IBT-005", "Invoice currency code", "Invoice", True, "Code", "ISO 4217 alpha-3",
        _H, ("currency",), "cbc:DocumentCurrencyCode", pattern=CURRENCY_PATTERN),
    _dr("IBT-009", "Payment due date", "Invoice", False, "Date", "YYYY-MM-DD (ISO 8601)",
        _H, ("payment_due_date",), "cbc:DueDate", pattern=DATE_PATTERN),
    _dr("IBT-023", "Business process type", "Invoice", True, "Text", "urn:peppol:bis:billing",
        _H, (), "cbc:ProfileID", responsibility=ASP),
    _dr("IBT-024", "Specification identifier", "Invoice", True, "Identifier", "urn:peppol:pint:billing-1@ae-1",
        _H, (), "cbc:CustomizationID", responsibility=ASP),
    _dr("BTUAE-02", "Invoice transaction type code", "Invoice", True, "Code", "8-character binary flag string",
        _H, ("transaction_type_code",), "cbc:InvoiceTypeCode/@name", status="New",
        pattern=TRANSACTION_TYPE_PATTERN),
    # Seller
    _dr("IBT-027", "Seller name", "Seller", True, "Text", "Free text",
        _H, ("seller_name",), "cac:AccountingSupplierParty/cac:Party/cac:PartyLegalEntity/cbc:RegistrationName"),
    _dr("IBT-030", "Seller legal registration identifier", "Seller", False, "Identifier", "Free text",
        _H, ("seller_legal_reg_id",), "cac:AccountingSupplierParty/cac:Party/cac:PartyLegalEntity/cbc:CompanyID"),
    _dr("BTUAE-15", "Seller legal registration identifier type", "Seller", False, "Code",
        "TL, EID, PAS, CD", _H, ("seller_legal_reg_id_type",),
        "cac:AccountingSupplierParty/cac:Party/cac:PartyLegalEntity/cbc:CompanyID/@schemeAgencyName",
        status="New"),
    _dr("IBT-031", "Seller TRN", "Seller", True, "Identifier", "15 digits",
        _H, ("seller_trn",), "cac:AccountingSupplierParty/cac:Party/cac:PartyTaxScheme/cbc:CompanyID",
        pattern=TRN_PATTERN),
    _dr("IBT-031-1", "Seller TRN scheme identifier", "Seller", True, "Code", "VAT",
        _H, (), "cac:AccountingSupplierParty/cac:Party/cac:PartyTaxScheme/cac:TaxScheme/cbc:ID",
        responsibility=ASP),
    _dr("IBT-034", "Seller electronic address", "Seller", True, "Identifier", "PEPPOL participant identifier",
        _H, ("seller_electronic_address",), "cac:AccountingSupplierParty/cac:Party/cbc:EndpointID"),
    _dr("IBT-034-1", "Seller electronic address scheme", "Seller", True, "Code", "CEF EAS code list",
        _H, (), "cac:AccountingSupplierParty/cac:Party/cbc:EndpointID/@schemeID", responsibility=ASP),
    _dr("IBT-035", "Seller address line 1", "Seller", True, "Text", "Free text",
        _H, ("seller_address",), "cac:AccountingSupplierParty/cac:Party/cac:PostalAddress/cbc:StreetName"),
    _dr("IBT-037", "Seller city", "Seller", True, "Text", "Free text",
        _H, ("seller_city",), "cac:AccountingSupplierParty/cac:Party/cac:PostalAddress/cbc:CityName"),
    _dr("IBT-039", "Seller country subdivision", "Seller", False, "Code", "AE-AZ, AE-AJ, AE-FU, AE-SH, AE-DU, AE-RK, AE-UQ",
        _H, ("seller_subdivision",), "cac:AccountingSupplierParty/cac:Party/cac:PostalAddress/cbc:CountrySubentity"),
    _dr("IBT-040", "Seller country code", "Seller", True, "Code", "ISO 3166-1 alpha-2",
        _H, ("seller_country",), "cac:AccountingSupplierParty/cac:Party/cac:PostalAddress/cac:Country/cbc:IdentificationCode",
        pattern=COUNTRY_PATTERN),
    # Buyer
    _dr("IBT-044", "Buyer name", "Buyer", True, "Text", "Free text",
        _B, ("buyer_name",), "cac:AccountingCustomerParty/cac:Party/cac:PartyLegalEntity/cbc:RegistrationName"),
    _dr("IBT-048", "Buyer TRN", "Buyer", False, "Identifier", "15 digits",
        _B, ("buyer_trn",), "cac:AccountingCustomerParty/cac:Party/cac:PartyTaxScheme/cbc:CompanyID",
        pattern=TRN_PATTERN),
    _dr("IBT-048-1", "Buyer TRN scheme identifier", "Buyer", False, "Code", "VAT",
        _B, (), "cac:AccountingCustomerParty/cac:Party/cac:PartyTaxScheme/cac:TaxScheme/cbc:ID",
        responsibility=ASP),
    _dr("IBT-049", "Buyer electronic address", "Buyer", True, "Identifier", "PEPPOL participant identifier",
        _B, ("buyer_electronic_address",), "cac:AccountingCustomerParty/cac:Party/cbc:EndpointID"),
    _dr("IBT-049-1", "Buyer electronic address scheme", "Buyer", True, "Code", "CEF EAS code list",
        _B, (), "cac:AccountingCustomerParty/cac:Party/cbc:EndpointID/@schemeID", responsibility=ASP),
    _dr("IBT-050", "Buyer address line 1", "Buyer", True, "Text", "Free text",
        _B, ("buyer_address",), "cac:AccountingCustomerParty/cac:Party/cac:PostalAddress/cbc:StreetName"),
    _dr("IBT-052", "Buyer city", "Buyer", True, "Text", "Free text",
        _B, ("buyer_city",), "cac:AccountingCustomerParty/cac:Party/cac:PostalAddress/cbc:CityName"),
    _dr("IBT-054", "Buyer country subdivision", "Buyer", False, "Code", "AE-AZ, AE-AJ, AE-FU, AE-SH, AE-DU, AE-RK, AE-UQ",
        _B, ("buyer_subdivision",), "cac:AccountingCustomerParty/cac:Party/cac:PostalAddress/cbc:CountrySubentity"),
    _dr("IBT-055", "Buyer country code", "Buyer", True, "Code", "ISO 3166-1 alpha-2",
        _B, ("buyer_country",), "cac:AccountingCustomerParty/cac:Party/cac:PostalAddress/cac:Country/cbc:IdentificationCode",
        pattern=COUNTRY_PATTERN),
    # Payment
    _dr("IBT-081", "Payment means type code", "Invoice", False, "Code", "UNTDID 4461",
        _H, ("payment_means_code",), "cac:PaymentMeans/cbc:PaymentMeansCode"),
    # Totals
    _dr("IBT-106", "Sum of invoice line net amount", "Totals", True, "Amount", "Decimal, 2 places",
        _H, ("total_excl_vat",), "cac:LegalMonetaryTotal/cbc:LineExtensionAmount", responsibility=DERIVED),
    _dr("IBT-109", "Invoice total amount without VAT", "Totals", True, "Amount", "Decimal, 2 places",
        _H, ("total_excl_vat",), "cac:LegalMonetaryTotal/cbc:TaxExclusiveAmount"),
    _dr("IBT-110", "Invoice total VAT amount", "Totals", True, "Amount", "Decimal, 2 places",
        _H, ("vat_total",), "cac:TaxTotal/cbc:TaxAmount"),
    _dr("IBT-112", "Invoice total amount with VAT", "Totals", True, "Amount", "Decimal, 2 places",
        _H, ("total_incl_vat",), "cac:LegalMonetaryTotal/cbc:TaxInclusiveAmount"),
    _dr("IBT-115", "Amount due for payment", "Totals", True, "Amount", "Decimal, 2 places",
        _H, ("amount_due",), "cac:LegalMonetaryTotal/cbc:PayableAmount"),
    # Tax breakdown
    _dr("IBT-116", "VAT category taxable amount", "Tax", True, "Amount", "Decimal, 2 places",
        _H, ("total_excl_vat",), "cac:TaxTotal/cac:TaxSubtotal/cbc:TaxableAmount", responsibility=DERIVED),
    _dr("IBT-117", "VAT category tax amount", "Tax", True, "Amount", "Decimal, 2 places",
        _H, ("vat_total",), "cac:TaxTotal/cac:TaxSubtotal/cbc:TaxAmount", responsibility=DERIVED),
    _dr("IBT-118", "VAT category code", "Tax", True, "Code", "S, Z, E, O, AE",
        _H, ("tax_category_code",), "cac:TaxTotal/cac:TaxSubtotal/cac:TaxCategory/cbc:ID"),
    _dr("IBT-119", "VAT category rate", "Tax", False, "Percentage", "Decimal (0 or 5)",
        _H, ("tax_category_rate",), "cac:TaxTotal/cac:TaxSubtotal/cac:TaxCategory/cbc:Percent"),
    # Lines
    _dr("IBT-126", "Invoice line identifier", "Line", True, "Identifier", "Unique within invoice",
        _L, ("line_id", "line_number"), "cac:InvoiceLine/cbc:ID"),
    _dr("IBT-129", "Invoiced quantity", "Line", True, "Quantity", "Decimal",
        _L, ("quantity",), "cac:InvoiceLine/cbc:InvoicedQuantity"),
    _dr("IBT-130", "Invoiced quantity unit of measure", "Line", True, "Code", "UNECE Rec 20",
        _L, ("unit_of_measure",), "cac:InvoiceLine/cbc:InvoicedQuantity/@unitCode"),
    _dr("IBT-131", "Invoice line net amount", "Line", True, "Amount", "Decimal, 2 places",
        _L, ("line_total_excl_vat",), "cac:InvoiceLine/cbc:LineExtensionAmount"),
    _dr("IBT-146", "Item net price", "Line", True, "Unit Price Amount", "Decimal",
        _L, ("unit_price",), "cac:InvoiceLine/cac:Price/cbc:PriceAmount"),
    _dr("IBT-148", "Item gross price", "Line", False, "Unit Price Amount", "Decimal",
        _L, ("unit_price",), "cac:InvoiceLine/cac:Price/cac:AllowanceCharge/cbc:BaseAmount"),
    _dr("IBT-149", "Item price base quantity", "Line", False, "Quantity", "Decimal",
        _L, (), "cac:InvoiceLine/cac:Price/cbc:BaseQuantity", responsibility=ASP),
    _dr("IBT-151", "Invoiced item VAT category code", "Line", True, "Code", "S, Z, E, O, AE",
        _L, ("tax_category_code",), "cac:InvoiceLine/cac:Item/cac:ClassifiedTaxCategory/cbc:ID"),
    _dr("IBT-152", "Invoiced item VAT rate", "Line", True, "Percentage", "Decimal (0 or 5)",
        _L, ("vat_rate",), "cac:InvoiceLine/cac:Item/cac:ClassifiedTaxCategory/cbc:Percent"),
    _dr("IBT-153", "Item name", "Line", True, "Text", "Free text",
        _L, ("description",), "cac:InvoiceLine/cac:Item/cbc:Name"),
    _dr("IBT-154", "Item description", "Line", False, "Text", "Free text",
        _L, ("item_name",), "cac:InvoiceLine/cac:Item/cbc:Description"),
    _dr("BTUAE-08", "Invoice line VAT amount", "Line", True, "Amount", "Decimal, 2 places",
        _L, ("vat_amount",), "cac:InvoiceLine/cac:TaxTotal/cbc:TaxAmount", status="New"),
)


# =============================================================================
# Accessors
# =============================================================================

@lru_cache(maxsize=1)
def get_dr_registry() -> tuple[DRField, ...]:
    """The DR registry, built once."""
    mandatory = sum(1 for entry in _DR_DEFINITIONS if entry.is_mandatory)
    logger.info(
        f"DR registry loaded: {len(_DR_DEFINITIONS)} fields "
        f"({mandatory} mandatory, {len(_DR_DEFINITIONS) - mandatory} conditional)"
    )
    return _DR_DEFINITIONS


def get_dr_entry(dr_id: str) -> DRField | None:
    for entry in get_dr_registry():
        if entry.dr_id == dr_id:
            return entry
    return None


def get_mandatory_fields() -> tuple[DRField, ...]:
    return tuple(entry for entry in get_dr_registry() if entry.is_mandatory)


def get_conditional_fields() -> tuple[DRField, ...]:
    return tuple(entry for entry in get_dr_registry() if not entry.is_mandatory)


def get_registry_fields() -> tuple[RegistryField, ...]:
    """Every DR as a RegistryField, in registry order."""
    return tuple(entry.to_registry_field() for entry in get_dr_registry())


def _as_party_column(column: str) -> str:
    return "supplier_" + column.removeprefix("buyer_") if column.startswith("buyer_") else column


def get_mandatory_columns_for_dataset(
    dataset: Dataset | str,
    direction: Direction = DEFAULT_DIRECTION,
) -> list[str]:
    """
    Columns a dataset file must carry for the default use case.

    Mandatory DR columns the parser reads, plus the join keys. AP files
    identify the counterparty by supplier_id, so AP header files need
    supplier_id instead of buyer_id and AP party files use supplier_*
    column names.

    Args:
        dataset: buyers, headers or lines
        direction: Direction of the file

    Returns:
        Column names in registry order, join keys first
    """
    kind = Dataset(dataset)
    known = PARSER_KNOWN_COLUMNS[kind]
    columns: dict[str, None] = dict.fromkeys(JOIN_KEYS[kind])
    for entry in get_dr_registry():
        if entry.dataset == kind and entry.is_mandatory:
            columns.update((column, None) for column in entry.columns if column in known)

    required = list(columns)
    if direction == Direction.AP:
        if kind == Dataset.HEADERS:
            required = ["supplier_id" if column == "buyer_id" else column for column in required]
        elif kind == Dataset.BUYERS:
            required = [_as_party_column(column) for column in required]
    return required
