"""
Regulatory field descriptors and mapping types.

A FieldMapping ties one ERP column to one RegistryField and carries the
transformations to apply plus sample values for structural validation.
PINT_AE_UC1_FIELDS is the legacy 32-field table the first mapping screens
were built on; the authoritative 50-field registry lives in
pintae.registry.dr_registry and produces the same RegistryField shape.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .conformance import (
    COUNTRY_PATTERN,
    CURRENCY_PATTERN,
    DATE_PATTERN,
    TRN_PATTERN,
    UAE_SUBDIVISION_CODES,
)


class FieldCategory(str, Enum):
    HEADER = "header"
    SELLER = "seller"
    BUYER = "buyer"
    LINE = "line"
    TOTALS = "totals"
    TAX = "tax"


class DataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class TransformationType(str, Enum):
    """Value transforms a mapping may chain."""
    NONE = "none"
    TRIM = "trim"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    DATE_PARSE = "date_parse"
    STATIC_VALUE = "static_value"
    LOOKUP = "lookup"
    COMBINE = "combine"
    SPLIT = "split"
    REGEX_EXTRACT = "regex_extract"


@dataclass(frozen=True)
class RegistryField:
    """
    A regulatory field a column can be mapped to.

    ibt_reference is the DR identifier; coverage in registry mode is
    computed over it, not over the internal id.
    """
    id: str
    name: str
    ibt_reference: str
    is_mandatory: bool
    data_type: DataType = DataType.STRING
    description: str = ""
    category: FieldCategory = FieldCategory.HEADER
    format: str | None = None
    allowed_values: tuple[str, ...] | None = None


@dataclass(frozen=True)
class Transformation:
    """One transform step; config keys depend on the type."""
    type: TransformationType | str
    config: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class FieldMapping:
    """Association of an ERP column with a regulatory field."""
    erp_column: str
    target_field: RegistryField
    sample_values: tuple[str, ...] = ()
    transformations: tuple[Transformation, ...] = ()
    confidence: float = 1.0
    is_confirmed: bool = False


@dataclass(frozen=True)
class ConditionalQuestion:
    """Scenario question that decides whether optional fields apply."""
    id: str
    question: str
    field_ids: tuple[str, ...]


def _field(
    id: str,
    name: str,
    description: str,
    ibt: str,
    category: FieldCategory,
    mandatory: bool,
    data_type: DataType = DataType.STRING,
    fmt: str | None = None,
    allowed: tuple[str, ...] | None = None,
) -> RegistryField:
    return RegistryField(
        id=id,
        name=name,
        ibt_reference=ibt,
        is_mandatory=mandatory,
        data_type=data_type,
        description=description,
        category=category,
        format=fmt,
        allowed_values=allowed,
    )


_H, _S, _B, _L, _T = (
    FieldCategory.HEADER,
    FieldCategory.SELLER,
    FieldCategory.BUYER,
    FieldCategory.LINE,
    FieldCategory.TOTALS,
)
_NUM, _DATE = DataType.NUMBER, DataType.DATE


# PINT-AE UC1 standard tax invoice fields (legacy coverage mode)
PINT_AE_UC1_FIELDS: tuple[RegistryField, ...] = (
    # Header
    _field("invoice_number", "Invoice Number", "Unique invoice identifier", "IBT-001", _H, True),
    _field("issue_date", "Issue Date", "Invoice issue date", "IBT-002", _H, True, _DATE, DATE_PATTERN),
    _field("invoice_type", "Invoice Type Code", "Invoice type (380=invoice, 381=credit note)", "IBT-003", _H, True,
           allowed=("380", "381", "383", "384")),
    _field("currency", "Document Currency", "ISO 4217 currency code", "IBT-005", _H, True, fmt=CURRENCY_PATTERN),
    _field("tax_currency", "Tax Accounting Currency", "Must be AED for UAE", "IBT-006", _H, False),
    _field("fx_rate", "Exchange Rate", "FX rate to AED (required if non-AED)", "IBT-007", _H, False, _NUM),
    _field("payment_due_date", "Payment Due Date", "Payment due date", "IBT-009", _H, False, _DATE),
    _field("buyer_reference", "Buyer Reference", "Buyer reference/PO number", "IBT-010", _H, False),
    _field("spec_id", "Specification Identifier", "PINT-AE specification ID", "IBT-024", _H, True),
    # Seller
    _field("seller_name", "Seller Name", "Seller trading name", "IBT-027", _S, True),
    _field("seller_trn", "Seller TRN", "UAE Tax Registration Number (15 digits)", "IBT-031", _S, True,
           fmt=TRN_PATTERN),
    _field("seller_endpoint", "Seller Electronic Address", "PEPPOL participant ID or email", "IBT-034", _S, True),
    _field("seller_street", "Seller Street", "Seller address line", "IBT-035", _S, True),
    _field("seller_city", "Seller City", "Seller city name", "IBT-037", _S, True),
    _field("seller_subdivision", "Seller Subdivision", "UAE emirate code", "IBT-039", _S, False,
           allowed=UAE_SUBDIVISION_CODES),
    _field("seller_country", "Seller Country", "ISO country code", "IBT-040", _S, True, fmt=COUNTRY_PATTERN),
    # Buyer
    _field("buyer_name", "Buyer Name", "Buyer legal/trading name", "IBT-044", _B, True),
    _field("buyer_trn", "Buyer TRN", "Buyer Tax Registration Number", "IBT-048", _B, False, fmt=TRN_PATTERN),
    _field("buyer_endpoint", "Buyer Electronic Address", "Buyer PEPPOL ID or email", "IBT-049", _B, True),
    _field("buyer_address", "Buyer Address", "Buyer street address", "IBT-050", _B, True),
    _field("buyer_country", "Buyer Country", "ISO country code", "IBT-055", _B, True, fmt=COUNTRY_PATTERN),
    # Lines
    _field("line_id", "Line ID", "Unique line identifier", "IBT-126", _L, True),
    _field("line_quantity", "Quantity", "Invoiced quantity", "IBT-129", _L, True, _NUM),
    _field("line_unit_price", "Unit Price", "Item net price", "IBT-146", _L, True, _NUM),
    _field("line_net_amount", "Line Net Amount", "Line total excl VAT", "IBT-131", _L, True, _NUM),
    _field("line_description", "Item Description", "Item name/description", "IBT-153", _L, True),
    _field("line_vat_rate", "VAT Rate", "VAT/tax percentage", "IBT-152", _L, True, _NUM),
    _field("line_vat_amount", "Line VAT Amount", "Line VAT amount", "IBT-117", _L, True, _NUM),
    # Totals
    _field("total_excl_vat", "Total Excl VAT", "Invoice total excluding VAT", "IBT-109", _T, True, _NUM),
    _field("vat_total", "Total VAT", "Total VAT amount", "IBT-110", _T, True, _NUM),
    _field("total_incl_vat", "Total Incl VAT", "Invoice total including VAT", "IBT-112", _T, True, _NUM),
    _field("amount_due", "Amount Due", "Amount due for payment", "IBT-115", _T, False, _NUM),
)

UC1_FIELDS_BY_ID: dict[str, RegistryField] = {f.id: f for f in PINT_AE_UC1_FIELDS}

# Legacy field ids that name a different column in the dataset templates
FIELD_ALIASES: dict[str, str] = {
    "seller_endpoint": "seller_electronic_address",
    "buyer_endpoint": "buyer_electronic_address",
    "seller_street": "seller_address",
}

CONDITIONAL_QUESTIONS: tuple[ConditionalQuestion, ...] = (
    ConditionalQuestion(
        id="foreign_currency",
        question="Do you issue invoices in currencies other than AED?",
        field_ids=("fx_rate", "tax_currency"),
    ),
    ConditionalQuestion(
        id="payment_terms",
        question="Do you track payment due dates on invoices?",
        field_ids=("payment_due_date", "amount_due"),
    ),
    ConditionalQuestion(
        id="buyer_trn",
        question="Do you capture buyer TRN for B2B invoices?",
        field_ids=("buyer_trn",),
    ),
    ConditionalQuestion(
        id="emirate_codes",
        question="Do you maintain UAE emirate codes in your address data?",
        field_ids=("seller_subdivision",),
    ),
)


def resolve_field_alias(name: str) -> str:
    """Map a legacy field id to its dataset column name."""
    return FIELD_ALIASES.get(name, name)
