"""
UAE PINT-AE UC1 check pack.

Versioned, declarative rules for the UC1 standard B2B tax invoice profile.
Every entry is data: the pack can be extended or re-tuned (severity,
tolerance, enabled flag) without touching the interpreter.

Design Decisions:
- Rule ids (UAE-UC1-CHK-NNN) are stable; controls and traceability
  reference them
- pint_reference_terms carry the DR ids each rule affects and are the
  single source for the rule traceability registry
- Fields the customer templates leave to the ASP (spec_id,
  business_process) are only checked when populated
"""

import logging
from collections.abc import Iterable
from decimal import Decimal

from .conformance import (
    BASE_CURRENCY,
    BUSINESS_PROCESS_TYPES,
    DATE_PATTERN,
    MONETARY_TOLERANCE,
    TRN_PATTERN,
    UAE_SUBDIVISION_CODES,
)
from .models import (
    DEFAULT_DIRECTION,
    ComplianceException,
    DataContext,
    Dataset,
    Direction,
    Severity,
)
from .rules import (
    Assertion,
    Comparison,
    Membership,
    Pattern,
    Precision,
    Predicate,
    Presence,
    Rule,
    evaluate_rule,
)

logger = logging.getLogger(__name__)

PACK_VERSION = "UC1-2025-Q2"
USE_CASE = "UC1 Standard Tax Invoice"

# Owner teams
ASP_OPS = "ASP Ops"
CLIENT_FINANCE = "Client Finance"
CLIENT_IT = "Client IT"
BUYER_SIDE = "Buyer-side"

SPEC_ID_PATTERN = r"^urn:peppol:pint:billing-1(@ae-1)?"


def _check(
    number: int,
    name: str,
    severity: Severity,
    dataset: Dataset,
    predicate: Predicate,
    message: str,
    terms: tuple[str, ...],
    rule_type: str,
    owner: str = CLIENT_FINANCE,
    **kwargs,
) -> Rule:
    return Rule(
        check_id=f"UAE-UC1-CHK-{number:03d}",
        name=name,
        severity=severity,
        dataset=dataset,
        predicate=predicate,
        message=message,
        pint_reference_terms=terms,
        rule_type=rule_type,
        owner_team=owner,
        use_case=USE_CASE,
        **kwargs,
    )


_C, _H, _M, _L = Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW
_HEADERS, _LINES, _BUYERS = Dataset.HEADERS, Dataset.LINES, Dataset.BUYERS

_PRESENT = 'Invoice {invoice_label}: Missing required field "{field}"'
_PRECISION = 'Invoice {invoice_number}: Field "{field}" has {decimals} decimal places, maximum allowed is {max_decimals}'


UAE_UC1_CHECK_PACK: tuple[Rule, ...] = (
    # Header identity
    _check(1, "Invoice Number Present", _C, _HEADERS, Presence(("invoice_number",)), _PRESENT,
           ("IBT-001",), "Presence", suggested_fix="Populate invoice_number from the ERP document number"),
    _check(2, "Issue Date Present", _C, _HEADERS, Presence(("issue_date",)), _PRESENT,
           ("IBT-002",), "Presence", suggested_fix="Populate issue_date for every invoice"),
    _check(3, "Issue Date Format", _H, _HEADERS, Pattern("issue_date", DATE_PATTERN),
           'Invoice {invoice_number}: Field "issue_date" format invalid. Expected pattern: {pattern}',
           ("IBT-002",), "Format", owner=CLIENT_IT,
           suggested_fix="Export dates as YYYY-MM-DD or add a date_parse transformation"),
    _check(4, "Invoice Type Present", _C, _HEADERS, Presence(("invoice_type", "transaction_type_code")), _PRESENT,
           ("IBT-003", "BTUAE-02"), "Presence",
           suggested_fix="Map the invoice type code (380/381) and the UAE transaction type flags"),
    _check(5, "Currency Present", _C, _HEADERS, Presence(("currency",)), _PRESENT,
           ("IBT-005",), "Presence", suggested_fix="Populate the document currency code"),
    _check(6, "Currency Code Valid", _H, _HEADERS, Membership("currency", codelist="ISO4217"),
           'Invoice {invoice_number}: Currency "{value}" is not in the official PINT-AE ISO4217 codelist',
           ("IBT-005",), "CodeList", expected="Valid ISO4217 code from PINT-AE codelist",
           suggested_fix="Use an active ISO 4217 alphabetic currency code"),
    _check(7, "Tax Accounting Currency is AED", _H, _HEADERS,
           Assertion(
               f"not ((upper(currency) != '{BASE_CURRENCY}' and is_empty(tax_currency)) "
               f"or (not is_empty(tax_currency) and upper(tax_currency) != '{BASE_CURRENCY}'))"
           ),
           f"Invoice {{invoice_number}}: Tax accounting currency must be {BASE_CURRENCY} "
           f"(invoice currency {{currency}}, tax currency {{tax_currency}})",
           ("IBT-006",), "Dependency", field="tax_currency", expected=BASE_CURRENCY,
           suggested_fix=f"Set tax_currency to {BASE_CURRENCY} for foreign currency invoices"),
    _check(8, "FX Rate Required for Foreign Currency", _H, _HEADERS,
           Assertion("fx_rate is not None and fx_rate > 0"),
           f"Invoice {{invoice_number}}: FX rate is required when currency is {{currency}} (base {BASE_CURRENCY})",
           ("IBT-007", "IBT-005"), "Dependency",
           condition=f"not is_empty(currency) and upper(currency) != '{BASE_CURRENCY}'",
           field="fx_rate", expected="Positive FX rate",
           suggested_fix="Provide the exchange rate to AED for every non-AED invoice"),
    _check(9, "Payment Due Date Consistency", _M, _HEADERS,
           Assertion(
               "not (coalesce(num(amount_due), 0) > 0 and is_empty(payment_due_date)) "
               "and not (to_date(payment_due_date) is not None and to_date(issue_date) is not None "
               "and to_date(payment_due_date) < to_date(issue_date))"
           ),
           "Invoice {invoice_number}: Payment due date ({payment_due_date}) is required when amount due "
           "is {amount_due} and cannot be earlier than issue date ({issue_date})",
           ("IBT-009", "IBT-115"), "Dependency", field="payment_due_date",
           expected="Required when amount_due > 0, on or after issue date",
           suggested_fix="Populate payment_due_date on or after the issue date"),

    # ASP metadata
    _check(10, "Specification Identifier", _H, _HEADERS, Pattern("spec_id", SPEC_ID_PATTERN),
           'Invoice {invoice_number}: Field "spec_id" format invalid. Expected pattern: {pattern}',
           ("IBT-024",), "Format", owner=ASP_OPS,
           suggested_fix="Leave spec_id to the ASP or send urn:peppol:pint:billing-1@ae-1"),
    _check(11, "Business Process Type", _M, _HEADERS, Membership("business_process", BUSINESS_PROCESS_TYPES),
           'Invoice {invoice_number}: Invalid business process type "{value}"',
           ("IBT-023",), "CodeList", owner=ASP_OPS,
           suggested_fix="Leave business_process to the ASP or send urn:peppol:bis:billing"),

    # Seller
    _check(12, "Seller Name Present", _C, _HEADERS, Presence(("seller_name",)), _PRESENT,
           ("IBT-027",), "Presence", suggested_fix="Populate the seller legal name"),
    _check(13, "Seller TRN Format", _C, _HEADERS, Pattern("seller_trn", TRN_PATTERN),
           'Invoice {invoice_number}: Seller TRN "{value}" does not match UAE 15-digit format',
           ("IBT-031",), "Format", expected="15-digit number",
           suggested_fix="Use the 15-digit TRN issued by the FTA"),
    _check(14, "Seller Electronic Address Present", _H, _HEADERS, Presence(("seller_electronic_address",)),
           _PRESENT, ("IBT-034",), "Presence", owner=CLIENT_IT,
           suggested_fix="Populate the seller Peppol endpoint"),
    _check(15, "Seller Address Complete", _H, _HEADERS,
           Presence(("seller_address", "seller_city", "seller_country")),
           'Invoice {invoice_number}: Missing seller field "{field}"',
           ("IBT-035", "IBT-037", "IBT-040"), "Presence",
           suggested_fix="Complete the seller postal address"),
    _check(16, "Seller Subdivision Code", _M, _HEADERS, Membership("seller_subdivision", UAE_SUBDIVISION_CODES),
           'Invoice {invoice_number}: Invalid UAE subdivision "{value}"',
           ("IBT-039",), "CodeList", suggested_fix="Use an emirate code such as AE-DU or AE-AZ"),

    # Buyer
    _check(17, "Buyer Name Present", _C, _BUYERS, Presence(("buyer_name",)),
           'Buyer ID "{buyer_id}": Missing buyer name',
           ("IBT-044",), "Presence", owner=BUYER_SIDE, suggested_fix="Populate the buyer legal name"),
    _check(18, "Buyer TRN Format", _H, _BUYERS, Pattern("buyer_trn", TRN_PATTERN),
           'Buyer "{buyer_name}": TRN "{value}" does not match UAE 15-digit format',
           ("IBT-048",), "Format", owner=BUYER_SIDE, expected="15-digit number (or empty)",
           suggested_fix="Correct the buyer TRN in master data"),
    _check(19, "Buyer Electronic Address Present", _H, _BUYERS, Presence(("buyer_electronic_address",)),
           'Buyer {buyer_id}: Missing buyer field "{field}"',
           ("IBT-049",), "Presence", owner=BUYER_SIDE,
           suggested_fix="Populate the buyer Peppol endpoint"),
    _check(20, "Buyer Address Complete", _H, _BUYERS, Presence(("buyer_address", "buyer_country")),
           'Buyer {buyer_id}: Missing buyer field "{field}"',
           ("IBT-050", "IBT-055"), "Presence", owner=BUYER_SIDE,
           suggested_fix="Complete the buyer postal address"),

    # Totals
    _check(21, "Sum of Line Net Amounts Matches Header", _C, _HEADERS,
           Comparison("coalesce(total_excl_vat, 0)", "=", "lines_sum('line_total_excl_vat')"),
           "Invoice {invoice_number}: Header total ({left}) does not match sum of lines ({right})",
           ("IBT-106", "IBT-109", "IBT-131"), "Math", field="total_excl_vat",
           expected="Sum of lines: {right}", suggested_fix="Recalculate the header total from the lines"),
    _check(22, "Total Excl VAT Precision", _L, _HEADERS, Precision("total_excl_vat", 2), _PRECISION,
           ("IBT-109",), "Format", owner=CLIENT_IT, suggested_fix="Round amounts to 2 decimals"),
    _check(23, "VAT Total Precision", _L, _HEADERS, Precision("vat_total", 2), _PRECISION,
           ("IBT-110",), "Format", owner=CLIENT_IT, suggested_fix="Round amounts to 2 decimals"),
    _check(24, "Total Incl VAT Precision", _L, _HEADERS, Precision("total_incl_vat", 2), _PRECISION,
           ("IBT-112",), "Format", owner=CLIENT_IT, suggested_fix="Round amounts to 2 decimals"),
    _check(25, "Total With VAT Equals Net Plus VAT", _C, _HEADERS,
           Comparison("total_incl_vat", "=", "total_excl_vat + vat_total"),
           "Invoice {invoice_number}: Total with VAT ({total_incl_vat}) != Excl VAT ({total_excl_vat}) "
           "+ VAT ({vat_total})",
           ("IBT-112", "IBT-109", "IBT-110"), "Math", field="total_incl_vat",
           suggested_fix="Recalculate total_incl_vat as total_excl_vat + vat_total"),
    _check(26, "Amount Due Precision", _L, _HEADERS, Precision("amount_due", 2), _PRECISION,
           ("IBT-115",), "Format", owner=CLIENT_IT, suggested_fix="Round amounts to 2 decimals"),

    # Tax
    _check(27, "Tax Breakdown Present", _H, _HEADERS,
           Assertion(
               "not ((coalesce(total_excl_vat, 0) > 0 or lines_any_positive('line_total_excl_vat')) "
               "and (is_empty(tax_category_code) or tax_category_rate is None) "
               "and not lines_any('tax_category_code', 'vat_rate'))"
           ),
           "Invoice {invoice_number}: Missing tax breakdown details (category/rate)",
           ("IBT-118", "IBT-119", "IBT-116"), "Dependency", field="tax_breakdown",
           expected="At least one tax category breakdown", observed="missing",
           suggested_fix="Provide the tax category code and rate on the header or lines"),
    _check(28, "Line VAT Calculation", _H, _LINES,
           Comparison("vat_amount", "=", "line_total_excl_vat * vat_rate / 100"),
           "Invoice {invoice_number}, Line {line_number}: VAT amount ({left}) != Base x Rate/100 ({right})",
           ("BTUAE-08", "IBT-152", "IBT-131"), "Math", field="vat_amount",
           expected="{line_total_excl_vat} x ({vat_rate}/100) = {right}",
           suggested_fix="Recalculate line VAT as net amount x rate / 100"),
    _check(29, "VAT Total Equals Sum of Line VAT", _C, _HEADERS,
           Comparison("coalesce(vat_total, 0)", "=", "lines_sum('vat_amount')"),
           "Invoice {invoice_number}: VAT total ({left}) does not match sum of line VAT amounts ({right})",
           ("IBT-110", "IBT-117"), "Math", field="vat_total",
           expected="Sum of line VAT: {right}", suggested_fix="Recalculate vat_total from the lines"),

    # Lines
    _check(30, "Invoice Has Line Items", _C, _HEADERS, Assertion("line_count() >= 1"),
           "Invoice {invoice_number}: No line items found. At least one line is required.",
           ("IBT-126",), "CrossCheck", field="lines", expected=">=1 line", observed="0 lines",
           suggested_fix="Export the lines for every invoice header"),
    _check(31, "Line Identifier Present", _H, _LINES, Presence(("line_number",)),
           "Invoice {invoice_label}, Line: Missing line identifier",
           ("IBT-126",), "Presence", owner=CLIENT_IT, expected="Unique line identifier",
           suggested_fix="Populate line_number for every line"),
    _check(32, "Invoiced Quantity Present", _H, _LINES, Presence(("quantity",)),
           "Invoice {invoice_number}, Line {line_number}: Missing quantity",
           ("IBT-129",), "Presence", expected="Numeric quantity", suggested_fix="Populate the invoiced quantity"),
    _check(33, "Unit of Measure Present", _M, _LINES, Presence(("unit_of_measure",)),
           "Invoice {invoice_number}, Line {line_number}: Missing unit of measure",
           ("IBT-130",), "Presence", suggested_fix="Populate a UN/ECE rec 20 unit code such as EA"),
    _check(34, "Line Net Amount Formula", _H, _LINES,
           Comparison("line_total_excl_vat", "=", "quantity * unit_price - coalesce(line_discount, 0)"),
           "Invoice {invoice_number}, Line {line_number}: Net amount ({left}) != (Qty x Price) - Discount ({right})",
           ("IBT-131", "IBT-129", "IBT-146"), "Math", field="line_total_excl_vat",
           expected="({quantity} x {unit_price}) - {line_discount} = {right}",
           suggested_fix="Recalculate the line net amount"),
)

CHECK_PACK_BY_ID: dict[str, Rule] = {rule.check_id: rule for rule in UAE_UC1_CHECK_PACK}


def enabled_rules(pack: Iterable[Rule], direction: Direction = DEFAULT_DIRECTION) -> list[Rule]:
    return [rule for rule in pack if rule.enabled and rule.applies_to(direction)]


def run_pint_ae_checks(
    pack: Iterable[Rule],
    context: DataContext,
    direction: Direction = DEFAULT_DIRECTION,
    tolerance: Decimal = MONETARY_TOLERANCE,
) -> list[ComplianceException]:
    """
    Run the enabled rules of a check pack.

    Returns:
        Flattened exceptions, grouped by rule in pack order
    """
    exceptions: list[ComplianceException] = []
    for rule in enabled_rules(pack, direction):
        exceptions.extend(evaluate_rule(rule, context, direction, tolerance).exceptions)
    logger.debug(f"Check pack ({direction.value}): {len(exceptions)} exception(s)")
    return exceptions
