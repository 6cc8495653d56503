"""
Built-in compliance checks.

The fixed battery every run executes: party identity, header and line
completeness, cross-file integrity, numeric reconciliation and
enumerated-value checks. Each check is a Rule evaluated by the shared
interpreter in pintae.domain.rules.
"""

import logging
from decimal import Decimal

from .conformance import (
    COUNTRY_PATTERN,
    CREDIT_NOTE_TYPE_CODES,
    CURRENCY_PATTERN,
    DATE_PATTERN,
    INVOICE_TYPE_CODES,
    MONETARY_TOLERANCE,
    PAYMENT_MEANS_CODES,
    TRN_PATTERN,
    UAE_SUBDIVISION_CODES,
)
from .models import DEFAULT_DIRECTION, CheckResult, DataContext, Dataset, Direction, Severity
from .rules import (
    Assertion,
    Comparison,
    Membership,
    Pattern,
    Presence,
    Reference,
    Rule,
    Uniqueness,
    evaluate_rules,
)

logger = logging.getLogger(__name__)

_CRITICAL, _HIGH, _MEDIUM = Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM
_BUYERS, _HEADERS, _LINES = Dataset.BUYERS, Dataset.HEADERS, Dataset.LINES

_CREDIT_NOTE_LIST = "[" + ", ".join(f"'{code}'" for code in sorted(CREDIT_NOTE_TYPE_CODES)) + "]"


# =============================================================================
# Party checks
# =============================================================================

_PARTY_CHECKS = (
    Rule(
        check_id="buyer_trn_missing",
        name="Buyer TRN Missing",
        description="Checks if buyer TRN is present in the buyers file",
        severity=_CRITICAL,
        dataset=_BUYERS,
        predicate=Presence(("buyer_trn",)),
        message='Buyer "{buyer_name}" (ID: {buyer_id}) is missing TRN',
        rule_type="presence",
    ),
    Rule(
        check_id="buyer_trn_invalid_format",
        name="Buyer TRN Invalid Format",
        description="Validates TRN format (15 digits for UAE)",
        severity=_HIGH,
        dataset=_BUYERS,
        predicate=Pattern("buyer_trn", TRN_PATTERN),
        message='Buyer "{buyer_name}" has invalid TRN format: {buyer_trn}',
        expected="15-digit number",
        rule_type="pattern",
    ),
)


# =============================================================================
# Header checks
# =============================================================================

_HEADER_CHECKS = (
    Rule(
        check_id="duplicate_invoice_number",
        name="Duplicate Invoice Number",
        description="Checks for duplicate invoice numbers per seller TRN",
        severity=_CRITICAL,
        dataset=_HEADERS,
        predicate=Uniqueness(("seller_trn", "invoice_number")),
        message='Duplicate invoice number "{invoice_number}" for seller {seller_trn}',
        field="invoice_number",
        rule_type="uniqueness",
    ),
    Rule(
        check_id="missing_mandatory_fields",
        name="Missing Mandatory Header Fields",
        description="Checks for required fields: invoice_id, invoice_number, issue_date, seller_trn, currency",
        severity=_CRITICAL,
        dataset=_HEADERS,
        predicate=Presence(("invoice_id", "invoice_number", "issue_date", "seller_trn", "currency")),
        message='Invoice {invoice_label}: missing mandatory field "{field}"',
        expected="non-empty value",
        rule_type="presence",
    ),
    Rule(
        check_id="header_totals_mismatch",
        name="Header Totals Mismatch",
        description="Validates total_incl_vat = total_excl_vat + vat_total",
        severity=_CRITICAL,
        dataset=_HEADERS,
        predicate=Comparison("total_incl_vat", "=", "total_excl_vat + vat_total"),
        message=(
            "Invoice {invoice_number}: total_incl_vat ({total_incl_vat}) != "
            "total_excl_vat ({total_excl_vat}) + vat_total ({vat_total})"
        ),
        field="total_incl_vat",
        rule_type="reconciliation",
    ),
)


# =============================================================================
# Line checks
# =============================================================================

_LINE_CHECKS = (
    Rule(
        check_id="line_totals_mismatch",
        name="Line Totals Mismatch",
        description="Validates line_total_excl_vat = (quantity * unit_price) - line_discount",
        severity=_HIGH,
        dataset=_LINES,
        predicate=Comparison(
            "line_total_excl_vat", "=", "quantity * unit_price - coalesce(line_discount, 0)",
        ),
        message=(
            "Line {line_number}: line_total_excl_vat ({line_total_excl_vat}) != "
            "({quantity} * {unit_price}) - {line_discount}"
        ),
        field="line_total_excl_vat",
        rule_type="reconciliation",
    ),
    Rule(
        check_id="vat_calc_mismatch",
        name="VAT Calculation Mismatch",
        description="Validates vat_amount = line_total_excl_vat * vat_rate",
        severity=_HIGH,
        dataset=_LINES,
        predicate=Comparison("vat_amount", "=", "line_total_excl_vat * vat_rate / 100"),
        message=(
            "Line {line_number}: vat_amount ({vat_amount}) != line_total_excl_vat "
            "({line_total_excl_vat}) * vat_rate/100 ({vat_rate}/100)"
        ),
        field="vat_amount",
        rule_type="reconciliation",
    ),
    Rule(
        check_id="negative_without_credit_note",
        name="Negative Value Without Credit Note",
        description="Flags negative line totals on non-credit note invoices",
        severity=_CRITICAL,
        dataset=_LINES,
        predicate=Assertion(
            f"upper(header('invoice_type')) in {_CREDIT_NOTE_LIST}",
            details=(("invoice_type_shown", "coalesce(header('invoice_type'), 'not specified')"),),
        ),
        condition="header_exists() and line_total_excl_vat is not None and line_total_excl_vat < 0",
        message=(
            'Line {line_number} has negative total ({line_total_excl_vat}) '
            'but invoice type is "{invoice_type_shown}"'
        ),
        field="line_total_excl_vat",
        expected="CREDIT_NOTE invoice type",
        observed="{invoice_type_shown}",
        rule_type="assertion",
    ),
    Rule(
        check_id="missing_mandatory_line_fields",
        name="Missing Mandatory Line Fields",
        description="Checks for required line fields: line_id, invoice_id, quantity, unit_price, line_total_excl_vat",
        severity=_HIGH,
        dataset=_LINES,
        predicate=Presence(("line_id", "invoice_id", "quantity", "unit_price", "line_total_excl_vat")),
        message='Line {line_id} of invoice {invoice_id}: missing mandatory field "{field}"',
        expected="non-empty value",
        rule_type="presence",
    ),
    Rule(
        check_id="line_invoice_not_found",
        name="Line Invoice Not Found",
        description="Validates every line references an invoice in the headers file",
        severity=_CRITICAL,
        dataset=_LINES,
        predicate=Reference("invoice_id", _HEADERS, missing_message="Line {line_id}: invoice_id is missing"),
        message='Line {line_id}: invoice_id "{invoice_id}" not found in headers file',
        expected="Existing invoice_id",
        rule_type="reference",
    ),
)


# =============================================================================
# Counterparty and cross-file checks
# =============================================================================

_CROSS_FILE_CHECKS = (
    Rule(
        check_id="buyer_not_found",
        name="Buyer ID Missing or Not Found",
        description="Validates buyer_id exists and is found in buyers file",
        severity=_CRITICAL,
        dataset=_HEADERS,
        predicate=Reference("buyer_id", _BUYERS, missing_message="Invoice {invoice_number}: buyer_id is missing"),
        message='Invoice {invoice_number}: buyer_id "{buyer_id}" not found in buyers file',
        directions=frozenset({Direction.AR}),
        rule_type="reference",
    ),
    Rule(
        check_id="supplier_not_found",
        name="Supplier ID Missing or Not Found",
        description="Validates supplier_id exists and is found in suppliers file",
        severity=_CRITICAL,
        dataset=_HEADERS,
        predicate=Reference(
            "supplier_id", _BUYERS, missing_message="Invoice {invoice_number}: supplier_id is missing",
        ),
        message='Invoice {invoice_number}: supplier_id "{supplier_id}" not found in suppliers file',
        directions=frozenset({Direction.AP}),
        rule_type="reference",
    ),
    Rule(
        check_id="header_line_sum_mismatch",
        name="Header Total vs Line Sum Mismatch",
        description="Validates total_excl_vat equals the sum of line_total_excl_vat",
        severity=_CRITICAL,
        dataset=_HEADERS,
        predicate=Comparison("total_excl_vat", "=", "lines_sum('line_total_excl_vat')"),
        condition="line_count() > 0",
        message="Invoice {invoice_number}: total_excl_vat ({total_excl_vat}) != sum of lines ({right})",
        field="total_excl_vat",
        rule_type="reconciliation",
    ),
    Rule(
        check_id="no_line_items",
        name="Invoice Without Line Items",
        description="Flags invoices that have no lines in the lines file",
        severity=_CRITICAL,
        dataset=_HEADERS,
        predicate=Assertion("line_count() > 0"),
        message="Invoice {invoice_label}: no line items found",
        field="lines",
        expected=">= 1 line",
        observed="0 lines",
        rule_type="assertion",
    ),
    Rule(
        check_id="mixed_vat_rates_no_total",
        name="Mixed VAT Rates Without VAT Total",
        description="Warns when invoice has multiple VAT rates but vat_total is missing or zero",
        severity=_MEDIUM,
        dataset=_HEADERS,
        predicate=Assertion(
            "not (lines_distinct('vat_rate') > 1 and lines_any_positive('line_total_excl_vat') "
            "and not coalesce(vat_total, 0))",
            details=(
                ("rate_count", "lines_distinct('vat_rate')"),
                ("vat_total_shown", "coalesce(vat_total, 0)"),
            ),
        ),
        message="Invoice {invoice_number} has {rate_count} different VAT rates but vat_total is {vat_total_shown}",
        field="vat_total",
        expected="non-zero when multiple VAT rates exist",
        rule_type="assertion",
    ),
)


# =============================================================================
# Enumeration and pattern checks
# =============================================================================

_ENUMERATION_CHECKS = (
    Rule(
        check_id="invalid_vat_rate",
        name="Invalid VAT Rate",
        description="VAT rate must be 0 or 5 percent",
        severity=_HIGH,
        dataset=_LINES,
        predicate=Membership("vat_rate", ("0", "5"), numeric=True),
        message="Line {line_number} of invoice {invoice_label}: VAT rate {vat_rate} is not an allowed UAE rate",
        rule_type="membership",
    ),
    Rule(
        check_id="invalid_invoice_type",
        name="Invalid Invoice Type Code",
        description="Invoice type must be a UNTDID 1001 code used by PINT-AE",
        severity=_HIGH,
        dataset=_HEADERS,
        predicate=Membership("invoice_type", tuple(sorted(INVOICE_TYPE_CODES | CREDIT_NOTE_TYPE_CODES))),
        message='Invoice {invoice_number}: invoice type "{invoice_type}" is not allowed',
        rule_type="membership",
    ),
    Rule(
        check_id="invalid_payment_means",
        name="Invalid Payment Means Code",
        description="Payment means must be a UNTDID 4461 code used by PINT-AE",
        severity=_MEDIUM,
        dataset=_HEADERS,
        predicate=Membership("payment_means_code", tuple(sorted(PAYMENT_MEANS_CODES))),
        message='Invoice {invoice_number}: payment means code "{payment_means_code}" is not allowed',
        rule_type="membership",
    ),
    Rule(
        check_id="invalid_seller_subdivision",
        name="Invalid Seller Subdivision",
        description="Seller subdivision must be a UAE emirate code",
        severity=_MEDIUM,
        dataset=_HEADERS,
        predicate=Membership("seller_subdivision", UAE_SUBDIVISION_CODES),
        message='Invoice {invoice_number}: seller subdivision "{seller_subdivision}" is not a UAE emirate code',
        rule_type="membership",
    ),
    Rule(
        check_id="invalid_buyer_subdivision",
        name="Invalid Buyer Subdivision",
        description="Buyer subdivision must be a UAE emirate code when the buyer is in the UAE",
        severity=_MEDIUM,
        dataset=_BUYERS,
        predicate=Membership("buyer_subdivision", UAE_SUBDIVISION_CODES),
        condition="upper(buyer_country) == 'AE'",
        message='Buyer "{buyer_name}": subdivision "{buyer_subdivision}" is not a UAE emirate code',
        rule_type="membership",
    ),
    Rule(
        check_id="invalid_currency_code",
        name="Invalid Currency Code",
        description="Currency must be a three-letter ISO 4217 code",
        severity=_HIGH,
        dataset=_HEADERS,
        predicate=Pattern("currency", CURRENCY_PATTERN),
        message='Invoice {invoice_number}: currency "{currency}" is not a three-letter code',
        rule_type="pattern",
    ),
    Rule(
        check_id="invalid_seller_trn_format",
        name="Invalid Seller TRN Format",
        description="Seller TRN must be 15 digits",
        severity=_HIGH,
        dataset=_HEADERS,
        predicate=Pattern("seller_trn", TRN_PATTERN),
        message='Invoice {invoice_number}: seller TRN "{seller_trn}" is not 15 digits',
        expected="15-digit number",
        rule_type="pattern",
    ),
    Rule(
        check_id="invalid_issue_date_format",
        name="Invalid Issue Date Format",
        description="Issue date must be YYYY-MM-DD",
        severity=_HIGH,
        dataset=_HEADERS,
        predicate=Pattern("issue_date", DATE_PATTERN),
        message='Invoice {invoice_number}: issue date "{issue_date}" is not YYYY-MM-DD',
        expected="YYYY-MM-DD",
        rule_type="pattern",
    ),
    Rule(
        check_id="invalid_seller_country",
        name="Invalid Seller Country Code",
        description="Seller country must be a two-letter ISO 3166 code",
        severity=_MEDIUM,
        dataset=_HEADERS,
        predicate=Pattern("seller_country", COUNTRY_PATTERN),
        message='Invoice {invoice_number}: seller country "{seller_country}" is not a two-letter code',
        rule_type="pattern",
    ),
    Rule(
        check_id="invalid_buyer_country",
        name="Invalid Buyer Country Code",
        description="Buyer country must be a two-letter ISO 3166 code",
        severity=_MEDIUM,
        dataset=_BUYERS,
        predicate=Pattern("buyer_country", COUNTRY_PATTERN),
        message='Buyer "{buyer_name}": country "{buyer_country}" is not a two-letter code',
        rule_type="pattern",
    ),
)


BUILTIN_CHECKS: tuple[Rule, ...] = (
    _PARTY_CHECKS + _HEADER_CHECKS + _LINE_CHECKS + _CROSS_FILE_CHECKS + _ENUMERATION_CHECKS
)

BUILTIN_CHECKS_BY_ID: dict[str, Rule] = {rule.check_id: rule for rule in BUILTIN_CHECKS}


def get_builtin_check(check_id: str) -> Rule | None:
    return BUILTIN_CHECKS_BY_ID.get(check_id)


def run_all_checks(
    context: DataContext,
    direction: Direction = DEFAULT_DIRECTION,
    tolerance: Decimal = MONETARY_TOLERANCE,
) -> list[CheckResult]:
    """
    Run every built-in check that applies to the direction.

    Returns:
        One CheckResult per applicable check, in registry order
    """
    results = evaluate_rules(BUILTIN_CHECKS, context, direction, tolerance)
    total = sum(len(r.exceptions) for r in results)
    logger.debug(f"Built-in checks ({direction.value}): {len(results)} checks, {total} exception(s)")
    return results
