"""
Declarative rules and the single rule interpreter.

Every check in the system, built-in, check pack or user-authored, is a
Rule: a predicate drawn from a small closed set plus the metadata needed
to turn a violation into a ComplianceException.

Design Decisions:
- Predicates are frozen dataclasses dispatched with one match statement;
  adding a rule never adds interpreter code
- Rules are flat: no rule reads another rule's output, so any subset can
  run in any order or in parallel
- Exceptions within one rule follow dataset row order
- Failed operands (unparseable numbers, missing values in a comparison,
  expression errors) skip the record; structural problems are reported by
  presence rules, never twice
- Condition failures follow the rule's ConditionFallback
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Callable

from .conformance import MONETARY_TOLERANCE, is_code_in_codelist
from .expressions import ExpressionError, compile_expression, is_empty, resolve_path, to_number
from .models import (
    DEFAULT_DIRECTION,
    Buyer,
    CheckResult,
    ComplianceException,
    DataContext,
    Dataset,
    Direction,
    InvoiceHeader,
    InvoiceLine,
    Severity,
)

logger = logging.getLogger(__name__)

BOTH_DIRECTIONS: frozenset[Direction] = frozenset(Direction)
UNDEFINED = "(undefined)"
EMPTY = "(empty)"


class ConditionFallback(str, Enum):
    """What to do with a record when a rule's condition cannot be evaluated."""
    APPLY = "apply"
    SKIP = "skip"


# =============================================================================
# Predicates
# =============================================================================

@dataclass(frozen=True)
class Presence:
    """Each field must be present and non-blank."""
    fields: tuple[str, ...]


@dataclass(frozen=True)
class Pattern:
    """A non-empty value must match the regex (search semantics)."""
    field: str
    pattern: str


@dataclass(frozen=True)
class Membership:
    """A non-empty value must be in `allowed` or in the named code list."""
    field: str
    allowed: tuple[str, ...] = ()
    codelist: str | None = None
    numeric: bool = False


@dataclass(frozen=True)
class Comparison:
    """
    left <operator> right, with expressions on both sides.

    `=` passes within tolerance and `!=` passes outside it. A side that
    evaluates to None, or fails to evaluate, skips the record.
    """
    left: str
    operator: str
    right: str
    tolerance: Decimal | None = None


@dataclass(frozen=True)
class Reference:
    """The field must name an existing record in the target dataset."""
    field: str
    target: Dataset
    missing_message: str | None = None


@dataclass(frozen=True)
class Precision:
    """A numeric value may carry at most max_decimals significant decimals."""
    field: str
    max_decimals: int


@dataclass(frozen=True)
class Uniqueness:
    """The combination of fields must be unique within the dataset."""
    fields: tuple[str, ...]


@dataclass(frozen=True)
class Assertion:
    """
    An expression that must be truthy.

    `details` are named expressions evaluated only on failure and exposed
    to the message templates.
    """
    expression: str
    details: tuple[tuple[str, str], ...] = ()


Predicate = Presence | Pattern | Membership | Comparison | Reference | Precision | Uniqueness | Assertion

COMPARISON_OPERATORS: frozenset[str] = frozenset({"=", "!=", ">", "<", ">=", "<="})


@dataclass(frozen=True)
class Rule:
    """
    One declarative check.

    `message`, `expected` and `observed` are templates: `{name}` is
    replaced by the record field or violation value of that name, and
    dotted names such as `{header.invoice_number}` follow references.
    """
    check_id: str
    name: str
    severity: Severity
    dataset: Dataset
    predicate: Predicate
    message: str
    condition: str | None = None
    condition_fallback: ConditionFallback = ConditionFallback.APPLY
    directions: frozenset[Direction] = BOTH_DIRECTIONS
    field: str | None = None
    expected: str | None = None
    observed: str | None = None
    rule_type: str | None = None
    pint_reference_terms: tuple[str, ...] = ()
    description: str = ""
    suggested_fix: str | None = None
    owner_team: str | None = None
    use_case: str | None = None
    enabled: bool = True
    tolerance: Decimal | None = None

    def applies_to(self, direction: Direction) -> bool:
        return direction in self.directions


# =============================================================================
# Record scopes
# =============================================================================

def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def _distinct_key(value: Any) -> Any:
    # 5 and 5.00 are the same rate
    number = to_number(value)
    if number is not None and number.is_finite():
        return number.normalize()
    return format_value(value)


@dataclass
class _Scope:
    """A record plus what its expressions may reach."""
    record: Any
    values: dict[str, Any]
    functions: dict[str, Callable[..., Any]] = field(default_factory=dict)
    header: InvoiceHeader | None = None


def _header_scope(header: InvoiceHeader, context: DataContext) -> _Scope:
    lines = context.lines_for(header.invoice_id)
    buyer = context.find_buyer(header.buyer_id)

    def lines_sum(name: str) -> Decimal:
        return sum((to_number(line.get(name)) or Decimal(0) for line in lines), Decimal(0))

    def lines_distinct(name: str) -> int:
        return len({_distinct_key(line.get(name)) for line in lines})

    def lines_any(*names: str) -> bool:
        return any(all(not is_empty(line.get(n)) for n in names) for line in lines)

    def lines_any_positive(name: str) -> bool:
        return any((to_number(line.get(name)) or Decimal(0)) > 0 for line in lines)

    def buyer_field(name: str) -> Any:
        return buyer.get(name) if buyer is not None else None

    values = header.as_dict()
    values.update(invoice_label=header.label, buyer=buyer, lines=lines)
    functions = {
        "line_count": lambda: len(lines),
        "lines_sum": lines_sum,
        "lines_distinct": lines_distinct,
        "lines_any": lines_any,
        "lines_any_positive": lines_any_positive,
        "buyer": buyer_field,
    }
    return _Scope(header, values, functions, header)


def _line_scope(line: InvoiceLine, context: DataContext) -> _Scope:
    header = context.find_header(line.invoice_id)
    values = line.as_dict()
    values.update(
        header=header,
        invoice_number=header.invoice_number if header else None,
        invoice_label=header.label if header else line.invoice_id,
    )
    functions = {
        "header": lambda name: header.get(name) if header is not None else None,
        "header_exists": lambda: header is not None,
    }
    return _Scope(line, values, functions, header)


def _buyer_scope(buyer: Buyer, context: DataContext) -> _Scope:
    return _Scope(buyer, buyer.as_dict())


_SCOPE_BUILDERS = {
    Dataset.HEADERS: _header_scope,
    Dataset.LINES: _line_scope,
    Dataset.BUYERS: _buyer_scope,
}


# =============================================================================
# Messages
# =============================================================================

_TEMPLATE_FIELD = re.compile(r"\{\s*([A-Za-z_][\w.]*)\s*\}")


def render_message(template: str, values: Mapping[str, Any]) -> str:
    """Fill `{name}` placeholders; unresolvable names become (undefined)."""
    def replace(match: re.Match[str]) -> str:
        path = match.group(1)
        head = path.split(".", 1)[0]
        if head not in values:
            return UNDEFINED
        value = resolve_path(values, path)
        if value is None and "." in path:
            return UNDEFINED
        return format_value(value)

    return _TEMPLATE_FIELD.sub(replace, template)


# =============================================================================
# Evaluation
# =============================================================================

@dataclass(frozen=True)
class _Violation:
    field_name: str | None
    observed: str | None
    expected: str | None
    values: Mapping[str, Any] = field(default_factory=dict)
    message: str | None = None


@lru_cache(maxsize=256)
def _compiled_pattern(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning(f"Invalid pattern {pattern!r}, treating as non-matching: {e}")
        return None


def _decimal_places(value: Decimal) -> int:
    exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


def _evaluate(expression: str, scope: _Scope) -> Any:
    return compile_expression(expression).evaluate(scope.values, scope.functions)


def _compare(operator: str, left: Decimal, right: Decimal, tolerance: Decimal) -> bool:
    match operator:
        case "=":
            return abs(left - right) <= tolerance
        case "!=":
            return abs(left - right) > tolerance
        case ">":
            return left > right
        case "<":
            return left < right
        case ">=":
            return left >= right
        case "<=":
            return left <= right
    raise ValueError(f"Unknown comparison operator: {operator}")


def _record_violations(
    rule: Rule,
    scope: _Scope,
    context: DataContext,
    tolerance: Decimal,
) -> list[_Violation]:
    record = scope.record

    match rule.predicate:
        case Presence(fields=fields):
            return [
                _Violation(name, EMPTY, "Required value", {"field": name, "value": record.get(name)})
                for name in fields
                if is_empty(record.get(name))
            ]

        case Pattern(field=name, pattern=pattern):
            value = record.get(name)
            if is_empty(value):
                return []
            compiled = _compiled_pattern(pattern)
            if compiled is None or compiled.search(format_value(value)):
                return []
            return [_Violation(
                name, format_value(value), f"Match pattern: {pattern}",
                {"field": name, "value": value, "pattern": pattern},
            )]

        case Membership(field=name, allowed=allowed, codelist=codelist, numeric=numeric):
            value = record.get(name)
            if is_empty(value):
                return []
            if codelist:
                ok = is_code_in_codelist(codelist, format_value(value))
                expected = f"Value from codelist: {codelist}"
            elif numeric:
                number = to_number(value)
                ok = number is not None and any(number == to_number(a) for a in allowed)
                expected = ", ".join(allowed)
            else:
                ok = format_value(value).strip() in allowed
                expected = ", ".join(allowed)
            if ok:
                return []
            return [_Violation(
                name, format_value(value), expected,
                {"field": name, "value": value, "allowed": ", ".join(allowed), "codelist": codelist},
            )]

        case Comparison(left=left_expr, operator=operator, right=right_expr):
            try:
                left = to_number(_evaluate(left_expr, scope))
                right = to_number(_evaluate(right_expr, scope))
            except ExpressionError as e:
                logger.debug(f"{rule.check_id}: comparison skipped: {e}")
                return []
            if left is None or right is None:
                return []
            if _compare(operator, left, right, tolerance):
                return []
            return [_Violation(
                rule.field, format_value(left), format_value(right),
                {"left": left, "right": right, "difference": abs(left - right), "operator": operator},
            )]

        case Reference(field=name, target=target, missing_message=missing_message):
            value = record.get(name)
            if is_empty(value):
                return [_Violation(name, EMPTY, None, {"field": name, "value": value}, missing_message)]
            found = (
                context.find_buyer(value) if target == Dataset.BUYERS
                else context.find_header(value) if target == Dataset.HEADERS
                else None
            )
            if found is not None:
                return []
            return [_Violation(name, format_value(value), None, {"field": name, "value": value})]

        case Precision(field=name, max_decimals=max_decimals):
            number = to_number(record.get(name))
            if number is None:
                return []
            places = _decimal_places(number)
            if places <= max_decimals:
                return []
            return [_Violation(
                name, f"{format_value(number)} ({places} decimals)", f"Max {max_decimals} decimals",
                {"field": name, "value": number, "decimals": places, "max_decimals": max_decimals},
            )]

        case Assertion(expression=expression, details=details):
            try:
                holds = _evaluate(expression, scope)
            except ExpressionError as e:
                logger.debug(f"{rule.check_id}: assertion skipped: {e}")
                return []
            if holds:
                return []
            observed = format_value(record.get(rule.field)) if rule.field else None
            values: dict[str, Any] = {"field": rule.field}
            for name, detail in details:
                try:
                    values[name] = _evaluate(detail, scope)
                except ExpressionError as e:
                    logger.debug(f"{rule.check_id}: detail {name} unavailable: {e}")
            return [_Violation(rule.field, observed, None, values)]

    return []


def _duplicate_violations(
    predicate: Uniqueness,
    scopes: list[tuple[int, _Scope]],
) -> dict[int, _Violation]:
    groups: dict[tuple[str, ...], list[int]] = {}
    for index, scope in scopes:
        key = tuple(format_value(scope.record.get(name)) for name in predicate.fields)
        groups.setdefault(key, []).append(index)

    field_name = predicate.fields[-1]
    violations: dict[int, _Violation] = {}
    for key, members in groups.items():
        if len(members) < 2:
            continue
        for index in members:
            violations[index] = _Violation(
                field_name,
                f"{len(members)} occurrences",
                "Unique value",
                {"count": len(members), "key": "|".join(key), "field": field_name},
            )
    return violations


def _condition_holds(rule: Rule, scope: _Scope) -> bool:
    if not rule.condition:
        return True
    try:
        return bool(_evaluate(rule.condition, scope))
    except ExpressionError as e:
        logger.debug(f"{rule.check_id}: condition failed ({e}), fallback {rule.condition_fallback.value}")
        return rule.condition_fallback is ConditionFallback.APPLY


def _build_exception(
    rule: Rule,
    scope: _Scope,
    violation: _Violation,
    row_number: int,
    direction: Direction,
) -> ComplianceException:
    values = dict(scope.values)
    values.update(violation.values)
    values["expected_value"] = violation.expected
    values["observed_value"] = violation.observed

    template = violation.message or rule.message
    expected = render_message(rule.expected, values) if rule.expected else violation.expected
    observed = render_message(rule.observed, values) if rule.observed else violation.observed

    record = scope.record
    header = scope.header
    line_number = record.get("line_number") if rule.dataset == Dataset.LINES else None

    return ComplianceException(
        check_id=rule.check_id,
        check_name=rule.name,
        severity=rule.severity,
        message=render_message(template, values),
        field_name=rule.field or violation.field_name,
        invoice_id=record.get("invoice_id") or None,
        invoice_number=header.invoice_number if header else None,
        seller_trn=header.seller_trn if header else None,
        buyer_id=record.get("buyer_id") or (header.buyer_id if header else None) or None,
        line_id=record.get("line_id") if rule.dataset == Dataset.LINES else None,
        line_number=line_number,
        observed_value=observed,
        expected_value=expected,
        direction=direction,
        dataset=rule.dataset,
        row_number=row_number,
        rule_id=rule.check_id,
        rule_type=rule.rule_type,
        pint_reference_terms=rule.pint_reference_terms,
        suggested_fix=rule.suggested_fix,
        owner_team=rule.owner_team,
    )


def evaluate_rule(
    rule: Rule,
    context: DataContext,
    direction: Direction = DEFAULT_DIRECTION,
    default_tolerance: Decimal = MONETARY_TOLERANCE,
) -> CheckResult:
    """
    Evaluate one rule over its dataset.

    Args:
        rule: Rule to evaluate
        context: Indexed dataset snapshot
        direction: Direction stamped on the exceptions; rules that do not
            apply to it return an empty result
        default_tolerance: Used when neither the rule nor its comparison
            carries a tolerance

    Returns:
        CheckResult with exceptions in dataset row order
    """
    records = context.records(rule.dataset)
    if not rule.applies_to(direction):
        return CheckResult(rule.check_id, rule.name, rule.severity, (), 0)

    tolerance = default_tolerance
    if isinstance(rule.predicate, Comparison) and rule.predicate.tolerance is not None:
        tolerance = rule.predicate.tolerance
    if rule.tolerance is not None:
        tolerance = rule.tolerance

    build_scope = _SCOPE_BUILDERS[rule.dataset]
    scopes = [
        (index, scope)
        for index, scope in ((i, build_scope(r, context)) for i, r in enumerate(records))
        if _condition_holds(rule, scope)
    ]

    exceptions: list[ComplianceException] = []
    if isinstance(rule.predicate, Uniqueness):
        duplicates = _duplicate_violations(rule.predicate, scopes)
        for index, scope in scopes:
            if index in duplicates:
                exceptions.append(_build_exception(rule, scope, duplicates[index], index + 1, direction))
    else:
        for index, scope in scopes:
            for violation in _record_violations(rule, scope, context, tolerance):
                exceptions.append(_build_exception(rule, scope, violation, index + 1, direction))

    if exceptions:
        logger.debug(f"{rule.check_id}: {len(exceptions)} exception(s) over {len(records)} record(s)")

    return CheckResult(
        check_id=rule.check_id,
        check_name=rule.name,
        severity=rule.severity,
        exceptions=tuple(exceptions),
        records_checked=len(records),
    )


def evaluate_rules(
    rules: Iterable[Rule],
    context: DataContext,
    direction: Direction = DEFAULT_DIRECTION,
    default_tolerance: Decimal = MONETARY_TOLERANCE,
) -> list[CheckResult]:
    """Evaluate the rules that apply to the direction, in order."""
    return [
        evaluate_rule(rule, context, direction, default_tolerance)
        for rule in rules
        if rule.applies_to(direction)
    ]
