"""
Restricted expression language for rule conditions and formulas.

Expressions are parsed with Python's ast module and checked against a
fixed node set before they are ever evaluated. Nothing is passed to
eval(); the tree is walked by a small interpreter.

Allowed:
  - Comparisons: ==, !=, <, <=, >, >=, is, is not, in, not in
  - Logical: and, or, not
  - Arithmetic: +, -, *, /
  - Literals: numbers (evaluated as Decimal), strings, booleans, None
  - Field names of the record under evaluation
  - {dotted.path} placeholders, resolved against the record
  - Whitelisted function calls (see BASE_FUNCTIONS and CONTEXT_FUNCTIONS)
  - Conditional: a if b else c

Formulas written in JavaScript style are accepted: &&, ||, ===, !==, !,
null, true and false are rewritten before parsing.

Rejected:
  - attribute access, subscripts, lambdas, comprehensions, any other call
"""

import ast
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

logger = logging.getLogger(__name__)


class ExpressionError(ValueError):
    """An expression is not allowed or could not be evaluated."""


# =============================================================================
# Functions
# =============================================================================

def to_number(value: Any) -> Decimal | None:
    """Coerce to Decimal; thousands separators are ignored. None on failure."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).replace(",", "").strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return None if number.is_nan() else number


def to_date(value: Any) -> date | None:
    """Parse the YYYY-MM-DD prefix of a value. None on failure."""
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coalesce(*values: Any) -> Any:
    for value in values:
        if not is_empty(value):
            return value
    return None


def _abs(value: Any) -> Decimal:
    number = to_number(value)
    if number is None:
        raise ExpressionError(f"abs() needs a number, got {value!r}")
    return abs(number)


def _len(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (str, list, tuple, set, frozenset)):
        return len(value)
    return len(str(value))


def _round(value: Any, places: Any = 0) -> Decimal:
    number = to_number(value)
    if number is None:
        raise ExpressionError(f"round() needs a number, got {value!r}")
    return round(number, int(places))


BASE_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": _abs,
    "len": _len,
    "round": _round,
    "upper": lambda v: "" if v is None else str(v).upper(),
    "lower": lambda v: "" if v is None else str(v).lower(),
    "trim": lambda v: "" if v is None else str(v).strip(),
    "is_empty": is_empty,
    "coalesce": _coalesce,
    "num": to_number,
    "to_date": to_date,
}

# Provided per record by the rule evaluator
CONTEXT_FUNCTIONS: frozenset[str] = frozenset({
    "line_count",
    "lines_sum",
    "lines_distinct",
    "lines_any",
    "lines_any_positive",
    "buyer",
    "header",
    "header_exists",
})

ALLOWED_FUNCTIONS: frozenset[str] = frozenset(BASE_FUNCTIONS) | CONTEXT_FUNCTIONS


# =============================================================================
# Parsing
# =============================================================================

_STRING_LITERAL = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""")
_PLACEHOLDER = re.compile(r"\{\s*([A-Za-z_][\w]*(?:\.[A-Za-z_][\w]*)*)\s*\}")

_JS_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\bnull\b"), "None"),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
)

_COMPARE_OPS = (
    ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.In, ast.NotIn, ast.Is, ast.IsNot,
)
_ARITH_OPS = (ast.Add, ast.Sub, ast.Mult, ast.Div)


@dataclass(frozen=True)
class CompiledExpression:
    """A parsed, validated expression ready for evaluation."""
    source: str
    tree: ast.Expression
    # (variable, dotted path) for each {placeholder}
    placeholders: tuple[tuple[str, str], ...] = ()

    def evaluate(
        self,
        namespace: Mapping[str, Any],
        functions: Mapping[str, Callable[..., Any]] | None = None,
    ) -> Any:
        """
        Evaluate against a record namespace.

        Raises:
            ExpressionError: Unknown name, missing operand, type mismatch
                or division by zero
        """
        values = dict(namespace)
        for variable, path in self.placeholders:
            values[variable] = resolve_path(namespace, path)
        available = dict(BASE_FUNCTIONS)
        if functions:
            available.update(functions)
        return _Interpreter(values, available).visit(self.tree.body)


def _preprocess(source: str) -> tuple[str, tuple[tuple[str, str], ...]]:
    placeholders: list[tuple[str, str]] = []

    def replace_placeholder(match: re.Match[str]) -> str:
        variable = f"__ref{len(placeholders)}"
        placeholders.append((variable, match.group(1)))
        return variable

    parts = _STRING_LITERAL.split(source)
    # Odd indices are string literals and stay untouched
    for i in range(0, len(parts), 2):
        code = _PLACEHOLDER.sub(replace_placeholder, parts[i])
        for pattern, replacement in _JS_REWRITES:
            code = pattern.sub(replacement, code)
        parts[i] = code
    return "".join(parts).strip(), tuple(placeholders)


def validate_expression(source: str) -> list[str]:
    """
    Check an expression against the restricted grammar.

    Returns:
        Problems found; empty when the expression is allowed
    """
    if not source or not source.strip():
        return ["Expression is empty"]
    text, _ = _preprocess(source)
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        return [f"Syntax error: {e.msg}"]
    problems: list[str] = []
    _validate_node(tree.body, problems)
    return problems


def _validate_node(node: ast.AST, problems: list[str]) -> None:
    match node:
        case ast.BoolOp(values=values):
            for value in values:
                _validate_node(value, problems)
        case ast.UnaryOp(op=op, operand=operand):
            if not isinstance(op, (ast.Not, ast.USub, ast.UAdd)):
                problems.append(f"Disallowed unary operator: {type(op).__name__}")
            _validate_node(operand, problems)
        case ast.Compare(left=left, ops=ops, comparators=comparators):
            _validate_node(left, problems)
            for op in ops:
                if not isinstance(op, _COMPARE_OPS):
                    problems.append(f"Disallowed comparison: {type(op).__name__}")
            for comparator in comparators:
                _validate_node(comparator, problems)
        case ast.BinOp(left=left, op=op, right=right):
            if not isinstance(op, _ARITH_OPS):
                problems.append(f"Disallowed binary operator: {type(op).__name__}")
            _validate_node(left, problems)
            _validate_node(right, problems)
        case ast.Call(func=ast.Name(id=name), args=args, keywords=keywords):
            if name not in ALLOWED_FUNCTIONS:
                problems.append(f"Disallowed function call: {name}")
            if keywords:
                problems.append(f"Keyword arguments are not allowed: {name}")
            for arg in args:
                _validate_node(arg, problems)
        case ast.Call():
            problems.append("Disallowed function call")
        case ast.Name():
            pass
        case ast.Constant(value=value):
            if not isinstance(value, (int, float, str, bool, type(None))):
                problems.append(f"Disallowed constant type: {type(value).__name__}")
        case ast.List(elts=elts) | ast.Tuple(elts=elts):
            for elt in elts:
                _validate_node(elt, problems)
        case ast.IfExp(test=test, body=body, orelse=orelse):
            _validate_node(test, problems)
            _validate_node(body, problems)
            _validate_node(orelse, problems)
        case ast.Attribute():
            problems.append("Attribute access is not allowed; use a {field.path} placeholder")
        case _:
            problems.append(f"Disallowed syntax: {type(node).__name__}")


@lru_cache(maxsize=1024)
def compile_expression(source: str) -> CompiledExpression:
    """
    Parse and validate an expression once.

    Raises:
        ExpressionError: When the expression is outside the grammar
    """
    problems = validate_expression(source)
    if problems:
        raise ExpressionError(f"Invalid expression {source!r}: {'; '.join(problems)}")
    text, placeholders = _preprocess(source)
    return CompiledExpression(source, ast.parse(text, mode="eval"), placeholders)


def resolve_path(namespace: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path; any missing step yields None."""
    head, *rest = path.split(".")
    current = namespace.get(head)
    for part in rest:
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        elif hasattr(current, "get"):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def evaluate(
    source: str,
    namespace: Mapping[str, Any],
    functions: Mapping[str, Callable[..., Any]] | None = None,
) -> Any:
    """Compile (cached) and evaluate in one step."""
    return compile_expression(source).evaluate(namespace, functions)


# =============================================================================
# Interpreter
# =============================================================================

def _numeric_pair(left: Any, right: Any) -> tuple[Decimal, Decimal] | None:
    """Both operands as Decimal when at least one is a number and both parse."""
    if isinstance(left, bool) or isinstance(right, bool):
        return None
    if not isinstance(left, Decimal) and not isinstance(right, Decimal):
        return None
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        return None
    return a, b


class _Interpreter:
    def __init__(self, names: Mapping[str, Any], functions: Mapping[str, Callable[..., Any]]):
        self._names = names
        self._functions = functions

    def visit(self, node: ast.AST) -> Any:
        match node:
            case ast.Constant(value=value):
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return Decimal(str(value))
                return value
            case ast.Name(id=name):
                if name not in self._names:
                    raise ExpressionError(f"Unknown name: {name}")
                return self._names[name]
            case ast.BoolOp(op=ast.And(), values=values):
                result: Any = True
                for value in values:
                    result = self.visit(value)
                    if not result:
                        return result
                return result
            case ast.BoolOp(op=ast.Or(), values=values):
                result = False
                for value in values:
                    result = self.visit(value)
                    if result:
                        return result
                return result
            case ast.UnaryOp(op=ast.Not(), operand=operand):
                return not self.visit(operand)
            case ast.UnaryOp(op=op, operand=operand):
                number = to_number(self.visit(operand))
                if number is None:
                    raise ExpressionError("Unary operator needs a number")
                return -number if isinstance(op, ast.USub) else number
            case ast.BinOp(left=left, op=op, right=right):
                return self._arith(op, self.visit(left), self.visit(right))
            case ast.Compare(left=left, ops=ops, comparators=comparators):
                current = self.visit(left)
                for op, comparator in zip(ops, comparators):
                    other = self.visit(comparator)
                    if not self._compare(op, current, other):
                        return False
                    current = other
                return True
            case ast.Call(func=ast.Name(id=name), args=args):
                function = self._functions.get(name)
                if function is None:
                    raise ExpressionError(f"Function not available here: {name}")
                arguments = [self.visit(arg) for arg in args]
                try:
                    return function(*arguments)
                except (TypeError, ValueError, InvalidOperation) as e:
                    if isinstance(e, ExpressionError):
                        raise
                    raise ExpressionError(f"{name}() failed: {e}") from e
            case ast.List(elts=elts) | ast.Tuple(elts=elts):
                return [self.visit(elt) for elt in elts]
            case ast.IfExp(test=test, body=body, orelse=orelse):
                return self.visit(body) if self.visit(test) else self.visit(orelse)
        raise ExpressionError(f"Unsupported node: {type(node).__name__}")

    @staticmethod
    def _arith(op: ast.operator, left: Any, right: Any) -> Any:
        if left is None or right is None:
            raise ExpressionError("Missing operand in arithmetic")
        if isinstance(op, ast.Add) and isinstance(left, str) and isinstance(right, str):
            return left + right
        a, b = to_number(left), to_number(right)
        if a is None or b is None:
            raise ExpressionError(f"Non-numeric operand: {left!r}, {right!r}")
        if isinstance(op, ast.Add):
            return a + b
        if isinstance(op, ast.Sub):
            return a - b
        if isinstance(op, ast.Mult):
            return a * b
        if b == 0:
            raise ExpressionError("Division by zero")
        return a / b

    @staticmethod
    def _compare(op: ast.cmpop, left: Any, right: Any) -> bool:
        match op:
            case ast.Is():
                return left is right
            case ast.IsNot():
                return left is not right
            case ast.In() | ast.NotIn():
                if right is None:
                    raise ExpressionError("Missing operand for 'in'")
                if isinstance(right, list) and not isinstance(left, str):
                    number = to_number(left)
                    found = any(number is not None and to_number(r) == number for r in right)
                else:
                    found = left in right
                return found if isinstance(op, ast.In) else not found
            case ast.Eq() | ast.NotEq():
                pair = _numeric_pair(left, right)
                equal = pair[0] == pair[1] if pair else left == right
                return equal if isinstance(op, ast.Eq) else not equal

        if left is None or right is None:
            raise ExpressionError("Missing operand in comparison")
        pair = _numeric_pair(left, right)
        if pair:
            a, b = pair
        elif type(left) is type(right):
            a, b = left, right
        else:
            raise ExpressionError(f"Cannot order {left!r} and {right!r}")
        try:
            match op:
                case ast.Lt():
                    return a < b
                case ast.LtE():
                    return a <= b
                case ast.Gt():
                    return a > b
                case ast.GtE():
                    return a >= b
        except TypeError as e:
            raise ExpressionError(str(e)) from e
        raise ExpressionError(f"Unsupported comparison: {type(op).__name__}")
