"""
Tests for the restricted expression language.
"""

from decimal import Decimal

import pytest

from pintae.domain.expressions import (
    ExpressionError,
    compile_expression,
    evaluate,
    to_date,
    to_number,
    validate_expression,
)


class TestCoercion:
    """Number and date coercion."""

    def test_to_number(self):
        """Strings, ints and floats become Decimal; garbage becomes None."""
        assert to_number("1,050.25") == Decimal("1050.25")
        assert to_number(5) == Decimal("5")
        assert to_number(" ") is None
        assert to_number("abc") is None
        assert to_number("NaN") is None
        assert to_number(True) is None

    def test_to_date(self):
        """The YYYY-MM-DD prefix is parsed."""
        assert to_date("2025-01-15T10:00:00").isoformat() == "2025-01-15"
        assert to_date("15/01/2025") is None


class TestValidation:
    """Grammar enforcement."""

    @pytest.mark.parametrize("source", [
        "__import__('os')",
        "total.real",
        "values[0]",
        "[x for x in lines]",
        "lambda: 1",
        "open('f')",
    ])
    def test_rejects_disallowed_syntax(self, source):
        """Calls, attributes, subscripts and comprehensions are rejected."""
        assert validate_expression(source)

    def test_rejects_empty(self):
        """An empty expression is reported."""
        assert validate_expression("  ") == ["Expression is empty"]

    def test_syntax_error_is_reported(self):
        """Unparseable text yields a syntax problem."""
        assert validate_expression("a ==")[0].startswith("Syntax error")

    def test_compile_raises(self):
        """compile_expression raises ExpressionError on invalid input."""
        with pytest.raises(ExpressionError):
            compile_expression("values[0]")

    def test_accepts_whitelisted_calls(self):
        """Base and context functions are allowed."""
        assert validate_expression("abs(total_excl_vat - lines_sum('line_total_excl_vat')) <= 0.01") == []


class TestEvaluation:
    """Evaluation semantics."""

    def test_arithmetic_is_decimal(self):
        """Number literals evaluate as Decimal, so 0.1 + 0.2 == 0.3."""
        assert evaluate("0.1 + 0.2 == 0.3", {}) is True

    def test_javascript_operators(self):
        """&&, ||, ===, ! and null are rewritten."""
        namespace = {"a": Decimal("1"), "b": None}
        assert evaluate("a === 1 && b === null", namespace) is True
        assert evaluate("!(a > 2) || false", namespace) is True

    def test_strings_keep_operators(self):
        """Operators inside string literals are not rewritten."""
        assert evaluate("note == 'a && b'", {"note": "a && b"}) is True

    def test_placeholders_follow_paths(self):
        """{dotted.path} placeholders read nested values."""
        namespace = {"header": {"currency": "USD"}}
        assert evaluate("{header.currency} == 'USD'", namespace) is True
        assert evaluate("{header.missing} is None", namespace) is True

    def test_in_list_compares_numbers(self):
        """Membership in a literal list is numeric for numbers."""
        assert evaluate("rate in [0, 5]", {"rate": Decimal("5.00")}) is True

    def test_unknown_name_raises(self):
        """Unknown names are evaluation errors."""
        with pytest.raises(ExpressionError):
            evaluate("missing > 1", {})

    def test_missing_operand_raises(self):
        """Arithmetic on None raises."""
        with pytest.raises(ExpressionError):
            evaluate("a + 1", {"a": None})

    def test_division_by_zero_raises(self):
        """Division by zero raises."""
        with pytest.raises(ExpressionError):
            evaluate("1 / a", {"a": Decimal("0")})

    def test_context_function_required(self):
        """Context functions must be supplied by the caller."""
        with pytest.raises(ExpressionError):
            evaluate("line_count() > 0", {})
        assert evaluate("line_count() > 0", {}, {"line_count": lambda: 2}) is True

    def test_base_functions(self):
        """Base helpers are always available."""
        namespace = {"name": "  acme ", "value": None}
        assert evaluate("upper(trim(name)) == 'ACME'", namespace) is True
        assert evaluate("coalesce(value, 7) == 7", namespace) is True
        assert evaluate("is_empty(value)", namespace) is True
