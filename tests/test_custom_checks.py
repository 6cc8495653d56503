"""
Tests for user-authored custom checks.
"""

from decimal import Decimal

import pytest

from pintae.domain.models import Dataset, Severity
from pintae.services.custom_checks import (
    CheckConfigurationError,
    CustomCheckConfig,
    CustomCheckParameters,
    CustomCheckRegistry,
    compile_custom_check,
    run_custom_check,
    run_custom_checks,
)

from conftest import make_context, make_header


def config(rule_type="missing", scope="header", check_id="CUST-1", active=True, message="", **params):
    return CustomCheckConfig(
        id=check_id,
        name="Custom Check",
        severity=Severity.MEDIUM,
        rule_type=rule_type,
        dataset_scope=scope,
        parameters=CustomCheckParameters(**params),
        message_template=message,
        is_active=active,
    )


class TestCompilation:
    """Config to Rule."""

    def test_missing(self):
        """missing compiles to a presence rule on headers."""
        rule = compile_custom_check(config(field="note"))
        assert rule.check_id == "CUST-1"
        assert rule.dataset is Dataset.HEADERS
        assert rule.rule_type == "custom_missing"

    def test_default_id(self):
        """A config without id gets the default id."""
        assert compile_custom_check(config(check_id=None, field="note")).check_id == "custom"

    def test_message_defaults_to_name(self):
        """Without a template the check name is the message."""
        assert compile_custom_check(config(field="note")).message == "Custom Check"

    def test_math_requires_operands(self):
        """Every missing math parameter is reported."""
        with pytest.raises(CheckConfigurationError) as excinfo:
            compile_custom_check(config("math", left_expression="total_excl_vat"))
        assert excinfo.value.problems == [
            "math rule requires 'operator'",
            "math rule requires 'right_expression'",
        ]

    def test_unknown_operator(self):
        """Operators outside the comparison set are rejected."""
        with pytest.raises(CheckConfigurationError):
            compile_custom_check(config("math", left_expression="a", operator="~", right_expression="b"))

    def test_formula_outside_grammar(self):
        """Formulas are validated at compile time."""
        with pytest.raises(CheckConfigurationError) as excinfo:
            compile_custom_check(config("custom_formula", formula="__import__('os')"))
        assert excinfo.value.check_name == "Custom Check"
        assert all(p.startswith("formula: ") for p in excinfo.value.problems)

    def test_condition_is_validated(self):
        """An invalid condition fails compilation."""
        with pytest.raises(CheckConfigurationError):
            compile_custom_check(config(field="note", condition="values[0]"))

    def test_unknown_type_scope_and_severity(self):
        """All unknown enumerations are reported together."""
        bad = CustomCheckConfig(id="X", name="Bad", severity="Urgent", rule_type="magic", dataset_scope="nowhere")
        with pytest.raises(CheckConfigurationError) as excinfo:
            compile_custom_check(bad)
        assert len(excinfo.value.problems) == 3
        assert "Bad" in str(excinfo.value)


class TestExecution:
    """Compiled custom checks over data."""

    def test_missing_field(self):
        """Blank values are reported with the rendered template."""
        context = make_context(headers=[make_header(), make_header(invoice_id="INV002", payment_means_code="")])
        result = run_custom_check(
            config(field="payment_means_code", message="{invoice_id} has no payment means"), context,
        )
        assert [e.message for e in result.exceptions] == ["INV002 has no payment means"]
        assert result.exceptions[0].severity is Severity.MEDIUM

    def test_duplicate_counts(self):
        """Duplicate checks expose the group size."""
        headers = [make_header(invoice_id=f"INV00{i}") for i in range(1, 4)]
        result = run_custom_check(
            config("duplicate", fields=("invoice_number",), message="{invoice_id}: {count} copies"),
            make_context(headers=headers),
        )
        assert [e.message for e in result.exceptions] == ["INV001: 3 copies", "INV002: 3 copies", "INV003: 3 copies"]
        assert result.exceptions[0].observed_value == "3 duplicates"

    def test_math_with_tolerance(self):
        """Math checks honour their own tolerance."""
        context = make_context(headers=[make_header(amount_due=Decimal("1049"))])
        strict = config("math", left_expression="amount_due", operator="=", right_expression="total_incl_vat",
                        message="{left} != {right}")
        loose = config("math", left_expression="amount_due", operator="=", right_expression="total_incl_vat",
                       tolerance=Decimal("5"))
        assert run_custom_check(strict, context).exceptions[0].message == "1049 != 1050.00"
        assert run_custom_check(loose, context).exceptions == ()

    def test_regex_skips_empty(self):
        """Regex checks ignore blank values."""
        context = make_context(headers=[make_header(note=""), make_header(invoice_id="INV002", note="ref 12")])
        result = run_custom_check(config("regex", field="note", pattern=r"^REF-\d+$"), context)
        assert [e.invoice_id for e in result.exceptions] == ["INV002"]

    def test_cross_file_formula(self):
        """Cross-file checks see the invoice's lines."""
        context = make_context(headers=[make_header(), make_header(invoice_id="INV002")])
        result = run_custom_check(config("custom_formula", scope="cross-file", formula="line_count() >= 1"), context)
        assert [e.invoice_id for e in result.exceptions] == ["INV002"]

    def test_inactive_check_is_skipped(self, clean_context):
        """Inactive configs return no result."""
        assert run_custom_check(config(field="note", active=False), clean_context) is None
        assert run_custom_checks([config(field="note", active=False)], clean_context) == []


class TestRegistry:
    """The custom check registry."""

    def test_register_and_lookup(self):
        """Registered configs can be fetched, listed and removed."""
        registry = CustomCheckRegistry()
        registry.register(config(field="note"))
        registry.register(config(check_id="CUST-2", field="note", active=False))
        assert len(registry) == 2
        assert registry.get("CUST-1").name == "Custom Check"
        assert [c.id for c, _ in registry.active()] == ["CUST-1"]
        assert registry.unregister("CUST-1")
        assert not registry.unregister("CUST-1")
        assert [c.id for c in registry.registered()] == ["CUST-2"]

    def test_invalid_config_never_registered(self):
        """A failing config leaves the registry unchanged."""
        registry = CustomCheckRegistry()
        with pytest.raises(CheckConfigurationError):
            registry.register(config("regex", field="note"))
        assert len(registry) == 0

    def test_configs_without_id_are_kept_apart(self):
        """Each id-less config gets its own generated id."""
        registry = CustomCheckRegistry()
        first = registry.register(config(check_id=None, field="note"))
        second = registry.register(config(check_id=None, field="currency"))
        assert len(registry) == 2
        assert first.check_id != second.check_id
        assert first.check_id.startswith("custom-")
        assert registry.get(second.check_id).parameters.field == "currency"

    def test_same_id_replaces(self):
        """Registering the same id replaces the earlier config."""
        registry = CustomCheckRegistry()
        registry.register(config(field="note"))
        registry.register(config(field="currency"))
        assert len(registry) == 1
        assert registry.get("CUST-1").parameters.field == "currency"
