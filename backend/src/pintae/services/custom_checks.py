"""
User-authored custom checks.

A CustomCheckConfig is compiled into the same Rule type the built-in
checks and the check pack use, so custom checks run through the single
rule interpreter. Compilation fails fast: a config that cannot run is
rejected at registration, before any data is seen.

Rule type to predicate:
- missing         -> Presence(field)
- duplicate       -> Uniqueness(fields), message gets {count}
- math            -> Comparison(left, operator, right, tolerance),
                     message gets {left} and {right}
- regex           -> Pattern(field, pattern)
- custom_formula  -> Assertion(formula)
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from pintae.domain.expressions import validate_expression
from pintae.domain.models import DEFAULT_DIRECTION, CheckResult, DataContext, Dataset, Direction, Severity
from pintae.domain.rules import (
    COMPARISON_OPERATORS,
    Assertion,
    Comparison,
    Pattern,
    Predicate,
    Presence,
    Rule,
    Uniqueness,
    evaluate_rule,
)

logger = logging.getLogger(__name__)

DEFAULT_CHECK_ID = "custom"


class CheckConfigurationError(ValueError):
    """A custom check config cannot be compiled."""

    def __init__(self, check_name: str, problems: list[str]):
        self.check_name = check_name
        self.problems = problems
        super().__init__(f"Custom check '{check_name}' is invalid: {'; '.join(problems)}")


class CustomRuleType(str, Enum):
    MISSING = "missing"
    DUPLICATE = "duplicate"
    MATH = "math"
    REGEX = "regex"
    CUSTOM_FORMULA = "custom_formula"


class DatasetScope(str, Enum):
    HEADER = "header"
    LINES = "lines"
    BUYERS = "buyers"
    CROSS_FILE = "cross-file"


# cross-file checks read other datasets through header functions
_SCOPE_DATASETS: dict[DatasetScope, Dataset] = {
    DatasetScope.HEADER: Dataset.HEADERS,
    DatasetScope.LINES: Dataset.LINES,
    DatasetScope.BUYERS: Dataset.BUYERS,
    DatasetScope.CROSS_FILE: Dataset.HEADERS,
}


@dataclass(frozen=True)
class CustomCheckParameters:
    field: str | None = None
    fields: tuple[str, ...] = ()
    left_expression: str | None = None
    operator: str | None = None
    right_expression: str | None = None
    tolerance: Decimal = Decimal("0.01")
    pattern: str | None = None
    formula: str | None = None
    condition: str | None = None


@dataclass(frozen=True)
class CustomCheckConfig:
    """
    A user-authored check.

    message_template placeholders are record fields ({invoice_number}) or
    the values a rule type adds ({count}, {left}, {right}).
    """
    id: str | None
    name: str
    severity: Severity
    rule_type: CustomRuleType | str
    dataset_scope: DatasetScope | str
    parameters: CustomCheckParameters = field(default_factory=CustomCheckParameters)
    message_template: str = ""
    description: str = ""
    is_active: bool = True


# =============================================================================
# Compilation
# =============================================================================

def _check_expression(label: str, source: str | None, problems: list[str]) -> None:
    if not source:
        return
    for problem in validate_expression(source):
        problems.append(f"{label}: {problem}")


def _predicate(rule_type: CustomRuleType, params: CustomCheckParameters, problems: list[str]) -> Predicate | None:
    match rule_type:
        case CustomRuleType.MISSING:
            if not params.field:
                problems.append("missing rule requires 'field'")
                return None
            return Presence((params.field,))

        case CustomRuleType.DUPLICATE:
            if not params.fields:
                problems.append("duplicate rule requires at least one entry in 'fields'")
                return None
            return Uniqueness(tuple(params.fields))

        case CustomRuleType.MATH:
            for name in ("left_expression", "operator", "right_expression"):
                if not getattr(params, name):
                    problems.append(f"math rule requires '{name}'")
            if params.operator and params.operator not in COMPARISON_OPERATORS:
                problems.append(f"Unknown operator '{params.operator}'; use one of = != > < >= <=")
            _check_expression("left_expression", params.left_expression, problems)
            _check_expression("right_expression", params.right_expression, problems)
            if problems:
                return None
            return Comparison(
                params.left_expression,
                params.operator,
                params.right_expression,
                Decimal(str(params.tolerance)),
            )

        case CustomRuleType.REGEX:
            for name in ("field", "pattern"):
                if not getattr(params, name):
                    problems.append(f"regex rule requires '{name}'")
            if problems:
                return None
            return Pattern(params.field, params.pattern)

        case CustomRuleType.CUSTOM_FORMULA:
            if not params.formula:
                problems.append("custom_formula rule requires 'formula'")
                return None
            _check_expression("formula", params.formula, problems)
            return None if problems else Assertion(params.formula)

    return None


def _observed_template(rule_type: CustomRuleType) -> str | None:
    return "{count} duplicates" if rule_type == CustomRuleType.DUPLICATE else None


def compile_custom_check(config: CustomCheckConfig) -> Rule:
    """
    Compile a custom check config into a Rule.

    Args:
        config: The check to compile; inactive configs compile too

    Returns:
        A Rule carrying the config's id (or "custom"), name and severity

    Raises:
        CheckConfigurationError: Missing parameters, unknown rule type or
            scope, unknown operator, or an expression outside the grammar
    """
    problems: list[str] = []

    try:
        rule_type = CustomRuleType(config.rule_type)
    except ValueError:
        rule_type = None
        problems.append(f"Unknown rule type '{config.rule_type}'")
    try:
        dataset = _SCOPE_DATASETS[DatasetScope(config.dataset_scope)]
    except ValueError:
        dataset = None
        problems.append(f"Unknown dataset scope '{config.dataset_scope}'")
    try:
        severity = Severity(config.severity)
    except ValueError:
        severity = None
        problems.append(f"Unknown severity '{config.severity}'")

    params = config.parameters
    predicate = _predicate(rule_type, params, problems) if rule_type else None
    _check_expression("condition", params.condition, problems)

    if problems or predicate is None or dataset is None or severity is None:
        raise CheckConfigurationError(config.name, problems)

    field_name = params.left_expression if rule_type == CustomRuleType.MATH else params.field
    if rule_type == CustomRuleType.DUPLICATE:
        field_name = ", ".join(params.fields)

    return Rule(
        check_id=config.id or DEFAULT_CHECK_ID,
        name=config.name,
        severity=severity,
        dataset=dataset,
        predicate=predicate,
        message=config.message_template or config.name,
        condition=params.condition,
        field=field_name,
        observed=_observed_template(rule_type),
        rule_type=f"custom_{rule_type.value}",
        description=config.description,
        enabled=config.is_active,
        tolerance=Decimal(str(params.tolerance)) if rule_type == CustomRuleType.MATH else None,
    )


# =============================================================================
# Registry
# =============================================================================

class CustomCheckRegistry:
    """
    Compiled custom checks, keyed by check id.

    Registration compiles the config, so an invalid config never enters the
    registry. Inactive configs are kept but excluded from active().

    Example:
        registry = CustomCheckRegistry()
        registry.register(config)
        results = [evaluate_rule(rule, context) for _, rule in registry.active()]
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._checks: dict[str, tuple[CustomCheckConfig, Rule]] = {}

    def register(self, config: CustomCheckConfig) -> Rule:
        """
        Compile and store a config, replacing any with the same id.

        A config without an id is stored under a generated one, so two
        id-less configs never replace each other.
        """
        if not config.id:
            config = replace(config, id=f"{DEFAULT_CHECK_ID}-{uuid4().hex[:12]}")
        rule = compile_custom_check(config)
        with self._lock:
            self._checks[rule.check_id] = (config, rule)
        logger.info(f"Registered custom check {rule.check_id} ({config.name}), active={config.is_active}")
        return rule

    def registered(self) -> list[CustomCheckConfig]:
        with self._lock:
            return [config for config, _ in self._checks.values()]

    def active(self) -> list[tuple[CustomCheckConfig, Rule]]:
        with self._lock:
            return [(config, rule) for config, rule in self._checks.values() if config.is_active]

    def get(self, check_id: str) -> CustomCheckConfig | None:
        with self._lock:
            entry = self._checks.get(check_id)
        return entry[0] if entry else None

    def unregister(self, check_id: str) -> bool:
        with self._lock:
            return self._checks.pop(check_id, None) is not None

    def __len__(self) -> int:
        return len(self._checks)


# =============================================================================
# Execution
# =============================================================================

def run_custom_check(
    config: CustomCheckConfig,
    context: DataContext,
    direction: Direction = DEFAULT_DIRECTION,
) -> CheckResult | None:
    """
    Compile and run one config.

    Returns:
        The CheckResult, or None when the config is inactive

    Raises:
        CheckConfigurationError: When the config does not compile
    """
    rule = compile_custom_check(config)
    if not config.is_active:
        logger.warning(f"Custom check {rule.check_id} ({config.name}) is inactive, skipping")
        return None
    return evaluate_rule(rule, context, direction)


def run_custom_checks(
    configs: Iterable[CustomCheckConfig],
    context: DataContext,
    direction: Direction = DEFAULT_DIRECTION,
) -> list[CheckResult]:
    """Run every active config in order; inactive ones are skipped."""
    results = []
    for config in configs:
        result = run_custom_check(config, context, direction)
        if result is not None:
            results.append(result)
    return results
