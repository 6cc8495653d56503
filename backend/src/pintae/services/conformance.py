"""
Conformance reporting over the DR registry.

Joins the registry, rule traceability, controls and column population
into one traceability matrix with a gap summary, decides whether a check
run may start, and validates that the static registries agree with each
other.

Design Decisions:
- Coverage status has a fixed precedence: not in template, then no rule,
  then no control, then covered
- Thresholds default to the conformance constants and can be overridden
  per call from settings
- References to meta/group terms outside the registry are warnings, any
  other unknown reference is an error
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pintae.domain.conformance import (
    MANDATORY_MAPPING_COVERAGE_THRESHOLD,
    MANDATORY_POPULATION_THRESHOLD,
    POPULATION_WARNING_THRESHOLD,
    SPEC_VERSION_LABEL,
)
from pintae.domain.models import CheckResult
from pintae.registry.controls import get_controls_for_dr, get_controls_registry
from pintae.registry.dr_registry import get_dr_registry
from pintae.registry.traceability import get_rule_traceability, get_rules_for_dr
from pintae.services.coverage import DatasetPopulation, get_column_population_pct

logger = logging.getLogger(__name__)

# Meta, group and derived terms the pack references outside the registry
NON_BLOCKING_RULE_REFERENCES: frozenset[str] = frozenset({
    "IBG-23",
    "IBG-25",
    "IBT-006",
    "IBT-007",
    "BTUAE-001",
    "BTUAE-002",
    "BTUAE-003",
    "BTUAE-004",
    "BTUAE-005",
})


# =============================================================================
# Traceability matrix
# =============================================================================

class CoverageStatus(str, Enum):
    NOT_IN_TEMPLATE = "NOT_IN_TEMPLATE"
    NO_RULE = "NO_RULE"
    NO_CONTROL = "NO_CONTROL"
    COVERED = "COVERED"


def compute_coverage_status(in_template: bool, rule_count: int, control_count: int) -> CoverageStatus:
    if not in_template:
        return CoverageStatus.NOT_IN_TEMPLATE
    if rule_count == 0:
        return CoverageStatus.NO_RULE
    if control_count == 0:
        return CoverageStatus.NO_CONTROL
    return CoverageStatus.COVERED


@dataclass(frozen=True)
class DRRunCounts:
    """Records that passed and failed the rules touching one DR."""
    passed: int
    failed: int


@dataclass(frozen=True)
class TraceabilityRow:
    dr_id: str
    business_term: str
    mandatory: bool
    vat_law_status: str
    is_new_pint_field: bool
    dataset: str | None
    columns: tuple[str, ...]
    in_template: bool
    ingestible: bool
    population_pct: float | None
    rule_ids: tuple[str, ...]
    rule_names: tuple[str, ...]
    control_ids: tuple[str, ...]
    control_names: tuple[str, ...]
    coverage_status: CoverageStatus
    last_run_pass_rate: float | None
    category: str
    data_responsibility: str
    exception_count: int


@dataclass(frozen=True)
class GapsSummary:
    mandatory_not_in_template: int
    mandatory_not_ingestible: int
    mandatory_unmapped: int
    mandatory_low_population: int
    drs_with_no_rules: int
    drs_with_no_controls: int
    drs_covered: int
    total_drs: int
    mandatory_drs: int
    population_threshold: float


@dataclass(frozen=True)
class ConformanceResult:
    rows: tuple[TraceabilityRow, ...]
    gaps: GapsSummary
    spec_version: str = SPEC_VERSION_LABEL


def count_exceptions_by_dr(results: Iterable[CheckResult]) -> dict[str, DRRunCounts]:
    """
    Fold pack check results into pass/fail counts per DR.

    Each result counts towards every DR its rule affects. Results whose
    check id has no traceability entry are ignored.
    """
    affected = {entry.rule_id: entry.affected_dr_ids for entry in get_rule_traceability()}
    totals: dict[str, list[int]] = {}
    for result in results:
        for dr_id in affected.get(result.check_id, ()):
            counts = totals.setdefault(dr_id, [0, 0])
            counts[0] += result.passed
            counts[1] += result.failed
    return {dr_id: DRRunCounts(passed, failed) for dr_id, (passed, failed) in totals.items()}


def compute_traceability_matrix(
    populations: Iterable[DatasetPopulation] = (),
    exception_counts: Mapping[str, DRRunCounts] | None = None,
    population_threshold: float = POPULATION_WARNING_THRESHOLD,
) -> ConformanceResult:
    """
    One row per registry DR with its rules, controls, population and last
    run outcome, plus a gap summary.

    Args:
        populations: Column population of the uploaded datasets; a DR's
            population is the mean over its profiled columns
        exception_counts: Pass/fail counts per DR from the last run
        population_threshold: Mandatory DRs below it count as low population

    Returns:
        ConformanceResult with rows in registry order
    """
    population_list = list(populations)
    registry = get_dr_registry()
    rows = []

    not_in_template = not_ingestible = low_population = 0
    no_rules = no_controls = covered = 0

    for entry in registry:
        rules = get_rules_for_dr(entry.dr_id)
        controls = get_controls_for_dr(entry.dr_id)

        population_pct = None
        if entry.in_template and entry.dataset is not None and population_list:
            pcts = [
                pct for pct in (
                    get_column_population_pct(population_list, entry.dataset, column)
                    for column in entry.columns
                )
                if pct is not None
            ]
            if pcts:
                population_pct = sum(pcts) / len(pcts)

        pass_rate = None
        exception_count = 0
        counts = exception_counts.get(entry.dr_id) if exception_counts else None
        if counts is not None:
            total = counts.passed + counts.failed
            pass_rate = counts.passed / total * 100 if total > 0 else 100.0
            exception_count = counts.failed

        status = compute_coverage_status(entry.in_template, len(rules), len(controls))

        if entry.is_mandatory:
            if not entry.in_template:
                not_in_template += 1
            elif not entry.ingestible:
                not_ingestible += 1
            if population_pct is not None and population_pct < population_threshold:
                low_population += 1
        if not rules:
            no_rules += 1
        if not controls:
            no_controls += 1
        if status == CoverageStatus.COVERED:
            covered += 1

        rows.append(TraceabilityRow(
            dr_id=entry.dr_id,
            business_term=entry.business_term,
            mandatory=entry.is_mandatory,
            vat_law_status=entry.vat_law_status,
            is_new_pint_field=entry.vat_law_status.lower() == "new",
            dataset=entry.dataset.value if entry.dataset else None,
            columns=entry.columns,
            in_template=entry.in_template,
            ingestible=entry.ingestible,
            population_pct=population_pct,
            rule_ids=tuple(rule.rule_id for rule in rules),
            rule_names=tuple(rule.rule_name for rule in rules),
            control_ids=tuple(control.control_id for control in controls),
            control_names=tuple(control.control_name for control in controls),
            coverage_status=status,
            last_run_pass_rate=pass_rate,
            category=entry.category,
            data_responsibility=entry.data_responsibility,
            exception_count=exception_count,
        ))

    gaps = GapsSummary(
        mandatory_not_in_template=not_in_template,
        mandatory_not_ingestible=not_ingestible,
        mandatory_unmapped=0,
        mandatory_low_population=low_population,
        drs_with_no_rules=no_rules,
        drs_with_no_controls=no_controls,
        drs_covered=covered,
        total_drs=len(registry),
        mandatory_drs=sum(1 for entry in registry if entry.is_mandatory),
        population_threshold=population_threshold,
    )
    logger.debug(f"Traceability matrix: {covered}/{len(registry)} DRs covered")
    return ConformanceResult(tuple(rows), gaps)


# =============================================================================
# Run readiness
# =============================================================================

@dataclass(frozen=True)
class ReadinessResult:
    can_run: bool
    reasons: tuple[str, ...] = ()


def check_run_readiness(
    has_mapping_profile: bool,
    mandatory_mapping_coverage: float,
    mandatory_population_pct: float | None,
    mapping_threshold: float = MANDATORY_MAPPING_COVERAGE_THRESHOLD,
    population_threshold: float = MANDATORY_POPULATION_THRESHOLD,
) -> ReadinessResult:
    """
    Decide whether a check run may start.

    A population of None means no data has been profiled yet and does not
    block the run.
    """
    reasons = []
    if not has_mapping_profile:
        reasons.append("No active mapping profile found.")
    if mandatory_mapping_coverage < mapping_threshold:
        reasons.append(
            f"Mandatory DR mapping coverage is {mandatory_mapping_coverage:.0f}% "
            f"(required: {mapping_threshold:g}%)."
        )
    if mandatory_population_pct is not None and mandatory_population_pct < population_threshold:
        reasons.append(
            f"Mandatory DR population coverage is {mandatory_population_pct:.0f}% "
            f"(required: {population_threshold:g}%)."
        )
    return ReadinessResult(can_run=not reasons, reasons=tuple(reasons))


# =============================================================================
# Registry consistency
# =============================================================================

class ConsistencyLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class ConsistencyIssue:
    level: ConsistencyLevel
    category: str
    message: str
    affected_ids: tuple[str, ...]


@dataclass(frozen=True)
class ConsistencyReport:
    issues: tuple[ConsistencyIssue, ...]
    passed: int
    failed: int
    timestamp: datetime

    @property
    def has_errors(self) -> bool:
        return any(issue.level == ConsistencyLevel.ERROR for issue in self.issues)


def run_consistency_checks() -> ConsistencyReport:
    """
    Check that the registry, the pack's traceability and the controls
    agree with each other.

    Each check that finds nothing counts as passed; each issue counts as
    failed.
    """
    registry = get_dr_registry()
    rules = get_rule_traceability()
    controls = get_controls_registry()

    all_dr_ids = {entry.dr_id for entry in registry}
    mandatory = [entry for entry in registry if entry.is_mandatory]
    issues: list[ConsistencyIssue] = []
    passed = 0

    if mandatory:
        passed += 1

    # Rules -> DRs
    invalid, non_blocking = [], []
    for rule in rules:
        for dr_id in sorted(rule.affected_dr_ids):
            if dr_id in all_dr_ids:
                continue
            trace = f"{rule.rule_id} -> {dr_id}"
            (non_blocking if dr_id in NON_BLOCKING_RULE_REFERENCES else invalid).append(trace)
    if non_blocking:
        issues.append(ConsistencyIssue(
            ConsistencyLevel.WARNING,
            "Rule-DR Integrity",
            f"{len(non_blocking)} rule reference(s) are outside the customer DR registry "
            f"(non-blocking meta/derived terms)",
            tuple(non_blocking),
        ))
    if invalid:
        issues.append(ConsistencyIssue(
            ConsistencyLevel.ERROR,
            "Rule-DR Integrity",
            f"{len(invalid)} rule(s) reference DR IDs not in registry",
            tuple(invalid),
        ))
    else:
        passed += 1

    # DRs with rules but no control
    ruled = {dr_id for rule in rules for dr_id in rule.affected_dr_ids}
    controlled = {dr_id for control in controls for dr_id in control.covered_dr_ids}
    uncontrolled = [
        entry.dr_id for entry in registry
        if entry.in_template and entry.dr_id in ruled and entry.dr_id not in controlled
    ]
    if uncontrolled:
        issues.append(ConsistencyIssue(
            ConsistencyLevel.WARNING,
            "Coverage Integrity",
            f"{len(uncontrolled)} DR(s) have rules but no control linked",
            tuple(uncontrolled),
        ))
    else:
        passed += 1

    # Controls -> rules
    rule_ids = {rule.rule_id for rule in rules}
    unknown = [
        f"{control.control_id} -> {rule_id}"
        for control in controls
        for rule_id in control.covered_rule_ids
        if rule_id not in rule_ids
    ]
    if unknown:
        issues.append(ConsistencyIssue(
            ConsistencyLevel.ERROR,
            "Control-Rule Integrity",
            f"{len(unknown)} control(s) reference rule IDs not in check pack",
            tuple(unknown),
        ))
    else:
        passed += 1

    # Mandatory DRs without any rule
    unruled = [entry.dr_id for entry in mandatory if entry.dr_id not in ruled]
    if unruled:
        issues.append(ConsistencyIssue(
            ConsistencyLevel.INFO,
            "Mandatory Coverage",
            f"{len(unruled)} mandatory DR(s) have no validation rule",
            tuple(unruled),
        ))
    else:
        passed += 1

    report = ConsistencyReport(
        issues=tuple(issues),
        passed=passed,
        failed=len(issues),
        timestamp=datetime.now(timezone.utc),
    )
    if report.has_errors:
        logger.warning(f"Registry consistency: {report.failed} issue(s), including errors")
    return report
