"""
Evidence pack data for audit reporting.

Assembles, from the registries and one run's pack results, the tables an
auditor reviews: run overview, DR coverage, rule execution, exceptions,
controls coverage and population quality. Read-only over its inputs;
rendering to a file format is the caller's concern.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from pintae.domain.check_pack import USE_CASE
from pintae.domain.conformance import POPULATION_WARNING_THRESHOLD, SPEC_VERSION_LABEL
from pintae.domain.models import CheckResult, ComplianceException, DataContext, Dataset
from pintae.registry.controls import get_controls_registry
from pintae.registry.dr_registry import get_dr_entry
from pintae.registry.traceability import get_rule_traceability
from pintae.services.conformance import (
    CoverageStatus,
    TraceabilityRow,
    compute_traceability_matrix,
    count_exceptions_by_dr,
)
from pintae.services.coverage import DatasetPopulation

logger = logging.getLogger(__name__)

ASP_DERIVED_TEMPLATE = "asp_derived"
LIST_SEPARATOR = "; "


@dataclass(frozen=True)
class EvidenceCounts:
    total_invoices: int
    total_buyers: int
    total_lines: int
    total_drs: int
    mandatory_drs: int
    covered_drs: int
    drs_no_rules: int
    drs_no_controls: int
    open_exceptions: int


@dataclass(frozen=True)
class EvidenceOverview:
    assessment_run_id: str
    execution_timestamp: str
    scope: str
    spec_version: str
    dataset_name: str
    counts: EvidenceCounts


@dataclass(frozen=True)
class DRCoverageRow:
    dr_id: str
    business_term: str
    mandatory: bool
    template: str
    column_names: str
    rule_count: int
    control_count: int
    population_pct: float | None
    coverage_status: CoverageStatus
    asp_derived: bool


class ExecutionSource(str, Enum):
    RUN = "run"
    ESTIMATED = "estimated"


@dataclass(frozen=True)
class RuleExecutionRow:
    rule_id: str
    rule_name: str
    severity: str
    linked_dr_ids: str
    execution_count: int
    failure_count: int
    execution_source: ExecutionSource


@dataclass(frozen=True)
class ExceptionRow:
    rule_id: str
    dr_ids: str
    record_reference: str
    severity: str
    message: str
    dataset: str | None
    row_number: int | None


@dataclass(frozen=True)
class ControlCoverageRow:
    control_id: str
    control_name: str
    control_type: str
    covered_rule_ids: str
    covered_dr_ids: str
    linked_exception_count: int


class PopulationOutcome(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"
    NOT_APPLICABLE = "N/A"


@dataclass(frozen=True)
class PopulationQualityRow:
    dr_id: str
    business_term: str
    mandatory: bool
    population_pct: float | None
    threshold: float
    outcome: PopulationOutcome


@dataclass(frozen=True)
class EvidencePack:
    overview: EvidenceOverview
    dr_coverage: tuple[DRCoverageRow, ...]
    rule_execution: tuple[RuleExecutionRow, ...]
    exceptions: tuple[ExceptionRow, ...]
    controls_coverage: tuple[ControlCoverageRow, ...]
    population_quality: tuple[PopulationQualityRow, ...]
    traceability_rows: tuple[TraceabilityRow, ...]


def _dataset_name(context: DataContext) -> str:
    if not context.headers:
        return "Unknown"
    first = context.headers[0]
    return first.seller_name or first.seller_trn or "Unknown"


def _record_reference(exception: ComplianceException) -> str:
    return exception.line_id or exception.invoice_id or exception.buyer_id or ""


def _is_asp_derived(dr_id: str) -> bool:
    entry = get_dr_entry(dr_id)
    return entry.asp_derived if entry else False


def _population_outcome(population_pct: float | None, asp_derived: bool, threshold: float) -> PopulationOutcome:
    if asp_derived or population_pct is None:
        return PopulationOutcome.NOT_APPLICABLE
    return PopulationOutcome.PASS if population_pct >= threshold else PopulationOutcome.FAIL


def build_evidence_pack(
    run_id: str,
    run_timestamp: str,
    context: DataContext,
    pack_results: Sequence[CheckResult],
    populations: Iterable[DatasetPopulation] = (),
    population_threshold: float = POPULATION_WARNING_THRESHOLD,
) -> EvidencePack:
    """
    Build every evidence table for one check pack run.

    Args:
        run_id: Identifier of the assessment run
        run_timestamp: When the run executed, as the caller formats it
        context: The dataset the run evaluated
        pack_results: Check pack results of the run
        populations: Column population of the uploaded datasets
        population_threshold: Minimum population percentage to pass

    Returns:
        EvidencePack. Rules without a result in pack_results get an
        estimated execution count: lines for line rules, headers otherwise.
    """
    matrix = compute_traceability_matrix(populations, count_exceptions_by_dr(pack_results), population_threshold)
    rows, gaps = matrix.rows, matrix.gaps
    exceptions = [e for result in pack_results for e in result.exceptions]
    results_by_rule = {result.check_id: result for result in pack_results}
    failures_by_rule = Counter(e.check_id for e in exceptions)

    overview = EvidenceOverview(
        assessment_run_id=run_id,
        execution_timestamp=run_timestamp,
        scope=USE_CASE,
        spec_version=matrix.spec_version,
        dataset_name=_dataset_name(context),
        counts=EvidenceCounts(
            total_invoices=len(context.headers),
            total_buyers=len(context.buyers),
            total_lines=len(context.lines),
            total_drs=gaps.total_drs,
            mandatory_drs=gaps.mandatory_drs,
            covered_drs=gaps.drs_covered,
            drs_no_rules=gaps.drs_with_no_rules,
            drs_no_controls=gaps.drs_with_no_controls,
            open_exceptions=len(exceptions),
        ),
    )

    dr_coverage = tuple(
        DRCoverageRow(
            dr_id=row.dr_id,
            business_term=row.business_term,
            mandatory=row.mandatory,
            template=row.dataset or ASP_DERIVED_TEMPLATE,
            column_names=LIST_SEPARATOR.join(row.columns),
            rule_count=len(row.rule_ids),
            control_count=len(row.control_ids),
            population_pct=row.population_pct,
            coverage_status=row.coverage_status,
            asp_derived=_is_asp_derived(row.dr_id),
        )
        for row in rows
    )

    rule_execution = []
    for entry in get_rule_traceability():
        result = results_by_rule.get(entry.rule_id)
        if result is not None:
            executed, source = result.records_checked, ExecutionSource.RUN
        elif entry.scope == Dataset.LINES.value:
            executed, source = len(context.lines), ExecutionSource.ESTIMATED
        else:
            executed, source = len(context.headers), ExecutionSource.ESTIMATED
        rule_execution.append(RuleExecutionRow(
            rule_id=entry.rule_id,
            rule_name=entry.rule_name,
            severity=entry.severity,
            linked_dr_ids=LIST_SEPARATOR.join(sorted(entry.affected_dr_ids)),
            execution_count=executed,
            failure_count=failures_by_rule[entry.rule_id],
            execution_source=source,
        ))

    exception_rows = tuple(
        ExceptionRow(
            rule_id=e.check_id,
            dr_ids=LIST_SEPARATOR.join(e.pint_reference_terms),
            record_reference=_record_reference(e),
            severity=e.severity.value,
            message=e.message,
            dataset=e.dataset.value if e.dataset else None,
            row_number=e.row_number,
        )
        for e in exceptions
    )

    controls_coverage = tuple(
        ControlCoverageRow(
            control_id=control.control_id,
            control_name=control.control_name,
            control_type=control.control_type.value,
            covered_rule_ids=LIST_SEPARATOR.join(control.covered_rule_ids),
            covered_dr_ids=LIST_SEPARATOR.join(control.covered_dr_ids),
            linked_exception_count=sum(failures_by_rule[rule_id] for rule_id in control.covered_rule_ids),
        )
        for control in get_controls_registry()
    )

    population_quality = []
    for row in rows:
        asp_derived = _is_asp_derived(row.dr_id)
        population_quality.append(PopulationQualityRow(
            dr_id=row.dr_id,
            business_term=row.business_term,
            mandatory=row.mandatory,
            population_pct=None if asp_derived else row.population_pct,
            threshold=population_threshold,
            outcome=_population_outcome(row.population_pct, asp_derived, population_threshold),
        ))

    logger.info(
        f"Evidence pack {run_id}: {len(rows)} DRs, {len(rule_execution)} rules, "
        f"{len(exception_rows)} exceptions"
    )
    return EvidencePack(
        overview=overview,
        dr_coverage=dr_coverage,
        rule_execution=tuple(rule_execution),
        exceptions=exception_rows,
        controls_coverage=controls_coverage,
        population_quality=tuple(population_quality),
        traceability_rows=rows,
    )
