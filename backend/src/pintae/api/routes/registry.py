"""
Registry endpoints.

Exposes the controls registry, the DR traceability matrix and the
registry consistency report for evidence reporting.
"""

from fastapi import APIRouter

from pintae.api.schemas import (
    ConsistencyIssueResponse,
    ConsistencyResponse,
    ControlResponse,
    TraceabilityResponse,
    TraceabilityRowResponse,
)
from pintae.config import get_settings
from pintae.registry.controls import get_controls_registry
from pintae.services.conformance import compute_traceability_matrix, run_consistency_checks

router = APIRouter(prefix="/registry", tags=["registry"])


@router.get("/controls", response_model=list[ControlResponse])
async def list_controls() -> list[ControlResponse]:
    """Controls with the rules they cover and the DRs derived from them."""
    return [
        ControlResponse(
            control_id=c.control_id,
            control_name=c.control_name,
            control_type=c.control_type.value,
            description=c.description,
            covered_rule_ids=list(c.covered_rule_ids),
            covered_dr_ids=list(c.covered_dr_ids),
        )
        for c in get_controls_registry()
    ]


@router.get("/traceability", response_model=TraceabilityResponse)
async def traceability_matrix() -> TraceabilityResponse:
    """One row per DR with its rules, controls and coverage status."""
    settings = get_settings()
    result = compute_traceability_matrix(population_threshold=settings.population_warning_threshold)
    gaps = result.gaps

    return TraceabilityResponse(
        spec_version=result.spec_version,
        total_drs=gaps.total_drs,
        mandatory_drs=gaps.mandatory_drs,
        drs_covered=gaps.drs_covered,
        drs_with_no_rules=gaps.drs_with_no_rules,
        drs_with_no_controls=gaps.drs_with_no_controls,
        mandatory_not_in_template=gaps.mandatory_not_in_template,
        mandatory_not_ingestible=gaps.mandatory_not_ingestible,
        rows=[
            TraceabilityRowResponse(
                dr_id=row.dr_id,
                business_term=row.business_term,
                mandatory=row.mandatory,
                dataset=row.dataset,
                columns=list(row.columns),
                in_template=row.in_template,
                ingestible=row.ingestible,
                rule_ids=list(row.rule_ids),
                control_ids=list(row.control_ids),
                coverage_status=row.coverage_status,
            )
            for row in result.rows
        ],
    )


@router.get("/consistency", response_model=ConsistencyResponse)
async def consistency_report() -> ConsistencyResponse:
    """Cross-checks between the DR registry, the check pack and the controls."""
    report = run_consistency_checks()
    return ConsistencyResponse(
        passed=report.passed,
        failed=report.failed,
        timestamp=report.timestamp,
        issues=[
            ConsistencyIssueResponse(
                level=issue.level,
                category=issue.category,
                message=issue.message,
                affected_ids=list(issue.affected_ids),
            )
            for issue in report.issues
        ],
    )
