"""
Compliance check endpoints.

Runs the built-in checks, the PINT-AE check pack and custom checks over an
uploaded dataset, and lists the available rules.
"""

import logging
from collections.abc import Iterable

from fastapi import APIRouter, HTTPException, status

from pintae.api.schemas import (
    CheckFailureResponse,
    CheckResultResponse,
    CheckRunResponse,
    ClientRiskResponse,
    CustomCheckRequest,
    EntityScoreResponse,
    ExceptionResponse,
    RuleResponse,
    RunChecksRequest,
    RunChecksResponse,
    RunSummaryResponse,
)
from pintae.config import get_settings
from pintae.domain.builtin_checks import BUILTIN_CHECKS
from pintae.domain.check_pack import UAE_UC1_CHECK_PACK
from pintae.domain.models import CheckResult, ComplianceException, Direction, OrganizationProfile
from pintae.domain.rules import Rule
from pintae.domain.scoring import CheckRun, EntityType, RunSummary, calculate_entity_scores
from pintae.services.compliance import ComplianceService
from pintae.services.custom_checks import CheckConfigurationError, CustomCheckConfig, CustomCheckParameters
from pintae.services.ingestion import IngestionError, build_context_from_csv, load_sample_dataset

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checks", tags=["checks"])


# Service instance (would be injected via dependency injection in production)
_compliance_service: ComplianceService | None = None


def get_compliance_service() -> ComplianceService:
    """Get or create compliance service instance."""
    global _compliance_service
    if _compliance_service is None:
        _compliance_service = ComplianceService(get_settings())
    return _compliance_service


# =============================================================================
# Conversions
# =============================================================================

def to_custom_check_config(request: CustomCheckRequest) -> CustomCheckConfig:
    params = request.parameters
    return CustomCheckConfig(
        id=request.id,
        name=request.name,
        description=request.description,
        severity=request.severity,
        rule_type=request.rule_type,
        dataset_scope=request.dataset_scope,
        parameters=CustomCheckParameters(
            field=params.field,
            fields=tuple(params.fields),
            left_expression=params.left_expression,
            operator=params.operator,
            right_expression=params.right_expression,
            tolerance=params.tolerance,
            pattern=params.pattern,
            formula=params.formula,
            condition=params.condition,
        ),
        message_template=request.message_template,
        is_active=request.is_active,
    )


def exception_response(exception: ComplianceException) -> ExceptionResponse:
    return ExceptionResponse(
        check_id=exception.check_id,
        check_name=exception.check_name,
        severity=exception.severity,
        message=exception.message,
        field_name=exception.field_name,
        invoice_id=exception.invoice_id,
        invoice_number=exception.invoice_number,
        seller_trn=exception.seller_trn,
        buyer_id=exception.buyer_id,
        line_id=exception.line_id,
        line_number=exception.line_number,
        observed_value=exception.observed_value,
        expected_value=exception.expected_value,
        direction=exception.direction,
        dataset=exception.dataset,
        row_number=exception.row_number,
        rule_id=exception.rule_id,
        rule_type=exception.rule_type,
        pint_reference_terms=list(exception.pint_reference_terms),
        suggested_fix=exception.suggested_fix,
        owner_team=exception.owner_team,
        sla_target_hours=exception.sla_target_hours,
    )


def check_result_response(result: CheckResult) -> CheckResultResponse:
    return CheckResultResponse(
        check_id=result.check_id,
        check_name=result.check_name,
        severity=result.severity,
        records_checked=result.records_checked,
        passed=result.passed,
        failed=result.failed,
        exceptions=[exception_response(e) for e in result.exceptions],
    )


def check_run_response(run: CheckRun) -> CheckRunResponse:
    return CheckRunResponse(
        run_date=run.run_date,
        direction=run.direction.value if isinstance(run.direction, Direction) else run.direction,
        total_invoices=run.total_invoices,
        total_exceptions=run.total_exceptions,
        critical_count=run.critical_count,
        high_count=run.high_count,
        medium_count=run.medium_count,
        low_count=run.low_count,
        pass_rate=run.pass_rate,
    )


def run_summary_response(summary: RunSummary) -> RunSummaryResponse:
    return RunSummaryResponse(
        total_invoices_tested=summary.total_invoices_tested,
        total_exceptions=summary.total_exceptions,
        pass_rate_percent=summary.pass_rate_percent,
        exceptions_by_severity={s.value: n for s, n in summary.exceptions_by_severity.items()},
        top_failing_checks=[
            CheckFailureResponse(check_id=c.check_id, check_name=c.check_name, count=c.count)
            for c in summary.top_failing_checks
        ],
        top_clients_by_risk=[
            ClientRiskResponse(
                seller_trn=c.seller_trn,
                client_name=c.client_name,
                risk_score=c.risk_score,
                health_score=c.health_score,
                total_exceptions=c.total_exceptions,
                total_invoices=c.total_invoices,
            )
            for c in summary.top_clients_by_risk
        ],
    )


def rule_response(rule: Rule) -> RuleResponse:
    return RuleResponse(
        check_id=rule.check_id,
        name=rule.name,
        severity=rule.severity,
        dataset=rule.dataset,
        directions=sorted(rule.directions, key=lambda d: d.value, reverse=True),
        rule_type=rule.rule_type,
        pint_reference_terms=list(rule.pint_reference_terms),
        description=rule.description,
        owner_team=rule.owner_team,
        enabled=rule.enabled,
    )


def _rules_response(rules: Iterable[Rule]) -> list[RuleResponse]:
    return [rule_response(rule) for rule in rules]


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "/run",
    response_model=RunChecksResponse,
    responses={
        400: {"description": "Malformed CSV or invalid custom check"},
        422: {"description": "Validation error"},
    },
)
async def run_checks(request: RunChecksRequest) -> RunChecksResponse:
    """
    Run every check family over one dataset.

    **Process:**
    1. Parse the CSV texts (or load the bundled sample)
    2. Compile custom checks, rejecting invalid ones before any evaluation
    3. Run built-in, pack, custom and organization profile checks
    4. Score sellers, buyers and invoices
    """
    settings = get_settings()
    direction = request.direction or settings.direction

    try:
        if request.sample_scenario:
            context = load_sample_dataset(direction, request.sample_scenario)
        else:
            context = build_context_from_csv(
                request.buyers_csv, request.headers_csv, request.lines_csv, direction,
            )
    except IngestionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    profile = None
    if request.our_entity_trns is not None:
        profile = OrganizationProfile(tuple(request.our_entity_trns))

    service = get_compliance_service()
    try:
        result = service.run(
            context,
            direction,
            profile=profile,
            custom_checks=[to_custom_check_config(c) for c in request.custom_checks],
        )
    except CheckConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    entity_scores = {
        kind.value: [
            EntityScoreResponse(
                entity_type=score.entity_type,
                entity_id=score.entity_id,
                entity_name=score.entity_name,
                score=score.score,
                total_exceptions=score.total_exceptions,
                critical_count=score.critical_count,
                high_count=score.high_count,
                medium_count=score.medium_count,
                low_count=score.low_count,
            )
            for score in calculate_entity_scores(context, result.all_exceptions, kind)
        ]
        for kind in EntityType
    }

    return RunChecksResponse(
        direction=result.direction,
        counts=context.counts(),
        check_results=[check_result_response(r) for r in result.check_results],
        pack_exceptions=[exception_response(e) for e in result.pack_exceptions],
        custom_results=[check_result_response(r) for r in result.custom_results],
        profile_exceptions=[exception_response(e) for e in result.profile_exceptions],
        check_run=check_run_response(result.check_run),
        entity_scores=entity_scores,
        run_summary=run_summary_response(result.run_summary),
        warnings=list(result.warnings),
    )


@router.get("/builtin", response_model=list[RuleResponse])
async def list_builtin_checks() -> list[RuleResponse]:
    """List the built-in checks in run order."""
    return _rules_response(BUILTIN_CHECKS)


@router.get("/pack", response_model=list[RuleResponse])
async def list_pack_rules() -> list[RuleResponse]:
    """List the UAE UC1 check pack rules."""
    return _rules_response(UAE_UC1_CHECK_PACK)
