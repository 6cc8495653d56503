"""
Mapping coverage endpoints.

Reports how much of the regulatory field set a mapping covers, validates
sample values and profiles dataset files.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from pintae.api.schemas import (
    ColumnAnalysisRequest,
    ColumnAnalysisResponse,
    CoverageFieldResponse,
    FieldMappingRequest,
    LegacyCoverageResponse,
    MappingCoverageRequest,
    NullWarningResponse,
    RegistryCoverageRequest,
    RegistryCoverageResponse,
    SampleIssueResponse,
    ValidationResultResponse,
)
from pintae.domain.fields import UC1_FIELDS_BY_ID, FieldMapping, RegistryField
from pintae.registry.dr_registry import get_dr_entry
from pintae.services.coverage import (
    analyze_columns,
    analyze_coverage,
    compute_registry_coverage,
    get_coverage_stats,
    get_registry_coverage_stats,
    validate_mapped_data,
)
from pintae.services.ingestion import IngestionError, parse_csv

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coverage", tags=["coverage"])


def resolve_target_field(target: str) -> RegistryField:
    """
    Find a mapping target by legacy field id or DR id.

    Raises:
        HTTPException: 400 when neither table knows the target
    """
    legacy = UC1_FIELDS_BY_ID.get(target)
    if legacy is not None:
        return legacy
    entry = get_dr_entry(target)
    if entry is not None:
        return entry.to_registry_field()
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"Unknown target field: {target}",
    )


def to_field_mapping(request: FieldMappingRequest) -> FieldMapping:
    return FieldMapping(
        erp_column=request.erp_column,
        target_field=resolve_target_field(request.target_field),
        sample_values=tuple(request.sample_values),
        is_confirmed=True,
    )


def _field_response(id: str, name: str, reference: str, is_mandatory: bool) -> CoverageFieldResponse:
    return CoverageFieldResponse(id=id, name=name, reference=reference, is_mandatory=is_mandatory)


@router.post("/registry", response_model=RegistryCoverageResponse)
async def registry_coverage(request: RegistryCoverageRequest) -> RegistryCoverageResponse:
    """
    Coverage of the 50-field DR registry.

    DR ids may be sent directly or derived from mappings; both are combined.
    """
    mapped = set(request.mapped_dr_ids)
    mapped.update(to_field_mapping(m).target_field.ibt_reference for m in request.mappings)

    result = compute_registry_coverage(mapped)
    stats = get_registry_coverage_stats(result)

    return RegistryCoverageResponse(
        registry_version=stats.registry_version,
        mandatory_coverage_pct=result.mandatory_coverage_pct,
        overall_coverage_pct=result.overall_coverage_pct,
        mandatory_mapped=stats.mandatory_mapped,
        mandatory_total=stats.mandatory_total,
        conditional_mapped=stats.conditional_mapped,
        conditional_total=stats.conditional_total,
        overall_mapped=stats.overall_mapped,
        overall_total=stats.overall_total,
        is_ready_for_activation=stats.is_ready_for_activation,
        unmapped_mandatory=[
            _field_response(f.columns[0] if f.columns else f.dr_id, f.business_term, f.dr_id, True)
            for f in result.unmapped_mandatory
        ],
    )


@router.post("/legacy", response_model=LegacyCoverageResponse)
async def legacy_coverage(request: MappingCoverageRequest) -> LegacyCoverageResponse:
    """Coverage of the legacy UC1 field table."""
    analysis = analyze_coverage([to_field_mapping(m) for m in request.mappings])
    stats = get_coverage_stats(analysis)

    return LegacyCoverageResponse(
        mandatory_coverage=analysis.mandatory_coverage,
        total_coverage=analysis.total_coverage,
        mandatory_mapped=stats.mandatory_mapped,
        mandatory_total=stats.mandatory_total,
        optional_mapped=stats.optional_mapped,
        optional_total=stats.optional_total,
        overall_mapped=stats.overall_mapped,
        overall_total=stats.overall_total,
        is_ready_for_validation=stats.is_ready_for_validation,
        unmapped_mandatory=[
            _field_response(f.id, f.name, f.ibt_reference, f.is_mandatory)
            for f in analysis.unmapped_mandatory
        ],
    )


@router.post("/validate", response_model=list[ValidationResultResponse])
async def validate_samples(request: MappingCoverageRequest) -> list[ValidationResultResponse]:
    """Structural checks on each mapping's sample values."""
    results = validate_mapped_data([to_field_mapping(m) for m in request.mappings])
    return [
        ValidationResultResponse(
            field=r.field,
            column=r.column,
            status=r.status,
            message=r.message,
            sample_issues=[SampleIssueResponse(row=i.row, value=i.value, issue=i.issue) for i in r.sample_issues],
        )
        for r in results
    ]


@router.post(
    "/columns",
    response_model=ColumnAnalysisResponse,
    responses={400: {"description": "Malformed CSV"}},
)
async def analyze_dataset_columns(request: ColumnAnalysisRequest) -> ColumnAnalysisResponse:
    """Required columns, inferred key and null rates of one dataset file."""
    if request.csv_text is not None:
        try:
            rows = parse_csv(request.csv_text)
        except IngestionError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        lines = request.csv_text.strip().splitlines()
        # A header-only file still carries its column names
        source = rows if rows or not lines else [c.strip() for c in lines[0].split(",")]
    else:
        source = request.columns

    analysis = analyze_columns(source, request.dataset, request.direction)

    return ColumnAnalysisResponse(
        dataset=analysis.dataset,
        direction=analysis.direction,
        columns=list(analysis.columns),
        row_count=analysis.row_count,
        required_present=list(analysis.required_present),
        required_missing=list(analysis.required_missing),
        inferred_pk=analysis.inferred_pk,
        null_warnings=[NullWarningResponse(column=w.column, null_rate=w.null_rate) for w in analysis.null_warnings],
        detected_direction=analysis.detected_direction,
    )
