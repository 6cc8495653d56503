"""
Pydantic schemas for API request/response validation.

These schemas define the contract between frontend and backend.
All monetary values use strings to avoid floating point issues.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from pintae.domain.models import Dataset, Direction, Severity
from pintae.domain.scoring import EntityType
from pintae.services.conformance import ConsistencyLevel, CoverageStatus
from pintae.services.coverage import ValidationStatus
from pintae.services.custom_checks import CustomRuleType, DatasetScope


# =============================================================================
# Request Schemas
# =============================================================================

class CustomCheckParametersRequest(BaseModel):
    """Parameters of a custom check; which ones are required depends on the rule type."""
    field: str | None = None
    fields: list[str] = []
    left_expression: str | None = None
    operator: Literal["=", "!=", ">", "<", ">=", "<="] | None = None
    right_expression: str | None = None
    tolerance: Decimal = Field(default=Decimal("0.01"), ge=0)
    pattern: str | None = None
    formula: str | None = None
    condition: str | None = None


class CustomCheckRequest(BaseModel):
    """A user-authored check to run alongside the built-in checks."""
    id: str | None = None
    name: str = Field(..., min_length=1)
    description: str = ""
    severity: Severity
    rule_type: CustomRuleType
    dataset_scope: DatasetScope
    parameters: CustomCheckParametersRequest = CustomCheckParametersRequest()
    message_template: str = ""
    is_active: bool = True


class RunChecksRequest(BaseModel):
    """Dataset files as CSV text, or a bundled sample scenario."""
    direction: Direction | None = Field(
        default=None,
        description="AR or AP; the configured default when omitted",
    )
    buyers_csv: str = Field(default="", description="Parties file (buyers for AR, suppliers for AP)")
    headers_csv: str = ""
    lines_csv: str = ""
    sample_scenario: Literal["positive", "negative"] | None = Field(
        default=None,
        description="Run a bundled sample instead of the CSV texts",
    )
    our_entity_trns: list[str] | None = Field(
        default=None,
        description="Our own entity TRNs; the configured list when omitted",
    )
    custom_checks: list[CustomCheckRequest] = []


class FieldMappingRequest(BaseModel):
    """An ERP column mapped to a field, by legacy field id or DR id."""
    erp_column: str
    target_field: str = Field(..., description="Legacy field id (invoice_number) or DR id (IBT-001)")
    sample_values: list[str] = []


class MappingCoverageRequest(BaseModel):
    mappings: list[FieldMappingRequest]


class RegistryCoverageRequest(BaseModel):
    mapped_dr_ids: list[str] = []
    mappings: list[FieldMappingRequest] = []


class ColumnAnalysisRequest(BaseModel):
    """A dataset file to profile: its CSV text or just its column names."""
    dataset: Dataset
    direction: Direction = Direction.AR
    columns: list[str] = []
    csv_text: str | None = None


# =============================================================================
# Response Schemas
# =============================================================================

class ExceptionResponse(BaseModel):
    """Single rule violation."""
    check_id: str
    check_name: str
    severity: Severity
    message: str
    field_name: str | None = None
    invoice_id: str | None = None
    invoice_number: str | None = None
    seller_trn: str | None = None
    buyer_id: str | None = None
    line_id: str | None = None
    line_number: int | None = None
    observed_value: str | None = None
    expected_value: str | None = None
    direction: Direction | None = None
    dataset: Dataset | None = None
    row_number: int | None = None
    rule_id: str | None = None
    rule_type: str | None = None
    pint_reference_terms: list[str] = []
    suggested_fix: str | None = None
    owner_team: str | None = None
    sla_target_hours: int


class CheckResultResponse(BaseModel):
    check_id: str
    check_name: str
    severity: Severity
    records_checked: int
    passed: int
    failed: int
    exceptions: list[ExceptionResponse]


class CheckRunResponse(BaseModel):
    run_date: datetime
    direction: str
    total_invoices: int
    total_exceptions: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    pass_rate: float


class EntityScoreResponse(BaseModel):
    entity_type: EntityType
    entity_id: str
    entity_name: str | None = None
    score: int
    total_exceptions: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int


class ClientRiskResponse(BaseModel):
    seller_trn: str
    client_name: str | None = None
    risk_score: int
    health_score: int
    total_exceptions: int
    total_invoices: int


class CheckFailureResponse(BaseModel):
    check_id: str
    check_name: str
    count: int


class RunSummaryResponse(BaseModel):
    total_invoices_tested: int
    total_exceptions: int
    pass_rate_percent: float
    exceptions_by_severity: dict[str, int]
    top_failing_checks: list[CheckFailureResponse]
    top_clients_by_risk: list[ClientRiskResponse]


class RunChecksResponse(BaseModel):
    """Response from a compliance run over one dataset."""
    direction: Direction
    counts: dict[str, int]
    check_results: list[CheckResultResponse]
    pack_exceptions: list[ExceptionResponse]
    custom_results: list[CheckResultResponse]
    profile_exceptions: list[ExceptionResponse]
    check_run: CheckRunResponse
    entity_scores: dict[str, list[EntityScoreResponse]]
    run_summary: RunSummaryResponse
    warnings: list[str] = []


class RuleResponse(BaseModel):
    """A built-in or pack rule, as metadata."""
    check_id: str
    name: str
    severity: Severity
    dataset: Dataset
    directions: list[Direction]
    rule_type: str | None = None
    pint_reference_terms: list[str] = []
    description: str = ""
    owner_team: str | None = None
    enabled: bool = True


class CoverageFieldResponse(BaseModel):
    id: str
    name: str
    reference: str
    is_mandatory: bool


class LegacyCoverageResponse(BaseModel):
    mandatory_coverage: float
    total_coverage: float
    mandatory_mapped: int
    mandatory_total: int
    optional_mapped: int
    optional_total: int
    overall_mapped: int
    overall_total: int
    is_ready_for_validation: bool
    unmapped_mandatory: list[CoverageFieldResponse]


class RegistryCoverageResponse(BaseModel):
    registry_version: str
    mandatory_coverage_pct: float
    overall_coverage_pct: float
    mandatory_mapped: int
    mandatory_total: int
    conditional_mapped: int
    conditional_total: int
    overall_mapped: int
    overall_total: int
    is_ready_for_activation: bool
    unmapped_mandatory: list[CoverageFieldResponse]


class SampleIssueResponse(BaseModel):
    row: int
    value: str
    issue: str


class ValidationResultResponse(BaseModel):
    field: str
    column: str
    status: ValidationStatus
    message: str
    sample_issues: list[SampleIssueResponse] = []


class NullWarningResponse(BaseModel):
    column: str
    null_rate: float


class ColumnAnalysisResponse(BaseModel):
    dataset: Dataset
    direction: Direction
    columns: list[str]
    row_count: int
    required_present: list[str]
    required_missing: list[str]
    inferred_pk: str | None = None
    null_warnings: list[NullWarningResponse] = []
    detected_direction: Direction | None = None


class ControlResponse(BaseModel):
    control_id: str
    control_name: str
    control_type: str
    description: str
    covered_rule_ids: list[str]
    covered_dr_ids: list[str]


class TraceabilityRowResponse(BaseModel):
    dr_id: str
    business_term: str
    mandatory: bool
    dataset: str | None = None
    columns: list[str]
    in_template: bool
    ingestible: bool
    rule_ids: list[str]
    control_ids: list[str]
    coverage_status: CoverageStatus


class TraceabilityResponse(BaseModel):
    spec_version: str
    total_drs: int
    mandatory_drs: int
    drs_covered: int
    drs_with_no_rules: int
    drs_with_no_controls: int
    mandatory_not_in_template: int
    mandatory_not_ingestible: int
    rows: list[TraceabilityRowResponse]


class ConsistencyIssueResponse(BaseModel):
    level: ConsistencyLevel
    category: str
    message: str
    affected_ids: list[str]


class ConsistencyResponse(BaseModel):
    passed: int
    failed: int
    timestamp: datetime
    issues: list[ConsistencyIssueResponse]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    registry_version: str
    spec_version: str
    builtin_checks: int
    pack_rules: int
    controls: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str | None = None
    code: str | None = None
