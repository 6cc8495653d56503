"""
Mapping coverage analysis.

Answers two questions about a mapping set before any data is checked:
how much of the regulatory field set is mapped, and whether the sample
values behind each mapping look structurally right. Also profiles
uploaded files (required columns, population rates).

Design Decisions:
- Registry mode (50 DRs, keyed on the DR id) is authoritative; legacy mode
  over PINT_AE_UC1_FIELDS is kept because existing mapping screens read
  its exact shape
- Coverage counts distinct targets; duplicate mappings are tolerated
- Column profiling goes through pandas so a DataFrame and a list of row
  dicts are handled the same way
"""

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pandas as pd

from pintae.domain.conformance import REGISTRY_VERSION
from pintae.domain.expressions import to_number
from pintae.domain.fields import (
    PINT_AE_UC1_FIELDS,
    DataType,
    FieldMapping,
    RegistryField,
    resolve_field_alias,
)
from pintae.domain.models import DEFAULT_DIRECTION, Dataset, Direction
from pintae.domain.routing import detect_direction_from_columns
from pintae.registry.dr_registry import (
    DRField,
    get_conditional_fields,
    get_dr_registry,
    get_mandatory_columns_for_dataset,
    get_mandatory_fields,
)

logger = logging.getLogger(__name__)

__all__ = [
    "analyze_columns",
    "analyze_coverage",
    "analyze_registry_coverage",
    "compute_column_population",
    "compute_dataset_populations",
    "compute_registry_coverage",
    "detect_direction_from_columns",
    "get_column_population_pct",
    "get_coverage_stats",
    "get_registry_coverage_stats",
    "suggest_mappings",
    "validate_mapped_data",
]

NULL_WARNING_RATE = 0.05

_DATE_HEURISTICS = (
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^\d{2}/\d{2}/\d{4}$"),
    re.compile(r"^\d{2}-\d{2}-\d{4}$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$"),
)


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 100.0


# =============================================================================
# Legacy coverage
# =============================================================================

@dataclass(frozen=True)
class CoverageAnalysis:
    mapped_mandatory: tuple[RegistryField, ...]
    unmapped_mandatory: tuple[RegistryField, ...]
    mapped_optional: tuple[RegistryField, ...]
    unmapped_optional: tuple[RegistryField, ...]
    mandatory_coverage: float
    total_coverage: float


@dataclass(frozen=True)
class CoverageStats:
    mandatory_mapped: int
    mandatory_total: int
    optional_mapped: int
    optional_total: int
    overall_mapped: int
    overall_total: int
    is_ready_for_validation: bool


def analyze_coverage(mappings: Sequence[FieldMapping]) -> CoverageAnalysis:
    """
    Legacy coverage over PINT_AE_UC1_FIELDS, keyed on the internal field id.

    total_coverage divides the number of mappings, not distinct targets, by
    the table size, so duplicated mappings can push it past the mapped share.
    """
    mapped_ids = {m.target_field.id for m in mappings}
    mandatory = [f for f in PINT_AE_UC1_FIELDS if f.is_mandatory]
    optional = [f for f in PINT_AE_UC1_FIELDS if not f.is_mandatory]

    mapped_mandatory = tuple(f for f in mandatory if f.id in mapped_ids)
    return CoverageAnalysis(
        mapped_mandatory=mapped_mandatory,
        unmapped_mandatory=tuple(f for f in mandatory if f.id not in mapped_ids),
        mapped_optional=tuple(f for f in optional if f.id in mapped_ids),
        unmapped_optional=tuple(f for f in optional if f.id not in mapped_ids),
        mandatory_coverage=_percent(len(mapped_mandatory), len(mandatory)),
        total_coverage=_percent(len(mappings), len(PINT_AE_UC1_FIELDS)),
    )


def get_coverage_stats(analysis: CoverageAnalysis) -> CoverageStats:
    return CoverageStats(
        mandatory_mapped=len(analysis.mapped_mandatory),
        mandatory_total=len(analysis.mapped_mandatory) + len(analysis.unmapped_mandatory),
        optional_mapped=len(analysis.mapped_optional),
        optional_total=len(analysis.mapped_optional) + len(analysis.unmapped_optional),
        overall_mapped=len(analysis.mapped_mandatory) + len(analysis.mapped_optional),
        overall_total=len(PINT_AE_UC1_FIELDS),
        is_ready_for_validation=not analysis.unmapped_mandatory,
    )


# =============================================================================
# Registry coverage
# =============================================================================

@dataclass(frozen=True)
class RegistryCoverageResult:
    total_registry_fields: int
    mandatory_registry_fields: int
    mapped_mandatory: tuple[DRField, ...]
    unmapped_mandatory: tuple[DRField, ...]
    mapped_conditional: tuple[DRField, ...]
    unmapped_conditional: tuple[DRField, ...]
    mandatory_coverage_pct: float
    overall_coverage_pct: float
    is_ready_for_activation: bool


@dataclass(frozen=True)
class RegistryCoverageStats:
    mandatory_mapped: int
    mandatory_total: int
    conditional_mapped: int
    conditional_total: int
    overall_mapped: int
    overall_total: int
    is_ready_for_activation: bool
    registry_version: str = REGISTRY_VERSION


def compute_registry_coverage(mapped_dr_ids: Iterable[str]) -> RegistryCoverageResult:
    """
    Coverage of the DR registry by a set of mapped DR ids.

    Ids outside the registry are ignored. Activation requires every
    mandatory DR to be mapped.
    """
    mapped = set(mapped_dr_ids)
    mandatory = get_mandatory_fields()
    conditional = get_conditional_fields()
    total = len(get_dr_registry())

    mapped_mandatory = tuple(f for f in mandatory if f.dr_id in mapped)
    unmapped_mandatory = tuple(f for f in mandatory if f.dr_id not in mapped)
    mapped_conditional = tuple(f for f in conditional if f.dr_id in mapped)

    return RegistryCoverageResult(
        total_registry_fields=total,
        mandatory_registry_fields=len(mandatory),
        mapped_mandatory=mapped_mandatory,
        unmapped_mandatory=unmapped_mandatory,
        mapped_conditional=mapped_conditional,
        unmapped_conditional=tuple(f for f in conditional if f.dr_id not in mapped),
        mandatory_coverage_pct=_percent(len(mapped_mandatory), len(mandatory)),
        overall_coverage_pct=_percent(len(mapped_mandatory) + len(mapped_conditional), total),
        is_ready_for_activation=not unmapped_mandatory,
    )


def analyze_registry_coverage(mappings: Iterable[FieldMapping]) -> RegistryCoverageResult:
    """Registry coverage keyed on each target's DR id (ibt_reference)."""
    return compute_registry_coverage(m.target_field.ibt_reference for m in mappings)


def get_registry_coverage_stats(result: RegistryCoverageResult) -> RegistryCoverageStats:
    return RegistryCoverageStats(
        mandatory_mapped=len(result.mapped_mandatory),
        mandatory_total=result.mandatory_registry_fields,
        conditional_mapped=len(result.mapped_conditional),
        conditional_total=len(result.mapped_conditional) + len(result.unmapped_conditional),
        overall_mapped=len(result.mapped_mandatory) + len(result.mapped_conditional),
        overall_total=result.total_registry_fields,
        is_ready_for_activation=result.is_ready_for_activation,
    )


# =============================================================================
# Sample data validation
# =============================================================================

class ValidationStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class SampleIssue:
    row: int
    value: str
    issue: str


@dataclass(frozen=True)
class ValidationResult:
    """One finding for one mapped column."""
    field: str
    column: str
    status: ValidationStatus
    message: str
    sample_issues: tuple[SampleIssue, ...] = ()


def _first_row(values: Sequence[str], value: str) -> int:
    return values.index(value) + 1


def _is_number(value: str) -> bool:
    return to_number(re.sub(r"[,\s]", "", value)) is not None


def _format_mismatches(pattern: str, values: list[str]) -> list[str] | None:
    try:
        compiled = re.compile(pattern)
    except re.error:
        logger.warning(f"Invalid format pattern {pattern!r}, skipping format validation")
        return None
    return [v for v in values if compiled.search(v.strip()) is None]


def validate_mapped_data(mappings: Sequence[FieldMapping]) -> list[ValidationResult]:
    """
    Structural checks on each mapping's sample values.

    A mapping can produce several issue rows. A column with no issue gets a
    single "pass" row; a column that already has a row (from this or an
    earlier mapping) gets no pass row.

    Returns:
        Results in mapping order
    """
    results: list[ValidationResult] = []

    for mapping in mappings:
        target = mapping.target_field
        column = mapping.erp_column
        samples = list(mapping.sample_values)
        non_empty = [v for v in samples if v and v.strip()]

        def add(status: ValidationStatus, message: str, issues: Iterable[SampleIssue]) -> None:
            results.append(ValidationResult(target.name, column, status, message, tuple(issues)))

        if target.is_mandatory and len(non_empty) < len(samples):
            add(
                ValidationStatus.WARNING,
                f"{len(samples) - len(non_empty)} empty value(s) found in mandatory field",
                (SampleIssue(i + 1, v, "Empty value") for i, v in enumerate(samples) if not (v and v.strip())),
            )

        if target.format and non_empty:
            mismatches = _format_mismatches(target.format, non_empty)
            if mismatches:
                add(
                    ValidationStatus.ERROR,
                    f"{len(mismatches)} value(s) don't match required format: {target.format}",
                    (SampleIssue(_first_row(samples, v), v, f"Does not match pattern {target.format}")
                     for v in mismatches),
                )

        if target.allowed_values and non_empty:
            outside = [v for v in non_empty if v.strip() not in target.allowed_values]
            if outside:
                add(
                    ValidationStatus.ERROR,
                    f"{len(outside)} value(s) not in allowed list: {', '.join(target.allowed_values)}",
                    (SampleIssue(_first_row(samples, v), v, "Not in allowed values") for v in outside),
                )

        if target.data_type == DataType.NUMBER:
            invalid = [v for v in non_empty if not _is_number(v)]
            if invalid:
                add(
                    ValidationStatus.ERROR,
                    f"{len(invalid)} value(s) are not valid numbers",
                    (SampleIssue(_first_row(samples, v), v, "Not a valid number") for v in invalid),
                )

        if target.data_type == DataType.DATE:
            unrecognized = [v for v in non_empty if not any(p.match(v.strip()) for p in _DATE_HEURISTICS)]
            if unrecognized:
                add(
                    ValidationStatus.WARNING,
                    f"{len(unrecognized)} value(s) may need date format transformation",
                    (SampleIssue(_first_row(samples, v), v, "Unrecognized date format") for v in unrecognized),
                )

        if not any(r.column == column for r in results):
            add(ValidationStatus.PASS, "Validation passed", ())

    return results


# =============================================================================
# Dataset column analysis
# =============================================================================

RowsLike = pd.DataFrame | Sequence[Mapping[str, Any]]

_PRIMARY_KEYS: dict[Dataset, str] = {
    Dataset.BUYERS: "buyer_id",
    Dataset.HEADERS: "invoice_id",
    Dataset.LINES: "line_id",
}


def _as_frame(rows: RowsLike) -> pd.DataFrame:
    if isinstance(rows, pd.DataFrame):
        return rows
    return pd.DataFrame.from_records(list(rows))


def _populated(series: pd.Series) -> pd.Series:
    return series.fillna("").astype(str).str.strip().ne("")


@dataclass(frozen=True)
class NullWarning:
    column: str
    null_rate: float


@dataclass(frozen=True)
class ColumnAnalysis:
    """Structure of one uploaded dataset file."""
    dataset: Dataset
    direction: Direction
    columns: tuple[str, ...]
    row_count: int
    required_present: tuple[str, ...]
    required_missing: tuple[str, ...]
    inferred_pk: str | None = None
    null_warnings: tuple[NullWarning, ...] = ()
    detected_direction: Direction | None = None


def analyze_columns(
    rows_or_columns: RowsLike | Sequence[str],
    dataset: Dataset | str,
    direction: Direction = DEFAULT_DIRECTION,
) -> ColumnAnalysis:
    """
    Compare a file's columns with the columns its dataset requires.

    Args:
        rows_or_columns: A DataFrame, a sequence of row dicts, or just the
            column names
        dataset: buyers, headers or lines
        direction: AP header files require supplier_id instead of buyer_id

    Returns:
        ColumnAnalysis with required_missing in requirement order
    """
    kind = Dataset(dataset)
    items = rows_or_columns
    if not isinstance(items, pd.DataFrame) and all(isinstance(item, str) for item in items):
        frame = pd.DataFrame(columns=list(items))
    else:
        frame = _as_frame(items)  # type: ignore[arg-type]

    columns = tuple(str(c) for c in frame.columns)
    required = get_mandatory_columns_for_dataset(kind, direction)
    present = tuple(c for c in required if c in columns)
    missing = tuple(c for c in required if c not in columns)

    row_count = len(frame.index)
    inferred_pk = None
    pk = _PRIMARY_KEYS[kind]
    if kind == Dataset.BUYERS and direction == Direction.AP:
        pk = "supplier_id"
    if row_count and pk in columns and frame[pk].is_unique:
        inferred_pk = pk

    warnings = []
    if row_count:
        for column in present:
            null_rate = 1 - _populated(frame[column]).sum() / row_count
            if null_rate > NULL_WARNING_RATE:
                warnings.append(NullWarning(column, float(null_rate)))

    if missing:
        logger.info(f"{kind.value} file ({direction.value}) is missing required columns: {', '.join(missing)}")

    return ColumnAnalysis(
        dataset=kind,
        direction=direction,
        columns=columns,
        row_count=row_count,
        required_present=present,
        required_missing=missing,
        inferred_pk=inferred_pk,
        null_warnings=tuple(warnings),
        detected_direction=detect_direction_from_columns(columns),
    )


# =============================================================================
# Population coverage
# =============================================================================

@dataclass(frozen=True)
class ColumnPopulation:
    column: str
    total_rows: int
    populated_count: int
    population_pct: float


@dataclass(frozen=True)
class DatasetPopulation:
    dataset: Dataset
    columns: tuple[ColumnPopulation, ...] = field(default_factory=tuple)


def compute_column_population(rows: RowsLike, columns: Iterable[str]) -> list[ColumnPopulation]:
    """
    Share of rows with a non-blank value, per column.

    An empty row set reports 100% so that an absent optional file does not
    read as a population gap. A column missing from the rows counts as
    never populated.
    """
    frame = _as_frame(rows)
    total = len(frame.index)
    result = []
    for column in columns:
        if total == 0:
            result.append(ColumnPopulation(column, 0, 0, 100.0))
            continue
        populated = int(_populated(frame[column]).sum()) if column in frame.columns else 0
        result.append(ColumnPopulation(column, total, populated, populated / total * 100))
    return result


def compute_dataset_populations(
    buyers: RowsLike | None = None,
    headers: RowsLike | None = None,
    lines: RowsLike | None = None,
) -> list[DatasetPopulation]:
    """Population of every column of every non-empty dataset."""
    populations = []
    for dataset, rows in ((Dataset.BUYERS, buyers), (Dataset.HEADERS, headers), (Dataset.LINES, lines)):
        if rows is None:
            continue
        frame = _as_frame(rows)
        if frame.empty:
            continue
        columns = [str(c) for c in frame.columns]
        populations.append(DatasetPopulation(dataset, tuple(compute_column_population(frame, columns))))
    return populations


def get_column_population_pct(
    populations: Iterable[DatasetPopulation],
    dataset: Dataset | str,
    column: str,
) -> float | None:
    """Population percent of one column, or None when it was not profiled."""
    kind = Dataset(dataset)
    for population in populations:
        if population.dataset == kind:
            for entry in population.columns:
                if entry.column == column:
                    return entry.population_pct
            return None
    return None


# =============================================================================
# Mapping suggestions
# =============================================================================

# Known ERP column names per legacy field id
COLUMN_SYNONYMS: dict[str, tuple[str, ...]] = {
    "invoice_number": ("invoice_no", "inv_no", "inv_num", "document_number", "doc_no", "bill_no"),
    "issue_date": ("invoice_date", "inv_date", "document_date", "doc_date", "billing_date"),
    "invoice_type": ("invoice_type_code", "document_type", "doc_type", "inv_type"),
    "currency": ("currency_code", "curr", "ccy", "invoice_currency", "doc_currency"),
    "fx_rate": ("exchange_rate", "exch_rate", "currency_rate"),
    "payment_due_date": ("due_date", "payment_due"),
    "seller_name": ("vendor_name", "supplier_name", "company_name"),
    "seller_trn": ("vendor_trn", "supplier_trn", "seller_vat"),
    "seller_endpoint": ("seller_electronic_address",),
    "seller_street": ("seller_address", "vendor_address", "supplier_address", "company_address"),
    "seller_city": ("vendor_city", "supplier_city"),
    "seller_country": ("vendor_country", "supplier_country"),
    "buyer_name": ("customer_name", "client_name", "cust_name", "bill_to_name"),
    "buyer_trn": ("customer_trn", "client_trn", "customer_tax_id", "buyer_vat", "cust_trn"),
    "buyer_endpoint": ("buyer_electronic_address",),
    "buyer_address": ("customer_address", "client_address", "bill_to_address"),
    "buyer_country": ("customer_country", "client_country", "bill_to_country"),
    "line_id": ("line_no", "line_num"),
    "line_quantity": ("quantity", "qty", "line_qty"),
    "line_unit_price": ("unit_price", "item_price", "unit_rate", "net_price"),
    "line_net_amount": ("line_total_excl_vat", "line_total", "line_amount", "line_net", "extended_amount"),
    "line_description": ("description", "item_description", "product_name", "item_name"),
    "line_vat_rate": ("vat_rate", "tax_rate", "tax_percent", "vat_percent"),
    "line_vat_amount": ("vat_amount", "line_tax", "line_vat"),
    "total_excl_vat": ("net_total", "subtotal", "total_net", "invoice_net", "amount_excl_tax"),
    "vat_total": ("tax_total", "total_vat", "total_tax", "invoice_tax"),
    "total_incl_vat": ("gross_total", "invoice_total", "grand_total", "amount_incl_tax", "total_amount"),
    "amount_due": ("balance_due", "payable"),
}

SUGGESTION_CONFIDENCE = 0.95
SAMPLE_SIZE = 5


def _normalize(name: str) -> str:
    return re.sub(r"[_\-\s]", "", name.lower())


def suggest_mappings(
    columns: Sequence[str],
    fields: Iterable[RegistryField] = PINT_AE_UC1_FIELDS,
    sample_rows: RowsLike | None = None,
) -> list[FieldMapping]:
    """
    Infer mappings from exact column name matches only.

    A column matches a field when, ignoring case, underscores, dashes and
    spaces, it equals the field id, the field name or a known synonym. Each
    field is used at most once; earlier columns win.

    Args:
        columns: ERP column names in file order
        fields: Candidate target fields
        sample_rows: Optional rows to take sample values from

    Returns:
        Confirmed mappings in column order
    """
    candidates = list(fields)
    frame = _as_frame(sample_rows) if sample_rows is not None else None
    used: set[str] = set()
    suggestions = []

    for column in columns:
        key = _normalize(column)
        for target in candidates:
            if target.id in used:
                continue
            names = (target.id, resolve_field_alias(target.id), target.name, *COLUMN_SYNONYMS.get(target.id, ()))
            if key not in {_normalize(name) for name in names}:
                continue
            samples: tuple[str, ...] = ()
            if frame is not None and column in frame.columns:
                samples = tuple(frame[column].head(SAMPLE_SIZE).fillna("").astype(str))
            suggestions.append(FieldMapping(
                erp_column=column,
                target_field=target,
                sample_values=samples,
                confidence=SUGGESTION_CONFIDENCE,
                is_confirmed=True,
            ))
            used.add(target.id)
            break

    logger.debug(f"Suggested {len(suggestions)} mapping(s) for {len(columns)} column(s)")
    return suggestions
