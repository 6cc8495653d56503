"""
Value transformation pipeline for field mappings.

Turns a raw ERP value into its PINT-AE representation by applying a
mapping's transforms left to right. Each transform is a pure function of
(current value, config, row).

Design Decisions:
- Failure handling is a declared policy per transform type
  (FALLBACK_POLICY) instead of scattered try/except blocks
- date_parse propagates TransformError; the row boundary owns the
  fallback to the original value so one bad mapping never aborts a row
- Unknown transform types are identity, so newer mapping profiles still
  load on older engines
- Config keys accept the camelCase names stored in mapping profiles and
  their snake_case equivalents
"""

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable

from .conformance import DATE_PATTERN
from .fields import DataType, FieldMapping, Transformation, TransformationType

logger = logging.getLogger(__name__)


class TransformError(ValueError):
    """A transform could not produce a value."""


class Fallback(str, Enum):
    """What a failing transform step yields."""
    RAISE = "raise"
    ORIGINAL_VALUE = "original_value"


# Per-step policy; RAISE defers to the row-level policy below
FALLBACK_POLICY: dict[TransformationType, Fallback] = {
    TransformationType.DATE_PARSE: Fallback.RAISE,
    TransformationType.REGEX_EXTRACT: Fallback.ORIGINAL_VALUE,
}

ROW_FALLBACK = Fallback.ORIGINAL_VALUE

BOOLEAN_VALUES = frozenset({"true", "false", "1", "0", "yes", "no"})

_ISO_LIKE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_SLASH_LIKE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})")

# inputFormat -> (separator, order of day/month/year in the split)
_INPUT_FORMATS: dict[str, tuple[str, tuple[str, str, str]]] = {
    "DD/MM/YYYY": ("/", ("day", "month", "year")),
    "DD-MM-YYYY": ("-", ("day", "month", "year")),
    "MM/DD/YYYY": ("/", ("month", "day", "year")),
    "MM-DD-YYYY": ("-", ("month", "day", "year")),
    "YYYY-MM-DD": ("-", ("year", "month", "day")),
}


def _cfg(config: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in config and config[key] is not None:
            return config[key]
    return default


def _date_parse(value: str, config: Mapping[str, Any], row: Mapping[str, str] | None) -> str:
    if not value:
        return ""

    input_format = _cfg(config, "inputFormat", "input_format")
    output_format = _cfg(config, "outputFormat", "output_format")

    if input_format in _INPUT_FORMATS:
        separator, order = _INPUT_FORMATS[input_format]
        parts = value.split(separator)
        if len(parts) != 3:
            raise TransformError(f"Invalid date format: {value}")
        components = dict(zip(order, parts))
    else:
        iso = _ISO_LIKE.match(value)
        slash = _SLASH_LIKE.match(value) if not iso else None
        if iso:
            components = {"year": iso.group(1), "month": iso.group(2), "day": iso.group(3)}
        elif slash:
            components = {"day": slash.group(1), "month": slash.group(2), "year": slash.group(3)}
        else:
            raise TransformError(f"Cannot parse date: {value}")

    year = components["year"]
    month = components["month"].zfill(2)
    day = components["day"].zfill(2)

    if output_format == "DD/MM/YYYY":
        return f"{day}/{month}/{year}"
    if output_format == "ISO":
        return f"{year}-{month}-{day}T00:00:00Z"
    return f"{year}-{month}-{day}"


def _static_value(value: str, config: Mapping[str, Any], row: Mapping[str, str] | None) -> str:
    return str(_cfg(config, "value", default=""))


def _combine(value: str, config: Mapping[str, Any], row: Mapping[str, str] | None) -> str:
    columns = _cfg(config, "columns")
    separator = str(_cfg(config, "separator", default=" "))
    if not isinstance(columns, (list, tuple)) or row is None:
        return value
    # Empty or absent columns are dropped, not joined as blanks
    parts = [row.get(column) or "" for column in columns]
    return separator.join(part for part in parts if part)


def _lookup(value: str, config: Mapping[str, Any], row: Mapping[str, str] | None) -> str:
    mappings = _cfg(config, "mappings")
    if not isinstance(mappings, Mapping):
        return value
    lowered = value.lower()
    for key, mapped in mappings.items():
        if str(key).lower() == lowered:
            return str(mapped)
    default = _cfg(config, "defaultValue", "default_value")
    return value if default is None else str(default)


def _split(value: str, config: Mapping[str, Any], row: Mapping[str, str] | None) -> str:
    separator = _cfg(config, "separator", default=" ")
    index = int(_cfg(config, "index", default=0))
    parts = value.split(separator)
    if 0 <= index < len(parts):
        return parts[index]
    return ""


def _regex_extract(value: str, config: Mapping[str, Any], row: Mapping[str, str] | None) -> str:
    pattern = _cfg(config, "pattern")
    if not pattern:
        return value
    group = _cfg(config, "group", default=0)
    match = re.search(pattern, value)
    if match is None:
        return ""
    try:
        extracted = match.group(group)
    except (IndexError, TypeError):
        extracted = None
    return extracted or match.group(0)


_Handler = Callable[[str, Mapping[str, Any], Mapping[str, str] | None], str]

_HANDLERS: dict[TransformationType, _Handler] = {
    TransformationType.NONE: lambda v, c, r: v,
    TransformationType.TRIM: lambda v, c, r: v.strip(),
    TransformationType.UPPERCASE: lambda v, c, r: v.upper(),
    TransformationType.LOWERCASE: lambda v, c, r: v.lower(),
    TransformationType.DATE_PARSE: _date_parse,
    TransformationType.STATIC_VALUE: _static_value,
    TransformationType.COMBINE: _combine,
    TransformationType.LOOKUP: _lookup,
    TransformationType.SPLIT: _split,
    TransformationType.REGEX_EXTRACT: _regex_extract,
}


def apply_transformation(
    value: str,
    transformation: Transformation,
    row: Mapping[str, str] | None = None,
) -> str:
    """
    Apply one transform step.

    Raises:
        TransformError: When the step fails and its policy is RAISE
    """
    try:
        transform_type = TransformationType(transformation.type)
    except ValueError:
        return value

    handler = _HANDLERS[transform_type]
    try:
        return handler(value, transformation.config or {}, row)
    except Exception as e:
        policy = FALLBACK_POLICY.get(transform_type, Fallback.RAISE)
        if policy is Fallback.ORIGINAL_VALUE:
            logger.warning(f"{transform_type.value} failed on {value!r}, keeping original: {e}")
            return value
        if isinstance(e, TransformError):
            raise
        raise TransformError(f"{transform_type.value} failed on {value!r}: {e}") from e


def apply_transformations(
    value: str,
    transformations: Iterable[Transformation],
    row: Mapping[str, str] | None = None,
) -> str:
    """
    Apply transforms strictly in order, with no retry.

    Args:
        value: Raw value from the ERP column
        transformations: Steps to apply left to right
        row: Full source row, used by combine

    Returns:
        Transformed value

    Raises:
        TransformError: Propagated from a step whose policy is RAISE
    """
    result = value
    for transformation in transformations:
        result = apply_transformation(result, transformation, row)
    return result


def transform_row(row: Mapping[str, str], mappings: Sequence[FieldMapping]) -> dict[str, str]:
    """
    Transform one source row into target field values.

    A failure inside one mapping's chain only affects that mapping, which
    falls back to the untransformed value.

    Returns:
        Dict keyed by target field id
    """
    result: dict[str, str] = {}
    for mapping in mappings:
        original = row.get(mapping.erp_column) or ""
        try:
            result[mapping.target_field.id] = apply_transformations(
                original, mapping.transformations, row
            )
        except TransformError as e:
            if ROW_FALLBACK is not Fallback.ORIGINAL_VALUE:
                raise
            logger.warning(
                f"Transform for {mapping.erp_column} -> {mapping.target_field.id} failed, "
                f"using original value: {e}"
            )
            result[mapping.target_field.id] = original
    return result


@dataclass(frozen=True)
class TransformationTestResult:
    """Preview of one transform chain on one value."""
    success: bool
    original_value: str
    transformed_value: str
    error: str | None = None


def preview_transformation(
    value: str,
    transformations: Iterable[Transformation],
    row: Mapping[str, str] | None = None,
) -> TransformationTestResult:
    """Run a chain and report failure instead of raising."""
    try:
        transformed = apply_transformations(value, transformations, row)
    except TransformError as e:
        return TransformationTestResult(False, value, value, str(e))
    return TransformationTestResult(True, value, transformed)


@dataclass(frozen=True)
class ValueValidation:
    """Result of checking a transformed value against its field type."""
    valid: bool
    error: str | None = None

    def __bool__(self) -> bool:
        return self.valid


def validate_transformed_value(
    value: str,
    data_type: DataType | str,
    fmt: str | None = None,
) -> ValueValidation:
    """
    Check a transformed value against the target field's type.

    Empty values are always valid: presence is enforced by mandatory-field
    rules, not here.
    """
    if value == "":
        return ValueValidation(True)

    kind = DataType(data_type)
    if kind == DataType.NUMBER:
        try:
            number = Decimal(value.replace(",", "").strip())
        except InvalidOperation:
            return ValueValidation(False, f'"{value}" is not a valid number')
        if number.is_nan():
            return ValueValidation(False, f'"{value}" is not a valid number')
    elif kind == DataType.DATE:
        if not re.match(DATE_PATTERN, value):
            return ValueValidation(False, f'"{value}" is not in YYYY-MM-DD format')
    elif kind == DataType.BOOLEAN:
        if value.lower() not in BOOLEAN_VALUES:
            return ValueValidation(False, f'"{value}" is not a valid boolean')
    elif fmt:
        try:
            ok = re.search(fmt, value) is not None
        except re.error:
            logger.warning(f"Invalid format pattern {fmt!r}")
            ok = False
        if not ok:
            return ValueValidation(False, f"\"{value}\" doesn't match expected format")

    return ValueValidation(True)
