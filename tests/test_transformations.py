"""
Tests for the value transformation pipeline.
"""

import pytest

from pintae.domain import transformations
from pintae.domain.fields import FieldMapping, Transformation, TransformationType, UC1_FIELDS_BY_ID
from pintae.domain.transformations import (
    FALLBACK_POLICY,
    Fallback,
    TransformError,
    apply_transformation,
    apply_transformations,
    preview_transformation,
    transform_row,
    validate_transformed_value,
)


def step(kind: str, **config) -> Transformation:
    return Transformation(kind, config)


class TestSimpleTransforms:
    """String transforms and identity."""

    @pytest.mark.parametrize("kind", ["trim", "uppercase", "lowercase"])
    def test_idempotent(self, kind):
        """Applying trim/uppercase/lowercase twice equals applying once."""
        value = "  Dubai Marina Tower  "
        once = apply_transformations(value, [step(kind)])
        twice = apply_transformations(value, [step(kind), step(kind)])
        assert once == twice

    def test_none_is_identity(self):
        """The none transform returns its input."""
        assert apply_transformation(" x ", step("none")) == " x "

    def test_unknown_type_is_identity(self):
        """Unknown transform types never fail."""
        assert apply_transformation("abc", step("reverse")) == "abc"

    def test_chain_applies_left_to_right(self):
        """Transforms run in declaration order."""
        assert apply_transformations("  aed ", [step("trim"), step("uppercase")]) == "AED"


class TestDateParse:
    """date_parse formats and failure policy."""

    def test_round_trip(self):
        """DD/MM/YYYY to ISO and back returns the original string."""
        forward = apply_transformation(
            "05/03/2026", step("date_parse", inputFormat="DD/MM/YYYY", outputFormat="YYYY-MM-DD"),
        )
        assert forward == "2026-03-05"
        back = apply_transformation(
            forward, step("date_parse", inputFormat="YYYY-MM-DD", outputFormat="DD/MM/YYYY"),
        )
        assert back == "05/03/2026"

    def test_pads_components(self):
        """Day and month are zero-padded."""
        assert apply_transformation("5/3/2026", step("date_parse", inputFormat="DD/MM/YYYY")) == "2026-03-05"

    def test_iso_output(self):
        """ISO output carries a midnight UTC time."""
        result = apply_transformation("2026-03-05", step("date_parse", outputFormat="ISO"))
        assert result == "2026-03-05T00:00:00Z"

    def test_auto_detects_slash_dates(self):
        """Without an input format, DD/MM/YYYY is recognised."""
        assert apply_transformation("31/12/2025", step("date_parse")) == "2025-12-31"

    def test_snake_case_config_keys(self):
        """snake_case config keys work like the camelCase ones."""
        result = apply_transformation("03-05-2026", step("date_parse", input_format="MM-DD-YYYY"))
        assert result == "2026-03-05"

    def test_bad_split_raises(self):
        """A value that does not split into three parts raises."""
        with pytest.raises(TransformError):
            apply_transformation("05/2026", step("date_parse", inputFormat="DD/MM/YYYY"))

    def test_unrecognised_date_raises(self):
        """Auto-detect raises when no pattern matches."""
        with pytest.raises(TransformError):
            apply_transformations("March 5th", [step("date_parse")])

    def test_empty_value_is_empty(self):
        """An empty date stays empty."""
        assert apply_transformation("", step("date_parse")) == ""

    def test_policy_is_declared(self):
        """date_parse raises and regex_extract keeps the original value."""
        assert FALLBACK_POLICY[TransformationType.DATE_PARSE] is Fallback.RAISE
        assert FALLBACK_POLICY[TransformationType.REGEX_EXTRACT] is Fallback.ORIGINAL_VALUE


class TestRowTransforms:
    """Transforms that read config or the row."""

    def test_static_value(self):
        """static_value ignores its input."""
        assert apply_transformation("anything", step("static_value", value="AED")) == "AED"
        assert apply_transformation("anything", step("static_value")) == ""

    def test_combine_skips_blank_columns(self):
        """combine joins row columns and drops blanks."""
        row = {"street": "Al Sila Tower", "unit": "", "city": "Abu Dhabi"}
        result = apply_transformation("", step("combine", columns=["street", "unit", "city"], separator=", "), row)
        assert result == "Al Sila Tower, Abu Dhabi"

    def test_lookup_is_case_insensitive(self):
        """lookup matches keys ignoring case and falls back to the default."""
        config = {"mappings": {"INV": "380", "CN": "381"}, "defaultValue": "389"}
        assert apply_transformation("inv", Transformation("lookup", config)) == "380"
        assert apply_transformation("other", Transformation("lookup", config)) == "389"

    def test_lookup_without_default_keeps_value(self):
        """An unmatched lookup with no default returns the value."""
        assert apply_transformation("x", step("lookup", mappings={"a": "b"})) == "x"

    def test_split(self):
        """split returns the indexed part or empty when out of range."""
        assert apply_transformation("AE-DU-01", step("split", separator="-", index=1)) == "DU"
        assert apply_transformation("AE", step("split", separator="-", index=3)) == ""

    def test_regex_extract_group(self):
        """regex_extract returns the requested group."""
        result = apply_transformation("TRN: 100000000000001", step("regex_extract", pattern=r"(\d{15})", group=1))
        assert result == "100000000000001"

    def test_regex_extract_no_match(self):
        """No match yields an empty string."""
        assert apply_transformation("abc", step("regex_extract", pattern=r"\d+")) == ""

    def test_regex_extract_invalid_pattern_keeps_value(self):
        """An invalid pattern falls back to the original value."""
        assert apply_transformation("abc", step("regex_extract", pattern="(")) == "abc"


class TestTransformRow:
    """Row-level failure isolation."""

    def test_failing_mapping_uses_original(self):
        """A failing chain falls back to the raw value without touching other mappings."""
        mappings = [
            FieldMapping("DocDate", UC1_FIELDS_BY_ID["issue_date"],
                         transformations=(step("date_parse", inputFormat="DD/MM/YYYY"),)),
            FieldMapping("Curr", UC1_FIELDS_BY_ID["currency"], transformations=(step("uppercase"),)),
        ]
        result = transform_row({"DocDate": "not a date", "Curr": "aed"}, mappings)
        assert result == {"issue_date": "not a date", "currency": "AED"}

    def test_non_string_separator(self):
        """A numeric combine separator is used as text."""
        mappings = [
            FieldMapping("a", UC1_FIELDS_BY_ID["buyer_name"],
                         transformations=(step("combine", columns=["a", "b"], separator=0),)),
        ]
        assert transform_row({"a": "x", "b": "y"}, mappings) == {"buyer_name": "x0y"}

    def test_unexpected_handler_error_stays_in_its_mapping(self, monkeypatch):
        """Any error inside one chain falls back for that mapping only."""
        def broken(value, config, row):
            raise AttributeError("boom")

        monkeypatch.setitem(transformations._HANDLERS, TransformationType.UPPERCASE, broken)
        mappings = [
            FieldMapping("Curr", UC1_FIELDS_BY_ID["currency"], transformations=(step("uppercase"),)),
            FieldMapping("Name", UC1_FIELDS_BY_ID["buyer_name"], transformations=(step("trim"),)),
        ]
        result = transform_row({"Curr": "aed", "Name": " Acme "}, mappings)
        assert result == {"currency": "aed", "buyer_name": "Acme"}

    def test_missing_column_is_empty(self):
        """An absent source column transforms from an empty string."""
        mappings = [FieldMapping("Missing", UC1_FIELDS_BY_ID["currency"])]
        assert transform_row({}, mappings) == {"currency": ""}

    def test_preview_reports_failure(self):
        """The preview helper reports errors instead of raising."""
        result = preview_transformation("bad", [step("date_parse")])
        assert not result.success
        assert result.transformed_value == "bad"
        assert result.error


class TestValidateTransformedValue:
    """Type checks on transformed values."""

    def test_empty_is_valid(self):
        """Presence is not this function's concern."""
        assert validate_transformed_value("", "number")

    def test_number(self):
        """Numbers may carry thousands separators."""
        assert validate_transformed_value("1,050.00", "number")
        assert not validate_transformed_value("12a", "number")

    def test_date(self):
        """Dates must be exactly YYYY-MM-DD."""
        assert validate_transformed_value("2025-01-15", "date")
        assert not validate_transformed_value("15/01/2025", "date")

    def test_boolean(self):
        """Booleans accept a fixed vocabulary, any case."""
        assert validate_transformed_value("YES", "boolean")
        assert not validate_transformed_value("maybe", "boolean")

    def test_string_format(self):
        """Strings are checked against an optional format."""
        assert validate_transformed_value("100000000000001", "string", r"^\d{15}$")
        result = validate_transformed_value("123", "string", r"^\d{15}$")
        assert not result
        assert "doesn't match" in result.error
