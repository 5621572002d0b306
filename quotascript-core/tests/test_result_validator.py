"""Tests for extractor result shape validation."""

import pytest

from quotascript.engine.result_validator import (
    parse_usage_data,
    validate_result,
    validate_single_usage,
)
from quotascript.errors import ErrorKind, UsageScriptError


def kind_of(value):
    with pytest.raises(UsageScriptError) as exc_info:
        validate_result(value)
    return exc_info.value


class TestAcceptedShapes:

    def test_single_object(self):
        validate_result({"remaining": 42, "unit": "requests"})

    def test_empty_object(self):
        validate_result({})

    def test_all_fields(self):
        validate_result({
            "isValid": True,
            "invalidMessage": "",
            "remaining": 1.5,
            "unit": "USD",
            "total": 10,
            "used": 8.5,
            "planName": "Pro",
            "extra": "resets monthly",
        })

    def test_nulls_allowed_everywhere(self):
        validate_result({
            "isValid": None,
            "remaining": None,
            "unit": None,
            "planName": None,
        })

    def test_unknown_fields_pass_through(self):
        validate_result({"remaining": 1, "percentage": "80%", "nested": {"a": [1, 2]}})

    def test_array_of_objects(self):
        validate_result([{"planName": "A", "remaining": 1}, {"planName": "B", "remaining": 2}])


class TestRejectedShapes:

    @pytest.mark.parametrize("value", [42, "ok", True, None])
    def test_non_object(self, value):
        assert kind_of(value).kind == ErrorKind.MUST_RETURN_OBJECT

    def test_empty_array(self):
        err = kind_of([])
        assert err.kind == ErrorKind.EMPTY_ARRAY
        assert str(err) == "Script returned empty array"

    @pytest.mark.parametrize(
        "field,value,kind",
        [
            ("isValid", "yes", ErrorKind.ISVALID_TYPE_ERROR),
            ("invalidMessage", 3, ErrorKind.INVALIDMESSAGE_TYPE_ERROR),
            ("remaining", "lots", ErrorKind.REMAINING_TYPE_ERROR),
            ("unit", 1, ErrorKind.UNIT_TYPE_ERROR),
            ("total", [], ErrorKind.TOTAL_TYPE_ERROR),
            ("used", {}, ErrorKind.USED_TYPE_ERROR),
            ("planName", False, ErrorKind.PLANNAME_TYPE_ERROR),
            ("extra", 1.0, ErrorKind.EXTRA_TYPE_ERROR),
        ],
    )
    def test_field_type_errors(self, field, value, kind):
        err = kind_of({field: value})
        assert err.kind == kind
        assert err.field == field

    def test_boolean_is_not_a_number(self):
        assert kind_of({"remaining": True}).kind == ErrorKind.REMAINING_TYPE_ERROR

    def test_remaining_message(self):
        err = kind_of({"remaining": "lots"})
        assert str(err) == "remaining must be number or null"
        assert err.localized("zh") == "remaining 必须是数字或 null"

    def test_array_element_failure_names_index(self):
        err = kind_of([{"remaining": 1}, {"remaining": 2}, {"unit": 5}])
        assert err.kind == ErrorKind.ARRAY_VALIDATION_FAILED
        assert err.index == 2
        assert err.field == "unit"
        assert str(err) == "Validation failed at index [2]: unit must be string or null"

    def test_array_non_object_element(self):
        err = kind_of([{"remaining": 1}, "oops"])
        assert err.kind == ErrorKind.ARRAY_VALIDATION_FAILED
        assert err.index == 1
        assert err.field is None

    def test_validate_single_usage_rejects_list(self):
        with pytest.raises(UsageScriptError) as exc_info:
            validate_single_usage([{"remaining": 1}])
        assert exc_info.value.kind == ErrorKind.MUST_RETURN_OBJECT


class TestParseUsageData:

    def test_single_object_becomes_one_record(self):
        records = parse_usage_data({"remaining": 42, "unit": "requests", "planName": "Pro"})
        assert len(records) == 1
        assert records[0].remaining == 42
        assert records[0].plan_name == "Pro"

    def test_extras_kept(self):
        record = parse_usage_data([{"isValid": False, "invalidMessage": "expired", "percentage": "5%"}])[0]
        assert record.is_valid is False
        assert record.invalid_message == "expired"
        assert record.model_extra == {"percentage": "5%"}
