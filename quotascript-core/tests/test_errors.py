"""Tests for localized engine errors and their categories."""

import pytest

from quotascript.errors import ErrorCategory, ErrorKind, UsageScriptError


class TestErrorKind:

    def test_every_kind_has_a_category(self):
        for kind in ErrorKind:
            assert isinstance(kind.category, ErrorCategory)

    def test_kinds_are_namespaced(self):
        assert all(kind.value.startswith("usage_script.") for kind in ErrorKind)

    @pytest.mark.parametrize(
        "kind,category",
        [
            (ErrorKind.CONFIG_PARSE_FAILED, ErrorCategory.SCRIPT),
            (ErrorKind.FORBIDDEN_HEADER, ErrorCategory.VALIDATION),
            (ErrorKind.URL_BLOCKED, ErrorCategory.NETWORK_POLICY),
            (ErrorKind.RESPONSE_TOO_LARGE, ErrorCategory.TRANSPORT),
            (ErrorKind.HTTP_ERROR, ErrorCategory.PROTOCOL),
            (ErrorKind.EMPTY_ARRAY, ErrorCategory.RESULT_SHAPE),
            (ErrorKind.CONTEXT_CREATE_FAILED, ErrorCategory.SETUP),
        ],
    )
    def test_category_mapping(self, kind, category):
        assert kind.category == category


class TestUsageScriptError:

    def test_str_is_english(self):
        err = UsageScriptError(ErrorKind.EMPTY_ARRAY, "脚本返回的数组不能为空", "Script returned empty array")
        assert str(err) == "Script returned empty array"

    @pytest.mark.parametrize("lang,expected", [("zh", "中文"), ("zh-CN", "中文"), ("en", "English"), ("fr", "English")])
    def test_localized(self, lang, expected):
        err = UsageScriptError(ErrorKind.REQUEST_FAILED, "中文", "English")
        assert err.localized(lang) == expected

    def test_to_dict_includes_optional_fields_only_when_set(self):
        plain = UsageScriptError(ErrorKind.URL_BLOCKED, "zh", "en").to_dict()
        assert plain == {
            "kind": "usage_script.url_blocked",
            "category": "network_policy",
            "message": {"zh": "zh", "en": "en"},
        }

        detailed = UsageScriptError(
            ErrorKind.ARRAY_VALIDATION_FAILED, "zh", "en", index=1, field="remaining"
        ).to_dict()
        assert detailed["index"] == 1
        assert detailed["field"] == "remaining"
        assert "status_code" not in detailed
