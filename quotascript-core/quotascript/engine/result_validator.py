# QuotaScript — Sandboxed Usage-Query Script Engine
# Copyright (C) 2026 QuotaScript Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Shape validation for extractor output.

The extractor's return value crosses back from the sandbox as plain JSON
and is not trusted. Accepted shapes:

- a single object
- a non-empty array of objects

Every field is optional; a present, non-null field must have its declared
type. Unknown fields pass through untouched.
"""

from __future__ import annotations

import logging
from typing import Any

from quotascript.errors import ErrorKind, UsageScriptError
from quotascript.models.usage import UsageData

logger = logging.getLogger(__name__)

_BOOLEAN = ("布尔值", "boolean")
_STRING = ("字符串", "string")
_NUMBER = ("数字", "number")

# field → (expected type label, error kind)
USAGE_FIELDS: dict[str, tuple[tuple[str, str], ErrorKind]] = {
    "isValid": (_BOOLEAN, ErrorKind.ISVALID_TYPE_ERROR),
    "invalidMessage": (_STRING, ErrorKind.INVALIDMESSAGE_TYPE_ERROR),
    "remaining": (_NUMBER, ErrorKind.REMAINING_TYPE_ERROR),
    "unit": (_STRING, ErrorKind.UNIT_TYPE_ERROR),
    "total": (_NUMBER, ErrorKind.TOTAL_TYPE_ERROR),
    "used": (_NUMBER, ErrorKind.USED_TYPE_ERROR),
    "planName": (_STRING, ErrorKind.PLANNAME_TYPE_ERROR),
    "extra": (_STRING, ErrorKind.EXTRA_TYPE_ERROR),
}


def _matches(value: Any, type_label: tuple[str, str]) -> bool:
    if type_label is _BOOLEAN:
        return isinstance(value, bool)
    if type_label is _STRING:
        return isinstance(value, str)
    # bool is an int subclass in Python but not a JSON number
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_single_usage(value: Any) -> None:
    """Type-check one usage object."""
    if not isinstance(value, dict):
        raise UsageScriptError(
            ErrorKind.MUST_RETURN_OBJECT,
            "脚本必须返回对象或对象数组",
            "Script must return object or array of objects",
        )

    for name, (type_label, kind) in USAGE_FIELDS.items():
        if name not in value or value[name] is None:
            continue
        if not _matches(value[name], type_label):
            zh_type, en_type = type_label
            raise UsageScriptError(
                kind,
                f"{name} 必须是{zh_type}或 null",
                f"{name} must be {en_type} or null",
                field=name,
            )


def validate_result(result: Any) -> None:
    """Validate the extractor's value: one object or a non-empty array of objects."""
    if isinstance(result, list):
        if not result:
            raise UsageScriptError(
                ErrorKind.EMPTY_ARRAY,
                "脚本返回的数组不能为空",
                "Script returned empty array",
            )
        for idx, item in enumerate(result):
            try:
                validate_single_usage(item)
            except UsageScriptError as e:
                raise UsageScriptError(
                    ErrorKind.ARRAY_VALIDATION_FAILED,
                    f"数组索引[{idx}]验证失败: {e.message_zh}",
                    f"Validation failed at index [{idx}]: {e.message_en}",
                    index=idx,
                    field=e.field,
                ) from e
        return

    validate_single_usage(result)


def parse_usage_data(result: Any) -> list[UsageData]:
    """Turn a validated result into typed records (a single object becomes a 1-list)."""
    items = result if isinstance(result, list) else [result]
    return [UsageData.model_validate(item) for item in items]
