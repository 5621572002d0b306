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

"""Typed, localized errors raised by the usage script engine.

Every failure the engine can produce is a ``UsageScriptError`` carrying a
machine-readable ``ErrorKind`` plus Chinese and English message text.
Kinds are grouped into categories so callers can tell a script bug from a
blocked destination or a misbehaving upstream without parsing strings.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Broad failure groups."""

    SETUP = "setup"
    SCRIPT = "script"
    VALIDATION = "validation"
    NETWORK_POLICY = "network_policy"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    RESULT_SHAPE = "result_shape"


class ErrorKind(str, Enum):
    """Machine-readable error identifiers."""

    # setup
    CONTEXT_CREATE_FAILED = "usage_script.context_create_failed"
    CLIENT_CREATE_FAILED = "usage_script.client_create_failed"

    # script
    CONFIG_PARSE_FAILED = "usage_script.config_parse_failed"
    CONFIG_REPARSE_FAILED = "usage_script.config_reparse_failed"
    REQUEST_MISSING = "usage_script.request_missing"
    REQUEST_SERIALIZE_FAILED = "usage_script.request_serialize_failed"
    SERIALIZE_NONE = "usage_script.serialize_none"
    EXTRACTOR_MISSING = "usage_script.extractor_missing"
    RESPONSE_PARSE_FAILED = "usage_script.response_parse_failed"
    EXTRACTOR_EXEC_FAILED = "usage_script.extractor_exec_failed"
    RESULT_SERIALIZE_FAILED = "usage_script.result_serialize_failed"
    JSON_PARSE_FAILED = "usage_script.json_parse_failed"

    # validation
    REQUEST_FORMAT_INVALID = "usage_script.request_format_invalid"
    INVALID_HTTP_METHOD = "usage_script.invalid_http_method"
    FORBIDDEN_HEADER = "usage_script.forbidden_header"
    HEADER_COUNT_EXCEEDED = "usage_script.header_count_exceeded"
    REQUEST_BODY_TOO_LARGE = "usage_script.request_body_too_large"

    # network policy
    URL_INVALID = "usage_script.url_invalid"
    URL_SCHEME_NOT_ALLOWED = "usage_script.url_scheme_not_allowed"
    URL_USERINFO_NOT_ALLOWED = "usage_script.url_userinfo_not_allowed"
    URL_HOST_MISSING = "usage_script.url_host_missing"
    URL_HOST_NOT_ALLOWED = "usage_script.url_host_not_allowed"
    DNS_LOOKUP_FAILED = "usage_script.dns_lookup_failed"
    URL_BLOCKED = "usage_script.url_blocked"

    # transport
    REQUEST_INVALID_URL = "usage_script.request_invalid_url"
    CONNECTION_REFUSED = "usage_script.connection_refused"
    DNS_FAILED = "usage_script.dns_failed"
    CONNECT_FAILED = "usage_script.connect_failed"
    REQUEST_TIMEOUT = "usage_script.request_timeout"
    REQUEST_MALFORMED = "usage_script.request_malformed"
    REQUEST_FAILED = "usage_script.request_failed"
    TOO_MANY_REDIRECTS = "usage_script.too_many_redirects"
    READ_RESPONSE_FAILED = "usage_script.read_response_failed"
    RESPONSE_TOO_LARGE = "usage_script.response_too_large"

    # protocol
    HTTP_ERROR = "usage_script.http_error"

    # result shape
    MUST_RETURN_OBJECT = "usage_script.must_return_object"
    EMPTY_ARRAY = "usage_script.empty_array"
    ARRAY_VALIDATION_FAILED = "usage_script.array_validation_failed"
    ISVALID_TYPE_ERROR = "usage_script.isvalid_type_error"
    INVALIDMESSAGE_TYPE_ERROR = "usage_script.invalidmessage_type_error"
    REMAINING_TYPE_ERROR = "usage_script.remaining_type_error"
    UNIT_TYPE_ERROR = "usage_script.unit_type_error"
    TOTAL_TYPE_ERROR = "usage_script.total_type_error"
    USED_TYPE_ERROR = "usage_script.used_type_error"
    PLANNAME_TYPE_ERROR = "usage_script.planname_type_error"
    EXTRA_TYPE_ERROR = "usage_script.extra_type_error"

    @property
    def category(self) -> ErrorCategory:
        """Return the category this kind belongs to."""
        return _CATEGORY_BY_KIND[self]


_CATEGORY_MEMBERS: dict[ErrorCategory, tuple[ErrorKind, ...]] = {
    ErrorCategory.SETUP: (
        ErrorKind.CONTEXT_CREATE_FAILED,
        ErrorKind.CLIENT_CREATE_FAILED,
    ),
    ErrorCategory.SCRIPT: (
        ErrorKind.CONFIG_PARSE_FAILED,
        ErrorKind.CONFIG_REPARSE_FAILED,
        ErrorKind.REQUEST_MISSING,
        ErrorKind.REQUEST_SERIALIZE_FAILED,
        ErrorKind.SERIALIZE_NONE,
        ErrorKind.EXTRACTOR_MISSING,
        ErrorKind.RESPONSE_PARSE_FAILED,
        ErrorKind.EXTRACTOR_EXEC_FAILED,
        ErrorKind.RESULT_SERIALIZE_FAILED,
        ErrorKind.JSON_PARSE_FAILED,
    ),
    ErrorCategory.VALIDATION: (
        ErrorKind.REQUEST_FORMAT_INVALID,
        ErrorKind.INVALID_HTTP_METHOD,
        ErrorKind.FORBIDDEN_HEADER,
        ErrorKind.HEADER_COUNT_EXCEEDED,
        ErrorKind.REQUEST_BODY_TOO_LARGE,
    ),
    ErrorCategory.NETWORK_POLICY: (
        ErrorKind.URL_INVALID,
        ErrorKind.URL_SCHEME_NOT_ALLOWED,
        ErrorKind.URL_USERINFO_NOT_ALLOWED,
        ErrorKind.URL_HOST_MISSING,
        ErrorKind.URL_HOST_NOT_ALLOWED,
        ErrorKind.DNS_LOOKUP_FAILED,
        ErrorKind.URL_BLOCKED,
    ),
    ErrorCategory.TRANSPORT: (
        ErrorKind.REQUEST_INVALID_URL,
        ErrorKind.CONNECTION_REFUSED,
        ErrorKind.DNS_FAILED,
        ErrorKind.CONNECT_FAILED,
        ErrorKind.REQUEST_TIMEOUT,
        ErrorKind.REQUEST_MALFORMED,
        ErrorKind.REQUEST_FAILED,
        ErrorKind.TOO_MANY_REDIRECTS,
        ErrorKind.READ_RESPONSE_FAILED,
        ErrorKind.RESPONSE_TOO_LARGE,
    ),
    ErrorCategory.PROTOCOL: (ErrorKind.HTTP_ERROR,),
    ErrorCategory.RESULT_SHAPE: (
        ErrorKind.MUST_RETURN_OBJECT,
        ErrorKind.EMPTY_ARRAY,
        ErrorKind.ARRAY_VALIDATION_FAILED,
        ErrorKind.ISVALID_TYPE_ERROR,
        ErrorKind.INVALIDMESSAGE_TYPE_ERROR,
        ErrorKind.REMAINING_TYPE_ERROR,
        ErrorKind.UNIT_TYPE_ERROR,
        ErrorKind.TOTAL_TYPE_ERROR,
        ErrorKind.USED_TYPE_ERROR,
        ErrorKind.PLANNAME_TYPE_ERROR,
        ErrorKind.EXTRA_TYPE_ERROR,
    ),
}

_CATEGORY_BY_KIND: dict[ErrorKind, ErrorCategory] = {
    kind: category
    for category, kinds in _CATEGORY_MEMBERS.items()
    for kind in kinds
}

SUPPORTED_LANGUAGES = ("en", "zh")


class UsageScriptError(Exception):
    """A localized engine failure.

    ``str(err)`` is the English text; ``err.localized("zh")`` gives Chinese.
    ``status_code`` is set for HTTP errors, ``index`` and ``field`` for
    result-shape errors.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message_zh: str,
        message_en: str,
        *,
        status_code: Optional[int] = None,
        index: Optional[int] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message_en)
        self.kind = kind
        self.message_zh = message_zh
        self.message_en = message_en
        self.status_code = status_code
        self.index = index
        self.field = field

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    def localized(self, lang: str = "en") -> str:
        """Return the message for *lang* (``zh*`` → Chinese, anything else → English)."""
        if lang.lower().startswith("zh"):
            return self.message_zh
        return self.message_en

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "category": self.category.value,
            "message": {"zh": self.message_zh, "en": self.message_en},
        }
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.index is not None:
            data["index"] = self.index
        if self.field is not None:
            data["field"] = self.field
        return data

    def __repr__(self) -> str:
        return f"UsageScriptError(kind={self.kind.value}, message={self.message_en!r})"
