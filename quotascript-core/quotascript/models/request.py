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

"""Pydantic model for the request a usage script asks the engine to send."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

FORBIDDEN_HEADER_NAMES = frozenset({
    "host",
    "content-length",
    "transfer-encoding",
    "connection",
    "proxy-authorization",
    "proxy-authenticate",
    "proxy-connection",
})

# RFC 7230 token: 1*tchar
_METHOD_TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


def is_forbidden_header_name(name: str) -> bool:
    """Check a header name against the forbidden list (trimmed, case-insensitive)."""
    return name.strip().lower() in FORBIDDEN_HEADER_NAMES


def is_valid_method(method: str) -> bool:
    """Check that *method* is a syntactically valid HTTP method token."""
    return bool(_METHOD_TOKEN.fullmatch(method))


class RequestConfig(BaseModel):
    """The ``request`` object produced by phase 1 of a usage script.

    Parsed strictly from the serialized script value: wrong types are
    rejected, not coerced.
    """

    model_config = ConfigDict(strict=True)

    url: str
    method: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None

    @property
    def body_size(self) -> int:
        """Request body size in UTF-8 bytes."""
        if self.body is None:
            return 0
        return len(self.body.encode("utf-8"))
