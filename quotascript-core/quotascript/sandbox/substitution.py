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

"""Placeholder substitution for usage scripts."""

from __future__ import annotations

import re
from typing import Optional

_PLACEHOLDER = re.compile(r"\{\{(apiKey|baseUrl|accessToken|userId)\}\}")


def substitute_variables(
    script: str,
    api_key: str,
    base_url: str,
    access_token: Optional[str] = None,
    user_id: Optional[str] = None,
) -> str:
    """Replace ``{{apiKey}}``, ``{{baseUrl}}``, ``{{accessToken}}`` and ``{{userId}}``.

    Single pass over the original text, so a value that itself contains a
    placeholder is inserted verbatim. Optional values that are None leave
    their placeholder untouched.
    """
    values = {
        "apiKey": api_key,
        "baseUrl": base_url,
        "accessToken": access_token,
        "userId": user_id,
    }

    def _replace(match: re.Match[str]) -> str:
        value = values[match.group(1)]
        return match.group(0) if value is None else value

    return _PLACEHOLDER.sub(_replace, script)
