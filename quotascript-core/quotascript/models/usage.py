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

"""Pydantic models for usage data returned by a script's extractor."""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class UsageData(BaseModel):
    """One usage record. Every field is optional.

    Unknown keys a script returns (e.g. ``percentage``) are kept as extras.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    is_valid: Optional[bool] = Field(default=None, alias="isValid")
    invalid_message: Optional[str] = Field(default=None, alias="invalidMessage")
    remaining: Optional[float] = None
    unit: Optional[str] = None
    total: Optional[float] = None
    used: Optional[float] = None
    plan_name: Optional[str] = Field(default=None, alias="planName")
    extra: Optional[str] = None


class UsageResult(BaseModel):
    """The success/data/error envelope handed to front ends."""

    success: bool
    data: Optional[Union[list[Any], dict[str, Any]]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(default=None, alias="errorKind")

    model_config = ConfigDict(populate_by_name=True)
