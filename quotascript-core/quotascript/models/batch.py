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

"""Pydantic model for batch manifest entries."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from quotascript.models.config import DEFAULT_TIMEOUT_SECS


class BatchEntry(BaseModel):
    """One provider to query in a batch run.

    Exactly one of ``script`` (a path, relative to the manifest),
    ``scriptCode`` (inline source) or ``template`` must be given.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    script: Optional[str] = None
    script_code: Optional[str] = Field(default=None, alias="scriptCode")
    template: Optional[str] = None
    api_key: str = Field(default="", alias="apiKey")
    base_url: str = Field(default="", alias="baseUrl")
    access_token: Optional[str] = Field(default=None, alias="accessToken")
    user_id: Optional[str] = Field(default=None, alias="userId")
    timeout: float = DEFAULT_TIMEOUT_SECS

    @model_validator(mode="after")
    def _one_source(self) -> "BatchEntry":
        given = [s for s in (self.script, self.script_code, self.template) if s is not None]
        if len(given) != 1:
            raise ValueError(
                f"entry {self.name!r} needs exactly one of script, scriptCode, template"
            )
        return self

    def load_source(self, base_dir: Path) -> str:
        """Return the script text for this entry."""
        if self.script_code is not None:
            return self.script_code
        if self.template is not None:
            from quotascript.templates.presets import get_template

            return get_template(self.template)
        path = Path(self.script or "")
        if not path.is_absolute():
            path = base_dir / path
        return path.read_text(encoding="utf-8")
