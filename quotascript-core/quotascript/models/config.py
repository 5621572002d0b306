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

"""Pydantic models for engine configuration and the egress policy."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

JS_MEMORY_LIMIT_BYTES = 32 * 1024 * 1024
JS_MAX_STACK_SIZE = 512 * 1024

MIN_TIMEOUT_SECS = 2
MAX_TIMEOUT_SECS = 30
DEFAULT_TIMEOUT_SECS = 10


def clamp_timeout(timeout_secs: float) -> float:
    """Clamp a caller timeout to [2, 30] seconds."""
    return max(MIN_TIMEOUT_SECS, min(MAX_TIMEOUT_SECS, timeout_secs))


class EgressPolicy(str, Enum):
    """Which resolved addresses a script request may reach.

    STRICT blocks loopback and private ranges on top of the always-blocked
    set; TRUSTED (the default for a locally-run instance) does not.
    """

    STRICT = "strict"
    TRUSTED = "trusted"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "EgressPolicy":
        """Parse a setting value; anything unrecognised means TRUSTED."""
        if raw is not None and raw.strip().lower() == "strict":
            return cls.STRICT
        return cls.TRUSTED


def normalize_host(host: str) -> str:
    """Lower-case a host and drop trailing dots, for allowlist comparison."""
    return host.strip().rstrip(".").lower()


class EngineConfig(BaseModel):
    """Tunables for one engine instance.

    Passed explicitly into the engine instead of being read from the
    process environment at arbitrary points.
    """

    model_config = ConfigDict(frozen=True)

    egress_policy: EgressPolicy = EgressPolicy.TRUSTED
    allowed_hosts: Optional[tuple[str, ...]] = None
    max_body_bytes: int = Field(default=65_536, ge=0)
    max_header_count: int = Field(default=32, ge=0)
    allow_redirects: bool = False
    max_redirects: int = Field(default=5, ge=0)
    max_response_bytes: int = Field(default=1_048_576, ge=0)
    include_error_body: bool = False

    @field_validator("egress_policy", mode="before")
    @classmethod
    def _parse_policy(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, EgressPolicy):
            return EgressPolicy.parse(value)
        return value

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _normalize_allowed_hosts(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        entries = tuple(
            normalize_host(str(entry)) for entry in value if normalize_host(str(entry))
        )
        return entries or None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config from ``USAGE_SCRIPT_*`` environment variables."""
        from quotascript.policy.loader import load_config_from_env

        return load_config_from_env(environ)
