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

"""Build ``EngineConfig`` from the environment or a YAML file.

Environment variables (all optional):
  USAGE_SCRIPT_EGRESS_POLICY       strict | trusted (default trusted)
  USAGE_SCRIPT_ALLOWED_HOSTS       comma-separated host allowlist
  USAGE_SCRIPT_MAX_BODY_BYTES      default 65536
  USAGE_SCRIPT_MAX_HEADER_COUNT    default 32
  USAGE_SCRIPT_ALLOW_REDIRECTS     flag, default off
  USAGE_SCRIPT_MAX_RESPONSE_BYTES  default 1048576
  USAGE_SCRIPT_INCLUDE_BODY        flag, default off
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from quotascript.models.config import EgressPolicy, EngineConfig

logger = logging.getLogger(__name__)

ENV_EGRESS_POLICY = "USAGE_SCRIPT_EGRESS_POLICY"
ENV_ALLOWED_HOSTS = "USAGE_SCRIPT_ALLOWED_HOSTS"
ENV_MAX_BODY_BYTES = "USAGE_SCRIPT_MAX_BODY_BYTES"
ENV_MAX_HEADER_COUNT = "USAGE_SCRIPT_MAX_HEADER_COUNT"
ENV_ALLOW_REDIRECTS = "USAGE_SCRIPT_ALLOW_REDIRECTS"
ENV_MAX_RESPONSE_BYTES = "USAGE_SCRIPT_MAX_RESPONSE_BYTES"
ENV_INCLUDE_BODY = "USAGE_SCRIPT_INCLUDE_BODY"

_TRUTHY = frozenset({"1", "true", "TRUE", "yes", "on"})


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default
    if value < 0:
        logger.warning("Ignoring negative %s=%r, using %d", name, raw, default)
        return default
    return value


def _env_flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "") in _TRUTHY


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Read every ``USAGE_SCRIPT_*`` tunable once and freeze it into a config."""
    env = os.environ if environ is None else environ
    defaults = EngineConfig()
    return EngineConfig(
        egress_policy=EgressPolicy.parse(env.get(ENV_EGRESS_POLICY)),
        allowed_hosts=env.get(ENV_ALLOWED_HOSTS),
        max_body_bytes=_env_int(env, ENV_MAX_BODY_BYTES, defaults.max_body_bytes),
        max_header_count=_env_int(env, ENV_MAX_HEADER_COUNT, defaults.max_header_count),
        allow_redirects=_env_flag(env, ENV_ALLOW_REDIRECTS),
        max_response_bytes=_env_int(env, ENV_MAX_RESPONSE_BYTES, defaults.max_response_bytes),
        include_error_body=_env_flag(env, ENV_INCLUDE_BODY),
    )


def load_config_file(
    config_path: str | Path,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """Load a config from a YAML mapping of ``EngineConfig`` field names.

    Keys absent from the file fall back to the environment.
    """
    path = Path(config_path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")

    unknown = set(data) - set(EngineConfig.model_fields)
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(sorted(unknown)))

    base: dict[str, Any] = load_config_from_env(environ).model_dump()
    base.update({k: v for k, v in data.items() if k in EngineConfig.model_fields})
    return EngineConfig(**base)
