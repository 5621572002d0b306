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

"""QuotaScript MCP Server — Model Context Protocol integration.

Exposes the usage-script engine as MCP tools for use with
Cursor, Claude Desktop, and other MCP-compatible clients.

Tools:
  run_usage_script — Run a usage script (or preset) and return the result envelope
  check_url        — Apply the egress guard to a URL without sending anything
  list_templates   — List preset scripts and the variables each one needs
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from quotascript import __version__
from quotascript.errors import SUPPORTED_LANGUAGES, UsageScriptError

logger = logging.getLogger("quotascript.mcp")

mcp = FastMCP(
    name="quotascript",
    instructions=(
        "QuotaScript runs sandboxed usage-query scripts against provider APIs. "
        "Use run_usage_script to fetch remaining quota with a script or preset. "
        "Use check_url to see whether a URL would pass the egress policy. "
        "Use list_templates to discover the built-in presets."
    ),
)

_MAX_SCRIPT_LEN = 64 * 1024
_MAX_FIELD_LEN = 4096


def _error_response(code: str, message: str, details: dict[str, Any] | None = None) -> str:
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return json.dumps(payload)


def _validate_string_input(
    field: str,
    value: Any,
    *,
    max_length: int = _MAX_FIELD_LEN,
    allow_empty: bool = True,
) -> tuple[bool, str]:
    if not isinstance(value, str):
        return False, _error_response(
            "schema_validation_failed",
            f"Field '{field}' must be a string.",
            {"field": field, "expected": "string", "received_type": type(value).__name__},
        )

    if not allow_empty and not value.strip():
        return False, _error_response(
            "schema_validation_failed",
            f"Field '{field}' must be a non-empty string.",
            {"field": field, "constraint": "non_empty"},
        )

    if len(value) > max_length:
        return False, _error_response(
            "schema_validation_failed",
            f"Field '{field}' is too long.",
            {"field": field, "max_length": max_length},
        )

    if "\x00" in value:
        return False, _error_response(
            "schema_validation_failed",
            f"Field '{field}' contains an invalid null byte.",
            {"field": field, "constraint": "no_null_byte"},
        )

    return True, ""


def _validate_lang(lang: Any) -> tuple[bool, str]:
    if lang not in SUPPORTED_LANGUAGES:
        return False, _error_response(
            "schema_validation_failed",
            "Field 'lang' must be one of: " + ", ".join(SUPPORTED_LANGUAGES) + ".",
            {"field": "lang", "allowed": list(SUPPORTED_LANGUAGES)},
        )
    return True, ""


@mcp.tool()
async def run_usage_script(
    script_code: str = "",
    api_key: str = "",
    base_url: str = "",
    template: Optional[str] = None,
    access_token: Optional[str] = None,
    user_id: Optional[str] = None,
    timeout_secs: float = 10,
    lang: str = "en",
) -> str:
    """Run a usage script and return the provider's remaining quota.

    The script is evaluated in a fresh sandboxed interpreter. Its request
    goes through the configured egress policy (``USAGE_SCRIPT_*``
    environment variables) before anything is sent.

    Args:
        script_code: Script source. Ignored when ``template`` is given.
        api_key: Value for {{apiKey}}.
        base_url: Value for {{baseUrl}}.
        template: Name of a preset to run instead of ``script_code``.
        access_token: Value for {{accessToken}}.
        user_id: Value for {{userId}}.
        timeout_secs: Per-phase timeout, clamped to 2-30 seconds.
        lang: Language for error messages, "en" or "zh".

    Returns:
        JSON envelope with 'success', and either 'data' or 'error'/'errorKind'.
    """
    try:
        from quotascript.engine.orchestrator import UsageScriptEngine
        from quotascript.reporter.json_out import to_canonical_json
        from quotascript.templates.presets import get_template

        checks = [
            _validate_string_input("script_code", script_code, max_length=_MAX_SCRIPT_LEN),
            _validate_string_input("api_key", api_key),
            _validate_string_input("base_url", base_url),
            _validate_lang(lang),
        ]
        for name, value in (("template", template), ("access_token", access_token), ("user_id", user_id)):
            if value is not None:
                checks.append(_validate_string_input(name, value))
        for ok, error_json in checks:
            if not ok:
                return error_json

        if isinstance(timeout_secs, bool) or not isinstance(timeout_secs, (int, float)):
            return _error_response(
                "schema_validation_failed",
                "Field 'timeout_secs' must be a number.",
                {"field": "timeout_secs", "expected": "number"},
            )

        if template is not None:
            try:
                source = get_template(template)
            except KeyError as e:
                return _error_response("not_found", str(e.args[0]), {"template": template})
        elif script_code.strip():
            source = script_code
        else:
            return _error_response(
                "schema_validation_failed",
                "Either 'script_code' or 'template' is required.",
                {"field": "script_code", "constraint": "non_empty"},
            )

        engine = UsageScriptEngine()
        result = await engine.query(
            source,
            api_key,
            base_url,
            timeout_secs=float(timeout_secs),
            access_token=access_token,
            user_id=user_id,
            lang=lang,
        )
        return to_canonical_json(result)
    except Exception:
        logger.exception("run_usage_script failed")
        return _error_response("internal_error", "run_usage_script failed unexpectedly.")


@mcp.tool()
async def check_url(url: str, lang: str = "en") -> str:
    """Check whether a URL would pass the egress policy.

    Parses the URL, applies the scheme, credential and host allowlist
    rules, resolves the host, and classifies every address. No request
    is sent.

    Args:
        url: The URL a usage script would request.
        lang: Language for error messages, "en" or "zh".

    Returns:
        JSON with 'allowed' (bool), and either the resolved addresses or the error.
    """
    try:
        from quotascript.engine.orchestrator import UsageScriptEngine

        for ok, error_json in (
            _validate_string_input("url", url, allow_empty=False),
            _validate_lang(lang),
        ):
            if not ok:
                return error_json

        engine = UsageScriptEngine()
        try:
            validated = await engine.guard.validate(url)
        except UsageScriptError as e:
            return json.dumps(
                {
                    "allowed": False,
                    "egress_policy": engine.config.egress_policy.value,
                    "kind": e.kind.value,
                    "message": e.localized(lang),
                },
                indent=2,
            )
        return json.dumps(
            {
                "allowed": True,
                "egress_policy": engine.config.egress_policy.value,
                "url": str(validated),
                "host": validated.host,
                "port": validated.port,
                "addresses": list(validated.addresses),
            },
            indent=2,
        )
    except Exception:
        logger.exception("check_url failed")
        return _error_response("internal_error", "check_url failed unexpectedly.")


@mcp.tool()
def list_templates() -> str:
    """List the built-in preset usage scripts.

    Returns:
        JSON with the engine version and, per preset, the substitution
        variables it expects.
    """
    try:
        from quotascript.templates.presets import PRESET_TEMPLATES, required_variables

        return json.dumps(
            {
                "quotascript_version": __version__,
                "templates": {name: required_variables(name) for name in sorted(PRESET_TEMPLATES)},
            },
            indent=2,
        )
    except Exception:
        logger.exception("list_templates failed")
        return _error_response("internal_error", "list_templates failed unexpectedly.")


def run_server() -> None:
    """Start the MCP server with stdio transport."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    run_server()
