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

"""QuotaScript CLI — Typer entry point.

Commands:
- quotascript run [SCRIPT]       — Run a usage script (or --template) and print usage
- quotascript batch MANIFEST     — Run many usage scripts concurrently
- quotascript check-url URL      — Apply the egress guard to a URL without sending
- quotascript templates [NAME]   — List preset scripts or print one
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from quotascript import __version__
from quotascript.engine.orchestrator import UsageScriptEngine
from quotascript.engine.result_validator import parse_usage_data
from quotascript.errors import SUPPORTED_LANGUAGES, UsageScriptError
from quotascript.models.batch import BatchEntry
from quotascript.models.config import DEFAULT_TIMEOUT_SECS, EngineConfig
from quotascript.models.usage import UsageResult
from quotascript.policy.loader import load_config_file, load_config_from_env
from quotascript.reporter.console_out import (
    console,
    print_batch_summary,
    print_error,
    print_template_source,
    print_templates,
    print_url_check,
    print_usage_result,
)
from quotascript.reporter.json_out import batch_to_json, to_canonical_json
from quotascript.templates.presets import PRESET_TEMPLATES, get_template, required_variables

app = typer.Typer(
    name="quotascript",
    help=(
        "QuotaScript: run sandboxed usage-query scripts against provider APIs. "
        "Run 'quotascript <command> --help' for flags."
    ),
    add_completion=False,
)

logger = logging.getLogger("quotascript")


def _configure_logging(verbose: bool, quiet: bool) -> None:
    if quiet:
        logging.basicConfig(level=logging.ERROR)
    elif verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    # Suppress noisy third-party logs
    for _name in ("httpcore", "httpx"):
        logging.getLogger(_name).setLevel(logging.WARNING)


def _load_config(config_path: Optional[str]) -> EngineConfig:
    if config_path is None:
        return load_config_from_env()
    path = Path(config_path).resolve()
    if not path.is_file():
        console.print(f"[red]Error: Config file not found: {path}[/red]")
        raise typer.Exit(code=1)
    try:
        return load_config_file(path)
    except (yaml.YAMLError, ValueError, ValidationError) as e:
        console.print(f"[red]Error: Invalid config file {path}: {e}[/red]")
        raise typer.Exit(code=1)


def _check_lang(lang: str) -> str:
    if lang not in SUPPORTED_LANGUAGES:
        console.print(f"[red]Error: --lang must be one of {', '.join(SUPPORTED_LANGUAGES)}[/red]")
        raise typer.Exit(code=1)
    return lang


def _read_script(script: Optional[str], template: Optional[str]) -> str:
    if (script is None) == (template is None):
        console.print("[red]Error: Pass exactly one of SCRIPT or --template.[/red]")
        raise typer.Exit(code=1)

    if template is not None:
        try:
            return get_template(template)
        except KeyError as e:
            console.print(f"[red]Error: {e.args[0]}[/red]")
            raise typer.Exit(code=1)

    path = Path(script or "").resolve()
    if not path.is_file():
        console.print(f"[red]Error: Script not found: {path}[/red]")
        raise typer.Exit(code=1)
    return path.read_text(encoding="utf-8")


@app.command()
def run(
    script: Optional[str] = typer.Argument(None, help="Path to a usage script (.js)"),
    template: Optional[str] = typer.Option(None, "--template", "-t", help="Use a preset instead of a script file"),
    api_key: str = typer.Option("", "--api-key", envvar="QUOTASCRIPT_API_KEY", help="Value for {{apiKey}}"),
    base_url: str = typer.Option("", "--base-url", help="Value for {{baseUrl}}"),
    access_token: Optional[str] = typer.Option(None, "--access-token", envvar="QUOTASCRIPT_ACCESS_TOKEN", help="Value for {{accessToken}}"),
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Value for {{userId}}"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT_SECS, "--timeout", help="Per-phase timeout in seconds (clamped to 2-30)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML engine config (default: USAGE_SCRIPT_* env vars)"),
    output_json: bool = typer.Option(False, "--json", help="Output the result envelope as JSON"),
    lang: str = typer.Option("en", "--lang", help="Error message language: en or zh"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress all logging except errors"),
) -> None:
    """Run one usage script and print the provider's remaining quota.

    Exits with code 1 if the script, the request, or the result fails
    validation.
    """
    _configure_logging(verbose, quiet)
    lang = _check_lang(lang)
    source = _read_script(script, template)
    engine = UsageScriptEngine(_load_config(config))

    try:
        data = asyncio.run(
            engine.execute(
                source,
                api_key,
                base_url,
                timeout_secs=timeout,
                access_token=access_token,
                user_id=user_id,
            )
        )
    except UsageScriptError as e:
        if output_json:
            envelope = UsageResult(success=False, error=e.localized(lang), error_kind=e.kind.value)
            print(to_canonical_json(envelope), end="")
        else:
            print_error(e, lang)
        raise typer.Exit(code=1)

    if output_json:
        print(to_canonical_json(UsageResult(success=True, data=data)), end="")
    else:
        print_usage_result(parse_usage_data(data))


def _load_manifest(manifest_path: Path) -> list[BatchEntry]:
    with open(manifest_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("entries", [])
    if not isinstance(data, list):
        raise ValueError("manifest must be a list of entries or a mapping with 'entries'")
    entries = [BatchEntry.model_validate(item) for item in data]
    names = [e.name for e in entries]
    if len(set(names)) != len(names):
        raise ValueError("entry names must be unique")
    return entries


async def _run_batch(
    engine: UsageScriptEngine,
    entries: list[BatchEntry],
    sources: list[str],
    lang: str,
) -> list[UsageResult]:
    return list(
        await asyncio.gather(
            *(
                engine.query(
                    source,
                    entry.api_key,
                    entry.base_url,
                    timeout_secs=entry.timeout,
                    access_token=entry.access_token,
                    user_id=entry.user_id,
                    lang=lang,
                )
                for entry, source in zip(entries, sources)
            )
        )
    )


def _summarize(result: UsageResult) -> str:
    if not result.success:
        return result.error or "failed"
    records = parse_usage_data(result.data)
    parts = []
    for record in records:
        label = record.plan_name or "usage"
        if record.is_valid is False:
            parts.append(f"{label}: invalid ({record.invalid_message or 'no message'})")
        else:
            unit = f" {record.unit}" if record.unit else ""
            parts.append(f"{label}: {record.remaining if record.remaining is not None else '-'}{unit} left")
    return "; ".join(parts)


@app.command()
def batch(
    manifest: str = typer.Argument(..., help="YAML manifest listing the providers to query"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML engine config (default: USAGE_SCRIPT_* env vars)"),
    output_json: bool = typer.Option(False, "--json", help="Output {name: envelope} as JSON"),
    lang: str = typer.Option("en", "--lang", help="Error message language: en or zh"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress all logging except errors"),
) -> None:
    """Query every provider in MANIFEST concurrently.

    Each entry runs in its own invocation with its own interpreter sessions,
    so one failing or runaway script does not affect the others. Exits with
    code 1 if any entry failed.
    """
    _configure_logging(verbose, quiet)
    lang = _check_lang(lang)
    manifest_path = Path(manifest).resolve()
    if not manifest_path.is_file():
        console.print(f"[red]Error: Manifest not found: {manifest_path}[/red]")
        raise typer.Exit(code=1)

    try:
        entries = _load_manifest(manifest_path)
        sources = [entry.load_source(manifest_path.parent) for entry in entries]
    except (yaml.YAMLError, ValueError, ValidationError, KeyError, OSError) as e:
        console.print(f"[red]Error: Invalid manifest {manifest_path}: {e}[/red]")
        raise typer.Exit(code=1)

    engine = UsageScriptEngine(_load_config(config))
    results = asyncio.run(_run_batch(engine, entries, sources, lang))

    if output_json:
        print(batch_to_json((entry.name, result) for entry, result in zip(entries, results)), end="")
    else:
        print_batch_summary(
            [(entry.name, result.success, _summarize(result)) for entry, result in zip(entries, results)]
        )

    if not all(result.success for result in results):
        raise typer.Exit(code=1)


@app.command(name="check-url")
def check_url(
    url: str = typer.Argument(..., help="URL a script would request"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML engine config (default: USAGE_SCRIPT_* env vars)"),
    lang: str = typer.Option("en", "--lang", help="Error message language: en or zh"),
) -> None:
    """Run the scheme, credential, allowlist and egress checks on URL.

    Resolves the host and reports every address. Nothing is sent.
    """
    lang = _check_lang(lang)
    engine = UsageScriptEngine(_load_config(config))
    try:
        validated = asyncio.run(engine.guard.validate(url))
    except UsageScriptError as e:
        print_error(e, lang)
        raise typer.Exit(code=1)
    print_url_check(validated, engine.config.egress_policy.value)


@app.command()
def templates(
    name: Optional[str] = typer.Argument(None, help="Print this preset's source"),
) -> None:
    """List the built-in preset scripts, or print one."""
    if name is None:
        print_templates({key: required_variables(key) for key in PRESET_TEMPLATES})
        return
    try:
        source = get_template(name)
    except KeyError as e:
        console.print(f"[red]Error: {e.args[0]}[/red]")
        raise typer.Exit(code=1)
    print_template_source(name, source)


@app.command()
def version() -> None:
    """Show the QuotaScript version."""
    console.print(f"QuotaScript v{__version__}")


@app.command(name="mcp-serve")
def mcp_serve() -> None:
    """Start the QuotaScript MCP server (stdio transport).

    Exposes usage-script execution, URL checks and the preset catalogue as
    MCP tools for Cursor, Claude Desktop, and other MCP clients.
    """
    from quotascript.mcp_server import run_server
    run_server()


@app.command(name="mcp-config")
def mcp_config() -> None:
    """Print the MCP config block for Cursor/Claude Desktop settings."""
    config = {
        "mcpServers": {
            "quotascript": {
                "command": "quotascript",
                "args": ["mcp-serve"],
                "env": {},
            }
        }
    }
    print(json.dumps(config, indent=2))


if __name__ == "__main__":
    app()
