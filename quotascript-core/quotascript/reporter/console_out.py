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

"""Rich terminal output for usage queries.

Each printer answers one question:
  - run        → how much quota is left?
  - batch      → which providers answered, which failed, and why?
  - check-url  → would the engine be allowed to call this URL?
  - templates  → which presets exist and what do they need?
"""

from __future__ import annotations

from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from quotascript.errors import UsageScriptError
from quotascript.models.usage import UsageData
from quotascript.policy.egress import classify_ip, parse_ip
from quotascript.policy.url_guard import ValidatedUrl


def _make_console() -> Console:
    """Console with soft wrap; width follows the live terminal."""
    return Console(soft_wrap=True)


console = _make_console()

ICON_PASS = "[bold green][OK][/bold green]"
ICON_WARN = "[bold yellow][WARN][/bold yellow]"
ICON_DANGER = "[bold red][ALERT][/bold red]"
ICON_INFO = "[bold blue][INFO][/bold blue]"


def _safe_print(*args: Any, **kwargs: Any) -> None:
    """Print without cropping; long values fold instead of being cut."""
    kwargs.setdefault("crop", False)
    kwargs.setdefault("overflow", "fold")
    console.print(*args, **kwargs)


def _fmt_number(value: Optional[float]) -> str:
    if value is None:
        return "-"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def _validity(record: UsageData) -> str:
    if record.is_valid is False:
        return "[red]invalid[/red]"
    if record.is_valid is True:
        return "[green]valid[/green]"
    return "[dim]-[/dim]"


def build_usage_table(records: list[UsageData], title: str = "Usage") -> Table:
    """Build a table with one row per usage record."""
    table = Table(title=title, title_justify="left", expand=True)
    table.add_column("Plan", style="bold")
    table.add_column("Status")
    table.add_column("Remaining", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Unit")
    table.add_column("Note", overflow="fold")

    for record in records:
        note = record.invalid_message if record.is_valid is False else record.extra
        table.add_row(
            record.plan_name or "-",
            _validity(record),
            _fmt_number(record.remaining),
            _fmt_number(record.used),
            _fmt_number(record.total),
            record.unit or "-",
            note or "",
        )
    return table


def print_usage_result(records: list[UsageData]) -> None:
    """Print the records a successful query produced."""
    _safe_print(build_usage_table(records))
    if any(r.is_valid is False for r in records):
        _safe_print(
            f"  {ICON_WARN}  The provider reported the credentials as invalid "
            "for at least one plan."
        )


def print_error(error: UsageScriptError, lang: str = "en") -> None:
    """Print a failed query with its kind and category."""
    body = (
        f"  {ICON_DANGER}  [bold red]{error.localized(lang)}[/bold red]\n\n"
        f"  [dim]kind:[/dim] {error.kind.value}\n"
        f"  [dim]category:[/dim] {error.category.value}"
    )
    if error.status_code is not None:
        body += f"\n  [dim]status:[/dim] {error.status_code}"
    if error.index is not None:
        body += f"\n  [dim]index:[/dim] {error.index}"
    if error.field is not None:
        body += f"\n  [dim]field:[/dim] {error.field}"
    _safe_print(
        Panel(
            body,
            border_style="red",
            title="[bold red]usage query failed[/bold red]",
            title_align="left",
            expand=True,
            safe_box=True,
        )
    )


def print_batch_summary(rows: list[tuple[str, bool, str]]) -> None:
    """Print one line per batch entry: (name, success, summary)."""
    table = Table(title="Batch results", title_justify="left", expand=True)
    table.add_column("Name", style="bold")
    table.add_column("Result")
    table.add_column("Detail", overflow="fold")
    for name, ok, detail in rows:
        table.add_row(name, ICON_PASS if ok else ICON_DANGER, detail)
    _safe_print(table)

    failed = sum(1 for _, ok, _ in rows if not ok)
    _safe_print(f"[dim]{len(rows) - failed} succeeded | {failed} failed[/dim]")


def print_url_check(validated: ValidatedUrl, policy: str) -> None:
    """Print the addresses a URL resolved to and how each classifies."""
    lines = [f"  {ICON_PASS}  [bold green]ALLOWED[/bold green] under {policy} policy", ""]
    lines.append(f"  host: {validated.host}  port: {validated.port}")
    for address in validated.addresses:
        ip = parse_ip(address)
        labels = ", ".join(classify_ip(ip)) if ip is not None else ""
        lines.append(f"    - {address}" + (f"  [dim]({labels})[/dim]" if labels else ""))
    _safe_print(
        Panel(
            "\n".join(lines),
            border_style="green",
            title="[bold green]quotascript check-url[/bold green]",
            title_align="left",
            expand=True,
            safe_box=True,
        )
    )


def print_templates(templates: dict[str, list[str]]) -> None:
    """Print the preset catalogue: name → required variables."""
    table = Table(title="Preset templates", title_justify="left")
    table.add_column("Name", style="bold")
    table.add_column("Needs")
    for name, needs in sorted(templates.items()):
        table.add_row(name, ", ".join(needs) or "-")
    _safe_print(table)


def print_template_source(name: str, source: str) -> None:
    _safe_print(f"{ICON_INFO}  Template [bold]{name}[/bold]")
    _safe_print(Syntax(source, "javascript", line_numbers=False))
