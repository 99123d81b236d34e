"""sprintstress validate — Check config and the account pool without a browser.

Loads config.yaml, checks the role distribution adds up to the user count,
and checks the credentials file is a JSON array of
``{username, password, registered}`` objects with enough registered accounts.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sprintstress.cli.run import _resolve_project_dir
from sprintstress.config import StressConfig, StressConfigError

console = Console(stderr=True)

_SEVERITY_ORDER = {"error": 0, "warning": 1, "info": 2}


# ── Validation helpers ────────────────────────────────────────────────────


def _validate_config(config: StressConfig) -> list[dict[str, Any]]:
    issues: list[dict[str, Any]] = []
    try:
        config.validate()
    except StressConfigError as exc:
        issues.append({"severity": "error", "field": "user_distribution", "message": str(exc).split("\n")[0]})
    if config.max_concurrency is not None and config.max_concurrency <= 0:
        issues.append(
            {"severity": "warning", "field": "max_concurrency", "message": "max_concurrency <= 0, using one worker per user"}
        )
    for role, seconds in config.role_durations.items():
        if seconds <= 0:
            issues.append({"severity": "error", "field": f"role_durations.{role}", "message": "duration must be positive"})
    if config.test_end_day <= 0:
        issues.append({"severity": "error", "field": "test_end_day", "message": "test_end_day must be positive"})
    return issues


def _validate_users(path: Path, total_users: int) -> list[dict[str, Any]]:
    """Validate the credentials file. Returns list of issue dicts."""
    issues: list[dict[str, Any]] = []
    if not path.is_file():
        issues.append(
            {
                "severity": "error",
                "field": "users_file",
                "message": f"Not found: {path}. Run: sprintstress register --count {max(total_users, 1)}",
            }
        )
        return issues

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        issues.append({"severity": "error", "field": "json_syntax", "message": f"JSON parse error: {exc}"})
        return issues

    if not isinstance(data, list):
        issues.append({"severity": "error", "field": "root", "message": "Credentials file must be a JSON array"})
        return issues

    seen: set[str] = set()
    registered = 0
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            issues.append({"severity": "error", "field": f"[{i}]", "message": "Entry must be an object"})
            continue
        for key in ("username", "password"):
            if not isinstance(item.get(key), str) or not item.get(key):
                issues.append({"severity": "error", "field": f"[{i}].{key}", "message": f"Missing or empty {key}"})
        if not isinstance(item.get("registered"), bool):
            issues.append({"severity": "warning", "field": f"[{i}].registered", "message": "registered should be true/false"})
        elif item["registered"]:
            registered += 1
        username = item.get("username")
        if isinstance(username, str) and username:
            if username in seen:
                issues.append({"severity": "info", "field": f"[{i}].username", "message": f"Duplicate username {username}"})
            seen.add(username)

    if registered == 0:
        issues.append({"severity": "error", "field": "registered", "message": "No registered accounts"})
    elif registered < total_users:
        issues.append(
            {
                "severity": "warning",
                "field": "registered",
                "message": f"{registered} registered account(s) for {total_users} users; extra personas reuse the first account",
            }
        )
    return issues


def _print_config(config: StressConfig) -> None:
    table = Table(title="Configuration", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("base_url", config.base_url)
    table.add_row("api_url", config.api_url)
    table.add_row("total_users", str(config.total_users))
    table.add_row("user_distribution", ", ".join(f"{r}={n}" for r, n in config.user_distribution.items()))
    table.add_row("concurrency", str(config.concurrency))
    table.add_row("role_durations", ", ".join(f"{r}={s:g}s" for r, s in config.role_durations.items()))
    table.add_row("test_end_day", str(config.test_end_day))
    table.add_row("users_file", str(config.users_file))
    table.add_row("evidence_dir", str(config.evidence_dir))
    console.print(table)


def _print_result(name: str, issues: list[dict[str, Any]]) -> None:
    """Print validation results for one checked item."""
    errors = [i for i in issues if i["severity"] == "error"]
    warnings = [i for i in issues if i["severity"] == "warning"]

    if not errors and not warnings:
        console.print(f"  [green]✓[/green] [dim]{name}[/dim]  [green]OK[/green]")
    elif errors:
        status = f"[bold red]{len(errors)} error(s)[/bold red]"
        if warnings:
            status += f", [yellow]{len(warnings)} warning(s)[/yellow]"
        console.print(f"  [red]✗[/red] [bold]{name}[/bold]  {status}")
    else:
        console.print(f"  [yellow]![/yellow] [dim]{name}[/dim]  [yellow]{len(warnings)} warning(s)[/yellow]")

    for issue in sorted(issues, key=lambda i: _SEVERITY_ORDER.get(i["severity"], 99)):
        sev_label = {
            "error": "[bold red]ERROR[/bold red]",
            "warning": "[yellow]WARN[/yellow]",
            "info": "[dim]INFO[/dim]",
        }.get(issue["severity"], issue["severity"])
        field = issue.get("field", "")
        field_str = f"[dim] ({field})[/dim]" if field else ""
        console.print(f"      {sev_label}{field_str}  {issue['message']}")


# ── CLI command ───────────────────────────────────────────────────────────


def validate(
    dir: Path | None = typer.Option(
        None,
        "--dir",
        "-d",
        help="SprintStress project directory. Defaults to auto-detected .sprintstress/ from cwd.",
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit 1 on warnings as well as errors (default: exit 1 on errors only).",
    ),
) -> None:
    """Validate config.yaml and the account pool without launching a browser.

    \b
    Examples:
      sprintstress validate
      sprintstress validate --strict
    """
    if dir is not None:
        project_dir = dir.resolve()
        if project_dir.name != ".sprintstress":
            project_dir = project_dir / ".sprintstress"
    else:
        project_dir = _resolve_project_dir()

    config_path = project_dir / "config.yaml"
    if not config_path.is_file():
        console.print(
            Panel(
                f"[red]Project not initialized.[/red]\n\n"
                f"Looked for {config_path}\n\n"
                "Fix: [bold]sprintstress init[/bold]",
                title="[red]Not Initialized[/red]",
                border_style="red",
            )
        )
        raise typer.Exit(code=2)

    try:
        config = StressConfig.from_file(config_path)
    except (StressConfigError, ValueError, TypeError) as exc:
        console.print(Panel(f"[red]{exc}[/red]", title="[red]Config Error[/red]", border_style="red"))
        raise typer.Exit(code=1)

    _print_config(config)
    console.print()

    config_issues = _validate_config(config)
    user_issues = _validate_users(config.users_file, config.total_users)
    _print_result("config.yaml", config_issues)
    _print_result(str(config.users_file), user_issues)

    all_issues = config_issues + user_issues
    total_errors = sum(1 for i in all_issues if i["severity"] == "error")
    total_warnings = sum(1 for i in all_issues if i["severity"] == "warning")

    console.print()
    if total_errors == 0 and total_warnings == 0:
        console.print(Panel("[bold green]Configuration valid. Ready to run.[/bold green]", border_style="green"))
    elif total_errors > 0:
        console.print(
            Panel(
                f"[bold red]Validation failed.[/bold red]  "
                f"{total_errors} error(s), {total_warnings} warning(s)\n\n"
                "Fix the errors above before running.",
                border_style="red",
            )
        )
        raise typer.Exit(code=1)
    elif strict:
        console.print(
            Panel(
                f"[bold yellow]Validation warnings found (--strict mode).[/bold yellow]  {total_warnings} warning(s)",
                border_style="yellow",
            )
        )
        raise typer.Exit(code=1)
    else:
        console.print(
            Panel(
                f"[yellow]Validation passed with {total_warnings} warning(s).[/yellow]  "
                "Use [bold]--strict[/bold] to fail on warnings.",
                border_style="yellow",
            )
        )
