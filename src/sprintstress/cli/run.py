"""sprintstress run — Launch the concurrent persona load test.

Resolves config, assigns registered accounts to persona roles, runs every
persona in its own browser session, and prints a Rich summary of the
per-persona verdicts and findings.

Features:
- TTY-aware output: Rich panels only in interactive terminals; plain
  line-by-line output in CI/pipes (auto-detected or via --plain).
- --fail-on-severity: Exit 1 only when findings meet or exceed a threshold.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sprintstress.config import StressConfig, StressConfigError
from sprintstress.models import ROLES

console = Console(stderr=True)
output_console = Console()  # stdout for machine-readable output

logger = logging.getLogger("sprintstress.cli.run")

# ── Severity ordering ─────────────────────────────────────────────────────

_SEVERITY_LEVELS = ["block", "critical", "high", "medium", "low", "any"]
_SEVERITY_ORDER: dict[str, int] = {s: i for i, s in enumerate(_SEVERITY_LEVELS)}


def _finding_meets_threshold(finding_severity: str, threshold: str) -> bool:
    """Return True if a finding severity is at or above the given threshold."""
    if threshold == "any":
        return True
    finding_rank = _SEVERITY_ORDER.get(finding_severity, len(_SEVERITY_ORDER))
    threshold_rank = _SEVERITY_ORDER.get(threshold, len(_SEVERITY_ORDER))
    return finding_rank <= threshold_rank


def _plain_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def _print_error(c: Console, plain: bool, message: str, title: str = "Error") -> None:
    """Print an error message in either plain or Rich mode."""
    if plain:
        _plain_print(f"[{title}] {message}")
    else:
        c.print(Panel(f"[red]{message}[/red]", title=f"[red]{title}[/red]", border_style="red"))


# ── Config builder ────────────────────────────────────────────────────────


def _resolve_project_dir() -> Path:
    """Find the .sprintstress/ project directory, searching upward from cwd."""
    current = Path.cwd()
    candidate = current / ".sprintstress"
    if candidate.is_dir():
        return candidate
    for parent in current.parents:
        candidate = parent / ".sprintstress"
        if candidate.is_dir():
            return candidate
    return current / ".sprintstress"


def _load_config(project_dir: Path) -> StressConfig:
    """Load config.yaml if present, else defaults rooted at ``project_dir``."""
    config_path = project_dir / "config.yaml"
    if config_path.is_file():
        return StressConfig.from_file(config_path)
    return StressConfig._from_dict({}, project_dir)


def _parse_distribution(value: str) -> dict[str, int]:
    """Parse ``spot=2,quiz=1`` into a role -> count mapping."""
    distribution = {role: 0 for role in ROLES}
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        role, sep, count = part.partition("=")
        if not sep:
            raise StressConfigError(f"Invalid --roles entry {part!r}\n\nExpected format: role=count (e.g. spot=2,quiz=1)")
        try:
            distribution[role.strip()] = int(count)
        except ValueError:
            raise StressConfigError(f"Invalid count in --roles entry {part!r}") from None
    return distribution


def _build_config(
    project_dir: Path,
    base_url: str | None,
    roles: str | None,
    concurrency: int | None,
    duration: float | None,
    headless: bool,
) -> StressConfig:
    """Build a StressConfig from config.yaml, then apply CLI overrides."""
    config = _load_config(project_dir)

    if base_url:
        config.base_url = base_url.rstrip("/")
    if roles:
        config.user_distribution = _parse_distribution(roles)
        config.total_users = sum(config.user_distribution.values())
    if concurrency is not None:
        config.max_concurrency = concurrency
    if duration is not None:
        config.role_durations = {role: duration for role in ROLES}
    config.headless = headless

    config.validate()
    return config


# ── Output helpers ────────────────────────────────────────────────────────


def _print_run_header(config: StressConfig, plain: bool) -> None:
    distribution = ", ".join(f"{role}={n}" for role, n in config.user_distribution.items() if n)
    if plain:
        _plain_print(
            f"SprintStress run starting: target={config.base_url} users={config.total_users} "
            f"({distribution}) concurrency={config.concurrency} headless={config.headless}"
        )
        return
    info_lines = [
        f"[bold]Target:[/bold]       {config.base_url}",
        f"[bold]Users:[/bold]        {config.total_users} ({distribution})",
        f"[bold]Concurrency:[/bold]  {config.concurrency}",
        f"[bold]Viewport:[/bold]     {config.viewport[0]}x{config.viewport[1]}",
        f"[bold]Headless:[/bold]     {config.headless}",
        f"[bold]Accounts:[/bold]     {config.users_file}",
    ]
    console.print()
    console.print(Panel("\n".join(info_lines), title="[bold cyan]SprintStress Run[/bold cyan]", border_style="cyan"))
    console.print()


def _print_results(result, plain: bool) -> None:
    if plain:
        for p in result.persona_reports:
            status = "PASS" if p.passed else "FAIL"
            _plain_print(f"{status} {p.label} [{p.role}] {p.username}: {p.iterations} iterations ({p.duration_seconds:.1f}s)")
            if p.error:
                _plain_print(f"  Error: {p.error}")
        verdict = "PASSED" if result.passed else "FAILED"
        _plain_print(f"RESULT: {verdict} -- {len(result.findings)} findings, {result.duration_seconds:.1f}s")
        _plain_print(f"Run ID: {result.run_id}")
        return

    table = Table(title="Personas", show_lines=False)
    table.add_column("Persona", style="bold")
    table.add_column("Role")
    table.add_column("User")
    table.add_column("Result")
    table.add_column("Iterations", justify="right")
    table.add_column("OK / Failed", justify="right")
    table.add_column("Notes", style="dim")
    for p in result.persona_reports:
        status = "[green]PASS[/green]" if p.passed else "[red]FAIL[/red]"
        counts = f"{sum(p.successes.values())} / {sum(p.failures.values())}"
        table.add_row(p.label, p.role, p.username, status, str(p.iterations), counts, p.error or p.stop_reason)
    console.print(table)

    border = "green" if result.passed else "red"
    verdict = "[bold green]ALL PERSONAS PASSED[/bold green]" if result.passed else "[bold red]RUN FAILED[/bold red]"
    summary_lines = [
        verdict,
        "",
        f"  Personas:  {sum(1 for p in result.persona_reports if p.passed)}/{len(result.persona_reports)} passed",
        f"  Findings:  {len(result.findings)}",
        f"  Duration:  {result.duration_seconds:.1f}s",
        f"  Run ID:    {result.run_id}",
    ]
    console.print()
    console.print(Panel("\n".join(summary_lines), border_style=border))
    console.print()


# ── Main command ──────────────────────────────────────────────────────────


def run(
    base_url: str | None = typer.Option(
        None,
        "--base-url",
        "-u",
        help="Frontend URL of the game. Overrides config.yaml.",
    ),
    roles: str | None = typer.Option(
        None,
        "--roles",
        "-r",
        help="Role distribution as role=count pairs, e.g. spot=2,quiz=1. Sets total users.",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        help="Maximum personas running at once.  [default: one per user]",
    ),
    duration: float | None = typer.Option(
        None,
        "--duration",
        "-d",
        help="Wall-clock budget in seconds for every role. Overrides role_durations.",
    ),
    skip_preflight: bool = typer.Option(
        False,
        "--skip-preflight",
        help="Do not check that the target URL responds before launching.",
    ),
    fail_on_severity: str = typer.Option(
        "any",
        "--fail-on-severity",
        help="Exit 1 only if findings meet this severity: block, critical, high, medium, low, any.",
    ),
    plain: bool = typer.Option(False, "--plain", help="Plain ASCII output for CI and screen readers."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    headless: bool = typer.Option(
        True,
        "--headless/--no-headless",
        help="Run browsers in headless mode (default) or visible.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Run the persona load test against the game.

    \b
    Examples:
      sprintstress run
      sprintstress run --roles spot=3,contract=2 --duration 120
      sprintstress run --no-headless --concurrency 1
      sprintstress run --output json | jq '.passed'
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s  %(message)s" if verbose else "%(asctime)s %(threadName)s  %(message)s",
    )

    if not sys.stdout.isatty() and not plain and output_format != "json":
        plain = True

    if fail_on_severity not in _SEVERITY_LEVELS:
        _print_error(
            console,
            plain,
            f"Invalid --fail-on-severity: {fail_on_severity!r}\n\nValid choices: {', '.join(_SEVERITY_LEVELS)}",
            "Config Error",
        )
        raise typer.Exit(code=2)
    if output_format not in ("text", "json"):
        _print_error(console, plain, f"Invalid output format: {output_format!r}\n\nValid formats: text, json", "Config Error")
        raise typer.Exit(code=2)

    project_dir = _resolve_project_dir()
    try:
        config = _build_config(project_dir, base_url, roles, concurrency, duration, headless)
    except StressConfigError as exc:
        _print_error(console, plain, str(exc), "Config Error")
        raise typer.Exit(code=2)

    if output_format == "text":
        _print_run_header(config, plain)

    try:
        from sprintstress.engine.orchestrator import SprintStressOrchestrator
    except ImportError as exc:
        _print_error(
            console,
            plain,
            f"Failed to import SprintStress engine: {exc}\n\n"
            "This usually means a dependency is missing.\n"
            "Try: pip install sprintstress\n"
            "Then: sprintstress install",
            "Import Error",
        )
        raise typer.Exit(code=3)

    orchestrator = SprintStressOrchestrator(config, preflight=not skip_preflight)
    try:
        _report_md, all_passed, result = orchestrator.run()
    except KeyboardInterrupt:
        orchestrator.cancel_token.cancel()
        if plain:
            _plain_print("Run interrupted by user.")
        else:
            console.print("\n[yellow]Run interrupted by user.[/yellow]")
        raise typer.Exit(code=1)
    except StressConfigError as exc:
        _print_error(console, plain, str(exc), "Config Error")
        raise typer.Exit(code=2)
    except Exception as exc:
        logger.exception("Unexpected error during run")
        _print_error(
            console,
            plain,
            f"Unexpected error: {exc}\n\nRun with --verbose for full traceback.",
            "Infrastructure Error",
        )
        raise typer.Exit(code=3)

    if output_format == "json":
        output_console.print_json(json.dumps(dataclasses.asdict(result), ensure_ascii=False))
    else:
        _print_results(result, plain)

    if not all_passed:
        qualifying = [f for f in result.findings if _finding_meets_threshold(f.severity, fail_on_severity)]
        if qualifying or fail_on_severity == "any":
            raise typer.Exit(code=1)
        if output_format == "text":
            msg = (
                f"Run failed but no findings at or above '{fail_on_severity}' severity. "
                "Exiting 0 per --fail-on-severity."
            )
            if plain:
                _plain_print(f"NOTE: {msg}")
            else:
                console.print(f"[dim]{msg}[/dim]")
