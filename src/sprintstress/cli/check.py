"""sprintstress check — Live sanity checks of the game's bookkeeping.

Logs one registered account in, waits for the game clock, then runs the
round-trip checks (asset identity, buy/sell symmetry, contract count, loan
round trip) and prints a verdict per check.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import logging

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sprintstress.cli.run import _load_config, _resolve_project_dir
from sprintstress.config import StressConfigError
from sprintstress.credentials import CredentialStore
from sprintstress.engine.protocols import CancelToken
from sprintstress.engine.sanity import CHECKS, SanityChecker, findings_of

console = Console(stderr=True)
output_console = Console()

logger = logging.getLogger("sprintstress.cli.check")


def _error(message: str, title: str) -> None:
    console.print(Panel(f"[red]{message}[/red]", title=f"[red]{title}[/red]", border_style="red"))


def check(
    names: list[str] | None = typer.Option(
        None,
        "--check",
        "-c",
        help=f"Check to run; repeatable. One of: {', '.join(CHECKS)}.  [default: all]",
    ),
    account: int = typer.Option(0, "--account", "-a", min=0, help="Index of the account in the credentials file."),
    start_timeout: float = typer.Option(
        120.0,
        "--start-timeout",
        help="Seconds to wait for the game clock before giving up.",
    ),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    headless: bool = typer.Option(True, "--headless/--no-headless", help="Run the browser headless."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Verify trades, contracts and loans round-trip correctly on a live game.

    \b
    Examples:
      sprintstress check
      sprintstress check -c loan_round_trip --no-headless
      sprintstress check --output json
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s  %(message)s",
    )

    selected = list(names or CHECKS)
    unknown = [n for n in selected if n not in CHECKS]
    if unknown:
        _error(f"Unknown check(s): {', '.join(unknown)}\n\nValid checks: {', '.join(CHECKS)}", "Config Error")
        raise typer.Exit(code=2)
    if output_format not in ("text", "json"):
        _error(f"Invalid output format: {output_format!r}\n\nValid formats: text, json", "Config Error")
        raise typer.Exit(code=2)

    try:
        config = _load_config(_resolve_project_dir())
        credential = CredentialStore(config.users_file).pick(account)
    except StressConfigError as exc:
        _error(str(exc), "Config Error")
        raise typer.Exit(code=2)
    config.headless = headless

    from sprintstress.engine.session import BrowserSession

    stamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%d-%H%M%S")
    evidence_dir = config.evidence_dir / f"check-{stamp}"
    with BrowserSession(config) as session:
        actions = session.actions(credential.username, evidence_dir=evidence_dir)
        if not actions.login(credential.username, credential.password):
            _error(f"Login failed for {credential.username}.\n\nScreenshots: {evidence_dir}", "Bootstrap Error")
            raise typer.Exit(code=3)
        if not actions.wait_for_game_start(CancelToken.with_budget(start_timeout)):
            _error(f"Game clock did not start within {start_timeout:.0f}s.", "Bootstrap Error")
            raise typer.Exit(code=3)
        results = SanityChecker(actions, config, persona=credential.username).run(selected)

    passed = all(r.passed for r in results)
    if output_format == "json":
        payload = {
            "passed": passed,
            "username": credential.username,
            "checks": [dataclasses.asdict(r) for r in results],
        }
        output_console.print_json(json.dumps(payload, ensure_ascii=False))
    else:
        table = Table(title=f"Sanity checks ({credential.username})")
        table.add_column("Check", style="bold")
        table.add_column("Result")
        table.add_column("Detail", style="dim")
        for r in results:
            table.add_row(r.name, "[green]PASS[/green]" if r.passed else "[red]FAIL[/red]", r.detail)
        console.print(table)
        findings = findings_of(results)
        if passed:
            console.print(Panel(f"[green]{len(results)} check(s) passed.[/green]", border_style="green"))
        else:
            lines = [f"[{f.severity}] {f.description}" for f in findings]
            console.print(Panel("\n".join(lines), title="[red]Findings[/red]", border_style="red"))

    if not passed:
        raise typer.Exit(code=1)
