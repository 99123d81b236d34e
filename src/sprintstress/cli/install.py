"""sprintstress install — Fetch the Chromium build personas drive.

Every persona session launches Playwright's Chromium, so that is the only
browser this command installs. ``--with-deps`` also pulls the system
libraries Chromium needs on a bare Linux host.
"""

from __future__ import annotations

import subprocess
import sys

import typer
from rich.console import Console
from rich.panel import Panel

console = Console()

INSTALL_TIMEOUT_SECONDS = 600


def _install_command(with_deps: bool) -> list[str]:
    cmd = [sys.executable, "-m", "playwright", "install"]
    if with_deps:
        cmd.append("--with-deps")
    cmd.append("chromium")
    return cmd


def _fail(message: str, title: str) -> None:
    console.print(Panel(message, title=f"[red]{title}[/red]", border_style="red"))
    raise typer.Exit(code=3)


def install(
    with_deps: bool = typer.Option(
        False,
        "--with-deps",
        help="Also install Chromium's system libraries (needs root on Linux).",
    ),
    ci: bool = typer.Option(False, "--ci", help="Quiet mode: no spinner or panels on success."),
) -> None:
    """Install the Chromium build SprintStress personas run in."""
    cmd = _install_command(with_deps)
    if not ci:
        console.print(
            Panel(
                "Downloading Playwright's Chromium"
                + (" and its system libraries" if with_deps else "")
                + ".\nThe first download takes a few minutes.",
                title="[bold]SprintStress Browser Setup[/bold]",
                border_style="blue",
            )
        )

    try:
        if ci:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=INSTALL_TIMEOUT_SECONDS)
        else:
            with console.status("[bold blue]Installing chromium...[/bold blue]", spinner="dots"):
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=INSTALL_TIMEOUT_SECONDS)
    except subprocess.TimeoutExpired:
        _fail(
            f"[red]Chromium download did not finish within {INSTALL_TIMEOUT_SECONDS // 60} minutes.[/red]",
            "Timeout",
        )

    if result.returncode != 0:
        stderr = result.stderr.strip() if result.stderr else "No error output."
        _fail(
            f"[red]playwright install exited with {result.returncode}.[/red]\n\n{stderr}\n\n"
            f"[dim]Retry by hand:[/dim]\n  {' '.join(cmd)}",
            "Installation Failed",
        )

    if ci:
        return
    console.print(
        Panel(
            "[green]Chromium is ready.[/green]\n\n"
            "Next:\n"
            "  [bold]sprintstress register --count 5[/bold]\n"
            "  [bold]sprintstress check[/bold]\n"
            "  [bold]sprintstress run[/bold]",
            title="[bold green]Installation Complete[/bold green]",
            border_style="green",
        )
    )
