"""SprintStress CLI — Main Typer entry point.

Registers all subcommands and provides --version / --verbose global options.
"""

from __future__ import annotations

import typer
from rich.console import Console

from sprintstress import __version__

TAGLINE = "Concurrent persona load testing for Stock Sprint."

console = Console()

# ── Version callback ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold cyan]sprintstress[/bold cyan] v{__version__}")
        console.print(f"  {TAGLINE}", style="dim")
        raise typer.Exit()


# ── Main app ──────────────────────────────────────────────────────────────

app = typer.Typer(
    name="sprintstress",
    help=TAGLINE,
    rich_markup_mode="rich",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show SprintStress version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
) -> None:
    """SprintStress -- simulated players hammering a live Stock Sprint game.

    Spot, contract, loan, quiz and minority-game personas, one browser each.
    """
    if verbose:
        import logging

        logging.basicConfig(level=logging.DEBUG, format="%(name)s  %(message)s")


# ── Register subcommands ──────────────────────────────────────────────────

from sprintstress.cli.check import check  # noqa: E402
from sprintstress.cli.init_cmd import init  # noqa: E402
from sprintstress.cli.install import install  # noqa: E402
from sprintstress.cli.register import register  # noqa: E402
from sprintstress.cli.run import run  # noqa: E402
from sprintstress.cli.validate import validate  # noqa: E402

app.command(name="check", help="Run live round-trip sanity checks with one account.")(check)
app.command(name="init", help="Initialize a .sprintstress/ project directory.")(init)
app.command(name="install", help="Install browser dependencies (Playwright).")(install)
app.command(name="register", help="Register fresh test accounts.")(register)
app.command(name="run", help="Run the concurrent persona load test.")(run)
app.command(name="validate", help="Check config and the account pool without a browser.")(validate)
