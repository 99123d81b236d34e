"""sprintstress register — Create fresh game accounts for the persona pool.

Registers accounts one after another in a single browser session and
appends each to the credentials file as soon as the game confirms it.
"""

from __future__ import annotations

import logging
import time

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sprintstress.cli.run import _load_config, _resolve_project_dir
from sprintstress.config import StressConfigError
from sprintstress.credentials import CredentialStore, mask_password

console = Console(stderr=True)

logger = logging.getLogger("sprintstress.cli.register")

DEFAULT_PASSWORD = "Test1234"


def make_account_names(stamp: int) -> tuple[str, str]:
    """Nickname and username for a generated account.

    Usernames are letters and digits only; the signup form rejects ``_``.
    """
    return f"測試員工{stamp}", f"testuser{stamp}"


def register(
    count: int = typer.Option(5, "--count", "-n", min=1, help="Number of accounts to create."),
    password: str = typer.Option(DEFAULT_PASSWORD, "--password", help="Password for every new account."),
    headless: bool = typer.Option(True, "--headless/--no-headless", help="Run the browser headless."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Register COUNT new accounts and store them in the credentials file.

    \b
    Examples:
      sprintstress register --count 5
      sprintstress register -n 1 --no-headless
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s  %(message)s",
    )

    try:
        config = _load_config(_resolve_project_dir())
    except StressConfigError as exc:
        console.print(Panel(f"[red]{exc}[/red]", title="[red]Config Error[/red]", border_style="red"))
        raise typer.Exit(code=2)
    config.headless = headless
    store = CredentialStore(config.users_file)

    from sprintstress.engine.probe import ROUTE_ROOT
    from sprintstress.engine.session import BrowserSession

    created: list[tuple[str, str]] = []
    failed = 0
    with BrowserSession(config) as session:
        actions = session.actions("register", evidence_dir=config.evidence_dir / "register", credential_store=store)
        for i in range(count):
            nick, user = make_account_names(int(time.time() * 1000) + i)
            session.probe.goto(ROUTE_ROOT)
            with console.status(f"[bold blue]Registering {user} ({i + 1}/{count})...[/bold blue]", spinner="dots"):
                ok = actions.register(nick, user, password)
            if ok:
                created.append((nick, user))
            else:
                failed += 1

    table = Table(title=f"Registered accounts ({store.path})")
    table.add_column("Nickname")
    table.add_column("Username", style="bold")
    table.add_column("Password", style="dim")
    for nick, user in created:
        table.add_row(nick, user, mask_password(password))
    console.print(table)

    if failed:
        console.print(
            Panel(
                f"[red]{failed} of {count} registration(s) failed.[/red]\n\n"
                f"Screenshots: {config.evidence_dir / 'register'}",
                border_style="red",
            )
        )
        raise typer.Exit(code=1)
    console.print(Panel(f"[green]{len(created)} account(s) registered.[/green]", border_style="green"))
