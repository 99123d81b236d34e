"""sprintstress init — Initialize a .sprintstress/ project directory.

Creates the directory structure, a config template and an empty account
pool so ``sprintstress register`` and ``sprintstress run`` have somewhere
to read and write.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

console = Console()

_SAMPLE_CONFIG = """\
# SprintStress project configuration

# Game under test
base_url: "https://stock-sprint-frontend.vercel.app"
api_url: "https://stock-sprint-backend.onrender.com"

# Load shape: per-role counts must add up to total_users
total_users: 5
user_distribution:
  spot: 1       # User A: spot trader
  contract: 1   # User B: contract trader
  loan: 1       # User C: loan-shark client
  quiz: 1       # User D: quiz player
  minority: 1   # User E: minority-game player

# Personas running at once (default: one per user)
# max_concurrency: 5

# Wall-clock budget per role (seconds)
role_durations:
  spot: 60
  contract: 60
  loan: 60
  quiz: 600
  minority: 600

# Stop early once the game reaches this day
test_end_day: 10

# Fixed pause after every persona iteration (seconds)
settle_seconds: 1.0

# Browser
headless: true
viewport:
  width: 375
  height: 667
action_timeout_ms: 15000
navigation_timeout_ms: 30000

# Persona policy
loan_increment: 300
minority_bet: 100

# Paths (relative to this file)
users_file: data/users.json
evidence_dir: evidence
"""


def init(
    dir: Path = typer.Option(
        Path("."),
        "--dir",
        "-d",
        help="Parent directory for .sprintstress/ project. Defaults to current directory.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite an existing config.yaml.",
    ),
) -> None:
    """Initialize a new SprintStress project directory.

    Creates .sprintstress/ with data/ and evidence/ subdirectories, a
    config.yaml template and an empty data/users.json.
    """
    project_dir = dir.resolve() / ".sprintstress"

    if project_dir.exists() and not force:
        console.print(
            Panel(
                f"[yellow]Directory already exists:[/yellow] {project_dir}\n\nUse [bold]--force[/bold] to overwrite.",
                title="Already Initialized",
                border_style="yellow",
            )
        )
        raise typer.Exit(code=2)

    subdirs = ["data", "evidence"]
    for sub in subdirs:
        (project_dir / sub).mkdir(parents=True, exist_ok=True)

    (project_dir / "config.yaml").write_text(_SAMPLE_CONFIG, encoding="utf-8")
    users_path = project_dir / "data" / "users.json"
    if not users_path.exists():
        users_path.write_text("[]\n", encoding="utf-8")

    # Account passwords live in data/users.json; keep them out of git
    gitignore_path = project_dir.parent / ".gitignore"
    entries = [".sprintstress/data/", ".sprintstress/evidence/"]
    existing = gitignore_path.read_text(encoding="utf-8") if gitignore_path.exists() else ""
    missing = [e for e in entries if e not in existing]
    if missing:
        block = "# SprintStress — test accounts and run evidence\n" + "\n".join(missing) + "\n"
        gitignore_path.write_text((existing.rstrip("\n") + "\n\n" if existing else "") + block, encoding="utf-8")

    tree = Tree(f"[bold green]{project_dir}[/bold green]", guide_style="dim")
    tree.add("[cyan]config.yaml[/cyan]")
    for sub in subdirs:
        branch = tree.add(f"[blue]{sub}/[/blue]")
        for child in sorted((project_dir / sub).iterdir()):
            if child.is_file():
                branch.add(f"[dim]{child.name}[/dim]")

    console.print()
    console.print(Panel(tree, title="[bold green]SprintStress Initialized[/bold green]", border_style="green"))
    console.print()
    console.print("[dim]Next steps:[/dim]")
    console.print("  1. Edit [cyan].sprintstress/config.yaml[/cyan] with the game URL and role mix")
    console.print("  2. Run [bold]sprintstress install[/bold] to set up Playwright")
    console.print("  3. Run [bold]sprintstress register --count 5[/bold] to create test accounts")
    console.print()
    console.print("  Run: [bold]sprintstress run[/bold]")
    console.print()
