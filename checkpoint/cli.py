import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from checkpoint import __version__
from checkpoint.config import find_project_root
from checkpoint.manager import CheckpointManager, format_size, format_timestamp


def _setup_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _fail(console, message):
    console.print(f"[red]{message}[/red]")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--root", "root", type=click.Path(file_okay=False, path_type=str), default=None,
              help="Project directory. Defaults to the nearest parent holding .checkpoints.")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx, root, verbose):
    """Checkpoint: snapshot and restore your working tree."""
    _setup_logging(verbose)
    ctx.obj = CheckpointManager(root or find_project_root())


@main.command()
@click.pass_obj
def setup(manager):
    """Create .checkpoints, default config, .gitignore entry, and a first checkpoint."""
    console = Console()
    result = manager.setup()
    if not result["success"]:
        _fail(console, f"Setup failed: {result['error']}")

    console.print("[bold green]Checkpoint setup complete.[/bold green]")
    console.print(f"  [dim]{manager.checkpoint_dir}[/dim]")
    if result["gitignore_updated"]:
        console.print("  Added .checkpoints/ to .gitignore")
    if result["initial_checkpoint"]:
        console.print(f"  Initial checkpoint: [cyan]{result['initial_checkpoint']}[/cyan]")
    console.print("  Next: [bold]checkpoint create -d 'before refactor'[/bold]")


@main.command()
@click.option("-n", "--name", default=None, help="Custom checkpoint name.")
@click.option("-d", "--description", default=None, help="What this checkpoint captures.")
@click.pass_obj
def create(manager, name, description):
    """Snapshot the current project files."""
    console = Console()
    result = manager.create(name, description)
    if not result["success"]:
        _fail(console, f"Failed to create checkpoint: {result['error']}")

    console.print(f"[bold green]Checkpoint created:[/bold green] [cyan]{result['name']}[/cyan]")
    console.print(f"  Files: {result['file_count']}  Size: {result['size']}")
    console.print(f"  [dim]{result['description'] or 'Manual checkpoint'}[/dim]")


@main.command("list")
@click.pass_obj
def list_cmd(manager):
    """List checkpoints, newest first."""
    console = Console()
    checkpoints = manager.get_checkpoints()
    if not checkpoints:
        console.print("[dim]No checkpoints found. Create one with 'checkpoint create'.[/dim]")
        return

    table = Table(title=f"Checkpoints ({len(checkpoints)})")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Name", style="bold cyan")
    table.add_column("Description")
    table.add_column("Created", style="dim")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")

    for i, cp in enumerate(checkpoints, 1):
        table.add_row(
            str(i),
            cp.name,
            cp.description or "",
            format_timestamp(cp.timestamp),
            str(cp.file_count),
            format_size(cp.total_size),
        )

    console.print(table)


@main.command()
@click.argument("identifier")
@click.option("--dry-run", is_flag=True, help="Show what would change without touching files.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_obj
def restore(manager, identifier, dry_run, yes):
    """Restore a checkpoint by name or partial name.

    An emergency backup of the current state is taken first.
    """
    console = Console()

    if not dry_run and not yes:
        preview = manager.restore(identifier, dry_run=True)
        if not preview["success"]:
            _print_failure(console, preview)
        cp = preview["checkpoint"]
        console.print(f"Restore [bold cyan]{cp['name']}[/bold cyan]?")
        if preview["would_delete"]:
            console.print(f"  [yellow]{preview['would_delete']} file(s) not in the checkpoint will be deleted.[/yellow]")
        if not click.confirm("Continue?", default=False):
            console.print("[dim]Cancelled.[/dim]")
            return

    result = manager.restore(identifier, dry_run=dry_run)
    if not result["success"]:
        _print_failure(console, result)

    if dry_run:
        cp = result["checkpoint"]
        console.print(f"[bold]DRY RUN[/bold] - would restore [cyan]{cp['name']}[/cyan]")
        console.print(f"  Description: {cp['description'] or ''}")
        console.print(f"  Date: {format_timestamp(cp['timestamp'])}")
        console.print(f"  Files: {cp['fileCount']}")
        if result["would_delete"]:
            console.print(f"  [yellow]Would delete {result['would_delete']} file(s) not in the checkpoint:[/yellow]")
            for f in result["files_to_delete"][:10]:
                console.print(f"    [dim]{f}[/dim]")
            if result["would_delete"] > 10:
                console.print(f"    [dim]... and {result['would_delete'] - 10} more[/dim]")
        return

    console.print(f"[bold green]Restored[/bold green] [cyan]{result['restored']}[/cyan]")
    if result["emergency_backup"]:
        console.print(f"  Emergency backup: [cyan]{result['emergency_backup']}[/cyan]")
    console.print(f"  Files restored: {result['file_count']}  Deleted: {result['deleted']}")


def _print_failure(console, result):
    console.print(f"[red]{result['error']}[/red]")
    if result.get("available"):
        console.print("\nAvailable checkpoints:")
        for name in result["available"]:
            console.print(f"  - {name}")
    raise SystemExit(1)


@main.command()
@click.option("-n", "--limit", default=20, help="Number of entries to show.")
@click.pass_obj
def changelog(manager, limit):
    """Show the checkpoint history."""
    console = Console()
    entries = manager.get_changelog()
    if not entries:
        console.print("[dim]No history yet. Create a checkpoint first.[/dim]")
        return

    table = Table(title=f"History ({len(entries)} entries)")
    table.add_column("Time", style="dim")
    table.add_column("Action", style="bold")
    table.add_column("Description", max_width=60)
    table.add_column("Details", style="dim", max_width=40)

    for entry in entries[:limit]:
        table.add_row(
            format_timestamp(entry.get("timestamp", ""), "%m-%d %H:%M"),
            entry.get("action", ""),
            entry.get("description", ""),
            entry.get("details") or "",
        )

    console.print(table)


@main.command()
@click.argument("description")
@click.option("--details", default=None, help="Longer explanation of the change.")
@click.option("--action", "action", default="CODE_CHANGE",
              help="Entry type, e.g. REFACTOR, ADD_FEATURE, BUG_FIX.")
@click.pass_obj
def log(manager, description, details, action):
    """Add a custom entry to the checkpoint history."""
    entry = manager.log_to_changelog(action, description, details)
    if entry is None:
        _fail(Console(), "Could not write the changelog.")
    click.echo(f"Logged {action}: {description}")


@main.command()
@click.pass_obj
def mcp(manager):
    """Serve checkpoint tools over MCP (stdio)."""
    from checkpoint.mcp_server import run_server

    run_server(manager.project_path)
