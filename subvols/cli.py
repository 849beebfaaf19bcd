import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import OUTPUT_FORMATS, load_config
from .decorators import handle_subvol_errors
from .models import ListingResult, RecordFailure, ResolvedSubvolume
from .sources.base import U32_MAX, U64_MAX

# Listing output goes to stdout, diagnostics to stderr
console = Console()
err_console = Console(stderr=True)

logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=err_console, rich_tracebacks=True)]
)
logger = logging.getLogger("subvols")

app = typer.Typer(help="List btrfs subvolumes with their full paths")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    subvols - list the subvolumes of a btrfs filesystem.

    Walks the tree of tree roots, looks up where each subvolume is linked
    and prints its path from the top level subvolume.
    """
    if verbose or load_config().cli.verbose:
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.WARNING)


@app.command()
def about():
    """Display information about subvols."""
    console.print("[bold cyan]subvols - btrfs subvolume lister[/bold cyan]")
    console.print("")
    console.print("Reads the root backrefs of a mounted btrfs filesystem and")
    console.print("prints one line per subvolume:")
    console.print("")
    console.print("  ID <id> top level <top id> path <path>")
    console.print("")
    console.print("[bold]Commands:[/bold]")
    console.print("  subvols list <mountpoint>         List subvolumes (needs root)")
    console.print("  subvols list --from-dump <file>   List from a JSON dump")
    console.print("  subvols config --show             Show configuration")


@app.command(name="list")
@handle_subvol_errors
def list_subvolumes(
    path: Optional[Path] = typer.Argument(None, help="Any path on the mounted filesystem"),
    from_dump: Optional[Path] = typer.Option(None, "--from-dump", help="Read refs and dirs from a JSON dump instead"),
    output_format: Optional[str] = typer.Option(None, "--format", "-f", help="Output format: text, table, json"),
    page_size: Optional[int] = typer.Option(None, "--page-size", min=1, max=U32_MAX, help="Items requested per tree search"),
    min_id: Optional[int] = typer.Option(None, "--min-id", min=0, max=U64_MAX, help="First subvolume id to search from"),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Exit with code 2 if any subvolume was skipped"),
):
    """
    List subvolumes with their full paths.

    Output is sorted by descending subvolume id. Subvolumes whose path
    cannot be looked up are skipped and reported on stderr.

    Examples:
        subvols list /mnt/pool
        subvols list /mnt/pool --format json
        subvols list --from-dump refs.json
    """
    from .services import ListingService
    from .sources import MemorySource, open_filesystem

    config = load_config()
    output_format = output_format or config.output.format
    if output_format not in OUTPUT_FORMATS:
        raise ValueError(
            f"unknown output format '{output_format}', expected one of {', '.join(OUTPUT_FORMATS)}"
        )
    page_size = page_size if page_size is not None else config.search.page_size
    min_id = min_id if min_id is not None else config.search.min_objectid
    strict = strict if strict is not None else config.cli.strict

    if from_dump is not None:
        source = MemorySource.load(from_dump)
        result = ListingService(source, page_size=page_size, min_objectid=min_id).run()
    elif path is not None:
        with open_filesystem(str(path)) as fs:
            result = ListingService(fs, page_size=page_size, min_objectid=min_id).run()
    else:
        err_console.print("[red]Error: give a path on a btrfs filesystem or --from-dump[/red]")
        raise typer.Exit(code=1)

    _print_result(result, output_format, color=config.output.color)

    if result.failures:
        _print_failures(result.failures)
        if strict:
            raise typer.Exit(code=2)


def _print_result(result: ListingResult, output_format: str, color: bool = True) -> None:
    if output_format == "json":
        typer.echo(json.dumps([sub.to_dict() for sub in result.subvolumes], indent=2))
    elif output_format == "table":
        Console(no_color=not color).print(_build_table(result.subvolumes))
    else:
        for sub in result.subvolumes:
            typer.echo(sub.format_line())


def _build_table(subvolumes: List[ResolvedSubvolume]) -> Table:
    table = Table(title="Subvolumes")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Parent", style="blue", justify="right")
    table.add_column("Top Level", style="magenta", justify="right")
    table.add_column("Path", style="green")

    for sub in subvolumes:
        table.add_row(str(sub.root_id), str(sub.ref_tree), str(sub.top_id), sub.path)
    return table


def _print_failures(failures: List[RecordFailure]) -> None:
    err_console.print(f"[yellow]Skipped {len(failures)} subvolume(s):[/yellow]")
    for failure in failures:
        err_console.print(f"  ID {failure.root_id} (ref {failure.ref_tree}): {failure.message}",
                          markup=False, highlight=False)


@app.command()
@handle_subvol_errors
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", help="Initialize config file with defaults"),
    # Search settings
    set_page_size: Optional[int] = typer.Option(None, "--page-size", min=1, max=U32_MAX, help="Set items requested per tree search"),
    set_min_id: Optional[int] = typer.Option(None, "--min-id", min=0, max=U64_MAX, help="Set first subvolume id to search from"),
    # Output settings
    set_format: Optional[str] = typer.Option(None, "--format", help="Set default output format (text, table, json)"),
    set_color: Optional[bool] = typer.Option(None, "--color/--no-color", help="Enable colored table output"),
    # CLI settings
    set_verbose: Optional[bool] = typer.Option(None, "--cli-verbose/--no-cli-verbose", help="Enable verbose output by default"),
    set_strict: Optional[bool] = typer.Option(None, "--cli-strict/--no-cli-strict", help="Fail when subvolumes are skipped by default"),
):
    """
    View or edit subvols configuration.

    Configuration is stored at ~/.config/subvols/config.json (or ~/.subvols/config.json).

    Examples:
        subvols config --show
        subvols config --init
        subvols config --format json --page-size 1024
    """
    from .config import ensure_config_exists, get_config_path, update_config

    if init:
        config_path = ensure_config_exists()
        console.print(f"[green]Configuration initialized at {config_path}[/green]")
        return

    has_settings = any([
        set_page_size is not None, set_min_id is not None, set_format,
        set_color is not None, set_verbose is not None, set_strict is not None,
    ])

    if show or not has_settings:
        cfg = load_config()
        config_path = get_config_path()

        console.print(f"\n[bold]subvols Configuration[/bold]")
        console.print(f"[dim]Location: {config_path}[/dim]\n")

        console.print("[bold cyan]Search Settings:[/bold cyan]")
        console.print(f"  Page Size:    {cfg.search.page_size}")
        console.print(f"  Min ID:       {cfg.search.min_objectid}")

        console.print("\n[bold cyan]Output Settings:[/bold cyan]")
        console.print(f"  Format:       {cfg.output.format}")
        console.print(f"  Color:        {cfg.output.color}")

        console.print("\n[bold cyan]CLI Settings:[/bold cyan]")
        console.print(f"  Verbose:      {cfg.cli.verbose}")
        console.print(f"  Strict:       {cfg.cli.strict}")
        console.print("")
        return

    changes = []
    if set_page_size is not None:
        changes.append(f"Page size: {set_page_size}")
    if set_min_id is not None:
        changes.append(f"Min ID: {set_min_id}")
    if set_format is not None:
        changes.append(f"Output format: {set_format}")
    if set_color is not None:
        changes.append(f"Color: {set_color}")
    if set_verbose is not None:
        changes.append(f"CLI verbose: {set_verbose}")
    if set_strict is not None:
        changes.append(f"CLI strict: {set_strict}")

    console.print("[blue]Updating configuration:[/blue]")
    for change in changes:
        console.print(f"  • {change}")

    update_config(
        search_page_size=set_page_size,
        search_min_objectid=set_min_id,
        output_format=set_format,
        output_color=set_color,
        cli_verbose=set_verbose,
        cli_strict=set_strict,
    )
    console.print("[green]✓ Configuration updated![/green]")
