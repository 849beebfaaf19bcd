"""Decorators for subvols CLI commands."""

import functools
import logging
from typing import Callable, Any
import typer
from rich.console import Console

from .errors import DuplicateRootError, EnumerationError, SubvolError

logger = logging.getLogger(__name__)
console = Console(stderr=True)


def handle_subvol_errors(func: Callable) -> Callable:
    """
    Decorator to handle common listing errors.

    Centralizes error handling for:
    - EnumerationError: Tree search failed
    - DuplicateRootError: Search reported a root twice
    - FileNotFoundError: Path doesn't exist
    - PermissionError: Tree search needs privileges
    - ValueError: Invalid input or dump file
    - General exceptions: Unexpected errors
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except EnumerationError as e:
            console.print(f"[bold red]Error:[/bold red] Enumeration failed: {e}")
            raise typer.Exit(code=1)
        except DuplicateRootError as e:
            console.print(f"[bold red]Error:[/bold red] Indexing failed: {e}")
            raise typer.Exit(code=1)
        except SubvolError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except FileNotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] Path not found: {e}")
            raise typer.Exit(code=1)
        except PermissionError as e:
            console.print(f"[bold red]Error:[/bold red] Permission denied: {e}")
            console.print("[yellow]Tip: listing subvolumes requires root privileges[/yellow]")
            raise typer.Exit(code=1)
        except ValueError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)
        except typer.Exit:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Unexpected error:[/bold red] {e}")
            raise typer.Exit(code=1)

    return wrapper
