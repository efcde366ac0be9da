"""Console output helpers shared by the CLI tools."""

import functools
import sys
from typing import Callable, Optional

import click
from rich.console import Console
from rich.table import Table

from shared.logger import get_logger

logger = get_logger(__name__)

console = Console()
err_console = Console(stderr=True)


def create_table(title: Optional[str] = None) -> Table:
    """
    Create a table with the common tool styling.

    Args:
        title: Optional table title

    Returns:
        Empty rich Table
    """
    return Table(title=title, show_header=True, header_style="bold magenta", show_lines=False)


def print_table(table: Table) -> None:
    """Print a table to stdout."""
    console.print(table)


def info(message: str) -> None:
    """Print an informational message."""
    err_console.print(f"[blue]ℹ[/blue] {message}")


def success(message: str) -> None:
    """Print a success message."""
    err_console.print(f"[green]✓[/green] {message}")


def warning(message: str) -> None:
    """Print a warning message."""
    err_console.print(f"[yellow]⚠[/yellow] {message}")


def error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[bold red]✗[/bold red] {message}")


def handle_errors(func: Callable) -> Callable:
    """
    Turn unexpected exceptions into a readable error and exit code 1.

    Click's own exceptions and ``sys.exit`` calls pass through untouched.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except click.ClickException:
            raise
        except KeyboardInterrupt:
            warning("Interrupted")
            sys.exit(130)
        except Exception as e:
            logger.debug("Unhandled exception", exc_info=True)
            error(f"Unexpected error: {e}")
            sys.exit(1)

    return wrapper
