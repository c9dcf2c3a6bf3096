"""Shared helpers for the agentflow CLI.

Exit codes, console output helpers and logging setup used by every
command module.
"""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool, quiet: bool) -> None:
    """Install a RichHandler on the root logger.

    WARNING by default, DEBUG with verbose, ERROR with quiet (quiet wins).
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def _error(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}", highlight=False)


def _success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}", highlight=False)


def _validate_project_path(project: str) -> Path:
    """Resolve a --project value to an existing directory.

    Raises:
        typer.Exit: With EXIT_ERROR if the path is missing or not a directory.

    """
    project_path = Path(project).resolve()
    if not project_path.exists():
        _error(f"Project directory does not exist: {project_path}")
        raise typer.Exit(code=EXIT_ERROR)
    if not project_path.is_dir():
        _error(f"Path is not a directory: {project_path}")
        raise typer.Exit(code=EXIT_ERROR)
    return project_path
