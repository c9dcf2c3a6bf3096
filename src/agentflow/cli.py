"""agentflow command line interface.

Usage:
    agentflow compile WORKFLOW.md [--include FILE]... [--engine ID] [--output PATH]
    agentflow engines
"""

import typer

from agentflow import __version__
from agentflow.cli_utils import console
from agentflow.commands.compile import compile_command
from agentflow.commands.engines import engines_command

app = typer.Typer(
    name="agentflow",
    help="Compile agentic workflow definitions into runner workflows",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"agentflow {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Compile agentic workflow definitions into runner workflows."""


app.command("compile")(compile_command)
app.command("engines")(engines_command)


if __name__ == "__main__":
    app()
