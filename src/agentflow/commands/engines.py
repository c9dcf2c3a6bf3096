"""Engines command for agentflow CLI.

Lists the engines a workflow can select and what each supports.
"""

from rich.table import Table

from agentflow.cli_utils import console


def engines_command() -> None:
    """List available engines and their capabilities."""
    from agentflow.compiler.engines import get_engine_registry

    registry = get_engine_registry()
    table = Table(title="Engines")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Allow-list")
    table.add_column("HTTP tools")
    table.add_column("Max turns")

    def mark(flag: bool) -> str:
        return "[green]yes[/green]" if flag else "[dim]no[/dim]"

    for engine in registry.all():
        name = engine.display_name
        if engine.id == registry.default().id:
            name += " (default)"
        if engine.experimental:
            name += " [yellow](experimental)[/yellow]"
        table.add_row(
            engine.id,
            name,
            mark(engine.supports_tool_allow_list),
            mark(engine.supports_http_transport),
            mark(engine.supports_max_turns),
        )
    console.print(table)
