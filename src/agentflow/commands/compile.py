"""Compile command for agentflow CLI.

Compiles a workflow markdown file into a runner workflow (x.md -> x.lock.yml).
"""

from pathlib import Path

import typer

from agentflow.cli_utils import (
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    _error,
    _setup_logging,
    _success,
    _validate_project_path,
    console,
)
from agentflow.core.config import load_config_with_project
from agentflow.core.exceptions import AgentflowError, ConfigError


def compile_command(
    workflow: str = typer.Argument(
        ...,
        help="Workflow markdown file to compile",
    ),
    include: list[str] | None = typer.Option(
        None,
        "--include",
        "-i",
        help="Additional include file whose tools are merged (repeatable)",
    ),
    engine: str | None = typer.Option(
        None,
        "--engine",
        "-e",
        help="Engine id overriding the workflow's engine setting",
    ),
    output: str | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Output path (default: workflow path with the configured lock suffix)",
    ),
    validate_schema: bool = typer.Option(
        False,
        "--validate-schema",
        help="Validate the compiled workflow against the remote workflow schema",
    ),
    project: str = typer.Option(
        ".",
        "--project",
        "-p",
        help="Project directory containing agentflow.yaml",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only print errors",
    ),
) -> None:
    """Compile a workflow into a runner workflow file.

    Include directives in the workflow body (`@include path`, or the
    optional form `@include? path`) are resolved relative to the workflow.

    Examples:
        agentflow compile .github/workflows/triage.md
        agentflow compile triage.md -e codex -o out/triage.yml
        agentflow compile triage.md -i shared/tools.md --validate-schema

    """
    from agentflow.compiler import (
        CompilerContext,
        compile_workflow,
        lock_file_path,
        parse_workflow_file,
        resolve_includes,
        write_compiled_workflow,
    )

    _setup_logging(verbose=verbose, quiet=quiet)
    project_path = _validate_project_path(project)

    try:
        config = load_config_with_project(project_path=project_path)
    except ConfigError as e:
        _error(f"Config error: {e}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None

    if config.verbose and not verbose and not quiet:
        _setup_logging(verbose=True, quiet=False)
    if validate_schema:
        config = config.model_copy(update={"validate_schema": True})

    workflow_path = Path(workflow)
    output_path = Path(output) if output else lock_file_path(workflow_path, config.lock_suffix)

    try:
        source = parse_workflow_file(workflow_path)
        includes = resolve_includes(source, [Path(p) for p in include or []])
        compiled = compile_workflow(
            CompilerContext(
                source=source,
                includes=includes,
                config=config,
                engine_override=engine,
            )
        )
        write_compiled_workflow(compiled, output_path)
    except AgentflowError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_ERROR) from None
    except OSError as e:
        _error(f"Failed to write {output_path}: {e}")
        raise typer.Exit(code=EXIT_ERROR) from None

    if not quiet:
        _success(f"Compiled {workflow_path} -> {output_path}")
        console.print(f"  Engine: {compiled.engine.display_name}")
        console.print(f"  Jobs: {', '.join(compiled.graph.names)}")
        if compiled.stop_time:
            console.print(f"  Stop time: {compiled.stop_time}")
