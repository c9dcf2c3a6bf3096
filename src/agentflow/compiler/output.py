"""Emission of compiled workflows.

The compiler produces structured values only. Emitters turn a
CompiledWorkflow into text; YamlEmitter is the reference emitter that
writes the runner's YAML format.

Public API:
    WorkflowEmitter: Protocol for emitters
    YamlEmitter: YAML emitter
    render_mcp_servers: Tool server launch configuration for the agent
    lock_file_path: Output path for a workflow file
    write_compiled_workflow: Emit and write atomically
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from agentflow.compiler.capabilities import GITHUB_TOOL, CapabilityTree, LaunchDescriptor, Transport, github_image
from agentflow.compiler.types import CompiledWorkflow
from agentflow.core.io import atomic_write

logger = logging.getLogger(__name__)

HEADER_LINES: tuple[str, ...] = (
    "# This file was automatically generated by agentflow. DO NOT EDIT.",
    "# To update this file, edit the corresponding .md file and run:",
    "#   agentflow compile",
)


@runtime_checkable
class WorkflowEmitter(Protocol):
    """Turns a compiled workflow into the text written to disk."""

    def emit(self, compiled: CompiledWorkflow) -> str:
        """Render the compiled workflow.

        Args:
            compiled: Finished compilation.

        Returns:
            Document text.

        """
        ...


class _WorkflowDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_WorkflowDumper.add_representer(str, _represent_str)


class YamlEmitter:
    """Reference emitter for the runner's YAML workflow format.

    Args:
        scripts: Optional script bodies keyed by step id. A step whose id
            has an entry gets it as `with.script` (for github-script steps).

    """

    def __init__(self, scripts: Mapping[str, str] | None = None) -> None:
        self._scripts = dict(scripts or {})

    def _attach_scripts(self, jobs: dict[str, Any]) -> None:
        for body in jobs.values():
            for step in body.get("steps", []):
                script = self._scripts.get(step.get("id", ""))
                if script is not None:
                    step.setdefault("with", {})["script"] = script

    def emit(self, compiled: CompiledWorkflow) -> str:
        document = copy.deepcopy(compiled.document)
        if self._scripts:
            self._attach_scripts(document.get("jobs", {}))

        header = list(HEADER_LINES)
        if compiled.stop_time:
            header += ["#", f"# Effective stop-time: {compiled.stop_time}"]

        sections = []
        for key, value in document.items():
            text = yaml.dump(
                {key: value},
                Dumper=_WorkflowDumper,
                sort_keys=False,
                default_flow_style=False,
                allow_unicode=True,
                width=1_000_000,
            )
            # PyYAML quotes the `on` key because YAML 1.1 reads it as a boolean
            if text.startswith("'on':"):
                text = "on:" + text[len("'on':") :]
            sections.append(text)
        return "\n".join(header) + "\n\n" + "\n".join(sections)


def _stdio_server(launch: LaunchDescriptor) -> dict[str, Any]:
    entry: dict[str, Any] = {}
    if launch.container is not None:
        args = ["run", "--rm", "-i"]
        for key in launch.env:
            args += ["-e", key]
        entry["command"] = "docker"
        entry["args"] = [*args, launch.container, *launch.args]
    else:
        entry["command"] = launch.command
        if launch.args:
            entry["args"] = list(launch.args)
    if launch.env:
        entry["env"] = dict(launch.env)
    return entry


def render_mcp_servers(tree: CapabilityTree) -> dict[str, Any]:
    """Build the agent's tool server launch configuration.

    The github server runs from its pinned container image; other servers
    use their declared launch descriptor. Servers without a descriptor
    (other than github) are skipped.

    Returns:
        {"mcpServers": {name: launch config}} in tree order.

    """
    servers: dict[str, Any] = {}
    for server in tree.servers():
        if server.name == GITHUB_TOOL and server.launch is None:
            servers[server.name] = {
                "command": "docker",
                "args": ["run", "-i", "--rm", "-e", "GITHUB_PERSONAL_ACCESS_TOKEN", github_image(server)],
                "env": {"GITHUB_PERSONAL_ACCESS_TOKEN": "${{ secrets.GITHUB_TOKEN }}"},
            }
        elif server.launch is None:
            logger.debug("Skipping server %s without launch configuration", server.name)
        elif server.launch.transport is Transport.HTTP:
            entry: dict[str, Any] = {"type": "http", "url": server.launch.url}
            if server.launch.headers:
                entry["headers"] = dict(server.launch.headers)
            servers[server.name] = entry
        else:
            servers[server.name] = _stdio_server(server.launch)
    return {"mcpServers": servers}


def lock_file_path(workflow_path: Path, suffix: str = ".lock.yml") -> Path:
    """Return the output path for a workflow: x.md -> x.lock.yml."""
    return workflow_path.with_name(workflow_path.stem + suffix)


def write_compiled_workflow(
    compiled: CompiledWorkflow,
    path: Path,
    emitter: WorkflowEmitter | None = None,
) -> str:
    """Emit a compiled workflow and write it atomically.

    Args:
        compiled: Finished compilation.
        path: Destination file.
        emitter: Emitter to use (YamlEmitter by default).

    Returns:
        The written text.

    Raises:
        OSError: If the file cannot be written; an existing file is left intact.

    """
    text = (emitter or YamlEmitter()).emit(compiled)
    atomic_write(path, text)
    logger.debug("Wrote %s (%d bytes)", path, len(text.encode("utf-8")))
    return text
