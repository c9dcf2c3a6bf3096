"""Allowed-capability list derivation.

The list is a pure function of a CapabilityTree: it is recomputed on every
call and sorted, so the output never depends on the tree's iteration order.
"""

import logging

from agentflow.compiler.capabilities import (
    BUILTIN_WILDCARDS,
    SERVER_WILDCARDS,
    BuiltinTool,
    CapabilityTree,
    ConstraintKind,
    ServerTool,
)

logger = logging.getLogger(__name__)


def _builtin_entries(tool: BuiltinTool) -> list[str]:
    if tool.commands.kind is ConstraintKind.FINITE:
        return [f"{tool.name}({cmd})" for cmd in tool.commands.finite_entries(BUILTIN_WILDCARDS)]
    # WILDCARD collapses to the bare name; so does a builtin declared without commands
    return [tool.name]


def _server_entries(server: ServerTool) -> list[str]:
    if server.allowed.kind is ConstraintKind.WILDCARD:
        return [f"mcp__{server.name}"]
    return [f"mcp__{server.name}__{op}" for op in server.allowed.finite_entries(SERVER_WILDCARDS)]


def compute_allowed_list(tree: CapabilityTree) -> list[str]:
    """Derive the sorted, de-duplicated allowed-capability identifiers.

    Rules:
    - Builtin with WILDCARD commands, or none at all: bare name.
    - Builtin with FINITE commands: Name(command) per command.
    - Server with WILDCARD allowed: mcp__<server>.
    - Server with FINITE allowed: mcp__<server>__<op> per operation.
    - Server with EMPTY allowed and opaque entries: nothing.

    Args:
        tree: Merged capability tree.

    Returns:
        Lexicographically sorted identifiers.

    """
    entries: set[str] = set()
    for spec in tree.values():
        if isinstance(spec, BuiltinTool):
            entries.update(_builtin_entries(spec))
        elif isinstance(spec, ServerTool):
            entries.update(_server_entries(spec))
    result = sorted(entries)
    logger.debug("Computed %d allowed capabilities", len(result))
    return result


def format_allowed_list(allowed: list[str]) -> str:
    """Join identifiers into the comma-separated engine argument form."""
    return ",".join(allowed)
