"""Capability declarations and the capability tree.

A workflow's `tools:` section is parsed into a CapabilityTree: an ordered,
read-only mapping from capability name to one of three specs:

- BuiltinTool: implemented by the engine itself, optionally restricted to
  command patterns (e.g. Bash limited to "git status").
- ServerTool: an external tool server with a launch descriptor and an
  allow-list of callable operations.
- OpaqueTool: anything else, carried through untouched.

Command and allow-lists are classified once by CommandConstraint into
WILDCARD, FINITE or EMPTY. Merge and allowed-list code consume that
classification instead of scanning for wildcard markers themselves.

Public API:
    ConstraintKind, CommandConstraint: Tri-state list classification
    BuiltinTool, ServerTool, OpaqueTool: CapabilitySpec variants
    Transport, LaunchDescriptor: Server launch description
    CapabilityTree: Ordered read-only mapping of specs
    parse_capability_tree: Build a tree from a `tools:` ConfigValue
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeAlias

from agentflow.core.exceptions import InvalidCapabilityShapeError
from agentflow.core.types import ConfigValue, ValueKind, describe_kind, value_kind

logger = logging.getLogger(__name__)

# "*" and ":*" both mean "any command" for builtin tools
BUILTIN_WILDCARDS: frozenset[str] = frozenset({"*", ":*"})
SERVER_WILDCARDS: frozenset[str] = frozenset({"*"})

GITHUB_TOOL = "github"
GITHUB_MCP_IMAGE = "ghcr.io/github/github-mcp-server"
GITHUB_MCP_DEFAULT_VERSION = "sha-09deac4"

# Neutral tool names and the engine builtins they stand for
NEUTRAL_TOOLS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "bash": ("Bash",),
        "web-fetch": ("WebFetch",),
        "web-search": ("WebSearch",),
        "edit": ("Edit", "MultiEdit", "NotebookEdit", "Write"),
    }
)


class ConstraintKind(str, Enum):
    """Classification of a command or allow-list."""

    WILDCARD = "wildcard"
    FINITE = "finite"
    EMPTY = "empty"


@dataclass(frozen=True)
class CommandConstraint:
    """Classified command patterns (builtins) or allowed operations (servers).

    Entries are kept in first-seen order, including entries absorbed by a
    wildcard, so a merged tree still shows everything that was declared.

    Attributes:
        kind: WILDCARD if any entry is a wildcard marker, FINITE if there is
            at least one other entry, EMPTY otherwise.
        entries: Declared entries, deduplicated, first-seen order.

    """

    kind: ConstraintKind = ConstraintKind.EMPTY
    entries: tuple[str, ...] = ()

    @classmethod
    def classify(cls, entries: Iterable[str], wildcards: frozenset[str]) -> CommandConstraint:
        """Classify a list of entries.

        Args:
            entries: Declared entries.
            wildcards: Markers meaning "everything".

        Returns:
            CommandConstraint with deduplicated entries.

        """
        unique = tuple(dict.fromkeys(entries))
        if any(e in wildcards for e in unique):
            kind = ConstraintKind.WILDCARD
        elif unique:
            kind = ConstraintKind.FINITE
        else:
            kind = ConstraintKind.EMPTY
        return cls(kind=kind, entries=unique)

    def union(self, other: CommandConstraint) -> CommandConstraint:
        """Union two constraints. WILDCARD absorbs, EMPTY is the identity."""
        entries = tuple(dict.fromkeys(self.entries + other.entries))
        if ConstraintKind.WILDCARD in (self.kind, other.kind):
            kind = ConstraintKind.WILDCARD
        elif ConstraintKind.FINITE in (self.kind, other.kind):
            kind = ConstraintKind.FINITE
        else:
            kind = ConstraintKind.EMPTY
        return CommandConstraint(kind=kind, entries=entries)

    def finite_entries(self, wildcards: frozenset[str]) -> list[str]:
        """Return the non-wildcard entries."""
        return [e for e in self.entries if e not in wildcards]

    def to_config(self) -> ConfigValue:
        """Render back to declaration form (None when nothing was declared)."""
        if not self.entries:
            return None
        return list(self.entries)


class Transport(str, Enum):
    """Tool server transport."""

    STDIO = "stdio"
    HTTP = "http"


# Comparison order for LaunchDescriptor.first_difference
LAUNCH_FIELDS: tuple[str, ...] = ("transport", "command", "container", "args", "env", "url", "headers")


@dataclass(frozen=True)
class LaunchDescriptor:
    """How a tool server is started or reached.

    Attributes:
        transport: stdio (local process) or http (remote endpoint).
        command: Executable for stdio servers.
        container: Container image for stdio servers.
        args: Command-line arguments.
        env: Environment variables.
        url: Endpoint for http servers.
        headers: Request headers for http servers.

    """

    transport: Transport
    command: str | None = None
    container: str | None = None
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def first_difference(self, other: LaunchDescriptor) -> str | None:
        """Return the first field (in LAUNCH_FIELDS order) that differs, or None."""
        for name in LAUNCH_FIELDS:
            if getattr(self, name) != getattr(other, name):
                return name
        return None

    def to_config(self) -> dict[str, ConfigValue]:
        """Render to the `mcp:` declaration shape, omitting unset fields."""
        result: dict[str, ConfigValue] = {"type": self.transport.value}
        if self.command is not None:
            result["command"] = self.command
        if self.container is not None:
            result["container"] = self.container
        if self.args:
            result["args"] = list(self.args)
        if self.env:
            result["env"] = dict(self.env)
        if self.url is not None:
            result["url"] = self.url
        if self.headers:
            result["headers"] = dict(self.headers)
        return result


@dataclass(frozen=True)
class BuiltinTool:
    """Engine-implemented tool, optionally limited to command patterns."""

    name: str
    commands: CommandConstraint = field(default_factory=CommandConstraint)

    def to_config(self) -> ConfigValue:
        return self.commands.to_config()


@dataclass(frozen=True)
class ServerTool:
    """External tool server.

    Attributes:
        name: Server name (used in mcp__<name> identifiers).
        launch: Launch descriptor, or None when the emitter supplies it
            (the built-in github server).
        allowed: Callable operations exposed to the agent.
        extra: Other declared fields (e.g. permissions, docker_image_version).

    """

    name: str
    launch: LaunchDescriptor | None = None
    allowed: CommandConstraint = field(default_factory=CommandConstraint)
    extra: Mapping[str, ConfigValue] = field(default_factory=dict)

    def to_config(self) -> ConfigValue:
        result: dict[str, ConfigValue] = {}
        if self.launch is not None:
            result["mcp"] = self.launch.to_config()
        if self.allowed.entries:
            result["allowed"] = list(self.allowed.entries)
        for key, value in self.extra.items():
            result[key] = value
        return result


@dataclass(frozen=True)
class OpaqueTool:
    """Entry the compiler does not interpret."""

    name: str
    value: ConfigValue = None

    def to_config(self) -> ConfigValue:
        return self.value


CapabilitySpec: TypeAlias = BuiltinTool | ServerTool | OpaqueTool


class CapabilityTree(Mapping[str, CapabilitySpec]):
    """Ordered, read-only mapping of capability name to spec.

    Attributes:
        source: Where the declarations came from (file path), if known.
        sources: Per-name source of the declaration that introduced it.

    """

    __slots__ = ("_specs", "source", "sources")

    def __init__(
        self,
        specs: Iterable[CapabilitySpec] = (),
        source: str | None = None,
        sources: Mapping[str, str | None] | None = None,
    ) -> None:
        ordered: dict[str, CapabilitySpec] = {}
        for spec in specs:
            ordered[spec.name] = spec
        self._specs: Mapping[str, CapabilitySpec] = MappingProxyType(ordered)
        self.source = source
        self.sources: Mapping[str, str | None] = MappingProxyType(
            dict(sources) if sources is not None else {name: source for name in ordered}
        )

    def __getitem__(self, name: str) -> CapabilitySpec:
        return self._specs[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CapabilityTree):
            return NotImplemented
        return list(self._specs.items()) == list(other._specs.items())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"CapabilityTree({list(self._specs.values())!r})"

    def source_of(self, name: str) -> str | None:
        """Return the source of the declaration for name."""
        return self.sources.get(name, self.source)

    def builtins(self) -> list[BuiltinTool]:
        return [s for s in self._specs.values() if isinstance(s, BuiltinTool)]

    def servers(self) -> list[ServerTool]:
        return [s for s in self._specs.values() if isinstance(s, ServerTool)]

    def to_config(self) -> dict[str, ConfigValue]:
        """Render back to a `tools:` mapping for emitters."""
        return {name: spec.to_config() for name, spec in self._specs.items()}


# =============================================================================
# Parsing
# =============================================================================


def _string_list(name: str, field_name: str, value: Any, source: str | None) -> list[str]:
    """Validate a list of strings. None is treated as an empty list."""
    if value is None:
        return []
    if value_kind(value) is not ValueKind.SEQUENCE:
        raise InvalidCapabilityShapeError(
            name, field_name, "array of strings", describe_kind(value), source=source
        )
    for item in value:
        if not isinstance(item, str):
            raise InvalidCapabilityShapeError(
                name, field_name, "array of strings", f"array containing {describe_kind(item)}",
                source=source,
            )
    return list(value)


def _string_map(name: str, field_name: str, value: Any, source: str | None) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidCapabilityShapeError(
            name, field_name, "object of strings", describe_kind(value), source=source
        )
    for key, item in value.items():
        if not isinstance(item, str):
            raise InvalidCapabilityShapeError(
                name, f"{field_name}.{key}", "string", describe_kind(item), source=source
            )
    return dict(value)


def _require_string(
    name: str, field_name: str, mcp: Mapping[str, Any], source: str | None
) -> str:
    if field_name not in mcp:
        raise InvalidCapabilityShapeError(name, field_name, "string", None, source=source)
    value = mcp[field_name]
    if not isinstance(value, str):
        raise InvalidCapabilityShapeError(name, field_name, "string", describe_kind(value), source=source)
    return value


def _has_network_permissions(tool: Mapping[str, Any], mcp: Mapping[str, Any]) -> bool:
    for holder in (tool, mcp):
        permissions = holder.get("permissions")
        if isinstance(permissions, dict) and "network" in permissions:
            return True
    return False


def _load_mcp_section(name: str, raw: Any, source: str | None) -> dict[str, Any]:
    """Return the `mcp:` section as a mapping (it may be given as a JSON string)."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidCapabilityShapeError(
                name, "mcp", "object or JSON object string", f"invalid JSON ({e.msg})", source=source
            ) from e
    if not isinstance(raw, dict):
        raise InvalidCapabilityShapeError(name, "mcp", "object", describe_kind(raw), source=source)
    return raw


def parse_launch_descriptor(
    name: str, tool: Mapping[str, Any], source: str | None = None
) -> LaunchDescriptor:
    """Validate and parse a server tool's `mcp:` section.

    Rules:
    - `type` is required and must be stdio or http.
    - stdio needs exactly one of `command` or `container`.
    - http needs `url` and must not use `container`.
    - Network permissions are only valid on stdio servers with a container.

    Args:
        name: Tool name (for error messages).
        tool: The whole tool declaration (holds `mcp` and maybe `permissions`).
        source: Source location of the declaration.

    Returns:
        Parsed LaunchDescriptor.

    Raises:
        InvalidCapabilityShapeError: On any violation, naming tool and field.

    """
    mcp = _load_mcp_section(name, tool["mcp"], source)

    type_str = _require_string(name, "type", mcp, source)
    try:
        transport = Transport(type_str)
    except ValueError:
        raise InvalidCapabilityShapeError(
            name, "type", "one of: stdio, http", repr(type_str), source=source
        ) from None

    if _has_network_permissions(tool, mcp):
        if transport is Transport.HTTP:
            raise InvalidCapabilityShapeError(
                name, "permissions.network", "no network permissions on 'type: http' servers",
                "network permissions", source=source,
            )
        if "container" not in mcp:
            raise InvalidCapabilityShapeError(
                name, "permissions.network", "a stdio server with 'container'",
                "network permissions without container", source=source,
            )

    command: str | None = None
    container: str | None = None
    url: str | None = None
    if transport is Transport.HTTP:
        if "container" in mcp:
            raise InvalidCapabilityShapeError(
                name, "container", "no 'container' on 'type: http' servers", "container", source=source
            )
        url = _require_string(name, "url", mcp, source)
    else:
        if "command" in mcp and "container" in mcp:
            raise InvalidCapabilityShapeError(
                name, "command", "either 'command' or 'container', not both", "both", source=source
            )
        if "command" in mcp:
            command = _require_string(name, "command", mcp, source)
        elif "container" in mcp:
            container = _require_string(name, "container", mcp, source)
        else:
            raise InvalidCapabilityShapeError(
                name, "command", "either 'command' or 'container'", None, source=source
            )

    return LaunchDescriptor(
        transport=transport,
        command=command,
        container=container,
        args=tuple(_string_list(name, "args", mcp.get("args"), source)),
        env=MappingProxyType(_string_map(name, "env", mcp.get("env"), source)),
        url=url,
        headers=MappingProxyType(_string_map(name, "headers", mcp.get("headers"), source)),
    )


def _parse_builtin(name: str, value: Any, source: str | None) -> BuiltinTool:
    commands = _string_list(name, name, value, source)
    return BuiltinTool(name=name, commands=CommandConstraint.classify(commands, BUILTIN_WILDCARDS))


def _parse_server(name: str, value: Mapping[str, Any], source: str | None) -> ServerTool:
    launch = parse_launch_descriptor(name, value, source) if "mcp" in value else None
    allowed = _string_list(name, "allowed", value.get("allowed"), source)
    extra = {k: v for k, v in value.items() if k not in ("mcp", "allowed")}
    if "docker_image_version" in extra and not isinstance(extra["docker_image_version"], str):
        raise InvalidCapabilityShapeError(
            name, "docker_image_version", "string", describe_kind(extra["docker_image_version"]),
            source=source,
        )
    return ServerTool(
        name=name,
        launch=launch,
        allowed=CommandConstraint.classify(allowed, SERVER_WILDCARDS),
        extra=MappingProxyType(extra),
    )


def parse_capability_tree(tools: ConfigValue, source: str | None = None) -> CapabilityTree:
    """Parse a `tools:` section into a CapabilityTree.

    Neutral names (bash, web-fetch, web-search, edit) expand to the engine
    builtins they stand for. Capitalized names are engine builtins. `github`,
    any entry with an `mcp` key and any lowercase entry with `allowed` are
    server tools. Everything else is kept as an opaque entry.

    Args:
        tools: The `tools:` value (mapping or None).
        source: Source location, attached to errors and to the tree.

    Returns:
        The parsed tree, in declaration order.

    Raises:
        InvalidCapabilityShapeError: If any recognized field has the wrong shape.

    """
    if tools is None:
        return CapabilityTree(source=source)
    if not isinstance(tools, dict):
        raise InvalidCapabilityShapeError("tools", "tools", "object", describe_kind(tools), source=source)

    specs: dict[str, CapabilitySpec] = {}

    def add_builtin(tool: BuiltinTool) -> None:
        # "bash" and "Bash" (or "edit" and "Write") may both appear in one section
        existing = specs.get(tool.name)
        if isinstance(existing, BuiltinTool):
            tool = BuiltinTool(name=tool.name, commands=existing.commands.union(tool.commands))
        specs[tool.name] = tool

    for name, value in tools.items():
        if name in NEUTRAL_TOOLS:
            if name == "bash":
                add_builtin(_parse_builtin("Bash", value, source))
            else:
                for target in NEUTRAL_TOOLS[name]:
                    add_builtin(BuiltinTool(name=target))
        elif name == GITHUB_TOOL:
            if value is not None and not isinstance(value, dict):
                raise InvalidCapabilityShapeError(
                    name, name, "object or null", describe_kind(value), source=source
                )
            specs[name] = _parse_server(name, value or {}, source)
        elif isinstance(value, dict) and ("mcp" in value or (name[:1].islower() and "allowed" in value)):
            # `allowed` without `mcp` extends a server launched elsewhere (e.g. an include)
            specs[name] = _parse_server(name, value, source)
        elif name[:1].isupper():
            add_builtin(_parse_builtin(name, value, source))
        else:
            specs[name] = OpaqueTool(name=name, value=value)

    logger.debug("Parsed %d capabilities from %s", len(specs), source or "<inline>")
    return CapabilityTree(specs.values(), source=source)


def github_image(server: ServerTool) -> str:
    """Return the container image for the github server."""
    version = server.extra.get("docker_image_version")
    if not isinstance(version, str):
        version = GITHUB_MCP_DEFAULT_VERSION
    return f"{GITHUB_MCP_IMAGE}:{version}"
