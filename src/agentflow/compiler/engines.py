"""Execution engine descriptors and engine configuration.

The registry is a read-only mapping built once per process; nothing mutates
it, so compilations of different workflows can share it without locking.

Public API:
    EngineDescriptor: Static capability profile of an engine
    EngineRegistry: Immutable id -> descriptor lookup
    get_engine_registry: Process-wide default registry
    EngineConfig: Parsed `engine:` frontmatter section
    parse_engine_config: Build an EngineConfig from frontmatter
    validate_engine_features: Reject features the engine does not support
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agentflow.compiler.capabilities import CapabilityTree, ServerTool, Transport
from agentflow.core.exceptions import (
    EngineConflictError,
    InvalidCapabilityShapeError,
    UnknownEngineError,
    UnsupportedFeatureError,
)
from agentflow.core.types import describe_kind

logger = logging.getLogger(__name__)

DEFAULT_ENGINE_ID = "claude"


@dataclass(frozen=True)
class EngineDescriptor:
    """Static capability profile of an execution engine."""

    id: str
    display_name: str
    description: str
    experimental: bool = False
    supports_tool_allow_list: bool = False
    supports_http_transport: bool = False
    supports_max_turns: bool = False
    # Exactly one of action / command is set, except for the custom engine
    action: str | None = None
    command: str | None = None


class EngineRegistry:
    """Read-only lookup of engine descriptors by id."""

    def __init__(self, engines: Iterable[EngineDescriptor], default_id: str = DEFAULT_ENGINE_ID) -> None:
        self._engines: Mapping[str, EngineDescriptor] = MappingProxyType({e.id: e for e in engines})
        if default_id not in self._engines:
            raise UnknownEngineError(default_id, list(self._engines))
        self._default_id = default_id

    def __contains__(self, engine_id: object) -> bool:
        return engine_id in self._engines

    @property
    def ids(self) -> list[str]:
        return list(self._engines)

    def all(self) -> list[EngineDescriptor]:
        return list(self._engines.values())

    def default(self) -> EngineDescriptor:
        return self._engines[self._default_id]

    def get(self, engine_id: str | None) -> EngineDescriptor:
        """Resolve an engine id.

        An empty id selects the default engine. An id that is not registered
        but starts with a registered id (e.g. "claude-preview") resolves to
        that engine.

        Raises:
            UnknownEngineError: If nothing matches.

        """
        if not engine_id:
            return self.default()
        if engine_id in self._engines:
            return self._engines[engine_id]
        # Longest match first so overlapping ids resolve predictably
        for known in sorted(self._engines, key=len, reverse=True):
            if engine_id.startswith(known):
                return self._engines[known]
        raise UnknownEngineError(engine_id, self.ids)


def build_default_registry() -> EngineRegistry:
    """Build the registry of built-in engines."""
    return EngineRegistry(
        [
            EngineDescriptor(
                id="claude",
                display_name="Claude Code",
                description="Uses Claude Code with full MCP tool support and allow-listing",
                supports_tool_allow_list=True,
                supports_http_transport=True,
                supports_max_turns=True,
                action="anthropics/claude-code-base-action@v0.0.56",
            ),
            EngineDescriptor(
                id="codex",
                display_name="Codex",
                description="Uses OpenAI Codex CLI with MCP server support",
                experimental=True,
                supports_tool_allow_list=True,
                command='codex exec --full-auto "$(cat "$GITHUB_AW_PROMPT")" 2>&1 | tee /tmp/aw-logs/agent.log',
            ),
            EngineDescriptor(
                id="custom",
                display_name="Custom Steps",
                description="Executes user-defined steps",
                supports_max_turns=True,
            ),
            EngineDescriptor(
                id="gemini",
                display_name="Gemini CLI",
                description="Uses Google Gemini CLI with GitHub integration and tool support",
                supports_tool_allow_list=True,
                action="google-github-actions/run-gemini-cli@v1",
            ),
            EngineDescriptor(
                id="opencode",
                display_name="OpenCode",
                description="Uses OpenCode AI coding assistant",
                experimental=True,
                supports_tool_allow_list=True,
                command='opencode exec --auto "$(cat "$GITHUB_AW_PROMPT")" 2>&1 | tee /tmp/aw-logs/agent.log',
            ),
            EngineDescriptor(
                id="genaiscript",
                display_name="GenAIScript",
                description="Uses GenAIScript to run markdown-based AI scripts",
                experimental=True,
                command="genaiscript run workflow --out /tmp/genaiscript-output 2>&1 | tee /tmp/aw-logs/agent.log",
            ),
            EngineDescriptor(
                id="ai-inference",
                display_name="AI Inference",
                description="Uses the ai-inference action with tool server support",
                action="actions/ai-inference@v1",
            ),
        ]
    )


@lru_cache(maxsize=1)
def get_engine_registry() -> EngineRegistry:
    """Return the process-wide registry (built on first use)."""
    return build_default_registry()


class EngineConfig(BaseModel):
    """Parsed `engine:` section.

    Attributes:
        id: Engine id ("" means the configured default).
        version: Engine version to install.
        model: Model override.
        max_turns: Turn limit (frontmatter key `max-turns`).
        env: Extra environment for the engine step.
        steps: Custom steps (custom engine only).

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = ""
    version: str | None = None
    model: str | None = None
    max_turns: int | None = Field(default=None, alias="max-turns", ge=1)
    env: dict[str, str] = Field(default_factory=dict)
    steps: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("max_turns", mode="before")
    @classmethod
    def _coerce_max_turns(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return v


def parse_engine_config(value: Any, source: str | None = None) -> EngineConfig | None:
    """Parse an `engine:` value (string id or mapping).

    Returns:
        EngineConfig, or None when the section is absent.

    Raises:
        InvalidCapabilityShapeError: If the value has the wrong shape.

    """
    if value is None:
        return None
    if isinstance(value, str):
        return EngineConfig(id=value)
    if not isinstance(value, dict):
        raise InvalidCapabilityShapeError(
            "engine", "engine", "string or object", describe_kind(value), source=source
        )
    try:
        return EngineConfig.model_validate(value)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"]) or "engine"
        raise InvalidCapabilityShapeError(
            "engine", field_name, first["msg"], describe_kind(first.get("input")), source=source
        ) from e


def resolve_engine_id(
    main: EngineConfig | None,
    included: Iterable[tuple[EngineConfig, str | None]],
) -> str:
    """Pick the engine id from the main workflow and its includes.

    The main workflow wins; includes may only agree with it. Without a main
    setting the first include that names an engine is used.

    Raises:
        EngineConflictError: If an include names a different engine.

    """
    main_id = main.id if main is not None else ""
    chosen = main_id
    for config, source in included:
        if not config.id:
            continue
        if main_id and config.id != main_id:
            raise EngineConflictError(main_id, config.id, source=source)
        if not chosen:
            chosen = config.id
    return chosen


def validate_engine_features(
    engine: EngineDescriptor,
    tree: CapabilityTree,
    engine_config: EngineConfig | None = None,
) -> None:
    """Reject capability and engine settings the engine cannot honor.

    Raises:
        UnsupportedFeatureError: For an http-transport server on an engine
            without http support, or max-turns on an engine without
            turn limits.

    """
    for spec in tree.values():
        if (
            isinstance(spec, ServerTool)
            and spec.launch is not None
            and spec.launch.transport is Transport.HTTP
            and not engine.supports_http_transport
        ):
            raise UnsupportedFeatureError(
                engine.id, "http-transport", name=spec.name, source=tree.source_of(spec.name)
            )

    if engine_config is not None and engine_config.max_turns is not None and not engine.supports_max_turns:
        raise UnsupportedFeatureError(engine.id, "max-turns", source=tree.source)

    if engine.experimental:
        logger.warning("Using experimental engine: %s", engine.display_name)
