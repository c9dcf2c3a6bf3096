"""Core module for agentflow configuration and utilities.

This module provides:
- Configuration model and singleton access via get_config()
- File-based configuration loading via load_config_with_project()
- Custom exception hierarchy with AgentflowError as base
- Configuration value typing helpers
- Atomic file writes
"""

from agentflow.core.config import (
    DEFAULT_SCHEMA_URL,
    GLOBAL_CONFIG_PATH,
    PROJECT_CONFIG_NAME,
    Config,
    get_config,
    load_config,
    load_config_with_project,
)
from agentflow.core.exceptions import (
    AgentflowError,
    CompilationCancelledError,
    CompilerError,
    ConfigError,
    CyclicDependencyError,
    DuplicateJobError,
    EngineConflictError,
    GraphFrozenError,
    InvalidCapabilityShapeError,
    JobGraphError,
    MergeConflictError,
    MissingDependencyError,
    ParserError,
    SchemaFetchError,
    SchemaValidationError,
    TriggerConfigError,
    UnknownEngineError,
    UnsupportedFeatureError,
)
from agentflow.core.io import atomic_write
from agentflow.core.types import ConfigValue, ValueKind, describe_kind, to_config_value, value_kind

__all__ = [
    # Config constants
    "DEFAULT_SCHEMA_URL",
    "GLOBAL_CONFIG_PATH",
    "PROJECT_CONFIG_NAME",
    # Config
    "Config",
    "get_config",
    "load_config",
    "load_config_with_project",
    # Exceptions
    "AgentflowError",
    "CompilationCancelledError",
    "CompilerError",
    "ConfigError",
    "CyclicDependencyError",
    "DuplicateJobError",
    "EngineConflictError",
    "GraphFrozenError",
    "InvalidCapabilityShapeError",
    "JobGraphError",
    "MergeConflictError",
    "MissingDependencyError",
    "ParserError",
    "SchemaFetchError",
    "SchemaValidationError",
    "TriggerConfigError",
    "UnknownEngineError",
    "UnsupportedFeatureError",
    # Types and I/O
    "ConfigValue",
    "ValueKind",
    "atomic_write",
    "describe_kind",
    "to_config_value",
    "value_kind",
]
