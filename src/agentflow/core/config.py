"""Configuration models and loading for agentflow.

Settings come from two optional YAML files: a global one in
~/.agentflow/config.yaml and a project one (agentflow.yaml) next to the
workflows being compiled. The project file is deep-merged over the global
one: mappings merge key by key, lists and scalars replace.

Public API:
    Config: Frozen settings model
    load_config: Validate a dict and install it as the active config
    load_config_with_project: Load global + project YAML and install the result
    get_config: Return the active config
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agentflow.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

GLOBAL_CONFIG_PATH: Path = Path.home() / ".agentflow" / "config.yaml"
PROJECT_CONFIG_NAME: str = "agentflow.yaml"

DEFAULT_SCHEMA_URL = (
    "https://raw.githubusercontent.com/SchemaStore/schemastore/master/"
    "src/schemas/json/github-workflow.json"
)

MAX_SCHEMA_TIMEOUT = 120.0


class Config(BaseModel):
    """Compiler settings.

    Attributes:
        default_engine: Engine used when a workflow does not select one.
        validate_schema: Validate the compiled workflow document against the remote schema.
        schema_url: Location of the workflow JSON schema.
        schema_timeout: Fetch timeout in seconds (0 < t <= 120).
        lock_suffix: Suffix replacing ".md" for compiled output files.
        verbose: Emit debug logging from the CLI.

    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_engine: str = Field(default="claude", min_length=1)
    validate_schema: bool = False
    schema_url: str = DEFAULT_SCHEMA_URL
    schema_timeout: float = 10.0
    lock_suffix: str = ".lock.yml"
    verbose: bool = False

    @field_validator("schema_timeout")
    @classmethod
    def _check_timeout(cls, v: float) -> float:
        if v <= 0 or v > MAX_SCHEMA_TIMEOUT:
            raise ValueError(f"schema_timeout must be in (0, {MAX_SCHEMA_TIMEOUT:g}], got {v}")
        return v

    @field_validator("lock_suffix")
    @classmethod
    def _check_suffix(cls, v: str) -> str:
        if not v.startswith("."):
            raise ValueError(f"lock_suffix must start with '.', got {v!r}")
        return v


_config: Config | None = None


def load_config(config_data: dict[str, Any]) -> Config:
    """Validate config data and install it as the active config.

    Args:
        config_data: Raw settings, typically from YAML.

    Returns:
        The validated Config.

    Raises:
        ConfigError: If config_data is not a dict or fails validation.

    """
    global _config
    if not isinstance(config_data, dict):
        raise ConfigError(f"Config data must be a dict, got {type(config_data).__name__}")
    try:
        _config = Config.model_validate(config_data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed:\n{e}") from e
    return _config


def get_config() -> Config:
    """Return the active config.

    Raises:
        ConfigError: If no config has been loaded yet.

    """
    if _config is None:
        raise ConfigError("Config not loaded. Call load_config() or load_config_with_project() first.")
    return _config


def _reset_config() -> None:
    """Clear the active config (tests only)."""
    global _config
    _config = None


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base. Mappings recurse; other values replace."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_file(path: Path, label: str) -> dict[str, Any]:
    """Read a YAML mapping from path; a missing file yields an empty dict."""
    if not path.exists():
        logger.debug("No %s at %s, skipping", label, path)
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {label} {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read {label} {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid {label} {path}: top level must be a mapping, got {type(data).__name__}"
        )
    logger.debug("Loaded %s from %s", label, path)
    return data


def load_config_with_project(
    project_path: Path | None = None,
    global_config_path: Path | None = None,
) -> Config:
    """Load global config, merge the project config over it, and install it.

    Args:
        project_path: Directory containing agentflow.yaml. Defaults to cwd.
        global_config_path: Override for ~/.agentflow/config.yaml.

    Returns:
        The validated, merged Config.

    Raises:
        ConfigError: If project_path is not a directory, a file is malformed,
            or the merged settings fail validation.

    """
    project_dir = project_path if project_path is not None else Path.cwd()
    if not project_dir.is_dir():
        raise ConfigError(f"Project path must be a directory: {project_dir}")

    global_data = _load_yaml_file(global_config_path or GLOBAL_CONFIG_PATH, "global config")
    project_data = _load_yaml_file(project_dir / PROJECT_CONFIG_NAME, "project config")

    return load_config(_deep_merge(global_data, project_data))
