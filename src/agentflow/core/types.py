"""Core type definitions for agentflow.

Declared configuration arrives as parsed YAML/JSON. This module names that
shape (ConfigValue) and provides a single classification helper so merge and
validation code branch on an explicit kind instead of scattered isinstance
checks.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, TypeAlias

ConfigValue: TypeAlias = (
    None | bool | int | float | str | list["ConfigValue"] | dict[str, "ConfigValue"]
)


class ValueKind(str, Enum):
    """Kinds of ConfigValue."""

    NULL = "null"
    BOOL = "boolean"
    NUMBER = "number"
    STRING = "string"
    SEQUENCE = "array"
    MAPPING = "object"


def value_kind(value: Any) -> ValueKind:
    """Classify a configuration value.

    bool is checked before int because bool is a subclass of int.

    Args:
        value: Value to classify.

    Returns:
        The ValueKind of the value.

    Raises:
        TypeError: If the value is not a ConfigValue.

    Examples:
        >>> value_kind(None)
        <ValueKind.NULL: 'null'>
        >>> value_kind(True).value
        'boolean'
        >>> value_kind({"a": 1}).value
        'object'

    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, list):
        return ValueKind.SEQUENCE
    if isinstance(value, dict):
        return ValueKind.MAPPING
    raise TypeError(f"Unsupported configuration value type: {type(value).__name__}")


def to_config_value(value: Any) -> ConfigValue:
    """Normalize a parsed document value into a ConfigValue.

    YAML loaders can produce dates, tuples and non-string keys; these are
    converted so downstream code only sees ConfigValue kinds.

    Args:
        value: Value produced by a YAML/JSON loader.

    Returns:
        Normalized ConfigValue.

    Raises:
        TypeError: If the value cannot be represented.

    """
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, tuple):
        value = list(value)
    if isinstance(value, list):
        return [to_config_value(item) for item in value]
    if isinstance(value, dict):
        return {str(k): to_config_value(v) for k, v in value.items()}
    value_kind(value)
    return value


def describe_kind(value: Any) -> str:
    """Return a human-readable kind name for error messages."""
    try:
        return value_kind(value).value
    except TypeError:
        return "unknown"
