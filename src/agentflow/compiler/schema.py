"""Optional validation of compiled workflows against the runner's schema.

Validation is off by default so that compiling never needs the network.
When enabled, the schema is fetched once per compilation with a bounded
timeout and no retry; a failed fetch is a compilation error.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from jsonschema import validators
from jsonschema.exceptions import SchemaError

from agentflow.core.exceptions import SchemaFetchError, SchemaValidationError

logger = logging.getLogger(__name__)


def fetch_schema(url: str, timeout: float, client: httpx.Client | None = None) -> dict[str, Any]:
    """Fetch a JSON schema.

    Args:
        url: Schema URL.
        timeout: Request timeout in seconds.
        client: Client to use instead of a one-off request (tests inject a
            client with a mock transport).

    Returns:
        The parsed schema.

    Raises:
        SchemaFetchError: On network errors, timeouts, non-2xx responses or
            a body that is not a JSON object.

    """
    logger.debug("Fetching schema %s (timeout %.1fs)", url, timeout)
    try:
        if client is not None:
            response = client.get(url, timeout=timeout, follow_redirects=True)
        else:
            response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        schema = response.json()
    except httpx.TimeoutException as e:
        raise SchemaFetchError(url, f"timed out after {timeout}s") from e
    except httpx.HTTPStatusError as e:
        raise SchemaFetchError(url, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise SchemaFetchError(url, str(e) or type(e).__name__) from e
    except ValueError as e:
        raise SchemaFetchError(url, f"invalid JSON: {e}") from e

    if not isinstance(schema, dict):
        raise SchemaFetchError(url, "schema is not a JSON object")
    return schema


def _pointer(path: Any) -> str:
    parts = [str(part).replace("~", "~0").replace("/", "~1") for part in path]
    return "/" + "/".join(parts)


def collect_schema_errors(document: Any, schema: dict[str, Any]) -> list[str]:
    """Validate document and return "/json/pointer: message" strings.

    Errors are ordered by location so repeated runs report identically.

    Raises:
        SchemaFetchError: If the schema itself is invalid.

    """
    validator_cls = validators.validator_for(schema)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as e:
        raise SchemaFetchError(str(schema.get("$id", "<schema>")), f"invalid schema: {e.message}") from e
    validator = validator_cls(schema)
    errors = sorted(validator.iter_errors(document), key=lambda err: [str(p) for p in err.absolute_path])
    return [f"{_pointer(err.absolute_path)}: {err.message}" for err in errors]


def validate_workflow_document(
    document: dict[str, Any],
    url: str,
    timeout: float,
    source: str | None = None,
    client: httpx.Client | None = None,
) -> None:
    """Validate a rendered workflow document against the schema at url.

    Raises:
        SchemaFetchError: If the schema cannot be fetched.
        SchemaValidationError: If the document violates the schema.

    """
    schema = fetch_schema(url, timeout, client=client)
    errors = collect_schema_errors(document, schema)
    if errors:
        raise SchemaValidationError(errors, source=source)
    logger.debug("Compiled workflow passed schema validation")
