"""Tests for remote schema validation (httpx mock transport, no network)."""

import httpx
import pytest

from agentflow.compiler.schema import collect_schema_errors, fetch_schema, validate_workflow_document
from agentflow.core.exceptions import SchemaFetchError, SchemaValidationError

URL = "https://schemas.example.com/workflow.json"

SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["name", "jobs"],
    "properties": {
        "name": {"type": "string"},
        "jobs": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {"runs-on": {"type": "string"}},
            },
        },
    },
}


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _serve(status: int = 200, **kwargs) -> httpx.Client:
    return _client(lambda request: httpx.Response(status, **kwargs))


class TestFetchSchema:
    """Tests for fetch_schema."""

    def test_success(self) -> None:
        with _serve(json=SCHEMA) as client:
            assert fetch_schema(URL, 5.0, client=client) == SCHEMA

    def test_http_error(self) -> None:
        with _serve(404, text="missing") as client:
            with pytest.raises(SchemaFetchError, match="HTTP 404") as exc_info:
                fetch_schema(URL, 5.0, client=client)
        assert exc_info.value.url == URL

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with _client(handler) as client:
            with pytest.raises(SchemaFetchError, match="timed out after 2.5s"):
                fetch_schema(URL, 2.5, client=client)

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            with pytest.raises(SchemaFetchError, match="refused"):
                fetch_schema(URL, 5.0, client=client)

    def test_invalid_json(self) -> None:
        with _serve(text="<html>") as client:
            with pytest.raises(SchemaFetchError, match="invalid JSON"):
                fetch_schema(URL, 5.0, client=client)

    def test_not_an_object(self) -> None:
        with _serve(json=[1, 2]) as client:
            with pytest.raises(SchemaFetchError, match="not a JSON object"):
                fetch_schema(URL, 5.0, client=client)


class TestCollectSchemaErrors:
    """Tests for collect_schema_errors."""

    def test_valid(self) -> None:
        assert collect_schema_errors({"name": "wf", "jobs": {"a": {"runs-on": "ubuntu-latest"}}}, SCHEMA) == []

    def test_errors_with_pointers(self) -> None:
        errors = collect_schema_errors({"name": 3, "jobs": {"a": {"runs-on": 1}}}, SCHEMA)
        assert errors == [
            "/jobs/a/runs-on: 1 is not of type 'string'",
            "/name: 3 is not of type 'string'",
        ]

    def test_invalid_schema(self) -> None:
        with pytest.raises(SchemaFetchError, match="invalid schema"):
            collect_schema_errors({}, {"type": 12})


class TestValidateWorkflowDocument:
    """Tests for validate_workflow_document."""

    def test_passes(self) -> None:
        with _serve(json=SCHEMA) as client:
            validate_workflow_document({"name": "wf", "jobs": {}}, URL, 5.0, client=client)

    def test_fails(self) -> None:
        with _serve(json=SCHEMA) as client:
            with pytest.raises(SchemaValidationError) as exc_info:
                validate_workflow_document({"name": "wf"}, URL, 5.0, source="wf.md", client=client)
        assert exc_info.value.errors == ["/: 'jobs' is a required property"]
        assert exc_info.value.source == "wf.md"
