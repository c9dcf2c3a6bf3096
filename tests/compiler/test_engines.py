"""Tests for engine descriptors, registry lookup and engine config."""

import logging

import pytest

from agentflow.compiler.capabilities import parse_capability_tree
from agentflow.compiler.engines import (
    DEFAULT_ENGINE_ID,
    EngineConfig,
    EngineDescriptor,
    EngineRegistry,
    get_engine_registry,
    parse_engine_config,
    resolve_engine_id,
    validate_engine_features,
)
from agentflow.core.exceptions import (
    EngineConflictError,
    InvalidCapabilityShapeError,
    UnknownEngineError,
    UnsupportedFeatureError,
)

HTTP_TOOLS = {"remote": {"mcp": {"type": "http", "url": "https://example.com/mcp"}}}


class TestEngineRegistry:
    """Tests for EngineRegistry."""

    def test_builtin_engines(self) -> None:
        registry = get_engine_registry()
        assert registry.ids == ["claude", "codex", "custom", "gemini", "opencode", "genaiscript", "ai-inference"]
        assert registry.default().id == DEFAULT_ENGINE_ID
        assert "codex" in registry

    def test_process_wide_instance(self) -> None:
        assert get_engine_registry() is get_engine_registry()

    def test_empty_id_selects_default(self) -> None:
        assert get_engine_registry().get("").id == "claude"
        assert get_engine_registry().get(None).id == "claude"

    def test_prefix_match(self) -> None:
        assert get_engine_registry().get("claude-preview").id == "claude"

    def test_unknown(self) -> None:
        with pytest.raises(UnknownEngineError) as exc_info:
            get_engine_registry().get("gpt")
        assert exc_info.value.engine_id == "gpt"
        assert "claude" in str(exc_info.value)

    def test_default_must_be_registered(self) -> None:
        with pytest.raises(UnknownEngineError):
            EngineRegistry([EngineDescriptor(id="a", display_name="A", description="")], default_id="b")

    def test_longest_prefix_wins(self) -> None:
        registry = EngineRegistry(
            [
                EngineDescriptor(id="code", display_name="Code", description=""),
                EngineDescriptor(id="codex", display_name="Codex", description=""),
            ],
            default_id="code",
        )
        assert registry.get("codex-mini").id == "codex"


class TestParseEngineConfig:
    """Tests for parse_engine_config."""

    def test_absent(self) -> None:
        assert parse_engine_config(None) is None

    def test_string(self) -> None:
        assert parse_engine_config("codex") == EngineConfig(id="codex")

    def test_mapping(self) -> None:
        config = parse_engine_config(
            {"id": "claude", "model": "sonnet", "max-turns": "5", "env": {"DEBUG": "1"}}
        )
        assert config is not None
        assert config.max_turns == 5
        assert config.model == "sonnet"
        assert config.env == {"DEBUG": "1"}

    def test_invalid_type(self) -> None:
        with pytest.raises(InvalidCapabilityShapeError) as exc_info:
            parse_engine_config(3, source="wf.md:4")
        assert exc_info.value.field == "engine"
        assert exc_info.value.actual == "number"

    def test_invalid_max_turns(self) -> None:
        with pytest.raises(InvalidCapabilityShapeError) as exc_info:
            parse_engine_config({"id": "claude", "max-turns": 0})
        assert exc_info.value.field == "max-turns"


class TestResolveEngineId:
    """Tests for resolve_engine_id."""

    def test_main_wins(self) -> None:
        assert resolve_engine_id(EngineConfig(id="codex"), [(EngineConfig(), "inc.md")]) == "codex"

    def test_first_include_used_without_main(self) -> None:
        included = [(EngineConfig(), "a.md"), (EngineConfig(id="gemini"), "b.md")]
        assert resolve_engine_id(None, included) == "gemini"

    def test_conflict(self) -> None:
        with pytest.raises(EngineConflictError) as exc_info:
            resolve_engine_id(EngineConfig(id="claude"), [(EngineConfig(id="codex"), "inc.md")])
        assert exc_info.value.included_engine == "codex"
        assert exc_info.value.source == "inc.md"

    def test_nothing_selected(self) -> None:
        assert resolve_engine_id(None, []) == ""


class TestValidateEngineFeatures:
    """Tests for validate_engine_features."""

    def test_http_transport_supported(self) -> None:
        validate_engine_features(get_engine_registry().get("claude"), parse_capability_tree(HTTP_TOOLS))

    def test_http_transport_unsupported(self) -> None:
        with pytest.raises(UnsupportedFeatureError) as exc_info:
            validate_engine_features(
                get_engine_registry().get("gemini"), parse_capability_tree(HTTP_TOOLS, source="wf.md")
            )
        assert exc_info.value.feature == "http-transport"
        assert exc_info.value.name == "remote"
        assert exc_info.value.source == "wf.md"

    def test_max_turns_unsupported(self) -> None:
        with pytest.raises(UnsupportedFeatureError) as exc_info:
            validate_engine_features(
                get_engine_registry().get("gemini"),
                parse_capability_tree(None),
                EngineConfig(id="gemini", max_turns=3),
            )
        assert exc_info.value.feature == "max-turns"

    def test_experimental_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="agentflow.compiler.engines"):
            validate_engine_features(get_engine_registry().get("codex"), parse_capability_tree(None))
        assert "experimental engine: Codex" in caplog.text
