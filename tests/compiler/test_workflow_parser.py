"""Tests for workflow document parsing and include resolution.

Tests cover:
- Frontmatter splitting, the `on` key, key line numbers, title
- Documents without frontmatter
- Parse errors with locations
- @include / @include? resolution relative to the including file
"""

import logging
from pathlib import Path

import pytest

from agentflow.compiler.parser import (
    IncludeDirective,
    parse_workflow_file,
    parse_workflow_text,
    resolve_includes,
)
from agentflow.core.exceptions import ParserError

DOCUMENT = """---
on:
  issues:
    types: [opened]
tools:
  github:
    allowed: [add_issue_comment]
---
# Issue Triage

Read the issue.
@include shared/tools.md
@include? shared/optional.md
"""


class TestParseWorkflowText:
    """Tests for parse_workflow_text."""

    def test_frontmatter_and_body(self) -> None:
        source = parse_workflow_text(DOCUMENT, path="wf/triage.md")

        assert source.has_frontmatter
        assert source.frontmatter["on"] == {"issues": {"types": ["opened"]}}
        assert source.frontmatter["tools"] == {"github": {"allowed": ["add_issue_comment"]}}
        assert "Read the issue." in source.markdown
        assert "tools:" not in source.markdown
        assert source.stem == "triage"
        assert source.title == "Issue Triage"

    def test_on_key_not_boolean(self) -> None:
        """A bare `on:` key is kept as the string "on"."""
        source = parse_workflow_text("---\non: push\n---\nbody\n")
        assert source.frontmatter == {"on": "push"}
        assert True not in source.frontmatter

    def test_key_lines(self) -> None:
        source = parse_workflow_text(DOCUMENT, path="wf/triage.md")
        assert source.key_lines == {"on": 2, "tools": 5}
        assert source.source_of("tools") == "wf/triage.md:5"
        assert source.source_of("engine") == "wf/triage.md"
        assert source.source_of() == "wf/triage.md"

    def test_include_directives(self) -> None:
        source = parse_workflow_text(DOCUMENT)
        assert source.includes == (
            IncludeDirective(path="shared/tools.md", optional=False, line=12),
            IncludeDirective(path="shared/optional.md", optional=True, line=13),
        )

    def test_without_frontmatter(self) -> None:
        source = parse_workflow_text("# Only Markdown\n\n@include other.md\n", path="x.md")
        assert not source.has_frontmatter
        assert source.frontmatter == {}
        assert source.includes == (IncludeDirective(path="other.md", optional=False, line=3),)

    def test_empty_frontmatter(self) -> None:
        source = parse_workflow_text("---\n---\n# Body\n")
        assert source.has_frontmatter
        assert source.frontmatter == {}
        assert source.title == "Body"

    def test_dates_normalized(self) -> None:
        source = parse_workflow_text("---\non:\n  stop-after: 2025-06-01\n---\nbody\n")
        assert source.frontmatter["on"] == {"stop-after": "2025-06-01"}

    def test_no_title(self) -> None:
        assert parse_workflow_text("---\non: push\n---\nJust text\n").title is None

    def test_unterminated(self) -> None:
        with pytest.raises(ParserError, match="Unterminated") as exc_info:
            parse_workflow_text("---\non: push\n", path="bad.md")
        assert exc_info.value.path == "bad.md"
        assert exc_info.value.line == 1

    def test_invalid_yaml_location(self) -> None:
        with pytest.raises(ParserError) as exc_info:
            parse_workflow_text("---\non: push\ntools: [unclosed\n---\nbody\n", path="bad.md")
        assert exc_info.value.line is not None
        assert exc_info.value.line >= 3
        assert "bad.md:" in str(exc_info.value)

    def test_not_a_mapping(self) -> None:
        with pytest.raises(ParserError, match="must be a mapping, got array"):
            parse_workflow_text("---\n- a\n- b\n---\nbody\n")


class TestParseWorkflowFile:
    """Tests for parse_workflow_file."""

    def test_reads_file(self, write_workflow) -> None:
        path = write_workflow("triage.md", frontmatter="on: push")
        source = parse_workflow_file(path)
        assert source.path == str(path)
        assert source.frontmatter == {"on": "push"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ParserError, match="Cannot read workflow file"):
            parse_workflow_file(tmp_path / "nope.md")


class TestResolveIncludes:
    """Tests for resolve_includes."""

    def test_relative_to_including_file(self, write_workflow) -> None:
        """Nested includes resolve against the file that contains them."""
        main = write_workflow("wf/main.md", frontmatter="on: push", body="# Main\n@include shared/a.md\n")
        write_workflow("wf/shared/a.md", frontmatter="tools:\n  WebFetch:", body="A\n@include b.md\n")
        write_workflow("wf/shared/b.md", body="B\n")

        includes = resolve_includes(parse_workflow_file(main))
        assert [Path(s.path).name for s in includes] == ["a.md", "b.md"]

    def test_each_file_loaded_once(self, write_workflow) -> None:
        """Cycles and repeats do not load a file twice, nor the main file."""
        main = write_workflow("main.md", frontmatter="on: push", body="@include a.md\n@include a.md\n")
        write_workflow("a.md", body="@include b.md\n")
        write_workflow("b.md", body="@include a.md\n@include main.md\n")

        includes = resolve_includes(parse_workflow_file(main))
        assert [Path(s.path).name for s in includes] == ["a.md", "b.md"]

    def test_optional_missing_skipped(self, write_workflow, caplog: pytest.LogCaptureFixture) -> None:
        main = write_workflow("main.md", frontmatter="on: push", body="@include? gone.md\n")
        with caplog.at_level(logging.INFO, logger="agentflow.compiler.parser"):
            assert resolve_includes(parse_workflow_file(main)) == []
        assert "gone.md" in caplog.text

    def test_required_missing(self, write_workflow) -> None:
        main = write_workflow("main.md", frontmatter="on: push", body="# Main\n\n@include gone.md\n")
        with pytest.raises(ParserError, match="Include file not found: gone.md") as exc_info:
            resolve_includes(parse_workflow_file(main))
        assert exc_info.value.line == 6
        assert "How to fix" in str(exc_info.value)

    def test_extra_paths(self, write_workflow) -> None:
        main = write_workflow("main.md", frontmatter="on: push")
        extra = write_workflow("extra.md", frontmatter="engine: codex", body="@include deeper.md\n")
        write_workflow("deeper.md", body="D\n")

        includes = resolve_includes(parse_workflow_file(main), [extra, main])
        assert [Path(s.path).name for s in includes] == ["extra.md", "deeper.md"]
        assert includes[0].frontmatter == {"engine": "codex"}
