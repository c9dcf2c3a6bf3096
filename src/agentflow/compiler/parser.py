"""Workflow document parsing.

A workflow is a markdown file with YAML frontmatter:

    ---
    on:
      command:
        name: triage
    tools:
      github:
        allowed: [add_issue_comment]
    ---
    # Issue Triage

    Read the issue and ...

Parsing only splits the document and loads the frontmatter; interpreting
the frontmatter is the compiler's job. Include directives in the body
(`@include path` or the optional form `@include? path`) are collected so
the caller can resolve them.

Public API:
    WorkflowSource: Parsed workflow or include file
    parse_workflow_text: Parse document text
    parse_workflow_file: Read and parse a document
    resolve_includes: Load the files a workflow includes
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from frontmatter.default_handlers import YAMLHandler

from agentflow.core.exceptions import ParserError
from agentflow.core.types import ConfigValue, describe_kind, to_config_value

logger = logging.getLogger(__name__)

INCLUDE_PATTERN = re.compile(r"^@include(\?)?\s+(\S+)\s*$")
_HEADING_PATTERN = re.compile(r"^#\s+(.+?)\s*#*\s*$")
_TOP_LEVEL_KEY = re.compile(r"^([A-Za-z_][\w-]*)\s*:")


@dataclass(frozen=True)
class IncludeDirective:
    """`@include` line found in a workflow body.

    Attributes:
        path: Path as written (relative to the including file).
        optional: True for `@include?`, which tolerates a missing file.
        line: 1-based line of the directive in the document.

    """

    path: str
    optional: bool
    line: int


@dataclass(frozen=True)
class WorkflowSource:
    """A parsed workflow or include document.

    Attributes:
        path: Document path (display only; may be a placeholder for text input).
        frontmatter: Frontmatter mapping, normalized to ConfigValue.
        markdown: Body text after the frontmatter.
        key_lines: 1-based line of each top-level frontmatter key.
        includes: Include directives found in the body.
        has_frontmatter: False when the document has no frontmatter block.

    """

    path: str
    frontmatter: dict[str, ConfigValue]
    markdown: str
    key_lines: dict[str, int] = field(default_factory=dict)
    includes: tuple[IncludeDirective, ...] = ()
    has_frontmatter: bool = True

    @property
    def stem(self) -> str:
        return Path(self.path).stem

    def get(self, key: str, default: Any = None) -> Any:
        return self.frontmatter.get(key, default)

    def source_of(self, key: str | None = None) -> str:
        """Source location of a top-level key ("path:line"), or the path."""
        if key is not None and key in self.key_lines:
            return f"{self.path}:{self.key_lines[key]}"
        return self.path

    @property
    def title(self) -> str | None:
        """Text of the first level-one heading in the body, if any."""
        for line in self.markdown.splitlines():
            match = _HEADING_PATTERN.match(line.strip())
            if match:
                return match.group(1)
        return None


def _fix_on_key(data: dict[Any, Any]) -> dict[Any, Any]:
    # YAML 1.1 loads a bare `on` key as boolean True
    if True not in data:
        return data
    return {("on" if key is True else key): value for key, value in data.items()}


def _key_lines(frontmatter_text: str, offset: int) -> dict[str, int]:
    lines: dict[str, int] = {}
    for index, line in enumerate(frontmatter_text.splitlines()):
        match = _TOP_LEVEL_KEY.match(line)
        if match and match.group(1) not in lines:
            lines[match.group(1)] = index + offset
    return lines


def _find_includes(markdown: str, first_line: int) -> tuple[IncludeDirective, ...]:
    found: list[IncludeDirective] = []
    for index, line in enumerate(markdown.splitlines()):
        match = INCLUDE_PATTERN.match(line.strip())
        if match:
            found.append(
                IncludeDirective(path=match.group(2), optional=bool(match.group(1)), line=first_line + index)
            )
    return tuple(found)


def parse_workflow_text(text: str, path: str = "<workflow>") -> WorkflowSource:
    """Split a document into frontmatter and body.

    A document without a leading `---` line has empty frontmatter.

    Args:
        text: Document text.
        path: Path used in error messages and source locations.

    Returns:
        WorkflowSource.

    Raises:
        ParserError: If the frontmatter is unterminated, is not valid YAML,
            or is not a mapping.

    """
    handler = YAMLHandler()
    if not handler.detect(text):
        return WorkflowSource(
            path=path,
            frontmatter={},
            markdown=text,
            includes=_find_includes(text, 1),
            has_frontmatter=False,
        )

    try:
        fm_text, body = handler.split(text)
    except ValueError as e:
        raise ParserError(f"Unterminated frontmatter in {path}", path=path, line=1) from e

    # The split keeps the newline ending the opening delimiter line, so
    # line 0 of fm_text is the delimiter line itself
    delimiter_line = 1
    try:
        loaded = handler.load(fm_text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = delimiter_line + mark.line if mark is not None else None
        location = f"{path}:{line}" if line is not None else path
        raise ParserError(f"Invalid YAML frontmatter at {location}: {e}", path=path, line=line) from e

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ParserError(
            f"Frontmatter in {path} must be a mapping, got {describe_kind(loaded)}",
            path=path,
            line=delimiter_line,
        )

    try:
        frontmatter = cast("dict[str, ConfigValue]", to_config_value(_fix_on_key(loaded)))
    except TypeError as e:
        raise ParserError(f"Unsupported value in frontmatter of {path}: {e}", path=path) from e
    body_first_line = delimiter_line + fm_text.count("\n")
    logger.debug("Parsed %s: %d frontmatter keys", path, len(frontmatter))
    return WorkflowSource(
        path=path,
        frontmatter=frontmatter,
        markdown=body,
        key_lines=_key_lines(fm_text, delimiter_line),
        includes=_find_includes(body, body_first_line),
    )


def parse_workflow_file(path: Path) -> WorkflowSource:
    """Read and parse a workflow document.

    Raises:
        ParserError: If the file cannot be read or parsed.

    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ParserError(f"Cannot read workflow file {path}: {e}", path=str(path)) from e
    return parse_workflow_text(text, path=str(path))


def resolve_includes(source: WorkflowSource, extra_paths: Sequence[Path] = ()) -> list[WorkflowSource]:
    """Load the files a workflow includes.

    Directives are followed depth-first in document order and resolved
    relative to the including file. Each file is loaded once; the main
    workflow is never loaded as its own include. extra_paths (e.g. from the
    command line) are loaded after the directives, with their own
    directives followed too.

    Args:
        source: Parsed main workflow.
        extra_paths: Additional include files.

    Returns:
        Parsed include files in load order.

    Raises:
        ParserError: If a required include is missing or cannot be parsed.

    """
    root = Path(source.path).resolve()
    loaded: dict[Path, WorkflowSource] = {}

    def load(path: Path) -> None:
        document = parse_workflow_file(path)
        loaded[path] = document
        visit(document)

    def visit(document: WorkflowSource) -> None:
        base = Path(document.path).parent
        for directive in document.includes:
            path = (base / directive.path).resolve()
            if path == root or path in loaded:
                continue
            if not path.is_file():
                if directive.optional:
                    logger.info("Optional include %s not found, skipping", directive.path)
                    continue
                raise ParserError(
                    f"Include file not found: {directive.path}\n"
                    f"  Referenced from {document.path}:{directive.line}\n"
                    "  How to fix: create the file or use '@include?' for an optional include",
                    path=document.path,
                    line=directive.line,
                )
            load(path)

    visit(source)
    for extra in extra_paths:
        path = extra.resolve()
        if path != root and path not in loaded:
            load(path)
    logger.debug("Resolved %d include files for %s", len(loaded), source.path)
    return list(loaded.values())
