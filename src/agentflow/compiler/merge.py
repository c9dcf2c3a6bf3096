"""Capability tree merging and default capability injection.

Trees are folded in order: the workflow's own `tools:` first, then each
include in inclusion order. Per capability name:

- builtin + builtin: command constraints are unioned (WILDCARD absorbs).
- server + server: launch descriptors must be structurally equal (an absent
  descriptor matches anything); allowed lists are unioned.
- opaque + opaque: mappings merge recursively, sequences are unioned,
  scalars are last-writer-wins.
- different kinds under one name: conflict.

Public API:
    merge_capability_trees: Fold ordered trees into one
    apply_default_capabilities: Inject the default read-only capabilities
    DEFAULT_GITHUB_TOOLS, DEFAULT_BUILTIN_TOOLS, GIT_COMMANDS: Pinned defaults
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING

from agentflow.compiler.capabilities import (
    BUILTIN_WILDCARDS,
    GITHUB_TOOL,
    SERVER_WILDCARDS,
    BuiltinTool,
    CapabilitySpec,
    CapabilityTree,
    CommandConstraint,
    ConstraintKind,
    OpaqueTool,
    ServerTool,
)
from agentflow.core.exceptions import MergeConflictError
from agentflow.core.types import ConfigValue

if TYPE_CHECKING:
    from agentflow.compiler.engines import EngineDescriptor
    from agentflow.compiler.safe_outputs import SafeOutputsConfig

logger = logging.getLogger(__name__)

# Read-only GitHub server operations, grouped by toolset
DEFAULT_GITHUB_TOOLS: tuple[str, ...] = (
    # actions
    "download_workflow_run_artifact",
    "get_job_logs",
    "get_workflow_run",
    "get_workflow_run_logs",
    "get_workflow_run_usage",
    "list_workflow_jobs",
    "list_workflow_run_artifacts",
    "list_workflow_runs",
    "list_workflows",
    # code security
    "get_code_scanning_alert",
    "list_code_scanning_alerts",
    # context
    "get_me",
    # dependabot
    "get_dependabot_alert",
    "list_dependabot_alerts",
    # discussions
    "get_discussion",
    "get_discussion_comments",
    "list_discussion_categories",
    "list_discussions",
    # issues
    "get_issue",
    "get_issue_comments",
    "list_issues",
    "search_issues",
    # notifications
    "get_notification_details",
    "list_notifications",
    # organizations
    "search_orgs",
    # pull requests
    "get_pull_request",
    "get_pull_request_comments",
    "get_pull_request_diff",
    "get_pull_request_files",
    "get_pull_request_reviews",
    "get_pull_request_status",
    "list_pull_requests",
    "search_pull_requests",
    # repos
    "get_commit",
    "get_file_contents",
    "get_tag",
    "list_branches",
    "list_commits",
    "list_tags",
    "search_code",
    "search_repositories",
    # secret protection
    "get_secret_scanning_alert",
    "list_secret_scanning_alerts",
    # users
    "search_users",
)

DEFAULT_BUILTIN_TOOLS: tuple[str, ...] = (
    "Task",
    "Glob",
    "Grep",
    "ExitPlanMode",
    "TodoWrite",
    "LS",
    "Read",
    "NotebookRead",
)

BASH_COMPANION_TOOLS: tuple[str, ...] = ("KillBash", "BashOutput")

EDIT_TOOLS: tuple[str, ...] = ("Edit", "MultiEdit", "Write", "NotebookEdit")

GIT_COMMANDS: tuple[str, ...] = (
    "git checkout:*",
    "git branch:*",
    "git switch:*",
    "git add:*",
    "git rm:*",
    "git commit:*",
    "git merge:*",
)


def merge_opaque(left: ConfigValue, right: ConfigValue) -> ConfigValue:
    """Merge two uninterpreted values.

    Mappings merge key by key (recursively), sequences are unioned keeping
    first-seen order, anything else is replaced by the right value.

    Examples:
        >>> merge_opaque({"allowed": ["a"], "x": 1}, {"allowed": ["b", "a"], "x": 2})
        {'allowed': ['a', 'b'], 'x': 2}

    """
    if isinstance(left, dict) and isinstance(right, dict):
        result = dict(left)
        for key, value in right.items():
            result[key] = merge_opaque(result[key], value) if key in result else value
        return result
    if isinstance(left, list) and isinstance(right, list):
        merged = list(left)
        for item in right:
            if item not in merged:
                merged.append(item)
        return merged
    return right


def _merge_servers(
    left: ServerTool, right: ServerTool, left_source: str | None, right_source: str | None
) -> ServerTool:
    if left.launch is not None and right.launch is not None:
        differing = left.launch.first_difference(right.launch)
        if differing is not None:
            raise MergeConflictError(
                name=left.name,
                field=differing,
                left=getattr(left.launch, differing),
                right=getattr(right.launch, differing),
                left_source=left_source,
                right_source=right_source,
            )
    extra = merge_opaque(dict(left.extra), dict(right.extra))
    return ServerTool(
        name=left.name,
        launch=left.launch if left.launch is not None else right.launch,
        allowed=left.allowed.union(right.allowed),
        extra=MappingProxyType(extra),  # type: ignore[arg-type]
    )


def merge_specs(
    left: CapabilitySpec,
    right: CapabilitySpec,
    left_source: str | None = None,
    right_source: str | None = None,
) -> CapabilitySpec:
    """Merge two declarations of the same capability name.

    Args:
        left: Earlier declaration.
        right: Later declaration.
        left_source: Source of the earlier declaration.
        right_source: Source of the later declaration.

    Returns:
        The merged spec.

    Raises:
        MergeConflictError: If the kinds differ or server launch descriptors
            disagree on any field.

    """
    if type(left) is not type(right):
        raise MergeConflictError(
            name=left.name,
            field="kind",
            left=type(left).__name__,
            right=type(right).__name__,
            left_source=left_source,
            right_source=right_source,
        )
    if isinstance(left, BuiltinTool) and isinstance(right, BuiltinTool):
        return BuiltinTool(name=left.name, commands=left.commands.union(right.commands))
    if isinstance(left, ServerTool) and isinstance(right, ServerTool):
        return _merge_servers(left, right, left_source, right_source)
    assert isinstance(left, OpaqueTool) and isinstance(right, OpaqueTool)
    return OpaqueTool(name=left.name, value=merge_opaque(left.value, right.value))


def merge_capability_trees(trees: Sequence[CapabilityTree]) -> CapabilityTree:
    """Fold ordered capability trees into one.

    Names keep the position of their first declaration.

    Args:
        trees: Trees in precedence order (main document first, then includes).

    Returns:
        The merged tree. Its source is the first tree's source.

    Raises:
        MergeConflictError: On the first incompatible redeclaration.

    """
    merged: dict[str, CapabilitySpec] = {}
    sources: dict[str, str | None] = {}

    for tree in trees:
        for name, spec in tree.items():
            if name not in merged:
                merged[name] = spec
                sources[name] = tree.source_of(name)
                continue
            merged[name] = merge_specs(merged[name], spec, sources[name], tree.source_of(name))

    logger.debug("Merged %d capability trees into %d entries", len(trees), len(merged))
    return CapabilityTree(
        merged.values(),
        source=trees[0].source if trees else None,
        sources=sources,
    )


def _add_commands(tool: BuiltinTool | None, name: str, commands: Sequence[str]) -> BuiltinTool:
    addition = CommandConstraint.classify(commands, BUILTIN_WILDCARDS)
    if tool is None:
        return BuiltinTool(name=name, commands=addition)
    return BuiltinTool(name=name, commands=tool.commands.union(addition))


def apply_default_capabilities(
    tree: CapabilityTree,
    engine: EngineDescriptor,
    safe_outputs: SafeOutputsConfig | None = None,
) -> CapabilityTree:
    """Inject the default read-only capabilities into a merged tree.

    - The github server is created if missing and its allowed list is
      unioned with DEFAULT_GITHUB_TOOLS.
    - If the engine supports allow-lists: DEFAULT_BUILTIN_TOOLS are added,
      KillBash/BashOutput accompany Bash, any safe output adds Write, and
      safe outputs that push code add the edit tools plus GIT_COMMANDS on a
      FINITE (or absent) Bash. A WILDCARD or EMPTY Bash already allows them.

    Membership is checked by exact name, so applying this twice yields the
    same tree as applying it once.

    Args:
        tree: Merged capability tree.
        engine: Target engine descriptor.
        safe_outputs: Parsed safe-outputs section, if any.

    Returns:
        A new tree; the input is not modified.

    Raises:
        MergeConflictError: If `github` is declared as something other than
            a server tool.

    """
    specs: dict[str, CapabilitySpec] = dict(tree)
    sources: dict[str, str | None] = dict(tree.sources)

    github = specs.get(GITHUB_TOOL)
    defaults = ServerTool(
        name=GITHUB_TOOL,
        allowed=CommandConstraint.classify(DEFAULT_GITHUB_TOOLS, SERVER_WILDCARDS),
    )
    if github is None:
        specs[GITHUB_TOOL] = defaults
        sources[GITHUB_TOOL] = None
    else:
        specs[GITHUB_TOOL] = merge_specs(github, defaults, tree.source_of(GITHUB_TOOL))

    if engine.supports_tool_allow_list:
        for name in DEFAULT_BUILTIN_TOOLS:
            specs.setdefault(name, BuiltinTool(name=name))
            sources.setdefault(name, None)

        if safe_outputs is not None and safe_outputs.needs_git_commands():
            for name in EDIT_TOOLS:
                specs.setdefault(name, BuiltinTool(name=name))
                sources.setdefault(name, None)
            bash = specs.get("Bash")
            if bash is None:
                specs["Bash"] = _add_commands(None, "Bash", GIT_COMMANDS)
                sources["Bash"] = None
            elif isinstance(bash, BuiltinTool) and bash.commands.kind is ConstraintKind.FINITE:
                specs["Bash"] = _add_commands(bash, "Bash", GIT_COMMANDS)

        if safe_outputs is not None and safe_outputs.has_any():
            specs.setdefault("Write", BuiltinTool(name="Write"))
            sources.setdefault("Write", None)

        if isinstance(specs.get("Bash"), BuiltinTool):
            for name in BASH_COMPANION_TOOLS:
                specs.setdefault(name, BuiltinTool(name=name))
                sources.setdefault(name, None)

    return CapabilityTree(specs.values(), source=tree.source, sources=sources)
