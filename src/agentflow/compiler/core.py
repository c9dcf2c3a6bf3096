"""Compilation orchestrator.

compile_workflow() runs one compilation from parsed sources to a
CompiledWorkflow:

1. Validate the frontmatter of the main document and its includes.
2. Select the engine (override, then main/include `engine:`, then config).
3. Merge the capability trees and reject features the engine cannot honor.
4. Inject default capabilities and compute the allow-list.
5. Parse triggers, resolve stop-after and build the entry guard.
6. Build and validate the job graph, then assemble the workflow document.
7. Optionally validate the document against the remote schema.

The cancellation token is checked before every stage. Errors propagate to
the caller unchanged; nothing is downgraded to a warning.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agentflow.compiler.allowed import compute_allowed_list, format_allowed_list
from agentflow.compiler.capabilities import CapabilityTree, parse_capability_tree
from agentflow.compiler.concurrency import build_concurrency
from agentflow.compiler.conditions import Raw, build_mention_condition, build_reaction_condition
from agentflow.compiler.engines import (
    EngineConfig,
    EngineDescriptor,
    EngineRegistry,
    get_engine_registry,
    parse_engine_config,
    resolve_engine_id,
    validate_engine_features,
)
from agentflow.compiler.jobs import Job, JobGraph
from agentflow.compiler.merge import apply_default_capabilities, merge_capability_trees
from agentflow.compiler.output import render_mcp_servers
from agentflow.compiler.parser import INCLUDE_PATTERN, WorkflowSource
from agentflow.compiler.safe_outputs import (
    GITHUB_SCRIPT_ACTION,
    PATCH_ARTIFACT,
    SAFE_OUTPUT_JOB_NAMES,
    SafeOutputsConfig,
    build_safe_output_jobs,
    parse_safe_outputs,
)
from agentflow.compiler.schema import validate_workflow_document
from agentflow.compiler.time_delta import resolve_stop_time
from agentflow.compiler.triggers import TriggerConfig, build_trigger_guard, parse_triggers
from agentflow.compiler.types import CancellationToken, CompiledWorkflow, CompilerContext
from agentflow.core.config import Config
from agentflow.core.exceptions import CompilerError, InvalidCapabilityShapeError
from agentflow.core.types import describe_kind

logger = logging.getLogger(__name__)

MAIN_FRONTMATTER_KEYS: tuple[str, ...] = (
    "on",
    "permissions",
    "run-name",
    "runs-on",
    "timeout_minutes",
    "concurrency",
    "env",
    "if",
    "steps",
    "post-steps",
    "engine",
    "tools",
    "safe-outputs",
    "cache",
    "strict",
    "jobs",
)
INCLUDE_FRONTMATTER_KEYS: tuple[str, ...] = ("tools", "engine")

TASK_JOB = "task"
REACTION_JOB = "add_reaction"
TASK_TEXT_EXPRESSION = "${{ needs.task.outputs.text }}"
RESERVED_JOB_NAMES: frozenset[str] = frozenset({TASK_JOB, REACTION_JOB, *SAFE_OUTPUT_JOB_NAMES})
MAIN_JOB_SUFFIX = "-agent"
CACHE_ACTION = "actions/cache@v4"

DEFAULT_TIMEOUT_MINUTES = 5
PROMPT_FILE = "/tmp/aw-prompts/prompt.txt"
MCP_CONFIG_FILE = "/tmp/mcp-config/mcp-servers.json"
LOG_DIR = "/tmp/aw-logs"
PATCH_FILE = f"/tmp/{PATCH_ARTIFACT}"

_JOB_NAME_SEPARATORS = re.compile(r"[ :.,()/\\@]")
_JOB_NAME_DASHES = re.compile(r"-{2,}")

_SAFE_OUTPUT_INSTRUCTIONS: tuple[tuple[str, str], ...] = (
    ("create_issue", '- Create an issue: {"type": "create-issue", "title": "...", "body": "..."}'),
    ("add_issue_comment", '- Add a comment: {"type": "add-issue-comment", "body": "..."}'),
    (
        "create_pull_request",
        '- Create a pull request: commit your changes locally, then write '
        '{"type": "create-pull-request", "title": "...", "body": "..."}',
    ),
    ("add_issue_label", '- Add labels: {"type": "add-issue-label", "labels": ["..."]}'),
    ("update_issue", '- Update the issue: {"type": "update-issue", "title": "...", "body": "...", "status": "..."}'),
    (
        "push_to_branch",
        '- Push changes: commit your changes locally, then write {"type": "push-to-branch", "message": "..."}',
    ),
    ("missing_tool", '- Report a missing tool: {"type": "missing-tool", "tool": "...", "reason": "..."}'),
)


def generate_job_name(workflow_name: str) -> str:
    """Derive a valid job id from a workflow name.

    Lowercases, turns separators into dashes, drops quotes and collapses
    repeated dashes. Names that do not start with a letter or underscore
    get a `workflow-` prefix.

    Examples:
        >>> generate_job_name("Issue Triage (v2)")
        'issue-triage-v2'
        >>> generate_job_name("42 things")
        'workflow-42-things'

    """
    name = _JOB_NAME_SEPARATORS.sub("-", workflow_name.lower())
    name = name.replace("'", "").replace('"', "")
    name = _JOB_NAME_DASHES.sub("-", name).strip("-")
    if not name or not (name[0].isascii() and (name[0].isalpha() or name[0] == "_")):
        name = f"workflow-{name}" if name else "workflow"
    return name


def main_job_name_for(workflow_name: str) -> str:
    """Job id for the agent job, kept clear of the compiler's own job names.

    Examples:
        >>> main_job_name_for("Issue Triage")
        'issue-triage'
        >>> main_job_name_for("Task")
        'task-agent'

    """
    name = generate_job_name(workflow_name)
    if name in RESERVED_JOB_NAMES:
        logger.debug("Job name %s is reserved, using %s%s", name, name, MAIN_JOB_SUFFIX)
        name += MAIN_JOB_SUFFIX
    return name


def needs_task_job(trigger: TriggerConfig, markdown: str, guard: Any) -> bool:
    """Whether the workflow needs a task job in front of the main job.

    A task job is created for command workflows, for workflows whose prompt
    reads the triggering text, and whenever the entry job carries a guard.
    """
    return trigger.is_command or TASK_TEXT_EXPRESSION in markdown or guard is not None


# =============================================================================
# Frontmatter validation
# =============================================================================


def _validate_keys(source: WorkflowSource, allowed: Sequence[str], kind: str) -> None:
    for key in source.frontmatter:
        if key not in allowed:
            raise CompilerError(
                f"Unknown frontmatter key '{key}' in {kind}\n"
                f"  Allowed keys: {', '.join(allowed)}",
                source=source.source_of(key),
            )


def _validate_sources(source: WorkflowSource, includes: Sequence[WorkflowSource]) -> None:
    if not source.has_frontmatter:
        raise CompilerError(
            "No frontmatter found\n"
            "  How to fix: start the workflow with a YAML block between '---' lines",
            source=source.path,
        )
    on = source.get("on")
    if isinstance(on, dict) and "stop-time" in on:
        raise CompilerError(
            "'stop-time' is not supported under 'on'\n"
            "  How to fix: use 'on.stop-after' with a relative ('+25h') or absolute date-time",
            source=source.source_of("on"),
        )
    _validate_keys(source, MAIN_FRONTMATTER_KEYS, "workflow")
    if not source.markdown.strip():
        raise CompilerError(
            "Workflow has no markdown content\n"
            "  How to fix: add the agent's instructions below the frontmatter",
            source=source.path,
        )
    for include in includes:
        _validate_keys(include, INCLUDE_FRONTMATTER_KEYS, "included file")


def _expect(source: WorkflowSource, key: str, expected: str, *types: type) -> Any:
    value = source.get(key)
    if value is None:
        return None
    if not isinstance(value, types) or (isinstance(value, bool) and bool not in types):
        raise InvalidCapabilityShapeError(
            key, key, expected, describe_kind(value), source=source.source_of(key)
        )
    return value


def _expect_steps(source: WorkflowSource, key: str) -> list[dict[str, Any]]:
    steps = _expect(source, key, "array of step objects", list) or []
    for step in steps:
        if not isinstance(step, dict):
            raise InvalidCapabilityShapeError(
                key, key, "array of step objects", f"array containing {describe_kind(step)}",
                source=source.source_of(key),
            )
    return steps


_CACHE_FIELDS = ("key", "path", "restore-keys", "upload-chunk-size", "fail-on-cache-miss", "lookup-only")


def _cache_steps(source: WorkflowSource) -> list[dict[str, Any]]:
    """Build `actions/cache` steps from the `cache:` section.

    The section is one cache mapping or a list of them. Each needs `key`
    and `path`; list values of `path` and `restore-keys` become one entry
    per line, as the cache action expects.
    """
    value = source.get("cache")
    if value is None:
        return []
    location = source.source_of("cache")
    entries = value if isinstance(value, list) else [value]

    steps: list[dict[str, Any]] = []
    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise InvalidCapabilityShapeError(
                "cache", "cache", "object or array of objects", describe_kind(entry), source=location
            )
        for field in entry:
            if field not in _CACHE_FIELDS:
                raise InvalidCapabilityShapeError(
                    "cache", field, f"one of {', '.join(_CACHE_FIELDS)}", "unknown field", source=location
                )
        for field in ("key", "path"):
            if not entry.get(field):
                raise InvalidCapabilityShapeError("cache", field, "non-empty value", source=location)

        inputs: dict[str, Any] = {}
        for field in _CACHE_FIELDS:
            if field not in entry:
                continue
            item = entry[field]
            if field in ("path", "restore-keys") and isinstance(item, list):
                item = "\n".join(str(part) for part in item)
            inputs[field] = item

        key = entry["key"]
        if isinstance(key, str):
            name = f"Cache ({key})"
        else:
            name = f"Cache {index}" if len(entries) > 1 else "Cache"
        steps.append({"name": name, "uses": CACHE_ACTION, "with": inputs})
    return steps


def _check_strict(source: WorkflowSource) -> None:
    if not _expect(source, "strict", "boolean", bool):
        return
    permissions = source.get("permissions")
    values = permissions.values() if isinstance(permissions, dict) else [permissions]
    writes = [str(v) for v in values if isinstance(v, str) and "write" in v]
    if writes:
        logger.warning(
            "Strict mode: workflow requests write permissions (%s); "
            "read permissions are enough for the agent job, use safe-outputs for writes",
            ", ".join(writes),
        )


# =============================================================================
# Engine selection and capabilities
# =============================================================================


def _select_engine(
    context: CompilerContext, config: Config, registry: EngineRegistry
) -> tuple[EngineDescriptor, EngineConfig | None]:
    source = context.source
    main_config = parse_engine_config(source.get("engine"), source.source_of("engine"))
    included = []
    for include in context.includes:
        include_config = parse_engine_config(include.get("engine"), include.source_of("engine"))
        if include_config is not None:
            included.append((include_config, include.source_of("engine")))

    engine_id = context.engine_override or resolve_engine_id(main_config, included) or config.default_engine
    engine = registry.get(engine_id)
    logger.debug("Selected engine %s", engine.id)
    return engine, main_config


def _build_tree(
    context: CompilerContext, engine: EngineDescriptor, engine_config: EngineConfig | None,
    safe_outputs: SafeOutputsConfig | None,
) -> CapabilityTree:
    trees = [parse_capability_tree(context.source.get("tools"), context.source.source_of("tools"))]
    for include in context.includes:
        trees.append(parse_capability_tree(include.get("tools"), include.source_of("tools")))
    merged = merge_capability_trees(trees)

    validate_engine_features(engine, merged, engine_config)
    if not engine.supports_tool_allow_list and merged.builtins():
        logger.warning(
            "Engine %s does not support tool allow-lists; builtin tools (%s) are not restricted",
            engine.id,
            ", ".join(tool.name for tool in merged.builtins()),
        )
    return apply_default_capabilities(merged, engine, safe_outputs)


# =============================================================================
# Prompt
# =============================================================================


def _expand_includes(source: WorkflowSource, includes: Sequence[WorkflowSource]) -> str:
    """Replace each @include line with the (expanded) body of the matching include.

    Directives whose file was not supplied, and directives that would
    include a file already being expanded, are dropped.
    """
    by_path = {Path(include.path).resolve(): include for include in includes}
    return _expand(source, by_path, frozenset({Path(source.path).resolve()}))


def _expand(document: WorkflowSource, by_path: dict[Path, WorkflowSource], seen: frozenset[Path]) -> str:
    if not document.includes:
        return document.markdown
    base = Path(document.path).parent
    lines: list[str] = []
    for line in document.markdown.splitlines():
        match = INCLUDE_PATTERN.match(line.strip())
        if match is None:
            lines.append(line)
            continue
        path = (base / match.group(2)).resolve()
        included = by_path.get(path)
        if included is None or path in seen:
            logger.debug("Include %s not supplied, dropping directive", match.group(2))
            continue
        lines.append(_expand(included, by_path, seen | {path}).strip("\n"))
    return "\n".join(lines)


def _safe_output_instructions(config: SafeOutputsConfig) -> str:
    lines = [
        "",
        "---",
        "",
        "## Reporting Results",
        "",
        "Do not use the GitHub API to write to the repository. Instead, append one JSON",
        'object per line to the file named by the "GITHUB_AW_SAFE_OUTPUTS" environment variable:',
        "",
    ]
    lines += [text for attr, text in _SAFE_OUTPUT_INSTRUCTIONS if getattr(config, attr) is not None]
    return "\n".join(lines)


def _prompt_step(prompt: str, safe_outputs: SafeOutputsConfig | None) -> dict[str, Any]:
    prompt = prompt.rstrip("\n")
    if safe_outputs is not None:
        prompt += "\n" + _safe_output_instructions(safe_outputs)
    env = {"GITHUB_AW_PROMPT": PROMPT_FILE}
    if safe_outputs is not None:
        env["GITHUB_AW_SAFE_OUTPUTS"] = "${{ env.GITHUB_AW_SAFE_OUTPUTS }}"
    run = (
        f"mkdir -p {Path(PROMPT_FILE).parent}\n"
        f"cat > $GITHUB_AW_PROMPT << 'EOF'\n"
        f"{prompt}\n"
        "EOF\n"
    )
    return {"name": "Create prompt", "env": env, "run": run}


# =============================================================================
# Job builders
# =============================================================================


def _task_job(trigger: TriggerConfig, guard: Any, needs_text: bool) -> Job:
    steps: list[dict[str, Any]] = []
    outputs: dict[str, str] = {}
    if trigger.command is not None:
        steps.append(
            {
                "name": "Check team membership for command workflow",
                "id": "check-team-member",
                "if": build_mention_condition(trigger.command, trigger.mention_prefix).render(),
                "uses": GITHUB_SCRIPT_ACTION,
            }
        )
        steps.append(
            {
                "name": "Validate team membership",
                "if": "steps.check-team-member.outputs.is_team_member == 'false'",
                "run": (
                    'echo "Unauthorized access attempt: ${{ github.actor }} is not a team member"\n'
                    "exit 1\n"
                ),
            }
        )
    if needs_text:
        steps.append({"name": "Compute current body text", "id": "compute-text", "uses": GITHUB_SCRIPT_ACTION})
        outputs["text"] = "${{ steps.compute-text.outputs.text }}"
    if not steps:
        steps.append({"name": "Task job condition barrier", "run": 'echo "Task job executed - conditions satisfied"'})
    return Job(name=TASK_JOB, guard=guard, steps=steps, outputs=outputs)


def _reaction_job(trigger: TriggerConfig, depends_on: tuple[str, ...]) -> Job:
    env = {"GITHUB_AW_REACTION": trigger.reaction or ""}
    if trigger.command is not None:
        env["GITHUB_AW_COMMAND"] = trigger.command
    return Job(
        name=REACTION_JOB,
        guard=build_reaction_condition(),
        permissions={"issues": "write", "pull-requests": "write"},
        steps=[
            {
                "name": f"Add {trigger.reaction} reaction to the triggering item",
                "id": "react",
                "uses": GITHUB_SCRIPT_ACTION,
                "env": env,
            }
        ],
        outputs={"reaction_id": "${{ steps.react.outputs.reaction-id }}"},
        depends_on=depends_on,
    )


def _execution_step(
    engine: EngineDescriptor,
    engine_config: EngineConfig | None,
    allowed_tools: list[str],
    timeout_minutes: int,
    safe_outputs: SafeOutputsConfig | None,
) -> list[dict[str, Any]]:
    env: dict[str, str] = dict(engine_config.env) if engine_config is not None else {}
    if safe_outputs is not None:
        env["GITHUB_AW_SAFE_OUTPUTS"] = "${{ env.GITHUB_AW_SAFE_OUTPUTS }}"

    if engine.action is not None:
        inputs: dict[str, Any] = {"prompt_file": PROMPT_FILE, "mcp_config": MCP_CONFIG_FILE}
        if engine.supports_tool_allow_list and allowed_tools:
            inputs["allowed_tools"] = format_allowed_list(allowed_tools)
        if engine_config is not None and engine_config.max_turns is not None:
            inputs["max_turns"] = engine_config.max_turns
        if engine_config is not None and engine_config.model:
            inputs["model"] = engine_config.model
        inputs["timeout_minutes"] = timeout_minutes
        step: dict[str, Any] = {
            "name": f"Execute {engine.display_name}",
            "id": "agentic_execution",
            "uses": engine.action,
            "with": inputs,
        }
        if env:
            step["env"] = env
        return [step]

    if engine.command is not None:
        env = {"GITHUB_AW_PROMPT": PROMPT_FILE, "GITHUB_AW_MCP_CONFIG": MCP_CONFIG_FILE, **env}
        if engine_config is not None and engine_config.model:
            env["GITHUB_AW_MODEL"] = engine_config.model
        return [
            {
                "name": f"Execute {engine.display_name}",
                "id": "agentic_execution",
                "run": f"mkdir -p {LOG_DIR}\n{engine.command}\n",
                "env": env,
            }
        ]

    steps = list(engine_config.steps) if engine_config is not None else []
    if not steps:
        logger.warning("Engine %s has no steps configured; the main job will not run an agent", engine.id)
    return steps


def _safe_output_config_json(config: SafeOutputsConfig) -> str:
    data = config.model_dump(by_alias=True, exclude_none=True, exclude={"allowed_domains"})
    return json.dumps(data, separators=(",", ":"))


def _main_job(
    name: str,
    source: WorkflowSource,
    prompt: str,
    engine: EngineDescriptor,
    engine_config: EngineConfig | None,
    tree: CapabilityTree,
    allowed_tools: list[str],
    safe_outputs: SafeOutputsConfig | None,
    stop_time: str | None,
    depends_on: tuple[str, ...],
) -> Job:
    timeout = _expect(source, "timeout_minutes", "integer", int)
    timeout_minutes = timeout if timeout is not None else DEFAULT_TIMEOUT_MINUTES

    steps: list[dict[str, Any]] = list(_expect_steps(source, "steps")) or [
        {"name": "Checkout repository", "uses": "actions/checkout@v5"}
    ]
    steps += _cache_steps(source)
    if safe_outputs is not None:
        steps.append(
            {
                "name": "Setup agent output",
                "id": "setup_agent_output",
                "run": (
                    'GITHUB_AW_SAFE_OUTPUTS="/tmp/aw_output_$(openssl rand -hex 8).txt"\n'
                    'touch "$GITHUB_AW_SAFE_OUTPUTS"\n'
                    'echo "GITHUB_AW_SAFE_OUTPUTS=$GITHUB_AW_SAFE_OUTPUTS" >> "$GITHUB_ENV"\n'
                ),
            }
        )
    steps.append(
        {
            "name": "Setup MCPs",
            "run": (
                f"mkdir -p {Path(MCP_CONFIG_FILE).parent}\n"
                f"cat > {MCP_CONFIG_FILE} << 'EOF'\n"
                f"{json.dumps(render_mcp_servers(tree), indent=2)}\n"
                "EOF\n"
            ),
        }
    )
    if stop_time is not None:
        steps.append(
            {
                "name": "Safety checks",
                "env": {"GH_TOKEN": "${{ secrets.GITHUB_TOKEN }}"},
                "run": (
                    f'STOP_TIME="{stop_time}"\n'
                    'if [ "$(date -u +%s)" -ge "$(date -u -d "$STOP_TIME" +%s)" ]; then\n'
                    '  echo "Stop time $STOP_TIME reached, disabling workflow"\n'
                    '  gh workflow disable "$GITHUB_WORKFLOW"\n'
                    "  exit 1\n"
                    "fi\n"
                ),
            }
        )
    steps.append(_prompt_step(prompt, safe_outputs))
    steps += _execution_step(engine, engine_config, allowed_tools, timeout_minutes, safe_outputs)

    outputs: dict[str, str] = {}
    if safe_outputs is not None:
        collect_env = {
            "GITHUB_AW_SAFE_OUTPUTS": "${{ env.GITHUB_AW_SAFE_OUTPUTS }}",
            "GITHUB_AW_SAFE_OUTPUTS_CONFIG": _safe_output_config_json(safe_outputs),
        }
        if safe_outputs.allowed_domains:
            collect_env["GITHUB_AW_ALLOWED_DOMAINS"] = ",".join(safe_outputs.allowed_domains)
        steps.append(
            {
                "name": "Collect agent output",
                "id": "collect_output",
                "uses": GITHUB_SCRIPT_ACTION,
                "env": collect_env,
            }
        )
        steps.append(
            {
                "name": "Upload agentic output file",
                "if": "always() && steps.collect_output.outputs.output != ''",
                "uses": "actions/upload-artifact@v4",
                "with": {"name": "aw_output.txt", "path": "${{ env.GITHUB_AW_SAFE_OUTPUTS }}", "if-no-files-found": "warn"},
            }
        )
        outputs["output"] = "${{ steps.collect_output.outputs.output }}"
        if safe_outputs.needs_git_commands():
            steps.append(
                {
                    "name": "Generate git patch",
                    "if": "always()",
                    "run": (
                        'if [ -n "$(git status --porcelain)" ]; then\n'
                        "  git add -A\n"
                        '  git -c user.name="github-actions[bot]" '
                        '-c user.email="github-actions[bot]@users.noreply.github.com" '
                        'commit -m "Agent changes"\n'
                        "fi\n"
                        f'git format-patch "${{{{ github.sha }}}}..HEAD" --stdout > {PATCH_FILE}\n'
                    ),
                }
            )
            steps.append(
                {
                    "name": "Upload git patch",
                    "if": "always()",
                    "uses": "actions/upload-artifact@v4",
                    "with": {"name": PATCH_ARTIFACT, "path": PATCH_FILE, "if-no-files-found": "ignore"},
                }
            )
    steps += _expect_steps(source, "post-steps")

    runs_on = _expect(source, "runs-on", "string or array", str, list) or "ubuntu-latest"
    permissions = _expect(source, "permissions", "string or object", str, dict) or "read-all"
    return Job(
        name=name,
        runs_on=runs_on,
        permissions=permissions,
        steps=steps,
        outputs=outputs,
        depends_on=depends_on,
        timeout_minutes=timeout_minutes,
    )


def _custom_jobs(source: WorkflowSource) -> list[Job]:
    jobs_value = _expect(source, "jobs", "object", dict) or {}
    location = source.source_of("jobs")
    jobs: list[Job] = []
    for name, body in jobs_value.items():
        if not isinstance(body, dict):
            raise InvalidCapabilityShapeError(name, "jobs", "object", describe_kind(body), source=location)
        depends = body.get("depends", body.get("needs", ()))
        if isinstance(depends, str):
            depends = (depends,)
        if not isinstance(depends, (list, tuple)) or not all(isinstance(d, str) for d in depends):
            raise InvalidCapabilityShapeError(
                name, "depends", "string or array of strings", describe_kind(depends), source=location
            )
        condition = body.get("if")
        if condition is not None and not isinstance(condition, str):
            raise InvalidCapabilityShapeError(name, "if", "string", describe_kind(condition), source=location)
        steps = body.get("steps", [])
        if not isinstance(steps, list) or not all(isinstance(s, dict) for s in steps):
            raise InvalidCapabilityShapeError(
                name, "steps", "array of step objects", describe_kind(steps), source=location
            )
        jobs.append(
            Job(
                name=name,
                guard=Raw(condition) if condition else None,
                runs_on=body.get("runs-on", "ubuntu-latest"),
                permissions=body.get("permissions"),
                steps=steps,
                depends_on=tuple(depends),
            )
        )
    return jobs


def _build_graph(
    context: CompilerContext,
    name: str,
    main_job_name: str,
    prompt: str,
    engine: EngineDescriptor,
    engine_config: EngineConfig | None,
    tree: CapabilityTree,
    allowed_tools: list[str],
    triggers: TriggerConfig,
    safe_outputs: SafeOutputsConfig | None,
    stop_time: str | None,
) -> JobGraph:
    source = context.source
    user_if = _expect(source, "if", "string", str)
    guard = build_trigger_guard(triggers, user_if)

    graph = JobGraph()
    entry: tuple[str, ...] = ()
    if needs_task_job(triggers, prompt, guard):
        graph.add_job(_task_job(triggers, guard, TASK_TEXT_EXPRESSION in prompt))
        entry = (TASK_JOB,)
    if triggers.reaction is not None:
        graph.add_job(_reaction_job(triggers, entry))

    graph.add_job(
        _main_job(
            main_job_name, source, prompt, engine, engine_config, tree, allowed_tools,
            safe_outputs, stop_time, entry,
        )
    )
    if safe_outputs is not None:
        for job in build_safe_output_jobs(
            safe_outputs, main_job_name, source.stem, triggers.command, triggers.mention_prefix
        ):
            graph.add_job(job)
    for job in _custom_jobs(source):
        graph.add_job(job)

    graph.validate_dependencies()
    logger.debug("Built job graph (dependency order): %s", ", ".join(graph.topological_order()))
    return graph


def _build_document(
    name: str, source: WorkflowSource, triggers: TriggerConfig, graph: JobGraph
) -> dict[str, Any]:
    document: dict[str, Any] = {
        "name": name,
        "on": triggers.events,
        "permissions": {},
        "concurrency": build_concurrency(
            triggers.event_names, triggers.is_command, source.get("concurrency")
        ),
        "run-name": _expect(source, "run-name", "string", str) or name,
    }
    env = _expect(source, "env", "object", dict)
    if env:
        document["env"] = env
    document["jobs"] = graph.render()
    return document


# =============================================================================
# Entry point
# =============================================================================


def compile_workflow(context: CompilerContext) -> CompiledWorkflow:
    """Compile a parsed workflow and its includes.

    Args:
        context: Sources, settings and optional cancellation token.

    Returns:
        CompiledWorkflow with the merged tree, allow-list, job graph and
        workflow document.

    Raises:
        CompilerError: Any compilation failure (merge conflicts, invalid
            shapes, unsupported features, trigger errors, graph errors,
            schema errors, cancellation).

    """
    token = context.cancel_token or CancellationToken()
    config = context.config or Config()
    registry = context.registry or get_engine_registry()
    source = context.source
    compiled_at = context.compiled_at or datetime.now(timezone.utc)

    token.raise_if_cancelled("validate")
    _validate_sources(source, context.includes)
    _check_strict(source)

    token.raise_if_cancelled("engine")
    engine, engine_config = _select_engine(context, config, registry)

    token.raise_if_cancelled("safe-outputs")
    safe_outputs = parse_safe_outputs(source.get("safe-outputs"), source.source_of("safe-outputs"))

    token.raise_if_cancelled("merge")
    tree = _build_tree(context, engine, engine_config, safe_outputs)

    token.raise_if_cancelled("allowed")
    allowed_tools = compute_allowed_list(tree) if engine.supports_tool_allow_list else []

    token.raise_if_cancelled("triggers")
    triggers = parse_triggers(source.get("on"), default_command=source.stem, source=source.source_of("on"))
    stop_time = None
    if triggers.stop_after:
        stop_time = resolve_stop_time(triggers.stop_after, compiled_at, source.source_of("on")) or None

    token.raise_if_cancelled("jobs")
    name = source.title or source.stem
    main_job_name = main_job_name_for(name)
    prompt = _expand_includes(source, context.includes)
    graph = _build_graph(
        context, name, main_job_name, prompt, engine, engine_config, tree, allowed_tools,
        triggers, safe_outputs, stop_time,
    )

    token.raise_if_cancelled("document")
    document = _build_document(name, source, triggers, graph)

    if config.validate_schema:
        token.raise_if_cancelled("schema")
        validate_workflow_document(document, config.schema_url, config.schema_timeout, source=source.path)

    logger.debug("Compiled %s with engine %s (%d jobs)", source.path, engine.id, len(graph))
    return CompiledWorkflow(
        name=name,
        workflow_id=source.stem,
        main_job=main_job_name,
        engine=engine,
        engine_config=engine_config,
        tree=tree,
        allowed_tools=allowed_tools,
        triggers=triggers,
        safe_outputs=safe_outputs,
        graph=graph,
        document=document,
        stop_time=stop_time,
        source_path=source.path,
    )
