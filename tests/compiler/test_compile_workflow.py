"""Tests for the compilation orchestrator.

Tests cover:
- Document and main job assembly for action, command and custom engines
- Task, reaction, safe-output and user-defined jobs
- Engine selection order and include handling
- Frontmatter validation errors
- Cancellation and optional schema validation
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from agentflow.compiler.core import (
    DEFAULT_TIMEOUT_MINUTES,
    REACTION_JOB,
    TASK_JOB,
    compile_workflow,
    generate_job_name,
    main_job_name_for,
)
from agentflow.compiler.parser import WorkflowSource, parse_workflow_text
from agentflow.compiler.types import CancellationToken, CompiledWorkflow, CompilerContext
from agentflow.core.config import Config
from agentflow.core.exceptions import (
    CompilationCancelledError,
    CompilerError,
    CyclicDependencyError,
    EngineConflictError,
    InvalidCapabilityShapeError,
    MergeConflictError,
    MissingDependencyError,
    TriggerConfigError,
    UnknownEngineError,
    UnsupportedFeatureError,
)

COMPILED_AT = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _source(frontmatter: str | None, body: str = "# Triage\n\nDo the work.\n", path: str = "wf/triage.md") -> WorkflowSource:
    text = body if frontmatter is None else f"---\n{frontmatter.strip()}\n---\n{body}"
    return parse_workflow_text(text, path=path)


def _compile(frontmatter: str | None, body: str = "# Triage\n\nDo the work.\n", **kwargs) -> CompiledWorkflow:
    kwargs.setdefault("compiled_at", COMPILED_AT)
    return compile_workflow(CompilerContext(source=_source(frontmatter, body), **kwargs))


def _step(job: dict, name: str) -> dict:
    return next(step for step in job["steps"] if step.get("name") == name)


class TestGenerateJobName:
    """Tests for generate_job_name."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Issue Triage (v2)", "issue-triage-v2"),
            ("42 things", "workflow-42-things"),
            ("Weekly: Report/Summary", "weekly-report-summary"),
            ("Bob's \"Bot\"", "bobs-bot"),
            ("_private", "_private"),
            ("@@@", "workflow"),
        ],
    )
    def test_names(self, name: str, expected: str) -> None:
        assert generate_job_name(name) == expected


class TestBasicCompilation:
    """Tests for a plain workflow on the default engine."""

    def test_document_layout(self) -> None:
        compiled = _compile("on: push")
        document = compiled.document

        assert list(document) == ["name", "on", "permissions", "concurrency", "run-name", "jobs"]
        assert document["name"] == "Triage"
        assert document["on"] == "push"
        assert document["permissions"] == {}
        assert document["run-name"] == "Triage"
        assert list(document["jobs"]) == ["triage"]
        assert compiled.main_job == "triage"
        assert compiled.workflow_id == "triage"
        assert compiled.source_path == "wf/triage.md"
        assert compiled.stop_time is None

    def test_main_job(self) -> None:
        job = _compile("on: push").document["jobs"]["triage"]

        assert job["runs-on"] == "ubuntu-latest"
        assert job["permissions"] == "read-all"
        assert job["timeout-minutes"] == DEFAULT_TIMEOUT_MINUTES
        assert "needs" not in job
        assert [step["name"] for step in job["steps"]] == [
            "Checkout repository",
            "Setup MCPs",
            "Create prompt",
            "Execute Claude Code",
        ]

    def test_execution_step_inputs(self) -> None:
        compiled = _compile("on: push\ntools:\n  bash: [ls]\nengine:\n  id: claude\n  model: sonnet\n  max-turns: 7")
        step = _step(compiled.document["jobs"]["triage"], "Execute Claude Code")

        assert step["id"] == "agentic_execution"
        assert step["uses"] == compiled.engine.action
        assert step["with"]["allowed_tools"] == compiled.allowed_tools_string
        assert step["with"]["max_turns"] == 7
        assert step["with"]["model"] == "sonnet"
        assert step["with"]["timeout_minutes"] == DEFAULT_TIMEOUT_MINUTES
        assert "Bash(ls)" in compiled.allowed_tools
        assert compiled.allowed_tools == sorted(compiled.allowed_tools)

    def test_prompt_step(self) -> None:
        step = _step(_compile("on: push").document["jobs"]["triage"], "Create prompt")
        assert step["env"] == {"GITHUB_AW_PROMPT": "/tmp/aw-prompts/prompt.txt"}
        assert "cat > $GITHUB_AW_PROMPT << 'EOF'\n" in step["run"]
        assert "Do the work.\nEOF\n" in step["run"]

    def test_mcp_config_step(self) -> None:
        step = _step(_compile("on: push").document["jobs"]["triage"], "Setup MCPs")
        config_text = step["run"].split("<< 'EOF'\n", 1)[1].rsplit("\nEOF", 1)[0]
        assert "github" in json.loads(config_text)["mcpServers"]

    def test_default_capabilities_applied(self) -> None:
        compiled = _compile("on: push")
        assert "github" in compiled.tree
        assert "Read" in compiled.tree
        assert "mcp__github__get_issue" in compiled.allowed_tools

    def test_frontmatter_overrides(self) -> None:
        compiled = _compile(
            """
on: push
runs-on: [self-hosted, linux]
permissions:
  contents: read
timeout_minutes: 30
run-name: Nightly triage
env:
  LEVEL: debug
steps:
  - name: Custom checkout
    uses: actions/checkout@v4
post-steps:
  - name: Done
    run: echo done
"""
        )
        document = compiled.document
        job = document["jobs"]["triage"]
        assert document["run-name"] == "Nightly triage"
        assert document["env"] == {"LEVEL": "debug"}
        assert job["runs-on"] == ["self-hosted", "linux"]
        assert job["permissions"] == {"contents": "read"}
        assert job["timeout-minutes"] == 30
        assert job["steps"][0]["name"] == "Custom checkout"
        assert job["steps"][-1]["name"] == "Done"
        assert _step(job, "Execute Claude Code")["with"]["timeout_minutes"] == 30

    def test_name_falls_back_to_stem(self) -> None:
        compiled = _compile("on: push", body="No heading here.\n")
        assert compiled.name == "triage"

    def test_default_events(self) -> None:
        compiled = _compile("tools:\n  WebFetch:")
        assert "schedule" in compiled.document["on"]
        assert "workflow_dispatch" in compiled.document["on"]

    def test_concurrency_override(self) -> None:
        compiled = _compile("on: push\nconcurrency:\n  group: mine")
        assert compiled.document["concurrency"] == {"group": "mine"}

    def test_user_if_creates_task_job(self) -> None:
        """A workflow-level if: guards a task job in front of the main job."""
        jobs = _compile("on: push\nif: github.actor != 'bot'").document["jobs"]

        assert list(jobs) == [TASK_JOB, "triage"]
        assert jobs[TASK_JOB]["if"] == "github.actor != 'bot'"
        assert jobs[TASK_JOB]["steps"][0]["name"] == "Task job condition barrier"
        assert jobs["triage"]["needs"] == TASK_JOB


class TestCommandWorkflows:
    """Tests for command, mention and reaction triggers."""

    def test_command_task_job(self) -> None:
        compiled = _compile("on:\n  command:\n    name: fix\n  reaction: eyes")
        jobs = compiled.document["jobs"]

        assert list(jobs) == [TASK_JOB, REACTION_JOB, "triage"]
        task = jobs[TASK_JOB]
        assert "contains(github.event.issue.body, '/fix')" in task["if"]
        assert task["steps"][0]["id"] == "check-team-member"
        assert task["steps"][1]["if"] == "steps.check-team-member.outputs.is_team_member == 'false'"

        reaction = jobs[REACTION_JOB]
        assert reaction["needs"] == TASK_JOB
        assert reaction["steps"][0]["env"] == {"GITHUB_AW_REACTION": "eyes", "GITHUB_AW_COMMAND": "fix"}
        assert reaction["outputs"] == {"reaction_id": "${{ steps.react.outputs.reaction-id }}"}
        assert jobs["triage"]["needs"] == TASK_JOB

    def test_command_concurrency(self) -> None:
        concurrency = _compile("on:\n  command:").document["concurrency"]
        assert "cancel-in-progress" not in concurrency
        assert "github.event.issue.number || github.event.pull_request.number" in concurrency["group"]

    def test_reaction_without_task(self) -> None:
        jobs = _compile("on:\n  issues:\n    types: [opened]\n  reaction: rocket").document["jobs"]
        assert list(jobs) == [REACTION_JOB, "triage"]
        assert "needs" not in jobs[REACTION_JOB]
        assert "needs" not in jobs["triage"]

    def test_text_output(self) -> None:
        """Prompts that read the triggering text get a compute-text step."""
        body = "# Triage\n\nThe request was: ${{ needs.task.outputs.text }}\n"
        jobs = _compile("on:\n  issues:\n    types: [opened]", body=body).document["jobs"]

        task = jobs[TASK_JOB]
        assert "if" not in task
        assert task["steps"][0]["id"] == "compute-text"
        assert task["outputs"] == {"text": "${{ steps.compute-text.outputs.text }}"}

    def test_safe_output_jobs_need_command(self) -> None:
        jobs = _compile("on:\n  alias: helper\nsafe-outputs:\n  create-issue:").document["jobs"]
        assert "contains(github.event.comment.body, '@helper')" in jobs["create_issue"]["if"]

    def test_wrapped_user_if_keeps_command_guard(self) -> None:
        """A `${{ }}` user if: is unwrapped so the mention check still applies."""
        jobs = _compile("on:\n  command:\n    name: bot\nif: ${{ github.actor == 'x' }}").document["jobs"]

        condition = jobs[TASK_JOB]["if"]
        assert "${{" not in condition
        assert condition.startswith("(github.actor == 'x') && (")
        assert "contains(github.event.issue.body, '/bot')" in condition

    def test_command_with_issues_rejected(self) -> None:
        with pytest.raises(TriggerConfigError):
            _compile("on:\n  command:\n  issues:\n    types: [opened]")


class TestSafeOutputs:
    """Tests for main job steps added by safe outputs."""

    def test_collect_and_upload(self) -> None:
        compiled = _compile(
            "on: push\nsafe-outputs:\n  create-issue:\n    labels: [bot]\n  allowed-domains: [example.com]"
        )
        job = compiled.document["jobs"]["triage"]
        names = [step["name"] for step in job["steps"]]

        assert names.index("Setup agent output") < names.index("Setup MCPs")
        assert names[-2:] == ["Collect agent output", "Upload agentic output file"]
        collect = _step(job, "Collect agent output")
        assert json.loads(collect["env"]["GITHUB_AW_SAFE_OUTPUTS_CONFIG"]) == {
            "create-issue": {"title-prefix": "", "labels": ["bot"], "max": 1}
        }
        assert collect["env"]["GITHUB_AW_ALLOWED_DOMAINS"] == "example.com"
        assert job["outputs"] == {"output": "${{ steps.collect_output.outputs.output }}"}
        assert "Write" in compiled.tree

        prompt = _step(job, "Create prompt")
        assert "## Reporting Results" in prompt["run"]
        assert '"type": "create-issue"' in prompt["run"]
        assert '"type": "add-issue-comment"' not in prompt["run"]

        assert compiled.document["jobs"]["create_issue"]["needs"] == "triage"

    def test_git_patch_steps(self) -> None:
        compiled = _compile("on: push\ntools:\n  bash: [ls]\nsafe-outputs:\n  create-pull-request:")
        job = compiled.document["jobs"]["triage"]
        names = [step["name"] for step in job["steps"]]

        assert names[-2:] == ["Generate git patch", "Upload git patch"]
        assert "Bash(git commit:*)" in compiled.allowed_tools
        assert list(compiled.document["jobs"]) == ["triage", "create_pull_request"]

    def test_stop_time(self) -> None:
        compiled = _compile("on:\n  push:\n  stop-after: +25h")
        assert compiled.stop_time == "2025-03-02 13:00:00"
        step = _step(compiled.document["jobs"]["triage"], "Safety checks")
        assert 'STOP_TIME="2025-03-02 13:00:00"' in step["run"]
        assert "stop-after" not in compiled.document["on"]

    def test_invalid_stop_after_has_source(self) -> None:
        with pytest.raises(TriggerConfigError) as exc_info:
            _compile("on:\n  push:\n  stop-after: +1x")
        assert exc_info.value.source == "wf/triage.md:2"


class TestEngines:
    """Tests for engine selection and engine-specific steps."""

    def test_override_wins(self) -> None:
        assert _compile("on: push\nengine: gemini", engine_override="codex").engine.id == "codex"

    def test_config_default(self) -> None:
        compiled = _compile("on: push", config=Config(default_engine="gemini"))
        assert compiled.engine.id == "gemini"

    def test_unknown_engine(self) -> None:
        with pytest.raises(UnknownEngineError):
            _compile("on: push\nengine: gpt")

    def test_command_engine(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            compiled = _compile("on: push\nengine:\n  id: codex\n  model: o3\n  env:\n    DEBUG: '1'")
        step = _step(compiled.document["jobs"]["triage"], "Execute Codex")

        assert step["run"].startswith("mkdir -p /tmp/aw-logs\n")
        assert compiled.engine.command in step["run"]
        assert step["env"]["GITHUB_AW_PROMPT"] == "/tmp/aw-prompts/prompt.txt"
        assert step["env"]["GITHUB_AW_MCP_CONFIG"] == "/tmp/mcp-config/mcp-servers.json"
        assert step["env"]["GITHUB_AW_MODEL"] == "o3"
        assert step["env"]["DEBUG"] == "1"
        assert "experimental engine" in caplog.text

    def test_custom_engine_steps(self) -> None:
        compiled = _compile(
            "on: push\nengine:\n  id: custom\n  steps:\n    - name: Run agent\n      run: ./agent.sh"
        )
        job = compiled.document["jobs"]["triage"]
        assert job["steps"][-1] == {"name": "Run agent", "run": "./agent.sh"}
        assert compiled.allowed_tools == []

    def test_custom_engine_without_steps(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="agentflow.compiler.core"):
            compiled = _compile("on: push\nengine: custom")
        assert compiled.document["jobs"]["triage"]["steps"][-1]["name"] == "Create prompt"
        assert "has no steps configured" in caplog.text

    def test_builtins_on_engine_without_allow_list(self, caplog: pytest.LogCaptureFixture) -> None:
        """Builtins stay in the tree; a warning says they are not restricted."""
        with caplog.at_level(logging.WARNING, logger="agentflow.compiler.core"):
            compiled = _compile("on: push\nengine: ai-inference\ntools:\n  bash: [ls]")
        assert "Bash" in compiled.tree
        assert compiled.allowed_tools == []
        assert "not restricted" in caplog.text
        step = _step(compiled.document["jobs"]["triage"], "Execute AI Inference")
        assert "allowed_tools" not in step["with"]

    def test_http_server_unsupported(self) -> None:
        with pytest.raises(UnsupportedFeatureError):
            _compile("on: push\nengine: gemini\ntools:\n  remote:\n    mcp:\n      type: http\n      url: https://x")

    def test_max_turns_unsupported(self) -> None:
        with pytest.raises(UnsupportedFeatureError):
            _compile("on: push\nengine:\n  id: codex\n  max-turns: 3")


class TestIncludes:
    """Tests for include files."""

    @pytest.fixture
    def main(self, tmp_path: Path) -> WorkflowSource:
        return _source(
            "on: push\ntools:\n  github:\n    allowed: [get_issue]",
            body="# Main\n\nBefore.\n@include shared/tools.md\n@include? shared/missing.md\nAfter.\n",
            path=str(tmp_path / "main.md"),
        )

    def _include(self, tmp_path: Path, name: str, frontmatter: str | None, body: str) -> WorkflowSource:
        return _source(frontmatter, body=body, path=str(tmp_path / "shared" / name))

    def test_prompt_expanded_and_trees_merged(self, main: WorkflowSource, tmp_path: Path) -> None:
        tools = self._include(
            tmp_path, "tools.md", "tools:\n  github:\n    allowed: [list_issues]", "Use the tools.\n@include nested.md\n"
        )
        nested = self._include(tmp_path, "nested.md", None, "Nested text.\n")
        compiled = compile_workflow(
            CompilerContext(source=main, includes=[tools, nested], compiled_at=COMPILED_AT)
        )

        prompt = _step(compiled.document["jobs"]["main"], "Create prompt")["run"]
        assert "Before.\nUse the tools.\nNested text.\nAfter." in prompt
        assert "@include" not in prompt
        assert "mcp__github__list_issues" in compiled.allowed_tools

    def test_include_engine_used(self, main: WorkflowSource, tmp_path: Path) -> None:
        tools = self._include(tmp_path, "tools.md", "engine: codex", "x\n")
        compiled = compile_workflow(CompilerContext(source=main, includes=[tools]))
        assert compiled.engine.id == "codex"

    def test_include_engine_conflict(self, tmp_path: Path) -> None:
        main = _source("on: push\nengine: claude", path=str(tmp_path / "main.md"))
        other = self._include(tmp_path, "tools.md", "engine: codex", "x\n")
        with pytest.raises(EngineConflictError):
            compile_workflow(CompilerContext(source=main, includes=[other]))

    def test_include_merge_conflict(self, tmp_path: Path) -> None:
        main = _source(
            "on: push\ntools:\n  srv:\n    mcp:\n      type: stdio\n      command: a",
            path=str(tmp_path / "main.md"),
        )
        other = self._include(tmp_path, "tools.md", "tools:\n  srv:\n    mcp:\n      type: stdio\n      command: b", "x\n")
        with pytest.raises(MergeConflictError) as exc_info:
            compile_workflow(CompilerContext(source=main, includes=[other]))
        assert exc_info.value.field == "command"

    def test_include_unknown_key(self, main: WorkflowSource, tmp_path: Path) -> None:
        bad = self._include(tmp_path, "tools.md", "on: push", "x\n")
        with pytest.raises(CompilerError, match="Unknown frontmatter key 'on' in included file"):
            compile_workflow(CompilerContext(source=main, includes=[bad]))


class TestCustomJobs:
    """Tests for user-defined jobs."""

    def test_appended_after_generated_jobs(self) -> None:
        compiled = _compile(
            """
on: push
safe-outputs:
  create-issue:
jobs:
  notify:
    depends: [triage, create_issue]
    if: always()
    steps:
      - run: echo notify
"""
        )
        jobs = compiled.document["jobs"]
        assert list(jobs) == ["triage", "create_issue", "notify"]
        assert jobs["notify"]["needs"] == ["triage", "create_issue"]
        assert jobs["notify"]["if"] == "always()"

    def test_needs_alias(self) -> None:
        jobs = _compile("on: push\njobs:\n  after:\n    needs: triage").document["jobs"]
        assert jobs["after"]["needs"] == "triage"

    def test_missing_dependency(self) -> None:
        with pytest.raises(MissingDependencyError) as exc_info:
            _compile("on: push\njobs:\n  after:\n    needs: ghost")
        assert exc_info.value.job == "after"

    def test_cycle(self) -> None:
        with pytest.raises(CyclicDependencyError):
            _compile("on: push\njobs:\n  a:\n    needs: b\n  b:\n    needs: a")

    def test_bad_shape(self) -> None:
        with pytest.raises(InvalidCapabilityShapeError) as exc_info:
            _compile("on: push\njobs:\n  a:\n    steps: echo")
        assert exc_info.value.field == "steps"


class TestValidation:
    """Tests for frontmatter validation."""

    def test_no_frontmatter(self) -> None:
        with pytest.raises(CompilerError, match="No frontmatter found"):
            _compile(None)

    def test_stop_time_key(self) -> None:
        with pytest.raises(CompilerError, match="stop-after"):
            _compile("on:\n  push:\n  stop-time: +1d")

    def test_unknown_key(self) -> None:
        with pytest.raises(CompilerError, match="Unknown frontmatter key 'tool'") as exc_info:
            _compile("on: push\ntool:\n  bash:")
        assert exc_info.value.source == "wf/triage.md:3"

    def test_empty_markdown(self) -> None:
        with pytest.raises(CompilerError, match="no markdown content"):
            _compile("on: push", body="\n  \n")

    @pytest.mark.parametrize(
        "frontmatter,key",
        [
            ("on: push\ntimeout_minutes: soon", "timeout_minutes"),
            ("on: push\ntimeout_minutes: true", "timeout_minutes"),
            ("on: push\nsteps: echo", "steps"),
            ("on: push\nsteps: [echo]", "steps"),
            ("on: push\nif: [a]", "if"),
            ("on: push\nenv: [a]", "env"),
        ],
    )
    def test_wrong_shapes(self, frontmatter: str, key: str) -> None:
        with pytest.raises(InvalidCapabilityShapeError) as exc_info:
            _compile(frontmatter)
        assert exc_info.value.name == key

    def test_invalid_capability(self) -> None:
        with pytest.raises(InvalidCapabilityShapeError) as exc_info:
            _compile("on: push\ntools:\n  fetch:\n    mcp:\n      type: stdio\n      container: 5")
        assert exc_info.value.field == "container"
        assert exc_info.value.source == "wf/triage.md:3"


class TestCancellationAndSchema:
    """Tests for cancellation and schema validation hooks."""

    def test_cancelled_before_start(self) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CompilationCancelledError) as exc_info:
            _compile("on: push", cancel_token=token)
        assert exc_info.value.stage == "validate"
        assert token.cancelled

    def test_schema_validation_called(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls = []

        def fake_validate(document, url, timeout, source=None, client=None):
            calls.append((document, url, timeout, source))

        monkeypatch.setattr("agentflow.compiler.core.validate_workflow_document", fake_validate)
        config = Config(validate_schema=True, schema_url="https://example.com/s.json", schema_timeout=3.0)
        compiled = _compile("on: push", config=config)

        assert len(calls) == 1
        assert calls[0][0] is compiled.document
        assert calls[0][1:] == ("https://example.com/s.json", 3.0, "wf/triage.md")

    def test_schema_validation_off_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(*args, **kwargs):
            raise AssertionError("schema validation should not run")

        monkeypatch.setattr("agentflow.compiler.core.validate_workflow_document", fail)
        _compile("on: push")


class TestMainJobName:
    """Tests for main job naming around the compiler's own jobs."""

    @pytest.mark.parametrize(
        "title,expected",
        [
            ("Issue Triage", "issue-triage"),
            ("Task", "task-agent"),
            ("create_issue", "create_issue-agent"),
            ("missing_tool", "missing_tool-agent"),
            ("add_reaction", "add_reaction-agent"),
        ],
    )
    def test_reserved_names_suffixed(self, title: str, expected: str) -> None:
        assert main_job_name_for(title) == expected

    def test_task_heading_with_command(self) -> None:
        """A workflow titled "Task" compiles next to the task job."""
        compiled = _compile("on:\n  command:\n    name: go", body="# Task\n\nDo it.\n")

        assert compiled.main_job == "task-agent"
        jobs = compiled.document["jobs"]
        assert list(jobs) == [TASK_JOB, "task-agent"]
        assert jobs["task-agent"]["needs"] == TASK_JOB


class TestCacheAndStrict:
    """Tests for the cache and strict sections."""

    def test_single_cache(self) -> None:
        compiled = _compile(
            "on: push\ncache:\n  key: npm-cache\n  path: [node_modules, .npm]\n  restore-keys: npm-"
        )
        steps = compiled.document["jobs"]["triage"]["steps"]

        assert steps[0]["name"] == "Checkout repository"
        assert steps[1] == {
            "name": "Cache (npm-cache)",
            "uses": "actions/cache@v4",
            "with": {"key": "npm-cache", "path": "node_modules\n.npm", "restore-keys": "npm-"},
        }

    def test_cache_list(self) -> None:
        compiled = _compile(
            "on: push\ncache:\n  - key: a\n    path: x\n    lookup-only: true\n  - key: b\n    path: y"
        )
        steps = compiled.document["jobs"]["triage"]["steps"]

        assert [step["name"] for step in steps[1:3]] == ["Cache (a)", "Cache (b)"]
        assert steps[1]["with"] == {"key": "a", "path": "x", "lookup-only": True}

    def test_cache_follows_user_steps(self) -> None:
        compiled = _compile("on: push\nsteps:\n  - run: make\ncache:\n  key: k\n  path: p")
        steps = compiled.document["jobs"]["triage"]["steps"]
        assert steps[0] == {"run": "make"}
        assert steps[1]["name"] == "Cache (k)"

    @pytest.mark.parametrize(
        "cache,field",
        [
            ("[1]", "cache"),
            ("\n  key: k", "path"),
            ("\n  path: p", "key"),
            ("\n  key: k\n  path: p\n  paths: q", "paths"),
        ],
    )
    def test_invalid_cache(self, cache: str, field: str) -> None:
        with pytest.raises(InvalidCapabilityShapeError) as exc_info:
            _compile(f"on: push\ncache: {cache}")
        assert exc_info.value.name == "cache"
        assert exc_info.value.field == field
        assert exc_info.value.source == "wf/triage.md:3"

    def test_strict_warns_on_write_permissions(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            _compile("on: push\nstrict: true\npermissions:\n  contents: read\n  issues: write")
        assert "Strict mode" in caplog.text
        assert "write" in caplog.text

    def test_strict_quiet_for_read_permissions(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            _compile("on: push\nstrict: true\npermissions: read-all")
        assert "Strict mode" not in caplog.text

    def test_write_permissions_without_strict(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            _compile("on: push\npermissions: write-all")
        assert "Strict mode" not in caplog.text

    def test_strict_must_be_boolean(self) -> None:
        with pytest.raises(InvalidCapabilityShapeError) as exc_info:
            _compile("on: push\nstrict: yes please")
        assert exc_info.value.field == "strict"
