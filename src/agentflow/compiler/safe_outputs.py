"""Safe-output configuration and the jobs that apply agent output.

The agent itself runs with read-only permissions. Write operations it asks
for (opening an issue, commenting, pushing a branch...) are written to an
output file, collected by the main job, and applied by separate jobs that
hold the narrow write permissions each operation needs.

Frontmatter keys under `safe-outputs:`:

- create-issue: title-prefix, labels, max
- add-issue-comment: target, max
- create-pull-request: title-prefix, labels, draft
- add-issue-label: allowed, max
- update-issue: target, max, status / title / body (presence enables)
- push-to-branch: branch, target
- missing-tool: max
- allowed-domains: domains kept unredacted in collected output

Public API:
    SafeOutputsConfig: Parsed `safe-outputs:` section
    parse_safe_outputs: Build a SafeOutputsConfig from frontmatter
    build_safe_output_jobs: Jobs applying the configured outputs
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from agentflow.compiler.conditions import (
    ConditionExpr,
    FunctionCall,
    Or,
    PropertyRef,
    build_mention_condition,
    combine_guard,
)
from agentflow.compiler.jobs import Job
from agentflow.core.exceptions import InvalidCapabilityShapeError
from agentflow.core.types import describe_kind

logger = logging.getLogger(__name__)

GITHUB_SCRIPT_ACTION = "actions/github-script@v7"
PATCH_ARTIFACT = "aw.patch"
SAFE_OUTPUT_JOB_NAMES: tuple[str, ...] = (
    "create_issue",
    "create_issue_comment",
    "create_pull_request",
    "add_labels",
    "update_issue",
    "push_to_branch",
    "missing_tool",
)

# Targets that let a job run outside the triggering issue or PR
ANY_TARGET = "*"

_ISSUE_NUMBER = PropertyRef("github.event.issue.number")
_PR_NUMBER = PropertyRef("github.event.pull_request.number")


def _target_to_str(v: Any) -> Any:
    # Explicit issue numbers arrive from YAML as ints
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


class CreateIssueConfig(BaseModel):
    """`create-issue` settings.

    Attributes:
        title_prefix: Prefix added to every issue title.
        labels: Labels attached to created issues.
        max: Maximum number of issues per run.

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    title_prefix: str = Field(default="", alias="title-prefix")
    labels: list[str] = Field(default_factory=list)
    max: int = Field(default=1, ge=1)


class AddIssueCommentConfig(BaseModel):
    """`add-issue-comment` settings.

    Attributes:
        target: "triggering" (default), "*" for any issue, or an explicit number.
        max: Maximum number of comments per run.

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    target: str | None = None
    max: int = Field(default=1, ge=1)

    @field_validator("target", mode="before")
    @classmethod
    def validate_target(cls, v: Any) -> Any:
        return _target_to_str(v)


class CreatePullRequestConfig(BaseModel):
    """`create-pull-request` settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    title_prefix: str = Field(default="", alias="title-prefix")
    labels: list[str] = Field(default_factory=list)
    draft: bool = True
    max: int = Field(default=1, ge=1, le=1)


class AddIssueLabelConfig(BaseModel):
    """`add-issue-label` settings.

    Attributes:
        allowed: Labels the agent may add. Must not be empty.
        max: Maximum number of labels added per run.

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    allowed: list[str] = Field(min_length=1)
    max: int = Field(default=3, ge=1)


class UpdateIssueConfig(BaseModel):
    """`update-issue` settings.

    `status`, `title` and `body` are enabled by being present, whatever
    their value.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    target: str | None = None
    max: int = Field(default=1, ge=1)
    status: bool = False
    title: bool = False
    body: bool = False

    @field_validator("target", mode="before")
    @classmethod
    def validate_target(cls, v: Any) -> Any:
        return _target_to_str(v)

    @model_validator(mode="before")
    @classmethod
    def _presence_flags(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for key in ("status", "title", "body"):
                if key in data:
                    data[key] = True
        return data


class PushToBranchConfig(BaseModel):
    """`push-to-branch` settings.

    Attributes:
        branch: Branch to push to ("triggering" pushes to the PR head branch).
        target: "*" to run outside pull request context.

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    branch: str = Field(default="triggering", min_length=1)
    target: str | None = None

    @field_validator("target", mode="before")
    @classmethod
    def validate_target(cls, v: Any) -> Any:
        return _target_to_str(v)


class MissingToolConfig(BaseModel):
    """`missing-tool` settings. max 0 means unlimited."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    max: int = Field(default=0, ge=0)


class SafeOutputsConfig(BaseModel):
    """Parsed `safe-outputs:` section. Absent operations are None."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    create_issue: CreateIssueConfig | None = Field(default=None, alias="create-issue")
    add_issue_comment: AddIssueCommentConfig | None = Field(default=None, alias="add-issue-comment")
    create_pull_request: CreatePullRequestConfig | None = Field(
        default=None, alias="create-pull-request"
    )
    add_issue_label: AddIssueLabelConfig | None = Field(default=None, alias="add-issue-label")
    update_issue: UpdateIssueConfig | None = Field(default=None, alias="update-issue")
    push_to_branch: PushToBranchConfig | None = Field(default=None, alias="push-to-branch")
    missing_tool: MissingToolConfig | None = Field(default=None, alias="missing-tool")
    allowed_domains: list[str] = Field(default_factory=list, alias="allowed-domains")

    def needs_git_commands(self) -> bool:
        """Whether the agent has to commit changes for a later job."""
        return self.create_pull_request is not None or self.push_to_branch is not None

    def has_any(self) -> bool:
        return any(
            getattr(self, name) is not None
            for name in (
                "create_issue",
                "add_issue_comment",
                "create_pull_request",
                "add_issue_label",
                "update_issue",
                "push_to_branch",
                "missing_tool",
            )
        )


def parse_safe_outputs(value: Any, source: str | None = None) -> SafeOutputsConfig | None:
    """Parse a `safe-outputs:` value.

    A key given without a value (`create-issue:`) enables the operation
    with default settings.

    Returns:
        SafeOutputsConfig, or None when the section is absent.

    Raises:
        InvalidCapabilityShapeError: If the section or one of its entries
            has the wrong shape.

    """
    if value is None:
        return None
    if not isinstance(value, dict):
        raise InvalidCapabilityShapeError(
            "safe-outputs", "safe-outputs", "object", describe_kind(value), source=source
        )
    data: dict[str, Any] = {}
    for key, item in value.items():
        if item is None:
            item = [] if key == "allowed-domains" else {}
        data[key] = item
    try:
        config = SafeOutputsConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"]) or "safe-outputs"
        actual = None if first["type"] == "missing" else describe_kind(first.get("input"))
        raise InvalidCapabilityShapeError(
            "safe-outputs", field_name, first["msg"], actual, source=source
        ) from e
    logger.debug("Parsed safe-outputs: %s", ", ".join(data))
    return config


# =============================================================================
# Job builders
# =============================================================================


def _agent_output(main_job: str) -> str:
    return f"${{{{ needs.{main_job}.outputs.output }}}}"


def _script_step(name: str, step_id: str, env: dict[str, str]) -> dict[str, Any]:
    return {"name": name, "id": step_id, "uses": GITHUB_SCRIPT_ACTION, "env": env}


def _step_output(step_id: str, name: str) -> str:
    return f"${{{{ steps.{step_id}.outputs.{name} }}}}"


def _create_issue_job(config: CreateIssueConfig, main_job: str, command_guard: ConditionExpr | None) -> Job:
    env = {"GITHUB_AW_AGENT_OUTPUT": _agent_output(main_job)}
    if config.title_prefix:
        env["GITHUB_AW_ISSUE_TITLE_PREFIX"] = config.title_prefix
    if config.labels:
        env["GITHUB_AW_ISSUE_LABELS"] = ",".join(config.labels)
    return Job(
        name="create_issue",
        guard=command_guard,
        permissions={"contents": "read", "issues": "write"},
        steps=[_script_step("Create Output Issue", "create_issue", env)],
        outputs={
            "issue_number": _step_output("create_issue", "issue_number"),
            "issue_url": _step_output("create_issue", "issue_url"),
        },
        depends_on=(main_job,),
        timeout_minutes=10,
    )


def _create_comment_job(
    config: AddIssueCommentConfig, main_job: str, command_guard: ConditionExpr | None
) -> Job:
    if config.target == ANY_TARGET:
        guard = command_guard
    else:
        guard = combine_guard(command_guard, Or(_ISSUE_NUMBER, _PR_NUMBER))
    env = {"GITHUB_AW_AGENT_OUTPUT": _agent_output(main_job)}
    if config.target:
        env["GITHUB_AW_COMMENT_TARGET"] = config.target
    return Job(
        name="create_issue_comment",
        guard=guard,
        permissions={"contents": "read", "issues": "write", "pull-requests": "write"},
        steps=[_script_step("Add Issue Comment", "create_comment", env)],
        outputs={
            "comment_id": _step_output("create_comment", "comment_id"),
            "comment_url": _step_output("create_comment", "comment_url"),
        },
        depends_on=(main_job,),
        timeout_minutes=10,
    )


def _create_pull_request_job(
    config: CreatePullRequestConfig,
    main_job: str,
    command_guard: ConditionExpr | None,
    workflow_id: str,
) -> Job:
    env = {
        "GITHUB_AW_AGENT_OUTPUT": _agent_output(main_job),
        "GITHUB_AW_WORKFLOW_ID": workflow_id,
        "GITHUB_AW_BASE_BRANCH": "${{ github.ref_name }}",
        "GITHUB_AW_PR_DRAFT": "true" if config.draft else "false",
    }
    if config.title_prefix:
        env["GITHUB_AW_PR_TITLE_PREFIX"] = config.title_prefix
    if config.labels:
        env["GITHUB_AW_PR_LABELS"] = ",".join(config.labels)
    steps = [
        {
            "name": "Download patch artifact",
            "uses": "actions/download-artifact@v4",
            "with": {"name": PATCH_ARTIFACT, "path": "/tmp/"},
        },
        {"name": "Checkout repository", "uses": "actions/checkout@v5", "with": {"fetch-depth": 0}},
        _script_step("Create Pull Request", "create_pull_request", env),
    ]
    return Job(
        name="create_pull_request",
        guard=command_guard,
        permissions={"contents": "write", "issues": "write", "pull-requests": "write"},
        steps=steps,
        outputs={
            "pull_request_number": _step_output("create_pull_request", "pull_request_number"),
            "pull_request_url": _step_output("create_pull_request", "pull_request_url"),
            "branch_name": _step_output("create_pull_request", "branch_name"),
        },
        depends_on=(main_job,),
        timeout_minutes=10,
    )


def _add_labels_job(config: AddIssueLabelConfig, main_job: str, command_guard: ConditionExpr | None) -> Job:
    env = {
        "GITHUB_AW_AGENT_OUTPUT": _agent_output(main_job),
        "GITHUB_AW_LABELS_ALLOWED": ",".join(config.allowed),
        "GITHUB_AW_LABELS_MAX_COUNT": str(config.max),
    }
    return Job(
        name="add_labels",
        guard=combine_guard(command_guard, Or(_ISSUE_NUMBER, _PR_NUMBER)),
        permissions={"contents": "read", "issues": "write", "pull-requests": "write"},
        steps=[_script_step("Add Labels", "add_labels", env)],
        outputs={"labels_added": _step_output("add_labels", "labels_added")},
        depends_on=(main_job,),
        timeout_minutes=10,
    )


def _update_issue_job(config: UpdateIssueConfig, main_job: str, command_guard: ConditionExpr | None) -> Job:
    # An explicit target (number or "*") works outside issue context
    base = None if config.target else _ISSUE_NUMBER
    env = {
        "GITHUB_AW_AGENT_OUTPUT": _agent_output(main_job),
        "GITHUB_AW_UPDATE_STATUS": "true" if config.status else "false",
        "GITHUB_AW_UPDATE_TITLE": "true" if config.title else "false",
        "GITHUB_AW_UPDATE_BODY": "true" if config.body else "false",
    }
    if config.target:
        env["GITHUB_AW_UPDATE_TARGET"] = config.target
    return Job(
        name="update_issue",
        guard=combine_guard(command_guard, base),
        permissions={"contents": "read", "issues": "write"},
        steps=[_script_step("Update Issue", "update_issue", env)],
        outputs={
            "issue_number": _step_output("update_issue", "issue_number"),
            "issue_url": _step_output("update_issue", "issue_url"),
        },
        depends_on=(main_job,),
        timeout_minutes=10,
    )


def _push_to_branch_job(config: PushToBranchConfig, main_job: str) -> Job:
    guard: ConditionExpr = FunctionCall("always") if config.target == ANY_TARGET else _PR_NUMBER
    env = {
        "GITHUB_AW_AGENT_OUTPUT": _agent_output(main_job),
        "GITHUB_AW_PUSH_BRANCH": config.branch,
    }
    if config.target:
        env["GITHUB_AW_PUSH_TARGET"] = config.target
    steps = [
        {
            "name": "Download patch artifact",
            "uses": "actions/download-artifact@v4",
            "with": {"name": PATCH_ARTIFACT, "path": "/tmp/"},
        },
        {"name": "Checkout repository", "uses": "actions/checkout@v5", "with": {"fetch-depth": 0}},
        _script_step("Push to Branch", "push_to_branch", env),
    ]
    return Job(
        name="push_to_branch",
        guard=guard,
        permissions={"contents": "write", "pull-requests": "read"},
        steps=steps,
        outputs={
            "branch_name": _step_output("push_to_branch", "branch_name"),
            "commit_sha": _step_output("push_to_branch", "commit_sha"),
            "push_url": _step_output("push_to_branch", "push_url"),
        },
        depends_on=(main_job,),
        timeout_minutes=10,
    )


def _missing_tool_job(config: MissingToolConfig, main_job: str) -> Job:
    env = {"GITHUB_AW_AGENT_OUTPUT": _agent_output(main_job)}
    if config.max > 0:
        env["GITHUB_AW_MISSING_TOOL_MAX"] = str(config.max)
    return Job(
        name="missing_tool",
        # Runs even when the agent failed, to record what it was missing
        guard=FunctionCall("always"),
        permissions={"contents": "read"},
        steps=[_script_step("Record Missing Tool", "missing_tool", env)],
        outputs={
            "tools_reported": _step_output("missing_tool", "tools_reported"),
            "total_count": _step_output("missing_tool", "total_count"),
        },
        depends_on=(main_job,),
        timeout_minutes=5,
    )


def build_safe_output_jobs(
    config: SafeOutputsConfig,
    main_job: str,
    workflow_id: str,
    command: str | None = None,
    mention_prefix: str = "/",
) -> list[Job]:
    """Build the jobs that apply the agent's collected output.

    Every job depends on the main job and reads its `output` output. For
    command workflows the jobs that act on the triggering item also require
    the command to be present, so other events never cause writes.

    Args:
        config: Parsed safe-outputs section.
        main_job: Name of the job running the agent.
        workflow_id: Workflow identifier (file stem), used in branch names.
        command: Command or mention name, if the workflow has one.
        mention_prefix: "/" for commands, "@" for aliases.

    Returns:
        Jobs in a fixed order: create_issue, create_issue_comment,
        create_pull_request, add_labels, update_issue, push_to_branch,
        missing_tool (absent operations skipped).

    """
    command_guard = build_mention_condition(command, mention_prefix) if command else None
    jobs: list[Job] = []
    if config.create_issue is not None:
        jobs.append(_create_issue_job(config.create_issue, main_job, command_guard))
    if config.add_issue_comment is not None:
        jobs.append(_create_comment_job(config.add_issue_comment, main_job, command_guard))
    if config.create_pull_request is not None:
        jobs.append(
            _create_pull_request_job(config.create_pull_request, main_job, command_guard, workflow_id)
        )
    if config.add_issue_label is not None:
        jobs.append(_add_labels_job(config.add_issue_label, main_job, command_guard))
    if config.update_issue is not None:
        jobs.append(_update_issue_job(config.update_issue, main_job, command_guard))
    if config.push_to_branch is not None:
        jobs.append(_push_to_branch_job(config.push_to_branch, main_job))
    if config.missing_tool is not None:
        jobs.append(_missing_tool_job(config.missing_tool, main_job))
    logger.debug("Built %d safe-output jobs: %s", len(jobs), ", ".join(j.name for j in jobs))
    return jobs
