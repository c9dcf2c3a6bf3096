"""Trigger (`on:`) section handling.

The `on:` section mixes runner events with compiler-only settings. This
module strips the compiler-only keys, applies the default event sets, and
turns the settings into guard expressions:

- command / alias: slash command ("/name") or mention ("@name") trigger
- reaction: emoji reaction added to the triggering item
- stop-after: deadline after which the workflow stops running
- pull_request.draft / pull_request.forks: pull request filters
- label.name: issue label filter

Public API:
    TriggerConfig: Parsed trigger settings
    parse_triggers: Parse an `on:` value
    build_trigger_guard: Compose the guard for the workflow's entry job
    strip_expression_wrapper: Unwrap a `${{ ... }}` condition
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from agentflow.compiler.conditions import (
    ConditionExpr,
    Raw,
    build_draft_filter,
    build_event_aware_mention_condition,
    build_fork_filter,
    build_label_filter,
    combine_guard,
)
from agentflow.core.exceptions import TriggerConfigError
from agentflow.core.types import describe_kind

logger = logging.getLogger(__name__)

VALID_REACTIONS: tuple[str, ...] = ("+1", "-1", "laugh", "confused", "heart", "hooray", "rocket", "eyes")

# Events a command/mention workflow listens on; declaring them explicitly
# alongside a command is rejected
COMMAND_EVENTS: dict[str, Any] = {
    "issues": {"types": ["opened", "edited", "reopened"]},
    "issue_comment": {"types": ["created", "edited"]},
    "pull_request": {"types": ["opened", "edited", "reopened"]},
    "pull_request_review_comment": {"types": ["created", "edited"]},
}

DEFAULT_EVENTS: dict[str, Any] = {
    "schedule": [{"cron": "0/10 * * * *"}],
    "issues": {"types": ["opened", "edited", "closed"]},
    "issue_comment": {"types": ["created", "edited"]},
    "pull_request": {"types": ["opened", "edited", "closed"]},
    "push": {"branches": ["main"]},
    "workflow_dispatch": None,
}

COMPILER_KEYS: tuple[str, ...] = ("command", "alias", "reaction", "stop-after")

_EXPRESSION_WRAPPER = re.compile(r"^\$\{\{(.*)\}\}$", re.DOTALL)


@dataclass(frozen=True)
class TriggerConfig:
    """Parsed `on:` section.

    Attributes:
        events: Runner-facing `on:` value with compiler-only keys removed
            and defaults applied.
        command: Command or mention name, or None.
        mention_prefix: "/" for commands, "@" for aliases.
        has_other_events: Whether events besides the command events were declared.
        reaction: Reaction to add to the triggering item, or None.
        stop_after: Raw stop-after value, or None.
        draft: Pull request draft filter, or None.
        forks: Allowed fork patterns, or None for no fork filtering.
        labels: Label names filter.

    """

    events: Any
    command: str | None = None
    mention_prefix: str = "/"
    has_other_events: bool = False
    reaction: str | None = None
    stop_after: str | None = None
    draft: bool | None = None
    forks: tuple[str, ...] | None = None
    labels: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_command(self) -> bool:
        return self.command is not None

    @property
    def event_names(self) -> list[str]:
        """Runner event names in declaration order."""
        if isinstance(self.events, str):
            return [self.events]
        if isinstance(self.events, list):
            return [e for e in self.events if isinstance(e, str)]
        if isinstance(self.events, dict):
            return list(self.events)
        return []


def _command_name(key: str, value: Any, default_name: str, source: str | None) -> str:
    if value is None:
        return default_name
    if isinstance(value, str):
        return value or default_name
    if isinstance(value, dict):
        name = value.get("name")
        if name is None:
            return default_name
        if isinstance(name, str):
            return name
        raise TriggerConfigError(f"{key}.name", name, f"must be a string, got {describe_kind(name)}", source)
    raise TriggerConfigError(key, value, f"must be a string or object, got {describe_kind(value)}", source)


def _string_tuple(key: str, value: Any, source: str | None) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise TriggerConfigError(key, value, "must be a string or a list of strings", source)


def parse_triggers(on: Any, default_command: str, source: str | None = None) -> TriggerConfig:
    """Parse an `on:` value.

    Args:
        on: The `on:` value (string, list, mapping or None).
        default_command: Command name used when `command:` gives none
            (usually the workflow file stem).
        source: Source location for error messages.

    Returns:
        TriggerConfig with defaults applied.

    Raises:
        TriggerConfigError: On invalid compiler-only settings.

    """
    if on is None:
        return TriggerConfig(events=copy.deepcopy(DEFAULT_EVENTS))
    if isinstance(on, (str, list)):
        return TriggerConfig(events=copy.deepcopy(on))
    if not isinstance(on, dict):
        raise TriggerConfigError("on", on, f"must be a string, list or object, got {describe_kind(on)}", source)

    events: dict[str, Any] = {k: copy.deepcopy(v) for k, v in on.items() if k not in COMPILER_KEYS}

    if "command" in on and "alias" in on:
        raise TriggerConfigError("command", on["command"], "cannot be combined with 'alias'", source)

    command: str | None = None
    prefix = "/"
    if "command" in on:
        command = _command_name("command", on["command"], default_command, source)
    elif "alias" in on:
        command = _command_name("alias", on["alias"], default_command, source)
        prefix = "@"

    reaction = on.get("reaction")
    if reaction is not None and reaction not in VALID_REACTIONS:
        raise TriggerConfigError(
            "reaction", reaction, f"must be one of: {', '.join(VALID_REACTIONS)}", source
        )

    stop_after = on.get("stop-after")
    if stop_after is not None and not isinstance(stop_after, str):
        raise TriggerConfigError("stop-after", stop_after, "must be a string", source)

    draft: bool | None = None
    forks: tuple[str, ...] | None = None
    pull_request = events.get("pull_request")
    if isinstance(pull_request, dict):
        if "draft" in pull_request:
            draft = pull_request.pop("draft")
            if not isinstance(draft, bool):
                raise TriggerConfigError("pull_request.draft", draft, "must be a boolean", source)
        if "forks" in pull_request:
            forks = _string_tuple("pull_request.forks", pull_request.pop("forks"), source)
        if not pull_request:
            events["pull_request"] = None

    labels: tuple[str, ...] = ()
    label = events.get("label")
    if isinstance(label, dict) and "name" in label:
        labels = _string_tuple("label.name", label.pop("name"), source)
        if not label:
            events["label"] = None

    has_other_events = False
    if command is not None:
        for event in COMMAND_EVENTS:
            if event in events:
                raise TriggerConfigError(
                    "command", command, f"cannot be used with '{event}' in the same workflow", source
                )
        has_other_events = bool(events)
        events = {**copy.deepcopy(COMMAND_EVENTS), **events}
    elif not events:
        # Only compiler keys were given
        events = copy.deepcopy(DEFAULT_EVENTS)

    logger.debug(
        "Parsed triggers: events=%s command=%s reaction=%s", list(events), command, reaction
    )
    return TriggerConfig(
        events=events,
        command=command,
        mention_prefix=prefix,
        has_other_events=has_other_events,
        reaction=reaction,
        stop_after=stop_after,
        draft=draft,
        forks=forks,
        labels=labels,
    )


def strip_expression_wrapper(condition: str) -> str:
    """Remove one surrounding `${{ ... }}` from a condition.

    Conditions holding more than one expression block are returned
    stripped of whitespace only.

    Examples:
        >>> strip_expression_wrapper("${{ github.actor == 'x' }}")
        "github.actor == 'x'"

    """
    text = condition.strip()
    match = _EXPRESSION_WRAPPER.match(text)
    if match is None:
        return text
    inner = match.group(1)
    if "${{" in inner or "}}" in inner:
        return text
    return inner.strip()


def build_trigger_guard(trigger: TriggerConfig, user_condition: str | None = None) -> ConditionExpr | None:
    """Compose the guard for the workflow's entry job.

    Order: user `if:`, event-aware mention check, draft filter, fork
    filter, label filter. Each is attached with combine_guard(). A user
    condition written as `${{ ... }}` is unwrapped first.

    Args:
        trigger: Parsed triggers.
        user_condition: Workflow-level `if:` expression, if any.

    Returns:
        The combined guard, or None when nothing applies.

    """
    guard: ConditionExpr | None = None
    condition = strip_expression_wrapper(user_condition) if user_condition else ""
    if condition:
        guard = Raw(condition)
    if trigger.command is not None:
        guard = combine_guard(
            guard,
            build_event_aware_mention_condition(
                trigger.command, trigger.has_other_events, prefix=trigger.mention_prefix
            ),
        )
    if trigger.draft is not None:
        guard = combine_guard(guard, build_draft_filter(trigger.draft))
    if trigger.forks is not None:
        guard = combine_guard(guard, build_fork_filter(trigger.forks))
    if trigger.labels:
        guard = combine_guard(guard, build_label_filter(trigger.labels))
    return guard
