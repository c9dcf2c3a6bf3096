"""Workflow-level concurrency group derivation."""

from __future__ import annotations

from collections.abc import Collection
from typing import Any

GROUP_PREFIX: tuple[str, ...] = ("gh-aw", "${{ github.workflow }}")


def _is_pull_request(events: Collection[str]) -> bool:
    return any("pull_request" in e for e in events)


def _is_issue(events: Collection[str]) -> bool:
    return any(e in ("issues", "issue_comment") for e in events)


def _is_discussion(events: Collection[str]) -> bool:
    return any("discussion" in e for e in events)


def _event_key(events: Collection[str], is_command: bool) -> str | None:
    pr, issue, discussion = _is_pull_request(events), _is_issue(events), _is_discussion(events)
    if is_command or (pr and issue):
        return "${{ github.event.issue.number || github.event.pull_request.number }}"
    if pr and discussion:
        return "${{ github.event.pull_request.number || github.event.discussion.number }}"
    if issue and discussion:
        return "${{ github.event.issue.number || github.event.discussion.number }}"
    if pr:
        return "${{ github.event.pull_request.number || github.ref }}"
    if issue:
        return "${{ github.event.issue.number }}"
    if discussion:
        return "${{ github.event.discussion.number }}"
    return None


def build_concurrency(
    events: Collection[str],
    is_command: bool,
    override: Any = None,
) -> dict[str, Any] | Any:
    """Build the workflow `concurrency:` value.

    Runs for the same issue or pull request share a group. Pull request
    workflows cancel superseded runs, except command-triggered ones where
    every invocation should complete.

    Args:
        events: Trigger event names.
        is_command: Whether the workflow is triggered by a command or mention.
        override: User-declared concurrency, returned unchanged if set.

    Returns:
        Mapping with `group` and, when enabled, `cancel-in-progress`.

    """
    if override is not None:
        return override
    keys = list(GROUP_PREFIX)
    key = _event_key(events, is_command)
    if key is not None:
        keys.append(key)
    result: dict[str, Any] = {"group": "-".join(keys)}
    if not is_command and _is_pull_request(events):
        result["cancel-in-progress"] = True
    return result
