"""Boolean condition expressions for job guards.

A small immutable AST whose render() output is the runner's expression
syntax. Every composite node parenthesizes each operand, so any two rendered
expressions can be combined again with And/Or without re-parsing:

    And(a, b).render() == f"({a.render()}) && ({b.render()})"

Event payload references (github.event.issue.body and friends) rely on the
runner evaluating a missing property to an empty value rather than failing,
so a mention check over several payload fields is safe on any event.

Public API:
    ConditionExpr and node classes (PropertyRef, StringLit, BoolLit, NumberLit,
        Equals, NotEquals, Contains, FunctionCall, And, Or, Not, Raw)
    any_of, all_of, combine_guard: Composition helpers
    event_type_equals, action_equals, label_contains, ref_starts_with: Leaf helpers
    build_mention_condition, build_event_aware_mention_condition, build_draft_filter, build_fork_filter,
    build_reaction_condition, build_label_filter: Trigger predicate builders
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TypeAlias

EVENT_NAME = "github.event_name"

# Payload fields that can carry a mention or slash command
MENTION_FIELDS: tuple[str, ...] = (
    "github.event.issue.body",
    "github.event.comment.body",
    "github.event.pull_request.body",
)

MENTION_EVENTS: tuple[str, ...] = (
    "issues",
    "issue_comment",
    "pull_request",
    "pull_request_review_comment",
)

REACTION_EVENTS: tuple[str, ...] = (
    "issues",
    "pull_request",
    "issue_comment",
    "pull_request_comment",
    "pull_request_review_comment",
)

PR_HEAD_REPO = "github.event.pull_request.head.repo.full_name"


@dataclass(frozen=True)
class PropertyRef:
    """Context property path, e.g. github.event.action."""

    path: str

    def render(self) -> str:
        return self.path


@dataclass(frozen=True)
class StringLit:
    """Single-quoted string literal. Embedded quotes are doubled."""

    value: str

    def render(self) -> str:
        escaped = self.value.replace("'", "''")
        return f"'{escaped}'"


@dataclass(frozen=True)
class BoolLit:
    value: bool

    def render(self) -> str:
        return "true" if self.value else "false"


@dataclass(frozen=True)
class NumberLit:
    value: int | float

    def render(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Equals:
    left: ConditionExpr
    right: ConditionExpr

    def render(self) -> str:
        return f"{self.left.render()} == {self.right.render()}"


@dataclass(frozen=True)
class NotEquals:
    left: ConditionExpr
    right: ConditionExpr

    def render(self) -> str:
        return f"{self.left.render()} != {self.right.render()}"


@dataclass(frozen=True)
class Contains:
    """contains(haystack, needle) call."""

    haystack: ConditionExpr
    needle: ConditionExpr

    def render(self) -> str:
        return f"contains({self.haystack.render()}, {self.needle.render()})"


@dataclass(frozen=True)
class FunctionCall:
    """Arbitrary function call such as startsWith(github.ref, 'refs/tags/')."""

    name: str
    args: tuple[ConditionExpr, ...] = ()

    def render(self) -> str:
        return f"{self.name}({', '.join(arg.render() for arg in self.args)})"


@dataclass(frozen=True)
class And:
    left: ConditionExpr
    right: ConditionExpr

    def render(self) -> str:
        return f"({self.left.render()}) && ({self.right.render()})"


@dataclass(frozen=True)
class Or:
    left: ConditionExpr
    right: ConditionExpr

    def render(self) -> str:
        return f"({self.left.render()}) || ({self.right.render()})"


@dataclass(frozen=True)
class Not:
    child: ConditionExpr

    def render(self) -> str:
        return f"!({self.child.render()})"


@dataclass(frozen=True)
class Raw:
    """User-authored expression, rendered verbatim.

    Only ever used as an operand of a composite, which parenthesizes it.
    """

    expression: str

    def render(self) -> str:
        return self.expression


ConditionExpr: TypeAlias = (
    PropertyRef
    | StringLit
    | BoolLit
    | NumberLit
    | Equals
    | NotEquals
    | Contains
    | FunctionCall
    | And
    | Or
    | Not
    | Raw
)


# =============================================================================
# Composition helpers
# =============================================================================


def any_of(terms: Iterable[ConditionExpr]) -> ConditionExpr:
    """OR the terms together as a left fold: any_of([a, b, c]) == Or(Or(a, b), c).

    Raises:
        ValueError: If terms is empty.

    """
    items = list(terms)
    if not items:
        raise ValueError("any_of() requires at least one term")
    result = items[0]
    for term in items[1:]:
        result = Or(result, term)
    return result


def all_of(terms: Iterable[ConditionExpr]) -> ConditionExpr:
    """AND the terms together as a left fold.

    Raises:
        ValueError: If terms is empty.

    """
    items = list(terms)
    if not items:
        raise ValueError("all_of() requires at least one term")
    result = items[0]
    for term in items[1:]:
        result = And(result, term)
    return result


def combine_guard(existing: ConditionExpr | None, addition: ConditionExpr | None) -> ConditionExpr | None:
    """Attach an additional guard to an optional existing one.

    Returns And(existing, addition) when both are present, otherwise
    whichever one is present (or None).
    """
    if addition is None:
        return existing
    if existing is None:
        return addition
    return And(existing, addition)


def event_type_equals(event: str) -> Equals:
    return Equals(PropertyRef(EVENT_NAME), StringLit(event))


def action_equals(action: str) -> Equals:
    return Equals(PropertyRef("github.event.action"), StringLit(action))


def label_contains(label: str) -> Contains:
    return Contains(PropertyRef("github.event.issue.labels.*.name"), StringLit(label))


def ref_starts_with(prefix: str) -> FunctionCall:
    return FunctionCall("startsWith", (PropertyRef("github.ref"), StringLit(prefix)))


# =============================================================================
# Trigger predicate builders
# =============================================================================


def _mention_checks(name: str, prefix: str) -> list[ConditionExpr]:
    text = f"{prefix}{name}"
    return [Contains(PropertyRef(path), StringLit(text)) for path in MENTION_FIELDS]


def build_mention_condition(name: str, prefix: str = "@") -> ConditionExpr:
    """Match a mention (or, with prefix "/", a slash command) in any payload text field.

    Renders as Or(Or(issue body, comment body), pull request body). Unlike
    the event-aware form this never lets other events through, so it also
    guards jobs that must only act on an actual mention.
    """
    return any_of(_mention_checks(name, prefix))


def mention_capable_event() -> ConditionExpr:
    """True when the triggering event can carry a mention."""
    return any_of(event_type_equals(event) for event in MENTION_EVENTS)


def build_event_aware_mention_condition(
    name: str, has_other_events: bool, prefix: str = "@"
) -> ConditionExpr:
    """Mention check that lets unrelated events through.

    With no other events configured this is just the mention condition.
    Otherwise it becomes Or(And(capable, mention), Not(capable)) so that
    e.g. scheduled runs are never blocked by the mention check.

    Args:
        name: Mention or command name (without prefix).
        has_other_events: Whether the workflow has non-mention triggers.
        prefix: "@" for mentions, "/" for slash commands.

    Returns:
        The guard expression.

    """
    mention = build_mention_condition(name, prefix)
    if not has_other_events:
        return mention
    capable = mention_capable_event()
    return Or(And(capable, mention), Not(capable))


def build_draft_filter(draft: bool) -> ConditionExpr:
    """Only let pull_request events through whose draft flag equals draft."""
    return Or(
        NotEquals(PropertyRef(EVENT_NAME), StringLit("pull_request")),
        Equals(PropertyRef("github.event.pull_request.draft"), BoolLit(draft)),
    )


def build_fork_filter(patterns: Sequence[str]) -> ConditionExpr | None:
    """Restrict pull_request events to the same repository or allowed forks.

    Pull requests from the repository itself are always allowed. A pattern
    "owner/*" allows every fork owned by owner; other patterns must match
    the fork's full name exactly.

    Args:
        patterns: Allowed fork repository patterns.

    Returns:
        The filter, or None when "*" allows every fork.

    """
    if "*" in patterns:
        return None
    head_repo = PropertyRef(PR_HEAD_REPO)
    terms: list[ConditionExpr] = [Equals(head_repo, PropertyRef("github.repository"))]
    for pattern in patterns:
        if pattern.endswith("/*"):
            terms.append(FunctionCall("startsWith", (head_repo, StringLit(pattern[:-1]))))
        else:
            terms.append(Equals(head_repo, StringLit(pattern)))
    return Or(NotEquals(PropertyRef(EVENT_NAME), StringLit("pull_request")), any_of(terms))


def build_reaction_condition() -> ConditionExpr:
    """True for events that have an issue, PR or comment to react to."""
    return any_of(event_type_equals(event) for event in REACTION_EVENTS)


def build_label_filter(names: Sequence[str]) -> ConditionExpr | None:
    """True when the issue carries any of the labels. None for an empty list."""
    if not names:
        return None
    return any_of(label_contains(name) for name in names)
