"""Job graph for compiled workflows.

Jobs are registered one at a time, validated once (referential integrity and
acyclicity), then rendered. Rendering keeps insertion order: the runner
derives execution order from `needs`, so the graph only has to guarantee
that every dependency exists and that there are no cycles.

Public API:
    Job: One runnable job
    JobGraph: Ordered job collection with dependency validation
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from agentflow.compiler.conditions import ConditionExpr
from agentflow.core.exceptions import (
    CyclicDependencyError,
    DuplicateJobError,
    GraphFrozenError,
    JobGraphError,
    MissingDependencyError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Job:
    """A runnable job.

    Only name, guard, depends_on and outputs are interpreted by the graph.
    The remaining fields are passed through to the rendered job body.

    Attributes:
        name: Unique job id.
        guard: Condition deciding whether the job runs, or None.
        runs_on: Runner label(s).
        permissions: Token permissions (mapping, or a shorthand like "read-all").
        steps: Ordered step definitions.
        outputs: Output name to expression.
        depends_on: Names of jobs this job needs, in declaration order.
        timeout_minutes: Job timeout, or None for the runner default.
        env: Job-level environment variables.
        extra: Additional job keys (e.g. concurrency), rendered after env.

    """

    name: str
    guard: ConditionExpr | None = None
    runs_on: str | list[str] | None = "ubuntu-latest"
    permissions: Mapping[str, str] | str | None = None
    steps: Sequence[Mapping[str, Any]] = ()
    outputs: Mapping[str, str] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    timeout_minutes: int | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Accept any iterable of names; keep first occurrence
        object.__setattr__(self, "depends_on", tuple(dict.fromkeys(self.depends_on)))

    def render(self) -> dict[str, Any]:
        """Render the job body (without its name key)."""
        body: dict[str, Any] = {}
        if self.depends_on:
            body["needs"] = self.depends_on[0] if len(self.depends_on) == 1 else list(self.depends_on)
        if self.guard is not None:
            body["if"] = self.guard.render()
        if self.runs_on is not None:
            body["runs-on"] = self.runs_on
        if self.permissions is not None:
            body["permissions"] = (
                self.permissions if isinstance(self.permissions, str) else dict(self.permissions)
            )
        if self.env:
            body["env"] = dict(self.env)
        for key, value in self.extra.items():
            body[key] = value
        if self.timeout_minutes is not None:
            body["timeout-minutes"] = self.timeout_minutes
        if self.outputs:
            body["outputs"] = {key: self.outputs[key] for key in sorted(self.outputs)}
        if self.steps:
            body["steps"] = [dict(step) for step in self.steps]
        return body


class JobGraph:
    """Ordered collection of jobs keyed by name.

    Lifecycle: add_job() calls, then validate_dependencies(), then render().
    Adding after validation or rendering before it raises GraphFrozenError.
    """

    def __init__(self, jobs: Iterable[Job] = ()) -> None:
        self._jobs: dict[str, Job] = {}
        self._validated = False
        for job in jobs:
            self.add_job(job)

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    @property
    def validated(self) -> bool:
        return self._validated

    @property
    def names(self) -> list[str]:
        """Job names in insertion order."""
        return list(self._jobs)

    def add_job(self, job: Job) -> None:
        """Register a job.

        Raises:
            JobGraphError: If the name is empty.
            DuplicateJobError: If a job with the same name exists.
            GraphFrozenError: If the graph was already validated.

        """
        if self._validated:
            raise GraphFrozenError(f"Cannot add job '{job.name}': graph already validated")
        if not job.name:
            raise JobGraphError("Job name cannot be empty")
        if job.name in self._jobs:
            raise DuplicateJobError(job.name)
        self._jobs[job.name] = job
        logger.debug("Added job %s (needs: %s)", job.name, ", ".join(job.depends_on) or "-")

    def get_job(self, name: str) -> Job | None:
        return self._jobs.get(name)

    def jobs(self) -> list[Job]:
        """Jobs in insertion order."""
        return list(self._jobs.values())

    def validate_dependencies(self) -> None:
        """Check referential integrity and acyclicity, then freeze the graph.

        Raises:
            MissingDependencyError: A dependency names an unregistered job.
            CyclicDependencyError: The dependency relation has a cycle; the
                error's path lists the full cycle.

        """
        for job in self._jobs.values():
            for dep in job.depends_on:
                if dep not in self._jobs:
                    raise MissingDependencyError(job.name, dep)

        cycle = self._find_cycle()
        if cycle is not None:
            raise CyclicDependencyError(cycle)

        self._validated = True
        logger.debug("Validated job graph with %d jobs", len(self._jobs))

    def _find_cycle(self) -> list[str] | None:
        """Depth-first search in insertion order; return the first cycle found."""
        visiting, done = 1, 2
        state: dict[str, int] = {}
        stack: list[str] = []

        def visit(name: str) -> list[str] | None:
            state[name] = visiting
            stack.append(name)
            for dep in self._jobs[name].depends_on:
                if state.get(dep) == visiting:
                    start = stack.index(dep)
                    return [*stack[start:], dep]
                if dep not in state:
                    found = visit(dep)
                    if found is not None:
                        return found
            stack.pop()
            state[name] = done
            return None

        for name in self._jobs:
            if name not in state:
                found = visit(name)
                if found is not None:
                    return found
        return None

    def render(self) -> dict[str, dict[str, Any]]:
        """Render jobs in insertion order.

        Raises:
            GraphFrozenError: If validate_dependencies() has not succeeded.

        """
        if not self._validated:
            raise GraphFrozenError("Job graph must be validated before rendering")
        return {name: job.render() for name, job in self._jobs.items()}

    def topological_order(self) -> list[str]:
        """Return job names in dependency order (ties broken alphabetically).

        Used for diagnostics; render() keeps insertion order.

        Raises:
            MissingDependencyError, CyclicDependencyError: As validate_dependencies().

        """
        if not self._validated:
            self.validate_dependencies()

        remaining = {name: set(job.depends_on) for name, job in self._jobs.items()}
        result: list[str] = []
        ready = sorted(name for name, deps in remaining.items() if not deps)
        while ready:
            current = ready.pop(0)
            result.append(current)
            del remaining[current]
            for name, deps in remaining.items():
                if current in deps:
                    deps.discard(current)
                    if not deps:
                        ready.append(name)
            ready.sort()
        return result
