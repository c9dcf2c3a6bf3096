"""Exception hierarchy for agentflow.

All errors raised by the compiler derive from AgentflowError so callers can
catch a single base type. Compiler errors are fail-fast and never retried:
each one carries enough context (capability or job name, offending field and,
when the parser knows it, the source location) to point a user at the
declaration that needs fixing.
"""

from __future__ import annotations

from typing import Any


class AgentflowError(Exception):
    """Base exception for all agentflow errors."""

    pass


class ConfigError(AgentflowError):
    """Configuration loading or validation error.

    Raised when:
    - A config file contains malformed YAML
    - A config file fails model validation
    """

    pass


class ParserError(AgentflowError):
    """Workflow document could not be split into frontmatter and body.

    Attributes:
        path: Path of the document, if known.
        line: 1-based line of the problem, if known.

    """

    def __init__(self, message: str, path: str | None = None, line: int | None = None) -> None:
        """Initialize ParserError with location context.

        Args:
            message: Human-readable error message.
            path: Path of the document being parsed.
            line: 1-based line number of the problem.

        """
        super().__init__(message)
        self.path = path
        self.line = line


class CompilerError(AgentflowError):
    """Base exception for compilation failures.

    Attributes:
        source: Where the offending declaration came from (file path, or
            "path:line" when the parser can tell), or None.

    """

    def __init__(self, message: str, source: str | None = None) -> None:
        """Initialize CompilerError.

        Args:
            message: Human-readable error message.
            source: Source location of the offending declaration.

        """
        if source:
            message = f"{message}\n  Source: {source}"
        super().__init__(message)
        self.source = source


class MergeConflictError(CompilerError):
    """Two declarations of the same capability cannot be merged.

    Raised when two server tools with the same name disagree on their launch
    descriptor, or when the same name is declared as different kinds of
    capability.

    Attributes:
        name: Capability name.
        field: First field that differs (e.g. "command", "env", "kind").
        left: Value from the earlier declaration.
        right: Value from the later declaration.

    """

    def __init__(
        self,
        name: str,
        field: str,
        left: Any,
        right: Any,
        left_source: str | None = None,
        right_source: str | None = None,
    ) -> None:
        """Initialize MergeConflictError.

        Args:
            name: Capability name.
            field: First differing field.
            left: Value from the earlier declaration.
            right: Value from the later declaration.
            left_source: Source of the earlier declaration.
            right_source: Source of the later declaration.

        """
        message = (
            f"Conflicting declarations for tool '{name}'\n"
            f"  Field: {field}\n"
            f"  Existing: {left!r}\n"
            f"  New: {right!r}\n"
            f"  How to fix: Declare '{name}' with the same {field} everywhere it is used"
        )
        sources = [s for s in (left_source, right_source) if s]
        super().__init__(message, source=" vs ".join(sources) if sources else None)
        self.name = name
        self.field = field
        self.left = left
        self.right = right
        self.left_source = left_source
        self.right_source = right_source


class InvalidCapabilityShapeError(CompilerError):
    """A recognized field holds the wrong kind of value.

    Attributes:
        name: Capability (or section) name.
        field: Offending field.
        expected: Description of the expected value shape.
        actual: Kind of value that was found.

    """

    def __init__(
        self,
        name: str,
        field: str,
        expected: str,
        actual: str | None = None,
        source: str | None = None,
    ) -> None:
        """Initialize InvalidCapabilityShapeError.

        Args:
            name: Capability (or section) name.
            field: Offending field.
            expected: Description of the expected value shape.
            actual: Kind of value found, or None when the field is missing.
            source: Source location of the declaration.

        """
        if actual is None:
            detail = f"missing property '{field}'"
        else:
            detail = f"'{field}' got {actual}, want {expected}"
        message = (
            f"Invalid configuration for '{name}': {detail}\n"
            f"  Expected: {expected}"
        )
        super().__init__(message, source=source)
        self.name = name
        self.field = field
        self.expected = expected
        self.actual = actual


class UnsupportedFeatureError(CompilerError):
    """A declared feature is not supported by the selected engine.

    Attributes:
        engine_id: Identifier of the selected engine.
        feature: Feature name (e.g. "http-transport", "max-turns").
        name: Name of the declaration using the feature, if any.

    """

    def __init__(
        self,
        engine_id: str,
        feature: str,
        name: str | None = None,
        source: str | None = None,
    ) -> None:
        """Initialize UnsupportedFeatureError.

        Args:
            engine_id: Identifier of the selected engine.
            feature: Unsupported feature name.
            name: Declaration using the feature.
            source: Source location of the declaration.

        """
        subject = f"'{name}' uses {feature}" if name else f"{feature} is configured"
        message = (
            f"{subject}, which is not supported by engine '{engine_id}'\n"
            f"  How to fix: Remove the setting or select an engine that supports it"
        )
        super().__init__(message, source=source)
        self.engine_id = engine_id
        self.feature = feature
        self.name = name


class UnknownEngineError(CompilerError):
    """Requested engine id is not registered."""

    def __init__(self, engine_id: str, available: list[str]) -> None:
        """Initialize UnknownEngineError.

        Args:
            engine_id: Requested engine identifier.
            available: Registered engine identifiers.

        """
        super().__init__(
            f"Unknown engine: '{engine_id}'\n"
            f"  Available engines: {', '.join(sorted(available))}"
        )
        self.engine_id = engine_id
        self.available = available


class EngineConflictError(CompilerError):
    """Main workflow and an include select different engines."""

    def __init__(self, main_engine: str, included_engine: str, source: str | None = None) -> None:
        """Initialize EngineConflictError.

        Args:
            main_engine: Engine selected by the main workflow.
            included_engine: Engine selected by the include.
            source: Source of the include.

        """
        super().__init__(
            f"Engine conflict: main workflow specifies engine '{main_engine}' "
            f"but included workflow specifies engine '{included_engine}'\n"
            f"  How to fix: Remove the engine setting from either the main workflow or the include",
            source=source,
        )
        self.main_engine = main_engine
        self.included_engine = included_engine


class TriggerConfigError(CompilerError):
    """The trigger ("on") section holds an invalid value.

    Attributes:
        field: Offending trigger field (e.g. "command", "stop-after").
        value: The rejected value.

    """

    def __init__(self, field: str, value: Any, reason: str, source: str | None = None) -> None:
        """Initialize TriggerConfigError.

        Args:
            field: Offending trigger field.
            value: The rejected value.
            reason: Why the value was rejected.
            source: Source location of the declaration.

        """
        super().__init__(f"Invalid trigger '{field}': {value!r}\n  Reason: {reason}", source=source)
        self.field = field
        self.value = value


class JobGraphError(CompilerError):
    """Base exception for job graph integrity errors."""

    pass


class DuplicateJobError(JobGraphError):
    """A job with the same name is already registered."""

    def __init__(self, name: str) -> None:
        """Initialize DuplicateJobError.

        Args:
            name: Duplicate job name.

        """
        super().__init__(f"Job '{name}' already exists")
        self.name = name


class MissingDependencyError(JobGraphError):
    """A job depends on a job that was never registered."""

    def __init__(self, job: str, dependency: str) -> None:
        """Initialize MissingDependencyError.

        Args:
            job: Name of the dependent job.
            dependency: Name of the missing dependency.

        """
        super().__init__(f"Job '{job}' depends on non-existent job '{dependency}'")
        self.job = job
        self.dependency = dependency


class CyclicDependencyError(JobGraphError):
    """The dependency relation contains a cycle.

    Attributes:
        path: Job names along the cycle, first name repeated at the end.

    """

    def __init__(self, path: list[str]) -> None:
        """Initialize CyclicDependencyError.

        Args:
            path: Job names along the cycle.

        """
        super().__init__(f"Cycle detected in job dependencies: {' -> '.join(path)}")
        self.path = path


class GraphFrozenError(JobGraphError):
    """Job graph used out of lifecycle order (mutated after validation, or
    rendered before it).
    """

    pass


class SchemaFetchError(CompilerError):
    """Remote schema could not be fetched."""

    def __init__(self, url: str, reason: str) -> None:
        """Initialize SchemaFetchError.

        Args:
            url: Schema URL.
            reason: Failure description.

        """
        super().__init__(f"Failed to fetch schema from {url}\n  Reason: {reason}")
        self.url = url


class SchemaValidationError(CompilerError):
    """Compiled workflow does not satisfy the runner's workflow schema.

    Attributes:
        errors: List of "path: message" strings.

    """

    def __init__(self, errors: list[str], source: str | None = None) -> None:
        """Initialize SchemaValidationError.

        Args:
            errors: List of "path: message" strings.
            source: Workflow file the output was compiled from.

        """
        details = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Compiled workflow failed schema validation:\n{details}", source=source)
        self.errors = errors


class CompilationCancelledError(CompilerError):
    """Compilation was cancelled through its cancellation token."""

    def __init__(self, stage: str) -> None:
        """Initialize CompilationCancelledError.

        Args:
            stage: Pipeline stage at which cancellation was observed.

        """
        super().__init__(f"Compilation cancelled before stage '{stage}'")
        self.stage = stage
