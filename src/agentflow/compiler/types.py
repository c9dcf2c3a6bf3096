"""Shared types for the compiler pipeline.

Public API:
    CancellationToken: Cooperative cancellation flag checked between stages
    CompilerContext: Inputs to one compilation
    CompiledWorkflow: Result handed to an emitter
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from agentflow.core.exceptions import CompilationCancelledError

if TYPE_CHECKING:
    from agentflow.compiler.capabilities import CapabilityTree
    from agentflow.compiler.engines import EngineConfig, EngineDescriptor, EngineRegistry
    from agentflow.compiler.jobs import JobGraph
    from agentflow.compiler.parser import WorkflowSource
    from agentflow.compiler.safe_outputs import SafeOutputsConfig
    from agentflow.compiler.triggers import TriggerConfig
    from agentflow.core.config import Config


class CancellationToken:
    """Thread-safe cancellation flag.

    The orchestrator checks the token before each stage; cancelling from
    another thread stops the compilation at the next stage boundary.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        """Raise CompilationCancelledError if cancel() was called.

        Args:
            stage: Name of the stage about to run.

        """
        if self._event.is_set():
            raise CompilationCancelledError(stage)


@dataclass
class CompilerContext:
    """Inputs to one compilation.

    Attributes:
        source: Parsed main workflow.
        includes: Parsed include files, in inclusion order.
        config: Compiler settings; defaults when None.
        registry: Engine registry; the process-wide one when None.
        engine_override: Engine id that replaces the frontmatter's choice.
        compiled_at: Reference time for relative stop-after values (UTC now when None).
        cancel_token: Optional cancellation token.

    """

    source: WorkflowSource
    includes: list[WorkflowSource] = field(default_factory=list)
    config: Config | None = None
    registry: EngineRegistry | None = None
    engine_override: str | None = None
    compiled_at: datetime | None = None
    cancel_token: CancellationToken | None = None


@dataclass
class CompiledWorkflow:
    """Finished compilation, ready for an emitter.

    Attributes:
        name: Workflow display name.
        workflow_id: Identifier derived from the file name.
        main_job: Name of the job that runs the agent.
        engine: Selected engine.
        engine_config: Parsed `engine:` section, if any.
        tree: Merged capability tree with defaults applied.
        allowed_tools: Sorted allow-list.
        triggers: Parsed trigger settings.
        safe_outputs: Parsed safe-outputs section, if any.
        graph: Validated job graph.
        document: Workflow document (name, on, permissions, ..., jobs).
        stop_time: Resolved stop time, or None.
        source_path: Path of the main workflow file.

    """

    name: str
    workflow_id: str
    main_job: str
    engine: EngineDescriptor
    engine_config: EngineConfig | None
    tree: CapabilityTree
    allowed_tools: list[str]
    triggers: TriggerConfig
    safe_outputs: SafeOutputsConfig | None
    graph: JobGraph
    document: dict[str, Any]
    stop_time: str | None = None
    source_path: str | None = None

    @property
    def allowed_tools_string(self) -> str:
        return ",".join(self.allowed_tools)
