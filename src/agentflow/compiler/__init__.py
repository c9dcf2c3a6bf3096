"""Workflow compiler module.

This module provides the public API for compiling agentic workflow
definitions (markdown with YAML frontmatter) into runner job graphs.

Public API:
    compile_workflow: Compile a parsed workflow and its includes
    generate_job_name: Derive a job id from a workflow name
    parse_workflow_file: Read and parse a workflow document
    parse_workflow_text: Parse workflow document text
    resolve_includes: Load the files a workflow includes
    parse_capability_tree: Parse a `tools:` section
    merge_capability_trees: Fold capability trees into one
    apply_default_capabilities: Inject default capabilities
    compute_allowed_list: Derive the sorted allow-list
    parse_triggers: Parse an `on:` section
    build_trigger_guard: Compose the entry job guard
    get_engine_registry: Process-wide engine registry
    render_mcp_servers: Tool server launch configuration
    write_compiled_workflow: Emit and write a compiled workflow atomically
    CapabilityTree: Merged capability declarations
    Job: One runnable job
    JobGraph: Ordered job collection with dependency validation
    EngineDescriptor: Static capability profile of an engine
    EngineRegistry: Immutable engine lookup
    WorkflowSource: Parsed workflow or include document
    WorkflowEmitter: Protocol for emitters
    YamlEmitter: Reference YAML emitter
    CancellationToken: Cooperative cancellation flag
    CompilerContext: Inputs to one compilation
    CompiledWorkflow: Result handed to an emitter
"""

from agentflow.compiler.allowed import compute_allowed_list, format_allowed_list
from agentflow.compiler.capabilities import (
    BuiltinTool,
    CapabilityTree,
    CommandConstraint,
    ConstraintKind,
    LaunchDescriptor,
    OpaqueTool,
    ServerTool,
    Transport,
    parse_capability_tree,
)
from agentflow.compiler.core import compile_workflow, generate_job_name
from agentflow.compiler.engines import (
    EngineConfig,
    EngineDescriptor,
    EngineRegistry,
    get_engine_registry,
)
from agentflow.compiler.jobs import Job, JobGraph
from agentflow.compiler.merge import apply_default_capabilities, merge_capability_trees
from agentflow.compiler.output import (
    WorkflowEmitter,
    YamlEmitter,
    lock_file_path,
    render_mcp_servers,
    write_compiled_workflow,
)
from agentflow.compiler.parser import (
    WorkflowSource,
    parse_workflow_file,
    parse_workflow_text,
    resolve_includes,
)
from agentflow.compiler.safe_outputs import SafeOutputsConfig, parse_safe_outputs
from agentflow.compiler.triggers import TriggerConfig, build_trigger_guard, parse_triggers
from agentflow.compiler.types import CancellationToken, CompiledWorkflow, CompilerContext

__all__ = [
    # Orchestration
    "compile_workflow",
    "generate_job_name",
    "CancellationToken",
    "CompilerContext",
    "CompiledWorkflow",
    # Parsing
    "WorkflowSource",
    "parse_workflow_file",
    "parse_workflow_text",
    "resolve_includes",
    # Capabilities
    "BuiltinTool",
    "CapabilityTree",
    "CommandConstraint",
    "ConstraintKind",
    "LaunchDescriptor",
    "OpaqueTool",
    "ServerTool",
    "Transport",
    "apply_default_capabilities",
    "compute_allowed_list",
    "format_allowed_list",
    "merge_capability_trees",
    "parse_capability_tree",
    # Engines
    "EngineConfig",
    "EngineDescriptor",
    "EngineRegistry",
    "get_engine_registry",
    # Jobs and triggers
    "Job",
    "JobGraph",
    "TriggerConfig",
    "build_trigger_guard",
    "parse_triggers",
    # Safe outputs
    "SafeOutputsConfig",
    "parse_safe_outputs",
    # Output
    "WorkflowEmitter",
    "YamlEmitter",
    "lock_file_path",
    "render_mcp_servers",
    "write_compiled_workflow",
]
