"""Repair planning, dependency ordering, edit application and phase execution."""

from repair_orchestrator.execution.edits import EditOutcome, apply_edit, snapshot_contents
from repair_orchestrator.execution.generators import (
    GenerationContext,
    GeneratorRegistry,
    ScriptGenerator,
    TrailingWhitespaceGenerator,
    default_registry,
    load_generator_plugins,
)
from repair_orchestrator.execution.graph import DependencyGraph
from repair_orchestrator.execution.orchestrator import (
    ExecutionOrchestrator,
    ExecutionResult,
    ExecutionSettings,
    PhaseRecord,
)
from repair_orchestrator.execution.plan import (
    PHASE_PIPELINE,
    ExecutionPhase,
    ExecutionPlan,
    PhaseDefinition,
    PhaseStatus,
)

__all__ = [
    "PHASE_PIPELINE",
    "DependencyGraph",
    "EditOutcome",
    "ExecutionOrchestrator",
    "ExecutionPhase",
    "ExecutionPlan",
    "ExecutionResult",
    "ExecutionSettings",
    "GenerationContext",
    "GeneratorRegistry",
    "PhaseDefinition",
    "PhaseRecord",
    "PhaseStatus",
    "ScriptGenerator",
    "TrailingWhitespaceGenerator",
    "apply_edit",
    "default_registry",
    "load_generator_plugins",
    "snapshot_contents",
]
