"""
repair-orchestrator — error taxonomy

Purpose
- One exception hierarchy shared by every component so the CLI boundary can route an
  exception chain to a stable exit code.

Functional requirements
- Structured errors carry the object that explains them (cycles, integrity report,
  process outcome, rollback operation) rather than only a message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repair_orchestrator.checkpoints.manager import IntegrityReport, RollbackOperation
    from repair_orchestrator.supervisor.runner import CommandOutcome

_MAX_CYCLES_IN_MESSAGE = 3


class RepairOrchestratorError(RuntimeError):
    """Base error for orchestration failures."""


class ConfigurationError(RepairOrchestratorError, ValueError):
    """Raised for unknown suite, checkpoint, or phase ids and malformed plans."""


class DependencyCycleError(RepairOrchestratorError):
    """Raised when phase dependencies do not admit a topological order."""

    def __init__(self, cycles: Sequence[Sequence[str]]) -> None:
        normalized = tuple(tuple(cycle) for cycle in cycles)
        preview = "; ".join(
            " -> ".join(cycle) for cycle in normalized[:_MAX_CYCLES_IN_MESSAGE]
        )
        if len(normalized) > _MAX_CYCLES_IN_MESSAGE:
            preview = f"{preview}; ..."
        message = "dependency cycle detected"
        if preview:
            message = f"{message}: {preview}"
        super().__init__(message)
        self.cycles = normalized


class IntegrityError(RepairOrchestratorError):
    """Raised when a checkpoint fails verification before a rollback."""

    def __init__(self, checkpoint_id: str, report: IntegrityReport) -> None:
        errors = "; ".join(report.errors[:5])
        super().__init__(f"checkpoint {checkpoint_id} failed integrity verification: {errors}")
        self.checkpoint_id = checkpoint_id
        self.report = report


class ProcessFailure(RepairOrchestratorError):
    """Raised when an external command exits nonzero, times out, or cannot be spawned."""

    def __init__(self, message: str, outcome: CommandOutcome | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class PartialRollbackFailure(RepairOrchestratorError):
    """Raised on request when a rollback completed but could not restore every file."""

    def __init__(self, operation: RollbackOperation) -> None:
        failed = ", ".join(failure.path for failure in operation.failures[:5])
        super().__init__(
            f"rollback {operation.operation_id} restored {len(operation.files_restored)} file(s) "
            f"but failed for {len(operation.failures)}: {failed}"
        )
        self.operation = operation


class EditApplicationError(RepairOrchestratorError):
    """Raised when an edit command cannot be applied to its file."""


class PhaseValidationError(RepairOrchestratorError):
    """Raised when validation after a repair phase or script does not pass."""


class WorkflowCancelledError(RepairOrchestratorError):
    """Raised inside a run that was stopped through the coordinator."""


__all__ = [
    "ConfigurationError",
    "DependencyCycleError",
    "EditApplicationError",
    "IntegrityError",
    "PartialRollbackFailure",
    "PhaseValidationError",
    "ProcessFailure",
    "RepairOrchestratorError",
    "WorkflowCancelledError",
]
