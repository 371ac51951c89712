"""Execution plan and phase models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from repair_orchestrator.domain.models import (
    Diagnostic,
    DiagnosticCategory,
    JSONValue,
    RepairScript,
    datetime_to_iso8601z,
)
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.execution.graph import DependencyGraph


class PhaseStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


_ALLOWED_TRANSITIONS: Final[dict[PhaseStatus, frozenset[PhaseStatus]]] = {
    PhaseStatus.PENDING: frozenset({PhaseStatus.RUNNING, PhaseStatus.SKIPPED}),
    PhaseStatus.RUNNING: frozenset({PhaseStatus.COMPLETED, PhaseStatus.FAILED}),
    PhaseStatus.COMPLETED: frozenset(),
    PhaseStatus.FAILED: frozenset(),
    PhaseStatus.SKIPPED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class PhaseDefinition:
    phase_id: str
    name: str
    categories: tuple[str, ...]
    priority: int


PHASE_PIPELINE: Final[tuple[PhaseDefinition, ...]] = (
    PhaseDefinition(
        "syntax-formatting",
        "Syntax and formatting repairs",
        (DiagnosticCategory.SYNTAX.value, DiagnosticCategory.FORMATTING.value),
        1,
    ),
    PhaseDefinition("imports", "Import repairs", (DiagnosticCategory.IMPORT.value,), 2),
    PhaseDefinition("types", "Type repairs", (DiagnosticCategory.TYPE.value,), 3),
    PhaseDefinition("logic", "Logic repairs", (DiagnosticCategory.LOGIC.value,), 4),
)


@dataclass(slots=True)
class ExecutionPhase:
    """
    One repair phase; the orchestrator owns its status transitions.

    ``pending -> running -> completed | failed`` and ``pending -> skipped``; terminal
    states are final.
    """

    phase_id: str
    name: str
    scripts: tuple[RepairScript, ...]
    dependencies: tuple[str, ...] = ()
    priority: int = 0
    categories: tuple[str, ...] = ()
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.phase_id.strip():
            raise ValueError("ExecutionPhase.phase_id: must not be empty")
        self.scripts = tuple(self.scripts)
        self.dependencies = tuple(self.dependencies)
        if self.phase_id in self.dependencies:
            raise ValueError(f"ExecutionPhase.dependencies: {self.phase_id} depends on itself")

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.status]

    @property
    def affected_files(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for script in self.scripts:
            for path in script.affected_files:
                seen.setdefault(path, None)
        return tuple(seen)

    @property
    def target_diagnostic_count(self) -> int:
        return sum(len(script.target_diagnostics) for script in self.scripts)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def transition(self, status: PhaseStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"ExecutionPhase[{self.phase_id}]: invalid transition {self.status} -> {status}"
            )
        now = datetime.now(tz=UTC)
        if status is PhaseStatus.RUNNING:
            self.started_at = now
        else:
            self.ended_at = now
        self.status = status

    def start(self) -> None:
        self.transition(PhaseStatus.RUNNING)

    def complete(self) -> None:
        self.transition(PhaseStatus.COMPLETED)

    def fail(self, error: str) -> None:
        self.errors.append(error)
        self.transition(PhaseStatus.FAILED)

    def skip(self, reason: str) -> None:
        self.errors.append(reason)
        self.transition(PhaseStatus.SKIPPED)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.phase_id,
            "name": self.name,
            "status": self.status.value,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "categories": list(self.categories),
            "scripts": [script.script_id for script in self.scripts],
            "target_diagnostics": self.target_diagnostic_count,
            "affected_files": list(self.affected_files),
            "started_at": None if self.started_at is None else datetime_to_iso8601z(self.started_at),
            "ended_at": None if self.ended_at is None else datetime_to_iso8601z(self.ended_at),
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class ExecutionPlan:
    plan_id: str
    phases: tuple[ExecutionPhase, ...]
    diagnostics: tuple[Diagnostic, ...]
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        self.phases = tuple(self.phases)
        self.diagnostics = tuple(self.diagnostics)

    def phase(self, phase_id: str) -> ExecutionPhase:
        for phase in self.phases:
            if phase.phase_id == phase_id:
                return phase
        raise ConfigurationError(f"unknown phase id: {phase_id}")

    def graph(self) -> DependencyGraph:
        return DependencyGraph.from_dependencies(
            (phase.phase_id, phase.dependencies, phase.priority) for phase in self.phases
        )

    def execution_order(self) -> tuple[ExecutionPhase, ...]:
        """Phases in dependency order; raises before anything runs if the plan is malformed."""

        order = self.graph().topological_order()
        by_id = {phase.phase_id: phase for phase in self.phases}
        return tuple(by_id[phase_id] for phase_id in order)

    @property
    def affected_files(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for phase in self.phases:
            for path in phase.affected_files:
                seen.setdefault(path, None)
        return tuple(seen)

    @property
    def scripts(self) -> tuple[RepairScript, ...]:
        return tuple(script for phase in self.phases for script in phase.scripts)

    @property
    def estimated_runtime_seconds(self) -> float:
        return sum(script.estimated_runtime_seconds for script in self.scripts)

    @property
    def unaddressed_diagnostics(self) -> tuple[Diagnostic, ...]:
        """Diagnostics whose category belongs to no phase in this plan."""

        covered = {category for phase in self.phases for category in phase.categories}
        return tuple(item for item in self.diagnostics if item.category not in covered)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "plan_id": self.plan_id,
            "created_at": datetime_to_iso8601z(self.created_at),
            "total_diagnostics": len(self.diagnostics),
            "unaddressed_diagnostics": len(self.unaddressed_diagnostics),
            "estimated_runtime_seconds": self.estimated_runtime_seconds,
            "affected_files": list(self.affected_files),
            "phases": [phase.to_dict() for phase in self.phases],
        }


__all__ = [
    "PHASE_PIPELINE",
    "ExecutionPhase",
    "ExecutionPlan",
    "PhaseDefinition",
    "PhaseStatus",
]
