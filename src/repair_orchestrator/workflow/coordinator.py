"""
repair-orchestrator — workflow coordinator

Purpose
- Top-level state machine for a repair run: analysis, backup, execution, validation,
  verification and reporting, composed over the lower-level components.

Functional requirements
- Phase order is derived from declared dependencies before any phase runs; unknown
  dependencies and cycles are rejected up front.
- A required phase failure aborts the run; an optional phase failure is recorded and the
  run proceeds.
- ``stop_workflow`` cascades: stop scheduling, cancel execution, shut processes down,
  abandon validation, and roll back when configured.
- Decision logs go through ``structlog``; lifecycle events go to listeners.
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from repair_orchestrator.constants import SHUTDOWN_DEADLINE_SECONDS
from repair_orchestrator.domain.ids import generate_run_id
from repair_orchestrator.domain.models import Diagnostic, JSONValue
from repair_orchestrator.errors import (
    ConfigurationError,
    IntegrityError,
    PhaseValidationError,
    RepairOrchestratorError,
    WorkflowCancelledError,
)
from repair_orchestrator.execution.graph import DependencyGraph
from repair_orchestrator.execution.plan import PhaseStatus
from repair_orchestrator.observability.events import EventType, ListenerRegistry
from repair_orchestrator.validation.suites import CODE_QUALITY, TYPECHECK_BASIC
from repair_orchestrator.workflow.reporting import format_duration

if TYPE_CHECKING:
    from repair_orchestrator.checkpoints.manager import CheckpointManager, RollbackOperation
    from repair_orchestrator.execution.orchestrator import (
        ExecutionOrchestrator,
        ExecutionResult,
    )
    from repair_orchestrator.execution.plan import ExecutionPlan
    from repair_orchestrator.supervisor.process_supervisor import ProcessSupervisor
    from repair_orchestrator.validation.engine import ValidationEngine
    from repair_orchestrator.validation.models import ValidationReport
    from repair_orchestrator.workflow.collaborators import DiagnosticAnalyzer, ReportRenderer

T = TypeVar("T")


class WorkflowStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class WorkflowSettings:
    dry_run: bool = False
    backup_enabled: bool = True
    validation_enabled: bool = True
    rollback_on_failure: bool = True
    continue_on_validation_failure: bool = False
    generate_reports: bool = True
    validation_suites: tuple[str, ...] = (TYPECHECK_BASIC, CODE_QUALITY)
    shutdown_deadline_seconds: float = SHUTDOWN_DEADLINE_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "validation_suites", tuple(self.validation_suites))
        if self.shutdown_deadline_seconds <= 0:
            raise ValueError("WorkflowSettings.shutdown_deadline_seconds: must be > 0")

    @classmethod
    def from_config(cls, section: Mapping[str, object]) -> WorkflowSettings:
        known = {key: value for key, value in section.items() if key in cls.__dataclass_fields__}
        return cls(**known)  # type: ignore[arg-type]


@dataclass(slots=True)
class WorkflowContext:
    """Per-run mutable state shared by every phase action; never persisted."""

    run_id: str
    settings: WorkflowSettings
    project_root: Path
    files: tuple[str, ...] = ()
    started_at: float = field(default_factory=time.monotonic)
    initial_diagnostics: tuple[Diagnostic, ...] = ()
    current_diagnostics: tuple[Diagnostic, ...] = ()
    plan: ExecutionPlan | None = None
    execution_result: ExecutionResult | None = None
    validation_reports: list[ValidationReport] = field(default_factory=list)
    checkpoint_id: str | None = None
    report_paths: tuple[Path, ...] = ()
    verified: bool = False
    stop_rollback: RollbackOperation | None = None


WorkflowAction = Callable[[WorkflowContext], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class WorkflowPhase:
    phase_id: str
    name: str
    action: WorkflowAction
    dependencies: tuple[str, ...] = ()
    required: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        if not self.phase_id.strip():
            raise ValueError("WorkflowPhase.phase_id: must not be empty")
        object.__setattr__(self, "dependencies", tuple(self.dependencies))


@dataclass(frozen=True, slots=True)
class WorkflowResult:
    run_id: str
    status: WorkflowStatus
    success: bool
    initial_error_count: int
    final_error_count: int
    errors_fixed: int
    elapsed_seconds: float
    phases_completed: tuple[str, ...] = ()
    phases_failed: tuple[str, ...] = ()
    failed_phase: str | None = None
    error: str | None = None
    rollback_performed: bool = False
    checkpoint_id: str | None = None
    execution_result: ExecutionResult | None = None
    validation_reports: tuple[ValidationReport, ...] = ()
    report_paths: tuple[Path, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def errors_remaining(self) -> int:
        return self.final_error_count

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "success": self.success,
            "initial_error_count": self.initial_error_count,
            "final_error_count": self.final_error_count,
            "errors_fixed": self.errors_fixed,
            "errors_remaining": self.errors_remaining,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "phases_completed": list(self.phases_completed),
            "phases_failed": list(self.phases_failed),
            "failed_phase": self.failed_phase,
            "error": self.error,
            "rollback_performed": self.rollback_performed,
            "checkpoint_id": self.checkpoint_id,
            "execution": None if self.execution_result is None else self.execution_result.to_dict(),
            "validation": [report.to_dict() for report in self.validation_reports],
            "reports": [path.as_posix() for path in self.report_paths],
            "errors": list(self.errors),
        }


class WorkflowCoordinator:
    """Runs the repair workflow phases over shared components; one run at a time."""

    def __init__(
        self,
        *,
        analyzer: DiagnosticAnalyzer,
        orchestrator: ExecutionOrchestrator,
        validation: ValidationEngine,
        checkpoints: CheckpointManager,
        supervisor: ProcessSupervisor,
        project_root: str | Path,
        renderer: ReportRenderer | None = None,
        verifier: DiagnosticAnalyzer | None = None,
        settings: WorkflowSettings | None = None,
        listeners: ListenerRegistry | None = None,
        logger: Any | None = None,
    ) -> None:
        self._analyzer = analyzer
        self._orchestrator = orchestrator
        self._validation = validation
        self._checkpoints = checkpoints
        self._supervisor = supervisor
        self._renderer = renderer
        self._verifier = verifier
        self._settings = settings if settings is not None else WorkflowSettings()
        self._project_root = Path(project_root).resolve(strict=False)
        self._listeners = listeners if listeners is not None else ListenerRegistry("workflow")
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._phases: dict[str, WorkflowPhase] = {
            phase.phase_id: phase for phase in self._default_phases()
        }
        self._context: WorkflowContext | None = None
        self._current_phase: str | None = None
        self._completed: list[str] = []
        self._stop_reason: str | None = None
        self._runs = 0

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings

    @property
    def listeners(self) -> ListenerRegistry:
        return self._listeners

    @property
    def is_running(self) -> bool:
        return self._context is not None

    # ------------------------------------------------------------------
    # phase registry
    # ------------------------------------------------------------------

    def phases(self) -> tuple[WorkflowPhase, ...]:
        return tuple(self._phases.values())

    def add_phase(self, phase: WorkflowPhase) -> None:
        """Add a phase, or replace the phase with the same id in place."""

        if self.is_running:
            raise RuntimeError("cannot change phases while a workflow is running")
        self._phases[phase.phase_id] = phase
        self._logger.info("workflow_phase_added", phase_id=phase.phase_id, required=phase.required)

    def remove_phase(self, phase_id: str) -> bool:
        if self.is_running:
            raise RuntimeError("cannot change phases while a workflow is running")
        removed = self._phases.pop(phase_id, None) is not None
        if removed:
            self._logger.info("workflow_phase_removed", phase_id=phase_id)
        return removed

    def execution_order(self) -> tuple[str, ...]:
        """Declaration-order Kahn selection; raises before anything runs on a bad graph."""

        graph = DependencyGraph.from_dependencies(
            (phase.phase_id, phase.dependencies, 0) for phase in self._phases.values()
        )
        return graph.topological_order()

    # ------------------------------------------------------------------
    # run control
    # ------------------------------------------------------------------

    async def execute_workflow(
        self,
        files: Sequence[str] = (),
        settings: WorkflowSettings | None = None,
        *,
        run_id: str | None = None,
    ) -> WorkflowResult:
        if self._context is not None:
            raise RuntimeError("a workflow is already running")
        effective = settings if settings is not None else self._settings
        order = self.execution_order()

        context = WorkflowContext(
            run_id=run_id or generate_run_id(),
            settings=effective,
            project_root=self._project_root,
            files=tuple(files),
        )
        self._context = context
        self._completed = []
        self._stop_reason = None
        self._runs += 1
        self._validation.reset()

        failed: list[str] = []
        errors: list[str] = []
        failed_phase: str | None = None
        failure: str | None = None
        self._logger.info(
            "workflow_started",
            run_id=context.run_id,
            order=list(order),
            dry_run=effective.dry_run,
            files=len(context.files),
        )
        self._listeners.emit(
            EventType.WORKFLOW_STARTED, {"run_id": context.run_id, "phases": list(order)}
        )
        try:
            for phase_id in order:
                if self._stop_reason is not None:
                    break
                phase = self._phases[phase_id]
                self._current_phase = phase_id
                self._listeners.emit(
                    EventType.WORKFLOW_PHASE_STARTED,
                    {"run_id": context.run_id, "phase_id": phase_id},
                )
                phase_started = time.monotonic()
                try:
                    await phase.action(context)
                except Exception as exc:
                    if self._stop_reason is not None:
                        errors.append(f"{phase_id}: {exc}")
                        break
                    failed.append(phase_id)
                    errors.append(f"{phase_id}: {exc}")
                    self._listeners.emit(
                        EventType.WORKFLOW_PHASE_FAILED,
                        {
                            "run_id": context.run_id,
                            "phase_id": phase_id,
                            "required": phase.required,
                            "error": str(exc),
                        },
                    )
                    self._logger.warning(
                        "workflow_phase_failed",
                        run_id=context.run_id,
                        phase_id=phase_id,
                        required=phase.required,
                        decision="abort" if phase.required else "continue",
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    if phase.required:
                        failed_phase = phase_id
                        failure = str(exc)
                        break
                    continue
                self._completed.append(phase_id)
                self._listeners.emit(
                    EventType.WORKFLOW_PHASE_COMPLETED,
                    {
                        "run_id": context.run_id,
                        "phase_id": phase_id,
                        "duration_seconds": round(time.monotonic() - phase_started, 3),
                    },
                )
        finally:
            self._context = None
            self._current_phase = None

        result = self._build_result(
            context,
            failed=tuple(failed),
            errors=tuple(errors),
            failed_phase=failed_phase,
            failure=failure,
        )
        event = {
            WorkflowStatus.COMPLETED: EventType.WORKFLOW_COMPLETED,
            WorkflowStatus.STOPPED: EventType.WORKFLOW_STOPPED,
        }.get(result.status, EventType.WORKFLOW_FAILED)
        self._listeners.emit(
            event,
            {
                "run_id": result.run_id,
                "success": result.success,
                "errors_fixed": result.errors_fixed,
                "initial_error_count": result.initial_error_count,
            },
        )
        self._logger.info(
            "workflow_finished",
            run_id=result.run_id,
            status=result.status.value,
            errors_fixed=result.errors_fixed,
            initial=result.initial_error_count,
            duration=format_duration(result.elapsed_seconds),
        )
        return result

    async def stop_workflow(self, reason: str = "user requested") -> bool:
        """Cascade a stop through every component; returns False when nothing is running."""

        context = self._context
        if context is None:
            self._logger.warning("workflow_stop_ignored", reason=reason)
            return False
        self._stop_reason = reason
        self._logger.warning("workflow_stopping", run_id=context.run_id, reason=reason)

        await self._orchestrator.cancel()
        shutdown = await self._supervisor.graceful_shutdown(
            context.settings.shutdown_deadline_seconds
        )
        in_flight = self._validation.stop_all_checks()
        if (
            context.checkpoint_id is not None
            and context.settings.rollback_on_failure
            and not context.settings.dry_run
        ):
            try:
                context.stop_rollback = await self._checkpoints.rollback_to_checkpoint(
                    context.checkpoint_id, f"workflow stopped: {reason}"
                )
            except (IntegrityError, ConfigurationError) as exc:
                self._logger.error(
                    "workflow_stop_rollback_failed",
                    run_id=context.run_id,
                    checkpoint_id=context.checkpoint_id,
                    error=str(exc),
                )
        self._logger.info(
            "workflow_stop_cascade",
            run_id=context.run_id,
            processes_signalled=len(shutdown.signalled),
            processes_force_killed=len(shutdown.force_killed),
            checks_abandoned=in_flight,
            rolled_back=context.stop_rollback is not None,
        )
        return True

    def status(self) -> dict[str, JSONValue]:
        context = self._context
        total = len(self._phases)
        if context is None:
            return {
                "is_running": False,
                "current_phase": None,
                "elapsed_seconds": 0.0,
                "completed_phases": list(self._completed),
                "progress": 0.0,
            }
        return {
            "is_running": True,
            "run_id": context.run_id,
            "current_phase": self._current_phase,
            "elapsed_seconds": round(time.monotonic() - context.started_at, 3),
            "completed_phases": list(self._completed),
            "progress": 0.0 if total == 0 else round(len(self._completed) / total, 4),
        }

    def statistics(self) -> dict[str, JSONValue]:
        return {
            "total_phases": len(self._phases),
            "required_phases": sum(1 for phase in self._phases.values() if phase.required),
            "is_running": self.is_running,
            "runs": self._runs,
            "renderer": self._renderer is not None,
            "verifier": self._verifier is not None,
        }

    # ------------------------------------------------------------------
    # default phases
    # ------------------------------------------------------------------

    def _default_phases(self) -> tuple[WorkflowPhase, ...]:
        return (
            WorkflowPhase(
                phase_id="analysis",
                name="Error analysis",
                action=self._analyze,
                description="Collect and categorize diagnostics",
            ),
            WorkflowPhase(
                phase_id="backup",
                name="Backup creation",
                action=self._backup,
                dependencies=("analysis",),
                required=False,
                description="Checkpoint target files before editing",
            ),
            WorkflowPhase(
                phase_id="execution",
                name="Repair execution",
                action=self._execute,
                dependencies=("analysis", "backup"),
                description="Generate and apply repair scripts",
            ),
            WorkflowPhase(
                phase_id="validation",
                name="Validation",
                action=self._validate,
                dependencies=("execution",),
                required=False,
                description="Run the configured validation suites",
            ),
            WorkflowPhase(
                phase_id="verification",
                name="Error count verification",
                action=self._verify,
                dependencies=("validation",),
                description="Confirm the diagnostic count improved",
            ),
            WorkflowPhase(
                phase_id="reporting",
                name="Report generation",
                action=self._report,
                dependencies=("verification",),
                required=False,
                description="Write run reports",
            ),
        )

    async def _analyze(self, context: WorkflowContext) -> None:
        diagnostics = await _resolve(self._analyzer.analyze(context.project_root))
        diagnostics = self._restrict(tuple(diagnostics), context.files)
        context.initial_diagnostics = diagnostics
        context.current_diagnostics = diagnostics
        self._logger.info(
            "workflow_analysis_completed",
            run_id=context.run_id,
            diagnostics=len(diagnostics),
            files=len({item.file for item in diagnostics}),
        )

    async def _backup(self, context: WorkflowContext) -> None:
        if not context.settings.backup_enabled or context.settings.dry_run:
            self._logger.info("workflow_backup_skipped", run_id=context.run_id)
            return
        files = tuple(dict.fromkeys(item.file for item in context.initial_diagnostics))
        checkpoint = await self._checkpoints.create_checkpoint(
            "pre-repair",
            files,
            description="Backup before automated repair",
            metadata={"run_id": context.run_id},
        )
        context.checkpoint_id = checkpoint.checkpoint_id

    async def _execute(self, context: WorkflowContext) -> None:
        settings = replace(
            self._orchestrator.settings,
            dry_run=context.settings.dry_run,
            enable_validation=context.settings.validation_enabled,
            rollback_on_failure=context.settings.rollback_on_failure,
            create_checkpoint=context.settings.backup_enabled,
        )
        plan = await self._orchestrator.create_execution_plan(context.current_diagnostics, settings)
        context.plan = plan
        result = await self._orchestrator.execute_plan(
            plan, settings, checkpoint_id=context.checkpoint_id
        )
        context.execution_result = result
        if context.checkpoint_id is None:
            context.checkpoint_id = result.checkpoint_id
        if result.cancelled:
            raise WorkflowCancelledError("execution cancelled")

        if result.rollback_performed:
            return
        fixed = {
            diagnostic.key
            for phase in plan.phases
            if phase.status is PhaseStatus.COMPLETED
            for script in phase.scripts
            for diagnostic in script.target_diagnostics
        }
        context.current_diagnostics = tuple(
            item for item in context.initial_diagnostics if item.key not in fixed
        )

    async def _validate(self, context: WorkflowContext) -> None:
        if not context.settings.validation_enabled or context.settings.dry_run:
            self._logger.info("workflow_validation_skipped", run_id=context.run_id)
            return
        files = tuple(dict.fromkeys(item.file for item in context.initial_diagnostics))
        validation_context = self._validation.context_for(
            files, baseline_error_count=len(context.initial_diagnostics)
        )
        for suite_id in context.settings.validation_suites:
            report = await self._validation.run_suite(suite_id, validation_context)
            context.validation_reports.append(report)
        failed = [r.suite_id for r in context.validation_reports if not r.overall_success]
        if failed and not context.settings.continue_on_validation_failure:
            raise PhaseValidationError(f"validation failed: {', '.join(failed)}")

    async def _verify(self, context: WorkflowContext) -> None:
        if self._verifier is not None and not context.settings.dry_run:
            current = await _resolve(self._verifier.analyze(context.project_root))
            context.current_diagnostics = self._restrict(tuple(current), context.files)
        context.verified = True
        before = len(context.initial_diagnostics)
        after = len(context.current_diagnostics)
        self._logger.info(
            "workflow_verification",
            run_id=context.run_id,
            before=before,
            after=after,
            improved=after < before or after == 0,
            source="analyzer" if self._verifier is not None else "execution",
        )

    async def _report(self, context: WorkflowContext) -> None:
        if not context.settings.generate_reports or self._renderer is None:
            self._logger.info("workflow_reporting_skipped", run_id=context.run_id)
            return
        if context.execution_result is None:
            raise RepairOrchestratorError("no execution result available for reporting")
        paths = await _resolve(
            self._renderer.render(
                context.initial_diagnostics,
                context.execution_result,
                tuple(context.validation_reports),
            )
        )
        context.report_paths = tuple(paths)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _restrict(
        self, diagnostics: tuple[Diagnostic, ...], files: tuple[str, ...]
    ) -> tuple[Diagnostic, ...]:
        if not files:
            return diagnostics
        wanted = {self._normalize(path) for path in files}
        return tuple(item for item in diagnostics if self._normalize(item.file) in wanted)

    def _normalize(self, path: str) -> str:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._project_root / candidate
        return candidate.resolve(strict=False).as_posix()

    def _build_result(
        self,
        context: WorkflowContext,
        *,
        failed: tuple[str, ...],
        errors: tuple[str, ...],
        failed_phase: str | None,
        failure: str | None,
    ) -> WorkflowResult:
        execution = context.execution_result
        initial = len(context.initial_diagnostics)
        final = len(context.current_diagnostics)
        rollback_performed = context.stop_rollback is not None or (
            execution is not None and execution.rollback_performed
        )
        if rollback_performed:
            final = initial
        stopped = self._stop_reason is not None
        if stopped:
            status = WorkflowStatus.STOPPED
        elif failed_phase is not None:
            status = WorkflowStatus.FAILED
        else:
            status = WorkflowStatus.COMPLETED
        success = (
            status is WorkflowStatus.COMPLETED
            and not failed
            and (execution is None or execution.success)
        )
        if stopped and failure is None:
            failure = f"workflow stopped: {self._stop_reason}"
        return WorkflowResult(
            run_id=context.run_id,
            status=status,
            success=success,
            initial_error_count=initial,
            final_error_count=final,
            errors_fixed=max(initial - final, 0),
            elapsed_seconds=time.monotonic() - context.started_at,
            phases_completed=tuple(self._completed),
            phases_failed=failed,
            failed_phase=failed_phase,
            error=failure,
            rollback_performed=rollback_performed,
            checkpoint_id=context.checkpoint_id,
            execution_result=execution,
            validation_reports=tuple(context.validation_reports),
            report_paths=context.report_paths,
            errors=errors,
        )


async def _resolve(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


__all__ = [
    "WorkflowAction",
    "WorkflowContext",
    "WorkflowCoordinator",
    "WorkflowPhase",
    "WorkflowResult",
    "WorkflowSettings",
    "WorkflowStatus",
]
