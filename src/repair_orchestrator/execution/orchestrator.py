"""
repair-orchestrator — execution orchestrator

Purpose
- Turn categorized diagnostics into a phased repair plan and execute it against the working
  tree with checkpoint-backed recovery.

Functional requirements
- Phases run one at a time in a deterministic dependency order computed before any phase runs.
- Every file mutation is an atomic whole-file write performed off the event loop.
- A failed phase either rolls the tree back to the pre-run checkpoint, stops the run, or
  lets independent phases continue, depending on settings.
- Cancellation is cooperative and waits for an in-flight write to finish.
- Decisions are emitted as ``structlog`` events; lifecycle changes go to listeners.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from repair_orchestrator.constants import DRY_RUN_COMMAND_DELAY_SECONDS
from repair_orchestrator.domain.ids import generate_plan_id
from repair_orchestrator.domain.models import Diagnostic, EditCommand, JSONValue, RepairScript
from repair_orchestrator.errors import (
    ConfigurationError,
    EditApplicationError,
    IntegrityError,
    PhaseValidationError,
    ProcessFailure,
    WorkflowCancelledError,
)
from repair_orchestrator.execution.edits import apply_edit, snapshot_contents
from repair_orchestrator.execution.generators import GenerationContext, GeneratorRegistry
from repair_orchestrator.execution.plan import (
    PHASE_PIPELINE,
    ExecutionPhase,
    ExecutionPlan,
    PhaseStatus,
)
from repair_orchestrator.observability.events import EventType, ListenerRegistry
from repair_orchestrator.utils.concurrency import CancellationToken
from repair_orchestrator.validation.suites import TYPECHECK_BASIC

if TYPE_CHECKING:
    from repair_orchestrator.checkpoints.manager import CheckpointManager, RollbackOperation
    from repair_orchestrator.validation.engine import ValidationEngine
    from repair_orchestrator.validation.models import (
        ValidationContext,
        ValidationReport,
        ValidationResult,
    )

_PHASE_FAILURES = (EditApplicationError, PhaseValidationError, ProcessFailure)


@dataclass(frozen=True, slots=True)
class ExecutionSettings:
    dry_run: bool = False
    enable_validation: bool = True
    rollback_on_failure: bool = True
    continue_on_failure: bool = False
    create_checkpoint: bool = True
    phase_validation_suite: str | None = TYPECHECK_BASIC
    prefer_vcs_rollback: bool = False
    dry_run_command_delay_seconds: float = DRY_RUN_COMMAND_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.dry_run_command_delay_seconds < 0:
            raise ValueError("ExecutionSettings.dry_run_command_delay_seconds: must be >= 0")
        if self.phase_validation_suite is not None and not self.phase_validation_suite.strip():
            object.__setattr__(self, "phase_validation_suite", None)

    @classmethod
    def from_config(cls, section: Mapping[str, object]) -> ExecutionSettings:
        known = {key: value for key, value in section.items() if key in cls.__dataclass_fields__}
        return cls(**known)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class PhaseRecord:
    phase_id: str
    status: PhaseStatus
    scripts_executed: int = 0
    commands_applied: int = 0
    files_modified: tuple[str, ...] = ()
    diagnostics_targeted: int = 0
    validation: tuple[ValidationReport, ...] = ()
    script_checks: tuple[ValidationResult, ...] = ()
    duration_seconds: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "phase_id": self.phase_id,
            "status": self.status.value,
            "scripts_executed": self.scripts_executed,
            "commands_applied": self.commands_applied,
            "files_modified": list(self.files_modified),
            "diagnostics_targeted": self.diagnostics_targeted,
            "validation": [report.to_dict() for report in self.validation],
            "script_checks": [result.to_dict() for result in self.script_checks],
            "duration_seconds": self.duration_seconds,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    plan_id: str
    success: bool
    executed_phases: tuple[str, ...]
    failed_phases: tuple[str, ...]
    skipped_phases: tuple[str, ...]
    errors_fixed: int
    errors_remaining: int
    elapsed_seconds: float
    rollback_performed: bool = False
    rollback_operation: RollbackOperation | None = None
    checkpoint_id: str | None = None
    phase_records: tuple[PhaseRecord, ...] = ()
    dry_run: bool = False
    cancelled: bool = False
    errors: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, JSONValue]:
        rollback: dict[str, JSONValue] | None = None
        if self.rollback_operation is not None:
            operation = self.rollback_operation
            rollback = {
                "operation_id": operation.operation_id,
                "checkpoint_id": operation.checkpoint_id,
                "status": operation.status.value,
                "files_restored": list(operation.files_restored),
                "failures": [
                    {"path": item.path, "message": item.message} for item in operation.failures
                ],
                "used_vcs": operation.used_vcs,
            }
        return {
            "plan_id": self.plan_id,
            "success": self.success,
            "executed_phases": list(self.executed_phases),
            "failed_phases": list(self.failed_phases),
            "skipped_phases": list(self.skipped_phases),
            "errors_fixed": self.errors_fixed,
            "errors_remaining": self.errors_remaining,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "rollback_performed": self.rollback_performed,
            "rollback": rollback,
            "checkpoint_id": self.checkpoint_id,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "errors": list(self.errors),
            "phases": [record.to_dict() for record in self.phase_records],
        }


@dataclass(slots=True)
class _RunState:
    plan: ExecutionPlan
    settings: ExecutionSettings
    checkpoint_id: str | None
    undo: list[tuple[EditCommand, ...]] = field(default_factory=list)
    records: dict[str, PhaseRecord] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


class ExecutionOrchestrator:
    """Plans and executes repair phases; one plan runs at a time."""

    def __init__(
        self,
        checkpoints: CheckpointManager,
        validation: ValidationEngine,
        generators: GeneratorRegistry,
        settings: ExecutionSettings | None = None,
        *,
        project_root: str | Path,
        listeners: ListenerRegistry | None = None,
        logger: Any | None = None,
    ) -> None:
        self._checkpoints = checkpoints
        self._validation = validation
        self._generators = generators
        self._settings = settings if settings is not None else ExecutionSettings()
        self._project_root = Path(project_root).resolve(strict=False)
        self._listeners = listeners if listeners is not None else ListenerRegistry("execution")
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._token = CancellationToken()
        self._write_lock = asyncio.Lock()
        self._running = False
        self._current_plan: ExecutionPlan | None = None
        self._current_phase: str | None = None

    @property
    def settings(self) -> ExecutionSettings:
        return self._settings

    @property
    def listeners(self) -> ListenerRegistry:
        return self._listeners

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # planning
    # ------------------------------------------------------------------

    async def create_execution_plan(
        self,
        diagnostics: Sequence[Diagnostic],
        settings: ExecutionSettings | None = None,
    ) -> ExecutionPlan:
        """
        Group diagnostics into the fixed phase pipeline and ask generators for scripts.

        A phase with no generated scripts is left out; each included phase depends on every
        phase included before it.
        """

        effective = settings if settings is not None else self._settings
        phases: list[ExecutionPhase] = []
        for definition in PHASE_PIPELINE:
            group = [item for item in diagnostics if item.category in definition.categories]
            if not group:
                continue
            context = GenerationContext(
                project_root=self._project_root,
                phase_id=definition.phase_id,
                dry_run=effective.dry_run,
            )
            scripts = await self._generators.generate(definition.categories, group, context)
            if not scripts:
                self._logger.info(
                    "execution_phase_omitted",
                    phase_id=definition.phase_id,
                    diagnostics=len(group),
                    reason="no_scripts",
                )
                continue
            phases.append(
                ExecutionPhase(
                    phase_id=definition.phase_id,
                    name=definition.name,
                    scripts=scripts,
                    dependencies=tuple(phase.phase_id for phase in phases),
                    priority=definition.priority,
                    categories=definition.categories,
                )
            )

        plan = ExecutionPlan(
            plan_id=generate_plan_id(),
            phases=tuple(phases),
            diagnostics=tuple(diagnostics),
        )
        self._logger.info(
            "execution_plan_created",
            plan_id=plan.plan_id,
            phases=[phase.phase_id for phase in plan.phases],
            scripts=len(plan.scripts),
            unaddressed=len(plan.unaddressed_diagnostics),
        )
        self._listeners.emit(
            EventType.PLAN_CREATED,
            {
                "plan_id": plan.plan_id,
                "phases": [phase.phase_id for phase in plan.phases],
                "diagnostics": len(plan.diagnostics),
            },
        )
        return plan

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    async def execute_plan(
        self,
        plan: ExecutionPlan,
        settings: ExecutionSettings | None = None,
        *,
        checkpoint_id: str | None = None,
    ) -> ExecutionResult:
        if self._running:
            raise RuntimeError("an execution plan is already running")
        effective = settings if settings is not None else self._settings
        order = plan.execution_order()

        started = time.monotonic()
        self._running = True
        self._current_plan = plan
        self._token = CancellationToken()
        state = _RunState(plan=plan, settings=effective, checkpoint_id=checkpoint_id)
        rollback: RollbackOperation | None = None
        rollback_performed = False
        cancelled = False
        try:
            self._listeners.emit(
                EventType.EXECUTION_STARTED,
                {"plan_id": plan.plan_id, "phases": [phase.phase_id for phase in order]},
            )
            if state.checkpoint_id is None and effective.create_checkpoint and not effective.dry_run:
                checkpoint = await self._checkpoints.create_checkpoint(
                    f"pre-execution {plan.plan_id}",
                    plan.affected_files,
                    description="State before repair phases were applied",
                    metadata={"plan_id": plan.plan_id},
                )
                state.checkpoint_id = checkpoint.checkpoint_id

            halted_reason: str | None = None
            for phase in order:
                if halted_reason is None and self._token.is_cancelled:
                    halted_reason = "cancelled"
                    cancelled = True
                if halted_reason is not None:
                    self._skip(phase, halted_reason, state)
                    continue
                unmet = [
                    dependency
                    for dependency in phase.dependencies
                    if plan.phase(dependency).status is not PhaseStatus.COMPLETED
                ]
                if unmet:
                    self._skip(phase, f"dependencies not completed: {', '.join(unmet)}", state)
                    continue

                try:
                    await self._execute_phase(phase, state)
                except WorkflowCancelledError as exc:
                    self._fail(phase, str(exc), state)
                    halted_reason = "cancelled"
                    cancelled = True
                except _PHASE_FAILURES as exc:
                    self._fail(phase, str(exc), state)
                    if effective.rollback_on_failure and not effective.dry_run:
                        rollback, rollback_performed = await self._roll_back(state, phase.phase_id)
                        halted_reason = f"rolled back after {phase.phase_id} failed"
                    elif not effective.continue_on_failure:
                        halted_reason = f"stopped after {phase.phase_id} failed"
                    self._logger.warning(
                        "execution_phase_failure_decision",
                        plan_id=plan.plan_id,
                        phase_id=phase.phase_id,
                        rollback=rollback_performed,
                        halted=halted_reason is not None,
                        error=str(exc),
                    )
        except Exception:
            if (
                effective.rollback_on_failure
                and not effective.dry_run
                and not rollback_performed
                and (state.checkpoint_id is not None or state.undo)
            ):
                await self._roll_back(state, self._current_phase or "unknown")
            raise
        finally:
            self._running = False
            self._current_phase = None

        result = self._build_result(
            plan,
            state,
            started=started,
            rollback=rollback,
            rollback_performed=rollback_performed,
            cancelled=cancelled,
        )
        self._logger.info(
            "execution_completed",
            plan_id=plan.plan_id,
            success=result.success,
            errors_fixed=result.errors_fixed,
            errors_remaining=result.errors_remaining,
            rollback_performed=result.rollback_performed,
        )
        self._listeners.emit(
            EventType.EXECUTION_COMPLETED,
            {
                "plan_id": plan.plan_id,
                "success": result.success,
                "errors_fixed": result.errors_fixed,
                "errors_remaining": result.errors_remaining,
                "rollback_performed": result.rollback_performed,
            },
        )
        return result

    async def cancel(self) -> None:
        """Stop before the next command; returns once any in-flight write has finished."""

        if not self._token.is_cancelled:
            self._token.cancel()
            self._logger.info("execution_cancel_requested", running=self._running)
        async with self._write_lock:
            pass

    def status(self) -> dict[str, JSONValue]:
        plan = self._current_plan
        return {
            "is_running": self._running,
            "plan_id": None if plan is None else plan.plan_id,
            "current_phase": self._current_phase,
            "phases": [] if plan is None else [phase.to_dict() for phase in plan.phases],
            "cancelled": self._token.is_cancelled,
        }

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    async def _execute_phase(self, phase: ExecutionPhase, state: _RunState) -> None:
        phase.start()
        self._current_phase = phase.phase_id
        self._listeners.emit(
            EventType.PHASE_STARTED,
            {"phase_id": phase.phase_id, "scripts": len(phase.scripts)},
        )
        commands_applied = 0
        modified: dict[str, None] = {}
        script_checks: list[ValidationResult] = []
        reports: list[ValidationReport] = []
        scripts_executed = 0

        def record(error: str | None = None) -> None:
            state.records[phase.phase_id] = PhaseRecord(
                phase_id=phase.phase_id,
                status=phase.status,
                scripts_executed=scripts_executed,
                commands_applied=commands_applied,
                files_modified=tuple(modified),
                diagnostics_targeted=phase.target_diagnostic_count,
                validation=tuple(reports),
                script_checks=tuple(script_checks),
                duration_seconds=phase.duration_seconds,
                error=error,
            )

        try:
            for script in phase.scripts:
                applied, changed = await self._execute_script(script, state)
                commands_applied += applied
                for path in changed:
                    modified.setdefault(path, None)
                if state.settings.enable_validation and not state.settings.dry_run:
                    script_checks.extend(await self._validate_script(script, state))
                scripts_executed += 1
                self._listeners.emit(
                    EventType.SCRIPT_COMPLETED,
                    {"phase_id": phase.phase_id, "script_id": script.script_id},
                )

            suite_id = state.settings.phase_validation_suite
            if state.settings.enable_validation and not state.settings.dry_run and suite_id:
                report = await self._validation.run_suite(
                    suite_id,
                    self._validation_context(phase.affected_files, state),
                )
                reports.append(report)
                self._raise_if_cancelled()
                if not report.overall_success:
                    raise PhaseValidationError(
                        f"phase {phase.phase_id} validation failed: {report.summary}"
                    )
        except (*_PHASE_FAILURES, WorkflowCancelledError) as exc:
            record(str(exc))
            raise

        phase.complete()
        record()
        self._listeners.emit(
            EventType.PHASE_COMPLETED,
            {
                "phase_id": phase.phase_id,
                "commands_applied": commands_applied,
                "duration_seconds": phase.duration_seconds,
            },
        )

    async def _execute_script(
        self, script: RepairScript, state: _RunState
    ) -> tuple[int, tuple[str, ...]]:
        if state.settings.dry_run:
            for _ in script.commands:
                self._raise_if_cancelled()
                await asyncio.sleep(state.settings.dry_run_command_delay_seconds)
            self._logger.info(
                "execution_script_simulated",
                script_id=script.script_id,
                commands=len(script.commands),
            )
            return len(script.commands), ()

        originals = await asyncio.to_thread(
            snapshot_contents, script.affected_files, self._project_root
        )
        undo = script.rollback_commands or self._checkpoints.create_rollback_commands(
            script.commands, originals
        )
        state.undo.append(undo)

        applied = 0
        changed: dict[str, None] = {}
        for command in script.commands:
            self._raise_if_cancelled()
            async with self._write_lock:
                outcome = await asyncio.to_thread(apply_edit, command, self._project_root)
            applied += 1
            if outcome.changed:
                for path in command.touched_files:
                    changed.setdefault(path, None)
        return applied, tuple(changed)

    async def _validate_script(
        self, script: RepairScript, state: _RunState
    ) -> list[ValidationResult]:
        results: list[ValidationResult] = []
        if not script.validation_checks:
            return results
        context = self._validation_context(script.affected_files, state)
        for check in script.validation_checks:
            result = await self._validation.run_check(check, context)
            results.append(result)
            self._raise_if_cancelled()
            if not result.success:
                raise PhaseValidationError(
                    f"script {script.script_id} check {check.check_type} failed: {result.message}"
                )
        return results

    def _validation_context(self, files: Sequence[str], state: _RunState) -> ValidationContext:
        targets = set(files)
        baseline = sum(1 for item in state.plan.diagnostics if item.file in targets)
        return self._validation.context_for(files, baseline_error_count=baseline)

    async def _roll_back(
        self, state: _RunState, failed_phase: str
    ) -> tuple[RollbackOperation | None, bool]:
        reason = f"phase {failed_phase} failed"
        if state.checkpoint_id is not None:
            try:
                operation = await self._checkpoints.rollback_to_checkpoint(
                    state.checkpoint_id,
                    reason,
                    prefer_vcs=state.settings.prefer_vcs_rollback,
                )
            except (IntegrityError, ConfigurationError) as exc:
                state.errors.append(f"rollback failed: {exc}")
                history = self._checkpoints.rollback_history()
                self._logger.error(
                    "execution_rollback_failed",
                    checkpoint_id=state.checkpoint_id,
                    error=str(exc),
                )
                return (history[-1] if history else None), False
            self._logger.warning(
                "execution_rolled_back",
                checkpoint_id=state.checkpoint_id,
                status=operation.status.value,
                files_restored=len(operation.files_restored),
                failures=len(operation.failures),
            )
            for failure in operation.failures:
                state.errors.append(f"restore failed for {failure.path}: {failure.message}")
            return operation, True

        restored = 0
        for undo in reversed(state.undo):
            for command in undo:
                try:
                    async with self._write_lock:
                        await asyncio.to_thread(apply_edit, command, self._project_root)
                    restored += 1
                except EditApplicationError as exc:
                    state.errors.append(f"undo failed: {exc}")
        state.undo.clear()
        self._logger.warning("execution_undo_applied", commands=restored, reason=reason)
        return None, True

    def _skip(self, phase: ExecutionPhase, reason: str, state: _RunState) -> None:
        if phase.status is not PhaseStatus.PENDING:
            return
        phase.skip(reason)
        state.records[phase.phase_id] = PhaseRecord(
            phase_id=phase.phase_id,
            status=phase.status,
            diagnostics_targeted=phase.target_diagnostic_count,
            error=reason,
        )
        self._listeners.emit(EventType.PHASE_SKIPPED, {"phase_id": phase.phase_id, "reason": reason})

    def _fail(self, phase: ExecutionPhase, error: str, state: _RunState) -> None:
        if phase.status is PhaseStatus.RUNNING:
            phase.fail(error)
        state.errors.append(f"{phase.phase_id}: {error}")
        existing = state.records.get(phase.phase_id)
        if existing is None:
            existing = PhaseRecord(
                phase_id=phase.phase_id,
                status=phase.status,
                diagnostics_targeted=phase.target_diagnostic_count,
            )
        state.records[phase.phase_id] = replace(
            existing,
            status=phase.status,
            duration_seconds=phase.duration_seconds,
            error=error,
        )
        self._listeners.emit(EventType.PHASE_FAILED, {"phase_id": phase.phase_id, "error": error})

    def _raise_if_cancelled(self) -> None:
        if self._token.is_cancelled:
            raise WorkflowCancelledError("execution cancelled")

    def _build_result(
        self,
        plan: ExecutionPlan,
        state: _RunState,
        *,
        started: float,
        rollback: RollbackOperation | None,
        rollback_performed: bool,
        cancelled: bool,
    ) -> ExecutionResult:
        executed = tuple(p.phase_id for p in plan.phases if p.status is PhaseStatus.COMPLETED)
        failed = tuple(p.phase_id for p in plan.phases if p.status is PhaseStatus.FAILED)
        skipped = tuple(p.phase_id for p in plan.phases if p.status is PhaseStatus.SKIPPED)
        total = len(plan.diagnostics)
        fixed = 0
        if not rollback_performed:
            fixed = sum(
                p.target_diagnostic_count for p in plan.phases if p.status is PhaseStatus.COMPLETED
            )
        records = tuple(
            state.records[phase.phase_id] for phase in plan.phases if phase.phase_id in state.records
        )
        return ExecutionResult(
            plan_id=plan.plan_id,
            success=not failed and not cancelled,
            executed_phases=executed,
            failed_phases=failed,
            skipped_phases=skipped,
            errors_fixed=fixed,
            errors_remaining=max(total - fixed, 0),
            elapsed_seconds=time.monotonic() - started,
            rollback_performed=rollback_performed,
            rollback_operation=rollback,
            checkpoint_id=state.checkpoint_id,
            phase_records=records,
            dry_run=state.settings.dry_run,
            cancelled=cancelled,
            errors=tuple(state.errors),
        )


__all__ = [
    "ExecutionOrchestrator",
    "ExecutionResult",
    "ExecutionSettings",
    "PhaseRecord",
]
