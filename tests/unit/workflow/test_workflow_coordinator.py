"""
repair-orchestrator — unit tests for the workflow coordinator

Purpose
- Run the default analysis -> reporting pipeline over real components with a scripted runner.
- Required versus optional phase failures, rollback on execution failure, and stop cascades.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from repair_orchestrator.checkpoints.manager import CheckpointManager
from repair_orchestrator.domain.models import Diagnostic, EditCommand, RepairScript, ValidationCheck
from repair_orchestrator.errors import ConfigurationError, DependencyCycleError
from repair_orchestrator.execution.generators import GenerationContext, GeneratorRegistry
from repair_orchestrator.execution.orchestrator import ExecutionOrchestrator, ExecutionSettings
from repair_orchestrator.observability.events import EventType, ListenerRegistry
from repair_orchestrator.supervisor.process_supervisor import ProcessSupervisor
from repair_orchestrator.supervisor.runner import CommandOutcome, CommandSpec
from repair_orchestrator.validation.engine import ValidationEngine, ValidationSettings
from repair_orchestrator.validation.models import ValidationSuite
from repair_orchestrator.workflow.collaborators import StaticDiagnosticsAnalyzer
from repair_orchestrator.workflow.coordinator import (
    WorkflowContext,
    WorkflowCoordinator,
    WorkflowPhase,
    WorkflowSettings,
    WorkflowStatus,
)
from repair_orchestrator.workflow.reporting import TemplateReportRenderer


@dataclass
class _Runner:
    exit_codes: dict[str, int] = field(default_factory=dict)
    calls: list[tuple[str, ...]] = field(default_factory=list)

    async def run(self, spec: CommandSpec) -> CommandOutcome:
        self.calls.append(spec.argv)
        return CommandOutcome(
            process_id=f"proc-{len(self.calls)}",
            argv=spec.argv,
            exit_code=self.exit_codes.get(spec.argv[0], 0),
            stdout="",
            stderr="",
            duration_ms=0,
        )


class _SyntaxFixer:
    category = "Syntax"

    def can_handle(self, diagnostics: Sequence[Diagnostic]) -> bool:
        return True

    def generate(
        self, diagnostics: Sequence[Diagnostic], context: GenerationContext
    ) -> tuple[RepairScript, ...]:
        files = sorted({item.file for item in diagnostics})
        return (
            RepairScript(
                script_id=f"{context.phase_id}-fix",
                category=self.category,
                target_diagnostics=tuple(diagnostics),
                commands=tuple(EditCommand.replace(path, "repaired;\n") for path in files),
            ),
        )


class _SlowAnalyzer:
    def __init__(self, diagnostics: Sequence[Diagnostic], delay: float) -> None:
        self._diagnostics = tuple(diagnostics)
        self._delay = delay

    async def analyze(self, root: Path) -> tuple[Diagnostic, ...]:
        await asyncio.sleep(self._delay)
        return self._diagnostics


class _BrokenAnalyzer:
    def analyze(self, root: Path) -> tuple[Diagnostic, ...]:
        raise ConfigurationError("tsconfig.json not found")


def _diagnostics(file: str, count: int) -> list[Diagnostic]:
    return [
        Diagnostic(
            file=file,
            line=index + 1,
            column=1,
            code="TS1005",
            message="';' expected.",
            category="Syntax",
        )
        for index in range(count)
    ]


def _coordinator(
    root: Path,
    analyzer: object,
    *,
    runner: _Runner | None = None,
    verifier: object | None = None,
    listeners: ListenerRegistry | None = None,
    **settings: object,
) -> tuple[WorkflowCoordinator, CheckpointManager]:
    runner = runner if runner is not None else _Runner()
    gate = ValidationSuite(
        suite_id="gate",
        name="Gate",
        checks=(ValidationCheck(check_type="tsc", command="tsc {files}"),),
    )
    validation = ValidationEngine(
        runner,
        ValidationSettings(retry_attempts=0, retry_delay_seconds=0.0),
        project_root=root,
        suites=[gate],
    )
    checkpoints = CheckpointManager(".repair-checkpoints", project_root=root)
    generators = GeneratorRegistry()
    generators.register(_SyntaxFixer())  # type: ignore[arg-type]
    orchestrator = ExecutionOrchestrator(
        checkpoints,
        validation,
        generators,
        ExecutionSettings(phase_validation_suite="gate", dry_run_command_delay_seconds=0.0),
        project_root=root,
    )
    defaults: dict[str, object] = {"validation_suites": ("gate",), "shutdown_deadline_seconds": 0.2}
    defaults.update(settings)
    coordinator = WorkflowCoordinator(
        analyzer=analyzer,  # type: ignore[arg-type]
        orchestrator=orchestrator,
        validation=validation,
        checkpoints=checkpoints,
        supervisor=ProcessSupervisor(),
        project_root=root,
        renderer=TemplateReportRenderer(root / "reports", ("json", "markdown")),
        verifier=verifier,  # type: ignore[arg-type]
        settings=WorkflowSettings(**defaults),  # type: ignore[arg-type]
        listeners=listeners,
    )
    return coordinator, checkpoints


def _project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "a.ts").write_text("broken\n", encoding="utf-8")
    (root / "src" / "b.ts").write_text("also broken\n", encoding="utf-8")
    return root


def test_default_phase_order(tmp_path: Path) -> None:
    coordinator, _ = _coordinator(tmp_path, StaticDiagnosticsAnalyzer(()))

    assert coordinator.execution_order() == (
        "analysis",
        "backup",
        "execution",
        "validation",
        "verification",
        "reporting",
    )
    assert coordinator.statistics()["required_phases"] == 3


@pytest.mark.asyncio
async def test_verified_improvement_reports_errors_fixed(tmp_path: Path) -> None:
    root = _project(tmp_path)
    listeners = ListenerRegistry("workflow")
    diagnostics = _diagnostics("src/a.ts", 10)
    remaining = StaticDiagnosticsAnalyzer(diagnostics[:1])
    coordinator, _ = _coordinator(
        root, StaticDiagnosticsAnalyzer(diagnostics), verifier=remaining, listeners=listeners
    )

    result = await coordinator.execute_workflow()

    assert result.success
    assert result.status is WorkflowStatus.COMPLETED
    assert result.initial_error_count == 10
    assert result.final_error_count == 1
    assert result.errors_fixed == 9
    assert result.checkpoint_id is not None
    assert (root / "src" / "a.ts").read_text(encoding="utf-8") == "repaired;\n"
    assert [path.suffix for path in result.report_paths] == [".json", ".md"]
    assert result.phases_completed[-1] == "reporting"
    kinds = [event.event_type for event in listeners.history()]
    assert kinds[0] is EventType.WORKFLOW_STARTED
    assert kinds[-1] is EventType.WORKFLOW_COMPLETED


@pytest.mark.asyncio
async def test_execution_failure_rolls_back_and_fails_the_run(tmp_path: Path) -> None:
    root = _project(tmp_path)
    diagnostics = _diagnostics("src/a.ts", 3) + _diagnostics("src/b.ts", 2)
    coordinator, _ = _coordinator(
        root, StaticDiagnosticsAnalyzer(diagnostics), runner=_Runner({"tsc": 2})
    )

    result = await coordinator.execute_workflow()

    assert not result.success
    assert result.rollback_performed
    assert result.errors_fixed == 0
    assert result.final_error_count == 5
    assert "validation" in result.phases_failed
    assert result.execution_result is not None
    assert result.execution_result.failed_phases == ("syntax-formatting",)
    assert (root / "src" / "a.ts").read_text(encoding="utf-8") == "broken\n"
    assert (root / "src" / "b.ts").read_text(encoding="utf-8") == "also broken\n"


@pytest.mark.asyncio
async def test_required_phase_failure_aborts_remaining_phases(tmp_path: Path) -> None:
    root = _project(tmp_path)
    coordinator, checkpoints = _coordinator(root, _BrokenAnalyzer())

    result = await coordinator.execute_workflow()

    assert result.status is WorkflowStatus.FAILED
    assert result.failed_phase == "analysis"
    assert result.error == "tsconfig.json not found"
    assert result.phases_completed == ()
    assert checkpoints.checkpoints() == ()


@pytest.mark.asyncio
async def test_optional_phase_failure_is_recorded_and_run_continues(tmp_path: Path) -> None:
    root = _project(tmp_path)
    coordinator, _ = _coordinator(root, StaticDiagnosticsAnalyzer(_diagnostics("src/a.ts", 2)))

    async def _explode(context: WorkflowContext) -> None:
        raise RuntimeError("notifier offline")

    coordinator.add_phase(
        WorkflowPhase("notify", "Notify", _explode, dependencies=("execution",), required=False)
    )

    result = await coordinator.execute_workflow()

    assert result.status is WorkflowStatus.COMPLETED
    assert result.phases_failed == ("notify",)
    assert not result.success
    assert "reporting" in result.phases_completed
    assert result.errors == ("notify: notifier offline",)


@pytest.mark.asyncio
async def test_files_argument_restricts_diagnostics(tmp_path: Path) -> None:
    root = _project(tmp_path)
    diagnostics = _diagnostics("src/a.ts", 2) + _diagnostics("src/b.ts", 3)
    coordinator, _ = _coordinator(root, StaticDiagnosticsAnalyzer(diagnostics))

    result = await coordinator.execute_workflow([str(root / "src" / "b.ts")])

    assert result.initial_error_count == 3
    assert (root / "src" / "a.ts").read_text(encoding="utf-8") == "broken\n"
    assert (root / "src" / "b.ts").read_text(encoding="utf-8") == "repaired;\n"


@pytest.mark.asyncio
async def test_dry_run_leaves_tree_and_checkpoints_alone(tmp_path: Path) -> None:
    root = _project(tmp_path)
    runner = _Runner()
    coordinator, checkpoints = _coordinator(
        root, StaticDiagnosticsAnalyzer(_diagnostics("src/a.ts", 2)), runner=runner
    )

    result = await coordinator.execute_workflow(settings=WorkflowSettings(dry_run=True))

    assert result.execution_result is not None
    assert result.execution_result.dry_run
    assert result.checkpoint_id is None
    assert checkpoints.checkpoints() == ()
    assert runner.calls == []
    assert (root / "src" / "a.ts").read_text(encoding="utf-8") == "broken\n"


@pytest.mark.asyncio
async def test_stop_workflow_cascades_and_reports_stopped(tmp_path: Path) -> None:
    root = _project(tmp_path)
    coordinator, _ = _coordinator(root, _SlowAnalyzer(_diagnostics("src/a.ts", 2), 0.2))

    assert not await coordinator.stop_workflow()

    task = asyncio.create_task(coordinator.execute_workflow())
    await asyncio.sleep(0.05)
    assert coordinator.status()["current_phase"] == "analysis"
    assert await coordinator.stop_workflow("operator")
    result = await asyncio.wait_for(task, 5.0)

    assert result.status is WorkflowStatus.STOPPED
    assert not result.success
    assert result.error == "workflow stopped: operator"
    assert result.phases_completed == ("analysis",)
    assert (root / "src" / "a.ts").read_text(encoding="utf-8") == "broken\n"
    assert not coordinator.is_running


def test_phase_graph_errors_are_raised_before_running(tmp_path: Path) -> None:
    coordinator, _ = _coordinator(tmp_path, StaticDiagnosticsAnalyzer(()))

    async def _noop(context: WorkflowContext) -> None:
        return None

    coordinator.add_phase(WorkflowPhase("orphan", "Orphan", _noop, dependencies=("missing",)))
    with pytest.raises(ConfigurationError, match="unknown phase"):
        coordinator.execution_order()

    assert coordinator.remove_phase("orphan")
    assert not coordinator.remove_phase("orphan")
    coordinator.add_phase(
        WorkflowPhase("analysis", "Error analysis", _noop, dependencies=("reporting",))
    )
    with pytest.raises(DependencyCycleError):
        coordinator.execution_order()
