"""Wire a complete repair runtime from a validated config mapping."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from repair_orchestrator.checkpoints.manager import CheckpointManager
from repair_orchestrator.checkpoints.vcs import GitSnapshotter
from repair_orchestrator.execution.generators import (
    GeneratorRegistry,
    default_registry,
    load_generator_plugins,
)
from repair_orchestrator.execution.orchestrator import ExecutionOrchestrator, ExecutionSettings
from repair_orchestrator.supervisor.process_supervisor import ProcessSupervisor, SupervisorSettings
from repair_orchestrator.supervisor.runner import SupervisedRunner
from repair_orchestrator.validation.engine import ValidationEngine, ValidationSettings
from repair_orchestrator.validation.suites import builtin_suites, load_suites_yaml
from repair_orchestrator.workflow.collaborators import (
    CommandDiagnosticsAnalyzer,
    DiagnosticAnalyzer,
    StaticDiagnosticsAnalyzer,
)
from repair_orchestrator.workflow.coordinator import WorkflowCoordinator, WorkflowSettings
from repair_orchestrator.workflow.reporting import TemplateReportRenderer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Runtime:
    """Every long-lived component of one repair run, sharing a single supervisor."""

    project_root: Path
    supervisor: ProcessSupervisor
    runner: SupervisedRunner
    validation: ValidationEngine
    checkpoints: CheckpointManager
    generators: GeneratorRegistry
    orchestrator: ExecutionOrchestrator
    coordinator: WorkflowCoordinator
    renderer: TemplateReportRenderer


def build_runtime(
    config: Mapping[str, Any],
    *,
    project_root: str | Path,
    analyzer: DiagnosticAnalyzer | None = None,
) -> Runtime:
    """
    Build the component graph described by ``config``.

    ``config`` must already be validated (see ``load_config``). Without an ``analyzer`` the
    workflow starts from an empty diagnostic set.
    """

    root = Path(project_root).resolve(strict=False)

    supervisor = ProcessSupervisor(SupervisorSettings.from_config(config["supervisor"]))
    runner = SupervisedRunner(supervisor)

    validation_section = config["validation"]
    suites = list(builtin_suites())
    suites_file = validation_section.get("suites_file")
    if suites_file:
        suites.extend(load_suites_yaml(suites_file))
    validation = ValidationEngine(
        runner,
        ValidationSettings.from_config(validation_section),
        project_root=root,
        suites=suites,
    )

    checkpoint_section = config["checkpoints"]
    backup_dir = Path(checkpoint_section["backup_dir"])
    vcs: GitSnapshotter | None = None
    if checkpoint_section["use_vcs"]:
        candidate = GitSnapshotter(root, exclude_paths=(backup_dir,))
        if candidate.is_repository():
            vcs = candidate
        else:
            logger.warning("checkpoints.use_vcs is set but %s is not a git work tree", root)
    checkpoints = CheckpointManager(
        backup_dir,
        project_root=root,
        max_checkpoints=checkpoint_section["max_checkpoints"],
        vcs=vcs,
    )

    generators = default_registry()
    plugins = config.get("generators") or {}
    if plugins:
        loaded = load_generator_plugins(plugins, generators)
        logger.info("loaded generator plugins for %s", ", ".join(loaded))

    workflow_settings = WorkflowSettings.from_config(config["workflow"])
    orchestrator = ExecutionOrchestrator(
        checkpoints,
        validation,
        generators,
        ExecutionSettings.from_config(config["execution"]),
        project_root=root,
    )

    reporting = config["reporting"]
    renderer = TemplateReportRenderer(reporting["output_dir"], tuple(reporting["formats"]))

    verify_command = str(config["workflow"].get("verify_command", "")).strip()
    verifier = CommandDiagnosticsAnalyzer(runner, verify_command) if verify_command else None

    coordinator = WorkflowCoordinator(
        analyzer=analyzer if analyzer is not None else StaticDiagnosticsAnalyzer(()),
        orchestrator=orchestrator,
        validation=validation,
        checkpoints=checkpoints,
        supervisor=supervisor,
        project_root=root,
        renderer=renderer,
        verifier=verifier,
        settings=workflow_settings,
    )
    return Runtime(
        project_root=root,
        supervisor=supervisor,
        runner=runner,
        validation=validation,
        checkpoints=checkpoints,
        generators=generators,
        orchestrator=orchestrator,
        coordinator=coordinator,
        renderer=renderer,
    )


__all__ = ["Runtime", "build_runtime"]
