"""Workflow coordination: the top-level repair run, its collaborators, reports and wiring."""

from repair_orchestrator.workflow.collaborators import (
    CommandDiagnosticsAnalyzer,
    DiagnosticAnalyzer,
    JsonDiagnosticsAnalyzer,
    ReportRenderer,
    StaticDiagnosticsAnalyzer,
    categorize_code,
    load_diagnostics_file,
)
from repair_orchestrator.workflow.coordinator import (
    WorkflowContext,
    WorkflowCoordinator,
    WorkflowPhase,
    WorkflowResult,
    WorkflowSettings,
    WorkflowStatus,
)
from repair_orchestrator.workflow.factory import Runtime, build_runtime
from repair_orchestrator.workflow.reporting import (
    REPORT_FORMATS,
    TemplateReportRenderer,
    build_report,
    format_duration,
)

__all__ = [
    "REPORT_FORMATS",
    "CommandDiagnosticsAnalyzer",
    "DiagnosticAnalyzer",
    "JsonDiagnosticsAnalyzer",
    "ReportRenderer",
    "Runtime",
    "StaticDiagnosticsAnalyzer",
    "TemplateReportRenderer",
    "WorkflowContext",
    "WorkflowCoordinator",
    "WorkflowPhase",
    "WorkflowResult",
    "WorkflowSettings",
    "WorkflowStatus",
    "build_report",
    "build_runtime",
    "categorize_code",
    "format_duration",
    "load_diagnostics_file",
]
