"""Validation suites, placeholder expansion, result policies, and the validation engine."""

from repair_orchestrator.validation.engine import (
    CommandRunner,
    ValidationEngine,
    ValidationSettings,
)
from repair_orchestrator.validation.models import (
    ValidationContext,
    ValidationReport,
    ValidationResult,
    ValidationSuite,
)
from repair_orchestrator.validation.placeholders import PlaceholderTable
from repair_orchestrator.validation.policy import (
    Interpretation,
    count_error_markers,
    interpret_outcome,
    parse_diagnostics,
)
from repair_orchestrator.validation.suites import (
    CODE_QUALITY,
    DEFAULT_IMPROVEMENT_CHECK,
    FULL_VALIDATION,
    TYPECHECK_BASIC,
    builtin_suites,
    load_suites_yaml,
    parse_suites,
)

__all__ = [
    "CODE_QUALITY",
    "DEFAULT_IMPROVEMENT_CHECK",
    "FULL_VALIDATION",
    "TYPECHECK_BASIC",
    "CommandRunner",
    "Interpretation",
    "PlaceholderTable",
    "ValidationContext",
    "ValidationEngine",
    "ValidationReport",
    "ValidationResult",
    "ValidationSettings",
    "ValidationSuite",
    "builtin_suites",
    "count_error_markers",
    "interpret_outcome",
    "load_suites_yaml",
    "parse_diagnostics",
    "parse_suites",
]
