"""
repair-orchestrator — domain types

Purpose
- Value types shared by every layer: diagnostics, edit commands, repair scripts and
  validation checks, plus ULID-based identifiers.

Functional requirements
- Domain objects are immutable, validated on construction and JSON-serializable.
- The domain layer performs no IO.
"""

from repair_orchestrator.domain.models import (
    Diagnostic,
    DiagnosticCategory,
    DiagnosticSeverity,
    DiagnosticSummary,
    EditCommand,
    EditKind,
    Position,
    RepairScript,
    ResultPolicy,
    ValidationCheck,
)

__all__ = [
    "Diagnostic",
    "DiagnosticCategory",
    "DiagnosticSeverity",
    "DiagnosticSummary",
    "EditCommand",
    "EditKind",
    "Position",
    "RepairScript",
    "ResultPolicy",
    "ValidationCheck",
]
