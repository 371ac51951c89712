"""Unit tests for domain value types and ID helpers."""

from __future__ import annotations

import pytest

from repair_orchestrator.domain.ids import (
    generate_checkpoint_id,
    generate_run_id,
    parse_ulid_timestamp_ms,
    short_id,
    validate_checkpoint_id,
    validate_prefixed_id,
)
from repair_orchestrator.domain.models import (
    Diagnostic,
    DiagnosticSeverity,
    DiagnosticSummary,
    EditCommand,
    EditKind,
    Position,
    RepairScript,
    ResultPolicy,
    ValidationCheck,
)


def _diagnostic(file: str = "src/a.ts", code: str = "TS2304", category: str = "Type") -> Diagnostic:
    return Diagnostic(
        file=file,
        line=3,
        column=5,
        code=code,
        message="Cannot find name 'x'.",
        category=category,
    )


def test_prefixed_ids_sort_by_creation_time() -> None:
    first = generate_checkpoint_id(timestamp_ms=1_000)
    second = generate_checkpoint_id(timestamp_ms=2_000)

    validate_checkpoint_id(first)
    assert first < second
    assert parse_ulid_timestamp_ms(first.split("-", 1)[1]) == 1_000
    assert len(short_id(second)) == 8


def test_validate_prefixed_id_rejects_wrong_prefix() -> None:
    with pytest.raises(ValueError, match="expected prefix"):
        validate_prefixed_id(generate_run_id(), "checkpoint")


def test_diagnostic_round_trips_through_dict() -> None:
    diagnostic = _diagnostic()
    payload = diagnostic.to_dict()

    assert payload["severity"] == "error"
    assert Diagnostic.from_dict(payload) == diagnostic
    assert diagnostic.key == ("src/a.ts", 3, 5, "TS2304")


def test_diagnostic_rejects_unknown_fields_and_bad_values() -> None:
    with pytest.raises(ValueError, match="unexpected fields"):
        Diagnostic.from_dict({**_diagnostic().to_dict(), "extra": 1})
    with pytest.raises(ValueError, match="Diagnostic.line"):
        Diagnostic(file="a", line=-1, column=0, code="X", message="m", category="Type")
    with pytest.raises(ValueError, match="Diagnostic.severity"):
        Diagnostic.from_dict({**_diagnostic().to_dict(), "severity": "fatal"})


def test_edit_command_requires_fields_per_kind() -> None:
    with pytest.raises(ValueError, match="insert requires"):
        EditCommand(kind=EditKind.INSERT, file="a.ts", replacement="x")
    with pytest.raises(ValueError, match="EditCommand.target_file"):
        EditCommand(kind=EditKind.MOVE, file="a.ts")
    with pytest.raises(ValueError, match="invalid regular expression"):
        EditCommand.replace("a.ts", "x", pattern="(")


def test_edit_command_from_dict_builds_position() -> None:
    command = EditCommand.from_dict(
        {"kind": "insert", "file": "a.ts", "position": {"line": 2}, "replacement": "// x"}
    )

    assert command.position == Position(2, 0)
    assert command.touched_files == ("a.ts",)
    assert EditCommand.copy("a.ts", "b.ts").touched_files == ("a.ts", "b.ts")


def test_repair_script_collects_affected_files_in_order() -> None:
    script = RepairScript(
        script_id="s1",
        category="Type",
        target_diagnostics=(_diagnostic(),),
        commands=(
            EditCommand.replace("b.ts", "x"),
            EditCommand.move("a.ts", "c.ts"),
            EditCommand.replace("b.ts", "y"),
        ),
    )

    assert script.affected_files == ("b.ts", "a.ts", "c.ts")


def test_validation_check_from_dict_and_timeout_guard() -> None:
    check = ValidationCheck.from_dict(
        {"type": "typecheck", "command": "tsc --noEmit", "policy": "improved-count"}
    )

    assert check.policy is ResultPolicy.IMPROVED_COUNT
    with pytest.raises(ValueError, match="must be > 0"):
        ValidationCheck(check_type="t", command="true", timeout_seconds=0)


def test_diagnostic_summary_counts_by_dimension() -> None:
    summary = DiagnosticSummary.from_diagnostics(
        [
            _diagnostic(),
            _diagnostic(file="src/b.ts"),
            Diagnostic(
                file="src/b.ts",
                line=1,
                column=0,
                code="TS1005",
                message="';' expected.",
                category="Syntax",
                severity=DiagnosticSeverity.WARNING,
            ),
        ]
    )

    assert summary.total == 3
    assert summary.by_category == {"Syntax": 1, "Type": 2}
    assert summary.by_file == {"src/a.ts": 1, "src/b.ts": 2}
    assert list(summary.by_code) == ["TS2304", "TS1005"]
    assert summary.by_severity == {"error": 2, "warning": 1}
