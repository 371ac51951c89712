"""Unit tests for command placeholders, result policies, and suite loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from repair_orchestrator.domain.models import ResultPolicy, ValidationCheck
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.supervisor.runner import CommandOutcome
from repair_orchestrator.validation.models import ValidationContext
from repair_orchestrator.validation.placeholders import PlaceholderTable
from repair_orchestrator.validation.policy import (
    PARSED_DIAGNOSTIC_CATEGORY,
    count_error_markers,
    interpret_outcome,
    parse_diagnostics,
)
from repair_orchestrator.validation.suites import (
    CODE_QUALITY,
    FULL_VALIDATION,
    TYPECHECK_BASIC,
    builtin_suites,
    load_suites_yaml,
    parse_suites,
)


def _outcome(**overrides: object) -> CommandOutcome:
    values: dict[str, object] = {
        "process_id": "proc-1",
        "argv": ("tool",),
        "exit_code": 0,
        "stdout": "",
        "stderr": "",
        "duration_ms": 1,
    }
    values.update(overrides)
    return CommandOutcome(**values)  # type: ignore[arg-type]


def test_files_placeholder_expands_one_argument_per_file() -> None:
    table = PlaceholderTable.from_context(
        ValidationContext(files=("a b.ts", "c.ts"), project_root=Path("/repo"))
    )

    argv = table.expand("npx eslint --fix {files} --root={project_root} {unknown}")

    assert argv == ("npx", "eslint", "--fix", "a b.ts", "c.ts", "--root=/repo", "{unknown}")
    assert table.substitute("files: {files}; first: {file}") == "files: a b.ts c.ts; first: a b.ts"


@given(files=st.lists(st.from_regex(r"[a-z]{1,8}\.ts", fullmatch=True), max_size=6))
@settings(max_examples=40, deadline=None)
def test_files_placeholder_never_merges_or_splits_paths(files: list[str]) -> None:
    table = PlaceholderTable.from_context(ValidationContext(files=tuple(files)))

    assert table.expand("tsc {files}") == ("tsc", *files)


def test_placeholder_table_rejects_bad_templates_and_duplicate_names() -> None:
    table = PlaceholderTable()
    with pytest.raises(ConfigurationError, match="invalid command template"):
        table.expand("echo 'unterminated")
    with pytest.raises(ConfigurationError, match="expanded to nothing"):
        PlaceholderTable(lists={"files": ()}).expand("{files}")
    with pytest.raises(ValueError, match="defined twice"):
        PlaceholderTable(scalars={"x": "1"}, lists={"x": ("a",)})


def test_count_error_markers_defaults_and_custom_marker() -> None:
    output = "a.ts(1,1): error TS1005: ';' expected.\nb.ts(2,2): error TS2304: x\n\n4 errors found\n"

    assert count_error_markers(output) == 2 + 4
    assert count_error_markers(output, r"^b\.ts") == 1


def test_parse_diagnostics_reads_compiler_lines() -> None:
    diagnostics = parse_diagnostics(
        "src/x.ts(12,4): error TS2339: Property 'y' does not exist on type 'X'.\nnoise\n"
    )

    assert len(diagnostics) == 1
    assert diagnostics[0].key == ("src/x.ts", 12, 4, "TS2339")
    assert diagnostics[0].category == PARSED_DIAGNOSTIC_CATEGORY


def test_interpret_outcome_reports_signals_timeouts_and_spawn_errors() -> None:
    check = ValidationCheck(check_type="t", command="t")

    assert interpret_outcome(check, _outcome(exit_code=-9, signal=9)).message == (
        "Process killed with signal: SIGKILL"
    )
    assert interpret_outcome(
        check, _outcome(exit_code=None, timed_out=True, termination_reason="timeout after 1s")
    ).message == "Check timed out: timeout after 1s"
    assert interpret_outcome(
        check, _outcome(exit_code=None, error="No such file or directory")
    ).message.startswith("Check could not run")


def test_improved_count_treats_zero_errors_as_success() -> None:
    check = ValidationCheck(check_type="t", command="t", policy=ResultPolicy.IMPROVED_COUNT)

    result = interpret_outcome(check, _outcome(exit_code=0), baseline=0)

    assert result.success
    assert result.compared


def test_builtin_suites_cover_the_standard_ids() -> None:
    suites = {suite.suite_id: suite for suite in builtin_suites()}

    assert set(suites) == {TYPECHECK_BASIC, CODE_QUALITY, FULL_VALIDATION}
    assert suites[CODE_QUALITY].parallel
    assert not suites[FULL_VALIDATION].continue_on_failure


def test_load_suites_yaml_parses_and_rejects_duplicates(tmp_path: Path) -> None:
    path = tmp_path / "suites.yaml"
    path.write_text(
        """
suites:
  - id: quick
    name: Quick
    parallel: true
    checks:
      - type: lint
        command: npx eslint {files}
        policy: improved-count
        timeout_seconds: 30
""".lstrip(),
        encoding="utf-8",
    )

    (suite,) = load_suites_yaml(path)
    duplicate = {"id": "a", "checks": [{"type": "lint", "command": "npx eslint"}]}

    assert suite.suite_id == "quick"
    assert suite.checks[0].policy is ResultPolicy.IMPROVED_COUNT
    assert suite.checks[0].timeout_seconds == 30.0
    with pytest.raises(ConfigurationError, match="duplicate suite id"):
        parse_suites({"suites": [duplicate, duplicate]})


def test_load_suites_yaml_reports_bad_input(tmp_path: Path) -> None:
    broken = tmp_path / "broken.yaml"
    broken.write_text("suites: [\n", encoding="utf-8")
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="invalid YAML"):
        load_suites_yaml(broken)
    with pytest.raises(ConfigurationError, match="unable to read"):
        load_suites_yaml(tmp_path / "missing.yaml")
    assert load_suites_yaml(empty) == ()
