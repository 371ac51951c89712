"""Result-policy interpretation of validation command outcomes."""

from __future__ import annotations

import re
import signal
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from repair_orchestrator.domain.models import Diagnostic, DiagnosticSeverity, ResultPolicy

if TYPE_CHECKING:
    from repair_orchestrator.domain.models import ValidationCheck
    from repair_orchestrator.supervisor.runner import CommandOutcome

TS_ERROR_MARKER_RE: Final[re.Pattern[str]] = re.compile(r"error TS\d+:")
ESLINT_SUMMARY_RE: Final[re.Pattern[str]] = re.compile(r"(\d+) error")
TSC_DIAGNOSTIC_RE: Final[re.Pattern[str]] = re.compile(
    r"^(.+?)\((\d+),(\d+)\):\s+error\s+(TS\d+):\s+(.+)$",
    re.MULTILINE,
)
PARSED_DIAGNOSTIC_CATEGORY: Final[str] = "Uncategorized"


@dataclass(frozen=True, slots=True)
class Interpretation:
    success: bool
    message: str
    error_count: int | None = None
    baseline: int | None = None
    compared: bool | None = None


def count_error_markers(output: str, marker: str | None = None) -> int:
    """
    Count errors reported in tool output.

    With a custom ``marker`` each regex match counts once. The default counts TypeScript
    ``error TSnnnn:`` markers plus the numbers in ESLint ``N error(s)`` summaries.
    """

    if marker is not None:
        return len(re.findall(marker, output, flags=re.MULTILINE))
    ts_count = len(TS_ERROR_MARKER_RE.findall(output))
    eslint_count = sum(int(match) for match in ESLINT_SUMMARY_RE.findall(output))
    return ts_count + eslint_count


def parse_diagnostics(output: str) -> tuple[Diagnostic, ...]:
    """Parse ``file(line,col): error TSnnnn: message`` lines from compiler output."""

    diagnostics: list[Diagnostic] = []
    for match in TSC_DIAGNOSTIC_RE.finditer(output):
        file, line, column, code, message = match.groups()
        diagnostics.append(
            Diagnostic(
                file=file.strip(),
                line=int(line),
                column=int(column),
                code=code,
                message=message.strip(),
                category=PARSED_DIAGNOSTIC_CATEGORY,
                severity=DiagnosticSeverity.ERROR,
            )
        )
    return tuple(diagnostics)


def interpret_outcome(
    check: ValidationCheck,
    outcome: CommandOutcome,
    *,
    baseline: int | None = None,
) -> Interpretation:
    """Decide pass/fail for one command outcome under ``check.policy``."""

    if outcome.error is not None and not outcome.timed_out:
        return Interpretation(success=False, message=f"Check could not run: {outcome.error}")
    if outcome.timed_out:
        reason = outcome.termination_reason or "timeout"
        return Interpretation(success=False, message=f"Check timed out: {reason}")
    if outcome.signal is not None:
        return Interpretation(
            success=False,
            message=f"Process killed with signal: {_signal_name(outcome.signal)}",
        )

    output = outcome.output
    if check.policy is ResultPolicy.SUCCESS:
        if outcome.exit_code == 0:
            return Interpretation(success=True, message="Check passed successfully")
        return Interpretation(
            success=False, message=f"Check failed with exit code: {outcome.exit_code}"
        )

    count = count_error_markers(output, check.error_marker)
    if check.policy is ResultPolicy.ZERO_ERRORS:
        if count == 0:
            return Interpretation(success=True, message="No errors found", error_count=0)
        return Interpretation(success=False, message=f"Found {count} errors", error_count=count)

    if baseline is None:
        return Interpretation(
            success=True,
            message=f"Found {count} errors; no baseline to compare against",
            error_count=count,
            compared=False,
        )
    success = count < baseline or count == 0
    if success:
        message = f"Error count improved: {baseline} -> {count}"
    else:
        message = f"No improvement: {baseline} -> {count}"
    return Interpretation(
        success=success,
        message=message,
        error_count=count,
        baseline=baseline,
        compared=True,
    )


def _signal_name(number: int) -> str:
    try:
        return signal.Signals(number).name
    except ValueError:
        return str(number)


__all__ = [
    "ESLINT_SUMMARY_RE",
    "PARSED_DIAGNOSTIC_CATEGORY",
    "TSC_DIAGNOSTIC_RE",
    "TS_ERROR_MARKER_RE",
    "Interpretation",
    "count_error_markers",
    "interpret_outcome",
    "parse_diagnostics",
]
