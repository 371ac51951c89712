"""Analyzer and report-renderer contracts plus the built-in diagnostic sources."""

from __future__ import annotations

import json
import logging
import shlex
from collections.abc import Awaitable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

from repair_orchestrator.domain.models import Diagnostic, DiagnosticCategory
from repair_orchestrator.errors import ConfigurationError, ProcessFailure
from repair_orchestrator.supervisor.runner import CommandSpec
from repair_orchestrator.validation.policy import PARSED_DIAGNOSTIC_CATEGORY, parse_diagnostics

if TYPE_CHECKING:
    from repair_orchestrator.execution.orchestrator import ExecutionResult
    from repair_orchestrator.validation.engine import CommandRunner
    from repair_orchestrator.validation.models import ValidationReport

logger = logging.getLogger(__name__)

_IMPORT_CODES: Final[frozenset[str]] = frozenset({"TS2305", "TS2307", "TS2503", "TS2875"})
_LOGIC_CODES: Final[frozenset[str]] = frozenset({"TS2300", "TS6133"})


@runtime_checkable
class DiagnosticAnalyzer(Protocol):
    def analyze(self, root: Path) -> Sequence[Diagnostic] | Awaitable[Sequence[Diagnostic]]: ...


@runtime_checkable
class ReportRenderer(Protocol):
    def render(
        self,
        initial: Sequence[Diagnostic],
        execution_result: ExecutionResult,
        validation_reports: Sequence[ValidationReport],
    ) -> tuple[Path, ...] | Awaitable[tuple[Path, ...]]: ...


def categorize_code(code: str) -> str:
    """Map a TypeScript diagnostic code onto a repair category."""

    if code in _IMPORT_CODES:
        return DiagnosticCategory.IMPORT.value
    if code in _LOGIC_CODES:
        return DiagnosticCategory.LOGIC.value
    if not code.startswith("TS") or not code[2:].isdigit():
        return PARSED_DIAGNOSTIC_CATEGORY
    number = int(code[2:])
    if 1000 <= number < 2000:
        return DiagnosticCategory.SYNTAX.value
    if 2000 <= number < 3000 or 7000 <= number < 8000 or 18000 <= number < 19000:
        return DiagnosticCategory.TYPE.value
    return PARSED_DIAGNOSTIC_CATEGORY


def parse_diagnostics_payload(payload: object, source: str) -> tuple[Diagnostic, ...]:
    """Accept either a list of diagnostic objects or ``{"diagnostics": [...]}``."""

    items = payload
    if isinstance(payload, Mapping):
        items = payload.get("diagnostics")
    if not isinstance(items, list):
        raise ConfigurationError(
            f"{source}: expected a list of diagnostics or an object with a 'diagnostics' list"
        )
    diagnostics: list[Diagnostic] = []
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ConfigurationError(f"{source}: diagnostics[{index}] must be an object")
        try:
            diagnostics.append(Diagnostic.from_dict(item))
        except ValueError as exc:
            raise ConfigurationError(f"{source}: diagnostics[{index}]: {exc}") from exc
    return tuple(diagnostics)


def load_diagnostics_file(path: str | Path) -> tuple[Diagnostic, ...]:
    target = Path(path)
    try:
        payload = json.loads(target.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"cannot read diagnostics file {target}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"invalid JSON in diagnostics file {target}: {exc}") from exc
    return parse_diagnostics_payload(payload, str(target))


class JsonDiagnosticsAnalyzer:
    """Reads diagnostics from a JSON file, relative paths resolving against the analyzed root."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def analyze(self, root: Path) -> tuple[Diagnostic, ...]:
        target = self._path if self._path.is_absolute() else root / self._path
        diagnostics = load_diagnostics_file(target)
        logger.info("loaded %d diagnostic(s) from %s", len(diagnostics), target)
        return diagnostics


class CommandDiagnosticsAnalyzer:
    """
    Runs a compiler command under supervision and parses its ``file(line,col): error`` lines.

    Codes are categorized with ``categorize_code``. A command that cannot be spawned or times
    out raises ``ProcessFailure``; a nonzero exit is expected when diagnostics exist.
    """

    def __init__(
        self,
        runner: CommandRunner,
        command: str,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        argv = tuple(shlex.split(command))
        if not argv:
            raise ConfigurationError("analyzer command must not be empty")
        self._runner = runner
        self._argv = argv
        self._timeout_seconds = timeout_seconds

    async def analyze(self, root: Path) -> tuple[Diagnostic, ...]:
        outcome = await self._runner.run(
            CommandSpec(
                argv=self._argv,
                cwd=str(root),
                timeout_seconds=self._timeout_seconds,
                name="analyze",
            )
        )
        if outcome.error is not None or outcome.timed_out:
            raise ProcessFailure(
                f"analyzer command {self._argv[0]} failed: {outcome.error or 'timed out'}",
                outcome,
            )
        parsed = parse_diagnostics(outcome.output)
        diagnostics = tuple(
            Diagnostic(
                file=item.file,
                line=item.line,
                column=item.column,
                code=item.code,
                message=item.message,
                category=categorize_code(item.code),
                severity=item.severity,
            )
            for item in parsed
        )
        logger.info("analyzer command reported %d diagnostic(s)", len(diagnostics))
        return diagnostics


class StaticDiagnosticsAnalyzer:
    """Serves a fixed diagnostic set; used by callers that already hold diagnostics."""

    def __init__(self, diagnostics: Sequence[Diagnostic]) -> None:
        self._diagnostics = tuple(diagnostics)

    def analyze(self, root: Path) -> tuple[Diagnostic, ...]:
        return self._diagnostics


__all__ = [
    "CommandDiagnosticsAnalyzer",
    "DiagnosticAnalyzer",
    "JsonDiagnosticsAnalyzer",
    "ReportRenderer",
    "StaticDiagnosticsAnalyzer",
    "categorize_code",
    "load_diagnostics_file",
    "parse_diagnostics_payload",
]
