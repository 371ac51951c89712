"""
repair-orchestrator — validation engine

Purpose
- Run named suites of external checks (compile, lint, format, build, tests) and decide
  pass/fail per check from its result policy.

Functional requirements
- Sequential suites stop at the first failure unless ``continue_on_failure`` holds.
- Parallel suites run in batches of at most ``max_concurrent_checks``; a failing check never
  cancels its siblings.
- Failed checks are retried ``retry_attempts`` times with a fixed delay.
- The per-check timeout is enforced by the runner and again by a secondary timer with grace.
- ``stop_all_checks`` cancels in-flight checks and refuses new ones until ``reset``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from repair_orchestrator.constants import (
    CHECK_OUTPUT_DETAIL_CHARS,
    DEFAULT_CHECK_TIMEOUT_SECONDS,
    DEFAULT_MAX_CONCURRENT_CHECKS,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY_SECONDS,
    SECONDARY_TIMEOUT_GRACE_SECONDS,
)
from repair_orchestrator.domain.models import JSONValue, ValidationCheck
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.observability.events import EventType, ListenerRegistry
from repair_orchestrator.supervisor.runner import CommandOutcome, CommandSpec
from repair_orchestrator.utils.concurrency import CancellationToken, batched, run_with_timeout
from repair_orchestrator.validation.models import (
    ValidationContext,
    ValidationReport,
    ValidationResult,
    ValidationSuite,
)
from repair_orchestrator.validation.placeholders import PlaceholderTable
from repair_orchestrator.validation.policy import (
    count_error_markers,
    interpret_outcome,
    parse_diagnostics,
)
from repair_orchestrator.validation.suites import DEFAULT_IMPROVEMENT_CHECK, builtin_suites

logger = logging.getLogger(__name__)

_STOPPED_MESSAGE = "skipped: validation stopped"
_FAIL_FAST_MESSAGE = "skipped: earlier check failed"


class CommandRunner(Protocol):
    async def run(self, spec: CommandSpec) -> CommandOutcome: ...


@dataclass(frozen=True, slots=True)
class ValidationSettings:
    timeout_seconds: float = DEFAULT_CHECK_TIMEOUT_SECONDS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    max_concurrent_checks: int = DEFAULT_MAX_CONCURRENT_CHECKS
    continue_on_failure: bool = True
    parallel_execution: bool = True
    secondary_timeout_grace_seconds: float = SECONDARY_TIMEOUT_GRACE_SECONDS
    output_detail_chars: int = CHECK_OUTPUT_DETAIL_CHARS

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("ValidationSettings.timeout_seconds: must be > 0")
        if self.retry_attempts < 0:
            raise ValueError("ValidationSettings.retry_attempts: must be >= 0")
        if self.retry_delay_seconds < 0:
            raise ValueError("ValidationSettings.retry_delay_seconds: must be >= 0")
        if self.max_concurrent_checks <= 0:
            raise ValueError("ValidationSettings.max_concurrent_checks: must be > 0")
        if self.secondary_timeout_grace_seconds < 0:
            raise ValueError("ValidationSettings.secondary_timeout_grace_seconds: must be >= 0")
        if self.output_detail_chars <= 0:
            raise ValueError("ValidationSettings.output_detail_chars: must be > 0")

    @classmethod
    def from_config(cls, section: Mapping[str, object]) -> ValidationSettings:
        known = {name: section[name] for name in cls.__dataclass_fields__ if name in section}
        return cls(**known)  # type: ignore[arg-type]


class ValidationEngine:
    def __init__(
        self,
        runner: CommandRunner,
        settings: ValidationSettings | None = None,
        *,
        project_root: str | Path | None = None,
        listeners: ListenerRegistry | None = None,
        suites: Iterable[ValidationSuite] | None = None,
    ) -> None:
        self._runner = runner
        self._settings = settings if settings is not None else ValidationSettings()
        self._project_root = Path(project_root) if project_root is not None else Path.cwd()
        self._listeners = listeners if listeners is not None else ListenerRegistry("validation")
        self._suites: dict[str, ValidationSuite] = {}
        self._token = CancellationToken()
        self._in_flight = 0
        for suite in builtin_suites() if suites is None else suites:
            self.register_suite(suite)

    @property
    def settings(self) -> ValidationSettings:
        return self._settings

    @property
    def listeners(self) -> ListenerRegistry:
        return self._listeners

    @property
    def stopped(self) -> bool:
        return self._token.is_cancelled

    def register_suite(self, suite: ValidationSuite) -> None:
        """Register ``suite``, replacing any suite with the same id."""

        if suite.suite_id in self._suites:
            logger.info("replacing validation suite %s", suite.suite_id)
        self._suites[suite.suite_id] = suite

    def get_suite(self, suite_id: str) -> ValidationSuite:
        suite = self._suites.get(suite_id)
        if suite is None:
            raise ConfigurationError(f"unknown validation suite: {suite_id}")
        return suite

    def suites(self) -> tuple[ValidationSuite, ...]:
        return tuple(self._suites.values())

    def context_for(self, files: Sequence[str] = (), **kwargs: object) -> ValidationContext:
        """Build a context rooted at the engine's project root."""

        return ValidationContext(  # type: ignore[arg-type]
            files=tuple(files), project_root=self._project_root, **kwargs
        )

    async def run_suite(self, suite_id: str, context: ValidationContext) -> ValidationReport:
        suite = self.get_suite(suite_id)
        started_ns = time.monotonic_ns()
        started_at = datetime.now(tz=UTC)
        continue_on_failure = suite.continue_on_failure and self._settings.continue_on_failure
        parallel = suite.parallel and self._settings.parallel_execution
        self._listeners.emit(
            EventType.SUITE_STARTED,
            {"suite_id": suite.suite_id, "checks": len(suite.checks), "parallel": parallel},
        )

        if parallel:
            results = await self._run_parallel(suite.checks, context, continue_on_failure)
        else:
            results = await self._run_sequential(suite.checks, context, continue_on_failure)

        report = ValidationReport(
            suite_id=suite.suite_id,
            results=tuple(results),
            duration_ms=_elapsed_ms(started_ns),
            started_at=started_at,
        )
        logger.info("validation suite %s: %s", suite.suite_id, report.summary)
        self._listeners.emit(
            EventType.SUITE_COMPLETED,
            {
                "suite_id": suite.suite_id,
                "passed": report.passed,
                "failed": report.failed,
                "skipped": report.skipped,
                "summary": report.summary,
            },
        )
        return report

    async def run_check(
        self,
        check: ValidationCheck,
        context: ValidationContext,
    ) -> ValidationResult:
        """Run one check, retrying failures up to ``retry_attempts`` times."""

        result: ValidationResult | None = None
        total_attempts = self._settings.retry_attempts + 1
        for attempt in range(1, total_attempts + 1):
            if self.stopped:
                break
            result = await self._run_once(check, context, attempt=attempt)
            if result.success or result.skipped or attempt == total_attempts:
                break
            logger.info(
                "check %s failed (attempt %d/%d); retrying in %.1fs",
                check.check_type,
                attempt,
                total_attempts,
                self._settings.retry_delay_seconds,
            )
            await asyncio.sleep(self._settings.retry_delay_seconds)

        if result is None:
            return ValidationResult.skipped_check(check, _STOPPED_MESSAGE)
        event = EventType.CHECK_PASSED if result.success else EventType.CHECK_FAILED
        if not result.skipped:
            self._listeners.emit(
                event,
                {
                    "check_type": check.check_type,
                    "message": result.message,
                    "attempts": result.attempts,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    async def validate_error_count_improvement(
        self,
        files: Sequence[str],
        before_count: int,
        check: ValidationCheck | None = None,
    ) -> ValidationResult:
        """Run the improvement check once and compare its error count with ``before_count``."""

        if before_count < 0:
            raise ValueError("before_count must be >= 0")
        improvement_check = check if check is not None else DEFAULT_IMPROVEMENT_CHECK
        context = ValidationContext(
            files=tuple(files),
            project_root=self._project_root,
            baseline_error_count=before_count,
        )
        outcome_result = await self._run_once(improvement_check, context, attempt=1)
        if (
            outcome_result.skipped
            or outcome_result.timed_out
            or outcome_result.exit_code is None
            or outcome_result.exit_code < 0
            or "signal" in outcome_result.details
        ):
            # Killed or unfinished runs already carry a failed result.
            return outcome_result

        if improvement_check.error_marker is None:
            after_count = len(parse_diagnostics(outcome_result.output))
        else:
            after_count = count_error_markers(outcome_result.output, improvement_check.error_marker)
        improvement = before_count - after_count
        success = improvement > 0 or after_count == 0
        if success:
            message = (
                f"Error count improved: {before_count} -> {after_count} "
                f"({improvement} errors fixed)"
            )
        else:
            message = f"No improvement: {before_count} -> {after_count}"
        return ValidationResult(
            check_type=improvement_check.check_type,
            success=success,
            message=message,
            duration_ms=outcome_result.duration_ms,
            exit_code=outcome_result.exit_code,
            output=outcome_result.output,
            error_count=after_count,
            details={
                "before_count": before_count,
                "after_count": after_count,
                "improvement": improvement,
                "files": len(files),
            },
        )

    def stop_all_checks(self) -> int:
        """Cancel in-flight checks and refuse new ones until ``reset``; returns the in-flight count."""

        in_flight = self._in_flight
        if not self._token.is_cancelled:
            self._token.cancel()
            logger.warning("stopping %d in-flight validation check(s)", in_flight)
            self._listeners.emit(EventType.CHECKS_STOPPED, {"in_flight": in_flight})
        return in_flight

    def reset(self) -> None:
        self._token = CancellationToken()

    def statistics(self) -> dict[str, JSONValue]:
        return {
            "suites": sorted(self._suites),
            "in_flight": self._in_flight,
            "stopped": self.stopped,
            "settings": dict(asdict(self._settings)),
        }

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    async def _run_sequential(
        self,
        checks: Sequence[ValidationCheck],
        context: ValidationContext,
        continue_on_failure: bool,
    ) -> list[ValidationResult]:
        results: list[ValidationResult] = []
        halted_reason: str | None = None
        for check in checks:
            if halted_reason is None and self.stopped:
                halted_reason = _STOPPED_MESSAGE
            if halted_reason is not None:
                results.append(ValidationResult.skipped_check(check, halted_reason))
                continue
            result = await self.run_check(check, context)
            results.append(result)
            if not result.success and not result.skipped and not continue_on_failure:
                halted_reason = _FAIL_FAST_MESSAGE
        return results

    async def _run_parallel(
        self,
        checks: Sequence[ValidationCheck],
        context: ValidationContext,
        continue_on_failure: bool,
    ) -> list[ValidationResult]:
        results: list[ValidationResult] = []
        halted_reason: str | None = None
        for batch in batched(checks, self._settings.max_concurrent_checks):
            if halted_reason is None and self.stopped:
                halted_reason = _STOPPED_MESSAGE
            if halted_reason is not None:
                results.extend(ValidationResult.skipped_check(check, halted_reason) for check in batch)
                continue
            gathered = await asyncio.gather(
                *(self.run_check(check, context) for check in batch),
                return_exceptions=True,
            )
            for check, item in zip(batch, gathered, strict=True):
                if isinstance(item, ValidationResult):
                    results.append(item)
                elif isinstance(item, Exception):
                    logger.error("check %s raised: %s", check.check_type, item)
                    results.append(
                        ValidationResult(
                            check_type=check.check_type,
                            success=False,
                            message=f"Check raised {type(item).__name__}: {item}",
                        )
                    )
                else:
                    raise item
            if not continue_on_failure and any(
                not result.success and not result.skipped for result in results
            ):
                halted_reason = _FAIL_FAST_MESSAGE
        return results

    async def _run_once(
        self,
        check: ValidationCheck,
        context: ValidationContext,
        *,
        attempt: int,
    ) -> ValidationResult:
        argv = PlaceholderTable.from_context(context).expand(check.command)
        timeout = check.timeout_seconds or self._settings.timeout_seconds
        spec = CommandSpec(
            argv=argv,
            cwd=str(context.project_root),
            timeout_seconds=timeout,
            name=f"check:{check.check_type}",
        )
        self._listeners.emit(
            EventType.CHECK_STARTED,
            {"check_type": check.check_type, "argv": list(argv), "attempt": attempt},
        )

        started_ns = time.monotonic_ns()
        self._in_flight += 1
        try:
            outcome = await run_with_timeout(
                self._runner.run(spec),
                timeout + self._settings.secondary_timeout_grace_seconds,
                self._token,
            )
        except TimeoutError:
            logger.warning("check %s exceeded its secondary timeout", check.check_type)
            return ValidationResult(
                check_type=check.check_type,
                success=False,
                message=f"Check timed out after {timeout:g}s",
                duration_ms=_elapsed_ms(started_ns),
                attempts=attempt,
                timed_out=True,
            )
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self.stopped and (current is None or current.cancelling() == 0):
                return ValidationResult.skipped_check(check, _STOPPED_MESSAGE)
            raise
        finally:
            self._in_flight -= 1

        interpretation = interpret_outcome(
            check, outcome, baseline=context.baseline_for(check.check_type)
        )
        details: dict[str, object] = {
            "argv": list(argv),
            "exit_code": outcome.exit_code,
            "output": outcome.output[: self._settings.output_detail_chars],
        }
        if interpretation.compared is not None:
            details["compared"] = interpretation.compared
            details["baseline"] = interpretation.baseline
        if outcome.signal is not None:
            details["signal"] = outcome.signal
        return ValidationResult(
            check_type=check.check_type,
            success=interpretation.success,
            message=interpretation.message,
            duration_ms=_elapsed_ms(started_ns),
            attempts=attempt,
            exit_code=outcome.exit_code,
            output=outcome.output,
            error_count=interpretation.error_count,
            timed_out=outcome.timed_out,
            details=details,  # type: ignore[arg-type]
        )


def _elapsed_ms(started_ns: int) -> int:
    return max(time.monotonic_ns() - started_ns, 0) // 1_000_000


__all__ = ["CommandRunner", "ValidationEngine", "ValidationSettings"]
