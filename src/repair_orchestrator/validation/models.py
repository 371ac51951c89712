"""Validation suite, context, result and report models."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import cast

from repair_orchestrator.domain.models import (
    CanonicalModel,
    JSONValue,
    ValidationCheck,
    serialize_value,
)


@dataclass(frozen=True, slots=True)
class ValidationSuite(CanonicalModel):
    """Named, ordered list of checks plus execution-mode flags."""

    suite_id: str
    name: str
    checks: tuple[ValidationCheck, ...]
    description: str = ""
    parallel: bool = False
    continue_on_failure: bool = True

    def __post_init__(self) -> None:
        if not self.suite_id.strip():
            raise ValueError("ValidationSuite.suite_id: must not be empty")
        checks = tuple(self.checks)
        if not checks:
            raise ValueError("ValidationSuite.checks: must contain at least one check")
        for index, check in enumerate(checks):
            if not isinstance(check, ValidationCheck):
                raise ValueError(f"ValidationSuite.checks[{index}]: expected ValidationCheck")
        object.__setattr__(self, "checks", checks)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ValidationSuite:
        suite_id = data.get("id")
        if not isinstance(suite_id, str):
            raise ValueError("ValidationSuite.id: expected string")
        raw_checks = data.get("checks")
        if not isinstance(raw_checks, list):
            raise ValueError(f"ValidationSuite[{suite_id}].checks: expected list")
        checks: list[ValidationCheck] = []
        for index, item in enumerate(raw_checks):
            if not isinstance(item, Mapping):
                raise ValueError(f"ValidationSuite[{suite_id}].checks[{index}]: expected object")
            checks.append(ValidationCheck.from_dict(item))
        name = data.get("name", suite_id)
        description = data.get("description", "")
        parallel = data.get("parallel", False)
        continue_on_failure = data.get("continue_on_failure", True)
        if not isinstance(parallel, bool) or not isinstance(continue_on_failure, bool):
            raise ValueError(
                f"ValidationSuite[{suite_id}]: parallel and continue_on_failure must be booleans"
            )
        return cls(
            suite_id=suite_id,
            name=name if isinstance(name, str) else suite_id,
            checks=tuple(checks),
            description=description if isinstance(description, str) else "",
            parallel=parallel,
            continue_on_failure=continue_on_failure,
        )


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """
    Closed set of values a check command may reference.

    ``baseline_error_count`` applies to every ``improved-count`` check; ``baselines`` overrides
    it per check type. ``values`` holds extra named placeholders.
    """

    files: tuple[str, ...] = ()
    project_root: Path = field(default_factory=Path.cwd)
    baseline_error_count: int | None = None
    baselines: Mapping[str, int] = field(default_factory=dict)
    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", tuple(str(item) for item in self.files))
        object.__setattr__(self, "project_root", Path(self.project_root))
        if self.baseline_error_count is not None and self.baseline_error_count < 0:
            raise ValueError("ValidationContext.baseline_error_count: must be >= 0")
        object.__setattr__(self, "baselines", MappingProxyType(dict(self.baselines)))
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def baseline_for(self, check_type: str) -> int | None:
        return self.baselines.get(check_type, self.baseline_error_count)

    def with_baseline(self, count: int) -> ValidationContext:
        return ValidationContext(
            files=self.files,
            project_root=self.project_root,
            baseline_error_count=count,
            baselines=self.baselines,
            values=self.values,
        )


@dataclass(frozen=True, slots=True)
class ValidationResult(CanonicalModel):
    check_type: str
    success: bool
    message: str
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    attempts: int = 1
    exit_code: int | None = None
    output: str = ""
    error_count: int | None = None
    timed_out: bool = False
    skipped: bool = False
    details: Mapping[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "details",
            MappingProxyType(cast("dict[str, JSONValue]", serialize_value(self.details, "details"))),
        )

    @property
    def before_count(self) -> int | None:
        return _int_detail(self.details, "before_count")

    @property
    def after_count(self) -> int | None:
        return _int_detail(self.details, "after_count")

    @property
    def improvement(self) -> int | None:
        return _int_detail(self.details, "improvement")

    @classmethod
    def skipped_check(cls, check: ValidationCheck, reason: str) -> ValidationResult:
        return cls(check_type=check.check_type, success=False, message=reason, skipped=True)


@dataclass(frozen=True, slots=True)
class ValidationReport(CanonicalModel):
    suite_id: str
    results: tuple[ValidationResult, ...]
    duration_ms: int
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def skipped(self) -> int:
        return sum(1 for result in self.results if result.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.success and not result.skipped)

    @property
    def overall_success(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @property
    def summary(self) -> str:
        if self.overall_success:
            return f"All {self.total} validation checks passed successfully"
        text = f"{self.passed}/{self.total} checks passed, {self.failed} failed"
        if self.skipped:
            text = f"{text}, {self.skipped} skipped"
        return text

    def failures(self) -> Sequence[ValidationResult]:
        return tuple(result for result in self.results if not result.success and not result.skipped)

    def to_dict(self) -> dict[str, JSONValue]:
        payload = CanonicalModel.to_dict(self)
        payload.update(
            {
                "total": self.total,
                "passed": self.passed,
                "failed": self.failed,
                "skipped": self.skipped,
                "overall_success": self.overall_success,
                "summary": self.summary,
            }
        )
        return payload


def _int_detail(details: Mapping[str, JSONValue], key: str) -> int | None:
    value = details.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


__all__ = [
    "ValidationContext",
    "ValidationReport",
    "ValidationResult",
    "ValidationSuite",
]
