"""Built-in validation suites and YAML suite loading."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Final

import yaml

from repair_orchestrator.domain.models import ResultPolicy, ValidationCheck
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.validation.models import ValidationSuite

TYPECHECK_BASIC: Final[str] = "typecheck-basic"
CODE_QUALITY: Final[str] = "code-quality"
FULL_VALIDATION: Final[str] = "full-validation"

IMPROVEMENT_CHECK_TYPE: Final[str] = "error-count-improvement"
DEFAULT_IMPROVEMENT_CHECK: Final[ValidationCheck] = ValidationCheck(
    check_type=IMPROVEMENT_CHECK_TYPE,
    command="npx tsc --noEmit --skipLibCheck {files}",
    policy=ResultPolicy.IMPROVED_COUNT,
    timeout_seconds=120.0,
    description="Compare type-check error count against the pre-repair baseline",
)


def builtin_suites() -> tuple[ValidationSuite, ...]:
    return (
        ValidationSuite(
            suite_id=TYPECHECK_BASIC,
            name="Type-check Basic Validation",
            description="Compile-only type check of the edited files",
            parallel=False,
            continue_on_failure=True,
            checks=(
                ValidationCheck(
                    check_type="typescript-compilation",
                    command="npx tsc --noEmit --skipLibCheck {files}",
                    policy=ResultPolicy.ZERO_ERRORS,
                    timeout_seconds=120.0,
                ),
            ),
        ),
        ValidationSuite(
            suite_id=CODE_QUALITY,
            name="Code Quality Validation",
            description="Lint and format checks of the edited files",
            parallel=True,
            continue_on_failure=True,
            checks=(
                ValidationCheck(
                    check_type="eslint",
                    command="npx eslint {files}",
                    policy=ResultPolicy.IMPROVED_COUNT,
                    timeout_seconds=60.0,
                ),
                ValidationCheck(
                    check_type="prettier",
                    command="npx prettier --check {files}",
                    policy=ResultPolicy.SUCCESS,
                    timeout_seconds=30.0,
                ),
            ),
        ),
        ValidationSuite(
            suite_id=FULL_VALIDATION,
            name="Full Project Validation",
            description="Whole-project type check, lint, format, build and tests",
            parallel=False,
            continue_on_failure=False,
            checks=(
                ValidationCheck(
                    check_type="typescript-compilation",
                    command="npx tsc --noEmit --skipLibCheck",
                    policy=ResultPolicy.ZERO_ERRORS,
                    timeout_seconds=180.0,
                ),
                ValidationCheck(
                    check_type="eslint",
                    command="npx eslint src/**/*.ts",
                    policy=ResultPolicy.IMPROVED_COUNT,
                    timeout_seconds=90.0,
                ),
                ValidationCheck(
                    check_type="prettier",
                    command="npx prettier --check src/**/*.ts",
                    policy=ResultPolicy.SUCCESS,
                    timeout_seconds=30.0,
                ),
                ValidationCheck(
                    check_type="build",
                    command="npm run build",
                    policy=ResultPolicy.SUCCESS,
                    timeout_seconds=300.0,
                ),
                ValidationCheck(
                    check_type="unit-tests",
                    command="npm test",
                    policy=ResultPolicy.SUCCESS,
                    timeout_seconds=300.0,
                ),
            ),
        ),
    )


def parse_suites(payload: object, *, source: str = "<suites>") -> tuple[ValidationSuite, ...]:
    """Parse ``{"suites": [...]}`` (or a bare list) into validated suites."""

    raw = payload.get("suites") if isinstance(payload, Mapping) else payload
    if not isinstance(raw, list):
        raise ConfigurationError(f"{source}: expected a list of suites under 'suites'")
    suites: list[ValidationSuite] = []
    seen: set[str] = set()
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise ConfigurationError(f"{source}: suites[{index}] must be a mapping")
        try:
            suite = ValidationSuite.from_dict(item)
        except ValueError as exc:
            raise ConfigurationError(f"{source}: suites[{index}]: {exc}") from exc
        if suite.suite_id in seen:
            raise ConfigurationError(f"{source}: duplicate suite id {suite.suite_id!r}")
        seen.add(suite.suite_id)
        suites.append(suite)
    return tuple(suites)


def load_suites_yaml(path: str | Path) -> tuple[ValidationSuite, ...]:
    suite_path = Path(path)
    try:
        text = suite_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"unable to read validation suites {suite_path}: {exc}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {suite_path}: {exc}") from exc
    if payload is None:
        return ()
    return parse_suites(payload, source=str(suite_path))


__all__ = [
    "CODE_QUALITY",
    "DEFAULT_IMPROVEMENT_CHECK",
    "FULL_VALIDATION",
    "IMPROVEMENT_CHECK_TYPE",
    "TYPECHECK_BASIC",
    "builtin_suites",
    "load_suites_yaml",
    "parse_suites",
]
