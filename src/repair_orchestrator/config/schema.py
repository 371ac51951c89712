"""
repair-orchestrator — configuration schema and validation

Purpose
- Define the built-in configuration defaults and the strict rules every loaded
  configuration must satisfy.

Functional requirements
- Validate payloads and return structured issues (dotted field path + message); every
  issue is collected before failing.
- Profile overlays (dry-run, no-validation, strict) are partial sections merged onto the
  base config and re-validated.
- Secret-looking keys are rejected on input and redacted in dumps.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from repair_orchestrator.constants import (
    CHECK_OUTPUT_DETAIL_CHARS,
    CONFIG_SCHEMA_VERSION,
    CPU_THRESHOLD_PERCENT,
    DEFAULT_BACKUP_DIR,
    DEFAULT_CHECK_TIMEOUT_SECONDS,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_CHECKPOINTS,
    DEFAULT_MAX_CONCURRENT_CHECKS,
    DEFAULT_MEMORY_LIMIT_MB,
    DEFAULT_PROCESS_TIMEOUT_SECONDS,
    DEFAULT_REPORT_DIR,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY_SECONDS,
    DRY_RUN_COMMAND_DELAY_SECONDS,
    KILL_GRACE_SECONDS,
    MAX_PROCESS_TIMEOUT_SECONDS,
    MEMORY_ALERT_PERCENT,
    MEMORY_SAMPLE_INTERVAL_SECONDS,
    PROCESS_RETENTION_SECONDS,
    RESOURCE_SAMPLE_INTERVAL_SECONDS,
    SECONDARY_TIMEOUT_GRACE_SECONDS,
    SHUTDOWN_DEADLINE_SECONDS,
    SHUTDOWN_POLL_INTERVAL_SECONDS,
    STUCK_SCAN_INTERVAL_SECONDS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("dry-run", "no-validation", "strict")
REPORT_FORMAT_VALUES: Final[tuple[str, ...]] = ("json", "markdown", "html")
LOG_LEVEL_VALUES: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_FACTORY_REF_PATTERN = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "credential",
        "credentials",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("checkpoints", "backup_dir"),
    ("validation", "suites_file"),
    ("reporting", "output_dir"),
    ("observability", "log_dir"),
)

_OVERLAY_SECTIONS: Final[tuple[str, ...]] = (
    "workflow",
    "supervisor",
    "checkpoints",
    "execution",
    "validation",
    "reporting",
    "observability",
    "generators",
)


class MetaConfig(TypedDict):
    schema_version: int


class WorkflowConfig(TypedDict):
    dry_run: bool
    backup_enabled: bool
    validation_enabled: bool
    rollback_on_failure: bool
    continue_on_validation_failure: bool
    generate_reports: bool
    validation_suites: list[str]
    shutdown_deadline_seconds: float
    verify_command: str


class SupervisorConfig(TypedDict):
    default_timeout_seconds: float
    max_timeout_seconds: float
    kill_grace_seconds: float
    stuck_scan_interval_seconds: float
    resource_sample_interval_seconds: float
    memory_sample_interval_seconds: float
    default_memory_budget_mb: int
    memory_alert_percent: float
    cpu_threshold_percent: float
    retention_seconds: float
    shutdown_deadline_seconds: float
    shutdown_poll_interval_seconds: float


class CheckpointsConfig(TypedDict):
    backup_dir: str
    max_checkpoints: int
    use_vcs: bool


class ExecutionConfig(TypedDict):
    continue_on_failure: bool
    phase_validation_suite: str
    prefer_vcs_rollback: bool
    dry_run_command_delay_seconds: float


class ValidationConfig(TypedDict, total=False):
    timeout_seconds: float
    retry_attempts: int
    retry_delay_seconds: float
    max_concurrent_checks: int
    continue_on_failure: bool
    parallel_execution: bool
    secondary_timeout_grace_seconds: float
    output_detail_chars: int
    suites_file: str


class ReportingConfig(TypedDict):
    output_dir: str
    formats: list[str]


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    log_to_stdout: bool


class ProfileOverlay(TypedDict, total=False):
    workflow: dict[str, object]
    supervisor: dict[str, object]
    checkpoints: dict[str, object]
    execution: dict[str, object]
    validation: dict[str, object]
    reporting: dict[str, object]
    observability: dict[str, object]
    generators: dict[str, object]


class RepairConfig(TypedDict):
    meta: MetaConfig
    workflow: WorkflowConfig
    supervisor: SupervisorConfig
    checkpoints: CheckpointsConfig
    execution: ExecutionConfig
    validation: ValidationConfig
    reporting: ReportingConfig
    observability: ObservabilityConfig
    generators: dict[str, str]
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[RepairConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "workflow": {
        "dry_run": False,
        "backup_enabled": True,
        "validation_enabled": True,
        "rollback_on_failure": True,
        "continue_on_validation_failure": False,
        "generate_reports": True,
        "validation_suites": ["typecheck-basic", "code-quality"],
        "shutdown_deadline_seconds": SHUTDOWN_DEADLINE_SECONDS,
        "verify_command": "",
    },
    "supervisor": {
        "default_timeout_seconds": DEFAULT_PROCESS_TIMEOUT_SECONDS,
        "max_timeout_seconds": MAX_PROCESS_TIMEOUT_SECONDS,
        "kill_grace_seconds": KILL_GRACE_SECONDS,
        "stuck_scan_interval_seconds": STUCK_SCAN_INTERVAL_SECONDS,
        "resource_sample_interval_seconds": RESOURCE_SAMPLE_INTERVAL_SECONDS,
        "memory_sample_interval_seconds": MEMORY_SAMPLE_INTERVAL_SECONDS,
        "default_memory_budget_mb": DEFAULT_MEMORY_LIMIT_MB,
        "memory_alert_percent": MEMORY_ALERT_PERCENT,
        "cpu_threshold_percent": CPU_THRESHOLD_PERCENT,
        "retention_seconds": PROCESS_RETENTION_SECONDS,
        "shutdown_deadline_seconds": SHUTDOWN_DEADLINE_SECONDS,
        "shutdown_poll_interval_seconds": SHUTDOWN_POLL_INTERVAL_SECONDS,
    },
    "checkpoints": {
        "backup_dir": DEFAULT_BACKUP_DIR,
        "max_checkpoints": DEFAULT_MAX_CHECKPOINTS,
        "use_vcs": False,
    },
    "execution": {
        "continue_on_failure": False,
        "phase_validation_suite": "typecheck-basic",
        "prefer_vcs_rollback": False,
        "dry_run_command_delay_seconds": DRY_RUN_COMMAND_DELAY_SECONDS,
    },
    "validation": {
        "timeout_seconds": DEFAULT_CHECK_TIMEOUT_SECONDS,
        "retry_attempts": DEFAULT_RETRY_ATTEMPTS,
        "retry_delay_seconds": DEFAULT_RETRY_DELAY_SECONDS,
        "max_concurrent_checks": DEFAULT_MAX_CONCURRENT_CHECKS,
        "continue_on_failure": True,
        "parallel_execution": True,
        "secondary_timeout_grace_seconds": SECONDARY_TIMEOUT_GRACE_SECONDS,
        "output_detail_chars": CHECK_OUTPUT_DETAIL_CHARS,
    },
    "reporting": {
        "output_dir": DEFAULT_REPORT_DIR,
        "formats": ["json", "markdown"],
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": DEFAULT_LOG_DIR,
        "log_to_stdout": False,
    },
    "generators": {},
    "profiles": {
        "dry-run": {
            "workflow": {"dry_run": True},
        },
        "no-validation": {
            "workflow": {"validation_enabled": False},
        },
        "strict": {
            "workflow": {"continue_on_validation_failure": False, "rollback_on_failure": True},
            "execution": {"continue_on_failure": False},
            "validation": {"continue_on_failure": False},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> RepairConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade repair-orchestrator.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the repair-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base``; lists and scalars replace, mappings merge."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the result."""

    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized
    selected = profile.strip()

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    return assert_valid_config(merge_config(materialized, overlay_raw), active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return every issue found, with dotted paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected = active_profile.strip() if isinstance(active_profile, str) else None
    if selected:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected not in profiles:
            issues.add("profiles", f"profile {selected!r} is not defined")
        else:
            _validate_root(merge_config(normalized, profiles[selected]), issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a redacted copy safe for logs and the ``config`` command."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def dump_redacted(config: Mapping[str, object] | object) -> dict[str, Any]:
    return redact_config(config)


# ---------------------------------------------------------------------------
# Section validators
# ---------------------------------------------------------------------------


_SectionValidator = Callable[[Mapping[str, object], str, _IssueCollector, bool], dict[str, Any]]


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"meta", "profiles", *_OVERLAY_SECTIONS}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, allowed - {"profiles", "generators"}, "", issues)

    out: dict[str, Any] = {}
    for key in ("meta", *_OVERLAY_SECTIONS):
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is not None:
            out[key] = _SECTION_VALIDATORS[key](section, key, issues, False)

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles = _as_object(profiles_raw, "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, "profiles", issues)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    if not partial:
        _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_workflow(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    flags = {
        "dry_run",
        "backup_enabled",
        "validation_enabled",
        "rollback_on_failure",
        "continue_on_validation_failure",
        "generate_reports",
    }
    allowed = flags | {"validation_suites", "shutdown_deadline_seconds", "verify_command"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    _collect_bools(payload, flags, path, issues, out)
    if "validation_suites" in payload:
        suites = _as_str_list(payload["validation_suites"], _join(path, "validation_suites"), issues)
        if suites is not None:
            out["validation_suites"] = suites
    if "shutdown_deadline_seconds" in payload:
        deadline = _as_float(
            payload["shutdown_deadline_seconds"],
            _join(path, "shutdown_deadline_seconds"),
            issues,
            exclusive_minimum=0.0,
        )
        if deadline is not None:
            out["shutdown_deadline_seconds"] = deadline
    if "verify_command" in payload:
        command = _as_text(payload["verify_command"], _join(path, "verify_command"), issues)
        if command is not None:
            out["verify_command"] = command
    return out


def _validate_supervisor(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    positive = {
        "default_timeout_seconds",
        "max_timeout_seconds",
        "stuck_scan_interval_seconds",
        "resource_sample_interval_seconds",
        "memory_sample_interval_seconds",
        "shutdown_poll_interval_seconds",
    }
    non_negative = {"kill_grace_seconds", "retention_seconds", "shutdown_deadline_seconds"}
    percentages = {"memory_alert_percent", "cpu_threshold_percent"}
    allowed = positive | non_negative | percentages | {"default_memory_budget_mb"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(positive):
        if key in payload:
            value = _as_float(payload[key], _join(path, key), issues, exclusive_minimum=0.0)
            if value is not None:
                out[key] = value
    for key in sorted(non_negative):
        if key in payload:
            value = _as_float(payload[key], _join(path, key), issues, minimum=0.0)
            if value is not None:
                out[key] = value
    for key in sorted(percentages):
        if key in payload:
            value = _as_float(payload[key], _join(path, key), issues, minimum=0.0, maximum=100.0)
            if value is not None:
                out[key] = value
    if "default_memory_budget_mb" in payload:
        budget = _as_int(
            payload["default_memory_budget_mb"],
            _join(path, "default_memory_budget_mb"),
            issues,
            minimum=1,
        )
        if budget is not None:
            out["default_memory_budget_mb"] = budget

    default_timeout = out.get("default_timeout_seconds")
    max_timeout = out.get("max_timeout_seconds")
    if default_timeout is not None and max_timeout is not None and default_timeout > max_timeout:
        issues.add(
            _join(path, "default_timeout_seconds"), "must not exceed max_timeout_seconds"
        )
    return out


def _validate_checkpoints(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"backup_dir", "max_checkpoints", "use_vcs"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "backup_dir" in payload:
        backup_dir = _as_path_text(payload["backup_dir"], _join(path, "backup_dir"), issues)
        if backup_dir is not None:
            out["backup_dir"] = backup_dir
    if "max_checkpoints" in payload:
        limit = _as_int(payload["max_checkpoints"], _join(path, "max_checkpoints"), issues, minimum=1)
        if limit is not None:
            out["max_checkpoints"] = limit
    _collect_bools(payload, {"use_vcs"}, path, issues, out)
    return out


def _validate_execution(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {
        "continue_on_failure",
        "phase_validation_suite",
        "prefer_vcs_rollback",
        "dry_run_command_delay_seconds",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    _collect_bools(payload, {"continue_on_failure", "prefer_vcs_rollback"}, path, issues, out)
    if "phase_validation_suite" in payload:
        suite = _as_text(
            payload["phase_validation_suite"], _join(path, "phase_validation_suite"), issues
        )
        if suite is not None:
            out["phase_validation_suite"] = suite
    if "dry_run_command_delay_seconds" in payload:
        delay = _as_float(
            payload["dry_run_command_delay_seconds"],
            _join(path, "dry_run_command_delay_seconds"),
            issues,
            minimum=0.0,
        )
        if delay is not None:
            out["dry_run_command_delay_seconds"] = delay
    return out


def _validate_validation(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    required = {
        "timeout_seconds",
        "retry_attempts",
        "retry_delay_seconds",
        "max_concurrent_checks",
        "continue_on_failure",
        "parallel_execution",
        "secondary_timeout_grace_seconds",
        "output_detail_chars",
    }
    _reject_unknown_keys(payload, required | {"suites_file"}, path, issues)
    if not partial:
        _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    _collect_bools(payload, {"continue_on_failure", "parallel_execution"}, path, issues, out)
    if "timeout_seconds" in payload:
        timeout = _as_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues, exclusive_minimum=0.0
        )
        if timeout is not None:
            out["timeout_seconds"] = timeout
    for key in ("retry_delay_seconds", "secondary_timeout_grace_seconds"):
        if key in payload:
            value = _as_float(payload[key], _join(path, key), issues, minimum=0.0)
            if value is not None:
                out[key] = value
    if "retry_attempts" in payload:
        attempts = _as_int(payload["retry_attempts"], _join(path, "retry_attempts"), issues, minimum=0)
        if attempts is not None:
            out["retry_attempts"] = attempts
    for key in ("max_concurrent_checks", "output_detail_chars"):
        if key in payload:
            value_int = _as_int(payload[key], _join(path, key), issues, minimum=1)
            if value_int is not None:
                out[key] = value_int
    if "suites_file" in payload:
        suites_file = _as_path_text(payload["suites_file"], _join(path, "suites_file"), issues)
        if suites_file is not None:
            out["suites_file"] = suites_file
    return out


def _validate_reporting(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"output_dir", "formats"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "output_dir" in payload:
        output_dir = _as_path_text(payload["output_dir"], _join(path, "output_dir"), issues)
        if output_dir is not None:
            out["output_dir"] = output_dir
    if "formats" in payload:
        formats_path = _join(path, "formats")
        formats = _as_str_list(payload["formats"], formats_path, issues)
        if formats is not None:
            if not formats:
                issues.add(formats_path, "at least one report format is required")
            for index, fmt in enumerate(formats):
                _as_enum(fmt, f"{formats_path}[{index}]", issues, allowed_values=REPORT_FORMAT_VALUES)
            out["formats"] = formats
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        level = _as_enum(
            payload["log_level"], _join(path, "log_level"), issues, allowed_values=LOG_LEVEL_VALUES
        )
        if level is not None:
            out["log_level"] = level
    if "log_dir" in payload:
        log_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if log_dir is not None:
            out["log_dir"] = log_dir
    _collect_bools(payload, {"log_to_stdout"}, path, issues, out)
    return out


def _validate_generators(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for category in sorted(payload):
        key_path = _join(path, category)
        reference = _as_str(payload[category], key_path, issues)
        if reference is None:
            continue
        if not _FACTORY_REF_PATTERN.fullmatch(reference):
            issues.add(key_path, "must be a 'package.module:factory' reference")
            continue
        out[category] = reference
    return out


def _validate_profiles(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        profile_path = _join(path, name)
        if not _PROFILE_NAME_PATTERN.fullmatch(name):
            issues.add(profile_path, "profile names must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = _as_object(payload[name], profile_path, issues)
        if overlay is None:
            continue
        _reject_unknown_keys(overlay, set(_OVERLAY_SECTIONS), profile_path, issues)
        validated: dict[str, Any] = {}
        for section in _OVERLAY_SECTIONS:
            raw = overlay.get(section)
            if raw is None:
                continue
            section_path = _join(profile_path, section)
            section_obj = _as_object(raw, section_path, issues)
            if section_obj is not None:
                validated[section] = _SECTION_VALIDATORS[section](
                    section_obj, section_path, issues, True
                )
        out[name] = validated
    return out


_SECTION_VALIDATORS: Final[dict[str, _SectionValidator]] = {
    "meta": _validate_meta,
    "workflow": _validate_workflow,
    "supervisor": _validate_supervisor,
    "checkpoints": _validate_checkpoints,
    "execution": _validate_execution,
    "validation": _validate_validation,
    "reporting": _validate_reporting,
    "observability": _validate_observability,
    "generators": _validate_generators,
}


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------


def _collect_bools(
    payload: Mapping[str, object],
    keys: set[str],
    path: str,
    issues: _IssueCollector,
    out: dict[str, Any],
) -> None:
    for key in sorted(keys):
        if key in payload:
            parsed = _as_bool(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    """String that may be empty; empty disables the feature it configures."""

    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    return value.strip()


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected list of strings, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return out


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    exclusive_minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if exclusive_minimum is not None and parsed <= exclusive_minimum:
        issues.add(path, f"must be > {exclusive_minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in config files")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    return any(token in _SENSITIVE_KEY_TOKENS for token in normalized.split("_") if token)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, (list, tuple)):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            out[key] = "<redacted>" if looks_sensitive_key(key) else _redact_value(value[key], key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ProfileOverlay",
    "RepairConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "looks_sensitive_key",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
