"""
repair-orchestrator — unit tests for the config loader

Purpose
- Precedence: CLI > env > file > defaults.
- Env var path mapping and type coercion, profile selection, and path normalization.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from repair_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from repair_orchestrator.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_precedence_defaults_file_env_cli(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "repair-orchestrator.toml",
        """
[checkpoints]
max_checkpoints = 4
""".strip(),
    )
    env = {"REPAIR_CHECKPOINTS_MAX_CHECKPOINTS": "6"}

    defaults = load_config(base_dir=tmp_path / "empty", environ={})
    from_file = load_config(config_path, environ={})
    from_env = load_config(config_path, environ=env)
    from_cli = load_config(
        config_path, environ=env, cli_overrides={"checkpoints.max_checkpoints": 7}
    )

    assert defaults["checkpoints"]["max_checkpoints"] == 10
    assert from_file["checkpoints"]["max_checkpoints"] == 4
    assert from_env["checkpoints"]["max_checkpoints"] == 6
    assert from_cli["checkpoints"]["max_checkpoints"] == 7


def test_default_file_is_found_in_base_dir(tmp_path: Path) -> None:
    _write_config(
        tmp_path / "repair-orchestrator.toml",
        '[workflow]\nvalidation_suites = ["full-validation"]\n',
    )

    loaded = load_config(base_dir=tmp_path, environ={})

    assert loaded["workflow"]["validation_suites"] == ["full-validation"]


def test_env_values_are_coerced_by_default_type(tmp_path: Path) -> None:
    loaded = load_config(
        base_dir=tmp_path,
        environ={
            "REPAIR_WORKFLOW_DRY_RUN": "yes",
            "REPAIR_VALIDATION_RETRY_ATTEMPTS": " 0 ",
            "REPAIR_SUPERVISOR_KILL_GRACE_SECONDS": "2.5",
            "REPAIR_OBSERVABILITY_LOG_LEVEL": "DEBUG",
        },
    )

    assert loaded["workflow"]["dry_run"] is True
    assert loaded["validation"]["retry_attempts"] == 0
    assert loaded["supervisor"]["kill_grace_seconds"] == 2.5
    assert loaded["observability"]["log_level"] == "DEBUG"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("REPAIR_WORKFLOW_DRY_RUN", "maybe", "must be a boolean"),
        ("REPAIR_VALIDATION_RETRY_ATTEMPTS", "two", "must be an integer"),
        ("REPAIR_SUPERVISOR_KILL_GRACE_SECONDS", "soon", "must be a number"),
    ],
)
def test_bad_env_values_are_rejected(tmp_path: Path, name: str, value: str, message: str) -> None:
    with pytest.raises(ConfigLoadError, match=message):
        load_config(base_dir=tmp_path, environ={name: value})


def test_profiles_select_by_argument_cli_or_env(tmp_path: Path) -> None:
    by_argument = load_config(base_dir=tmp_path, environ={}, profile="dry-run")
    by_cli = load_config(base_dir=tmp_path, environ={}, cli_overrides={"profile": "strict"})
    by_env = load_config(base_dir=tmp_path, environ={"REPAIR_PROFILE": "no-validation"})

    assert by_argument["workflow"]["dry_run"] is True
    assert by_cli["validation"]["continue_on_failure"] is False
    assert by_env["workflow"]["validation_enabled"] is False


def test_env_overrides_apply_on_top_of_profile(tmp_path: Path) -> None:
    loaded = load_config(
        base_dir=tmp_path,
        environ={"REPAIR_PROFILE": "dry-run", "REPAIR_WORKFLOW_DRY_RUN": "false"},
    )

    assert loaded["workflow"]["dry_run"] is False


def test_unknown_profile_is_a_validation_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigValidationError, match="profile 'nightly' is not defined"):
        load_config(base_dir=tmp_path, environ={}, profile="nightly")


def test_paths_are_normalized_relative_to_config_file(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "conf" / "repair.toml",
        """
[checkpoints]
backup_dir = "../state/checkpoints"

[reporting]
output_dir = "reports"
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    root = tmp_path.resolve()
    assert loaded["checkpoints"]["backup_dir"] == (root / "state" / "checkpoints").as_posix()
    assert loaded["reporting"]["output_dir"] == (root / "conf" / "reports").as_posix()
    assert loaded["observability"]["log_dir"] == (root / "conf" / ".repair-logs").as_posix()


def test_explicit_missing_or_broken_file_fails(tmp_path: Path) -> None:
    broken = _write_config(tmp_path / "broken.toml", "[workflow\n")

    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "missing.toml", environ={})
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})


def test_invalid_file_values_report_every_issue(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "repair-orchestrator.toml",
        """
[workflow]
dry_run = "yes"

[checkpoints]
max_checkpoints = 0

[reporting]
formats = ["pdf"]
""".strip(),
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    paths = {issue.path for issue in excinfo.value.issues}
    assert {"workflow.dry_run", "checkpoints.max_checkpoints", "reporting.formats[0]"} <= paths


def test_dump_is_deterministic_and_redacted(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "repair-orchestrator.toml",
        '[generators]\nImport = "acme_fixers.imports:make"\n',
    )

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    payload = json.loads(first)
    assert payload["generators"] == {"Import": "acme_fixers.imports:make"}
    assert payload["meta"]["schema_version"] == 1
