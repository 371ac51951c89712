"""
repair-orchestrator — CLI subprocess smoke contracts

Purpose
- Run ``python -m repair_orchestrator`` as a real process against a seeded project.
- Per-phase validation gates are real supervised subprocesses; a failing gate must roll
  the tree back and exit with the rolled-back code.
"""

from __future__ import annotations

import json
import os
import shlex
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

_DIRTY = "const a = 1;   \nconst b = 2;\t\n"

_WHITESPACE_CHECK = """\
import sys
from pathlib import Path

dirty = [
    name
    for name in sys.argv[1:]
    if any(line != line.rstrip() for line in Path(name).read_text().splitlines())
]
print("\\n".join(dirty))
sys.exit(1 if dirty else 0)
"""


def _run_cli(repo_root: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, "-m", "repair_orchestrator", *args],
        cwd=repo_root,
        text=True,
        capture_output=True,
        check=False,
        env=env,
        timeout=120,
    )


def _write(path: Path, contents: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")


def _seed_repo(repo_root: Path, gate_command: str) -> None:
    command = gate_command.replace("{python}", shlex.quote(sys.executable))
    _write(repo_root / "src" / "a.ts", _DIRTY)
    _write(repo_root / "tools" / "check_ws.py", _WHITESPACE_CHECK)
    diagnostics = [
        {
            "file": "src/a.ts",
            "line": line,
            "column": 13,
            "code": "W291",
            "message": "Trailing spaces not allowed.",
            "category": "Formatting",
        }
        for line in (1, 2)
    ]
    _write(repo_root / "diagnostics.json", json.dumps(diagnostics))
    _write(
        repo_root / "suites.yaml",
        "suites:\n"
        "  - id: gate\n"
        "    name: Whitespace gate\n"
        "    checks:\n"
        "      - type: whitespace\n"
        f"        command: {json.dumps(command)}\n",
    )
    _write(
        repo_root / "repair-orchestrator.toml",
        """
[workflow]
validation_suites = ["gate"]

[execution]
phase_validation_suite = "gate"
dry_run_command_delay_seconds = 0.0

[validation]
suites_file = "suites.yaml"
retry_attempts = 0

[reporting]
formats = ["json", "markdown"]
""".lstrip(),
    )


@pytest.mark.integration
def test_config_command_reports_effective_values(tmp_path: Path) -> None:
    _seed_repo(tmp_path, "{python} tools/check_ws.py {files}")

    completed = _run_cli(tmp_path, "config", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["config"]["execution"]["phase_validation_suite"] == "gate"
    suites_file = (tmp_path.resolve() / "suites.yaml").as_posix()
    assert payload["config"]["validation"]["suites_file"] == suites_file


@pytest.mark.integration
def test_plan_then_run_repairs_behind_a_real_gate(tmp_path: Path) -> None:
    _seed_repo(tmp_path, "{python} tools/check_ws.py {files}")

    planned = _run_cli(tmp_path, "plan", "--diagnostics", "diagnostics.json")
    assert planned.returncode == 0, planned.stderr
    assert "syntax-formatting" in planned.stdout

    completed = _run_cli(tmp_path, "run", "--diagnostics", "diagnostics.json", "--json")

    assert completed.returncode == 0, completed.stderr
    result = json.loads(completed.stdout)
    assert result["success"] is True
    assert result["errors_fixed"] == 2
    assert result["rollback_performed"] is False
    assert [report["suite_id"] for report in result["validation"]] == ["gate"]
    assert (tmp_path / "src" / "a.ts").read_text(encoding="utf-8") == "const a = 1;\nconst b = 2;\n"
    report_suffixes = sorted(Path(path).suffix for path in result["reports"])
    assert report_suffixes == [".json", ".md"]
    assert all(Path(path).is_file() for path in result["reports"])
    assert any((tmp_path / ".repair-logs").rglob("*.jsonl"))


@pytest.mark.integration
def test_failing_gate_rolls_back_and_exits_rolled_back(tmp_path: Path) -> None:
    _seed_repo(tmp_path, "{python} -c 'raise SystemExit(4)'")

    completed = _run_cli(tmp_path, "run", "--diagnostics", "diagnostics.json", "--json")

    assert completed.returncode == 3, completed.stderr
    result = json.loads(completed.stdout)
    assert result["success"] is False
    assert result["rollback_performed"] is True
    assert result["errors_fixed"] == 0
    assert (tmp_path / "src" / "a.ts").read_text(encoding="utf-8") == _DIRTY

    listed = _run_cli(tmp_path, "checkpoints", "list", "--json")
    assert listed.returncode == 0, listed.stderr
    checkpoints = json.loads(listed.stdout)["checkpoints"]
    assert [item["id"] for item in checkpoints] == [result["checkpoint_id"]]


@pytest.mark.integration
def test_validate_command_runs_a_suite(tmp_path: Path) -> None:
    _seed_repo(tmp_path, "{python} tools/check_ws.py {files}")

    dirty = _run_cli(tmp_path, "validate", "gate", "src/a.ts")
    assert dirty.returncode == 1
    assert "FAIL  whitespace" in dirty.stdout

    (tmp_path / "src" / "a.ts").write_text("const a = 1;\n", encoding="utf-8")
    clean = _run_cli(tmp_path, "validate", "gate", "src/a.ts", "--json")
    assert clean.returncode == 0, clean.stderr
    assert json.loads(clean.stdout)["overall_success"] is True


@pytest.mark.integration
def test_unknown_subcommand_is_a_usage_error(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "explode")

    assert completed.returncode == 2
    assert "invalid choice" in completed.stderr
