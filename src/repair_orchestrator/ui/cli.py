"""Command-line interface router for repair-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from repair_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from repair_orchestrator.domain.ids import generate_run_id
from repair_orchestrator.errors import ConfigurationError, IntegrityError
from repair_orchestrator.observability.logging import (
    configure_structlog,
    correlation_scope,
    setup_logging,
    shutdown_logging,
)
from repair_orchestrator.ui.render import CLIRenderer, create_renderer
from repair_orchestrator.utils.fs import is_within
from repair_orchestrator.workflow.collaborators import (
    JsonDiagnosticsAnalyzer,
    load_diagnostics_file,
)
from repair_orchestrator.workflow.factory import Runtime, build_runtime

if TYPE_CHECKING:
    from repair_orchestrator.checkpoints.manager import (
        IntegrityReport,
        RecoveryPoint,
        RollbackOperation,
    )
    from repair_orchestrator.validation.models import ValidationReport
    from repair_orchestrator.workflow.coordinator import WorkflowResult

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_ROLLED_BACK = 3


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = EXIT_FAILED

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="repair-orchestrator",
        description=(
            "repair-orchestrator — checkpointed, validated repair of static-analysis errors.\n\n"
            "Common workflows:\n"
            "  repair-orchestrator plan --diagnostics tsc.json      Preview the repair plan\n"
            "  repair-orchestrator run --diagnostics tsc.json       Repair with rollback\n"
            "  repair-orchestrator checkpoints list                 Show recovery points\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Project root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: <repo-root>/repair-orchestrator.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and log at DEBUG level.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run the full repair workflow.",
        description="Analyze, back up, repair, validate, verify and report.",
    )
    run_parser.add_argument("--diagnostics", required=True, help="Diagnostics JSON file")
    run_parser.add_argument(
        "--dry-run", action="store_true", help="Plan and simulate without touching files"
    )
    run_parser.add_argument(
        "--no-validation", action="store_true", help="Skip per-phase and final validation"
    )
    run_parser.add_argument("--no-backup", action="store_true", help="Do not take a checkpoint")
    run_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    run_parser.add_argument("files", nargs="*", help="Restrict the run to these files")
    run_parser.set_defaults(handler=_cmd_run)

    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common],
        help="Preview the execution plan for a diagnostics file.",
    )
    plan_parser.add_argument("--diagnostics", required=True, help="Diagnostics JSON file")
    plan_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    plan_parser.set_defaults(handler=_cmd_plan)

    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Run one validation suite.",
    )
    validate_parser.add_argument("suite", help="Validation suite id (e.g. typecheck-basic)")
    validate_parser.add_argument("files", nargs="*", help="Files substituted for {files}")
    validate_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    validate_parser.set_defaults(handler=_cmd_validate)

    checkpoints_parser = subparsers.add_parser(
        "checkpoints",
        help="List, verify, restore or delete checkpoints.",
    )
    checkpoint_commands = checkpoints_parser.add_subparsers(
        dest="checkpoint_command", required=True
    )

    list_parser = checkpoint_commands.add_parser("list", parents=[common], help="List checkpoints")
    list_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    list_parser.set_defaults(handler=_cmd_checkpoints_list)

    verify_parser = checkpoint_commands.add_parser(
        "verify", parents=[common], help="Verify checkpoint integrity"
    )
    verify_parser.add_argument("checkpoint_id")
    verify_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    verify_parser.set_defaults(handler=_cmd_checkpoints_verify)

    rollback_parser = checkpoint_commands.add_parser(
        "rollback", parents=[common], help="Restore files from a checkpoint"
    )
    rollback_parser.add_argument("checkpoint_id")
    rollback_parser.add_argument("--reason", default="manual rollback", help="Recorded reason")
    rollback_parser.add_argument(
        "--prefer-vcs", action="store_true", help="Restore from the git snapshot when recorded"
    )
    rollback_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    rollback_parser.set_defaults(handler=_cmd_checkpoints_rollback)

    delete_parser = checkpoint_commands.add_parser(
        "delete", parents=[common], help="Delete a checkpoint"
    )
    delete_parser.add_argument("checkpoint_id")
    delete_parser.set_defaults(handler=_cmd_checkpoints_delete)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective (redacted) configuration.",
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return the process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_USAGE

    configure_structlog()
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    overrides: dict[str, object] = {}
    if _flag(args, "dry_run"):
        overrides["workflow.dry_run"] = True
    if _flag(args, "no_validation"):
        overrides["workflow.validation_enabled"] = False
    if _flag(args, "no_backup"):
        overrides["workflow.backup_enabled"] = False
    config = _load_effective_config(args, repo_root, overrides)
    diagnostics_path = _resolve_input_file(args.diagnostics, repo_root)
    runtime = _build(config, repo_root, JsonDiagnosticsAnalyzer(diagnostics_path))
    files = _relative_files(args.files, repo_root)

    run_id = generate_run_id()
    observability = config["observability"]
    handle = setup_logging(
        observability, run_id=run_id, log_to_stdout=bool(observability["log_to_stdout"])
    )
    try:
        with correlation_scope(run_id=run_id):
            result = asyncio.run(_run_workflow(runtime, files, run_id))
    finally:
        shutdown_logging(handle)

    if result.success:
        exit_code = EXIT_SUCCESS
    elif result.rollback_performed:
        exit_code = EXIT_ROLLED_BACK
    else:
        exit_code = EXIT_FAILED

    if _flag(args, "json"):
        _emit_json({"command": "run", **result.to_dict()})
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Run ID", result.run_id)
    renderer.kv("Status", result.status.value)
    renderer.kv("Initial errors", result.initial_error_count)
    renderer.kv("Errors fixed", result.errors_fixed)
    renderer.kv("Errors remaining", result.errors_remaining)
    renderer.kv("Elapsed", f"{result.elapsed_seconds:.2f}s")
    renderer.kv("Rollback performed", str(result.rollback_performed).lower())
    if result.checkpoint_id is not None:
        renderer.kv("Checkpoint", result.checkpoint_id)
    if result.failed_phase is not None:
        renderer.kv("Failed phase", f"{result.failed_phase}: {result.error}")
    if result.validation_reports:
        renderer.table(
            ["SUITE", "RESULT", "SUMMARY"],
            [
                [report.suite_id, "pass" if report.overall_success else "fail", report.summary]
                for report in result.validation_reports
            ],
            title="Validation:",
        )
    if result.report_paths:
        renderer.section("Reports:")
        renderer.items([_display_path(path, repo_root) for path in result.report_paths])
    if result.errors and renderer.verbose:
        renderer.section("Errors:")
        renderer.items(list(result.errors))
    if result.checkpoint_id is not None and not result.success and not result.rollback_performed:
        renderer.next_steps([f"repair-orchestrator checkpoints rollback {result.checkpoint_id}"])
    return exit_code


def _cmd_plan(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    diagnostics_path = _resolve_input_file(args.diagnostics, repo_root)
    try:
        diagnostics = load_diagnostics_file(diagnostics_path)
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=EXIT_USAGE) from exc
    runtime = _build(config, repo_root)
    plan = asyncio.run(runtime.orchestrator.create_execution_plan(diagnostics))
    order = [phase.phase_id for phase in plan.execution_order()]

    if _flag(args, "json"):
        _emit_json({"command": "plan", "execution_order": order, **plan.to_dict()})
        return EXIT_SUCCESS

    renderer = _get_renderer(args)
    renderer.kv("Plan ID", plan.plan_id)
    renderer.kv("Diagnostics", len(plan.diagnostics))
    renderer.kv("Unaddressed", len(plan.unaddressed_diagnostics))
    renderer.kv("Affected files", len(plan.affected_files))
    renderer.kv("Estimated runtime", f"{plan.estimated_runtime_seconds:.1f}s")
    renderer.table(
        ["PHASE", "NAME", "SCRIPTS", "TARGETS", "DEPENDS ON"],
        [
            [
                phase.phase_id,
                phase.name,
                str(len(phase.scripts)),
                str(phase.target_diagnostic_count),
                ", ".join(phase.dependencies) or "-",
            ]
            for phase in plan.execution_order()
        ],
        title="Phases:",
    )
    if not plan.phases:
        renderer.text("No repair scripts were generated for these diagnostics.")
    if renderer.verbose and plan.affected_files:
        renderer.section("Files:")
        renderer.items(list(plan.affected_files))
    renderer.next_steps([f"repair-orchestrator run --diagnostics {args.diagnostics} --dry-run"])
    return EXIT_SUCCESS


def _cmd_validate(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    runtime = _build(config, repo_root)
    files = _relative_files(args.files, repo_root)

    try:
        report = asyncio.run(_run_suite(runtime, args.suite, files))
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=EXIT_USAGE) from exc
    exit_code = EXIT_SUCCESS if report.overall_success else EXIT_FAILED

    if _flag(args, "json"):
        _emit_json({"command": "validate", **report.to_dict()})
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Suite", report.suite_id)
    for result in report.results:
        label = f"{result.check_type} ({result.duration_ms} ms)"
        if result.success:
            renderer.ok(label)
        else:
            renderer.fail(f"{label}: {result.message}")
        if renderer.verbose and result.output:
            renderer.text(result.output)
    renderer.kv("Summary", report.summary)
    return exit_code


def _cmd_checkpoints_list(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    runtime = _build(_load_effective_config(args, repo_root), repo_root)
    points = asyncio.run(_recovery_points(runtime))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "checkpoints list",
                "checkpoints": [
                    {**point.checkpoint.to_dict(), "valid": point.valid, "git": point.git_backed}
                    for point in points
                ],
            }
        )
        return EXIT_SUCCESS

    renderer = _get_renderer(args)
    if not points:
        renderer.text("No checkpoints found.")
        return EXIT_SUCCESS
    renderer.table(
        ["ID", "NAME", "CREATED", "FILES", "BYTES", "VALID"],
        [
            [
                point.checkpoint.checkpoint_id,
                point.checkpoint.name,
                point.checkpoint.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                str(len(point.checkpoint.files)),
                str(point.checkpoint.total_size),
                "yes" if point.valid else "no",
            ]
            for point in points
        ],
        title="Checkpoints (newest first):",
    )
    return EXIT_SUCCESS


def _cmd_checkpoints_verify(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    runtime = _build(_load_effective_config(args, repo_root), repo_root)
    report = asyncio.run(_verify_checkpoint(runtime, args.checkpoint_id))
    exit_code = EXIT_SUCCESS if report.valid else EXIT_FAILED

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "checkpoints verify",
                "checkpoint_id": report.checkpoint_id,
                "valid": report.valid,
                "errors": list(report.errors),
            }
        )
        return exit_code

    renderer = _get_renderer(args)
    for item in report.files:
        if item.valid:
            renderer.ok(item.path)
        else:
            renderer.fail(f"{item.path}: {item.error}")
    renderer.kv("Integrity", "valid" if report.valid else "INVALID")
    return exit_code


def _cmd_checkpoints_rollback(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    runtime = _build(_load_effective_config(args, repo_root), repo_root)
    try:
        operation = asyncio.run(
            _rollback(runtime, args.checkpoint_id, args.reason, _flag(args, "prefer_vcs"))
        )
    except IntegrityError as exc:
        raise CLIError(f"checkpoint failed integrity verification: {exc}") from exc
    exit_code = EXIT_SUCCESS if operation.succeeded else EXIT_FAILED

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "checkpoints rollback",
                "operation_id": operation.operation_id,
                "checkpoint_id": operation.checkpoint_id,
                "status": operation.status.value,
                "files_restored": list(operation.files_restored),
                "failures": [
                    {"path": failure.path, "message": failure.message}
                    for failure in operation.failures
                ],
                "used_vcs": operation.used_vcs,
            }
        )
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Rollback", operation.operation_id)
    renderer.kv("Status", operation.status.value)
    renderer.kv("Files restored", len(operation.files_restored))
    if operation.used_vcs:
        renderer.kv("Restored from", "git snapshot")
    for failure in operation.failures:
        renderer.warning(f"{failure.path}: {failure.message}")
    return exit_code


def _cmd_checkpoints_delete(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    runtime = _build(_load_effective_config(args, repo_root), repo_root)
    deleted = asyncio.run(_delete_checkpoint(runtime, args.checkpoint_id))
    if not deleted:
        raise CLIError(f"unknown checkpoint: {args.checkpoint_id}", exit_code=EXIT_USAGE)
    _get_renderer(args).text(f"Deleted {args.checkpoint_id}")
    return EXIT_SUCCESS


def _cmd_config(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = effective_config(config)

    if _flag(args, "json"):
        _emit_json({"command": "config", "active_profile": profile, "config": redacted})
        return EXIT_SUCCESS

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return EXIT_SUCCESS


# ---------------------------------------------------------------------------
# Async bodies
# ---------------------------------------------------------------------------


async def _run_workflow(
    runtime: Runtime, files: Sequence[str], run_id: str
) -> WorkflowResult:
    async with runtime.supervisor:
        return await runtime.coordinator.execute_workflow(files, run_id=run_id)


async def _run_suite(
    runtime: Runtime, suite_id: str, files: Sequence[str]
) -> ValidationReport:
    async with runtime.supervisor:
        return await runtime.validation.run_suite(suite_id, runtime.validation.context_for(files))


async def _recovery_points(runtime: Runtime) -> tuple[RecoveryPoint, ...]:
    await runtime.checkpoints.load()
    return await runtime.checkpoints.recovery_points()


async def _verify_checkpoint(runtime: Runtime, checkpoint_id: str) -> IntegrityReport:
    await runtime.checkpoints.load()
    try:
        return await runtime.checkpoints.verify_checkpoint_integrity(checkpoint_id)
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=EXIT_USAGE) from exc


async def _rollback(
    runtime: Runtime, checkpoint_id: str, reason: str, prefer_vcs: bool
) -> RollbackOperation:
    await runtime.checkpoints.load()
    try:
        return await runtime.checkpoints.rollback_to_checkpoint(
            checkpoint_id, reason, prefer_vcs=prefer_vcs
        )
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=EXIT_USAGE) from exc


async def _delete_checkpoint(runtime: Runtime, checkpoint_id: str) -> bool:
    await runtime.checkpoints.load()
    return await runtime.checkpoints.delete_checkpoint(checkpoint_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _repo_root(args: argparse.Namespace) -> Path:
    raw = _require_str(getattr(args, "repo_root", None), "repo_root")
    candidate = Path(raw).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"repo root is not a directory: {candidate}", exit_code=EXIT_USAGE)
    return candidate


def _load_effective_config(
    args: argparse.Namespace,
    repo_root: Path,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    cli_overrides = dict(overrides or {})
    if _flag(args, "verbose"):
        cli_overrides["observability.log_level"] = "DEBUG"
    try:
        return load_config(
            _optional_str(getattr(args, "config_path", None)),
            base_dir=repo_root,
            profile=_optional_str(getattr(args, "profile", None)),
            cli_overrides=cli_overrides,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_USAGE) from exc


def _build(
    config: Mapping[str, Any],
    repo_root: Path,
    analyzer: JsonDiagnosticsAnalyzer | None = None,
) -> Runtime:
    try:
        return build_runtime(config, project_root=repo_root, analyzer=analyzer)
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=EXIT_USAGE) from exc


def _resolve_input_file(path_arg: str, repo_root: Path) -> Path:
    candidate = Path(path_arg).expanduser()
    resolved = candidate.resolve() if candidate.is_absolute() else (repo_root / candidate).resolve()
    if not resolved.is_file():
        raise CLIError(f"diagnostics file not found: {resolved}", exit_code=EXIT_USAGE)
    return resolved


def _relative_files(files: Sequence[str] | None, repo_root: Path) -> tuple[str, ...]:
    """Express file arguments the way diagnostics name them: relative to the root."""

    out: list[str] = []
    for raw in files or ():
        candidate = Path(raw).expanduser()
        if candidate.is_absolute() and is_within(candidate, repo_root):
            out.append(candidate.resolve().relative_to(repo_root).as_posix())
        else:
            out.append(Path(raw).as_posix())
    return tuple(out)


def _display_path(path: Path, repo_root: Path) -> str:
    resolved = path.resolve()
    if is_within(resolved, repo_root):
        return resolved.relative_to(repo_root).as_posix()
    return resolved.as_posix()


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=EXIT_USAGE)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=EXIT_USAGE)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=EXIT_USAGE)
    return value.strip() or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
