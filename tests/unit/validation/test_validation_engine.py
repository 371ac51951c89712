"""
repair-orchestrator — unit tests for the validation engine

Purpose
- Sequential fail-fast versus continue-on-failure, parallel batching, retries.
- Result policies, secondary timeouts, and cooperative stop.
"""

from __future__ import annotations

import asyncio
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from repair_orchestrator.domain.models import ResultPolicy, ValidationCheck
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.observability.events import EventType, ListenerRegistry
from repair_orchestrator.supervisor.process_supervisor import ProcessSupervisor
from repair_orchestrator.supervisor.runner import CommandOutcome, CommandSpec, SupervisedRunner
from repair_orchestrator.validation.engine import ValidationEngine, ValidationSettings
from repair_orchestrator.validation.models import ValidationContext, ValidationSuite


@dataclass
class _Script:
    exit_codes: list[int]
    stdout: str = ""
    delay: float = 0.0
    signal: int | None = None


@dataclass
class _ScriptedRunner:
    """Fake runner keyed by ``argv[0]``; each call pops the next exit code."""

    scripts: dict[str, _Script]
    calls: list[tuple[str, ...]] = field(default_factory=list)
    active: int = 0
    peak: int = 0
    batches: list[list[str]] = field(default_factory=list)

    async def run(self, spec: CommandSpec) -> CommandOutcome:
        self.calls.append(spec.argv)
        script = self.scripts[spec.argv[0]]
        self.active += 1
        self.peak = max(self.peak, self.active)
        if self.active == 1:
            self.batches.append([])
        self.batches[-1].append(spec.argv[0])
        try:
            await asyncio.sleep(script.delay)
        finally:
            self.active -= 1
        exit_code = script.exit_codes.pop(0) if len(script.exit_codes) > 1 else script.exit_codes[0]
        return CommandOutcome(
            process_id=f"proc-{len(self.calls)}",
            argv=spec.argv,
            exit_code=exit_code,
            stdout=script.stdout,
            stderr="",
            duration_ms=int(script.delay * 1000),
            signal=script.signal,
        )


def _check(name: str, policy: ResultPolicy = ResultPolicy.SUCCESS, **kwargs: object) -> ValidationCheck:
    return ValidationCheck(check_type=name, command=f"{name} {{files}}", policy=policy, **kwargs)  # type: ignore[arg-type]


def _engine(
    runner: _ScriptedRunner,
    suites: list[ValidationSuite],
    tmp_path: Path,
    **settings: object,
) -> ValidationEngine:
    defaults: dict[str, object] = {"retry_attempts": 0, "retry_delay_seconds": 0.0}
    defaults.update(settings)
    return ValidationEngine(
        runner,
        ValidationSettings(**defaults),  # type: ignore[arg-type]
        project_root=tmp_path,
        suites=suites,
    )


@pytest.mark.asyncio
async def test_sequential_suite_fails_fast_and_skips_remaining(tmp_path: Path) -> None:
    runner = _ScriptedRunner(
        {"a": _Script([1]), "b": _Script([0]), "c": _Script([0])}
    )
    suite = ValidationSuite(
        suite_id="strict",
        name="Strict",
        checks=(_check("a"), _check("b"), _check("c")),
        continue_on_failure=False,
    )
    engine = _engine(runner, [suite], tmp_path)

    report = await engine.run_suite("strict", engine.context_for(["x.ts"]))

    assert [call[0] for call in runner.calls] == ["a"]
    assert report.failed == 1
    assert report.skipped == 2
    assert not report.overall_success
    assert report.summary == "0/3 checks passed, 1 failed, 2 skipped"
    assert report.results[0].message == "Check failed with exit code: 1"


@pytest.mark.asyncio
async def test_sequential_suite_continues_when_allowed(tmp_path: Path) -> None:
    runner = _ScriptedRunner({"a": _Script([1]), "b": _Script([0])})
    suite = ValidationSuite(suite_id="lenient", name="Lenient", checks=(_check("a"), _check("b")))
    engine = _engine(runner, [suite], tmp_path)

    report = await engine.run_suite("lenient", engine.context_for())

    assert [call[0] for call in runner.calls] == ["a", "b"]
    assert (report.passed, report.failed, report.skipped) == (1, 1, 0)


@pytest.mark.asyncio
async def test_settings_can_force_fail_fast_over_suite_flag(tmp_path: Path) -> None:
    runner = _ScriptedRunner({"a": _Script([1]), "b": _Script([0])})
    suite = ValidationSuite(suite_id="lenient", name="Lenient", checks=(_check("a"), _check("b")))
    engine = _engine(runner, [suite], tmp_path, continue_on_failure=False)

    report = await engine.run_suite("lenient", engine.context_for())

    assert report.skipped == 1


@pytest.mark.asyncio
async def test_parallel_suite_runs_in_bounded_batches(tmp_path: Path) -> None:
    runner = _ScriptedRunner(
        {
            "a": _Script([0], delay=0.05),
            "b": _Script([1], delay=0.05),
            "c": _Script([0], delay=0.05),
        }
    )
    suite = ValidationSuite(
        suite_id="par",
        name="Parallel",
        checks=(_check("a"), _check("b"), _check("c")),
        parallel=True,
    )
    engine = _engine(runner, [suite], tmp_path, max_concurrent_checks=2)

    report = await engine.run_suite("par", engine.context_for())

    assert runner.peak == 2
    assert [len(batch) for batch in runner.batches] == [2, 1]
    assert [result.check_type for result in report.results] == ["a", "b", "c"]
    assert report.passed == 2
    assert report.failed == 1


@pytest.mark.asyncio
async def test_parallel_fail_fast_skips_later_batches(tmp_path: Path) -> None:
    runner = _ScriptedRunner({"a": _Script([1]), "b": _Script([0]), "c": _Script([0])})
    suite = ValidationSuite(
        suite_id="par",
        name="Parallel",
        checks=(_check("a"), _check("b"), _check("c")),
        parallel=True,
        continue_on_failure=False,
    )
    engine = _engine(runner, [suite], tmp_path, max_concurrent_checks=2)

    report = await engine.run_suite("par", engine.context_for())

    assert sorted(call[0] for call in runner.calls) == ["a", "b"]
    assert report.results[2].skipped


@pytest.mark.asyncio
async def test_failed_check_is_retried_until_it_passes(tmp_path: Path) -> None:
    runner = _ScriptedRunner({"flaky": _Script([1, 0])})
    suite = ValidationSuite(suite_id="s", name="S", checks=(_check("flaky"),))
    engine = _engine(runner, [suite], tmp_path, retry_attempts=2)

    report = await engine.run_suite("s", engine.context_for())

    assert report.overall_success
    assert report.results[0].attempts == 2
    assert len(runner.calls) == 2


@pytest.mark.asyncio
async def test_zero_errors_and_improved_count_policies(tmp_path: Path) -> None:
    tsc_output = "src/a.ts(1,1): error TS2304: Cannot find name 'x'.\n"
    runner = _ScriptedRunner(
        {"tsc": _Script([2], stdout=tsc_output), "eslint": _Script([1], stdout="3 errors\n")}
    )
    suite = ValidationSuite(
        suite_id="s",
        name="S",
        checks=(_check("tsc", ResultPolicy.ZERO_ERRORS), _check("eslint", ResultPolicy.IMPROVED_COUNT)),
    )
    engine = _engine(runner, [suite], tmp_path)

    with_baseline = await engine.run_suite("s", engine.context_for(baseline_error_count=5))
    no_baseline = await engine.run_suite("s", engine.context_for())
    per_check = await engine.run_suite("s", engine.context_for(baselines={"eslint": 2}))

    assert with_baseline.results[0].message == "Found 1 errors"
    assert with_baseline.results[1].success
    assert with_baseline.results[1].message == "Error count improved: 5 -> 3"
    assert no_baseline.results[1].success
    assert no_baseline.results[1].details["compared"] is False
    assert not per_check.results[1].success


@pytest.mark.asyncio
async def test_validate_error_count_improvement_reports_fixed_errors(tmp_path: Path) -> None:
    output = "src/a.ts(3,7): error TS2322: Type 'string' is not assignable to type 'number'.\n"
    runner = _ScriptedRunner({"npx": _Script([2], stdout=output)})
    engine = _engine(runner, [], tmp_path)

    result = await engine.validate_error_count_improvement(["src/a.ts"], 10)

    assert result.success
    assert result.before_count == 10
    assert result.after_count == 1
    assert result.improvement == 9
    assert "9 errors fixed" in result.message
    assert runner.calls[0][-1] == "src/a.ts"


@pytest.mark.asyncio
async def test_validate_error_count_improvement_fails_when_the_check_is_killed(
    tmp_path: Path,
) -> None:
    runner = _ScriptedRunner({"npx": _Script([-9], signal=9)})
    engine = _engine(runner, [], tmp_path)

    result = await engine.validate_error_count_improvement(["src/a.ts"], 10)

    assert not result.success
    assert result.after_count is None
    assert result.details["signal"] == 9
    assert "SIGKILL" in result.message


@pytest.mark.asyncio
async def test_secondary_timer_bounds_a_hung_runner(tmp_path: Path) -> None:
    runner = _ScriptedRunner({"hang": _Script([0], delay=5.0)})
    suite = ValidationSuite(
        suite_id="s", name="S", checks=(_check("hang", timeout_seconds=0.05),)
    )
    engine = _engine(runner, [suite], tmp_path, secondary_timeout_grace_seconds=0.05)

    report = await engine.run_suite("s", engine.context_for())

    assert report.results[0].timed_out
    assert report.results[0].message == "Check timed out after 0.05s"


@pytest.mark.asyncio
async def test_stop_all_checks_skips_in_flight_and_pending(tmp_path: Path) -> None:
    listeners = ListenerRegistry("validation")
    runner = _ScriptedRunner({"slow": _Script([0], delay=5.0), "next": _Script([0])})
    suite = ValidationSuite(suite_id="s", name="S", checks=(_check("slow"), _check("next")))
    engine = ValidationEngine(
        runner,
        ValidationSettings(retry_attempts=0),
        project_root=tmp_path,
        listeners=listeners,
        suites=[suite],
    )

    task = asyncio.create_task(engine.run_suite("s", engine.context_for()))
    await asyncio.sleep(0.05)
    assert engine.stop_all_checks() == 1
    report = await asyncio.wait_for(task, 2.0)

    assert report.skipped == 2
    assert [call[0] for call in runner.calls] == ["slow"]
    assert listeners.history(event_type=EventType.CHECKS_STOPPED)

    engine.reset()
    runner.scripts["slow"].delay = 0.0
    assert (await engine.run_suite("s", engine.context_for())).overall_success


@pytest.mark.asyncio
async def test_unknown_suite_is_a_configuration_error(tmp_path: Path) -> None:
    engine = _engine(_ScriptedRunner({}), [], tmp_path)

    with pytest.raises(ConfigurationError, match="unknown validation suite"):
        await engine.run_suite("missing", ValidationContext())


@pytest.mark.asyncio
async def test_real_subprocess_check_with_file_placeholder(tmp_path: Path) -> None:
    target = tmp_path / "a.ts"
    target.write_text("let a = 1;\n", encoding="utf-8")
    script = "import sys; sys.exit(0 if all(arg.endswith('.ts') for arg in sys.argv[1:]) else 1)"
    check = ValidationCheck(
        check_type="ts-args",
        command=f"{shlex.quote(sys.executable)} -c {shlex.quote(script)} {{files}}",
    )
    engine = ValidationEngine(
        SupervisedRunner(ProcessSupervisor()),
        ValidationSettings(retry_attempts=0),
        project_root=tmp_path,
        suites=[ValidationSuite(suite_id="ts-args", name="TS args", checks=(check,))],
    )

    report = await engine.run_suite("ts-args", engine.context_for(["a.ts", "b.ts"]))

    assert report.overall_success
    assert report.results[0].details["argv"][-2:] == ["a.ts", "b.ts"]
