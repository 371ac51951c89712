"""Supervised async subprocess runner: the only place external commands are spawned."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from repair_orchestrator.domain.models import JSONValue
from repair_orchestrator.supervisor.process_supervisor import (
    ProcessHandle,
    ProcessStatus,
    ProcessSupervisor,
)

logger = logging.getLogger(__name__)

_DEFAULT_MAX_OUTPUT_CHARS = 200_000
# Upper bound on reading leftover output once a command has been signalled.
_DRAIN_GRACE_SECONDS: Final[float] = 2.0
_PROCESS_GROUPS: Final[bool] = hasattr(os, "killpg")


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Portable command invocation contract."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    memory_budget_mb: int | None = None
    name: str | None = None
    inherit_env: bool = True

    def __post_init__(self) -> None:
        argv = tuple(self.argv)
        if not argv:
            raise ValueError("CommandSpec.argv: must not be empty")
        for index, item in enumerate(argv):
            if not isinstance(item, str):
                raise ValueError(f"CommandSpec.argv[{index}]: expected string")
        if not argv[0].strip():
            raise ValueError("CommandSpec.argv[0]: must not be blank")
        object.__setattr__(self, "argv", argv)
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("CommandSpec.timeout_seconds: must be > 0")
        if self.memory_budget_mb is not None and self.memory_budget_mb <= 0:
            raise ValueError("CommandSpec.memory_budget_mb: must be > 0")
        object.__setattr__(self, "env", dict(self.env))

    @property
    def display_name(self) -> str:
        return self.name or Path(self.argv[0]).name

    def build_env(self) -> dict[str, str] | None:
        if self.inherit_env:
            if not self.env:
                return None
            env = dict(os.environ)
            env.update(self.env)
            return env
        return dict(self.env)


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """Deterministic command execution outcome."""

    process_id: str
    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    signal: int | None = None
    error: str | None = None
    termination_reason: str | None = None

    @property
    def output(self) -> str:
        """Combined stdout and stderr, the only text validation reads back."""

        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    @property
    def is_success(self) -> bool:
        if self.timed_out or self.error is not None or self.signal is not None:
            return False
        return self.exit_code == 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "process_id": self.process_id,
            "argv": list(self.argv),
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "signal": self.signal,
            "error": self.error,
            "termination_reason": self.termination_reason,
        }


class SupervisedRunner:
    """Spawn commands with ``asyncio`` and route every lifecycle change through the supervisor."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        max_output_chars: int | None = _DEFAULT_MAX_OUTPUT_CHARS,
    ) -> None:
        if max_output_chars is not None and max_output_chars <= 0:
            raise ValueError("max_output_chars must be > 0")
        self._supervisor = supervisor
        self._max_output_chars = max_output_chars

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    async def run(self, spec: CommandSpec) -> CommandOutcome:
        started_ns = time.monotonic_ns()
        handle = self._supervisor.register(
            spec.display_name,
            spec.argv[0],
            spec.argv[1:],
            timeout_seconds=spec.timeout_seconds,
            memory_budget_mb=spec.memory_budget_mb,
        )
        timeout = self._supervisor.get(handle).timeout_seconds

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_PROCESS_GROUPS,
            )
        except OSError as exc:
            record = self._supervisor.fail(handle, exc)
            return CommandOutcome(
                process_id=record.process_id,
                argv=spec.argv,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        self._supervisor.attach(handle, process, process_group=_PROCESS_GROUPS)
        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process,
                supervisor=self._supervisor,
                handle=handle,
                timeout_seconds=timeout,
            )
        except _CommandTimeoutError as exc:
            stdout_bytes, stderr_bytes = exc.stdout, exc.stderr

        returncode = process.returncode
        record = self._supervisor.complete(handle, returncode if returncode is not None else -1)
        timed_out = record.status is ProcessStatus.TIMEOUT
        error_text: str | None = None
        if timed_out:
            error_text = record.termination_reason or f"command timed out after {timeout:.3f}s"

        return CommandOutcome(
            process_id=record.process_id,
            argv=spec.argv,
            exit_code=None if timed_out else returncode,
            stdout=_truncate_text(_normalize_output_text(stdout_bytes), self._max_output_chars),
            stderr=_truncate_text(_normalize_output_text(stderr_bytes), self._max_output_chars),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
            signal=-returncode if returncode is not None and returncode < 0 else None,
            error=error_text,
            termination_reason=record.termination_reason,
        )

    async def run_argv(
        self,
        argv: Sequence[str],
        *,
        cwd: str | Path | None = None,
        timeout_seconds: float | None = None,
        name: str | None = None,
    ) -> CommandOutcome:
        return await self.run(
            CommandSpec(
                argv=tuple(argv),
                cwd=None if cwd is None else str(cwd),
                timeout_seconds=timeout_seconds,
                name=name,
            )
        )


@dataclass(slots=True)
class _CommandTimeoutError(Exception):
    stdout: bytes
    stderr: bytes


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    supervisor: ProcessSupervisor,
    handle: ProcessHandle,
    timeout_seconds: float,
) -> tuple[bytes, bytes]:
    try:
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        supervisor.timeout(handle, f"timeout after {timeout_seconds:g}s")
        stdout_bytes, stderr_bytes = await _drain(
            process, supervisor.settings.kill_grace_seconds + _DRAIN_GRACE_SECONDS
        )
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        supervisor.kill(handle, signal.SIGKILL)
        await _drain(process, _DRAIN_GRACE_SECONDS)
        supervisor.complete(handle, process.returncode if process.returncode is not None else -1)
        raise


async def _drain(process: asyncio.subprocess.Process, seconds: float) -> tuple[bytes, bytes]:
    try:
        return await asyncio.wait_for(process.communicate(), timeout=seconds)
    except TimeoutError:
        logger.warning(
            "pid %d still holds its output pipes %.1fs after being signalled; output dropped",
            process.pid,
            seconds,
        )
        return b"", b""


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


__all__ = ["CommandOutcome", "CommandSpec", "SupervisedRunner"]
