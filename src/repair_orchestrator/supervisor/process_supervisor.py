"""
repair-orchestrator — process supervisor

Purpose
- Own the lifecycle record of every external process the orchestrator spawns.

Functional requirements
- Records live in an arena addressed by ``ProcessHandle``; accessors hand out frozen copies.
- Timeouts send SIGTERM, then SIGKILL after a fixed grace window. Processes attached as
  group leaders are signalled through their whole process group so wrapper children die too.
- Memory budgets are enforced by periodic RSS sampling; an overrun is handled as a timeout.
- Background loops detect stuck processes, prune old records, and publish advisory
  host-pressure events. Nothing here retries a timed-out process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType, TracebackType
from typing import Final, Protocol, Self

import psutil

from repair_orchestrator.constants import (
    CPU_THRESHOLD_PERCENT,
    DEFAULT_MEMORY_LIMIT_MB,
    DEFAULT_PROCESS_TIMEOUT_SECONDS,
    KILL_GRACE_SECONDS,
    MAX_PROCESS_TIMEOUT_SECONDS,
    MEMORY_ALERT_PERCENT,
    MEMORY_SAMPLE_INTERVAL_SECONDS,
    PROCESS_RETENTION_SECONDS,
    RESOURCE_SAMPLE_INTERVAL_SECONDS,
    SHUTDOWN_DEADLINE_SECONDS,
    SHUTDOWN_POLL_INTERVAL_SECONDS,
    STUCK_SCAN_INTERVAL_SECONDS,
)
from repair_orchestrator.domain.ids import generate_process_id
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.observability.events import EventType, ListenerRegistry
from repair_orchestrator.supervisor.resources import (
    HostResourceSnapshot,
    MemoryProbe,
    PsutilMemoryProbe,
    ResourceSampler,
    SystemResourceSampler,
)

logger = logging.getLogger(__name__)

_BYTES_PER_MB: Final[int] = 1024 * 1024
MEMORY_BUDGET_REASON: Final[str] = "memory budget exceeded"


class ProcessStatus(StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    KILLED = "killed"


TERMINAL_STATUSES: Final[frozenset[ProcessStatus]] = frozenset(
    {
        ProcessStatus.COMPLETED,
        ProcessStatus.FAILED,
        ProcessStatus.TIMEOUT,
        ProcessStatus.KILLED,
    }
)


class LiveProcess(Protocol):
    """Subset of ``asyncio.subprocess.Process`` the supervisor relies on."""

    @property
    def pid(self) -> int: ...

    @property
    def returncode(self) -> int | None: ...

    def send_signal(self, sig: int) -> None: ...

    def kill(self) -> None: ...


@dataclass(frozen=True, slots=True)
class ProcessHandle:
    index: int
    process_id: str


@dataclass(frozen=True, slots=True)
class ProcessRecord:
    process_id: str
    name: str
    command: str
    args: tuple[str, ...]
    status: ProcessStatus
    started_at: datetime
    timeout_seconds: float
    memory_budget_mb: int
    ended_at: datetime | None = None
    pid: int | None = None
    exit_code: int | None = None
    error: str | None = None
    termination_reason: str | None = None
    peak_rss_bytes: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


@dataclass(slots=True)
class _ProcessSlot:
    record: ProcessRecord
    live: LiveProcess | None = None
    attached_at: float | None = None
    ended_at: float | None = None
    timeout_task: asyncio.Task[None] | None = None
    memory_task: asyncio.Task[None] | None = None
    escalation_task: asyncio.Task[None] | None = None
    process_group: bool = False


@dataclass(frozen=True, slots=True)
class SupervisorSettings:
    default_timeout_seconds: float = DEFAULT_PROCESS_TIMEOUT_SECONDS
    max_timeout_seconds: float = MAX_PROCESS_TIMEOUT_SECONDS
    kill_grace_seconds: float = KILL_GRACE_SECONDS
    stuck_scan_interval_seconds: float = STUCK_SCAN_INTERVAL_SECONDS
    resource_sample_interval_seconds: float = RESOURCE_SAMPLE_INTERVAL_SECONDS
    memory_sample_interval_seconds: float = MEMORY_SAMPLE_INTERVAL_SECONDS
    default_memory_budget_mb: int = DEFAULT_MEMORY_LIMIT_MB
    memory_alert_percent: float = MEMORY_ALERT_PERCENT
    cpu_threshold_percent: float = CPU_THRESHOLD_PERCENT
    retention_seconds: float = PROCESS_RETENTION_SECONDS
    shutdown_deadline_seconds: float = SHUTDOWN_DEADLINE_SECONDS
    shutdown_poll_interval_seconds: float = SHUTDOWN_POLL_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        for name in (
            "default_timeout_seconds",
            "max_timeout_seconds",
            "stuck_scan_interval_seconds",
            "resource_sample_interval_seconds",
            "memory_sample_interval_seconds",
            "shutdown_poll_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"SupervisorSettings.{name}: must be > 0")
        for name in ("kill_grace_seconds", "retention_seconds", "shutdown_deadline_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"SupervisorSettings.{name}: must be >= 0")
        if self.default_timeout_seconds > self.max_timeout_seconds:
            raise ValueError(
                "SupervisorSettings.default_timeout_seconds: must not exceed max_timeout_seconds"
            )
        if self.default_memory_budget_mb <= 0:
            raise ValueError("SupervisorSettings.default_memory_budget_mb: must be > 0")
        for name in ("memory_alert_percent", "cpu_threshold_percent"):
            value = getattr(self, name)
            if not 0 < value <= 1000:
                raise ValueError(f"SupervisorSettings.{name}: must be in (0, 1000]")

    @classmethod
    def from_config(cls, section: Mapping[str, object]) -> SupervisorSettings:
        """Build settings from the validated ``[supervisor]`` config table."""

        known = {name: section[name] for name in cls.__dataclass_fields__ if name in section}
        return cls(**known)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class SupervisorStatistics:
    total: int
    running: int
    by_status: Mapping[str, int]
    average_runtime_seconds: float
    peak_rss_bytes: int | None


@dataclass(frozen=True, slots=True)
class ShutdownReport:
    signalled: tuple[str, ...]
    force_killed: tuple[str, ...]
    elapsed_seconds: float
    deadline_reached: bool = False


class ProcessSupervisor:
    """Single-owner registry of external processes and their resource guards."""

    def __init__(
        self,
        settings: SupervisorSettings | None = None,
        *,
        resource_sampler: ResourceSampler | None = None,
        memory_probe: MemoryProbe | None = None,
        listeners: ListenerRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings if settings is not None else SupervisorSettings()
        self._sampler = resource_sampler if resource_sampler is not None else SystemResourceSampler()
        self._memory_probe = memory_probe if memory_probe is not None else PsutilMemoryProbe()
        self._listeners = listeners if listeners is not None else ListenerRegistry("supervisor")
        self._clock = clock
        self._slots: list[_ProcessSlot | None] = []
        self._free_indices: list[int] = []
        self._index_by_id: dict[str, int] = {}
        self._background: list[asyncio.Task[None]] = []
        self._last_snapshot: HostResourceSnapshot | None = None

    @property
    def settings(self) -> SupervisorSettings:
        return self._settings

    @property
    def listeners(self) -> ListenerRegistry:
        return self._listeners

    # ------------------------------------------------------------------
    # lifecycle transitions
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        command: str,
        args: Sequence[str] = (),
        *,
        timeout_seconds: float | None = None,
        memory_budget_mb: int | None = None,
    ) -> ProcessHandle:
        if not name.strip():
            raise ValueError("name must not be empty")
        if not command.strip():
            raise ValueError("command must not be empty")
        timeout = (
            self._settings.default_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        if timeout <= 0:
            raise ValueError("timeout_seconds must be > 0")
        timeout = min(timeout, self._settings.max_timeout_seconds)
        budget = (
            self._settings.default_memory_budget_mb if memory_budget_mb is None else memory_budget_mb
        )
        if budget <= 0:
            raise ValueError("memory_budget_mb must be > 0")

        record = ProcessRecord(
            process_id=generate_process_id(),
            name=name,
            command=command,
            args=tuple(args),
            status=ProcessStatus.STARTING,
            started_at=datetime.now(tz=UTC),
            timeout_seconds=timeout,
            memory_budget_mb=budget,
        )
        slot = _ProcessSlot(record=record)
        if self._free_indices:
            index = self._free_indices.pop()
            self._slots[index] = slot
        else:
            index = len(self._slots)
            self._slots.append(slot)
        self._index_by_id[record.process_id] = index
        self._listeners.emit(EventType.PROCESS_REGISTERED, {"record": record})
        return ProcessHandle(index=index, process_id=record.process_id)

    def attach(
        self, handle: ProcessHandle, live: LiveProcess, *, process_group: bool = False
    ) -> ProcessRecord:
        """Mark the record running and arm its timeout and memory guards.

        ``process_group`` declares that ``live`` leads its own process group, so every
        signal sent on its behalf reaches the whole group.
        """

        slot = self._slot(handle)
        if slot.record.status is not ProcessStatus.STARTING:
            raise ValueError(
                f"process {handle.process_id} cannot attach from status {slot.record.status}"
            )
        loop = asyncio.get_running_loop()
        slot.live = live
        slot.process_group = process_group
        slot.attached_at = self._clock()
        slot.record = replace(slot.record, status=ProcessStatus.RUNNING, pid=live.pid)
        slot.timeout_task = loop.create_task(
            self._timeout_after(handle, slot.record.timeout_seconds),
            name=f"process-timeout:{handle.process_id}",
        )
        slot.memory_task = loop.create_task(
            self._memory_guard(handle),
            name=f"process-memory:{handle.process_id}",
        )
        self._listeners.emit(EventType.PROCESS_STARTED, {"record": slot.record})
        return slot.record

    def complete(self, handle: ProcessHandle, exit_code: int) -> ProcessRecord:
        slot = self._slot(handle)
        self._cancel_guards(slot, include_escalation=True)
        if slot.record.is_terminal:
            slot.record = replace(slot.record, exit_code=exit_code)
            return slot.record

        status = ProcessStatus.COMPLETED if exit_code == 0 else ProcessStatus.FAILED
        slot.record = self._finish(slot, status, exit_code=exit_code)
        event = (
            EventType.PROCESS_COMPLETED
            if status is ProcessStatus.COMPLETED
            else EventType.PROCESS_FAILED
        )
        self._listeners.emit(event, {"record": slot.record})
        return slot.record

    def fail(self, handle: ProcessHandle, error: BaseException | str) -> ProcessRecord:
        """Record a spawn failure; the OS error text is kept on the record."""

        slot = self._slot(handle)
        self._cancel_guards(slot, include_escalation=True)
        if slot.record.is_terminal:
            return slot.record
        slot.record = self._finish(slot, ProcessStatus.FAILED, error=str(error))
        logger.warning("process %s failed to start: %s", slot.record.name, slot.record.error)
        self._listeners.emit(EventType.PROCESS_FAILED, {"record": slot.record})
        return slot.record

    def timeout(self, handle: ProcessHandle, reason: str = "timeout exceeded") -> ProcessRecord:
        slot = self._slot(handle)
        if slot.record.is_terminal:
            return slot.record
        self._cancel_guards(slot)
        slot.record = self._finish(slot, ProcessStatus.TIMEOUT, termination_reason=reason)
        logger.warning("process %s timed out: %s", slot.record.name, reason)

        if slot.live is not None and _send_signal(
            slot.live, signal.SIGTERM, group=slot.process_group
        ):
            slot.escalation_task = asyncio.get_running_loop().create_task(
                self._escalate(handle, slot.live, group=slot.process_group),
                name=f"process-escalate:{handle.process_id}",
            )
        self._listeners.emit(EventType.PROCESS_TIMEOUT, {"record": slot.record, "reason": reason})
        return slot.record

    def kill(self, handle: ProcessHandle, sig: int = signal.SIGTERM) -> ProcessRecord:
        """Signal the process; a non-terminal record becomes ``killed``."""

        slot = self._slot(handle)
        signalled = slot.live is not None and _send_signal(
            slot.live, sig, group=slot.process_group
        )
        if slot.record.is_terminal:
            return slot.record
        self._cancel_guards(slot)
        slot.record = self._finish(
            slot,
            ProcessStatus.KILLED,
            termination_reason=f"killed with {signal.Signals(sig).name}",
        )
        self._listeners.emit(
            EventType.PROCESS_KILLED,
            {"record": slot.record, "signal": int(sig), "signalled": signalled},
        )
        return slot.record

    # ------------------------------------------------------------------
    # read accessors
    # ------------------------------------------------------------------

    def get(self, handle: ProcessHandle) -> ProcessRecord:
        return self._slot(handle).record

    def find(self, process_id: str) -> ProcessRecord | None:
        index = self._index_by_id.get(process_id)
        if index is None:
            return None
        slot = self._slots[index]
        return None if slot is None else slot.record

    def records(self) -> tuple[ProcessRecord, ...]:
        return tuple(slot.record for slot in self._slots if slot is not None)

    def running(self) -> tuple[ProcessRecord, ...]:
        return tuple(
            record for record in self.records() if record.status is ProcessStatus.RUNNING
        )

    def metrics(self) -> HostResourceSnapshot | None:
        """Latest host resource sample, if one has been taken."""

        return self._last_snapshot

    def statistics(self) -> SupervisorStatistics:
        counts = {status.value: 0 for status in ProcessStatus}
        runtimes: list[float] = []
        peak: int | None = None
        for slot in self._slots:
            if slot is None:
                continue
            counts[slot.record.status.value] += 1
            if slot.attached_at is not None and slot.ended_at is not None:
                runtimes.append(max(slot.ended_at - slot.attached_at, 0.0))
            rss = slot.record.peak_rss_bytes
            if rss is not None and (peak is None or rss > peak):
                peak = rss
        total = sum(counts.values())
        average = round(sum(runtimes) / len(runtimes), 6) if runtimes else 0.0
        return SupervisorStatistics(
            total=total,
            running=counts[ProcessStatus.RUNNING.value],
            by_status=MappingProxyType(counts),
            average_runtime_seconds=average,
            peak_rss_bytes=peak,
        )

    # ------------------------------------------------------------------
    # background maintenance
    # ------------------------------------------------------------------

    def scan_for_stuck(self) -> tuple[str, ...]:
        """Time out running records whose elapsed time exceeds their timeout."""

        now = self._clock()
        stuck: list[str] = []
        for index, slot in enumerate(self._slots):
            if slot is None or slot.record.status is not ProcessStatus.RUNNING:
                continue
            if slot.attached_at is None:
                continue
            elapsed = now - slot.attached_at
            if elapsed <= slot.record.timeout_seconds:
                continue
            handle = ProcessHandle(index=index, process_id=slot.record.process_id)
            self._listeners.emit(
                EventType.PROCESS_STUCK,
                {"process_id": slot.record.process_id, "elapsed_seconds": round(elapsed, 3)},
            )
            self.timeout(handle, f"stuck: running for {elapsed:.1f}s")
            stuck.append(slot.record.process_id)
        return tuple(stuck)

    def prune_completed(self, older_than: float | None = None) -> int:
        """Drop terminal records that ended more than ``older_than`` seconds ago."""

        retention = self._settings.retention_seconds if older_than is None else older_than
        now = self._clock()
        pruned = 0
        for index, slot in enumerate(self._slots):
            if slot is None or not slot.record.is_terminal or slot.ended_at is None:
                continue
            if now - slot.ended_at < retention:
                continue
            self._cancel_guards(slot, include_escalation=True)
            self._slots[index] = None
            self._index_by_id.pop(slot.record.process_id, None)
            self._free_indices.append(index)
            pruned += 1
        if pruned:
            logger.debug("pruned %d completed process record(s)", pruned)
        return pruned

    def sample_resources(self) -> HostResourceSnapshot:
        snapshot = self._sampler.snapshot()
        self._publish_snapshot(snapshot)
        return snapshot

    def start(self) -> None:
        """Start the stuck-scan and resource-sampling loops on the running loop."""

        if self._background:
            return
        loop = asyncio.get_running_loop()
        self._background = [
            loop.create_task(self._stuck_scan_loop(), name="supervisor-stuck-scan"),
            loop.create_task(self._resource_loop(), name="supervisor-resources"),
        ]

    async def stop(self) -> None:
        tasks, self._background = self._background, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def graceful_shutdown(
        self,
        deadline: float | None = None,
        poll_interval: float | None = None,
    ) -> ShutdownReport:
        """SIGTERM every running process, wait up to ``deadline``, then SIGKILL stragglers."""

        deadline_seconds = self._settings.shutdown_deadline_seconds if deadline is None else deadline
        poll = self._settings.shutdown_poll_interval_seconds if poll_interval is None else poll_interval
        started = self._clock()
        self._listeners.emit(EventType.SHUTDOWN_STARTED, {"deadline_seconds": deadline_seconds})
        await self.stop()

        signalled: list[tuple[str, LiveProcess, bool]] = []
        for index, slot in enumerate(self._slots):
            if slot is None or slot.record.status is not ProcessStatus.RUNNING:
                continue
            live = slot.live
            self.kill(ProcessHandle(index=index, process_id=slot.record.process_id))
            if live is not None:
                signalled.append((slot.record.process_id, live, slot.process_group))

        while any(live.returncode is None for _, live, _ in signalled):
            if self._clock() - started >= deadline_seconds:
                break
            await asyncio.sleep(poll)

        force_killed: list[str] = []
        for process_id, live, group in signalled:
            if live.returncode is None and _send_signal(live, signal.SIGKILL, group=group):
                force_killed.append(process_id)
        if force_killed:
            logger.warning("force-killed %d process(es) after shutdown deadline", len(force_killed))

        report = ShutdownReport(
            signalled=tuple(process_id for process_id, _, _ in signalled),
            force_killed=tuple(force_killed),
            elapsed_seconds=round(self._clock() - started, 3),
            deadline_reached=bool(force_killed),
        )
        self._listeners.emit(EventType.SHUTDOWN_COMPLETED, {"report": report})
        return report

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _slot(self, handle: ProcessHandle) -> _ProcessSlot:
        slot = self._slots[handle.index] if 0 <= handle.index < len(self._slots) else None
        if slot is None or slot.record.process_id != handle.process_id:
            raise ConfigurationError(f"unknown process handle: {handle.process_id}")
        return slot

    def _finish(
        self,
        slot: _ProcessSlot,
        status: ProcessStatus,
        **changes: object,
    ) -> ProcessRecord:
        slot.ended_at = self._clock()
        return replace(  # type: ignore[arg-type]
            slot.record, status=status, ended_at=datetime.now(tz=UTC), **changes
        )

    def _cancel_guards(self, slot: _ProcessSlot, *, include_escalation: bool = False) -> None:
        current = asyncio.current_task() if _has_running_loop() else None
        tasks = [slot.timeout_task, slot.memory_task]
        if include_escalation:
            tasks.append(slot.escalation_task)
        for task in tasks:
            if task is not None and task is not current and not task.done():
                task.cancel()

    async def _timeout_after(self, handle: ProcessHandle, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self.timeout(handle, f"timeout after {seconds:g}s")

    async def _memory_guard(self, handle: ProcessHandle) -> None:
        interval = self._settings.memory_sample_interval_seconds
        while True:
            await asyncio.sleep(interval)
            slot = self._slot(handle)
            if slot.record.status is not ProcessStatus.RUNNING or slot.live is None:
                return
            rss = self._memory_probe.rss_bytes(slot.live.pid)
            if rss is None:
                continue
            peak = slot.record.peak_rss_bytes
            if peak is None or rss > peak:
                slot.record = replace(slot.record, peak_rss_bytes=rss)
            if rss > slot.record.memory_budget_mb * _BYTES_PER_MB:
                self.timeout(handle, MEMORY_BUDGET_REASON)
                return

    async def _escalate(
        self, handle: ProcessHandle, live: LiveProcess, *, group: bool = False
    ) -> None:
        await asyncio.sleep(self._settings.kill_grace_seconds)
        # A group can outlive its leader.
        if live.returncode is not None and not group:
            return
        if _send_signal(live, signal.SIGKILL, group=group):
            logger.warning("process %s ignored SIGTERM; sent SIGKILL", handle.process_id)
            self._listeners.emit(
                EventType.PROCESS_KILLED,
                {"process_id": handle.process_id, "signal": int(signal.SIGKILL), "escalated": True},
            )

    async def _stuck_scan_loop(self) -> None:
        interval = self._settings.stuck_scan_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.scan_for_stuck()
            self.prune_completed()

    async def _resource_loop(self) -> None:
        interval = self._settings.resource_sample_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                snapshot = await asyncio.to_thread(self._sampler.snapshot)
            except (OSError, psutil.Error):
                logger.exception("host resource sampling failed")
                continue
            self._publish_snapshot(snapshot)

    def _publish_snapshot(self, snapshot: HostResourceSnapshot) -> None:
        self._last_snapshot = snapshot
        payload = snapshot.to_dict()
        self._listeners.emit(EventType.RESOURCE_SAMPLE, payload)
        if snapshot.memory_percent > self._settings.memory_alert_percent:
            logger.warning("host memory usage high: %.1f%%", snapshot.memory_percent)
            self._listeners.emit(EventType.HIGH_MEMORY, payload)
        if snapshot.cpu_load_percent > self._settings.cpu_threshold_percent:
            logger.warning("host cpu load high: %.1f%% per cpu", snapshot.cpu_load_percent)
            self._listeners.emit(EventType.HIGH_CPU_LOAD, payload)


def _send_signal(live: LiveProcess, sig: int, *, group: bool = False) -> bool:
    if group:
        try:
            os.killpg(live.pid, sig)
        except (ProcessLookupError, PermissionError):
            return False
        return True
    if live.returncode is not None:
        return False
    try:
        live.send_signal(sig)
    except ProcessLookupError:
        return False
    return True


def _has_running_loop() -> bool:
    with contextlib.suppress(RuntimeError):
        asyncio.get_running_loop()
        return True
    return False


__all__ = [
    "MEMORY_BUDGET_REASON",
    "TERMINAL_STATUSES",
    "LiveProcess",
    "ProcessHandle",
    "ProcessRecord",
    "ProcessStatus",
    "ProcessSupervisor",
    "ShutdownReport",
    "SupervisorSettings",
    "SupervisorStatistics",
]
