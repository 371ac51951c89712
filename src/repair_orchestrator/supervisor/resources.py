"""Host and per-process resource sampling for the process supervisor."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import psutil

_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class HostResourceSnapshot:
    """Point-in-time host metrics used for advisory pressure events."""

    captured_at: datetime
    memory_total_bytes: int
    memory_available_bytes: int
    load_average: tuple[float, float, float]
    cpu_count: int
    process_count: int = 0

    def __post_init__(self) -> None:
        if self.memory_total_bytes < 0 or self.memory_available_bytes < 0:
            raise ValueError("memory byte counts must be >= 0")
        if self.memory_available_bytes > self.memory_total_bytes:
            raise ValueError("memory_available_bytes cannot exceed memory_total_bytes")
        if self.cpu_count <= 0:
            raise ValueError("cpu_count must be > 0")
        if self.captured_at.tzinfo is None:
            object.__setattr__(self, "captured_at", self.captured_at.replace(tzinfo=UTC))

    @property
    def memory_used_bytes(self) -> int:
        return self.memory_total_bytes - self.memory_available_bytes

    @property
    def memory_percent(self) -> float:
        if self.memory_total_bytes <= 0:
            return 0.0
        return round(self.memory_used_bytes / self.memory_total_bytes * 100.0, 2)

    @property
    def cpu_load_percent(self) -> float:
        """One-minute load average normalized by CPU count."""

        return round(self.load_average[0] / self.cpu_count * 100.0, 2)

    def to_dict(self) -> dict[str, object]:
        return {
            "captured_at": self.captured_at.isoformat(),
            "memory_total_mb": self.memory_total_bytes // _BYTES_PER_MB,
            "memory_free_mb": self.memory_available_bytes // _BYTES_PER_MB,
            "memory_used_mb": self.memory_used_bytes // _BYTES_PER_MB,
            "memory_percent": self.memory_percent,
            "load_average": list(self.load_average),
            "cpu_count": self.cpu_count,
            "cpu_load_percent": self.cpu_load_percent,
            "process_count": self.process_count,
        }


class ResourceSampler(Protocol):
    def snapshot(self) -> HostResourceSnapshot: ...


class MemoryProbe(Protocol):
    def rss_bytes(self, pid: int) -> int | None: ...


class SystemResourceSampler:
    """Collect host metrics with ``psutil``."""

    def snapshot(self) -> HostResourceSnapshot:
        memory = psutil.virtual_memory()
        load_average = tuple(float(value) for value in psutil.getloadavg())
        return HostResourceSnapshot(
            captured_at=datetime.now(tz=UTC),
            memory_total_bytes=int(memory.total),
            memory_available_bytes=min(int(memory.available), int(memory.total)),
            load_average=(load_average[0], load_average[1], load_average[2]),
            cpu_count=psutil.cpu_count() or os.cpu_count() or 1,
        )


class PsutilMemoryProbe:
    """Resident set size of a process plus its descendants."""

    def rss_bytes(self, pid: int) -> int | None:
        try:
            process = psutil.Process(pid)
            total = int(process.memory_info().rss)
            for child in process.children(recursive=True):
                try:
                    total += int(child.memory_info().rss)
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None
        return total


__all__ = [
    "HostResourceSnapshot",
    "MemoryProbe",
    "PsutilMemoryProbe",
    "ResourceSampler",
    "SystemResourceSampler",
]
