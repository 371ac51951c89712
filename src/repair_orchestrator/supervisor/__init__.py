"""External process supervision: lifecycle records, resource guards, and the command runner."""

from repair_orchestrator.supervisor.process_supervisor import (
    MEMORY_BUDGET_REASON,
    TERMINAL_STATUSES,
    LiveProcess,
    ProcessHandle,
    ProcessRecord,
    ProcessStatus,
    ProcessSupervisor,
    ShutdownReport,
    SupervisorSettings,
    SupervisorStatistics,
)
from repair_orchestrator.supervisor.resources import (
    HostResourceSnapshot,
    PsutilMemoryProbe,
    SystemResourceSampler,
)
from repair_orchestrator.supervisor.runner import CommandOutcome, CommandSpec, SupervisedRunner

__all__ = [
    "MEMORY_BUDGET_REASON",
    "TERMINAL_STATUSES",
    "CommandOutcome",
    "CommandSpec",
    "HostResourceSnapshot",
    "LiveProcess",
    "ProcessHandle",
    "ProcessRecord",
    "ProcessStatus",
    "ProcessSupervisor",
    "PsutilMemoryProbe",
    "ShutdownReport",
    "SupervisedRunner",
    "SupervisorSettings",
    "SupervisorStatistics",
    "SystemResourceSampler",
]
