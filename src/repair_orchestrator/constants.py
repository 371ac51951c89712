"""Stable constants shared across orchestration components."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
CHECKPOINT_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the project root unless overridden by config).
DEFAULT_CONFIG_FILENAME: Final[str] = "repair-orchestrator.toml"
DEFAULT_BACKUP_DIR: Final[str] = ".repair-checkpoints"
DEFAULT_REPORT_DIR: Final[str] = "repair-reports"
DEFAULT_LOG_DIR: Final[str] = ".repair-logs"
CHECKPOINT_METADATA_FILENAME: Final[str] = "checkpoint.json"
EXTERNAL_FILES_DIRNAME: Final[str] = "_external"

# Process supervision.
DEFAULT_PROCESS_TIMEOUT_SECONDS: Final[float] = 300.0
MAX_PROCESS_TIMEOUT_SECONDS: Final[float] = 1800.0
KILL_GRACE_SECONDS: Final[float] = 5.0
STUCK_SCAN_INTERVAL_SECONDS: Final[float] = 30.0
RESOURCE_SAMPLE_INTERVAL_SECONDS: Final[float] = 60.0
MEMORY_SAMPLE_INTERVAL_SECONDS: Final[float] = 5.0
DEFAULT_MEMORY_LIMIT_MB: Final[int] = 1024
MEMORY_ALERT_PERCENT: Final[float] = 90.0
CPU_THRESHOLD_PERCENT: Final[float] = 80.0
PROCESS_RETENTION_SECONDS: Final[float] = 3600.0
SHUTDOWN_DEADLINE_SECONDS: Final[float] = 30.0
SHUTDOWN_POLL_INTERVAL_SECONDS: Final[float] = 1.0

# Checkpoints.
DEFAULT_MAX_CHECKPOINTS: Final[int] = 10

# Validation.
DEFAULT_CHECK_TIMEOUT_SECONDS: Final[float] = 300.0
DEFAULT_RETRY_ATTEMPTS: Final[int] = 2
DEFAULT_RETRY_DELAY_SECONDS: Final[float] = 1.0
DEFAULT_MAX_CONCURRENT_CHECKS: Final[int] = 4
SECONDARY_TIMEOUT_GRACE_SECONDS: Final[float] = 5.0
CHECK_OUTPUT_DETAIL_CHARS: Final[int] = 1000

# Execution.
DRY_RUN_COMMAND_DELAY_SECONDS: Final[float] = 0.01

__all__ = [
    "CHECKPOINT_METADATA_FILENAME",
    "CHECKPOINT_SCHEMA_VERSION",
    "CHECK_OUTPUT_DETAIL_CHARS",
    "CONFIG_SCHEMA_VERSION",
    "CPU_THRESHOLD_PERCENT",
    "DEFAULT_BACKUP_DIR",
    "DEFAULT_CHECK_TIMEOUT_SECONDS",
    "DEFAULT_CONFIG_FILENAME",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MAX_CHECKPOINTS",
    "DEFAULT_MAX_CONCURRENT_CHECKS",
    "DEFAULT_MEMORY_LIMIT_MB",
    "DEFAULT_PROCESS_TIMEOUT_SECONDS",
    "DEFAULT_REPORT_DIR",
    "DEFAULT_RETRY_ATTEMPTS",
    "DEFAULT_RETRY_DELAY_SECONDS",
    "DRY_RUN_COMMAND_DELAY_SECONDS",
    "EXTERNAL_FILES_DIRNAME",
    "KILL_GRACE_SECONDS",
    "MAX_PROCESS_TIMEOUT_SECONDS",
    "MEMORY_ALERT_PERCENT",
    "MEMORY_SAMPLE_INTERVAL_SECONDS",
    "PROCESS_RETENTION_SECONDS",
    "RESOURCE_SAMPLE_INTERVAL_SECONDS",
    "SECONDARY_TIMEOUT_GRACE_SECONDS",
    "SHUTDOWN_DEADLINE_SECONDS",
    "SHUTDOWN_POLL_INTERVAL_SECONDS",
    "STUCK_SCAN_INTERVAL_SECONDS",
]
