"""Checkpoint snapshots, integrity verification, rollback, and git pairing."""

from repair_orchestrator.checkpoints.manager import (
    Checkpoint,
    CheckpointFile,
    CheckpointManager,
    CheckpointStatistics,
    FileIntegrity,
    IntegrityReport,
    RecoveryPoint,
    RestoreFailure,
    RollbackOperation,
    RollbackStatus,
    create_rollback_commands,
)
from repair_orchestrator.checkpoints.vcs import GitCommandError, GitSnapshotError, GitSnapshotter

__all__ = [
    "Checkpoint",
    "CheckpointFile",
    "CheckpointManager",
    "CheckpointStatistics",
    "FileIntegrity",
    "GitCommandError",
    "GitSnapshotError",
    "GitSnapshotter",
    "IntegrityReport",
    "RecoveryPoint",
    "RestoreFailure",
    "RollbackOperation",
    "RollbackStatus",
    "create_rollback_commands",
]
