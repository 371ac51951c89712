"""
repair-orchestrator — checkpoint and rollback manager

Purpose
- Snapshot target files before they are edited and restore them on demand.

Functional requirements
- Each checkpoint owns ``<backup_dir>/checkpoint-<ULID>/`` with file copies at their project
  relative paths (``_external/`` for files outside the project root) and a
  ``checkpoint.json`` sidecar written atomically.
- Recorded file paths are project relative; files outside the root keep their absolute path.
- Checkpoints are never mutated after creation; restores only read them.
- Optional git pairing records a commit id; VCS restore falls back to per-file copy-back.
- Retention keeps the newest ``max_checkpoints`` and never deletes a rollback target or a
  checkpoint that was just created.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Final

from repair_orchestrator.checkpoints.vcs import GitSnapshotError, GitSnapshotter
from repair_orchestrator.constants import (
    CHECKPOINT_METADATA_FILENAME,
    CHECKPOINT_SCHEMA_VERSION,
    DEFAULT_MAX_CHECKPOINTS,
    EXTERNAL_FILES_DIRNAME,
)
from repair_orchestrator.domain.ids import (
    generate_checkpoint_id,
    generate_rollback_id,
    validate_checkpoint_id,
)
from repair_orchestrator.domain.models import (
    EditCommand,
    JSONValue,
    datetime_to_iso8601z,
    parse_datetime,
    serialize_value,
)
from repair_orchestrator.errors import (
    ConfigurationError,
    IntegrityError,
    PartialRollbackFailure,
)
from repair_orchestrator.observability.events import EventType, ListenerRegistry
from repair_orchestrator.utils.fs import atomic_copy, atomic_write, is_within, safe_delete
from repair_orchestrator.utils.hashing import is_sha256_hex, sha256_bytes, sha256_file

logger = logging.getLogger(__name__)

_MIN_TIMESTAMP_STEP: Final[timedelta] = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True)
class CheckpointFile:
    path: str
    content_hash: str
    size: int
    backup_path: Path
    last_modified: datetime

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("CheckpointFile.path: must not be empty")
        if not is_sha256_hex(self.content_hash):
            raise ValueError("CheckpointFile.content_hash: expected sha256 hex digest")
        if self.size < 0:
            raise ValueError("CheckpointFile.size: must be >= 0")

    def to_dict(self, checkpoint_dir: Path) -> dict[str, JSONValue]:
        try:
            backup = self.backup_path.relative_to(checkpoint_dir).as_posix()
        except ValueError:
            backup = self.backup_path.as_posix()
        return {
            "path": self.path,
            "hash": self.content_hash,
            "size": self.size,
            "backup_path": backup,
            "last_modified": datetime_to_iso8601z(self.last_modified),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], checkpoint_dir: Path) -> CheckpointFile:
        path = payload.get("path")
        content_hash = payload.get("hash")
        size = payload.get("size")
        backup = payload.get("backup_path")
        if not isinstance(path, str) or not isinstance(content_hash, str):
            raise ValueError("CheckpointFile: path and hash must be strings")
        if not isinstance(size, int) or isinstance(size, bool):
            raise ValueError("CheckpointFile.size: expected integer")
        if not isinstance(backup, str):
            raise ValueError("CheckpointFile.backup_path: expected string")
        backup_path = Path(backup)
        if not backup_path.is_absolute():
            backup_path = checkpoint_dir / backup_path
        return cls(
            path=path,
            content_hash=content_hash,
            size=size,
            backup_path=backup_path,
            last_modified=parse_datetime(payload.get("last_modified"), "CheckpointFile.last_modified"),
        )


@dataclass(frozen=True, slots=True)
class Checkpoint:
    checkpoint_id: str
    name: str
    description: str
    created_at: datetime
    files: tuple[CheckpointFile, ...]
    directory: Path
    vcs_commit: str | None = None
    metadata: Mapping[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        validate_checkpoint_id(self.checkpoint_id)
        object.__setattr__(self, "files", tuple(self.files))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.files)

    @property
    def file_paths(self) -> tuple[str, ...]:
        return tuple(item.path for item in self.files)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": CHECKPOINT_SCHEMA_VERSION,
            "id": self.checkpoint_id,
            "name": self.name,
            "description": self.description,
            "created_at": datetime_to_iso8601z(self.created_at),
            "files": [item.to_dict(self.directory) for item in self.files],
            "vcs_commit": self.vcs_commit,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], directory: Path) -> Checkpoint:
        version = payload.get("schema_version")
        if version != CHECKPOINT_SCHEMA_VERSION:
            raise ValueError(f"Checkpoint.schema_version: unsupported value {version!r}")
        checkpoint_id = payload.get("id")
        name = payload.get("name")
        if not isinstance(checkpoint_id, str) or not isinstance(name, str):
            raise ValueError("Checkpoint: id and name must be strings")
        description = payload.get("description", "")
        raw_files = payload.get("files", [])
        if not isinstance(raw_files, list):
            raise ValueError("Checkpoint.files: expected list")
        files: list[CheckpointFile] = []
        for index, item in enumerate(raw_files):
            if not isinstance(item, Mapping):
                raise ValueError(f"Checkpoint.files[{index}]: expected object")
            files.append(CheckpointFile.from_dict(item, directory))
        vcs_commit = payload.get("vcs_commit")
        metadata = payload.get("metadata", {})
        if not isinstance(metadata, Mapping):
            raise ValueError("Checkpoint.metadata: expected object")
        return cls(
            checkpoint_id=checkpoint_id,
            name=name,
            description=description if isinstance(description, str) else "",
            created_at=parse_datetime(payload.get("created_at"), "Checkpoint.created_at"),
            files=tuple(files),
            directory=directory,
            vcs_commit=vcs_commit if isinstance(vcs_commit, str) and vcs_commit else None,
            metadata=serialize_value(metadata, "Checkpoint.metadata"),  # type: ignore[arg-type]
        )


class RollbackStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RestoreFailure:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class RollbackOperation:
    operation_id: str
    checkpoint_id: str
    reason: str
    started_at: datetime
    status: RollbackStatus
    ended_at: datetime | None = None
    files_restored: tuple[str, ...] = ()
    failures: tuple[RestoreFailure, ...] = ()
    used_vcs: bool = False
    safety_checkpoint_id: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is RollbackStatus.COMPLETED and not self.failures

    @property
    def partial(self) -> bool:
        return self.status is RollbackStatus.COMPLETED and bool(self.failures)

    def raise_for_failures(self) -> None:
        if self.failures:
            raise PartialRollbackFailure(self)


@dataclass(frozen=True, slots=True)
class FileIntegrity:
    path: str
    valid: bool
    expected_hash: str
    actual_hash: str | None = None
    expected_size: int = 0
    actual_size: int | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class IntegrityReport:
    checkpoint_id: str
    files: tuple[FileIntegrity, ...]

    @property
    def valid(self) -> bool:
        return all(item.valid for item in self.files)

    @property
    def errors(self) -> tuple[str, ...]:
        return tuple(f"{item.path}: {item.error}" for item in self.files if not item.valid)


@dataclass(frozen=True, slots=True)
class RecoveryPoint:
    checkpoint: Checkpoint
    valid: bool
    git_backed: bool


@dataclass(frozen=True, slots=True)
class CheckpointStatistics:
    count: int
    total_size_bytes: int
    oldest: datetime | None
    newest: datetime | None
    vcs_enabled: bool
    rollbacks: int = 0


class CheckpointManager:
    """Owns checkpoint storage under ``backup_dir``; all blocking IO runs in worker threads."""

    def __init__(
        self,
        backup_dir: str | Path,
        *,
        project_root: str | Path,
        max_checkpoints: int = DEFAULT_MAX_CHECKPOINTS,
        vcs: GitSnapshotter | None = None,
        listeners: ListenerRegistry | None = None,
    ) -> None:
        if max_checkpoints <= 0:
            raise ValueError("max_checkpoints must be > 0")
        self._project_root = Path(project_root).resolve(strict=False)
        backup = Path(backup_dir)
        if not backup.is_absolute():
            backup = self._project_root / backup
        self._backup_dir = backup.resolve(strict=False)
        self._max_checkpoints = max_checkpoints
        self._vcs = vcs
        self._listeners = listeners if listeners is not None else ListenerRegistry("checkpoints")
        self._checkpoints: dict[str, Checkpoint] = {}
        self._operations: list[RollbackOperation] = []
        self._last_created_at: datetime | None = None

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def project_root(self) -> Path:
        return self._project_root

    @property
    def listeners(self) -> ListenerRegistry:
        return self._listeners

    @property
    def vcs_enabled(self) -> bool:
        return self._vcs is not None

    # ------------------------------------------------------------------
    # creation and retention
    # ------------------------------------------------------------------

    async def create_checkpoint(
        self,
        name: str,
        files: Iterable[str | Path],
        *,
        description: str = "",
        metadata: Mapping[str, object] | None = None,
    ) -> Checkpoint:
        return await self._create_checkpoint(
            name, files, description=description, metadata=metadata, protected=()
        )

    async def _create_checkpoint(
        self,
        name: str,
        files: Iterable[str | Path],
        *,
        description: str,
        metadata: Mapping[str, object] | None,
        protected: Collection[str],
    ) -> Checkpoint:
        if not name.strip():
            raise ValueError("name must not be empty")
        checkpoint_id = generate_checkpoint_id()
        created_at = self._next_created_at()
        directory = self._backup_dir / checkpoint_id
        sources = _dedupe(self._resolve(path) for path in files)

        backed_up = await asyncio.to_thread(self._backup_files, directory, sources)

        vcs_commit: str | None = None
        if self._vcs is not None:
            try:
                vcs_commit = await asyncio.to_thread(
                    self._vcs.commit_all, f"checkpoint: {name} ({checkpoint_id})"
                )
            except GitSnapshotError as exc:
                logger.warning("git snapshot for checkpoint %s failed: %s", checkpoint_id, exc)

        checkpoint = Checkpoint(
            checkpoint_id=checkpoint_id,
            name=name,
            description=description,
            created_at=created_at,
            files=backed_up,
            directory=directory,
            vcs_commit=vcs_commit,
            metadata=serialize_value(dict(metadata or {}), "metadata"),  # type: ignore[arg-type]
        )
        await asyncio.to_thread(self._write_sidecar, checkpoint)
        self._checkpoints[checkpoint_id] = checkpoint
        logger.info(
            "created checkpoint %s (%d file(s), %d skipped)",
            checkpoint_id,
            len(backed_up),
            len(sources) - len(backed_up),
        )
        self._listeners.emit(
            EventType.CHECKPOINT_CREATED,
            {
                "checkpoint_id": checkpoint_id,
                "name": name,
                "files": len(backed_up),
                "vcs_commit": vcs_commit,
            },
        )
        # A checkpoint is never evicted by its own creation.
        await self._enforce_retention(protected=(*protected, checkpoint_id))
        return checkpoint

    async def _enforce_retention(self, *, protected: Collection[str] = ()) -> tuple[str, ...]:
        ordered = sorted(self._checkpoints.values(), key=lambda item: item.created_at)
        excess = len(ordered) - self._max_checkpoints
        removed: list[str] = []
        for checkpoint in ordered:
            if excess <= 0:
                break
            if checkpoint.checkpoint_id in protected:
                continue
            if await self.delete_checkpoint(checkpoint.checkpoint_id):
                removed.append(checkpoint.checkpoint_id)
                excess -= 1
        return tuple(removed)

    # ------------------------------------------------------------------
    # rollback
    # ------------------------------------------------------------------

    async def rollback_to_checkpoint(
        self,
        checkpoint_id: str,
        reason: str = "",
        *,
        verify_integrity: bool = True,
        backup_before_rollback: bool = False,
        prefer_vcs: bool = False,
    ) -> RollbackOperation:
        checkpoint = self.get(checkpoint_id)
        operation = RollbackOperation(
            operation_id=generate_rollback_id(),
            checkpoint_id=checkpoint_id,
            reason=reason,
            started_at=datetime.now(tz=UTC),
            status=RollbackStatus.RUNNING,
        )
        self._listeners.emit(
            EventType.ROLLBACK_STARTED,
            {"operation_id": operation.operation_id, "checkpoint_id": checkpoint_id, "reason": reason},
        )

        try:
            safety_id: str | None = None
            if backup_before_rollback:
                safety = await self._create_checkpoint(
                    f"pre-rollback-{checkpoint.name}",
                    checkpoint.file_paths,
                    description=f"State before rollback to {checkpoint_id}",
                    metadata={"rollback_target": checkpoint_id, "reason": reason},
                    protected=(checkpoint_id,),
                )
                safety_id = safety.checkpoint_id

            if verify_integrity:
                report = await self.verify_checkpoint_integrity(checkpoint)
                if not report.valid:
                    raise IntegrityError(checkpoint_id, report)

            restored, failures, used_vcs = await self._restore(checkpoint, prefer_vcs=prefer_vcs)
        except Exception as exc:
            failed = _with(
                operation,
                status=RollbackStatus.FAILED,
                ended_at=datetime.now(tz=UTC),
                error=str(exc),
            )
            self._operations.append(failed)
            logger.error("rollback to %s failed: %s", checkpoint_id, exc)
            self._listeners.emit(
                EventType.ROLLBACK_FAILED,
                {"operation_id": operation.operation_id, "checkpoint_id": checkpoint_id, "error": str(exc)},
            )
            raise

        completed = _with(
            operation,
            status=RollbackStatus.COMPLETED,
            ended_at=datetime.now(tz=UTC),
            files_restored=restored,
            failures=failures,
            used_vcs=used_vcs,
            safety_checkpoint_id=safety_id,
        )
        self._operations.append(completed)
        if failures:
            logger.warning(
                "rollback to %s restored %d file(s); %d failed",
                checkpoint_id,
                len(restored),
                len(failures),
            )
        else:
            logger.info("rollback to %s restored %d file(s)", checkpoint_id, len(restored))
        self._listeners.emit(
            EventType.ROLLBACK_COMPLETED,
            {
                "operation_id": completed.operation_id,
                "checkpoint_id": checkpoint_id,
                "files_restored": len(restored),
                "failures": len(failures),
                "used_vcs": used_vcs,
            },
        )
        return completed

    async def _restore(
        self,
        checkpoint: Checkpoint,
        *,
        prefer_vcs: bool,
    ) -> tuple[tuple[str, ...], tuple[RestoreFailure, ...], bool]:
        if prefer_vcs and checkpoint.vcs_commit is not None and self._vcs is not None:
            try:
                await asyncio.to_thread(self._vcs.reset_hard, checkpoint.vcs_commit)
            except GitSnapshotError as exc:
                logger.warning(
                    "git restore of %s failed, falling back to file copy: %s",
                    checkpoint.checkpoint_id,
                    exc,
                )
            else:
                return checkpoint.file_paths, (), True

        restored: list[str] = []
        failures: list[RestoreFailure] = []
        for item in checkpoint.files:
            try:
                await asyncio.to_thread(atomic_copy, item.backup_path, self._resolve(item.path))
            except OSError as exc:
                logger.warning("failed to restore %s: %s", item.path, exc)
                failures.append(RestoreFailure(path=item.path, message=str(exc)))
            else:
                restored.append(item.path)
        return tuple(restored), tuple(failures), False

    # ------------------------------------------------------------------
    # integrity, deletion, lookup
    # ------------------------------------------------------------------

    async def verify_checkpoint_integrity(self, checkpoint: Checkpoint | str) -> IntegrityReport:
        target = self.get(checkpoint) if isinstance(checkpoint, str) else checkpoint
        return await asyncio.to_thread(_verify_files, target)

    async def delete_checkpoint(self, checkpoint_id: str) -> bool:
        checkpoint = self._checkpoints.pop(checkpoint_id, None)
        directory = checkpoint.directory if checkpoint is not None else self._backup_dir / checkpoint_id
        existed = directory.exists() or directory.is_symlink()
        if existed:
            await asyncio.to_thread(safe_delete, directory, self._backup_dir)
        if checkpoint is None and not existed:
            return False
        logger.info("deleted checkpoint %s", checkpoint_id)
        self._listeners.emit(EventType.CHECKPOINT_DELETED, {"checkpoint_id": checkpoint_id})
        return True

    def get(self, checkpoint_id: str) -> Checkpoint:
        checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            raise ConfigurationError(f"unknown checkpoint: {checkpoint_id}")
        return checkpoint

    def checkpoints(self) -> tuple[Checkpoint, ...]:
        """Known checkpoints, newest first."""

        return tuple(
            sorted(self._checkpoints.values(), key=lambda item: item.created_at, reverse=True)
        )

    def rollback_history(self) -> tuple[RollbackOperation, ...]:
        return tuple(self._operations)

    async def load(self) -> tuple[Checkpoint, ...]:
        """Reload checkpoints persisted by earlier runs from their sidecars."""

        loaded = await asyncio.to_thread(self._read_sidecars)
        for checkpoint in loaded:
            self._checkpoints[checkpoint.checkpoint_id] = checkpoint
            if self._last_created_at is None or checkpoint.created_at > self._last_created_at:
                self._last_created_at = checkpoint.created_at
        return loaded

    async def recovery_points(self) -> tuple[RecoveryPoint, ...]:
        points: list[RecoveryPoint] = []
        for checkpoint in self.checkpoints():
            report = await self.verify_checkpoint_integrity(checkpoint)
            points.append(
                RecoveryPoint(
                    checkpoint=checkpoint,
                    valid=report.valid,
                    git_backed=checkpoint.vcs_commit is not None,
                )
            )
        return tuple(points)

    def statistics(self) -> CheckpointStatistics:
        ordered = sorted(self._checkpoints.values(), key=lambda item: item.created_at)
        return CheckpointStatistics(
            count=len(ordered),
            total_size_bytes=sum(item.total_size for item in ordered),
            oldest=ordered[0].created_at if ordered else None,
            newest=ordered[-1].created_at if ordered else None,
            vcs_enabled=self.vcs_enabled,
            rollbacks=len(self._operations),
        )

    def create_rollback_commands(
        self,
        original_commands: Sequence[EditCommand],
        original_contents: Mapping[str, str],
    ) -> tuple[EditCommand, ...]:
        return create_rollback_commands(original_commands, original_contents)

    # ------------------------------------------------------------------
    # blocking helpers (worker threads)
    # ------------------------------------------------------------------

    def _resolve(self, path: str | Path) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._project_root / candidate
        return candidate.resolve(strict=False)

    def _recorded_path(self, source: Path) -> str:
        if is_within(source, self._project_root):
            return source.relative_to(self._project_root).as_posix()
        return source.as_posix()

    def _relative_backup_path(self, source: Path) -> Path:
        if is_within(source, self._project_root):
            return source.relative_to(self._project_root)
        return Path(EXTERNAL_FILES_DIRNAME) / source.relative_to(source.anchor)

    def _backup_files(
        self, directory: Path, sources: Sequence[Path]
    ) -> tuple[CheckpointFile, ...]:
        directory.mkdir(parents=True, exist_ok=True)
        backed_up: list[CheckpointFile] = []
        for source in sources:
            try:
                data = source.read_bytes()
                stat = source.stat()
                backup_path = directory / self._relative_backup_path(source)
                atomic_write(backup_path, data, create_parents=True)
            except OSError as exc:
                logger.warning("skipping %s in checkpoint: %s", source, exc)
                continue
            backed_up.append(
                CheckpointFile(
                    path=self._recorded_path(source),
                    content_hash=sha256_bytes(data),
                    size=len(data),
                    backup_path=backup_path,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                )
            )
        return tuple(backed_up)

    def _write_sidecar(self, checkpoint: Checkpoint) -> None:
        payload = json.dumps(checkpoint.to_dict(), sort_keys=True, indent=2) + "\n"
        atomic_write(checkpoint.directory / CHECKPOINT_METADATA_FILENAME, payload, create_parents=True)

    def _read_sidecars(self) -> tuple[Checkpoint, ...]:
        if not self._backup_dir.is_dir():
            return ()
        loaded: list[Checkpoint] = []
        for directory in sorted(self._backup_dir.iterdir(), key=lambda path: path.name):
            if directory.is_symlink() or not directory.is_dir():
                continue
            if not directory.name.startswith("checkpoint-"):
                continue
            sidecar = directory / CHECKPOINT_METADATA_FILENAME
            try:
                payload = json.loads(sidecar.read_text(encoding="utf-8"))
                if not isinstance(payload, Mapping):
                    raise ValueError("sidecar root must be an object")
                loaded.append(Checkpoint.from_dict(payload, directory))
            except (OSError, ValueError) as exc:
                logger.warning("skipping unreadable checkpoint %s: %s", directory.name, exc)
        return tuple(loaded)

    def _next_created_at(self) -> datetime:
        now = datetime.now(tz=UTC)
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + _MIN_TIMESTAMP_STEP
        self._last_created_at = now
        return now


def create_rollback_commands(
    original_commands: Sequence[EditCommand],
    original_contents: Mapping[str, str],
) -> tuple[EditCommand, ...]:
    """Whole-file restores for each edited file, newest edit first, once per file."""

    rollback: list[EditCommand] = []
    seen: set[str] = set()
    for command in reversed(original_commands):
        for path in command.touched_files:
            if path in seen or path not in original_contents:
                continue
            seen.add(path)
            label = command.description or f"{command.kind.value} {path}"
            rollback.append(
                EditCommand.replace(
                    path,
                    original_contents[path],
                    description=f"Rollback: {label}",
                )
            )
    return tuple(rollback)


def _verify_files(checkpoint: Checkpoint) -> IntegrityReport:
    results: list[FileIntegrity] = []
    for item in checkpoint.files:
        backup = item.backup_path
        if not backup.is_file():
            results.append(
                FileIntegrity(
                    path=item.path,
                    valid=False,
                    expected_hash=item.content_hash,
                    expected_size=item.size,
                    error="backup file missing",
                )
            )
            continue
        try:
            actual_hash = sha256_file(backup)
            actual_size = backup.stat().st_size
        except OSError as exc:
            results.append(
                FileIntegrity(
                    path=item.path,
                    valid=False,
                    expected_hash=item.content_hash,
                    expected_size=item.size,
                    error=f"unreadable backup: {exc}",
                )
            )
            continue
        problems: list[str] = []
        if actual_hash != item.content_hash:
            problems.append("hash mismatch")
        if actual_size != item.size:
            problems.append(f"size mismatch ({actual_size} != {item.size})")
        results.append(
            FileIntegrity(
                path=item.path,
                valid=not problems,
                expected_hash=item.content_hash,
                actual_hash=actual_hash,
                expected_size=item.size,
                actual_size=actual_size,
                error="; ".join(problems) or None,
            )
        )
    return IntegrityReport(checkpoint_id=checkpoint.checkpoint_id, files=tuple(results))


def _dedupe(paths: Iterable[Path]) -> tuple[Path, ...]:
    seen: set[Path] = set()
    ordered: list[Path] = []
    for path in paths:
        if path in seen:
            continue
        seen.add(path)
        ordered.append(path)
    return tuple(ordered)


def _with(operation: RollbackOperation, **changes: object) -> RollbackOperation:
    return replace(operation, **changes)  # type: ignore[arg-type]


__all__ = [
    "Checkpoint",
    "CheckpointFile",
    "CheckpointManager",
    "CheckpointStatistics",
    "FileIntegrity",
    "IntegrityReport",
    "RecoveryPoint",
    "RestoreFailure",
    "RollbackOperation",
    "RollbackStatus",
    "create_rollback_commands",
]
