"""
repair-orchestrator — unit tests for checkpoints and rollback

Purpose
- Creation, sidecars, integrity verification, retention, and restore fidelity.
- Partial restore failures and the pre-rollback safety checkpoint.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import shutil
from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from repair_orchestrator.checkpoints.manager import (
    CheckpointManager,
    RollbackStatus,
    create_rollback_commands,
)
from repair_orchestrator.domain.models import EditCommand
from repair_orchestrator.errors import ConfigurationError, IntegrityError, PartialRollbackFailure
from repair_orchestrator.observability.events import EventType, ListenerRegistry


def _project(tmp_path: Path, files: dict[str, bytes]) -> Path:
    root = tmp_path / "project"
    for relative, data in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    root.mkdir(exist_ok=True)
    return root


def _manager(root: Path, **kwargs: object) -> CheckpointManager:
    return CheckpointManager(".repair-checkpoints", project_root=root, **kwargs)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_created_checkpoint_verifies_and_writes_sidecar(tmp_path: Path) -> None:
    root = _project(tmp_path, {"src/a.ts": b"let a = 1;\n", "src/b.ts": b"let b = 2;\n"})
    listeners = ListenerRegistry("checkpoints")
    manager = _manager(root, listeners=listeners)

    checkpoint = await manager.create_checkpoint(
        "before-syntax", ["src/a.ts", "src/b.ts", "src/a.ts", "src/missing.ts"]
    )
    report = await manager.verify_checkpoint_integrity(checkpoint.checkpoint_id)

    assert report.valid
    assert len(checkpoint.files) == 2
    assert checkpoint.file_paths == ("src/a.ts", "src/b.ts")
    assert checkpoint.directory == manager.backup_dir / checkpoint.checkpoint_id
    assert (checkpoint.directory / "src" / "a.ts").read_bytes() == b"let a = 1;\n"
    sidecar = json.loads((checkpoint.directory / "checkpoint.json").read_text(encoding="utf-8"))
    assert sidecar["id"] == checkpoint.checkpoint_id
    assert sidecar["files"][0]["backup_path"] == "src/a.ts"
    assert sidecar["files"][0]["path"] == "src/a.ts"
    assert sidecar["files"][0]["hash"] == hashlib.sha256(b"let a = 1;\n").hexdigest()
    assert [event.event_type for event in listeners.history()] == [EventType.CHECKPOINT_CREATED]


@pytest.mark.asyncio
async def test_files_outside_root_are_stored_under_external(tmp_path: Path) -> None:
    root = _project(tmp_path, {"a.ts": b"a"})
    outside = tmp_path / "shared" / "types.d.ts"
    outside.parent.mkdir()
    outside.write_bytes(b"declare const x: number;\n")
    manager = _manager(root)

    checkpoint = await manager.create_checkpoint("external", [outside])

    assert "_external" in checkpoint.files[0].backup_path.relative_to(checkpoint.directory).parts
    assert checkpoint.files[0].path == outside.resolve().as_posix()

    outside.write_bytes(b"edited")
    operation = await manager.rollback_to_checkpoint(checkpoint.checkpoint_id)
    assert operation.files_restored == (outside.resolve().as_posix(),)
    assert outside.read_bytes() == b"declare const x: number;\n"


@pytest.mark.asyncio
async def test_rollback_restores_every_file_byte_identical(tmp_path: Path) -> None:
    original = {"src/a.ts": b"const a = 1;\r\n", "src/b.ts": b"\x00\x01binary\xff"}
    root = _project(tmp_path, original)
    manager = _manager(root)
    checkpoint = await manager.create_checkpoint("phase", list(original))

    (root / "src/a.ts").write_bytes(b"broken")
    (root / "src/b.ts").unlink()
    operation = await manager.rollback_to_checkpoint(checkpoint.checkpoint_id, "phase failed")

    assert operation.succeeded
    assert operation.status is RollbackStatus.COMPLETED
    assert operation.files_restored == ("src/a.ts", "src/b.ts")
    for relative, data in original.items():
        assert (root / relative).read_bytes() == data
    assert manager.rollback_history() == (operation,)


@given(
    contents=st.dictionaries(
        st.sampled_from(["a.ts", "b.ts", "lib/c.ts", "lib/deep/d.ts"]),
        st.binary(max_size=256),
        min_size=1,
    ),
    mutation=st.binary(max_size=32),
)
@settings(
    max_examples=25,
    derandomize=True,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
def test_property_restore_matches_snapshot(
    contents: dict[str, bytes], mutation: bytes, tmp_path: Path
) -> None:
    digest = hashlib.sha1(repr(sorted(contents.items())).encode("utf-8")).hexdigest()[:12]
    root = _project(tmp_path / digest, contents)

    async def _scenario() -> None:
        manager = _manager(root)
        checkpoint = await manager.create_checkpoint("prop", list(contents))
        assert (await manager.verify_checkpoint_integrity(checkpoint)).valid
        for relative in contents:
            (root / relative).write_bytes(mutation + b"-mutated")
        operation = await manager.rollback_to_checkpoint(checkpoint.checkpoint_id)
        assert operation.succeeded

    asyncio.run(_scenario())
    for relative, data in contents.items():
        assert (root / relative).read_bytes() == data


@pytest.mark.asyncio
async def test_tampered_backup_fails_integrity_and_blocks_rollback(tmp_path: Path) -> None:
    root = _project(tmp_path, {"a.ts": b"original"})
    manager = _manager(root)
    checkpoint = await manager.create_checkpoint("tamper", ["a.ts"])
    checkpoint.files[0].backup_path.write_bytes(b"tampered!")
    (root / "a.ts").write_bytes(b"edited")

    with pytest.raises(IntegrityError) as excinfo:
        await manager.rollback_to_checkpoint(checkpoint.checkpoint_id)

    assert "hash mismatch" in str(excinfo.value)
    assert (root / "a.ts").read_bytes() == b"edited"
    history = manager.rollback_history()
    assert history[-1].status is RollbackStatus.FAILED


@pytest.mark.asyncio
async def test_partial_restore_reports_failures(tmp_path: Path) -> None:
    root = _project(tmp_path, {"a.ts": b"a", "b.ts": b"b"})
    manager = _manager(root)
    checkpoint = await manager.create_checkpoint("partial", ["a.ts", "b.ts"])
    (root / "b.ts").unlink()
    (root / "b.ts").mkdir()

    operation = await manager.rollback_to_checkpoint(checkpoint.checkpoint_id)

    assert operation.partial
    assert not operation.succeeded
    assert operation.files_restored == ("a.ts",)
    assert operation.failures[0].path == "b.ts"
    with pytest.raises(PartialRollbackFailure):
        operation.raise_for_failures()


@pytest.mark.asyncio
async def test_retention_keeps_newest_and_protects_rollback_target(tmp_path: Path) -> None:
    root = _project(tmp_path, {"a.ts": b"a"})
    manager = _manager(root, max_checkpoints=3)

    created = [await manager.create_checkpoint(f"cp-{index}", ["a.ts"]) for index in range(4)]

    kept = manager.checkpoints()
    assert len(kept) == 3
    assert [item.checkpoint_id for item in kept] == [
        item.checkpoint_id for item in reversed(created[1:])
    ]
    assert not created[0].directory.exists()

    target = created[1]
    operation = await manager.rollback_to_checkpoint(
        target.checkpoint_id, "retry", backup_before_rollback=True
    )
    assert operation.safety_checkpoint_id is not None
    assert manager.get(target.checkpoint_id) == target
    assert len(manager.checkpoints()) == 3


@pytest.mark.asyncio
async def test_safety_checkpoint_survives_retention_at_capacity(tmp_path: Path) -> None:
    root = _project(tmp_path, {"a.ts": b"original"})
    manager = _manager(root, max_checkpoints=1)
    target = await manager.create_checkpoint("only", ["a.ts"])
    (root / "a.ts").write_bytes(b"edited")

    operation = await manager.rollback_to_checkpoint(
        target.checkpoint_id, "retry", backup_before_rollback=True
    )

    safety_id = operation.safety_checkpoint_id
    assert safety_id is not None
    kept = {item.checkpoint_id for item in manager.checkpoints()}
    assert kept == {target.checkpoint_id, safety_id}
    safety = manager.get(safety_id)
    assert (await manager.verify_checkpoint_integrity(safety)).valid
    assert safety.files[0].backup_path.read_bytes() == b"edited"
    assert (root / "a.ts").read_bytes() == b"original"

    # The next ordinary checkpoint brings the count back to the limit.
    latest = await manager.create_checkpoint("after", ["a.ts"])
    assert [item.checkpoint_id for item in manager.checkpoints()] == [latest.checkpoint_id]


@pytest.mark.asyncio
async def test_relocated_project_restores_from_loaded_sidecars(tmp_path: Path) -> None:
    root = _project(tmp_path, {"src/a.ts": b"original"})
    checkpoint = await _manager(root).create_checkpoint("portable", ["src/a.ts"])
    moved = tmp_path / "moved"
    shutil.copytree(root, moved)
    (moved / "src/a.ts").write_bytes(b"edited")

    relocated = _manager(moved)
    await relocated.load()
    operation = await relocated.rollback_to_checkpoint(checkpoint.checkpoint_id)

    assert operation.files_restored == ("src/a.ts",)
    assert (moved / "src/a.ts").read_bytes() == b"original"
    assert (root / "src/a.ts").read_bytes() == b"original"


@pytest.mark.asyncio
async def test_delete_and_lookup_errors(tmp_path: Path) -> None:
    root = _project(tmp_path, {"a.ts": b"a"})
    manager = _manager(root)
    checkpoint = await manager.create_checkpoint("gone", ["a.ts"])

    assert await manager.delete_checkpoint(checkpoint.checkpoint_id)
    assert not await manager.delete_checkpoint(checkpoint.checkpoint_id)
    with pytest.raises(ConfigurationError, match="unknown checkpoint"):
        manager.get(checkpoint.checkpoint_id)


@pytest.mark.asyncio
async def test_load_recovers_sidecars_and_skips_corrupt_ones(tmp_path: Path) -> None:
    root = _project(tmp_path, {"a.ts": b"a"})
    first = _manager(root)
    checkpoint = await first.create_checkpoint("persisted", ["a.ts"], metadata={"phase": "p1"})
    broken = first.backup_dir / "checkpoint-01BROKEN"
    broken.mkdir()
    (broken / "checkpoint.json").write_text("{not json", encoding="utf-8")

    second = _manager(root)
    loaded = await second.load()
    points = await second.recovery_points()

    assert [item.checkpoint_id for item in loaded] == [checkpoint.checkpoint_id]
    assert loaded[0].metadata == {"phase": "p1"}
    assert points[0].valid
    assert not points[0].git_backed
    stats = second.statistics()
    assert stats.count == 1
    assert stats.total_size_bytes == 1


def test_rollback_commands_restore_each_file_once_newest_first() -> None:
    commands = [
        EditCommand.replace("a.ts", "x", description="fix a"),
        EditCommand.copy("b.ts", "c.ts"),
        EditCommand.replace("a.ts", "y"),
    ]

    rollback = create_rollback_commands(commands, {"a.ts": "A", "b.ts": "B"})

    assert [(item.file, item.replacement) for item in rollback] == [("a.ts", "A"), ("b.ts", "B")]
    assert rollback[0].description == "Rollback: replace a.ts"
