"""
repair-orchestrator — filesystem utilities

File: src/repair_orchestrator/utils/fs.py

Purpose
- Atomic whole-file writes and copies used by edit application and checkpoint restore.
- Guarded deletion of checkpoint storage.

Functional requirements
- Every write lands in a temp file inside the destination directory and is moved into
  place with a single ``os.replace``; a reader never observes a half-written file.
- Deletion refuses paths outside the configured root.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

if TYPE_CHECKING:
    from collections.abc import Callable

PathLike = str | os.PathLike[str]

_COPY_CHUNK_BYTES = 1024 * 1024

__all__ = [
    "atomic_copy",
    "atomic_write",
    "is_within",
    "safe_delete",
]


def atomic_write(
    path: PathLike,
    data: bytes | str,
    *,
    encoding: str = "utf-8",
    create_parents: bool = False,
) -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.

    Text is encoded explicitly so line endings are written exactly as given.
    """

    target = Path(path)
    if create_parents:
        target.parent.mkdir(parents=True, exist_ok=True)
    payload = data if isinstance(data, bytes) else data.encode(encoding)
    _replace_with(target, lambda handle: handle.write(payload))


def atomic_copy(source: PathLike, destination: PathLike, *, create_parents: bool = True) -> int:
    """
    Copy ``source`` over ``destination`` through a same-directory temp file.

    Returns the number of bytes copied. File mode bits are carried over.
    """

    source_path = Path(source)
    target = Path(destination)
    if create_parents:
        target.parent.mkdir(parents=True, exist_ok=True)

    copied = 0

    def _copy(handle: BinaryIO) -> None:
        nonlocal copied
        with source_path.open("rb") as src:
            while True:
                chunk = src.read(_COPY_CHUNK_BYTES)
                if not chunk:
                    break
                handle.write(chunk)
                copied += len(chunk)

    _replace_with(target, _copy, mode_from=source_path)
    return copied


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    resolved_parent = Path(parent).resolve()
    resolved_child = Path(child).resolve()
    return _is_relative_to(resolved_child, resolved_parent)


def safe_delete(path: PathLike, root: PathLike) -> None:
    """
    Delete ``path`` only if it is contained within ``root``.

    Symlinks are unlinked without traversing into their targets.
    """

    workspace = Path(root).resolve(strict=True)
    if not workspace.is_dir():
        raise NotADirectoryError(f"{workspace!s} is not a directory")

    target = Path(path)
    candidate = target.parent.resolve(strict=True) / target.name
    if not _is_relative_to(candidate, workspace) or candidate == workspace:
        raise ValueError(f"refusing to delete path outside root: {target!s}")

    if target.is_symlink():
        target.unlink()
        return
    if target.is_dir():
        shutil.rmtree(target)
        return
    target.unlink()


def _replace_with(
    target: Path,
    write: Callable[[BinaryIO], object],
    *,
    mode_from: Path | None = None,
) -> None:
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            write(file_handle)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        if mode_from is not None:
            shutil.copymode(mode_from, temp_path)
        elif target.exists():
            shutil.copymode(target, temp_path)
        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
