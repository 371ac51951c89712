"""Atomic application of edit commands to files."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from repair_orchestrator.domain.models import EditCommand, EditKind
from repair_orchestrator.errors import EditApplicationError
from repair_orchestrator.utils.fs import atomic_copy, atomic_write

logger = logging.getLogger(__name__)

_ENCODING: Final[str] = "utf-8"
_ERRORS: Final[str] = "surrogateescape"


@dataclass(frozen=True, slots=True)
class EditOutcome:
    command: EditCommand
    changed: bool
    message: str = ""


def resolve_path(path: str, project_root: Path) -> Path:
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = project_root / candidate
    return candidate


def read_text(path: Path) -> str:
    return path.read_bytes().decode(_ENCODING, errors=_ERRORS)


def write_text(path: Path, text: str) -> None:
    atomic_write(path, text.encode(_ENCODING, errors=_ERRORS), create_parents=True)


def snapshot_contents(files: Iterable[str], project_root: Path) -> dict[str, str]:
    """Current text of every existing file, keyed by the path as given."""

    contents: dict[str, str] = {}
    for item in files:
        path = resolve_path(item, project_root)
        if path.is_file():
            contents[item] = read_text(path)
    return contents


def apply_edit(command: EditCommand, project_root: Path) -> EditOutcome:
    """
    Apply one edit as an atomic read-modify-write.

    Insert and delete positions outside the file leave it unchanged. A missing source
    file raises ``EditApplicationError``.
    """

    source = resolve_path(command.file, project_root)
    try:
        if command.kind is EditKind.COPY or command.kind is EditKind.MOVE:
            return _transfer(command, source, project_root)
        if command.kind is EditKind.REPLACE and command.pattern is None:
            assert command.replacement is not None
            previous = read_text(source) if source.exists() else None
            if previous == command.replacement:
                return EditOutcome(command, changed=False, message="content already matches")
            write_text(source, command.replacement)
            return EditOutcome(command, changed=True, message="replaced file content")

        original = read_text(source)
        updated, message = _transform(command, original)
        if updated is None:
            logger.info("edit left %s unchanged: %s", command.file, message)
            return EditOutcome(command, changed=False, message=message)
        if updated != original:
            write_text(source, updated)
        return EditOutcome(command, changed=updated != original, message=message)
    except OSError as exc:
        raise EditApplicationError(f"{command.kind.value} {command.file}: {exc}") from exc
    except re.error as exc:
        raise EditApplicationError(
            f"{command.kind.value} {command.file}: invalid pattern or replacement: {exc}"
        ) from exc


def _transform(command: EditCommand, content: str) -> tuple[str | None, str]:
    if command.kind is EditKind.REPLACE:
        assert command.pattern is not None and command.replacement is not None
        updated, replaced = re.subn(
            command.pattern,
            command.replacement,
            content,
            count=command.count,
            flags=re.MULTILINE,
        )
        if replaced == 0:
            return None, f"pattern {command.pattern!r} not found"
        return updated, f"replaced {replaced} occurrence(s)"

    assert command.position is not None
    lines = content.split("\n")
    line_index = command.position.line - 1
    if line_index >= len(lines):
        return None, f"line {command.position.line} out of range ({len(lines)} lines)"

    if command.kind is EditKind.INSERT:
        assert command.replacement is not None
        line = lines[line_index]
        column = command.position.column
        if column > len(line):
            return None, f"column {column} out of range on line {command.position.line}"
        lines[line_index] = f"{line[:column]}{command.replacement}{line[column:]}"
        return "\n".join(lines), f"inserted text at {command.position.line}:{column}"

    del lines[line_index]
    return "\n".join(lines), f"deleted line {command.position.line}"


def _transfer(command: EditCommand, source: Path, project_root: Path) -> EditOutcome:
    assert command.target_file is not None
    if not source.is_file():
        raise EditApplicationError(f"{command.kind.value} {command.file}: source file not found")
    target = resolve_path(command.target_file, project_root)
    atomic_copy(source, target, create_parents=True)
    if command.kind is EditKind.MOVE:
        source.unlink()
        return EditOutcome(command, changed=True, message=f"moved to {command.target_file}")
    return EditOutcome(command, changed=True, message=f"copied to {command.target_file}")


__all__ = [
    "EditOutcome",
    "apply_edit",
    "read_text",
    "resolve_path",
    "snapshot_contents",
    "write_text",
]
