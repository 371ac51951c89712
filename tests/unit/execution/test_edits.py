"""Unit tests for atomic edit application."""

from __future__ import annotations

from pathlib import Path

import pytest

from repair_orchestrator.domain.models import EditCommand, Position
from repair_orchestrator.errors import EditApplicationError
from repair_orchestrator.execution.edits import apply_edit, snapshot_contents


def _write(root: Path, relative: str, text: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_whole_file_replace_is_idempotent(tmp_path: Path) -> None:
    target = _write(tmp_path, "src/a.ts", "let a = 1\n")
    command = EditCommand.replace("src/a.ts", "let a = 1;\n")

    first = apply_edit(command, tmp_path)
    second = apply_edit(command, tmp_path)

    assert first.changed
    assert first.message == "replaced file content"
    assert not second.changed
    assert second.message == "content already matches"
    assert target.read_text(encoding="utf-8") == "let a = 1;\n"


def test_whole_file_replace_creates_missing_file(tmp_path: Path) -> None:
    outcome = apply_edit(EditCommand.replace("new/b.ts", "export {};\n"), tmp_path)

    assert outcome.changed
    assert (tmp_path / "new" / "b.ts").read_text(encoding="utf-8") == "export {};\n"


def test_pattern_replace_is_multiline_and_honours_count(tmp_path: Path) -> None:
    target = _write(tmp_path, "a.ts", "a  \nb\t\nc\n")

    limited = apply_edit(EditCommand.replace("a.ts", "", pattern=r"[ \t]+$", count=1), tmp_path)
    assert limited.message == "replaced 1 occurrence(s)"
    assert target.read_text(encoding="utf-8") == "a\nb\t\nc\n"

    rest = apply_edit(EditCommand.replace("a.ts", "", pattern=r"[ \t]+$"), tmp_path)
    assert rest.changed
    assert target.read_text(encoding="utf-8") == "a\nb\nc\n"


def test_pattern_without_match_leaves_file_alone(tmp_path: Path) -> None:
    target = _write(tmp_path, "a.ts", "clean\n")
    before = target.stat().st_mtime_ns

    outcome = apply_edit(EditCommand.replace("a.ts", "x", pattern="missing"), tmp_path)

    assert not outcome.changed
    assert "not found" in outcome.message
    assert target.stat().st_mtime_ns == before


def test_insert_and_delete_use_one_based_lines(tmp_path: Path) -> None:
    target = _write(tmp_path, "a.ts", "import x\nconst y = 1\n")

    apply_edit(EditCommand.insert("a.ts", Position(1, 8), ";"), tmp_path)
    apply_edit(EditCommand.delete("a.ts", 2), tmp_path)

    assert target.read_text(encoding="utf-8") == "import x;\n"


def test_out_of_range_positions_are_no_ops(tmp_path: Path) -> None:
    target = _write(tmp_path, "a.ts", "one\ntwo")

    deleted = apply_edit(EditCommand.delete("a.ts", 9), tmp_path)
    inserted = apply_edit(EditCommand.insert("a.ts", Position(1, 40), "!"), tmp_path)

    assert not deleted.changed
    assert "out of range" in deleted.message
    assert not inserted.changed
    assert target.read_text(encoding="utf-8") == "one\ntwo"


def test_copy_and_move_transfer_bytes(tmp_path: Path) -> None:
    _write(tmp_path, "a.ts", "payload\n")

    apply_edit(EditCommand.copy("a.ts", "copies/b.ts"), tmp_path)
    moved = apply_edit(EditCommand.move("a.ts", "moved/c.ts"), tmp_path)

    assert moved.changed
    assert not (tmp_path / "a.ts").exists()
    assert (tmp_path / "copies" / "b.ts").read_text(encoding="utf-8") == "payload\n"
    assert (tmp_path / "moved" / "c.ts").read_text(encoding="utf-8") == "payload\n"


def test_missing_sources_raise_edit_errors(tmp_path: Path) -> None:
    with pytest.raises(EditApplicationError, match="source file not found"):
        apply_edit(EditCommand.move("ghost.ts", "b.ts"), tmp_path)
    with pytest.raises(EditApplicationError, match="ghost.ts"):
        apply_edit(EditCommand.delete("ghost.ts", 1), tmp_path)


def test_bad_replacement_template_raises_an_edit_error(tmp_path: Path) -> None:
    target = _write(tmp_path, "a.txt", "X marks the spot\n")

    with pytest.raises(EditApplicationError, match="invalid pattern or replacement"):
        apply_edit(EditCommand.replace("a.txt", r"C:\path", pattern="X"), tmp_path)

    assert target.read_text(encoding="utf-8") == "X marks the spot\n"


def test_undecodable_bytes_survive_a_pattern_edit(tmp_path: Path) -> None:
    target = tmp_path / "legacy.ts"
    target.write_bytes(b"caf\xe9 = 1 \n")

    apply_edit(EditCommand.replace("legacy.ts", "", pattern=r" +$"), tmp_path)

    assert target.read_bytes() == b"caf\xe9 = 1\n"


def test_snapshot_contents_skips_missing_files(tmp_path: Path) -> None:
    _write(tmp_path, "a.ts", "A")

    assert snapshot_contents(["a.ts", "missing.ts"], tmp_path) == {"a.ts": "A"}
