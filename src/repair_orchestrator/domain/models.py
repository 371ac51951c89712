"""Immutable value types exchanged between the analyzer, generators, and the orchestration core."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 8192


class DiagnosticSeverity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DiagnosticCategory(StrEnum):
    """Categories the fixed repair pipeline knows how to schedule."""

    SYNTAX = "Syntax"
    FORMATTING = "Formatting"
    IMPORT = "Import"
    TYPE = "Type"
    LOGIC = "Logic"


class EditKind(StrEnum):
    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"
    MOVE = "move"
    COPY = "copy"


class ResultPolicy(StrEnum):
    """How a validation check's process outcome is turned into pass/fail."""

    SUCCESS = "success"
    ZERO_ERRORS = "zero-errors"
    IMPROVED_COUNT = "improved-count"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------------
# validation helpers
# ---------------------------------------------------------------------------


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_str(value: object, path: str, *, min_len: int = 1, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_float(value: object, path: str, *, minimum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    if minimum is not None and parsed < minimum:
        _fail(path, f"must be >= {minimum}")
    return parsed


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_tuple(value: object, path: str) -> tuple[object, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    parsed = {str(key): item for key, item in value.items()}
    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")
    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")
    return parsed


def datetime_to_iso8601z(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_datetime(value: object, path: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")
    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def serialize_value(value: object, path: str) -> JSONValue:
    """Convert dataclasses, enums, datetimes and containers into JSON-compatible values."""
    if isinstance(value, Enum):
        return cast("JSONValue", value.value)
    if value is None or isinstance(value, (bool, str, int)):
        return cast("JSONValue", value)
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, datetime):
        return datetime_to_iso8601z(value)
    if isinstance(value, (tuple, list, frozenset)):
        return [serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            out[str(key)] = serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value) and not isinstance(value, type):
        return {
            item.name: serialize_value(getattr(value, item.name), f"{path}.{item.name}")
            for item in fields(value)
            if not item.name.startswith("_")
        }
    _fail(path, f"cannot serialize value of type {type(value).__name__}")


# ---------------------------------------------------------------------------
# diagnostics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Diagnostic(CanonicalModel):
    """One categorized static-analysis diagnostic produced by the analyzer."""

    file: str
    line: int
    column: int
    code: str
    message: str
    category: str
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR

    def __post_init__(self) -> None:
        object.__setattr__(self, "file", _as_str(self.file, "Diagnostic.file", max_len=4096))
        object.__setattr__(self, "line", _as_int(self.line, "Diagnostic.line", minimum=0))
        object.__setattr__(self, "column", _as_int(self.column, "Diagnostic.column", minimum=0))
        object.__setattr__(self, "code", _as_str(self.code, "Diagnostic.code", max_len=128))
        object.__setattr__(self, "message", _as_str(self.message, "Diagnostic.message"))
        object.__setattr__(
            self, "category", _as_str(self.category, "Diagnostic.category", max_len=128)
        )
        object.__setattr__(
            self, "severity", _as_enum(DiagnosticSeverity, self.severity, "Diagnostic.severity")
        )

    @property
    def key(self) -> tuple[str, int, int, str]:
        return (self.file, self.line, self.column, self.code)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Diagnostic:
        parsed = _expect_object(
            data,
            "Diagnostic",
            required={"file", "line", "column", "code", "message", "category"},
            optional={"severity"},
        )
        return cls(
            file=cast("str", parsed["file"]),
            line=cast("int", parsed["line"]),
            column=cast("int", parsed["column"]),
            code=cast("str", parsed["code"]),
            message=cast("str", parsed["message"]),
            category=cast("str", parsed["category"]),
            severity=cast("DiagnosticSeverity", parsed.get("severity", DiagnosticSeverity.ERROR)),
        )


# ---------------------------------------------------------------------------
# edit commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Position(CanonicalModel):
    """1-based line with a 0-based character offset inside that line."""

    line: int
    column: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "line", _as_int(self.line, "Position.line", minimum=1))
        object.__setattr__(self, "column", _as_int(self.column, "Position.column", minimum=0))


@dataclass(frozen=True, slots=True)
class EditCommand(CanonicalModel):
    """
    Opaque edit instruction applied to a single file.

    ``replace`` with no ``pattern`` swaps the whole file content for ``replacement``;
    with a pattern it is a regex substitution limited by ``count`` (0 means all).
    """

    kind: EditKind
    file: str
    description: str = ""
    pattern: str | None = None
    replacement: str | None = None
    position: Position | None = None
    target_file: str | None = None
    count: int = 0

    def __post_init__(self) -> None:
        kind = _as_enum(EditKind, self.kind, "EditCommand.kind")
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "file", _as_str(self.file, "EditCommand.file", max_len=4096))
        if not isinstance(self.description, str):
            _fail("EditCommand.description", "expected string")
        object.__setattr__(self, "count", _as_int(self.count, "EditCommand.count", minimum=0))

        if self.pattern is not None:
            if not isinstance(self.pattern, str) or not self.pattern:
                _fail("EditCommand.pattern", "must be a non-empty string when provided")
            try:
                re.compile(self.pattern)
            except re.error as exc:
                _fail("EditCommand.pattern", f"invalid regular expression: {exc}")
        if self.replacement is not None and not isinstance(self.replacement, str):
            _fail("EditCommand.replacement", "expected string")
        if self.position is not None and not isinstance(self.position, Position):
            _fail("EditCommand.position", "must be Position")

        if kind is EditKind.REPLACE and self.replacement is None:
            _fail("EditCommand.replacement", "required for replace")
        if kind is EditKind.INSERT and (self.position is None or self.replacement is None):
            _fail("EditCommand", "insert requires position and replacement text")
        if kind is EditKind.DELETE and self.position is None:
            _fail("EditCommand.position", "required for delete")
        if kind in {EditKind.MOVE, EditKind.COPY}:
            if self.target_file is None:
                _fail("EditCommand.target_file", f"required for {kind.value}")
            object.__setattr__(
                self,
                "target_file",
                _as_str(self.target_file, "EditCommand.target_file", max_len=4096),
            )

    @property
    def touched_files(self) -> tuple[str, ...]:
        if self.target_file is not None:
            return (self.file, self.target_file)
        return (self.file,)

    @classmethod
    def replace(
        cls,
        file: str,
        replacement: str,
        *,
        pattern: str | None = None,
        count: int = 0,
        description: str = "",
    ) -> EditCommand:
        return cls(
            kind=EditKind.REPLACE,
            file=file,
            pattern=pattern,
            replacement=replacement,
            count=count,
            description=description,
        )

    @classmethod
    def insert(
        cls, file: str, position: Position, text: str, *, description: str = ""
    ) -> EditCommand:
        return cls(
            kind=EditKind.INSERT,
            file=file,
            position=position,
            replacement=text,
            description=description,
        )

    @classmethod
    def delete(cls, file: str, line: int, *, description: str = "") -> EditCommand:
        return cls(
            kind=EditKind.DELETE, file=file, position=Position(line), description=description
        )

    @classmethod
    def move(cls, file: str, target_file: str, *, description: str = "") -> EditCommand:
        return cls(kind=EditKind.MOVE, file=file, target_file=target_file, description=description)

    @classmethod
    def copy(cls, file: str, target_file: str, *, description: str = "") -> EditCommand:
        return cls(kind=EditKind.COPY, file=file, target_file=target_file, description=description)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> EditCommand:
        parsed = _expect_object(
            data,
            "EditCommand",
            required={"kind", "file"},
            optional={
                "description",
                "pattern",
                "replacement",
                "position",
                "target_file",
                "count",
            },
        )
        raw_position = parsed.get("position")
        position: Position | None = None
        if isinstance(raw_position, Position):
            position = raw_position
        elif raw_position is not None:
            position_fields = _expect_object(
                raw_position, "EditCommand.position", required={"line"}, optional={"column"}
            )
            position = Position(
                line=cast("int", position_fields["line"]),
                column=cast("int", position_fields.get("column", 0)),
            )
        return cls(
            kind=cast("EditKind", parsed["kind"]),
            file=cast("str", parsed["file"]),
            description=cast("str", parsed.get("description", "")),
            pattern=cast("str | None", parsed.get("pattern")),
            replacement=cast("str | None", parsed.get("replacement")),
            position=position,
            target_file=cast("str | None", parsed.get("target_file")),
            count=cast("int", parsed.get("count", 0)),
        )


# ---------------------------------------------------------------------------
# validation checks and repair scripts
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ValidationCheck(CanonicalModel):
    """
    External command plus the policy that decides whether it passed.

    ``command`` is a shell-like template split with ``shlex``; placeholders such as
    ``{files}`` are substituted per token before spawning. ``error_marker`` overrides
    the default error-marker regexes used by the counting policies.
    """

    check_type: str
    command: str
    policy: ResultPolicy = ResultPolicy.SUCCESS
    timeout_seconds: float | None = None
    description: str = ""
    error_marker: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "check_type", _as_str(self.check_type, "ValidationCheck.check_type", max_len=128)
        )
        object.__setattr__(self, "command", _as_str(self.command, "ValidationCheck.command"))
        object.__setattr__(
            self, "policy", _as_enum(ResultPolicy, self.policy, "ValidationCheck.policy")
        )
        if self.timeout_seconds is not None:
            timeout = _as_float(self.timeout_seconds, "ValidationCheck.timeout_seconds")
            if timeout <= 0:
                _fail("ValidationCheck.timeout_seconds", "must be > 0")
            object.__setattr__(self, "timeout_seconds", timeout)
        if self.error_marker is not None:
            try:
                re.compile(self.error_marker)
            except re.error as exc:
                _fail("ValidationCheck.error_marker", f"invalid regular expression: {exc}")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ValidationCheck:
        parsed = _expect_object(
            data,
            "ValidationCheck",
            required={"type", "command"},
            optional={"policy", "timeout_seconds", "description", "error_marker"},
        )
        return cls(
            check_type=cast("str", parsed["type"]),
            command=cast("str", parsed["command"]),
            policy=cast("ResultPolicy", parsed.get("policy", ResultPolicy.SUCCESS)),
            timeout_seconds=cast("float | None", parsed.get("timeout_seconds")),
            description=cast("str", parsed.get("description", "")),
            error_marker=cast("str | None", parsed.get("error_marker")),
        )


@dataclass(frozen=True, slots=True)
class RepairScript(CanonicalModel):
    """Generated edit script for a group of diagnostics; consumed exactly once."""

    script_id: str
    category: str
    target_diagnostics: tuple[Diagnostic, ...]
    commands: tuple[EditCommand, ...]
    rollback_commands: tuple[EditCommand, ...] = ()
    validation_checks: tuple[ValidationCheck, ...] = ()
    estimated_runtime_seconds: float = 0.0
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "script_id", _as_str(self.script_id, "RepairScript.script_id", max_len=256)
        )
        object.__setattr__(
            self, "category", _as_str(self.category, "RepairScript.category", max_len=128)
        )
        for name, item_type in (
            ("target_diagnostics", Diagnostic),
            ("commands", EditCommand),
            ("rollback_commands", EditCommand),
            ("validation_checks", ValidationCheck),
        ):
            items = _as_tuple(getattr(self, name), f"RepairScript.{name}")
            for index, item in enumerate(items):
                if not isinstance(item, item_type):
                    _fail(f"RepairScript.{name}[{index}]", f"must be {item_type.__name__}")
            object.__setattr__(self, name, items)
        object.__setattr__(
            self,
            "estimated_runtime_seconds",
            _as_float(
                self.estimated_runtime_seconds, "RepairScript.estimated_runtime_seconds", minimum=0
            ),
        )

    @property
    def affected_files(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for command in self.commands:
            for path in command.touched_files:
                seen.setdefault(path, None)
        return tuple(seen)


@dataclass(frozen=True, slots=True)
class DiagnosticSummary(CanonicalModel):
    """Aggregate counts over a diagnostic set, used by reports and the CLI."""

    total: int
    by_category: Mapping[str, int] = field(default_factory=dict)
    by_file: Mapping[str, int] = field(default_factory=dict)
    by_severity: Mapping[str, int] = field(default_factory=dict)
    by_code: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_diagnostics(cls, diagnostics: Sequence[Diagnostic]) -> DiagnosticSummary:
        by_category: dict[str, int] = {}
        by_file: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        by_code: dict[str, int] = {}
        for diagnostic in diagnostics:
            by_category[diagnostic.category] = by_category.get(diagnostic.category, 0) + 1
            by_file[diagnostic.file] = by_file.get(diagnostic.file, 0) + 1
            severity = diagnostic.severity.value
            by_severity[severity] = by_severity.get(severity, 0) + 1
            by_code[diagnostic.code] = by_code.get(diagnostic.code, 0) + 1
        return cls(
            total=len(diagnostics),
            by_category=dict(sorted(by_category.items())),
            by_file=dict(sorted(by_file.items())),
            by_severity=dict(sorted(by_severity.items())),
            by_code=dict(sorted(by_code.items(), key=lambda item: (-item[1], item[0]))),
        )


__all__ = [
    "CanonicalModel",
    "Diagnostic",
    "DiagnosticCategory",
    "DiagnosticSeverity",
    "DiagnosticSummary",
    "EditCommand",
    "EditKind",
    "JSONValue",
    "Position",
    "RepairScript",
    "ResultPolicy",
    "ValidationCheck",
    "datetime_to_iso8601z",
    "parse_datetime",
    "serialize_value",
]
