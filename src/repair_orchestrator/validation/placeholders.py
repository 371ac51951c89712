"""Placeholder substitution for validation command templates."""

from __future__ import annotations

import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from repair_orchestrator.errors import ConfigurationError

if TYPE_CHECKING:
    from repair_orchestrator.validation.models import ValidationContext

_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True, slots=True)
class PlaceholderTable:
    """
    Typed substitution table.

    Scalar placeholders replace text inside a token. A token that is exactly a list
    placeholder (``{files}``) expands into one argument per item; embedded inside a larger
    token the list is joined with spaces. Unknown placeholders are left untouched.
    """

    scalars: Mapping[str, str] = field(default_factory=dict)
    lists: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        overlap = set(self.scalars) & set(self.lists)
        if overlap:
            raise ValueError(f"PlaceholderTable: names defined twice: {sorted(overlap)}")
        object.__setattr__(self, "scalars", MappingProxyType(dict(self.scalars)))
        object.__setattr__(
            self,
            "lists",
            MappingProxyType({key: tuple(value) for key, value in self.lists.items()}),
        )

    @classmethod
    def from_context(cls, context: ValidationContext) -> PlaceholderTable:
        scalars = {key: str(value) for key, value in context.values.items()}
        scalars["project_root"] = str(context.project_root)
        if context.files:
            scalars["file"] = context.files[0]
        if context.baseline_error_count is not None:
            scalars["baseline_error_count"] = str(context.baseline_error_count)
        scalars.pop("files", None)
        return cls(scalars=scalars, lists={"files": context.files})

    def expand(self, template: str) -> tuple[str, ...]:
        """Split ``template`` with ``shlex`` and substitute placeholders per token."""

        try:
            tokens = shlex.split(template)
        except ValueError as exc:
            raise ConfigurationError(f"invalid command template {template!r}: {exc}") from exc
        if not tokens:
            raise ConfigurationError("command template is empty")

        argv: list[str] = []
        for token in tokens:
            match = _PLACEHOLDER_RE.fullmatch(token)
            if match is not None and match.group(1) in self.lists:
                argv.extend(self.lists[match.group(1)])
                continue
            argv.append(self.substitute(token))
        if not argv:
            raise ConfigurationError(f"command template {template!r} expanded to nothing")
        return tuple(argv)

    def substitute(self, text: str) -> str:
        def _replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if name in self.scalars:
                return self.scalars[name]
            if name in self.lists:
                return " ".join(self.lists[name])
            return match.group(0)

        return _PLACEHOLDER_RE.sub(_replace, text)


__all__ = ["PlaceholderTable"]
