"""
repair-orchestrator — script generators

Purpose
- Pluggable per-category producers of repair scripts, looked up by diagnostic category.

Functional requirements
- A generator exposes ``category``, ``can_handle`` and ``generate``; ``generate`` may
  return scripts directly or an awaitable of them.
- Registration is deterministic and rejects duplicate registrations for one generator.
- External generators load from ``"package.module:factory"`` references.
"""

from __future__ import annotations

import importlib
import inspect
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

from repair_orchestrator.domain.models import (
    Diagnostic,
    DiagnosticCategory,
    EditCommand,
    RepairScript,
    ResultPolicy,
    ValidationCheck,
)
from repair_orchestrator.errors import ConfigurationError

TRAILING_WHITESPACE_CODES: Final[frozenset[str]] = frozenset(
    {"trailing-space", "no-trailing-spaces", "W291", "W293"}
)


@dataclass(frozen=True, slots=True)
class GenerationContext:
    project_root: Path
    phase_id: str
    dry_run: bool = False


@runtime_checkable
class ScriptGenerator(Protocol):
    """Produces repair scripts for diagnostics of one category."""

    @property
    def category(self) -> str: ...

    def can_handle(self, diagnostics: Sequence[Diagnostic]) -> bool: ...

    def generate(
        self,
        diagnostics: Sequence[Diagnostic],
        context: GenerationContext,
    ) -> Sequence[RepairScript] | Awaitable[Sequence[RepairScript]]: ...


GeneratorFactory = Callable[[], ScriptGenerator]


class GeneratorRegistry:
    """Generators keyed by category, kept in registration order within a category."""

    def __init__(self) -> None:
        self._generators: dict[str, list[ScriptGenerator]] = {}

    def register(self, generator: ScriptGenerator) -> None:
        if not isinstance(generator, ScriptGenerator):
            raise ConfigurationError(f"{generator!r} does not implement ScriptGenerator")
        category = generator.category
        if not isinstance(category, str) or not category.strip():
            raise ConfigurationError("generator category must be a non-empty string")
        registered = self._generators.setdefault(category, [])
        if any(existing is generator for existing in registered):
            raise ConfigurationError(f"generator already registered for {category!r}")
        registered.append(generator)

    def for_category(self, category: str) -> tuple[ScriptGenerator, ...]:
        return tuple(self._generators.get(category, ()))

    def registered_categories(self) -> tuple[str, ...]:
        return tuple(sorted(self._generators))

    def __len__(self) -> int:
        return sum(len(items) for items in self._generators.values())

    async def generate(
        self,
        categories: Sequence[str],
        diagnostics: Sequence[Diagnostic],
        context: GenerationContext,
    ) -> tuple[RepairScript, ...]:
        """Ask every generator of ``categories`` that can handle its group for scripts."""

        scripts: list[RepairScript] = []
        for category in categories:
            group = [item for item in diagnostics if item.category == category]
            if not group:
                continue
            for generator in self.for_category(category):
                if not generator.can_handle(group):
                    continue
                produced = generator.generate(group, context)
                if inspect.isawaitable(produced):
                    produced = await produced
                for script in produced:
                    if not isinstance(script, RepairScript):
                        raise ConfigurationError(
                            f"generator for {category!r} returned {type(script).__name__}, "
                            "expected RepairScript"
                        )
                    scripts.append(script)
        return tuple(scripts)


class TrailingWhitespaceGenerator:
    """Formatting generator that strips trailing whitespace, one script per file."""

    def __init__(self, *, lint_command: str | None = None) -> None:
        self._lint_command = lint_command

    @property
    def category(self) -> str:
        return DiagnosticCategory.FORMATTING.value

    def can_handle(self, diagnostics: Sequence[Diagnostic]) -> bool:
        return any(item.code in TRAILING_WHITESPACE_CODES for item in diagnostics)

    def generate(
        self,
        diagnostics: Sequence[Diagnostic],
        context: GenerationContext,
    ) -> tuple[RepairScript, ...]:
        by_file: dict[str, list[Diagnostic]] = {}
        for item in diagnostics:
            if item.code in TRAILING_WHITESPACE_CODES:
                by_file.setdefault(item.file, []).append(item)

        checks: tuple[ValidationCheck, ...] = ()
        if self._lint_command is not None:
            checks = (
                ValidationCheck(
                    check_type="lint",
                    command=self._lint_command,
                    policy=ResultPolicy.IMPROVED_COUNT,
                    timeout_seconds=30.0,
                ),
            )
        scripts: list[RepairScript] = []
        for index, (path, targets) in enumerate(sorted(by_file.items()), start=1):
            scripts.append(
                RepairScript(
                    script_id=f"{context.phase_id}-trailing-whitespace-{index}",
                    category=self.category,
                    target_diagnostics=tuple(targets),
                    commands=(
                        EditCommand.replace(
                            path,
                            "",
                            pattern=r"[ \t]+$",
                            description=f"Remove trailing whitespace from {path}",
                        ),
                    ),
                    validation_checks=checks,
                    estimated_runtime_seconds=0.1,
                    description=f"Strip trailing whitespace ({len(targets)} diagnostics)",
                )
            )
        return tuple(scripts)


def load_generator_factory(reference: str) -> GeneratorFactory:
    module_name, separator, attribute = reference.partition(":")
    if not separator or not module_name or not attribute:
        raise ConfigurationError(
            f"generator reference must look like 'package.module:factory': {reference!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import generator module {module_name!r}: {exc}") from exc
    factory = getattr(module, attribute, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(f"{reference!r} does not name a callable generator factory")
    return factory


def load_generator_plugins(
    plugins: Mapping[str, str],
    registry: GeneratorRegistry,
) -> tuple[str, ...]:
    """
    Register generators named by ``category -> "module:factory"`` entries.

    The produced generator's ``category`` must match the key it was configured under.
    Returns the categories loaded, in sorted order.
    """

    loaded: list[str] = []
    for category in sorted(plugins):
        generator = load_generator_factory(plugins[category])()
        if not isinstance(generator, ScriptGenerator):
            raise ConfigurationError(
                f"factory for {category!r} did not return a ScriptGenerator"
            )
        if generator.category != category:
            raise ConfigurationError(
                f"generator configured for {category!r} reports category {generator.category!r}"
            )
        registry.register(generator)
        loaded.append(category)
    return tuple(loaded)


def default_registry() -> GeneratorRegistry:
    registry = GeneratorRegistry()
    registry.register(TrailingWhitespaceGenerator())
    return registry


__all__ = [
    "TRAILING_WHITESPACE_CODES",
    "GenerationContext",
    "GeneratorFactory",
    "GeneratorRegistry",
    "ScriptGenerator",
    "TrailingWhitespaceGenerator",
    "default_registry",
    "load_generator_factory",
    "load_generator_plugins",
]
