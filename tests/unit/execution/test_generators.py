"""Unit tests for the generator registry and plugin loading."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from repair_orchestrator.domain.models import Diagnostic, EditKind, RepairScript
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.execution.generators import (
    GenerationContext,
    GeneratorRegistry,
    TrailingWhitespaceGenerator,
    default_registry,
    load_generator_factory,
    load_generator_plugins,
)

_PLUGIN_SOURCE = '''
from repair_orchestrator.domain.models import EditCommand, RepairScript


class ImportSorter:
    category = "Import"

    def can_handle(self, diagnostics):
        return True

    async def generate(self, diagnostics, context):
        return [
            RepairScript(
                script_id=f"{context.phase_id}-sort",
                category=self.category,
                target_diagnostics=tuple(diagnostics),
                commands=(EditCommand.replace(diagnostics[0].file, "import a;\\n"),),
            )
        ]


def make():
    return ImportSorter()


def make_mislabelled():
    sorter = ImportSorter()
    sorter.category = "Type"
    return sorter


not_callable = 42
'''


def _diagnostic(file: str, code: str, category: str = "Formatting") -> Diagnostic:
    return Diagnostic(file=file, line=1, column=1, code=code, message="m", category=category)


def _context(tmp_path: Path, phase_id: str = "syntax-formatting") -> GenerationContext:
    return GenerationContext(project_root=tmp_path, phase_id=phase_id)


@pytest.fixture
def plugin_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    package = tmp_path / "plugins"
    package.mkdir()
    (package / "repair_plugin_sorter.py").write_text(_PLUGIN_SOURCE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(package))
    return "repair_plugin_sorter"


@pytest.mark.asyncio
async def test_trailing_whitespace_generator_groups_by_file(tmp_path: Path) -> None:
    generator = TrailingWhitespaceGenerator(lint_command="npx eslint {files}")
    diagnostics = [
        _diagnostic("b.ts", "no-trailing-spaces"),
        _diagnostic("a.ts", "W291"),
        _diagnostic("a.ts", "W293"),
        _diagnostic("a.ts", "max-len"),
    ]

    scripts = generator.generate(diagnostics, _context(tmp_path))

    assert generator.can_handle(diagnostics)
    assert not generator.can_handle([_diagnostic("a.ts", "max-len")])
    assert [script.script_id for script in scripts] == [
        "syntax-formatting-trailing-whitespace-1",
        "syntax-formatting-trailing-whitespace-2",
    ]
    assert [len(script.target_diagnostics) for script in scripts] == [2, 1]
    command = scripts[0].commands[0]
    assert command.kind is EditKind.REPLACE
    assert command.pattern == r"[ \t]+$"
    assert scripts[0].validation_checks[0].check_type == "lint"


@pytest.mark.asyncio
async def test_registry_only_asks_generators_for_their_category(tmp_path: Path) -> None:
    registry = default_registry()

    scripts = await registry.generate(
        ["Formatting", "Syntax"],
        [_diagnostic("a.ts", "W291"), _diagnostic("b.ts", "TS1005", "Syntax")],
        _context(tmp_path),
    )

    assert len(registry) == 1
    assert registry.registered_categories() == ("Formatting",)
    assert [script.affected_files for script in scripts] == [("a.ts",)]


def test_registry_rejects_duplicates_and_non_generators() -> None:
    registry = GeneratorRegistry()
    generator = TrailingWhitespaceGenerator()
    registry.register(generator)

    with pytest.raises(ConfigurationError, match="already registered"):
        registry.register(generator)
    with pytest.raises(ConfigurationError, match="does not implement"):
        registry.register(object())  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_registry_rejects_non_script_output(tmp_path: Path) -> None:
    class _Broken:
        category = "Logic"

        def can_handle(self, diagnostics: Sequence[Diagnostic]) -> bool:
            return True

        def generate(
            self, diagnostics: Sequence[Diagnostic], context: GenerationContext
        ) -> list[object]:
            return ["not a script"]

    registry = GeneratorRegistry()
    registry.register(_Broken())  # type: ignore[arg-type]

    with pytest.raises(ConfigurationError, match="expected RepairScript"):
        await registry.generate(
            ["Logic"], [_diagnostic("a.ts", "TS7006", "Logic")], _context(tmp_path, "logic")
        )


@pytest.mark.asyncio
async def test_plugins_load_from_module_specs(tmp_path: Path, plugin_module: str) -> None:
    registry = GeneratorRegistry()

    loaded = load_generator_plugins({"Import": f"{plugin_module}:make"}, registry)
    scripts = await registry.generate(
        ["Import"], [_diagnostic("a.ts", "TS2307", "Import")], _context(tmp_path, "imports")
    )

    assert loaded == ("Import",)
    assert isinstance(scripts[0], RepairScript)
    assert scripts[0].script_id == "imports-sort"


def test_plugin_spec_errors(plugin_module: str) -> None:
    registry = GeneratorRegistry()

    with pytest.raises(ConfigurationError, match="must look like"):
        load_generator_factory("no-colon")
    with pytest.raises(ConfigurationError, match="cannot import"):
        load_generator_factory("repair_plugin_missing_module:make")
    with pytest.raises(ConfigurationError, match="callable"):
        load_generator_factory(f"{plugin_module}:not_callable")
    with pytest.raises(ConfigurationError, match="reports category 'Type'"):
        load_generator_plugins({"Import": f"{plugin_module}:make_mislabelled"}, registry)
