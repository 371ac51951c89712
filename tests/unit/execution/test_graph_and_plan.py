"""
repair-orchestrator — unit tests for dependency ordering and plan models

Purpose
- Deterministic topological order by priority, then declaration.
- Cycle detection before any phase runs, and phase status transitions.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from repair_orchestrator.domain.models import Diagnostic, EditCommand, RepairScript
from repair_orchestrator.errors import ConfigurationError, DependencyCycleError
from repair_orchestrator.execution.graph import DependencyGraph
from repair_orchestrator.execution.plan import ExecutionPhase, ExecutionPlan, PhaseStatus


def _diagnostic(file: str, category: str, code: str = "TS1005") -> Diagnostic:
    return Diagnostic(file=file, line=1, column=1, code=code, message="m", category=category)


def _script(script_id: str, *files: str, category: str = "Syntax") -> RepairScript:
    return RepairScript(
        script_id=script_id,
        category=category,
        target_diagnostics=tuple(_diagnostic(path, category) for path in files),
        commands=tuple(EditCommand.replace(path, "fixed\n") for path in files),
        estimated_runtime_seconds=0.5,
    )


def test_ready_nodes_release_by_priority_then_declaration() -> None:
    graph = DependencyGraph.from_dependencies(
        [
            ("logic", ("types",), 4),
            ("types", (), 3),
            ("imports", (), 2),
            ("format", (), 2),
        ]
    )

    assert graph.topological_order() == ("imports", "format", "types", "logic")
    assert graph.dependencies("logic") == ("types",)
    assert graph.dependents("types") == ("logic",)
    assert graph.runnable({"types"}) == ("logic", "imports", "format")


def test_cycle_is_reported_with_canonical_paths() -> None:
    graph = DependencyGraph.from_dependencies(
        [("A", ("C",), 1), ("B", ("A",), 1), ("C", ("B",), 1), ("D", (), 1)]
    )

    with pytest.raises(DependencyCycleError) as excinfo:
        graph.topological_order()

    assert excinfo.value.cycles == (("A", "B", "C", "A"),)
    assert "A -> B -> C -> A" in str(excinfo.value)


def test_graph_construction_errors() -> None:
    with pytest.raises(ConfigurationError, match="duplicate phase id"):
        DependencyGraph.from_dependencies([("A", (), 1), ("A", (), 2)])
    with pytest.raises(ConfigurationError, match="unknown phase"):
        DependencyGraph.from_dependencies([("A", ("ghost",), 1)])


def test_transitive_dependents() -> None:
    graph = DependencyGraph.from_dependencies(
        [("a", (), 1), ("b", ("a",), 2), ("c", ("b",), 3), ("d", (), 4)]
    )

    assert graph.dependents("a", transitive=True) == ("b", "c")


@st.composite
def _dags(draw: st.DrawFn) -> list[tuple[str, tuple[str, ...], int]]:
    size = draw(st.integers(min_value=1, max_value=8))
    nodes: list[tuple[str, tuple[str, ...], int]] = []
    for index in range(size):
        earlier = [f"n{item}" for item in range(index)]
        dependencies = draw(st.lists(st.sampled_from(earlier), unique=True)) if earlier else []
        nodes.append((f"n{index}", tuple(dependencies), draw(st.integers(0, 3))))
    return draw(st.permutations(nodes))


@given(nodes=_dags())
@settings(max_examples=60, derandomize=True, deadline=None)
def test_property_order_respects_every_edge(
    nodes: list[tuple[str, tuple[str, ...], int]],
) -> None:
    order = DependencyGraph.from_dependencies(nodes).topological_order()
    position = {node: index for index, node in enumerate(order)}

    assert sorted(order) == sorted(node for node, _, _ in nodes)
    for node, dependencies, _ in nodes:
        for dependency in dependencies:
            assert position[dependency] < position[node]


def test_plan_with_cycle_fails_before_any_phase_runs() -> None:
    first = ExecutionPhase("A", "A", (_script("s1", "a.ts"),), dependencies=("B",))
    second = ExecutionPhase("B", "B", (_script("s2", "b.ts"),), dependencies=("A",))
    plan = ExecutionPlan("plan-1", (first, second), ())

    with pytest.raises(DependencyCycleError):
        plan.execution_order()

    assert first.status is PhaseStatus.PENDING
    assert second.status is PhaseStatus.PENDING


def test_phase_transitions_are_enforced() -> None:
    phase = ExecutionPhase("syntax", "Syntax", (_script("s1", "a.ts"),))

    phase.start()
    phase.fail("boom")

    assert phase.status is PhaseStatus.FAILED
    assert phase.is_terminal
    assert phase.duration_seconds is not None
    assert phase.errors == ["boom"]
    with pytest.raises(ValueError, match="invalid transition"):
        phase.complete()
    with pytest.raises(ValueError, match="depends on itself"):
        ExecutionPhase("x", "X", (), dependencies=("x",))


def test_plan_aggregates_files_scripts_and_unaddressed() -> None:
    syntax = ExecutionPhase(
        "syntax",
        "Syntax",
        (_script("s1", "a.ts", "b.ts"), _script("s2", "b.ts", "c.ts")),
        categories=("Syntax",),
    )
    diagnostics = (_diagnostic("a.ts", "Syntax"), _diagnostic("z.ts", "Logic", "TS7006"))
    plan = ExecutionPlan("plan-2", (syntax,), diagnostics)

    assert plan.affected_files == ("a.ts", "b.ts", "c.ts")
    assert [script.script_id for script in plan.scripts] == ["s1", "s2"]
    assert plan.estimated_runtime_seconds == pytest.approx(1.0)
    assert plan.unaddressed_diagnostics == (diagnostics[1],)
    assert syntax.target_diagnostic_count == 4
    with pytest.raises(ConfigurationError, match="unknown phase id"):
        plan.phase("types")

    payload = plan.to_dict()
    assert payload["unaddressed_diagnostics"] == 1
    assert payload["phases"][0]["scripts"] == ["s1", "s2"]
