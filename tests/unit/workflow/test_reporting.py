"""Unit tests for run report content and the template renderer."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from repair_orchestrator.domain.models import Diagnostic
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.execution.orchestrator import ExecutionResult, PhaseRecord
from repair_orchestrator.execution.plan import PhaseStatus
from repair_orchestrator.workflow.reporting import (
    TemplateReportRenderer,
    build_report,
    format_duration,
)


def _diagnostics() -> list[Diagnostic]:
    items = [
        Diagnostic(
            file="src/a.ts",
            line=index + 1,
            column=1,
            code="TS2339",
            message="Property missing",
            category="Type",
        )
        for index in range(3)
    ]
    items.append(
        Diagnostic(
            file="src/b.ts",
            line=1,
            column=1,
            code="TS1005",
            message="';' expected.",
            category="Syntax",
        )
    )
    return items


def _result(**overrides: object) -> ExecutionResult:
    values: dict[str, object] = {
        "plan_id": "plan-1",
        "success": True,
        "executed_phases": ("syntax-formatting", "types"),
        "failed_phases": (),
        "skipped_phases": (),
        "errors_fixed": 3,
        "errors_remaining": 1,
        "elapsed_seconds": 125.0,
        "phase_records": (
            PhaseRecord(phase_id="syntax-formatting", status=PhaseStatus.COMPLETED),
            PhaseRecord(phase_id="types", status=PhaseStatus.COMPLETED),
        ),
    }
    values.update(overrides)
    return ExecutionResult(**values)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0.4, "0s"), (59, "59s"), (125, "2m 5s"), (3723, "1h 2m 3s"), (-3, "0s")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    assert format_duration(seconds) == expected


def test_build_report_summarizes_run() -> None:
    report = build_report(
        _diagnostics(),
        _result(),
        (),
        report_id="report-fixed",
        generated_at=datetime(2026, 3, 1, tzinfo=UTC),
    )

    summary = report["summary"]
    assert isinstance(summary, dict)
    assert report["id"] == "report-fixed"
    assert summary["success_rate"] == 75.0
    assert summary["execution_time"] == "2m 5s"
    analysis = report["analysis"]
    assert isinstance(analysis, dict)
    assert analysis["by_category"] == {"Syntax": 1, "Type": 3}
    assert analysis["most_common"][0] == {
        "code": "TS2339",
        "count": 3,
        "example": "Property missing",
    }
    recommendations = report["recommendations"]
    assert isinstance(recommendations, list)
    assert recommendations[0].startswith("Repair completed successfully")
    assert "Focus on Type errors; they are 75% of all diagnostics." in recommendations


def test_failed_run_recommends_review_and_mentions_rollback() -> None:
    report = build_report(
        _diagnostics(),
        _result(success=False, errors_fixed=0, errors_remaining=4, rollback_performed=True),
        (),
    )

    recommendations = report["recommendations"]
    assert isinstance(recommendations, list)
    assert recommendations[0].startswith("Repair was not fully successful")
    assert any("rollback was performed" in item for item in recommendations)


@pytest.mark.asyncio
async def test_renderer_writes_each_format(tmp_path: Path) -> None:
    renderer = TemplateReportRenderer(tmp_path / "reports", ("json", "markdown", "html"))

    paths = await renderer.render(_diagnostics(), _result(), ())

    assert [path.suffix for path in paths] == [".json", ".md", ".html"]
    payload = json.loads(paths[0].read_text(encoding="utf-8"))
    assert payload["summary"]["errors_fixed"] == 3
    markdown = paths[1].read_text(encoding="utf-8")
    assert "- **Errors fixed:** 3" in markdown
    assert "| Type | 3 |" in markdown
    assert "**types**: completed" in markdown
    html = paths[2].read_text(encoding="utf-8")
    assert 'class="warning"' in html
    assert "&#39;;&#39; expected." in html


def test_renderer_rejects_unknown_formats(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="unknown report format"):
        TemplateReportRenderer(tmp_path, ("pdf",))
    with pytest.raises(ConfigurationError, match="at least one"):
        TemplateReportRenderer(tmp_path, ())
