"""
repair-orchestrator — run reports

Purpose
- Summarize a repair run (diagnostic breakdown, phase outcomes, validation results,
  recommendations) and export it as JSON, Markdown, or HTML.

Functional requirements
- Report content is computed once as a JSON-safe mapping; every format renders from it.
- Markdown and HTML are rendered with Jinja2 using strict undefined variables.
- Files are written atomically under the configured report directory.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Final

from jinja2 import Environment, StrictUndefined

from repair_orchestrator.domain.ids import generate_prefixed_id
from repair_orchestrator.domain.models import (
    Diagnostic,
    DiagnosticSummary,
    JSONValue,
    datetime_to_iso8601z,
)
from repair_orchestrator.errors import ConfigurationError
from repair_orchestrator.utils.fs import atomic_write

if TYPE_CHECKING:
    from repair_orchestrator.execution.orchestrator import ExecutionResult
    from repair_orchestrator.validation.models import ValidationReport

REPORT_FORMATS: Final[tuple[str, ...]] = ("json", "markdown", "html")
_EXTENSIONS: Final[dict[str, str]] = {"json": "json", "markdown": "md", "html": "html"}
SLOW_RUN_SECONDS: Final[float] = 300.0
HOTSPOT_ERROR_COUNT: Final[int] = 10
MOST_COMMON_LIMIT: Final[int] = 10

_MARKDOWN_TEMPLATE: Final[str] = """\
# Repair report {{ report.id }}

Generated {{ report.generated_at }}

## Summary

- **Result:** {{ "success" if summary.success else "failed" }}
- **Total errors:** {{ summary.total_errors }}
- **Errors fixed:** {{ summary.errors_fixed }}
- **Errors remaining:** {{ summary.errors_remaining }}
- **Success rate:** {{ summary.success_rate }}%
- **Execution time:** {{ summary.execution_time }}
- **Phases:** {{ summary.phases_executed }} executed, {{ summary.phases_failed }} failed, \
{{ summary.phases_skipped }} skipped
{%- if summary.rollback_performed %}
- **Rollback:** performed
{%- endif %}

## Errors by category

| Category | Count |
|---|---|
{% for name, count in analysis.by_category.items() -%}
| {{ name }} | {{ count }} |
{% endfor %}
## Most common errors

{% for item in analysis.most_common -%}
- `{{ item.code }}` x{{ item.count }}: {{ item.example }}
{% else -%}
- none
{% endfor %}
## Phases

{% for phase in phases -%}
- **{{ phase.phase_id }}**: {{ phase.status }}\
{% if phase.error %} ({{ phase.error }}){% endif %}
{% else -%}
- no phases ran
{% endfor %}
## Validation

{% for item in validation -%}
- **{{ item.suite_id }}**: {{ item.summary }}
{% else -%}
- no validation suites ran
{% endfor %}
## Recommendations

{% for item in recommendations -%}
- {{ item }}
{% endfor %}"""

_HTML_TEMPLATE: Final[str] = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Repair report {{ report.id }}</title>
<style>
body { font-family: sans-serif; margin: 2rem; }
table { border-collapse: collapse; }
td, th { border: 1px solid #ccc; padding: 0.25rem 0.5rem; }
.success { color: #1a7f37; } .warning { color: #9a6700; } .error { color: #cf222e; }
</style>
</head>
<body>
<h1>Repair report {{ report.id }}</h1>
<p>Generated {{ report.generated_at }}</p>
<h2>Summary</h2>
<p class="{{ rate_class }}">Success rate: {{ summary.success_rate }}%</p>
<ul>
<li>Total errors: {{ summary.total_errors }}</li>
<li>Errors fixed: {{ summary.errors_fixed }}</li>
<li>Errors remaining: {{ summary.errors_remaining }}</li>
<li>Execution time: {{ summary.execution_time }}</li>
<li>Rollback performed: {{ "yes" if summary.rollback_performed else "no" }}</li>
</ul>
<h2>Errors by category</h2>
<table>
<tr><th>Category</th><th>Count</th></tr>
{% for name, count in analysis.by_category.items() -%}
<tr><td>{{ name }}</td><td>{{ count }}</td></tr>
{% endfor -%}
</table>
<h2>Most common errors</h2>
<ul>
{% for item in analysis.most_common -%}
<li><code>{{ item.code }}</code> x{{ item.count }}: {{ item.example }}</li>
{% endfor -%}
</ul>
<h2>Phases</h2>
<ul>
{% for phase in phases -%}
<li>{{ phase.phase_id }}: {{ phase.status }}{% if phase.error %} ({{ phase.error }}){% endif %}</li>
{% endfor -%}
</ul>
<h2>Recommendations</h2>
<ul>
{% for item in recommendations -%}
<li>{{ item }}</li>
{% endfor -%}
</ul>
</body>
</html>
"""


def format_duration(seconds: float) -> str:
    """Render a duration as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""

    total = int(max(seconds, 0.0))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def build_report(
    initial: Sequence[Diagnostic],
    execution_result: ExecutionResult,
    validation_reports: Sequence[ValidationReport],
    *,
    report_id: str | None = None,
    generated_at: datetime | None = None,
) -> dict[str, JSONValue]:
    """Compute the format-independent report mapping."""

    summary = DiagnosticSummary.from_diagnostics(initial)
    total = len(initial)
    fixed = execution_result.errors_fixed
    success_rate = 100.0 if total == 0 else round(fixed / total * 100, 2)

    examples: dict[str, str] = {}
    for diagnostic in initial:
        examples.setdefault(diagnostic.code, diagnostic.message)
    most_common: list[JSONValue] = [
        {"code": code, "count": count, "example": examples.get(code, "")}
        for code, count in list(summary.by_code.items())[:MOST_COMMON_LIMIT]
    ]

    return {
        "id": report_id or generate_prefixed_id("report"),
        "generated_at": datetime_to_iso8601z(generated_at or datetime.now(tz=UTC)),
        "summary": {
            "success": execution_result.success,
            "total_errors": total,
            "errors_fixed": fixed,
            "errors_remaining": execution_result.errors_remaining,
            "success_rate": success_rate,
            "execution_time_seconds": round(execution_result.elapsed_seconds, 3),
            "execution_time": format_duration(execution_result.elapsed_seconds),
            "phases_executed": len(execution_result.executed_phases),
            "phases_failed": len(execution_result.failed_phases),
            "phases_skipped": len(execution_result.skipped_phases),
            "rollback_performed": execution_result.rollback_performed,
            "dry_run": execution_result.dry_run,
        },
        "analysis": {
            "by_category": dict(summary.by_category),
            "by_file": dict(summary.by_file),
            "by_severity": dict(summary.by_severity),
            "most_common": most_common,
        },
        "phases": [record.to_dict() for record in execution_result.phase_records],
        "validation": [
            {
                "suite_id": report.suite_id,
                "overall_success": report.overall_success,
                "summary": report.summary,
                "passed": report.passed,
                "failed": report.failed,
                "skipped": report.skipped,
            }
            for report in validation_reports
        ],
        "recommendations": list(
            recommendations(summary, execution_result, validation_reports)
        ),
    }


def recommendations(
    summary: DiagnosticSummary,
    execution_result: ExecutionResult,
    validation_reports: Sequence[ValidationReport],
) -> tuple[str, ...]:
    advice: list[str] = []
    if execution_result.success:
        advice.append(
            "Repair completed successfully; keep running the validation suites to hold the line."
        )
    else:
        advice.append("Repair was not fully successful; review failed phases before retrying.")
    if execution_result.elapsed_seconds > SLOW_RUN_SECONDS:
        advice.append("The run was slow; consider repairing in smaller batches of files.")
    if summary.total and summary.by_category:
        category, count = max(summary.by_category.items(), key=lambda item: (item[1], item[0]))
        if count > summary.total * 0.5:
            share = round(count / summary.total * 100)
            advice.append(f"Focus on {category} errors; they are {share}% of all diagnostics.")
    failed_suites = [report.suite_id for report in validation_reports if not report.overall_success]
    if failed_suites:
        advice.append(
            f"{len(failed_suites)} validation suite(s) failed: {', '.join(failed_suites)}."
        )
    hotspots = sorted(
        ((path, count) for path, count in summary.by_file.items() if count > HOTSPOT_ERROR_COUNT),
        key=lambda item: (-item[1], item[0]),
    )[:3]
    if hotspots:
        names = ", ".join(Path(path).name for path, _ in hotspots)
        advice.append(f"Consider refactoring files with high error counts: {names}.")
    if execution_result.rollback_performed:
        advice.append("A rollback was performed; check the run log for the failing phase.")
    return tuple(advice)


class TemplateReportRenderer:
    """Writes run reports in the configured formats under ``output_dir``."""

    def __init__(self, output_dir: str | Path, formats: Sequence[str] = REPORT_FORMATS) -> None:
        unknown = sorted(set(formats) - set(REPORT_FORMATS))
        if unknown:
            raise ConfigurationError(f"unknown report format(s): {', '.join(unknown)}")
        if not formats:
            raise ConfigurationError("at least one report format is required")
        self._output_dir = Path(output_dir)
        self._formats = tuple(dict.fromkeys(formats))
        self._text = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )
        self._html = Environment(
            undefined=StrictUndefined,
            autoescape=True,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    @property
    def formats(self) -> tuple[str, ...]:
        return self._formats

    async def render(
        self,
        initial: Sequence[Diagnostic],
        execution_result: ExecutionResult,
        validation_reports: Sequence[ValidationReport],
    ) -> tuple[Path, ...]:
        report = build_report(initial, execution_result, validation_reports)
        return await asyncio.to_thread(self._write, report)

    def render_text(self, report: dict[str, JSONValue], fmt: str) -> str:
        if fmt == "json":
            return json.dumps(report, indent=2, sort_keys=True) + "\n"
        if fmt == "markdown":
            return self._text.from_string(_MARKDOWN_TEMPLATE).render(**_template_values(report))
        if fmt == "html":
            return self._html.from_string(_HTML_TEMPLATE).render(**_template_values(report))
        raise ConfigurationError(f"unknown report format: {fmt}")

    def _write(self, report: dict[str, JSONValue]) -> tuple[Path, ...]:
        written: list[Path] = []
        for fmt in self._formats:
            path = self._output_dir / f"{report['id']}.{_EXTENSIONS[fmt]}"
            atomic_write(path, self.render_text(report, fmt), create_parents=True)
            written.append(path)
        return tuple(written)


def _template_values(report: dict[str, JSONValue]) -> dict[str, object]:
    summary = report["summary"]
    assert isinstance(summary, dict)
    rate = summary["success_rate"]
    assert isinstance(rate, (int, float))
    rate_class = "success" if rate >= 80 else "warning" if rate >= 50 else "error"
    return {
        "report": report,
        "summary": summary,
        "analysis": report["analysis"],
        "phases": report["phases"],
        "validation": report["validation"],
        "recommendations": report["recommendations"],
        "rate_class": rate_class,
    }


__all__ = [
    "REPORT_FORMATS",
    "TemplateReportRenderer",
    "build_report",
    "format_duration",
    "recommendations",
]
