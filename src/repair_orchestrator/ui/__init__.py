"""Command-line surface: argparse router and plain-text rendering."""

from repair_orchestrator.ui.cli import CLIError, build_parser, main, run_cli
from repair_orchestrator.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "main",
    "run_cli",
]
