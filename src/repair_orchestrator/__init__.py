"""
repair-orchestrator — package root

Purpose
- Orchestration engine for automated static-analysis error repair: supervised
  subprocesses, checkpoints with verified rollback, validation suites, phased plan
  execution and a top-level workflow.

Functional requirements
- No side effects at import time (no config loading, no logging init); submodules are
  imported explicitly by callers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
