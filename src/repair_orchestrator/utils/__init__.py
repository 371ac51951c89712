"""Utility exports for filesystem, hashing, and concurrency helpers."""

from repair_orchestrator.utils.concurrency import CancellationToken, batched, run_with_timeout
from repair_orchestrator.utils.fs import atomic_copy, atomic_write, is_within, safe_delete
from repair_orchestrator.utils.hashing import (
    is_sha256_hex,
    sha256_bytes,
    sha256_file,
    sha256_text,
)

__all__ = [
    "CancellationToken",
    "atomic_copy",
    "atomic_write",
    "batched",
    "is_sha256_hex",
    "is_within",
    "run_with_timeout",
    "safe_delete",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
]
