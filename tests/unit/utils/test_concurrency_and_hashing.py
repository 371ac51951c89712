"""Unit tests for concurrency primitives and hashing helpers."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from repair_orchestrator.utils.concurrency import CancellationToken, batched, run_with_timeout
from repair_orchestrator.utils.hashing import (
    is_sha256_hex,
    sha256_bytes,
    sha256_file,
    sha256_text,
)


@pytest.mark.asyncio
async def test_run_with_timeout_returns_value() -> None:
    async def _work() -> int:
        await asyncio.sleep(0)
        return 7

    assert await run_with_timeout(_work(), 1.0) == 7


@pytest.mark.asyncio
async def test_run_with_timeout_raises_timeout_error() -> None:
    with pytest.raises(TimeoutError, match="timed out"):
        await run_with_timeout(asyncio.sleep(5), 0.05)


@pytest.mark.asyncio
async def test_run_with_timeout_honors_cancellation_token() -> None:
    token = CancellationToken()

    async def _cancel_soon() -> None:
        await asyncio.sleep(0.01)
        token.cancel()

    canceller = asyncio.create_task(_cancel_soon())
    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(asyncio.sleep(5), 2.0, token)
    await canceller
    assert token.is_cancelled


@pytest.mark.asyncio
async def test_run_with_timeout_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        await run_with_timeout(asyncio.sleep(0), 0)


@given(items=st.lists(st.integers(), max_size=40), size=st.integers(min_value=1, max_value=9))
@settings(max_examples=50, deadline=None)
def test_batched_preserves_order_and_bounds_chunk_size(items: list[int], size: int) -> None:
    chunks = list(batched(items, size))

    assert [item for chunk in chunks for item in chunk] == items
    assert all(1 <= len(chunk) <= size for chunk in chunks)


def test_batched_rejects_zero_size() -> None:
    with pytest.raises(ValueError):
        list(batched([1, 2], 0))


def test_sha256_helpers_agree(tmp_path: Path) -> None:
    path = tmp_path / "data.txt"
    path.write_bytes(b"hello\n")

    digest = sha256_file(path, chunk_size=2)

    assert digest == sha256_bytes(b"hello\n") == sha256_text("hello\n")
    assert is_sha256_hex(digest)
    assert not is_sha256_hex(digest[:-1])
    assert not is_sha256_hex(None)
