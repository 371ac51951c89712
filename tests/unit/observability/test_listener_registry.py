"""Unit tests for per-component listener registries."""

from __future__ import annotations

import asyncio

import pytest

from repair_orchestrator.observability.events import (
    EventType,
    ListenerRegistry,
    OrchestrationEvent,
)


def test_listeners_run_in_subscription_order_with_type_filter() -> None:
    registry = ListenerRegistry("checkpoints")
    seen: list[str] = []

    registry.subscribe(None, lambda event: seen.append(f"all:{event.event_type.value}"))
    registry.subscribe(EventType.CHECKPOINT_CREATED, lambda event: seen.append("created"))

    registry.emit(EventType.CHECKPOINT_CREATED, {"checkpoint_id": "c1"})
    registry.emit(EventType.CHECKPOINT_DELETED, {"checkpoint_id": "c1"})

    assert seen == ["all:checkpoint.created", "created", "all:checkpoint.deleted"]


def test_raising_listener_is_isolated_and_recorded() -> None:
    registry = ListenerRegistry("supervisor")
    delivered: list[OrchestrationEvent] = []

    def _broken(event: OrchestrationEvent) -> None:
        raise RuntimeError("listener exploded")

    registry.subscribe(None, _broken)
    registry.subscribe(None, delivered.append)

    event, errors = registry.emit(EventType.PROCESS_STARTED, {"pid": 42})

    assert delivered == [event]
    assert event.source == "supervisor"
    assert event.payload == {"pid": 42}
    assert len(errors) == 1
    assert errors[0].error_type == "RuntimeError"
    assert registry.dispatch_errors() == errors


def test_unsubscribe_and_history_replay() -> None:
    registry = ListenerRegistry("validation", buffer_size=2)
    calls: list[str] = []
    token = registry.subscribe(None, lambda event: calls.append(event.event_id))

    registry.emit(EventType.SUITE_STARTED)
    assert registry.unsubscribe(token)
    assert not registry.unsubscribe(token)
    registry.emit(EventType.CHECK_PASSED)
    registry.emit(EventType.SUITE_COMPLETED)

    assert len(calls) == 1
    assert [event.event_type for event in registry.history()] == [
        EventType.CHECK_PASSED,
        EventType.SUITE_COMPLETED,
    ]
    assert registry.history(event_type=EventType.CHECK_PASSED, limit=1)[0].event_type is (
        EventType.CHECK_PASSED
    )
    assert registry.history(limit=0) == ()


@pytest.mark.asyncio
async def test_async_listener_failures_are_captured_after_drain() -> None:
    registry = ListenerRegistry("execution")
    received: list[str] = []

    async def _ok(event: OrchestrationEvent) -> None:
        await asyncio.sleep(0)
        received.append(event.event_type.value)

    async def _bad(event: OrchestrationEvent) -> None:
        raise ValueError("async failure")

    registry.subscribe(EventType.PHASE_STARTED, _ok)
    registry.subscribe(EventType.PHASE_STARTED, _bad)

    _, sync_errors = registry.emit(EventType.PHASE_STARTED, {"phase_id": "p1"})
    await registry.drain()
    await asyncio.sleep(0)

    assert sync_errors == ()
    assert received == ["execution.phase_started"]
    assert [error.message for error in registry.dispatch_errors()] == ["async failure"]


def test_subscribe_rejects_unknown_event_type() -> None:
    with pytest.raises(ValueError):
        ListenerRegistry("x").subscribe("not.an.event", lambda event: None)
