"""Per-component listener registry with replay and captured dispatch failures."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final, cast

from repair_orchestrator.domain.ids import generate_event_id
from repair_orchestrator.domain.models import JSONValue, serialize_value

logger = logging.getLogger(__name__)

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


class EventType(StrEnum):
    # supervisor
    PROCESS_REGISTERED = "process.registered"
    PROCESS_STARTED = "process.started"
    PROCESS_COMPLETED = "process.completed"
    PROCESS_FAILED = "process.failed"
    PROCESS_TIMEOUT = "process.timeout"
    PROCESS_KILLED = "process.killed"
    PROCESS_STUCK = "process.stuck"
    RESOURCE_SAMPLE = "resources.sample"
    HIGH_MEMORY = "resources.high_memory"
    HIGH_CPU_LOAD = "resources.high_cpu_load"
    SHUTDOWN_STARTED = "supervisor.shutdown_started"
    SHUTDOWN_COMPLETED = "supervisor.shutdown_completed"
    # checkpoints
    CHECKPOINT_CREATED = "checkpoint.created"
    CHECKPOINT_DELETED = "checkpoint.deleted"
    ROLLBACK_STARTED = "rollback.started"
    ROLLBACK_COMPLETED = "rollback.completed"
    ROLLBACK_FAILED = "rollback.failed"
    # validation
    SUITE_STARTED = "validation.suite_started"
    SUITE_COMPLETED = "validation.suite_completed"
    CHECK_STARTED = "validation.check_started"
    CHECK_PASSED = "validation.check_passed"
    CHECK_FAILED = "validation.check_failed"
    CHECKS_STOPPED = "validation.stopped"
    # execution
    PLAN_CREATED = "execution.plan_created"
    EXECUTION_STARTED = "execution.started"
    PHASE_STARTED = "execution.phase_started"
    PHASE_COMPLETED = "execution.phase_completed"
    PHASE_FAILED = "execution.phase_failed"
    PHASE_SKIPPED = "execution.phase_skipped"
    SCRIPT_COMPLETED = "execution.script_completed"
    EXECUTION_COMPLETED = "execution.completed"
    # workflow
    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_PHASE_STARTED = "workflow.phase_started"
    WORKFLOW_PHASE_COMPLETED = "workflow.phase_completed"
    WORKFLOW_PHASE_FAILED = "workflow.phase_failed"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"
    WORKFLOW_STOPPED = "workflow.stopped"


@dataclass(frozen=True, slots=True)
class OrchestrationEvent:
    event_id: str
    event_type: EventType
    source: str
    timestamp: datetime
    payload: Mapping[str, JSONValue] = field(default_factory=dict)


Listener = Callable[[OrchestrationEvent], object]


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Listener failure captured without interrupting the emitting component."""

    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: str | None
    callback: Listener


class ListenerRegistry:
    """
    Explicit listener registration owned by one component.

    Listeners are invoked synchronously in subscription order; awaitables returned by
    listeners are scheduled on the running loop. A raising listener never interrupts
    the emitter: the failure is logged and kept in ``dispatch_errors``.
    """

    def __init__(self, source: str, *, buffer_size: int = 512) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        self._source = source
        self._buffer = deque[OrchestrationEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()

    @property
    def source(self) -> str:
        return self._source

    def subscribe(self, event_type: str | EventType | None, callback: Listener) -> int:
        """Subscribe to one event type, or to every event when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else EventType(event_type).value
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, normalized, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def emit(
        self,
        event_type: EventType,
        payload: Mapping[str, object] | None = None,
    ) -> tuple[OrchestrationEvent, tuple[DispatchError, ...]]:
        event = OrchestrationEvent(
            event_id=generate_event_id(),
            event_type=event_type,
            source=self._source,
            timestamp=datetime.now(tz=UTC),
            payload=_as_payload(payload or {}),
        )
        with self._lock:
            self._buffer.append(event)
            subscriptions = tuple(self._subscriptions.values())

        errors: list[DispatchError] = []
        for subscription in subscriptions:
            if subscription.event_type is not None and subscription.event_type != event_type.value:
                continue
            error = self._invoke(subscription.callback, event)
            if error is not None:
                errors.append(error)

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return event, tuple(errors)

    async def drain(self) -> None:
        """Await listener coroutines scheduled by ``emit``."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def history(
        self,
        *,
        event_type: str | EventType | None = None,
        limit: int | None = None,
    ) -> tuple[OrchestrationEvent, ...]:
        """Replay buffered events in emit order."""

        with self._lock:
            events = tuple(self._buffer)
        if event_type is not None:
            wanted = EventType(event_type)
            events = tuple(event for event in events if event.event_type is wanted)
        if limit is not None:
            if limit <= 0:
                return ()
            events = events[-limit:]
        return events

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)

    def _invoke(self, callback: Listener, event: OrchestrationEvent) -> DispatchError | None:
        target = _callback_name(callback)
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                loop = asyncio.get_running_loop()
                task = loop.create_task(_as_coroutine(result))
                with self._lock:
                    self._pending_async_tasks.add(task)
                task.add_done_callback(
                    lambda done: self._on_async_done(done, target=target, event=event)
                )
            return None
        except Exception as exc:  # noqa: BLE001 - listener failures are isolated
            logger.warning(
                "listener %s failed for %s: %s", target, event.event_type.value, exc
            )
            return _dispatch_error(event, target, exc)

    def _on_async_done(
        self,
        task: asyncio.Task[None],
        *,
        target: str,
        event: OrchestrationEvent,
    ) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            logger.warning(
                "async listener %s failed for %s: %s", target, event.event_type.value, exc
            )
            with self._lock:
                self._dispatch_errors.append(_dispatch_error(event, target, exc))


def _as_payload(payload: Mapping[str, object]) -> dict[str, JSONValue]:
    serialized = serialize_value(payload, "payload")
    if not isinstance(serialized, dict):
        raise ValueError("payload: expected object")
    return serialized


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _as_coroutine(value: object) -> Coroutine[Any, Any, None]:
    if inspect.iscoroutine(value):
        return cast("Coroutine[Any, Any, None]", value)
    return _await_awaitable(cast("Awaitable[None]", value))


async def _await_awaitable(awaitable: Awaitable[None]) -> None:
    await awaitable


def _dispatch_error(event: OrchestrationEvent, target: str, exc: BaseException) -> DispatchError:
    return DispatchError(
        event_id=event.event_id,
        target=target,
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = [
    "DispatchError",
    "EventType",
    "Listener",
    "ListenerRegistry",
    "OrchestrationEvent",
]
