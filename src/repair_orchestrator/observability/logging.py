"""Per-run JSON-lines logging with correlation scopes and secret masking.

Stdlib ``logging`` is the sink. Each run gets one queue-backed handler that writes a JSON
object per line to ``<log_dir>/<run_id>/orchestrator.jsonl``. ``structlog`` decision logs
go through ``structlog.stdlib.LoggerFactory`` into the same handler; their key/value pairs
end up under ``fields``.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, cast

import structlog

from repair_orchestrator.config.schema import looks_sensitive_key
from repair_orchestrator.constants import DEFAULT_LOG_DIR
from repair_orchestrator.domain.models import JSONValue, serialize_value

LogRedactor = Callable[[JSONValue], JSONValue]

MASK: Final[str] = "***REDACTED***"
LOG_FILENAME: Final[str] = "orchestrator.jsonl"
ROOT_LOGGER_NAME: Final[str] = "repair_orchestrator"

# Promoted to top-level keys of each line instead of being nested under ``fields``.
_CORRELATION_KEYS: Final[frozenset[str]] = frozenset(
    {"run_id", "plan_id", "phase_id", "checkpoint_id", "process_id", "event_id"}
)
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "correlation",
}

# ``token=...`` style assignments (npm ``_authToken`` included), bearer headers, and
# npm or GitHub access tokens echoed by tool output.
_SECRET_TEXT: Final[re.Pattern[str]] = re.compile(
    r"(?i)(?P<key>\b(?:api[_-]?key|_?auth_?token|token|password|secret)\s*[:=]\s*)[^\s,;\"']+"
    r"|\bbearer\s+[\w.~+/-]+=*"
    r"|\b(?:npm|gh[pousr])_[A-Za-z0-9]{20,}\b"
)

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "repair_orchestrator_log_correlation", default=()
)
_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    run_id: str
    base_log_dir: Path | str = Path(DEFAULT_LOG_DIR)
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = LOG_FILENAME
    log_to_stdout: bool = False
    redactor: LogRedactor | None = None

    def __post_init__(self) -> None:
        for name in ("run_id", "logger_name", "log_filename"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"LoggingConfig.{name}: must be a non-empty string")
        if Path(self.log_filename).name != self.log_filename:
            raise ValueError("LoggingConfig.log_filename: must not contain path separators")
        if self.queue_size <= 0:
            raise ValueError("LoggingConfig.queue_size: must be > 0")
        _levelno(self.level)

    @property
    def levelno(self) -> int:
        return _levelno(self.level)

    @property
    def log_path(self) -> Path:
        return Path(self.base_log_dir) / self.run_id.strip() / self.log_filename


class _QueueHandler(logging.handlers.QueueHandler):
    """Never blocks the emitting thread; records that do not fit are counted and dropped."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The correlation contextvar is only visible on the emitting thread.
        scope = get_correlation_context()
        if scope:
            record.correlation = scope
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, run_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_text(self._redact(record.getMessage())),
        }
        line.update(self._correlation_of(record))

        extras = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in _CORRELATION_KEYS and not key.startswith("_")
        }
        if extras:
            line["fields"] = self._redact(extras)
        if record.exc_info:
            line["exception"] = _as_text(self._redact(self.formatException(record.exc_info)))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _correlation_of(self, record: logging.LogRecord) -> dict[str, str]:
        found = {"run_id": self._run_id}
        scope = getattr(record, "correlation", None)
        if isinstance(scope, Mapping):
            found.update((key, value) for key, value in scope.items() if isinstance(value, str))
        for key in _CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                found[key] = value.strip()
        return found


class StructuredLoggingHandle:
    """Owns the queue listener and sinks of one run; ``shutdown`` is idempotent."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path,
        queue_handler: _QueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        pending = cast("queue.Queue[logging.LogRecord]", self._queue_handler.queue)
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    log_to_stdout: bool = False,
) -> StructuredLoggingHandle:
    """Start run logging from the validated ``[observability]`` config table."""

    section = observability_config or {}
    level = section.get("log_level", "INFO")
    base = log_dir if log_dir is not None else section.get("log_dir", DEFAULT_LOG_DIR)
    return setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=base if isinstance(base, (str, Path)) else DEFAULT_LOG_DIR,
            level=level if isinstance(level, (str, int)) else "INFO",
            log_to_stdout=log_to_stdout,
        )
    )


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Replace any active run logging with a fresh queue-backed JSON-lines sink."""

    global _active
    levelno = config.levelno
    shutdown_logging()

    log_path = config.log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = _JsonLinesFormatter(
        config.run_id.strip(),
        config.redactor if config.redactor is not None else default_log_redactor,
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(levelno)
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name.strip())
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(levelno)
    logger.propagate = False

    queue_handler = _QueueHandler(queue.Queue(maxsize=config.queue_size))
    queue_handler.setLevel(levelno)
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=config.run_id.strip(),
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
    return handle


def configure_structlog() -> None:
    """Route structlog decision logs into stdlib logging so they share the JSON sink."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown(timeout_seconds=timeout_seconds)


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation ids for every record logged inside the block; ``None`` unbinds."""

    scope = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            scope.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation field {key!r} must not be empty")
        else:
            scope[key] = value.strip()
    token = _correlation.set(tuple(scope.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask values under secret-looking keys and token-shaped text, recursively."""

    if isinstance(value, str):
        return _SECRET_TEXT.sub(_mask, value)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {
            key: MASK if looks_sensitive_key(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    return value


def _levelno(level: int | str) -> int:
    if isinstance(level, int):
        return level
    levelno = logging.getLevelNamesMapping().get(level.strip().upper())
    if levelno is None:
        raise ValueError(f"LoggingConfig.level: unsupported logging level {level!r}")
    return levelno


def _mask(match: re.Match[str]) -> str:
    prefix = match.group("key")
    return f"{prefix}{MASK}" if prefix else MASK


def _as_text(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    return "" if value is None else json.dumps(value, sort_keys=True, ensure_ascii=False)


def _jsonable(value: object) -> JSONValue:
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, float) and not math.isfinite(value):
        return repr(value)
    try:
        return serialize_value(value, "log")
    except ValueError:
        return str(value)


atexit.register(shutdown_logging)


__all__ = [
    "LOG_FILENAME",
    "MASK",
    "ROOT_LOGGER_NAME",
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
