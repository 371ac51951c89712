"""Public observability primitives: structured logging and per-component listeners."""

from repair_orchestrator.observability.events import (
    DispatchError,
    EventType,
    Listener,
    ListenerRegistry,
    OrchestrationEvent,
)
from repair_orchestrator.observability.logging import (
    LoggingConfig,
    LogRedactor,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventType",
    "Listener",
    "ListenerRegistry",
    "LogRedactor",
    "LoggingConfig",
    "OrchestrationEvent",
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
