"""
Telemetry - Structured logging and trace context propagation.
"""

from hybrid_query.telemetry.logger import (
    JsonFormatter,
    LogContext,
    QueryLogger,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from hybrid_query.telemetry.tracer import (
    TRACEPARENT_HEADER,
    TraceContext,
    generate_trace_id,
    generate_traceparent,
    parse_traceparent_trace_id,
    trace_id_to_uuid,
)

__all__ = [
    "TRACEPARENT_HEADER",
    "JsonFormatter",
    "LogContext",
    "QueryLogger",
    "SensitiveDataMasker",
    "TextFormatter",
    "TraceContext",
    "clear_log_context",
    "generate_trace_id",
    "generate_traceparent",
    "get_log_context",
    "get_logger",
    "parse_traceparent_trace_id",
    "set_log_context",
    "trace_id_to_uuid",
]
