"""
Orchestrator - Dual-channel query routing, retry and redirect.

This module provides:
- DualChannelOrchestrator: Runs one logical query over streaming or async-job
- Collaborator protocols for classifiers, transports and pre-flight checks
- Stream error marker helpers
"""

from hybrid_query.orchestrator.core import DualChannelOrchestrator, StreamFailure
from hybrid_query.orchestrator.protocols import (
    ComplexityClassifier,
    JobTransport,
    QueryPreflight,
    ResumableStreamingTransport,
    StreamingTransport,
    WarmableTransport,
)
from hybrid_query.orchestrator.stream_errors import (
    DEFAULT_STREAM_ERROR_MESSAGE,
    STREAM_ERROR_MARKER,
    extract_stream_error,
    is_resume_probe_error,
)

__all__ = [
    "DEFAULT_STREAM_ERROR_MESSAGE",
    "STREAM_ERROR_MARKER",
    "ComplexityClassifier",
    "DualChannelOrchestrator",
    "JobTransport",
    "QueryPreflight",
    "ResumableStreamingTransport",
    "StreamFailure",
    "StreamingTransport",
    "WarmableTransport",
    "extract_stream_error",
    "is_resume_probe_error",
]
