"""
Type definitions for hybrid-query.
"""

from hybrid_query.types.events import (
    RedirectSignal,
    StreamDone,
    StreamErrorEvent,
    StreamEvent,
    StreamWarning,
    TextDelta,
    parse_stream_event,
)
from hybrid_query.types.query import (
    Attachment,
    Channel,
    Clarification,
    ComplexityAnalysis,
    ForceChannelDecision,
    JobProgress,
    JobResult,
    JobSubmission,
    QueryPhase,
    QueryState,
)

__all__ = [
    "Attachment",
    "Channel",
    "Clarification",
    "ComplexityAnalysis",
    "ForceChannelDecision",
    "JobProgress",
    "JobResult",
    "JobSubmission",
    "QueryPhase",
    "QueryState",
    "RedirectSignal",
    "StreamDone",
    "StreamErrorEvent",
    "StreamEvent",
    "StreamWarning",
    "TextDelta",
    "parse_stream_event",
]
