"""
Trace context propagation.

One logical query carries a single correlation id across its retries and
channel redirects. Outbound calls attach it both as a plain header and as a
W3C ``traceparent`` value derived from it.
"""

from __future__ import annotations

import re
import secrets
import uuid
from dataclasses import dataclass

TRACEPARENT_HEADER = "traceparent"
"""W3C traceparent header name (lowercase per the standard)"""

_TRACEPARENT_RE = re.compile(r"^00-([0-9a-f]{32})-[0-9a-f]{16}-[0-9a-f]{2}$")


def generate_trace_id() -> str:
    """Generate a new correlation id (UUID v4 string)."""
    return str(uuid.uuid4())


def generate_traceparent(trace_id: str | None = None) -> str:
    """Build a W3C traceparent value.

    Format: ``00-<trace-id 32 hex>-<parent-id 16 hex>-<flags 2 hex>``.

    Args:
        trace_id: Existing correlation id. Hyphens are stripped and the
            result is truncated or right-padded with zeros to 32 characters.
            A random trace id is used when omitted.

    Returns:
        traceparent header value
    """
    if trace_id:
        tid = trace_id.replace("-", "").lower()[:32].ljust(32, "0")
    else:
        tid = secrets.token_hex(16)
    parent_id = secrets.token_hex(8)
    return f"00-{tid}-{parent_id}-01"


def parse_traceparent_trace_id(traceparent: str) -> str | None:
    """Extract the 32-hex trace id from a traceparent value.

    Returns:
        trace id, or None if the value is malformed
    """
    match = _TRACEPARENT_RE.match(traceparent)
    return match.group(1) if match else None


def trace_id_to_uuid(trace_id: str) -> str:
    """Format a 32-hex trace id as a UUID string.

    Values of any other length are returned unchanged.
    """
    if len(trace_id) != 32:
        return trace_id
    return (
        f"{trace_id[0:8]}-{trace_id[8:12]}-{trace_id[12:16]}-"
        f"{trace_id[16:20]}-{trace_id[20:]}"
    )


@dataclass(frozen=True)
class TraceContext:
    """Correlation context of one logical query.

    Attributes:
        trace_id: Correlation id (UUID string)
    """

    trace_id: str

    @classmethod
    def generate(cls) -> TraceContext:
        """Create a context with a fresh trace id."""
        return cls(trace_id=generate_trace_id())

    @classmethod
    def from_traceparent(cls, header: str) -> TraceContext | None:
        """Rebuild a context from an incoming traceparent value."""
        hex_id = parse_traceparent_trace_id(header)
        if hex_id is None:
            return None
        return cls(trace_id=trace_id_to_uuid(hex_id))

    def traceparent(self) -> str:
        """Derive a traceparent value with a fresh parent span id."""
        return generate_traceparent(self.trace_id)

    def headers(self, trace_id_header: str = "X-Trace-Id") -> dict[str, str]:
        """Headers to attach to every outbound transport call."""
        return {
            trace_id_header: self.trace_id,
            TRACEPARENT_HEADER: self.traceparent(),
        }
