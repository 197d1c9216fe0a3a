"""
Transport layer - httpx-backed streaming and async-job channels.
"""

from hybrid_query.transport.http import HttpJobTransport, HttpStreamingTransport

__all__ = [
    "HttpJobTransport",
    "HttpStreamingTransport",
]
