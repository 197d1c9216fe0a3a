"""
Client-side control primitives.
"""

from hybrid_query.client.cancel import (
    CancelReason,
    CancelState,
    CancelToken,
    TokenSlot,
)

__all__ = [
    "CancelReason",
    "CancelState",
    "CancelToken",
    "TokenSlot",
]
