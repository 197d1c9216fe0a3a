"""
Error signals hidden in stream payloads.

Some backends report a failure as trailing text of an otherwise successful
stream instead of a structured error event. The text then carries
``[STREAM_ERROR]`` followed by the message.
"""

from __future__ import annotations

import re

STREAM_ERROR_MARKER = "[STREAM_ERROR]"
DEFAULT_STREAM_ERROR_MESSAGE = "Stream error"

_RESUME_PROBE_RE = re.compile(r"(failed to fetch|load failed|networkerror)", re.IGNORECASE)


def extract_stream_error(text: str | None) -> str | None:
    """Return the error carried by completed stream text, if any.

    The message is whatever follows the last marker, stripped; an empty
    remainder yields a generic message.
    """
    if not text or STREAM_ERROR_MARKER not in text:
        return None
    message = text.rsplit(STREAM_ERROR_MARKER, 1)[1].strip().lstrip(":").strip()
    return message or DEFAULT_STREAM_ERROR_MESSAGE


def is_resume_probe_error(message: str) -> bool:
    """Network errors a stream resume probe produces when nothing is listening."""
    return bool(_RESUME_PROBE_RE.search(message))
