"""
Structured logging for hybrid-query.

Every module logs through a QueryLogger obtained from get_logger. Keyword
arguments become structured fields, and the query context (trace id, channel,
job id) bound by the orchestrator is stamped onto every record emitted while
an attempt runs. Handlers hang off the ``hybrid_query`` package logger, so
child loggers propagate to a single configured output.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, TextIO

ROOT_LOGGER_NAME = "hybrid_query"

REDACTED = "***REDACTED***"

_query_context: ContextVar[LogContext | None] = ContextVar("query_log_context", default=None)


@dataclass(frozen=True)
class LogContext:
    """Identifiers of the query attempt currently running.

    Attributes:
        trace_id: Correlation id shared by every attempt of one logical query
        channel: Transport channel of the current attempt
        service: Backend service name
        job_id: Async job identifier, once known
    """

    trace_id: str | None = None
    channel: str | None = None
    service: str | None = None
    job_id: str | None = None

    def to_dict(self) -> dict[str, str]:
        """Populated identifiers only."""
        return {k: v for k, v in asdict(self).items() if v}


def get_log_context() -> LogContext:
    """Get the query context of the current task."""
    return _query_context.get() or LogContext()


def set_log_context(context: LogContext) -> None:
    """Bind a query context to the current task."""
    _query_context.set(context)


def clear_log_context() -> None:
    _query_context.set(None)


class SensitiveDataMasker:
    """Redacts credentials from messages and structured fields.

    Covers what this package can leak: bearer tokens and API keys from
    transport headers, and the password part of a Redis URL.
    """

    DEFAULT_PATTERNS: ClassVar[tuple[tuple[str, str], ...]] = (
        (r"(Bearer\s+)\S+", r"\1" + REDACTED),
        (r"((?:x-)?api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", r"\1" + REDACTED),
        (r"(rediss?://[^:/@\s]*:)[^@\s]+(@)", r"\1" + REDACTED + r"\2"),
    )

    SENSITIVE_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"authorization", "api_key", "x-api-key", "password", "secret"}
    )

    def __init__(self, patterns: tuple[tuple[str, str], ...] | None = None) -> None:
        self._patterns = [
            (re.compile(pattern, re.IGNORECASE), replacement)
            for pattern, replacement in (patterns or self.DEFAULT_PATTERNS)
        ]

    def mask(self, text: str) -> str:
        for pattern, replacement in self._patterns:
            text = pattern.sub(replacement, text)
        return text

    def mask_fields(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Mask field values; header mappings are masked key by key."""
        masked: dict[str, Any] = {}
        for key, value in fields.items():
            if key.lower() in self.SENSITIVE_FIELDS:
                masked[key] = REDACTED
            elif isinstance(value, Mapping):
                masked[key] = self.mask_fields(value)
            elif isinstance(value, str):
                masked[key] = self.mask(value)
            else:
                masked[key] = value
        return masked


class _QueryFormatter(logging.Formatter):
    """Collects the query context and keyword fields of a record."""

    def __init__(self, masker: SensitiveDataMasker | None = None) -> None:
        super().__init__()
        self.masker = masker or SensitiveDataMasker()

    def fields(self, record: logging.LogRecord) -> dict[str, Any]:
        # Explicit keyword fields override the bound context
        merged: dict[str, Any] = get_log_context().to_dict()
        merged.update(getattr(record, "fields", {}))
        return self.masker.mask_fields(merged)


class JsonFormatter(_QueryFormatter):
    """One JSON object per line, fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": self.masker.mask(record.getMessage()),
        }
        for key, value in self.fields(record).items():
            payload.setdefault(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(_QueryFormatter):
    """``LEVEL logger: message key=value ...`` lines for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:<7} {record.name}: {self.masker.mask(record.getMessage())}"
        if fields := self.fields(record):
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class QueryLogger:
    """Logger taking structured keyword fields.

    Example:
        >>> logger = get_logger("hybrid_query.orchestrator")
        >>> logger.info("Retry scheduled", attempt=1, delay_ms=1000)
    """

    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def configure(
        cls,
        level: int = logging.INFO,
        json_output: bool = True,
        stream: TextIO | None = None,
        masker: SensitiveDataMasker | None = None,
    ) -> None:
        """Route every hybrid_query logger to one handler.

        Args:
            level: Minimum level for the package
            json_output: JSON lines when true, text lines otherwise
            stream: Output stream (default: stderr)
            masker: Credential masker shared by the formatter
        """
        root = logging.getLogger(ROOT_LOGGER_NAME)
        if cls._handler is not None:
            root.removeHandler(cls._handler)

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(JsonFormatter(masker) if json_output else TextFormatter(masker))
        root.addHandler(handler)
        root.setLevel(level)
        root.propagate = False
        cls._handler = handler

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, msg, exc_info=exc_info, extra={"fields": fields})

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=exc_info, **fields)

    def exception(self, msg: str, **fields: Any) -> None:
        """Log at ERROR with the active traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **fields)


def get_logger(name: str) -> QueryLogger:
    """Get a structured logger; text output to stderr until configured."""
    if QueryLogger._handler is None:
        QueryLogger.configure(json_output=False)
    return QueryLogger(logging.getLogger(name))
