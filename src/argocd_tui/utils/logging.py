# ABOUTME: Structured logging with correlation IDs and an audit trail
# ABOUTME: Keeps log output off the terminal the session draws on

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: structlog events with consistent fields, rendered as
   JSON or as console text.
2. CORRELATION IDs: Every background command runs in its own asyncio task
   and sets a fresh ID, so all log lines produced while loading one
   application detail (request, retry, failure) can be grouped together.
3. AUDIT LOGGING: One record per mutating operation (sync, rollback,
   terminate, delete, create, update) with its outcome.

=============================================================================
WHERE DO LOGS GO?
=============================================================================

A full-screen terminal UI owns stdout. Writing log lines there would tear
the display, so configure_logging() takes a log file. Without one, logs go
to stderr, which callers normally redirect or raise the level for.

=============================================================================
CONTEXT VARIABLES (contextvars)
=============================================================================

asyncio copies the current context into each new task. A correlation ID set
inside a command task is therefore visible to everything that task awaits,
and invisible to every other task.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

_log_stream: TextIO | None = None


def get_correlation_id() -> str:
    """
    Get current correlation ID or generate new one.

    Code running outside a command task (startup, the event loop itself)
    gets an ID generated on first use, so logs are always correlatable.

    Returns:
        8-character correlation ID string.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """
    Set correlation ID for current context.

    The dispatcher calls this at the start of each command task. Passing ""
    makes the next get_correlation_id() generate a new one.
    """
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor adding the current correlation ID."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """
    Configure structured logging.

    Call once at startup; calling again reconfigures (and closes a
    previously opened log file).

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: Adds any bound context variables
    2. add_log_level: Adds "level" field
    3. TimeStamper: Adds ISO-format timestamp
    4. add_correlation_id: Adds our correlation ID
    5. Renderer: JSON, or plain console text without colors when writing
       to a file

    Args:
        level: "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
        json_output: Render JSON lines instead of console text.
        log_file: Append logs to this file instead of stderr.
    """
    global _log_stream

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=log_file is None))

    if _log_stream is not None:
        _log_stream.close()
        _log_stream = None

    stream: TextIO = sys.stderr
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _log_stream = log_file.open("a", encoding="utf-8")
        stream = _log_stream

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        # Off: a cached logger keeps writing to a log file closed by a later call.
        cache_logger_on_first_use=False,
    )


class AuditLogger:
    """
    Audit logger for mutating operations.

    Every record carries:
    - timestamp: UTC ISO 8601
    - correlation_id: The command task's ID
    - action: "sync_application", "delete_application", ...
    - target: Application name
    - result: "success", "dry_run" or "error"
    - details: Parameters or the error text (optional)

    With a path, records are appended to it as JSON lines; otherwise they go
    through structlog as "audit" events.

    EXAMPLE:
    --------
    {"timestamp": "2026-02-01T12:34:56+00:00", "correlation_id": "a3f8c2d1",
     "action": "delete_application", "target": "web-frontend",
     "result": "success", "details": {"cascade": true}}
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Initialize audit logger.

        Args:
            log_path: JSON-lines file to append to, or None for structlog.
                The parent directory must exist.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record one auditable action."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log a write operation.

        Example:
            audit_logger.log_write("sync_application", "web-frontend", "success", {"dry_run": False})
        """
        self.log(action, target, result, details)

    def log_error(self, action: str, target: str, error: str) -> None:
        """Log an operation that reached the server and failed."""
        self.log(action, target, "error", {"error": error})
