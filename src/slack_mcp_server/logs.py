"""structlog and stdlib logging setup shared by both transports."""

from __future__ import annotations

import logging
import sys
from typing import IO, Any, Optional

import structlog

from .config import Settings

_LOGGING_CONFIGURED = False


class _StderrWriter:
    """File-like view of whatever ``sys.stderr`` is at write time."""

    def write(self, text: str) -> int:
        return sys.stderr.write(text)

    def flush(self) -> None:
        sys.stderr.flush()


class ExpectedErrorFilter(logging.Filter):
    """Strip tracebacks from recoverable tool failures logged by FastMCP.

    FastMCP's tool manager logs every raised tool error with
    ``logger.exception``. Upstream hiccups and bootstrap timeouts are normal
    operating conditions, so they are kept as one-line INFO records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.exc_info or record.exc_info[1] is None:
            return True
        exc: Any = record.exc_info[1]
        candidates = [exc, getattr(exc, "__cause__", None)]
        if any(getattr(item, "recoverable", False) for item in candidates if item is not None):
            record.exc_info = None
            record.exc_text = None
            if record.levelno >= logging.ERROR:
                record.levelno = logging.INFO
                record.levelname = "INFO"
        return True


def configure_logging(settings: Settings, *, stream: Optional[IO[str]] = None) -> None:
    """Initialize structlog and stdlib logging formatting.

    Output always goes to ``stream`` (stderr by default); stdout belongs to
    the stdio transport.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    target: Any = stream or _StderrWriter()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event", "method", "path", "status"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=stream or sys.stderr,
    )

    # Stateless HTTP sessions log every setup/teardown at INFO
    logging.getLogger("mcp.server.streamable_http").setLevel(logging.WARNING)
    logging.getLogger("mcp.server.lowlevel.server").setLevel(logging.WARNING)
    # Per-request upstream chatter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("fastmcp.tools.tool_manager").addFilter(ExpectedErrorFilter())

    _LOGGING_CONFIGURED = True


def reset_logging_state() -> None:
    """Allow configure_logging to run again (tests)."""
    global _LOGGING_CONFIGURED
    _LOGGING_CONFIGURED = False
    structlog.reset_defaults()
