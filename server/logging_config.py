"""
Structured logging for the Plus Stack server.

Production emits one JSON object per line; every other environment gets a
colored single-line format. Both pick up the request, connection, room and
player currently bound in context variables, so handler code can log plain
messages and still be traceable per room.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

# Context variables for request/connection-scoped data
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
connection_id_var: ContextVar[Optional[str]] = ContextVar("connection_id", default=None)
room_code_var: ContextVar[Optional[str]] = ContextVar("room_code", default=None)
player_id_var: ContextVar[Optional[str]] = ContextVar("player_id", default=None)

CONTEXT_FIELDS = (
    ("request_id", request_id_var),
    ("connection_id", connection_id_var),
    ("room_code", room_code_var),
    ("player_id", player_id_var),
)


def collect_context(record: Optional[logging.LogRecord] = None) -> dict:
    """
    Gather context for a log line.

    Values passed via ``extra=`` on the record win over context variables.
    """
    context = {}
    for name, var in CONTEXT_FIELDS:
        value = getattr(record, name, None) if record is not None else None
        value = value or var.get()
        if value:
            context[name] = value
    return context


class JSONFormatter(logging.Formatter):
    """
    Format logs as JSON for production log aggregation.

    One object per line, with context fields flattened to the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format a log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON-formatted log line.
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(collect_context(record))

        if record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable, colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    SHORT_NAMES = {
        "request_id": "req",
        "connection_id": "conn",
        "room_code": "room",
        "player_id": "player",
    }

    def format(self, record: logging.LogRecord) -> str:
        """
        Format a log record with colors and a short context suffix.

        Args:
            record: Log record to format.

        Returns:
            Formatted log line, plus the traceback if there is one.
        """
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        context_parts = []
        for name, value in collect_context(record).items():
            short = self.SHORT_NAMES[name]
            # Request and connection ids are uuids; 8 chars is enough to grep
            if name in ("request_id", "connection_id"):
                value = value[:8]
            context_parts.append(f"{short}={value}")
        context = f" [{', '.join(context_parts)}]" if context_parts else ""

        output = f"{timestamp} {color}{record.levelname:8}{reset} {record.name}{context} - {record.getMessage()}"
        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)
        return output


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        environment: Environment name (production uses JSON, else human-readable).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if environment == "production":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={level}, environment={environment}"
    )


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that carries fixed context.

    Usage:
        logger = get_logger(__name__).with_context(room_code="ABCD")
        logger.info("Room created")
    """

    def __init__(self, logger: logging.Logger, extra: Optional[dict] = None):
        """
        Initialize context logger.

        Args:
            logger: Base logger instance.
            extra: Context included in every message.
        """
        super().__init__(logger, extra or {})

    def with_context(self, **kwargs) -> "ContextLogger":
        """
        Create a logger with additional context.

        Args:
            **kwargs: Context fields such as room_code or player_id.

        Returns:
            New ContextLogger with the combined context.
        """
        return ContextLogger(self.logger, {**self.extra, **kwargs})

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        # Per-call extra wins over the bound context
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__).

    Returns:
        ContextLogger with no bound context.
    """
    return ContextLogger(logging.getLogger(name))
